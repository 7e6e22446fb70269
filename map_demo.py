#!/usr/bin/env python3
"""
Playback Demo - Drives the vehicle tracker page without the MCP server
"""

import time

from vehicle_tracker.engine import PlaybackEngine
from vehicle_tracker.flask_server import FlaskServer
from vehicle_tracker.sources import JsonFileSource, sample_route_path


def demo_playback():
    engine = PlaybackEngine()
    server = FlaskServer(engine=engine)
    server.start()

    print(f"Map server started. Open http://{server.host}:{server.port} in your browser.")
    print("This demo will play the sample route after you open the page.")
    time.sleep(5)  # Give some time for the browser to connect

    print("\nLoading the sample route...")
    engine.load(JsonFileSource(sample_route_path()).fetch())
    time.sleep(2)

    print("\nPlaying at 1x...")
    engine.play()
    time.sleep(8)

    print("\nSpeeding up to 4x...")
    engine.set_speed(4)
    time.sleep(4)

    print("\nPausing...")
    engine.pause()
    status = engine.status()
    print(f"  Point: {status['current_index']} of {status['total_points']}")
    print(f"  Elapsed: {status['elapsed']}")
    print(f"  Speed: {status['speed_kmh']} km/h")
    time.sleep(3)

    print("\nResuming to the end of the route...")
    engine.play()

    print("\nDemo running. Use the buttons on the page, or click two points to load an OSRM route.")
    print("Press Ctrl+C to stop the server when you're done.")

    # Keep the script running
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping server...")
        server.stop()
        print("Server stopped.")

if __name__ == "__main__":
    demo_playback()
