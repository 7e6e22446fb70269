import json
import logging
import os
import queue
import socket
import sys
import threading
import time
import io
import itertools
from contextlib import redirect_stdout

_log = logging.getLogger('werkzeug')
_log.setLevel(logging.WARNING)

# Redirect all Flask/Werkzeug logging to stderr
for handler in _log.handlers:
    handler.setStream(sys.stderr)

from flask import (
    Flask,
    Response,
    jsonify,
    render_template,
    request,
)

from vehicle_tracker.engine import EmptyRouteError, PlaybackEngine
from vehicle_tracker.geo import trace_bounds
from vehicle_tracker.sources import DEFAULT_OSRM_URL, OsrmRouteSource, SourceFetchError


# Redirect all logging to stderr.
logging.basicConfig(stream=sys.stderr)

# Create a logger for this module
logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(__file__)


class FlaskServer:
    """
    Render sink for the playback engine.

    Serves the tracker page and pushes every engine event to connected
    browsers over Server-Sent Events. The page sends play/pause/reset/speed
    controls and picked route endpoints back through the JSON API.
    """

    def __init__(self, engine=None, host="127.0.0.1", port=5000, osrm_url=DEFAULT_OSRM_URL,
                 osrm_profile="driving", speed_choices=(1, 2, 4, 8), request_timeout=20):
        self.host = host
        self.port = port
        self.engine = engine or PlaybackEngine()
        self.osrm_url = osrm_url
        self.osrm_profile = osrm_profile
        self.speed_choices = list(speed_choices)
        self.request_timeout = request_timeout
        self.app = Flask(__name__,
                         template_folder=os.path.join(PACKAGE_DIR, "templates"),
                         static_folder=os.path.join(PACKAGE_DIR, "static"))

        # Capture and redirect Flask's initialization output to stderr
        with io.StringIO() as buf, redirect_stdout(buf):
            self.setup_routes()
            output = buf.getvalue()
            if output:
                logger.info(output.strip())

        self.server_thread = None
        self.sse_clients = {}  # Maps client_id to message queue
        self._client_ids = itertools.count(1)

        self.engine.add_listener(self.handle_event)

    def setup_routes(self):
        @self.app.route("/")
        def index():
            return render_template("index.html", speed_choices=self.speed_choices)

        @self.app.route("/api/sse")
        def sse():
            def event_stream(client_id):
                # Create a queue for this client
                client_queue = queue.Queue()
                self.sse_clients[client_id] = client_queue

                try:
                    # Initial connection message
                    yield 'data: {"type": "connected", "id": %d}\n\n' % client_id

                    while True:
                        try:
                            # Try to get a message from the queue with a timeout
                            message = client_queue.get(timeout=30)
                            yield f"data: {message}\n\n"
                        except queue.Empty:
                            # No message received in timeout period, send a ping
                            yield 'data: {"type": "ping"}\n\n'

                except GeneratorExit:
                    # Client disconnected
                    if client_id in self.sse_clients:
                        del self.sse_clients[client_id]
                    logger.info(
                        f"Client {client_id} disconnected, {len(self.sse_clients)} clients remaining"
                    )

            client_id = next(self._client_ids)
            return Response(event_stream(client_id), mimetype="text/event-stream")

        @self.app.route("/api/status")
        def status():
            return jsonify(self.engine.status())

        @self.app.route("/api/route")
        def current_route():
            route = self.engine.route
            bounds = trace_bounds(route)
            if bounds:
                bounds = [list(bounds[0]), list(bounds[1])]
            return jsonify({"points": [p.to_dict() for p in route], "bounds": bounds})

        @self.app.route("/api/control", methods=["POST"])
        def control():
            data = request.get_json(silent=True) or {}
            action = data.get("action")
            try:
                if action == "play":
                    self.engine.play()
                elif action == "pause":
                    self.engine.pause()
                elif action == "reset":
                    self.engine.reset()
                elif action == "speed":
                    if "multiplier" not in data:
                        return jsonify({"status": "error", "message": "multiplier is required"}), 400
                    self.engine.set_speed(data["multiplier"])
                else:
                    return jsonify({"status": "error", "message": f"Unknown action: {action}"}), 400
            except EmptyRouteError as e:
                return jsonify({"status": "error", "message": str(e)}), 409
            except (TypeError, ValueError) as e:
                return jsonify({"status": "error", "message": str(e)}), 400
            return jsonify({"status": "success", "playback": self.engine.status()})

        @self.app.route("/api/route/osrm", methods=["POST"])
        def osrm_route():
            data = request.get_json(silent=True) or {}
            if "start" not in data or "end" not in data:
                return jsonify({"status": "error", "message": "start and end are required"}), 400
            try:
                source = OsrmRouteSource(
                    data["start"],
                    data["end"],
                    base_url=self.osrm_url,
                    profile=self.osrm_profile,
                    timeout=self.request_timeout,
                )
                points = source.fetch()
            except (TypeError, ValueError) as e:
                return jsonify({"status": "error", "message": str(e)}), 400
            except SourceFetchError as e:
                logger.error(f"Error fetching OSRM route: {e}")
                return jsonify({"status": "error", "message": f"Failed to load route: {e}"}), 502
            count = self.engine.load(points)
            return jsonify({"status": "success", "points": count})

    def is_port_in_use(self, port):
        """Check if a port is already in use"""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            return s.connect_ex((self.host, port)) == 0

    def start(self):
        """Start the Flask server in a separate thread"""
        # Try up to 10 ports, starting with self.port
        original_port = self.port
        max_attempts = 10

        for attempt in range(max_attempts):
            if self.is_port_in_use(self.port):
                logger.info(f"Port {self.port} is already in use, trying port {self.port + 1}")
                self.port += 1
                if attempt == max_attempts - 1:
                    logger.error(f"Failed to find an available port after {max_attempts} attempts")
                    # Reset port to original value
                    self.port = original_port
                    return False
            else:
                # Port is available, start the server
                def run_server():
                    # Redirect stdout to stderr while running Flask
                    with redirect_stdout(sys.stderr):
                        self.app.run(
                            host=self.host, port=self.port, debug=False, use_reloader=False, threaded=True
                        )

                self.server_thread = threading.Thread(target=run_server)
                self.server_thread.daemon = True  # Thread will exit when main thread exits
                self.server_thread.start()
                logger.info(f"Flask server started at http://{self.host}:{self.port}")
                return True

        return False

    def stop(self):
        """Stop playback; the daemon server thread exits with the main thread."""
        self.engine.pause()
        self.engine.remove_listener(self.handle_event)
        logger.info("Flask server stopping...")

    def handle_event(self, event):
        """Engine listener: forward a playback event to the browsers."""
        self.send_map_command(event.type, event.to_dict())

    def send_map_command(self, command_type, data):
        """
        Send a command to all connected SSE clients

        Args:
            command_type (str): Event type (VEHICLE_CREATED, TRACE_EXTENDED, RESET, ...)
            data (dict): Event payload
        """
        command = {"type": command_type, "data": data}
        message = json.dumps(command)

        clients_count = len(self.sse_clients)
        if clients_count == 0:
            logger.debug(f"No connected clients to send {command_type} to")
            return

        logger.debug(f"Sending {command_type} to {clients_count} clients")
        for client_id, client_queue in list(self.sse_clients.items()):
            try:
                client_queue.put(message)
            except Exception as e:
                logger.error(f"Error sending to client {client_id}: {e}")


# For trying the tracker page without the MCP server
if __name__ == "__main__":
    from vehicle_tracker.sources import JsonFileSource, sample_route_path

    server = FlaskServer()
    server.engine.load(JsonFileSource(sample_route_path()).fetch())
    server.start()

    # Keep the main thread running
    try:
        logger.info("Press Ctrl+C to stop the server")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        server.stop()
        logger.info("Server stopped")
