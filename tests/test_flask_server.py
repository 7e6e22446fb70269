import json
import queue

import pytest

from vehicle_tracker import flask_server as flask_server_module
from vehicle_tracker.engine import PlaybackEngine
from vehicle_tracker.flask_server import FlaskServer
from vehicle_tracker.sources import SourceFetchError


@pytest.fixture
def server(timers):
    return FlaskServer(engine=PlaybackEngine(timer_factory=timers))


@pytest.fixture
def client(server):
    return server.app.test_client()


@pytest.fixture
def sse_queue(server):
    q = queue.Queue()
    server.sse_clients[1] = q
    return q


def drain(q):
    messages = []
    while not q.empty():
        messages.append(json.loads(q.get_nowait()))
    return messages


def test_index_page(client):
    response = client.get("/")
    assert response.status_code == 200
    body = response.get_data(as_text=True)
    assert "playPauseBtn" in body
    assert '<option value="4">4x</option>' in body


def test_play_without_route_is_conflict(client):
    response = client.post("/api/control", json={"action": "play"})
    assert response.status_code == 409
    assert response.get_json()["status"] == "error"


def test_controls(client, server, route, timers):
    server.engine.load(route)

    response = client.post("/api/control", json={"action": "play"})
    assert response.status_code == 200
    assert response.get_json()["playback"]["state"] == "playing"

    timers.current.fire()

    response = client.post("/api/control", json={"action": "speed", "multiplier": 8})
    assert response.get_json()["playback"]["tick_interval_ms"] == 250
    assert timers.current.interval == 0.25

    response = client.post("/api/control", json={"action": "pause"})
    assert response.get_json()["playback"]["is_playing"] is False
    assert response.get_json()["playback"]["current_index"] == 1

    response = client.post("/api/control", json={"action": "reset"})
    assert response.get_json()["playback"]["current_index"] == 0


@pytest.mark.parametrize("body", [
    {"action": "speed", "multiplier": 0},
    {"action": "speed", "multiplier": "fast"},
    {"action": "speed"},
    {"action": "rewind"},
    {},
])
def test_bad_control_requests(client, body):
    response = client.post("/api/control", json=body)
    assert response.status_code == 400


def test_status_and_route(client, server, route):
    assert client.get("/api/status").get_json()["state"] == "idle"
    assert client.get("/api/route").get_json() == {"points": [], "bounds": None}

    server.engine.load(route)
    data = client.get("/api/route").get_json()
    assert len(data["points"]) == 3
    assert data["points"][0]["timestamp"] == "2024-05-01T08:00:00Z"
    assert data["bounds"] == [[17.385044, 78.486671], [17.38682, 78.48815]]


def test_engine_events_reach_sse_clients(server, sse_queue, route):
    server.engine.load(route)
    server.engine.tick()

    types = [m["type"] for m in drain(sse_queue)]
    assert types == ["RESET", "ROUTE_LOADED", "VEHICLE_CREATED", "TRACE_EXTENDED", "METADATA_UPDATED"]


def test_sse_connections_get_distinct_ids(client, server):
    first = client.get("/api/sse", buffered=False)
    second = client.get("/api/sse", buffered=False)
    try:
        hello = [
            json.loads(next(response.iter_encoded()).decode()[len("data: "):])
            for response in (first, second)
        ]
        assert [m["type"] for m in hello] == ["connected", "connected"]
        assert hello[0]["id"] != hello[1]["id"]
        assert set(server.sse_clients) == {hello[0]["id"], hello[1]["id"]}
    finally:
        first.close()
        second.close()


def test_osrm_route_from_map_clicks(client, server, route, monkeypatch):
    calls = []

    class FakeSource:
        def __init__(self, start, end, **kwargs):
            calls.append((start, end, kwargs))

        def fetch(self):
            return route

    monkeypatch.setattr(flask_server_module, "OsrmRouteSource", FakeSource)
    response = client.post("/api/route/osrm", json={"start": [17.385, 78.4867], "end": [17.387, 78.4887]})

    assert response.status_code == 200
    assert response.get_json()["points"] == 3
    assert calls[0][0] == [17.385, 78.4867]
    assert calls[0][2]["base_url"] == "https://router.project-osrm.org"
    assert len(server.engine.route) == 3


def test_osrm_route_failure_keeps_current_route(client, server, route, monkeypatch):
    class FailingSource:
        def __init__(self, *args, **kwargs):
            pass

        def fetch(self):
            raise SourceFetchError("Could not reach OSRM")

    server.engine.load(route)
    monkeypatch.setattr(flask_server_module, "OsrmRouteSource", FailingSource)
    response = client.post("/api/route/osrm", json={"start": [0, 0], "end": [1, 1]})

    assert response.status_code == 502
    assert "Could not reach OSRM" in response.get_json()["message"]
    assert len(server.engine.route) == 3


def test_osrm_route_requires_both_points(client):
    response = client.post("/api/route/osrm", json={"start": [0, 0]})
    assert response.status_code == 400


def test_osrm_route_bad_coordinates(client):
    response = client.post("/api/route/osrm", json={"start": [0], "end": [1, 1]})
    assert response.status_code == 400


def test_stop_detaches_from_engine(server, sse_queue, route, timers):
    server.engine.load(route)
    server.engine.play()
    server.stop()
    drain(sse_queue)

    assert not server.engine.is_playing
    server.engine.reset()
    assert drain(sse_queue) == []


def test_send_map_command_without_clients(server):
    server.send_map_command("RESET", {})
