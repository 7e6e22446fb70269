import asyncio
import json
from types import SimpleNamespace
from unittest import mock

import pytest

from vehicle_tracker import server
from vehicle_tracker.config import Settings
from vehicle_tracker.engine import PlaybackEngine


@pytest.fixture
def app(timers):
    return server.AppContext(
        settings=Settings.from_env({}),
        engine=PlaybackEngine(timer_factory=timers),
    )


@pytest.fixture
def ctx(app):
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=app))


def run(coro):
    return asyncio.run(coro)


def test_load_sample_and_play(ctx, app):
    message = run(server.load_sample_route(ctx))
    assert message.startswith("Loaded sample route with 12 points")

    message = run(server.play_route(ctx))
    assert message == "Playing from point 0 of 12 at 1x."
    assert app.engine.is_playing

    message = run(server.pause_route(ctx))
    assert message == "Paused at point 0 of 12."


def test_play_without_route(ctx):
    assert run(server.play_route(ctx)).startswith("Error: no route data")


def test_set_playback_speed(ctx, app):
    assert run(server.set_playback_speed(2, ctx)) == "Playback speed set to 2x (1000 ms per point)."
    assert run(server.set_playback_speed(0, ctx)).startswith("Error")
    assert app.engine.speed_multiplier == 2


def test_reset_and_status(ctx, app):
    run(server.load_sample_route(ctx))
    app.engine.tick()
    assert run(server.reset_route(ctx)) == "Playback reset to the start of the route."

    status = json.loads(run(server.get_playback_status(ctx)))
    assert status["state"] == "loaded"
    assert status["current_index"] == 0
    assert status["total_points"] == 12


def test_load_route_file_errors(ctx, tmp_path):
    assert run(server.load_route_file(str(tmp_path / "missing.json"), ctx)).startswith("Error: failed to load")

    empty = tmp_path / "empty.json"
    empty.write_text("[]")
    assert "contains no points" in run(server.load_route_file(str(empty), ctx))


def test_load_osrm_route_validates_points(ctx):
    assert run(server.load_osrm_route([0], [1, 1], ctx)).startswith("Error")
    assert run(server.load_osrm_route([95, 0], [1, 1], ctx)).startswith("Error")


def test_load_osrm_route(ctx, app, route, monkeypatch):
    fake = mock.MagicMock()
    fake.return_value.fetch.return_value = route
    monkeypatch.setattr(server, "OsrmRouteSource", fake)

    message = run(server.load_osrm_route([17.385, 78.4867], [17.387, 78.4887], ctx))

    assert message.startswith("Loaded OSRM route with 3 points")
    assert fake.call_args[1]["base_url"] == app.settings.osrm_url
    assert len(app.engine.route) == 3


def test_load_directions_route_needs_key(ctx):
    assert run(server.load_directions_route([0, 0], [1, 1], ctx)) == "Error: GOOGLE_MAPS_API_KEY is not configured."


def test_load_database_route_without_connection(ctx):
    assert run(server.load_database_route("bus-7", ctx)).startswith("Database connection is not available")


def test_load_database_route(ctx, app, route):
    app.db_conn = mock.MagicMock()
    app.db_conn.fetch_route_points.return_value = [p.to_dict() for p in route]

    message = run(server.load_database_route("bus-7", ctx))

    assert message.startswith("Loaded route bus-7 with 3 points")
    app.db_conn.fetch_route_points.assert_called_once_with(
        "bus-7", table="route_points", route_column="route_id", order_column="seq"
    )
