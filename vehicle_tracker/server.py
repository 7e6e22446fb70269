import logging
import sys
import json
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
from contextlib import asynccontextmanager

from mcp.server.fastmcp import Context, FastMCP

from vehicle_tracker import db
from vehicle_tracker.config import Settings
from vehicle_tracker.engine import EmptyRouteError, PlaybackEngine
from vehicle_tracker.flask_server import FlaskServer
from vehicle_tracker.sources import (
    DirectionsRouteSource,
    JsonFileSource,
    OsrmRouteSource,
    PostgresRouteSource,
    RouteSource,
    SourceFetchError,
    sample_route_path,
)


# Configure all logging to stderr
logging.basicConfig(
    stream=sys.stderr,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def log(msg):
    print(msg, file=sys.stderr)


@dataclass
class AppContext:
    settings: Settings
    engine: PlaybackEngine
    db_conn: Optional[db.PostgresConnection] = None
    flask_server: Optional[FlaskServer] = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with type-safe context"""
    settings = Settings.from_env()
    logging.getLogger("vehicle_tracker").setLevel(settings.log_level)
    app_ctx = AppContext(
        settings=settings,
        engine=PlaybackEngine(base_interval_ms=settings.base_interval_ms),
    )
    try:
        # Initialize database connection (optional)
        try:
            app_ctx.db_conn = db.connect(settings.postgres)
        except Exception as e:
            log(f"Warning: Could not connect to database: {e}")
            log("Continuing without database connection")

        # Initialize and start Flask server
        log("Starting Flask server...")
        flask_server = FlaskServer(
            engine=app_ctx.engine,
            host=settings.flask_host,
            port=settings.flask_port,
            osrm_url=settings.osrm_url,
            osrm_profile=settings.osrm_profile,
            speed_choices=settings.speed_choices,
            request_timeout=settings.request_timeout,
        )
        flask_server.start()
        app_ctx.flask_server = flask_server
        log(f"Flask server started at http://{flask_server.host}:{flask_server.port}")

        yield app_ctx
    finally:
        # Cleanup on shutdown
        app_ctx.engine.pause()
        if app_ctx.flask_server:
            log("Stopping Flask server...")
            app_ctx.flask_server.stop()

        if app_ctx.db_conn and app_ctx.db_conn.conn:
            log("Closing database connection...")
            app_ctx.db_conn.close()


# Initialize the MCP server
mcp = FastMCP("Vehicle Tracker MCP Server",
              dependencies=["flask>=3.1.0", "psycopg2>=2.9.10", "requests>=2.31"],
              lifespan=app_lifespan)


def _app(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context


def _load(app: AppContext, source: RouteSource, label: str) -> str:
    """Fetch a route and hand it to the engine; errors become tool text."""
    try:
        points = source.fetch()
    except SourceFetchError as e:
        return f"Error: failed to load {label}: {e}"
    count = app.engine.load(points)
    if count == 0:
        return f"Error: {label} contains no points; playback cannot start."
    first, last = points[0], points[-1]
    return (
        f"Loaded {label} with {count} points from "
        f"[{first.latitude:.6f}, {first.longitude:.6f}] to [{last.latitude:.6f}, {last.longitude:.6f}]. "
        f"Call play_route to start the animation."
    )


def _valid_latlng(value) -> bool:
    return (
        isinstance(value, list) and len(value) == 2
        and all(isinstance(c, (int, float)) for c in value)
        and -90 <= value[0] <= 90 and -180 <= value[1] <= 180
    )


# Route loading tools
@mcp.tool()
async def load_sample_route(ctx: Context) -> str:
    """
    Load the bundled sample route (a short drive through Hyderabad) into the
    playback engine. Any playback in progress is stopped and rewound.
    """
    return _load(_app(ctx), JsonFileSource(sample_route_path()), "sample route")


@mcp.tool()
async def load_route_file(path: str, ctx: Context) -> str:
    """
    Load a route from a JSON file on the server.

    Args:
        path: Path to a JSON list of {"latitude", "longitude", "timestamp"}
            objects. Timestamps may be ISO-8601 strings or epoch milliseconds.

    Examples:
        - `load_route_file(path="/data/dummy-route.json")`
    """
    return _load(_app(ctx), JsonFileSource(path), f"route file {path}")


@mcp.tool()
async def load_osrm_route(start: List[float], end: List[float], ctx: Context) -> str:
    """
    Load a driving route between two points from the OSRM routing engine.
    Timestamps are derived from OSRM's per-segment travel durations, so the
    speeds shown during playback are the router's estimates.

    Args:
        start: [latitude, longitude] of the start point
        end: [latitude, longitude] of the end point

    Examples:
        - `load_osrm_route(start=[17.385, 78.4867], end=[17.4065, 78.4772])`
    """
    if not _valid_latlng(start) or not _valid_latlng(end):
        return "Error: start and end must be [latitude, longitude] pairs of numbers."
    app = _app(ctx)
    source = OsrmRouteSource(
        start, end,
        base_url=app.settings.osrm_url,
        profile=app.settings.osrm_profile,
        timeout=app.settings.request_timeout,
    )
    return _load(app, source, "OSRM route")


@mcp.tool()
async def load_directions_route(origin: List[float], destination: List[float], ctx: Context) -> str:
    """
    Load a driving route from the Google Directions API. Requires the
    GOOGLE_MAPS_API_KEY environment variable.

    Args:
        origin: [latitude, longitude] of the origin
        destination: [latitude, longitude] of the destination
    """
    app = _app(ctx)
    if not app.settings.google_maps_api_key:
        return "Error: GOOGLE_MAPS_API_KEY is not configured."
    if not _valid_latlng(origin) or not _valid_latlng(destination):
        return "Error: origin and destination must be [latitude, longitude] pairs of numbers."
    source = DirectionsRouteSource(
        origin, destination,
        api_key=app.settings.google_maps_api_key,
        timeout=app.settings.request_timeout,
    )
    return _load(app, source, "directions route")


@mcp.tool()
async def load_database_route(
    route_id: str,
    ctx: Context,
    table: str = "route_points",
    route_column: str = "route_id",
    order_column: str = "seq",
) -> str:
    """
    Load recorded vehicle positions from the PostgreSQL database.

    The table must have latitude, longitude and timestamp columns. Rows are
    played back ordered by `order_column`.

    Args:
        route_id: Value of `route_column` identifying the route
        table: Table holding the positions
        route_column: Column identifying the route
        order_column: Column giving the playback order
    """
    app = _app(ctx)
    if not app.db_conn:
        return "Database connection is not available. Please check your PostgreSQL server."
    source = PostgresRouteSource(app.db_conn, route_id, table=table,
                                 route_column=route_column, order_column=order_column)
    return _load(app, source, f"route {route_id}")


# Playback control tools
@mcp.tool()
async def play_route(ctx: Context) -> str:
    """
    Start or resume the vehicle animation. Playing a finished route starts it
    again from the first point.
    """
    engine = _app(ctx).engine
    try:
        engine.play()
    except EmptyRouteError:
        return "Error: no route data available. Load a route first."
    status = engine.status()
    return f"Playing from point {status['current_index']} of {status['total_points']} at {status['speed_multiplier']:g}x."


@mcp.tool()
async def pause_route(ctx: Context) -> str:
    """Pause the vehicle animation at its current point."""
    engine = _app(ctx).engine
    engine.pause()
    return f"Paused at point {engine.current_index} of {len(engine.route)}."


@mcp.tool()
async def reset_route(ctx: Context) -> str:
    """Stop the animation and move the vehicle back to the start of the route."""
    _app(ctx).engine.reset()
    return "Playback reset to the start of the route."


@mcp.tool()
async def set_playback_speed(multiplier: float, ctx: Context) -> str:
    """
    Change the playback speed. At 1x the vehicle advances one point every
    2 seconds; 2x halves that interval, and so on.

    Args:
        multiplier: Speed multiplier greater than zero, typically 1, 2, 4 or 8
    """
    engine = _app(ctx).engine
    try:
        engine.set_speed(multiplier)
    except (TypeError, ValueError):
        return "Error: multiplier must be a number greater than 0."
    return f"Playback speed set to {engine.speed_multiplier:g}x ({engine.tick_interval_ms} ms per point)."


@mcp.tool()
async def get_playback_status(ctx: Context) -> str:
    """
    Get the playback state: idle/loaded/playing/finished, current point,
    speed multiplier, elapsed time and current speed.

    Returns:
        JSON string with the playback status
    """
    return json.dumps(_app(ctx).engine.status(), indent=2)


def run_server():
    """Run the MCP server"""
    mcp.run()


if __name__ == "__main__":
    run_server()
