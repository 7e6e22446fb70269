"""
Route sources: anything that resolves to an ordered list of RoutePoint.

Every source raises SourceFetchError when it cannot produce a route; the
caller reports the message to the user and leaves the engine as it was.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import psycopg2
import requests

from vehicle_tracker.geo import distance_km
from vehicle_tracker.route import RoutePoint, parse_route

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]

_Position = namedtuple("_Position", "latitude longitude")

DEFAULT_OSRM_URL = "https://router.project-osrm.org"
GOOGLE_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
REQUEST_TIMEOUT_SECONDS = 20


class SourceFetchError(RuntimeError):
    """Raised when a route source cannot supply a route."""


def sample_route_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "sample-route.json"


def _check_latlng(name: str, value: Sequence[float]) -> LatLng:
    if len(value) != 2 or not all(isinstance(c, (int, float)) for c in value):
        raise ValueError(f"{name} must be a [latitude, longitude] pair of numbers.")
    return float(value[0]), float(value[1])


def _get_json(session, url: str, params=None, timeout: float = REQUEST_TIMEOUT_SECONDS) -> dict:
    try:
        response = session.get(url, params=params, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except requests.HTTPError as exc:
        raise SourceFetchError(f"Request failed with status {exc.response.status_code}: {url}") from exc
    except ValueError as exc:
        raise SourceFetchError(f"Response from {url} is not valid JSON") from exc
    except requests.RequestException as exc:
        raise SourceFetchError(f"Could not reach {url}: {exc}") from exc


class RouteSource(ABC):
    @abstractmethod
    def fetch(self) -> List[RoutePoint]:
        """Resolve the route. Raises SourceFetchError on failure."""


class JsonFileSource(RouteSource):
    """A static JSON asset: a list of ``{latitude, longitude, timestamp}`` objects."""

    def __init__(self, path):
        self.path = Path(path)

    def fetch(self) -> List[RoutePoint]:
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except OSError as exc:
            raise SourceFetchError(f"Cannot read route file {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise SourceFetchError(f"Route file {self.path} is not valid JSON: {exc}") from exc

        if not isinstance(data, list):
            raise SourceFetchError(f"Route file {self.path} must contain a JSON list of points")
        try:
            points = list(parse_route(data))
        except (ValueError, TypeError, AttributeError) as exc:
            raise SourceFetchError(f"Malformed point in {self.path}: {exc}") from exc

        logger.info(f"Read {len(points)} points from {self.path}")
        return points


def _timed_points(coords: Sequence[LatLng], durations: Sequence[float], departure: datetime) -> List[RoutePoint]:
    """Attach timestamps to a path given the seconds spent on each segment."""
    elapsed = 0.0
    points = [RoutePoint(coords[0][0], coords[0][1], departure)]
    for (lat, lng), duration in zip(coords[1:], durations):
        elapsed += max(0.0, float(duration))
        points.append(RoutePoint(lat, lng, departure + timedelta(seconds=elapsed)))
    return points


def _spread_duration(coords: Sequence[LatLng], total_seconds: float) -> List[float]:
    """Split a total duration over segments in proportion to their length."""
    segments = [distance_km(_Position(*a), _Position(*b)) for a, b in zip(coords, coords[1:])]
    total_km = sum(segments)
    if total_km == 0:
        return [total_seconds / len(segments)] * len(segments) if segments else []
    return [total_seconds * km / total_km for km in segments]


class OsrmRouteSource(RouteSource):
    """Driving route between two picked points from an OSRM server."""

    def __init__(
        self,
        start: Sequence[float],
        end: Sequence[float],
        base_url: str = DEFAULT_OSRM_URL,
        profile: str = "driving",
        departure: Optional[datetime] = None,
        session=None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.start = _check_latlng("start", start)
        self.end = _check_latlng("end", end)
        self.base_url = base_url
        self.profile = profile
        self.departure = departure
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def url(self) -> str:
        coords = f"{self.start[1]},{self.start[0]};{self.end[1]},{self.end[0]}"
        return f"{self.base_url.rstrip('/')}/route/v1/{self.profile}/{coords}"

    def fetch(self) -> List[RoutePoint]:
        params = {"overview": "full", "geometries": "geojson", "annotations": "duration", "steps": "false"}
        payload = _get_json(self.session, self.url, params=params, timeout=self.timeout)

        if payload.get("code") != "Ok":
            raise SourceFetchError(f"OSRM response error: {payload.get('message') or payload.get('code')}")
        routes = payload.get("routes") or []
        if not routes:
            raise SourceFetchError("OSRM response did not include any routes.")

        route = routes[0]
        geometry = (route.get("geometry") or {}).get("coordinates") or []
        if not geometry:
            raise SourceFetchError("OSRM route geometry is empty.")

        # OSRM returns [lon, lat].
        coords = [(lat, lon) for lon, lat in geometry]

        durations = []
        for leg in route.get("legs") or []:
            durations.extend((leg.get("annotation") or {}).get("duration") or [])
        if len(durations) != len(coords) - 1:
            durations = _spread_duration(coords, float(route.get("duration") or 0))

        departure = self.departure or datetime.now(timezone.utc)
        points = _timed_points(coords, durations, departure)
        logger.info(
            f"OSRM route {self.start} -> {self.end}: {len(points)} points, "
            f"{float(route.get('distance') or 0) / 1000:.2f} km"
        )
        return points


class DirectionsRouteSource(RouteSource):
    """Driving route from the Google Directions API, one point per step."""

    def __init__(
        self,
        origin: Sequence[float],
        destination: Sequence[float],
        api_key: str,
        base_url: str = GOOGLE_DIRECTIONS_URL,
        departure: Optional[datetime] = None,
        mode: str = "driving",
        session=None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        if not api_key:
            raise ValueError("A Google Maps API key is required for directions.")
        self.origin = _check_latlng("origin", origin)
        self.destination = _check_latlng("destination", destination)
        self.api_key = api_key
        self.base_url = base_url
        self.departure = departure
        self.mode = mode
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self) -> List[RoutePoint]:
        params = {
            "origin": f"{self.origin[0]},{self.origin[1]}",
            "destination": f"{self.destination[0]},{self.destination[1]}",
            "mode": self.mode,
            "key": self.api_key,
        }
        payload = _get_json(self.session, self.base_url, params=params, timeout=self.timeout)

        status = payload.get("status")
        if status != "OK":
            detail = payload.get("error_message") or status
            raise SourceFetchError(f"Directions request failed: {detail}")

        steps = [step for route in payload.get("routes", [])[:1] for leg in route.get("legs", []) for step in leg.get("steps", [])]
        if not steps:
            raise SourceFetchError("Directions response did not include any steps.")

        try:
            first = steps[0]["start_location"]
            coords = [(first["lat"], first["lng"])]
            durations = []
            for step in steps:
                end = step["end_location"]
                coords.append((end["lat"], end["lng"]))
                durations.append(step["duration"]["value"])
        except (KeyError, TypeError) as exc:
            raise SourceFetchError(f"Malformed directions step: {exc}") from exc

        departure = self.departure or datetime.now(timezone.utc)
        points = _timed_points(coords, durations, departure)
        logger.info(f"Directions route {self.origin} -> {self.destination}: {len(points)} points")
        return points


class PostgresRouteSource(RouteSource):
    """Recorded positions stored in a PostgreSQL table."""

    def __init__(self, connection, route_id, table: str = "route_points",
                 route_column: str = "route_id", order_column: str = "seq"):
        self.connection = connection
        self.route_id = route_id
        self.table = table
        self.route_column = route_column
        self.order_column = order_column

    def fetch(self) -> List[RoutePoint]:
        try:
            rows = self.connection.fetch_route_points(
                self.route_id,
                table=self.table,
                route_column=self.route_column,
                order_column=self.order_column,
            )
        except (psycopg2.Error, TimeoutError) as exc:
            raise SourceFetchError(f"Database query for route {self.route_id!r} failed: {exc}") from exc

        try:
            points = list(parse_route(dict(row) for row in rows))
        except ValueError as exc:
            raise SourceFetchError(f"Malformed point in route {self.route_id!r}: {exc}") from exc

        logger.info(f"Read {len(points)} points for route {self.route_id!r} from {self.table}")
        return points
