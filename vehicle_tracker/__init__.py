"""Animate a vehicle along a timestamped route on a live map."""

from vehicle_tracker.engine import EmptyRouteError, PlaybackEngine, PlaybackState
from vehicle_tracker.route import RoutePoint, parse_route
from vehicle_tracker.sources import SourceFetchError

__all__ = [
    "EmptyRouteError",
    "PlaybackEngine",
    "PlaybackState",
    "RoutePoint",
    "SourceFetchError",
    "parse_route",
]
