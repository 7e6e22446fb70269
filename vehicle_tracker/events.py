"""
Events emitted by the playback engine.

Each event is an immutable snapshot. The render sink turns them into map
commands with ``event.type`` as the command name and ``event.to_dict()`` as
the payload.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple

from vehicle_tracker.geo import Bounds
from vehicle_tracker.route import RoutePoint


def _bounds_to_list(bounds: Optional[Bounds]):
    if bounds is None:
        return None
    return [list(bounds[0]), list(bounds[1])]


@dataclass(frozen=True)
class PlaybackEvent:
    type: ClassVar[str] = "EVENT"

    def to_dict(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class RouteLoaded(PlaybackEvent):
    type: ClassVar[str] = "ROUTE_LOADED"
    points: Tuple[RoutePoint, ...]
    bounds: Optional[Bounds]

    def to_dict(self):
        return {
            "coordinates": [p.latlng() for p in self.points],
            "bounds": _bounds_to_list(self.bounds),
        }


@dataclass(frozen=True)
class VehicleCreated(PlaybackEvent):
    type: ClassVar[str] = "VEHICLE_CREATED"
    point: RoutePoint

    def to_dict(self):
        return {"coordinates": self.point.latlng(), "point": self.point.to_dict()}


@dataclass(frozen=True)
class PositionUpdated(PlaybackEvent):
    type: ClassVar[str] = "POSITION_UPDATED"
    point: RoutePoint

    def to_dict(self):
        return {"coordinates": self.point.latlng(), "point": self.point.to_dict()}


@dataclass(frozen=True)
class TraceExtended(PlaybackEvent):
    type: ClassVar[str] = "TRACE_EXTENDED"
    point: RoutePoint
    trace_length: int

    def to_dict(self):
        return {"coordinates": self.point.latlng(), "traceLength": self.trace_length}


@dataclass(frozen=True)
class MetadataUpdated(PlaybackEvent):
    type: ClassVar[str] = "METADATA_UPDATED"
    coords: str
    elapsed_label: str
    speed_kmh: float

    @property
    def speed_label(self) -> str:
        return f"{self.speed_kmh:.2f}"

    def to_dict(self):
        return {
            "coords": self.coords,
            "elapsed": self.elapsed_label,
            "speedKmh": self.speed_kmh,
            "speedLabel": self.speed_label,
        }


@dataclass(frozen=True)
class Completed(PlaybackEvent):
    type: ClassVar[str] = "COMPLETED"
    trace_bounds: Optional[Bounds]

    def to_dict(self):
        return {"bounds": _bounds_to_list(self.trace_bounds)}


@dataclass(frozen=True)
class Reset(PlaybackEvent):
    type: ClassVar[str] = "RESET"


@dataclass(frozen=True)
class PlaybackStatus(PlaybackEvent):
    type: ClassVar[str] = "PLAYBACK_STATUS"
    is_playing: bool
    speed_multiplier: float
    tick_interval_ms: int

    def to_dict(self):
        return {
            "isPlaying": self.is_playing,
            "speedMultiplier": self.speed_multiplier,
            "tickIntervalMs": self.tick_interval_ms,
        }
