from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Tuple, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TimestampLike = Union[str, int, float, datetime]


def parse_timestamp(value: TimestampLike) -> datetime:
    """
    Normalize a sample timestamp to an aware UTC datetime.

    Accepts ISO-8601 strings (``Z`` suffix or no offset means UTC),
    epoch milliseconds as int/float, or datetime objects.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return EPOCH + timedelta(milliseconds=value)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid ISO-8601 timestamp: {value!r}")
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _first_key(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    raise ValueError(f"Route point is missing '{keys[0]}': {raw}")


@dataclass(frozen=True)
class RoutePoint:
    latitude: float
    longitude: float
    timestamp: datetime

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"longitude out of range: {self.longitude}")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RoutePoint":
        """Build a point from a ``{latitude, longitude, timestamp}`` mapping."""
        try:
            latitude = float(_first_key(raw, "latitude", "lat"))
            longitude = float(_first_key(raw, "longitude", "lng", "lon"))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid coordinates in route point {raw}: {e}") from e
        timestamp = parse_timestamp(_first_key(raw, "timestamp"))
        return cls(latitude, longitude, timestamp)

    def latlng(self) -> list:
        return [self.latitude, self.longitude]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


def parse_route(items: Iterable[Union[RoutePoint, Dict[str, Any]]]) -> Tuple[RoutePoint, ...]:
    """Turn raw samples into an immutable route, keeping their order."""
    return tuple(
        item if isinstance(item, RoutePoint) else RoutePoint.from_dict(item)
        for item in items
    )
