import math
from datetime import datetime
from typing import Optional, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0

Bounds = Tuple[Tuple[float, float], Tuple[float, float]]


def distance_km(a, b) -> float:
    """Great-circle distance in kilometers between two points (haversine).

    ``a`` and ``b`` only need ``latitude`` and ``longitude`` attributes.
    """
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def format_elapsed(total_seconds: int) -> str:
    """Format a number of seconds as HH:MM:SS (hours are not capped)."""
    total_seconds = int(total_seconds)
    if total_seconds < 0:
        raise ValueError("total_seconds must be >= 0")
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds from ``start`` to ``end``, floored."""
    return math.floor((end - start).total_seconds())


def speed_kmh(prev, point) -> float:
    """Average speed between two timestamped points.

    Zero when the time delta is zero or negative (out-of-order samples).
    """
    time_diff_seconds = (point.timestamp - prev.timestamp).total_seconds()
    if time_diff_seconds <= 0:
        return 0.0
    return distance_km(prev, point) / time_diff_seconds * 3600


def trace_bounds(points: Sequence) -> Optional[Bounds]:
    """Return [[south, west], [north, east]] for the points, or None if empty."""
    if not points:
        return None
    lats = [p.latitude for p in points]
    lngs = [p.longitude for p in points]
    return (min(lats), min(lngs)), (max(lats), max(lngs))


def format_coords(point) -> str:
    return f"{point.latitude:.6f}, {point.longitude:.6f}"
