"""
Route playback engine.

Steps through a route one point per tick on a single recurring timer and
reports what happened as events (see ``vehicle_tracker.events``). The engine
knows nothing about maps or the DOM; a render sink subscribes with
``add_listener`` and draws whatever it likes.

State machine::

    IDLE --load--> LOADED <--play/pause--> PLAYING --last tick--> FINISHED
                                              ^                       |
                                              +-------- play ---------+
"""

import logging
import math
import threading
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from vehicle_tracker.events import (
    Completed,
    MetadataUpdated,
    PlaybackEvent,
    PlaybackStatus,
    PositionUpdated,
    Reset,
    RouteLoaded,
    TraceExtended,
    VehicleCreated,
)
from vehicle_tracker.geo import (
    elapsed_seconds,
    format_coords,
    format_elapsed,
    speed_kmh,
    trace_bounds,
)
from vehicle_tracker.route import RoutePoint, parse_route
from vehicle_tracker.timer import RepeatingTimer

logger = logging.getLogger(__name__)

DEFAULT_BASE_INTERVAL_MS = 2000

Listener = Callable[[PlaybackEvent], None]


class EmptyRouteError(RuntimeError):
    """Raised when playback is requested without any route points."""


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADED = "loaded"
    PLAYING = "playing"
    FINISHED = "finished"


class PlaybackEngine:
    def __init__(
        self,
        base_interval_ms: int = DEFAULT_BASE_INTERVAL_MS,
        speed_multiplier: float = 1.0,
        timer_factory: Callable = RepeatingTimer,
    ):
        if not (math.isfinite(base_interval_ms) and base_interval_ms > 0):
            raise ValueError("base_interval_ms must be a finite number > 0")
        if not (math.isfinite(speed_multiplier) and speed_multiplier > 0):
            raise ValueError("speed_multiplier must be a finite number > 0")

        self.base_interval_ms = base_interval_ms
        self.speed_multiplier = float(speed_multiplier)
        self.timer_factory = timer_factory

        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._timer = None
        self._ticking = False
        # Bumped by load/reset; a tick in flight stops touching progress once it changes.
        self._generation = 0

        self.route: Tuple[RoutePoint, ...] = ()
        self.trace: List[RoutePoint] = []
        self.current_index = 0
        self.is_playing = False
        self.start_timestamp = None
        self.last_metadata: Optional[MetadataUpdated] = None

    # Listeners

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event: PlaybackEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed on {event.type}: {e}")

    # Derived state

    @property
    def tick_interval_ms(self) -> int:
        return max(1, round(self.base_interval_ms / self.speed_multiplier))

    @property
    def finished(self) -> bool:
        return bool(self.route) and self.current_index >= len(self.route)

    @property
    def state(self) -> PlaybackState:
        if not self.route:
            return PlaybackState.IDLE
        if self.is_playing:
            return PlaybackState.PLAYING
        if self.finished:
            return PlaybackState.FINISHED
        return PlaybackState.LOADED

    def status(self) -> Dict[str, Any]:
        with self._lock:
            metadata = self.last_metadata
            return {
                "state": self.state.value,
                "current_index": self.current_index,
                "total_points": len(self.route),
                "is_playing": self.is_playing,
                "speed_multiplier": self.speed_multiplier,
                "tick_interval_ms": self.tick_interval_ms,
                "coords": metadata.coords if metadata else None,
                "elapsed": metadata.elapsed_label if metadata else format_elapsed(0),
                "speed_kmh": metadata.speed_kmh if metadata else None,
            }

    # Timer handling

    def _start_timer(self) -> None:
        self._cancel_timer()
        timer = self.timer_factory(self.tick_interval_ms / 1000, self._on_timer)
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, timer) -> None:
        with self._lock:
            # A firing that raced with pause/reset/set_speed belongs to a
            # timer that is no longer ours.
            if timer is not self._timer:
                logger.debug("Dropping tick from a cancelled timer")
                return
            self.tick()

    def _publish_status(self) -> None:
        self._emit(PlaybackStatus(self.is_playing, self.speed_multiplier, self.tick_interval_ms))

    def _set_playing(self, playing: bool) -> None:
        if self.is_playing != playing:
            self.is_playing = playing
            self._publish_status()

    # Public controls

    def load(self, points: Iterable) -> int:
        """
        Replace the current route and rewind to its first point.

        Returns the number of points loaded. An empty route is not an error
        here; it is logged and any later ``play()`` raises EmptyRouteError.
        """
        route = parse_route(points)
        with self._lock:
            self._cancel_timer()
            self._set_playing(False)
            self.route = route
            self._clear_progress()
            self._emit(Reset())
            if not route:
                logger.warning("Loaded an empty route, playback cannot start")
                return 0
            self._emit(RouteLoaded(route, trace_bounds(route)))
            logger.info(f"Loaded route with {len(route)} points")
            return len(route)

    def play(self) -> None:
        with self._lock:
            if not self.route:
                raise EmptyRouteError("No route data available to start playback")
            if self.is_playing:
                return
            if self.finished:
                self.reset()
            self._start_timer()
            self._set_playing(True)
            logger.info(
                f"Playback started at point {self.current_index}/{len(self.route)} "
                f"every {self.tick_interval_ms} ms"
            )

    def pause(self) -> None:
        with self._lock:
            self._cancel_timer()
            if self.is_playing:
                logger.info(f"Playback paused at point {self.current_index}")
            self._set_playing(False)

    def reset(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._set_playing(False)
            self._clear_progress()
            self._emit(Reset())
            logger.info("Playback reset")

    def set_speed(self, multiplier: float) -> None:
        multiplier = float(multiplier)
        if not (math.isfinite(multiplier) and multiplier > 0):
            raise ValueError("Speed multiplier must be a finite number > 0")
        with self._lock:
            if multiplier == self.speed_multiplier:
                return
            self.speed_multiplier = multiplier
            if self.is_playing:
                # Index is untouched, so the restarted timer picks up exactly
                # where the old one stopped.
                self._start_timer()
            self._publish_status()
            logger.info(f"Playback speed set to {multiplier}x ({self.tick_interval_ms} ms per point)")

    def _clear_progress(self) -> None:
        self._generation += 1
        self.current_index = 0
        self.trace = []
        self.start_timestamp = None
        self.last_metadata = None

    # Core step

    def tick(self) -> None:
        """Advance playback by one point, or finish if the route is exhausted."""
        with self._lock:
            if self._ticking:
                logger.debug("Ignoring re-entrant tick")
                return
            if not self.route:
                logger.warning("Tick without a loaded route")
                return
            self._ticking = True
            try:
                self._advance()
            finally:
                self._ticking = False

    def _advance(self) -> None:
        if self.current_index >= len(self.route):
            self._cancel_timer()
            self._set_playing(False)
            logger.info("Route simulation complete")
            self._emit(Completed(trace_bounds(self.trace)))
            return

        generation = self._generation
        route = self.route
        index = self.current_index
        point = route[index]

        trace = self.trace
        first = not trace
        if first:
            self.start_timestamp = point.timestamp
        start = self.start_timestamp

        # Listeners may call load() or reset(); from then on this tick only
        # finishes its own bookkeeping and leaves the new progress alone.
        if first:
            self._emit(VehicleCreated(point))
        else:
            self._emit(PositionUpdated(point))
        if self._generation != generation:
            return

        trace.append(point)
        self._emit(TraceExtended(point, len(trace)))
        if self._generation != generation:
            return

        # Out-of-order samples can put a point before the start; show zero.
        elapsed = max(0, elapsed_seconds(start, point.timestamp))
        speed = round(speed_kmh(route[index - 1], point), 2) if index > 0 else 0.0

        metadata = MetadataUpdated(format_coords(point), format_elapsed(elapsed), speed)
        self.last_metadata = metadata
        self._emit(metadata)
        logger.debug(f"Point {index}: {metadata.coords} elapsed={metadata.elapsed_label} speed={metadata.speed_label}")
        if self._generation != generation:
            return

        self.current_index = index + 1
