from datetime import datetime, timedelta, timezone

import pytest

from vehicle_tracker.engine import PlaybackEngine
from vehicle_tracker.route import RoutePoint

T0 = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


class ManualTimer:
    """Stand-in for RepeatingTimer that only fires when a test says so."""

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback(self)


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, callback):
        timer = ManualTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def current(self):
        return self.timers[-1]


def make_point(lat, lng, seconds=0):
    return RoutePoint(lat, lng, T0 + timedelta(seconds=seconds))


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def events():
    return []


@pytest.fixture
def engine(timers, events):
    eng = PlaybackEngine(timer_factory=timers)
    eng.add_listener(events.append)
    return eng


@pytest.fixture
def route():
    return [
        make_point(17.385044, 78.486671, 0),
        make_point(17.385910, 78.487420, 10),
        make_point(17.386820, 78.488150, 20),
    ]
