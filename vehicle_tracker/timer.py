import logging
import threading

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """
    Call ``callback(timer)`` every ``interval`` seconds on a daemon thread.

    The timer passes itself to the callback so the owner can tell a firing of
    its current timer apart from a late firing of one it already cancelled.
    A cancelled timer cannot be restarted; create a new one instead.
    """

    def __init__(self, interval, callback):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self.callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="playback-timer")
        self._thread.daemon = True

    def start(self):
        self._thread.start()

    def cancel(self):
        """Stop future firings. Never waits for a firing in progress."""
        self._stopped.set()

    def _run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.callback(self)
            except Exception as e:
                logger.exception(f"Timer callback failed: {e}")
