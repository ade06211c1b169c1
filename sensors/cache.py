# sensors/cache.py
"""Staleness tracking for cached sensor values."""
import logging
import threading

logger = logging.getLogger(__name__)


class MeasurementCache:
    """
    Tracks whether the last full read is still fresh.

    A successful read marks the cache fresh and arms a one-shot timer for the
    refresh interval. When the timer fires the cache turns stale and the timer
    is dropped; a new one is armed only by the next successful read.
    """

    def __init__(self, refresh, timer_factory=threading.Timer):
        """
        Args:
            refresh: Seconds a read stays fresh. 0 disables caching.
            timer_factory: Callable (interval, function) -> timer with
                start()/cancel(), threading.Timer by default
        """
        self.refresh = refresh
        self._timer_factory = timer_factory
        self._timer = None
        self._stale = True
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def lock(self):
        """Lock guarding the stale flag and the values it covers."""
        return self._lock

    @property
    def is_stale(self):
        with self._lock:
            return self._stale

    def mark_fresh(self):
        """Record a successful read and arm the staleness timer if none is running."""
        with self._lock:
            if self.refresh <= 0:
                self._stale = True
                return

            self._stale = False
            if self._timer is None:
                generation = self._generation
                timer = self._timer_factory(self.refresh, lambda: self._expire(generation))
                if hasattr(timer, "daemon"):
                    timer.daemon = True
                self._timer = timer
                timer.start()

    def invalidate(self):
        """Force the next access to read from the device."""
        with self._lock:
            self._stale = True

    def cancel(self):
        """Stop any running timer and mark the cache stale."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self._stale = True

    def _expire(self, generation):
        with self._lock:
            # A cancelled timer that fires late must not touch the current one
            if generation != self._generation:
                return
            self._stale = True
            self._timer = None
        logger.debug("Cached measurement expired")
