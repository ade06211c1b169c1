# utils/clock.py
"""Clock abstraction used by the driver's polling loops."""
import time


class Clock:
    """Wall-clock access for bounded poll loops. Swap for a fake in tests."""

    def monotonic(self) -> float:
        """Return a monotonic timestamp in seconds."""
        return time.monotonic()

    def elapsed(self, start: float) -> float:
        """Return seconds elapsed since start."""
        return self.monotonic() - start

    def sleep(self, seconds: float) -> None:
        """Block the calling thread for the given number of seconds."""
        time.sleep(seconds)


# Shared default instance
SYSTEM_CLOCK = Clock()
