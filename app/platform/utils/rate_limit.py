from threading import Lock
from time import monotonic
from typing import Callable, Optional


class RateLimitWindow:
    """
    Process-wide cooldown after a downstream service answered 429.

    Holds a single absolute deadline (monotonic seconds). There is no clear
    operation: the window closes when the clock passes the deadline.
    """

    def __init__(self, clock: Callable[[], float] = monotonic):
        self._clock = clock
        self._until: Optional[float] = None
        self._lock = Lock()

    def extend(self, seconds: float) -> None:
        """Block calls for the next `seconds`, replacing any previous deadline."""
        with self._lock:
            self._until = self._clock() + max(0.0, seconds)

    def is_active(self) -> bool:
        return self.remaining_seconds() > 0

    def remaining_seconds(self) -> float:
        with self._lock:
            if self._until is None:
                return 0.0
            return max(0.0, self._until - self._clock())
