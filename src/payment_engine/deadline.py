import time


class Deadline:
    """Upper bound on the wall time of a whole operation, retries included."""

    def __init__(self, seconds: float | None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def allows(self, delay: float) -> bool:
        """True if sleeping ``delay`` seconds would still leave time to act."""
        remaining = self.remaining()
        return remaining is None or delay < remaining

    def bound(self, timeout: float) -> float:
        """Clamp a per-call timeout so it never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)
