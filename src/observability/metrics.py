import threading
import time


class MetricsCollector:
    """Rolling-window counts of finalized transactions, optionally per transaction type."""

    def __init__(self, window_seconds: float = 300, clock=time.monotonic):
        self._window_seconds = window_seconds
        self._clock = clock
        self._successes: list[tuple[float, str | None]] = []  # (timestamp, transaction type)
        self._failures: list[tuple[float, str | None]] = []
        self._failure_codes: dict[str, int] = {}
        self._lock = threading.Lock()

    def record_success(self, transaction_type: str | None = None) -> None:
        with self._lock:
            self._successes.append((self._clock(), transaction_type))

    def record_failure(self, transaction_type: str | None = None, code: str | None = None) -> None:
        with self._lock:
            self._failures.append((self._clock(), transaction_type))
            if code:
                self._failure_codes[code] = self._failure_codes.get(code, 0) + 1

    def _in_window(self, data, transaction_type: str | None) -> int:
        cutoff = self._clock() - self._window_seconds
        return sum(
            1 for ts, kind in data
            if ts >= cutoff and (transaction_type is None or kind == transaction_type)
        )

    def failure_rate(self, transaction_type: str | None = None) -> float:
        """Failure rate in the current rolling window (0.0 to 1.0)."""
        with self._lock:
            failures = self._in_window(self._failures, transaction_type)
            total = failures + self._in_window(self._successes, transaction_type)
            if total == 0:
                return 0.0
            return failures / total

    def total_in_window(self, transaction_type: str | None = None) -> int:
        with self._lock:
            return (
                self._in_window(self._successes, transaction_type)
                + self._in_window(self._failures, transaction_type)
            )

    def failure_count_in_window(self, transaction_type: str | None = None) -> int:
        with self._lock:
            return self._in_window(self._failures, transaction_type)

    def success_count_in_window(self, transaction_type: str | None = None) -> int:
        with self._lock:
            return self._in_window(self._successes, transaction_type)

    def failure_codes(self) -> dict[str, int]:
        """Lifetime count of terminal failures per error code."""
        with self._lock:
            return dict(self._failure_codes)

    def reset(self) -> None:
        with self._lock:
            self._successes.clear()
            self._failures.clear()
            self._failure_codes.clear()
