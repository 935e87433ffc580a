import random
from dataclasses import dataclass

from src.models.outcome import ProviderOutcome, TransientFailure


@dataclass(frozen=True)
class RetryAfter:
    delay: float


@dataclass(frozen=True)
class GiveUp:
    reason: str


RetryDecision = RetryAfter | GiveUp


class RetryPolicy:
    """Decides whether a failed provider submission is attempted again.

    Only ``TransientFailure`` outcomes are ever retried. Delays grow
    exponentially and are spread by a random jitter factor so that many
    clients recovering from the same outage do not retry in lockstep.
    """

    DEFAULT_MAX_ATTEMPTS = 3  # total, including the first submission
    DEFAULT_BASE_DELAY = 0.5
    DEFAULT_MULTIPLIER = 2.0
    DEFAULT_MAX_DELAY = 8.0
    DEFAULT_JITTER = 0.2

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        multiplier: float = DEFAULT_MULTIPLIER,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        rng: random.Random | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    def should_retry(self, outcome: ProviderOutcome) -> bool:
        return isinstance(outcome, TransientFailure)

    def has_attempts_remaining(self, attempt: int) -> bool:
        """``attempt`` is the number of submissions already made."""
        return attempt < self.max_attempts

    def backoff(self, attempt: int) -> float:
        """Un-jittered delay after the ``attempt``-th submission (1-based)."""
        delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def next_delay(self, attempt: int) -> float:
        delay = self.backoff(attempt)
        if self.jitter:
            delay *= self._rng.uniform(1 - self.jitter, 1 + self.jitter)
        return max(delay, 0.0)

    def decide(self, attempt: int, outcome: ProviderOutcome) -> RetryDecision:
        if not self.should_retry(outcome):
            return GiveUp(reason="not_retryable")
        if not self.has_attempts_remaining(attempt):
            return GiveUp(reason="attempts_exhausted")
        return RetryAfter(delay=self.next_delay(attempt))
