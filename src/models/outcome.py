from dataclasses import dataclass


@dataclass(frozen=True)
class Accepted:
    provider_transaction_id: str


@dataclass(frozen=True)
class Declined:
    """Business rejection by the provider. Terminal, never retried."""

    code: str
    message: str


@dataclass(frozen=True)
class TransientFailure:
    """Network error, timeout, 5xx or rate limit. The only retryable outcome."""

    code: str
    message: str


@dataclass(frozen=True)
class MalformedResponse:
    detail: str


ProviderOutcome = Accepted | Declined | TransientFailure | MalformedResponse
