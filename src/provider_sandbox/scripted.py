import threading
from dataclasses import dataclass, field

from src.models.money import Money
from src.models.outcome import Accepted, ProviderOutcome


@dataclass
class GatewayCall:
    operation: str  # "payment" | "refund" | "capture"
    transaction_id: str
    amount: Money | None
    timeout: float | None
    reference: str | None = None  # original provider id for refunds/captures
    payment_method: dict | None = None  # masked only
    metadata: dict = field(default_factory=dict)


class ScriptedGateway:
    """In-process stand-in for ``ProviderGateway`` that replays queued outcomes.

    Once the script runs out every call is accepted. A script entry may be
    a callable taking the ``GatewayCall``, useful for advancing a fake
    clock or asserting on arguments mid-flight.
    """

    timeout_seconds = 30.0

    def __init__(self, outcomes: list | None = None):
        self._script = list(outcomes or [])
        self._calls: list[GatewayCall] = []
        self._lock = threading.Lock()

    def queue(self, *outcomes) -> "ScriptedGateway":
        with self._lock:
            self._script.extend(outcomes)
        return self

    def _next(self, call: GatewayCall) -> ProviderOutcome:
        with self._lock:
            self._calls.append(call)
            entry = self._script.pop(0) if self._script else None
            count = len(self._calls)
        if entry is None:
            return Accepted(provider_transaction_id=f"prov_{count}")
        if callable(entry):
            return entry(call)
        return entry

    def submit_payment(self, transaction_id, amount, payment_method, metadata=None, timeout=None):
        return self._next(GatewayCall(
            operation="payment",
            transaction_id=transaction_id,
            amount=amount,
            timeout=timeout,
            payment_method=payment_method.masked(),
            metadata=dict(metadata or {}),
        ))

    def submit_refund(self, transaction_id, original_provider_id, amount=None, timeout=None):
        return self._next(GatewayCall(
            operation="refund",
            transaction_id=transaction_id,
            amount=amount,
            timeout=timeout,
            reference=original_provider_id,
        ))

    def submit_capture(self, transaction_id, authorization_id, amount=None, timeout=None):
        return self._next(GatewayCall(
            operation="capture",
            transaction_id=transaction_id,
            amount=amount,
            timeout=timeout,
            reference=authorization_id,
        ))

    @property
    def calls(self) -> list[GatewayCall]:
        with self._lock:
            return list(self._calls)

    def call_count(self, operation: str | None = None) -> int:
        return len([c for c in self.calls if operation is None or c.operation == operation])
