import logging
import threading
from typing import Protocol

from src.models.audit import AuditEvent, OperationContext
from src.models.transaction import Transaction

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


def build_event(transaction: Transaction, context: OperationContext | None = None) -> AuditEvent:
    """Snapshot a transaction into an audit event. No payment-method data is copied."""
    context = context or OperationContext()
    return AuditEvent(
        transaction_id=transaction.id,
        transaction_type=transaction.type.value,
        amount=transaction.amount.to_wire(),
        currency=transaction.amount.currency,
        status=transaction.status.value,
        timestamp=transaction.updated_at,
        error_code=transaction.error.code if transaction.error else None,
        provider_transaction_id=transaction.provider_transaction_id,
        related_transaction_id=transaction.related_transaction_id,
        correlation_id=context.correlation_id,
        user_id=context.user_id,
    )


class AuditLog:
    """Thread-safe in-memory audit trail, mirrored to the ``logging`` module."""

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.info(
            "audit transaction=%s type=%s status=%s amount=%s %s",
            event.transaction_id,
            event.transaction_type,
            event.status,
            event.amount,
            event.currency,
            extra={"audit": event.to_dict()},
        )

    def get_events(self, transaction_id: str | None = None) -> list[AuditEvent]:
        with self._lock:
            if transaction_id is None:
                return list(self._events)
            return [e for e in self._events if e.transaction_id == transaction_id]

    def get_failed_events(self) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self._events if e.status == "failed"]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
