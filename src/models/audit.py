from dataclasses import asdict, dataclass
from datetime import datetime


@dataclass(frozen=True)
class OperationContext:
    """Per-call identifiers threaded through logs and audit events."""

    correlation_id: str | None = None
    user_id: str | None = None

    def as_log_extra(self) -> dict:
        return {"correlation_id": self.correlation_id, "user_id": self.user_id}


@dataclass(frozen=True)
class AuditEvent:
    transaction_id: str
    transaction_type: str
    amount: str  # decimal string
    currency: str
    status: str
    timestamp: datetime
    error_code: str | None = None
    provider_transaction_id: str | None = None
    related_transaction_id: str | None = None
    correlation_id: str | None = None
    user_id: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data
