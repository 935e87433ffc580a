import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from src.models.errors import InvalidTransitionError
from src.models.money import Money


class TransactionType(Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    CAPTURE = "capture"


class TransactionStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


@dataclass(frozen=True)
class TransactionError:
    code: str
    message: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_transaction_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Transaction:
    """One payment, refund or capture attempt.

    ``id`` doubles as the provider idempotency key. Status only moves
    forward: ``pending`` to exactly one terminal state.
    """

    type: TransactionType
    amount: Money
    id: str = field(default_factory=new_transaction_id)
    status: TransactionStatus = TransactionStatus.PENDING
    provider_transaction_id: str | None = None
    related_transaction_id: str | None = None
    error: TransactionError | None = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None
    attempts: int = 0

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise InvalidTransitionError(f"Transaction id is immutable ({self.__dict__['id']})")
        super().__setattr__(name, value)

    @property
    def currency(self) -> str:
        return self.amount.currency

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def _transition(self, status: TransactionStatus) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Transaction {self.id} is already {self.status.value}; cannot move to {status.value}",
            )
        self.status = status
        self.updated_at = max(_utcnow(), self.updated_at)

    def complete(self, provider_transaction_id: str) -> None:
        if not provider_transaction_id:
            raise InvalidTransitionError("A completed transaction needs a provider transaction id")
        self._transition(TransactionStatus.COMPLETED)
        self.provider_transaction_id = provider_transaction_id

    def fail(self, code: str, message: str) -> None:
        self._transition(TransactionStatus.FAILED)
        self.error = TransactionError(code=code, message=message)

    def cancel(self) -> None:
        self._transition(TransactionStatus.CANCELED)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": self.amount.to_wire(),
            "currency": self.amount.currency,
            "status": self.status.value,
            "provider_transaction_id": self.provider_transaction_id,
            "related_transaction_id": self.related_transaction_id,
            "error": (
                {"code": self.error.code, "message": self.error.message} if self.error else None
            ),
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "attempts": self.attempts,
        }
