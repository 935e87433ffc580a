import copy
import threading
from typing import Protocol

from src.models.errors import DuplicateTransactionError, InvalidTransitionError, ValidationError
from src.models.money import Money
from src.models.transaction import Transaction, TransactionStatus, TransactionType

# Statuses whose amount counts against the parent's remainder. Pending
# children count too: their outcome is unknown and may still settle.
_CONSUMING = {TransactionStatus.PENDING, TransactionStatus.COMPLETED}


class TransactionLedger(Protocol):
    def create(self, transaction: Transaction) -> None: ...

    def get(self, transaction_id: str) -> Transaction | None: ...

    def record_outcome(self, transaction: Transaction) -> None: ...

    def record_attempts(self, transaction_id: str, attempts: int) -> None: ...

    def refundable_remainder(self, transaction_id: str) -> Money: ...

    def capturable_remainder(self, authorization_id: str) -> Money: ...

    def list_related(self, transaction_id: str) -> list[Transaction]: ...


class InMemoryLedger:
    """Thread-safe transaction store that also tracks refund and capture remainders.

    Each id gets its terminal outcome written exactly once. While it is
    still ``pending`` only its attempt count may change. Records are
    copied on the way in and out so callers never share mutable state
    with the store.
    """

    def __init__(self):
        self._records: dict[str, Transaction] = {}
        self._children: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def create(self, transaction: Transaction) -> None:
        if transaction.status is not TransactionStatus.PENDING:
            raise InvalidTransitionError(f"Transaction {transaction.id} must be created pending")

        with self._lock:
            if transaction.id in self._records:
                raise DuplicateTransactionError(f"Transaction {transaction.id} already exists")

            parent_id = transaction.related_transaction_id
            if parent_id is not None:
                if parent_id not in self._records:
                    raise ValidationError(
                        f"Related transaction {parent_id} does not exist", code="unknown_transaction",
                    )
                # Re-checked under the lock so concurrent children cannot overdraw.
                if transaction.type is TransactionType.REFUND:
                    remainder = self._refund_remainder(parent_id)
                else:
                    remainder = self._remainder(parent_id, transaction.type)
                if transaction.amount > remainder:
                    raise ValidationError(
                        f"{transaction.type.value.capitalize()} of {transaction.amount} exceeds "
                        f"remaining {remainder}",
                        code=f"{transaction.type.value}_exceeds_remainder",
                    )
                self._children.setdefault(parent_id, []).append(transaction.id)

            self._records[transaction.id] = copy.deepcopy(transaction)

    def get(self, transaction_id: str) -> Transaction | None:
        with self._lock:
            record = self._records.get(transaction_id)
            return copy.deepcopy(record) if record is not None else None

    def record_outcome(self, transaction: Transaction) -> None:
        if not transaction.is_terminal:
            raise InvalidTransitionError(f"Transaction {transaction.id} has no terminal outcome yet")

        with self._lock:
            stored = self._records.get(transaction.id)
            if stored is None:
                raise InvalidTransitionError(f"Transaction {transaction.id} was never created")
            if stored.is_terminal:
                raise InvalidTransitionError(
                    f"Transaction {transaction.id} already recorded as {stored.status.value}",
                )
            self._records[transaction.id] = copy.deepcopy(transaction)

    def record_attempts(self, transaction_id: str, attempts: int) -> None:
        with self._lock:
            stored = self._records.get(transaction_id)
            if stored is None:
                raise InvalidTransitionError(f"Transaction {transaction_id} was never created")
            if stored.is_terminal:
                raise InvalidTransitionError(
                    f"Transaction {transaction_id} already recorded as {stored.status.value}",
                )
            stored.attempts = max(stored.attempts, attempts)

    def refundable_remainder(self, transaction_id: str) -> Money:
        with self._lock:
            self._require(transaction_id)
            return self._refund_remainder(transaction_id)

    def capturable_remainder(self, authorization_id: str) -> Money:
        with self._lock:
            self._require(authorization_id)
            return self._remainder(authorization_id, TransactionType.CAPTURE)

    def list_related(self, transaction_id: str) -> list[Transaction]:
        with self._lock:
            return [
                copy.deepcopy(self._records[child_id])
                for child_id in self._children.get(transaction_id, [])
            ]

    def _require(self, transaction_id: str) -> Transaction:
        record = self._records.get(transaction_id)
        if record is None:
            raise ValidationError(f"Transaction {transaction_id} does not exist", code="unknown_transaction")
        return record

    def _remainder(self, parent_id: str, child_type: TransactionType) -> Money:
        parent = self._records[parent_id]
        remainder = parent.amount
        for child_id in self._children.get(parent_id, []):
            child = self._records[child_id]
            if child.type is child_type and child.status in _CONSUMING:
                remainder = remainder - child.amount
        return remainder

    def _refund_remainder(self, transaction_id: str) -> Money:
        """Refundable amount left on a payment or a capture.

        A payment and its captures share one pool: the payment's amount
        less every consuming refund against the payment or any of its
        captures. A capture is further limited by its own amount.
        """
        record = self._records[transaction_id]
        root_id = transaction_id
        if record.type is TransactionType.CAPTURE and record.related_transaction_id in self._records:
            root_id = record.related_transaction_id

        pool = self._remainder(root_id, TransactionType.REFUND)
        for child_id in self._children.get(root_id, []):
            child = self._records[child_id]
            if child.type is TransactionType.CAPTURE:
                pool = pool - (child.amount - self._remainder(child_id, TransactionType.REFUND))

        if root_id == transaction_id:
            return pool
        return min(pool, self._remainder(transaction_id, TransactionType.REFUND))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
