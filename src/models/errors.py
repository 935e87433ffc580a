from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.models.transaction import Transaction


class PaymentEngineError(Exception):
    """Base class for every error raised out of the payment engine."""

    code = "payment_engine_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(PaymentEngineError):
    """Input rejected locally. Nothing was submitted to the provider."""

    code = "validation_error"

    def __init__(self, message: str, code: str | None = None, errors: list[str] | tuple = ()):
        super().__init__(message, code)
        self.errors = list(errors)


class DuplicateTransactionError(PaymentEngineError):
    code = "duplicate_transaction"


class InvalidTransitionError(PaymentEngineError):
    code = "invalid_transition"


# Stable, user-safe messages. Provider text never reaches the caller through str().
SAFE_MESSAGES = {
    "card_declined": "The card was declined.",
    "insufficient_funds": "The payment method has insufficient funds.",
    "expired_card": "The card has expired.",
    "retries_exhausted": "The payment provider is temporarily unavailable.",
    "malformed_provider_response": "The payment provider returned an unexpected response.",
}
DEFAULT_SAFE_MESSAGE = "The payment could not be processed."


class PaymentError(PaymentEngineError):
    """Terminal failure of a provider submission.

    ``str(error)`` is always a stable, display-safe message keyed by
    ``code``. The provider's own text is kept in ``provider_message`` for
    audit purposes only.
    """

    code = "payment_error"

    def __init__(
        self,
        code: str,
        transaction: Transaction | None = None,
        provider_message: str | None = None,
    ):
        super().__init__(SAFE_MESSAGES.get(code, DEFAULT_SAFE_MESSAGE), code)
        self.transaction = transaction
        self.provider_message = provider_message


class TransactionTimeoutError(PaymentEngineError, TimeoutError):
    """The overall deadline elapsed before a terminal outcome was reached.

    The transaction is left ``pending``. Re-drive it under the same id,
    never resubmit with a new one.
    """

    code = "deadline_exceeded"

    def __init__(self, transaction: Transaction, attempts: int):
        super().__init__(
            f"Deadline exceeded for transaction {transaction.id} after {attempts} attempt(s)",
        )
        self.transaction = transaction
        self.attempts = attempts
