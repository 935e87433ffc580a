from .audit import AuditEvent, OperationContext
from .errors import (
    DuplicateTransactionError,
    InvalidTransitionError,
    PaymentEngineError,
    PaymentError,
    TransactionTimeoutError,
    ValidationError,
)
from .money import Money
from .outcome import Accepted, Declined, MalformedResponse, ProviderOutcome, TransientFailure
from .payment_method import (
    BankAccountDetails,
    CardDetails,
    PaymentMethod,
    PaymentMethodType,
    WalletDetails,
)
from .transaction import Transaction, TransactionError, TransactionStatus, TransactionType

__all__ = [
    "Money", "OperationContext", "AuditEvent",
    "Transaction", "TransactionError", "TransactionStatus", "TransactionType",
    "PaymentMethod", "PaymentMethodType", "CardDetails", "BankAccountDetails", "WalletDetails",
    "ProviderOutcome", "Accepted", "Declined", "TransientFailure", "MalformedResponse",
    "PaymentEngineError", "ValidationError", "PaymentError", "TransactionTimeoutError",
    "DuplicateTransactionError", "InvalidTransitionError",
]
