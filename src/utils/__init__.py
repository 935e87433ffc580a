from .factories import PaymentMethodFactory, TransactionFactory

__all__ = [
    "PaymentMethodFactory", "TransactionFactory",
]
