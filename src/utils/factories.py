import uuid
from datetime import datetime, timezone

from src.models.money import Money
from src.models.payment_method import (
    BankAccountDetails,
    CardDetails,
    PaymentMethod,
    PaymentMethodType,
    WalletDetails,
)
from src.models.transaction import Transaction, TransactionStatus, TransactionType

TEST_CARDS = {
    "visa": "4242424242424242",
    "mastercard": "5555555555554444",
    "amex": "378282246310005",
    "discover": "6011111111111117",
}


class PaymentMethodFactory:
    """Factory for payment methods that pass validation by default."""

    @staticmethod
    def card(brand: str = "visa", **overrides) -> PaymentMethod:
        defaults = {
            "number": TEST_CARDS[brand],
            "expiry_month": 12,
            "expiry_year": datetime.now(timezone.utc).year + 3,
            "cvv": "1234" if brand == "amex" else "123",
            "cardholder_name": "Test Holder",
        }
        defaults.update(overrides)
        return PaymentMethod(type=PaymentMethodType.CARD, card=CardDetails(**defaults))

    @staticmethod
    def bank_account(**overrides) -> PaymentMethod:
        defaults = {
            "account_number": "000123456789",
            "routing_number": "110000000",
            "account_type": "checking",
            "account_holder_name": "Test Holder",
        }
        defaults.update(overrides)
        return PaymentMethod(
            type=PaymentMethodType.BANK_ACCOUNT, bank_account=BankAccountDetails(**defaults),
        )

    @staticmethod
    def wallet(provider: str = "apple_pay", token: str = "tok_wallet_test") -> PaymentMethod:
        return PaymentMethod(
            type=PaymentMethodType.WALLET, wallet=WalletDetails(provider=provider, token=token),
        )


class TransactionFactory:
    """Factory for Transaction records with sensible defaults."""

    @staticmethod
    def create(**overrides) -> Transaction:
        defaults = {
            "type": TransactionType.PAYMENT,
            "amount": Money.of("100.00", "USD"),
            "metadata": {},
        }
        defaults.update(overrides)
        return Transaction(**defaults)

    @staticmethod
    def completed_payment(amount: str = "100.00", currency: str = "USD", **overrides) -> Transaction:
        """A payment already acknowledged by the provider, ready to refund or capture."""
        txn = TransactionFactory.create(amount=Money.of(amount, currency), **overrides)
        txn.complete(f"prov_{uuid.uuid4().hex[:12]}")
        return txn

    @staticmethod
    def seed(ledger, transaction: Transaction) -> Transaction:
        """Store a transaction in a ledger the way the processor would: create, then finalize."""
        if transaction.status is TransactionStatus.PENDING:
            ledger.create(transaction)
            return transaction
        pending = Transaction(
            type=transaction.type,
            amount=transaction.amount,
            id=transaction.id,
            related_transaction_id=transaction.related_transaction_id,
            metadata=transaction.metadata,
            created_at=transaction.created_at,
        )
        ledger.create(pending)
        ledger.record_outcome(transaction)
        return transaction
