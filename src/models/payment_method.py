from dataclasses import dataclass, field
from enum import Enum


class PaymentMethodType(Enum):
    CARD = "card"
    BANK_ACCOUNT = "bank_account"
    WALLET = "wallet"


def _last4(value: str) -> str:
    digits = "".join(ch for ch in value if ch.isdigit())
    return digits[-4:]


@dataclass
class CardDetails:
    number: str = field(repr=False)
    expiry_month: int
    expiry_year: int
    cvv: str = field(repr=False)
    cardholder_name: str | None = None

    @property
    def last4(self) -> str:
        return _last4(self.number)


@dataclass
class BankAccountDetails:
    account_number: str = field(repr=False)
    routing_number: str
    account_type: str  # "checking" | "savings"
    account_holder_name: str

    @property
    def last4(self) -> str:
        return _last4(self.account_number)


@dataclass
class WalletDetails:
    provider: str  # "apple_pay" | "google_pay" | "paypal"
    token: str = field(repr=False)


@dataclass
class PaymentMethod:
    """Instrument a payment is charged to.

    Forwarded to the provider as an opaque structure by ``to_wire``. Only
    ``masked`` output may be logged or attached to errors and audit events.
    """

    type: PaymentMethodType
    card: CardDetails | None = None
    bank_account: BankAccountDetails | None = None
    wallet: WalletDetails | None = None

    def to_wire(self) -> dict:
        wire: dict = {"type": self.type.value}
        if self.card is not None:
            wire["card"] = {
                "number": self.card.number.replace(" ", ""),
                "exp_month": self.card.expiry_month,
                "exp_year": self.card.expiry_year,
                "cvc": self.card.cvv,
            }
            if self.card.cardholder_name:
                wire["card"]["name"] = self.card.cardholder_name
        if self.bank_account is not None:
            wire["bank_account"] = {
                "account_number": self.bank_account.account_number,
                "routing_number": self.bank_account.routing_number,
                "account_type": self.bank_account.account_type,
                "account_holder_name": self.bank_account.account_holder_name,
            }
        if self.wallet is not None:
            wire["wallet"] = {"provider": self.wallet.provider, "token": self.wallet.token}
        return wire

    def masked(self) -> dict:
        masked: dict = {"type": self.type.value}
        if self.card is not None:
            masked["last4"] = self.card.last4
            masked["exp_month"] = self.card.expiry_month
            masked["exp_year"] = self.card.expiry_year
        elif self.bank_account is not None:
            masked["last4"] = self.bank_account.last4
            masked["account_type"] = self.bank_account.account_type
        elif self.wallet is not None:
            masked["provider"] = self.wallet.provider
        return masked
