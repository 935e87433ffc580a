import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from src.models.payment_method import (
    BankAccountDetails,
    CardDetails,
    PaymentMethod,
    PaymentMethodType,
    WalletDetails,
)

logger = logging.getLogger(__name__)


class CardBrand(Enum):
    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    DISCOVER = "discover"
    UNKNOWN = "unknown"


_BRAND_PATTERNS = [
    (CardBrand.VISA, re.compile(r"^4\d{12}(\d{3})?$")),
    (CardBrand.MASTERCARD, re.compile(
        r"^(5[1-5]\d{14}|2(2(2[1-9]|[3-9]\d)|[3-6]\d{2}|7([0-1]\d|20))\d{12})$"
    )),
    (CardBrand.AMEX, re.compile(r"^3[47]\d{13}$")),
    (CardBrand.DISCOVER, re.compile(r"^6(?:011|5\d{2})\d{12}$")),
]

WALLET_PROVIDERS = {"apple_pay", "google_pay", "paypal"}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    card_brand: CardBrand | None = None


def _clean(number: str) -> str:
    return re.sub(r"\s+", "", number or "")


class CreditCardValidator:
    """Structural checks on card details. Never logs the full number or CVV."""

    @staticmethod
    def detect_brand(number: str) -> CardBrand:
        clean = _clean(number)
        for brand, pattern in _BRAND_PATTERNS:
            if pattern.match(clean):
                return brand
        return CardBrand.UNKNOWN

    @staticmethod
    def luhn_valid(number: str) -> bool:
        clean = _clean(number)
        if not clean.isdigit():
            return False
        total = 0
        for i, ch in enumerate(reversed(clean)):
            digit = int(ch)
            if i % 2 == 1:
                digit *= 2
                if digit > 9:
                    digit -= 9
            total += digit
        return total % 10 == 0

    @staticmethod
    def mask_number(number: str) -> str:
        clean = _clean(number)
        return "*" * max(len(clean) - 4, 0) + clean[-4:]

    @classmethod
    def format_number(cls, number: str) -> str:
        """Group digits for display: 4-6-5 for Amex, blocks of 4 otherwise."""
        clean = _clean(number)
        if cls.detect_brand(clean) is CardBrand.AMEX:
            return f"{clean[:4]} {clean[4:10]} {clean[10:]}"
        return " ".join(clean[i:i + 4] for i in range(0, len(clean), 4))

    @classmethod
    def validate(cls, card: CardDetails, today: date | None = None) -> ValidationResult:
        today = today or date.today()
        errors = []
        clean = _clean(card.number)

        if not clean:
            errors.append("Card number is required")
        elif not clean.isdigit():
            errors.append("Card number must contain only digits")
        elif not 12 <= len(clean) <= 19:
            errors.append("Card number has an invalid length")
        elif not cls.luhn_valid(clean):
            errors.append("Card number failed checksum validation")

        if not isinstance(card.expiry_month, int) or not 1 <= card.expiry_month <= 12:
            errors.append("Invalid expiry month")
        elif not isinstance(card.expiry_year, int) or (card.expiry_year, card.expiry_month) < (today.year, today.month):
            errors.append("Card has expired")

        brand = cls.detect_brand(clean)
        cvv = (card.cvv or "").strip()
        if not cvv:
            errors.append("CVV is required")
        elif not cvv.isdigit():
            errors.append("CVV must contain only digits")
        elif brand is CardBrand.AMEX and len(cvv) != 4:
            errors.append("American Express cards require a 4-digit CVV")
        elif brand is not CardBrand.AMEX and len(cvv) != 3:
            errors.append("CVV must be 3 digits")

        if errors:
            logger.warning(
                "Card validation failed for %s: %s", cls.mask_number(clean), "; ".join(errors),
            )
        return ValidationResult(is_valid=not errors, errors=errors, card_brand=brand)


class PaymentMethodValidator:
    """Validates any supported payment method before a transaction is created."""

    def __init__(self, today: date | None = None):
        self._today = today

    def validate(self, method: PaymentMethod) -> ValidationResult:
        if not isinstance(method, PaymentMethod):
            return ValidationResult(is_valid=False, errors=["Payment method is required"])

        details = {
            PaymentMethodType.CARD: method.card,
            PaymentMethodType.BANK_ACCOUNT: method.bank_account,
            PaymentMethodType.WALLET: method.wallet,
        }[method.type]
        if details is None:
            return ValidationResult(
                is_valid=False, errors=[f"Missing {method.type.value} details"],
            )

        if isinstance(details, CardDetails):
            return CreditCardValidator.validate(details, today=self._today)
        if isinstance(details, BankAccountDetails):
            return self._validate_bank_account(details)
        return self._validate_wallet(details)

    @staticmethod
    def _validate_bank_account(account: BankAccountDetails) -> ValidationResult:
        errors = []
        if not account.account_number.isdigit():
            errors.append("Account number must contain only digits")
        if not re.fullmatch(r"\d{9}", account.routing_number or ""):
            errors.append("Routing number must be 9 digits")
        if account.account_type not in ("checking", "savings"):
            errors.append("Account type must be checking or savings")
        if not (account.account_holder_name or "").strip():
            errors.append("Account holder name is required")
        return ValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def _validate_wallet(wallet: WalletDetails) -> ValidationResult:
        errors = []
        if wallet.provider not in WALLET_PROVIDERS:
            errors.append(f"Unsupported wallet provider: {wallet.provider}")
        if not (wallet.token or "").strip():
            errors.append("Wallet token is required")
        return ValidationResult(is_valid=not errors, errors=errors)
