from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import (
    MAX_EMAX,
    MAX_PREC,
    MIN_EMIN,
    ROUND_HALF_EVEN,
    Context,
    Decimal,
    DecimalException,
    Inexact,
    InvalidOperation,
    Overflow,
    Rounded,
)
from functools import total_ordering

from src.models.errors import ValidationError

_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")

# ISO 4217 minor-unit exponents that differ from the usual 2.
_ZERO_DECIMAL = {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
                 "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
_THREE_DECIMAL = {"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"}

# Exact arithmetic: sums, differences and products of finite decimals are
# computed without rounding; anything that would round is an error.
_EXACT = Context(
    prec=MAX_PREC,
    Emax=MAX_EMAX,
    Emin=MIN_EMIN,
    traps=[InvalidOperation, Inexact, Rounded, Overflow],
)
# Same range, but rounding is allowed; used only where rounding is asked for.
_ROUNDING = Context(prec=MAX_PREC, Emax=MAX_EMAX, Emin=MIN_EMIN)


def _exact(operation, *operands) -> Decimal:
    try:
        return operation(*operands)
    except DecimalException as e:
        raise ValidationError(
            f"Amount arithmetic would lose precision: {type(e).__name__}", code="invalid_amount",
        ) from None


def currency_exponent(currency: str) -> int:
    if currency in _ZERO_DECIMAL:
        return 0
    if currency in _THREE_DECIMAL:
        return 3
    return 2


def _to_decimal(value) -> Decimal:
    # bool is an int subclass; neither it nor float is an acceptable amount
    if isinstance(value, (bool, float)):
        raise ValidationError(
            f"Monetary amounts must not be binary floats: {value!r}", code="invalid_amount",
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"Malformed amount: {value!r}", code="invalid_amount") from None
    else:
        raise ValidationError(f"Unsupported amount type: {type(value).__name__}", code="invalid_amount")
    if not result.is_finite():
        raise ValidationError(f"Amount must be finite: {value!r}", code="invalid_amount")
    return result


@total_ordering
@dataclass(frozen=True)
class Money:
    """Exact decimal amount in a single currency."""

    amount: Decimal
    currency: str

    def __post_init__(self):
        if not isinstance(self.currency, str) or not _CURRENCY_RE.match(self.currency):
            raise ValidationError(f"Malformed currency code: {self.currency!r}", code="invalid_currency")
        object.__setattr__(self, "amount", _to_decimal(self.amount))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def of(cls, amount: str | int | Decimal, currency: str) -> Money:
        return cls(_to_decimal(amount), currency)

    @classmethod
    def from_minor_units(cls, units: int, currency: str) -> Money:
        if isinstance(units, bool) or not isinstance(units, int):
            raise ValidationError(f"Minor units must be an integer: {units!r}", code="invalid_amount")
        probe = cls(Decimal(0), currency)
        scaled = _exact(Decimal(units).scaleb, -currency_exponent(probe.currency), _EXACT)
        return cls(scaled, probe.currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(Decimal(0), currency)

    def _check_same_currency(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise ValidationError(
                f"Currency mismatch: {self.currency} vs {other.currency}", code="currency_mismatch",
            )

    def __add__(self, other: Money) -> Money:
        self._check_same_currency(other)
        return Money(_exact(_EXACT.add, self.amount, other.amount), self.currency)

    def __sub__(self, other: Money) -> Money:
        self._check_same_currency(other)
        return Money(_exact(_EXACT.subtract, self.amount, other.amount), self.currency)

    def __mul__(self, factor) -> Money:
        return Money(_exact(_EXACT.multiply, self.amount, _to_decimal(factor)), self.currency)

    __rmul__ = __mul__

    def __neg__(self) -> Money:
        return Money(_EXACT.minus(self.amount), self.currency)

    def __lt__(self, other: Money) -> bool:
        self._check_same_currency(other)
        return self.amount < other.amount

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_zero(self) -> bool:
        return self.amount == 0

    def quantize(self, rounding: str = ROUND_HALF_EVEN) -> Money:
        """Round to the currency's minor unit."""
        exp = Decimal(1).scaleb(-currency_exponent(self.currency))
        return Money(self.amount.quantize(exp, rounding=rounding, context=_ROUNDING), self.currency)

    def to_minor_units(self) -> int:
        scaled = _exact(self.amount.scaleb, currency_exponent(self.currency), _EXACT)
        if scaled != scaled.to_integral_value():
            raise ValidationError(
                f"{self} has fractional minor units", code="invalid_amount",
            )
        return int(scaled)

    def to_wire(self) -> str:
        """Canonical decimal string; preserves the amount's scale."""
        return format(self.amount, "f")

    def __str__(self) -> str:
        return f"{self.to_wire()} {self.currency}"
