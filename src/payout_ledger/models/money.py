"""Money — fixed-point currency amounts.

Amounts are held as an integer count of the currency's minor unit
(cents for USD, yen for JPY, fils for KWD). Balance arithmetic never
touches binary floating point, so repeated commission credits cannot
drift. Percentages are applied with Decimal and rounded half-up back to
the minor unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from payout_ledger.errors import CurrencyMismatch, InsufficientFunds

# ISO-4217 minor-unit exponents. Anything not listed uses 2.
MINOR_UNIT_EXPONENTS: dict[str, int] = {
    "BHD": 3,
    "CLP": 0,
    "IQD": 3,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "UGX": 0,
    "VND": 0,
}

Numeric = Union[Decimal, int, str]


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get(currency, 2)


def to_decimal(value: Union[Numeric, float]) -> Decimal:
    """Coerce config/user input to Decimal (floats go through str)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class Money:
    """An amount of a single currency in integer minor units.

    Usage:
        price = Money.of("100.00", "USD")     # 10000 minor units
        fee = price.multiply_by_percent("3")  # $3.00
        net = price.subtract(fee)             # $97.00
    """

    amount_minor: int
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount_minor, int) or isinstance(self.amount_minor, bool):
            raise TypeError(
                f"amount_minor must be int, got {type(self.amount_minor).__name__}"
            )
        if len(self.currency) != 3 or not self.currency.isalpha() or not self.currency.isupper():
            raise ValueError(f"Not an ISO-4217 currency code: {self.currency!r}")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def of(cls, amount: Union[Numeric, float], currency: str) -> Money:
        """Build from a major-unit amount ("12.50" USD → 1250 minor units)."""
        exponent = minor_unit_exponent(currency)
        scaled = (to_decimal(amount) * (Decimal(10) ** exponent)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP,
        )
        return cls(int(scaled), currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(0, currency)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount_minor + other.amount_minor, self.currency)

    def subtract(self, other: Money, non_negative: bool = False) -> Money:
        """Subtract other from self.

        With non_negative=True a negative result raises InsufficientFunds
        instead of producing a negative amount.
        """
        self._check_currency(other)
        result = self.amount_minor - other.amount_minor
        if non_negative and result < 0:
            raise InsufficientFunds(str(other), str(self))
        return Money(result, self.currency)

    def multiply_by_percent(self, percent: Union[Numeric, float]) -> Money:
        """Return percent% of this amount, rounded half-up to the minor unit."""
        raw = Decimal(self.amount_minor) * to_decimal(percent) / Decimal(100)
        return Money(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), self.currency)

    def compare(self, other: Money) -> int:
        """Three-way comparison: -1, 0 or 1."""
        self._check_currency(other)
        if self.amount_minor < other.amount_minor:
            return -1
        if self.amount_minor > other.amount_minor:
            return 1
        return 0

    def __lt__(self, other: Money) -> bool:
        return self.compare(other) < 0

    def __le__(self, other: Money) -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: Money) -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: Money) -> bool:
        return self.compare(other) >= 0

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return self.amount_minor == 0

    @property
    def is_negative(self) -> bool:
        return self.amount_minor < 0

    def to_decimal(self) -> Decimal:
        """Major-unit Decimal with the currency's exact precision."""
        exponent = minor_unit_exponent(self.currency)
        return Decimal(self.amount_minor).scaleb(-exponent)

    def to_dict(self) -> dict[str, object]:
        return {"amount_minor": self.amount_minor, "currency": self.currency}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Money:
        return cls(int(data["amount_minor"]), str(data["currency"]))

    def __str__(self) -> str:
        return f"{self.to_decimal()} {self.currency}"

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatch(self.currency, other.currency)
