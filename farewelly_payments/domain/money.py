"""Integer minor-unit money with explicit half-up rounding"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from farewelly_payments.config import settings
from farewelly_payments.domain.exceptions import InvalidAmount

DEFAULT_CURRENCY = settings.currency

Rate = Union[Decimal, int, float, str]


def to_decimal(value: Rate) -> Decimal:
    """Convert a rate to Decimal via its string form so 0.029 stays 0.029"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole cent, halves away from zero"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Money:
    """Amount in minor units (cents) plus ISO 4217 currency code"""

    amount: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        # bool is an int subclass; floats never enter the money path
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise InvalidAmount(f"Money amount must be integer minor units, got {self.amount!r}")
        if len(self.currency) != 3 or not self.currency.isalpha() or not self.currency.isupper():
            raise InvalidAmount(f"Invalid currency code: {self.currency!r}")

    @classmethod
    def of(cls, value: Union["Money", int], currency: str = DEFAULT_CURRENCY) -> "Money":
        """Accept either Money or bare minor units in the default currency"""
        if isinstance(value, Money):
            return value
        return cls(value, currency)

    @classmethod
    def from_decimal_string(cls, value: str, currency: str = DEFAULT_CURRENCY) -> "Money":
        """Parse a major-unit string such as "10.00" (Mollie amount format)"""
        try:
            cents = Decimal(value) * 100
        except ArithmeticError as e:
            raise InvalidAmount(f"Invalid decimal amount: {value!r}") from e
        if cents != cents.to_integral_value():
            raise InvalidAmount(f"Amount has sub-cent precision: {value!r}")
        return cls(int(cents), currency.upper())

    def to_decimal_string(self) -> str:
        """Render as a major-unit string with two decimals"""
        return str((Decimal(self.amount) / 100).quantize(Decimal("0.01")))

    def scale(self, factor: Rate) -> "Money":
        """Multiply by a rate, rounding half-up to whole cents"""
        return Money(round_half_up(Decimal(self.amount) * to_decimal(factor)), self.currency)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise InvalidAmount(f"Currency mismatch: {self.currency} vs {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    def to_dict(self) -> dict:
        return {"amount": self.amount, "currency": self.currency}

    def __str__(self) -> str:
        return f"{self.to_decimal_string()} {self.currency}"
