from enum import Enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime
from typing import Any, Union

Number = Union[Decimal, int, float, str]


class Currency(Enum):
    """Supported currencies. Every monetary value carries one of these."""

    USD = "USD"
    CAD = "CAD"
    EUR = "EUR"
    TWD = "TWD"
    SGD = "SGD"
    AUD = "AUD"
    JPY = "JPY"
    KRW = "KRW"
    GBP = "GBP"
    BRL = "BRL"
    CNY = "CNY"
    HKD = "HKD"
    MXN = "MXN"
    ZAR = "ZAR"
    CHF = "CHF"
    THB = "THB"

    @property
    def info(self) -> "CurrencyInfo":
        return CURRENCY_INFO[self]

    @property
    def decimals(self) -> int:
        return CURRENCY_INFO[self].decimals

    @property
    def symbol(self) -> str:
        return CURRENCY_INFO[self].symbol


@dataclass(frozen=True)
class CurrencyInfo:
    """Display and precision metadata for a currency."""

    symbol: str
    decimals: int
    name: str


CURRENCY_INFO: dict[Currency, CurrencyInfo] = {
    Currency.USD: CurrencyInfo("$", 2, "US Dollar"),
    Currency.CAD: CurrencyInfo("C$", 2, "Canadian Dollar"),
    Currency.EUR: CurrencyInfo("€", 2, "Euro"),
    Currency.TWD: CurrencyInfo("NT$", 2, "New Taiwan Dollar"),
    Currency.SGD: CurrencyInfo("S$", 2, "Singapore Dollar"),
    Currency.AUD: CurrencyInfo("A$", 2, "Australian Dollar"),
    Currency.JPY: CurrencyInfo("¥", 0, "Japanese Yen"),
    Currency.KRW: CurrencyInfo("₩", 0, "South Korean Won"),
    Currency.GBP: CurrencyInfo("£", 2, "British Pound"),
    Currency.BRL: CurrencyInfo("R$", 2, "Brazilian Real"),
    Currency.CNY: CurrencyInfo("¥", 2, "Chinese Yuan"),
    Currency.HKD: CurrencyInfo("HK$", 2, "Hong Kong Dollar"),
    Currency.MXN: CurrencyInfo("MX$", 2, "Mexican Peso"),
    Currency.ZAR: CurrencyInfo("R", 2, "South African Rand"),
    Currency.CHF: CurrencyInfo("CHF", 2, "Swiss Franc"),
    Currency.THB: CurrencyInfo("฿", 2, "Thai Baht"),
}


class CurrencyMismatchError(ValueError):
    """Raised when two amounts in different currencies are combined or compared."""


def to_currency(code: Union["Currency", str]) -> Currency:
    """Resolve a Currency from an enum member or an ISO code string.

    Raises:
        ValueError: If the code is not a supported currency.
    """
    if isinstance(code, Currency):
        return code
    try:
        return Currency(str(code).strip().upper())
    except ValueError:
        raise ValueError(f"Invalid currency code: {code}") from None


def to_decimal(value: Number, what: str = "amount") -> Decimal:
    """Convert a number to a finite Decimal.

    Floats go through ``str`` so 0.1 stays 0.1 rather than its binary expansion.

    Raises:
        ValueError: If the value cannot be parsed or is NaN/infinite.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid {what}: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid {what}: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Invalid {what}: {value!r}")
    return result


class CurrencyAmount:
    """An immutable amount of money in a single currency.

    The amount is rounded half-up to the currency's precision when the value is
    created, so every intermediate result of arithmetic is a valid amount of that
    currency. Arithmetic and ordering against another currency raise
    CurrencyMismatchError; equality is currency-aware and never raises.
    """

    __slots__ = ("_amount", "_currency")

    def __init__(self, amount: Number, currency: Union[Currency, str]):
        """Create an amount.

        Args:
            amount: The numeric value. Decimal, int, float or numeric string.
            currency: A Currency or ISO code.

        Raises:
            ValueError: If the currency is unknown or the amount is not finite.
        """
        currency = to_currency(currency)
        value = to_decimal(amount)
        quantum = Decimal(1).scaleb(-currency.decimals)
        object.__setattr__(self, "_currency", currency)
        object.__setattr__(self, "_amount", value.quantize(quantum, rounding=ROUND_HALF_UP))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("CurrencyAmount is immutable")

    @property
    def amount(self) -> Decimal:
        return self._amount

    @property
    def currency(self) -> Currency:
        return self._currency

    @property
    def currency_info(self) -> CurrencyInfo:
        return CURRENCY_INFO[self._currency]

    def _ensure_same_currency(self, other: "CurrencyAmount") -> None:
        if not isinstance(other, CurrencyAmount):
            raise TypeError(f"Expected CurrencyAmount, got {type(other).__name__}")
        if self._currency is not other._currency:
            raise CurrencyMismatchError(
                f"Cannot perform operation on different currencies: "
                f"{self._currency.value} and {other._currency.value}"
            )

    # Arithmetic

    def add(self, other: "CurrencyAmount") -> "CurrencyAmount":
        self._ensure_same_currency(other)
        return CurrencyAmount(self._amount + other._amount, self._currency)

    def subtract(self, other: "CurrencyAmount") -> "CurrencyAmount":
        self._ensure_same_currency(other)
        return CurrencyAmount(self._amount - other._amount, self._currency)

    def multiply(self, scalar: Number) -> "CurrencyAmount":
        factor = to_decimal(scalar, "scalar")
        return CurrencyAmount(self._amount * factor, self._currency)

    def divide(self, scalar: Number) -> "CurrencyAmount":
        divisor = to_decimal(scalar, "divisor")
        if divisor == 0:
            raise ValueError(f"Invalid divisor: {scalar!r}")
        return CurrencyAmount(self._amount / divisor, self._currency)

    def negate(self) -> "CurrencyAmount":
        return CurrencyAmount(-self._amount, self._currency)

    def abs(self) -> "CurrencyAmount":
        return CurrencyAmount(abs(self._amount), self._currency)

    __add__ = add
    __sub__ = subtract
    __mul__ = multiply
    __truediv__ = divide
    __neg__ = negate
    __abs__ = abs

    def __rmul__(self, scalar: Number) -> "CurrencyAmount":
        return self.multiply(scalar)

    # Comparison

    def equals(self, other: "CurrencyAmount") -> bool:
        return (
            isinstance(other, CurrencyAmount)
            and self._currency is other._currency
            and self._amount == other._amount
        )

    def greater_than(self, other: "CurrencyAmount") -> bool:
        self._ensure_same_currency(other)
        return self._amount > other._amount

    def less_than(self, other: "CurrencyAmount") -> bool:
        self._ensure_same_currency(other)
        return self._amount < other._amount

    def greater_than_or_equal(self, other: "CurrencyAmount") -> bool:
        self._ensure_same_currency(other)
        return self._amount >= other._amount

    def less_than_or_equal(self, other: "CurrencyAmount") -> bool:
        self._ensure_same_currency(other)
        return self._amount <= other._amount

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CurrencyAmount):
            return NotImplemented
        return self.equals(other)

    def __hash__(self) -> int:
        return hash((self._amount, self._currency))

    __gt__ = greater_than
    __lt__ = less_than
    __ge__ = greater_than_or_equal
    __le__ = less_than_or_equal

    def is_zero(self) -> bool:
        return self._amount == 0

    def is_positive(self) -> bool:
        return self._amount > 0

    def is_negative(self) -> bool:
        return self._amount < 0

    # Conversion and formatting

    def convert_to(self, target_currency: Union[Currency, str], exchange_rate: Number) -> "CurrencyAmount":
        """Convert to another currency at an explicit rate.

        Args:
            target_currency: The currency to convert into.
            exchange_rate: Units of target currency per unit of this currency.

        Returns:
            The converted amount. Converting to the same currency returns self.

        Raises:
            ValueError: If the rate is not a positive finite number.
        """
        target = to_currency(target_currency)
        if target is self._currency:
            return self
        try:
            rate = to_decimal(exchange_rate, "exchange rate")
        except ValueError:
            raise ValueError(f"Invalid exchange rate: {exchange_rate!r}") from None
        if rate <= 0:
            raise ValueError(f"Invalid exchange rate: {exchange_rate!r}")
        return CurrencyAmount(self._amount * rate, target)

    def format(self, show_symbol: bool = True, show_code: bool = False, precision: int | None = None) -> str:
        """Render as ``"<symbol> <amount> <code>"`` with fixed precision."""
        if precision is None:
            precision = self._currency.decimals
        quantum = Decimal(1).scaleb(-precision)
        parts = [f"{self._amount.quantize(quantum, rounding=ROUND_HALF_UP):f}"]
        if show_symbol:
            parts.insert(0, self._currency.symbol)
        if show_code:
            parts.append(self._currency.value)
        return " ".join(parts)

    def to_dict(self) -> dict[str, str]:
        return {"amount": str(self._amount), "currency": self._currency.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CurrencyAmount":
        return cls(data["amount"], data["currency"])

    @classmethod
    def zero(cls, currency: Union[Currency, str]) -> "CurrencyAmount":
        return cls(0, currency)

    @classmethod
    def parse(cls, value: str, currency: Union[Currency, str]) -> "CurrencyAmount":
        """Parse a numeric string such as ``"1,234.50"``.

        Raises:
            ValueError: If no amount can be parsed from the text.
        """
        cleaned = str(value).strip().replace(",", "")
        try:
            amount = to_decimal(cleaned)
        except ValueError:
            raise ValueError(f"Cannot parse amount from: {value!r}") from None
        return cls(amount, currency)

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"CurrencyAmount(amount={self._amount}, currency={self._currency.value})"


def sum_amounts(amounts: list[CurrencyAmount]) -> CurrencyAmount:
    """Sum a non-empty list of amounts that share one currency.

    Raises:
        ValueError: If the list is empty.
        CurrencyMismatchError: If the amounts mix currencies.
    """
    if not amounts:
        raise ValueError("Cannot sum empty list of amounts")
    currency = amounts[0].currency
    for amount in amounts:
        if amount.currency is not currency:
            raise CurrencyMismatchError(
                f"Cannot sum amounts with different currencies: {currency.value} and {amount.currency.value}"
            )
    return CurrencyAmount(sum((a.amount for a in amounts), Decimal("0")), currency)


def average_amounts(amounts: list[CurrencyAmount]) -> CurrencyAmount:
    """Average a non-empty list of amounts that share one currency."""
    if not amounts:
        raise ValueError("Cannot average empty list of amounts")
    return sum_amounts(amounts).divide(len(amounts))


def is_valid_currency_code(code: str) -> bool:
    return code in Currency._value2member_map_


class ExchangeRateManager(ABC):
    """Abstract base class for currency exchange rate providers."""

    @abstractmethod
    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, datetime: datetime | None = None) -> Decimal:
        """Get the exchange rate between two currencies.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.
            datetime: The date for the rate lookup. If None, the latest rate.

        Returns:
            Units of to_currency per unit of from_currency.
        """
        raise NotImplementedError("This method should be overridden by subclasses.")


class FixedExchangeRateManager(ExchangeRateManager):
    """Exchange rate manager backed by a fixed table of rates.

    Rates do not vary by date. Pairs missing from the table are inverted or
    triangulated through USD.
    """

    def __init__(self, exchange_rates: dict[tuple[Currency, Currency], Decimal] | None = None):
        self.exchange_rates: dict[tuple[Currency, Currency], Decimal] = dict(exchange_rates or {})

    def set_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate: Decimal) -> None:
        self.exchange_rates[(from_currency, to_currency)] = rate

    def _lookup(self, from_currency: Currency, to_currency: Currency) -> Decimal | None:
        if (from_currency, to_currency) in self.exchange_rates:
            return self.exchange_rates[(from_currency, to_currency)]
        inverse = self.exchange_rates.get((to_currency, from_currency))
        if inverse:
            return Decimal("1") / inverse
        return None

    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, datetime: datetime | None = None) -> Decimal:
        """Get the fixed exchange rate between two currencies.

        Raises:
            ValueError: If no rate is available for the currency pair.
        """
        if from_currency == to_currency:
            return Decimal("1")

        rate = self._lookup(from_currency, to_currency)
        if rate is not None:
            return rate

        # If neither currency is USD, try converting via USD
        if from_currency != Currency.USD and to_currency != Currency.USD:
            rate_to_usd = self._lookup(from_currency, Currency.USD)
            rate_from_usd = self._lookup(Currency.USD, to_currency)
            if rate_to_usd is not None and rate_from_usd is not None:
                return rate_to_usd * rate_from_usd

        raise ValueError(f"Exchange rate from {from_currency.value} to {to_currency.value} not available.")
