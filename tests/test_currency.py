"""Tests for CurrencyAmount arithmetic, rounding, formatting and exchange rate managers."""

from decimal import Decimal

import pytest

from tradebook.currency import (
    Currency,
    CurrencyAmount,
    CurrencyMismatchError,
    FixedExchangeRateManager,
    average_amounts,
    is_valid_currency_code,
    sum_amounts,
)


def test_amount_is_rounded_half_up_to_currency_precision():
    """Verify amounts are quantized on construction using half-up rounding."""
    assert CurrencyAmount("10.005", "USD").amount == Decimal("10.01")
    assert CurrencyAmount("10.004", "USD").amount == Decimal("10.00")
    assert CurrencyAmount("1234.5", "JPY").amount == Decimal("1235")
    assert CurrencyAmount("999.4", Currency.KRW).amount == Decimal("999")


def test_float_input_does_not_carry_binary_noise():
    """Verify floats are converted through their string form."""
    assert CurrencyAmount(0.1, "USD").add(CurrencyAmount(0.2, "USD")).amount == Decimal("0.30")


def test_invalid_construction_raises():
    """Verify unknown currencies and non-finite amounts are rejected."""
    with pytest.raises(ValueError, match="Invalid currency code"):
        CurrencyAmount(1, "XYZ")
    with pytest.raises(ValueError, match="Invalid amount"):
        CurrencyAmount(float("nan"), "USD")
    with pytest.raises(ValueError, match="Invalid amount"):
        CurrencyAmount("Infinity", "USD")
    with pytest.raises(ValueError, match="Invalid amount"):
        CurrencyAmount("abc", "USD")


def test_arithmetic_same_currency():
    """Verify add, subtract, multiply, divide, negate and abs."""
    a = CurrencyAmount("100.50", "USD")
    b = CurrencyAmount("0.25", "USD")
    assert (a + b).amount == Decimal("100.75")
    assert (a - b).amount == Decimal("100.25")
    assert (a * 3).amount == Decimal("301.50")
    assert (3 * a).amount == Decimal("301.50")
    assert (a / 3).amount == Decimal("33.50")
    assert (-a).amount == Decimal("-100.50")
    assert abs(CurrencyAmount("-5", "USD")).amount == Decimal("5.00")


def test_divide_by_zero_raises():
    """Verify division by zero is rejected."""
    with pytest.raises(ValueError, match="Invalid divisor"):
        CurrencyAmount(10, "USD").divide(0)


def test_cross_currency_arithmetic_and_ordering_raise():
    """Verify mixing currencies raises CurrencyMismatchError."""
    usd = CurrencyAmount(100, "USD")
    eur = CurrencyAmount(100, "EUR")
    with pytest.raises(CurrencyMismatchError, match="USD and EUR"):
        usd + eur
    with pytest.raises(CurrencyMismatchError):
        usd - eur
    with pytest.raises(CurrencyMismatchError):
        usd < eur
    with pytest.raises(CurrencyMismatchError):
        usd.greater_than_or_equal(eur)


def test_mismatch_error_is_a_value_error():
    """Verify callers catching ValueError also catch currency mismatches."""
    with pytest.raises(ValueError):
        CurrencyAmount(1, "USD").add(CurrencyAmount(1, "CAD"))


def test_equality_is_currency_aware():
    """Verify equality compares currency and amount without raising."""
    assert CurrencyAmount("10", "USD") == CurrencyAmount("10.00", "USD")
    assert CurrencyAmount("10", "USD") != CurrencyAmount("10", "CAD")
    assert len({CurrencyAmount("10", "USD"), CurrencyAmount("10.00", "USD")}) == 1


def test_amount_is_immutable():
    """Verify attributes cannot be reassigned."""
    amount = CurrencyAmount(1, "USD")
    with pytest.raises(AttributeError):
        amount.amount = Decimal("2")


def test_sign_predicates():
    """Verify is_zero, is_positive and is_negative."""
    assert CurrencyAmount.zero("USD").is_zero()
    assert CurrencyAmount("0.01", "USD").is_positive()
    assert CurrencyAmount("-0.01", "USD").is_negative()


def test_format():
    """Verify display formatting with symbol, code and precision."""
    assert CurrencyAmount("1234.56", "USD").format() == "$ 1234.56"
    assert CurrencyAmount("1234.56", "HKD").format() == "HK$ 1234.56"
    assert CurrencyAmount("1234.56", "JPY").format() == "¥ 1235"
    assert CurrencyAmount("5", "EUR").format(show_code=True) == "€ 5.00 EUR"
    assert CurrencyAmount("5", "EUR").format(show_symbol=False) == "5.00"
    assert CurrencyAmount("5", "USD").format(precision=4) == "$ 5.0000"


def test_convert_to():
    """Verify explicit conversion at a given rate."""
    converted = CurrencyAmount("100", "CAD").convert_to("USD", Decimal("0.75"))
    assert converted == CurrencyAmount("75", "USD")
    same = CurrencyAmount("100", "CAD")
    assert same.convert_to(Currency.CAD, 2) is same
    with pytest.raises(ValueError, match="Invalid exchange rate"):
        same.convert_to("USD", 0)


def test_parse_and_dict_round_trip():
    """Verify parsing text and serializing to a dict."""
    amount = CurrencyAmount.parse("1,234.50", "USD")
    assert amount.amount == Decimal("1234.50")
    assert CurrencyAmount.from_dict(amount.to_dict()) == amount
    with pytest.raises(ValueError, match="Cannot parse amount"):
        CurrencyAmount.parse("twelve", "USD")


def test_sum_and_average():
    """Verify sum/average helpers and their failure modes."""
    amounts = [CurrencyAmount(1, "USD"), CurrencyAmount(2, "USD"), CurrencyAmount("3.5", "USD")]
    assert sum_amounts(amounts) == CurrencyAmount("6.5", "USD")
    assert average_amounts(amounts) == CurrencyAmount("2.17", "USD")
    with pytest.raises(ValueError, match="empty"):
        sum_amounts([])
    with pytest.raises(ValueError, match="empty"):
        average_amounts([])
    with pytest.raises(CurrencyMismatchError):
        sum_amounts([CurrencyAmount(1, "USD"), CurrencyAmount(1, "EUR")])


def test_is_valid_currency_code():
    assert is_valid_currency_code("USD")
    assert not is_valid_currency_code("usd")
    assert not is_valid_currency_code("XYZ")


def test_fixed_exchange_rate_manager():
    """Verify direct, inverse and USD-triangulated rates."""
    manager = FixedExchangeRateManager({
        (Currency.CAD, Currency.USD): Decimal("0.75"),
        (Currency.EUR, Currency.USD): Decimal("1.10"),
    })
    assert manager.get_exchange_rate(Currency.CAD, Currency.USD) == Decimal("0.75")
    assert manager.get_exchange_rate(Currency.USD, Currency.CAD) == Decimal("1") / Decimal("0.75")
    assert manager.get_exchange_rate(Currency.USD, Currency.USD) == Decimal("1")
    assert manager.get_exchange_rate(Currency.CAD, Currency.EUR) == Decimal("0.75") * (Decimal("1") / Decimal("1.10"))
    with pytest.raises(ValueError, match="not available"):
        manager.get_exchange_rate(Currency.JPY, Currency.GBP)
