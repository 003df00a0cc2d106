"""Pass 1: validate transactions and compute running cash balances.

Every input transaction becomes exactly one LedgerRow. Invalid trades are not
raised; they are recorded with ``accepted=False`` and a RejectionReason, and
leave positions and balances untouched.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from .currency import Currency, CurrencyAmount
from .transactions import InstrumentKind, OpeningBalances, RawTransaction, Side, TickerLookup

# account id -> currency -> running balance
Balances = dict[str, dict[Currency, CurrencyAmount]]


class RejectionReason(str, Enum):
    """Why a transaction was rejected. Values are the user-facing messages."""

    MISSING_FIELDS = "Missing required fields"
    NEGATIVE_EQUITY = "Equities cannot be negative (long-only)"
    CROSSING_ZERO = "Crossing zero not allowed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LedgerRow:
    """The audited outcome of one transaction."""

    txn_id: str
    user_id: str
    account_id: str
    timestamp: datetime
    instrument_kind: InstrumentKind
    currency: Currency
    qty: Decimal
    fees: CurrencyAmount
    cash_delta: CurrencyAmount
    balance_after: CurrencyAmount
    accepted: bool
    error: RejectionReason | None = None
    ticker: str | None = None
    expiry: date | None = None
    strike: CurrencyAmount | None = None
    side: Side | None = None
    price: CurrencyAmount | None = None
    memo: str | None = None

    @property
    def signed_qty(self) -> Decimal:
        if self.side is None:
            return self.qty
        return self.side.direction * self.qty

    @property
    def error_message(self) -> str | None:
        return self.error.value if self.error else None


def sort_key(txn_timestamp: datetime, txn_id: str) -> tuple[datetime, str]:
    """The replay order: timestamp ascending, then id ascending."""
    return (txn_timestamp, txn_id)


def instrument_key(kind: InstrumentKind, ticker: str | None, expiry: date | None, strike: CurrencyAmount | None) -> str:
    """Identify the exact instrument a position is held in."""
    if kind is InstrumentKind.CASH:
        return "CASH"
    if kind is InstrumentKind.SHARES:
        return ticker or ""
    return f"{ticker}|{expiry.isoformat() if expiry else ''}|{format_strike(strike)}|{kind.value}"


def format_strike(strike: CurrencyAmount | None) -> str:
    """Render a strike without trailing zeros: 160.00 -> "160", 162.50 -> "162.5"."""
    if strike is None:
        return ""
    return f"{strike.amount.normalize():f}"


def _sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _partition_currency(transactions: list[RawTransaction]) -> Currency | None:
    currencies = {txn.currency for txn in transactions}
    if len(currencies) > 1:
        codes = ", ".join(sorted(c.value for c in currencies))
        raise ValueError(
            f"build_ledger expects transactions in a single currency, found: {codes}. "
            f"Use build_portfolio_view to replay mixed currencies."
        )
    return next(iter(currencies), None)


def _validate_trade(
    txn: RawTransaction,
    ticker: str | None,
    current_qty: Decimal,
) -> RejectionReason | None:
    if txn.side is None or not ticker:
        return RejectionReason.MISSING_FIELDS
    if txn.instrument_kind.is_option and (txn.strike is None or txn.expiry is None):
        return RejectionReason.MISSING_FIELDS

    new_qty = current_qty + txn.signed_qty
    if txn.instrument_kind is InstrumentKind.SHARES and new_qty < 0:
        return RejectionReason.NEGATIVE_EQUITY

    # Landing exactly on zero is a close; ending on the other side is a flip.
    if current_qty != 0 and new_qty != 0 and _sign(new_qty) != _sign(current_qty):
        return RejectionReason.CROSSING_ZERO

    return None


def build_ledger(
    transactions: list[RawTransaction],
    ticker_lookup: TickerLookup,
    opening_balances: OpeningBalances | None = None,
) -> tuple[list[LedgerRow], Balances]:
    """
    Replay one currency's transactions into ledger rows and running balances.

    Transactions are replayed in (timestamp, id) order regardless of input order.
    CASH legs move ``price * qty`` into the account and are always accepted.
    Trades must have a side and a ticker id found in ``ticker_lookup``. They may
    not take SHARES below zero or flip a position's sign in one fill. Accepted
    trades move ``-(signed_qty * price * multiplier) - fees``.

    Args:
        transactions: Transactions that all share one currency.
        ticker_lookup: Ticker id -> ticker name.
        opening_balances: Balances carried in per account. An opening balance is
            only applied when its currency matches the transactions' currency.

    Returns:
        A tuple of (ledger rows in replay order, account -> currency -> balance).

    Raises:
        ValueError: If the transactions span more than one currency.
    """
    opening_balances = opening_balances or {}
    currency = _partition_currency(transactions)
    if currency is None:
        return [], {}

    sorted_transactions = sorted(
        transactions,
        key=lambda t: sort_key(t.timestamp, t.id)
    )

    balances: Balances = {}
    positions: dict[tuple[str, str, str], Decimal] = {}
    ledger: list[LedgerRow] = []

    for txn in sorted_transactions:
        account_balances = balances.setdefault(txn.account_id, {})
        if currency not in account_balances:
            opening = opening_balances.get(txn.account_id)
            if opening is not None and opening.currency is currency:
                account_balances[currency] = opening
            else:
                account_balances[currency] = CurrencyAmount.zero(currency)
        balance = account_balances[currency]
        zero = CurrencyAmount.zero(currency)

        if txn.instrument_kind is InstrumentKind.CASH:
            # Pure cash movements carry a unit price of 1.0 in their currency
            price = txn.price if txn.price is not None else CurrencyAmount(1, currency)
            cash_delta = price.multiply(txn.qty)
            balance = balance.add(cash_delta)
            account_balances[currency] = balance
            ledger.append(LedgerRow(
                txn_id=txn.id,
                user_id=txn.user_id,
                account_id=txn.account_id,
                timestamp=txn.timestamp,
                instrument_kind=txn.instrument_kind,
                currency=currency,
                qty=txn.qty,
                price=price,
                fees=txn.fees,
                memo=txn.memo,
                cash_delta=cash_delta,
                balance_after=balance,
                accepted=True,
            ))
            continue

        ticker = ticker_lookup.get(txn.ticker_id) if txn.ticker_id else None
        position_key = (
            txn.user_id,
            txn.account_id,
            instrument_key(txn.instrument_kind, ticker, txn.expiry, txn.strike),
        )
        current_qty = positions.get(position_key, Decimal("0"))

        error = _validate_trade(txn, ticker, current_qty)
        if error is None:
            price = txn.price if txn.price is not None else zero
            gross = price.multiply(txn.signed_qty * txn.instrument_kind.multiplier)
            cash_delta = gross.negate().subtract(txn.fees)
            balance = balance.add(cash_delta)
            account_balances[currency] = balance
            positions[position_key] = current_qty + txn.signed_qty
        else:
            cash_delta = zero

        ledger.append(LedgerRow(
            txn_id=txn.id,
            user_id=txn.user_id,
            account_id=txn.account_id,
            timestamp=txn.timestamp,
            instrument_kind=txn.instrument_kind,
            currency=currency,
            qty=txn.qty,
            ticker=ticker,
            expiry=txn.expiry,
            strike=txn.strike,
            side=txn.side,
            price=txn.price,
            fees=txn.fees,
            memo=txn.memo,
            cash_delta=cash_delta,
            balance_after=balance,
            accepted=error is None,
            error=error,
        ))

    return ledger, balances
