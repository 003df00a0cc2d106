from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Union

import json
import os
import warnings

import pandas as pd
from openpyxl import Workbook

from .currency import Currency, CurrencyAmount, to_currency, to_decimal


class InstrumentKind(Enum):
    """What a transaction trades."""

    CASH = "CASH"
    SHARES = "SHARES"
    CALL = "CALL"
    PUT = "PUT"

    @property
    def is_option(self) -> bool:
        return self in (InstrumentKind.CALL, InstrumentKind.PUT)

    @property
    def multiplier(self) -> int:
        """Units per quantity: options are quoted per share but settle per 100-share contract."""
        return 100 if self.is_option else 1


class Side(Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def direction(self) -> int:
        return 1 if self is Side.BUY else -1

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


# ticker id -> ticker display name
TickerLookup = dict[str, str]

# account id -> balance carried in from before the transaction window
OpeningBalances = dict[str, CurrencyAmount]

# Record keys that must be present and non-blank for every transaction
REQUIRED_FIELDS = ("id", "account_id", "timestamp", "instrument_kind", "qty")


def parse_timestamp(value: Union[datetime, str]) -> tuple[datetime, bool]:
    """Parse an ISO-8601 timestamp and make it timezone-aware.

    Naive values are assumed to be UTC.

    Returns:
        A tuple of (aware_datetime, timezone_was_missing).

    Raises:
        ValueError: If the value is not a datetime or an ISO-8601 string.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    elif not isinstance(value, datetime):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc), True
    return value, False


def parse_expiry(value: Union[date, datetime, str, None]) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


@dataclass(frozen=True)
class RawTransaction:
    """A single immutable input event, as produced by import or CRUD layers.

    ``qty`` is a non-negative magnitude; direction comes from ``side``.
    ``price``, ``fees`` and ``strike`` are CurrencyAmounts; plain numbers are
    accepted and tagged with the transaction currency.
    """

    id: str
    user_id: str
    account_id: str
    timestamp: datetime
    instrument_kind: InstrumentKind
    qty: Decimal
    currency: Currency = Currency.USD
    price: CurrencyAmount | None = None
    fees: CurrencyAmount | None = None
    side: Side | None = None
    ticker_id: str | None = None
    ticker_name: str | None = None
    expiry: date | None = None
    strike: CurrencyAmount | None = None
    memo: str | None = None

    def __post_init__(self):
        currency = to_currency(self.currency)
        object.__setattr__(self, "currency", currency)
        object.__setattr__(self, "instrument_kind", InstrumentKind(self.instrument_kind))
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp)[0])
        object.__setattr__(self, "qty", to_decimal(self.qty, "quantity"))
        if self.qty < 0:
            raise ValueError(f"Quantity must be non-negative in transaction {self.id}: {self.qty}")
        if self.side is not None:
            object.__setattr__(self, "side", Side(self.side))
        object.__setattr__(self, "expiry", parse_expiry(self.expiry))
        for name in ("price", "fees", "strike"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, CurrencyAmount):
                object.__setattr__(self, name, CurrencyAmount(value, currency))
            elif value is not None and value.currency is not currency:
                raise ValueError(
                    f"Transaction {self.id} is in {currency.value} but its {name} is in {value.currency.value}"
                )
        if self.fees is None:
            object.__setattr__(self, "fees", CurrencyAmount.zero(currency))

    @property
    def signed_qty(self) -> Decimal:
        if self.side is None:
            return self.qty
        return self.side.direction * self.qty

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawTransaction":
        """Build a transaction from a JSON/database style record.

        Accepts ``ticker`` or a joined ``tickers: {"name": ...}`` object for the
        ticker display name. Empty strings are treated as missing.

        Raises:
            ValueError: If a required field is missing or holds an invalid value.
        """
        missing = missing_required_fields(data)
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        def optional(key: str) -> Any:
            value = data.get(key)
            if value is None or value == "":
                return None
            return value

        ticker_name = optional("ticker")
        tickers = data.get("tickers")
        if ticker_name is None and isinstance(tickers, dict):
            ticker_name = tickers.get("name")
        ticker_id = optional("ticker_id") or ticker_name

        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id") or "default"),
            account_id=str(data["account_id"]),
            timestamp=data["timestamp"],
            instrument_kind=InstrumentKind(str(data["instrument_kind"]).upper()),
            qty=data["qty"],
            currency=data.get("currency") or Currency.USD,
            price=optional("price"),
            fees=optional("fees"),
            side=Side(str(data["side"]).upper()) if optional("side") else None,
            ticker_id=ticker_id,
            ticker_name=ticker_name,
            expiry=optional("expiry"),
            strike=optional("strike"),
            memo=optional("memo"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "account_id": self.account_id,
            "timestamp": self.timestamp.isoformat(),
            "instrument_kind": self.instrument_kind.value,
            "ticker_id": self.ticker_id,
            "ticker": self.ticker_name,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "strike": str(self.strike.amount) if self.strike else None,
            "side": self.side.value if self.side else None,
            "qty": str(self.qty),
            "price": str(self.price.amount) if self.price else None,
            "fees": str(self.fees.amount) if self.fees else "0",
            "currency": self.currency.value,
            "memo": self.memo,
        }

    def __repr__(self):
        return (
            f"RawTransaction(id={self.id}, account={self.account_id}, date={self.timestamp.isoformat()}, "
            f"kind={self.instrument_kind.value}, side={self.side.value if self.side else None}, "
            f"qty={self.qty}, price={self.price}, currency={self.currency.value})"
        )


def missing_required_fields(data: dict[str, Any]) -> list[str]:
    """Return the REQUIRED_FIELDS that are absent, None or empty in a record."""
    return [key for key in REQUIRED_FIELDS if data.get(key) is None or data.get(key) == ""]

def create_ticker_lookup(transactions: list[RawTransaction]) -> TickerLookup:
    """Build a ticker id -> name lookup from the transactions' denormalized ticker names."""
    lookup: TickerLookup = {}
    for txn in transactions:
        if txn.ticker_id and txn.ticker_name:
            lookup[txn.ticker_id] = txn.ticker_name
    return lookup


EXCEL_HEADERS = [
    "ID", "USER", "ACCOUNT", "DATE AND TIME", "INSTRUMENT KIND", "TICKER", "EXPIRY",
    "STRIKE", "SIDE", "QUANTITY", "PRICE", "FEES", "CURRENCY", "MEMO",
]

_REQUIRED_EXCEL_COLUMNS = {"ID", "ACCOUNT", "DATE AND TIME", "INSTRUMENT KIND", "QUANTITY", "CURRENCY"}

# CURRENCY may be blank; from_dict then defaults it to USD
_REQUIRED_EXCEL_VALUES = ("ID", "ACCOUNT", "DATE AND TIME", "INSTRUMENT KIND", "QUANTITY")


def _warn_missing_timezone(file_path: str) -> None:
    warnings.warn(
        f"Some transactions in '{file_path}' were missing timezone information. "
        f"Assuming UTC for these transactions.",
        UserWarning
    )


def _timestamp_lacks_timezone(value: Any) -> bool:
    if isinstance(value, datetime):
        return value.tzinfo is None
    try:
        return parse_timestamp(str(value))[1]
    except ValueError:
        return False


def load_transactions_from_excel(file_path: str) -> list[RawTransaction]:
    """
    Load transactions from an Excel file.

    Args:
        file_path: Path to the Excel file containing transactions.

    Returns:
        A list of RawTransaction in file order.

    Expected Excel columns (order independent):
        - ID, ACCOUNT, DATE AND TIME, INSTRUMENT KIND, QUANTITY, CURRENCY (required)
        - USER, TICKER, EXPIRY, STRIKE, SIDE, PRICE, FEES, MEMO (optional)
        The TICKER column holds the ticker name and doubles as its id.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Transactions file not found: {file_path}")

    df = pd.read_excel(file_path, dtype=str)
    if df.empty:
        return []

    missing_columns = _REQUIRED_EXCEL_COLUMNS - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    transactions: list[RawTransaction] = []
    any_missing_timezone = False

    # Row 1 holds the headers
    for row_number, (_, row) in enumerate(df.iterrows(), start=2):
        record = {
            column: (None if pd.isna(row[column]) else str(row[column]).strip())
            for column in df.columns
        }
        missing_values = [column for column in _REQUIRED_EXCEL_VALUES if not record[column]]
        if missing_values:
            raise ValueError(f"Row {row_number} missing required values: {', '.join(missing_values)}")
        any_missing_timezone = any_missing_timezone or _timestamp_lacks_timezone(record["DATE AND TIME"])
        transactions.append(RawTransaction.from_dict({
            "id": record["ID"],
            "user_id": record.get("USER"),
            "account_id": record["ACCOUNT"],
            "timestamp": record["DATE AND TIME"],
            "instrument_kind": record["INSTRUMENT KIND"],
            "ticker": record.get("TICKER"),
            "expiry": record.get("EXPIRY"),
            "strike": record.get("STRIKE"),
            "side": record.get("SIDE"),
            "qty": record["QUANTITY"],
            "price": record.get("PRICE"),
            "fees": record.get("FEES"),
            "currency": record["CURRENCY"],
            "memo": record.get("MEMO"),
        }))

    # Emit the warning once after processing all transactions
    if any_missing_timezone:
        _warn_missing_timezone(file_path)

    return transactions


def save_transactions_to_excel(transactions: list[RawTransaction], file_path: str) -> None:
    """
    Save transactions to an Excel file readable by load_transactions_from_excel.

    Args:
        transactions: Transactions to save.
        file_path: Path to the Excel file to write.
    """
    wb = Workbook()
    ws = wb.active
    assert ws is not None

    for col, header in enumerate(EXCEL_HEADERS, start=1):
        ws.cell(row=1, column=col, value=header)

    for row, txn in enumerate(transactions, start=2):
        values = [
            txn.id,
            txn.user_id,
            txn.account_id,
            txn.timestamp.isoformat(),
            txn.instrument_kind.value,
            txn.ticker_name or txn.ticker_id,
            txn.expiry.isoformat() if txn.expiry else None,
            str(txn.strike.amount) if txn.strike else None,
            txn.side.value if txn.side else None,
            str(txn.qty),
            str(txn.price.amount) if txn.price else None,
            str(txn.fees.amount) if txn.fees else None,
            txn.currency.value,
            txn.memo,
        ]
        for col, value in enumerate(values, start=1):
            ws.cell(row=row, column=col, value=value)

    wb.save(file_path)


def load_transactions_from_json(file_path: str) -> list[RawTransaction]:
    """
    Load transactions from a JSON file.

    Expected JSON structure:
        [
            {
                "id": "txn-1",
                "user_id": "user-1",
                "account_id": "acct-1",
                "timestamp": "2025-09-01T10:00:00Z",
                "instrument_kind": "CALL",
                "ticker": "AAPL",
                "expiry": "2025-09-19",
                "strike": 160,
                "side": "SELL",
                "qty": 1,
                "price": 5.00,
                "fees": 0.50,
                "currency": "USD",
                "memo": "covered call"
            },
            ...
        ]
    """
    with open(file_path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of transactions")

    transactions: list[RawTransaction] = []
    any_missing_timezone = False

    item: Any
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"Transaction {index} must be an object, got {type(item).__name__}")
        missing = missing_required_fields(item)
        if missing:
            raise ValueError(f"Transaction {index} missing required fields: {', '.join(missing)}")
        any_missing_timezone = any_missing_timezone or _timestamp_lacks_timezone(item["timestamp"])
        transactions.append(RawTransaction.from_dict(item))

    if any_missing_timezone:
        _warn_missing_timezone(file_path)

    return transactions


def save_transactions_to_json(transactions: list[RawTransaction], file_path: str) -> None:
    """Save transactions to a JSON file readable by load_transactions_from_json."""
    data = [txn.to_dict() for txn in transactions]
    with open(file_path, "w") as f:
        json.dump(data, f, indent=2)


def load_transactions(file_path: str) -> list[RawTransaction]:
    """Load transactions from ``.json`` or Excel based on the file extension."""
    if file_path.lower().endswith(".json"):
        return load_transactions_from_json(file_path)
    return load_transactions_from_excel(file_path)
