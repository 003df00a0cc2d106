from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta

import pandas as pd

from .currency import Currency
from .episodes import ROLL_WINDOW, PositionEpisode, build_episodes
from .ledger import Balances, LedgerRow, build_ledger, format_strike, sort_key
from .transactions import OpeningBalances, RawTransaction, TickerLookup, create_ticker_lookup


@dataclass(frozen=True)
class PortfolioResult:
    """Everything a replay produces: the audited ledger, final balances and episodes."""

    ledger: list[LedgerRow]
    balances: Balances
    episodes: list[PositionEpisode]


def build_portfolio_view(
    transactions: list[RawTransaction],
    ticker_lookup: TickerLookup | None = None,
    opening_balances: OpeningBalances | None = None,
    roll_window: timedelta = ROLL_WINDOW,
) -> PortfolioResult:
    """
    Replay transactions into a ledger, per-account balances and position episodes.

    Transactions are partitioned by currency and each partition is replayed on its
    own, so no arithmetic ever mixes currencies. Partitions are processed in
    currency code order and the results merged.

    Args:
        transactions: Transactions in any order.
        ticker_lookup: Ticker id -> ticker name. Built from the transactions'
            ticker names when not supplied.
        opening_balances: Balance carried in per account. Each is applied to the
            partition of its own currency.
        roll_window: Maximum gap between closing an option and opening its roll.

    Returns:
        A PortfolioResult with the ledger sorted by (timestamp, id), balances keyed
        by account then currency, and episodes sorted by
        (user, account, episode key, open timestamp).
    """
    if ticker_lookup is None:
        ticker_lookup = create_ticker_lookup(transactions)

    partitions: dict[Currency, list[RawTransaction]] = defaultdict(list)
    for txn in transactions:
        partitions[txn.currency].append(txn)

    ledger: list[LedgerRow] = []
    balances: Balances = {}
    episodes: list[PositionEpisode] = []

    for currency in sorted(partitions, key=lambda c: c.value):
        partition_ledger, partition_balances = build_ledger(
            partitions[currency], ticker_lookup, opening_balances
        )
        ledger.extend(partition_ledger)
        for account_id, by_currency in partition_balances.items():
            balances.setdefault(account_id, {}).update(by_currency)
        episodes.extend(build_episodes(partition_ledger, roll_window))

    ledger.sort(key=lambda r: sort_key(r.timestamp, r.txn_id))
    episodes.sort(key=lambda e: (e.user_id, e.account_id, e.episode_key, e.open_timestamp, e.txns[0].txn_id))

    return PortfolioResult(ledger=ledger, balances=balances, episodes=episodes)


_LEDGER_COLUMNS = [
    "txn_id", "user_id", "account_id", "timestamp", "instrument_kind", "ticker", "expiry",
    "strike", "side", "qty", "price", "fees", "currency", "cash_delta", "balance_after",
    "accepted", "error", "memo",
]

_EPISODE_COLUMNS = [
    "episode_id", "user_id", "account_id", "episode_key", "kind_group", "option_direction",
    "open_timestamp", "close_timestamp", "rolled", "qty", "avg_price", "total_fees",
    "cash_total", "realized_pnl_total", "currency", "txn_count",
]


def _amount(value) -> float | None:
    return float(value.amount) if value is not None else None


def ledger_to_dataframe(ledger: list[LedgerRow]) -> pd.DataFrame:
    """One row per ledger row, amounts as floats in the row's currency."""
    records = [
        {
            "txn_id": row.txn_id,
            "user_id": row.user_id,
            "account_id": row.account_id,
            "timestamp": row.timestamp,
            "instrument_kind": row.instrument_kind.value,
            "ticker": row.ticker,
            "expiry": row.expiry.isoformat() if row.expiry else None,
            "strike": format_strike(row.strike) or None,
            "side": row.side.value if row.side else None,
            "qty": float(row.qty),
            "price": _amount(row.price),
            "fees": _amount(row.fees),
            "currency": row.currency.value,
            "cash_delta": _amount(row.cash_delta),
            "balance_after": _amount(row.balance_after),
            "accepted": row.accepted,
            "error": row.error_message,
            "memo": row.memo,
        }
        for row in ledger
    ]
    return pd.DataFrame.from_records(records, columns=_LEDGER_COLUMNS)


def episodes_to_dataframe(episodes: list[PositionEpisode]) -> pd.DataFrame:
    """One row per episode summarizing its totals."""
    records = [
        {
            "episode_id": episode.episode_id,
            "user_id": episode.user_id,
            "account_id": episode.account_id,
            "episode_key": episode.episode_key,
            "kind_group": episode.kind_group.value,
            "option_direction": episode.option_direction.value if episode.option_direction else None,
            "open_timestamp": episode.open_timestamp,
            "close_timestamp": episode.close_timestamp,
            "rolled": episode.rolled,
            "qty": float(episode.qty),
            "avg_price": _amount(episode.avg_price),
            "total_fees": _amount(episode.total_fees),
            "cash_total": _amount(episode.cash_total),
            "realized_pnl_total": _amount(episode.realized_pnl_total),
            "currency": episode.currency.value,
            "txn_count": len(episode.txns),
        }
        for episode in episodes
    ]
    return pd.DataFrame.from_records(records, columns=_EPISODE_COLUMNS)


def balances_to_dataframe(balances: Balances) -> pd.DataFrame:
    records = [
        {"account_id": account_id, "currency": currency.value, "balance": float(amount.amount)}
        for account_id in sorted(balances)
        for currency, amount in sorted(balances[account_id].items(), key=lambda item: item[0].value)
    ]
    return pd.DataFrame.from_records(records, columns=["account_id", "currency", "balance"])


def _isoformat_column(series: pd.Series) -> pd.Series:
    # Excel cannot store timezone-aware datetimes
    return series.map(lambda v: None if v is None or pd.isna(v) else v.isoformat())


def save_portfolio_view_to_excel(result: PortfolioResult, file_path: str) -> None:
    """
    Write a replay result to an Excel workbook.

    Args:
        result: The PortfolioResult to export.
        file_path: Path to the Excel file to write.

    The workbook has three sheets:
        - Ledger: one row per input transaction, including rejected ones
        - Episodes: one row per position episode
        - Balances: final balance per account and currency
    """
    ledger_df = ledger_to_dataframe(result.ledger)
    ledger_df["timestamp"] = _isoformat_column(ledger_df["timestamp"])

    episodes_df = episodes_to_dataframe(result.episodes)
    for column in ("open_timestamp", "close_timestamp"):
        episodes_df[column] = _isoformat_column(episodes_df[column])

    with pd.ExcelWriter(file_path, engine="openpyxl") as writer:
        ledger_df.to_excel(writer, sheet_name="Ledger", index=False)
        episodes_df.to_excel(writer, sheet_name="Episodes", index=False)
        balances_to_dataframe(result.balances).to_excel(writer, sheet_name="Balances", index=False)
