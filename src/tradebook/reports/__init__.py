"""Queries and roll-ups over a replay result.

Provides episode filters (by account, status, kind, ticker and date range),
per-currency realized P&L and balance lookups, explicit opt-in currency
conversion of totals, one-line episode formatting and calendar time ranges.
"""

from .display import format_episode_for_display
from .filters import (
    DateRangeMode,
    filter_episodes_by_date_range,
    get_account_episodes,
    get_closed_episodes,
    get_episodes_by_kind,
    get_episodes_by_ticker,
    get_open_episodes,
)
from .pnl import (
    convert_totals,
    get_account_balance,
    get_account_realized_pnl,
    get_total_realized_pnl,
)
from .time_range import TimeRange, TimeScale, calculate_time_range

__all__ = [
    "DateRangeMode",
    "TimeRange",
    "TimeScale",
    "calculate_time_range",
    "convert_totals",
    "filter_episodes_by_date_range",
    "format_episode_for_display",
    "get_account_balance",
    "get_account_episodes",
    "get_account_realized_pnl",
    "get_closed_episodes",
    "get_episodes_by_kind",
    "get_episodes_by_ticker",
    "get_open_episodes",
    "get_total_realized_pnl",
]
