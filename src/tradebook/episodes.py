"""Pass 2: group accepted ledger rows into position episodes.

An episode follows one logical position from the fill that opens it to the fill
that brings it back to zero. Option episodes can be continued by a roll: closing
one contract and opening a different strike/expiry of the same ticker and right
shortly afterwards keeps the history in the same episode.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum

from .currency import Currency, CurrencyAmount
from .ledger import LedgerRow, format_strike, instrument_key, sort_key
from .transactions import InstrumentKind, Side

# Longest gap between closing a contract and opening its replacement for the two
# legs to be treated as a roll. The boundary is inclusive.
ROLL_WINDOW = timedelta(hours=10)

ROLL_CLOSE_NOTE = "ROLL-CLOSE"
ROLL_OPEN_NOTE = "ROLL-OPEN"


class KindGroup(Enum):
    CASH = "CASH"
    SHARES = "SHARES"
    OPTION = "OPTION"


class OptionDirection(Enum):
    """What an option episode means, fixed by its opening fill."""

    CSP = "CSP"  # cash secured put (sold put)
    CC = "CC"  # covered call (sold call)
    CALL = "CALL"
    PUT = "PUT"


class ActionTerm(Enum):
    BTO = "BTO"
    STO = "STO"
    BTC = "BTC"
    STC = "STC"
    BUY = "BUY"
    SELL = "SELL"


@dataclass
class EpisodeTxn:
    """One fill inside an episode and what it did to the episode's economics."""

    txn_id: str
    timestamp: datetime
    instrument_kind: InstrumentKind
    qty: Decimal
    fees: CurrencyAmount
    cash_delta: CurrencyAmount
    realized_pnl_delta: CurrencyAmount
    side: Side | None = None
    ticker: str | None = None
    expiry: date | None = None
    strike: CurrencyAmount | None = None
    price: CurrencyAmount | None = None
    note: str | None = None
    action_term: ActionTerm | None = None


@dataclass
class PositionEpisode:
    """The lifecycle of one logical position.

    ``qty`` is signed (negative for short options) and is zero once the episode
    is closed. ``avg_price`` is the fee-inclusive per-unit entry average and is
    kept after the close for display.
    """

    episode_id: str
    user_id: str
    account_id: str
    episode_key: str
    kind_group: KindGroup
    open_timestamp: datetime
    qty: Decimal
    avg_price: CurrencyAmount
    total_fees: CurrencyAmount
    cash_total: CurrencyAmount
    realized_pnl_total: CurrencyAmount
    close_timestamp: datetime | None = None
    rolled: bool = False
    option_direction: OptionDirection | None = None
    txns: list[EpisodeTxn] = field(default_factory=list)

    @property
    def currency(self) -> Currency:
        return self.cash_total.currency

    @property
    def is_open(self) -> bool:
        return self.qty != 0

    @property
    def is_closed(self) -> bool:
        return self.qty == 0

    @property
    def opening_side(self) -> Side | None:
        return self.txns[0].side if self.txns else None

    # The current leg is whatever contract the latest fill traded.

    @property
    def current_right(self) -> InstrumentKind | None:
        if self.txns and self.txns[-1].instrument_kind.is_option:
            return self.txns[-1].instrument_kind
        return None

    @property
    def current_strike(self) -> CurrencyAmount | None:
        return self.txns[-1].strike if self.current_right else None

    @property
    def current_expiry(self) -> date | None:
        return self.txns[-1].expiry if self.current_right else None

    @property
    def current_instrument_key(self) -> str | None:
        if not self.current_right:
            return None
        last = self.txns[-1]
        return instrument_key(last.instrument_kind, last.ticker, last.expiry, last.strike)


def episode_key(kind: InstrumentKind, ticker: str | None, strike: CurrencyAmount | None, expiry: date | None) -> str:
    """Group key for an episode: CASH, the ticker, or ticker|RIGHT|strike|expiry."""
    if kind is InstrumentKind.CASH:
        return "CASH"
    if kind is InstrumentKind.SHARES:
        return ticker or ""
    return f"{ticker}|{kind.value}|{format_strike(strike)}|{expiry.isoformat() if expiry else ''}"


def option_direction(side: Side, right: InstrumentKind) -> OptionDirection:
    if side is Side.SELL:
        return OptionDirection.CSP if right is InstrumentKind.PUT else OptionDirection.CC
    return OptionDirection.PUT if right is InstrumentKind.PUT else OptionDirection.CALL


def action_term(side: Side, kind: InstrumentKind, opening_side: Side | None) -> ActionTerm:
    """BUY/SELL for shares; for options, open vs close relative to the opening fill."""
    if not kind.is_option:
        return ActionTerm(side.value)
    opened_with_sell = (opening_side or side) is Side.SELL
    if side is Side.BUY:
        return ActionTerm.BTC if opened_with_sell else ActionTerm.BTO
    return ActionTerm.STO if opened_with_sell else ActionTerm.STC


def _sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _contract_key(user_id: str, account_id: str, txn: EpisodeTxn | LedgerRow) -> tuple[str, str, str, str, str, str]:
    return (
        user_id,
        account_id,
        txn.ticker or "",
        txn.instrument_kind.value,
        format_strike(txn.strike),
        txn.expiry.isoformat() if txn.expiry else "",
    )


def _cash_episode(row: LedgerRow) -> PositionEpisode:
    zero = CurrencyAmount.zero(row.currency)
    return PositionEpisode(
        episode_id=f"{row.user_id}|{row.account_id}|CASH|{row.txn_id}",
        user_id=row.user_id,
        account_id=row.account_id,
        episode_key="CASH",
        kind_group=KindGroup.CASH,
        open_timestamp=row.timestamp,
        close_timestamp=row.timestamp,
        qty=Decimal("0"),
        avg_price=zero,
        total_fees=zero,
        cash_total=row.cash_delta,
        realized_pnl_total=zero,
        txns=[EpisodeTxn(
            txn_id=row.txn_id,
            timestamp=row.timestamp,
            instrument_kind=row.instrument_kind,
            qty=row.qty,
            price=row.price,
            fees=row.fees,
            cash_delta=row.cash_delta,
            realized_pnl_delta=zero,
            note=row.memo,
        )],
    )


def _start_episode(row: LedgerRow, key: str) -> PositionEpisode:
    zero = CurrencyAmount.zero(row.currency)
    kind = row.instrument_kind
    direction = None
    if kind.is_option and row.side is not None:
        direction = option_direction(row.side, kind)
    return PositionEpisode(
        episode_id=f"{row.user_id}|{row.account_id}|{key}|{row.txn_id}",
        user_id=row.user_id,
        account_id=row.account_id,
        episode_key=key,
        kind_group=KindGroup.OPTION if kind.is_option else KindGroup(kind.value),
        open_timestamp=row.timestamp,
        qty=Decimal("0"),
        avg_price=zero,
        total_fees=zero,
        cash_total=zero,
        realized_pnl_total=zero,
        option_direction=direction,
    )


def apply_trade(episode: PositionEpisode, row: LedgerRow, note: str | None = None) -> None:
    """
    Apply one accepted fill to an episode.

    Opening or extending the position folds the fill's fee-inclusive unit cost
    into a unit-weighted average. Reducing it realizes P&L against that average,
    net of the fill's fees. A fill that brings the quantity to zero closes the
    episode but keeps its average price.

    Args:
        episode: The episode to update in place.
        row: An accepted SHARES/CALL/PUT ledger row.
        note: Stored on the episode transaction; defaults to the row memo.
    """
    assert row.side is not None
    zero = CurrencyAmount.zero(row.currency)
    mult = row.instrument_kind.multiplier
    signed_qty = row.signed_qty
    price = row.price if row.price is not None else zero
    fees = row.fees
    units = row.qty * mult
    fee_per_unit = fees.divide(units) if units > 0 else zero
    entry_unit_cost = price.add(fee_per_unit)

    realized_pnl = zero
    new_qty = episode.qty + signed_qty

    if episode.qty == 0:
        episode.avg_price = entry_unit_cost
    elif _sign(episode.qty) == _sign(signed_qty) and abs(new_qty) > abs(episode.qty):
        base_units = abs(episode.qty) * mult
        add_units = abs(signed_qty) * mult
        base_value = episode.avg_price.multiply(base_units)
        add_value = entry_unit_cost.multiply(add_units)
        episode.avg_price = base_value.add(add_value).divide(base_units + add_units)
    else:
        closed_units = abs(signed_qty) * mult
        if episode.qty > 0:
            realized_pnl = price.subtract(episode.avg_price).multiply(closed_units).subtract(fees)
        else:
            realized_pnl = episode.avg_price.subtract(price).multiply(closed_units).subtract(fees)
        episode.realized_pnl_total = episode.realized_pnl_total.add(realized_pnl)

    term = action_term(row.side, row.instrument_kind, episode.opening_side)

    episode.qty = new_qty
    episode.total_fees = episode.total_fees.add(fees)
    episode.cash_total = episode.cash_total.add(row.cash_delta)
    episode.txns.append(EpisodeTxn(
        txn_id=row.txn_id,
        timestamp=row.timestamp,
        instrument_kind=row.instrument_kind,
        ticker=row.ticker,
        expiry=row.expiry,
        strike=row.strike,
        side=row.side,
        qty=row.qty,
        price=row.price,
        fees=fees,
        cash_delta=row.cash_delta,
        realized_pnl_delta=realized_pnl,
        note=note if note is not None else row.memo,
        action_term=term,
    ))

    if new_qty == 0:
        episode.close_timestamp = row.timestamp


def _is_roll_of(candidate: PositionEpisode, row: LedgerRow, roll_window: timedelta) -> bool:
    if candidate.close_timestamp is None or not candidate.txns:
        return False
    if row.timestamp - candidate.close_timestamp > roll_window:
        return False
    last = candidate.txns[-1]
    if last.side is None or row.side is None or last.side is not row.side.opposite:
        return False
    if last.qty != row.qty:
        return False
    # Reopening the very same contract is a new position, not a roll
    return last.strike != row.strike or last.expiry != row.expiry


def _pop_roll_candidate(
    row: LedgerRow,
    roll_candidates: dict[tuple[str, str, str, str, str, str], PositionEpisode],
    roll_window: timedelta,
) -> PositionEpisode | None:
    """Find and remove the closed option episode this fill rolls into, if any."""
    prefix = (row.user_id, row.account_id, row.ticker or "", row.instrument_kind.value)
    matches = [
        (key, candidate)
        for key, candidate in roll_candidates.items()
        if key[:4] == prefix and _is_roll_of(candidate, row, roll_window)
    ]
    if not matches:
        return None
    key, candidate = max(
        matches,
        key=lambda item: (item[1].close_timestamp, item[1].txns[-1].txn_id),
    )
    del roll_candidates[key]
    return candidate


def _reopen_for_roll(episode: PositionEpisode) -> None:
    episode.rolled = True
    episode.txns[-1].note = ROLL_CLOSE_NOTE
    episode.close_timestamp = None
    episode.qty = Decimal("0")
    episode.avg_price = CurrencyAmount.zero(episode.currency)


def build_episodes(ledger: list[LedgerRow], roll_window: timedelta = ROLL_WINDOW) -> list[PositionEpisode]:
    """
    Group accepted ledger rows into position episodes.

    Rejected rows are ignored. CASH rows each become a closed single-fill
    episode. Trades extend the open episode for their exact instrument, roll into
    a recently closed option episode, or open a new episode.

    Args:
        ledger: Ledger rows from build_ledger (any order).
        roll_window: Maximum gap between a close and the fill that rolls it.

    Returns:
        Episodes sorted by (user, account, episode key, open timestamp).
    """
    accepted = sorted(
        (row for row in ledger if row.accepted),
        key=lambda r: sort_key(r.timestamp, r.txn_id)
    )

    episodes: list[PositionEpisode] = []
    open_episodes: dict[tuple[str, str, str], PositionEpisode] = {}
    roll_candidates: dict[tuple[str, str, str, str, str, str], PositionEpisode] = {}

    for row in accepted:
        if row.instrument_kind is InstrumentKind.CASH:
            episodes.append(_cash_episode(row))
            continue

        key = episode_key(row.instrument_kind, row.ticker, row.strike, row.expiry)
        open_key = (row.user_id, row.account_id, key)
        episode = open_episodes.get(open_key)
        note = row.memo

        if episode is None:
            candidate = None
            if row.instrument_kind.is_option:
                candidate = _pop_roll_candidate(row, roll_candidates, roll_window)
            if candidate is not None:
                _reopen_for_roll(candidate)
                episode = candidate
                note = ROLL_OPEN_NOTE
            else:
                episode = _start_episode(row, key)
                episodes.append(episode)
            open_episodes[open_key] = episode

        apply_trade(episode, row, note)

        if episode.qty == 0:
            del open_episodes[open_key]
            if row.instrument_kind.is_option:
                roll_candidates[_contract_key(row.user_id, row.account_id, row)] = episode

    episodes.sort(key=lambda e: (e.user_id, e.account_id, e.episode_key, e.open_timestamp, e.txns[0].txn_id))
    return episodes
