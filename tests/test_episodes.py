"""Tests for the episode builder: cost basis, realized P&L, action terms and option rolls."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from tradebook.currency import CurrencyAmount
from tradebook.episodes import (
    ROLL_CLOSE_NOTE,
    ROLL_OPEN_NOTE,
    ROLL_WINDOW,
    ActionTerm,
    KindGroup,
    OptionDirection,
    build_episodes,
)
from tradebook.ledger import build_ledger
from tradebook.transactions import InstrumentKind, RawTransaction


def _txn(txn_id, when, kind, qty, side=None, price=None, fees=None, ticker="AAPL", memo=None, **kwargs):
    return RawTransaction(
        id=txn_id,
        user_id="user-1",
        account_id="acct-1",
        timestamp=when,
        instrument_kind=kind,
        qty=qty,
        side=side,
        price=price,
        fees=fees,
        ticker_id=ticker if kind != "CASH" else None,
        ticker_name=ticker if kind != "CASH" else None,
        memo=memo,
        **kwargs,
    )


def _episodes(transactions, **kwargs):
    ledger, _ = build_ledger(transactions, {"AAPL": "AAPL", "MSFT": "MSFT"})
    return build_episodes(ledger, **kwargs)


def _usd(value):
    return CurrencyAmount(value, "USD")


T0 = datetime(2025, 9, 1, 14, 0, tzinfo=timezone.utc)


def test_share_round_trip_realizes_pnl_net_of_fees():
    """Buy 100 @ 150 fee 1, sell 100 @ 160 fee 1: (160 - 150.01) * 100 - 1."""
    episodes = _episodes([
        _txn("t1", T0, "SHARES", 100, side="BUY", price=150, fees=1),
        _txn("t2", T0 + timedelta(days=1), "SHARES", 100, side="SELL", price=160, fees=1),
    ])
    assert len(episodes) == 1
    episode = episodes[0]
    assert episode.kind_group is KindGroup.SHARES
    assert episode.episode_key == "AAPL"
    assert episode.qty == 0
    assert episode.is_closed
    assert episode.close_timestamp == T0 + timedelta(days=1)
    assert episode.avg_price == _usd("150.01")
    assert episode.realized_pnl_total == _usd("998.00")
    assert episode.total_fees == _usd(2)
    assert episode.cash_total == _usd("998.00")
    assert [t.action_term for t in episode.txns] == [ActionTerm.BUY, ActionTerm.SELL]
    assert episode.txns[1].realized_pnl_delta == _usd("998.00")


def test_adding_to_position_uses_weighted_average_cost():
    """100 @ 150 fee 1 then 50 @ 160 fee 1 averages (100*150.01 + 50*160.02) / 150."""
    episodes = _episodes([
        _txn("t1", T0, "SHARES", 100, side="BUY", price=150, fees=1),
        _txn("t2", T0 + timedelta(hours=1), "SHARES", 50, side="BUY", price=160, fees=1),
    ])
    episode = episodes[0]
    assert episode.qty == Decimal("150")
    assert episode.is_open
    assert episode.close_timestamp is None
    assert episode.avg_price == _usd("153.35")


def test_partial_sell_realizes_only_sold_units():
    """Selling 50 of 100 realizes P&L on 50 and keeps the average."""
    episodes = _episodes([
        _txn("t1", T0, "SHARES", 100, side="BUY", price=150, fees=1),
        _txn("t2", T0 + timedelta(hours=1), "SHARES", 50, side="SELL", price=160, fees=1),
    ])
    episode = episodes[0]
    assert episode.qty == Decimal("50")
    assert episode.avg_price == _usd("150.01")
    assert episode.realized_pnl_total == _usd("498.50")


def test_reopening_shares_after_close_starts_new_episode():
    """Verify a flat position followed by a new buy is a second episode."""
    episodes = _episodes([
        _txn("t1", T0, "SHARES", 10, side="BUY", price=100),
        _txn("t2", T0 + timedelta(hours=1), "SHARES", 10, side="SELL", price=110),
        _txn("t3", T0 + timedelta(hours=2), "SHARES", 5, side="BUY", price=105),
    ])
    assert len(episodes) == 2
    assert [e.open_timestamp for e in episodes] == [T0, T0 + timedelta(hours=2)]
    assert episodes[0].realized_pnl_total == _usd(100)
    assert not any(e.rolled for e in episodes)


def test_cash_is_a_closed_singleton_episode():
    """Verify a deposit becomes its own closed episode carrying the memo."""
    episodes = _episodes([_txn("c1", T0, "CASH", 2000, memo="deposit")])
    assert len(episodes) == 1
    episode = episodes[0]
    assert episode.kind_group is KindGroup.CASH
    assert episode.episode_key == "CASH"
    assert episode.qty == 0
    assert episode.open_timestamp == episode.close_timestamp == T0
    assert episode.cash_total == _usd(2000)
    assert episode.realized_pnl_total.is_zero()
    assert episode.txns[0].note == "deposit"
    assert episode.txns[0].action_term is None


def test_rejected_rows_do_not_create_episodes():
    """Verify rejected trades are left out of episodes."""
    episodes = _episodes([
        _txn("t1", T0, "SHARES", 5, side="SELL", price=100),
    ])
    assert episodes == []


def test_short_option_lifecycle():
    """Sell a call then buy it back: STO/BTC terms, CC direction and short-side P&L."""
    contract = dict(strike=160, expiry="2025-09-19")
    episodes = _episodes([
        _txn("t1", T0, "CALL", 1, side="SELL", price=5, fees="0.50", **contract),
        _txn("t2", T0 + timedelta(days=2), "CALL", 1, side="BUY", price=1, fees="0.50", **contract),
    ])
    assert len(episodes) == 1
    episode = episodes[0]
    assert episode.kind_group is KindGroup.OPTION
    assert episode.episode_key == "AAPL|CALL|160|2025-09-19"
    assert episode.option_direction is OptionDirection.CC
    assert [t.action_term for t in episode.txns] == [ActionTerm.STO, ActionTerm.BTC]
    # Entry cost 5 + 0.50 / 100 rounds to 5.01
    assert episode.avg_price == _usd("5.01")
    assert episode.realized_pnl_total == _usd("400.50")
    assert episode.cash_total == _usd("399.00")
    assert episode.is_closed


def test_long_put_lifecycle():
    """Buy a put then sell it: BTO/STC terms and PUT direction."""
    contract = dict(strike=150, expiry="2025-10-17")
    episodes = _episodes([
        _txn("t1", T0, "PUT", 2, side="BUY", price=3, **contract),
        _txn("t2", T0 + timedelta(days=1), "PUT", 2, side="SELL", price=4, **contract),
    ])
    episode = episodes[0]
    assert episode.option_direction is OptionDirection.PUT
    assert [t.action_term for t in episode.txns] == [ActionTerm.BTO, ActionTerm.STC]
    assert episode.realized_pnl_total == _usd(200)


def test_sold_put_is_cash_secured_put():
    episodes = _episodes([
        _txn("t1", T0, "PUT", 1, side="SELL", price=2, strike=140, expiry="2025-09-19"),
    ])
    assert episodes[0].option_direction is OptionDirection.CSP
    assert episodes[0].qty == Decimal("-1")


def _roll_sequence(gap):
    return [
        _txn("t1", T0, "CALL", 1, side="SELL", price=5, fees="0.50", strike=160, expiry="2025-09-19", memo="open"),
        _txn("t2", T0 + timedelta(days=3), "CALL", 1, side="BUY", price=1, fees="0.50", strike=160, expiry="2025-09-19"),
        _txn("t3", T0 + timedelta(days=3) + gap, "CALL", 1, side="SELL", price=3, strike=165, expiry="2025-09-26"),
    ]


def test_roll_within_window_continues_episode():
    """Close a short call and sell a different contract shortly after: one rolled episode."""
    episodes = _episodes(_roll_sequence(timedelta(hours=1)))
    assert len(episodes) == 1
    episode = episodes[0]
    assert episode.rolled
    assert episode.is_open
    assert episode.close_timestamp is None
    assert episode.qty == Decimal("-1")
    assert episode.episode_key == "AAPL|CALL|160|2025-09-19"
    assert [t.note for t in episode.txns] == ["open", ROLL_CLOSE_NOTE, ROLL_OPEN_NOTE]
    assert [t.action_term for t in episode.txns] == [ActionTerm.STO, ActionTerm.BTC, ActionTerm.STO]
    assert episode.current_right is InstrumentKind.CALL
    assert episode.current_strike == _usd(165)
    assert episode.current_expiry == date(2025, 9, 26)
    assert episode.current_instrument_key == "AAPL|2025-09-26|165|CALL"
    assert episode.avg_price == _usd(3)
    assert episode.realized_pnl_total == _usd("400.50")


def test_roll_window_boundary_is_inclusive():
    """Verify a new leg exactly ROLL_WINDOW after the close still rolls."""
    episodes = _episodes(_roll_sequence(ROLL_WINDOW))
    assert len(episodes) == 1
    assert episodes[0].rolled


def test_roll_outside_window_is_independent():
    """Verify a new leg more than ten hours after the close is a new episode."""
    episodes = _episodes(_roll_sequence(ROLL_WINDOW + timedelta(minutes=1)))
    assert len(episodes) == 2
    assert not any(e.rolled for e in episodes)
    assert {e.episode_key for e in episodes} == {"AAPL|CALL|160|2025-09-19", "AAPL|CALL|165|2025-09-26"}


def test_roll_window_can_be_overridden():
    """Verify callers can widen the roll window."""
    episodes = _episodes(_roll_sequence(timedelta(hours=20)), roll_window=timedelta(days=1))
    assert len(episodes) == 1
    assert episodes[0].rolled


def test_roll_requires_matching_quantity():
    """Verify a replacement leg of a different size is not a roll."""
    transactions = _roll_sequence(timedelta(hours=1))
    transactions[2] = _txn(
        "t3", T0 + timedelta(days=3, hours=1), "CALL", 2, side="SELL", price=3, strike=165, expiry="2025-09-26"
    )
    episodes = _episodes(transactions)
    assert len(episodes) == 2
    assert not any(e.rolled for e in episodes)


def test_roll_requires_opposite_side_of_closing_fill():
    """Verify buying a new contract after buying to close is not a roll."""
    transactions = _roll_sequence(timedelta(hours=1))
    transactions[2] = _txn(
        "t3", T0 + timedelta(days=3, hours=1), "CALL", 1, side="BUY", price=3, strike=165, expiry="2025-09-26"
    )
    episodes = _episodes(transactions)
    assert len(episodes) == 2
    assert not any(e.rolled for e in episodes)


def test_reopening_same_contract_is_not_a_roll():
    """Verify selling the same contract again after closing starts a new episode."""
    transactions = _roll_sequence(timedelta(hours=1))
    transactions[2] = _txn(
        "t3", T0 + timedelta(days=3, hours=1), "CALL", 1, side="SELL", price=3, strike=160, expiry="2025-09-19"
    )
    episodes = _episodes(transactions)
    assert len(episodes) == 2
    assert not any(e.rolled for e in episodes)


def test_puts_do_not_roll_into_calls():
    """Verify a roll must keep the option right."""
    transactions = _roll_sequence(timedelta(hours=1))
    transactions[2] = _txn(
        "t3", T0 + timedelta(days=3, hours=1), "PUT", 1, side="SELL", price=3, strike=150, expiry="2025-09-26"
    )
    episodes = _episodes(transactions)
    assert len(episodes) == 2


def test_different_open_contracts_never_merge():
    """Sell strike A and buy strike B at the same time: two separate episodes."""
    episodes = _episodes([
        _txn("t1", T0, "CALL", 1, side="SELL", price=5, strike=160, expiry="2025-09-19"),
        _txn("t2", T0 + timedelta(minutes=5), "CALL", 1, side="BUY", price=2, strike=170, expiry="2025-09-19"),
    ])
    assert len(episodes) == 2
    assert [e.option_direction for e in episodes] == [OptionDirection.CC, OptionDirection.CALL]
    assert not any(e.rolled for e in episodes)


def test_most_recently_closed_candidate_wins():
    """With two closed contracts eligible, the roll continues the one closed last."""
    episodes = _episodes([
        _txn("a1", T0, "CALL", 1, side="SELL", price=5, strike=160, expiry="2025-09-19"),
        _txn("b1", T0, "CALL", 1, side="SELL", price=4, strike=170, expiry="2025-09-19"),
        _txn("a2", T0 + timedelta(hours=1), "CALL", 1, side="BUY", price=1, strike=160, expiry="2025-09-19"),
        _txn("b2", T0 + timedelta(hours=2), "CALL", 1, side="BUY", price=1, strike=170, expiry="2025-09-19"),
        _txn("c1", T0 + timedelta(hours=3), "CALL", 1, side="SELL", price=3, strike=175, expiry="2025-09-26"),
    ])
    assert len(episodes) == 2
    first, second = episodes
    assert first.episode_key == "AAPL|CALL|160|2025-09-19"
    assert not first.rolled
    assert first.is_closed
    assert second.episode_key == "AAPL|CALL|170|2025-09-19"
    assert second.rolled
    assert second.current_strike == _usd(175)
    assert [t.txn_id for t in second.txns] == ["b1", "b2", "c1"]


def test_episodes_are_independent_of_input_order():
    """Verify shuffling the input produces the same episodes."""
    transactions = _roll_sequence(timedelta(hours=1)) + [
        _txn("s1", T0, "SHARES", 10, side="BUY", price=100, ticker="MSFT"),
        _txn("c1", T0, "CASH", 500),
    ]
    forward = _episodes(transactions)
    backward = _episodes(list(reversed(transactions)))
    assert [e.episode_id for e in forward] == [e.episode_id for e in backward]
    assert [e.realized_pnl_total for e in forward] == [e.realized_pnl_total for e in backward]
    assert [e.episode_key for e in forward] == ["AAPL|CALL|160|2025-09-19", "CASH", "MSFT"]
