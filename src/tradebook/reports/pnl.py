from datetime import datetime
from typing import Union

from ..currency import Currency, CurrencyAmount, ExchangeRateManager, to_currency
from ..episodes import PositionEpisode
from ..ledger import Balances
from .filters import get_account_episodes


def get_total_realized_pnl(episodes: list[PositionEpisode]) -> dict[Currency, CurrencyAmount]:
    """Realized P&L summed per currency. Currencies are never combined."""
    totals: dict[Currency, CurrencyAmount] = {}
    for episode in episodes:
        currency = episode.realized_pnl_total.currency
        current = totals.get(currency, CurrencyAmount.zero(currency))
        totals[currency] = current.add(episode.realized_pnl_total)
    return totals


def get_account_realized_pnl(episodes: list[PositionEpisode], account_id: str) -> dict[Currency, CurrencyAmount]:
    return get_total_realized_pnl(get_account_episodes(episodes, account_id))


def get_account_balance(balances: Balances, account_id: str, currency: Union[Currency, str] = Currency.USD) -> CurrencyAmount:
    """The account's balance in one currency, zero if it never held that currency."""
    currency = to_currency(currency)
    balance = balances.get(account_id, {}).get(currency)
    return balance if balance is not None else CurrencyAmount.zero(currency)


def convert_totals(
    totals: dict[Currency, CurrencyAmount],
    target_currency: Union[Currency, str],
    exchange_rate_manager: ExchangeRateManager,
    at: datetime | None = None,
) -> CurrencyAmount:
    """
    Convert per-currency totals into one currency and add them up.

    Args:
        totals: Currency -> amount, as returned by get_total_realized_pnl.
        target_currency: The currency to report in.
        exchange_rate_manager: Supplies the rate for each currency pair.
        at: Date for the rate lookup; None asks for the latest rate.

    Returns:
        The combined amount in the target currency.

    Raises:
        ValueError: If the manager has no rate for a needed pair.
    """
    target = to_currency(target_currency)
    result = CurrencyAmount.zero(target)
    for currency, amount in sorted(totals.items(), key=lambda item: item[0].value):
        if currency is not target:
            rate = exchange_rate_manager.get_exchange_rate(currency, target, at)
            amount = amount.convert_to(target, rate)
        result = result.add(amount)
    return result
