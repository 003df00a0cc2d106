from ..episodes import KindGroup, PositionEpisode


def format_episode_for_display(episode: PositionEpisode) -> str:
    """One-line human summary, e.g. ``AAPL CLOSED: 0 shares @ $ 150.01 (P&L: $ 998.00)``."""
    status = "CLOSED" if episode.qty == 0 else "OPEN"
    qty = episode.qty
    avg_price = episode.avg_price.format()
    realized_pnl = episode.realized_pnl_total.format()

    if episode.kind_group is KindGroup.CASH:
        return f"CASH {status}: {episode.cash_total.format()}"

    if episode.kind_group is KindGroup.SHARES:
        return f"{episode.episode_key} {status}: {qty} shares @ {avg_price} (P&L: {realized_pnl})"

    right = episode.current_right.value if episode.current_right else "UNKNOWN"
    expiry = episode.current_expiry.isoformat() if episode.current_expiry else "UNKNOWN"
    strike = f"{episode.current_strike.amount:.2f}" if episode.current_strike else "UNKNOWN"
    return f"{episode.episode_key} {status}: {qty} contracts {right} ${strike} {expiry} (P&L: {realized_pnl})"
