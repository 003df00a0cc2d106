from datetime import datetime
from enum import Enum
from typing import Union

from ..episodes import KindGroup, PositionEpisode


class DateRangeMode(str, Enum):
    """How an episode must relate to a date range to be kept."""

    OVERLAP = "overlap"
    OPENED_DURING = "openedDuring"
    CLOSED_DURING = "closedDuring"


def get_account_episodes(episodes: list[PositionEpisode], account_id: str) -> list[PositionEpisode]:
    return [episode for episode in episodes if episode.account_id == account_id]


def get_open_episodes(episodes: list[PositionEpisode]) -> list[PositionEpisode]:
    return [episode for episode in episodes if episode.qty != 0]


def get_closed_episodes(episodes: list[PositionEpisode]) -> list[PositionEpisode]:
    return [episode for episode in episodes if episode.qty == 0]


def get_episodes_by_kind(episodes: list[PositionEpisode], kind_group: Union[KindGroup, str]) -> list[PositionEpisode]:
    kind_group = KindGroup(kind_group)
    return [episode for episode in episodes if episode.kind_group is kind_group]


def get_episodes_by_ticker(episodes: list[PositionEpisode], ticker: str) -> list[PositionEpisode]:
    """Share episodes keyed by the ticker plus option episodes on it."""
    return [
        episode for episode in episodes
        if episode.episode_key == ticker or episode.episode_key.startswith(f"{ticker}|")
    ]


def filter_episodes_by_date_range(
    episodes: list[PositionEpisode],
    start: datetime,
    end: datetime,
    mode: Union[DateRangeMode, str] = DateRangeMode.OVERLAP,
) -> list[PositionEpisode]:
    """
    Keep episodes that fall in a date range. Both bounds are inclusive.

    Args:
        episodes: Episodes to filter.
        start: Start of the range; must be comparable with episode timestamps
            (timezone-aware).
        end: End of the range.
        mode: ``overlap`` keeps episodes opened by ``end`` and still open or
            closed on/after ``start``; ``openedDuring`` keeps episodes opened in
            the range; ``closedDuring`` keeps episodes closed in the range.

    Raises:
        ValueError: If the mode is unknown.
    """
    try:
        mode = DateRangeMode(mode)
    except ValueError:
        raise ValueError(f"Unknown date range mode: {mode!r}") from None

    if mode is DateRangeMode.OVERLAP:
        return [
            episode for episode in episodes
            if episode.open_timestamp <= end
            and (episode.close_timestamp is None or episode.close_timestamp >= start)
        ]
    if mode is DateRangeMode.OPENED_DURING:
        return [episode for episode in episodes if start <= episode.open_timestamp <= end]
    return [
        episode for episode in episodes
        if episode.close_timestamp is not None and start <= episode.close_timestamp <= end
    ]
