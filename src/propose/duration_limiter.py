from __future__ import annotations

import logging
from typing import Sequence

from src.models import TimeRange, sort_ranges_by_priority, sort_ranges_by_time

logger = logging.getLogger(__name__)


def limit_by_duration(ranges: Sequence[TimeRange], max_duration: float) -> list[TimeRange]:
    """Keep the highest-priority ranges that fit into ``max_duration`` seconds.

    Greedy: ranges are visited by descending priority (ties in input order) and
    accepted while the running total stays within budget. A range that does not
    fit is skipped for good, so smaller later ranges can still be accepted.
    The selection is returned in playback order.
    """

    selected: list[TimeRange] = []
    used = 0.0

    for time_range in sort_ranges_by_priority(ranges):
        if used + time_range.duration <= max_duration:
            selected.append(time_range)
            used += time_range.duration

    if len(selected) < len(ranges):
        logger.debug(
            "Duration budget %.2fs kept %d of %d ranges (%.2fs).",
            max_duration,
            len(selected),
            len(ranges),
            used,
        )

    return sort_ranges_by_time(selected)
