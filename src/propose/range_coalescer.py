from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from src.config import CoalescerSettings
from src.models import FrameDecision, TimeRange, total_duration


@dataclass(slots=True)
class RangeStats:
    segment_count: int
    total_kept_duration: float
    total_discarded_duration: float
    compression_ratio: float


def coalesce_to_ranges(
    decisions: Sequence[FrameDecision],
    config: CoalescerSettings | None = None,
) -> list[TimeRange]:
    """Turn point-in-time frame verdicts into continuous playable ranges.

    Pipeline:
    1) stable sort verdicts by timestamp
    2) drop discarded verdicts
    3) widen each remaining verdict to ``frame_window`` seconds
    4) merge neighbours closer than ``merge_gap``
    5) drop merged ranges shorter than ``min_segment_duration``

    With ``frame_window=1.0``, keeps at 0s, 1s and 3s and a discard at 2s give
    ``[0, 2)`` and ``[3, 4)`` before the duration floor is applied.
    """

    config = config or CoalescerSettings()
    if not decisions:
        return []

    timeline = sorted(decisions, key=lambda decision: decision.timestamp)
    provisional = [
        TimeRange(
            start=decision.timestamp,
            end=decision.timestamp + config.frame_window,
            priority=decision.priority,
            label=decision.reason,
        )
        for decision in timeline
        if decision.decision != "discard"
    ]

    merged = merge_adjacent_ranges(provisional, merge_gap=config.merge_gap)
    return [time_range for time_range in merged if time_range.duration >= config.min_segment_duration]


def merge_adjacent_ranges(ranges: Sequence[TimeRange], merge_gap: float) -> list[TimeRange]:
    """Single sweep merging ranges that overlap or sit within ``merge_gap`` of each other."""

    if len(ranges) <= 1:
        return list(ranges)

    timeline = sorted(ranges, key=lambda time_range: time_range.start)
    merged: list[TimeRange] = [timeline[0]]

    for time_range in timeline[1:]:
        last = merged[-1]
        if time_range.start <= last.end + merge_gap:
            merged[-1] = last.merged_with(time_range)
            continue
        merged.append(time_range)

    return merged


def get_range_stats(ranges: Sequence[TimeRange], video_duration: float) -> RangeStats:
    kept = total_duration(ranges)

    return RangeStats(
        segment_count=len(ranges),
        total_kept_duration=kept,
        total_discarded_duration=max(video_duration - kept, 0.0),
        compression_ratio=compression_ratio(video_duration, kept),
    )


def compression_ratio(video_duration: float, kept_duration: float) -> float:
    """Source duration over retained duration; 1 when nothing is retained."""

    if kept_duration <= 0:
        return 1.0
    return video_duration / kept_duration
