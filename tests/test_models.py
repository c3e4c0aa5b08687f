from __future__ import annotations

import pytest

from src.errors import ConfigurationError
from src.models import (
    RawFrame,
    TimeRange,
    create_frame_metadata,
    serialize_frame_metadata,
    sort_ranges_by_priority,
    sort_ranges_by_time,
    total_duration,
)


@pytest.mark.parametrize(("start", "end"), [(-0.1, 1.0), (2.0, 2.0), (3.0, 1.0)])
def test_time_range_rejects_invalid_bounds(start: float, end: float) -> None:
    with pytest.raises(ConfigurationError):
        TimeRange(start=start, end=end)


def test_time_range_configuration_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        TimeRange(start=1.0, end=0.5)


def test_merged_with_keeps_own_label_and_max_priority() -> None:
    first = TimeRange(start=0.0, end=1.0, priority=5.0, label="first")
    second = TimeRange(start=0.8, end=2.5, priority=12.0, label="second")

    merged = first.merged_with(second)

    assert merged == TimeRange(start=0.0, end=2.5, priority=12.0, label="first")


def test_merged_with_falls_back_to_other_label() -> None:
    merged = TimeRange(start=0.0, end=1.0).merged_with(TimeRange(start=1.0, end=2.0, label="other"))

    assert merged.label == "other"


def test_overlap_is_strict_at_touching_edges() -> None:
    assert TimeRange(0.0, 2.0).overlaps(TimeRange(1.0, 3.0))
    assert not TimeRange(0.0, 1.0).overlaps(TimeRange(1.0, 2.0))


def test_sorting_helpers_are_stable() -> None:
    a = TimeRange(4.0, 5.0, priority=5.0, label="a")
    b = TimeRange(0.0, 1.0, priority=7.0, label="b")
    c = TimeRange(2.0, 3.0, priority=5.0, label="c")

    assert [r.label for r in sort_ranges_by_priority([a, b, c])] == ["b", "a", "c"]
    assert [r.label for r in sort_ranges_by_time([a, b, c])] == ["b", "c", "a"]
    assert total_duration([a, b, c]) == pytest.approx(3.0)


def test_serialize_frame_metadata_drops_thumbnail() -> None:
    frame = create_frame_metadata(
        timestamp=1,
        frame_index=1,
        video_duration=10,
        labels=["kitchen"],
        thumbnail=object(),
    )

    payload = serialize_frame_metadata(frame)

    assert "thumbnail" not in payload
    assert payload["labels"] == ["kitchen"]
    assert payload["aesthetic_score"] == 0.0


def test_raw_frame_release_drops_payload() -> None:
    frame = RawFrame(payload=b"pixels", timestamp=0.0, frame_index=0, video_duration=1.0)

    frame.release()
    frame.release()

    assert frame.payload is None
    assert frame.released is True
