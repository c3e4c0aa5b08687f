from __future__ import annotations

import pytest

from src.config import DecisionSettings
from src.decide.decision_matrix import (
    decide_frame,
    get_decision_stats,
    matched_labels,
    process_frame_batch,
    should_boost,
    should_discard,
)
from src.models import FrameDecision, create_frame_metadata


def _frame(timestamp: float = 0.0, *, aesthetic: float = 0.5, confidence: float = 0.9, labels=()):
    return create_frame_metadata(
        timestamp=timestamp,
        frame_index=int(timestamp),
        video_duration=60.0,
        aesthetic_score=aesthetic,
        confidence=confidence,
        labels=labels,
    )


def test_blacklisted_label_discards_even_with_high_aesthetic() -> None:
    decision = decide_frame(_frame(aesthetic=0.95, labels=["Toilet seat", "kitchen"]))

    assert decision.decision == "discard"
    assert decision.priority == 0
    assert "Toilet seat" in decision.reason


def test_boost_label_highlights_with_aesthetic_bonus() -> None:
    decision = decide_frame(_frame(3.0, aesthetic=0.5, labels=["Outdoor Swimming Pool"]))

    assert decision.decision == "highlight"
    assert decision.timestamp == 3.0
    assert decision.priority == pytest.approx(11.0)
    assert decision.reason.startswith("Premium content")


def test_low_confidence_labels_are_ignored() -> None:
    decision = decide_frame(_frame(aesthetic=0.4, confidence=0.1, labels=["bathroom"]))

    assert decision.decision == "keep"
    assert decision.priority == pytest.approx(5.4)


def test_confidence_exactly_at_threshold_is_trusted() -> None:
    decision = decide_frame(_frame(confidence=0.3, labels=["patio"]))

    assert decision.decision == "highlight"


def test_domain_mode_off_skips_label_rules() -> None:
    config = DecisionSettings(domain_mode=False)

    assert decide_frame(_frame(aesthetic=0.6, labels=["bathroom"]), config).decision == "keep"
    assert decide_frame(_frame(aesthetic=0.1, labels=["kitchen"]), config).decision == "discard"


@pytest.mark.parametrize(
    ("aesthetic", "expected"),
    [(0.3, "keep"), (0.29, "discard"), (0.0, "discard")],
)
def test_aesthetic_threshold_is_inclusive(aesthetic: float, expected: str) -> None:
    decision = decide_frame(_frame(aesthetic=aesthetic, labels=["studio couch"]))

    assert decision.decision == expected


def test_default_discard_reports_score() -> None:
    decision = decide_frame(_frame(aesthetic=0.12))

    assert decision.reason == "Low aesthetic score: 12%"
    assert decision.priority == 0


def test_label_matching_is_substring_and_case_insensitive() -> None:
    assert should_discard(["MEDICINE CABINET, medicine chest"])
    assert should_boost(["mountain bike"])
    assert not should_boost(["desk", "monitor"])
    assert matched_labels(["Patio, terrace", "desk"], ["terrace"]) == ["Patio, terrace"]


def test_batch_preserves_input_order() -> None:
    frames = [_frame(2.0), _frame(0.0, aesthetic=0.0), _frame(1.0, labels=["garden"])]

    decisions = process_frame_batch(frames)

    assert [d.timestamp for d in decisions] == [2.0, 0.0, 1.0]
    assert [d.decision for d in decisions] == ["keep", "discard", "highlight"]


def test_decision_stats_counts_and_percentage() -> None:
    decisions = [
        FrameDecision(0.0, "keep", "k", 5.0),
        FrameDecision(1.0, "highlight", "h", 10.0),
        FrameDecision(2.0, "discard", "d", 0.0),
        FrameDecision(3.0, "discard", "d", 0.0),
    ]

    stats = get_decision_stats(decisions)

    assert (stats.total, stats.keep, stats.highlight, stats.discard) == (4, 1, 1, 2)
    assert stats.keep_percentage == pytest.approx(50.0)
    assert get_decision_stats([]).keep_percentage == 0.0
