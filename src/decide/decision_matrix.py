from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from src.config import DecisionSettings
from src.models import EditorialDecision, FrameDecision, FrameMetadata

DECISION_PRIORITIES: dict[EditorialDecision, float] = {
    "highlight": 10.0,
    "keep": 5.0,
    "discard": 0.0,
}

DISCARD_LABELS = (
    "toilet",
    "bathroom",
    "restroom",
    "urinal",
    "shower curtain",
    "bathtub",
    "medicine cabinet",
)

BOOST_LABELS = (
    "kitchen",
    "pool",
    "swimming pool",
    "patio",
    "backyard",
    "living room",
    "dining room",
    "fireplace",
    "ocean",
    "mountain",
    "garden",
    "balcony",
    "terrace",
)


@dataclass(slots=True)
class DecisionStats:
    total: int
    keep: int
    highlight: int
    discard: int
    keep_percentage: float


def matched_labels(labels: Iterable[str], vocabulary: Sequence[str]) -> list[str]:
    """Labels containing any vocabulary entry as a case-insensitive substring."""

    needles = [entry.lower() for entry in vocabulary]
    return [label for label in labels if any(needle in label.lower() for needle in needles)]


def should_discard(labels: Iterable[str]) -> bool:
    return bool(matched_labels(labels, DISCARD_LABELS))


def should_boost(labels: Iterable[str]) -> bool:
    return bool(matched_labels(labels, BOOST_LABELS))


def decide_frame(frame: FrameMetadata, config: DecisionSettings | None = None) -> FrameDecision:
    """Apply the editorial rules to one frame.

    Rules in priority order, first match wins:
    1) low-confidence labels are ignored
    2) blacklisted labels discard the frame (domain mode)
    3) boost labels highlight the frame (domain mode)
    4) aesthetic score at or above threshold keeps the frame
    5) everything else is discarded
    """

    config = config or DecisionSettings()
    aesthetic = frame.aesthetic_score
    trusted_labels = list(frame.labels) if frame.confidence >= config.confidence_threshold else []

    if config.domain_mode:
        blacklisted = matched_labels(trusted_labels, DISCARD_LABELS)
        if blacklisted:
            return FrameDecision(
                timestamp=frame.timestamp,
                decision="discard",
                reason=f"Contains blacklisted content: {', '.join(blacklisted)}",
                priority=DECISION_PRIORITIES["discard"],
            )

        boosted = matched_labels(trusted_labels, BOOST_LABELS)
        if boosted:
            return FrameDecision(
                timestamp=frame.timestamp,
                decision="highlight",
                reason=f"Premium content: {', '.join(boosted)}",
                priority=DECISION_PRIORITIES["highlight"] + aesthetic * 2,
            )

    if aesthetic >= config.aesthetic_threshold:
        return FrameDecision(
            timestamp=frame.timestamp,
            decision="keep",
            reason=f"High aesthetic score: {aesthetic * 100:.0f}%",
            priority=DECISION_PRIORITIES["keep"] + aesthetic,
        )

    return FrameDecision(
        timestamp=frame.timestamp,
        decision="discard",
        reason=f"Low aesthetic score: {aesthetic * 100:.0f}%",
        priority=DECISION_PRIORITIES["discard"],
    )


def process_frame_batch(
    frames: Iterable[FrameMetadata],
    config: DecisionSettings | None = None,
) -> list[FrameDecision]:
    return [decide_frame(frame, config) for frame in frames]


def get_decision_stats(decisions: Sequence[FrameDecision]) -> DecisionStats:
    keep = sum(1 for decision in decisions if decision.decision == "keep")
    highlight = sum(1 for decision in decisions if decision.decision == "highlight")
    discard = sum(1 for decision in decisions if decision.decision == "discard")
    total = len(decisions)

    return DecisionStats(
        total=total,
        keep=keep,
        highlight=highlight,
        discard=discard,
        keep_percentage=((keep + highlight) / total) * 100 if total else 0.0,
    )
