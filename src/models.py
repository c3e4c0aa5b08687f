from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Literal

from src.errors import ConfigurationError

EditorialDecision = Literal["keep", "discard", "highlight"]
PipelineStage = Literal["loading", "extracting", "analyzing", "deciding", "complete"]


@dataclass(frozen=True, slots=True)
class FrameMetadata:
    """Analysis signals for one sampled instant of the source video."""

    timestamp: float
    frame_index: int
    video_duration: float
    aesthetic_score: float = 0.0
    confidence: float = 0.0
    labels: tuple[str, ...] = ()
    thumbnail: Any | None = field(default=None, compare=False, repr=False)


def create_frame_metadata(
    *,
    timestamp: float,
    frame_index: int,
    video_duration: float,
    aesthetic_score: float = 0.0,
    confidence: float = 0.0,
    labels: Iterable[str] = (),
    thumbnail: Any | None = None,
) -> FrameMetadata:
    return FrameMetadata(
        timestamp=float(timestamp),
        frame_index=int(frame_index),
        video_duration=float(video_duration),
        aesthetic_score=float(aesthetic_score),
        confidence=float(confidence),
        labels=tuple(str(label) for label in labels),
        thumbnail=thumbnail,
    )


def serialize_frame_metadata(frame: FrameMetadata) -> dict[str, Any]:
    """Plain dict for persistence; the preview payload is never serialized."""

    return {
        "timestamp": frame.timestamp,
        "frame_index": frame.frame_index,
        "video_duration": frame.video_duration,
        "aesthetic_score": frame.aesthetic_score,
        "confidence": frame.confidence,
        "labels": list(frame.labels),
    }


@dataclass(frozen=True, slots=True)
class FrameDecision:
    """Editorial verdict for a single frame."""

    timestamp: float
    decision: EditorialDecision
    reason: str
    priority: float


@dataclass(frozen=True, slots=True)
class TimeRange:
    """A contiguous interval of the source video to retain."""

    start: float
    end: float
    priority: float = 5.0
    label: str | None = None

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ConfigurationError(f"Range start cannot be negative (got {self.start}).")
        if self.end <= self.start:
            raise ConfigurationError(
                f"Range end must be after start (start={self.start}, end={self.end})."
            )

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and other.start < self.end

    def merged_with(self, other: TimeRange) -> TimeRange:
        return TimeRange(
            start=min(self.start, other.start),
            end=max(self.end, other.end),
            priority=max(self.priority, other.priority),
            label=self.label or other.label,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def total_duration(ranges: Iterable[TimeRange]) -> float:
    return sum(time_range.duration for time_range in ranges)


def sort_ranges_by_time(ranges: Iterable[TimeRange]) -> list[TimeRange]:
    return sorted(ranges, key=lambda time_range: time_range.start)


def sort_ranges_by_priority(ranges: Iterable[TimeRange]) -> list[TimeRange]:
    """Highest priority first; ties keep their incoming order."""

    return sorted(ranges, key=lambda time_range: -time_range.priority)


@dataclass(slots=True)
class RawFrame:
    """Decoded pixels for one sample. The consumer must call ``release()`` after use."""

    payload: Any
    timestamp: float
    frame_index: int
    video_duration: float
    thumbnail: Any | None = None
    released: bool = False

    def release(self) -> None:
        self.payload = None
        self.released = True


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    labels: tuple[str, ...]
    confidence: float
    aesthetic_score: float


@dataclass(frozen=True, slots=True)
class VideoInfo:
    duration_seconds: float
    width: int
    height: int
    frame_rate: float


@dataclass(frozen=True, slots=True)
class PipelineProgress:
    """Progress event delivered synchronously to the caller's sink."""

    stage: PipelineStage
    progress: float
    message: str
    current_frame: int | None = None
    total_frames: int | None = None


@dataclass(frozen=True, slots=True)
class PipelineStats:
    video_duration: float
    frames_analyzed: int
    frames_kept: int
    frames_highlighted: int
    frames_discarded: int
    output_duration: float
    segment_count: int
    compression_ratio: float


@dataclass(slots=True)
class PipelineResult:
    """Everything a completed run hands to the composition step."""

    ranges: list[TimeRange]
    frames: list[FrameMetadata]
    decisions: list[FrameDecision]
    stats: PipelineStats
