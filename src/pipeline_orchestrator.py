from __future__ import annotations

import logging
from pathlib import Path
from typing import AsyncIterator, Protocol

from src.config import Settings
from src.decide.decision_matrix import decide_frame, get_decision_stats
from src.ingest.frame_source import expected_frame_count
from src.models import (
    AnalysisResult,
    FrameDecision,
    FrameMetadata,
    PipelineProgress,
    PipelineResult,
    PipelineStage,
    PipelineStats,
    RawFrame,
    TimeRange,
    VideoInfo,
    create_frame_metadata,
)
from src.propose.duration_limiter import limit_by_duration
from src.propose.range_coalescer import coalesce_to_ranges, get_range_stats

logger = logging.getLogger(__name__)

EXTRACT_CEILING = 50.0
ANALYZE_CEILING = 90.0
DECIDING_PROGRESS = 95.0


class ProgressSink(Protocol):
    def __call__(self, progress: PipelineProgress) -> None: ...


class FrameSource(Protocol):
    async def get_video_info(self, source: str | Path) -> VideoInfo: ...

    def frames(self, source: str | Path) -> AsyncIterator[RawFrame]: ...


class ModelContext(Protocol):
    async def ensure_loaded(self) -> None: ...

    async def analyze(self, frame: RawFrame) -> AnalysisResult: ...


class EditPipeline:
    """Runs one video through load -> sample/analyze -> decide -> complete.

    Frames are handled strictly one at a time in timestamp order. Errors raised
    by the model or the frame source propagate as-is; a failed run returns
    nothing and is never retried here.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        model_context: ModelContext,
        frame_source: FrameSource,
        progress_sink: ProgressSink | None = None,
    ) -> None:
        self.settings = settings
        self.model_context = model_context
        self.frame_source = frame_source
        self.progress_sink = progress_sink

    async def process(self, source: str | Path) -> PipelineResult:
        frames: list[FrameMetadata] = []
        decisions: list[FrameDecision] = []

        self._report("loading", 0.0, "Loading AI model...")
        await self.model_context.ensure_loaded()
        self._report("loading", 100.0, "Model loaded")

        video_info = await self.frame_source.get_video_info(source)
        expected = expected_frame_count(
            video_info.duration_seconds,
            self.settings.ingest.stride_seconds,
            self.settings.ingest.max_frames,
        )
        logger.info("Sampling %s (%.1fs, ~%d frames)", source, video_info.duration_seconds, expected)

        frame_count = 0
        stream = self.frame_source.frames(source)
        try:
            async for raw_frame in stream:
                try:
                    frame_count += 1
                    self._report(
                        "extracting",
                        _scaled(frame_count, expected, 0.0, EXTRACT_CEILING),
                        f"Extracting frame {frame_count}/{expected}",
                        current_frame=frame_count,
                        total_frames=expected,
                    )

                    analysis = await self.model_context.analyze(raw_frame)
                    self._report(
                        "analyzing",
                        _scaled(frame_count, expected, EXTRACT_CEILING, ANALYZE_CEILING),
                        f"Analyzing frame {frame_count}/{expected}",
                        current_frame=frame_count,
                        total_frames=expected,
                    )

                    metadata = _to_frame_metadata(raw_frame, analysis)
                    decision = decide_frame(metadata, self.settings.decision)
                    frames.append(metadata)
                    decisions.append(decision)
                    logger.debug(
                        "Frame %d @ %.2fs -> %s (%s)",
                        raw_frame.frame_index,
                        raw_frame.timestamp,
                        decision.decision,
                        decision.reason,
                    )
                finally:
                    raw_frame.release()
        finally:
            await _close_stream(stream)

        self._report("deciding", DECIDING_PROGRESS, "Building edit timeline...")
        ranges = self._build_ranges(decisions)

        stats = build_stats(decisions, ranges, video_info.duration_seconds)
        logger.info(
            "Kept %d segments (%.1fs of %.1fs, ratio %.2f)",
            stats.segment_count,
            stats.output_duration,
            stats.video_duration,
            stats.compression_ratio,
        )
        self._report(
            "complete",
            100.0,
            f"Complete! Kept {stats.output_duration:.1f}s of {stats.video_duration:.1f}s",
        )

        return PipelineResult(ranges=ranges, frames=frames, decisions=decisions, stats=stats)

    def _build_ranges(self, decisions: list[FrameDecision]) -> list[TimeRange]:
        ranges = coalesce_to_ranges(decisions, self.settings.coalescer)

        max_duration = self.settings.pipeline.max_output_duration
        if max_duration > 0:
            ranges = limit_by_duration(ranges, max_duration)

        return ranges

    def _report(
        self,
        stage: PipelineStage,
        progress: float,
        message: str,
        *,
        current_frame: int | None = None,
        total_frames: int | None = None,
    ) -> None:
        if self.progress_sink is None:
            return
        self.progress_sink(
            PipelineProgress(
                stage=stage,
                progress=progress,
                message=message,
                current_frame=current_frame,
                total_frames=total_frames,
            )
        )


def build_stats(decisions: list[FrameDecision], ranges: list[TimeRange], video_duration: float) -> PipelineStats:
    decision_stats = get_decision_stats(decisions)
    range_stats = get_range_stats(ranges, video_duration)

    return PipelineStats(
        video_duration=video_duration,
        frames_analyzed=decision_stats.total,
        frames_kept=decision_stats.keep + decision_stats.highlight,
        frames_highlighted=decision_stats.highlight,
        frames_discarded=decision_stats.discard,
        output_duration=range_stats.total_kept_duration,
        segment_count=range_stats.segment_count,
        compression_ratio=range_stats.compression_ratio,
    )


def _to_frame_metadata(raw_frame: RawFrame, analysis: AnalysisResult) -> FrameMetadata:
    return create_frame_metadata(
        timestamp=raw_frame.timestamp,
        frame_index=raw_frame.frame_index,
        video_duration=raw_frame.video_duration,
        aesthetic_score=analysis.aesthetic_score,
        confidence=analysis.confidence,
        labels=analysis.labels,
        thumbnail=raw_frame.thumbnail,
    )


def _scaled(done: int, expected: int, floor: float, ceiling: float) -> float:
    # the source may yield more frames than estimated; never overshoot the stage
    fraction = min(done / max(expected, 1), 1.0)
    return floor + fraction * (ceiling - floor)


async def _close_stream(stream: object) -> None:
    # FrameStream exposes close(); plain async generators expose aclose()
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is not None:
        await close()
