from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer

from src.config import Settings, build_settings, load_settings
from src.decide.decision_matrix import get_decision_stats, process_frame_batch
from src.errors import EditPipelineError
from src.features.vision_analyst import VisionModelContext
from src.ingest.frame_source import OpenCVFrameSource
from src.ingest.probe import probe_media
from src.logging_config import configure_logging
from src.models import PipelineProgress
from src.pipeline_orchestrator import EditPipeline
from src.propose.duration_limiter import limit_by_duration
from src.propose.exporter import export_final_outputs, load_frame_metadata, load_time_ranges
from src.propose.range_coalescer import coalesce_to_ranges, get_range_stats

app = typer.Typer(help="Smart-cut pipeline: decide which parts of a video to keep.")
config_app = typer.Typer(help="Configuration commands.")
ingest_app = typer.Typer(help="Ingest commands.")
propose_app = typer.Typer(help="Range output and review commands.")

app.add_typer(config_app, name="config")
app.add_typer(ingest_app, name="ingest")
app.add_typer(propose_app, name="propose")

logger = logging.getLogger(__name__)

CONFIG_OPTION_HELP = "Path to YAML configuration file."


class _ProgressPrinter:
    """Echo pipeline progress to stderr without flooding it with per-frame lines."""

    def __init__(self, step: float = 10.0) -> None:
        self.step = step
        self._stage: str | None = None
        self._last_printed = -1.0

    def __call__(self, progress: PipelineProgress) -> None:
        stage_changed = progress.stage != self._stage
        if not stage_changed and progress.progress - self._last_printed < self.step:
            return
        self._stage = progress.stage
        self._last_printed = progress.progress
        typer.echo(f"[{progress.stage}] {progress.progress:5.1f}% {progress.message}", err=True)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _with_overrides(settings: Settings, overrides: dict[str, dict[str, Any]]) -> Settings:
    data = settings.model_dump(mode="python")
    for group, values in overrides.items():
        data[group].update({key: value for key, value in values.items() if value is not None})
    return build_settings(data)


def _build_pipeline(settings: Settings, model_context: VisionModelContext) -> EditPipeline:
    return EditPipeline(
        settings,
        model_context=model_context,
        frame_source=OpenCVFrameSource(settings.ingest),
        progress_sink=_ProgressPrinter(),
    )


def _create_model_context(settings: Settings) -> VisionModelContext:
    return VisionModelContext(settings.vision)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="EDIT_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@ingest_app.command("probe")
def probe(
    video_path: str,
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="EDIT_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Print duration and geometry of a video."""

    _bootstrap(config_path)
    try:
        result = probe_media(video_path)
    except EditPipelineError as exc:
        logger.error("Probe failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    logger.info("Probe completed for %s", video_path)
    typer.echo(json.dumps(result, indent=2))


@app.command("decide")
def decide(
    frames_path: Path = typer.Argument(..., help="JSON array of analysed frames (or an analysis dump)."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for JSON/CSV/review outputs."),
    basename: str = typer.Option("edit_ranges", help="Base filename for exported artifacts."),
    max_duration: float | None = typer.Option(None, help="Maximum output duration in seconds (0 = no limit)."),
    video_path: str | None = typer.Option(None, help="Optional source video for ffmpeg command generation."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="EDIT_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Re-run the editorial rules and range building on already analysed frames."""

    settings = _bootstrap(config_path)
    try:
        settings = _with_overrides(settings, {"pipeline": {"max_output_duration": max_duration}})
        frames = load_frame_metadata(frames_path)
        decisions = process_frame_batch(frames, settings.decision)
        ranges = coalesce_to_ranges(decisions, settings.coalescer)
        if settings.pipeline.max_output_duration > 0:
            ranges = limit_by_duration(ranges, settings.pipeline.max_output_duration)
    except (EditPipelineError, KeyError, TypeError, ValueError) as exc:
        logger.error("Decision run failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    video_duration = max((frame.video_duration for frame in frames), default=0.0)
    exported = export_final_outputs(
        ranges,
        output_dir or settings.pipeline.output_dir,
        basename=basename,
        video_path=video_path,
    )
    decision_stats = get_decision_stats(decisions)
    range_stats = get_range_stats(ranges, video_duration)

    typer.echo(
        json.dumps(
            {
                "frames": decision_stats.total,
                "kept": decision_stats.keep + decision_stats.highlight,
                "highlighted": decision_stats.highlight,
                "discarded": decision_stats.discard,
                "segment_count": range_stats.segment_count,
                "output_duration": round(range_stats.total_kept_duration, 3),
                "compression_ratio": round(range_stats.compression_ratio, 3),
                **{key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


@propose_app.command("review")
def review_ranges(
    ranges_path: Path = typer.Argument(..., help="Path to an exported range list JSON."),
    output_dir: Path = typer.Option(Path("data/outputs"), "--output-dir", "-o", help="Directory for JSON/CSV/review outputs."),
    basename: str = typer.Option("edit_ranges", help="Base filename for exported artifacts."),
    video_path: str | None = typer.Option(None, help="Optional source video for ffmpeg command generation."),
    include_ffmpeg_commands: bool = typer.Option(True, help="Include ffmpeg cut/concat commands when video_path is provided."),
) -> None:
    """Re-export a range list with CSV and a review manifest."""

    try:
        ranges = load_time_ranges(ranges_path)
    except (EditPipelineError, TypeError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    exported = export_final_outputs(
        ranges,
        output_dir,
        basename=basename,
        video_path=video_path,
        include_ffmpeg_commands=include_ffmpeg_commands,
    )
    typer.echo(json.dumps({key: str(path) for key, path in exported.items()}, indent=2))


@app.command("run")
def run_pipeline(
    video_path: str,
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="EDIT_PIPELINE_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
    stride_seconds: float | None = typer.Option(None, help="Sample one frame every N seconds."),
    max_frames: int | None = typer.Option(None, help="Maximum frames to sample (0 = unlimited)."),
    max_duration: float | None = typer.Option(None, help="Maximum output duration in seconds (0 = no limit)."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for exported artifacts."),
) -> None:
    """Analyse a video end to end and export the ranges to keep."""

    settings = _bootstrap(config_path)
    resolved_video_path = Path(video_path).expanduser().resolve()
    if not resolved_video_path.exists():
        typer.echo(f"Error: video file not found: {resolved_video_path}", err=True)
        raise typer.Exit(code=1)

    model_context: VisionModelContext | None = None
    try:
        settings = _with_overrides(
            settings,
            {
                "ingest": {"stride_seconds": stride_seconds, "max_frames": max_frames},
                "pipeline": {"max_output_duration": max_duration},
            },
        )
        model_context = _create_model_context(settings)
        pipeline = _build_pipeline(settings, model_context)
        result = asyncio.run(pipeline.process(resolved_video_path))
        exported = export_final_outputs(
            result.ranges,
            output_dir or settings.pipeline.output_dir,
            basename=f"{resolved_video_path.stem}_ranges",
            video_path=str(resolved_video_path),
            result=result,
        )
    except (EditPipelineError, RuntimeError, ValueError) as exc:
        logger.error("Pipeline failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        if model_context is not None:
            model_context.dispose()

    stats = result.stats
    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "video_path": str(resolved_video_path),
                "frames_analyzed": stats.frames_analyzed,
                "frames_kept": stats.frames_kept,
                "frames_highlighted": stats.frames_highlighted,
                "frames_discarded": stats.frames_discarded,
                "segment_count": stats.segment_count,
                "video_duration": round(stats.video_duration, 3),
                "output_duration": round(stats.output_duration, 3),
                "compression_ratio": round(stats.compression_ratio, 3),
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
