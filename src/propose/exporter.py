from __future__ import annotations

import csv
import json
import shlex
from dataclasses import asdict
from pathlib import Path
from typing import Any, Sequence

from src.errors import ConfigurationError
from src.models import (
    FrameMetadata,
    PipelineResult,
    TimeRange,
    create_frame_metadata,
    serialize_frame_metadata,
)

HIGHLIGHT_PRIORITY_FLOOR = 10.0


def export_ranges(ranges: Sequence[TimeRange], output_path: str | Path) -> Path:
    """Export an edit decision list to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_csv(ranges, path)
    else:
        _write_json(ranges, path)

    return path


def export_final_outputs(
    ranges: Sequence[TimeRange],
    output_dir: str | Path,
    *,
    basename: str = "edit_ranges",
    video_path: str | None = None,
    include_ffmpeg_commands: bool = True,
    result: PipelineResult | None = None,
) -> dict[str, Path]:
    """Export the range list (JSON/CSV), a review manifest and, for full runs, the analysis dump."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}.csv"
    review_path = resolved_output_dir / f"{basename}_review.json"

    export_ranges(ranges, json_path)
    export_ranges(ranges, csv_path)

    review_manifest = generate_review_manifest(
        ranges,
        video_path=video_path,
        include_ffmpeg_commands=include_ffmpeg_commands,
    )
    review_path.write_text(json.dumps(review_manifest, indent=2, ensure_ascii=False), encoding="utf-8")

    exported = {
        "json": json_path,
        "csv": csv_path,
        "review": review_path,
    }

    if result is not None:
        analysis_path = resolved_output_dir / f"{basename}_analysis.json"
        analysis_path.write_text(json.dumps(serialize_result(result), indent=2), encoding="utf-8")
        exported["analysis"] = analysis_path

    return exported


def serialize_result(result: PipelineResult) -> dict[str, Any]:
    return {
        "ranges": [time_range.to_dict() for time_range in result.ranges],
        "frames": [serialize_frame_metadata(frame) for frame in result.frames],
        "decisions": [asdict(decision) for decision in result.decisions],
        "stats": asdict(result.stats),
    }


def generate_review_manifest(
    ranges: Sequence[TimeRange],
    *,
    video_path: str | None = None,
    include_ffmpeg_commands: bool = True,
    segment_dir: str = "segments",
) -> dict[str, Any]:
    """Per-segment review entries plus the commands that cut and join them."""

    segments: list[dict[str, Any]] = []
    for idx, time_range in enumerate(ranges, start=1):
        entry: dict[str, Any] = {
            "index": idx,
            "start_seconds": round(time_range.start, 3),
            "end_seconds": round(time_range.end, 3),
            "duration_seconds": round(time_range.duration, 3),
            "priority": round(time_range.priority, 4),
            "kind": _segment_kind(time_range.priority),
            "reason_summary": _reason_summary(time_range.label),
        }
        if include_ffmpeg_commands and video_path:
            entry["ffmpeg_command"] = build_ffmpeg_segment_command(
                video_path=video_path,
                time_range=time_range,
                index=idx,
                output_dir=segment_dir,
            )
        segments.append(entry)

    manifest: dict[str, Any] = {
        "segment_count": len(segments),
        "total_duration_seconds": round(sum(time_range.duration for time_range in ranges), 3),
        "segments": segments,
    }
    if include_ffmpeg_commands and video_path and segments:
        manifest["concat_list"] = build_concat_list(len(segments), output_dir=segment_dir)
        manifest["concat_command"] = build_ffmpeg_concat_command(output_dir=segment_dir)

    return manifest


def build_ffmpeg_segment_command(
    *,
    video_path: str,
    time_range: TimeRange,
    index: int,
    output_dir: str = "segments",
) -> str:
    """Generate a copy-paste ffmpeg command that cuts one retained range."""

    output_path = f"{output_dir.rstrip('/')}/{_segment_name(index)}"

    quoted_video = shlex.quote(video_path)
    quoted_output = shlex.quote(output_path)

    return (
        "ffmpeg "
        f"-ss {time_range.start:.3f} "
        f"-i {quoted_video} "
        f"-t {time_range.duration:.3f} "
        "-c:v libx264 -preset veryfast -crf 23 "
        "-c:a aac "
        f"-y {quoted_output}"
    )


def build_concat_list(segment_count: int, *, output_dir: str = "segments") -> str:
    """Body of an ffmpeg concat-demuxer list for the cut segments, in playback order."""

    return "\n".join(
        f"file '{output_dir.rstrip('/')}/{_segment_name(idx)}'" for idx in range(1, segment_count + 1)
    )


def build_ffmpeg_concat_command(*, output_dir: str = "segments", output_path: str = "edited.mp4") -> str:
    concat_path = shlex.quote(f"{output_dir.rstrip('/')}/concat.txt")
    return f"ffmpeg -f concat -safe 0 -i {concat_path} -c copy -y {shlex.quote(output_path)}"


def _read_json(path: str | Path, what: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{what} is not valid JSON ({path}): {exc}") from exc


def load_time_ranges(path: str | Path) -> list[TimeRange]:
    """Load an exported range list; invalid bounds raise ``ConfigurationError``."""

    payload = _read_json(path, "Range list")
    if not isinstance(payload, list):
        raise ConfigurationError("Range list must be a JSON array.")

    ranges: list[TimeRange] = []
    for idx, row in enumerate(payload, start=1):
        if not isinstance(row, dict):
            raise ConfigurationError(f"Range row {idx} must be an object.")
        if "start" not in row or "end" not in row:
            raise ConfigurationError(f"Range row {idx} needs 'start' and 'end'.")
        ranges.append(
            TimeRange(
                start=float(row["start"]),
                end=float(row["end"]),
                priority=float(row.get("priority", 5.0)),
                label=str(row["label"]) if row.get("label") is not None else None,
            )
        )

    return ranges


def load_frame_metadata(path: str | Path) -> list[FrameMetadata]:
    """Load previously analysed frames (e.g. the ``frames`` array of an analysis dump)."""

    payload = _read_json(path, "Frame metadata")
    if isinstance(payload, dict):
        payload = payload.get("frames", [])
    if not isinstance(payload, list):
        raise ConfigurationError("Frame metadata must be a JSON array or an object with a 'frames' array.")

    frames: list[FrameMetadata] = []
    for idx, row in enumerate(payload):
        if not isinstance(row, dict) or "timestamp" not in row:
            raise ConfigurationError(f"Frame row {idx + 1} must be an object with a 'timestamp'.")
        frames.append(
            create_frame_metadata(
                timestamp=row["timestamp"],
                frame_index=row.get("frame_index", idx),
                video_duration=row.get("video_duration", 0.0),
                aesthetic_score=row.get("aesthetic_score", 0.0),
                confidence=row.get("confidence", 0.0),
                labels=row.get("labels", []),
            )
        )

    return frames


def _write_json(ranges: Sequence[TimeRange], path: Path) -> None:
    payload = [time_range.to_dict() for time_range in ranges]
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _write_csv(ranges: Sequence[TimeRange], path: Path) -> None:
    fields = [
        "index",
        "start_seconds",
        "end_seconds",
        "duration_seconds",
        "priority",
        "kind",
        "reason_summary",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for idx, time_range in enumerate(ranges, start=1):
            writer.writerow(
                {
                    "index": idx,
                    "start_seconds": f"{time_range.start:.3f}",
                    "end_seconds": f"{time_range.end:.3f}",
                    "duration_seconds": f"{time_range.duration:.3f}",
                    "priority": f"{time_range.priority:.4f}",
                    "kind": _segment_kind(time_range.priority),
                    "reason_summary": _reason_summary(time_range.label),
                }
            )


def _segment_name(index: int) -> str:
    return f"segment_{index:04d}.mp4"


def _segment_kind(priority: float) -> str:
    if priority >= HIGHLIGHT_PRIORITY_FLOOR:
        return "highlight"
    return "keep"


def _reason_summary(label: str | None) -> str:
    if label and label.strip():
        return label.strip()
    return "no recorded reason"
