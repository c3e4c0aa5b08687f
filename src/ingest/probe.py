from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

from src.errors import ExternalServiceError
from src.models import VideoInfo

SHARED_LIBRARY_MARKER = "error while loading shared libraries"


def probe_video(video_path: str | Path) -> VideoInfo:
    """Read duration and geometry of the first video stream via ffprobe."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise ExternalServiceError(f"Video file not found: {source_path}")

    return _normalize_probe_payload(source_path, _run_ffprobe(source_path))


def probe_media(video_path: str | Path) -> dict[str, Any]:
    """Probe summary as plain JSON-ready data, used by the CLI."""

    info = probe_video(video_path)
    return {
        "status": "ok",
        "video_path": str(Path(video_path).expanduser().resolve()),
        "duration_seconds": info.duration_seconds,
        "width": info.width,
        "height": info.height,
        "frame_rate": info.frame_rate,
    }


def _run_ffprobe(video_path: Path) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise ExternalServiceError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if SHARED_LIBRARY_MARKER in stderr:
            raise ExternalServiceError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise ExternalServiceError(
            f"ffprobe failed while probing media file: {video_path}.{details}"
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise ExternalServiceError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> VideoInfo:
    video_streams = [stream for stream in payload.get("streams", []) if stream.get("codec_type") == "video"]
    if not video_streams:
        raise ExternalServiceError(f"No video stream found in {video_path}.")

    stream = video_streams[0]
    format_entry = payload.get("format", {})
    duration = _to_float(format_entry.get("duration")) or _to_float(stream.get("duration"))
    if not duration or duration <= 0:
        raise ExternalServiceError(f"Could not determine duration of {video_path}.")

    return VideoInfo(
        duration_seconds=duration,
        width=_to_int(stream.get("width")) or 0,
        height=_to_int(stream.get("height")) or 0,
        frame_rate=_parse_frame_rate(stream.get("avg_frame_rate")),
    )


def _parse_frame_rate(raw_value: Any) -> float:
    if raw_value in (None, "N/A", "", "0/0"):
        return 30.0
    text = str(raw_value)
    if "/" in text:
        numerator, denominator = text.split("/", 1)
        if float(denominator) == 0:
            return 30.0
        return float(numerator) / float(denominator)
    return float(text)


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
