from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from src.errors import ConfigurationError
from src.models import FrameDecision, PipelineResult, PipelineStats, TimeRange, create_frame_metadata
from src.propose.exporter import (
    build_concat_list,
    build_ffmpeg_segment_command,
    export_final_outputs,
    export_ranges,
    generate_review_manifest,
    load_frame_metadata,
    load_time_ranges,
)


def _sample_ranges() -> list[TimeRange]:
    return [
        TimeRange(start=0.0, end=2.0, priority=5.4, label="High aesthetic score: 40%"),
        TimeRange(start=3.0, end=5.5, priority=11.6, label="Premium content: patio"),
    ]


def test_export_ranges_json_contract(tmp_path: Path) -> None:
    out = tmp_path / "ranges.json"
    export_ranges(_sample_ranges(), out)

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload[1] == {"start": 3.0, "end": 5.5, "priority": 11.6, "label": "Premium content: patio"}


def test_export_ranges_csv_contains_kind_and_reason(tmp_path: Path) -> None:
    out = tmp_path / "ranges.csv"
    export_ranges(_sample_ranges(), out)

    with out.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert rows[0]["kind"] == "keep"
    assert rows[1]["kind"] == "highlight"
    assert rows[1]["duration_seconds"] == "2.500"
    assert rows[1]["reason_summary"] == "Premium content: patio"


def test_generate_review_manifest_with_ffmpeg_commands() -> None:
    manifest = generate_review_manifest(_sample_ranges(), video_path="/tmp/tour.mp4")

    assert manifest["segment_count"] == 2
    assert manifest["total_duration_seconds"] == pytest.approx(4.5)
    assert "-ss 3.000" in manifest["segments"][1]["ffmpeg_command"]
    assert manifest["concat_list"].splitlines()[0] == "file 'segments/segment_0001.mp4'"
    assert manifest["concat_command"].startswith("ffmpeg -f concat")


def test_generate_review_manifest_without_video_has_no_commands() -> None:
    manifest = generate_review_manifest(_sample_ranges())

    assert "ffmpeg_command" not in manifest["segments"][0]
    assert "concat_command" not in manifest


def test_build_ffmpeg_segment_command_quotes_paths() -> None:
    cmd = build_ffmpeg_segment_command(
        video_path="/tmp/house tour.mp4",
        time_range=_sample_ranges()[0],
        index=7,
        output_dir="cuts",
    )

    assert "'/tmp/house tour.mp4'" in cmd
    assert "-t 2.000" in cmd
    assert cmd.endswith("cuts/segment_0007.mp4")
    assert build_concat_list(2, output_dir="cuts").count("file ") == 2


def test_export_final_outputs_and_load_roundtrip(tmp_path: Path) -> None:
    exported = export_final_outputs(_sample_ranges(), tmp_path, basename="final", video_path="/tmp/tour.mp4")

    assert exported["json"].exists()
    assert exported["csv"].exists()
    assert exported["review"].exists()
    assert "analysis" not in exported
    assert load_time_ranges(exported["json"]) == _sample_ranges()


def test_export_final_outputs_writes_analysis_without_thumbnails(tmp_path: Path) -> None:
    frame = create_frame_metadata(timestamp=0, frame_index=0, video_duration=10, thumbnail=object())
    result = PipelineResult(
        ranges=_sample_ranges(),
        frames=[frame],
        decisions=[FrameDecision(0.0, "discard", "Low aesthetic score: 0%", 0.0)],
        stats=PipelineStats(10.0, 1, 0, 0, 1, 4.5, 2, 10.0 / 4.5),
    )

    exported = export_final_outputs(result.ranges, tmp_path, result=result)
    payload = json.loads(exported["analysis"].read_text(encoding="utf-8"))

    assert "thumbnail" not in payload["frames"][0]
    assert payload["decisions"][0]["decision"] == "discard"
    assert payload["stats"]["segment_count"] == 2
    assert load_frame_metadata(exported["analysis"])[0].video_duration == 10.0


def test_load_time_ranges_rejects_invalid_rows(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([{"start": 4.0, "end": 2.0}]), encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_time_ranges(path)

    path.write_text(json.dumps({"start": 0}), encoding="utf-8")
    with pytest.raises(ConfigurationError, match="JSON array"):
        load_time_ranges(path)

    path.write_text(json.dumps([{"start": 0.0}]), encoding="utf-8")
    with pytest.raises(ConfigurationError, match="needs 'start' and 'end'"):
        load_time_ranges(path)


def test_loaders_wrap_malformed_json(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Range list is not valid JSON"):
        load_time_ranges(path)
    with pytest.raises(ConfigurationError, match="Frame metadata is not valid JSON"):
        load_frame_metadata(path)


def test_load_frame_metadata_rejects_rows_without_timestamp(tmp_path: Path) -> None:
    path = tmp_path / "frames.json"
    path.write_text(json.dumps({"frames": [{"timestamp": 0.0}, {"labels": ["patio"]}]}), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Frame row 2"):
        load_frame_metadata(path)
