from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from src.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "EDIT_PIPELINE_"


class IngestSettings(BaseModel):
    stride_seconds: float = Field(default=1.0, gt=0)
    max_frames: int = Field(default=0, ge=0)
    generate_thumbnails: bool = True
    thumbnail_width: int = Field(default=160, gt=0)


class DecisionSettings(BaseModel):
    aesthetic_threshold: float = Field(default=0.3, ge=0)
    confidence_threshold: float = Field(default=0.3, ge=0)
    domain_mode: bool = True


class CoalescerSettings(BaseModel):
    frame_window: float = Field(default=1.0, gt=0)
    merge_gap: float = Field(default=0.5, ge=0)
    min_segment_duration: float = Field(default=1.0, ge=0)


class PipelineSettings(BaseModel):
    max_output_duration: float = Field(default=0.0, ge=0)
    output_dir: Path = Path("data/outputs")


class VisionSettings(BaseModel):
    top_k: int = Field(default=5, gt=0)
    device: str = "auto"
    aesthetic_sample_size: int = Field(default=64, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class Settings(BaseModel):
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    decision: DecisionSettings = Field(default_factory=DecisionSettings)
    coalescer: CoalescerSettings = Field(default_factory=CoalescerSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    vision: VisionSettings = Field(default_factory=VisionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def build_settings(overrides: dict[str, Any] | None = None) -> Settings:
    """Merge per-group overrides onto the defaults and validate once."""

    data = Settings().model_dump(mode="python")
    for group, values in (overrides or {}).items():
        if group not in data:
            raise ConfigurationError(f"Unknown settings group '{group}'.")
        if isinstance(values, dict) and isinstance(data[group], dict):
            unknown = sorted(set(values) - set(data[group]))
            if unknown:
                raise ConfigurationError(f"Unknown {group} settings: {', '.join(unknown)}.")
            data[group].update(values)
        else:
            data[group] = values

    return _validate(data)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = build_settings(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return _validate(data)


def _validate(data: dict[str, Any]) -> Settings:
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
