from __future__ import annotations

import asyncio
import sys
from types import SimpleNamespace

import numpy as np
import pytest

from src.config import VisionSettings
from src.errors import ExternalServiceError
from src.features.vision_analyst import VisionModelContext, _resolve_torch_device, compute_aesthetic_score
from src.models import RawFrame


class _FakeClassifier:
    def __init__(self, fail_on_load: bool = False) -> None:
        self.load_calls = 0
        self.loaded = False
        self.fail_on_load = fail_on_load

    @property
    def is_loaded(self) -> bool:
        return self.loaded

    def load(self) -> None:
        self.load_calls += 1
        if self.fail_on_load:
            raise ExternalServiceError("weights download failed")
        self.loaded = True

    def classify(self, frame_bgr):
        return ["kitchen", "dining table"], 0.82

    def unload(self) -> None:
        self.loaded = False


class _FakeTorch:
    def __init__(self, cuda_available: bool) -> None:
        self.cuda = SimpleNamespace(is_available=lambda: cuda_available)

    def device(self, name: str) -> str:
        return name


def _frame(payload) -> RawFrame:
    return RawFrame(payload=payload, timestamp=2.0, frame_index=2, video_duration=10.0)


def test_aesthetic_score_penalises_black_frames() -> None:
    black = np.zeros((120, 160, 3), dtype=np.uint8)

    assert compute_aesthetic_score(black) == pytest.approx(0.0)


def test_aesthetic_score_mid_grey_scores_brightness_only() -> None:
    grey = np.full((120, 160, 3), 128, dtype=np.uint8)

    score = compute_aesthetic_score(grey)

    assert score == pytest.approx(0.4 * (1 - abs(128 / 255 - 0.5) * 2))


def test_aesthetic_score_prefers_colourful_frames() -> None:
    grey = np.full((64, 64, 3), 128, dtype=np.uint8)
    colourful = np.zeros((64, 64, 3), dtype=np.uint8)
    colourful[:, :32] = (40, 160, 220)
    colourful[:, 32:] = (200, 120, 30)

    colourful_score = compute_aesthetic_score(colourful)

    assert 0.0 <= colourful_score <= 1.0
    assert colourful_score > compute_aesthetic_score(grey)


def test_context_loads_once_and_analyzes() -> None:
    classifier = _FakeClassifier()
    context = VisionModelContext(VisionSettings(), classifier=classifier)

    async def _run():
        await context.ensure_loaded()
        await context.ensure_loaded()
        return await context.analyze(_frame(np.full((32, 32, 3), 128, dtype=np.uint8)))

    result = asyncio.run(_run())

    assert classifier.load_calls == 1
    assert result.labels == ("kitchen", "dining table")
    assert result.confidence == pytest.approx(0.82)
    assert 0.0 <= result.aesthetic_score <= 1.0

    context.dispose()
    assert context.is_loaded is False


def test_context_propagates_load_failure() -> None:
    context = VisionModelContext(classifier=_FakeClassifier(fail_on_load=True))

    with pytest.raises(ExternalServiceError, match="weights download failed"):
        asyncio.run(context.ensure_loaded())


def test_context_refuses_released_frame() -> None:
    context = VisionModelContext(classifier=_FakeClassifier())
    frame = _frame(np.zeros((8, 8, 3), dtype=np.uint8))
    frame.release()

    with pytest.raises(ExternalServiceError, match="released"):
        asyncio.run(context.analyze(frame))


def test_resolve_torch_device_auto_prefers_cuda(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "torch", _FakeTorch(cuda_available=True))
    assert _resolve_torch_device("auto") == "cuda"


def test_resolve_torch_device_respects_explicit_device(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "torch", _FakeTorch(cuda_available=True))
    assert _resolve_torch_device(" CPU ") == "cpu"
