from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import numpy as np

from src.config import VisionSettings
from src.errors import ExternalServiceError
from src.models import AnalysisResult, RawFrame

logger = logging.getLogger(__name__)


class FrameClassifier(Protocol):
    @property
    def is_loaded(self) -> bool: ...

    def load(self) -> None: ...

    def classify(self, frame_bgr: Any) -> tuple[list[str], float]: ...

    def unload(self) -> None: ...


class MobileNetClassifier:
    """ImageNet MobileNetV2 from torchvision returning top-k category names."""

    def __init__(self, top_k: int = 5, device: str = "auto") -> None:
        self.top_k = top_k
        self.device_name = device
        self._model: Any | None = None
        self._preprocess: Any | None = None
        self._categories: list[str] = []
        self._device: Any | None = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        if self.is_loaded:
            return

        try:
            from torchvision import models
        except ImportError as exc:
            raise ExternalServiceError("torch and torchvision are required for frame classification.") from exc

        device = _resolve_torch_device(self.device_name)
        logger.info("Loading MobileNetV2 classifier on %s", device)
        try:
            weights = models.MobileNet_V2_Weights.DEFAULT
            model = models.mobilenet_v2(weights=weights)
        except (OSError, RuntimeError) as exc:
            raise ExternalServiceError(f"Failed to load MobileNetV2 weights: {exc}") from exc

        self._preprocess = weights.transforms()
        self._categories = list(weights.meta["categories"])
        self._device = device
        self._model = model.eval().to(device)
        logger.info("Classifier ready with %d categories", len(self._categories))

    def classify(self, frame_bgr: Any) -> tuple[list[str], float]:
        if self._model is None or self._preprocess is None:
            raise ExternalServiceError("Classifier used before load().")

        import torch

        rgb = np.ascontiguousarray(np.asarray(frame_bgr)[:, :, ::-1])
        tensor = torch.from_numpy(rgb).permute(2, 0, 1)
        try:
            with torch.inference_mode():
                batch = self._preprocess(tensor).unsqueeze(0).to(self._device)
                probabilities = torch.softmax(self._model(batch), dim=1)[0]
                top = torch.topk(probabilities, k=min(self.top_k, probabilities.shape[0]))
        except RuntimeError as exc:
            raise ExternalServiceError(f"Frame classification failed: {exc}") from exc

        indices = top.indices.cpu().tolist()
        scores = top.values.cpu().tolist()
        labels = [self._categories[idx] if idx < len(self._categories) else f"class_{idx}" for idx in indices]
        return labels, float(scores[0]) if scores else 0.0

    def unload(self) -> None:
        self._model = None
        self._preprocess = None
        self._device = None


class VisionModelContext:
    """Holds the loaded inference model for the caller's lifetime.

    Created once by the caller and handed to each pipeline run. Loading is
    idempotent; ``dispose()`` drops the model.
    """

    def __init__(self, settings: VisionSettings | None = None, *, classifier: FrameClassifier | None = None) -> None:
        self.settings = settings or VisionSettings()
        self.classifier = classifier or MobileNetClassifier(top_k=self.settings.top_k, device=self.settings.device)

    @property
    def is_loaded(self) -> bool:
        return self.classifier.is_loaded

    async def ensure_loaded(self) -> None:
        if self.classifier.is_loaded:
            return
        await asyncio.to_thread(self.classifier.load)

    async def analyze(self, frame: RawFrame) -> AnalysisResult:
        if frame.payload is None:
            raise ExternalServiceError(f"Frame {frame.frame_index} was released before analysis.")
        await self.ensure_loaded()
        return await asyncio.to_thread(self._analyze_payload, frame.payload)

    def _analyze_payload(self, payload: Any) -> AnalysisResult:
        labels, confidence = self.classifier.classify(payload)
        return AnalysisResult(
            labels=tuple(labels),
            confidence=float(confidence),
            aesthetic_score=compute_aesthetic_score(payload, sample_size=self.settings.aesthetic_sample_size),
        )

    def dispose(self) -> None:
        self.classifier.unload()


def compute_aesthetic_score(frame_bgr: Any, sample_size: int = 64) -> float:
    """Colour-statistics heuristic in [0, 1].

    Mid brightness, some saturation and colour variety between channels score
    higher; weights are 0.4 / 0.35 / 0.25.
    """

    pixels = _downsample(np.asarray(frame_bgr, dtype=np.float64), sample_size)
    if pixels.size == 0:
        return 0.0

    blue, green, red = pixels[..., 0], pixels[..., 1], pixels[..., 2]

    brightness = float(np.mean((0.299 * red + 0.587 * green + 0.114 * blue) / 255.0))
    channel_max = pixels.max(axis=-1)
    channel_min = pixels.min(axis=-1)
    saturation = np.divide(
        channel_max - channel_min,
        channel_max,
        out=np.zeros_like(channel_max),
        where=channel_max > 0,
    )
    avg_saturation = float(np.mean(saturation))

    r_avg, g_avg, b_avg = float(np.mean(red)), float(np.mean(green)), float(np.mean(blue))
    variety = (abs(r_avg - g_avg) + abs(g_avg - b_avg) + abs(b_avg - r_avg)) / (3 * 255)

    brightness_score = 1 - abs(brightness - 0.5) * 2
    saturation_score = min(avg_saturation * 2, 1.0)
    variety_score = min(variety * 3, 1.0)

    score = brightness_score * 0.4 + saturation_score * 0.35 + variety_score * 0.25
    return max(0.0, min(1.0, score))


def _downsample(pixels: np.ndarray, size: int) -> np.ndarray:
    if pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
        return np.empty((0, 0, 3))
    rows = np.linspace(0, pixels.shape[0] - 1, num=min(size, pixels.shape[0])).astype(int)
    cols = np.linspace(0, pixels.shape[1] - 1, num=min(size, pixels.shape[1])).astype(int)
    return pixels[np.ix_(rows, cols)][..., :3]


def _resolve_torch_device(device: str) -> Any:
    import torch

    normalized = device.strip().lower()
    if normalized == "auto":
        normalized = "cuda" if torch.cuda.is_available() else "cpu"

    return torch.device(normalized)
