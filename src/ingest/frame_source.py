from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterator

from src.config import IngestSettings
from src.errors import ExternalServiceError
from src.ingest.probe import probe_video
from src.models import RawFrame, VideoInfo

logger = logging.getLogger(__name__)


class FrameStream:
    """Pull-based view over a lazy frame sequence.

    ``pull()`` returns the next ``RawFrame`` or ``None`` once the source is
    exhausted. Each yielded frame stays owned by the consumer, who must call
    ``release()`` on it. A stream cannot be restarted; ask the source for a new one.
    """

    def __init__(self, frames: AsyncIterator[RawFrame]) -> None:
        self._frames = frames
        self.exhausted = False

    async def pull(self) -> RawFrame | None:
        if self.exhausted:
            return None
        try:
            return await self._frames.__anext__()
        except StopAsyncIteration:
            self.exhausted = True
            return None

    async def close(self) -> None:
        self.exhausted = True
        aclose = getattr(self._frames, "aclose", None)
        if aclose is not None:
            await aclose()

    def __aiter__(self) -> FrameStream:
        return self

    async def __anext__(self) -> RawFrame:
        frame = await self.pull()
        if frame is None:
            raise StopAsyncIteration
        return frame


def sample_timestamps(duration_seconds: float, stride_seconds: float, max_frames: int = 0) -> Iterator[float]:
    """Sample instants ``0, stride, 2*stride, ...`` strictly before the end of the video."""

    index = 0
    while True:
        if max_frames > 0 and index >= max_frames:
            return
        timestamp = round(index * stride_seconds, 6)
        if timestamp >= duration_seconds:
            return
        yield timestamp
        index += 1


def expected_frame_count(duration_seconds: float, stride_seconds: float, max_frames: int = 0) -> int:
    count = 0
    for _ in sample_timestamps(duration_seconds, stride_seconds, max_frames):
        count += 1
    return max(count, 1)


class OpenCVFrameSource:
    """Seek-and-grab sampler over a local video file."""

    def __init__(
        self,
        settings: IngestSettings | None = None,
        *,
        probe: Callable[[str | Path], VideoInfo] = probe_video,
        cv2_module: Any | None = None,
    ) -> None:
        self.settings = settings or IngestSettings()
        self._probe = probe
        self._cv2 = cv2_module
        self._video_info: dict[str, VideoInfo] = {}

    async def get_video_info(self, source: str | Path) -> VideoInfo:
        """Probe ``source`` once; later calls for the same source reuse the result."""

        key = str(source)
        info = self._video_info.get(key)
        if info is None:
            info = await asyncio.to_thread(self._probe, source)
            self._video_info[key] = info
        return info

    def frames(self, source: str | Path) -> FrameStream:
        return FrameStream(self._iter_frames(source))

    async def _iter_frames(self, source: str | Path) -> AsyncIterator[RawFrame]:
        cv2 = self._cv2 or _import_cv2()
        info = await self.get_video_info(source)
        source_path = Path(source).expanduser().resolve()

        capture = cv2.VideoCapture(str(source_path))
        if not capture.isOpened():
            raise ExternalServiceError(f"Unable to open video for frame sampling: {source_path}")

        stride = self.settings.stride_seconds
        try:
            timestamps = sample_timestamps(info.duration_seconds, stride, self.settings.max_frames)
            for frame_index, timestamp in enumerate(timestamps):
                ok, frame = await asyncio.to_thread(_read_frame_at, capture, timestamp, cv2)
                if not ok:
                    if frame_index > 0 and timestamp + stride >= info.duration_seconds:
                        logger.warning("Last sample at %.3fs could not be decoded; stopping early.", timestamp)
                        return
                    raise ExternalServiceError(f"Failed to decode frame at {timestamp:.3f}s from {source_path}")

                thumbnail = None
                if self.settings.generate_thumbnails:
                    thumbnail = make_thumbnail(frame, self.settings.thumbnail_width, cv2_module=cv2)

                yield RawFrame(
                    payload=frame,
                    timestamp=timestamp,
                    frame_index=frame_index,
                    video_duration=info.duration_seconds,
                    thumbnail=thumbnail,
                )
        finally:
            capture.release()


def make_thumbnail(frame: Any, width: int, *, cv2_module: Any) -> Any:
    """Downscale to ``width`` keeping aspect ratio; frames already narrow enough are returned as-is."""

    height, current_width = frame.shape[:2]
    if width <= 0 or current_width <= width:
        return frame

    target_height = max(int(round(height * (width / current_width))), 1)
    return cv2_module.resize(frame, (width, target_height), interpolation=cv2_module.INTER_AREA)


def _read_frame_at(capture: Any, timestamp: float, cv2: Any) -> tuple[bool, Any]:
    capture.set(cv2.CAP_PROP_POS_MSEC, timestamp * 1000.0)
    return capture.read()


def _import_cv2() -> Any:
    try:
        import cv2
    except ImportError as exc:
        raise ExternalServiceError("OpenCV (opencv-python) is required for frame sampling.") from exc
    return cv2
