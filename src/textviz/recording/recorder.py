"""
Recorder: capture the generated document's canvas as a WebM video.

- The first MIME type the browser supports wins, in the order of
  ``MIME_PREFERENCES``; none supported fails before any capture starts.
- Capture runs at a fixed frame rate for the requested duration, clamped to
  a ceiling whatever the animation's own length. The browser side flushes
  (``requestData``) shortly before stopping so the last timeslice is kept.
- The capture is released on every path. An empty capture is a failure.
- The artifact is named from the capture start time:
  ``visualization-YYYYMMDD-HHMMSS.webm``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from textviz.core.cancellation import CancellationToken
from textviz.core.errors import RecordingError
from textviz.core.settings import get_logger, load_settings
from textviz.playback.sandbox import CanvasSurface

logger = get_logger(__name__)

MIME_PREFERENCES: tuple[str, ...] = (
    "video/webm;codecs=vp9",
    "video/webm;codecs=vp8",
    "video/webm",
)


def recording_filename(started_at: datetime) -> str:
    return f"visualization-{started_at:%Y%m%d-%H%M%S}.webm"


@dataclass(frozen=True, slots=True)
class Recording:
    """A finished capture.

    ``mime_type`` is the container type (``video/webm``); ``codec`` is the
    full MIME type the capture was negotiated with.
    """

    data: bytes
    mime_type: str
    started_at: datetime
    codec: str = ""

    @property
    def filename(self) -> str:
        return recording_filename(self.started_at)

    @property
    def size(self) -> int:
        return len(self.data)

    def save(self, directory: str | Path) -> Path:
        """Write the video into ``directory`` (created if needed) and return its path."""
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / self.filename
        path.write_bytes(self.data)
        return path


class Recorder:
    """Record a :class:`CanvasSurface` into a :class:`Recording`.

    Parameters
    ----------
    fps / max_seconds:
        Default to ``Settings.recording_fps`` / ``Settings.recording_max_seconds``.
    mime_preferences:
        Ordered candidate MIME types.
    timeslice_ms / flush_delay_ms:
        MediaRecorder timeslice, and the pause between the final
        ``requestData()`` and ``stop()``.
    clock:
        Source of the capture start time (naming); replaceable in tests.
    """

    def __init__(
        self,
        *,
        fps: int | None = None,
        max_seconds: float | None = None,
        mime_preferences: Sequence[str] = MIME_PREFERENCES,
        timeslice_ms: int = 1000,
        flush_delay_ms: int = 100,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        cfg = load_settings()
        self.fps = fps or cfg.recording_fps
        self.max_seconds = max_seconds or cfg.recording_max_seconds
        self.mime_preferences = tuple(mime_preferences)
        self.timeslice_ms = timeslice_ms
        self.flush_delay_ms = flush_delay_ms
        self._clock = clock

    def select_mime_type(self, canvas: CanvasSurface) -> str:
        supported = set(canvas.supported_mime_types(self.mime_preferences))
        for candidate in self.mime_preferences:
            if candidate in supported:
                return candidate
        raise RecordingError(
            "No supported codec for canvas recording "
            f"(tried {', '.join(self.mime_preferences)})",
            public_message="Recording is not supported: no supported codec is available.",
        )

    def duration_ms(self, duration_seconds: float | None) -> int:
        seconds = self.max_seconds if duration_seconds is None else duration_seconds
        return int(max(0.0, min(seconds, self.max_seconds)) * 1000)

    def record(
        self,
        canvas: CanvasSurface,
        duration_seconds: float | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> Recording:
        """Capture ``canvas`` and return the video.

        Raises
        ------
        RecordingError
            No supported codec (before capture), a capture failure, or an
            empty result. The capture is released first in every case.
        GenerationCancelled
            If ``token`` was cancelled before capture started.
        """
        try:
            mime_type = self.select_mime_type(canvas)
            if token is not None:
                token.raise_if_cancelled()

            duration_ms = self.duration_ms(duration_seconds)
            started_at = self._clock()
            logger.info("Recording %s for %.1fs at %d fps", mime_type, duration_ms / 1000, self.fps)
            data = canvas.capture(
                mime_type,
                fps=self.fps,
                duration_ms=duration_ms,
                timeslice_ms=self.timeslice_ms,
                flush_delay_ms=self.flush_delay_ms,
            )
            if not data:
                raise RecordingError(
                    "capture produced zero bytes",
                    public_message="Recording produced an empty video. Please try again.",
                )
        except RecordingError as exc:
            logger.error("Recording failed: %s", exc)
            raise
        finally:
            canvas.release()

        return Recording(
            data=data,
            mime_type=mime_type.split(";", 1)[0],
            started_at=started_at,
            codec=mime_type,
        )


__all__ = ["MIME_PREFERENCES", "Recorder", "Recording", "recording_filename"]
