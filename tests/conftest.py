"""Shared fixtures and in-memory doubles for the textviz test-suite.

The generation stages talk to external collaborators only: the
text-generation service, the sandboxed browser and its canvas. Tests swap
them for :class:`FakeLLMClient`, :class:`FakeSandbox` and :class:`FakeCanvas`.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Generator, Iterator, Mapping, Sequence
from typing import Any

import pytest

from textviz.core.errors import SandboxAccessError, SandboxError
from textviz.core.settings import load_settings
from textviz.recording import MIME_PREFERENCES

BUBBLE_SORT_PROMPT = "Demonstrate bubble sort with colored bars"

# Key order matters: the narrative guide streams before the animations.
BUBBLE_SORT_DOC: dict[str, Any] = {
    "scene": {
        "title": "Bubble Sort",
        "description": "Adjacent bars are compared and swapped until sorted.",
        "canvas": {"width": 800, "height": 600, "backgroundColor": "#ffffff"},
    },
    "narrativeGuide": {
        "introduction": "Bubble sort repeatedly compares neighbours and swaps them.",
        "steps": [
            {"timestamp": 0, "text": "Five unsorted bars.", "highlight": "bars"},
            {"timestamp": 3000, "text": "5 > 3 → swap the first pair.", "highlight": "bar1"},
            {
                "timestamp": 9000,
                "text": "The largest bar has bubbled to the end.",
                "highlight": "bar5",
            },
        ],
        "conclusion": "Each pass fixes one more bar in its final place.",
    },
    "objects": [
        {
            "id": f"bar{i}",
            "type": "bar",
            "properties": {
                "position": {"x": 100 + 120 * i, "y": 450},
                "size": {"width": 80, "height": 40 * value},
                "color": "#3b82f6",
                "label": str(value),
            },
        }
        for i, value in enumerate([5, 3, 8, 1, 9], start=1)
    ],
    "animations": [
        {
            "id": "swap1",
            "targetObjectId": "bar1",
            "type": "move",
            "duration": 2000,
            "delay": 3000,
            "properties": {"from": {"x": 220}, "to": {"x": 340}},
        },
        {
            "id": "highlight5",
            "targetObjectId": "bar5",
            "type": "colorChange",
            "duration": 1000,
            "delay": 9000,
        },
    ],
    "timeline": [
        {"time": 0, "action": "Show the bars", "animationIds": []},
        {"time": 3000, "action": "Swap 5 and 3", "animationIds": ["swap1"]},
        {"time": 9000, "action": "Mark the sorted bar", "animationIds": ["highlight5"]},
    ],
    "controls": {"playPause": True, "reset": True, "speedControl": True},
}

COMPLETE_HTML = """<!DOCTYPE html>
<html>
<head><title>Bubble Sort</title></head>
<body>
<canvas id="animationCanvas" width="800" height="600"></canvas>
<script>
  window.stepForward = function () {};
  window.stepBackward = function () {};
  window.resetAnimation = function () {};
  window.playAnimation = function () {};
</script>
</body>
</html>"""


def chunked(text: str, size: int) -> list[str]:
    """Split ``text`` into ``size``-character chunks, like a token stream."""
    return [text[i : i + size] for i in range(0, len(text), size)]


class FakeLLMClient:
    """Stands in for :class:`textviz.llm.LLMClient` at the ``stream``/``generate`` seam.

    ``stream()`` yields ``chunks`` (raising ``stream_error`` at index
    ``fail_at`` when given); ``generate()`` returns ``html`` or raises
    ``generate_error``. Every call is recorded.
    """

    def __init__(
        self,
        *,
        chunks: Sequence[str] = (),
        html: str = COMPLETE_HTML,
        stream_error: Exception | None = None,
        fail_at: int = 0,
        generate_error: Exception | None = None,
    ) -> None:
        self.chunks = list(chunks)
        self.html = html
        self.stream_error = stream_error
        self.fail_at = fail_at
        self.generate_error = generate_error
        self.configured: list[str | None] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.generate_calls: list[dict[str, Any]] = []
        self.stream_closed = False

    def ensure_configured(self, model: str | None = None) -> None:
        self.configured.append(model)

    def stream(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Iterator[str]:
        self.stream_calls.append({"messages": list(messages), "model": model})
        return self._iter_chunks()

    def _iter_chunks(self) -> Iterator[str]:
        try:
            for index, chunk in enumerate(self.chunks):
                if self.stream_error is not None and index == self.fail_at:
                    raise self.stream_error
                yield chunk
            if self.stream_error is not None and self.fail_at >= len(self.chunks):
                raise self.stream_error
        finally:
            self.stream_closed = True

    def generate(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        self.generate_calls.append({"messages": list(messages), "model": model})
        if self.generate_error is not None:
            raise self.generate_error
        return self.html


class FakeCanvas:
    """Stands in for ``canvas#animationCanvas`` at the capture seam.

    Reports ``supported`` MIME types, returns ``data`` from ``capture()`` (or
    raises ``error``) and counts ``release()`` calls.
    """

    def __init__(
        self,
        *,
        supported: Sequence[str] = MIME_PREFERENCES,
        data: bytes = b"\x1aE\xdf\xa3webm",
        error: Exception | None = None,
    ) -> None:
        self.supported = list(supported)
        self.data = data
        self.error = error
        self.captures: list[dict[str, Any]] = []
        self.released = 0

    def supported_mime_types(self, candidates: Sequence[str]) -> list[str]:
        return [c for c in candidates if c in self.supported]

    def capture(
        self,
        mime_type: str,
        *,
        fps: int,
        duration_ms: int,
        timeslice_ms: int,
        flush_delay_ms: int,
    ) -> bytes:
        self.captures.append(
            {
                "mime_type": mime_type,
                "fps": fps,
                "duration_ms": duration_ms,
                "timeslice_ms": timeslice_ms,
                "flush_delay_ms": flush_delay_ms,
            }
        )
        if self.error is not None:
            raise self.error
        return self.data

    def release(self) -> None:
        self.released += 1


class FakeSandbox:
    """Stands in for the browser sandbox; records every call.

    ``entry_points`` are the global functions the "document" defines;
    ``heights`` are returned by successive measurements (the last one
    repeats); ``measurable`` / ``postable`` / ``loads`` switch off
    measurement, ``postMessage`` and the load signal.
    """

    def __init__(
        self,
        *,
        entry_points: Sequence[str] = (),
        heights: Sequence[int] = (640,),
        measurable: bool = True,
        postable: bool = True,
        loads: bool = True,
        viewport_height: int = 800,
        canvas_surface: FakeCanvas | None = None,
    ) -> None:
        self.viewport_height = viewport_height
        self.entry_points = set(entry_points)
        self.heights = list(heights)
        self.measurable = measurable
        self.postable = postable
        self.loads = loads
        self.canvas_surface = canvas_surface or FakeCanvas()
        self.loaded: list[str] = []
        self.called: list[str] = []
        self.posted: list[dict[str, Any]] = []
        self.frame_heights: list[int] = []
        self.on_wait: Callable[[], None] | None = None

    def load(self, html: str) -> None:
        self.loaded.append(html)

    def wait_until_loaded(self, timeout: float) -> bool:
        if self.on_wait is not None:
            self.on_wait()
        return self.loads

    def call_entry_point(self, name: str) -> bool:
        self.called.append(name)
        return name in self.entry_points

    def post_message(self, payload: Mapping[str, Any]) -> None:
        if not self.postable:
            raise SandboxError("no visualization frame to post to")
        self.posted.append(dict(payload))

    def content_height(self) -> int:
        if not self.measurable:
            raise SandboxAccessError("cross-origin access refused")
        return self.heights.pop(0) if len(self.heights) > 1 else self.heights[0]

    def set_frame_height(self, height: int) -> None:
        self.frame_heights.append(height)

    def canvas(self, selector: str = "canvas#animationCanvas") -> FakeCanvas | None:
        return self.canvas_surface

    def close(self) -> None:
        pass


@pytest.fixture(autouse=True)  # type: ignore[misc]
def _fresh_settings() -> Generator[None, None, None]:
    """Rebuild settings after each test so env overrides never leak."""
    yield
    load_settings.cache_clear()


@pytest.fixture  # type: ignore[misc]
def bubble_sort_text() -> str:
    """The bubble sort instruction document as the model would stream it."""
    return json.dumps(BUBBLE_SORT_DOC, ensure_ascii=False, indent=2)


@pytest.fixture  # type: ignore[misc]
def streaming_client(bubble_sort_text: str) -> FakeLLMClient:
    """A client that streams the bubble sort document in 7-character chunks."""
    return FakeLLMClient(chunks=chunked(bubble_sort_text, 7))
