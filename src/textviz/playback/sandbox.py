"""Sandbox and canvas capabilities used by the playback host and the recorder.

The host never touches the generated document directly. Everything goes
through the two narrow protocols below, so the host logic can be exercised
with in-memory fakes and driven for real by :class:`PlaywrightSandbox`.

The Playwright implementation mounts each document in a fresh
``<iframe sandbox="allow-scripts">`` whose ``srcdoc`` is the generated HTML:
scripts run, but the document gets an opaque origin and cannot reach the
host page.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Frame, Page, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from textviz.core.errors import RecordingError, SandboxAccessError, SandboxError
from textviz.core.settings import get_logger
from textviz.llm.prompts import CANVAS_SELECTOR

logger = get_logger(__name__)


class CanvasSurface(Protocol):
    """A drawable surface inside the sandbox that can be captured as video."""

    def supported_mime_types(self, candidates: Sequence[str]) -> list[str]: ...

    def capture(
        self,
        mime_type: str,
        *,
        fps: int,
        duration_ms: int,
        timeslice_ms: int,
        flush_delay_ms: int,
    ) -> bytes: ...

    def release(self) -> None: ...


class Sandbox(Protocol):
    """An isolated execution context that hosts one generated document at a time."""

    viewport_height: int

    def load(self, html: str) -> None: ...

    def wait_until_loaded(self, timeout: float) -> bool: ...

    def call_entry_point(self, name: str) -> bool: ...

    def post_message(self, payload: Mapping[str, Any]) -> None: ...

    def content_height(self) -> int: ...

    def set_frame_height(self, height: int) -> None: ...

    def canvas(self, selector: str = CANVAS_SELECTOR) -> CanvasSurface | None: ...

    def close(self) -> None: ...


# --------------------------------------------------------------------------- #
# Playwright implementation
# --------------------------------------------------------------------------- #

_HOST_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>textviz playback</title>
<style>
  html, body { margin: 0; padding: 0; background: #f8fafc; }
  #stage iframe { display: block; width: 100%; height: 60vh; border: 0; background: #fff; }
</style>
</head>
<body>
<div id="stage"></div>
<script>
  window.__textvizLoaded = 0;
  window.__textvizMount = function (html, seq) {
    const stage = document.getElementById('stage');
    stage.replaceChildren();
    const frame = document.createElement('iframe');
    frame.setAttribute('sandbox', 'allow-scripts');
    frame.setAttribute('title', 'Generated visualization preview');
    frame.name = 'visualization-' + seq;
    frame.addEventListener('load', () => { window.__textvizLoaded = seq; });
    frame.srcdoc = html;
    stage.appendChild(frame);
  };
</script>
</body>
</html>
"""

_CALL_ENTRY_POINT = """(name) => {
  const fn = window[name];
  if (typeof fn !== 'function') return false;
  try { fn(); } catch (e) { console.error('entry point ' + name + ' threw', e); }
  return true;
}"""

_POST_MESSAGE = """(payload) => {
  const frame = document.querySelector('#stage iframe');
  if (!frame || !frame.contentWindow) return false;
  frame.contentWindow.postMessage(payload, '*');
  return true;
}"""

_CONTENT_HEIGHT = """() => Math.max(
  document.body ? document.body.scrollHeight : 0,
  document.documentElement ? document.documentElement.scrollHeight : 0
)"""

_SET_FRAME_HEIGHT = """(height) => {
  const frame = document.querySelector('#stage iframe');
  if (frame) frame.style.height = height + 'px';
}"""

_SUPPORTED_TYPES = """(types) => (typeof MediaRecorder === 'undefined')
  ? [] : types.filter((t) => MediaRecorder.isTypeSupported(t))"""

_CAPTURE = """async ({ selector, mimeType, fps, durationMs, timesliceMs, flushDelayMs }) => {
  const canvas = document.querySelector(selector);
  if (!canvas) throw new Error('canvas not found: ' + selector);
  const stream = canvas.captureStream(fps);
  window.__textvizCapture = stream;
  const chunks = [];
  try {
    const recorder = new MediaRecorder(stream, { mimeType });
    const stopped = new Promise((resolve, reject) => {
      recorder.ondataavailable = (e) => { if (e.data && e.data.size > 0) chunks.push(e.data); };
      recorder.onstop = () => resolve();
      recorder.onerror = (e) => reject(e.error || new Error('MediaRecorder error'));
    });
    recorder.start(timesliceMs);
    await new Promise((r) => setTimeout(r, durationMs));
    if (recorder.state !== 'inactive') {
      recorder.requestData();
      await new Promise((r) => setTimeout(r, flushDelayMs));
      recorder.stop();
    }
    await stopped;
    const blob = new Blob(chunks, { type: mimeType.split(';')[0] });
    const bytes = new Uint8Array(await blob.arrayBuffer());
    let binary = '';
    for (let i = 0; i < bytes.length; i += 0x8000) {
      binary += String.fromCharCode.apply(null, bytes.subarray(i, i + 0x8000));
    }
    return btoa(binary);
  } finally {
    stream.getTracks().forEach((t) => t.stop());
    window.__textvizCapture = null;
  }
}"""

_RELEASE = """() => {
  const stream = window.__textvizCapture;
  if (stream) { stream.getTracks().forEach((t) => t.stop()); }
  window.__textvizCapture = null;
}"""


class PlaywrightCanvas:
    """``canvas#animationCanvas`` inside a sandboxed frame, captured with MediaRecorder."""

    def __init__(self, frame: Frame, selector: str = CANVAS_SELECTOR) -> None:
        self._frame = frame
        self._selector = selector

    def supported_mime_types(self, candidates: Sequence[str]) -> list[str]:
        try:
            return list(self._frame.evaluate(_SUPPORTED_TYPES, list(candidates)))
        except PlaywrightError as exc:
            raise RecordingError(
                f"cannot query MediaRecorder support: {exc}",
                public_message="Recording is not supported in this browser.",
            ) from exc

    def capture(
        self,
        mime_type: str,
        *,
        fps: int,
        duration_ms: int,
        timeslice_ms: int,
        flush_delay_ms: int,
    ) -> bytes:
        try:
            encoded = self._frame.evaluate(
                _CAPTURE,
                {
                    "selector": self._selector,
                    "mimeType": mime_type,
                    "fps": fps,
                    "durationMs": duration_ms,
                    "timesliceMs": timeslice_ms,
                    "flushDelayMs": flush_delay_ms,
                },
            )
        except PlaywrightError as exc:
            raise RecordingError(
                f"canvas capture failed: {exc}",
                public_message="Recording failed. Please try again.",
            ) from exc
        return base64.b64decode(encoded or "")

    def release(self) -> None:
        try:
            self._frame.evaluate(_RELEASE)
        except PlaywrightError as exc:
            # A detached frame has already dropped its tracks.
            logger.debug("Capture release skipped: %s", exc)


class PlaywrightSandbox:
    """Headless (or headed) Chromium page hosting one sandboxed iframe.

    Usage
    -----
    >>> with PlaywrightSandbox() as sandbox:               # doctest: +SKIP
    ...     host = PlaybackHost(sandbox)
    ...     host.show(html)
    ...     host.wait_until_ready()
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 800,
    ) -> None:
        self.viewport_height = viewport_height
        self._seq = 0
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(headless=headless)
            self._page: Page = self._browser.new_page(
                viewport={"width": viewport_width, "height": viewport_height}
            )
            self._page.set_content(_HOST_PAGE)
        except PlaywrightError as exc:
            self._playwright.stop()
            raise SandboxError(
                f"cannot start the playback browser: {exc}",
                public_message="The playback browser could not be started.",
            ) from exc

    def __enter__(self) -> PlaywrightSandbox:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #
    def load(self, html: str) -> None:
        self._seq += 1
        try:
            self._page.evaluate(
                "([html, seq]) => window.__textvizMount(html, seq)", [html, self._seq]
            )
        except PlaywrightError as exc:
            raise SandboxError(
                f"cannot mount document: {exc}",
                public_message="The visualization could not be loaded.",
            ) from exc

    def wait_until_loaded(self, timeout: float) -> bool:
        try:
            self._page.wait_for_function(
                "(seq) => window.__textvizLoaded === seq",
                arg=self._seq,
                timeout=timeout * 1000,
            )
        except PlaywrightTimeoutError:
            return False
        return True

    def _frame(self) -> Frame:
        frame = self._page.frame(name=f"visualization-{self._seq}")
        if frame is None:
            raise SandboxAccessError(
                "no visualization frame is mounted",
                public_message="No visualization is loaded.",
            )
        return frame

    # ------------------------------------------------------------------ #
    # Relay
    # ------------------------------------------------------------------ #
    def call_entry_point(self, name: str) -> bool:
        try:
            return bool(self._frame().evaluate(_CALL_ENTRY_POINT, name))
        except PlaywrightError as exc:
            raise SandboxAccessError(
                f"direct call to {name} refused: {exc}",
                public_message="The visualization refused the control.",
            ) from exc

    def post_message(self, payload: Mapping[str, Any]) -> None:
        try:
            delivered = self._page.evaluate(_POST_MESSAGE, json.loads(json.dumps(dict(payload))))
        except PlaywrightError as exc:
            raise SandboxError(
                f"postMessage failed: {exc}",
                public_message="The visualization did not receive the control.",
            ) from exc
        if not delivered:
            raise SandboxError(
                "no visualization frame to post to",
                public_message="No visualization is loaded.",
            )

    # ------------------------------------------------------------------ #
    # Sizing
    # ------------------------------------------------------------------ #
    def content_height(self) -> int:
        try:
            return int(self._frame().evaluate(_CONTENT_HEIGHT))
        except PlaywrightError as exc:
            raise SandboxAccessError(
                f"cannot measure document: {exc}",
                public_message="The visualization could not be measured.",
            ) from exc

    def set_frame_height(self, height: int) -> None:
        try:
            self._page.evaluate(_SET_FRAME_HEIGHT, height)
        except PlaywrightError as exc:
            raise SandboxError(
                f"cannot resize frame: {exc}",
                public_message="The playback frame could not be resized.",
            ) from exc

    # ------------------------------------------------------------------ #
    # Capture and teardown
    # ------------------------------------------------------------------ #
    def canvas(self, selector: str = CANVAS_SELECTOR) -> CanvasSurface | None:
        frame = self._frame()
        try:
            if frame.query_selector(selector) is None:
                return None
        except PlaywrightError as exc:
            raise SandboxAccessError(
                f"cannot query {selector}: {exc}",
                public_message="The visualization canvas could not be found.",
            ) from exc
        return PlaywrightCanvas(frame, selector)

    def close(self) -> None:
        try:
            self._browser.close()
        finally:
            self._playwright.stop()


__all__ = ["CanvasSurface", "PlaywrightCanvas", "PlaywrightSandbox", "Sandbox"]
