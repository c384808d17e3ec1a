"""
Sandboxed Playback Host.

State machine per loaded document::

    EMPTY ──show()──▶ LOADING ──load signal──▶ READY
                        ▲                        │
                        └──────── show() ────────┘

Control relay
-------------
``step_forward`` / ``step_backward`` / ``reset`` / ``play`` map onto the
document's global ``stepForward`` / ``stepBackward`` / ``resetAnimation`` /
``playAnimation``. The host first calls the function directly; when the
document does not define it (or the call is refused) it posts
``{"type": <name>}`` instead. Nothing here raises on a document that
implements neither: the outcome is reported, and logged, instead.

Sizing
------
After load the host measures the document's content height, re-measuring
after each delay in ``remeasure_delays`` to catch deferred layout, and sizes
the frame to it. If measurement is refused it falls back to 60% of the
viewport height.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from enum import StrEnum

from textviz.core.cancellation import CancellationToken
from textviz.core.contracts.visualization import GeneratedVisualization
from textviz.core.errors import SandboxAccessError, SandboxError
from textviz.core.settings import get_logger
from textviz.llm.prompts import CANVAS_SELECTOR

from .sandbox import CanvasSurface, Sandbox

logger = get_logger(__name__)

FALLBACK_HEIGHT_RATIO = 0.6


class PlaybackState(StrEnum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


class RelayOutcome(StrEnum):
    DIRECT = "direct"  # the entry point was called
    MESSAGE = "message"  # fell back to postMessage
    NOOP = "noop"  # neither path reached the document
    SKIPPED = "skipped"  # no document is ready


class PlaybackHost:
    """Drive one sandboxed generated document through load, sizing and controls."""

    def __init__(
        self,
        sandbox: Sandbox,
        *,
        load_timeout: float = 10.0,
        remeasure_delays: Sequence[float] = (0.0, 0.3, 1.0),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sandbox = sandbox
        self.load_timeout = load_timeout
        self.remeasure_delays = tuple(remeasure_delays)
        self._sleep = sleep
        self.state = PlaybackState.EMPTY
        self.document: GeneratedVisualization | None = None
        self.frame_height: int | None = None
        self._generation = 0

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #
    def show(self, document: GeneratedVisualization | str) -> None:
        """Assign a new document. Any state goes back to ``LOADING``."""
        if isinstance(document, str):
            document = GeneratedVisualization(code=document)
        self._generation += 1
        self.document = document
        self.frame_height = None
        self.state = PlaybackState.LOADING
        logger.debug("Loading document #%d (%d chars)", self._generation, len(document.code))
        self.sandbox.load(document.code)

    def wait_until_ready(
        self,
        timeout: float | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> bool:
        """Block until the sandbox signals load, then size the frame.

        Returns ``True`` once ``READY``. A load signal that arrives after a
        newer :meth:`show` does not promote the newer document.
        """
        if self.state is PlaybackState.EMPTY:
            return False
        if self.state is PlaybackState.READY:
            return True

        generation = self._generation
        loaded = self.sandbox.wait_until_loaded(self.load_timeout if timeout is None else timeout)
        if token is not None:
            token.raise_if_cancelled()
        if not loaded:
            logger.warning("Document #%d did not signal load in time", generation)
            return False
        if generation != self._generation:
            return False

        self.state = PlaybackState.READY
        self.fit_height()
        return True

    def fit_height(self) -> int:
        """Size the frame to the document's content, or to the viewport fallback."""
        measured: int | None = None
        for delay in self.remeasure_delays:
            if delay > 0:
                self._sleep(delay)
            try:
                height = self.sandbox.content_height()
            except SandboxAccessError as exc:
                logger.info("Content height unavailable, using fallback: %s", exc)
                break
            if height > 0:
                measured = height
                self._apply_height(height)

        if measured is None:
            measured = int(self.sandbox.viewport_height * FALLBACK_HEIGHT_RATIO)
            self._apply_height(measured)
        self.frame_height = measured
        return measured

    def _apply_height(self, height: int) -> None:
        try:
            self.sandbox.set_frame_height(height)
        except SandboxError as exc:
            logger.warning("Could not resize playback frame: %s", exc)

    # ------------------------------------------------------------------ #
    # Controls
    # ------------------------------------------------------------------ #
    def step_forward(self) -> RelayOutcome:
        return self._relay("stepForward")

    def step_backward(self) -> RelayOutcome:
        return self._relay("stepBackward")

    def reset(self) -> RelayOutcome:
        return self._relay("resetAnimation")

    def play(self) -> RelayOutcome:
        return self._relay("playAnimation")

    def _relay(self, entry_point: str) -> RelayOutcome:
        if self.state is not PlaybackState.READY:
            logger.debug("Ignoring %s: no document is ready", entry_point)
            return RelayOutcome.SKIPPED

        try:
            if self.sandbox.call_entry_point(entry_point):
                return RelayOutcome.DIRECT
        except SandboxError as exc:
            logger.info("Direct call to %s refused, posting a message: %s", entry_point, exc)

        try:
            self.sandbox.post_message({"type": entry_point})
        except SandboxError as exc:
            logger.warning("Relay of %s reached nothing: %s", entry_point, exc)
            return RelayOutcome.NOOP
        return RelayOutcome.MESSAGE

    # ------------------------------------------------------------------ #
    # Capture
    # ------------------------------------------------------------------ #
    def canvas(self) -> CanvasSurface | None:
        """The document's ``canvas#animationCanvas``, once ``READY``."""
        if self.state is not PlaybackState.READY:
            return None
        try:
            return self.sandbox.canvas(CANVAS_SELECTOR)
        except SandboxError as exc:
            logger.warning("Canvas lookup failed: %s", exc)
            return None


__all__ = ["FALLBACK_HEIGHT_RATIO", "PlaybackHost", "PlaybackState", "RelayOutcome"]
