from __future__ import annotations

from .host import FALLBACK_HEIGHT_RATIO, PlaybackHost, PlaybackState, RelayOutcome
from .sandbox import CanvasSurface, PlaywrightSandbox, Sandbox

__all__ = [
    "CanvasSurface",
    "FALLBACK_HEIGHT_RATIO",
    "PlaybackHost",
    "PlaybackState",
    "PlaywrightSandbox",
    "RelayOutcome",
    "Sandbox",
]
