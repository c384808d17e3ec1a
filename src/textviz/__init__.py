"""textviz: turn a natural-language description into an animated canvas page.

The package is split into a few layers:

- ``textviz.llm``        hosted text-generation client and prompt templates
- ``textviz.streaming``  tolerant, incremental decoding of the instruction stream
- ``textviz.compiler``   one-shot compilation of instructions into HTML
- ``textviz.playback``   sandboxed playback host and its control relay
- ``textviz.recording``  canvas capture to a downloadable video
- ``textviz.api``        FastAPI service; ``textviz.cli`` is the terminal front-end
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.3.0"
