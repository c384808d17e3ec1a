from __future__ import annotations

from .visualization import (
    COMPILE_FAILED_MESSAGE,
    EMPTY_RESPONSE_MESSAGE,
    VisualizationCompiler,
    is_likely_complete_html,
    strip_markdown_fences,
)

__all__ = [
    "COMPILE_FAILED_MESSAGE",
    "EMPTY_RESPONSE_MESSAGE",
    "VisualizationCompiler",
    "is_likely_complete_html",
    "strip_markdown_fences",
]
