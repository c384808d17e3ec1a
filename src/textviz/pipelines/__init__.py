from __future__ import annotations

from .text_to_visualization import GenerationResult, run_generation, stream_instructions

__all__ = ["GenerationResult", "run_generation", "stream_instructions"]
