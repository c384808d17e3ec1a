from __future__ import annotations

from .decoder import (
    DecodedInstructions,
    InstructionStreamDecoder,
    coerce_narrative_guide,
    decode_stream,
)
from .scanner import JsonObjectScanner, extract_json_object

__all__ = [
    "DecodedInstructions",
    "InstructionStreamDecoder",
    "JsonObjectScanner",
    "coerce_narrative_guide",
    "decode_stream",
    "extract_json_object",
]
