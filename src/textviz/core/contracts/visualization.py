"""Request/response contracts for generation and the generated document itself."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .instructions import NarrativeGuide


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class InstructionsRequest(BaseModel):
    """Body of ``POST /api/generate-instructions``."""

    prompt: str

    @field_validator("prompt")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Missing or empty 'prompt' in request body.")
        return v


class GenerationRequest(BaseModel):
    """Body of ``POST /api/generate-visualization``.

    ``instructions`` take priority over ``prompt`` when both are present.
    Blank strings count as absent.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = None
    instructions: str | None = None
    narrative_guide: NarrativeGuide | None = Field(default=None, alias="narrativeGuide")

    @field_validator("prompt", "instructions", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _require_input(self) -> GenerationRequest:
        if not (self.instructions or self.prompt):
            raise ValueError("Missing or empty 'instructions' or 'prompt' in request body.")
        return self


class GeneratedVisualization(BaseModel):
    """A complete, self-contained HTML document. Immutable once created.

    ``warning`` holds the structural-completeness warning, if any; the code is
    still returned for best-effort display.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    warning: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_complete(self) -> bool:
        return self.warning is None


class VisualizationResponse(BaseModel):
    """Wire shape returned by the visualization route: ``{code, error?}``."""

    code: str
    error: str | None = None


__all__ = [
    "InstructionsRequest",
    "GenerationRequest",
    "GeneratedVisualization",
    "VisualizationResponse",
]
