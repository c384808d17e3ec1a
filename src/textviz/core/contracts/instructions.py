"""Animation instruction contracts: the JSON a model produces before any HTML.

An :class:`InstructionDocument` describes a scene (title, canvas), the
drawable ``objects``, the timed ``animations`` that transform them, an ordered
``timeline``, the playback ``controls`` the page should offer and a
``narrativeGuide`` used for subtitles.

The documents come from a model, so the contracts are deliberately lenient:
every field has a default, unknown keys are preserved (``extra="allow"``) and
wire names stay camelCase through aliases. All time values are milliseconds.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _WireModel(BaseModel):
    """Shared config: camelCase aliases, population by name, extra keys kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        """Dump with wire (camelCase) names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CanvasSpec(_WireModel):
    width: int = 800
    height: int = 600
    background_color: str = Field(default="#ffffff", alias="backgroundColor")


class Scene(_WireModel):
    title: str = ""
    description: str = ""
    canvas: CanvasSpec = Field(default_factory=CanvasSpec)


class SceneObject(_WireModel):
    """A drawable entity (bar, circle, arrow, text, ...)."""

    id: str
    type: str = "shape"
    properties: dict[str, Any] = Field(default_factory=dict)
    initial_state: dict[str, Any] = Field(default_factory=dict, alias="initialState")


class Animation(_WireModel):
    """A timed transform applied to one object (``move``, ``colorChange``, ...)."""

    id: str
    target_object_id: str | None = Field(default=None, alias="targetObjectId")
    type: str = "move"
    duration: float = Field(default=1000, ge=0, description="Milliseconds.")
    delay: float = Field(default=0, ge=0, description="Milliseconds.")
    easing: str = "easeInOut"
    properties: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None


class TimelineEntry(_WireModel):
    time: float = Field(default=0, description="Milliseconds from start.")
    action: str = ""
    animation_ids: list[str] = Field(default_factory=list, alias="animationIds")


class Controls(_WireModel):
    play_pause: bool = Field(default=True, alias="playPause")
    reset: bool = True
    speed_control: bool = Field(default=True, alias="speedControl")
    step_forward: bool = Field(default=False, alias="stepForward")
    step_backward: bool = Field(default=False, alias="stepBackward")


class Step(_WireModel):
    """One narrated moment; ``timeInSeconds`` is derived from ``timestamp``."""

    timestamp: float = Field(ge=0, description="Milliseconds from start.")
    time_in_seconds: float | None = Field(default=None, alias="timeInSeconds")
    text: str
    highlight: str | None = None

    @model_validator(mode="after")
    def _derive_seconds(self) -> Step:
        if self.time_in_seconds is None:
            self.time_in_seconds = self.timestamp / 1000
        return self


class NarrativeGuide(_WireModel):
    """Timed narration: introduction, ordered steps, conclusion."""

    introduction: str = ""
    steps: list[Step] = Field(default_factory=list)
    conclusion: str = ""

    @model_validator(mode="after")
    def _order_steps(self) -> NarrativeGuide:
        # Stable sort keeps the model's order for equal timestamps.
        self.steps = sorted(self.steps, key=lambda step: step.timestamp)
        return self


class InstructionDocument(_WireModel):
    scene: Scene = Field(default_factory=Scene)
    objects: list[SceneObject] = Field(default_factory=list)
    animations: list[Animation] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    controls: Controls = Field(default_factory=Controls)
    narrative_guide: NarrativeGuide | None = Field(default=None, alias="narrativeGuide")

    def object_types(self) -> set[str]:
        return {obj.type for obj in self.objects}

    def total_duration_ms(self) -> float:
        """End time of the last animation (``delay + duration``), or 0."""
        return max((a.delay + a.duration for a in self.animations), default=0.0)


__all__ = [
    "CanvasSpec",
    "Scene",
    "SceneObject",
    "Animation",
    "TimelineEntry",
    "Controls",
    "Step",
    "NarrativeGuide",
    "InstructionDocument",
]
