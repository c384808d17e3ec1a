"""PromptLogRecord: the audited prompt → instructions → HTML → status tuple."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class PromptStatus(StrEnum):
    VISUALIZATION_COMPLETE = "VISUALIZATION_COMPLETE"
    FAILED = "FAILED"


class PromptLogRecord(BaseModel):
    """One persisted generation attempt.

    ``instructions`` is the parsed instruction JSON, or ``None`` when the raw
    instructions text was not valid JSON. ``visualization_html`` is ``None``
    on failure.
    """

    id: int | None = None
    user_id: str
    prompt: str
    instructions: dict[str, Any] | None = None
    narrative_guide: dict[str, Any] | None = None
    visualization_html: str | None = None
    status: PromptStatus
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


__all__ = ["PromptStatus", "PromptLogRecord"]
