"""
API Data Models (Schemas).

Wire shapes for the HTTP API that are not core contracts: job tracking,
prompt-history pages and the conversation view. Core
request/response bodies (``GenerationRequest``, ``VisualizationResponse``,
``PromptLogRecord``) live in :mod:`textviz.core.contracts` and are reused
here as-is.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from textviz.core.contracts.prompt_log import PromptLogRecord


class JobStatus(StrEnum):
    """Lifecycle of a server-side generation job.

    ``pending → streaming → compiling`` and then exactly one terminal state.
    """

    PENDING = "pending"
    STREAMING = "streaming"
    COMPILING = "compiling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class GenerationJobResult(BaseModel):
    """Payload of a completed job."""

    code: str
    warning: str | None = None
    instructions: str = ""


class JobInfo(BaseModel):
    """Status envelope returned by the jobs endpoints."""

    job_id: str
    user_id: str
    prompt: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    narrative_guide: dict[str, Any] | None = Field(
        default=None, description="Surfaced as soon as the instruction stream completes it."
    )
    error: str | None = None
    result: GenerationJobResult | None = None


class PromptHistoryPage(BaseModel):
    logs: list[PromptLogRecord]
    total: int


class ConversationEntryPayload(BaseModel):
    prompt: str
    html: str | None
    created_at: datetime


class ConversationPayload(BaseModel):
    title: str
    created_at: datetime | None
    entries: list[ConversationEntryPayload]


__all__ = [
    "ConversationEntryPayload",
    "ConversationPayload",
    "GenerationJobResult",
    "JobInfo",
    "JobStatus",
    "PromptHistoryPage",
]
