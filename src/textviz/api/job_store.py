"""
In-Memory Job Store for server-side generation jobs.

Responsibilities
----------------
- **Create**: Generate UUIDs for new requests, mark them PENDING, and cancel
  the same user's previous unfinished job (a newer request supersedes it).
- **Read**: Return a snapshot of a job by id.
- **Update**: Move jobs through STREAMING → COMPILING → COMPLETED/FAILED,
  attach the narrative guide as soon as it is surfaced, or CANCEL them.

Every job owns a :class:`CancellationToken`. Updates from the worker are
applied only while the token is live and the job is not yet terminal, so a
cancelled job never changes state again, however late its worker finishes.

Note on Persistence
-------------------
This is a volatile memory store. If the server restarts, all jobs are lost;
durable history lives in the prompt log. Finished jobs are kept for
``finished_ttl`` and at most ``max_finished`` of them at a time; older ones
are pruned whenever a new job is created. Unfinished jobs are never pruned.
"""

from __future__ import annotations

import threading
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, ClassVar

from textviz.api.schemas import GenerationJobResult, JobInfo, JobStatus
from textviz.core.cancellation import CancellationToken
from textviz.core.settings import get_logger
from textviz.pipelines.text_to_visualization import Stage

logger = get_logger(__name__)

_STAGE_STATUS: dict[str, JobStatus] = {
    "streaming": JobStatus.STREAMING,
    "compiling": JobStatus.COMPILING,
}


class JobStore:
    """A lock-guarded dictionary of :class:`JobInfo` plus one token per job."""

    _instance: ClassVar[JobStore | None] = None

    def __init__(
        self,
        *,
        max_finished: int = 500,
        finished_ttl: timedelta = timedelta(hours=1),
    ) -> None:
        self.max_finished = max_finished
        self.finished_ttl = finished_ttl
        self._lock = threading.Lock()
        self._jobs: dict[str, JobInfo] = {}
        self._tokens: dict[str, CancellationToken] = {}

    @classmethod
    def get_instance(cls) -> JobStore:
        """Accessor for the global singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def create_job(self, user_id: str, prompt: str) -> str:
        """Register a PENDING job, superseding the user's unfinished ones.

        Returns
        -------
        str
            The generated UUID4 string for the new job.
        """
        job_id = str(uuid.uuid4())
        now = datetime.now(UTC)
        with self._lock:
            self._prune_locked(now)
            for other in self._jobs.values():
                if other.user_id == user_id and not other.status.terminal:
                    self._cancel_locked(other, "superseded")
            self._jobs[job_id] = JobInfo(
                job_id=job_id,
                user_id=user_id,
                prompt=prompt,
                status=JobStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            self._tokens[job_id] = CancellationToken()
        return job_id

    def get_job(self, job_id: str) -> JobInfo | None:
        """Return a snapshot of the job, or None if not found."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def token_for(self, job_id: str) -> CancellationToken | None:
        with self._lock:
            return self._tokens.get(job_id)

    # ------------------------------------------------------------------ #
    # Worker updates (ignored once cancelled or terminal)
    # ------------------------------------------------------------------ #
    def _update(self, job_id: str, **changes: Any) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            token = self._tokens.get(job_id)
            if job is None or token is None or token.cancelled or job.status.terminal:
                return False
            for field, value in changes.items():
                setattr(job, field, value)
            job.updated_at = datetime.now(UTC)
            return True

    def mark_stage(self, job_id: str, stage: Stage) -> bool:
        """Transition a job to STREAMING or COMPILING."""
        return self._update(job_id, status=_STAGE_STATUS[stage])

    def mark_narrative_guide(self, job_id: str, guide: dict[str, Any]) -> bool:
        return self._update(job_id, narrative_guide=guide)

    def mark_completed(self, job_id: str, result: GenerationJobResult) -> bool:
        """Transition a job to COMPLETED and attach the result."""
        return self._update(job_id, status=JobStatus.COMPLETED, result=result)

    def mark_failed(self, job_id: str, error: str) -> bool:
        """Transition a job to FAILED and attach the public error message."""
        return self._update(job_id, status=JobStatus.FAILED, error=error)

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #
    def _cancel_locked(self, job: JobInfo, reason: str) -> None:
        token = self._tokens.get(job.job_id)
        if token is not None:
            token.cancel(reason)
        job.status = JobStatus.CANCELLED
        job.error = token.reason if token is not None and token.reason else reason
        job.updated_at = datetime.now(UTC)

    def cancel(self, job_id: str, reason: str = "stopped") -> bool:
        """Cancel an unfinished job. Return ``False`` if it was already terminal."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.terminal:
                return False
            self._cancel_locked(job, reason)
            return True

    # ------------------------------------------------------------------ #
    # Retention
    # ------------------------------------------------------------------ #
    def prune(self, now: datetime | None = None) -> int:
        """Drop expired finished jobs and the oldest beyond the cap. Return how many."""
        with self._lock:
            return self._prune_locked(now or datetime.now(UTC))

    def _prune_locked(self, now: datetime) -> int:
        finished = sorted(
            (job for job in self._jobs.values() if job.status.terminal),
            key=lambda job: job.updated_at,
        )
        cutoff = now - self.finished_ttl
        excess = len(finished) - self.max_finished
        doomed = [
            job.job_id
            for index, job in enumerate(finished)
            if index < excess or job.updated_at < cutoff
        ]
        for job_id in doomed:
            del self._jobs[job_id]
            self._tokens.pop(job_id, None)
        if doomed:
            logger.debug("Pruned %d finished jobs", len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            for token in self._tokens.values():
                token.cancel("shutdown")
            self._jobs.clear()
            self._tokens.clear()


def get_job_store() -> JobStore:
    return JobStore.get_instance()


__all__ = ["JobStore", "get_job_store"]
