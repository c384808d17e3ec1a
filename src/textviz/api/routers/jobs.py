"""
API Routes for server-side generation jobs.

Endpoints
---------
- ``POST /api/jobs``: submit a prompt; the whole pipeline (instruction
  stream → compile) runs as a background task. Returns 202 with the job.
- ``GET /api/jobs/{job_id}``: poll status; ``narrative_guide`` appears as
  soon as the decoder surfaces it, before the job completes.
- ``DELETE /api/jobs/{job_id}``: user-initiated stop.

Design Decisions
----------------
- **Asynchronous Handoff**: the POST returns immediately.
- **Supersession**: a new job cancels the same user's unfinished job.
- **Ownership**: jobs are visible to their owner only (404 otherwise).
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from textviz.api.auth import Session, require_session
from textviz.api.background import run_generation_task
from textviz.api.deps import get_conversation_store, get_llm_client, get_optional_prompt_log
from textviz.api.job_store import get_job_store
from textviz.api.routers._body import parse_body, read_json_body
from textviz.api.schemas import JobInfo
from textviz.core.contracts.visualization import InstructionsRequest
from textviz.core.conversation import ConversationStore
from textviz.core.settings import load_settings
from textviz.llm import LLMClient
from textviz.storage.prompt_log import PromptLogStore

router = APIRouter(prefix="/api", tags=["Jobs"])


def _owned_job(job_id: str, session: Session) -> JobInfo:
    job = get_job_store().get_job(job_id)
    if job is None or job.user_id != session.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return job


@router.post(
    "/jobs",
    response_model=JobInfo,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a generation job",
)
async def submit_job(
    request: Request,
    background_tasks: BackgroundTasks,
    session: Session = Depends(require_session),
    client: LLMClient = Depends(get_llm_client),
    prompt_log: PromptLogStore | None = Depends(get_optional_prompt_log),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> JobInfo:
    """Create the job, schedule the worker and return the PENDING job.

    Client Workflow
    ---------------
    1. Receive ``job_id`` from this response.
    2. Poll ``GET /api/jobs/{job_id}`` until the status is terminal.
    """
    cfg = load_settings()
    client.ensure_configured(cfg.instructions_model)
    client.ensure_configured(cfg.visualization_model)
    body = parse_body(
        InstructionsRequest,
        await read_json_body(request),
        "Missing or empty 'prompt' in request body.",
    )

    store = get_job_store()
    job_id = store.create_job(session.user_id, body.prompt)
    background_tasks.add_task(
        run_generation_task,
        job_id=job_id,
        prompt=body.prompt,
        user_id=session.user_id,
        client=client,
        prompt_log=prompt_log,
        conversations=conversations,
    )
    return _owned_job(job_id, session)


@router.get("/jobs/{job_id}", response_model=JobInfo, summary="Get job status and result")
def get_job(job_id: str, session: Session = Depends(require_session)) -> JobInfo:
    return _owned_job(job_id, session)


@router.delete("/jobs/{job_id}", response_model=JobInfo, summary="Stop a running job")
def stop_job(job_id: str, session: Session = Depends(require_session)) -> JobInfo:
    """Cancel the job if it is still running; a finished job is returned unchanged."""
    _owned_job(job_id, session)
    get_job_store().cancel(job_id, "stopped")
    return _owned_job(job_id, session)


__all__ = ["router"]
