"""
Background task runner for generation jobs.

:func:`run_generation_task` is scheduled through FastAPI's ``BackgroundTasks``
(run in the thread pool). It drives :func:`run_generation` with the job's
cancellation token and reports progress into the :class:`JobStore`. It never
raises to the caller: failures end as FAILED, cancellations as CANCELLED.
"""

from __future__ import annotations

from textviz.api.job_store import get_job_store
from textviz.api.schemas import GenerationJobResult
from textviz.core.contracts.instructions import NarrativeGuide
from textviz.core.conversation import ConversationStore
from textviz.core.errors import GenerationCancelled, TextVizError, UpstreamGenerationError
from textviz.core.settings import get_logger
from textviz.llm import LLMClient
from textviz.pipelines.text_to_visualization import Stage, run_generation
from textviz.storage.prompt_log import PromptLogStore

logger = get_logger(__name__)


def run_generation_task(
    job_id: str,
    prompt: str,
    user_id: str,
    client: LLMClient,
    prompt_log: PromptLogStore | None,
    conversations: ConversationStore,
) -> None:
    """Execute one generation job and record its outcome.

    The conversation only receives an entry while the job is still live,
    so a superseded job leaves no trace in it.
    """
    store = get_job_store()
    token = store.token_for(job_id)
    if token is None:
        return

    def on_guide(guide: NarrativeGuide) -> None:
        store.mark_narrative_guide(job_id, guide.to_wire())

    def on_stage(stage: Stage) -> None:
        store.mark_stage(job_id, stage)

    try:
        output = run_generation(
            prompt,
            client=client,
            token=token,
            user_id=user_id,
            prompt_log=prompt_log,
            on_narrative_guide=on_guide,
            on_stage=on_stage,
        )
    except GenerationCancelled as exc:
        store.cancel(job_id, exc.reason)
        logger.info("Job %s cancelled (%s)", job_id, exc.reason)
        return
    except TextVizError as exc:
        logger.warning("Job %s failed: %s", job_id, exc)
        if store.mark_failed(job_id, exc.public_message):
            conversations.append(user_id, prompt, None)
        return
    except Exception:
        logger.exception("Job %s crashed", job_id)
        if store.mark_failed(job_id, UpstreamGenerationError.default_message):
            conversations.append(user_id, prompt, None)
        return

    result = GenerationJobResult(
        code=output["code"], warning=output["warning"], instructions=output["instructions"]
    )
    if store.mark_completed(job_id, result):
        conversations.append(user_id, prompt, output["code"])
        logger.info("Job %s completed (%d chars of HTML)", job_id, len(output["code"]))


__all__ = ["run_generation_task"]
