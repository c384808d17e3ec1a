"""
API Routes for the two generation stages.

Endpoints
---------
- ``POST /api/generate-instructions``: relay the instruction stream as
  ``text/plain`` chunks. A newer request from the same user stops the
  previous relay.
- ``POST /api/generate-visualization``: one compile call, answered as
  ``{code, error?}``. A warning about an incomplete document rides in
  ``error`` with status 200.

Both routes check, in order: session, model credential, content type, body.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse

from textviz.api.auth import Session, optional_session, require_session
from textviz.api.deps import (
    get_conversation_store,
    get_llm_client,
    get_optional_prompt_log,
    get_supersession,
)
from textviz.api.routers._body import parse_body, read_json_body
from textviz.compiler.visualization import VisualizationCompiler
from textviz.core.cancellation import CancellationToken, Supersession
from textviz.core.contracts.visualization import (
    GenerationRequest,
    InstructionsRequest,
    VisualizationResponse,
)
from textviz.core.conversation import ConversationStore
from textviz.core.errors import TextVizError, UpstreamGenerationError
from textviz.core.settings import get_logger, load_settings
from textviz.llm import LLMClient
from textviz.pipelines.text_to_visualization import stream_instructions
from textviz.storage.prompt_log import PromptLogStore

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Generation"])

INSTRUCTIONS_FAILED_MESSAGE = "Failed to generate animation instructions."


def _relay(
    first: str | None,
    chunks: Iterator[str],
    token: CancellationToken,
    finish: Callable[[], None],
) -> Iterator[str]:
    try:
        if first:
            yield first
        for chunk in chunks:
            if token.cancelled:
                logger.info("Instruction relay stopped: %s", token.reason)
                break
            yield chunk
    except UpstreamGenerationError as exc:
        # Headers are already sent; the client sees a truncated stream.
        logger.error("Instruction stream failed mid-relay: %s", exc)
    finally:
        close = getattr(chunks, "close", None)
        if close is not None:
            close()
        finish()


@router.post("/generate-instructions", summary="Stream animation instructions")
async def generate_instructions(
    request: Request,
    session: Session = Depends(require_session),
    client: LLMClient = Depends(get_llm_client),
    supersession: Supersession = Depends(get_supersession),
) -> StreamingResponse:
    """Relay the instruction model's text stream chunk by chunk."""
    model = load_settings().instructions_model
    client.ensure_configured(model)
    body = parse_body(
        InstructionsRequest,
        await read_json_body(request),
        "Missing or empty 'prompt' in request body.",
    )

    token = supersession.begin(session.user_id)
    chunks = stream_instructions(client, body.prompt, model=model)
    try:
        # Pull the first chunk here so an upstream failure becomes a 500
        # instead of an empty 200 stream.
        first = await run_in_threadpool(next, chunks, None)
    except UpstreamGenerationError as exc:
        supersession.finish(session.user_id, token)
        logger.error("Instruction stream failed to start: %s", exc)
        raise UpstreamGenerationError(str(exc), public_message=INSTRUCTIONS_FAILED_MESSAGE) from exc

    logger.info("Relaying instructions for user %s", session.user_id)
    return StreamingResponse(
        _relay(first, chunks, token, lambda: supersession.finish(session.user_id, token)),
        media_type="text/plain; charset=utf-8",
    )


def _failure(exc: TextVizError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=VisualizationResponse(code="", error=exc.public_message).model_dump(),
    )


@router.post(
    "/generate-visualization",
    response_model=VisualizationResponse,
    summary="Compile instructions (or a prompt) into an HTML document",
)
async def generate_visualization(
    request: Request,
    session: Session | None = Depends(optional_session),
    client: LLMClient = Depends(get_llm_client),
    prompt_log: PromptLogStore | None = Depends(get_optional_prompt_log),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> JSONResponse:
    """One blocking compile call. The session, when present, enables persistence.

    Every failure, including configuration and validation, is answered in
    the same ``{code: "", error}`` shape as a success.
    """
    compiler = VisualizationCompiler(client, prompt_log)
    try:
        client.ensure_configured(compiler.model)
        body = parse_body(
            GenerationRequest,
            await read_json_body(request),
            "Missing or empty 'instructions' or 'prompt' in request body.",
        )
    except TextVizError as exc:
        return _failure(exc)

    user_id = session.user_id if session is not None else None
    label = body.prompt or body.instructions or ""
    guide = body.narrative_guide.to_wire() if body.narrative_guide is not None else None
    try:
        result = await run_in_threadpool(
            lambda: compiler.compile(
                instructions=body.instructions,
                prompt=body.prompt,
                narrative_guide=guide,
                user_id=user_id,
            )
        )
    except TextVizError as exc:
        if user_id is not None:
            conversations.append(user_id, label, None)
        return _failure(exc)

    if user_id is not None:
        conversations.append(user_id, label, result.code)
    return JSONResponse(
        status_code=200,
        content=VisualizationResponse(code=result.code, error=result.warning).model_dump(
            exclude_none=True
        ),
    )


__all__ = ["router"]
