"""
Text-to-visualization pipeline: prompt → instruction stream → HTML document.

Flow Overview
-------------
1. **Instructions**: the instruction model streams a JSON document. The
   :mod:`textviz.streaming` decoder surfaces ``narrativeGuide`` as soon as
   that member is complete, long before the stream ends.
2. **Compile**: the raw instruction text (parsed or not) plus the narrative
   guide go to the :class:`VisualizationCompiler`, which returns one
   self-contained HTML page and an optional structural warning.

Both credentials are checked before the first request, so a misconfigured
server fails without any network traffic. A cancellation token threads
through every suspension point; once it fires the pipeline raises
:class:`GenerationCancelled` and nothing else happens.

The CLI ``generate`` command and the API jobs router both call
:func:`run_generation`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, Literal, TypedDict

from textviz.compiler.visualization import VisualizationCompiler
from textviz.core.cancellation import CancellationToken
from textviz.core.contracts.instructions import NarrativeGuide
from textviz.core.settings import get_logger, load_settings
from textviz.llm import LLMClient
from textviz.llm.prompts import build_instructions_messages
from textviz.storage.prompt_log import PromptLogStore
from textviz.streaming.decoder import GuideCallback, decode_stream

logger = get_logger(__name__)

Stage = Literal["streaming", "compiling"]


class GenerationResult(TypedDict):
    """Structured payload returned by :func:`run_generation`.

    Attributes
    ----------
    prompt:
        The user's prompt, stripped.
    instructions:
        The raw instruction text exactly as streamed.
    instructions_data:
        The instruction JSON when it parsed, else ``None``.
    narrative_guide:
        The surfaced narrative guide in wire (camelCase) form, or ``None``.
    code:
        The generated HTML document.
    warning:
        Structural warning text, or ``None`` for a complete document.
    decode_error:
        Why the instruction text did not parse or validate, if it did not.
    """

    prompt: str
    instructions: str
    instructions_data: dict[str, Any] | None
    narrative_guide: dict[str, Any] | None
    code: str
    warning: str | None
    decode_error: str | None


def stream_instructions(
    client: LLMClient,
    prompt: str,
    *,
    model: str | None = None,
) -> Iterator[str]:
    """Open the instruction stream for ``prompt``.

    The credential check runs here, before any request; the HTTP exchange
    starts on the first ``next()``.
    """
    model = model or load_settings().instructions_model
    client.ensure_configured(model)
    return client.stream(build_instructions_messages(prompt), model=model)


def run_generation(
    prompt: str,
    *,
    client: LLMClient | None = None,
    compiler: VisualizationCompiler | None = None,
    token: CancellationToken | None = None,
    user_id: str | None = None,
    prompt_log: PromptLogStore | None = None,
    on_narrative_guide: GuideCallback | None = None,
    on_chunk: Callable[[str], None] | None = None,
    on_stage: Callable[[Stage], None] | None = None,
) -> GenerationResult:
    """Run both stages for one prompt.

    Parameters
    ----------
    prompt:
        Natural-language description of the animation.
    client / compiler:
        Injected collaborators; built from settings and env when omitted.
    token:
        Cancellation token checked at every suspension point.
    user_id / prompt_log:
        When both are known the compile outcome is persisted.
    on_narrative_guide / on_chunk / on_stage:
        Progress callbacks (guide surfaced, text so far, stage change). None
        of them fires after cancellation.

    Raises
    ------
    ConfigurationError
        Before any request, when a stage's credential is missing.
    UpstreamGenerationError
        When either stage fails upstream.
    GenerationCancelled
        When ``token`` is cancelled.
    """
    prompt = prompt.strip()
    if not prompt:
        raise ValueError("prompt must not be empty")

    cfg = load_settings()
    client = client or LLMClient.from_env(timeout_seconds=cfg.request_timeout_seconds)
    compiler = compiler or VisualizationCompiler(client, prompt_log)
    client.ensure_configured(compiler.model)

    if token is not None:
        token.raise_if_cancelled()
    if on_stage is not None:
        on_stage("streaming")

    chunks = stream_instructions(client, prompt, model=cfg.instructions_model)
    decoded = decode_stream(
        chunks, token=token, on_narrative_guide=on_narrative_guide, on_chunk=on_chunk
    )
    if decoded.error:
        logger.info("Compiling from unparsed instructions: %s", decoded.error)

    if token is not None:
        token.raise_if_cancelled()
    if on_stage is not None:
        on_stage("compiling")

    guide: NarrativeGuide | None = decoded.narrative_guide
    guide_wire = guide.to_wire() if guide is not None else None
    instructions = decoded.text.strip()

    visualization = compiler.compile(
        instructions=instructions or None,
        prompt=prompt,
        narrative_guide=guide_wire,
        user_id=user_id,
        token=token,
    )

    return GenerationResult(
        prompt=prompt,
        instructions=decoded.text,
        instructions_data=decoded.data,
        narrative_guide=guide_wire,
        code=visualization.code,
        warning=visualization.warning,
        decode_error=decoded.error,
    )


__all__ = ["GenerationResult", "Stage", "run_generation", "stream_instructions"]
