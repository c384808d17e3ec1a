"""
Visualization Compiler: instructions (or a raw prompt) → one HTML document.

The compiler is a single blocking request to the text-generation service,
followed by a little cleanup and a structural sanity check:

- surrounding code fences (```html ... ```) are stripped;
- an empty result is a failure (``UpstreamGenerationError``, HTTP 502);
- a document missing any of the doctype / html / head / body tags is still
  accepted, with the :class:`StructuralWarning` text attached.

When a user id is known, every outcome is written to the prompt log. Logging
failures never affect the returned result.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from textviz.core.cancellation import CancellationToken
from textviz.core.contracts.prompt_log import PromptLogRecord, PromptStatus
from textviz.core.contracts.visualization import GeneratedVisualization
from textviz.core.errors import StructuralWarning, UpstreamGenerationError
from textviz.core.settings import get_logger, load_settings
from textviz.llm import LLMClient
from textviz.llm.prompts import build_visualization_messages
from textviz.storage.prompt_log import PromptLogStore, record_prompt
from textviz.streaming.scanner import extract_json_object

logger = get_logger(__name__)

EMPTY_RESPONSE_MESSAGE = "Model returned an empty response."
COMPILE_FAILED_MESSAGE = "Failed to generate visualization HTML."

_LEADING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\r?\n?")
_TRAILING_FENCE = re.compile(r"\r?\n?```\s*$")

_REQUIRED_MARKERS: tuple[str, ...] = (
    "<!doctype html",
    "<html",
    "</html>",
    "<head",
    "</head>",
    "<body",
    "</body>",
)


def strip_markdown_fences(text: str) -> str:
    """Remove one leading and one trailing code fence, then trim.

    Idempotent: the result never starts or ends with a fence marker that a
    second pass would remove.

    >>> strip_markdown_fences("```html\\n<html></html>\\n```")
    '<html></html>'
    """
    stripped = text.strip()
    while True:
        cleaned = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", stripped, count=1), count=1)
        cleaned = cleaned.strip()
        if cleaned == stripped:
            return cleaned
        stripped = cleaned


def is_likely_complete_html(text: str) -> bool:
    """True iff the doctype and the html/head/body open and close tags all appear."""
    lowered = text.lower()
    return all(marker in lowered for marker in _REQUIRED_MARKERS)


def _parse_instructions(instructions: str | None) -> dict[str, Any] | None:
    if not instructions:
        return None
    try:
        value = json.loads(instructions)
    except json.JSONDecodeError:
        return extract_json_object(instructions).ok_or_none()
    return value if isinstance(value, dict) else None


class VisualizationCompiler:
    """Compile animation instructions into a self-contained HTML document.

    Parameters
    ----------
    client:
        The text-generation client.
    prompt_log:
        Optional store; records are only written when ``user_id`` is given.
    model:
        Registry alias or model id; defaults to ``Settings.visualization_model``.
    """

    def __init__(
        self,
        client: LLMClient,
        prompt_log: PromptLogStore | None = None,
        *,
        model: str | None = None,
    ) -> None:
        self.client = client
        self.prompt_log = prompt_log
        self.model = model or load_settings().visualization_model

    def compile(
        self,
        *,
        instructions: str | None = None,
        prompt: str | None = None,
        narrative_guide: Mapping[str, Any] | None = None,
        user_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> GeneratedVisualization:
        """Run one compile request.

        Raises
        ------
        ConfigurationError
            Before any request, when the model credential is missing.
        UpstreamGenerationError
            When the service fails (500) or answers with nothing (502).
        GenerationCancelled
            When ``token`` is cancelled before or during the request. Nothing
            is persisted in that case.
        """
        instructions = (instructions or "").strip() or None
        prompt = (prompt or "").strip() or None
        if instructions is None and prompt is None:
            raise ValueError("compile() needs instructions or a prompt")

        self.client.ensure_configured(self.model)
        if token is not None:
            token.raise_if_cancelled()

        messages = build_visualization_messages(
            instructions=instructions,
            prompt=prompt,
            narrative_guide=narrative_guide if instructions else None,
        )
        source = "instructions" if instructions else "prompt"
        size = len(messages[0]["content"])
        logger.info("Compiling visualization from %s (%d chars)", source, size)

        try:
            raw = self.client.generate(messages, model=self.model)
        except UpstreamGenerationError as exc:
            if token is not None:
                token.raise_if_cancelled()
            logger.error("Visualization request failed: %s", exc)
            failure = UpstreamGenerationError(
                str(exc), public_message=COMPILE_FAILED_MESSAGE, status_code=exc.status_code
            )
            self._persist_failure(failure, instructions, prompt, narrative_guide, user_id)
            raise failure from exc

        if token is not None:
            token.raise_if_cancelled()

        code = strip_markdown_fences(raw)
        if not code:
            failure = UpstreamGenerationError(
                "empty visualization output", public_message=EMPTY_RESPONSE_MESSAGE, status_code=502
            )
            logger.warning("Visualization model returned an empty response")
            self._persist_failure(failure, instructions, prompt, narrative_guide, user_id)
            raise failure

        warning: str | None = None
        if not is_likely_complete_html(code):
            warning = StructuralWarning.message
            logger.warning("Generated document is missing structural tags (%d chars)", len(code))

        result = GeneratedVisualization(code=code, warning=warning)
        self._persist(
            user_id,
            PromptLogRecord(
                user_id=user_id or "",
                prompt=prompt or "",
                instructions=_parse_instructions(instructions),
                narrative_guide=dict(narrative_guide) if narrative_guide else None,
                visualization_html=code,
                status=PromptStatus.VISUALIZATION_COMPLETE,
            ),
        )
        return result

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def _persist_failure(
        self,
        failure: UpstreamGenerationError,
        instructions: str | None,
        prompt: str | None,
        narrative_guide: Mapping[str, Any] | None,
        user_id: str | None,
    ) -> None:
        self._persist(
            user_id,
            PromptLogRecord(
                user_id=user_id or "",
                prompt=prompt or "",
                instructions=_parse_instructions(instructions),
                narrative_guide=dict(narrative_guide) if narrative_guide else None,
                status=PromptStatus.FAILED,
                error_message=failure.public_message,
            ),
        )

    def _persist(self, user_id: str | None, record: PromptLogRecord) -> None:
        if not user_id or self.prompt_log is None:
            return
        record_prompt(self.prompt_log, record)


__all__ = [
    "COMPILE_FAILED_MESSAGE",
    "EMPTY_RESPONSE_MESSAGE",
    "VisualizationCompiler",
    "is_likely_complete_html",
    "strip_markdown_fences",
]
