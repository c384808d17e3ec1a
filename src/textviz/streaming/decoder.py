"""
Instruction Stream Decoder: tolerant, incremental decoding of streamed JSON.

The instruction stage streams a JSON document token by token. Until the
stream ends it is not valid JSON, and even then the model may have wrapped it
in fences, added commentary or been cut off. The decoder therefore:

1. accumulates chunks (``str`` or UTF-8 ``bytes``; multi-byte characters may
   be split across chunks);
2. on every chunk, advances a :class:`JsonObjectScanner` and, as soon as the
   top-level ``narrativeGuide`` member is complete and valid, surfaces it
   through ``on_narrative_guide``; ``animations`` or ``timeline`` may still be
   arriving at that point;
3. treats any parse failure mid-stream as "not yet", never as an error. An
   object that closes and still does not parse is dropped whole, including a
   guide already surfaced from it;
4. on :meth:`InstructionStreamDecoder.finish`, makes one last best-effort
   parse of the whole buffer. Failure is tolerated there too: the raw text is
   still returned so the compiler can try its best with it.

Cancellation is authoritative: once the token is cancelled the decoder stops
accumulating, fires no further callbacks and never runs the final parse.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as SchemaError

from textviz.core.cancellation import CancellationToken
from textviz.core.contracts.instructions import InstructionDocument, NarrativeGuide
from textviz.core.errors import GenerationCancelled
from textviz.core.settings import get_logger

from .scanner import JsonObjectScanner, extract_json_object

logger = get_logger(__name__)

NARRATIVE_GUIDE_KEY = "narrativeGuide"

GuideCallback = Callable[[NarrativeGuide], None]


@dataclass(frozen=True, slots=True)
class DecodedInstructions:
    """Outcome of one instruction stream.

    Attributes
    ----------
    text:
        The raw accumulated text, always forwarded downstream.
    data:
        The parsed JSON object, or ``None`` if nothing parseable was found.
    document:
        ``data`` validated as an :class:`InstructionDocument`, when it fits.
    narrative_guide:
        The last narrative guide surfaced, unless the object it came from
        closed as invalid JSON.
    error:
        Why ``data``/``document`` are missing, for logs and warnings.
    """

    text: str
    data: dict[str, Any] | None = None
    document: InstructionDocument | None = None
    narrative_guide: NarrativeGuide | None = None
    error: str | None = None

    @property
    def parsed(self) -> bool:
        return self.data is not None


def coerce_narrative_guide(value: Any) -> NarrativeGuide | None:
    """Validate a decoded JSON value as a :class:`NarrativeGuide`, or ``None``."""
    if not isinstance(value, dict):
        return None
    try:
        return NarrativeGuide.model_validate(value)
    except SchemaError:
        return None


def _parse_guide(raw: str) -> NarrativeGuide | None:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return coerce_narrative_guide(value)


class InstructionStreamDecoder:
    """Incrementally decode an instruction stream, surfacing the narrative guide early."""

    def __init__(
        self,
        on_narrative_guide: GuideCallback | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> None:
        self._on_narrative_guide = on_narrative_guide
        self._token = token
        self._scanner = JsonObjectScanner()
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._guide: NarrativeGuide | None = None
        self._data: dict[str, Any] | None = None
        self._aborted = False
        self._finished = False

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #
    @property
    def text(self) -> str:
        return self._scanner.text

    @property
    def narrative_guide(self) -> NarrativeGuide | None:
        return self._guide

    @property
    def aborted(self) -> bool:
        return self._aborted

    def _cancelled(self) -> bool:
        if self._token is not None and self._token.cancelled:
            self._aborted = True
        return self._aborted

    def abort(self) -> None:
        """Stop accumulating. Later chunks are dropped and :meth:`finish` raises."""
        self._aborted = True

    # ------------------------------------------------------------------ #
    # Decoding
    # ------------------------------------------------------------------ #
    def feed(self, chunk: str | bytes) -> NarrativeGuide | None:
        """Append one chunk; return the narrative guide if this chunk surfaced a new one."""
        if self._finished:
            raise RuntimeError("decoder already finished")
        if self._cancelled():
            return None

        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        completed = self._scanner.feed(text)
        return self._absorb(completed)

    def _absorb(self, completed: list[str]) -> NarrativeGuide | None:
        surfaced = self._surface_members(completed)

        # A finished span that is not JSON is dropped whole, along with any
        # guide taken from it; scanning resumes after its closing brace.
        while self._data is None and self._scanner.complete:
            span = self._scanner.object_text() or ""
            try:
                value = json.loads(span)
            except json.JSONDecodeError:
                value = None
            if isinstance(value, dict):
                self._data = value
                break
            if self._guide is not None:
                logger.info("Dropping narrative guide from a malformed instruction object")
                self._guide = None
                surfaced = None
            surfaced = self._surface_members(self._scanner.skip_object()) or surfaced

        return surfaced

    def _surface_members(self, completed: list[str]) -> NarrativeGuide | None:
        surfaced: NarrativeGuide | None = None
        for key in completed:
            if key != NARRATIVE_GUIDE_KEY:
                continue
            guide = _parse_guide(self._scanner.members[key])
            if guide is not None and self._publish(guide):
                surfaced = guide
        return surfaced

    def _publish(self, guide: NarrativeGuide) -> bool:
        if guide == self._guide or self._cancelled():
            return False
        self._guide = guide
        if self._on_narrative_guide is not None:
            self._on_narrative_guide(guide)
        return True

    def finish(self) -> DecodedInstructions:
        """Flush, make the final parse attempt and return the outcome.

        Raises
        ------
        GenerationCancelled
            If the decoder was aborted; no final parse happens then.
        """
        if self._cancelled():
            raise GenerationCancelled(
                (self._token.reason if self._token is not None else None) or "aborted"
            )
        if not self._finished:
            tail = self._utf8.decode(b"", final=True)
            if tail:
                self._absorb(self._scanner.feed(tail))
            self._finished = True

        text = self._scanner.text
        data = self._data
        error: str | None = None
        if data is None:
            result = extract_json_object(text)
            data = result.ok_or_none()
            if data is None:
                error = result.unwrap_err()
                logger.info("Instruction stream ended without valid JSON (%s)", error)

        document: InstructionDocument | None = None
        if data is not None:
            guide = coerce_narrative_guide(data.get(NARRATIVE_GUIDE_KEY))
            if guide is not None:
                self._publish(guide)
            try:
                document = InstructionDocument.model_validate(data)
            except SchemaError as exc:
                error = f"instructions do not match the expected shape ({exc.error_count()} issues)"
                logger.info("Instruction JSON parsed but failed validation: %s", error)

        return DecodedInstructions(
            text=text,
            data=data,
            document=document,
            narrative_guide=self._guide,
            error=error,
        )


def decode_stream(
    chunks: Iterable[str | bytes],
    *,
    token: CancellationToken | None = None,
    on_narrative_guide: GuideCallback | None = None,
    on_chunk: Callable[[str], None] | None = None,
) -> DecodedInstructions:
    """Drive an :class:`InstructionStreamDecoder` over ``chunks`` to the end.

    The token is checked around every chunk. On cancellation the source
    iterator is closed (which closes an HTTP stream), no final parse is made
    and :class:`GenerationCancelled` is raised.
    """
    decoder = InstructionStreamDecoder(on_narrative_guide, token=token)
    iterator = iter(chunks)
    try:
        for chunk in iterator:
            if token is not None and token.cancelled:
                break
            decoder.feed(chunk)
            if on_chunk is not None and not decoder.aborted:
                on_chunk(decoder.text)
        if token is not None and token.cancelled:
            decoder.abort()
            logger.info("Instruction stream aborted: %s", token.reason)
            raise GenerationCancelled(token.reason or "aborted")
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
    return decoder.finish()


__all__ = [
    "NARRATIVE_GUIDE_KEY",
    "DecodedInstructions",
    "InstructionStreamDecoder",
    "coerce_narrative_guide",
    "decode_stream",
]
