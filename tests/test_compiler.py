"""
Tests for the visualization compiler.

The text-generation service is the in-memory :class:`FakeLLMClient`; the
prompt log is a real SQLite store in ``:memory:``.
"""

from __future__ import annotations

import json
from collections.abc import Generator

import pytest

from textviz.compiler import (
    COMPILE_FAILED_MESSAGE,
    EMPTY_RESPONSE_MESSAGE,
    VisualizationCompiler,
    is_likely_complete_html,
    strip_markdown_fences,
)
from textviz.core.cancellation import CancellationToken
from textviz.core.contracts.prompt_log import PromptStatus
from textviz.core.errors import GenerationCancelled, StructuralWarning, UpstreamGenerationError
from textviz.storage.prompt_log import PromptLogStore

from tests.conftest import BUBBLE_SORT_DOC, BUBBLE_SORT_PROMPT, COMPLETE_HTML, FakeLLMClient


@pytest.fixture  # type: ignore[misc]
def store() -> Generator[PromptLogStore, None, None]:
    s = PromptLogStore(":memory:")
    yield s
    s.close()


# --------------------------------------------------------------------------- #
# Cleanup helpers
# --------------------------------------------------------------------------- #


@pytest.mark.parametrize(  # type: ignore[misc]
    "raw",
    [
        COMPLETE_HTML,
        f"```html\n{COMPLETE_HTML}\n```",
        f"  ```\n{COMPLETE_HTML}\n```  ",
        f"```html\n```html\n{COMPLETE_HTML}\n```\n```",
    ],
)
def test_strip_markdown_fences_is_idempotent(raw: str) -> None:
    once = strip_markdown_fences(raw)

    assert once == COMPLETE_HTML
    assert strip_markdown_fences(once) == once


def test_is_likely_complete_html_requires_every_marker() -> None:
    assert is_likely_complete_html(COMPLETE_HTML)
    assert is_likely_complete_html(COMPLETE_HTML.replace("<!DOCTYPE html>", "<!doctype HTML>"))

    for marker in ("<!DOCTYPE html>", "<head>", "</head>", "<body>", "</body>", "</html>"):
        assert not is_likely_complete_html(COMPLETE_HTML.replace(marker, "")), marker


# --------------------------------------------------------------------------- #
# Compile outcomes
# --------------------------------------------------------------------------- #


def test_compile_from_instructions_persists_success(store: PromptLogStore) -> None:
    client = FakeLLMClient(html=f"```html\n{COMPLETE_HTML}\n```")
    compiler = VisualizationCompiler(client, store, model="visualization")
    guide = BUBBLE_SORT_DOC["narrativeGuide"]

    result = compiler.compile(
        instructions=json.dumps(BUBBLE_SORT_DOC),
        prompt=BUBBLE_SORT_PROMPT,
        narrative_guide=guide,
        user_id="alice",
    )

    assert result.code == COMPLETE_HTML
    assert result.warning is None and result.is_complete
    content = client.generate_calls[0]["messages"][0]["content"]
    assert "NARRATIVE GUIDE FOR SUBTITLES" in content
    assert client.generate_calls[0]["model"] == "visualization"

    [record] = store.list("alice")
    assert record.status is PromptStatus.VISUALIZATION_COMPLETE
    assert record.prompt == BUBBLE_SORT_PROMPT
    assert record.instructions == BUBBLE_SORT_DOC
    assert record.narrative_guide == guide
    assert record.visualization_html == COMPLETE_HTML
    assert record.error_message is None


def test_compile_from_prompt_only_ignores_guide(store: PromptLogStore) -> None:
    client = FakeLLMClient()
    compiler = VisualizationCompiler(client, store, model="visualization")

    compiler.compile(prompt="Show a sine wave", narrative_guide={"steps": []}, user_id="alice")

    content = client.generate_calls[0]["messages"][0]["content"]
    assert "visualizes: Show a sine wave" in content
    assert "NARRATIVE GUIDE" not in content
    assert store.list("alice")[0].instructions is None


def test_unparseable_instructions_are_recorded_as_null(store: PromptLogStore) -> None:
    compiler = VisualizationCompiler(FakeLLMClient(), store, model="visualization")

    compiler.compile(instructions="bars, then swaps", prompt="p", user_id="alice")

    assert store.list("alice")[0].instructions is None


def test_malformed_instruction_object_is_recorded_as_null(store: PromptLogStore) -> None:
    """A valid nested value inside a broken document is not stored as the instructions."""
    malformed = '{"scene": {"title": "Bubble sort"}, "objects": [], "animations": [oops]}'
    compiler = VisualizationCompiler(FakeLLMClient(), store, model="visualization")

    compiler.compile(instructions=malformed, prompt="p", user_id="alice")

    [record] = store.list("alice")
    assert record.instructions is None
    assert record.status is PromptStatus.VISUALIZATION_COMPLETE


def test_incomplete_document_is_returned_with_warning(store: PromptLogStore) -> None:
    html = "<canvas id='animationCanvas'></canvas><script>draw()</script>"
    compiler = VisualizationCompiler(FakeLLMClient(html=html), store, model="visualization")

    result = compiler.compile(prompt="p", user_id="alice")

    assert result.code == html
    assert result.warning == StructuralWarning.message
    assert store.list("alice")[0].status is PromptStatus.VISUALIZATION_COMPLETE


@pytest.mark.parametrize("html", ["", "   \n", "```html\n```"])  # type: ignore[misc]
def test_empty_output_is_a_502(store: PromptLogStore, html: str) -> None:
    compiler = VisualizationCompiler(FakeLLMClient(html=html), store, model="visualization")

    with pytest.raises(UpstreamGenerationError) as excinfo:
        compiler.compile(prompt="p", user_id="alice")

    assert excinfo.value.status_code == 502
    assert excinfo.value.public_message == EMPTY_RESPONSE_MESSAGE
    [record] = store.list("alice")
    assert record.status is PromptStatus.FAILED
    assert record.error_message == EMPTY_RESPONSE_MESSAGE
    assert record.visualization_html is None


def test_upstream_failure_is_wrapped_and_persisted(store: PromptLogStore) -> None:
    client = FakeLLMClient(generate_error=UpstreamGenerationError("HTTP 503: overloaded"))
    compiler = VisualizationCompiler(client, store, model="visualization")

    with pytest.raises(UpstreamGenerationError) as excinfo:
        compiler.compile(instructions="{}", prompt="p", user_id="alice")

    assert excinfo.value.public_message == COMPILE_FAILED_MESSAGE
    assert "overloaded" in str(excinfo.value)
    assert store.list("alice")[0].status is PromptStatus.FAILED


def test_nothing_is_persisted_without_a_user(store: PromptLogStore) -> None:
    compiler = VisualizationCompiler(FakeLLMClient(), store, model="visualization")

    compiler.compile(prompt="p")

    assert store.count("") == 0


def test_persistence_failure_never_affects_the_result() -> None:
    broken = PromptLogStore(":memory:")
    broken.close()
    compiler = VisualizationCompiler(FakeLLMClient(), broken, model="visualization")

    result = compiler.compile(prompt="p", user_id="alice")

    assert result.code == COMPLETE_HTML


def test_compile_requires_input() -> None:
    compiler = VisualizationCompiler(FakeLLMClient(), model="visualization")

    with pytest.raises(ValueError):
        compiler.compile(instructions="  ", prompt="")


def test_cancelled_token_prevents_the_request(store: PromptLogStore) -> None:
    client = FakeLLMClient()
    token = CancellationToken()
    token.cancel("stopped")
    compiler = VisualizationCompiler(client, store, model="visualization")

    with pytest.raises(GenerationCancelled):
        compiler.compile(prompt="p", user_id="alice", token=token)

    assert client.generate_calls == []
    assert store.count("alice") == 0
