# tests/test_api_integration.py
"""
Integration Tests for the textviz HTTP API.

Focus
-----
These tests verify the HTTP contract (status codes, body shapes, check
order) and the job state machine. No network: every collaborator is swapped
through ``app.dependency_overrides``:

- the text-generation client → :class:`FakeLLMClient`;
- the session service → static tokens ``token-alice`` / ``token-bob``;
- the prompt log → an in-memory SQLite store.

Scenarios
---------
1. **Instructions stream**: 401 → 500 → 400 ordering, relay, upstream failure.
2. **Visualization**: ``{code, error?}`` for every outcome.
3. **History / conversation**: per-user, newest first, real totals.
4. **Jobs**: submit → 202 → poll → completed; supersession; stop; ownership.
"""

from __future__ import annotations

import json
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from textviz import __version__
from textviz.api.app import create_app
from textviz.api.auth import StaticTokenSessionService, get_session_service
from textviz.api.deps import (
    get_conversation_store,
    get_llm_client,
    get_optional_prompt_log,
    get_prompt_log,
    get_supersession,
)
from textviz.api.job_store import JobStore
from textviz.api.routers.generation import _relay
from textviz.compiler import COMPILE_FAILED_MESSAGE, EMPTY_RESPONSE_MESSAGE
from textviz.core.cancellation import Supersession
from textviz.core.contracts.prompt_log import PromptLogRecord, PromptStatus
from textviz.core.conversation import ConversationStore
from textviz.core.errors import ConfigurationError, StructuralWarning, UpstreamGenerationError
from textviz.storage.prompt_log import PromptLogStore

from tests.conftest import (
    BUBBLE_SORT_DOC,
    BUBBLE_SORT_PROMPT,
    COMPLETE_HTML,
    FakeLLMClient,
    chunked,
)

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}
MISSING_KEY = "Gemini API key is not configured. Set GOOGLE_GENERATIVE_AI_API_KEY."


class UnconfiguredClient(FakeLLMClient):
    def ensure_configured(self, model: str | None = None) -> None:
        raise ConfigurationError(MISSING_KEY)


class Harness:
    """Handles on the collaborators wired into one app instance."""

    def __init__(self, llm: FakeLLMClient) -> None:
        self.llm = llm
        self.prompt_log = PromptLogStore(":memory:")
        self.conversations = ConversationStore()
        self.supersession = Supersession()
        self.sessions = StaticTokenSessionService({"token-alice": "alice", "token-bob": "bob"})


@pytest.fixture  # type: ignore[misc]
def harness(bubble_sort_text: str) -> Generator[Harness, None, None]:
    h = Harness(FakeLLMClient(chunks=chunked(bubble_sort_text, 9)))
    yield h
    h.prompt_log.close()


@pytest.fixture  # type: ignore[misc]
def client(harness: Harness) -> Generator[TestClient, None, None]:
    """
    A clean API client per test.

    The JobStore is a process-wide singleton, so it is cleared explicitly;
    every other collaborator comes from ``harness``.
    """
    JobStore.get_instance().clear()

    app = create_app()
    app.dependency_overrides[get_llm_client] = lambda: harness.llm
    app.dependency_overrides[get_prompt_log] = lambda: harness.prompt_log
    app.dependency_overrides[get_optional_prompt_log] = lambda: harness.prompt_log
    app.dependency_overrides[get_conversation_store] = lambda: harness.conversations
    app.dependency_overrides[get_supersession] = lambda: harness.supersession
    app.dependency_overrides[get_session_service] = lambda: harness.sessions

    with TestClient(app) as c:
        yield c


def test_health_check(client: TestClient) -> None:
    """GET /health should return 200 OK and version info."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == __version__


# --------------------------------------------------------------------------- #
# POST /api/generate-instructions
# --------------------------------------------------------------------------- #


def test_instructions_require_a_session(client: TestClient, harness: Harness) -> None:
    harness.llm = UnconfiguredClient()

    response = client.post("/api/generate-instructions", json={"prompt": "x"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}

    response = client.post(
        "/api/generate-instructions", json={"prompt": "x"}, headers={"Authorization": "Bearer nope"}
    )
    assert response.status_code == 401


def test_instructions_check_configuration_before_body(
    client: TestClient, harness: Harness
) -> None:
    harness.llm = UnconfiguredClient()

    response = client.post("/api/generate-instructions", content="not json", headers=ALICE)

    assert response.status_code == 500
    assert response.json() == {"error": MISSING_KEY}
    assert harness.llm.stream_calls == []


@pytest.mark.parametrize(  # type: ignore[misc]
    ("kwargs", "message"),
    [
        (
            {"content": "prompt=bubble", "headers": {"Content-Type": "text/plain"}},
            "Invalid content type. Expected application/json.",
        ),
        ({"json": {}}, "Missing or empty 'prompt' in request body."),
        ({"json": {"prompt": "   "}}, "Missing or empty 'prompt' in request body."),
        ({"json": ["prompt"]}, "Request body must be a JSON object."),
    ],
)
def test_instructions_reject_bad_bodies(
    client: TestClient, harness: Harness, kwargs: dict[str, Any], message: str
) -> None:
    kwargs = dict(kwargs)
    headers = {**ALICE, **kwargs.pop("headers", {})}

    response = client.post("/api/generate-instructions", headers=headers, **kwargs)

    assert response.status_code == 400
    assert response.json() == {"error": message}
    assert harness.llm.stream_calls == []


def test_instructions_are_relayed_as_plain_text(
    client: TestClient, harness: Harness, bubble_sort_text: str
) -> None:
    response = client.post(
        "/api/generate-instructions", json={"prompt": BUBBLE_SORT_PROMPT}, headers=ALICE
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == bubble_sort_text
    assert json.loads(response.text) == BUBBLE_SORT_DOC
    assert BUBBLE_SORT_PROMPT in harness.llm.stream_calls[0]["messages"][-1]["content"]
    assert harness.llm.stream_closed is True
    assert harness.supersession.current("alice") is None


def test_instructions_upstream_failure_is_a_500(client: TestClient, harness: Harness) -> None:
    harness.llm = FakeLLMClient(
        chunks=["{"], stream_error=UpstreamGenerationError("HTTP 503"), fail_at=0
    )

    response = client.post("/api/generate-instructions", json={"prompt": "x"}, headers=ALICE)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate animation instructions."}
    assert harness.supersession.current("alice") is None


def test_new_instruction_request_supersedes_the_running_relay(
    client: TestClient, harness: Harness
) -> None:
    running = harness.supersession.begin("alice")

    response = client.post("/api/generate-instructions", json={"prompt": "x"}, headers=ALICE)

    assert response.status_code == 200
    assert running.cancelled and running.reason == "superseded"


def test_superseded_relay_stops_and_closes_its_source() -> None:
    supersession = Supersession()
    source = FakeLLMClient(chunks=["{", '"a"', ": 1", "}"])
    chunks = source.stream([])
    older = supersession.begin("alice")
    relay = _relay(next(chunks), chunks, older, lambda: supersession.finish("alice", older))

    assert next(relay) == "{"
    assert next(relay) == '"a"'

    newer = supersession.begin("alice")

    assert list(relay) == []
    assert source.stream_closed is True
    assert older.reason == "superseded"
    assert supersession.current("alice") is newer


# --------------------------------------------------------------------------- #
# POST /api/generate-visualization
# --------------------------------------------------------------------------- #


def test_visualization_without_session_is_not_persisted(
    client: TestClient, harness: Harness
) -> None:
    response = client.post("/api/generate-visualization", json={"prompt": "A sine wave"})

    assert response.status_code == 200
    assert response.json() == {"code": COMPLETE_HTML}
    assert harness.prompt_log.count("alice") == 0
    assert harness.conversations.get("alice") is None


def test_visualization_with_session_is_persisted(client: TestClient, harness: Harness) -> None:
    guide = BUBBLE_SORT_DOC["narrativeGuide"]
    body = {
        "prompt": BUBBLE_SORT_PROMPT,
        "instructions": json.dumps(BUBBLE_SORT_DOC),
        "narrativeGuide": guide,
    }

    response = client.post("/api/generate-visualization", json=body, headers=ALICE)

    assert response.status_code == 200
    assert response.json() == {"code": COMPLETE_HTML}
    content = harness.llm.generate_calls[0]["messages"][0]["content"]
    assert "NARRATIVE GUIDE FOR SUBTITLES" in content

    [record] = harness.prompt_log.list("alice")
    assert record.status is PromptStatus.VISUALIZATION_COMPLETE
    assert record.instructions == BUBBLE_SORT_DOC
    assert record.narrative_guide is not None
    assert [s["text"] for s in record.narrative_guide["steps"]] == [
        s["text"] for s in guide["steps"]
    ]

    conversation = harness.conversations.get("alice")
    assert conversation is not None
    assert conversation.title == BUBBLE_SORT_PROMPT
    assert conversation.entries()[0].html == COMPLETE_HTML


@pytest.mark.parametrize(  # type: ignore[misc]
    ("kwargs", "message"),
    [
        (
            {"content": "{}", "headers": {"Content-Type": "text/plain"}},
            "Invalid content type. Expected application/json.",
        ),
        ({"json": {}}, "Missing or empty 'instructions' or 'prompt' in request body."),
        (
            {"json": {"prompt": " ", "instructions": ""}},
            "Missing or empty 'instructions' or 'prompt' in request body.",
        ),
    ],
)
def test_visualization_rejects_bad_bodies(
    client: TestClient, harness: Harness, kwargs: dict[str, Any], message: str
) -> None:
    response = client.post("/api/generate-visualization", **kwargs)

    assert response.status_code == 400
    assert response.json() == {"code": "", "error": message}
    assert harness.llm.generate_calls == []


def test_visualization_missing_configuration(client: TestClient, harness: Harness) -> None:
    harness.llm = UnconfiguredClient()

    response = client.post("/api/generate-visualization", json={"prompt": "x"})

    assert response.status_code == 500
    assert response.json() == {"code": "", "error": MISSING_KEY}


def test_visualization_incomplete_document_carries_warning(
    client: TestClient, harness: Harness
) -> None:
    harness.llm = FakeLLMClient(html="```html\n<canvas id='animationCanvas'></canvas>\n```")

    response = client.post("/api/generate-visualization", json={"prompt": "x"})

    assert response.status_code == 200
    assert response.json() == {
        "code": "<canvas id='animationCanvas'></canvas>",
        "error": StructuralWarning.message,
    }


def test_visualization_empty_output_is_a_502(client: TestClient, harness: Harness) -> None:
    harness.llm = FakeLLMClient(html="  ")

    response = client.post("/api/generate-visualization", json={"prompt": "x"}, headers=ALICE)

    assert response.status_code == 502
    assert response.json() == {"code": "", "error": EMPTY_RESPONSE_MESSAGE}
    [record] = harness.prompt_log.list("alice")
    assert record.status is PromptStatus.FAILED
    conversation = harness.conversations.get("alice")
    assert conversation is not None and conversation.entries()[0].html is None


def test_visualization_upstream_failure(client: TestClient, harness: Harness) -> None:
    harness.llm = FakeLLMClient(generate_error=UpstreamGenerationError("HTTP 500: boom"))

    response = client.post("/api/generate-visualization", json={"instructions": "{}"})

    assert response.status_code == 500
    assert response.json() == {"code": "", "error": COMPILE_FAILED_MESSAGE}


# --------------------------------------------------------------------------- #
# History & conversation
# --------------------------------------------------------------------------- #


def test_prompt_history_is_per_user_and_paginated(client: TestClient, harness: Harness) -> None:
    for prompt in ("first", "second", "third"):
        harness.prompt_log.create(
            PromptLogRecord(
                user_id="alice", prompt=prompt, status=PromptStatus.VISUALIZATION_COMPLETE
            )
        )
    harness.prompt_log.create(
        PromptLogRecord(user_id="bob", prompt="bob's", status=PromptStatus.FAILED)
    )

    assert client.get("/api/prompt-history").status_code == 401

    response = client.get("/api/prompt-history", params={"limit": 2}, headers=ALICE)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert [log["prompt"] for log in data["logs"]] == ["third", "second"]
    assert data["logs"][0]["status"] == "VISUALIZATION_COMPLETE"

    page = client.get("/api/prompt-history", params={"offset": 2}, headers=ALICE).json()
    assert [log["prompt"] for log in page["logs"]] == ["first"]

    bad = client.get("/api/prompt-history", params={"limit": 0}, headers=ALICE)
    assert bad.status_code == 400
    assert "limit" in bad.json()["error"]


def test_conversation_starts_empty(client: TestClient) -> None:
    response = client.get("/api/conversation", headers=ALICE)

    assert response.status_code == 200
    assert response.json() == {"title": "", "created_at": None, "entries": []}


# --------------------------------------------------------------------------- #
# Jobs
# --------------------------------------------------------------------------- #


def test_submit_and_poll_flow(client: TestClient, harness: Harness) -> None:
    """
    Verify the full job lifecycle:
    POST /api/jobs -> 202 Accepted -> GET /api/jobs/{id} -> completed.

    TestClient runs background tasks before returning the POST response, so
    the first poll already sees the final state.
    """
    response = client.post("/api/jobs", json={"prompt": BUBBLE_SORT_PROMPT}, headers=ALICE)
    assert response.status_code == 202
    submitted = response.json()
    assert submitted["status"] == "pending"
    job_id = submitted["job_id"]

    job = client.get(f"/api/jobs/{job_id}", headers=ALICE).json()
    assert job["status"] == "completed"
    assert job["error"] is None
    assert job["result"]["code"] == COMPLETE_HTML
    assert job["result"]["warning"] is None
    assert json.loads(job["result"]["instructions"]) == BUBBLE_SORT_DOC
    guide = BUBBLE_SORT_DOC["narrativeGuide"]
    assert job["narrative_guide"]["introduction"] == guide["introduction"]
    assert [s["timeInSeconds"] for s in job["narrative_guide"]["steps"]] == [0.0, 3.0, 9.0]

    assert harness.prompt_log.count("alice") == 1
    conversation = harness.conversations.get("alice")
    assert conversation is not None and conversation.entries()[0].html == COMPLETE_HTML

    # Jobs are private to their owner.
    other = client.get(f"/api/jobs/{job_id}", headers=BOB)
    assert other.status_code == 404
    assert "not found" in other.json()["error"]


def test_job_failure_is_reported(
    client: TestClient, harness: Harness, bubble_sort_text: str
) -> None:
    harness.llm = FakeLLMClient(
        chunks=chunked(bubble_sort_text, 50),
        generate_error=UpstreamGenerationError("HTTP 500"),
    )

    job_id = client.post("/api/jobs", json={"prompt": "x"}, headers=ALICE).json()["job_id"]
    job = client.get(f"/api/jobs/{job_id}", headers=ALICE).json()

    assert job["status"] == "failed"
    assert job["error"] == COMPILE_FAILED_MESSAGE
    assert job["result"] is None
    assert job["narrative_guide"] is not None
    conversation = harness.conversations.get("alice")
    assert conversation is not None and conversation.entries()[0].html is None


def test_new_job_supersedes_unfinished_one(client: TestClient) -> None:
    store = JobStore.get_instance()
    stale_id = store.create_job("alice", "an older prompt")
    bobs_id = store.create_job("bob", "unrelated")

    client.post("/api/jobs", json={"prompt": BUBBLE_SORT_PROMPT}, headers=ALICE)

    stale = client.get(f"/api/jobs/{stale_id}", headers=ALICE).json()
    assert stale["status"] == "cancelled"
    assert stale["error"] == "superseded"
    assert client.get(f"/api/jobs/{bobs_id}", headers=BOB).json()["status"] == "pending"


def test_stop_job(client: TestClient) -> None:
    store = JobStore.get_instance()
    running_id = store.create_job("alice", "slow prompt")

    response = client.delete(f"/api/jobs/{running_id}", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["error"] == "stopped"
    # A cancelled job never changes state again.
    assert store.mark_stage(running_id, "compiling") is False
    assert client.get(f"/api/jobs/{running_id}", headers=ALICE).json()["status"] == "cancelled"


def test_stopping_a_finished_job_returns_it_unchanged(client: TestClient) -> None:
    job_id = client.post("/api/jobs", json={"prompt": "x"}, headers=ALICE).json()["job_id"]

    response = client.delete(f"/api/jobs/{job_id}", headers=ALICE)

    assert response.json()["status"] == "completed"


def test_finished_jobs_beyond_the_cap_are_pruned_oldest_first() -> None:
    store = JobStore(max_finished=2)
    finished = [store.create_job(user, "x") for user in ("alice", "bob", "carol")]
    for job_id in finished:
        store.cancel(job_id)

    newest = store.create_job("dave", "y")

    assert store.get_job(finished[0]) is None
    assert store.token_for(finished[0]) is None
    assert [store.get_job(j) is not None for j in finished[1:]] == [True, True]
    assert store.get_job(newest) is not None


def test_expired_finished_jobs_are_pruned_but_unfinished_ones_stay() -> None:
    store = JobStore(finished_ttl=timedelta(minutes=5))
    done = store.create_job("alice", "x")
    store.cancel(done)
    running = store.create_job("bob", "y")

    assert store.prune(now=datetime.now(UTC) + timedelta(minutes=1)) == 0
    assert store.prune(now=datetime.now(UTC) + timedelta(hours=2)) == 1
    assert store.get_job(done) is None
    running_job = store.get_job(running)
    assert running_job is not None and running_job.status == "pending"


def test_jobs_check_configuration(client: TestClient, harness: Harness) -> None:
    harness.llm = UnconfiguredClient()

    response = client.post("/api/jobs", json={"prompt": "x"}, headers=ALICE)

    assert response.status_code == 500
    assert response.json() == {"error": MISSING_KEY}
    assert client.get("/api/jobs/unknown", headers=ALICE).status_code == 404
