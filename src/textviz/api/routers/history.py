"""
API Route for the prompt history.

``GET /api/prompt-history?limit=50&offset=0`` lists the session user's
prompt log, most recent first. ``total`` counts all of the user's records,
not just the returned page.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from textviz.api.auth import Session, require_session
from textviz.api.deps import get_prompt_log
from textviz.api.schemas import PromptHistoryPage
from textviz.storage.prompt_log import PromptLogStore

router = APIRouter(prefix="/api", tags=["History"])


@router.get("/prompt-history", response_model=PromptHistoryPage, summary="List prompt history")
def prompt_history(
    session: Session = Depends(require_session),
    store: PromptLogStore = Depends(get_prompt_log),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> PromptHistoryPage:
    logs = store.list(session.user_id, limit=limit, offset=offset)
    return PromptHistoryPage(logs=logs, total=store.count(session.user_id))


__all__ = ["router"]
