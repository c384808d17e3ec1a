"""API Route for the process-local conversation of the session user."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from textviz.api.auth import Session, require_session
from textviz.api.deps import get_conversation_store
from textviz.api.schemas import ConversationEntryPayload, ConversationPayload
from textviz.core.conversation import ConversationStore

router = APIRouter(prefix="/api", tags=["Conversation"])


@router.get("/conversation", response_model=ConversationPayload, summary="Current conversation")
def get_conversation(
    session: Session = Depends(require_session),
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationPayload:
    conversation = store.get(session.user_id)
    if conversation is None:
        return ConversationPayload(title="", created_at=None, entries=[])
    return ConversationPayload(
        title=conversation.title,
        created_at=conversation.created_at,
        entries=[
            ConversationEntryPayload(prompt=e.prompt, html=e.html, created_at=e.created_at)
            for e in conversation.entries()
        ],
    )


__all__ = ["router"]
