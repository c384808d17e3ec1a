"""
Process-local conversation history.

A :class:`Conversation` is the ordered list of prompts a user sent during the
life of the process, each with the document it produced (or ``None`` when the
attempt failed). Entries are append-only; the title is derived from the first
prompt.

Note on Persistence
-------------------
Nothing here survives a restart. Durable history lives in the prompt log
(:mod:`textviz.storage.prompt_log`); this store only provides session
continuity for the API's ``/api/conversation`` view.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

_TITLE_LIMIT = 60


def _title_from_prompt(prompt: str) -> str:
    text = " ".join(prompt.split())
    if len(text) <= _TITLE_LIMIT:
        return text
    return text[: _TITLE_LIMIT - 3].rstrip() + "..."


@dataclass(frozen=True, slots=True)
class ConversationEntry:
    prompt: str
    html: str | None
    created_at: datetime


@dataclass(slots=True)
class Conversation:
    """Ordered, append-only generation history with a derived title."""

    title: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    _entries: list[ConversationEntry] = field(default_factory=list)

    def append(self, prompt: str, html: str | None) -> ConversationEntry:
        entry = ConversationEntry(prompt=prompt, html=html, created_at=datetime.now(UTC))
        if not self._entries:
            self.title = _title_from_prompt(prompt)
        self._entries.append(entry)
        return entry

    def entries(self) -> tuple[ConversationEntry, ...]:
        return tuple(self._entries)

    def latest(self) -> ConversationEntry | None:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)


class ConversationStore:
    """One conversation per user, guarded by a lock (background tasks append)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conversations: dict[str, Conversation] = {}

    def get(self, user_id: str) -> Conversation | None:
        with self._lock:
            return self._conversations.get(user_id)

    def append(self, user_id: str, prompt: str, html: str | None) -> ConversationEntry:
        with self._lock:
            conversation = self._conversations.setdefault(user_id, Conversation())
            return conversation.append(prompt, html)

    def clear(self) -> None:
        with self._lock:
            self._conversations.clear()


__all__ = ["Conversation", "ConversationEntry", "ConversationStore"]
