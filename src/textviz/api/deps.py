"""Shared FastAPI dependencies. Tests swap them through ``app.dependency_overrides``."""

from __future__ import annotations

from functools import lru_cache

from textviz.core.cancellation import Supersession
from textviz.core.conversation import ConversationStore
from textviz.core.errors import PersistenceError
from textviz.core.settings import get_logger, load_settings
from textviz.llm import LLMClient
from textviz.storage.prompt_log import PromptLogStore

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_llm_client() -> LLMClient:
    cfg = load_settings()
    return LLMClient.from_env(cfg.visualization_model, timeout_seconds=cfg.request_timeout_seconds)


@lru_cache(maxsize=1)
def get_prompt_log() -> PromptLogStore:
    """The shared prompt log. Raises :class:`PersistenceError` if it cannot be opened."""
    return PromptLogStore(load_settings().prompt_log_path)


def get_optional_prompt_log() -> PromptLogStore | None:
    """The prompt log for write-only callers, or ``None`` when it is unavailable."""
    try:
        return get_prompt_log()
    except PersistenceError as exc:
        logger.error("Prompt log unavailable, generation will not be recorded: %s", exc)
        return None


@lru_cache(maxsize=1)
def get_supersession() -> Supersession:
    return Supersession()


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    return ConversationStore()


__all__ = [
    "get_conversation_store",
    "get_llm_client",
    "get_optional_prompt_log",
    "get_prompt_log",
    "get_supersession",
]
