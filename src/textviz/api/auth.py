"""
Session resolution for the HTTP API.

The session service is an external collaborator: given a request it returns
the caller's identity, or nothing. The default implementation maps static
bearer tokens to user ids (``TEXTVIZ_API_TOKENS="token=user,token2=user2"``).

Generation routes that persist data depend on :func:`require_session`
(401 without a session); routes where a session is merely useful depend on
:func:`optional_session`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from fastapi import Depends, Request

from textviz.core.errors import AuthenticationError
from textviz.core.settings import load_settings


@dataclass(frozen=True, slots=True)
class Session:
    user_id: str


class SessionService(Protocol):
    def get_session(self, request: Request) -> Session | None: ...


class StaticTokenSessionService:
    """Resolve ``Authorization: Bearer <token>`` against a fixed token table."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    @classmethod
    def from_settings(cls) -> StaticTokenSessionService:
        return cls(load_settings().token_map())

    def get_session(self, request: Request) -> Session | None:
        scheme, _, credential = request.headers.get("authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not credential.strip():
            return None
        user_id = self._tokens.get(credential.strip())
        return Session(user_id=user_id) if user_id else None


@lru_cache(maxsize=1)
def get_session_service() -> SessionService:
    return StaticTokenSessionService.from_settings()


def optional_session(
    request: Request,
    service: SessionService = Depends(get_session_service),
) -> Session | None:
    return service.get_session(request)


def require_session(session: Session | None = Depends(optional_session)) -> Session:
    if session is None:
        raise AuthenticationError()
    return session


__all__ = [
    "Session",
    "SessionService",
    "StaticTokenSessionService",
    "get_session_service",
    "optional_session",
    "require_session",
]
