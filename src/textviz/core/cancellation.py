"""Cancellation tokens and per-key request supersession.

A generation request runs through several suspension points (next stream
chunk, compiler response, sandbox load). Each of them receives the request's
:class:`CancellationToken` and checks it before touching shared state, so a
slow, superseded request can never overwrite a newer result.

:class:`Supersession` hands out tokens per key (normally a user id): starting
a new request for a key cancels whatever that key was doing before.
"""

from __future__ import annotations

import threading

from textviz.core.errors import GenerationCancelled


class CancellationToken:
    """Thread-safe, one-way cancellation flag with a reason."""

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the token. The first reason wins; later calls are no-ops."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`GenerationCancelled` if the token has been cancelled."""
        if self._event.is_set():
            raise GenerationCancelled(self._reason or "cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return early (``True``) on cancellation."""
        return self._event.wait(timeout)


class Supersession:
    """Track the live token per key; a new request for a key cancels the old one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: dict[str, CancellationToken] = {}

    def begin(self, key: str) -> CancellationToken:
        """Cancel the key's previous token (if any) and return a fresh one."""
        token = CancellationToken()
        with self._lock:
            previous = self._live.get(key)
            self._live[key] = token
        if previous is not None:
            previous.cancel("superseded")
        return token

    def finish(self, key: str, token: CancellationToken) -> None:
        """Forget ``token`` if it is still the live one for ``key``."""
        with self._lock:
            if self._live.get(key) is token:
                del self._live[key]

    def cancel(self, key: str, reason: str = "stopped") -> bool:
        """Cancel the key's live token. Return ``True`` if one was running."""
        with self._lock:
            token = self._live.pop(key, None)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def current(self, key: str) -> CancellationToken | None:
        with self._lock:
            return self._live.get(key)


__all__ = ["CancellationToken", "Supersession"]
