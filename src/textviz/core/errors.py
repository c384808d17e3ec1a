"""Error taxonomy shared by the API, the CLI and the generation pipeline.

Every user-facing failure is one of the classes below. Each carries an HTTP
``status_code`` and a ``public_message`` that is safe to show to end users;
the exception's own ``str()`` may hold operator detail (upstream bodies,
SQL errors) and is only ever logged.

Propagation
-----------
- ``ConfigurationError`` / ``ValidationError`` / ``AuthenticationError`` are
  raised before any external call is made.
- ``UpstreamGenerationError`` and ``RecordingError`` are raised at the boundary
  nearest their origin (LLM client, recorder).
- ``PersistenceError`` never leaves the storage helpers that swallow it.
- ``GenerationCancelled`` is control flow, not an error: a superseded or
  user-stopped request ends quietly.
"""

from __future__ import annotations


class TextVizError(Exception):
    """Base class for textviz failures that can be shown to a caller."""

    status_code: int = 500
    default_message: str = "Internal error."

    def __init__(
        self,
        detail: str | None = None,
        *,
        public_message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.public_message = public_message or detail or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(detail or self.public_message)


class ConfigurationError(TextVizError):
    """A required external credential or setting is absent. Not retried."""

    status_code = 500
    default_message = "Server is not configured for generation."


class ValidationError(TextVizError):
    """The request body is missing or malformed."""

    status_code = 400
    default_message = "Invalid request."


class AuthenticationError(TextVizError):
    """No session could be resolved for the caller."""

    status_code = 401
    default_message = "Unauthorized"


class UpstreamGenerationError(TextVizError):
    """The text-generation service failed or returned unusable output.

    ``public_message`` stays generic; raw upstream text goes into ``detail``.
    """

    status_code = 500
    default_message = "Failed to generate visualization."

    def __init__(
        self,
        detail: str | None = None,
        *,
        public_message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            detail,
            public_message=public_message or self.default_message,
            status_code=status_code,
        )


class RecordingError(TextVizError):
    """Canvas capture or encoding failed. Media resources are released first."""

    status_code = 500
    default_message = "Recording failed. Please try again."


class PersistenceError(TextVizError):
    """The prompt log could not be written or read."""

    status_code = 500
    default_message = "Prompt history is unavailable."


class SandboxError(TextVizError):
    """The sandboxed playback context failed to load or answer."""

    status_code = 500
    default_message = "The visualization preview failed."


class SandboxAccessError(SandboxError):
    """Access across the sandbox boundary was refused."""


class StructuralWarning(UserWarning):
    """A generated document is plausible but misses an expected structural tag."""

    message = "Generated output may not be a complete HTML document. Please validate before use."


class GenerationCancelled(Exception):
    """Raised inside a superseded or stopped request to unwind it silently."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(reason)


__all__ = [
    "TextVizError",
    "ConfigurationError",
    "ValidationError",
    "AuthenticationError",
    "UpstreamGenerationError",
    "RecordingError",
    "PersistenceError",
    "SandboxError",
    "SandboxAccessError",
    "StructuralWarning",
    "GenerationCancelled",
]
