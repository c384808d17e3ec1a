# -----------------------------------------------------------------------------
# This module provides a small, synchronous LLM client abstraction that:
#   - reads provider API keys / base URLs from environment variables
#   - uses the model registry to resolve logical aliases → concrete model IDs
#   - exposes `generate()` (one completion) and `stream()` (text deltas)
#
# The implementation uses only the Python standard library (`urllib.request`).
# Unit tests are expected to *mock* the internal `_post()` / `_post_stream()`
# methods so that no real HTTP calls are made during CI.
#
# Provider support
# ----------------
# 1. Google Gemini (provider="google"):
#      POST /models/{model}:generateContent
#      POST /models/{model}:streamGenerateContent?alt=sse
#    Chat-style messages are mapped onto `systemInstruction` + `contents`.
#
# 2. OpenAI-compatible Chat Completions (every other provider):
#      POST /chat/completions            (stream=false / stream=true)
#
# Streaming responses are server-sent events: one `data: {...}` line per
# event, optionally terminated by `data: [DONE]`.
# -----------------------------------------------------------------------------
from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from collections.abc import Iterator, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from typing import Any

from textviz.core.errors import ConfigurationError, UpstreamGenerationError
from textviz.core.settings import get_logger

from .models import DEFAULT_ALIAS, GEMINI_BASE_URL, ModelConfig, get_model

logger = get_logger(__name__)

Request = tuple[str, dict[str, str], MutableMapping[str, Any]]

_GOOGLE_KEY_ENVS: tuple[str, ...] = ("GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY")

_API_KEY_ENV_MAP: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "moonshot": "MOONSHOT_API_KEY",
    "zhipu": "ZHIPU_API_KEY",
    "xai": "XAI_API_KEY",
}
_BASE_URL_ENV_MAP: dict[str, str] = {
    "openai": "OPENAI_BASE_URL",
    "deepseek": "DEEPSEEK_BASE_URL",
    "moonshot": "MOONSHOT_API_BASE_URL",
    "zhipu": "ZHIPU_BASE_URL",
    "xai": "XAI_BASE_URL",
}


@dataclass(slots=True)
class LLMClient:
    """Multi-provider LLM client with `generate()` and `stream()`.

    Parameters
    ----------
    api_key:
        Default key for OpenAI itself (``OPENAI_API_KEY``). Other
        OpenAI-compatible providers look up their own env var lazily.
    base_url:
        Default base URL for OpenAI-compatible endpoints.
    google_api_key:
        Key for Gemini. :meth:`from_env` reads
        ``GOOGLE_GENERATIVE_AI_API_KEY`` (falling back to ``GOOGLE_API_KEY``).
    default_model_alias:
        Registry alias used when a call does not name a model.
    timeout_seconds:
        Socket timeout for each HTTP request. For streams this bounds the
        wait between two chunks, not the whole response.
    """

    api_key: str
    base_url: str
    google_api_key: str = ""
    default_model_alias: str = DEFAULT_ALIAS
    timeout_seconds: float = 120.0

    # --------------------------------------------------------------------- #
    # Constructors
    # --------------------------------------------------------------------- #
    @classmethod
    def from_env(
        cls,
        default_model_alias: str = DEFAULT_ALIAS,
        *,
        timeout_seconds: float = 120.0,
    ) -> LLMClient:
        """Construct a client from environment variables.

        Only the variables for the providers you actually use need to be set:
        ``GOOGLE_GENERATIVE_AI_API_KEY`` / ``GOOGLE_API_BASE_URL`` for Gemini,
        ``OPENAI_API_KEY`` / ``OPENAI_BASE_URL`` and the provider-specific
        ``*_API_KEY`` / ``*_BASE_URL`` pairs for OpenAI-compatible endpoints.
        """
        google_api_key = next((v for env in _GOOGLE_KEY_ENVS if (v := os.getenv(env, ""))), "")
        return cls(
            api_key=os.getenv("OPENAI_API_KEY", ""),
            base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            google_api_key=google_api_key,
            default_model_alias=default_model_alias,
            timeout_seconds=timeout_seconds,
        )

    # --------------------------------------------------------------------- #
    # Public API
    # --------------------------------------------------------------------- #
    def ensure_configured(self, model: str | None = None) -> ModelConfig:
        """Resolve ``model`` and check its credential without any network I/O.

        Raises
        ------
        ConfigurationError
            If the provider's API key is absent.
        """
        config = get_model(model or self.default_model_alias)
        self._api_key_for(config)
        return config

    def generate(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a single text completion from the given chat messages.

        Parameters
        ----------
        messages:
            Chat-style messages, each ``{"role": ..., "content": ...}``.
            ``"system"`` messages become Gemini's ``systemInstruction``.
        model:
            Logical alias or concrete model id; defaults to
            :attr:`default_model_alias`.
        temperature / max_tokens:
            Optional overrides of the registry defaults.

        Raises
        ------
        ConfigurationError
            If the provider's API key is missing (raised before any request).
        UpstreamGenerationError
            If the request fails or the payload has no usable text.
        """
        config = get_model(model or self.default_model_alias)
        url, headers, payload = self._build_request(
            config, messages, temperature=temperature, max_tokens=max_tokens, stream=False
        )
        response = self._post(url=url, headers=headers, payload=payload)
        if self._is_google(config):
            return self._extract_content_gemini(response)
        return self._extract_content_openai(response)

    def stream(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Iterator[str]:
        """Stream a completion as a sequence of text deltas.

        Model resolution and the credential check happen eagerly, so a
        :class:`ConfigurationError` is raised by this call itself; HTTP work
        starts on the first ``next()`` of the returned iterator. Closing the
        iterator closes the underlying connection.
        """
        config = get_model(model or self.default_model_alias)
        url, headers, payload = self._build_request(
            config, messages, temperature=temperature, max_tokens=max_tokens, stream=True
        )
        return self._iter_deltas(config, url, headers, payload)

    # --------------------------------------------------------------------- #
    # Request construction
    # --------------------------------------------------------------------- #
    @staticmethod
    def _is_google(config: ModelConfig) -> bool:
        return config.provider.lower().strip() == "google"

    def _api_key_for(self, config: ModelConfig) -> str:
        provider = config.provider.lower().strip()
        if provider == "google":
            api_key = self.google_api_key or next(
                (v for env in _GOOGLE_KEY_ENVS if (v := os.getenv(env, ""))), ""
            )
            if not api_key:
                raise ConfigurationError(
                    "Gemini API key is not configured. "
                    "Set GOOGLE_GENERATIVE_AI_API_KEY in your environment."
                )
            return api_key

        api_key_env = _API_KEY_ENV_MAP.get(provider, "OPENAI_API_KEY")
        api_key = os.getenv(api_key_env, "")
        if not api_key and provider == "openai":
            api_key = self.api_key
        if not api_key:
            raise ConfigurationError(
                f"API key for provider '{provider}' is not configured. "
                f"Set {api_key_env} in your environment."
            )
        return api_key

    def _build_request(
        self,
        config: ModelConfig,
        messages: Sequence[Mapping[str, str]],
        *,
        temperature: float | None,
        max_tokens: int | None,
        stream: bool,
    ) -> Request:
        effective_temperature = float(
            temperature if temperature is not None else config.temperature
        )
        effective_max_tokens = max_tokens if max_tokens is not None else config.max_tokens
        api_key = self._api_key_for(config)

        if self._is_google(config):
            return self._gemini_request(
                config, messages, api_key, effective_temperature, effective_max_tokens, stream
            )
        return self._openai_request(
            config, messages, api_key, effective_temperature, effective_max_tokens, stream
        )

    def _openai_request(
        self,
        config: ModelConfig,
        messages: Sequence[Mapping[str, str]],
        api_key: str,
        temperature: float,
        max_tokens: int | None,
        stream: bool,
    ) -> Request:
        """Build a ``/chat/completions`` request.

        Base URL precedence: provider env override → registry default →
        client default.
        """
        provider = config.provider.lower().strip()
        base_url_env = _BASE_URL_ENV_MAP.get(provider, "OPENAI_BASE_URL")
        base_url = (os.getenv(base_url_env) or config.base_url or self.base_url).rstrip("/")

        payload: MutableMapping[str, Any] = {
            "model": config.name,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if stream:
            payload["stream"] = True

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        return base_url + "/chat/completions", headers, payload

    def _gemini_request(
        self,
        config: ModelConfig,
        messages: Sequence[Mapping[str, str]],
        api_key: str,
        temperature: float,
        max_tokens: int | None,
        stream: bool,
    ) -> Request:
        """Build a Gemini ``generateContent`` / ``streamGenerateContent`` request.

        System messages are joined into ``systemInstruction``; ``assistant``
        turns are sent with Gemini's ``"model"`` role.
        """
        base_url = (
            os.getenv("GOOGLE_API_BASE_URL") or config.base_url or GEMINI_BASE_URL
        ).rstrip("/")
        method = "streamGenerateContent?alt=sse" if stream else "generateContent"
        url = f"{base_url}/models/{config.name}:{method}"

        system_texts = [m["content"] for m in messages if m["role"] == "system"]
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
            if m["role"] != "system"
        ]

        generation_config: dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens

        payload: MutableMapping[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_texts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_texts)}]}

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        }
        return url, headers, payload

    # --------------------------------------------------------------------- #
    # Streaming
    # --------------------------------------------------------------------- #
    def _iter_deltas(
        self,
        config: ModelConfig,
        url: str,
        headers: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> Iterator[str]:
        extract = (
            self._extract_delta_gemini if self._is_google(config) else self._extract_delta_openai
        )
        events = self._post_stream(url=url, headers=headers, payload=payload)
        try:
            for data in events:
                try:
                    event = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise UpstreamGenerationError(
                        f"Malformed stream event from {config.name}: {data[:200]!r}"
                    ) from exc
                if isinstance(event, Mapping) and "error" in event:
                    raise UpstreamGenerationError(f"Stream error from {config.name}: {event!r}")
                text = extract(event)
                if text:
                    yield text
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    # --------------------------------------------------------------------- #
    # Internal helpers (test seams)
    # --------------------------------------------------------------------- #
    def _open(
        self,
        *,
        url: str,
        headers: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> Any:
        body = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            url=url,
            data=body,
            headers=dict(headers),
            method="POST",
        )
        try:
            return urllib.request.urlopen(request, timeout=self.timeout_seconds)
        except urllib.error.HTTPError as exc:
            # Best-effort extraction of provider error message for operators.
            detail = exc.read().decode("utf-8", errors="ignore")
            logger.error("LLM HTTP error %s %s: %s", exc.code, exc.reason, detail[:500])
            raise UpstreamGenerationError(
                f"LLM HTTP error {exc.code}: {exc.reason}; body={detail!r}"
            ) from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            logger.error("LLM network error: %s", exc)
            raise UpstreamGenerationError(f"LLM network error: {exc}") from exc

    def _post(
        self,
        *,
        url: str,
        headers: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Perform an HTTP POST request and decode the JSON response.

        This is the main seam for unit tests of :meth:`generate`: patch it on
        the class to return a stubbed response without network I/O.

        Raises
        ------
        UpstreamGenerationError
            If the HTTP request fails for any reason, or if the response body
            cannot be decoded as JSON.
        """
        with self._open(url=url, headers=headers, payload=payload) as resp:
            try:
                raw = resp.read()
            except OSError as exc:
                raise UpstreamGenerationError(f"LLM network error: {exc}") from exc

        try:
            decoded: dict[str, Any] = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise UpstreamGenerationError("Failed to decode LLM response as JSON") from exc

        return decoded

    def _post_stream(
        self,
        *,
        url: str,
        headers: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> Iterator[str]:
        """POST and yield the ``data:`` payload of each server-sent event.

        The seam for unit tests of :meth:`stream`: patch it to return a list
        of JSON strings. ``[DONE]`` ends the stream; comments and blank lines
        are skipped.
        """
        with self._open(url=url, headers=headers, payload=payload) as resp:
            try:
                for raw_line in resp:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if data == "[DONE]":
                        return
                    if data:
                        yield data
            except OSError as exc:
                raise UpstreamGenerationError(f"LLM stream interrupted: {exc}") from exc

    # --------------------------------------------------------------------- #
    # Response extraction helpers
    # --------------------------------------------------------------------- #
    @staticmethod
    def _extract_content_openai(response: Mapping[str, Any]) -> str:
        """Extract ``choices[0].message.content`` from a Chat Completions payload."""
        choices = response.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UpstreamGenerationError("LLM response has no choices; cannot extract content.")

        message = choices[0].get("message")
        if not isinstance(message, Mapping):
            raise UpstreamGenerationError("LLM response choice[0].message is missing or invalid.")

        content = message.get("content")
        if not isinstance(content, str):
            raise UpstreamGenerationError("LLM response choice[0].message.content is missing.")
        return content

    @staticmethod
    def _gemini_text(response: Mapping[str, Any]) -> str | None:
        """Concatenate the text parts of the first candidate, or ``None``."""
        candidates = response.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return None
        content = candidates[0].get("content")
        if not isinstance(content, Mapping):
            return None
        parts = content.get("parts")
        if not isinstance(parts, list):
            return None
        texts = [
            part["text"]
            for part in parts
            if isinstance(part, Mapping) and isinstance(part.get("text"), str)
        ]
        return "".join(texts) if texts else None

    @classmethod
    def _extract_content_gemini(cls, response: Mapping[str, Any]) -> str:
        """Extract text from a Gemini ``generateContent`` response.

        Expected shape: ``{"candidates": [{"content": {"parts": [{"text": ...}]}}]}``.
        """
        text = cls._gemini_text(response)
        if text is None:
            raise UpstreamGenerationError(
                "Gemini response has no text parts; cannot extract content."
            )
        return text

    @classmethod
    def _extract_delta_gemini(cls, event: Mapping[str, Any]) -> str:
        return cls._gemini_text(event) or ""

    @staticmethod
    def _extract_delta_openai(event: Mapping[str, Any]) -> str:
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        delta = choices[0].get("delta")
        if not isinstance(delta, Mapping):
            return ""
        content = delta.get("content")
        return content if isinstance(content, str) else ""


__all__ = ["LLMClient"]
