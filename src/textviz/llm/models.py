# -----------------------------------------------------------------------------
# This module defines a tiny, in-process model registry used by the LLM client.
# It supports Google Gemini and OpenAI-compatible providers while exposing a
# simple alias → config mapping.
#
# The registry gives us a single place to:
#   - declare the stage aliases ("instructions", "visualization")
#   - pin them to concrete provider model IDs
#   - keep default sampling parameters (temperature, max_tokens)
#   - attach provider-specific base URLs when needed
# -----------------------------------------------------------------------------
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(frozen=True, slots=True)
class ModelConfig:
    """Configuration for a single LLM model.

    Parameters
    ----------
    name:
        Provider-specific model identifier, e.g. ``"gemini-2.5-flash"``.
    provider:
        Logical provider name. ``"google"`` selects the Gemini protocol;
        anything else is treated as an OpenAI-compatible Chat Completions
        endpoint (``"openai"``, ``"deepseek"``, ``"xai"``, ...).
    base_url:
        Base URL for the API endpoint. Callers may override it per provider
        through environment variables.
    max_tokens:
        Default cap on generated tokens. ``None`` leaves it to the provider,
        which matters for the visualization stage: a full HTML page is long.
    temperature:
        Default sampling temperature.
    """

    name: str
    provider: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int | None = 4096
    temperature: float = 0.5


# --------------------------------------------------------------------------- #
# Registry
# --------------------------------------------------------------------------- #

MODEL_REGISTRY: dict[str, ModelConfig] = {
    # Stage 1: streamed, structured animation instructions (JSON).
    "instructions": ModelConfig(
        name="gemini-2.5-flash",
        provider="google",
        base_url=GEMINI_BASE_URL,
        max_tokens=None,
        temperature=0.7,
    ),
    # Stage 2: one-shot compilation of instructions into a complete HTML page.
    "visualization": ModelConfig(
        name="gemini-2.5-flash",
        provider="google",
        base_url=GEMINI_BASE_URL,
        max_tokens=None,
        temperature=0.5,
    ),
    # Generic OpenAI-compatible aliases, selectable through TEXTVIZ_*_MODEL.
    "fast": ModelConfig(
        name="gpt-4o-mini",
        provider="openai",
        max_tokens=16384,
        temperature=0.4,
    ),
    "balanced": ModelConfig(
        name="gpt-4o",
        provider="openai",
        max_tokens=16384,
        temperature=0.5,
    ),
}

DEFAULT_ALIAS: str = "visualization"


def get_model(alias_or_name: str) -> ModelConfig:
    """Return a :class:`ModelConfig` for the given alias or model name.

    Known aliases come from :data:`MODEL_REGISTRY`. Anything else is treated
    as a concrete model id: ``gemini-*`` names go to Google, the rest to an
    OpenAI-compatible endpoint with default parameters.
    """
    if alias_or_name in MODEL_REGISTRY:
        return MODEL_REGISTRY[alias_or_name]
    if alias_or_name.startswith("gemini-"):
        return ModelConfig(name=alias_or_name, provider="google", base_url=GEMINI_BASE_URL)
    return ModelConfig(name=alias_or_name)


def all_models() -> Mapping[str, ModelConfig]:
    """Return a shallow copy of the registry (safe to inspect in tests)."""
    return dict(MODEL_REGISTRY)


__all__ = [
    "ModelConfig",
    "MODEL_REGISTRY",
    "DEFAULT_ALIAS",
    "GEMINI_BASE_URL",
    "get_model",
    "all_models",
]
