"""Typed smoke tests for the settings loader.

These tests verify four guarantees:
1) Importing the module-level `settings` yields a `Settings` instance.
2) Environment variables override defaults after clearing the loader cache.
3) `get_logger()` respects the configured LOG_LEVEL when constructing loggers.
4) The static API token table parses leniently.
"""

from __future__ import annotations

import logging
from typing import Any

from textviz.core.settings import (
    Settings,
    get_logger,
    load_settings,
    settings,
)


def test_settings_instance_type() -> None:
    """`settings` should be an instance of the typed `Settings` model."""
    assert isinstance(settings, Settings)


def test_env_overrides_with_cache_clear(monkeypatch: Any) -> None:
    """Changing env vars should take effect after `load_settings.cache_clear()`."""
    monkeypatch.setenv("TEXTVIZ_ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("TEXTVIZ_RECORDING_MAX_SECONDS", "12.5")
    monkeypatch.setenv("TEXTVIZ_INSTRUCTIONS_MODEL", "fast")

    load_settings.cache_clear()
    s = load_settings()

    assert s.environment == "test"
    assert s.is_test and not s.is_dev
    assert s.log_level == "DEBUG"
    assert s.recording_max_seconds == 12.5
    assert s.instructions_model == "fast"


def test_defaults_cover_both_stages(monkeypatch: Any) -> None:
    """Both generation stages have a model alias and the recording ceiling is 22s."""
    monkeypatch.delenv("TEXTVIZ_INSTRUCTIONS_MODEL", raising=False)
    monkeypatch.delenv("TEXTVIZ_VISUALIZATION_MODEL", raising=False)
    monkeypatch.delenv("TEXTVIZ_RECORDING_MAX_SECONDS", raising=False)
    load_settings.cache_clear()
    s = load_settings()

    assert s.instructions_model == "instructions"
    assert s.visualization_model == "visualization"
    assert s.recording_max_seconds == 22.0


def test_token_map_skips_malformed_entries(monkeypatch: Any) -> None:
    """`token_map()` keeps `token=user` pairs and drops anything else."""
    monkeypatch.setenv("TEXTVIZ_API_TOKENS", " t1=alice , broken, =nobody, t2=bob,t3= ")
    load_settings.cache_clear()

    assert load_settings().token_map() == {"t1": "alice", "t2": "bob"}


def test_get_logger_respects_level(monkeypatch: Any) -> None:
    """`get_logger()` should apply the numeric level derived from `LOG_LEVEL`."""
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    load_settings.cache_clear()
    _ = load_settings()

    logger = get_logger("textviz.tests.settings")

    assert logger.level == logging.ERROR
    assert logger.handlers, "Expected at least one StreamHandler to be attached."
