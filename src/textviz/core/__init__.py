"""Core package initializer for textviz.

Settings, errors, cancellation and the shared data contracts live here:
    from textviz.core.settings import settings, load_settings, Settings, get_logger
"""

from __future__ import annotations

__all__ = ["__doc__"]
