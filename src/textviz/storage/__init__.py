from __future__ import annotations

from .prompt_log import PromptLogStore, record_prompt

__all__ = ["PromptLogStore", "record_prompt"]
