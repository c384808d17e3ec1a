"""
ASGI Entry Point for the textviz API.

Loads ``.env`` before the application factory runs so that settings and the
LLM client see the configured keys.

Usage
-----
Run via the console script:
    $ textviz-api

Or via uvicorn directly:
    $ uvicorn textviz.api.server:app --reload
"""

from __future__ import annotations

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(".env"))

from textviz.api.app import create_app  # noqa: E402
from textviz.core.settings import get_logger, load_settings  # noqa: E402

logger = get_logger(__name__)

app = create_app()


def main() -> None:
    """Run the API server locally."""
    cfg = load_settings()
    key = os.getenv("GOOGLE_GENERATIVE_AI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
    if key:
        logger.info("Gemini key loaded (%s...)", key[:6])
    else:
        logger.warning("GOOGLE_GENERATIVE_AI_API_KEY is missing; generation routes will return 500")
    if not cfg.token_map():
        logger.warning("TEXTVIZ_API_TOKENS is empty; every authenticated route will return 401")

    uvicorn.run(
        "textviz.api.server:app",
        host=os.getenv("TEXTVIZ_HOST", "0.0.0.0"),
        port=int(os.getenv("TEXTVIZ_PORT", "8000")),
        reload=cfg.is_dev,
        log_level=cfg.log_level.lower(),
    )


if __name__ == "__main__":
    main()
