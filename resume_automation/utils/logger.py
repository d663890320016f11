"""Centralized logging configuration.
Call setup_logging() once at application startup.
"""

from __future__ import annotations

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline and quiet noisy libraries."""
    root = logging.getLogger()
    # Avoid duplicate handlers on repeated calls
    if root.handlers:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(funcName)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)

    for noisy in ("httpx", "httpcore", "urllib3", "groq", "pymongo"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    for chatty in ("langchain", "langchain_core", "langchain_groq", "langgraph", "uvicorn", "fastapi"):
        logging.getLogger(chatty).setLevel(logging.INFO)
