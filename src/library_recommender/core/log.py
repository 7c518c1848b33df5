from __future__ import annotations

import logging
import time

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _utc_formatter(fmt: str | None = None) -> logging.Formatter:
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)
    formatter.converter = time.gmtime
    return formatter


def setup_logging(level: int = logging.INFO) -> None:
    """Console logging for the scripts; library modules only create loggers."""
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_library_recommender", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(_utc_formatter())
    handler._library_recommender = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    # qdrant/openai/httpx are chatty at INFO
    for name in ("httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)
