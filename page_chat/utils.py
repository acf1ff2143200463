"""Logging setup and shared HTTP helpers."""

from __future__ import annotations

import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Optional

import requests

from .errors import ChatCancelled

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
_LOG_CONFIGURED = False


def setup_logging(log_dir: str, level: int = logging.INFO) -> None:
    """Send logs to the console and to a daily rotating file in ``log_dir``."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(level)

    file_handler = logging.handlers.TimedRotatingFileHandler(
        filename=path / "page_chat.log",
        when="midnight",
        interval=1,
        backupCount=14,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [console, file_handler]
    logging.captureWarnings(True)

    _LOG_CONFIGURED = True
    logging.getLogger(__name__).info("Logging initialised in %s", path)


def read_body(
    response: requests.Response,
    *,
    cancel_event: Optional[threading.Event] = None,
    max_bytes: Optional[int] = None,
    chunk_size: int = 8192,
) -> bytes:
    """Read a streamed response body, aborting when ``cancel_event`` is set.

    The response is closed on cancellation so the underlying connection is
    released. Raises ``ValueError`` when the body grows past ``max_bytes``.
    """
    chunks = []
    total = 0
    try:
        for chunk in response.iter_content(chunk_size=chunk_size):
            if cancel_event is not None and cancel_event.is_set():
                raise ChatCancelled("Request cancelled while reading response body")
            if not chunk:
                continue
            total += len(chunk)
            if max_bytes is not None and total > max_bytes:
                raise ValueError(f"response body exceeds {max_bytes} bytes")
            chunks.append(chunk)
    finally:
        response.close()
    return b"".join(chunks)
