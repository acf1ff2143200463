"""Client wrapper for the Ollama generate and tags endpoints."""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime
from typing import Dict, Iterator, List, Mapping, Optional, Sequence

import requests

from .config import BackendConfig
from .errors import BackendError, ChatCancelled
from .models import ModelInfo, Role
from .utils import read_body

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    Role.SYSTEM: "System",
    Role.USER: "User",
    Role.ASSISTANT: "Assistant",
}
SIZE_SUFFIXES = ("B", "KB", "MB", "GB", "TB")
_FRACTION = re.compile(r"(?<=\d\d:\d\d:\d\d)\.(\d+)")


def build_prompt(messages: Sequence[Mapping[str, str]]) -> str:
    """Flatten chat messages into a single completion prompt.

    Each turn becomes ``"<Role>: <content>"`` followed by a blank line, and the
    prompt ends with an open ``"Assistant: "`` cue. Unknown roles are dropped.
    """
    parts: List[str] = []
    for message in messages:
        role = Role.parse(message.get("role"))
        if role is None:
            logger.debug("Dropping message with unsupported role %r", message.get("role"))
            continue
        parts.append(f"{ROLE_LABELS[role]}: {message.get('content', '')}\n\n")
    parts.append("Assistant: ")
    return "".join(parts)


def format_bytes(num_bytes: int) -> str:
    """Render a byte count as e.g. ``"4.7 GB"`` (binary units, up to TB)."""
    size = float(max(num_bytes, 0))
    index = 0
    while size >= 1024 and index < len(SIZE_SUFFIXES) - 1:
        size /= 1024
        index += 1
    text = f"{size:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"{text} {SIZE_SUFFIXES[index]}"


def _format_modified(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        return "unknown"
    # Go timestamps carry 1-9 fraction digits; fromisoformat wants exactly 6.
    text = _FRACTION.sub(lambda match: "." + (match.group(1) + "000000")[:6], value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparsable modified_at value: %s", value)
        return "unknown"
    return parsed.strftime("%Y-%m-%d %H:%M")


def _to_model_info(item: Mapping[str, object]) -> ModelInfo:
    name = item.get("name")
    digest = item.get("digest")
    size = item.get("size")
    return ModelInfo(
        name=name if isinstance(name, str) and name else "unknown",
        digest=digest if isinstance(digest, str) else "",
        size=format_bytes(size if isinstance(size, int) and not isinstance(size, bool) else 0),
        modified=_format_modified(item.get("modified_at")),
    )


class OllamaClient:
    """Thin wrapper around Ollama's ``/api/generate`` with streaming support."""

    def __init__(self, config: Optional[BackendConfig] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or BackendConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._session = session or requests.Session()

    def generate(
        self,
        messages: Sequence[Mapping[str, str]],
        model: Optional[str] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Return the full completion for ``messages`` (no streaming)."""
        selected_model = model or self.config.default_model
        payload: Dict[str, object] = {
            "model": selected_model,
            "prompt": build_prompt(messages),
            "stream": False,
        }

        logger.info("Generating response using model %s (%d message(s))", selected_model, len(messages))
        response = self._open(payload, cancel_event=cancel_event)
        try:
            body = read_body(response, cancel_event=cancel_event)
        except requests.RequestException as exc:
            raise BackendError(f"Failed reading Ollama response: {exc}") from exc

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BackendError("Invalid JSON response from Ollama") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise BackendError("Ollama response payload has no 'response' field")

        logger.info("Response generated with model %s (%d chars)", selected_model, len(text))
        return text

    def stream_generate(
        self,
        messages: Sequence[Mapping[str, str]],
        model: Optional[str] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[str]:
        """Yield text fragments from Ollama as they arrive.

        Stops at the first line flagged ``done``, at the end of the body, or
        when ``cancel_event`` is set (raising :class:`ChatCancelled`).
        """
        selected_model = model or self.config.default_model
        payload: Dict[str, object] = {
            "model": selected_model,
            "prompt": build_prompt(messages),
            "stream": True,
        }

        logger.info("Streaming response from %s using model %s", self.base_url, selected_model)
        response = self._open(payload, cancel_event=cancel_event)
        fragments = 0
        try:
            for raw_line in response.iter_lines():
                if cancel_event is not None and cancel_event.is_set():
                    raise ChatCancelled("Streaming generation cancelled")
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue

                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON stream line: %s", line)
                    continue
                if not isinstance(chunk, dict):
                    continue

                token = chunk.get("response")
                if isinstance(token, str):
                    fragments += 1
                    yield token
                if chunk.get("done") is True:
                    break
        except requests.RequestException as exc:
            raise BackendError(f"Ollama stream interrupted: {exc}") from exc
        finally:
            response.close()

        logger.info("Streaming response completed (%d fragment(s))", fragments)

    def list_models(self) -> List[ModelInfo]:
        """Return the models installed on the Ollama instance."""
        logger.info("Fetching available models from %s", self.base_url)
        try:
            response = self._session.get(f"{self.base_url}/api/tags", timeout=self.config.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise BackendError(f"Failed to list Ollama models: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendError("Invalid JSON response from Ollama") from exc

        items = payload.get("models") if isinstance(payload, dict) else None
        if items is not None and not isinstance(items, list):
            raise BackendError("Invalid 'models' field in Ollama response")
        models = [_to_model_info(item) for item in items or [] if isinstance(item, dict)]
        logger.info("Found %d available model(s)", len(models))
        return models

    def _open(self, payload: Dict[str, object], *, cancel_event: Optional[threading.Event]) -> requests.Response:
        if cancel_event is not None and cancel_event.is_set():
            raise ChatCancelled("Generation cancelled before the request was sent")
        try:
            response = self._session.post(
                f"{self.base_url}/api/generate",
                json=payload,
                stream=True,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise BackendError(f"Ollama request failed: {exc}") from exc
        try:
            response.raise_for_status()
        except requests.RequestException as exc:
            response.close()
            raise BackendError(f"Ollama returned an error status: {exc}") from exc
        return response
