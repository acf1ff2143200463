"""Exception types raised by the chat engine."""

from __future__ import annotations


class ChatError(RuntimeError):
    """Base class for failures that abort a chat turn."""


class FetchError(ChatError):
    """Raised when a web page cannot be downloaded or parsed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class BackendError(ChatError):
    """Raised when the generation backend fails or returns an unusable payload."""


class ChatCancelled(ChatError):
    """Raised when the caller withdrew interest before the turn finished."""
