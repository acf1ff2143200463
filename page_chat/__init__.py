"""Chat orchestration for conversations grounded in web pages.

This package wires an Ollama-served model (``/api/generate``) with an
in-memory session store and on-demand page injection: a URL mentioned in a
message, or passed explicitly, is fetched and added to the conversation as a
system turn before the model answers. The primary entry points are
``server.create_app`` for running the HTTP service and
``page_chat.service.ChatService`` for embedding the chat engine directly
into Python code.
"""

from .config import BackendConfig, ChatConfig, FetcherConfig
from .errors import BackendError, ChatCancelled, ChatError, FetchError
from .service import ChatService

__all__ = [
    "BackendConfig",
    "BackendError",
    "ChatCancelled",
    "ChatConfig",
    "ChatError",
    "ChatService",
    "FetchError",
    "FetcherConfig",
]
