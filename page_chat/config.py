"""Configuration objects for the page chat service."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class BackendConfig:
    """Ollama connection details."""

    base_url: str = "http://localhost:11434"
    default_model: str = "llama3.2:latest"
    # Large local models can take minutes to answer.
    request_timeout: int = 600


@dataclass
class FetcherConfig:
    """HTTP settings used when pulling web pages into a session."""

    request_timeout: int = 30
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    max_bytes: int = 5 * 1024 * 1024


@dataclass
class ChatConfig:
    """Runtime controls for chat behaviour."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    default_question: str = "What is this page about?"
    context_template: str = (
        "You have been provided with the following web page content from {url}:\n\n"
        "Title: {title}\n\n"
        "Content: {content}\n\n"
        "Please answer questions based on this content."
    )
    stream_queue_size: int = 64
    cancel_poll_interval: float = 0.1
