"""Domain objects shared by the chat engine, backend client and API."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        """Return the matching role, ignoring case, or ``None`` when unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, object]:
        return {"role": self.role.value, "content": self.content, "timestamp": self.timestamp}


@dataclass
class ChatSession:
    """Server-side conversation state.

    ``messages`` is append-only: its order is both the conversation order and
    the order submitted to the backend.
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[ChatMessage] = field(default_factory=list)
    web_content_url: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def add_message(self, role: Role, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        self.updated_at = message.timestamp
        return message

    def snapshot(self) -> "ChatSession":
        """Return a copy whose message list is detached from this session."""
        return replace(self, messages=list(self.messages))

    def to_dict(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "messages": [message.to_dict() for message in self.messages],
            "web_content_url": self.web_content_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class MessageParseResult:
    cleaned_message: str
    extracted_urls: List[str] = field(default_factory=list)
    # True when nothing but URLs (and whitespace) was in the message.
    url_only: bool = False

    @property
    def has_urls(self) -> bool:
        return bool(self.extracted_urls)


@dataclass(frozen=True)
class WebPage:
    url: str
    title: str
    content: str
    fetched_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ModelInfo:
    name: str
    digest: str
    size: str
    modified: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "id": self.digest, "size": self.size, "modified": self.modified}


@dataclass(frozen=True)
class ChatReply:
    message: str
    session_id: str
    web_url: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class StreamCompleted:
    """Terminal event of a streamed turn, emitted after the last fragment."""

    session_id: str
    web_url: Optional[str] = None
    model: Optional[str] = None
