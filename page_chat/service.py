"""High level orchestration for page-grounded chat, blocking or streamed."""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Union

from .config import ChatConfig
from .errors import ChatCancelled
from .llm_client import OllamaClient
from .models import ChatReply, ChatSession, MessageParseResult, ModelInfo, Role, StreamCompleted
from .parser import parse_message
from .sessions import SessionStore
from .streaming import FragmentRelay

if TYPE_CHECKING:  # web_content imports this package
    from web_content.fetcher import WebContentFetcher

logger = logging.getLogger(__name__)

StreamItem = Union[str, StreamCompleted]


class ChatService:
    """Core chat engine used by both the API and direct Python consumers.

    A turn runs under the session's lock: parse the message, resolve the
    session, inject the referenced page when it changed, record the user turn,
    call the backend and finally record the assistant turn. Fetch and backend
    failures propagate to the caller; the user turn stays recorded but no
    assistant turn is added.
    """

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        *,
        llm_client: Optional[OllamaClient] = None,
        content_fetcher: Optional["WebContentFetcher"] = None,
        session_store: Optional[SessionStore] = None,
    ) -> None:
        self.config = config or ChatConfig()
        self.client = llm_client or OllamaClient(self.config.backend)
        if content_fetcher is None:
            from web_content.fetcher import WebContentFetcher

            content_fetcher = WebContentFetcher(self.config.fetcher)
        self.fetcher = content_fetcher
        self.sessions = session_store or SessionStore(poll_interval=self.config.cancel_poll_interval)

    def chat(
        self,
        message: Optional[str],
        *,
        web_url: Optional[str] = None,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ChatReply:
        """Run one blocking turn and return the assistant reply."""
        parsed = self._parse(message)
        session = self.sessions.get_or_create(session_id)
        with self.sessions.locked(session.session_id, cancel_event):
            url = self._prepare_turn(session, message, parsed, web_url, cancel_event)
            reply = self.client.generate(self._backend_messages(session), model, cancel_event=cancel_event)
            self._raise_if_cancelled(cancel_event)
            session.add_message(Role.ASSISTANT, reply)
            self.sessions.upsert(session)

        logger.info("Chat request processed for session %s", session.session_id)
        return ChatReply(
            message=reply,
            session_id=session.session_id,
            web_url=url,
            model=self._model_name(model),
        )

    def stream_chat(
        self,
        message: Optional[str],
        *,
        web_url: Optional[str] = None,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[StreamItem]:
        """Stream the assistant reply, then a single :class:`StreamCompleted`.

        The session lock is held while fragments are relayed, so callers
        should either exhaust the iterator or set ``cancel_event``.
        """
        parsed = self._parse(message)

        def generator() -> Iterator[StreamItem]:
            session = self.sessions.get_or_create(session_id)
            with self.sessions.locked(session.session_id, cancel_event):
                url = self._prepare_turn(session, message, parsed, web_url, cancel_event)
                prompt_messages = self._backend_messages(session)
                relay = FragmentRelay(
                    lambda stop: self.client.stream_generate(prompt_messages, model, cancel_event=stop),
                    cancel_event=cancel_event,
                    max_queue_size=self.config.stream_queue_size,
                    poll_interval=self.config.cancel_poll_interval,
                )

                parts: List[str] = []
                with closing(iter(relay)) as fragments:
                    for fragment in fragments:
                        parts.append(fragment)
                        yield fragment

                self._raise_if_cancelled(cancel_event)
                session.add_message(Role.ASSISTANT, "".join(parts))
                self.sessions.upsert(session)

            logger.info("Streaming chat request processed for session %s", session.session_id)
            yield StreamCompleted(session_id=session.session_id, web_url=url, model=self._model_name(model))

        return generator()

    def get_session(self, session_id: Optional[str]) -> Optional[ChatSession]:
        """Return a snapshot of the session, or ``None`` when it does not exist."""
        session = self.sessions.get(session_id)
        return session.snapshot() if session is not None else None

    def list_sessions(self) -> List[Dict[str, object]]:
        """Return lightweight session metadata for UI selection."""
        payload = []
        for session in self.sessions.list():
            messages = list(session.messages)
            payload.append(
                {
                    "session_id": session.session_id,
                    "created_at": session.created_at,
                    "updated_at": session.updated_at,
                    "web_content_url": session.web_content_url,
                    "message_count": len(messages),
                    "last_message": messages[-1].content if messages else "",
                }
            )
        return sorted(payload, key=lambda item: item.get("updated_at", 0), reverse=True)

    def list_models(self) -> List[ModelInfo]:
        return self.client.list_models()

    @staticmethod
    def _parse(message: Optional[str]) -> MessageParseResult:
        if message is not None and not isinstance(message, str):
            raise ValueError("message must be a string")
        return parse_message(message)

    def _prepare_turn(
        self,
        session: ChatSession,
        message: Optional[str],
        parsed: MessageParseResult,
        web_url: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> Optional[str]:
        """Inject page content if needed, record the user turn and save the session."""
        explicit_url = (web_url or "").strip()
        url = explicit_url or (parsed.extracted_urls[0] if parsed.has_urls else None)

        if url and url != session.web_content_url:
            logger.info("Injecting content from %s into session %s", url, session.session_id)
            page = self.fetcher.fetch(url, cancel_event=cancel_event)
            session.web_content_url = url
            session.add_message(
                Role.SYSTEM,
                self.config.context_template.format(url=page.url, title=page.title, content=page.content),
            )

        user_text = self._user_turn_text(message, parsed)
        if user_text is not None:
            session.add_message(Role.USER, user_text)
        self.sessions.upsert(session)
        return url

    def _user_turn_text(self, message: Optional[str], parsed: MessageParseResult) -> Optional[str]:
        if parsed.has_urls:
            if parsed.url_only or not parsed.cleaned_message.strip():
                return self.config.default_question
            return parsed.cleaned_message
        if message and message.strip():
            return message
        return None

    @staticmethod
    def _backend_messages(session: ChatSession) -> List[Dict[str, str]]:
        return [{"role": message.role.value, "content": message.content} for message in session.messages]

    def _model_name(self, model: Optional[str]) -> str:
        return model or self.config.backend.default_model

    @staticmethod
    def _raise_if_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ChatCancelled("Chat turn cancelled")
