"""FastAPI server exposing page-grounded chat, streaming chat and session lookup."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import threading
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
import uvicorn

from page_chat import BackendConfig, ChatConfig, FetcherConfig
from page_chat.errors import BackendError, ChatCancelled, ChatError, FetchError
from page_chat.models import StreamCompleted
from page_chat.service import ChatService
from page_chat.utils import setup_logging

logger = logging.getLogger(__name__)


# ---------- Request Models ----------
class ChatRequest(BaseModel):
    message: str = Field(..., description="User message; may contain URLs to pull into the conversation.")
    web_url: Optional[str] = Field(None, description="Page to inject explicitly, overriding URLs in the message.")
    session_id: Optional[str] = Field(None, description="Existing session to continue; omit to start a new one.")
    model: Optional[str] = Field(None, description="Ollama model name; defaults to the server's model.")


class ChatResponse(BaseModel):
    message: str
    session_id: str
    web_url: Optional[str] = None
    model: Optional[str] = None


class MessageResponse(BaseModel):
    role: str
    content: str
    timestamp: float


class SessionResponse(BaseModel):
    session_id: str
    messages: List[MessageResponse] = Field(default_factory=list)
    web_content_url: Optional[str] = None
    created_at: float
    updated_at: float


class ModelResponse(BaseModel):
    name: str
    id: str
    size: str
    modified: str


# ---------- Helpers ----------
def _sse(payload: Any) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


async def _watch_disconnect(request: Request, cancel_event: threading.Event, interval: float = 0.5) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling chat turn")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


def _error_status(exc: ChatError) -> int:
    if isinstance(exc, (FetchError, BackendError)):
        return 502
    if isinstance(exc, ChatCancelled):
        return 499
    return 500


# ---------- FastAPI Factory ----------
def create_app(
    log_dir: Optional[str] = "./logs",
    chat_config: Optional[ChatConfig] = None,
    *,
    service: Optional[ChatService] = None,
) -> FastAPI:
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    chat_service = service or ChatService(chat_config)

    app = FastAPI(title="Page Chat Server", version="0.1.0")
    app.state.chat_service = chat_service

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(request: ChatRequest, http_request: Request) -> ChatResponse:
        logger.info("Received chat request (session_id=%s)", request.session_id)
        cancel_event = threading.Event()
        watcher = asyncio.create_task(_watch_disconnect(http_request, cancel_event))
        try:
            reply = await run_in_threadpool(
                app.state.chat_service.chat,
                request.message,
                web_url=request.web_url,
                session_id=request.session_id,
                model=request.model,
                cancel_event=cancel_event,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ChatError as exc:
            logger.exception("Chat request failed (session_id=%s)", request.session_id)
            raise HTTPException(status_code=_error_status(exc), detail=str(exc)) from exc
        finally:
            watcher.cancel()

        return ChatResponse(
            message=reply.message,
            session_id=reply.session_id,
            web_url=reply.web_url,
            model=reply.model,
        )

    @app.post("/api/chat/stream")
    async def chat_stream(request: ChatRequest):
        logger.info("Streaming chat for session %s", request.session_id)
        cancel_event = threading.Event()
        try:
            stream = app.state.chat_service.stream_chat(
                request.message,
                web_url=request.web_url,
                session_id=request.session_id,
                model=request.model,
                cancel_event=cancel_event,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        async def events() -> AsyncIterator[str]:
            try:
                async for item in iterate_in_threadpool(stream):
                    if isinstance(item, StreamCompleted):
                        yield _sse(
                            {
                                "done": True,
                                "session_id": item.session_id,
                                "web_url": item.web_url,
                                "model": item.model,
                            }
                        )
                        yield _sse("[DONE]")
                    else:
                        yield _sse({"token": item})
            except ChatCancelled:
                logger.info("Streaming chat cancelled (session_id=%s)", request.session_id)
            except ChatError as exc:
                logger.exception("Streaming chat failed (session_id=%s)", request.session_id)
                yield _sse({"error": str(exc)})
            finally:
                # Client disconnects close this generator; stop the worker too.
                cancel_event.set()

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/api/chat/models", response_model=List[ModelResponse])
    async def models():
        logger.info("Fetching available models")
        try:
            found = await run_in_threadpool(app.state.chat_service.list_models)
        except BackendError as exc:
            logger.exception("Failed to list models")
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return [model.to_dict() for model in found]

    @app.get("/api/chat/session/{session_id}", response_model=SessionResponse)
    async def session(session_id: str):
        logger.info("Fetching session %s", session_id)
        found = app.state.chat_service.get_session(session_id)
        if found is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return found.to_dict()

    @app.get("/api/chat/sessions")
    async def sessions() -> List[Dict[str, Any]]:
        return app.state.chat_service.list_sessions()

    return app


# ---------- CLI ----------
def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the page chat server.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind.")
    parser.add_argument("--log_dir", default="./logs", help="Directory for application logs.")
    parser.add_argument("--ollama_url", default="http://localhost:11434", help="Base URL of the Ollama server.")
    parser.add_argument("--default_model", default="llama3.2:latest", help="Model used when a request names none.")
    parser.add_argument("--request_timeout", type=int, default=600, help="Timeout for Ollama calls (seconds).")
    parser.add_argument("--fetch_timeout", type=int, default=30, help="Timeout for web page fetches (seconds).")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    chat_cfg = ChatConfig(
        backend=BackendConfig(
            base_url=args.ollama_url,
            default_model=args.default_model,
            request_timeout=args.request_timeout,
        ),
        fetcher=FetcherConfig(request_timeout=args.fetch_timeout),
    )

    app = create_app(args.log_dir, chat_cfg)
    logger.info("Starting page chat server on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
