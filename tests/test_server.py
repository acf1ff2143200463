"""API-level tests driven through FastAPI's TestClient."""

from __future__ import annotations

import json
import threading

import pytest
from fastapi.testclient import TestClient

from conftest import FakeFetcher, FakeLLMClient
from page_chat.config import ChatConfig
from page_chat.errors import BackendError, ChatCancelled
from page_chat.models import ModelInfo
from page_chat.service import ChatService
from server import create_app


def _client(service: ChatService) -> TestClient:
    return TestClient(create_app(log_dir=None, service=service))


def _events(body: str):
    return [line[len("data: ") :] for line in body.splitlines() if line.startswith("data: ")]


@pytest.fixture
def client(service) -> TestClient:
    return _client(service)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_chat_returns_reply_and_new_session(client):
    response = client.post("/api/chat", json={"message": "Check https://example.com, thanks!"})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Hello there"
    assert body["web_url"] == "https://example.com"
    assert body["model"] == "llama3.2:latest"

    session = client.get(f"/api/chat/session/{body['session_id']}").json()
    assert [m["role"] for m in session["messages"]] == ["system", "user", "assistant"]
    assert session["web_content_url"] == "https://example.com"


def test_chat_requires_message(client):
    assert client.post("/api/chat", json={"session_id": "x"}).status_code == 422


def test_chat_fetch_failure_maps_to_bad_gateway(client):
    response = client.post("/api/chat", json={"message": "https://missing.example"})

    assert response.status_code == 502


def test_chat_backend_failure_maps_to_bad_gateway(fake_fetcher):
    service = ChatService(ChatConfig(), llm_client=FakeLLMClient(error=BackendError("down")), content_fetcher=fake_fetcher)

    response = _client(service).post("/api/chat", json={"message": "hi"})

    assert response.status_code == 502


def test_chat_passes_cancel_event_to_service(service, monkeypatch):
    seen = {}
    original = service.chat

    def recording_chat(message, **kwargs):
        seen.update(kwargs)
        return original(message, **kwargs)

    monkeypatch.setattr(service, "chat", recording_chat)

    response = _client(service).post("/api/chat", json={"message": "hi"})

    assert response.status_code == 200
    assert isinstance(seen["cancel_event"], threading.Event)
    assert not seen["cancel_event"].is_set()


def test_chat_cancellation_maps_to_client_closed_status(service, monkeypatch):
    def cancelled(message, **kwargs):
        raise ChatCancelled("client went away")

    monkeypatch.setattr(service, "chat", cancelled)

    assert _client(service).post("/api/chat", json={"message": "hi"}).status_code == 499


def test_unknown_session_returns_404(client):
    response = client.get("/api/chat/session/invalid-session-id-12345")

    assert response.status_code == 404


def test_stream_emits_tokens_completion_and_done_marker(fake_fetcher):
    service = ChatService(
        ChatConfig(cancel_poll_interval=0.01),
        llm_client=FakeLLMClient(fragments=["A", "B"]),
        content_fetcher=fake_fetcher,
    )
    client = _client(service)

    response = client.post("/api/chat/stream", json={"message": "hi"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _events(response.text)
    assert [json.loads(e) for e in events[:2]] == [{"token": "A"}, {"token": "B"}]
    done = json.loads(events[2])
    assert done["done"] is True
    assert events[3] == "[DONE]"

    last = client.get(f"/api/chat/session/{done['session_id']}").json()["messages"][-1]
    assert last["role"] == "assistant"
    assert last["content"] == "AB"


def test_stream_failure_emits_error_without_done_marker(fake_fetcher):
    service = ChatService(
        ChatConfig(cancel_poll_interval=0.01),
        llm_client=FakeLLMClient(fragments=["A"], error=BackendError("reset")),
        content_fetcher=fake_fetcher,
    )

    response = _client(service).post("/api/chat/stream", json={"message": "hi"})

    events = _events(response.text)
    assert json.loads(events[0]) == {"token": "A"}
    assert "error" in json.loads(events[-1])
    assert "[DONE]" not in events


def test_models_lists_backend_models(service, monkeypatch):
    monkeypatch.setattr(
        service.client,
        "list_models",
        lambda: [ModelInfo(name="llama3.2:latest", digest="abc", size="1.9 GB", modified="2024-10-01 12:34")],
    )

    response = _client(service).get("/api/chat/models")

    assert response.status_code == 200
    assert response.json() == [
        {"name": "llama3.2:latest", "id": "abc", "size": "1.9 GB", "modified": "2024-10-01 12:34"}
    ]


def test_models_backend_failure_maps_to_bad_gateway(service, monkeypatch):
    def boom():
        raise BackendError("unreachable")

    monkeypatch.setattr(service.client, "list_models", boom)

    assert _client(service).get("/api/chat/models").status_code == 502


def test_sessions_listing(client):
    client.post("/api/chat", json={"message": "hello"})

    listing = client.get("/api/chat/sessions").json()

    assert len(listing) == 1
    assert listing[0]["message_count"] == 2
