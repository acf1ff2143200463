"""Shared fixtures and stubs for the page chat tests."""

from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest
import requests

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from page_chat.config import ChatConfig  # noqa: E402
from page_chat.errors import FetchError  # noqa: E402
from page_chat.models import WebPage  # noqa: E402
from page_chat.service import ChatService  # noqa: E402


class StubResponse:
    """Minimal stand-in for :class:`requests.Response`."""

    def __init__(
        self,
        *,
        status_code: int = 200,
        body: bytes = b"",
        lines: Optional[Iterable[bytes]] = None,
        payload: object = None,
        encoding: Optional[str] = "utf-8",
    ) -> None:
        self.status_code = status_code
        self._body = body
        self._lines = list(lines or [])
        self._payload = payload
        self.encoding = encoding
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def iter_lines(self):
        yield from self._lines

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload

    def close(self) -> None:
        self.closed = True


class StubSession:
    """Records outgoing calls and replays canned responses."""

    def __init__(self, response: Optional[StubResponse] = None, error: Optional[Exception] = None) -> None:
        self.response = response or StubResponse()
        self.error = error
        self.calls: List[Dict[str, object]] = []

    def _respond(self, method: str, url: str, **kwargs) -> StubResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response

    def post(self, url: str, **kwargs) -> StubResponse:
        return self._respond("POST", url, **kwargs)

    def get(self, url: str, **kwargs) -> StubResponse:
        return self._respond("GET", url, **kwargs)


def ndjson(*chunks: Dict[str, object]) -> List[bytes]:
    return [json.dumps(chunk).encode("utf-8") for chunk in chunks]


class FakeLLMClient:
    """Deterministic backend: replies with ``reply`` split into ``fragments``."""

    def __init__(self, fragments: Optional[List[str]] = None, error: Optional[Exception] = None) -> None:
        self.fragments = fragments if fragments is not None else ["Hello", " there"]
        self.error = error
        self.calls: List[Dict[str, object]] = []

    def generate(self, messages, model=None, *, cancel_event=None) -> str:
        self.calls.append({"messages": [dict(m) for m in messages], "model": model, "stream": False})
        if self.error is not None:
            raise self.error
        return "".join(self.fragments)

    def stream_generate(self, messages, model=None, *, cancel_event=None):
        self.calls.append({"messages": [dict(m) for m in messages], "model": model, "stream": True})
        for fragment in self.fragments:
            yield fragment
        if self.error is not None:
            raise self.error

    def list_models(self):
        return []


class FakeFetcher:
    def __init__(self, pages: Optional[Dict[str, WebPage]] = None) -> None:
        self.pages = pages or {}
        self.calls: List[str] = []

    def fetch(self, url: str, *, cancel_event: Optional[threading.Event] = None) -> WebPage:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise FetchError(url, "404 Not Found")
        return page


@pytest.fixture
def example_page() -> WebPage:
    return WebPage(url="https://example.com", title="Example Domain", content="This domain is for examples.")


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def fake_fetcher(example_page: WebPage) -> FakeFetcher:
    return FakeFetcher({example_page.url: example_page})


@pytest.fixture
def service(fake_llm: FakeLLMClient, fake_fetcher: FakeFetcher) -> ChatService:
    config = ChatConfig(cancel_poll_interval=0.01)
    return ChatService(config, llm_client=fake_llm, content_fetcher=fake_fetcher)
