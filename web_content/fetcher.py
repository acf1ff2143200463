"""Download web pages and reduce them to a title plus readable text.

The chat service injects the result into a session as grounding context, so
the extractor favours the main content container of a page (``article``,
``main``, a ``content`` div) over navigation chrome and drops scripts and
styles entirely. Whitespace is collapsed to single spaces.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Optional

import requests
from bs4 import BeautifulSoup

from page_chat.config import FetcherConfig
from page_chat.errors import ChatCancelled, FetchError
from page_chat.models import WebPage
from page_chat.utils import read_body

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_STRIP_TAGS = ["script", "style", "noscript"]


def extract_page(url: str, html: str) -> WebPage:
    """Parse ``html`` and return its title and collapsed body text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    node = (
        soup.find("article")
        or soup.find("main")
        or soup.find("div", class_="content")
        or soup.find("div", id="content")
        or soup.body
    )
    text = (node or soup).get_text(" ")
    content = _WHITESPACE.sub(" ", text).strip()
    return WebPage(url=url, title=title or "Untitled", content=content)


class WebContentFetcher:
    """Fetch a URL over HTTP and extract its readable content."""

    def __init__(self, config: Optional[FetcherConfig] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or FetcherConfig()
        self._session = session or requests.Session()

    def fetch(self, url: str, *, cancel_event: Optional[threading.Event] = None) -> WebPage:
        """Return the :class:`WebPage` for ``url`` or raise :class:`FetchError`."""
        if cancel_event is not None and cancel_event.is_set():
            raise ChatCancelled(f"Fetch of {url} cancelled")

        logger.info("Fetching web content from %s", url)
        start_time = time.perf_counter()
        try:
            response = self._session.get(
                url,
                headers={"User-Agent": self.config.user_agent},
                stream=True,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise FetchError(url, str(exc)) from exc
        try:
            response.raise_for_status()
        except requests.RequestException as exc:
            response.close()
            raise FetchError(url, str(exc)) from exc

        try:
            body = read_body(response, cancel_event=cancel_event, max_bytes=self.config.max_bytes)
        except (requests.RequestException, ValueError) as exc:
            raise FetchError(url, str(exc)) from exc

        encoding = getattr(response, "encoding", None) or "utf-8"
        try:
            html = body.decode(encoding, errors="replace")
        except LookupError:
            html = body.decode("utf-8", errors="replace")

        page = extract_page(url, html)
        elapsed = time.perf_counter() - start_time
        logger.info(
            "Fetched %s in %.2f seconds (title=%r, %d chars)",
            url,
            elapsed,
            page.title,
            len(page.content),
        )
        return page
