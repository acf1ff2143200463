"""Extract URLs from free-form chat messages."""

from __future__ import annotations

import re
from typing import List, Optional

from .models import MessageParseResult

URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)
# Sentence punctuation that usually trails a URL in prose.
TRAILING_PUNCTUATION = ",.;!?):"


def parse_message(message: Optional[str]) -> MessageParseResult:
    """Split ``message`` into its URLs and the remaining text.

    Reported URLs lose trailing punctuation, but the text is cleaned by
    removing the raw matches, so ``"see https://a.io, ok"`` yields
    ``["https://a.io"]`` and ``"see  ok"``. A message made only of URLs keeps
    its original text as the cleaned message.
    """
    if not message or not message.strip():
        return MessageParseResult(cleaned_message="", extracted_urls=[])

    urls: List[str] = [match.group(0).rstrip(TRAILING_PUNCTUATION) for match in URL_PATTERN.finditer(message)]

    cleaned = URL_PATTERN.sub("", message).strip()
    url_only = not cleaned and bool(urls)
    if url_only:
        cleaned = message

    return MessageParseResult(cleaned_message=cleaned, extracted_urls=urls, url_only=url_only)
