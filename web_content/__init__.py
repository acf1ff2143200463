"""Helpers for pulling web pages into chat sessions."""

from .fetcher import WebContentFetcher, extract_page

__all__ = ["WebContentFetcher", "extract_page"]
