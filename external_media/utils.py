"""Utility helpers for splitting URL input and deriving display names."""

from __future__ import annotations

import posixpath
import re
from typing import List
from urllib.parse import unquote, urlsplit

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(value: str, fallback: str = "image") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def split_urls(text: str) -> List[str]:
    """Split newline-separated input into trimmed, unique, non-empty URLs."""
    seen = set()
    urls: List[str] = []
    for line in text.splitlines():
        url = line.strip()
        if not url or url in seen:
            continue
        seen.add(url)
        urls.append(url)
    return urls


def url_filename(url: str, fallback: str = "image") -> str:
    """Return the decoded last path segment of ``url``."""
    path = unquote(urlsplit(url).path)
    return posixpath.basename(path.rstrip("/")) or fallback
