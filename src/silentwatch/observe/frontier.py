"""Breadth-first page frontier capped at ``max_unique_urls``."""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Drop fragment and trailing slash, lowercase scheme and host."""
    parsed = urlparse(url)
    path = parsed.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, parsed.query, ""))


def normalize_path(path: Optional[str]) -> str:
    if not path:
        return "/"
    if path.startswith(("http://", "https://", "file:")):
        path = urlparse(path).path or "/"
    path = path.split("#", 1)[0].split("?", 1)[0] or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


class PageFrontier:
    """Queue of pages to visit. Discovery beyond the cap is dropped and counted."""

    def __init__(self, start_url: str, max_unique_urls: int):
        self.max_unique_urls = max_unique_urls
        self._queue: Deque[str] = deque()
        self._seen: Set[str] = set()
        self.visited: List[str] = []
        self.dropped: List[str] = []
        self.add(start_url)

    @property
    def capped(self) -> bool:
        return bool(self.dropped)

    def add(self, url: str) -> bool:
        normalized = normalize_url(url)
        if normalized in self._seen:
            return False
        if len(self._seen) >= self.max_unique_urls:
            if normalized not in self.dropped:
                self.dropped.append(normalized)
                logger.info(f"Frontier capped at {self.max_unique_urls} URLs, dropping {normalized}")
            return False
        self._seen.add(normalized)
        self._queue.append(normalized)
        return True

    def has_next(self) -> bool:
        return bool(self._queue)

    def next_url(self) -> str:
        url = self._queue.popleft()
        self.visited.append(url)
        return url

    def remaining(self) -> List[str]:
        return list(self._queue)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "pages_visited": len(self.visited),
            "pages_discovered": len(self._seen) + len(self.dropped),
            "frontier_capped": self.capped,
            "dropped_urls": len(self.dropped),
        }
