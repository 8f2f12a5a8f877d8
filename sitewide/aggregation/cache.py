#!/usr/bin/env python3
"""
cache.py
--------------------
Black-box cache for sitewide views and its invalidation rules.

The aggregator only needs get/set/invalidate from a cache. Keys live in
named groups so that a post change can drop every cached post and tag
view in one call without knowing which keys the readers used.

Groups:
    - posts: post listings and post filters
    - tags: tag lists, tag clouds, usage bounds
    - comments: comment listings and filters (they join posts, so post
      changes clear them too)
"""
from __future__ import annotations

import threading
import time
from typing import Any, Dict, Hashable, Optional, Protocol, Tuple


POSTS = "posts"
TAGS = "tags"
COMMENTS = "comments"
ALL_GROUPS = (POSTS, TAGS, COMMENTS)

_MISSING = object()


class SiteCache(Protocol):
    """Key/value store the aggregator reads through and invalidates."""

    def get(self, group: str, key: Hashable, default: Any = None) -> Any: ...

    def set(self, group: str, key: Hashable, value: Any) -> None: ...

    def invalidate(self, group: str) -> None: ...

    def invalidate_all(self) -> None: ...


class MemoryCache:
    """
    Process-local cache with a per-entry time to live.

    Attributes:
        ttl: Seconds an entry stays valid (0 disables expiry)
    """

    def __init__(self, ttl: float = 300) -> None:
        self.ttl = ttl
        self._entries: Dict[str, Dict[Hashable, Tuple[float, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, group: str, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(group, {}).get(key)
            if entry is None:
                return default
            stored_at, value = entry
            if self.ttl and time.monotonic() - stored_at > self.ttl:
                del self._entries[group][key]
                return default
            return value

    def set(self, group: str, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries.setdefault(group, {})[key] = (time.monotonic(), value)

    def invalidate(self, group: str) -> None:
        with self._lock:
            self._entries.pop(group, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(keys) for keys in self._entries.values())


class CacheInvalidator:
    """
    Maps mirror mutations onto cache groups.

    Every mirror mutation is followed by exactly one of these calls, so a
    cached view never outlives the rows it was computed from.
    """

    def __init__(self, cache: Optional[SiteCache] = None) -> None:
        self.cache = cache

    def post_changed(self) -> None:
        if self.cache is not None:
            self.cache.invalidate(POSTS)
            self.cache.invalidate(TAGS)
            self.cache.invalidate(COMMENTS)

    def comment_changed(self) -> None:
        if self.cache is not None:
            self.cache.invalidate(COMMENTS)

    def everything_changed(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_all()


def cached(cache: Optional[SiteCache], group: str, key: Hashable, compute):
    """Return the cached value for ``key`` or compute and store it."""
    if cache is None:
        return compute()
    value = cache.get(group, key, _MISSING)
    if value is _MISSING:
        value = compute()
        cache.set(group, key, value)
    return value
