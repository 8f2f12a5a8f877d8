#!/usr/bin/env python3
"""
locks.py
--------------------
Serialization primitives for mirror mutations.

- KeyedLocks: one lock per (tenant, kind, source id), so two events for
  the same post never interleave while unrelated posts proceed in parallel
- ResyncGate: reader/writer gate; incremental events enter shared, a full
  resync enters exclusive and waits for in-flight events to drain
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLocks:
    """Lazily created, reference-counted locks keyed by any hashable."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ResyncGate:
    """
    Writer-preferring reader/writer gate.

    Once a resync is waiting, new incremental events queue behind it, so a
    steady stream of events cannot starve the resync.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._active_events = 0
        self._resync_active = False
        self._resync_waiting = 0

    @contextmanager
    def incremental(self) -> Iterator[None]:
        with self._cond:
            while self._resync_active or self._resync_waiting:
                self._cond.wait()
            self._active_events += 1
        try:
            yield
        finally:
            with self._cond:
                self._active_events -= 1
                if not self._active_events:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._resync_waiting += 1
            try:
                while self._resync_active or self._active_events:
                    self._cond.wait()
            finally:
                self._resync_waiting -= 1
            self._resync_active = True
        try:
            yield
        finally:
            with self._cond:
                self._resync_active = False
                self._cond.notify_all()

    @property
    def resync_in_progress(self) -> bool:
        with self._cond:
            return self._resync_active
