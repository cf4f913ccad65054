"""Bounded LRU cache of serialized digest payloads.

WHY: The editor reloads the same digest payload repeatedly, and building it
means reading and re-serializing a record that can hold tens of thousands
of words. A small cache in front of the store avoids that, as long as it
never serves a payload older than the last save.

HOW: An OrderedDict in access order, trimmed to ``max_entries``. The
orchestrator registers invalidate() as a store listener, so every
successful write drops the cached entry for that digest. Each invalidation
also bumps ``generation``; a reader takes the generation before loading a
record and passes it to put(), which refuses the payload if any write
landed in between.

RULES:
- No time-based expiry; entries leave on write or on eviction
- max_entries <= 0 disables caching
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Optional


class DigestCache:
    """Thread-safe LRU of digest id → serialized payload."""

    def __init__(self, max_entries: int = 128) -> None:
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, digest_id: str) -> Optional[str]:
        with self._lock:
            payload = self._entries.get(digest_id)
            if payload is not None:
                self._entries.move_to_end(digest_id)
            return payload

    def put(self, digest_id: str, payload: str, generation: Optional[int] = None) -> bool:
        """Cache ``payload``; returns False if it was refused as stale."""
        if self.max_entries <= 0:
            return False
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[digest_id] = payload
            self._entries.move_to_end(digest_id)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return True

    def invalidate(self, digest_id: str) -> None:
        with self._lock:
            self._generation += 1
            self._entries.pop(digest_id, None)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, digest_id: object) -> bool:
        with self._lock:
            return digest_id in self._entries
