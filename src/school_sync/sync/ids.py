"""Allocator for temporary (negative) record ids.

Server ids are positive, so any negative id in the cache is known to be
local and unconfirmed.  The allocator is seeded below every id already
present in the store, resolved ones included, so that a temporary id
still referenced after a restart is never handed out twice.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

from .store import PROGRESS, RESOLVED_IDS, USERS, LocalStore


class TempIdAllocator:
    """Hand out strictly decreasing negative ids.

    Args:
        start: First id to return. Must be negative.
    """

    def __init__(self, start: int = -1) -> None:
        if start >= 0:
            raise ValueError(f"Temporary ids must be negative, got {start}")
        self._next = start
        self._lock = threading.Lock()

    def allocate(self) -> int:
        """Return the next unused temporary id."""
        with self._lock:
            value = self._next
            self._next -= 1
            return value

    @classmethod
    def seeded_from(cls, store: LocalStore) -> TempIdAllocator:
        """Build an allocator that avoids every id found in *store*."""
        ids: list[int] = []
        for collection in (USERS, PROGRESS):
            ids.extend(_ids(store.get_all(collection), "id"))
        ids.extend(_ids(store.get_all(RESOLVED_IDS), "temp_id"))
        ids.extend(
            _ids((payload for _, payload in store.peek_all()), "temp_id")
        )
        lowest = min((i for i in ids if i < 0), default=0)
        return cls(start=lowest - 1)


def _ids(items: Iterable[Any], key: str) -> Iterable[int]:
    for item in items:
        if isinstance(item, dict):
            value = item.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                yield value
