"""Local store for cached records and the pending-operation queue.

Four independent collections:

* ``users`` and ``progress`` -- id-keyed record mappings.
* ``resolved_ids`` -- temporary user id -> server id, keyed by the
  temporary id, kept so writes that name an already synced user still
  resolve after a restart.
* ``pending_operations`` -- an append-only FIFO queue whose positions are
  strictly increasing and never reused.

``MemoryStore`` keeps everything in dicts.  ``JsonFileStore`` extends it
and persists the touched collection after every mutation, one JSON file
per collection, written to a temp file and swapped in with
``os.replace()`` so readers never see partial data.

The store holds plain dicts; validation into models happens in the engine.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

from ..errors import StoreError

logger = logging.getLogger(__name__)

USERS = "users"
PROGRESS = "progress"
RESOLVED_IDS = "resolved_ids"
PENDING_OPERATIONS = "pending_operations"

RECORD_COLLECTIONS = (USERS, PROGRESS, RESOLVED_IDS)


class LocalStore(Protocol):
    """Storage contract consumed by ``SyncEngine``."""

    def get_all(self, collection: str) -> list[dict[str, Any]]: ...

    def put(self, collection: str, record_id: int, record: dict[str, Any]) -> None: ...

    def delete(self, collection: str, record_id: int) -> None: ...

    def clear(self, collection: str) -> None: ...

    def enqueue(self, payload: dict[str, Any]) -> int: ...

    def peek_front(self) -> tuple[int, Any] | None: ...

    def remove_front(self) -> None: ...

    def peek_all(self) -> list[tuple[int, Any]]: ...

    def replace(self, sequence: int, payload: dict[str, Any]) -> None: ...

    def queue_length(self) -> int: ...


def _check_collection(collection: str) -> None:
    if collection not in RECORD_COLLECTIONS:
        raise StoreError(f"Unknown collection '{collection}'")


class MemoryStore:
    """Dict-backed ``LocalStore``.

    Values are deep-copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[int, dict[str, Any]]] = {
            name: {} for name in RECORD_COLLECTIONS
        }
        # Insertion-ordered; dicts preserve order.
        self._queue: dict[int, Any] = {}
        self._next_sequence = 1

    # ------------------------------------------------------------------
    # Record collections
    # ------------------------------------------------------------------

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        """Return every record of *collection*, unordered."""
        _check_collection(collection)
        return [copy.deepcopy(r) for r in self._records[collection].values()]

    def put(
        self, collection: str, record_id: int, record: dict[str, Any]
    ) -> None:
        """Upsert *record* under *record_id*."""
        _check_collection(collection)
        with self._mutation(collection):
            self._records[collection][int(record_id)] = copy.deepcopy(
                record
            )

    def delete(self, collection: str, record_id: int) -> None:
        """Remove *record_id*. No-op if not present."""
        _check_collection(collection)
        if int(record_id) not in self._records[collection]:
            return
        with self._mutation(collection):
            del self._records[collection][int(record_id)]

    def clear(self, collection: str) -> None:
        """Remove every record of *collection*."""
        _check_collection(collection)
        with self._mutation(collection):
            self._records[collection].clear()

    # ------------------------------------------------------------------
    # Pending-operation queue
    # ------------------------------------------------------------------

    def enqueue(self, payload: dict[str, Any]) -> int:
        """Append *payload* and return its queue position."""
        sequence = self._next_sequence
        with self._mutation(PENDING_OPERATIONS):
            self._queue[sequence] = copy.deepcopy(payload)
            self._next_sequence += 1
        return sequence

    def peek_front(self) -> tuple[int, Any] | None:
        """Return ``(sequence, payload)`` of the oldest entry, or ``None``."""
        for sequence, payload in self._queue.items():
            return sequence, copy.deepcopy(payload)
        return None

    def remove_front(self) -> None:
        """Drop the oldest entry. No-op on an empty queue."""
        if not self._queue:
            return
        with self._mutation(PENDING_OPERATIONS):
            del self._queue[next(iter(self._queue))]

    def peek_all(self) -> list[tuple[int, Any]]:
        """Return every queued ``(sequence, payload)`` in FIFO order."""
        return [(s, copy.deepcopy(p)) for s, p in self._queue.items()]

    def replace(self, sequence: int, payload: dict[str, Any]) -> None:
        """Rewrite a queued payload in place, keeping its position."""
        if sequence not in self._queue:
            raise StoreError(f"No queued operation at position {sequence}")
        with self._mutation(PENDING_OPERATIONS):
            self._queue[sequence] = copy.deepcopy(payload)

    def queue_length(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Persistence hook
    # ------------------------------------------------------------------

    @contextmanager
    def _mutation(self, collection: str) -> Iterator[None]:
        """Apply an in-memory change, persist it, undo it if that fails."""
        if collection == PENDING_OPERATIONS:
            saved: Any = (dict(self._queue), self._next_sequence)
        else:
            saved = dict(self._records[collection])
        yield
        try:
            self._persist(collection)
        except StoreError:
            if collection == PENDING_OPERATIONS:
                self._queue, self._next_sequence = saved
            else:
                self._records[collection] = saved
            raise

    def _persist(self, collection: str) -> None:
        """Called after every mutation; in-memory stores do nothing."""


class JsonFileStore(MemoryStore):
    """``LocalStore`` persisted as JSON files under *data_dir*.

    Files: ``users.json``, ``progress.json``, ``resolved_ids.json`` and
    ``pending_operations.json``.
    Missing files mean empty collections.  Unreadable files raise
    ``StoreError`` at construction time.

    Args:
        data_dir: Directory holding the collection files. Created on the
            first write.
    """

    def __init__(self, data_dir: Path) -> None:
        super().__init__()
        self._data_dir = Path(data_dir)
        self._load()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _read(self, collection: str) -> Any:
        path = self._path(collection)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            raise StoreError(f"Cannot read {path}: {exc}") from exc

    def _load(self) -> None:
        for collection in RECORD_COLLECTIONS:
            data = self._read(collection)
            if data is None:
                continue
            if not isinstance(data, dict):
                raise StoreError(
                    f"{self._path(collection)} must hold a JSON object"
                )
            try:
                self._records[collection] = {
                    int(key): value for key, value in data.items()
                }
            except ValueError as exc:
                raise StoreError(
                    f"{self._path(collection)} has a non-integer key"
                ) from exc

        queue = self._read(PENDING_OPERATIONS)
        if queue is None:
            return
        if not isinstance(queue, dict) or not isinstance(
            queue.get("items"), list
        ):
            raise StoreError(
                f"{self._path(PENDING_OPERATIONS)} is not a queue file"
            )
        for item in queue["items"]:
            # Entries themselves may be malformed; the engine discards
            # those.  Only the [sequence, payload] framing is required.
            if not isinstance(item, list) or len(item) != 2:
                logger.warning("Dropping unframed queue item: %r", item)
                continue
            try:
                sequence = int(item[0])
            except (TypeError, ValueError) as exc:
                raise StoreError(
                    f"{self._path(PENDING_OPERATIONS)} has a non-integer "
                    f"queue position: {item[0]!r}"
                ) from exc
            self._queue[sequence] = item[1]
        highest = max(self._queue, default=0)
        try:
            stored_next = int(queue.get("next_sequence", 1))
        except (TypeError, ValueError) as exc:
            raise StoreError(
                f"{self._path(PENDING_OPERATIONS)} has a non-integer "
                "next_sequence"
            ) from exc
        self._next_sequence = max(stored_next, highest + 1)
        logger.debug(
            "Loaded store from %s: %d queued operation(s)",
            self._data_dir,
            len(self._queue),
        )

    # ------------------------------------------------------------------
    # Atomic writes
    # ------------------------------------------------------------------

    def _persist(self, collection: str) -> None:
        if collection == PENDING_OPERATIONS:
            data: Any = {
                "next_sequence": self._next_sequence,
                "items": [[s, p] for s, p in self._queue.items()],
            }
        else:
            data = {
                str(key): value
                for key, value in self._records[collection].items()
            }
        self._write_atomic(self._path(collection), data)

    def _write_atomic(self, target: Path, data: Any) -> None:
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._data_dir), suffix=".tmp"
            )
        except OSError as exc:
            raise StoreError(f"Cannot write {target}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException as exc:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(exc, (OSError, TypeError, ValueError)):
                raise StoreError(f"Cannot write {target}: {exc}") from exc
            raise
