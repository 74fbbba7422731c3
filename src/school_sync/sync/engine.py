"""Offline-first sync engine for Users and Progress entries.

The ``SyncEngine`` owns every read, write and reconciliation step:

1. Reads are served from the local store only, sorted and filtered there.
2. Online writes go to the server first and are cached on success.
3. Offline writes are cached immediately with a temporary (negative) id
   and ``pending=True``, and a matching operation is queued.
4. ``sync_outbox()`` replays the queue in FIFO order, swapping each
   temporary record for the server's, and rewrites queued progress that
   points at a user id it just resolved.
5. ``reconcile_now()`` drains the queue and then refreshes both caches.

Error handling is per-run: the first failing operation stops the drain
and stays at the front of the queue for the next attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.async_utils import run_sync
from ..errors import RemoteError, StoreError
from ..validators import validate_lesson, validate_score, validate_user_name
from .ids import TempIdAllocator
from .models import (
    OperationKind,
    PendingOperation,
    ProgressEntry,
    ResolvedOperation,
    SyncReport,
    User,
    parse_timestamp,
    utc_now_iso,
)
from .store import PROGRESS, RESOLVED_IDS, USERS, LocalStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class RemoteClient(Protocol):
    """The four remote calls the engine relies on (blocking)."""

    def list_users(self) -> list[dict[str, Any]]: ...

    def create_user(self, name: str) -> dict[str, Any]: ...

    def list_progress(
        self, user_id: int | None = None
    ) -> list[dict[str, Any]]: ...

    def create_progress(
        self, user_id: int, lesson: str, score: int
    ) -> dict[str, Any]: ...


class SyncEngine:
    """Cache, outbox and reconciliation logic over one store.

    Args:
        client: Remote API client (blocking; called through ``run_sync``).
        store: Local store holding users, progress and the queue.
        online: Initial connectivity flag.
        id_allocator: Source of temporary ids. Defaults to one seeded
            from *store*.
        clock: Returns the ``created_at`` stamp for optimistic records.
    """

    def __init__(
        self,
        client: RemoteClient,
        store: LocalStore,
        online: bool = True,
        id_allocator: TempIdAllocator | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.client = client
        self.store = store
        self._online = online
        self._ids = id_allocator or TempIdAllocator.seeded_from(store)
        self._clock = clock
        self._sync_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    @property
    def online(self) -> bool:
        return self._online

    @property
    def syncing(self) -> bool:
        """True while a reconciliation run holds the lock."""
        return self._sync_lock.locked()

    async def on_connectivity_changed(
        self, online: bool
    ) -> SyncReport | None:
        """Record a connectivity change.

        Going online triggers ``reconcile_now()`` and returns its report;
        any other transition returns ``None``.
        """
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Back online, reconciling queued writes")
            return await self.reconcile_now()
        if not online and was_online:
            logger.info("Offline, writes will be queued")
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        """Cached users, ascending by id."""
        return sorted(self._load(USERS, User), key=lambda u: u.id)

    def list_progress(self, user_id: int | None = None) -> list[ProgressEntry]:
        """Cached progress, most recent first.

        Args:
            user_id: Only entries whose embedded user or ``user_id``
                matches.
        """
        entries = self._load(PROGRESS, ProgressEntry)
        if user_id is not None:
            entries = [e for e in entries if e.belongs_to(user_id)]
        return sorted(
            entries,
            key=lambda e: parse_timestamp(e.created_at),
            reverse=True,
        )

    def pending_count(self) -> int:
        """Number of queued operations."""
        return self.store.queue_length()

    async def refresh_users(self) -> list[User]:
        """Replace the user cache with the server's list.

        Optimistic users whose operation is still queued are kept, even
        when they were written while the request was in flight.
        """
        data = await run_sync(self.client.list_users)
        users = self._confirmed_many(User, data)
        queued = self._queued_temp_ids()
        if queued:
            self._drop_cached(USERS, self._load(USERS, User), queued)
        else:
            self.store.clear(USERS)
        for user in users:
            self.store.put(USERS, user.id, user.model_dump())
        logger.debug("Refreshed %d user(s)", len(users))
        return self.list_users()

    async def refresh_progress(
        self, user_id: int | None = None
    ) -> list[ProgressEntry]:
        """Refresh the progress cache from the server.

        Without a filter the whole collection is replaced.  With
        *user_id* only the cached entries of that user are dropped
        before the fresh ones are stored; other users' entries stay.
        Entries whose operation is still queued are always kept.
        """
        data = await run_sync(self.client.list_progress, user_id)
        entries = self._confirmed_many(ProgressEntry, data)
        queued = self._queued_temp_ids()
        if user_id is None and not queued:
            self.store.clear(PROGRESS)
        else:
            cached = self._load(PROGRESS, ProgressEntry)
            if user_id is not None:
                cached = [e for e in cached if e.belongs_to(user_id)]
            self._drop_cached(PROGRESS, cached, queued)
        for entry in entries:
            self.store.put(PROGRESS, entry.id, entry.model_dump())
        logger.debug(
            "Refreshed %d progress entr%s (user_id=%s)",
            len(entries),
            "y" if len(entries) == 1 else "ies",
            user_id,
        )
        return self.list_progress(user_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_user(self, name: str, online: bool | None = None) -> User:
        """Create a user.

        Online the server assigns the id and failures propagate as
        ``RemoteError``.  Offline the user is cached with a temporary id
        and a ``create_user`` operation is queued.

        Args:
            name: Display name.
            online: Override the engine's connectivity flag.

        Raises:
            ValueError: If *name* is empty or too long.
            RemoteError: If the online request fails.
            StoreError: If the local store cannot be written.
        """
        ok, reason = validate_user_name(name)
        if not ok:
            raise ValueError(reason)
        name = name.strip()

        if self._is_online(online):
            raw = await run_sync(self.client.create_user, name)
            user = self._confirmed(User, raw)
            self.store.put(USERS, user.id, user.model_dump())
            return user

        user = User(
            id=self._ids.allocate(),
            name=name,
            created_at=self._clock(),
            pending=True,
        )
        self._write_optimistic(
            USERS, user, OperationKind.CREATE_USER, {"name": name}
        )
        return user

    async def save_progress(
        self,
        user_id: int,
        lesson: str,
        score: int,
        online: bool | None = None,
    ) -> ProgressEntry:
        """Record a lesson score for *user_id*.

        Same routing as ``create_user``.  Offline entries carry no
        embedded user and keep *user_id* as given, which may itself be a
        temporary id.

        Raises:
            ValueError: If *lesson* or *score* is invalid, or *user_id* is
                a temporary id that is neither cached nor resolved.
            RemoteError: If the online request fails.
            StoreError: If the local store cannot be written.
        """
        ok, reason = validate_lesson(lesson)
        if not ok:
            raise ValueError(reason)
        ok, reason = validate_score(score)
        if not ok:
            raise ValueError(reason)
        lesson = lesson.strip()
        user_id = self._resolve_user_id(user_id)
        if user_id < 0 and all(u.id != user_id for u in self.list_users()):
            raise ValueError(f"Unknown temporary user id {user_id}")

        if self._is_online(online):
            raw = await run_sync(
                self.client.create_progress, user_id, lesson, score
            )
            entry = self._confirmed(ProgressEntry, raw)
            self.store.put(PROGRESS, entry.id, entry.model_dump())
            return entry

        entry = ProgressEntry(
            id=self._ids.allocate(),
            user_id=user_id,
            user=None,
            lesson=lesson,
            score=score,
            created_at=self._clock(),
            pending=True,
        )
        self._write_optimistic(
            PROGRESS,
            entry,
            OperationKind.CREATE_PROGRESS,
            {"user_id": user_id, "lesson": lesson, "score": score},
        )
        return entry

    def _write_optimistic(
        self,
        collection: str,
        record: User | ProgressEntry,
        kind: OperationKind,
        payload: dict[str, Any],
    ) -> None:
        """Cache *record* and queue its operation: both or neither."""
        self.store.put(collection, record.id, record.model_dump())
        operation = {
            "kind": kind.value,
            "payload": payload,
            "temp_id": record.id,
        }
        try:
            sequence = self.store.enqueue(operation)
        except StoreError:
            try:
                self.store.delete(collection, record.id)
            except StoreError:
                logger.exception(
                    "Could not roll back optimistic %s %d",
                    collection,
                    record.id,
                )
            raise
        logger.info(
            "Queued %s #%d (temp id %d)", kind.value, sequence, record.id
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def sync_outbox(self) -> SyncReport:
        """Replay queued writes against the server, oldest first.

        Returns a skipped report when offline or when another run is
        active.  Never raises for remote or store failures; those halt
        the run and are recorded in the report.
        """
        if not self._online or self._sync_lock.locked():
            return self._skipped_report()
        async with self._sync_lock:
            return await self._drain_outbox()

    async def reconcile_now(
        self, progress_user_id: int | None = None
    ) -> SyncReport:
        """Drain the outbox, then refresh both caches.

        The refresh only runs when the queue ended empty, so optimistic
        records whose operations are still queued stay visible.
        Refresh failures are logged and leave ``refreshed=False``.

        Args:
            progress_user_id: Filter passed to ``refresh_progress``.
        """
        if not self._online:
            logger.debug("Reconcile skipped: offline")
            return self._skipped_report()
        if self._sync_lock.locked():
            logger.debug("Reconcile skipped: a run is already active")
            return self._skipped_report()

        async with self._sync_lock:
            report = await self._drain_outbox()
            refreshed = False
            if report.remaining == 0:
                try:
                    await self.refresh_users()
                    await self.refresh_progress(progress_user_id)
                    refreshed = True
                except Exception as exc:
                    logger.warning("Refresh after sync failed: %s", exc)
            return report.model_copy(
                update={
                    "refreshed": refreshed,
                    "remaining": self.store.queue_length(),
                    "completed_at": utc_now_iso(),
                }
            )

    async def _drain_outbox(self) -> SyncReport:
        """The FIFO loop. Caller must hold ``_sync_lock``."""
        started_at = utc_now_iso()
        resolved: list[ResolvedOperation] = []
        discarded = 0
        halted = False
        error: str | None = None

        while True:
            sequence: int | None = None
            try:
                front = self.store.peek_front()
                if front is None:
                    break
                sequence, stored = front
                try:
                    operation = PendingOperation.from_stored(sequence, stored)
                except ValueError as exc:
                    logger.warning(
                        "Discarding malformed queued operation #%d: %s",
                        sequence,
                        exc,
                    )
                    self.store.remove_front()
                    discarded += 1
                    continue

                real_id = await self._dispatch(operation)
                self.store.remove_front()
            except Exception as exc:
                logger.warning(
                    "Sync halted at operation #%s: %s", sequence, exc
                )
                halted = True
                error = str(exc)
                break

            logger.info(
                "Synced %s #%d: %d -> %d",
                operation.kind.value,
                operation.sequence,
                operation.temp_id,
                real_id,
            )
            resolved.append(
                ResolvedOperation(
                    sequence=operation.sequence,
                    kind=operation.kind,
                    temp_id=operation.temp_id,
                    real_id=real_id,
                )
            )

        return SyncReport(
            started_at=started_at,
            completed_at=utc_now_iso(),
            resolved=resolved,
            discarded=discarded,
            halted=halted,
            error=error,
            remaining=self.store.queue_length(),
        )

    async def _dispatch(self, operation: PendingOperation) -> int:
        """Send one operation and swap its temporary record for the real one.

        Returns the server-assigned id.
        """
        payload = operation.payload

        if operation.kind is OperationKind.CREATE_USER:
            raw = await run_sync(self.client.create_user, payload["name"])
            user = self._confirmed(User, raw)
            self.store.put(USERS, user.id, user.model_dump())
            self.store.put(
                RESOLVED_IDS,
                operation.temp_id,
                {"temp_id": operation.temp_id, "real_id": user.id},
            )
            self.store.delete(USERS, operation.temp_id)
            self._patch_dependents(operation.temp_id, user.id)
            return user.id

        user_id = self._resolve_user_id(payload["user_id"])
        raw = await run_sync(
            self.client.create_progress,
            user_id,
            payload["lesson"],
            payload["score"],
        )
        entry = self._confirmed(ProgressEntry, raw)
        self.store.delete(PROGRESS, operation.temp_id)
        self.store.put(PROGRESS, entry.id, entry.model_dump())
        return entry.id

    def _patch_dependents(self, temp_user_id: int, real_user_id: int) -> None:
        """Point queued and cached progress at a freshly resolved user."""
        patched = 0
        for sequence, stored in self.store.peek_all():
            if not isinstance(stored, dict):
                continue
            payload = stored.get("payload")
            if (
                stored.get("kind") == OperationKind.CREATE_PROGRESS.value
                and isinstance(payload, dict)
                and payload.get("user_id") == temp_user_id
            ):
                self.store.replace(
                    sequence,
                    {**stored, "payload": {**payload, "user_id": real_user_id}},
                )
                patched += 1

        for cached in self.store.get_all(PROGRESS):
            if cached.get("pending") and cached.get("user_id") == temp_user_id:
                self.store.put(
                    PROGRESS, cached["id"], {**cached, "user_id": real_user_id}
                )

        if patched:
            logger.info(
                "Rewrote %d queued progress operation(s): user %d -> %d",
                patched,
                temp_user_id,
                real_user_id,
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_online(self, override: bool | None) -> bool:
        return self._online if override is None else override

    def _resolve_user_id(self, user_id: int) -> int:
        """Map a synced temporary user id to its server id."""
        if user_id >= 0:
            return user_id
        for mapping in self.store.get_all(RESOLVED_IDS):
            real_id = mapping.get("real_id")
            if mapping.get("temp_id") == user_id and isinstance(real_id, int):
                return real_id
        return user_id

    def _queued_temp_ids(self) -> set[int]:
        return {
            stored["temp_id"]
            for _, stored in self.store.peek_all()
            if isinstance(stored, dict) and isinstance(stored.get("temp_id"), int)
        }

    def _drop_cached(
        self,
        collection: str,
        records: list[User] | list[ProgressEntry],
        queued: set[int],
    ) -> None:
        for record in records:
            if record.id not in queued:
                self.store.delete(collection, record.id)

    def _load(self, collection: str, model: type[M]) -> list[M]:
        """Validate every stored record of *collection*, skipping bad ones."""
        records: list[M] = []
        for raw in self.store.get_all(collection):
            try:
                records.append(model.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "Skipping unreadable %s record: %s",
                    collection,
                    exc.errors()[0]["msg"] if exc.errors() else exc,
                )
        return records

    @staticmethod
    def _confirmed(model: type[M], raw: Any) -> M:
        """Validate a server record and mark it confirmed."""
        if not isinstance(raw, dict):
            raise RemoteError(
                f"Expected a {model.__name__} object, got {type(raw).__name__}"
            )
        try:
            return model.model_validate({**raw, "pending": False})
        except ValidationError as exc:
            raise RemoteError(
                f"Server returned an invalid {model.__name__}: {exc}"
            ) from exc

    def _confirmed_many(self, model: type[M], data: list[Any]) -> list[M]:
        records: list[M] = []
        for raw in data:
            try:
                records.append(self._confirmed(model, raw))
            except RemoteError as exc:
                logger.warning("Ignoring server record: %s", exc)
        return records

    @staticmethod
    def _skipped_report() -> SyncReport:
        now = utc_now_iso()
        return SyncReport(started_at=now, completed_at=now, skipped=True)
