"""Offline-first sync engine.

Public API for caching Users and Progress entries locally, queueing
writes made while offline, and reconciling them with the remote API.

Architecture
------------
Reads are always served from the local store.  Writes made while online
go to the server first; writes made while offline are cached at once
under a **temporary negative id** and appended to a FIFO **outbox**.
Reconciliation replays the outbox in order, swaps every temporary record
for the server's, and rewrites queued progress that references a user
whose temporary id was just resolved.

Modules:

- ``engine``    -- ``SyncEngine``: reads, writes, reconciliation.
- ``store``     -- ``LocalStore`` protocol, ``MemoryStore``, ``JsonFileStore``.
- ``models``    -- ``User``, ``ProgressEntry``, ``PendingOperation``,
  ``SyncReport`` and friends.
- ``ids``       -- ``TempIdAllocator``: negative id source.
- ``scheduler`` -- ``SyncScheduler``: connectivity handling and the
  periodic reconciliation task.
- ``reporter``  -- Human-readable and JSON output.

Usage example
-------------
::

    from pathlib import Path
    from school_sync.config import Config
    from school_sync.core.client import ProgressApiClient
    from school_sync.sync import JsonFileStore, SyncEngine

    engine = SyncEngine(
        client=ProgressApiClient(Config()),
        store=JsonFileStore(Path(".school_sync/data")),
        online=False,
    )

    amina = await engine.create_user("Amina")          # id < 0, pending
    await engine.save_progress(amina.id, "Math 1", 95)  # queued behind it

    report = await engine.on_connectivity_changed(True)
    print(report.summary())
"""

from .engine import RemoteClient, SyncEngine
from .ids import TempIdAllocator
from .models import (
    OperationKind,
    PendingOperation,
    ProgressEntry,
    ResolvedOperation,
    SyncReport,
    User,
    UserSummary,
)
from .reporter import (
    format_sync_report,
    report_to_json,
)
from .scheduler import SyncScheduler
from .store import JsonFileStore, LocalStore, MemoryStore

__all__ = [
    "JsonFileStore",
    "LocalStore",
    "MemoryStore",
    "OperationKind",
    "PendingOperation",
    "ProgressEntry",
    "RemoteClient",
    "ResolvedOperation",
    "SyncEngine",
    "SyncReport",
    "SyncScheduler",
    "TempIdAllocator",
    "User",
    "UserSummary",
    "format_sync_report",
    "report_to_json",
]
