"""Pydantic models for the offline-first sync engine.

Defines the data contracts that cross the storage boundary:

- ``User`` / ``UserSummary``: cached users and the embedded snapshot.
- ``ProgressEntry``: a cached lesson score.
- ``OperationKind`` / ``PendingOperation``: one queued outbox write.
- ``ResolvedOperation`` / ``SyncReport``: outcome of a reconciliation run.

Records are validated whenever they are read back from the store so the
engine never handles loosely-typed dicts.  All models are frozen; use
``model_copy(update=...)`` to derive changed records.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO 8601 timestamp for sorting.

    Naive timestamps are taken as UTC.  Missing or unparseable values
    map to the Unix epoch so they sort as the earliest entries.
    """
    if not value:
        return _EPOCH
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class UserSummary(BaseModel):
    """User snapshot embedded in progress entries by the server."""

    id: int
    name: str

    model_config = {"frozen": True}


class User(BaseModel):
    """A cached user.

    Attributes:
        id: Server id, or a negative temporary id while unconfirmed.
        name: Display name.
        created_at: ISO 8601 creation time (absent from list responses).
        pending: True while the user only exists locally.
    """

    id: int
    name: str
    created_at: str | None = None
    pending: bool = False

    model_config = {"frozen": True}


class ProgressEntry(BaseModel):
    """A cached lesson score.

    Attributes:
        id: Server id, or a negative temporary id while unconfirmed.
        user_id: Referenced user id; may be temporary for offline entries.
        user: Server-provided snapshot of the user, ``None`` offline.
        lesson: Lesson label.
        score: Score between 0 and 100.
        created_at: ISO 8601 creation time.
        pending: True while the entry only exists locally.
    """

    id: int
    user_id: int | None = None
    user: UserSummary | None = None
    lesson: str
    score: int = Field(ge=0, le=100)
    created_at: str | None = None
    pending: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _fill_user_id(cls, data: Any) -> Any:
        # Server responses carry only the embedded user.
        if isinstance(data, dict) and data.get("user_id") is None:
            user = data.get("user")
            if isinstance(user, dict) and "id" in user:
                data = {**data, "user_id": user["id"]}
        return data

    def belongs_to(self, user_id: int) -> bool:
        """Match on the embedded user or the fallback ``user_id``."""
        if self.user is not None and self.user.id == user_id:
            return True
        return self.user_id == user_id


class OperationKind(str, Enum):
    """Kinds of queued writes."""

    CREATE_USER = "create_user"
    CREATE_PROGRESS = "create_progress"


_REQUIRED_PAYLOAD_KEYS: dict[OperationKind, tuple[str, ...]] = {
    OperationKind.CREATE_USER: ("name",),
    OperationKind.CREATE_PROGRESS: ("user_id", "lesson", "score"),
}


class PendingOperation(BaseModel):
    """A write waiting in the outbox.

    Attributes:
        sequence: Queue position assigned by the store.
        kind: Which remote create to replay.
        payload: Request body for the remote call.
        temp_id: Temporary id of the optimistic record it will replace.
    """

    sequence: int
    kind: OperationKind
    payload: dict[str, Any]
    temp_id: int

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_payload(self) -> PendingOperation:
        missing = [
            key
            for key in _REQUIRED_PAYLOAD_KEYS[self.kind]
            if key not in self.payload
        ]
        if missing:
            raise ValueError(
                f"{self.kind.value} payload is missing {', '.join(missing)}"
            )
        if self.kind is OperationKind.CREATE_PROGRESS and not isinstance(
            self.payload["user_id"], int
        ):
            raise ValueError("create_progress payload user_id must be an int")
        return self

    @classmethod
    def from_stored(
        cls, sequence: int, stored: Any
    ) -> PendingOperation:
        """Validate a raw queue entry as returned by the store."""
        if not isinstance(stored, dict):
            raise ValueError(
                f"queue entry is {type(stored).__name__}, expected a mapping"
            )
        return cls.model_validate({**stored, "sequence": sequence})


class ResolvedOperation(BaseModel):
    """A queued write that reached the server."""

    sequence: int
    kind: OperationKind
    temp_id: int
    real_id: int

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Outcome of one reconciliation run.

    Attributes:
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run ended.
        resolved: Operations sent and cleared, in queue order.
        discarded: Malformed queue entries dropped.
        halted: True when a failure stopped the drain.
        error: Description of the failure that halted the drain.
        remaining: Queue length after the run.
        skipped: True when the run never started (offline or busy).
        refreshed: True when caches were refreshed after draining.
    """

    started_at: str
    completed_at: str | None = None
    resolved: list[ResolvedOperation] = []
    discarded: int = 0
    halted: bool = False
    error: str | None = None
    remaining: int = 0
    skipped: bool = False
    refreshed: bool = False

    model_config = {"frozen": True}

    @property
    def drained(self) -> bool:
        """True when the run left the queue empty."""
        return not self.skipped and self.remaining == 0

    def summary(self) -> str:
        """Format a human-readable summary of the run."""
        if self.skipped:
            return "Sync skipped (offline or already running)"
        lines = [
            "Sync report",
            f"  Sent:      {len(self.resolved)}",
            f"  Discarded: {self.discarded}",
            f"  Remaining: {self.remaining}",
        ]
        if self.halted:
            lines.append(f"  Halted:    {self.error or 'unknown error'}")
        if self.refreshed:
            lines.append("  Caches refreshed")
        return "\n".join(lines)
