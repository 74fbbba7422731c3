"""Shared pytest fixtures for school-sync tests."""

from __future__ import annotations

from typing import Any

import pytest

from school_sync.config import Config
from school_sync.errors import RemoteError
from school_sync.sync.engine import SyncEngine
from school_sync.sync.store import MemoryStore

_ENV_KEYS = (
    "SCHOOL_SYNC_API_URL",
    "API_BASE_URL",
    "SCHOOL_SYNC_DATA_DIR",
    "SCHOOL_SYNC_CONNECT_TIMEOUT",
    "SCHOOL_SYNC_READ_TIMEOUT",
    "SCHOOL_SYNC_INTERVAL",
    "SCHOOL_SYNC_INSECURE",
    "SCHOOL_SYNC_DEBUG",
    "SCHOOL_SYNC_CONFIG",
    "LOG_LEVEL",
)


class FakeRemote:
    """In-memory stand-in for ``ProgressApiClient``.

    Users get ids from 1, progress entries from 101.  ``fail_creates``
    holds 1-based indexes of create calls that must fail; setting
    ``reachable = False`` fails every call.  Progress for an unknown
    user is rejected the way the real API would reject it.
    """

    def __init__(self) -> None:
        self.users: dict[int, dict[str, Any]] = {}
        self.progress: dict[int, dict[str, Any]] = {}
        self.next_user_id = 1
        self.next_progress_id = 101
        self.create_calls: list[tuple] = []
        self.list_calls: list[tuple] = []
        self.fail_creates: set[int] = set()
        self.reachable = True
        self.closed = False

    def _stamp(self) -> str:
        return f"2026-01-01T00:00:{len(self.create_calls):02d}+00:00"

    def _check_create(self, call: tuple) -> None:
        if not self.reachable:
            raise RemoteError("connection refused")
        self.create_calls.append(call)
        if len(self.create_calls) in self.fail_creates:
            raise RemoteError("server error", status_code=500)

    def list_users(self) -> list[dict[str, Any]]:
        if not self.reachable:
            raise RemoteError("connection refused")
        self.list_calls.append(("users",))
        return [
            {"id": u["id"], "name": u["name"]} for u in self.users.values()
        ]

    def create_user(self, name: str) -> dict[str, Any]:
        self._check_create(("user", name))
        user = {
            "id": self.next_user_id,
            "name": name,
            "created_at": self._stamp(),
        }
        self.users[user["id"]] = user
        self.next_user_id += 1
        return dict(user)

    def list_progress(self, user_id: int | None = None) -> list[dict[str, Any]]:
        if not self.reachable:
            raise RemoteError("connection refused")
        self.list_calls.append(("progress", user_id))
        return [
            dict(p)
            for p in self.progress.values()
            if user_id is None or p["user"]["id"] == user_id
        ]

    def create_progress(
        self, user_id: int, lesson: str, score: int
    ) -> dict[str, Any]:
        self._check_create(("progress", user_id, lesson, score))
        if user_id not in self.users:
            raise RemoteError(f"unknown user {user_id}", status_code=422)
        user = self.users[user_id]
        entry = {
            "id": self.next_progress_id,
            "user": {"id": user["id"], "name": user["name"]},
            "lesson": lesson,
            "score": score,
            "created_at": self._stamp(),
        }
        self.progress[entry["id"]] = entry
        self.next_progress_id += 1
        return dict(entry)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every school-sync environment variable."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        api_url="https://api.example.com",
        data_dir="/tmp/school-sync-test",
        insecure=False,
    )


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(remote, store):
    """Engine that starts online."""
    return SyncEngine(client=remote, store=store, online=True)


@pytest.fixture
def offline_engine(remote, store):
    """Engine that starts offline."""
    return SyncEngine(client=remote, store=store, online=False)
