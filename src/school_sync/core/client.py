import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..errors import RemoteError

logger = logging.getLogger(__name__)


class ProgressApiClient:
    """Blocking HTTP client for the Users & Progress JSON API.

    Endpoints:
        GET  /api/users
        POST /api/users                 {"name": ...}
        GET  /api/progress[?user_id=N]
        POST /api/progress              {"user_id": ..., "lesson": ..., "score": ...}

    Every failure (transport error, timeout, non-2xx status, unexpected
    body) is raised as ``RemoteError``.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self._sessions: list[requests.Session] = []
        self._lock = threading.Lock()
        self.base_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        session.headers.update({"Content-Type": "application/json"})
        with self._lock:
            self._sessions.append(session)
        return session

    def close(self) -> None:
        """Close every session opened by any thread."""
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """
        Issue one request and return the decoded JSON body.
        """
        url = f"{self.base_url}{path}"
        logger.debug("%s %s params=%s", method, url, params)
        try:
            response = self._get_session().request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=(
                    self.config.connect_timeout,
                    self.config.read_timeout,
                ),
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = (
                exc.response.status_code
                if exc.response is not None
                else None
            )
            raise RemoteError(
                f"{method} {path} rejected: {exc}", status_code=status
            ) from exc
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc

    def _expect_list(self, data: Any, path: str) -> list[dict[str, Any]]:
        if not isinstance(data, list):
            raise RemoteError(
                f"GET {path} returned {type(data).__name__}, expected a list"
            )
        return [item for item in data if isinstance(item, dict)]

    def _expect_record(self, data: Any, path: str) -> dict[str, Any]:
        if not isinstance(data, dict) or "id" not in data:
            raise RemoteError(
                f"POST {path} returned no record id"
            )
        return data

    def list_users(self) -> list[dict[str, Any]]:
        """
        Fetch every user as ``{id, name}``.
        """
        return self._expect_list(
            self._request("GET", "/api/users"), "/api/users"
        )

    def create_user(self, name: str) -> dict[str, Any]:
        """
        Create a user and return ``{id, name, created_at}``.
        """
        return self._expect_record(
            self._request("POST", "/api/users", json_body={"name": name}),
            "/api/users",
        )

    def list_progress(
        self, user_id: int | None = None
    ) -> list[dict[str, Any]]:
        """
        Fetch progress entries, optionally only those of *user_id*.
        """
        params = None if user_id is None else {"user_id": user_id}
        return self._expect_list(
            self._request("GET", "/api/progress", params=params),
            "/api/progress",
        )

    def create_progress(
        self, user_id: int, lesson: str, score: int
    ) -> dict[str, Any]:
        """
        Record a score and return the stored entry with its embedded user.

        Raises:
            ValueError: If *user_id* is a temporary (negative) id.
            RemoteError: On any transport or server failure.
        """
        if user_id < 0:
            raise ValueError(
                f"Refusing to send temporary user id {user_id} to the server"
            )
        return self._expect_record(
            self._request(
                "POST",
                "/api/progress",
                json_body={
                    "user_id": user_id,
                    "lesson": lesson,
                    "score": score,
                },
            ),
            "/api/progress",
        )
