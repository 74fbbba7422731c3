"""Exception types shared by the remote client, the stores and the engine.

Invalid user input is reported with plain ``ValueError`` (see
``school_sync.validators``); everything raised from I/O derives from
``SyncError`` so composing layers can catch the family in one place.
"""


class SyncError(Exception):
    """Base class for synchronization failures."""


class RemoteError(SyncError):
    """The remote API could not be reached or answered unsuccessfully.

    Args:
        message: Human-readable description.
        status_code: HTTP status code when a response was received.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} (HTTP {self.status_code})"
        return base


class StoreError(SyncError):
    """The local store failed to read or persist a collection."""
