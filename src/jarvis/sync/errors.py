"""Error taxonomy for the sync core.

A missing remote file is not an error: read operations return ``None`` and
deletes return ``False``.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync failures."""


class RemoteError(SyncError):
    """Network, auth or server failure talking to the remote repository."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConflictError(RemoteError):
    """The remote moved on since our revision token was read."""


class DecodeError(SyncError):
    """A remote file does not parse as the expected entity."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason
