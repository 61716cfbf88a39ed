"""Exception types raised by the synchronization engine.

None of these are fatal: each one degrades the guarantees for a single file
while the rest of the engine keeps operating.
"""

from __future__ import annotations

__all__ = [
    "DocSyncError",
    "StoreError",
    "WriteError",
    "WatchError",
    "RenameError",
    "RecoveryError",
]


class DocSyncError(Exception):
    """Base class for engine errors."""


class StoreError(DocSyncError):
    """Draft persistence is unavailable or its payload is corrupt."""


class WriteError(DocSyncError):
    """Writing the buffer to the real file failed; the file is unchanged."""

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(message or f"Unable to write {path}")
        self.path = path


class WatchError(DocSyncError):
    """An external-change subscription could not be established."""

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(message or f"Unable to watch {path}")
        self.path = path


class RenameError(DocSyncError):
    """A rename did not complete; drafts and the watch target stay on ``old_path``."""

    def __init__(self, old_path: str, new_path: str, message: str | None = None) -> None:
        super().__init__(message or f"Unable to rename {old_path} to {new_path}")
        self.old_path = old_path
        self.new_path = new_path


class RecoveryError(DocSyncError):
    """A recovery choice was made on a resolver that is not awaiting one."""
