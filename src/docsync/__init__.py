"""Local-first synchronization of an editor buffer, its file and its draft."""

from __future__ import annotations

from .domain import (
    AutosaveScheduler,
    AutosaveState,
    ChangeEvent,
    ExternalChangeCoordinator,
    ExternalChangePolicy,
    PendingNotification,
    RecoveryResolution,
    RecoveryResolver,
    RecoveryState,
    SavingGuard,
    Subscription,
    WatchSubscription,
)
from .engine import SyncEngine
from .errors import DocSyncError, RecoveryError, RenameError, StoreError, WatchError, WriteError
from .events import EventBus
from .providers import FileProvider, LocalFileProvider, WatchHandle, WatchProvider
from .services import (
    Draft,
    DraftStore,
    JsonDraftBackend,
    MemoryDraftBackend,
    Settings,
    SettingsStore,
)
from .utils.logging import install_null_handler

install_null_handler()

__all__ = [
    "AutosaveScheduler",
    "AutosaveState",
    "ChangeEvent",
    "DocSyncError",
    "Draft",
    "DraftStore",
    "EventBus",
    "ExternalChangeCoordinator",
    "ExternalChangePolicy",
    "FileProvider",
    "JsonDraftBackend",
    "LocalFileProvider",
    "MemoryDraftBackend",
    "PendingNotification",
    "RecoveryError",
    "RecoveryResolution",
    "RecoveryResolver",
    "RecoveryState",
    "RenameError",
    "SavingGuard",
    "Settings",
    "SettingsStore",
    "StoreError",
    "Subscription",
    "SyncEngine",
    "WatchError",
    "WatchHandle",
    "WatchProvider",
    "WatchSubscription",
    "WriteError",
]
