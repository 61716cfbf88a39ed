"""Service layer helpers (settings, draft persistence)."""

from .draft_store import Draft, DraftBackend, DraftStore, JsonDraftBackend, MemoryDraftBackend
from .settings import Settings, SettingsStore

__all__ = [
    "Draft",
    "DraftBackend",
    "DraftStore",
    "JsonDraftBackend",
    "MemoryDraftBackend",
    "Settings",
    "SettingsStore",
]
