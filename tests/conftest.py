"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from docsync.events import EventBus
from docsync.services.draft_store import DraftStore, MemoryDraftBackend

from tests.helpers import FakeFileProvider, FakeWatchProvider


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Keep settings, drafts and logs out of the real home directory."""

    home = tmp_path / "docsync-home"
    monkeypatch.setenv("DOCSYNC_HOME", str(home))
    for name in (
        "DOCSYNC_AUTOSAVE",
        "DOCSYNC_AUTOSAVE_DELAY_MS",
        "DOCSYNC_DRAFT_DELAY_MS",
        "DOCSYNC_SETTLE_WINDOW_MS",
        "DOCSYNC_VIEW_MODE",
        "DOCSYNC_EXTERNAL_CHANGE_POLICY",
        "DOCSYNC_DRAFT_STORE_PATH",
        "DOCSYNC_LOG_DIR",
        "DOCSYNC_DEBUG_LOGGING",
        "DOCSYNC_LOG_TO_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def draft_backend() -> MemoryDraftBackend:
    return MemoryDraftBackend()


@pytest.fixture
def drafts(draft_backend: MemoryDraftBackend) -> DraftStore:
    return DraftStore(draft_backend)


@pytest.fixture
def files() -> FakeFileProvider:
    return FakeFileProvider({"note.md": "# Note\n"})


@pytest.fixture
def watcher() -> FakeWatchProvider:
    return FakeWatchProvider()
