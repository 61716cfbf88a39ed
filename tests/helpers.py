"""Shared test doubles for the engine's collaborators.

Import from here instead of redefining fakes in each test module::

    from tests.helpers import FakeFileProvider, FakeWatchProvider, fast_settings
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Callable

from docsync.events import Event, EventBus
from docsync.services.draft_store import Draft
from docsync.services.settings import Settings

# Short enough to keep the suite quick, long enough for edits to land inside it.
DEBOUNCE_MS = 40


def fast_settings(**overrides: Any) -> Settings:
    """Settings with a short debounce and no settle window."""

    base = Settings(autosave_delay_ms=DEBOUNCE_MS, settle_window_ms=0)
    return replace(base, **overrides)


async def wait_for_debounce(multiplier: float = 3.0) -> None:
    await asyncio.sleep(DEBOUNCE_MS / 1000.0 * multiplier)


class FakeFileProvider:
    """In-memory file system with switchable failures."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.writes: list[tuple[str, str]] = []
        self.renames: list[tuple[str, str]] = []
        self.fail_writes = False
        self.fail_renames = False

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise OSError(f"disk full while writing {path}")
        self.files[path] = content
        self.writes.append((path, content))

    async def rename_entry(self, old_path: str, new_path: str) -> None:
        if self.fail_renames:
            raise OSError(f"permission denied renaming {old_path}")
        if old_path not in self.files:
            raise FileNotFoundError(old_path)
        if new_path in self.files:
            raise FileExistsError(new_path)
        self.files[new_path] = self.files.pop(old_path)
        self.renames.append((old_path, new_path))


class FakeWatchHandle:
    def __init__(self, provider: FakeWatchProvider, path: str, callback: Callable[[str], None]) -> None:
        self.provider = provider
        self.path = path
        self.callback = callback
        self.closed = False
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeWatchProvider:
    """Records subscriptions and lets tests fire change notifications."""

    def __init__(self) -> None:
        self.handles: list[FakeWatchHandle] = []
        self.fail_paths: set[str] = set()

    def start_watching(self, path: str, on_change: Callable[[str], None]) -> FakeWatchHandle:
        if path in self.fail_paths:
            raise OSError(f"Path does not exist: {path}")
        handle = FakeWatchHandle(self, path, on_change)
        self.handles.append(handle)
        return handle

    @property
    def live(self) -> list[FakeWatchHandle]:
        return [handle for handle in self.handles if not handle.closed]

    def emit(self, path: str) -> None:
        """Fire a change for ``path`` on the newest handle watching it, even a closed one."""

        for handle in reversed(self.handles):
            if handle.path == path:
                handle.callback(path)
                return
        raise AssertionError(f"No watch was ever started for {path}")


class FailingDraftBackend:
    """Backend whose writes can be switched to fail."""

    def __init__(self, *, fail_load: bool = False) -> None:
        self.fail_load = fail_load
        self.fail_writes = False
        self.drafts: dict[str, Draft] = {}
        self.write_count = 0

    def load(self) -> dict[str, Draft]:
        if self.fail_load:
            raise OSError("drafts unavailable")
        return dict(self.drafts)

    def write(self, drafts: Any) -> None:
        if self.fail_writes:
            raise OSError("drafts unavailable")
        self.write_count += 1
        self.drafts = dict(drafts)


class EventRecorder:
    """Collects every published event of the given types."""

    def __init__(self, bus: EventBus, *event_types: type[Event]) -> None:
        self.events: list[Event] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]
