"""Debounced autosave of the editor buffer to the real file or to a draft."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import Any, AsyncIterator, Callable, Coroutine

from ..errors import StoreError, WriteError
from ..events import (
    AutosaveCompleted,
    AutosaveFailed,
    DraftRemoved,
    DraftSaved,
    EventBus,
    StoreDegraded,
)
from ..providers import FileProvider, call_provider
from ..services.draft_store import DraftStore
from ..services.settings import Settings
from ..utils import file_io
from .saving_guard import SavingGuard

LOGGER = logging.getLogger(__name__)

SettingsProvider = Callable[[], Settings]


class AutosaveState(enum.Enum):
    IDLE = "idle"
    PENDING_WRITE = "pending-write"
    WRITING = "writing"


class AutosaveScheduler:
    """Coalesces buffer edits for one open file into single durable writes.

    Each edit that differs from the last written content re-arms two timers.
    The short draft timer upserts the buffer into the draft store so a crash
    loses at most that delay of typing. The longer autosave timer writes the
    file; only the content present when it fires is written. A successful
    write clears the draft, a failed one leaves the content there. Writes for
    the file are serialized by an internal lock.

    Untitled buffers, and every buffer while autosave is switched off in the
    settings, are only ever written to the draft store.
    """

    def __init__(
        self,
        path: str,
        *,
        files: FileProvider,
        drafts: DraftStore,
        guard: SavingGuard,
        settings_provider: SettingsProvider,
        bus: EventBus,
        baseline: str = "",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._path = path
        self._files = files
        self._drafts = drafts
        self._guard = guard
        self._settings_provider = settings_provider
        self._bus = bus
        self._loop = loop
        self._last_written = baseline
        self._latest = baseline
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[bool] | None = None
        self._draft_timer: asyncio.TimerHandle | None = None
        self._draft_tasks: set[asyncio.Task[None]] = set()
        self._has_draft = False
        self._write_lock = asyncio.Lock()
        self._writing = False
        self._closed = False
        self.last_error: WriteError | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def path(self) -> str:
        return self._path

    @property
    def last_written(self) -> str:
        """Content most recently known to match the file on disk."""

        return self._last_written

    @property
    def latest(self) -> str:
        return self._latest

    @property
    def state(self) -> AutosaveState:
        if self._writing:
            return AutosaveState.WRITING
        if self._timer is not None:
            return AutosaveState.PENDING_WRITE
        return AutosaveState.IDLE

    @property
    def pending(self) -> bool:
        """``True`` while a write is scheduled or running."""

        return self.state is not AutosaveState.IDLE

    @property
    def dirty(self) -> bool:
        return self._latest != self._last_written

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def on_buffer_changed(self, content: str) -> None:
        if self._closed:
            return
        self._latest = content
        if content == self._last_written:
            if self._timer is not None:
                LOGGER.debug("Buffer back at saved state for %s; pending write dropped", self._path)
            self._cancel_timer()
            self._cancel_draft_timer()
            if self._has_draft:
                self._spawn_draft_task(self._discard_stale_draft())
            return
        settings = self._settings()
        loop = self._resolve_loop()
        self._cancel_timer()
        self._timer = loop.call_later(settings.autosave_delay, self._fire)
        self._cancel_draft_timer()
        self._draft_timer = loop.call_later(settings.draft_delay, self._fire_draft)

    async def flush(self) -> None:
        """Write the latest buffer now, even with autosave switched off.

        Raises :class:`WriteError` on failure. Untitled buffers still only reach
        the draft store.
        """

        self._cancel_timer()
        if self._closed or not self.dirty:
            return
        await self._write(self._latest, raise_errors=True, explicit=True)

    async def cancel(self, *, persist_draft: bool = True) -> None:
        """Stop scheduling writes for this file.

        A pending write is dropped, not performed. Unwritten buffer content is
        recorded as a draft so reopening the file can recover it.
        """

        self._closed = True
        had_timer = self._timer is not None
        self._cancel_timer()
        self._cancel_draft_timer()
        await self.wait_idle()
        if persist_draft and self.dirty:
            await self._save_draft(self._latest)
        elif had_timer:
            LOGGER.debug("Pending write for %s cancelled", self._path)

    def set_baseline(self, content: str) -> None:
        """Adopt ``content`` as both file and buffer state, dropping any pending write."""

        self._cancel_timer()
        self._cancel_draft_timer()
        self._last_written = content
        self._latest = content

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(self._task)
        while self._draft_tasks:
            await asyncio.gather(*list(self._draft_tasks), return_exceptions=True)

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold off writes for the duration of the block."""

        async with self._write_lock:
            yield

    def retarget(self, path: str) -> None:
        """Point the scheduler at a renamed file. Call inside :meth:`exclusive`."""

        LOGGER.debug("Autosave retargeted from %s to %s", self._path, path)
        self._path = path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fire(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._task = self._resolve_loop().create_task(self._write(self._latest))

    def _fire_draft(self) -> None:
        self._draft_timer = None
        if self._closed:
            return
        self._spawn_draft_task(self._write_draft())

    def _spawn_draft_task(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self._resolve_loop().create_task(coro)
        self._draft_tasks.add(task)
        task.add_done_callback(self._draft_tasks.discard)

    async def _write_draft(self) -> None:
        async with self._write_lock:
            # The buffer may have moved on while the lock was held.
            content = self._latest
            if content != self._last_written:
                await self._save_draft(content)

    async def _discard_stale_draft(self) -> None:
        async with self._write_lock:
            if self._has_draft and self._latest == self._last_written:
                await self._remove_draft()

    async def _write(
        self, content: str, *, raise_errors: bool = False, explicit: bool = False
    ) -> bool:
        async with self._write_lock:
            if content == self._last_written:
                return True
            self._writing = True
            try:
                settings = self._settings()
                draft_only = file_io.is_untitled(self._path) or not (
                    explicit or settings.autosave_enabled
                )
                if draft_only:
                    await self._save_draft(content)
                    return True
                self._guard.settle_seconds = settings.settle_window
                with self._guard.hold():
                    return await self._write_file(content, raise_errors=raise_errors)
            finally:
                self._writing = False
                if self._latest == content:
                    self._cancel_draft_timer()

    async def _write_file(self, content: str, *, raise_errors: bool) -> bool:
        path = self._path
        try:
            await call_provider(self._files.write_file, path, content)
        except Exception as exc:
            error = WriteError(path, f"Unable to write {path}: {exc}")
            self.last_error = error
            LOGGER.warning("Autosave of %s failed: %s", path, exc)
            await self._save_draft(content)
            self._bus.publish(AutosaveFailed(path=path, error=str(exc)))
            if raise_errors:
                raise error from exc
            return False

        self._last_written = content
        self.last_error = None
        await self._remove_draft()
        LOGGER.debug("Autosaved %s (%d chars)", path, len(content))
        self._bus.publish(
            AutosaveCompleted(path=path, content_hash=file_io.compute_text_digest(content))
        )
        return True

    async def _save_draft(self, content: str) -> None:
        self._has_draft = True
        try:
            draft = await self._drafts.save(self._path, content)
        except StoreError as exc:
            LOGGER.warning("Draft for %s kept in memory only: %s", self._path, exc)
            self._bus.publish(StoreDegraded(error=str(exc)))
            return
        self._bus.publish(DraftSaved(path=self._path, timestamp=draft.timestamp))

    async def _remove_draft(self) -> None:
        self._has_draft = False
        try:
            removed = await self._drafts.remove(self._path)
        except StoreError as exc:
            LOGGER.warning("Unable to discard draft for %s: %s", self._path, exc)
            self._bus.publish(StoreDegraded(error=str(exc)))
            return
        if removed:
            self._bus.publish(DraftRemoved(path=self._path))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_draft_timer(self) -> None:
        if self._draft_timer is not None:
            self._draft_timer.cancel()
            self._draft_timer = None

    def _settings(self) -> Settings:
        return self._settings_provider()

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop


__all__ = ["AutosaveScheduler", "AutosaveState", "SettingsProvider"]
