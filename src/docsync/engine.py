"""Synchronization engine tying the editor buffer, the file and its draft together."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .domain.autosave import AutosaveScheduler, SettingsProvider
from .domain.external_change import (
    ExternalChangeCoordinator,
    ExternalChangePolicy,
    PendingNotification,
)
from .domain.recovery import RecoveryResolution, RecoveryResolver, RecoveryState
from .domain.saving_guard import SavingGuard
from .domain.watch_subscription import Subscription, WatchSubscription
from .errors import RenameError, StoreError, WatchError, WriteError
from .events import (
    BufferReplaced,
    EventBus,
    ExternalChangeDetected,
    FileRenamed,
    RecoveryRequired,
    StoreDegraded,
    WatchFailed,
)
from .providers import FileProvider, WatchProvider, call_provider
from .services.draft_store import DraftStore, JsonDraftBackend
from .services.settings import Settings
from .utils import file_io
from .utils.logging import configure_from_settings

LOGGER = logging.getLogger(__name__)

_RESOLUTION_REASONS = {
    (RecoveryState.USE_FILE, False): "open",
    (RecoveryState.USE_FILE, True): "recovered-file",
    (RecoveryState.USE_DRAFT, True): "recovered-draft",
}


class SyncEngine:
    """Keeps one open document consistent across buffer, file and draft.

    All methods must be called from the event loop the engine runs on. The
    editor reports edits through :meth:`on_buffer_changed` and listens for
    :class:`~docsync.events.BufferReplaced` to learn when the engine swapped
    the buffer (open, recovery, reload).

    Example::

        engine = SyncEngine(files=LocalFileProvider(), watcher=my_watcher)
        resolver = await engine.open_file("/notes/note.md")
        if resolver.awaiting_choice:
            resolver.choose_draft()
        engine.on_buffer_changed("/notes/note.md", "hello")
    """

    def __init__(
        self,
        *,
        files: FileProvider,
        watcher: WatchProvider,
        drafts: DraftStore | None = None,
        settings_provider: SettingsProvider | None = None,
        bus: EventBus | None = None,
        external_change_policy: ExternalChangePolicy | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._files = files
        self._settings_provider: SettingsProvider = settings_provider or Settings
        settings = self._settings_provider()
        configure_from_settings(settings)
        self._bus: EventBus = bus if bus is not None else EventBus()
        self._drafts = (
            drafts if drafts is not None else DraftStore(JsonDraftBackend(settings.draft_store_path))
        )
        self._guard = SavingGuard(settings.settle_window, loop=loop)
        self._watch = WatchSubscription(watcher, loop=loop)
        self._policy_override = external_change_policy
        self._loop = loop
        self._path: str | None = None
        self._buffer = ""
        self._scheduler: AutosaveScheduler | None = None
        self._resolver: RecoveryResolver | None = None
        self._watch_error: WatchError | None = None
        self._session_lock = asyncio.Lock()
        self._coordinator = ExternalChangeCoordinator(
            self._watch,
            self._guard,
            files=files,
            drafts=self._drafts,
            bus=self._bus,
            scheduler_provider=lambda: self._scheduler,
            policy_provider=self._external_change_policy,
            on_reload=self._handle_reload,
            recovery_pending=lambda: self.is_recovery_pending,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def drafts(self) -> DraftStore:
        return self._drafts

    @property
    def guard(self) -> SavingGuard:
        return self._guard

    @property
    def watch(self) -> WatchSubscription:
        return self._watch

    @property
    def scheduler(self) -> AutosaveScheduler | None:
        return self._scheduler

    @property
    def recovery(self) -> RecoveryResolver | None:
        return self._resolver

    @property
    def current_path(self) -> str | None:
        return self._path

    @property
    def file_extension(self) -> str:
        return file_io.file_extension(self._path)

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def is_dirty(self) -> bool:
        return self._scheduler is not None and self._scheduler.dirty

    @property
    def is_save_pending(self) -> bool:
        return self._scheduler is not None and self._scheduler.pending

    @property
    def is_recovery_pending(self) -> bool:
        return self._resolver is not None and self._resolver.awaiting_choice

    @property
    def pending_notification(self) -> PendingNotification | None:
        return self._coordinator.pending

    @property
    def watch_error(self) -> WatchError | None:
        """Why change detection is off for the open file, if it is."""

        return self._watch_error

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def open_file(self, path: str) -> RecoveryResolver:
        """Open ``path`` and return its recovery resolver.

        The previous file is closed first. If the resolver is awaiting a
        choice, the buffer keeps the file content until the caller picks.
        File read errors propagate unchanged.
        """

        if not path:
            raise ValueError("path is required")
        async with self._session_lock:
            await self._close_current()
            if file_io.is_untitled(path):
                content = ""
            else:
                content = await call_provider(self._files.read_file, path)
            self._path = path
            self._buffer = content
            self._scheduler = self._create_scheduler(path, content)
            resolver = RecoveryResolver(
                path,
                content,
                self._drafts,
                on_resolved=self._apply_resolution,
                reader=None if file_io.is_untitled(path) else self._reader_for(path),
            )
            self._resolver = resolver
            await resolver.resolve()
            if resolver.awaiting_choice and resolver.draft is not None:
                self._bus.publish(
                    RecoveryRequired(path=path, draft_timestamp=resolver.draft.timestamp)
                )
            await self._start_watch(path)
            LOGGER.info("Opened %s (%s)", path, resolver.state.value)
            return resolver

    async def close_file(self) -> None:
        async with self._session_lock:
            await self._close_current()

    async def aclose(self) -> None:
        await self.close_file()
        await self._coordinator.wait_idle()
        self._coordinator.close()
        self._guard.close()

    # ------------------------------------------------------------------
    # Editing surface
    # ------------------------------------------------------------------
    def on_buffer_changed(self, path: str, content: str) -> None:
        if path != self._path or self._scheduler is None:
            LOGGER.debug("Ignoring buffer change for %s; %s is open", path, self._path)
            return
        self._buffer = content
        if self.is_recovery_pending:
            LOGGER.debug("Recovery for %s pending; autosave deferred", path)
            return
        self._scheduler.on_buffer_changed(content)

    async def save_now(self) -> None:
        """Write the buffer immediately; raises :class:`WriteError` on failure."""

        if self._scheduler is None:
            return
        if self.is_recovery_pending:
            raise WriteError(self._scheduler.path, "Resolve the pending recovery before saving")
        await self._scheduler.flush()

    async def rename_file(self, new_path: str) -> None:
        """Rename the open file and move its draft and watch along with it.

        All-or-nothing: on failure the file rename is rolled back, the draft
        and watch stay on the old path, and :class:`RenameError` is raised.
        """

        async with self._session_lock:
            scheduler = self._scheduler
            old_path = self._path
            if scheduler is None or old_path is None:
                raise RenameError(old_path or "", new_path, "No file is open")
            if file_io.is_untitled(old_path) or file_io.is_untitled(new_path):
                raise RenameError(old_path, new_path, "Untitled documents are saved, not renamed")
            if self.is_recovery_pending:
                raise RenameError(
                    old_path, new_path, "Resolve the pending recovery before renaming"
                )
            if new_path == old_path:
                return
            async with scheduler.exclusive():
                with self._guard.hold():
                    try:
                        await call_provider(self._files.rename_entry, old_path, new_path)
                    except Exception as exc:
                        raise RenameError(old_path, new_path, f"Rename failed: {exc}") from exc
                    try:
                        await self._drafts.rename(old_path, new_path)
                    except StoreError as exc:
                        await self._rollback_rename(old_path, new_path)
                        raise RenameError(
                            old_path, new_path, f"Draft could not follow the rename: {exc}"
                        ) from exc
                    scheduler.retarget(new_path)
                    self._path = new_path
            self._coordinator.reset()
            await self._start_watch(new_path)
            LOGGER.info("Renamed %s to %s", old_path, new_path)
            self._bus.publish(FileRenamed(old_path=old_path, new_path=new_path))

    async def save_as(self, new_path: str) -> None:
        """Write the buffer to ``new_path`` and continue the session there.

        The draft of an untitled document is discarded once its content has
        a real file.
        """

        if not new_path or file_io.is_untitled(new_path):
            raise ValueError("save_as needs a real file path")
        async with self._session_lock:
            scheduler = self._scheduler
            old_path = self._path
            if scheduler is None or old_path is None:
                raise WriteError(new_path, "No document is open")
            content = self._buffer
            async with scheduler.exclusive():
                with self._guard.hold():
                    try:
                        await call_provider(self._files.write_file, new_path, content)
                    except Exception as exc:
                        raise WriteError(new_path, f"Unable to write {new_path}: {exc}") from exc
            await scheduler.cancel(persist_draft=False)
            if file_io.is_untitled(old_path):
                try:
                    await self._drafts.remove(old_path)
                except StoreError as exc:
                    self._report_store_error(exc)
            self._path = new_path
            self._resolver = None
            self._scheduler = self._create_scheduler(new_path, content)
            self._coordinator.reset()
            await self._start_watch(new_path)
            LOGGER.info("Saved %s as %s", old_path, new_path)
            self._bus.publish(FileRenamed(old_path=old_path, new_path=new_path))

    # ------------------------------------------------------------------
    # External changes
    # ------------------------------------------------------------------
    def on_external_change(
        self, handler: Callable[[ExternalChangeDetected], None]
    ) -> Subscription:
        """Subscribe ``handler`` to pending-notification events."""

        return Subscription(self._bus.subscribe(ExternalChangeDetected, handler))

    async def accept_external_change(self) -> bool:
        return await self._coordinator.accept()

    def dismiss_external_change(self) -> None:
        self._coordinator.dismiss()

    async def wait_idle(self) -> None:
        """Wait for scheduled-but-running writes and change processing to finish."""

        if self._scheduler is not None:
            await self._scheduler.wait_idle()
        await self._coordinator.wait_idle()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _create_scheduler(self, path: str, baseline: str) -> AutosaveScheduler:
        return AutosaveScheduler(
            path,
            files=self._files,
            drafts=self._drafts,
            guard=self._guard,
            settings_provider=self._settings_provider,
            bus=self._bus,
            baseline=baseline,
            loop=self._loop,
        )

    async def _close_current(self) -> None:
        scheduler = self._scheduler
        if scheduler is not None:
            await scheduler.cancel(persist_draft=not self.is_recovery_pending)
            LOGGER.debug("Closed %s", scheduler.path)
        self._coordinator.reset()
        await self._watch.unwatch()
        self._scheduler = None
        self._resolver = None
        self._path = None
        self._buffer = ""
        self._watch_error = None

    async def _start_watch(self, path: str) -> None:
        self._watch_error = None
        try:
            await self._watch.watch(path)
        except WatchError as exc:
            self._watch_error = exc
            LOGGER.warning("External change detection disabled for %s: %s", path, exc)
            self._bus.publish(WatchFailed(path=path, error=str(exc)))

    async def _rollback_rename(self, old_path: str, new_path: str) -> None:
        try:
            await call_provider(self._files.rename_entry, new_path, old_path)
        except Exception:
            LOGGER.exception("Unable to roll back rename of %s to %s", old_path, new_path)

    def _apply_resolution(self, resolution: RecoveryResolution) -> None:
        if resolution.path != self._path or self._scheduler is None:
            return
        self._buffer = resolution.content
        reason = _RESOLUTION_REASONS.get((resolution.state, resolution.prompted), "open")
        self._bus.publish(
            BufferReplaced(path=resolution.path, content=resolution.content, reason=reason)
        )
        if resolution.state is RecoveryState.USE_DRAFT:
            self._scheduler.on_buffer_changed(resolution.content)
        elif resolution.prompted:
            # The file was read again; it is both the buffer and the saved state now.
            self._scheduler.set_baseline(resolution.content)
            self._coordinator.reset()

    def _reader_for(self, path: str) -> Callable[[], Awaitable[str]]:
        async def read() -> str:
            return await call_provider(self._files.read_file, path)

        return read

    def _handle_reload(self, path: str, content: str) -> None:
        if path != self._path:
            return
        self._buffer = content
        self._bus.publish(BufferReplaced(path=path, content=content, reason="reload"))

    def _external_change_policy(self) -> ExternalChangePolicy:
        if self._policy_override is not None:
            return self._policy_override
        return ExternalChangePolicy(self._settings_provider().external_change_policy)

    def _report_store_error(self, exc: StoreError) -> None:
        LOGGER.warning("Draft store degraded: %s", exc)
        self._bus.publish(StoreDegraded(error=str(exc)))


__all__ = ["SyncEngine"]
