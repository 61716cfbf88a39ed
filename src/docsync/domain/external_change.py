"""Reacts to changes made to the open file by other programs."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..errors import StoreError
from ..events import EventBus, ExternalChangeDetected, FileReloaded
from ..providers import FileProvider, call_provider
from ..services.draft_store import DraftStore
from .autosave import AutosaveScheduler
from .saving_guard import SavingGuard
from .watch_subscription import ChangeEvent, Subscription, WatchSubscription

LOGGER = logging.getLogger(__name__)


class ExternalChangePolicy(enum.Enum):
    RELOAD = "reload"
    CONFIRM = "confirm"
    RELOAD_WHEN_CLEAN = "reload-when-clean"


@dataclass(slots=True)
class PendingNotification:
    """The single outstanding "changed on disk" prompt for a path."""

    path: str
    received_at: float
    count: int = 1


ReloadCallback = Callable[[str, str], None]


class ExternalChangeCoordinator:
    """Turns watch notifications into silent reloads or a pending prompt.

    Notifications arriving while the saving guard is active are echoes of the
    engine's own writes and are dropped on receipt. The rest are processed one
    at a time: a file that now reads exactly what the engine last wrote is a
    late echo; otherwise the policy decides between reloading and recording a
    :class:`PendingNotification`. Repeated notifications overwrite the slot.

    While a recovery choice is outstanding nothing is reloaded: the change is
    only recorded, so the stored draft and the prompt stay intact.
    """

    def __init__(
        self,
        watch: WatchSubscription,
        guard: SavingGuard,
        *,
        files: FileProvider,
        drafts: DraftStore,
        bus: EventBus,
        scheduler_provider: Callable[[], AutosaveScheduler | None],
        policy_provider: Callable[[], ExternalChangePolicy],
        on_reload: ReloadCallback,
        recovery_pending: Callable[[], bool] | None = None,
    ) -> None:
        self._watch = watch
        self._guard = guard
        self._files = files
        self._drafts = drafts
        self._bus = bus
        self._scheduler_provider = scheduler_provider
        self._policy_provider = policy_provider
        self._on_reload = on_reload
        self._recovery_pending = recovery_pending or (lambda: False)
        self._pending: PendingNotification | None = None
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._subscription: Subscription | None = watch.subscribe(self.handle_change)

    @property
    def pending(self) -> PendingNotification | None:
        return self._pending

    def handle_change(self, event: ChangeEvent) -> None:
        if self._guard.is_active():
            LOGGER.debug("Ignoring change to %s while saving", event.path)
            return
        task = asyncio.get_running_loop().create_task(self.process(event.path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def process(self, path: str) -> None:
        async with self._lock:
            if path != self._watch.current_path:
                return
            scheduler = self._scheduler_provider()
            if scheduler is None or scheduler.path != path:
                return
            try:
                content: str | None = await call_provider(self._files.read_file, path)
            except Exception as exc:
                LOGGER.warning("Changed file %s could not be read: %s", path, exc)
                content = None
            if content is not None and content == scheduler.last_written:
                LOGGER.debug("Change to %s matches the last write; treating as echo", path)
                return

            if self._recovery_pending():
                LOGGER.debug("Recovery for %s pending; recording change only", path)
                self._record(path)
                return

            policy = self._policy_provider()
            reload_now = policy is ExternalChangePolicy.RELOAD or (
                policy is ExternalChangePolicy.RELOAD_WHEN_CLEAN and not scheduler.dirty
            )
            if reload_now and content is not None:
                await self._reload(scheduler, content)
            else:
                self._record(path)

    async def accept(self) -> bool:
        """Reload the file named by the pending notification."""

        async with self._lock:
            pending = self._pending
            if pending is None:
                return False
            if self._recovery_pending():
                LOGGER.debug("Reload of %s deferred until recovery is resolved", pending.path)
                return False
            scheduler = self._scheduler_provider()
            if scheduler is None or scheduler.path != pending.path:
                self._pending = None
                return False
            try:
                content = await call_provider(self._files.read_file, pending.path)
            except Exception as exc:
                LOGGER.warning("Unable to reload %s: %s", pending.path, exc)
                return False
            await self._reload(scheduler, content)
            return True

    def dismiss(self) -> None:
        """Keep the buffer as it is and forget the pending notification."""

        if self._pending is not None:
            LOGGER.debug("External change to %s dismissed", self._pending.path)
        self._pending = None

    def reset(self) -> None:
        self._pending = None

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for task in list(self._tasks):
            task.cancel()
        self._pending = None

    async def _reload(self, scheduler: AutosaveScheduler, content: str) -> None:
        path = scheduler.path
        scheduler.set_baseline(content)
        self._on_reload(path, content)
        try:
            await self._drafts.remove(path)
        except StoreError as exc:
            LOGGER.warning("Unable to discard draft for reloaded %s: %s", path, exc)
        self._pending = None
        LOGGER.info("Reloaded %s from disk", path)
        self._bus.publish(FileReloaded(path=path))

    def _record(self, path: str) -> None:
        pending = self._pending
        if pending is not None and pending.path == path:
            pending.count += 1
            pending.received_at = time.monotonic()
        else:
            pending = PendingNotification(path=path, received_at=time.monotonic())
            self._pending = pending
        LOGGER.debug("External change to %s pending (x%d)", path, pending.count)
        self._bus.publish(ExternalChangeDetected(path=path, count=pending.count))


__all__ = ["ExternalChangeCoordinator", "ExternalChangePolicy", "PendingNotification"]
