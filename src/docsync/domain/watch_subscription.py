"""Single active external-change subscription for the open file."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from ..errors import WatchError
from ..providers import WatchHandle, WatchProvider, call_provider
from ..utils import file_io

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """The watched file changed on disk."""

    path: str


ChangeListener = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for a registered listener; ``close`` is idempotent."""

    __slots__ = ("_release", "_closed")

    def __init__(self, release: Callable[[], None]) -> None:
        self._release = release
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._release()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class WatchSubscription:
    """Owns at most one provider subscription at a time.

    Every ``watch`` call bumps a generation counter. Provider callbacks are
    marshalled onto the loop and dropped at delivery time unless they belong
    to the current generation and the current path, so nothing buffered for a
    previous file reaches listeners once ``watch`` has moved on.
    """

    def __init__(
        self,
        provider: WatchProvider,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._provider = provider
        self._loop = loop
        self._handle: WatchHandle | None = None
        self._path: str | None = None
        self._generation = 0
        self._listeners: list[ChangeListener] = []
        self._switch_lock = asyncio.Lock()

    @property
    def current_path(self) -> str | None:
        return self._path

    @property
    def active(self) -> bool:
        return self._handle is not None

    async def watch(self, path: str | None) -> None:
        """Stop the current watch and start one for ``path``.

        Empty and untitled paths only stop watching. Raises :class:`WatchError`
        when the provider cannot start; the subscription is then stopped.
        """

        async with self._switch_lock:
            await self._stop()
            if not path or file_io.is_untitled(path):
                return
            self._resolve_loop()
            generation = self._generation

            def _on_change(changed_path: str) -> None:
                self._schedule_delivery(generation, changed_path)

            try:
                handle = await call_provider(self._provider.start_watching, path, _on_change)
            except Exception as exc:
                self._generation += 1
                LOGGER.warning("Unable to watch %s: %s", path, exc)
                raise WatchError(path, f"Unable to watch {path}: {exc}") from exc
            if generation != self._generation:  # pragma: no cover - guarded by the lock
                await self._close_handle(handle)
                return
            self._handle = handle
            self._path = path
            LOGGER.debug("Watching %s (generation %d)", path, generation)

    async def unwatch(self) -> None:
        async with self._switch_lock:
            await self._stop()

    def subscribe(self, listener: ChangeListener) -> Subscription:
        self._listeners.append(listener)

        def _release() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_release)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _stop(self) -> None:
        self._generation += 1
        handle, path = self._handle, self._path
        self._handle = None
        self._path = None
        if handle is None:
            return
        try:
            await self._close_handle(handle)
        except Exception:
            LOGGER.warning("Failed to stop watching %s", path, exc_info=True)
        else:
            LOGGER.debug("Stopped watching %s", path)

    @staticmethod
    async def _close_handle(handle: WatchHandle) -> None:
        await call_provider(handle.close)

    def _schedule_delivery(self, generation: int, changed_path: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.call_soon(self._deliver, generation, changed_path)
        else:
            loop.call_soon_threadsafe(self._deliver, generation, changed_path)

    def _deliver(self, generation: int, changed_path: str) -> None:
        if generation != self._generation or changed_path != self._path:
            LOGGER.debug("Dropping stale change event for %s", changed_path)
            return
        event = ChangeEvent(path=changed_path)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Change listener failed for %s", changed_path)

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop


__all__ = ["ChangeEvent", "ChangeListener", "Subscription", "WatchSubscription"]
