"""Suppresses reactions to change notifications caused by the engine's own writes."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 1.0


class SavingGuard:
    """Reference-counted "saving in progress" flag.

    ``begin`` increments the counter immediately; ``end`` decrements it only
    after the settle window so that notifications delivered late by the file
    system are still treated as echoes. Nested pairs keep the guard active
    until the last settle window has elapsed.

    One guard belongs to one engine instance and must only be touched from
    that engine's event loop.
    """

    def __init__(
        self,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._settle_seconds = max(0.0, settle_seconds)
        self._loop = loop
        self._depth = 0
        self._settling: set[asyncio.TimerHandle] = set()

    @property
    def settle_seconds(self) -> float:
        return self._settle_seconds

    @settle_seconds.setter
    def settle_seconds(self, value: float) -> None:
        self._settle_seconds = max(0.0, value)

    @property
    def depth(self) -> int:
        return self._depth

    def is_active(self) -> bool:
        return self._depth > 0

    def begin(self) -> None:
        self._depth += 1
        LOGGER.debug("SavingGuard.begin: depth=%d", self._depth)

    def end(self) -> None:
        if self._depth <= 0:
            LOGGER.warning("SavingGuard.end called without a matching begin")
            return
        if self._settle_seconds <= 0:
            self._release(None)
            return
        handle: asyncio.TimerHandle | None = None

        def _settled() -> None:
            self._release(handle)

        handle = self._resolve_loop().call_later(self._settle_seconds, _settled)
        self._settling.add(handle)

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Keep the guard active for the duration of the block plus the settle window."""

        self.begin()
        try:
            yield
        finally:
            self.end()

    def close(self) -> None:
        """Cancel pending settle timers and reset the counter."""

        for handle in self._settling:
            handle.cancel()
        self._settling.clear()
        self._depth = 0

    def _release(self, handle: asyncio.TimerHandle | None) -> None:
        if handle is not None:
            self._settling.discard(handle)
        self._depth = max(0, self._depth - 1)
        LOGGER.debug("SavingGuard settled: depth=%d", self._depth)

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop


__all__ = ["SavingGuard", "DEFAULT_SETTLE_SECONDS"]
