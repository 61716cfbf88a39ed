"""Collaborator interfaces consumed by the engine, plus the local file provider."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, TypeVar, Union, runtime_checkable

from .utils import file_io

__all__ = [
    "ChangeCallback",
    "FileProvider",
    "LocalFileProvider",
    "WatchHandle",
    "WatchProvider",
    "call_provider",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
MaybeAwaitable = Union[T, Awaitable[T]]
ChangeCallback = Callable[[str], None]


@runtime_checkable
class FileProvider(Protocol):
    """Reads, writes and renames files on behalf of the engine.

    Implementations may be synchronous or return awaitables.
    """

    def read_file(self, path: str) -> MaybeAwaitable[str]:
        ...

    def write_file(self, path: str, content: str) -> MaybeAwaitable[None]:
        ...

    def rename_entry(self, old_path: str, new_path: str) -> MaybeAwaitable[None]:
        ...


@runtime_checkable
class WatchHandle(Protocol):
    """Live subscription returned by :meth:`WatchProvider.start_watching`."""

    def close(self) -> Any:
        ...


@runtime_checkable
class WatchProvider(Protocol):
    """Delivers "path changed" notifications for one path.

    ``on_change`` may be invoked from any thread; closing the returned handle
    stops the watch.
    """

    def start_watching(self, path: str, on_change: ChangeCallback) -> MaybeAwaitable[WatchHandle]:
        ...


async def call_provider(func: Callable[..., Any], *args: Any) -> Any:
    """Invoke a provider method and await its result when it is awaitable."""

    result = func(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class LocalFileProvider:
    """File provider backed by the local file system.

    Blocking I/O runs in worker threads so the engine's loop stays responsive.
    """

    def __init__(self, *, newline: str = "\n", encoding: str = "utf-8") -> None:
        self._newline = newline
        self._encoding = encoding

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(file_io.read_text, path)

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.to_thread(
            file_io.write_text,
            path,
            content,
            encoding=self._encoding,
            newline=self._newline,
        )
        LOGGER.debug("Wrote %d chars to %s", len(content), path)

    async def rename_entry(self, old_path: str, new_path: str) -> None:
        if Path(new_path).exists():
            raise FileExistsError(new_path)
        await asyncio.to_thread(os.rename, old_path, new_path)
        LOGGER.debug("Renamed %s to %s", old_path, new_path)
