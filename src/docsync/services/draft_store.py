"""Durable store for unsaved document drafts, keyed by file path."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Mapping, Protocol

import jsonschema

from ..errors import StoreError
from ..utils import file_io
from .settings import docsync_home

__all__ = [
    "Draft",
    "DraftBackend",
    "DraftStore",
    "JsonDraftBackend",
    "MemoryDraftBackend",
]

LOGGER = logging.getLogger(__name__)
_STORE_FILENAME = "drafts.json"
_STORE_VERSION = 1
_DRAFT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["file_path", "content", "timestamp"],
    "properties": {
        "file_path": {"type": "string", "minLength": 1},
        "content": {"type": "string"},
        "timestamp": {"type": "integer", "minimum": 0},
    },
}
_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "version": {"type": "integer"},
        "drafts": {"type": "object"},
    },
}


@dataclass(slots=True, frozen=True)
class Draft:
    """Latest unsaved snapshot of a document."""

    file_path: str
    content: str
    timestamp: int


class DraftBackend(Protocol):
    """Blocking persistence medium behind :class:`DraftStore`."""

    def load(self) -> dict[str, Draft]:
        ...

    def write(self, drafts: Mapping[str, Draft]) -> None:
        ...


class MemoryDraftBackend:
    """Keeps drafts in process memory; nothing survives a restart."""

    def __init__(self, drafts: Mapping[str, Draft] | None = None) -> None:
        self.drafts: dict[str, Draft] = dict(drafts or {})

    def load(self) -> dict[str, Draft]:
        return dict(self.drafts)

    def write(self, drafts: Mapping[str, Draft]) -> None:
        self.drafts = dict(drafts)


class JsonDraftBackend:
    """Stores every draft in one JSON document, replaced atomically on each write."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else docsync_home() / _STORE_FILENAME
        self._entry_validator = jsonschema.Draft202012Validator(_DRAFT_SCHEMA)
        self._payload_validator = jsonschema.Draft202012Validator(_PAYLOAD_SCHEMA)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Draft]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Draft store {self._path} is unreadable: {exc}") from exc

        try:
            self._payload_validator.validate(payload)
        except jsonschema.ValidationError as exc:
            raise StoreError(f"Draft store {self._path} is corrupt: {exc.message}") from exc

        drafts: dict[str, Draft] = {}
        for key, entry in (payload.get("drafts") or {}).items():
            error = jsonschema.exceptions.best_match(self._entry_validator.iter_errors(entry))
            if error is not None:
                LOGGER.warning("Skipping malformed draft %r: %s", key, error.message)
                continue
            if entry["file_path"] != key:
                LOGGER.warning("Skipping draft %r keyed under a different path", key)
                continue
            drafts[key] = Draft(entry["file_path"], entry["content"], entry["timestamp"])
        return drafts

    def write(self, drafts: Mapping[str, Draft]) -> None:
        payload = {
            "version": _STORE_VERSION,
            "drafts": {key: asdict(draft) for key, draft in drafts.items()},
        }
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        file_io.replace_atomically(self._path, body)


class DraftStore:
    """Async, per-path serialized access to the drafts held by a backend.

    The in-memory index is authoritative for reads. Each mutation updates it
    in a single step and then flushes the whole index to the backend. When the
    backend fails, the store logs, switches to memory-only for the rest of the
    session and raises :class:`StoreError`; later calls keep working in memory.

    Paths are used verbatim as keys: two spellings of the same file (symlinks,
    case-insensitive file systems) are two drafts.
    """

    def __init__(self, backend: DraftBackend | None = None) -> None:
        self._backend: DraftBackend = backend if backend is not None else JsonDraftBackend()
        self._drafts: dict[str, Draft] = {}
        self._loaded = False
        self._degraded = False
        self._last_timestamp = 0
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._load_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()

    @property
    def degraded(self) -> bool:
        """``True`` once persistence failed and drafts live in memory only."""

        return self._degraded

    async def get(self, path: str) -> Draft | None:
        await self._ensure_loaded()
        async with self._path_lock(path):
            return self._drafts.get(path)

    async def save(self, path: str, content: str) -> Draft:
        """Upsert the draft for ``path``, replacing any previous one entirely."""

        if not path:
            raise ValueError("path is required")
        await self._ensure_loaded()
        async with self._path_lock(path):
            draft = Draft(file_path=path, content=content, timestamp=self._next_timestamp())
            self._drafts[path] = draft
            await self._flush()
            LOGGER.debug("Draft saved for %s (%d chars)", path, len(content))
            return draft

    async def remove(self, path: str) -> bool:
        """Discard the draft for ``path``; returns whether one existed."""

        await self._ensure_loaded()
        async with self._path_lock(path):
            if self._drafts.pop(path, None) is None:
                return False
            await self._flush()
            LOGGER.debug("Draft removed for %s", path)
            return True

    async def rename(self, old_path: str, new_path: str) -> bool:
        """Move the draft at ``old_path`` to ``new_path``; returns whether one moved.

        Both paths are locked, in sorted order, for the whole operation. If the
        flush fails the index is restored so the draft stays on ``old_path``.
        """

        if old_path == new_path:
            return False
        await self._ensure_loaded()
        async with contextlib.AsyncExitStack() as stack:
            for key in sorted((old_path, new_path)):
                await stack.enter_async_context(self._path_lock(key))
            draft = self._drafts.get(old_path)
            if draft is None:
                return False
            displaced = self._drafts.get(new_path)
            moved = Draft(file_path=new_path, content=draft.content, timestamp=draft.timestamp)
            self._drafts[new_path] = moved
            del self._drafts[old_path]
            try:
                await self._flush()
            except StoreError:
                self._drafts[old_path] = draft
                if displaced is None:
                    self._drafts.pop(new_path, None)
                else:
                    self._drafts[new_path] = displaced
                raise
            LOGGER.debug("Draft moved from %s to %s", old_path, new_path)
            return True

    async def paths(self) -> list[str]:
        await self._ensure_loaded()
        return sorted(self._drafts)

    async def clear(self) -> None:
        """Drop every draft, waiting for in-flight operations on each path."""

        await self._ensure_loaded()
        async with contextlib.AsyncExitStack() as stack:
            for key in sorted(set(self._locks) | set(self._drafts)):
                await stack.enter_async_context(self._path_lock(key))
            self._drafts.clear()
            await self._flush()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @contextlib.asynccontextmanager
    async def _path_lock(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[path] = lock
        self._lock_users[path] = self._lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[path] - 1
            if remaining:
                self._lock_users[path] = remaining
            else:
                # Paths without a draft keep no lock once nobody holds or awaits it.
                del self._lock_users[path]
                if path not in self._drafts:
                    self._locks.pop(path, None)

    def _next_timestamp(self) -> int:
        now = time.time_ns() // 1_000_000
        self._last_timestamp = max(now, self._last_timestamp + 1)
        return self._last_timestamp

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            try:
                loaded = await asyncio.to_thread(self._backend.load)
            except Exception as exc:
                self._degrade(exc)
                loaded = {}
            self._drafts.update(loaded)
            if loaded:
                self._last_timestamp = max(draft.timestamp for draft in loaded.values())
            self._loaded = True

    async def _flush(self) -> None:
        if self._degraded:
            return
        async with self._flush_lock:
            snapshot = dict(self._drafts)
            try:
                await asyncio.to_thread(self._backend.write, snapshot)
            except Exception as exc:
                self._degrade(exc)
                raise StoreError(f"Unable to persist drafts: {exc}") from exc

    def _degrade(self, exc: BaseException) -> None:
        if not self._degraded:
            LOGGER.warning("Draft persistence unavailable, keeping drafts in memory: %s", exc)
        self._degraded = True
