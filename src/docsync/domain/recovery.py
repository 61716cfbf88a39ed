"""Decides, when a file is opened, whether its stored draft needs the user's attention."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..errors import RecoveryError, StoreError
from ..services.draft_store import Draft, DraftStore

LOGGER = logging.getLogger(__name__)


class RecoveryState(enum.Enum):
    PENDING = "pending"
    USE_FILE = "use-file"
    USE_DRAFT = "use-draft"
    AWAITING_USER_CHOICE = "awaiting-user-choice"


@dataclass(slots=True, frozen=True)
class RecoveryResolution:
    """Terminal outcome of a recovery check."""

    path: str
    state: RecoveryState
    content: str
    prompted: bool = False


ResolutionCallback = Callable[[RecoveryResolution], None]
ContentReader = Callable[[], Awaitable[str]]


class RecoveryResolver:
    """One-shot state machine for a single file-open.

    ``resolve`` settles silently on the file when there is no draft or the
    draft matches the file. Otherwise the resolver waits in
    ``AWAITING_USER_CHOICE`` until exactly one of :meth:`choose_draft` or
    :meth:`choose_file` is called.

    When a ``reader`` is given, choosing the file reads it again so a change
    made on disk while the choice was pending is not lost.
    """

    def __init__(
        self,
        path: str,
        file_content: str,
        drafts: DraftStore,
        *,
        on_resolved: ResolutionCallback | None = None,
        reader: ContentReader | None = None,
    ) -> None:
        self._path = path
        self._file_content = file_content
        self._drafts = drafts
        self._on_resolved = on_resolved
        self._reader = reader
        self._state = RecoveryState.PENDING
        self._draft: Draft | None = None
        self._resolution: RecoveryResolution | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def state(self) -> RecoveryState:
        return self._state

    @property
    def draft(self) -> Draft | None:
        return self._draft

    @property
    def file_content(self) -> str:
        return self._file_content

    @property
    def resolution(self) -> RecoveryResolution | None:
        return self._resolution

    @property
    def awaiting_choice(self) -> bool:
        return self._state is RecoveryState.AWAITING_USER_CHOICE

    async def resolve(self) -> RecoveryState:
        if self._state is not RecoveryState.PENDING:
            return self._state
        draft = await self._drafts.get(self._path)
        if draft is None:
            self._finish(RecoveryState.USE_FILE, self._file_content, prompted=False)
            return self._state
        if draft.content == self._file_content:
            LOGGER.debug("Draft for %s matches the file; discarding", self._path)
            await self._discard_draft()
            self._finish(RecoveryState.USE_FILE, self._file_content, prompted=False)
            return self._state
        self._draft = draft
        self._state = RecoveryState.AWAITING_USER_CHOICE
        LOGGER.info("Unsaved draft found for %s; waiting for a recovery choice", self._path)
        return self._state

    def choose_draft(self) -> RecoveryResolution:
        """Restore the draft; it stays stored until the next successful autosave."""

        draft = self._require_choice()
        return self._finish(RecoveryState.USE_DRAFT, draft.content, prompted=True)

    async def choose_file(self) -> RecoveryResolution:
        """Keep the file content and discard the stale draft."""

        self._require_choice()
        self._state = RecoveryState.USE_FILE
        await self._discard_draft()
        content = await self._current_file_content()
        return self._finish(RecoveryState.USE_FILE, content, prompted=True)

    def _require_choice(self) -> Draft:
        if self._state is not RecoveryState.AWAITING_USER_CHOICE or self._draft is None:
            raise RecoveryError(
                f"Recovery for {self._path} is {self._state.value}, not awaiting a choice"
            )
        return self._draft

    async def _current_file_content(self) -> str:
        if self._reader is None:
            return self._file_content
        try:
            self._file_content = await self._reader()
        except Exception as exc:
            LOGGER.warning("Unable to re-read %s, keeping the opened content: %s", self._path, exc)
        return self._file_content

    async def _discard_draft(self) -> None:
        try:
            await self._drafts.remove(self._path)
        except StoreError as exc:
            LOGGER.warning("Unable to discard draft for %s: %s", self._path, exc)

    def _finish(self, state: RecoveryState, content: str, *, prompted: bool) -> RecoveryResolution:
        self._state = state
        self._resolution = RecoveryResolution(
            path=self._path, state=state, content=content, prompted=prompted
        )
        LOGGER.debug("Recovery for %s resolved: %s", self._path, state.value)
        if self._on_resolved is not None:
            self._on_resolved(self._resolution)
        return self._resolution


__all__ = ["RecoveryResolution", "RecoveryResolver", "RecoveryState"]
