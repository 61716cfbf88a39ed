"""Event bus and the notifications the synchronization engine publishes.

Editors, status bars and prompt surfaces subscribe here instead of holding
references to engine internals.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all engine events.

    Subclasses are ``@dataclass(slots=True)`` records::

        @dataclass(slots=True)
        class DraftSaved(Event):
            path: str
            timestamp: int
    """

    pass


# =============================================================================
# Buffer & recovery events
# =============================================================================


@dataclass(slots=True)
class BufferReplaced(Event):
    """The engine replaced the editor buffer wholesale.

    Attributes:
        path: The open file the buffer belongs to.
        content: The new buffer content the editor should display.
        reason: ``"open"``, ``"recovered-draft"``, ``"recovered-file"`` or ``"reload"``.
    """

    path: str
    content: str
    reason: str


@dataclass(slots=True)
class RecoveryRequired(Event):
    """A draft that differs from the file was found while opening ``path``."""

    path: str
    draft_timestamp: int


# =============================================================================
# Autosave & draft events
# =============================================================================


@dataclass(slots=True)
class DraftSaved(Event):
    """A draft snapshot was upserted for ``path``."""

    path: str
    timestamp: int


@dataclass(slots=True)
class DraftRemoved(Event):
    """The draft for ``path`` was discarded."""

    path: str


@dataclass(slots=True)
class AutosaveCompleted(Event):
    """The buffer was written to the real file.

    Attributes:
        path: The file that was written.
        content_hash: SHA-256 of the written content.
    """

    path: str
    content_hash: str


@dataclass(slots=True)
class AutosaveFailed(Event):
    """Writing to the real file failed and a draft was kept instead.

    Attributes:
        path: The file that could not be written.
        error: Human readable description of the failure.
    """

    path: str
    error: str


# =============================================================================
# External change events
# =============================================================================


@dataclass(slots=True)
class ExternalChangeDetected(Event):
    """A change made outside the engine is waiting for the user's decision.

    Attributes:
        path: The watched file that changed.
        count: How many change events were coalesced into this notification.
    """

    path: str
    count: int = 1


@dataclass(slots=True)
class FileReloaded(Event):
    """The buffer was refreshed from disk after an external change."""

    path: str


# =============================================================================
# Infrastructure events
# =============================================================================


@dataclass(slots=True)
class WatchFailed(Event):
    """Change detection could not be enabled for ``path``."""

    path: str
    error: str


@dataclass(slots=True)
class StoreDegraded(Event):
    """Draft persistence failed; drafts are kept in memory for this session."""

    error: str


@dataclass(slots=True)
class FileRenamed(Event):
    """The open file, its draft and its watch moved to ``new_path``."""

    old_path: str
    new_path: str


# Not logged per publish; drafts are saved on every typing pause.
_QUIET_EVENT_TYPES: frozenset[type[Event]] = frozenset({DraftSaved})

Unsubscribe = Callable[[], None]


class EventBus(Generic[E]):
    """Synchronous, in-process publish/subscribe keyed by event class.

    A handler registered for a class also receives its subclasses, so
    subscribing to :class:`Event` observes everything the engine publishes.
    Bound methods are referenced weakly and drop out once their owner is
    collected; functions and lambdas are held until unsubscribed.

    Example::

        bus = EventBus()
        stop = bus.subscribe(FileReloaded, lambda event: print(event.path))
        bus.publish(FileReloaded(path="note.md"))
        stop()

    Only use a bus from the loop that owns the engine.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Unsubscribe:
        """Register ``handler`` and return a callable that removes this registration.

        Registering a handler twice makes it run twice.
        """

        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug("%s subscribed to %s", _handler_name(handler), event_type.__name__)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler_ref in handlers:
                handlers.remove(handler_ref)

        return unsubscribe

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Drop the oldest registration of ``handler`` for ``event_type``, if any."""

        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for handler_ref in handlers:
            if handler_ref.matches(handler):
                handlers.remove(handler_ref)
                logger.debug(
                    "%s unsubscribed from %s", _handler_name(handler), event_type.__name__
                )
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` to the handlers of its class, then of each base class.

        Within one class handlers run in registration order. A failing handler
        is logged and the rest still run.
        """

        event_type = type(event)
        quiet = event_type in _QUIET_EVENT_TYPES
        delivered = 0
        for cls in event_type.__mro__:
            handlers = self._handlers.get(cls)
            if handlers:
                delivered += self._deliver(event, handlers)
            if cls is Event:
                break
        if not quiet:
            logger.debug("Published %s to %d handler(s)", event_type.__name__, delivered)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Registrations for exactly ``event_type``, or in total when omitted."""

        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())

    def _deliver(self, event: Event, handlers: list[_HandlerRef]) -> int:
        delivered = 0
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                if handler_ref in handlers:
                    handlers.remove(handler_ref)
                continue
            delivered += 1
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "%s failed handling %s", _handler_name(handler), type(event).__name__
                )
        return delivered


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Any) -> str:
    """Human-readable handler name for log lines."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "Unsubscribe",
    "BufferReplaced",
    "RecoveryRequired",
    "DraftSaved",
    "DraftRemoved",
    "AutosaveCompleted",
    "AutosaveFailed",
    "ExternalChangeDetected",
    "FileReloaded",
    "WatchFailed",
    "StoreDegraded",
    "FileRenamed",
]
