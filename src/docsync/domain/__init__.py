"""Domain layer of the synchronization engine.

Each component receives its collaborators through its constructor, touches
state only from the engine's event loop, and reports through the event bus:

    - SavingGuard: echo suppression around the engine's own writes
    - WatchSubscription: the single live external-change subscription
    - AutosaveScheduler: debounced buffer-to-file writes with draft fallback
    - RecoveryResolver: file-versus-draft decision at open time
    - ExternalChangeCoordinator: reload-or-prompt on external changes
"""

from __future__ import annotations

from .autosave import AutosaveScheduler, AutosaveState
from .external_change import ExternalChangeCoordinator, ExternalChangePolicy, PendingNotification
from .recovery import RecoveryResolution, RecoveryResolver, RecoveryState
from .saving_guard import SavingGuard
from .watch_subscription import ChangeEvent, Subscription, WatchSubscription

__all__ = [
    "AutosaveScheduler",
    "AutosaveState",
    "ChangeEvent",
    "ExternalChangeCoordinator",
    "ExternalChangePolicy",
    "PendingNotification",
    "RecoveryResolution",
    "RecoveryResolver",
    "RecoveryState",
    "SavingGuard",
    "Subscription",
    "WatchSubscription",
]
