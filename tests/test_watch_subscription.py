"""Tests for the single live watch subscription."""

from __future__ import annotations

import asyncio
import threading

import pytest

from docsync.domain.watch_subscription import ChangeEvent, WatchSubscription
from docsync.errors import WatchError

from tests.helpers import FakeWatchProvider


def _collect(subscription: WatchSubscription) -> list[ChangeEvent]:
    received: list[ChangeEvent] = []
    subscription.subscribe(received.append)
    return received


@pytest.mark.asyncio
async def test_changes_for_watched_path_are_delivered(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    received = _collect(subscription)

    await subscription.watch("a.md")
    watcher.emit("a.md")
    await asyncio.sleep(0)

    assert received == [ChangeEvent("a.md")]
    assert subscription.current_path == "a.md"
    assert subscription.active


@pytest.mark.asyncio
async def test_switching_closes_previous_handle(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)

    await subscription.watch("a.md")
    await subscription.watch("b.md")

    assert [handle.path for handle in watcher.live] == ["b.md"]
    assert watcher.handles[0].closed


@pytest.mark.asyncio
async def test_events_from_previous_file_are_discarded(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    received = _collect(subscription)

    await subscription.watch("a.md")
    await subscription.watch("b.md")
    watcher.emit("a.md")
    watcher.emit("b.md")
    await asyncio.sleep(0)

    assert received == [ChangeEvent("b.md")]


@pytest.mark.asyncio
async def test_event_queued_before_switch_is_dropped(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    received = _collect(subscription)

    await subscription.watch("a.md")
    watcher.emit("a.md")
    await subscription.watch("a.md")
    await asyncio.sleep(0)

    assert received == []


@pytest.mark.asyncio
async def test_unwatch_is_idempotent(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    await subscription.watch("a.md")

    await subscription.unwatch()
    await subscription.unwatch()

    assert watcher.handles[0].close_calls == 1
    assert not subscription.active
    assert subscription.current_path is None


@pytest.mark.asyncio
async def test_untitled_and_empty_paths_only_stop(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    await subscription.watch("a.md")

    await subscription.watch("untitled://1")
    assert not subscription.active

    await subscription.watch(None)
    assert len(watcher.handles) == 1


@pytest.mark.asyncio
async def test_provider_failure_raises_watch_error(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    received = _collect(subscription)
    await subscription.watch("a.md")
    watcher.fail_paths.add("missing.md")

    with pytest.raises(WatchError) as excinfo:
        await subscription.watch("missing.md")

    assert excinfo.value.path == "missing.md"
    assert not subscription.active
    watcher.emit("a.md")
    await asyncio.sleep(0)
    assert received == []


@pytest.mark.asyncio
async def test_callbacks_from_other_threads_reach_the_loop(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    delivered = asyncio.Event()
    received: list[ChangeEvent] = []

    def _listener(event: ChangeEvent) -> None:
        received.append(event)
        delivered.set()

    subscription.subscribe(_listener)
    await subscription.watch("a.md")

    thread = threading.Thread(target=watcher.emit, args=("a.md",))
    thread.start()
    thread.join()
    await asyncio.wait_for(delivered.wait(), timeout=1.0)

    assert received == [ChangeEvent("a.md")]


@pytest.mark.asyncio
async def test_closed_listener_stops_receiving(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)
    received: list[ChangeEvent] = []
    handle = subscription.subscribe(received.append)
    await subscription.watch("a.md")

    handle.close()
    handle.close()
    watcher.emit("a.md")
    await asyncio.sleep(0)

    assert received == []
    assert handle.closed


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(watcher: FakeWatchProvider) -> None:
    subscription = WatchSubscription(watcher)

    def _boom(event: ChangeEvent) -> None:
        raise RuntimeError("listener failed")

    subscription.subscribe(_boom)
    received = _collect(subscription)
    await subscription.watch("a.md")

    watcher.emit("a.md")
    await asyncio.sleep(0)

    assert received == [ChangeEvent("a.md")]
