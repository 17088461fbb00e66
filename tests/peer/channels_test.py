from __future__ import annotations

from peertap.peer.channels import DataChannelRegistry
from peertap.peer.engine import DataChannel
from testing.engine import FakeChannel


def test_add_and_lookup() -> None:
    registry = DataChannelRegistry()
    added: list[DataChannel] = []
    registry.added.subscribe(added.append)

    channel = FakeChannel('stp', 'open')
    registry.add(channel)

    assert registry['stp'] is channel
    assert 'stp' in registry
    assert registry.labels == ['stp']
    assert len(registry) == 1
    assert added == [channel]
    assert 'stp' in repr(registry)


def test_add_when_open() -> None:
    registry = DataChannelRegistry()
    channel = FakeChannel('stp')

    registry.add_when_open(channel)
    assert 'stp' not in registry

    channel.open()
    assert registry['stp'] is channel


def test_add_when_already_open() -> None:
    registry = DataChannelRegistry()
    channel = FakeChannel('stp', 'open')
    registry.add_when_open(channel)
    assert registry['stp'] is channel


def test_remove_notifies_then_closes_once() -> None:
    registry = DataChannelRegistry()
    events: list[str] = []
    channel = FakeChannel('stp', 'open')
    registry.add(channel)
    registry.removed.subscribe(
        lambda c: events.append(f'removed:{c.readyState}'),
    )

    assert registry.remove('stp')
    assert not registry.remove('stp')

    # Subscribers observe the channel before it is closed
    assert events == ['removed:open']
    assert channel.close_calls == 1
    assert 'stp' not in registry


def test_channel_close_removes_entry() -> None:
    registry = DataChannelRegistry()
    removed: list[DataChannel] = []
    registry.removed.subscribe(removed.append)
    channel = FakeChannel('stp', 'open')
    registry.add(channel)

    channel.close()

    assert removed == [channel]
    assert 'stp' not in registry
    # The registry does not close an already closed channel
    assert channel.close_calls == 1


def test_replaced_channel_is_closed_and_keeps_new_entry() -> None:
    registry = DataChannelRegistry()
    added: list[DataChannel] = []
    registry.added.subscribe(added.append)

    old = FakeChannel('stp', 'open')
    new = FakeChannel('stp', 'open')
    registry.add(old)
    registry.add(new)
    assert added == [old, new]
    assert registry['stp'] is new
    assert old.readyState == 'closed'
    assert old.close_calls == 1
    assert new.readyState == 'open'

    registry.close()
    assert new.close_calls == 1
    assert old.close_calls == 1


def test_adding_same_channel_twice_does_not_close_it() -> None:
    registry = DataChannelRegistry()
    channel = FakeChannel('stp', 'open')

    registry.add(channel)
    registry.add(channel)

    assert registry['stp'] is channel
    assert channel.close_calls == 0

    channel.close()
    assert 'stp' not in registry


def test_close_clears_and_completes() -> None:
    registry = DataChannelRegistry()
    channels = [FakeChannel(label, 'open') for label in ('a', 'b')]
    for channel in channels:
        registry.add(channel)

    registry.close()

    assert len(registry) == 0
    assert all(channel.readyState == 'closed' for channel in channels)
    assert all(channel.close_calls == 1 for channel in channels)
    assert registry.added.closed
    assert registry.removed.closed
