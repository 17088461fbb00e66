"""Registry of open data channels."""
from __future__ import annotations

import logging
from collections.abc import Iterator
from collections.abc import Mapping

from peertap.peer.engine import DataChannel
from peertap.utils.events import EventStream

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ('channel', 'released')

    def __init__(self, channel: DataChannel) -> None:
        self.channel = channel
        self.released = False


class DataChannelRegistry(Mapping[str, DataChannel]):
    """Mapping of channel label to open data channel.

    Adding a channel publishes it on
    [`added`][peertap.peer.channels.DataChannelRegistry.added] and removing
    it publishes it on
    [`removed`][peertap.peer.channels.DataChannelRegistry.removed]. Both
    notifications fire synchronously during the mutation. A tracked channel
    is removed automatically when it emits its `close` event.

    Labels are unique: adding a second channel under an existing label
    replaces the entry and fires `added` again. The replaced channel is
    closed, and its close does not remove the newer entry.

    Example:
        ```python
        registry = DataChannelRegistry()
        registry.added.subscribe(
            attach_protocol,
            where=lambda channel: channel.label == 'stp',
        )
        ```
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self.added: EventStream[DataChannel] = EventStream('channel-added')
        self.removed: EventStream[DataChannel] = EventStream('channel-removed')

    def __getitem__(self, label: str) -> DataChannel:
        return self._entries[label].channel

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(labels={self.labels})'

    @property
    def labels(self) -> list[str]:
        """Labels of the tracked channels."""
        return list(self._entries)

    def add(self, channel: DataChannel) -> None:
        """Track an open channel and notify subscribers."""
        label = channel.label
        entry = _Entry(channel)
        replaced = self._entries.get(label)
        self._entries[label] = entry
        if replaced is not None and replaced.channel is not channel:
            logger.info(f'Replacing data channel registered as {label!r}')
            self._release(replaced)
        channel.on('close', lambda: self._on_channel_close(entry))
        logger.info(f'Data channel {label!r} added')
        self.added.emit(channel)

    def add_when_open(self, channel: DataChannel) -> None:
        """Track a locally created channel once it opens."""
        if channel.readyState == 'open':
            self.add(channel)
        else:
            channel.on('open', lambda: self.add(channel))

    def remove(self, label: str) -> bool:
        """Stop tracking a channel, notify subscribers, and close it.

        The channel is closed at most once, and not at all if it is
        already closed.

        Returns:
            If a channel with `label` was tracked.
        """
        entry = self._entries.pop(label, None)
        if entry is None:
            return False
        logger.info(f'Data channel {label!r} removed')
        self.removed.emit(entry.channel)
        self._release(entry)
        return True

    def clear(self) -> None:
        """Remove and close every tracked channel."""
        for label in list(self._entries):
            self.remove(label)

    def close(self) -> None:
        """Clear the registry and complete the notification streams."""
        self.clear()
        self.added.complete()
        self.removed.complete()

    def _on_channel_close(self, entry: _Entry) -> None:
        entry.released = True
        label = entry.channel.label
        if self._entries.get(label) is entry:
            self.remove(label)

    @staticmethod
    def _release(entry: _Entry) -> None:
        if entry.released:
            return
        entry.released = True
        if entry.channel.readyState != 'closed':
            entry.channel.close()
