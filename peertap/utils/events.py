"""Multi-subscriber event streams.

An [`EventStream`][peertap.utils.events.EventStream] is the event bus
primitive used throughout PeerTap: signaling transports publish decoded
messages on them, connection engines publish their callbacks on them, and
the data channel registry and tap-point protocol publish notifications on
them.

Subscribers are invoked synchronously, in subscription order, when a value
is emitted. If a subscriber returns an awaitable, it is run as a background
task whose failure is logged rather than lost.

Example:
    ```python
    from peertap.utils.events import EventStream

    stream: EventStream[int] = EventStream('numbers')
    subscription = stream.subscribe(print, where=lambda x: x > 1)

    with stream.listen() as listener:
        stream.emit(1)
        stream.emit(2)  # prints 2
        assert await listener.get() == 1

    subscription.dispose()
    stream.complete()
    ```
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from types import TracebackType
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Generic
from typing import TypeVar

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from peertap.utils.tasks import spawn_logged_background_task

logger = logging.getLogger(__name__)

T = TypeVar('T')

_COMPLETE = object()


class StreamClosedError(Exception):
    """Exception raised when reading from a completed stream."""

    pass


class Subscription(Generic[T]):
    """Handle to a callback subscribed to an event stream.

    Args:
        stream: Stream the callback is subscribed to.
        callback: Callable invoked with each emitted value.
        where: Optional predicate; values for which it returns `False` are
            not delivered to `callback`.
    """

    def __init__(
        self,
        stream: EventStream[T],
        callback: Callable[[T], Any],
        where: Callable[[T], bool] | None = None,
    ) -> None:
        self._stream = stream
        self._callback = callback
        self._where = where

    @property
    def active(self) -> bool:
        """Subscription is still registered with the stream."""
        return self in self._stream._subscriptions

    def dispose(self) -> None:
        """Unsubscribe the callback. Safe to call more than once."""
        self._stream._unsubscribe(self)

    def _deliver(self, value: T) -> None:
        if self._where is not None and not self._where(value):
            return
        result = self._callback(value)
        if inspect.isawaitable(result):
            task = spawn_logged_background_task(_await, result)
            task.set_name(f'{self._stream.name}-subscriber')


async def _await(awaitable: Awaitable[Any]) -> None:
    await awaitable


class Listener(Generic[T]):
    """Buffered asynchronous reader of an event stream.

    Values emitted after the listener is created are buffered until read.
    The listener can be used as an async iterator which stops when the
    stream completes.
    """

    def __init__(self, stream: EventStream[T]) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        if stream.closed:
            self._queue.put_nowait(_COMPLETE)
        else:
            stream._listeners.add(self)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except StreamClosedError:
            raise StopAsyncIteration from None

    def close(self) -> None:
        """Stop buffering values from the stream."""
        self._stream._listeners.discard(self)

    def empty(self) -> bool:
        """No values are buffered."""
        return self._queue.empty()

    async def get(self) -> T:
        """Get the next value emitted on the stream.

        Raises:
            StreamClosedError: If the stream completed and all buffered
                values have been read.
        """
        item = await self._queue.get()
        if item is _COMPLETE:
            # Leave the marker in place for any later readers.
            self._queue.put_nowait(_COMPLETE)
            raise StreamClosedError(
                f'Event stream {self._stream.name!r} is complete.',
            )
        return item

    def _put(self, item: Any) -> None:
        self._queue.put_nowait(item)


class EventStream(Generic[T]):
    """Multi-subscriber stream of events.

    Args:
        name: Name of the stream used in log messages.
    """

    def __init__(self, name: str = 'stream') -> None:
        self.name = name
        self._closed = False
        self._subscriptions: list[Subscription[T]] = []
        self._listeners: set[Listener[T]] = set()

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(name={self.name!r}, '
            f'subscribers={len(self._subscriptions)}, closed={self._closed})'
        )

    @property
    def closed(self) -> bool:
        """The stream has completed and will not emit more values."""
        return self._closed

    def subscribe(
        self,
        callback: Callable[[T], Any],
        *,
        where: Callable[[T], bool] | None = None,
    ) -> Subscription[T]:
        """Subscribe a callback to future values.

        Args:
            callback: Callable invoked with each value. Coroutine functions
                are scheduled as background tasks.
            where: Optional predicate used to filter values.

        Returns:
            Subscription handle used to unsubscribe.
        """
        subscription = Subscription(self, callback, where)
        if not self._closed:
            self._subscriptions.append(subscription)
        return subscription

    def listen(self) -> Listener[T]:
        """Create a buffered listener of future values."""
        return Listener(self)

    def emit(self, value: T) -> None:
        """Publish a value to all subscribers.

        Values emitted after the stream completes are dropped.
        """
        if self._closed:
            logger.debug(f'Dropping value emitted on completed {self!r}')
            return

        for listener in tuple(self._listeners):
            listener._put(value)

        for subscription in tuple(self._subscriptions):
            try:
                subscription._deliver(value)
            except Exception:
                logger.exception(
                    f'Subscriber of event stream {self.name!r} raised while '
                    'handling an event',
                )

    def complete(self) -> None:
        """Complete the stream and drop all subscribers.

        Listeners finish iterating once their buffered values are read.
        Completing an already completed stream is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        self._subscriptions.clear()
        for listener in tuple(self._listeners):
            listener._put(_COMPLETE)
        self._listeners.clear()

    def _unsubscribe(self, subscription: Subscription[T]) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
