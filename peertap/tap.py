"""Tap-point protocol over the `"stp"` data channel.

Two peers exchange coordinate pairs as 5-byte messages:
`[a_lo, a_hi, b_lo, b_hi, tag]` where `a` and `b` are little-endian signed
16-bit integers and `tag` is a [`TapKind`][peertap.tap.TapKind]. A screen
size announcement carries `(width, height)` and a tap-point report carries
`(x, y)`. Each data channel message holds exactly one tap message.

Example:
    ```python
    from peertap.tap import CHANNEL_NAME, TapKind, TapPointProtocol

    session.registry.added.subscribe(
        on_channel,
        where=lambda channel: channel.label == CHANNEL_NAME,
    )

    def on_channel(channel):
        protocol = TapPointProtocol(channel)
        protocol.on_tap.subscribe(lambda point: print('tap at', point))
        protocol.send(TapKind.SCREEN_SIZE, 1080, 1920)
    ```
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import struct

from peertap.exceptions import TapDecodeError
from peertap.peer.engine import DataChannel
from peertap.utils.events import EventStream

logger = logging.getLogger(__name__)

CHANNEL_NAME = 'stp'
"""Label of the data channel the tap-point protocol binds to."""

_TAP_FORMAT = struct.Struct('<hhB')
TAP_MESSAGE_SIZE = _TAP_FORMAT.size


class TapKind(enum.IntEnum):
    """Type tag of a tap message."""

    SCREEN_SIZE = 1
    """Sender's screen size as `(width, height)`."""
    TAP_POINT = 2
    """Tap location as `(x, y)`."""


@dataclasses.dataclass(frozen=True)
class TapMessage:
    """Coordinate pair message.

    Attributes:
        kind: Message kind.
        a: First coordinate (width or x).
        b: Second coordinate (height or y).
    """

    kind: TapKind
    a: int
    b: int


def encode_tap_message(message: TapMessage) -> bytes:
    """Encode a tap message as 5 bytes.

    Raises:
        ValueError: If `a` or `b` is outside the signed 16-bit range.
    """
    try:
        return _TAP_FORMAT.pack(message.a, message.b, TapKind(message.kind))
    except struct.error as e:
        raise ValueError(
            f'Tap coordinates must be signed 16-bit integers: {message}.',
        ) from e


def decode_tap_message(data: bytes) -> TapMessage:
    """Decode a 5-byte tap message.

    Raises:
        TapDecodeError: If the message has the wrong size or an unknown
            kind tag.
    """
    if len(data) != TAP_MESSAGE_SIZE:
        raise TapDecodeError(
            f'Expected a {TAP_MESSAGE_SIZE} byte tap message but got '
            f'{len(data)} bytes.',
        )
    a, b, tag = _TAP_FORMAT.unpack(data)
    try:
        kind = TapKind(tag)
    except ValueError:
        raise TapDecodeError(f'Unknown tap message kind: {tag}.') from None
    return TapMessage(kind=kind, a=a, b=b)


class TapPointProtocol:
    """Bidirectional tap-point exchange bound to one data channel.

    The protocol only attaches to a channel labelled
    [`CHANNEL_NAME`][peertap.tap.CHANNEL_NAME]. Given any other channel it
    does nothing: [`attached`][peertap.tap.TapPointProtocol.attached] is
    `False`, sends are ignored, and its streams never emit.

    Received messages are published on
    [`on_screen_size`][peertap.tap.TapPointProtocol.on_screen_size] or
    [`on_tap`][peertap.tap.TapPointProtocol.on_tap] as `(a, b)` tuples.
    Malformed messages are discarded. Both streams complete when the
    channel closes.

    Args:
        channel: Data channel to bind to.
    """

    def __init__(self, channel: DataChannel) -> None:
        self.on_screen_size: EventStream[tuple[int, int]] = EventStream(
            'tap-screen-size',
        )
        self.on_tap: EventStream[tuple[int, int]] = EventStream('tap-point')

        if channel.label != CHANNEL_NAME:
            self._channel: DataChannel | None = None
            logger.debug(
                f'Not attaching tap-point protocol to channel '
                f'{channel.label!r}',
            )
            return

        self._channel = channel
        channel.on('message', self._on_message)
        channel.on('close', self._on_close)

    @property
    def attached(self) -> bool:
        """The protocol is bound to a channel."""
        return self._channel is not None

    def send(self, kind: TapKind, a: int, b: int) -> bool:
        """Send a coordinate pair to the peer.

        Nothing is sent unless the protocol is attached and the channel is
        open.

        Returns:
            If the message was sent.

        Raises:
            ValueError: If `a` or `b` is outside the signed 16-bit range.
        """
        if self._channel is None or self._channel.readyState != 'open':
            return False
        self._channel.send(encode_tap_message(TapMessage(kind, a, b)))
        return True

    def send_screen_size(self, width: int, height: int) -> bool:
        """Announce this side's screen size."""
        return self.send(TapKind.SCREEN_SIZE, width, height)

    def send_tap(self, x: int, y: int) -> bool:
        """Report a tap location."""
        return self.send(TapKind.TAP_POINT, x, y)

    def _on_message(self, data: bytes | str) -> None:
        if isinstance(data, str):
            logger.debug('Discarding text message on tap-point channel')
            return
        try:
            message = decode_tap_message(data)
        except TapDecodeError as e:
            logger.debug(f'Discarding tap-point message: {e}')
            return

        if message.kind is TapKind.SCREEN_SIZE:
            self.on_screen_size.emit((message.a, message.b))
        else:
            self.on_tap.emit((message.a, message.b))

    def _on_close(self) -> None:
        self.on_screen_size.complete()
        self.on_tap.complete()
