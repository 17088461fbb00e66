from __future__ import annotations

import pytest

from peertap.exceptions import TapDecodeError
from peertap.tap import CHANNEL_NAME
from peertap.tap import decode_tap_message
from peertap.tap import encode_tap_message
from peertap.tap import TAP_MESSAGE_SIZE
from peertap.tap import TapKind
from peertap.tap import TapMessage
from peertap.tap import TapPointProtocol
from testing.engine import FakeChannel


def test_encode_little_endian_layout() -> None:
    data = encode_tap_message(TapMessage(TapKind.TAP_POINT, 320, 480))
    assert data == bytes([0x40, 0x01, 0xE0, 0x01, 0x02])
    assert len(data) == TAP_MESSAGE_SIZE


def test_encode_negative_coordinates() -> None:
    data = encode_tap_message(TapMessage(TapKind.SCREEN_SIZE, -1, -32768))
    assert data == bytes([0xFF, 0xFF, 0x00, 0x80, 0x01])
    assert decode_tap_message(data) == TapMessage(
        TapKind.SCREEN_SIZE,
        -1,
        -32768,
    )


@pytest.mark.parametrize('value', (32768, -32769))
def test_encode_out_of_range(value: int) -> None:
    with pytest.raises(ValueError, match='16-bit'):
        encode_tap_message(TapMessage(TapKind.TAP_POINT, value, 0))


@pytest.mark.parametrize(
    'data',
    (b'', b'\x00\x00\x00\x00', b'\x00' * 6, b'\x00\x00\x00\x00\x03'),
)
def test_decode_errors(data: bytes) -> None:
    with pytest.raises(TapDecodeError):
        decode_tap_message(data)


def test_protocol_ignores_other_channels() -> None:
    channel = FakeChannel('other', 'open')
    protocol = TapPointProtocol(channel)

    assert not protocol.attached
    assert not protocol.send_tap(1, 2)
    assert channel.sent == []


def test_protocol_send_requires_open_channel() -> None:
    channel = FakeChannel(CHANNEL_NAME)
    protocol = TapPointProtocol(channel)
    assert protocol.attached

    assert not protocol.send_screen_size(1080, 1920)
    channel.open()
    assert protocol.send_screen_size(1080, 1920)
    assert channel.sent == [b'\x38\x04\x80\x07\x01']


def test_protocol_dispatches_received_messages() -> None:
    channel = FakeChannel(CHANNEL_NAME, 'open')
    protocol = TapPointProtocol(channel)
    sizes: list[tuple[int, int]] = []
    taps: list[tuple[int, int]] = []
    protocol.on_screen_size.subscribe(sizes.append)
    protocol.on_tap.subscribe(taps.append)

    channel.emit('message', bytes([0x40, 0x01, 0xE0, 0x01, 0x02]))
    channel.emit('message', b'\x38\x04\x80\x07\x01')
    # Malformed and text messages are discarded
    channel.emit('message', b'\x00\x00')
    channel.emit('message', b'\x00\x00\x00\x00\x09')
    channel.emit('message', 'hello')

    assert taps == [(320, 480)]
    assert sizes == [(1080, 1920)]


def test_protocol_completes_on_close() -> None:
    channel = FakeChannel(CHANNEL_NAME, 'open')
    protocol = TapPointProtocol(channel)

    channel.close()

    assert protocol.on_tap.closed
    assert protocol.on_screen_size.closed
    assert not protocol.send_tap(1, 2)
