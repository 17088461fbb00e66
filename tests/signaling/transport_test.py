from __future__ import annotations

import asyncio
import logging
import ssl

import pytest
from websockets.asyncio.client import connect

from peertap.exceptions import TransportError
from peertap.signaling.messages import encode_frame
from peertap.signaling.messages import IceCandidate
from peertap.signaling.messages import SdpKind
from peertap.signaling.messages import SessionDescription
from peertap.signaling.messages import SignalType
from peertap.signaling.transport import SignalingTransport
from testing.relay_server import RelayServerInfo
from testing.relay_server import wait_for_clients
from testing.utils import open_port

_WAIT_FOR = 1

OFFER = SessionDescription(SdpKind.offer, 'v=0 offer')
ANSWER = SessionDescription(SdpKind.answer, 'v=0 answer')
CANDIDATE = IceCandidate('candidate:1 1 UDP 1 10.0.0.1 9 typ host', '0', 0)


def test_bad_address() -> None:
    with pytest.raises(ValueError, match='ws:// or wss://'):
        SignalingTransport('http://localhost')


def test_wss_without_verification() -> None:
    transport = SignalingTransport(
        'wss://localhost',
        verify_certificate=False,
    )
    assert transport._ssl_context is not None
    assert transport._ssl_context.verify_mode == ssl.CERT_NONE
    assert not transport._ssl_context.check_hostname


@pytest.mark.asyncio()
async def test_connect_failure() -> None:
    transport = SignalingTransport(
        f'ws://localhost:{open_port()}',
        timeout=0.5,
    )
    with pytest.raises(TransportError, match='Failed to connect'):
        await transport.connect()
    assert not transport.connected

    # A transport makes exactly one attempt
    with pytest.raises(TransportError, match='only be connected once'):
        await transport.connect()
    await transport.close()


@pytest.mark.asyncio()
async def test_send_when_not_connected() -> None:
    transport = SignalingTransport('ws://localhost:5555')
    with pytest.raises(TransportError, match='not open'):
        await transport.send_offer(OFFER)


@pytest.mark.asyncio()
async def test_exchange_through_relay(relay_server: RelayServerInfo) -> None:
    async with SignalingTransport(
        relay_server.address,
    ) as transport1, SignalingTransport(relay_server.address) as transport2:
        assert transport1.connected
        assert transport1.address == relay_server.address
        await wait_for_clients(relay_server.relay_server, 2)

        offers = transport2.receive_offer.listen()
        answers = transport1.receive_answer.listen()
        candidates = transport1.receive_ice.listen()

        await transport1.send_offer(OFFER)
        assert await asyncio.wait_for(offers.get(), _WAIT_FOR) == OFFER

        await transport2.send_answer(ANSWER)
        await transport2.send_ice(CANDIDATE)
        assert await asyncio.wait_for(answers.get(), _WAIT_FOR) == ANSWER
        assert await asyncio.wait_for(candidates.get(), _WAIT_FOR) == (
            CANDIDATE
        )

    assert not transport1.connected
    assert transport1.receive_offer.closed
    assert transport2.receive_ice.closed


@pytest.mark.asyncio()
async def test_malformed_frames_discarded(
    relay_server: RelayServerInfo,
    caplog,
) -> None:
    caplog.set_level(logging.DEBUG, logger='peertap.signaling.transport')

    async with SignalingTransport(relay_server.address) as transport:
        async with connect(relay_server.address) as raw:
            await wait_for_clients(relay_server.relay_server, 2)
            offers = transport.receive_offer.listen()

            await raw.send(b'')
            await raw.send(b'{}\x07')
            await raw.send(b'not json\x01')
            await raw.send(encode_frame(SignalType.OFFER, OFFER.to_json()))

            # Only the valid frame is published
            assert await asyncio.wait_for(offers.get(), _WAIT_FOR) == OFFER
            assert offers.empty()

    assert any(
        ['discarding message' in record.message for record in caplog.records],
    )


@pytest.mark.asyncio()
async def test_dispatch_text_frame() -> None:
    transport = SignalingTransport('ws://localhost:5555')
    received: list[IceCandidate] = []
    transport.receive_ice.subscribe(received.append)

    transport.dispatch(CANDIDATE.to_json() + '\x03')

    assert received == [CANDIDATE]


@pytest.mark.asyncio()
async def test_close_is_idempotent(relay_server: RelayServerInfo) -> None:
    transport = SignalingTransport(relay_server.address)
    await transport.connect()
    await transport.close()
    await transport.close()

    with pytest.raises(TransportError):
        await transport.send_ice(CANDIDATE)
