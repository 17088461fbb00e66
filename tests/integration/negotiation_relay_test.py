from __future__ import annotations

import asyncio
import json

import pytest
from websockets.asyncio.client import connect

from peertap.peer.negotiation import NegotiationState
from peertap.peer.session import PeerSession
from peertap.signaling.messages import IceCandidate
from peertap.signaling.messages import SdpKind
from peertap.signaling.messages import SessionDescription
from peertap.signaling.messages import SignalType
from peertap.signaling.transport import SignalingTransport
from testing.engine import FakeEngine
from testing.engine import settle
from testing.relay_server import RelayServerInfo
from testing.relay_server import wait_for_clients
from testing.utils import wait_until

_TIMEOUT = 5


async def _session(
    relay_server: RelayServerInfo,
    engine: FakeEngine,
    *,
    initiator: bool,
) -> PeerSession:
    transport = SignalingTransport(relay_server.address)
    await transport.connect()
    return PeerSession(transport, engine, initiator=initiator)


@pytest.mark.asyncio()
async def test_offer_answer_through_relay(
    relay_server: RelayServerInfo,
) -> None:
    engine_a = FakeEngine(offer_sdp='sdp-A')
    engine_b = FakeEngine(answer_sdp='sdp-B')
    peer_a = await _session(relay_server, engine_a, initiator=True)
    peer_b = await _session(relay_server, engine_b, initiator=False)
    await wait_for_clients(relay_server.relay_server, 2)

    answers = peer_a.transport.receive_answer.listen()
    engine_a.events.negotiation_needed.emit(None)

    answer = await asyncio.wait_for(answers.get(), _TIMEOUT)
    assert answer == SessionDescription(SdpKind.answer, 'sdp-B')
    assert engine_b.remote_description == SessionDescription(
        SdpKind.offer,
        'sdp-A',
    )

    await wait_until(
        lambda: peer_a.negotiation.state is NegotiationState.STABLE,
        timeout=_TIMEOUT,
    )
    assert engine_a.remote_description == answer
    assert peer_b.negotiation.state is NegotiationState.STABLE

    # Candidates trickled by A are applied by B after its remote offer
    candidate = IceCandidate('candidate:1 1 UDP 1 10.0.0.1 9 typ host')
    engine_a.events.ice_candidate.emit(candidate)
    await wait_until(lambda: bool(engine_b.candidates), timeout=_TIMEOUT)
    assert engine_b.candidates == [candidate]

    await peer_a.close()
    await peer_b.close()


@pytest.mark.asyncio()
async def test_offer_wire_frame(relay_server: RelayServerInfo) -> None:
    engine = FakeEngine(offer_sdp='sdp-A')
    peer = await _session(relay_server, engine, initiator=True)

    async with connect(relay_server.address) as observer:
        await wait_for_clients(relay_server.relay_server, 2)
        engine.events.negotiation_needed.emit(None)

        frame = await asyncio.wait_for(observer.recv(), _TIMEOUT)
        assert isinstance(frame, bytes)
        assert frame[-1] == SignalType.OFFER
        assert json.loads(frame[:-1]) == {'type': 'offer', 'sdp': 'sdp-A'}

    await settle()
    await peer.close()
