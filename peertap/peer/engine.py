"""Connection engine boundary and the aiortc implementation.

The negotiation layer never talks to a WebRTC implementation directly.
Instead it orchestrates a
[`ConnectionEngine`][peertap.peer.engine.ConnectionEngine]: an object able
to create and commit session descriptions, apply ICE candidates, and open
data channels, and which publishes its callbacks on a uniform
[`EngineEvents`][peertap.peer.engine.EngineEvents] bus.

[`AiortcEngine`][peertap.peer.engine.AiortcEngine] adapts
[aiortc](https://aiortc.readthedocs.io/){target=_blank}'s
`RTCPeerConnection` to this interface.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Callable
from typing import Protocol
from typing import runtime_checkable

from aiortc import RTCConfiguration
from aiortc import RTCDataChannel
from aiortc import RTCIceServer
from aiortc import RTCPeerConnection
from aiortc import RTCSessionDescription
from aiortc.sdp import candidate_from_sdp
from aiortc.sdp import candidate_to_sdp
from aiortc.sdp import SessionDescription as ParsedSessionDescription

from peertap.peer.config import IceServerConfig
from peertap.signaling.messages import IceCandidate
from peertap.signaling.messages import SdpKind
from peertap.signaling.messages import SessionDescription
from peertap.utils.events import EventStream

logger = logging.getLogger(__name__)


@runtime_checkable
class DataChannel(Protocol):
    """Handle to a bidirectional data channel.

    `aiortc.RTCDataChannel` satisfies this protocol.
    """

    @property
    def label(self) -> str:
        """Name of the channel."""
        ...

    @property
    def readyState(self) -> str:  # noqa: N802
        """One of `'connecting'`, `'open'`, `'closing'`, or `'closed'`."""
        ...

    def send(self, data: bytes | str) -> None:
        """Send a message on the channel."""
        ...

    def close(self) -> None:
        """Close the channel."""
        ...

    def on(self, event: str, f: Callable[..., Any] | None = None) -> Any:
        """Register a handler for a channel event."""
        ...


class EngineEvents:
    """Event bus of a connection engine.

    Attributes:
        negotiation_needed: Renegotiation is required (initial setup or a
            track or channel was added).
        ice_candidate: A local ICE candidate was produced.
        datachannel: The remote peer opened a data channel.
        track: The remote peer added a media track.
        connection_state: The peer connection state changed.
        ice_connection_state: The ICE connection state changed.
        ice_gathering_state: The ICE gathering state changed.
    """

    def __init__(self) -> None:
        self.negotiation_needed: EventStream[None] = EventStream(
            'negotiation-needed',
        )
        self.ice_candidate: EventStream[IceCandidate] = EventStream(
            'local-ice-candidate',
        )
        self.datachannel: EventStream[DataChannel] = EventStream(
            'datachannel',
        )
        self.track: EventStream[Any] = EventStream('track')
        self.connection_state: EventStream[str] = EventStream(
            'connection-state',
        )
        self.ice_connection_state: EventStream[str] = EventStream(
            'ice-connection-state',
        )
        self.ice_gathering_state: EventStream[str] = EventStream(
            'ice-gathering-state',
        )

    def complete(self) -> None:
        """Complete every stream on the bus."""
        self.negotiation_needed.complete()
        self.ice_candidate.complete()
        self.datachannel.complete()
        self.track.complete()
        self.connection_state.complete()
        self.ice_connection_state.complete()
        self.ice_gathering_state.complete()


@runtime_checkable
class ConnectionEngine(Protocol):
    """Capability surface of the underlying WebRTC connection engine.

    Engine operations are not safe to call concurrently; callers serialize
    them.
    """

    @property
    def events(self) -> EngineEvents:
        """Event bus of the engine."""
        ...

    @property
    def connection_state(self) -> str:
        """Current peer connection state."""
        ...

    @property
    def local_description(self) -> SessionDescription | None:
        """Committed local description, including gathered candidates."""
        ...

    async def create_offer(self) -> SessionDescription:
        """Create an offer."""
        ...

    async def create_answer(self) -> SessionDescription:
        """Create an answer to the committed remote offer."""
        ...

    async def set_local_description(
        self,
        description: SessionDescription,
    ) -> None:
        """Commit a local session description."""
        ...

    async def set_remote_description(
        self,
        description: SessionDescription,
    ) -> None:
        """Commit a remote session description."""
        ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """Apply a remote ICE candidate."""
        ...

    def create_data_channel(self, label: str) -> DataChannel:
        """Create a data channel with the given label."""
        ...

    def add_track(self, track: Any) -> None:
        """Add a local media track."""
        ...

    async def close(self) -> None:
        """Close the engine and release its resources."""
        ...


def to_rtc_description(
    description: SessionDescription,
) -> RTCSessionDescription:
    """Convert a session description to an aiortc description."""
    return RTCSessionDescription(
        sdp=description.sdp,
        type=description.kind.value,
    )


def from_rtc_description(
    description: RTCSessionDescription,
) -> SessionDescription:
    """Convert an aiortc description to a session description."""
    return SessionDescription(
        kind=SdpKind(description.type),
        sdp=description.sdp,
    )


def candidates_from_sdp(sdp: str) -> list[IceCandidate]:
    """Extract the ICE candidates embedded in a session description.

    aiortc gathers candidates before committing a local description and
    embeds them in the SDP rather than trickling them. This recovers them
    as individual candidates.
    """
    parsed = ParsedSessionDescription.parse(sdp)
    candidates = []
    for index, media in enumerate(parsed.media):
        mid = getattr(media.rtp, 'muxId', None) or None
        for candidate in media.ice_candidates:
            candidates.append(
                IceCandidate(
                    candidate=f'candidate:{candidate_to_sdp(candidate)}',
                    sdp_mid=mid,
                    sdp_mline_index=index,
                ),
            )
    return candidates


class AiortcEngine:
    """Connection engine backed by an aiortc `RTCPeerConnection`.

    Negotiation-needed is raised once per batch of channel or track
    additions made in the same event loop iteration, mirroring browser
    behavior (aiortc itself does not raise it).

    Args:
        ice_servers: ICE servers used to gather candidates.
        trickle_ice: Publish the candidates embedded in each committed local
            description as local ICE candidate events. Only needed when the
            remote peer expects trickled candidates.
    """

    def __init__(
        self,
        ice_servers: list[IceServerConfig] | None = None,
        *,
        trickle_ice: bool = False,
    ) -> None:
        servers = [
            RTCIceServer(
                urls=server.urls,
                username=server.username,
                credential=server.credential,
            )
            for server in (ice_servers or [])
        ]
        self._pc = RTCPeerConnection(RTCConfiguration(iceServers=servers))
        self._trickle_ice = trickle_ice
        self._negotiation_scheduled = False
        self._events = EngineEvents()

        self._pc.on('datachannel', self._events.datachannel.emit)
        self._pc.on('track', self._events.track.emit)
        self._pc.on('connectionstatechange', self._on_connection_state)
        self._pc.on('iceconnectionstatechange', self._on_ice_connection_state)
        self._pc.on('icegatheringstatechange', self._on_ice_gathering_state)

    @property
    def events(self) -> EngineEvents:
        """Event bus of the engine."""
        return self._events

    @property
    def connection_state(self) -> str:
        """Current peer connection state."""
        return self._pc.connectionState

    @property
    def local_description(self) -> SessionDescription | None:
        """Committed local description, including gathered candidates."""
        description = self._pc.localDescription
        if description is None:
            return None
        return from_rtc_description(description)

    @property
    def peer_connection(self) -> RTCPeerConnection:
        """Underlying aiortc peer connection."""
        return self._pc

    def _on_connection_state(self) -> None:
        self._events.connection_state.emit(self._pc.connectionState)

    def _on_ice_connection_state(self) -> None:
        self._events.ice_connection_state.emit(self._pc.iceConnectionState)

    def _on_ice_gathering_state(self) -> None:
        self._events.ice_gathering_state.emit(self._pc.iceGatheringState)

    def _schedule_negotiation(self) -> None:
        if self._negotiation_scheduled:
            return
        self._negotiation_scheduled = True
        asyncio.get_running_loop().call_soon(self._fire_negotiation_needed)

    def _fire_negotiation_needed(self) -> None:
        self._negotiation_scheduled = False
        if self._pc.connectionState != 'closed':
            self._events.negotiation_needed.emit(None)

    async def create_offer(self) -> SessionDescription:
        """Create an offer."""
        return from_rtc_description(await self._pc.createOffer())

    async def create_answer(self) -> SessionDescription:
        """Create an answer to the committed remote offer."""
        return from_rtc_description(await self._pc.createAnswer())

    async def set_local_description(
        self,
        description: SessionDescription,
    ) -> None:
        """Commit a local session description.

        aiortc gathers ICE candidates while committing the description.
        """
        await self._pc.setLocalDescription(to_rtc_description(description))
        local = self._pc.localDescription
        if self._trickle_ice and local is not None:
            for candidate in candidates_from_sdp(local.sdp):
                self._events.ice_candidate.emit(candidate)

    async def set_remote_description(
        self,
        description: SessionDescription,
    ) -> None:
        """Commit a remote session description."""
        await self._pc.setRemoteDescription(to_rtc_description(description))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """Apply a remote ICE candidate.

        An empty candidate string (end-of-candidates) is ignored.

        Raises:
            ValueError: If the candidate string cannot be parsed.
        """
        line = candidate.candidate
        if line.startswith('a='):
            line = line[2:]
        if line.startswith('candidate:'):
            line = line[len('candidate:') :]
        if not line:
            return

        try:
            rtc_candidate = candidate_from_sdp(line)
        except (AssertionError, IndexError, ValueError) as e:
            raise ValueError(
                f'Malformed ICE candidate {candidate.candidate!r}: {e}',
            ) from e
        rtc_candidate.sdpMid = candidate.sdp_mid
        rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(rtc_candidate)

    def create_data_channel(self, label: str) -> RTCDataChannel:
        """Create an ordered, reliable data channel."""
        channel = self._pc.createDataChannel(label)
        self._schedule_negotiation()
        return channel

    def add_track(self, track: Any) -> None:
        """Add a local media track."""
        self._pc.addTrack(track)
        self._schedule_negotiation()

    async def close(self) -> None:
        """Close the peer connection and complete the event streams."""
        await self._pc.close()
        self._events.complete()
