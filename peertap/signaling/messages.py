"""Signaling message types and relay wire framing.

Every relay message carries exactly one signaling frame:
`payload || tag` where `payload` is the UTF-8 JSON encoding of a
[`SessionDescription`][peertap.signaling.messages.SessionDescription] or an
[`IceCandidate`][peertap.signaling.messages.IceCandidate] and `tag` is a
single trailing [`SignalType`][peertap.signaling.messages.SignalType] byte.
Frames have no length prefix; the websocket message boundary delimits them.
"""
from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any

from peertap.exceptions import FrameDecodeError


class SignalType(enum.IntEnum):
    """Type tag appended to each signaling frame."""

    OFFER = 1
    """Frame carries an offer session description."""
    ANSWER = 2
    """Frame carries an answer session description."""
    ICE = 3
    """Frame carries an ICE candidate."""


class SdpKind(enum.Enum):
    """Role of a session description in the offer/answer exchange."""

    offer = 'offer'
    answer = 'answer'


@dataclasses.dataclass(frozen=True)
class SessionDescription:
    """Session description produced by a connection engine.

    Attributes:
        kind: Offer or answer.
        sdp: Session description protocol text.
    """

    kind: SdpKind
    sdp: str

    def to_json(self) -> str:
        """Encode as a `{"type": ..., "sdp": ...}` JSON string."""
        return json.dumps({'type': self.kind.value, 'sdp': self.sdp})

    @classmethod
    def from_json(cls, data: str) -> SessionDescription:
        """Decode a JSON string produced by `to_json()`.

        Raises:
            FrameDecodeError: If the JSON is malformed, a field is missing,
                or the type is not an offer or answer.
        """
        obj = _load_object(data)
        try:
            kind_str = obj['type']
            sdp = obj['sdp']
        except KeyError as e:
            raise FrameDecodeError(
                f'Session description is missing the {e} field.',
            ) from None

        if not isinstance(kind_str, str) or not isinstance(sdp, str):
            raise FrameDecodeError(
                'Session description type and sdp must be strings.',
            )
        try:
            kind = SdpKind(kind_str.lower())
        except ValueError:
            raise FrameDecodeError(
                f'Unsupported session description type: {kind_str}.',
            ) from None
        return cls(kind=kind, sdp=sdp)


@dataclasses.dataclass(frozen=True)
class IceCandidate:
    """Network path descriptor exchanged during connectivity setup.

    Attributes:
        candidate: Candidate attribute line (e.g. `candidate:1 1 UDP ...`).
        sdp_mid: Media stream identification tag the candidate belongs to.
        sdp_mline_index: Index of the media description the candidate
            belongs to.
    """

    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int = 0

    def to_json(self) -> str:
        """Encode as a `{"candidate", "sdpMid", "sdpMLineIndex"}` string."""
        return json.dumps(
            {
                'candidate': self.candidate,
                'sdpMid': self.sdp_mid,
                'sdpMLineIndex': self.sdp_mline_index,
            },
        )

    @classmethod
    def from_json(cls, data: str) -> IceCandidate:
        """Decode a JSON string produced by `to_json()`.

        A missing (or `null`) `sdpMLineIndex` decodes as `0`.

        Raises:
            FrameDecodeError: If the JSON is malformed or the candidate
                field is missing.
        """
        obj = _load_object(data)
        candidate = obj.get('candidate')
        if not isinstance(candidate, str):
            raise FrameDecodeError('ICE candidate has no candidate string.')

        sdp_mid = obj.get('sdpMid')
        index = obj.get('sdpMLineIndex')
        if index is None:
            index = 0
        if isinstance(index, bool) or not isinstance(index, int):
            raise FrameDecodeError(
                f'ICE candidate sdpMLineIndex must be an integer: {index!r}.',
            )
        return cls(
            candidate=candidate,
            sdp_mid=None if sdp_mid is None else str(sdp_mid),
            sdp_mline_index=index,
        )


SignalingMessage = SessionDescription | IceCandidate


def _load_object(data: str) -> dict[str, Any]:
    try:
        obj = json.loads(data)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f'Failed to load string as JSON: {e}') from e
    if not isinstance(obj, dict):
        raise FrameDecodeError(
            f'Expected a JSON object but got {type(obj).__name__}.',
        )
    return obj


def encode_frame(signal_type: SignalType, payload_json: str) -> bytes:
    """Encode a signaling frame.

    Args:
        signal_type: Type tag of the payload.
        payload_json: JSON encoded payload.

    Returns:
        UTF-8 payload bytes followed by the one-byte type tag.
    """
    return payload_json.encode('utf-8') + bytes((SignalType(signal_type),))


def decode_frame(data: bytes) -> tuple[SignalType, str]:
    """Split a signaling frame into its type tag and JSON payload.

    Args:
        data: Complete frame as received from the relay.

    Returns:
        Tuple of the type tag and the decoded payload string.

    Raises:
        FrameDecodeError: If the frame is empty, the trailing tag is
            unknown, or the payload is not valid UTF-8.
    """
    if len(data) == 0:
        raise FrameDecodeError('Received an empty signaling frame.')

    try:
        signal_type = SignalType(data[-1])
    except ValueError:
        raise FrameDecodeError(
            f'Unknown signaling frame type tag: {data[-1]}.',
        ) from None

    try:
        payload = data[:-1].decode('utf-8')
    except UnicodeDecodeError as e:
        raise FrameDecodeError(f'Frame payload is not UTF-8: {e}') from e

    return signal_type, payload


def decode_message(data: bytes) -> tuple[SignalType, SignalingMessage]:
    """Decode a signaling frame into its typed message.

    Raises:
        FrameDecodeError: If the frame or its payload cannot be decoded.
    """
    signal_type, payload = decode_frame(data)
    message: SignalingMessage
    if signal_type is SignalType.ICE:
        message = IceCandidate.from_json(payload)
    else:
        message = SessionDescription.from_json(payload)
    return signal_type, message
