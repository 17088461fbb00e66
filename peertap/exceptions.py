"""Exception types raised by PeerTap."""
from __future__ import annotations


class PeerTapError(Exception):
    """Base exception type for PeerTap errors."""

    pass


class TransportError(PeerTapError):
    """Signaling transport failed to connect or is not open."""

    pass


class NegotiationError(PeerTapError):
    """Offer/answer creation or a description commit failed."""

    pass


class CandidateApplyError(PeerTapError):
    """A remote ICE candidate could not be applied to the engine."""

    pass


class ProtocolDecodeError(PeerTapError):
    """A received message could not be decoded."""

    pass


class FrameDecodeError(ProtocolDecodeError):
    """A signaling frame is malformed or has an unknown type tag."""

    pass


class TapDecodeError(ProtocolDecodeError):
    """A tap-point message is malformed or has an unknown kind."""

    pass
