"""Signaling over a relay server.

* [`SignalingTransport`][peertap.signaling.transport.SignalingTransport]
  frames signaling messages to and from a relay server.
* [`RelayServer`][peertap.signaling.server.RelayServer] is the stateless
  broadcaster peers connect to, served by the `peertap-relay` command.
"""
from __future__ import annotations

from peertap.signaling.messages import IceCandidate
from peertap.signaling.messages import SdpKind
from peertap.signaling.messages import SessionDescription
from peertap.signaling.messages import SignalType
from peertap.signaling.transport import SignalingTransport
