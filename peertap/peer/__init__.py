"""Peer sessions negotiated through a signaling relay.

A [`PeerSession`][peertap.peer.session.PeerSession] pairs a
[`SignalingTransport`][peertap.signaling.transport.SignalingTransport] with
a [`ConnectionEngine`][peertap.peer.engine.ConnectionEngine] and drives the
offer/answer exchange between them. A
[`PeerEndpoint`][peertap.peer.session.PeerEndpoint] owns at most one live
session and replaces it on reconnect.
"""
from __future__ import annotations

from peertap.peer.config import PeerConfig
from peertap.peer.session import PeerEndpoint
from peertap.peer.session import PeerSession
