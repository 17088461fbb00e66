"""Peer session configuration."""
from __future__ import annotations

import pathlib
import sys

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from peertap.utils.config import read_toml
from peertap.utils.config import write_toml

DEFAULT_STUN_SERVER = 'stun:stun.l.google.com:19302'


class IceServerConfig(BaseModel):
    """STUN/TURN server used for ICE candidate gathering.

    Attributes:
        urls: Server URLs (e.g., `stun:stun.l.google.com:19302`).
        username: Optional TURN username.
        credential: Optional TURN credential. Excluded from the
            [`repr()`][repr] of this class.
    """

    model_config = ConfigDict(extra='forbid')

    urls: list[str]
    username: str | None = None
    credential: str | None = Field(default=None, repr=False)


class SignalingConfig(BaseModel):
    """Relay connection configuration.

    Attributes:
        address: Relay server address starting with `ws://` or `wss://`.
        timeout: Seconds to wait on the relay connection to open.
        verify_certificate: Verify the relay server's SSL certificate when
            connecting to a `wss://` address.
    """

    model_config = ConfigDict(extra='forbid')

    address: str = 'ws://localhost:5555'
    timeout: float = 10
    verify_certificate: bool = True

    @field_validator('address')
    @classmethod
    def _check_address(cls, address: str) -> str:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Relay address must start with ws:// or wss://. '
                f'Got {address}.',
            )
        return address


class PeerConfig(BaseModel):
    """Configuration of a peer session.

    The ICE server configuration is passed explicitly to every session
    rather than shared globally.

    Attributes:
        signaling: Relay connection configuration.
        ice_servers: STUN/TURN servers used by the connection engine.
        candidate_throttle: Optional interval in seconds; when set, bursts of
            received ICE candidates are flushed to the candidate queue at
            most once per interval.
        trickle_ice: Publish local ICE candidates as separate signaling
            messages in addition to embedding them in session descriptions.
    """

    model_config = ConfigDict(extra='forbid')

    signaling: SignalingConfig = Field(default_factory=SignalingConfig)
    ice_servers: list[IceServerConfig] = Field(
        default_factory=lambda: [IceServerConfig(urls=[DEFAULT_STUN_SERVER])],
    )
    candidate_throttle: float | None = Field(default=None, gt=0)
    trickle_ice: bool = False

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="peer.toml"
            candidate_throttle = 1.0

            [signaling]
            address = "wss://relay.example.com"
            timeout = 5

            [[ice_servers]]
            urls = ["stun:stun.l.google.com:19302"]

            [[ice_servers]]
            urls = ["turn:turn.example.com:3478"]
            username = "user"
            credential = "secret"
            ```
        """
        return read_toml(cls, filepath)

    def write_toml(self, filepath: str | pathlib.Path) -> None:
        """Write the configuration to a TOML file."""
        write_toml(self, filepath)
