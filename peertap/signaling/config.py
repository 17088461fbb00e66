"""Relay server configuration file parsing."""

from __future__ import annotations

import logging
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


DEFAULT_RELAY_PORT = 5555
DEFAULT_MAX_MESSAGE_BYTES = 1024 * 1024


class RelayLoggingConfig(BaseModel):
    """Relay logging configuration.

    Attributes:
        log_dir: Directory for rotating relay log files. Logs only go to
            stdout when unset.
        default_level: Level of the root logger.
        websockets_level: Level of the `websockets` logger, which logs every
            frame at `DEBUG` and is best kept at `WARNING`.
        current_client_interval: Seconds between reports of the peers
            connected to the relay, or `None` to disable the report.
        current_client_limit: The report lists each connected peer only
            while fewer than this many are connected. A relay usually
            pairs a handful of peers so the list stays short.
    """

    model_config = ConfigDict(extra='forbid')

    log_dir: str | None = None
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    current_client_interval: int | None = Field(default=60, gt=0)
    current_client_limit: int | None = Field(default=8, ge=0)


class RelayServingConfig(BaseModel):
    """Settings of a running relay server.

    Attributes:
        host: Interface to listen on. All interfaces when unset.
        port: Port peers connect to. Matches the default address of
            [`SignalingConfig`][peertap.peer.config.SignalingConfig].
        certfile: PEM certificate used to serve `wss://`.
        keyfile: Private key of `certfile`, if not bundled in it.
        logging: Logging configuration.
        max_message_bytes: Largest frame the relay forwards. Descriptions
            carry their gathered candidates, which keeps them to a few
            kilobytes, so the default is generous. `None` disables the check.
    """

    model_config = ConfigDict(extra='forbid')

    host: str | None = None
    port: int = Field(default=DEFAULT_RELAY_PORT, ge=0, le=65535)
    certfile: str | None = None
    keyfile: str | None = None
    logging: RelayLoggingConfig = Field(default_factory=RelayLoggingConfig)
    max_message_bytes: int | None = DEFAULT_MAX_MESSAGE_BYTES

    @field_validator('max_message_bytes')
    @classmethod
    def _check_max_message_bytes(cls, size: int | None) -> int | None:
        if size is not None and size < 1:
            raise ValueError(
                'Max message size must be None or greater than zero. '
                f'Got {size}.',
            )
        return size

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Load relay settings from a TOML file.

        Omitted settings keep their defaults.

        Example:
            A `wss://` relay reachable from other hosts.
            ```toml title="relay.toml"
            host = "0.0.0.0"
            certfile = "/etc/peertap/relay.pem"
            keyfile = "/etc/peertap/relay.key"
            max_message_bytes = 65536

            [logging]
            log_dir = "/var/log/peertap"
            current_client_interval = 30
            ```
        """
        return read_toml(cls, filepath)
