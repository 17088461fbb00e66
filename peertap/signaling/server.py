"""Relay server implementation for bootstrapping WebRTC peer connections.

The relay server (or signaling server) is a lightweight server accessible
by all peers (e.g., has a public IP address). It has no concept of sessions
or registration: every message received from one client is rebroadcast
verbatim to every other connected client. This is sufficient for two peers
to exchange session descriptions and ICE candidates.

Warning:
    The relay assumes exactly two participants. With three or more
    connected clients every client receives every other client's frames
    and the resulting behavior is undefined.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging

import websockets.exceptions
from websockets.asyncio.server import broadcast
from websockets.asyncio.server import ServerConnection

logger = logging.getLogger(__name__)


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(frozen=True, eq=False)
class Client:
    """Representation of a client connected to the relay.

    Attributes:
        websocket: WebSocket connection to the client.
        created: Time the client connected at.
    """

    websocket: ServerConnection
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        address = str(self.websocket.remote_address)
        return (
            f'{self.__class__.__name__}(address={address}, '
            f'created={created})'
        )


class RelayServer:
    """Stateless fan-out relay server.

    The relay server is built on websockets and designed to be served using
    [`serve()`][peertap.signaling.run.serve].

    Args:
        max_message_bytes: Optional maximum size of client messages in
            bytes. Clients that send oversized messages will have their
            connections closed with code 4003.
    """

    def __init__(self, max_message_bytes: int | None = None) -> None:
        self._max_message_bytes = max_message_bytes
        self._clients: dict[ServerConnection, Client] = {}

    @property
    def clients(self) -> list[Client]:
        """Currently connected clients."""
        return list(self._clients.values())

    def add_client(self, websocket: ServerConnection) -> Client:
        """Track a newly connected client."""
        client = Client(websocket)
        self._clients[websocket] = client
        logger.info(f'Client connected: {client}')
        return client

    def remove_client(self, websocket: ServerConnection) -> None:
        """Stop tracking a client. No-op if the client is unknown."""
        client = self._clients.pop(websocket, None)
        if client is not None:
            logger.info(f'Client disconnected: {client}')

    def forward(self, source: ServerConnection, message: bytes | str) -> None:
        """Rebroadcast a message to every connected client except `source`.

        Binary messages are forwarded as binary and text messages as text.
        Clients whose connections are not open are skipped.
        """
        targets = [ws for ws in self._clients if ws is not source]
        logger.debug(
            f'Forwarding {len(message)} byte message from '
            f'{source.remote_address} to {len(targets)} client(s)',
        )
        broadcast(targets, message)

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler.

        The handler will close the connection with code 4003 if the client
        sends a message larger than the allowed size.

        Args:
            websocket: Websocket connection of a newly connected client.
        """
        self.add_client(websocket)
        try:
            async for message in websocket:
                if (
                    self._max_message_bytes is not None
                    and len(message) > self._max_message_bytes
                ):
                    logger.warning(
                        f'Client at {websocket.remote_address} sent message '
                        f'with size {len(message)} bytes which exceeds the '
                        f'max configured size of {self._max_message_bytes} '
                        'bytes. Connection closed with error code 4003',
                    )
                    await websocket.close(
                        4003,
                        reason='Message length exceeds limit.',
                    )
                    break
                self.forward(websocket, message)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(
                f'Connection to client at {websocket.remote_address} closed '
                f'unexpectedly: {e}',
            )
        finally:
            self.remove_client(websocket)
