"""Signaling transport to a relay server."""
from __future__ import annotations

import asyncio
import logging
import ssl
import sys
from types import TracebackType

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect
from websockets.protocol import State

from peertap.exceptions import FrameDecodeError
from peertap.exceptions import TransportError
from peertap.signaling.messages import decode_message
from peertap.signaling.messages import encode_frame
from peertap.signaling.messages import IceCandidate
from peertap.signaling.messages import SessionDescription
from peertap.signaling.messages import SignalType
from peertap.utils.events import EventStream
from peertap.utils.tasks import cancel_and_wait
from peertap.utils.tasks import spawn_logged_background_task

logger = logging.getLogger(__name__)


class SignalingTransport:
    """Framed signaling connection to a relay server.

    Outbound messages are framed with
    [`encode_frame()`][peertap.signaling.messages.encode_frame] and sent as
    a single binary websocket message. Inbound messages are decoded and
    published on one of three streams depending on their type tag:
    [`receive_offer`][peertap.signaling.transport.SignalingTransport.receive_offer],
    [`receive_answer`][peertap.signaling.transport.SignalingTransport.receive_answer],
    and [`receive_ice`][peertap.signaling.transport.SignalingTransport.receive_ice].
    The streams complete only when the transport is closed.

    Unlike a reconnecting relay client, a transport makes a single
    connection attempt. A new transport must be created to reconnect.

    Tip:
        This class can be used as an async context manager!
        ```python
        from peertap.signaling.transport import SignalingTransport

        async with SignalingTransport('ws://localhost:5555') as transport:
            transport.receive_offer.subscribe(print)
            await transport.send_offer(offer)
        ```

    Args:
        address: Address of the relay server. Should start with `ws://` or
            `wss://`.
        timeout: Time to wait in seconds on the connection to open.
        ssl_context: Custom SSL context to pass to
            [`connect()`][websockets.asyncio.client.connect]. A TLS context
            is created with
            [`ssl.create_default_context()`][ssl.create_default_context]
            when connecting to a `wss://` URI and `ssl_context` is not
            provided.
        verify_certificate: Verify the relay server's SSL certificate. Only
            used if `ssl_context` is `None` and connecting to a `wss://` URI.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        *,
        timeout: float = 10,
        ssl_context: ssl.SSLContext | None = None,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Relay server address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
        self._ssl_context = ssl_context

        self._websocket: ClientConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._attempted = False
        self._closed = False

        self.receive_offer: EventStream[SessionDescription] = EventStream(
            'receive-offer',
        )
        self.receive_answer: EventStream[SessionDescription] = EventStream(
            'receive-answer',
        )
        self.receive_ice: EventStream[IceCandidate] = EventStream(
            'receive-ice',
        )

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._address}]'

    @property
    def address(self) -> str:
        """Address of the relay server."""
        return self._address

    @property
    def connected(self) -> bool:
        """The websocket connection to the relay is open."""
        return (
            self._websocket is not None
            and self._websocket.state is State.OPEN
        )

    async def connect(self) -> None:
        """Open the connection to the relay server.

        Returns once the connection is open. No retry is attempted on
        failure.

        Raises:
            TransportError: If the connection could not be opened within
                the timeout, or if this transport has already made its
                connection attempt.
        """
        if self._attempted or self._closed:
            raise TransportError(
                f'{self._log_prefix}: a transport can only be connected once.',
            )
        self._attempted = True

        try:
            self._websocket = await connect(
                self._address,
                open_timeout=self._timeout,
                ssl=self._ssl_context,
            )
        except (
            OSError,
            asyncio.TimeoutError,
            websockets.exceptions.InvalidHandshake,
            websockets.exceptions.InvalidURI,
        ) as e:
            logger.warning(
                f'{self._log_prefix}: failed to connect to relay server: '
                f'{e!r}',
            )
            raise TransportError(
                f'Failed to connect to relay server at {self._address}: {e}',
            ) from e

        logger.info(f'{self._log_prefix}: connected to relay server')
        self._reader_task = spawn_logged_background_task(
            self._read_messages,
            self._websocket,
        )
        self._reader_task.set_name('signaling-transport-reader')

    async def close(self) -> None:
        """Close the connection and complete all receive streams.

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True

        await cancel_and_wait(self._reader_task)
        if self._websocket is not None:
            await self._websocket.close()

        self.receive_offer.complete()
        self.receive_answer.complete()
        self.receive_ice.complete()
        logger.info(f'{self._log_prefix}: transport closed')

    async def send(self, signal_type: SignalType, payload_json: str) -> None:
        """Send one signaling frame to the relay server.

        Args:
            signal_type: Type tag of the payload.
            payload_json: JSON encoded payload.

        Raises:
            TransportError: If the connection is not open.
        """
        if self._websocket is None or not self.connected:
            raise TransportError(
                f'{self._log_prefix}: connection to the relay server is not '
                'open.',
            )

        frame = encode_frame(signal_type, payload_json)
        try:
            await self._websocket.send(frame)
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportError(
                f'{self._log_prefix}: connection closed while sending.',
            ) from e
        logger.debug(
            f'{self._log_prefix}: sent {signal_type.name} frame '
            f'({len(frame)} bytes)',
        )

    async def send_offer(self, description: SessionDescription) -> None:
        """Send an offer session description."""
        logger.info(f'{self._log_prefix}: sending offer')
        await self.send(SignalType.OFFER, description.to_json())

    async def send_answer(self, description: SessionDescription) -> None:
        """Send an answer session description."""
        logger.info(f'{self._log_prefix}: sending answer')
        await self.send(SignalType.ANSWER, description.to_json())

    async def send_ice(self, candidate: IceCandidate) -> None:
        """Send an ICE candidate."""
        logger.debug(
            f'{self._log_prefix}: sending ICE candidate {candidate.candidate}',
        )
        await self.send(SignalType.ICE, candidate.to_json())

    def dispatch(self, data: bytes | str) -> None:
        """Decode one relay message and publish it on its receive stream.

        Messages that cannot be decoded are discarded.
        """
        if isinstance(data, str):
            data = data.encode('utf-8')

        try:
            signal_type, message = decode_message(data)
        except FrameDecodeError as e:
            logger.debug(f'{self._log_prefix}: discarding message: {e}')
            return

        if signal_type is SignalType.OFFER:
            assert isinstance(message, SessionDescription)
            self.receive_offer.emit(message)
        elif signal_type is SignalType.ANSWER:
            assert isinstance(message, SessionDescription)
            self.receive_answer.emit(message)
        else:
            assert isinstance(message, IceCandidate)
            self.receive_ice.emit(message)

    async def _read_messages(self, websocket: ClientConnection) -> None:
        try:
            async for data in websocket:
                self.dispatch(data)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(
                f'{self._log_prefix}: connection to relay server closed '
                f'unexpectedly: {e}',
            )
        else:
            logger.info(f'{self._log_prefix}: relay server closed connection')
