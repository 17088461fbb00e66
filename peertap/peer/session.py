"""Peer sessions and the endpoint that owns them."""
from __future__ import annotations

import logging
import sys
from types import TracebackType
from typing import Any
from typing import Iterable

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from peertap.peer.channels import DataChannelRegistry
from peertap.peer.config import PeerConfig
from peertap.peer.engine import AiortcEngine
from peertap.peer.engine import ConnectionEngine
from peertap.peer.engine import DataChannel
from peertap.peer.negotiation import NegotiationEngine
from peertap.signaling.transport import SignalingTransport
from peertap.utils.events import EventStream
from peertap.utils.events import Subscription

logger = logging.getLogger(__name__)


class PeerSession:
    """Live negotiation session with one remote peer.

    A session owns its signaling transport, its connection engine (through
    the [`NegotiationEngine`][peertap.peer.negotiation.NegotiationEngine]),
    the remote ICE candidate queue, and the
    [`DataChannelRegistry`][peertap.peer.channels.DataChannelRegistry].
    The role (initiator or responder) is fixed for the life of the session.

    Data channels created by this side are registered once they open;
    channels opened by the remote peer are registered when the engine
    reports them.

    Tip:
        Use [`PeerSession.create()`][peertap.peer.session.PeerSession.create]
        to connect a transport and build an aiortc-backed session from a
        [`PeerConfig`][peertap.peer.config.PeerConfig].

    Args:
        transport: Connected signaling transport owned by the session.
        engine: Connection engine owned by the session.
        initiator: If this side creates offers.
        config: Peer configuration. Defaults to `PeerConfig()`.
        channels: Labels of data channels to create.
        tracks: Local media tracks to add to the engine.
    """

    def __init__(
        self,
        transport: SignalingTransport,
        engine: ConnectionEngine,
        *,
        initiator: bool,
        config: PeerConfig | None = None,
        channels: Iterable[str] = (),
        tracks: Iterable[Any] = (),
    ) -> None:
        self._config = PeerConfig() if config is None else config
        self._transport = transport
        self._engine = engine
        self._closed = False

        self._registry = DataChannelRegistry()
        self._negotiation = NegotiationEngine(
            engine,
            transport,
            initiator=initiator,
            candidate_throttle=self._config.candidate_throttle,
        )
        self._datachannel_subscription: Subscription[DataChannel] = (
            engine.events.datachannel.subscribe(self._registry.add)
        )

        for track in tracks:
            engine.add_track(track)
        for label in channels:
            self._registry.add_when_open(engine.create_data_channel(label))

        logger.info(f'{self._log_prefix}: session created')

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @classmethod
    async def create(
        cls,
        config: PeerConfig | None = None,
        *,
        initiator: bool,
        channels: Iterable[str] = (),
        tracks: Iterable[Any] = (),
    ) -> PeerSession:
        """Connect to the relay and create an aiortc-backed session.

        Args:
            config: Peer configuration. Defaults to `PeerConfig()`.
            initiator: If this side creates offers.
            channels: Labels of data channels to create.
            tracks: Local media tracks to add to the engine.

        Raises:
            TransportError: If the relay connection could not be opened.
        """
        config = PeerConfig() if config is None else config
        transport = SignalingTransport(
            config.signaling.address,
            timeout=config.signaling.timeout,
            verify_certificate=config.signaling.verify_certificate,
        )
        await transport.connect()

        engine = AiortcEngine(
            config.ice_servers,
            trickle_ice=config.trickle_ice,
        )
        return cls(
            transport,
            engine,
            initiator=initiator,
            config=config,
            channels=channels,
            tracks=tracks,
        )

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self.role}]'

    @property
    def role(self) -> str:
        """Either `'initiator'` or `'responder'`."""
        return self._negotiation.role

    @property
    def closed(self) -> bool:
        """The session has been closed."""
        return self._closed

    @property
    def config(self) -> PeerConfig:
        """Configuration of the session."""
        return self._config

    @property
    def transport(self) -> SignalingTransport:
        """Signaling transport of the session."""
        return self._transport

    @property
    def negotiation(self) -> NegotiationEngine:
        """Negotiation engine of the session."""
        return self._negotiation

    @property
    def registry(self) -> DataChannelRegistry:
        """Registry of open data channels."""
        return self._registry

    @property
    def tracks(self) -> EventStream[Any]:
        """Stream of media tracks added by the remote peer."""
        return self._engine.events.track

    async def close(self) -> None:
        """Tear down the session.

        Stops negotiation (cancelling in-flight handlers and the candidate
        worker), closes the transport so its receive streams complete,
        closes every registered data channel, and finally closes the
        engine. No engine call is made after this returns. Safe to call
        more than once.
        """
        if self._closed:
            return
        self._closed = True
        logger.info(f'{self._log_prefix}: closing session')

        self._datachannel_subscription.dispose()
        await self._negotiation.stop()
        await self._transport.close()
        self._registry.close()
        await self._negotiation.close()
        logger.info(f'{self._log_prefix}: session closed')


class PeerEndpoint:
    """Owner of at most one live peer session.

    Connecting again first fully closes the previous session so that a new
    session always supersedes the old one.

    Example:
        ```python
        from peertap.peer.session import PeerEndpoint

        async with PeerEndpoint(config, initiator=True, channels=['stp']) as ep:
            session = await ep.connect()
            ...
            # Reconnect after a failure.
            session = await ep.connect()
        ```

    Args:
        config: Peer configuration used for every session.
        initiator: If sessions created by this endpoint create offers.
        channels: Labels of data channels each session creates.
    """

    def __init__(
        self,
        config: PeerConfig | None = None,
        *,
        initiator: bool,
        channels: Iterable[str] = (),
    ) -> None:
        self._config = PeerConfig() if config is None else config
        self._initiator = initiator
        self._channels = tuple(channels)
        self._session: PeerSession | None = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def session(self) -> PeerSession | None:
        """The current session, if any."""
        return self._session

    async def connect(self, tracks: Iterable[Any] = ()) -> PeerSession:
        """Close the current session, if any, and create a new one.

        Args:
            tracks: Local media tracks to add to the new session.

        Raises:
            TransportError: If the relay connection could not be opened. The
                previous session is closed regardless.
        """
        await self.close()
        self._session = await PeerSession.create(
            self._config,
            initiator=self._initiator,
            channels=self._channels,
            tracks=tracks,
        )
        return self._session

    async def close(self) -> None:
        """Close the current session, if any."""
        session, self._session = self._session, None
        if session is not None:
            await session.close()
