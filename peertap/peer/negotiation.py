"""Offer/answer negotiation over a signaling transport."""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Protocol
from typing import TypeVar

from peertap.exceptions import CandidateApplyError
from peertap.exceptions import NegotiationError
from peertap.exceptions import TransportError
from peertap.peer.candidates import IceCandidateQueue
from peertap.peer.engine import ConnectionEngine
from peertap.signaling.messages import IceCandidate
from peertap.signaling.messages import SdpKind
from peertap.signaling.messages import SessionDescription
from peertap.utils.events import EventStream
from peertap.utils.events import Subscription
from peertap.utils.tasks import cancel_and_wait
from peertap.utils.tasks import spawn_logged_background_task

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Signaler(Protocol):
    """Signaling operations required by the negotiation engine.

    [`SignalingTransport`][peertap.signaling.transport.SignalingTransport]
    satisfies this protocol.
    """

    receive_offer: EventStream[SessionDescription]
    receive_answer: EventStream[SessionDescription]
    receive_ice: EventStream[IceCandidate]

    async def send_offer(self, description: SessionDescription) -> None:
        """Send an offer."""
        ...

    async def send_answer(self, description: SessionDescription) -> None:
        """Send an answer."""
        ...

    async def send_ice(self, candidate: IceCandidate) -> None:
        """Send a local ICE candidate."""
        ...


class NegotiationState(enum.Enum):
    """State of the offer/answer exchange."""

    IDLE = 'idle'
    """No description has been exchanged yet."""
    NEGOTIATING_LOCAL = 'negotiating-local'
    """A local offer was sent and the answer is outstanding."""
    NEGOTIATING_REMOTE = 'negotiating-remote'
    """A remote offer was committed and the answer is being created."""
    STABLE = 'stable'
    """Both descriptions of the last exchange are committed."""


class NegotiationEngine:
    """Drives the offer/answer cycle of a connection engine.

    The negotiation engine subscribes to the engine's negotiation-needed
    and local ICE candidate events and to the transport's receive streams:

    * negotiation-needed triggers
      [`create_offer()`][peertap.peer.negotiation.NegotiationEngine.create_offer]
      on the initiator; the responder waits for an offer.
    * A received offer triggers
      [`create_answer()`][peertap.peer.negotiation.NegotiationEngine.create_answer].
    * A received answer is committed as the remote description.
    * Local ICE candidates are forwarded to the transport immediately.
    * Remote ICE candidates are put on an
      [`IceCandidateQueue`][peertap.peer.candidates.IceCandidateQueue]
      whose worker applies them once a remote description is committed.

    Every engine call is made while holding a single lock so no two engine
    operations interleave. Failures to create or commit a description are
    logged and abort the operation; the session stays alive and waits for
    the next trigger.

    Args:
        engine: Connection engine exclusively owned by this object.
        signaler: Transport used to exchange descriptions and candidates.
        initiator: If this side creates offers.
        candidate_throttle: Optional flush interval of the candidate queue.
    """

    def __init__(
        self,
        engine: ConnectionEngine,
        signaler: Signaler,
        *,
        initiator: bool,
        candidate_throttle: float | None = None,
    ) -> None:
        self._engine = engine
        self._signaler = signaler
        self._initiator = initiator

        self._state = NegotiationState.IDLE
        self._engine_lock = asyncio.Lock()
        self._remote_committed = asyncio.Event()
        self._renegotiate = False
        self._closed = False
        self._engine_closed = False
        self._tasks: set[asyncio.Task[Any]] = set()

        self._candidates = IceCandidateQueue(
            self._apply_remote_candidate,
            throttle=candidate_throttle,
            name=f'{self.role}-ice',
        )

        events = engine.events
        self._subscriptions: list[Subscription[Any]] = [
            events.negotiation_needed.subscribe(
                self._spawn(self.on_negotiation_needed),
            ),
            events.ice_candidate.subscribe(
                self._spawn(self.on_local_ice_candidate),
            ),
            events.connection_state.subscribe(
                self._log_state('connection state'),
            ),
            events.ice_connection_state.subscribe(
                self._log_state('ICE connection state'),
            ),
            events.ice_gathering_state.subscribe(
                self._log_state('ICE gathering state'),
            ),
            signaler.receive_offer.subscribe(
                self._spawn(self.on_remote_offer),
            ),
            signaler.receive_answer.subscribe(
                self._spawn(self.on_remote_answer),
            ),
            signaler.receive_ice.subscribe(self.on_remote_ice_candidate),
        ]

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self.role}]'

    @property
    def role(self) -> str:
        """Either `'initiator'` or `'responder'`."""
        return 'initiator' if self._initiator else 'responder'

    @property
    def initiator(self) -> bool:
        """This side creates offers."""
        return self._initiator

    @property
    def state(self) -> NegotiationState:
        """Current negotiation state."""
        return self._state

    @property
    def engine(self) -> ConnectionEngine:
        """Connection engine driven by this negotiation engine."""
        return self._engine

    @property
    def candidates(self) -> IceCandidateQueue:
        """Queue of remote ICE candidates awaiting application."""
        return self._candidates

    def _set_state(self, state: NegotiationState) -> None:
        if state is not self._state:
            logger.debug(
                f'{self._log_prefix}: {self._state.value} -> {state.value}',
            )
        self._state = state

    def _log_state(self, name: str) -> Callable[[str], None]:
        def _log(state: str) -> None:
            logger.info(f'{self._log_prefix}: {name} changed to {state}')

        return _log

    def _spawn(
        self,
        handler: Callable[[T], Awaitable[Any]],
    ) -> Callable[[T], None]:
        # Handler tasks are tracked so stop() can cancel the ones in flight.
        def _start(value: T) -> None:
            if self._closed:
                return
            task = spawn_logged_background_task(handler, value)
            task.set_name(f'{self.role}-{handler.__name__}')
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return _start

    def _committed_local(
        self,
        description: SessionDescription,
    ) -> SessionDescription:
        # Engines may only embed gathered candidates in the committed copy.
        committed = self._engine.local_description
        return description if committed is None else committed

    async def _step(self, name: str, operation: Awaitable[T]) -> T:
        # Runs one engine operation, converting its failure.
        try:
            return await operation
        except Exception as e:
            raise NegotiationError(f'{name} failed: {e!r}') from e

    async def create_offer(self) -> SessionDescription | None:
        """Create an offer, commit it locally, and send it.

        Only valid on the initiator from the idle or stable state; other
        calls are logged and ignored. Nothing further is done once the
        negotiation engine is stopped, even mid-operation.

        Returns:
            The offer sent or `None` if no offer was sent.
        """
        if not self._initiator:
            logger.warning(
                f'{self._log_prefix}: only the initiator creates offers',
            )
            return None

        async with self._engine_lock:
            if self._closed:
                return None
            if self._state not in (
                NegotiationState.IDLE,
                NegotiationState.STABLE,
            ):
                logger.info(
                    f'{self._log_prefix}: offer already outstanding, will '
                    'renegotiate once answered',
                )
                self._renegotiate = True
                return None

            try:
                offer = await self._step(
                    'create offer',
                    self._engine.create_offer(),
                )
                if self._closed:
                    return None
                await self._step(
                    'set local offer',
                    self._engine.set_local_description(offer),
                )
            except NegotiationError as e:
                logger.error(f'{self._log_prefix}: {e}')
                return None
            if self._closed:
                return None
            offer = self._committed_local(offer)
            self._set_state(NegotiationState.NEGOTIATING_LOCAL)

        if self._closed:
            return None
        try:
            await self._signaler.send_offer(offer)
        except TransportError as e:
            logger.error(f'{self._log_prefix}: failed to send offer: {e}')
            return None
        return offer

    async def create_answer(
        self,
        offer: SessionDescription,
    ) -> SessionDescription | None:
        """Commit a remote offer, create an answer, commit it, and send it.

        Descriptions that are not offers are ignored. Nothing further is
        done once the negotiation engine is stopped, even mid-operation.

        Args:
            offer: Offer received from the remote peer.

        Returns:
            The answer sent or `None` if no answer was sent.
        """
        if offer.kind is not SdpKind.offer:
            logger.warning(
                f'{self._log_prefix}: ignoring {offer.kind.value} passed '
                'where an offer was expected',
            )
            return None

        async with self._engine_lock:
            if self._closed:
                return None
            try:
                await self._step(
                    'set remote offer',
                    self._engine.set_remote_description(offer),
                )
                if self._closed:
                    return None
                self._set_state(NegotiationState.NEGOTIATING_REMOTE)
                self._remote_committed.set()
                answer = await self._step(
                    'create answer',
                    self._engine.create_answer(),
                )
                if self._closed:
                    return None
                await self._step(
                    'set local answer',
                    self._engine.set_local_description(answer),
                )
            except NegotiationError as e:
                logger.error(f'{self._log_prefix}: {e}')
                return None
            if self._closed:
                return None
            answer = self._committed_local(answer)
            self._set_state(NegotiationState.STABLE)

        if self._closed:
            return None
        try:
            await self._signaler.send_answer(answer)
        except TransportError as e:
            logger.error(f'{self._log_prefix}: failed to send answer: {e}')
            return None
        return answer

    async def on_negotiation_needed(self, _: None = None) -> None:
        """Handle the engine's negotiation-needed event."""
        logger.info(f'{self._log_prefix}: negotiation needed')
        if self._initiator:
            await self.create_offer()

    async def on_remote_offer(self, description: SessionDescription) -> None:
        """Handle an offer received from the transport."""
        logger.info(f'{self._log_prefix}: received offer')
        await self.create_answer(description)

    async def on_remote_answer(self, description: SessionDescription) -> None:
        """Commit an answer received from the transport.

        Answers received while no local offer is outstanding are ignored.
        """
        logger.info(f'{self._log_prefix}: received answer')
        if description.kind is not SdpKind.answer:
            logger.warning(
                f'{self._log_prefix}: ignoring {description.kind.value} '
                'received as an answer',
            )
            return

        async with self._engine_lock:
            if self._closed:
                return
            if self._state is not NegotiationState.NEGOTIATING_LOCAL:
                logger.warning(
                    f'{self._log_prefix}: ignoring answer received in state '
                    f'{self._state.value}',
                )
                return
            try:
                await self._step(
                    'set remote answer',
                    self._engine.set_remote_description(description),
                )
            except NegotiationError as e:
                logger.error(f'{self._log_prefix}: {e}')
                return
            if self._closed:
                return
            self._set_state(NegotiationState.STABLE)
            self._remote_committed.set()
            renegotiate, self._renegotiate = self._renegotiate, False

        if renegotiate:
            await self.create_offer()

    async def on_local_ice_candidate(self, candidate: IceCandidate) -> None:
        """Forward a local ICE candidate to the remote peer.

        Best effort: a failure to send is logged and not retried.
        """
        if self._closed:
            return
        try:
            await self._signaler.send_ice(candidate)
        except TransportError as e:
            logger.warning(
                f'{self._log_prefix}: failed to send ICE candidate: {e}',
            )

    def on_remote_ice_candidate(self, candidate: IceCandidate) -> None:
        """Queue a remote ICE candidate for application."""
        self._candidates.put(candidate)

    async def _apply_remote_candidate(self, candidate: IceCandidate) -> None:
        # Candidates may arrive before the offer or answer they belong to.
        await self._remote_committed.wait()
        async with self._engine_lock:
            if self._closed:
                return
            try:
                await self._engine.add_ice_candidate(candidate)
            except Exception as e:
                raise CandidateApplyError(
                    f'add ICE candidate failed: {e!r}',
                ) from e

    async def stop(self) -> None:
        """Stop negotiating without closing the connection engine.

        Unsubscribes from all streams, cancels handler tasks still in
        flight, and cancels the candidate worker. No engine call or send is
        started after this returns. Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.dispose()

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                await cancel_and_wait(task)
        self._tasks.clear()

        await self._candidates.close()
        logger.debug(f'{self._log_prefix}: stopped negotiating')

    async def close(self) -> None:
        """Stop negotiating and close the connection engine.

        The engine is closed while holding the engine lock so it never
        overlaps another engine operation. Safe to call more than once.
        """
        await self.stop()
        if self._engine_closed:
            return
        self._engine_closed = True
        async with self._engine_lock:
            await self._engine.close()
        logger.info(f'{self._log_prefix}: closed')
