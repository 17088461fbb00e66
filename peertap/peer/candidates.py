"""Serialized application of remote ICE candidates."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Awaitable
from typing import Callable

from peertap.signaling.messages import IceCandidate
from peertap.utils.tasks import cancel_and_wait
from peertap.utils.tasks import spawn_logged_background_task

logger = logging.getLogger(__name__)

_COMPLETE = object()


class IceCandidateQueue:
    """FIFO queue of remote ICE candidates drained by a single worker.

    The worker applies one candidate at a time by awaiting `apply` so no two
    applications are ever in flight at once, and candidates are applied in
    the order they were put. A failed application is logged and the worker
    moves on to the next candidate.

    When `throttle` is set, received candidates are buffered and handed to
    the worker in one batch at most once every `throttle` seconds (trailing
    edge). Buffered candidates are never dropped or reordered.

    Note:
        The worker task is started on construction so the queue must be
        created while an event loop is running.

    Args:
        apply: Coroutine function applying one candidate to the engine.
        throttle: Optional flush interval in seconds.
        name: Name used in log messages and the worker task name.
    """

    def __init__(
        self,
        apply: Callable[[IceCandidate], Awaitable[None]],
        *,
        throttle: float | None = None,
        name: str = 'ice-candidate-queue',
    ) -> None:
        if throttle is not None and throttle <= 0:
            raise ValueError(f'Throttle must be positive. Got {throttle}.')

        self._apply = apply
        self._throttle = throttle
        self._name = name

        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._buffer: list[IceCandidate] = []
        self._flush_handle: asyncio.TimerHandle | None = None
        self._applied = 0
        self._failed = 0
        self._completed = False
        self._closed = False

        self._worker = spawn_logged_background_task(self._run)
        self._worker.set_name(f'{name}-worker')

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._name}]'

    @property
    def applied(self) -> int:
        """Number of candidates successfully applied."""
        return self._applied

    @property
    def failed(self) -> int:
        """Number of candidates that failed to apply."""
        return self._failed

    @property
    def pending(self) -> int:
        """Number of candidates buffered or queued but not yet applied."""
        return len(self._buffer) + self._queue.qsize()

    @property
    def closed(self) -> bool:
        """The queue no longer accepts candidates."""
        return self._completed or self._closed

    def put(self, candidate: IceCandidate) -> None:
        """Enqueue a remote candidate.

        Candidates put after the queue is completed or closed are ignored.
        """
        if self.closed:
            logger.debug(
                f'{self._log_prefix}: ignoring candidate received after '
                'the queue was closed',
            )
            return

        self._buffer.append(candidate)
        if self._throttle is None:
            self._flush()
        elif self._flush_handle is None:
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_later(self._throttle, self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        if len(self._buffer) > 1:
            logger.debug(
                f'{self._log_prefix}: flushing {len(self._buffer)} buffered '
                'candidates',
            )
        for candidate in self._buffer:
            self._queue.put_nowait(candidate)
        self._buffer.clear()

    def complete(self) -> None:
        """Stop accepting candidates and let the worker drain the queue.

        Buffered candidates are flushed immediately. The worker exits once
        every queued candidate has been applied.
        """
        if self.closed:
            return
        self._completed = True
        if self._flush_handle is not None:
            self._flush_handle.cancel()
        self._flush()
        self._queue.put_nowait(_COMPLETE)

    async def join(self) -> None:
        """Wait until every candidate handed to the worker is processed.

        Candidates still buffered by the throttle are not waited on.
        """
        await self._queue.join()

    async def wait_closed(self) -> None:
        """Wait for the worker to exit after the queue is completed."""
        await asyncio.shield(self._worker)

    async def close(self) -> None:
        """Cancel the worker and discard any unapplied candidates.

        No `apply` call is made after this returns. Safe to call more than
        once.
        """
        if self._closed:
            return
        self._closed = True
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        await cancel_and_wait(self._worker)
        discarded = len(self._buffer)
        self._buffer.clear()
        while not self._queue.empty():
            if self._queue.get_nowait() is not _COMPLETE:
                discarded += 1
            self._queue.task_done()
        if discarded > 0:
            logger.info(
                f'{self._log_prefix}: closed with {discarded} unapplied '
                'candidate(s)',
            )

    async def _run(self) -> None:
        while True:
            candidate = await self._queue.get()
            try:
                if candidate is _COMPLETE:
                    logger.debug(f'{self._log_prefix}: queue complete')
                    return
                await self._apply_one(candidate)
            finally:
                self._queue.task_done()

    async def _apply_one(self, candidate: IceCandidate) -> None:
        try:
            await self._apply(candidate)
        except Exception as e:
            self._failed += 1
            logger.error(
                f'{self._log_prefix}: failed to apply candidate '
                f'{candidate.candidate!r}: {e!r}',
            )
        else:
            self._applied += 1
            logger.debug(
                f'{self._log_prefix}: applied candidate {candidate.candidate}',
            )
