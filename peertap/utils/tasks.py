"""Spawn asyncio background tasks with error handling."""
from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any
from typing import Awaitable
from typing import Callable

logger = logging.getLogger(__name__)


class SafeTaskExitError(Exception):
    """Raised by a guarded task to finish without stopping the process."""


async def _run_logging_failure(
    coro: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> None:
    # The traceback is only available while the exception is being handled.
    try:
        await coro(*args, **kwargs)
    except Exception:
        logger.error(traceback.format_exc())
        raise


def exit_on_error(task: asyncio.Task[Any]) -> None:
    """Done callback stopping the process when a guarded task fails.

    Cancelled tasks and tasks ending with
    [`SafeTaskExitError`][peertap.utils.tasks.SafeTaskExitError] are left
    alone.
    """
    if task.cancelled():
        return
    error = task.exception()
    if error is None or isinstance(error, SafeTaskExitError):
        return
    logger.error(
        f'Exception in background task (name="{task.get_name()}"): '
        f'{error!r}',
    )
    raise SystemExit(1)


def consume_error(task: asyncio.Task[Any]) -> None:
    """Done callback marking a failed task's exception as retrieved.

    The traceback is logged by the task itself so nothing more is needed
    than silencing asyncio's "exception was never retrieved" warning.
    """
    if not task.cancelled():
        task.exception()


def spawn_guarded_background_task(
    coro: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a long-lived coroutine whose failure must stop the process.

    Used for loops the process cannot work without (e.g., the relay
    server's periodic client report). A failure is logged with its
    traceback and then raises `SystemExit` from the task's done callback
    so the process does not keep running in a broken state with nobody
    awaiting the task. Raise
    [`SafeTaskExitError`][peertap.utils.tasks.SafeTaskExitError] inside
    the coroutine to end it quietly.

    Returns:
        Handle of the created task.
    """
    task = asyncio.create_task(_run_logging_failure(coro, *args, **kwargs))
    task.add_done_callback(exit_on_error)
    return task


def spawn_logged_background_task(
    coro: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a coroutine in the background and log its failure.

    Unlike
    [`spawn_guarded_background_task()`][peertap.utils.tasks.spawn_guarded_background_task],
    a failure is only logged and never exits the program. This is used for
    fire-and-forget triggers (e.g., reacting to an engine event) where one
    failed reaction must not take down the session.

    Args:
        coro: Coroutine to run as task.
        args: Positional arguments for the coroutine.
        kwargs: Keyword arguments for the coroutine.

    Returns:
        Asyncio task handle.
    """
    task = asyncio.create_task(
        _run_logging_failure(coro, *args, **kwargs),
    )
    task.add_done_callback(consume_error)
    return task


async def cancel_and_wait(task: asyncio.Task[Any] | None) -> None:
    """Cancel a task and wait for it to finish.

    Cancellation and
    [`SafeTaskExitError`][peertap.utils.tasks.SafeTaskExitError] are
    expected and suppressed.
    """
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, SafeTaskExitError):
        pass
