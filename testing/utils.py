"""Helpers shared across the test suite."""
from __future__ import annotations

import asyncio
import contextlib
import socket
import time
from typing import Callable


def open_port(host: str = 'localhost') -> int:
    """Find a TCP port on `host` that nothing is listening on.

    The port is released before returning so a server started shortly
    after can bind it.
    """
    with contextlib.closing(
        socket.socket(socket.AF_INET, socket.SOCK_STREAM),
    ) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


async def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout: float = 1,
    interval: float = 0.001,
) -> None:
    """Yield to the event loop until `predicate()` is true.

    Raises:
        TimeoutError: If `predicate()` is still false after `timeout`
            seconds.
    """
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise TimeoutError(
                f'Condition not met within {timeout} seconds.',
            )
        await asyncio.sleep(interval)
