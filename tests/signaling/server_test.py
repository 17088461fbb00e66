from __future__ import annotations

import asyncio
import logging
from unittest import mock

import pytest
import websockets
from websockets.asyncio.client import connect
from websockets.asyncio.server import serve

from peertap.signaling.server import Client
from peertap.signaling.server import RelayServer
from testing.relay_server import RelayServerInfo
from testing.relay_server import wait_for_clients
from testing.utils import open_port

_WAIT_FOR = 1


def test_client_repr() -> None:
    websocket = mock.MagicMock()
    websocket.remote_address = ('127.0.0.1', 1234)
    client = Client(websocket)
    assert "('127.0.0.1', 1234)" in repr(client)


def test_add_remove_client(caplog) -> None:
    caplog.set_level(logging.INFO)
    server = RelayServer()
    websocket = mock.MagicMock()

    client = server.add_client(websocket)
    assert server.clients == [client]

    server.remove_client(websocket)
    server.remove_client(websocket)
    assert server.clients == []

    assert any(
        ['Client disconnected' in record.message for record in caplog.records],
    )


def test_forward_skips_source() -> None:
    server = RelayServer()
    source, target = mock.MagicMock(), mock.MagicMock()
    server.add_client(source)
    server.add_client(target)

    with mock.patch('peertap.signaling.server.broadcast') as mock_broadcast:
        server.forward(source, b'frame')

    mock_broadcast.assert_called_once_with([target], b'frame')


@pytest.mark.asyncio()
async def test_relay_forwards_to_other_client(
    relay_server: RelayServerInfo,
) -> None:
    async with connect(relay_server.address) as ws1, connect(
        relay_server.address,
    ) as ws2:
        await wait_for_clients(relay_server.relay_server, 2)
        await ws1.send(b'hello\x01')
        received = await asyncio.wait_for(ws2.recv(), _WAIT_FOR)
        assert received == b'hello\x01'

        # Text is forwarded as text
        await ws2.send('text')
        assert await asyncio.wait_for(ws1.recv(), _WAIT_FOR) == 'text'

        # The sender does not receive its own message
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(ws2.recv(), 0.1)


@pytest.mark.asyncio()
async def test_relay_single_client_discards(
    relay_server: RelayServerInfo,
) -> None:
    async with connect(relay_server.address) as websocket:
        await wait_for_clients(relay_server.relay_server, 1)
        await websocket.send(b'nobody\x03')
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(websocket.recv(), 0.1)
        assert len(relay_server.relay_server.clients) == 1


@pytest.mark.asyncio()
async def test_relay_removes_disconnected_client(
    relay_server: RelayServerInfo,
) -> None:
    async with connect(relay_server.address):
        await wait_for_clients(relay_server.relay_server, 1)

    await wait_for_clients(relay_server.relay_server, 0)


@pytest.mark.asyncio()
async def test_relay_message_too_large() -> None:
    server = RelayServer(max_message_bytes=4)
    port = open_port()
    async with serve(server.handler, 'localhost', port):
        async with connect(f'ws://localhost:{port}') as websocket:
            await websocket.send(b'\x00' * 8)
            with pytest.raises(websockets.exceptions.ConnectionClosed) as e:
                await asyncio.wait_for(websocket.recv(), _WAIT_FOR)
            assert e.value.rcvd is not None
            assert e.value.rcvd.code == 4003
