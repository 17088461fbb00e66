from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import signal
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest
from websockets.asyncio.client import connect

from peertap.signaling.config import RelayLoggingConfig
from peertap.signaling.config import RelayServingConfig
from peertap.signaling.run import cli
from peertap.signaling.run import configure_logging
from peertap.signaling.run import periodic_client_logger
from peertap.signaling.run import serve
from peertap.signaling.server import RelayServer
from testing.utils import open_port


@pytest.mark.asyncio()
async def test_periodic_client_logger(caplog) -> None:
    caplog.set_level(logging.INFO)

    server = RelayServer()
    websocket = mock.MagicMock()
    websocket.remote_address = ('10.0.0.1', 4321)
    server.add_client(websocket)

    task = periodic_client_logger(server, 0.001)
    await asyncio.sleep(0.01)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    assert any(
        [
            'Connected clients: 1' in record.message
            and record.levelname == 'INFO'
            for record in caplog.records
        ],
    )
    assert any(
        ["('10.0.0.1', 4321)" in record.message for record in caplog.records],
    )


def test_invoke() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'peertap.signaling.run.serve',
        AsyncMock(),
    ) as mock_serve, mock.patch('peertap.signaling.run.configure_logging'):
        result = runner.invoke(cli)
        mock_serve.assert_awaited_once()

    assert result.exit_code == 0


def test_invoke_and_override_defaults(tmp_path: pathlib.Path) -> None:
    config_path = tmp_path / 'relay.toml'
    config_path.write_text('port = 4321\nmax_message_bytes = 10\n')
    log_dir = os.path.join(tmp_path, 'log-dir')

    async def _mock_serve(config: RelayServingConfig) -> None:
        assert config.host == 'test-host'
        assert config.port == 1234
        assert config.max_message_bytes == 10
        assert config.logging.log_dir == log_dir
        assert config.logging.default_level == 'WARNING'

    options: list[str] = []
    options += ['--config', str(config_path)]
    options += ['--host', 'test-host']
    options += ['--port', '1234']
    options += ['--log-dir', log_dir]
    options += ['--log-level', 'warning']

    runner = click.testing.CliRunner()
    with mock.patch(
        'peertap.signaling.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve, mock.patch(
        'peertap.signaling.run.configure_logging',
    ) as mock_logging:
        result = runner.invoke(cli, options)
        mock_serve.assert_awaited_once()

    assert result.exit_code == 0
    mock_logging.assert_called_once()
    assert mock_logging.call_args.kwargs['log_dir'] == log_dir


def test_configure_logging_log_dir(tmp_path: pathlib.Path) -> None:
    log_dir = tmp_path / 'logs'
    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        with mock.patch('logging.basicConfig') as mock_config:
            configure_logging(
                'DEBUG',
                log_dir=str(log_dir),
                websockets_level='ERROR',
            )
        mock_config.assert_called_once()
        assert mock_config.call_args.kwargs['level'] == 'DEBUG'
        assert len(mock_config.call_args.kwargs['handlers']) == 2
        assert log_dir.is_dir()
        assert logging.getLogger('websockets').level == logging.ERROR
    finally:
        for handler in mock_config.call_args.kwargs['handlers']:
            handler.close()
        root.handlers = handlers
        logging.getLogger('websockets').setLevel(logging.NOTSET)


@pytest.mark.asyncio()
async def test_serve_until_signal() -> None:
    port = open_port()
    config = RelayServingConfig(
        host='localhost',
        port=port,
        logging=RelayLoggingConfig(current_client_interval=1),
    )
    task = asyncio.create_task(serve(config))

    # Wait for the server to accept connections
    for _ in range(100):
        try:
            async with connect(f'ws://localhost:{port}'):
                break
        except OSError:
            await asyncio.sleep(0.05)
    else:
        raise AssertionError('Relay server did not start.')

    os.kill(os.getpid(), signal.SIGINT)
    await asyncio.wait_for(task, timeout=5)
