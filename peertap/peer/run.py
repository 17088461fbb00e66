"""CLI for running a tap-point peer."""
from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click

from peertap.exceptions import TransportError
from peertap.peer.config import PeerConfig
from peertap.peer.config import SignalingConfig
from peertap.peer.engine import DataChannel
from peertap.peer.session import PeerEndpoint
from peertap.signaling.run import configure_logging
from peertap.tap import CHANNEL_NAME
from peertap.tap import TapPointProtocol

logger = logging.getLogger(__name__)


def _log_screen_size(size: tuple[int, int]) -> None:
    logger.info(f'Peer screen size: {size[0]}x{size[1]}')


def _log_tap(point: tuple[int, int]) -> None:
    logger.info(f'Peer tapped at ({point[0]}, {point[1]})')


async def run_peer(
    config: PeerConfig,
    *,
    initiator: bool,
    screen_size: tuple[int, int] | None = None,
    taps: tuple[tuple[int, int], ...] = (),
    duration: float | None = None,
) -> list[TapPointProtocol]:
    """Connect to a peer and exchange tap-point messages until stopped.

    The initiator creates the `"stp"` channel. Once the channel is open on
    either side, the screen size (if given) and each tap are sent, and every
    message received from the peer is logged.

    Args:
        config: Peer configuration.
        initiator: If this side creates the offer and the channel.
        screen_size: Optional `(width, height)` to announce.
        taps: `(x, y)` tap points to send.
        duration: Seconds to stay connected. If `None`, run until SIGINT or
            SIGTERM.

    Returns:
        The tap-point protocols attached during the run.

    Raises:
        TransportError: If the relay connection could not be opened.
    """
    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    protocols: list[TapPointProtocol] = []

    def _attach(channel: DataChannel) -> None:
        protocol = TapPointProtocol(channel)
        protocol.on_screen_size.subscribe(_log_screen_size)
        protocol.on_tap.subscribe(_log_tap)
        if screen_size is not None:
            protocol.send_screen_size(*screen_size)
        for x, y in taps:
            protocol.send_tap(x, y)
        protocols.append(protocol)

    channels = [CHANNEL_NAME] if initiator else []
    try:
        async with PeerEndpoint(
            config,
            initiator=initiator,
            channels=channels,
        ) as endpoint:
            session = await endpoint.connect()
            session.registry.added.subscribe(
                _attach,
                where=lambda channel: channel.label == CHANNEL_NAME,
            )
            logger.info(
                f'Connected to {config.signaling.address} as {session.role}',
            )
            try:
                await asyncio.wait_for(asyncio.shield(stop), duration)
            except asyncio.TimeoutError:
                pass
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)

    return protocols


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--address', metavar='URI', help='Relay server address.')
@click.option(
    '--initiator/--responder',
    default=False,
    help='Create the offer and the tap-point channel.',
)
@click.option(
    '--screen-size',
    type=(int, int),
    default=None,
    metavar='W H',
    help='Screen size to announce.',
)
@click.option(
    '--tap',
    'taps',
    type=(int, int),
    multiple=True,
    metavar='X Y',
    help='Tap point to send (may be repeated).',
)
@click.option(
    '--duration',
    type=float,
    metavar='SECONDS',
    help='Seconds to stay connected (default: until ctrl-C).',
)
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    default='INFO',
    help='Minimum logging level.',
)
def cli(
    config_path: str | None,
    address: str | None,
    initiator: bool,
    screen_size: tuple[int, int] | None,
    taps: tuple[tuple[int, int], ...],
    duration: float | None,
    log_level: str,
) -> None:
    """Connect to a peer through a relay and exchange tap points.

    If no configuration file is provided, a default configuration will be
    created from [`PeerConfig()`][peertap.peer.config.PeerConfig]. The
    remaining CLI options will override the options provided in the
    configuration object.
    """
    config = (
        PeerConfig()
        if config_path is None
        else PeerConfig.from_toml(config_path)
    )
    if address is not None:
        config.signaling = SignalingConfig.model_validate(
            {**config.signaling.model_dump(), 'address': address},
        )

    configure_logging(log_level.upper())

    try:
        asyncio.run(
            run_peer(
                config,
                initiator=initiator,
                screen_size=screen_size,
                taps=taps,
                duration=duration,
            ),
        )
    except TransportError as e:
        logger.error(f'Unable to connect to relay server: {e}')
        sys.exit(1)
