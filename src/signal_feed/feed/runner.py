"""Feed runner — wires config, transport and client into a FeedService."""

from __future__ import annotations

import argparse
import asyncio

import structlog

from signal_feed.client import EngineApiClient
from signal_feed.config.loader import DEFAULT_CONFIG_PATH, load_config
from signal_feed.config.schema import AppConfig
from signal_feed.feed.service import FeedService
from signal_feed.logging.setup import setup_logging
from signal_feed.transport.connection import SharedConnection, websocket_connector

log = structlog.get_logger("feed_runner")

# Seconds between summary log lines
_REPORT_INTERVAL_S = 60


def build_service(config: AppConfig) -> FeedService:
    transport = config.transport
    connection = SharedConnection(
        transport.ws_url,
        reconnect_delay_s=transport.reconnect_delay_s,
        idle_close_s=transport.idle_close_s,
        connector=websocket_connector(transport.heartbeat_interval_s, transport.max_missed_heartbeats),
    )
    client = EngineApiClient(base_url=config.api.base_url, timeout_s=config.api.timeout_s)
    return FeedService(config, client, connection)


async def run_loop(config: AppConfig) -> None:
    """Start the service and log the classified view periodically."""
    service = build_service(config)
    await service.start()
    try:
        while True:
            await asyncio.sleep(_REPORT_INTERVAL_S)
            view = service.view()
            log.info(
                "feed_view",
                tier=view.tier,
                mode=view.mode_label,
                signals=len(view.signals),
                stored=len(service.signals),
                candidates=len(service.candidates),
                active_trades=len(service.active_trades),
                live=view.live,
                connection=service.connection.state.value,
            )
    finally:
        await service.stop()
        await service.connection.close()
        await service.client.close()


def main(argv: list[str] | None = None) -> None:
    """Entry point: parse args, load config, set up logging, run the async loop."""
    parser = argparse.ArgumentParser(description="Signal feed reconciliation service")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config file")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(
        level=config.logging.level,
        log_format=config.logging.format,
        library_levels=config.logging.library_levels,
    )
    asyncio.run(run_loop(config))
