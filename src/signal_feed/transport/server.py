"""Event broadcaster — WebSocket server fanning envelopes out to clients.

Run: python -m signal_feed.transport.server [--config config.yaml]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
import uuid
from typing import Any

import structlog
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from signal_feed.config.loader import DEFAULT_CONFIG_PATH, load_config
from signal_feed.config.schema import TransportConfig
from signal_feed.logging import get_logger, setup_logging
from signal_feed.transport.heartbeat import HeartbeatMonitor

log = structlog.get_logger("broadcaster")


def build_envelope(event_type: str, payload: Any = None, event_id: str | None = None) -> dict:
    ts = int(time.time() * 1000)
    return {
        "id": event_id or f"{event_type}-{ts}-{uuid.uuid4().hex[:12]}",
        "type": event_type,
        "payload": payload,
        "timestamp": ts,
    }


class EventBroadcaster:
    """Accepts feed clients, keeps them alive and pushes envelopes to all."""

    def __init__(self, config: TransportConfig | None = None) -> None:
        self.config = config or TransportConfig()
        self.heartbeat = HeartbeatMonitor(
            interval_s=self.config.heartbeat_interval_s,
            max_missed=self.config.max_missed_heartbeats,
        )
        self.clients: set[Any] = set()

    async def handler(self, ws: ServerConnection) -> None:
        self.clients.add(ws)
        self.heartbeat.track(ws)
        client_log = get_logger("broadcaster", remote=str(ws.remote_address))
        client_log.info("client_connected", clients=len(self.clients))
        try:
            await ws.send(json.dumps(build_envelope("connected", {"clients": len(self.clients)})))
            async for _ in ws:
                # Clients only listen.
                pass
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(ws)
            self.heartbeat.untrack(ws)
            client_log.info("client_disconnected", clients=len(self.clients))

    async def broadcast(self, event_type: str, payload: Any = None) -> int:
        """Send one envelope to every client; returns how many received it."""
        message = json.dumps(build_envelope(event_type, payload), default=str)
        delivered = 0
        for ws in list(self.clients):
            try:
                await ws.send(message)
                delivered += 1
            except ConnectionClosed:
                self.clients.discard(ws)
                self.heartbeat.untrack(ws)
        return delivered

    async def serve_forever(self) -> None:
        # Keepalive is handled by HeartbeatMonitor, not the library.
        async with serve(self.handler, self.config.host, self.config.port, ping_interval=None):
            self.heartbeat.start()
            log.info("broadcaster_started", host=self.config.host, port=self.config.port)
            try:
                await asyncio.Future()
            finally:
                await self.heartbeat.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Signal feed event broadcaster")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config file")
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    setup_logging(
        level=cfg.logging.level,
        log_format=cfg.logging.format,
        library_levels=cfg.logging.library_levels,
    )
    asyncio.run(EventBroadcaster(cfg.transport).serve_forever())


if __name__ == "__main__":
    main()
