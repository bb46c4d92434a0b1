"""Push-channel transport: shared client connection and server heartbeat."""

from signal_feed.transport.connection import (
    ConnectionState,
    SharedConnection,
    Subscription,
    websocket_connector,
)
from signal_feed.transport.heartbeat import HeartbeatMonitor

__all__ = [
    "ConnectionState",
    "HeartbeatMonitor",
    "SharedConnection",
    "Subscription",
    "websocket_connector",
]
