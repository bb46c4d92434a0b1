"""Push-channel envelope and bridge session records."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class FeedEvent(BaseModel):
    """A normalized message from the streaming channel."""

    id: str
    type: str
    payload: Any = None
    timestamp: float


class BridgeSession(BaseModel):
    """Heartbeat record for one connected bridge terminal."""

    source_id: str
    last_heartbeat_at: float | None = None
    connected_at: float | None = None
    account_number: str | None = None
    server: str | None = None
    currency: str | None = None
    equity: float | None = None
    balance: float | None = None
    account_mode: str | None = None
