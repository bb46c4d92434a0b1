"""Pull-path client for the trading engine's REST API."""

from __future__ import annotations

from typing import Any

import httpx


class EngineApiClient:
    """Async client for the engine endpoints the feed polls."""

    def __init__(
        self,
        base_url: str = "http://localhost:4101",
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def _get(self, path: str, params: dict | None = None) -> Any:
        http = await self._get_http()
        resp = await http.get(path, params=params)
        resp.raise_for_status()
        return resp.json()

    # --- trades ---

    async def get_trade_history(self, limit: int = 40) -> list[dict]:
        data = await self._get("/api/trades/history", {"limit": limit})
        return _list_field(data, "trades")

    async def get_active_trades(self) -> list[dict]:
        data = await self._get("/api/trades/active")
        return _list_field(data, "trades")

    # --- signals ---

    async def get_candidate_signals(self, pair: str | None = None, timeframe: str | None = None) -> list[dict]:
        """Analyzed signals that are not (yet) strict ENTER."""
        params = {k: v for k, v in (("pair", pair), ("timeframe", timeframe)) if v}
        data = await self._get("/api/signals", params or None)
        return _list_field(data, "signals")

    # --- engine / bridge ---

    async def get_engine_status(self) -> dict:
        """Combined ``/api/status`` and ``/api/statistics`` payloads."""
        status = await self._get("/api/status")
        stats = await self._get("/api/statistics")
        return {
            "status": status.get("status") if isinstance(status, dict) else None,
            "statistics": stats.get("statistics") if isinstance(stats, dict) else None,
        }

    async def get_bridge_sessions(self, max_age_ms: int = 120_000) -> list[dict]:
        data = await self._get("/api/broker/bridge/status", {"maxAgeMs": max_age_ms})
        return _list_field(data, "sessions")


def _list_field(data: Any, name: str) -> list[dict]:
    if isinstance(data, dict):
        value = data.get(name)
        return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []
    if isinstance(data, list):
        return [v for v in data if isinstance(v, dict)]
    return []
