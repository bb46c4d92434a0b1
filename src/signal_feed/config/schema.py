"""Configuration schema — Pydantic models for config.yaml."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


def _clamp_pct(value: float) -> float:
    return min(100.0, max(0.0, float(value)))


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:4101"
    timeout_s: float = 15.0
    history_limit: int = 40


class TransportConfig(BaseModel):
    ws_url: str = "ws://localhost:4101/ws/trading"
    reconnect_delay_s: float = 5.0
    idle_close_s: float = 0.25
    heartbeat_interval_s: float = 30.0
    max_missed_heartbeats: int = 2
    # Broadcaster bind address
    host: str = "0.0.0.0"
    port: int = 4102


class StoreConfig(BaseModel):
    signal_cap: int = Field(default=200, ge=1)
    candidate_cap: int = Field(default=200, ge=1)
    event_cap: int = Field(default=28, ge=1)
    active_trade_cap: int = Field(default=12, ge=1)
    history_trade_cap: int = Field(default=40, ge=1)


class ClassifierConfig(BaseModel):
    strict_min_confidence: float = 75.0
    strict_min_strength: float = 60.0
    relaxed_min_confidence: float = 45.0
    relaxed_min_strength: float = 55.0
    watch_min_confidence: float = 20.0
    watch_min_strength: float = 10.0
    max_results: int = Field(default=50, ge=1)

    @field_validator(
        "strict_min_confidence",
        "strict_min_strength",
        "relaxed_min_confidence",
        "relaxed_min_strength",
        "watch_min_confidence",
        "watch_min_strength",
    )
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _clamp_pct(value)


class CoalescerConfig(BaseModel):
    flush_delay_s: float = 0.65


class LivenessConfig(BaseModel):
    freshness_window_s: float = 120.0


class PollingConfig(BaseModel):
    trades_interval_s: float = 60.0
    candidates_interval_s: float = 90.0
    engine_interval_s: float = 45.0
    bridge_interval_s: float = 45.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    # logger name -> level cap; None keeps the built-in caps
    library_levels: dict[str, str] | None = None


class AppConfig(BaseModel):
    api: ApiConfig = Field(default_factory=ApiConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    stores: StoreConfig = Field(default_factory=StoreConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    coalescer: CoalescerConfig = Field(default_factory=CoalescerConfig)
    liveness: LivenessConfig = Field(default_factory=LivenessConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
