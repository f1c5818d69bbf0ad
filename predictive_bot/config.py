from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class AppConfig:
    name: str = "Binance Predictive Bot"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    market: str = "spot"  # spot|futures
    rest_timeout_s: int = 20
    ws_heartbeat_s: int = 20
    warmup_concurrency: int = 5
    snapshot_limit: int = 1000
    snapshot_retries: int = 3
    snapshot_retry_delay_s: float = 1.0


@dataclass
class AnalysisConfig:
    timeframe: str = "1h"
    # None -> taken from the timeframe profile
    analysis_interval_s: Optional[float] = None
    max_candles: Optional[int] = None
    reconnect_interval_s: float = 5.0
    required_score: int = 9
    stream_settle_s: float = 3.0
    resync_delay_s: float = 2.0
    resync_retry_s: float = 5.0
    candle_retry_s: float = 60.0


@dataclass
class RiskConfig:
    stop_loss_percent: float = 0.02
    min_stop_percent: float = 0.015
    max_stop_percent: float = 0.05
    atr_period: int = 14
    atr_stop_multiplier: float = 1.5
    bollinger_stop_buffer: float = 0.001
    risk_reward_ratio: float = 2.0
    use_bollinger_bands: bool = True
    support_resistance_weight: float = 0.4
    volume_weight: float = 0.3
    order_book_weight: float = 0.2
    max_optimal_discount: float = 0.08
    min_optimal_discount: float = 0.01
    min_optimal_discount_percent: float = 0.005
    long_entry_discount: float = 0.002
    short_entry_premium: float = 0.001
    bollinger_band_adjustment: float = 0.002
    significant_bids_count: int = 3
    min_optimal_candles: int = 5

    # candle indicator settings
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    bbands_period: int = 20
    bbands_std_dev: float = 2.0
    bbands_proximity: float = 0.005
    bbands_squeeze_percentile: int = 20
    volume_ema_period: int = 20
    buying_pressure_lookback: int = 4
    buying_pressure_threshold: float = 0.7
    min_candles_for_analysis: int = 50
    low_volume_ratio: float = 0.5

    # timeframe-independent bases, scaled by profiles.adapt_risk
    base_ema_short_period: int = 8
    base_ema_medium_period: int = 21
    base_ema_long_period: int = 50
    base_optimal_entry_lookback: int = 10

    # derived (filled by profiles.adapt_risk)
    ema_short_period: int = 8
    ema_medium_period: int = 21
    ema_long_period: int = 50
    optimal_entry_lookback: int = 10
    min_candles_required: int = 20
    volume_spike_multiplier: float = 1.5
    volume_average_multiplier: float = 1.8


@dataclass
class OrderBookConfig:
    # store
    max_levels: int = 500
    price_band: float = 0.10
    gap_threshold: int = 100

    # analyzer
    depth_levels: int = 100
    volume_threshold: float = 0.5
    imbalance_threshold: float = 1.8
    cluster_threshold: float = 0.001
    wall_detection_multiplier: float = 5.0
    wall_min_volume_fraction: float = 0.1
    stability_threshold: float = 0.3
    stability_samples: int = 3
    volume_spike_ratio: float = 0.2
    price_match_tolerance: float = 0.001


@dataclass
class ScoringConfig:
    ema_cross: float = 2
    pressure: float = 2
    trend: float = 1
    bollinger: float = 1
    rsi: float = 1
    volume_bonus: float = 2
    ob_imbalance: float = 1
    ob_level: float = 1
    ob_pressure: float = 1
    ob_composite: float = 1
    ob_contradiction_penalty: float = 3
    alignment_bonus: float = 2
    strong_base_cap: float = 10
    weak_base_cap: float = 5


@dataclass
class PairConfig:
    cooldown: float = 120  # minutes
    min_volume: float = 1000
    volatility_multiplier: float = 1.0
    min_depth_levels: int = 10


def _default_pairs() -> Dict[str, PairConfig]:
    return {"BTCUSDT": PairConfig(cooldown=10, min_volume=10, volatility_multiplier=1.0, min_depth_levels=20)}


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    alert_signals: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class AlertsConfig:
    footer: str = ""
    include_score: bool = True


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    orderbook: OrderBookConfig = field(default_factory=OrderBookConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    pairs: Dict[str, PairConfig] = field(default_factory=_default_pairs)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    def pair(self, symbol: str) -> PairConfig:
        return self.pairs.get(symbol.upper()) or PairConfig()

    @property
    def symbols(self) -> List[str]:
        return [s.upper() for s in self.pairs]


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return build_config(raw)


def build_config(raw: Dict[str, Any]) -> Config:
    pairs_raw = raw.get("pairs")
    if pairs_raw is None:
        pairs = _default_pairs()
    else:
        pairs = {str(sym).upper(): PairConfig(**(p or {})) for sym, p in pairs_raw.items()}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        analysis=AnalysisConfig(**raw.get("analysis", {})),
        risk=RiskConfig(**raw.get("risk", {})),
        orderbook=OrderBookConfig(**raw.get("orderbook", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        pairs=pairs,
        telegram=TelegramConfig(**raw.get("telegram", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )

    # env overrides (useful on servers)
    cfg.analysis.timeframe = _env_override(cfg.analysis.timeframe, "PREDICTIVE_TIMEFRAME")
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    if cfg.telegram.alert_signals is None:
        cfg.telegram.alert_signals = ["long", "short"]

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = [x.strip() for x in chat_env.split(",") if x.strip()]

    return cfg
