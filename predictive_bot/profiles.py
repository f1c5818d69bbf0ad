from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict

from .config import AnalysisConfig, RiskConfig


@dataclass(frozen=True)
class TimeframeProfile:
    analysis_interval_s: float
    max_candles: int
    lookback_multiplier: int  # minutes per candle
    ema_multiplier: float


TIMEFRAME_PROFILES: Dict[str, TimeframeProfile] = {
    "1m": TimeframeProfile(10.0, 240, 1, 0.8),
    "5m": TimeframeProfile(15.0, 288, 5, 0.9),
    "15m": TimeframeProfile(20.0, 192, 15, 1.0),
    "1h": TimeframeProfile(2.0, 168, 60, 1.0),
    "4h": TimeframeProfile(5.0, 126, 240, 1.2),
    "1d": TimeframeProfile(10.0, 90, 1440, 1.5),
}


def normalize_timeframe(timeframe: str) -> str:
    """Exchange interval names are lower case (`1H` -> `1h`)."""
    return (timeframe or "1h").strip().lower()


def get_profile(timeframe: str) -> TimeframeProfile:
    return TIMEFRAME_PROFILES.get(normalize_timeframe(timeframe), TIMEFRAME_PROFILES["1h"])


def _spike_threshold(m: int) -> float:
    if m <= 1:
        return 1.5
    if m <= 5:
        return 1.8
    if m <= 15:
        return 2.0
    if m <= 60:
        return 2.2
    if m <= 240:
        return 2.5
    return 3.0


def _average_threshold(m: int) -> float:
    if m <= 1:
        return 1.8
    if m <= 5:
        return 2.0
    if m <= 15:
        return 2.2
    if m <= 60:
        return 2.0
    if m <= 240:
        return 2.2
    return 2.8


def adapt_risk(risk: RiskConfig, profile: TimeframeProfile) -> RiskConfig:
    """Scale lookbacks, EMA periods and volume thresholds to the candle interval."""
    m = profile.lookback_multiplier
    e = profile.ema_multiplier
    scale = 60.0 / m
    return replace(
        risk,
        optimal_entry_lookback=max(5, round(risk.base_optimal_entry_lookback * scale)),
        ema_short_period=max(5, round(risk.base_ema_short_period * e)),
        ema_medium_period=max(10, round(risk.base_ema_medium_period * e)),
        ema_long_period=max(20, round(risk.base_ema_long_period * e)),
        # never more than the profile keeps in its window
        min_candles_required=min(profile.max_candles, max(20, round(20 * scale))),
        volume_spike_multiplier=_spike_threshold(m),
        volume_average_multiplier=_average_threshold(m),
    )


def resolve_intervals(analysis: AnalysisConfig, profile: TimeframeProfile) -> AnalysisConfig:
    return replace(
        analysis,
        timeframe=normalize_timeframe(analysis.timeframe),
        analysis_interval_s=analysis.analysis_interval_s if analysis.analysis_interval_s is not None else profile.analysis_interval_s,
        max_candles=analysis.max_candles if analysis.max_candles is not None else profile.max_candles,
    )
