from __future__ import annotations

from typing import Sequence

from .config import RiskConfig
from .indicators import (
    bollinger,
    bollinger_width_history,
    ema_series,
    lower_third_fraction,
    percentile_linear_interpolation,
    rsi_wilder,
    upper_third_fraction,
)
from .models import Candle, CandleSignals


def _crossed_above(fast: Sequence[float], slow: Sequence[float], within: int = 2) -> bool:
    """fast is above slow now and was at or below it within the last `within` candles."""
    if len(fast) < within + 1 or fast[-1] <= slow[-1]:
        return False
    return any(fast[-1 - k] <= slow[-1 - k] for k in range(1, within + 1))


class CandleSignalExtractor:
    """Technical signals from a trailing candle window.

    Everything is recomputed from the full window on each call; the last
    candle may still be forming and change between calls.
    """

    def __init__(self, risk: RiskConfig):
        self.risk = risk

    def get_all_signals(self, candles: Sequence[Candle]) -> CandleSignals:
        r = self.risk
        need = max(int(r.min_candles_for_analysis), 2)
        if len(candles) < need:
            return CandleSignals.insufficient(len(candles), need)

        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]
        last = candles[-1]

        fast = ema_series(closes, r.ema_short_period)
        medium = ema_series(closes, r.ema_medium_period)
        slow = ema_series(closes, r.ema_long_period)

        rsi = rsi_wilder(closes, r.rsi_period)

        bb = bollinger(closes, r.bbands_period, r.bbands_std_dev)
        near_upper = near_lower = squeeze = False
        if bb is not None:
            near_upper = last.close >= bb.upper * (1.0 - r.bbands_proximity)
            near_lower = last.close <= bb.lower * (1.0 + r.bbands_proximity)
            widths = bollinger_width_history(closes, r.bbands_period, r.bbands_std_dev)
            if len(widths) >= 2:
                thr = percentile_linear_interpolation(widths, len(widths), r.bbands_squeeze_percentile)
                squeeze = thr is not None and bb.width < thr

        volume_ema = ema_series(volumes, r.volume_ema_period)[-1]
        recent = candles[-int(r.buying_pressure_lookback):]

        return CandleSignals(
            ema_fast=fast[-1],
            ema_medium=medium[-1],
            ema_slow=slow[-1],
            ema_bullish_cross=_crossed_above(fast, medium),
            ema_bearish_cross=_crossed_above(medium, fast),
            is_uptrend=fast[-1] > medium[-1] > slow[-1],
            is_downtrend=fast[-1] < medium[-1] < slow[-1],
            rsi=rsi,
            is_overbought=rsi is not None and rsi > r.rsi_overbought,
            is_oversold=rsi is not None and rsi < r.rsi_oversold,
            bollinger_bands=bb,
            near_upper_band=near_upper,
            near_lower_band=near_lower,
            bbands_squeeze=squeeze,
            volume_ema=volume_ema,
            last_volume=last.volume,
            volume_spike=last.volume > volume_ema * r.volume_spike_multiplier,
            buying_pressure=upper_third_fraction(recent) > r.buying_pressure_threshold,
            selling_pressure=lower_third_fraction(recent) > r.buying_pressure_threshold,
        )
