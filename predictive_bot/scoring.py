from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from .config import RiskConfig, ScoringConfig
from .models import (
    PRESSURE_DOWN,
    PRESSURE_STRONG_DOWN,
    PRESSURE_STRONG_UP,
    PRESSURE_UP,
    Candle,
    CandleSignals,
    OrderBookSignals,
    SignalScore,
)

log = logging.getLogger("scoring")


def _fmt_pts(pts: float) -> str:
    return f"{pts:+g}"


class SignalScorer:
    """Long/short scores from candle and order-book signals.

    Volume confirmation is mandatory: without it both sides score 0. A side
    only accumulates points when its base (EMA cross or candle pressure)
    is present, and is capped at strong_base_cap.
    """

    def __init__(self, scoring: ScoringConfig, risk: RiskConfig):
        self.w = scoring
        self.risk = risk

    def is_high_volume(self, cs: CandleSignals, candles: Sequence[Candle]) -> bool:
        last_volume = candles[-1].volume if candles else cs.last_volume
        return cs.volume_spike or last_volume > cs.volume_ema * self.risk.volume_average_multiplier

    def calculate(self, cs: CandleSignals, ob: OrderBookSignals, candles: Sequence[Candle] = ()) -> SignalScore:
        is_uptrend = cs.ema_fast > cs.ema_medium > cs.ema_slow
        is_downtrend = cs.ema_fast < cs.ema_medium < cs.ema_slow

        if not self.is_high_volume(cs, candles):
            log.debug("score_gate_low_volume last=%.4f ema=%.4f", cs.last_volume, cs.volume_ema)
            return SignalScore(long=0, short=0, long_breakdown=("Low volume (gate)",), short_breakdown=("Low volume (gate)",))

        long_base = cs.ema_bullish_cross or cs.buying_pressure
        short_base = cs.ema_bearish_cross or cs.selling_pressure

        long_score, long_lines = 0.0, []
        if long_base:
            long_score, long_lines = self._side(
                [
                    ("EMA bullish cross", cs.ema_bullish_cross, self.w.ema_cross),
                    ("Buying pressure", cs.buying_pressure, self.w.pressure),
                    ("EMA uptrend", is_uptrend, self.w.trend),
                    ("Near lower Bollinger band", self.risk.use_bollinger_bands and cs.near_lower_band, self.w.bollinger),
                    ("RSI not overbought", not cs.is_overbought, self.w.rsi),
                    ("Volume confirmed", True, self.w.volume_bonus),
                ],
                contradicted=ob.in_downtrend,
                book=[
                    ("Strong bid imbalance", ob.strong_bid_imbalance, self.w.ob_imbalance),
                    ("Support detected", ob.support_detected, self.w.ob_level),
                    ("Book pressure up", ob.price_pressure in (PRESSURE_UP, PRESSURE_STRONG_UP), self.w.ob_pressure),
                    ("Book composite " + ob.composite_signal, "buy" in ob.composite_signal, self.w.ob_composite),
                ],
                contradiction="Order book downtrend",
            )
            if is_uptrend and ob.in_uptrend:
                long_score += self.w.alignment_bonus
                long_lines.append(f"Trend alignment ({_fmt_pts(self.w.alignment_bonus)})")

        short_score, short_lines = 0.0, []
        if short_base:
            short_score, short_lines = self._side(
                [
                    ("EMA bearish cross", cs.ema_bearish_cross, self.w.ema_cross),
                    ("Selling pressure", cs.selling_pressure, self.w.pressure),
                    ("EMA downtrend", is_downtrend, self.w.trend),
                    ("Near upper Bollinger band", self.risk.use_bollinger_bands and cs.near_upper_band, self.w.bollinger),
                    ("RSI overbought", cs.is_overbought, self.w.rsi),
                    ("Volume confirmed", True, self.w.volume_bonus),
                ],
                contradicted=ob.in_uptrend,
                book=[
                    ("Strong ask imbalance", ob.strong_ask_imbalance, self.w.ob_imbalance),
                    ("Resistance detected", ob.resistance_detected, self.w.ob_level),
                    ("Book pressure down", ob.price_pressure in (PRESSURE_DOWN, PRESSURE_STRONG_DOWN), self.w.ob_pressure),
                    ("Book composite " + ob.composite_signal, "sell" in ob.composite_signal, self.w.ob_composite),
                ],
                contradiction="Order book uptrend",
            )
            if is_downtrend and ob.in_downtrend:
                short_score += self.w.alignment_bonus
                short_lines.append(f"Trend alignment ({_fmt_pts(self.w.alignment_bonus)})")

        long_cap = self.w.strong_base_cap if long_base else self.w.weak_base_cap
        short_cap = self.w.strong_base_cap if short_base else self.w.weak_base_cap
        score = SignalScore(
            long=max(0, min(long_score, long_cap)),
            short=max(0, min(short_score, short_cap)),
            long_breakdown=tuple(long_lines),
            short_breakdown=tuple(short_lines),
        )
        log.debug("score long=%s/%s short=%s/%s", score.long, long_cap, score.short, short_cap)
        return score

    def _side(
        self,
        candle_terms: List[Tuple[str, bool, float]],
        *,
        contradicted: bool,
        book: List[Tuple[str, bool, float]],
        contradiction: str,
    ) -> Tuple[float, List[str]]:
        score = 0.0
        lines: List[str] = []
        for label, hit, pts in candle_terms:
            if hit and pts:
                score += pts
                lines.append(f"{label} ({_fmt_pts(pts)})")
        if contradicted:
            pen = self.w.ob_contradiction_penalty
            score -= pen
            lines.append(f"{contradiction} ({_fmt_pts(-pen)})")
            return score, lines
        for label, hit, pts in book:
            if hit and pts:
                score += pts
                lines.append(f"{label} ({_fmt_pts(pts)})")
        return score, lines
