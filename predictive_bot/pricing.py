from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .config import PairConfig, RiskConfig
from .indicators import atr_sma
from .models import LONG, SHORT, Candle, CandleSignals, OrderBook, SuggestedPrices

log = logging.getLogger("pricing")

# (min price, tick)
_TICKS = (
    (1000.0, 1.0),
    (100.0, 0.1),
    (10.0, 0.01),
    (1.0, 0.001),
    (0.1, 0.0001),
    (0.01, 0.00001),
    (0.001, 0.000001),
)


def tick_for(price: float) -> float:
    for floor, tick in _TICKS:
        if price >= floor:
            return tick
    return 0.0000001


def quantize(price: float, tick: float) -> float:
    ticks = round(price / tick)
    return round(ticks * tick, 10)


def vwap(candles: Sequence[Candle]) -> Optional[float]:
    vol = sum(c.volume for c in candles)
    if vol <= 0:
        return None
    return sum((c.high + c.low + c.close) / 3.0 * c.volume for c in candles) / vol


def weighted_levels(levels, count: int) -> Optional[float]:
    top = [lv for lv in levels if lv[1] > 0][:count]
    vol = sum(q for _, q in top)
    if not top or vol <= 0:
        return None
    return sum(p * q for p, q in top) / vol


class PriceCalculator:
    def __init__(self, risk: RiskConfig):
        self.risk = risk

    def dynamic_stop_percent(self, atr: float, price: float, pair: PairConfig) -> float:
        r = self.risk
        volatility = atr / price if price else 0.0
        raw = r.stop_loss_percent * pair.volatility_multiplier * (1.0 + volatility * 10.0)
        return min(max(raw, r.min_stop_percent), r.max_stop_percent)

    def calculate(
        self,
        book: OrderBook,
        candles: Sequence[Candle],
        signal: str,
        cs: CandleSignals,
        pair: PairConfig,
    ) -> SuggestedPrices:
        if signal not in (LONG, SHORT) or not candles:
            return SuggestedPrices()

        r = self.risk
        current = candles[-1].close
        best_bid = book.best_bid or current
        best_ask = book.best_ask or current
        bb = cs.bollinger_bands if r.use_bollinger_bands else None
        atr = atr_sma(candles, r.atr_period) or 0.0
        dyn = self.dynamic_stop_percent(atr, current, pair)
        tick = tick_for(current)

        if signal == LONG:
            entry = best_ask * (1.0 - r.long_entry_discount)
            if bb is not None and cs.near_lower_band:
                entry *= 1.0 - r.bollinger_band_adjustment
            candidates: List[float] = [entry * (1.0 - dyn)]
            if atr > 0:
                candidates.append(current - atr * r.atr_stop_multiplier)
            if bb is not None:
                candidates.append(bb.lower * (1.0 - r.bollinger_stop_buffer))
            # a "stop" at or above the entry is not a stop
            stop = max(c for c in candidates if c < entry)
            entry = quantize(entry, tick)
            stop = quantize(stop, tick)
            if stop >= entry:
                stop = quantize(entry - tick, tick)
            take_profit = quantize(entry + (entry - stop) * r.risk_reward_ratio, tick)
            optimal = self.optimal_buy(candles, book)
        else:
            entry = best_bid * (1.0 + r.short_entry_premium)
            if bb is not None and cs.near_upper_band:
                entry *= 1.0 + r.bollinger_band_adjustment
            candidates = [entry * (1.0 + dyn)]
            if atr > 0:
                candidates.append(current + atr * r.atr_stop_multiplier)
            if bb is not None:
                candidates.append(bb.upper * (1.0 + r.bollinger_stop_buffer))
            stop = min(c for c in candidates if c > entry)
            entry = quantize(entry, tick)
            stop = quantize(stop, tick)
            if stop <= entry:
                stop = quantize(entry + tick, tick)
            take_profit = quantize(entry - (stop - entry) * r.risk_reward_ratio, tick)
            optimal = self.optimal_sell(candles, book)

        log.debug(
            "prices signal=%s current=%s entry=%s stop=%s tp=%s optimal=%s atr=%.6f dyn_stop=%.4f",
            signal, current, entry, stop, take_profit, optimal, atr, dyn,
        )
        return SuggestedPrices(entry=entry, optimal_entry=optimal, stop_loss=stop, take_profit=take_profit)

    def optimal_buy(self, candles: Sequence[Candle], book: OrderBook) -> Optional[float]:
        r = self.risk
        current = candles[-1].close
        recent = candles[-r.optimal_entry_lookback:]
        if len(recent) < r.min_optimal_candles:
            return None

        lows = sorted(c.low for c in recent)
        median_support = lows[len(lows) // 2]
        vw = vwap(recent) or current
        ob_support = weighted_levels(book.bids, r.significant_bids_count) or current

        opt = (
            r.support_resistance_weight * median_support
            + r.volume_weight * vw
            + r.order_book_weight * ob_support
        )
        opt = max(min(opt, current * (1.0 - r.min_optimal_discount)), current * (1.0 - r.max_optimal_discount), median_support)
        opt = min(opt, current * (1.0 - r.min_optimal_discount_percent))
        opt = quantize(opt, tick_for(current))
        if opt >= current:
            return None
        return opt

    def optimal_sell(self, candles: Sequence[Candle], book: OrderBook) -> Optional[float]:
        r = self.risk
        current = candles[-1].close
        recent = candles[-r.optimal_entry_lookback:]
        if len(recent) < r.min_optimal_candles:
            return None

        highs = sorted((c.high for c in recent), reverse=True)
        median_resistance = highs[len(highs) // 2]
        vw = vwap(recent) or current
        ob_resistance = weighted_levels(book.asks, r.significant_bids_count) or current

        opt = (
            r.support_resistance_weight * median_resistance
            + r.volume_weight * vw
            + r.order_book_weight * ob_resistance
        )
        opt = min(max(opt, current * (1.0 + r.min_optimal_discount)), current * (1.0 + r.max_optimal_discount), median_resistance)
        opt = max(opt, current * (1.0 + r.min_optimal_discount_percent))
        opt = quantize(opt, tick_for(current))
        if opt <= current:
            return None
        return opt
