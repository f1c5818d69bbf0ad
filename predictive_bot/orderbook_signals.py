from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Tuple

from .config import OrderBookConfig, PairConfig
from .models import (
    BUY,
    NEUTRAL,
    PRESSURE_DOWN,
    PRESSURE_NEUTRAL,
    PRESSURE_UP,
    SELL,
    STRONG_BUY,
    STRONG_SELL,
    WEAK_BUY,
    WEAK_SELL,
    Candle,
    Level,
    OrderBook,
    OrderBookAnalysis,
    OrderBookMetrics,
    OrderBookSignals,
    VolumeChanges,
    VolumeCluster,
    Wall,
)

log = logging.getLogger("orderbook")

# (name, predicate(signals), outcome(signals)); first match wins.
CompositeRule = Tuple[str, Callable[[OrderBookSignals], bool], Callable[[OrderBookSignals], str]]

COMPOSITE_RULES: List[CompositeRule] = [
    (
        "bid_imbalance_support_wall",
        lambda s: s.strong_bid_imbalance and s.support_detected and len(s.bid_walls) > 0,
        lambda s: STRONG_BUY if s.has_good_depth else BUY,
    ),
    (
        "ask_imbalance_resistance_wall",
        lambda s: s.strong_ask_imbalance and s.resistance_detected and len(s.ask_walls) > 0,
        lambda s: STRONG_SELL if s.has_good_depth else SELL,
    ),
    ("bid_imbalance_support", lambda s: s.strong_bid_imbalance and s.support_detected, lambda s: BUY),
    ("ask_imbalance_resistance", lambda s: s.strong_ask_imbalance and s.resistance_detected, lambda s: SELL),
    ("bid_imbalance", lambda s: s.strong_bid_imbalance, lambda s: WEAK_BUY),
    ("ask_imbalance", lambda s: s.strong_ask_imbalance, lambda s: WEAK_SELL),
    # strict ">": no walls on either side, or exactly 2:1, stays neutral
    ("bid_wall_skew", lambda s: len(s.bid_walls) > len(s.ask_walls) * 2, lambda s: WEAK_BUY),
    ("ask_wall_skew", lambda s: len(s.ask_walls) > len(s.bid_walls) * 2, lambda s: WEAK_SELL),
]


def calculate_stability(samples: Sequence[OrderBook]) -> float:
    """Stability in [0.5, 1.0] from the mid-price move between the last two samples."""
    if len(samples) < 2:
        return 0.8
    prev, curr = samples[-2], samples[-1]
    prev_mid = prev.mid_price
    curr_mid = curr.mid_price
    if prev_mid is None or curr_mid is None or prev_mid == 0:
        return 0.7
    change = abs(curr_mid - prev_mid) / prev_mid
    return max(0.5, min(1.0, 1.0 - change / 0.01))


def total_volume(levels: Sequence[Level]) -> float:
    return sum(q for _, q in levels)


def imbalance(bids: Sequence[Level], asks: Sequence[Level]) -> float:
    bid_vol = total_volume(bids)
    ask_vol = total_volume(asks)
    if ask_vol > 0:
        return bid_vol / ask_vol
    return float("inf") if bid_vol > 0 else 1.0


def closes_rising(candles: Sequence[Candle]) -> bool:
    if len(candles) < 3:
        return False
    a, b, c = (x.close for x in candles[-3:])
    return c > b > a


def closes_falling(candles: Sequence[Candle]) -> bool:
    if len(candles) < 3:
        return False
    a, b, c = (x.close for x in candles[-3:])
    return c < b < a


class OrderBookSignalExtractor:
    def __init__(self, cfg: OrderBookConfig):
        self.cfg = cfg

    def find_clusters(self, levels: Sequence[Level]) -> Tuple[VolumeCluster, ...]:
        """Group consecutive levels within cluster_threshold of the cluster start price."""
        if not levels:
            return ()
        clusters: List[VolumeCluster] = []
        start, vol, count = levels[0][0], levels[0][1], 1
        for price, q in levels[1:]:
            if start and abs(price - start) / start <= self.cfg.cluster_threshold:
                vol += q
                count += 1
                continue
            if vol >= self.cfg.volume_threshold:
                clusters.append(VolumeCluster(price_start=start, total_volume=vol, count=count))
            start, vol, count = price, q, 1
        if vol >= self.cfg.volume_threshold:
            clusters.append(VolumeCluster(price_start=start, total_volume=vol, count=count))
        clusters.sort(key=lambda c: c.total_volume, reverse=True)
        return tuple(clusters)

    def detect_walls(self, levels: Sequence[Level], side: str, pair: PairConfig) -> Tuple[Wall, ...]:
        if len(levels) < 3:
            return ()
        avg = total_volume(levels) / len(levels)
        if avg == 0:
            return ()
        threshold = avg * self.cfg.wall_detection_multiplier
        min_wall = pair.min_volume * self.cfg.wall_min_volume_fraction
        return tuple(
            Wall(price=p, volume=q, side=side, strength=q / avg)
            for p, q in levels
            if q >= threshold and q >= min_wall
        )

    def volume_changes(self, current: OrderBook, previous: OrderBook) -> VolumeChanges:
        tol = self.cfg.price_match_tolerance
        depth = self.cfg.depth_levels

        def _match(p1: float, p2: float) -> bool:
            mean = (p1 + p2) / 2.0
            return mean != 0 and abs(p1 - p2) / mean < tol

        def _side(cur: Sequence[Level], prev: Sequence[Level]) -> float:
            change = 0.0
            for price, q in cur[:depth]:
                prev_q = next((pq for pp, pq in prev if _match(price, pp)), 0.0)
                change += q - prev_q
            return change

        bid_change = _side(current.bids, previous.bids)
        ask_change = _side(current.asks, previous.asks)
        return VolumeChanges(bid_volume_change=bid_change, ask_volume_change=ask_change, net_volume_change=bid_change - ask_change)

    def analyze(
        self,
        book: OrderBook,
        previous: Optional[OrderBook],
        candles: Sequence[Candle],
        pair: PairConfig,
        samples: Sequence[OrderBook] = (),
    ) -> OrderBookAnalysis:
        """Metrics and signals for one book. `samples` is the rolling stability buffer, newest last."""
        cfg = self.cfg
        top_bids = book.bids[: cfg.depth_levels]
        top_asks = book.asks[: cfg.depth_levels]

        stability = calculate_stability(samples)
        bid_vol = total_volume(top_bids)
        ask_vol = total_volume(top_asks)
        spread = abs(top_asks[0][0] - top_bids[0][0]) if top_bids and top_asks else 0.0

        changes = None
        if previous is not None:
            changes = self.volume_changes(book, previous)

        metrics = OrderBookMetrics(
            spread=spread,
            mid_price=book.mid_price or 0.0,
            total_bid_volume=bid_vol,
            total_ask_volume=ask_vol,
            bid_ask_imbalance=imbalance(top_bids, top_asks),
            support_levels=self.find_clusters(top_bids),
            resistance_levels=self.find_clusters(top_asks),
            stability=stability,
            samples_used=len(samples),
            bid_levels=len(book.bids),
            ask_levels=len(book.asks),
            volume_changes=changes,
        )
        signals = self.generate_signals(metrics, top_bids, top_asks, candles, pair)
        log.debug(
            "orderbook_signals imbalance=%.3f stability=%.2f bid_vol=%.2f ask_vol=%.2f pressure=%s composite=%s",
            metrics.bid_ask_imbalance, stability, bid_vol, ask_vol, signals.price_pressure, signals.composite_signal,
        )
        return OrderBookAnalysis(metrics=metrics, signals=signals)

    def generate_signals(
        self,
        m: OrderBookMetrics,
        top_bids: Sequence[Level],
        top_asks: Sequence[Level],
        candles: Sequence[Candle],
        pair: PairConfig,
    ) -> OrderBookSignals:
        cfg = self.cfg
        valid = bool(top_bids) and bool(top_asks)
        stable = m.stability >= cfg.stability_threshold
        meaningful = m.total_bid_volume > pair.min_volume and m.total_ask_volume > pair.min_volume
        good_depth = (
            m.total_bid_volume > 0
            and m.total_ask_volume > 0
            and min(m.bid_levels, m.ask_levels) >= pair.min_depth_levels
        )
        gated = valid and meaningful and good_depth and stable

        pressure = PRESSURE_NEUTRAL
        spike = False
        if m.volume_changes is not None and meaningful and stable:
            net = m.volume_changes.net_volume_change
            total = m.total_bid_volume + m.total_ask_volume
            if total > 0:
                spike = abs(net) / total > cfg.volume_spike_ratio
            pressure = _pressure(net, m.bid_ask_imbalance)

        signals = OrderBookSignals(
            strong_bid_imbalance=gated and m.bid_ask_imbalance >= cfg.imbalance_threshold,
            strong_ask_imbalance=gated and m.bid_ask_imbalance <= 1.0 / cfg.imbalance_threshold,
            support_detected=len(m.support_levels) > 0,
            resistance_detected=len(m.resistance_levels) > 0,
            bid_walls=self.detect_walls(top_bids, "bid", pair),
            ask_walls=self.detect_walls(top_asks, "ask", pair),
            price_pressure=pressure,
            in_uptrend=closes_rising(candles),
            in_downtrend=closes_falling(candles),
            volume_spike=spike,
            signal_confidence=m.stability,
            has_meaningful_volume=meaningful,
            has_good_depth=good_depth,
            is_stable=stable,
        )
        return replace(signals, composite_signal=composite_signal(signals, m))


def _pressure(net: float, ratio: float) -> str:
    if net > 0 and ratio > 1.2:
        return PRESSURE_UP
    if net < 0 and ratio < 0.8:
        return PRESSURE_DOWN
    if ratio > 1.5:
        return PRESSURE_UP
    if ratio < 0.5:
        return PRESSURE_DOWN
    return PRESSURE_NEUTRAL


def composite_signal(s: OrderBookSignals, m: OrderBookMetrics) -> str:
    if m.total_bid_volume <= 0 or m.total_ask_volume <= 0:
        return NEUTRAL
    if not s.has_meaningful_volume or not s.is_stable:
        return NEUTRAL
    for _name, pred, outcome in COMPOSITE_RULES:
        if pred(s):
            return outcome(s)
    return NEUTRAL