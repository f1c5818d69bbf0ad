import math

import pytest

from predictive_bot.config import OrderBookConfig, PairConfig
from predictive_bot.models import (
    BUY,
    NEUTRAL,
    PRESSURE_UP,
    STRONG_BUY,
    WEAK_BUY,
    WEAK_SELL,
    Candle,
    OrderBook,
    OrderBookMetrics,
    OrderBookSignals,
    Wall,
)
from predictive_bot.orderbook_signals import (
    OrderBookSignalExtractor,
    calculate_stability,
    composite_signal,
    imbalance,
)

PAIR = PairConfig(cooldown=10, min_volume=10, volatility_multiplier=1.0, min_depth_levels=3)


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 60_000, open=o, high=h, low=l, close=c, volume=v)


def _book(wall_qty: float = 200.0, bid_qty: float = 5.0, ask_qty: float = 2.0) -> OrderBook:
    bids = tuple((round(100.0 - i * 0.01, 2), wall_qty if i == 5 else bid_qty) for i in range(20))
    asks = tuple((round(100.01 + i * 0.01, 2), ask_qty) for i in range(20))
    return OrderBook(bids=bids, asks=asks, last_update_id=1)


def _metrics(**kw) -> OrderBookMetrics:
    base = dict(
        spread=0.01,
        mid_price=100.0,
        total_bid_volume=100.0,
        total_ask_volume=100.0,
        bid_ask_imbalance=1.0,
        support_levels=(),
        resistance_levels=(),
        stability=1.0,
        samples_used=3,
        bid_levels=20,
        ask_levels=20,
    )
    base.update(kw)
    return OrderBookMetrics(**base)


def test_imbalance_edge_cases():
    assert imbalance([(1.0, 2.0)], [(2.0, 1.0)]) == 2.0
    assert math.isinf(imbalance([(1.0, 2.0)], []))
    assert imbalance([], []) == 1.0


def test_stability_from_mid_moves():
    a = OrderBook(bids=((100.0, 1.0),), asks=((100.0, 1.0),))
    b = OrderBook(bids=((100.5, 1.0),), asks=((100.5, 1.0),))
    far = OrderBook(bids=((102.0, 1.0),), asks=((102.0, 1.0),))
    empty = OrderBook()

    assert calculate_stability([a]) == 0.8
    assert calculate_stability([a, a]) == 1.0
    assert calculate_stability([a, b]) == pytest.approx(0.5)
    assert calculate_stability([a, far]) == 0.5
    assert calculate_stability([a, empty]) == 0.7


def test_clusters_group_nearby_levels():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    clusters = ex.find_clusters([(100.0, 0.3), (99.95, 0.3), (99.0, 0.2), (98.0, 1.0)])
    assert [(c.price_start, c.count) for c in clusters] == [(98.0, 1), (100.0, 2)]
    assert clusters[0].total_volume == 1.0


def test_walls_need_size_and_absolute_volume():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    levels = [(100.0 - i, 1.0) for i in range(9)] + [(90.0, 100.0)]
    walls = ex.detect_walls(levels, "bid", PAIR)
    assert len(walls) == 1
    assert walls[0].price == 90.0
    assert walls[0].strength == pytest.approx(100.0 / 10.9)

    assert ex.detect_walls(levels, "bid", PairConfig(min_volume=5000)) == ()
    assert ex.detect_walls(levels[:2], "bid", PAIR) == ()


def test_strong_bid_book_is_strong_buy():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    res = ex.analyze(_book(), None, [], PAIR)

    s = res.signals
    assert res.metrics.bid_ask_imbalance == pytest.approx(295.0 / 40.0)
    assert s.has_meaningful_volume and s.has_good_depth and s.is_stable
    assert s.strong_bid_imbalance and not s.strong_ask_imbalance
    assert s.support_detected
    assert len(s.bid_walls) == 1 and not s.ask_walls
    assert s.composite_signal == STRONG_BUY


def test_imbalance_needs_depth():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    thin = PairConfig(min_volume=10, min_depth_levels=50)
    s = ex.analyze(_book(), None, [], thin).signals

    assert not s.has_good_depth
    assert not s.strong_bid_imbalance
    # only the wall skew is left
    assert s.composite_signal == WEAK_BUY


def test_low_volume_book_is_neutral():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    s = ex.analyze(_book(), None, [], PairConfig(min_volume=1000, min_depth_levels=3)).signals
    assert not s.has_meaningful_volume
    assert not s.strong_bid_imbalance
    assert s.composite_signal == NEUTRAL


def test_volume_change_drives_spike_and_pressure():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    prev = _book(wall_qty=5.0)
    res = ex.analyze(_book(), prev, [], PAIR)

    ch = res.metrics.volume_changes
    assert ch.bid_volume_change == pytest.approx(195.0)
    assert ch.ask_volume_change == pytest.approx(0.0)
    assert ch.net_volume_change == pytest.approx(195.0)
    assert res.signals.volume_spike
    assert res.signals.price_pressure == PRESSURE_UP


def test_no_previous_book_means_no_pressure():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    res = ex.analyze(_book(), None, [], PAIR)
    assert res.metrics.volume_changes is None
    assert res.signals.price_pressure == "neutral"
    assert not res.signals.volume_spike


def test_candle_trend_from_last_three_closes():
    ex = OrderBookSignalExtractor(OrderBookConfig())
    up = [_c(0, 1, 1, 1, 1), _c(1, 1, 2, 1, 2), _c(2, 2, 3, 2, 3)]
    s = ex.analyze(_book(), None, up, PAIR).signals
    assert s.in_uptrend and not s.in_downtrend

    s = ex.analyze(_book(), None, list(reversed(up)), PAIR).signals
    assert s.in_downtrend and not s.in_uptrend


def test_composite_rule_priority():
    m = _metrics()
    base = OrderBookSignals(has_meaningful_volume=True, is_stable=True, has_good_depth=True)
    wall = (Wall(price=99.0, volume=50.0, side="bid", strength=6.0),)

    assert composite_signal(base, m) == NEUTRAL
    s = OrderBookSignals(**{**base.__dict__, "strong_bid_imbalance": True, "support_detected": True})
    assert composite_signal(s, m) == BUY
    s = OrderBookSignals(**{**s.__dict__, "bid_walls": wall})
    assert composite_signal(s, m) == STRONG_BUY
    s = OrderBookSignals(**{**s.__dict__, "has_good_depth": False})
    assert composite_signal(s, m) == BUY

    ask_wall = (Wall(price=101.0, volume=50.0, side="ask", strength=6.0),)
    s = OrderBookSignals(**{**base.__dict__, "ask_walls": ask_wall})
    assert composite_signal(s, m) == WEAK_SELL
    s = OrderBookSignals(**{**base.__dict__, "ask_walls": ask_wall, "bid_walls": wall})
    assert composite_signal(s, m) == NEUTRAL

    unstable = OrderBookSignals(**{**base.__dict__, "strong_bid_imbalance": True, "is_stable": False})
    assert composite_signal(unstable, m) == NEUTRAL
    assert composite_signal(s, _metrics(total_ask_volume=0.0)) == NEUTRAL


def test_wall_skew_needs_more_than_twice_the_walls():
    m = _metrics()
    base = OrderBookSignals(has_meaningful_volume=True, is_stable=True, has_good_depth=True)
    bid = Wall(price=99.0, volume=50.0, side="bid", strength=6.0)
    ask = Wall(price=101.0, volume=50.0, side="ask", strength=6.0)

    two_to_one = OrderBookSignals(**{**base.__dict__, "bid_walls": (bid, bid), "ask_walls": (ask,)})
    assert composite_signal(two_to_one, m) == NEUTRAL
    three_to_one = OrderBookSignals(**{**base.__dict__, "bid_walls": (bid, bid, bid), "ask_walls": (ask,)})
    assert composite_signal(three_to_one, m) == WEAK_BUY
    one_to_three = OrderBookSignals(**{**base.__dict__, "bid_walls": (bid,), "ask_walls": (ask, ask, ask)})
    assert composite_signal(one_to_three, m) == WEAK_SELL
