import pytest

from predictive_bot.config import PairConfig, RiskConfig
from predictive_bot.models import LONG, NEUTRAL, SHORT, BollingerBands, Candle, CandleSignals, OrderBook
from predictive_bot.pricing import PriceCalculator, quantize, tick_for, vwap, weighted_levels

PAIR = PairConfig(cooldown=10, min_volume=10, volatility_multiplier=1.0, min_depth_levels=3)


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 60_000, open=o, high=h, low=l, close=c, volume=v)


CANDLES = [_c(i, 100, 101, 99, 100) for i in range(30)]
BOOK = OrderBook(
    bids=((99.9, 1.0), (99.8, 1.0), (99.7, 1.0)),
    asks=((100.1, 1.0), (100.2, 1.0), (100.3, 1.0)),
    last_update_id=1,
)
CS = CandleSignals(bollinger_bands=BollingerBands(upper=102.0, middle=100.0, lower=98.0, width=0.04))


def test_tick_table():
    assert tick_for(50_000) == 1.0
    assert tick_for(150) == 0.1
    assert tick_for(0.05) == 0.00001
    assert tick_for(0.0005) == 0.0000001
    assert quantize(0.123456789, 0.00001) == 0.12346
    assert quantize(97.902, 0.1) == 97.9


def test_vwap_and_weighted_levels():
    assert vwap(CANDLES) == pytest.approx(100.0)
    assert vwap([_c(0, 1, 1, 1, 1, v=0.0)]) is None
    assert weighted_levels(BOOK.bids, 3) == pytest.approx(99.8)
    assert weighted_levels([(1.0, 0.0)], 3) is None


def test_dynamic_stop_is_clamped():
    calc = PriceCalculator(RiskConfig())
    assert calc.dynamic_stop_percent(2.0, 100.0, PAIR) == pytest.approx(0.024)
    assert calc.dynamic_stop_percent(50.0, 100.0, PAIR) == 0.05
    calm = PairConfig(volatility_multiplier=0.5)
    assert calc.dynamic_stop_percent(0.0, 100.0, calm) == 0.015


def test_long_prices():
    p = PriceCalculator(RiskConfig()).calculate(BOOK, CANDLES, LONG, CS, PAIR)
    assert p.entry == pytest.approx(99.9)
    # bollinger stop is the tightest candidate below the entry
    assert p.stop_loss == pytest.approx(97.9)
    assert p.take_profit == pytest.approx(103.9)
    assert p.optimal_entry == pytest.approx(99.0)
    assert p.stop_loss < p.entry < p.take_profit


def test_short_prices():
    p = PriceCalculator(RiskConfig()).calculate(BOOK, CANDLES, SHORT, CS, PAIR)
    assert p.entry == pytest.approx(100.0)
    assert p.stop_loss == pytest.approx(102.1)
    assert p.take_profit == pytest.approx(95.8)
    assert p.optimal_entry == pytest.approx(101.0)
    assert p.take_profit < p.entry < p.stop_loss


def test_risk_reward_holds_after_rounding():
    r = RiskConfig(risk_reward_ratio=3.0)
    p = PriceCalculator(r).calculate(BOOK, CANDLES, LONG, CS, PAIR)
    assert p.take_profit - p.entry == pytest.approx(3.0 * (p.entry - p.stop_loss))


def test_near_lower_band_lowers_long_entry():
    calc = PriceCalculator(RiskConfig())
    near = CandleSignals(bollinger_bands=CS.bollinger_bands, near_lower_band=True)
    assert calc.calculate(BOOK, CANDLES, LONG, near, PAIR).entry < calc.calculate(BOOK, CANDLES, LONG, CS, PAIR).entry


def test_neutral_has_no_prices():
    p = PriceCalculator(RiskConfig()).calculate(BOOK, CANDLES, NEUTRAL, CS, PAIR)
    assert p.entry is None and p.stop_loss is None and p.take_profit is None and p.optimal_entry is None


def test_optimal_entry_needs_history():
    calc = PriceCalculator(RiskConfig())
    assert calc.optimal_buy(CANDLES[:3], BOOK) is None
    assert calc.optimal_sell(CANDLES[:3], BOOK) is None


def test_empty_book_falls_back_to_last_close():
    p = PriceCalculator(RiskConfig(use_bollinger_bands=False)).calculate(OrderBook(), CANDLES, LONG, CS, PAIR)
    assert p.entry == pytest.approx(99.8)
    assert p.stop_loss < p.entry
