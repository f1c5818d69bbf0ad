import pytest

from predictive_bot.analyzer import MarketAnalyzer
from predictive_bot.config import build_config
from predictive_bot.models import NEUTRAL, Candle, OrderBook


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 3_600_000, open=o, high=h, low=l, close=c, volume=v)


BOOK = OrderBook(
    bids=tuple((round(100.0 - i * 0.01, 2), 5.0) for i in range(30)),
    asks=tuple((round(100.01 + i * 0.01, 2), 5.0) for i in range(30)),
    last_update_id=1,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("PREDICTIVE_TIMEFRAME", raising=False)


def _analyzer() -> MarketAnalyzer:
    return MarketAnalyzer(build_config({}), clock=lambda: 42)


def test_too_few_candles_skips_pair():
    candles = [_c(i, 100, 101, 99, 100) for i in range(10)]
    assert _analyzer().analyze("BTCUSDT", candles, BOOK) is None


def test_candle_error_skips_pair():
    # enough for the pipeline gate, not for the indicators
    candles = [_c(i, 100, 101, 99, 100) for i in range(30)]
    assert _analyzer().analyze("BTCUSDT", candles, BOOK) is None


def test_quiet_market_is_neutral_without_prices():
    candles = [_c(i, 100, 101, 99, 100) for i in range(60)]
    res = _analyzer().analyze("btcusdt", candles, BOOK)

    assert res.symbol == "BTCUSDT"
    assert res.composite_signal == NEUTRAL
    assert res.current_price == 100
    assert res.timestamp_ms == 42
    assert res.signal_score.long == 0 and res.signal_score.short == 0
    assert res.suggested_prices.entry is None
    assert res.extra["imbalance"] == pytest.approx(1.0)
    assert res.extra["stability"] == 0.8


def test_result_dict_shape():
    candles = [_c(i, 100, 101, 99, 100) for i in range(60)]
    d = _analyzer().analyze("BTCUSDT", candles, BOOK).to_dict()

    assert set(d) == {"symbol", "current_price", "timestamp", "signals", "suggested_prices", "indicators"}
    assert set(d["signals"]) == {"candle", "order_book", "composite_signal", "signal_score"}
    assert d["signals"]["signal_score"] == {"long": 0, "short": 0}
    assert d["timestamp"] == 42
    assert set(d["indicators"]) == {
        "ema_fast", "ema_medium", "ema_slow", "rsi", "bollinger_bands", "volume_ema", "volume_spike", "buying_pressure",
    }
    assert d["indicators"]["bollinger_bands"]["middle"] == pytest.approx(100.0)
    assert d["suggested_prices"] == {"entry": None, "optimal_entry": None, "stop_loss": None, "take_profit": None}
