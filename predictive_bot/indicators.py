from __future__ import annotations
from typing import List, Optional, Sequence
import math

from .models import BollingerBands, Candle


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def ema_series(values: Sequence[float], length: int) -> List[float]:
    """EMA over the whole window, seeded with the first value."""
    out: List[float] = []
    prev: Optional[float] = None
    for v in values:
        prev = ema_next(prev, float(v), length)
        out.append(prev)
    return out


def rma_next(prev: Optional[float], x: float, length: int) -> float:
    if prev is None or length <= 1:
        return x
    return (prev * (length - 1) + x) / float(length)


def rsi_wilder(closes: Sequence[float], length: int = 14) -> Optional[float]:
    if length <= 0 or len(closes) < length + 1:
        return None
    gains = []
    losses = []
    for i in range(1, len(closes)):
        ch = closes[i] - closes[i - 1]
        gains.append(ch if ch > 0 else 0.0)
        losses.append(-ch if ch < 0 else 0.0)

    # seed with the simple average of the first `length` changes, then Wilder's smoothing
    avg_gain = sum(gains[:length]) / length
    avg_loss = sum(losses[:length]) / length
    for g, l in zip(gains[length:], losses[length:]):
        avg_gain = rma_next(avg_gain, g, length)
        avg_loss = rma_next(avg_loss, l, length)

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def stddev(values: Sequence[float]) -> float:
    n = len(values)
    if n == 0:
        return 0.0
    mean = sum(values) / n
    return math.sqrt(sum((v - mean) ** 2 for v in values) / n)


def bollinger(closes: Sequence[float], length: int = 20, mult: float = 2.0) -> Optional[BollingerBands]:
    if length <= 0 or len(closes) < length:
        return None
    window = closes[-length:]
    mid = sum(window) / length
    dev = stddev(window) * mult
    upper = mid + dev
    lower = mid - dev
    width = (upper - lower) / mid if mid else 0.0
    return BollingerBands(upper=upper, middle=mid, lower=lower, width=width)


def bollinger_width_history(closes: Sequence[float], length: int = 20, mult: float = 2.0) -> List[float]:
    out: List[float] = []
    for end in range(length, len(closes) + 1):
        bb = bollinger(closes[:end], length, mult)
        if bb is not None:
            out.append(bb.width)
    return out


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr_sma(candles: Sequence[Candle], length: int = 14) -> Optional[float]:
    """Classic ATR: simple average of the last `length` true ranges."""
    if length <= 0 or len(candles) < length + 1:
        return None
    trs = []
    for i in range(len(candles) - length, len(candles)):
        c = candles[i]
        trs.append(true_range(c.high, c.low, candles[i - 1].close))
    return sum(trs) / length


def close_position(c: Candle) -> float:
    """Where the close sits inside the candle range, 0 = low, 1 = high."""
    rng = c.high - c.low
    if rng <= 0:
        return 0.5
    return (c.close - c.low) / rng


def upper_third_fraction(candles: Sequence[Candle]) -> float:
    if not candles:
        return 0.0
    return sum(1 for c in candles if close_position(c) >= 2.0 / 3.0) / float(len(candles))


def lower_third_fraction(candles: Sequence[Candle]) -> float:
    if not candles:
        return 0.0
    return sum(1 for c in candles if close_position(c) <= 1.0 / 3.0) / float(len(candles))


def percentile_linear_interpolation(values: List[Optional[float]], lookback: int, pct: int) -> Optional[float]:
    """Percentile with linear interpolation over the last `lookback` non-None values."""
    if lookback <= 0 or pct < 0 or pct > 100:
        return None

    collected: List[float] = []
    for v in reversed(values):
        if v is None:
            continue
        collected.append(float(v))
        if len(collected) >= lookback:
            break

    n = len(collected)
    if n < lookback or n == 0:
        return None

    arr = sorted(collected)
    rank = (pct / 100.0) * (n - 1)
    lo = int(math.floor(rank))
    hi = int(math.ceil(rank))
    if lo == hi:
        return arr[lo]
    frac = rank - lo
    return arr[lo] + frac * (arr[hi] - arr[lo])
