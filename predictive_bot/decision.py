from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import (
    BUY,
    LONG,
    NEUTRAL,
    SELL,
    SHORT,
    STRONG_BUY,
    STRONG_SELL,
    Candle,
    CandleSignals,
    Divergence,
    OrderBookSignals,
    SignalScore,
)

log = logging.getLogger("decision")

DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def detect_divergence(cs: CandleSignals, ob: OrderBookSignals) -> Divergence:
    bearish = (ob.strong_bid_imbalance or ob.composite_signal in (STRONG_BUY, BUY)) and (
        ob.in_downtrend
        or cs.selling_pressure
        or cs.ema_bearish_cross
        or (not cs.buying_pressure and not cs.volume_spike)
    )
    bullish = (ob.strong_ask_imbalance or ob.composite_signal in (STRONG_SELL, SELL)) and (
        ob.in_uptrend
        or cs.buying_pressure
        or cs.ema_bullish_cross
        or (not cs.selling_pressure and not cs.volume_spike)
    )
    if bearish or bullish:
        log.debug("divergence bearish=%s bullish=%s", bearish, bullish)
    return Divergence(bearish=bearish, bullish=bullish)


@dataclass(frozen=True)
class DecisionContext:
    score: SignalScore
    divergence: Divergence
    candle: CandleSignals
    book: OrderBookSignals
    last_volume: float


# (reason, predicate); the first matching veto forces neutral.
Veto = Tuple[str, Callable[[DecisionContext, float], bool]]

LONG_VETOES: List[Veto] = [
    ("bearish_divergence", lambda c, ratio: c.divergence.bearish),
    (
        "book_downtrend_no_buying_pressure",
        lambda c, ratio: c.book.in_downtrend and not c.candle.buying_pressure and not c.candle.volume_spike,
    ),
    (
        "no_strong_candle_confirmation",
        lambda c, ratio: not (c.candle.ema_bullish_cross or c.candle.buying_pressure or c.candle.volume_spike)
        and c.score.long < 10,
    ),
    (
        "low_volume_no_buying_pressure",
        lambda c, ratio: c.last_volume < c.candle.volume_ema * ratio and not c.candle.buying_pressure,
    ),
]

SHORT_VETOES: List[Veto] = [
    ("bullish_divergence", lambda c, ratio: c.divergence.bullish),
    (
        "book_uptrend_no_selling_pressure",
        lambda c, ratio: c.book.in_uptrend and not c.candle.selling_pressure and not c.candle.volume_spike,
    ),
    (
        "no_strong_candle_confirmation",
        lambda c, ratio: not (c.candle.ema_bearish_cross or c.candle.selling_pressure or c.candle.volume_spike)
        and c.score.short < 10,
    ),
    (
        "low_volume_no_selling_pressure",
        lambda c, ratio: c.last_volume < c.candle.volume_ema * ratio and not c.candle.selling_pressure,
    ),
]


class DecisionEngine:
    def __init__(self, required_score: float = 9, low_volume_ratio: float = 0.5):
        self.required_score = required_score
        self.low_volume_ratio = low_volume_ratio

    def _validate(self, symbol: str, side: str, ctx: DecisionContext) -> Optional[str]:
        """side if accepted, NEUTRAL if vetoed, None if the score is below the threshold."""
        score = ctx.score.for_side(side)
        if score < self.required_score:
            return None
        vetoes = LONG_VETOES if side == LONG else SHORT_VETOES
        for reason, pred in vetoes:
            if pred(ctx, self.low_volume_ratio):
                log.info("rejected_%s symbol=%s reason=%s score=%s", side, symbol, reason, score)
                return NEUTRAL
        log.info("accepted_%s symbol=%s score=%s", side, symbol, score)
        return side

    def decide(
        self,
        symbol: str,
        cs: CandleSignals,
        ob: OrderBookSignals,
        score: SignalScore,
        candles: Sequence[Candle] = (),
    ) -> str:
        """Exactly one of long / short / neutral."""
        if not cs.ok:
            return NEUTRAL
        ctx = DecisionContext(
            score=score,
            divergence=detect_divergence(cs, ob),
            candle=cs,
            book=ob,
            last_volume=candles[-1].volume if candles else cs.last_volume,
        )
        long_res = self._validate(symbol, LONG, ctx)
        if long_res == LONG:
            return LONG
        short_res = self._validate(symbol, SHORT, ctx)
        if short_res == SHORT:
            return SHORT
        return NEUTRAL


class CooldownTable:
    """pair -> last dispatched signal time (ms). Entries older than 24h are evicted on update."""

    def __init__(self, cooldown_minutes: Callable[[str], float], clock: Optional[Callable[[], int]] = None):
        self._minutes = cooldown_minutes
        self._clock = clock or _now_ms
        self._last: Dict[str, int] = {}

    def remaining_ms(self, symbol: str) -> int:
        last = self._last.get(symbol.upper())
        if last is None:
            return 0
        window = int(float(self._minutes(symbol.upper())) * 60 * 1000)
        return max(0, window - (self._clock() - last))

    def is_cooling_down(self, symbol: str) -> bool:
        return self.remaining_ms(symbol) > 0

    def record(self, symbol: str) -> None:
        now = self._clock()
        self._last[symbol.upper()] = now
        for key, ts in list(self._last.items()):
            if now - ts > DAY_MS:
                del self._last[key]

    def reset(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self._last.clear()
        else:
            self._last.pop(symbol.upper(), None)

    def last_signal_ms(self, symbol: str) -> Optional[int]:
        return self._last.get(symbol.upper())
