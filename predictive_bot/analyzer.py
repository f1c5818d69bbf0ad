from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from .candle_signals import CandleSignalExtractor
from .config import Config
from .decision import DecisionEngine
from .models import AnalysisResult, Candle, OrderBook
from .orderbook_signals import OrderBookSignalExtractor
from .pricing import PriceCalculator
from .scoring import SignalScorer

log = logging.getLogger("analyzer")


class MarketAnalyzer:
    """One pair, one cycle: candles + book -> signals -> score -> decision -> prices."""

    def __init__(self, cfg: Config, *, clock: Optional[Callable[[], int]] = None):
        self.cfg = cfg
        self.candles = CandleSignalExtractor(cfg.risk)
        self.orderbook = OrderBookSignalExtractor(cfg.orderbook)
        self.scorer = SignalScorer(cfg.scoring, cfg.risk)
        self.decisions = DecisionEngine(cfg.analysis.required_score, cfg.risk.low_volume_ratio)
        self.prices = PriceCalculator(cfg.risk)
        self._clock = clock or (lambda: int(time.time() * 1000))

    def analyze(
        self,
        symbol: str,
        candles: Sequence[Candle],
        book: OrderBook,
        previous_book: Optional[OrderBook] = None,
        stability: Sequence[OrderBook] = (),
    ) -> Optional[AnalysisResult]:
        need = self.cfg.risk.min_candles_required
        if len(candles) < need:
            log.debug("skip_insufficient_candles symbol=%s have=%d need=%d", symbol, len(candles), need)
            return None

        cs = self.candles.get_all_signals(candles)
        if not cs.ok:
            log.debug("skip_candle_signals symbol=%s err=%s", symbol, cs.error)
            return None

        pair = self.cfg.pair(symbol)
        ob = self.orderbook.analyze(book, previous_book, candles, pair, stability)
        score = self.scorer.calculate(cs, ob.signals, candles)
        signal = self.decisions.decide(symbol, cs, ob.signals, score, candles)
        prices = self.prices.calculate(book, candles, signal, cs, pair)

        if log.isEnabledFor(logging.DEBUG):
            log.debug(
                "analysis symbol=%s signal=%s long=%s short=%s long_breakdown=%s short_breakdown=%s",
                symbol, signal, score.long, score.short, "; ".join(score.long_breakdown), "; ".join(score.short_breakdown),
            )

        return AnalysisResult(
            symbol=symbol.upper(),
            current_price=candles[-1].close,
            timestamp_ms=self._clock(),
            candle_signals=cs,
            orderbook_signals=ob.signals,
            composite_signal=signal,
            signal_score=score,
            suggested_prices=prices,
            extra={
                "imbalance": ob.metrics.bid_ask_imbalance,
                "stability": ob.metrics.stability,
                "spread": ob.metrics.spread,
            },
        )
