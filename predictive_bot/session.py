from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, List, Optional

from .models import Candle, OrderBook


class PairSession:
    """Per-pair state carried across analysis cycles."""

    def __init__(self, symbol: str, *, max_candles: int, stability_samples: int = 3):
        self.symbol = symbol.upper()
        self.candles: Deque[Candle] = deque(maxlen=max(1, int(max_candles)))
        self.stability: Deque[OrderBook] = deque(maxlen=max(1, int(stability_samples)))
        self.resync_task: Optional[asyncio.Task] = None
        # earliest time (ms) a short candle window may be re-fetched
        self.candle_retry_at_ms = 0

    def load_candles(self, candles: List[Candle]) -> None:
        self.candles.clear()
        for c in candles:
            self.on_kline(c)

    def on_kline(self, candle: Candle) -> bool:
        """Merge a kline update into the window. Returns False for late updates."""
        if self.candles:
            last = self.candles[-1]
            if candle.open_time_ms == last.open_time_ms:
                self.candles[-1] = candle
                return True
            if candle.open_time_ms < last.open_time_ms:
                return False
        self.candles.append(candle)
        return True

    def window(self) -> List[Candle]:
        return list(self.candles)

    def push_book(self, book: OrderBook) -> List[OrderBook]:
        self.stability.append(book)
        return list(self.stability)

    @property
    def current_price(self) -> Optional[float]:
        return self.candles[-1].close if self.candles else None
