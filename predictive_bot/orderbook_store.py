from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .models import DepthUpdate, Level, OrderBook, SequenceGap

log = logging.getLogger("orderbook")

DiffResult = Union[OrderBook, SequenceGap, None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _merge(side: Iterable[Level], changes: Iterable[Level]) -> Dict[float, float]:
    levels = {float(p): float(q) for p, q in side}
    for p, q in changes:
        p = float(p)
        levels.pop(p, None)
        if float(q) > 0:
            levels[p] = float(q)
    return levels


class OrderBookStore:
    """Per-pair local books rebuilt from a REST snapshot plus the diff stream.

    Every mutation produces a new OrderBook value; the book that was current
    before the last applied diff is kept as `previous(symbol)`.
    """

    def __init__(
        self,
        *,
        max_levels: int = 500,
        price_band: float = 0.10,
        gap_threshold: int = 100,
        max_buffered: int = 5000,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.max_levels = int(max_levels)
        self.price_band = float(price_band)
        self.gap_threshold = int(gap_threshold)
        self.max_buffered = int(max_buffered)
        self._clock = clock or _now_ms

        self._books: Dict[str, OrderBook] = {}
        self._previous: Dict[str, OrderBook] = {}
        self._buffers: Dict[str, List[DepthUpdate]] = {}
        self._needs_resync: Set[str] = set()

    def get(self, symbol: str) -> Optional[OrderBook]:
        return self._books.get(symbol.upper())

    def previous(self, symbol: str) -> Optional[OrderBook]:
        return self._previous.get(symbol.upper())

    def needs_resync(self, symbol: str) -> bool:
        return symbol.upper() in self._needs_resync

    def mark_resync(self, symbol: str) -> None:
        self._needs_resync.add(symbol.upper())

    def is_buffering(self, symbol: str) -> bool:
        return symbol.upper() in self._buffers

    def begin_sync(self, symbol: str) -> None:
        """Start buffering diffs until the next snapshot lands. Keeps an existing buffer."""
        self._buffers.setdefault(symbol.upper(), [])

    def apply_snapshot(self, symbol: str, snapshot: OrderBook) -> OrderBook:
        sym = symbol.upper()
        if snapshot.last_update_id is None:
            raise ValueError(f"snapshot for {sym} has no last_update_id")

        book = self._build(snapshot.bids, snapshot.asks, snapshot.last_update_id)
        self._books[sym] = book
        self._previous.pop(sym, None)
        self._needs_resync.discard(sym)

        buffered = self._buffers.pop(sym, [])
        replayed = 0
        for evt in sorted(buffered, key=lambda e: e.last_update_id):
            if evt.last_update_id <= book.last_update_id:
                continue
            res = self._apply(sym, evt)
            if isinstance(res, SequenceGap):
                break
            book = res
            replayed += 1

        log.info(
            "orderbook_snapshot symbol=%s last_update_id=%s bids=%d asks=%d replayed=%d buffered=%d",
            sym, book.last_update_id, len(book.bids), len(book.asks), replayed, len(buffered),
        )
        return self._books[sym]

    def apply_diff(self, symbol: str, event: DepthUpdate) -> DiffResult:
        """Apply one depth event.

        Returns the updated (or unchanged, for stale events) book, a
        SequenceGap when a fresh snapshot is required, or None while the
        pair is buffering for a snapshot.
        """
        sym = symbol.upper()
        buf = self._buffers.get(sym)
        if buf is not None:
            buf.append(event)
            if len(buf) > self.max_buffered:
                del buf[: len(buf) - self.max_buffered]
            return None
        return self._apply(sym, event)

    def _apply(self, sym: str, event: DepthUpdate) -> Union[OrderBook, SequenceGap]:
        book = self._books.get(sym)
        if book is None:
            # cold start: nothing to diff against
            book = self._build(event.bids, event.asks, event.last_update_id)
            self._books[sym] = book
            return book

        last = book.last_update_id or 0
        if event.last_update_id <= last:
            return book

        if event.first_update_id > last + self.gap_threshold:
            self._needs_resync.add(sym)
            log.warning("orderbook_gap symbol=%s last=%s U=%s u=%s", sym, last, event.first_update_id, event.last_update_id)
            return SequenceGap(symbol=sym, book_update_id=book.last_update_id, event_first_id=event.first_update_id)

        bids = _merge(book.bids, event.bids)
        asks = _merge(book.asks, event.asks)
        updated = self._build(bids.items(), asks.items(), event.last_update_id)
        self._previous[sym] = book
        self._books[sym] = updated
        return updated

    def _build(self, bids: Iterable[Level], asks: Iterable[Level], last_update_id: int) -> OrderBook:
        bid_map = {float(p): float(q) for p, q in bids if float(q) > 0}
        ask_map = {float(p): float(q) for p, q in asks if float(q) > 0}
        b = sorted(bid_map.items(), key=lambda x: x[0], reverse=True)
        a = sorted(ask_map.items(), key=lambda x: x[0])
        b, a = self._prune(b, a)
        return OrderBook(bids=tuple(b), asks=tuple(a), last_update_id=int(last_update_id), timestamp_ms=self._clock())

    def _prune(self, bids: List[Tuple[float, float]], asks: List[Tuple[float, float]]):
        if bids and asks:
            mid = (bids[0][0] + asks[0][0]) / 2.0
            lo = mid * (1.0 - self.price_band)
            hi = mid * (1.0 + self.price_band)
            bids = [lv for lv in bids if lv[0] >= lo]
            asks = [lv for lv in asks if lv[0] <= hi]
        return bids[: self.max_levels], asks[: self.max_levels]
