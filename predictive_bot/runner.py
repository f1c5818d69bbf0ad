from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .analyzer import MarketAnalyzer
from .config import Config
from .decision import CooldownTable
from .formatters import format_alert
from .models import LONG, SHORT, AnalysisResult, OrderBook, SequenceGap
from .notifier.telegram import TelegramNotifier
from .orderbook_store import OrderBookStore
from .profiles import adapt_risk, get_profile, resolve_intervals
from .providers.binance import BinanceProvider, DepthEvent, KlineEvent
from .session import PairSession

log = logging.getLogger("runner")

Listener = Callable[[List[AnalysisResult]], Any]


class AnalysisRunner:
    def __init__(
        self,
        cfg: Config,
        provider: Optional[Any] = None,
        notifier: Optional[Any] = None,
        *,
        clock: Optional[Callable[[], int]] = None,
    ):
        profile = get_profile(cfg.analysis.timeframe)
        cfg.risk = adapt_risk(cfg.risk, profile)
        cfg.analysis = resolve_intervals(cfg.analysis, profile)
        self.cfg = cfg
        self.symbols = cfg.symbols
        if not self.symbols:
            raise ValueError("No pairs configured.")

        self.provider = provider or BinanceProvider(
            market=cfg.provider.market,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
        )
        if notifier is None:
            notifier = TelegramNotifier(
                token=cfg.telegram.token if cfg.telegram.enabled else "",
                chat_ids=cfg.telegram.chat_ids,
                disable_web_page_preview=cfg.telegram.disable_web_page_preview,
            )
        self.notifier = notifier

        self.store = OrderBookStore(
            max_levels=cfg.orderbook.max_levels,
            price_band=cfg.orderbook.price_band,
            gap_threshold=cfg.orderbook.gap_threshold,
            clock=clock,
        )
        self.sessions: Dict[str, PairSession] = {
            sym: PairSession(sym, max_candles=cfg.analysis.max_candles, stability_samples=cfg.orderbook.stability_samples)
            for sym in self.symbols
        }
        self.analyzer = MarketAnalyzer(cfg, clock=clock)
        self.cooldowns = CooldownTable(lambda s: self.cfg.pair(s).cooldown, clock=clock)
        self._clock = clock or (lambda: int(time.time() * 1000))

        self.running = False
        self._started = False
        self._listeners: List[Listener] = []
        self._stream_task: Optional[asyncio.Task] = None

    # ---- boot ----

    async def start(self) -> None:
        tf = self.cfg.analysis.timeframe
        n = int(self.cfg.analysis.max_candles)
        log.info("warmup_start symbols=%d timeframe=%s candles=%d", len(self.symbols), tf, n)

        sem = asyncio.Semaphore(max(1, int(self.cfg.provider.warmup_concurrency)))

        async def _one(sym: str):
            try:
                async with sem:
                    candles = await self.provider.fetch_klines(sym, tf, n)
                self.sessions[sym].load_candles(candles)
                return None
            except Exception as e:
                return (sym, repr(e))

        results = await asyncio.gather(*[_one(sym) for sym in self.symbols])
        retry_at = self._clock() + int(self.cfg.analysis.candle_retry_s * 1000)
        for failure in [r for r in results if r is not None]:
            # refilled by analyze_pair once the retry delay has passed
            self.sessions[failure[0]].candle_retry_at_ms = retry_at
            log.warning("warmup_failed symbol=%s tf=%s err=%s retry_in=%ss", failure[0], tf, failure[1], self.cfg.analysis.candle_retry_s)

        # buffer diffs until each snapshot lands
        for sym in self.symbols:
            self.store.begin_sync(sym)
        self.running = True
        self._stream_task = asyncio.create_task(self._consume_stream())
        await asyncio.sleep(self.cfg.analysis.stream_settle_s)

        await asyncio.gather(*[self._init_book(sym) for sym in self.symbols])
        self._started = True
        log.info("warmup_done symbols=%s", ",".join(self.symbols))

        if self.notifier is not None and self.notifier.enabled():
            await self._send(f"✅ {self.cfg.app.name}: started. Monitoring {len(self.symbols)} pairs on {tf}.")

    async def _fetch_snapshot(self, sym: str) -> Optional[OrderBook]:
        tries = max(1, int(self.cfg.provider.snapshot_retries))
        for attempt in range(1, tries + 1):
            try:
                return await self.provider.fetch_depth_snapshot(sym, self.cfg.provider.snapshot_limit)
            except Exception as e:
                log.warning("snapshot_failed symbol=%s attempt=%d/%d err=%s", sym, attempt, tries, e)
                if attempt < tries:
                    await asyncio.sleep(self.cfg.provider.snapshot_retry_delay_s)
        return None

    async def _init_book(self, sym: str) -> Optional[OrderBook]:
        """Fetch and apply a snapshot now, taking over from any pending resync.

        Diffs are buffered from before the fetch until the snapshot is applied.
        On failure the pair is handed to the background resync task.
        """
        session = self.sessions[sym]
        task = session.resync_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        session.resync_task = None

        self.store.begin_sync(sym)
        snap = await self._fetch_snapshot(sym)
        if snap is None:
            self.store.mark_resync(sym)
            self._schedule_resync(sym)
            return None
        book = self.store.apply_snapshot(sym, snap)
        if self.store.needs_resync(sym):
            # a buffered diff could not be bridged
            self._schedule_resync(sym)
            return None
        return book

    async def _refill_candles(self, sym: str) -> None:
        session = self.sessions[sym]
        now = self._clock()
        if now < session.candle_retry_at_ms:
            return
        session.candle_retry_at_ms = now + int(self.cfg.analysis.candle_retry_s * 1000)
        tf = self.cfg.analysis.timeframe
        try:
            candles = await self.provider.fetch_klines(sym, tf, int(self.cfg.analysis.max_candles))
        except Exception as e:
            log.warning("candles_refill_failed symbol=%s tf=%s err=%s retry_in=%ss", sym, tf, e, self.cfg.analysis.candle_retry_s)
            return
        session.load_candles(candles)
        log.info("candles_refilled symbol=%s tf=%s candles=%d", sym, tf, len(session.candles))

    # ---- stream ----

    async def _consume_stream(self) -> None:
        async for evt in self.provider.stream_market(self.symbols, self.cfg.analysis.timeframe):
            self.handle_event(evt)
            if not self.running:
                break

    def handle_event(self, evt: Any) -> None:
        if isinstance(evt, KlineEvent):
            session = self.sessions.get(evt.symbol)
            if session is not None and evt.timeframe == self.cfg.analysis.timeframe:
                session.on_kline(evt.candle)
        elif isinstance(evt, DepthEvent):
            if evt.symbol not in self.sessions:
                return
            res = self.store.apply_diff(evt.symbol, evt.update)
            if isinstance(res, SequenceGap):
                self._schedule_resync(evt.symbol)

    def _schedule_resync(self, sym: str) -> None:
        session = self.sessions[sym]
        if session.resync_task is not None and not session.resync_task.done():
            return
        self.store.begin_sync(sym)
        session.resync_task = asyncio.create_task(self._resync(sym))

    async def _resync(self, sym: str) -> None:
        await asyncio.sleep(self.cfg.analysis.resync_delay_s)
        while True:
            self.store.begin_sync(sym)
            snap = await self._fetch_snapshot(sym)
            if snap is not None:
                self.store.apply_snapshot(sym, snap)
                if not self.store.needs_resync(sym):
                    log.info("orderbook_resynced symbol=%s", sym)
                    return
                log.warning("orderbook_replay_gap symbol=%s", sym)
            log.warning("orderbook_resync_retry symbol=%s in=%ss", sym, self.cfg.analysis.resync_retry_s)
            await asyncio.sleep(self.cfg.analysis.resync_retry_s)

    # ---- analysis ----

    async def analyze_pair(self, sym: str) -> Optional[AnalysisResult]:
        session = self.sessions[sym]
        if len(session.candles) < self.cfg.risk.min_candles_required:
            await self._refill_candles(sym)

        book = self.store.get(sym)
        if self.store.needs_resync(sym) or book is None or book.is_empty():
            log.info("orderbook_reinit_before_analysis symbol=%s", sym)
            book = await self._init_book(sym)
            if book is None:
                log.warning("skip_analysis_no_orderbook symbol=%s", sym)
                return None

        candles = session.window()
        stability = session.push_book(book)
        result = self.analyzer.analyze(sym, candles, book, self.store.previous(sym), stability)
        if result is not None:
            await self._handle_signal(result)
        return result

    async def _safe_analyze(self, sym: str) -> Optional[AnalysisResult]:
        try:
            return await self.analyze_pair(sym)
        except Exception as e:
            log.exception("analysis_failed symbol=%s err=%s", sym, e)
            return None

    async def run_cycle(self) -> List[AnalysisResult]:
        results = await asyncio.gather(*[self._safe_analyze(sym) for sym in self.symbols])
        out = [r for r in results if r is not None]
        log.info(
            "cycle_done analyzed=%d/%d signals=%s",
            len(out),
            len(self.symbols),
            ",".join(f"{r.symbol}:{r.composite_signal}" for r in out) or "-",
        )
        for cb in list(self._listeners):
            try:
                ret = cb(out)
                if asyncio.iscoroutine(ret):
                    await ret
            except Exception as e:
                log.exception("listener_failed err=%s", e)
        return out

    async def run_forever(self) -> None:
        if not self._started:
            await self.start()
        self.running = True
        interval = float(self.cfg.analysis.analysis_interval_s)
        try:
            while self.running:
                t0 = time.monotonic()
                try:
                    await self.run_cycle()
                except Exception as e:
                    log.exception("cycle_failed err=%s", e)
                    await asyncio.sleep(self.cfg.analysis.reconnect_interval_s)
                    continue
                elapsed = time.monotonic() - t0
                await asyncio.sleep(max(0.0, interval - elapsed))
        finally:
            await self.close()

    def stop(self) -> None:
        """Ends the loop at the next cycle boundary."""
        self.running = False

    async def close(self) -> None:
        tasks = [self._stream_task] + [s.resync_task for s in self.sessions.values()]
        for t in tasks:
            if t is not None and not t.done():
                t.cancel()
        for t in tasks:
            if t is not None:
                try:
                    await t
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    log.warning("task_failed err=%s", e)
        self._stream_task = None
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()

    # ---- alerts / cooldown ----

    def add_listener(self, cb: Listener) -> None:
        self._listeners.append(cb)

    def is_cooling_down(self, pair: str) -> bool:
        return self.cooldowns.is_cooling_down(pair)

    def cooldown_remaining(self, pair: str) -> float:
        """Minutes left, 0 when not cooling down."""
        return self.cooldowns.remaining_ms(pair) / 60000.0

    def reset_cooldown(self, pair: Optional[str] = None) -> None:
        self.cooldowns.reset(pair)
        log.info("cooldown_reset pair=%s", pair or "*")

    async def _handle_signal(self, result: AnalysisResult) -> None:
        sym = result.symbol
        side = result.composite_signal
        if side not in (LONG, SHORT):
            return

        if self.cooldowns.is_cooling_down(sym):
            log.info(
                "signal_suppressed_cooldown symbol=%s side=%s remaining_min=%.1f",
                sym, side, self.cooldown_remaining(sym),
            )
            return

        if side not in (self.cfg.telegram.alert_signals or []):
            log.info("signal_not_alerted symbol=%s side=%s", sym, side)
            return

        p = result.suggested_prices
        log.info(
            "signal %s %s score=%s price=%s entry=%s stop=%s tp=%s optimal=%s",
            sym, side, result.signal_score.for_side(side), result.current_price,
            p.entry, p.stop_loss, p.take_profit, p.optimal_entry,
        )
        await self._send(format_alert(result, self.cfg.alerts))
        self.cooldowns.record(sym)
        log.info("cooldown_started symbol=%s minutes=%s", sym, self.cfg.pair(sym).cooldown)

    async def _send(self, text: str) -> None:
        if self.notifier is None or not self.notifier.enabled():
            return
        try:
            await self.notifier.send(text)
        except Exception as e:
            log.warning("alert_send_failed err=%s", e)
