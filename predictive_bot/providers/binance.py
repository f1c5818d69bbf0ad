from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import aiohttp
import websockets

from ..models import Candle, DepthUpdate, Level, OrderBook

log = logging.getLogger("binance")


def _rest_base(market: str) -> str:
    return "https://fapi.binance.com" if market == "futures" else "https://api.binance.com"


def _klines_path(market: str) -> str:
    return "/fapi/v1/klines" if market == "futures" else "/api/v3/klines"


def _depth_path(market: str) -> str:
    return "/fapi/v1/depth" if market == "futures" else "/api/v3/depth"


def _ws_url(market: str) -> str:
    return "wss://fstream.binance.com/ws" if market == "futures" else "wss://stream.binance.com:9443/ws"


def _kline_stream(symbol: str, tf: str) -> str:
    return f"{symbol.lower()}@kline_{tf}"


def _depth_stream(symbol: str) -> str:
    return f"{symbol.lower()}@depth@100ms"


def parse_levels(rows: Any) -> Tuple[Level, ...]:
    return tuple((float(p), float(q)) for p, q, *_ in (rows or []))


def parse_kline_row(row: List[Any]) -> Candle:
    # [0]=open time, [1..5]=o/h/l/c/v
    return Candle(
        open_time_ms=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def parse_depth_snapshot(data: Dict[str, Any], timestamp_ms: int = 0) -> OrderBook:
    return OrderBook(
        bids=parse_levels(data.get("bids")),
        asks=parse_levels(data.get("asks")),
        last_update_id=int(data["lastUpdateId"]),
        timestamp_ms=timestamp_ms,
    )


@dataclass(frozen=True)
class KlineEvent:
    symbol: str
    timeframe: str
    candle: Candle


@dataclass(frozen=True)
class DepthEvent:
    symbol: str
    update: DepthUpdate


MarketEvent = Union[KlineEvent, DepthEvent]


def parse_stream_message(j: Dict[str, Any]) -> Optional[MarketEvent]:
    data = j.get("data") or j
    if not isinstance(data, dict):
        return None
    et = data.get("e")
    if et == "kline":
        k = data.get("k", {})
        c = Candle(
            open_time_ms=int(k.get("t")),
            open=float(k.get("o")),
            high=float(k.get("h")),
            low=float(k.get("l")),
            close=float(k.get("c")),
            volume=float(k.get("v")),
            closed=bool(k.get("x", False)),
        )
        return KlineEvent(symbol=str(k.get("s", data.get("s", ""))).upper(), timeframe=k.get("i", ""), candle=c)
    if et == "depthUpdate":
        upd = DepthUpdate(
            first_update_id=int(data["U"]),
            last_update_id=int(data["u"]),
            bids=parse_levels(data.get("b")),
            asks=parse_levels(data.get("a")),
        )
        return DepthEvent(symbol=str(data.get("s", "")).upper(), update=upd)
    return None


class BinanceProvider:
    def __init__(
        self,
        market: str = "spot",
        *,
        rest_timeout_s: int = 20,
        ws_heartbeat_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s
        self.ws_heartbeat_s = ws_heartbeat_s

        # REST robustness
        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    async def _get_json(self, path: str, params: Dict[str, Any], what: str) -> Any:
        url = _rest_base(self.market) + path
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    # Rate-limit / ban signals
                    if resp.status in (418, 429):
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s what=%s symbol=%s sleep=%.1fs body=%s",
                            resp.status,
                            what,
                            params.get("symbol"),
                            sleep_s,
                            txt[:200],
                        )
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise RuntimeError(f"Binance {what} failed: {resp.status} {txt[:500]}")

                    # Some proxies return a wrong content-type; be tolerant.
                    return await resp.json(content_type=None)

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= int(self.rest_max_retries):
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d what=%s symbol=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    what,
                    params.get("symbol"),
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if last_err is not None:
            raise last_err
        raise RuntimeError(f"Binance {what} failed: rate limited after {self.rest_max_retries} attempts")

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        params = {"symbol": symbol.upper(), "interval": timeframe, "limit": int(limit)}
        data = await self._get_json(_klines_path(self.market), params, "klines")
        return [parse_kline_row(row) for row in data]

    async def fetch_depth_snapshot(self, symbol: str, limit: int = 1000) -> OrderBook:
        params = {"symbol": symbol.upper(), "limit": int(limit)}
        data = await self._get_json(_depth_path(self.market), params, "depth")
        return parse_depth_snapshot(data)

    async def stream_market(self, symbols: List[str], timeframe: str) -> AsyncIterator[MarketEvent]:
        """Yields kline updates (forming and closed) and depth diffs for all symbols. Auto-reconnects."""
        streams = [_kline_stream(sym, timeframe) for sym in symbols] + [_depth_stream(sym) for sym in symbols]
        ws_url = _ws_url(self.market)

        sub_msg = {"method": "SUBSCRIBE", "params": streams, "id": 1}

        backoff = 1
        while True:
            try:
                async with websockets.connect(
                    ws_url,
                    ping_interval=self.ws_heartbeat_s,
                    ping_timeout=self.ws_heartbeat_s,
                    close_timeout=5,
                    max_queue=5000,
                ) as ws:
                    backoff = 1
                    await ws.send(json.dumps(sub_msg))
                    log.info("ws_subscribed streams=%d market=%s", len(streams), self.market)

                    async for msg in ws:
                        try:
                            j = json.loads(msg)
                        except ValueError:
                            continue
                        if "result" in j and j.get("id") == 1:
                            continue  # subscribe ack
                        try:
                            evt = parse_stream_message(j)
                        except (KeyError, TypeError, ValueError) as e:
                            log.warning("ws_bad_payload err=%s", e)
                            continue
                        if evt is not None:
                            yield evt

            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                log.warning("ws_error err=%s reconnect_in=%ss", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)
