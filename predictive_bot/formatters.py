from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .config import AlertsConfig
from .models import LONG, AnalysisResult


def _fmt_ms(ts_ms: int, tz=timezone.utc) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def price_precision(symbol: str) -> int:
    return 2 if "BTC" in symbol.upper() else 6


def _fmt_price(val: Optional[float], precision: int) -> str:
    if val is None:
        return "-"
    return f"${val:.{precision}f}"


def _pct(a: float, b: float) -> float:
    return abs((a - b) / b * 100.0) if b else 0.0


def format_alert(result: AnalysisResult, cfg: Optional[AlertsConfig] = None) -> str:
    """Plain-text alert for a long/short decision."""
    signal = result.composite_signal
    prices = result.suggested_prices
    prec = price_precision(result.symbol)
    current = result.current_price

    action = "🟢 LONG" if signal == LONG else "🔴 SHORT"
    lines = [
        f"{action} SIGNAL",
        "──────────────",
        f"📊 Pair: {result.symbol}",
        f"💰 Current: {_fmt_price(current, prec)}",
        f"🎯 Entry: {_fmt_price(prices.entry, prec)}",
    ]

    opt = prices.optimal_entry
    if opt is not None and opt != prices.entry:
        direction = "below" if signal == LONG else "above"
        lines.append(f"⭐ Optimal Entry: {_fmt_price(opt, prec)} ({_pct(opt, current):.2f}% {direction} current)")

    if prices.entry is not None and prices.stop_loss is not None and prices.take_profit is not None:
        risk_pct = _pct(prices.stop_loss, prices.entry)
        reward_pct = _pct(prices.take_profit, prices.entry)
        rr = reward_pct / risk_pct if risk_pct else 0.0
        lines.append(f"🛑 Stop Loss: {_fmt_price(prices.stop_loss, prec)} ({risk_pct:.2f}%)")
        lines.append(f"🎯 Take Profit: {_fmt_price(prices.take_profit, prec)} ({reward_pct:.2f}%)")
        lines.append(f"⚖️ Risk/Reward: {rr:.2f}:1")

    if cfg is None or cfg.include_score:
        lines.append(f"📈 Score: {result.signal_score.for_side(signal):g}/10")

    lines.append(f"⏰ Time: {_fmt_ms(result.timestamp_ms)} UTC")

    footer = ((cfg.footer if cfg else "") or "").strip()
    if footer:
        lines.append("")
        lines.append(footer)

    return "\n".join(lines)
