from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Dict, Optional, Tuple

# Decisions
LONG = "long"
SHORT = "short"
NEUTRAL = "neutral"

# Order-book price pressure
PRESSURE_UP = "up"
PRESSURE_DOWN = "down"
PRESSURE_NEUTRAL = "neutral"
PRESSURE_STRONG_UP = "strong_up"
PRESSURE_STRONG_DOWN = "strong_down"

# Order-book composite signal
STRONG_BUY = "strong_buy"
BUY = "buy"
WEAK_BUY = "weak_buy"
WEAK_SELL = "weak_sell"
SELL = "sell"
STRONG_SELL = "strong_sell"

Level = Tuple[float, float]  # (price, quantity)


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    closed: bool = True


@dataclass(frozen=True)
class OrderBook:
    """Immutable book value. bids descending, asks ascending, unique prices per side."""
    bids: Tuple[Level, ...] = ()
    asks: Tuple[Level, ...] = ()
    last_update_id: Optional[int] = None
    timestamp_ms: int = 0

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0][0] if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0][0] if self.asks else None

    @property
    def mid_price(self) -> Optional[float]:
        if not self.bids or not self.asks:
            return None
        return (self.bids[0][0] + self.asks[0][0]) / 2.0

    def is_empty(self) -> bool:
        return not self.bids and not self.asks


@dataclass(frozen=True)
class DepthUpdate:
    first_update_id: int  # U
    last_update_id: int   # u
    bids: Tuple[Level, ...] = ()
    asks: Tuple[Level, ...] = ()


@dataclass(frozen=True)
class SequenceGap:
    """Returned by OrderBookStore.apply_diff when a fresh snapshot is required."""
    symbol: str
    book_update_id: Optional[int]
    event_first_id: int


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    width: float  # (upper - lower) / middle


@dataclass(frozen=True)
class CandleSignals:
    ema_fast: float = 0.0
    ema_medium: float = 0.0
    ema_slow: float = 0.0
    ema_bullish_cross: bool = False
    ema_bearish_cross: bool = False
    is_uptrend: bool = False
    is_downtrend: bool = False
    rsi: Optional[float] = None
    is_overbought: bool = False
    is_oversold: bool = False
    bollinger_bands: Optional[BollingerBands] = None
    near_upper_band: bool = False
    near_lower_band: bool = False
    bbands_squeeze: bool = False
    volume_ema: float = 0.0
    last_volume: float = 0.0
    volume_spike: bool = False
    buying_pressure: bool = False
    selling_pressure: bool = False
    error: Optional[str] = None

    @classmethod
    def insufficient(cls, have: int, need: int) -> "CandleSignals":
        return cls(error=f"insufficient_data have={have} need={need}")

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class VolumeCluster:
    price_start: float
    total_volume: float
    count: int


@dataclass(frozen=True)
class Wall:
    price: float
    volume: float
    side: str  # bid | ask
    strength: float  # volume / average level volume


@dataclass(frozen=True)
class VolumeChanges:
    bid_volume_change: float
    ask_volume_change: float
    net_volume_change: float


@dataclass(frozen=True)
class OrderBookMetrics:
    spread: float
    mid_price: float
    total_bid_volume: float
    total_ask_volume: float
    bid_ask_imbalance: float
    support_levels: Tuple[VolumeCluster, ...]
    resistance_levels: Tuple[VolumeCluster, ...]
    stability: float
    samples_used: int
    bid_levels: int
    ask_levels: int
    volume_changes: Optional[VolumeChanges] = None


@dataclass(frozen=True)
class OrderBookSignals:
    strong_bid_imbalance: bool = False
    strong_ask_imbalance: bool = False
    support_detected: bool = False
    resistance_detected: bool = False
    bid_walls: Tuple[Wall, ...] = ()
    ask_walls: Tuple[Wall, ...] = ()
    price_pressure: str = PRESSURE_NEUTRAL
    in_uptrend: bool = False
    in_downtrend: bool = False
    volume_spike: bool = False
    signal_confidence: float = 0.0
    has_meaningful_volume: bool = False
    has_good_depth: bool = False
    is_stable: bool = False
    composite_signal: str = NEUTRAL


@dataclass(frozen=True)
class OrderBookAnalysis:
    metrics: OrderBookMetrics
    signals: OrderBookSignals


@dataclass(frozen=True)
class SignalScore:
    long: float = 0
    short: float = 0
    long_breakdown: Tuple[str, ...] = ()
    short_breakdown: Tuple[str, ...] = ()

    def for_side(self, side: str) -> float:
        return self.long if side == LONG else self.short if side == SHORT else 0


@dataclass(frozen=True)
class Divergence:
    bearish: bool = False  # book bullish, price weak
    bullish: bool = False  # book bearish, price strong


@dataclass(frozen=True)
class SuggestedPrices:
    entry: Optional[float] = None
    optimal_entry: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


@dataclass(frozen=True)
class AnalysisResult:
    symbol: str
    current_price: float
    timestamp_ms: int
    candle_signals: CandleSignals
    orderbook_signals: OrderBookSignals
    composite_signal: str
    signal_score: SignalScore
    suggested_prices: SuggestedPrices
    extra: Dict = field(default_factory=dict)

    def indicators(self) -> Dict[str, object]:
        cs = self.candle_signals
        bb = asdict(cs.bollinger_bands) if cs.bollinger_bands else None
        return {
            "ema_fast": cs.ema_fast,
            "ema_medium": cs.ema_medium,
            "ema_slow": cs.ema_slow,
            "rsi": cs.rsi,
            "bollinger_bands": bb,
            "volume_ema": cs.volume_ema,
            "volume_spike": cs.volume_spike,
            "buying_pressure": cs.buying_pressure,
        }

    def to_dict(self) -> Dict[str, object]:
        """Stable shape handed to alerting / persistence / UI consumers."""
        return {
            "symbol": self.symbol,
            "current_price": self.current_price,
            "timestamp": self.timestamp_ms,
            "signals": {
                "candle": asdict(self.candle_signals),
                "order_book": asdict(self.orderbook_signals),
                "composite_signal": self.composite_signal,
                "signal_score": {"long": self.signal_score.long, "short": self.signal_score.short},
            },
            "suggested_prices": asdict(self.suggested_prices),
            "indicators": self.indicators(),
        }

