from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

BUY = "BUY"
SELL = "SELL"


class SafetyReason(str, Enum):
    COUNTER_TREND = "counter_trend"
    OVERBOUGHT = "overbought"
    OVERSOLD = "oversold"
    WEAK_TREND = "weak_trend"


@dataclass(frozen=True)
class Candle:
    timestamp: int  # unix seconds, bar open
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class CandleSeries:
    pair: str
    candles: Tuple[Candle, ...]
    source: str
    status: str = "ok"
    synthetic: bool = False

    def __len__(self) -> int:
        return len(self.candles)

    @property
    def opens(self) -> List[float]:
        return [c.open for c in self.candles]

    @property
    def highs(self) -> List[float]:
        return [c.high for c in self.candles]

    @property
    def lows(self) -> List[float]:
        return [c.low for c in self.candles]

    @property
    def closes(self) -> List[float]:
        return [c.close for c in self.candles]

    @property
    def volumes(self) -> List[float]:
        return [c.volume for c in self.candles]


@dataclass(frozen=True)
class Macd:
    line: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class Bollinger:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class IndicatorSet:
    price: float
    sma20: float
    ema20: float
    ema50: float
    ema200: float
    ema50_prev: float  # EMA50 a few bars back, slope proxy
    rsi: float
    atr: float
    macd: Macd
    bollinger: Bollinger
    stoch_k: float
    adx: float
    fractal_high: Optional[float]
    fractal_low: Optional[float]
    bullish_engulfing: bool
    bearish_engulfing: bool
    bullish_pin_bar: bool
    bearish_pin_bar: bool
    bullish_divergence: bool
    bearish_divergence: bool
    volume_surge: bool
    last_candle_bullish: bool
    synthetic: bool = False

    @property
    def bullish_pattern(self) -> bool:
        return self.bullish_engulfing or self.bullish_pin_bar

    @property
    def bearish_pattern(self) -> bool:
        return self.bearish_engulfing or self.bearish_pin_bar


@dataclass(frozen=True)
class AdvisoryOpinion:
    action: str  # BUY or SELL
    confidence: int  # 0..100
    reasoning: str = ""


@dataclass(frozen=True)
class ScoreResult:
    score: float
    safety_flags: Tuple[SafetyReason, ...]
    strong_trend: bool
    breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Signal:
    pair: str
    action: str  # BUY or SELL
    entry_price: str
    stop_loss: str
    take_profit: str
    confidence: int
    session: str  # Asian | London | New York | Closed
    reasoning: str
    valid_from: datetime
    valid_to: datetime
    is_manual: bool = False
    sent_to_telegram: bool = False
    score: float = 0.0
    tier: str = "default"
    data_source: str = ""
    created_at: Optional[datetime] = None
    signal_id: Optional[int] = None
