from __future__ import annotations
from typing import List, Optional, Sequence, Tuple
import math

from .models import Bollinger, Candle, CandleSeries, IndicatorSet, Macd

DEFAULT_ATR_RATIO = 0.0005
NEUTRAL_RSI = 50.0
NEUTRAL_ADX = 25.0
SLOPE_LOOKBACK = 5
DIVERGENCE_LOOKBACK = 10
FRACTAL_LOOKBACK = 30


def default_atr(price: float) -> float:
    """Small, strictly positive ATR stand-in proportional to price."""
    return max(abs(price) * DEFAULT_ATR_RATIO, 1e-5)


def sma(prices: Sequence[float], period: int) -> float:
    if not prices:
        return 0.0
    if period <= 0 or len(prices) < period:
        return float(prices[-1])
    return sum(prices[-period:]) / float(period)


def ema(prices: Sequence[float], period: int) -> float:
    if not prices:
        return 0.0
    if period <= 1:
        return float(prices[-1])
    k = 2.0 / (period + 1.0)
    val = float(prices[0])
    for x in prices[1:]:
        val = x * k + val * (1.0 - k)
    return val


def rsi(prices: Sequence[float], period: int = 14) -> float:
    if period <= 0 or len(prices) < period + 1:
        return NEUTRAL_RSI
    gains = 0.0
    losses = 0.0
    for i in range(len(prices) - period, len(prices)):
        ch = prices[i] - prices[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr(candles: Sequence[Candle], period: int = 14) -> float:
    """Mean true range over the trailing window, never zero."""
    last = candles[-1].close if candles else 0.0
    if period <= 0 or len(candles) < period + 1:
        return default_atr(last)
    trs = [
        true_range(candles[i].high, candles[i].low, candles[i - 1].close)
        for i in range(len(candles) - period, len(candles))
    ]
    val = sum(trs) / period
    if val <= 0:
        return default_atr(last)
    return val


def macd(prices: Sequence[float], fast: int = 12, slow: int = 26) -> Macd:
    # No MACD history is kept between calls, so the signal line is a blend of the
    # current and previous bar's MACD value.
    if not prices:
        return Macd(0.0, 0.0, 0.0)
    line = ema(prices, fast) - ema(prices, slow)
    prev = line
    if len(prices) > 1:
        prev = ema(prices[:-1], fast) - ema(prices[:-1], slow)
    signal = 0.2 * line + 0.8 * prev
    return Macd(line=line, signal=signal, histogram=line - signal)


def bollinger_bands(prices: Sequence[float], period: int = 20, std_mult: float = 2.0) -> Bollinger:
    if not prices:
        return Bollinger(0.0, 0.0, 0.0)
    window = list(prices[-period:]) if period > 0 else list(prices)
    mid = sum(window) / len(window)
    var = sum((x - mid) ** 2 for x in window) / len(window)
    dev = math.sqrt(var) * std_mult
    return Bollinger(upper=mid + dev, middle=mid, lower=mid - dev)


def stochastic_k(candles: Sequence[Candle], period: int = 14) -> float:
    if not candles:
        return 50.0
    window = candles[-period:]
    hh = max(c.high for c in window)
    ll = min(c.low for c in window)
    if hh - ll <= 0:
        return 50.0
    return (candles[-1].close - ll) / (hh - ll) * 100.0


def adx(candles: Sequence[Candle], period: int = 14) -> float:
    """Directional-movement ratio over one window, a 0..100 trend-strength proxy."""
    if period <= 0 or len(candles) < period + 1:
        return NEUTRAL_ADX
    plus_dm = 0.0
    minus_dm = 0.0
    tr_sum = 0.0
    for i in range(len(candles) - period, len(candles)):
        cur, prev = candles[i], candles[i - 1]
        up = cur.high - prev.high
        down = prev.low - cur.low
        if up > down and up > 0:
            plus_dm += up
        if down > up and down > 0:
            minus_dm += down
        tr_sum += true_range(cur.high, cur.low, prev.close)
    if tr_sum <= 0:
        return NEUTRAL_ADX
    plus_di = 100.0 * plus_dm / tr_sum
    minus_di = 100.0 * minus_dm / tr_sum
    if plus_di + minus_di == 0:
        return 0.0
    return 100.0 * abs(plus_di - minus_di) / (plus_di + minus_di)


def fractal_levels(candles: Sequence[Candle], lookback: int = FRACTAL_LOOKBACK) -> Tuple[Optional[float], Optional[float]]:
    """Most recent confirmed 5-bar fractal high and low within the lookback."""
    n = len(candles)
    high: Optional[float] = None
    low: Optional[float] = None
    start = max(2, n - lookback)
    for i in range(n - 3, start - 1, -1):
        neigh = (candles[i - 2], candles[i - 1], candles[i + 1], candles[i + 2])
        c = candles[i]
        if high is None and all(c.high > x.high for x in neigh):
            high = c.high
        if low is None and all(c.low < x.low for x in neigh):
            low = c.low
        if high is not None and low is not None:
            break
    return high, low


def engulfing(candles: Sequence[Candle]) -> Tuple[bool, bool]:
    """(bullish, bearish) engulfing on the last two candles."""
    if len(candles) < 2:
        return False, False
    prev, cur = candles[-2], candles[-1]
    bullish = (
        prev.close < prev.open
        and cur.close > cur.open
        and cur.open <= prev.close
        and cur.close >= prev.open
    )
    bearish = (
        prev.close > prev.open
        and cur.close < cur.open
        and cur.open >= prev.close
        and cur.close <= prev.open
    )
    return bullish, bearish


def pin_bar(c: Candle) -> Tuple[bool, bool]:
    """(bullish, bearish) rejection candle."""
    rng = c.high - c.low
    if rng <= 0:
        return False, False
    body = abs(c.close - c.open)
    upper = c.high - max(c.open, c.close)
    lower = min(c.open, c.close) - c.low
    if body >= 0.35 * rng:
        return False, False
    bullish = lower > 2.5 * body and upper < body
    bearish = upper > 2.5 * body and lower < body
    return bullish, bearish


def divergence(prices: Sequence[float], period: int = 14, lookback: int = DIVERGENCE_LOOKBACK) -> Tuple[bool, bool]:
    """(bullish, bearish) price/RSI divergence against the bar `lookback` ago."""
    if lookback <= 0 or len(prices) < period + lookback + 1:
        return False, False
    rsi_now = rsi(prices, period)
    rsi_then = rsi(prices[:-lookback], period)
    price_now = prices[-1]
    price_then = prices[-1 - lookback]
    bullish = price_now < price_then and rsi_now > rsi_then and rsi_now < 40
    bearish = price_now > price_then and rsi_now < rsi_then and rsi_now > 60
    return bullish, bearish


def volume_surge(volumes: Sequence[float], period: int = 20, mult: float = 1.5) -> bool:
    if len(volumes) < 2:
        return False
    prev = volumes[-period - 1:-1]
    avg = sum(prev) / len(prev)
    if avg <= 0:
        return False
    return volumes[-1] > mult * avg


def compute_indicators(series: CandleSeries) -> IndicatorSet:
    candles = list(series.candles)
    closes = series.closes
    price = closes[-1] if closes else 0.0

    bull_eng, bear_eng = engulfing(candles)
    bull_pin, bear_pin = pin_bar(candles[-1]) if candles else (False, False)
    bull_div, bear_div = divergence(closes)
    frac_hi, frac_lo = fractal_levels(candles)
    prev_closes = closes[:-SLOPE_LOOKBACK] if len(closes) > SLOPE_LOOKBACK else closes[:1]

    return IndicatorSet(
        price=price,
        sma20=sma(closes, 20),
        ema20=ema(closes, 20),
        ema50=ema(closes, 50),
        ema200=ema(closes, 200),
        ema50_prev=ema(prev_closes, 50),
        rsi=rsi(closes, 14),
        atr=atr(candles, 14),
        macd=macd(closes),
        bollinger=bollinger_bands(closes, 20, 2.0),
        stoch_k=stochastic_k(candles, 14),
        adx=adx(candles, 14),
        fractal_high=frac_hi,
        fractal_low=frac_lo,
        bullish_engulfing=bull_eng,
        bearish_engulfing=bear_eng,
        bullish_pin_bar=bull_pin,
        bearish_pin_bar=bear_pin,
        bullish_divergence=bull_div,
        bearish_divergence=bear_div,
        volume_surge=volume_surge(series.volumes),
        last_candle_bullish=bool(candles) and candles[-1].close >= candles[-1].open,
        synthetic=series.synthetic,
    )
