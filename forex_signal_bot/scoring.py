from __future__ import annotations

from typing import Dict, List, Optional

from .config import ScoringConfig
from .models import BUY, AdvisoryOpinion, IndicatorSet, SafetyReason, ScoreResult

# Signed contribution per condition: +weight when the condition confirms BUY,
# -weight when it confirms SELL.
DEFAULT_WEIGHTS: Dict[str, int] = {
    "trend_long_ema": 3,    # price vs EMA200
    "ema_cross": 2,         # EMA20 vs EMA50
    "macd_momentum": 2,     # histogram sign
    "rsi_extreme": 2,       # oversold / overbought, contrarian
    "bollinger_touch": 2,   # close at or beyond a band, contrarian
    "fractal_level": 2,     # close near fractal support / resistance
    "divergence": 3,
    "pattern": 1,
    "pattern_at_level": 3,  # pattern printed at fractal support / resistance
    "volume_surge": 1,      # in the direction of the last candle
    "mtf_trend": 2,         # EMA50 slope as a higher-timeframe proxy
}


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def long_term_trend(ind: IndicatorSet) -> int:
    """+1 above EMA200, -1 below, 0 exactly on it."""
    return _sign(ind.price - ind.ema200)


def near_support(ind: IndicatorSet, proximity_atr: float) -> bool:
    return ind.fractal_low is not None and abs(ind.price - ind.fractal_low) <= proximity_atr * ind.atr


def near_resistance(ind: IndicatorSet, proximity_atr: float) -> bool:
    return ind.fractal_high is not None and abs(ind.fractal_high - ind.price) <= proximity_atr * ind.atr


class ConfluenceScorer:
    def __init__(self, cfg: Optional[ScoringConfig] = None, weights: Optional[Dict[str, int]] = None):
        self.cfg = cfg or ScoringConfig()
        self.weights = dict(DEFAULT_WEIGHTS)
        self.weights.update(self.cfg.weights or {})
        self.weights.update(weights or {})
        unknown = set(self.weights) - set(DEFAULT_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown scoring conditions: {sorted(unknown)}")

    def breakdown(self, ind: IndicatorSet) -> Dict[str, float]:
        w = self.weights
        prox = self.cfg.level_proximity_atr
        support = near_support(ind, prox)
        resistance = near_resistance(ind, prox)
        out: Dict[str, float] = {}

        out["trend_long_ema"] = w["trend_long_ema"] * long_term_trend(ind)
        out["ema_cross"] = w["ema_cross"] * _sign(ind.ema20 - ind.ema50)
        out["macd_momentum"] = w["macd_momentum"] * _sign(ind.macd.histogram)

        rsi_dir = 0
        if ind.rsi <= self.cfg.rsi_oversold:
            rsi_dir = 1
        elif ind.rsi >= self.cfg.rsi_overbought:
            rsi_dir = -1
        out["rsi_extreme"] = w["rsi_extreme"] * rsi_dir

        bb_dir = 0
        if ind.price <= ind.bollinger.lower:
            bb_dir = 1
        elif ind.price >= ind.bollinger.upper:
            bb_dir = -1
        out["bollinger_touch"] = w["bollinger_touch"] * bb_dir

        out["fractal_level"] = w["fractal_level"] * (int(support) - int(resistance))
        out["divergence"] = w["divergence"] * (int(ind.bullish_divergence) - int(ind.bearish_divergence))
        out["pattern"] = w["pattern"] * (int(ind.bullish_pattern) - int(ind.bearish_pattern))
        out["pattern_at_level"] = w["pattern_at_level"] * (
            int(ind.bullish_pattern and support) - int(ind.bearish_pattern and resistance)
        )

        vol_dir = 0
        if ind.volume_surge:
            vol_dir = 1 if ind.last_candle_bullish else -1
        out["volume_surge"] = w["volume_surge"] * vol_dir
        out["mtf_trend"] = w["mtf_trend"] * _sign(ind.ema50 - ind.ema50_prev)
        return out

    def score(self, ind: IndicatorSet, advisory: Optional[AdvisoryOpinion] = None) -> ScoreResult:
        cfg = self.cfg
        parts = self.breakdown(ind)
        score = float(sum(parts.values()))

        if advisory is not None:
            adv = advisory.confidence / cfg.advisory_divisor
            adv = adv if advisory.action == BUY else -adv
            parts["advisory"] = adv
            score += adv

        flags: List[SafetyReason] = []

        trend = long_term_trend(ind)
        if trend != 0 and _sign(score) == -trend:
            score *= cfg.counter_trend_factor
            flags.append(SafetyReason.COUNTER_TREND)

        if score > 0 and (
            ind.price >= ind.bollinger.upper
            or ind.rsi >= cfg.rsi_overbought
            or ind.stoch_k >= cfg.stoch_overbought
        ):
            score *= cfg.overextension_factor
            flags.append(SafetyReason.OVERBOUGHT)
        elif score < 0 and (
            ind.price <= ind.bollinger.lower
            or ind.rsi <= cfg.rsi_oversold
            or ind.stoch_k <= cfg.stoch_oversold
        ):
            score *= cfg.overextension_factor
            flags.append(SafetyReason.OVERSOLD)

        strong_trend = ind.adx >= cfg.strong_trend_adx
        if not strong_trend:
            score *= cfg.weak_trend_factor
            flags.append(SafetyReason.WEAK_TREND)

        return ScoreResult(score=score, safety_flags=tuple(flags), strong_trend=strong_trend, breakdown=parts)
