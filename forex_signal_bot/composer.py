from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from .config import ScoringConfig, SignalConfig
from .models import BUY, SELL, IndicatorSet, ScoreResult, Signal
from .price_source import is_jpy
from .scoring import long_term_trend, near_resistance, near_support
from .timefilter import fmt_hhmm, market_session, next_m5_window, parse_tz

TIER_EXTREME = "extreme"
TIER_ELITE = "elite"
TIER_DEFAULT = "default"
TIER_FALLBACK = "fallback"


def price_decimals(pair: str) -> int:
    return 3 if is_jpy(pair) else 5


def fmt_price(pair: str, value: float) -> str:
    return f"{value:.{price_decimals(pair)}f}"


def trend_aligned(ind: IndicatorSet, action: str) -> bool:
    if action == BUY:
        return ind.price > ind.ema200 and ind.ema20 > ind.ema50
    return ind.price < ind.ema200 and ind.ema20 < ind.ema50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalComposer:
    def __init__(
        self,
        cfg: Optional[SignalConfig] = None,
        scoring_cfg: Optional[ScoringConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cfg = cfg or SignalConfig()
        self.scoring_cfg = scoring_cfg or ScoringConfig()
        self.tz = parse_tz(self.cfg.timezone)
        self.clock = clock

    def decide(self, ind: IndicatorSet, result: ScoreResult) -> Tuple[str, str, int]:
        """(action, tier, confidence); tiers are checked from the most confident down."""
        cfg = self.cfg
        score = result.score
        if score > 0:
            action = BUY
        elif score < 0:
            action = SELL
        else:
            action = SELL if long_term_trend(ind) < 0 else BUY

        mag = abs(score)
        aligned = trend_aligned(ind, action)
        prox = self.scoring_cfg.level_proximity_atr
        if action == BUY:
            pattern = ind.bullish_pattern
            level = near_support(ind, prox)
        else:
            pattern = ind.bearish_pattern
            level = near_resistance(ind, prox)

        if mag >= cfg.extreme_threshold and aligned and pattern and level:
            return action, TIER_EXTREME, cfg.extreme_confidence
        if mag >= cfg.elite_threshold and aligned:
            return action, TIER_ELITE, cfg.elite_confidence
        conf = int(round(min(cfg.confidence_cap, mag * cfg.confidence_factor)))
        return action, TIER_DEFAULT, max(0, min(100, conf))

    def levels(self, action: str, entry: float, atr: float,
               fractal_low: Optional[float] = None, fractal_high: Optional[float] = None) -> Tuple[float, float]:
        """(stop_loss, take_profit) from ATR, pushed beyond nearby fractal structure."""
        cfg = self.cfg
        dist = atr * cfg.atr_sl_multiplier
        buf = atr * cfg.structure_buffer_atr
        reach = atr * cfg.max_structure_atr
        if action == BUY:
            sl = entry - dist
            if fractal_low is not None and 0 < entry - fractal_low <= reach:
                sl = min(sl, fractal_low - buf)
            tp = entry + (entry - sl) * cfg.reward_risk
        else:
            sl = entry + dist
            if fractal_high is not None and 0 < fractal_high - entry <= reach:
                sl = max(sl, fractal_high + buf)
            tp = entry - (sl - entry) * cfg.reward_risk
        return sl, tp

    def window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        return next_m5_window(now or self.clock(), self.tz)

    def compose(
        self,
        pair: str,
        ind: IndicatorSet,
        result: ScoreResult,
        is_manual: bool = False,
        *,
        now: Optional[datetime] = None,
        data_source: str = "",
    ) -> Signal:
        cfg = self.cfg
        now = now or self.clock()
        action, tier, confidence = self.decide(ind, result)
        if ind.synthetic:
            confidence = min(confidence, cfg.synthetic_confidence_cap)

        entry = ind.price
        sl, tp = self.levels(action, entry, ind.atr, ind.fractal_low, ind.fractal_high)
        start, end = self.window(now)

        lines = [
            f"⏰ Start Time: {fmt_hhmm(start, cfg.timezone_label)}",
            f"🏁 End Time: {fmt_hhmm(end, cfg.timezone_label)}",
            f"{tier.capitalize()} confluence {action} on M5 | Score: {result.score:+.2f}",
        ]
        if result.safety_flags:
            lines.append("Safety: " + ", ".join(result.safety_flags))
        if ind.synthetic:
            lines.append("Data: synthetic fallback, confidence capped")

        return Signal(
            pair=pair,
            action=action,
            entry_price=fmt_price(pair, entry),
            stop_loss=fmt_price(pair, sl),
            take_profit=fmt_price(pair, tp),
            confidence=confidence,
            session=market_session(now),
            reasoning="\n".join(lines),
            valid_from=start,
            valid_to=end,
            is_manual=is_manual,
            score=result.score,
            tier=tier,
            data_source=data_source,
            created_at=now,
        )
