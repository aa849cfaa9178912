from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Callable, Optional

from .advisory import AdvisoryClient
from .composer import TIER_FALLBACK, SignalComposer, fmt_price
from .config import Config
from .indicators import compute_indicators, default_atr
from .models import BUY, SELL, AdvisoryOpinion, IndicatorSet, Signal
from .price_source import PriceHistorySource, base_price
from .providers.finnhub import FinnhubProvider
from .scoring import ConfluenceScorer
from .timefilter import fmt_hhmm, market_session

log = logging.getLogger("generator")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalGenerator:
    """Source -> indicators -> scorer -> composer. Always returns a Signal."""

    def __init__(
        self,
        source: PriceHistorySource,
        scorer: ConfluenceScorer,
        composer: SignalComposer,
        *,
        advisory: Optional[AdvisoryClient] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.scorer = scorer
        self.composer = composer
        self.advisory = advisory
        self.rng = rng or random.Random()
        self.clock = clock
        self.provider: Optional[FinnhubProvider] = None

    @classmethod
    def from_config(cls, cfg: Config) -> "SignalGenerator":
        provider = FinnhubProvider(
            cfg.provider.api_key,
            base_url=cfg.provider.base_url,
            resolution=cfg.provider.resolution,
            lookback_minutes=cfg.provider.lookback_minutes,
            timeout_s=cfg.provider.timeout_s,
        )
        source = PriceHistorySource(
            provider.fetch_candles,
            venues=cfg.provider.venues,
            timeout_s=cfg.provider.timeout_s,
        )
        advisory = AdvisoryClient(
            cfg.advisory.api_key,
            base_url=cfg.advisory.base_url,
            model=cfg.advisory.model,
            timeout_s=cfg.advisory.timeout_s,
            enabled=cfg.advisory.enabled,
        )
        gen = cls(
            source,
            ConfluenceScorer(cfg.scoring),
            SignalComposer(cfg.signal, cfg.scoring),
            advisory=advisory,
        )
        gen.provider = provider
        return gen

    async def close(self) -> None:
        if self.provider is not None:
            await self.provider.close()
        if self.advisory is not None:
            await self.advisory.close()

    async def _opinion(self, pair: str, ind: IndicatorSet) -> Optional[AdvisoryOpinion]:
        if self.advisory is None or not self.advisory.is_configured():
            return None
        try:
            return await self.advisory.get_opinion(pair, ind)
        except Exception as e:
            log.warning("advisory_error pair=%s err=%s", pair, e)
            return None

    async def generate(self, pair: str, is_manual: bool = False) -> Signal:
        now = self.clock()
        try:
            series = await self.source.fetch(pair)
            ind = compute_indicators(series)
            opinion = await self._opinion(pair, ind)
            result = self.scorer.score(ind, opinion)
            sig = self.composer.compose(pair, ind, result, is_manual, now=now, data_source=series.source)
        except Exception:
            log.exception("generate_failed pair=%s using=fallback", pair)
            return self.fallback_signal(pair, is_manual, now=now)

        log.info(
            "signal pair=%s action=%s tier=%s confidence=%d score=%.2f source=%s flags=%s",
            pair,
            sig.action,
            sig.tier,
            sig.confidence,
            sig.score,
            sig.data_source,
            ",".join(result.safety_flags) or "-",
        )
        return sig

    def fallback_signal(self, pair: str, is_manual: bool = False, *, now: Optional[datetime] = None) -> Signal:
        """Context-free signal used when the pipeline itself failed."""
        now = now or self.clock()
        cfg = self.composer.cfg
        action = self.rng.choice((BUY, SELL))
        entry = base_price(pair)
        sl, tp = self.composer.levels(action, entry, default_atr(entry))
        start, end = self.composer.window(now)
        reasoning = "\n".join([
            f"⏰ Start Time: {fmt_hhmm(start, cfg.timezone_label)}",
            f"🏁 End Time: {fmt_hhmm(end, cfg.timezone_label)}",
            "Market data unavailable; generic M5 fallback signal.",
        ])
        return Signal(
            pair=pair,
            action=action,
            entry_price=fmt_price(pair, entry),
            stop_loss=fmt_price(pair, sl),
            take_profit=fmt_price(pair, tp),
            confidence=cfg.fallback_confidence,
            session=market_session(now),
            reasoning=reasoning,
            valid_from=start,
            valid_to=end,
            is_manual=is_manual,
            tier=TIER_FALLBACK,
            data_source="none",
            created_at=now,
        )
