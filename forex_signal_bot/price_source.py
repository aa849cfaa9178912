from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp

from .models import Candle, CandleSeries
from .providers.finnhub import ProviderError, provider_symbols

log = logging.getLogger("source")

FetchCandles = Callable[[str, str], Awaitable[CandleSeries]]

MIN_POINTS = 5
SYNTHETIC_POINTS = 50
BAR_SECONDS = 300

BASE_PRICES: Dict[str, float] = {
    "EUR/USD": 1.0854,
    "GBP/USD": 1.2650,
    "USD/JPY": 145.23,
    "AUD/USD": 0.6550,
    "USD/CAD": 1.3600,
    "USD/CHF": 0.8850,
    "NZD/USD": 0.6000,
    "EUR/JPY": 157.40,
    "GBP/JPY": 183.60,
}


def is_jpy(pair: str) -> bool:
    return "JPY" in pair.upper()


def base_price(pair: str) -> float:
    return BASE_PRICES.get(pair.upper(), 145.23 if is_jpy(pair) else 1.0854)


def synthetic_series(pair: str, *, rng: random.Random, now: float, points: int = SYNTHETIC_POINTS) -> CandleSeries:
    """Flat-ish series around the pair's base price, used when every provider failed."""
    base = base_price(pair)
    unit = 0.1 if is_jpy(pair) else 0.001
    to = int(now)
    candles = []
    for i in range(points):
        o = base + (rng.random() - 0.5) * 2 * unit
        c = base + (rng.random() - 0.5) * 2 * unit
        h = base + unit + rng.random() * 2 * unit
        lo = base - unit - rng.random() * 2 * unit
        candles.append(Candle(
            timestamp=to - (points - i) * BAR_SECONDS,
            open=o,
            high=h,
            low=lo,
            close=c,
            volume=float(rng.randrange(1000)),
        ))
    return CandleSeries(pair=pair, candles=tuple(candles), source="synthetic", status="ok", synthetic=True)


class PriceHistorySource:
    """Tries provider symbols in order and returns the first usable series.

    Attempting(i) -> Success | Attempting(i + 1) | Exhausted. Exhausted degrades to a
    synthetic series marked `synthetic=True` instead of raising.
    """

    def __init__(
        self,
        fetch_candles: FetchCandles,
        *,
        venues: Optional[Sequence[str]] = None,
        timeout_s: float = 5.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.fetch_candles = fetch_candles
        self.venues = list(venues) if venues else None
        self.timeout_s = timeout_s
        self.rng = rng or random.Random()
        self.clock = clock

    def provider_ids(self, pair: str) -> List[str]:
        return provider_symbols(pair, self.venues)

    async def _attempt(self, provider_id: str, pair: str) -> Optional[CandleSeries]:
        log.info("fetch_attempt source=%s pair=%s", provider_id, pair)
        try:
            series = await asyncio.wait_for(self.fetch_candles(provider_id, pair), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            log.warning("fetch_timeout source=%s pair=%s timeout=%.1fs", provider_id, pair, self.timeout_s)
            return None
        except (ProviderError, aiohttp.ClientError, ValueError) as e:
            log.warning("fetch_failed source=%s pair=%s err=%s", provider_id, pair, e)
            return None
        except Exception as e:
            log.exception("fetch_error source=%s pair=%s err=%s", provider_id, pair, e)
            return None

        if series.status != "ok":
            log.warning("fetch_bad_status source=%s pair=%s status=%s", provider_id, pair, series.status)
            return None
        if len(series) <= MIN_POINTS:
            log.warning("fetch_too_short source=%s pair=%s points=%d", provider_id, pair, len(series))
            return None
        return series

    async def fetch(self, pair: str) -> CandleSeries:
        ids = self.provider_ids(pair)
        i = 0
        while i < len(ids):
            series = await self._attempt(ids[i], pair)
            if series is not None:
                log.info("fetch_ok source=%s pair=%s points=%d", ids[i], pair, len(series))
                return series
            i += 1

        log.error("fetch_exhausted pair=%s tried=%d using=synthetic", pair, len(ids))
        return synthetic_series(pair, rng=self.rng, now=self.clock())
