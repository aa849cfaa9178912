from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from ..models import Candle, CandleSeries

log = logging.getLogger("finnhub")

# (venue, separator between base and quote)
VENUES: Tuple[Tuple[str, str], ...] = (
    ("FX_IDC", ""),
    ("FOREXCOM", "_"),
    ("OANDA", "_"),
    ("SAXO", "_"),
    ("ICM", ""),
)


class ProviderError(RuntimeError):
    pass


def provider_symbols(pair: str, venues: Optional[Sequence[str]] = None) -> List[str]:
    """Symbol variants for `pair` ("EUR/USD") across liquidity venues, in fallback order."""
    known = dict(VENUES)
    order = [v for v, _ in VENUES] if venues is None else [v.upper() for v in venues]
    out = []
    for venue in order:
        if venue not in known:
            raise ValueError(f"Unknown venue: {venue}")
        out.append(f"{venue}:{pair.replace('/', known[venue])}")
    return out


def parse_candles(payload: Dict[str, Any], *, pair: str, source: str) -> CandleSeries:
    """Decode a Finnhub `{c,h,l,o,s,t,v}` candle payload."""
    status = str(payload.get("s") or "unknown")
    if status != "ok":
        return CandleSeries(pair=pair, candles=(), source=source, status=status)

    cols = [payload.get(k) or [] for k in ("t", "o", "h", "l", "c", "v")]
    n = min(len(c) for c in cols)
    ts, opens, highs, lows, closes, vols = cols
    try:
        candles = tuple(
            Candle(
                timestamp=int(ts[i]),
                open=float(opens[i]),
                high=float(highs[i]),
                low=float(lows[i]),
                close=float(closes[i]),
                volume=float(vols[i]),
            )
            for i in range(n)
        )
    except (TypeError, ValueError) as e:
        raise ProviderError(f"malformed candle payload from {source}: {e}") from e
    return CandleSeries(pair=pair, candles=candles, source=source, status=status)


class FinnhubProvider:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://finnhub.io/api/v1",
        resolution: str = "5",
        lookback_minutes: int = 360,
        timeout_s: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.resolution = resolution
        self.lookback_minutes = lookback_minutes
        self.timeout_s = timeout_s
        self.clock = clock

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def fetch_candles(self, provider_id: str, pair: str) -> CandleSeries:
        if not self.api_key:
            raise ProviderError("FINNHUB_API_KEY not set")

        to = int(self.clock())
        params = {
            "symbol": provider_id,
            "resolution": self.resolution,
            "from": to - self.lookback_minutes * 60,
            "to": to,
            "token": self.api_key,
        }
        sess = await self._get_session()
        async with sess.get(f"{self.base_url}/forex/candle", params=params) as resp:
            if resp.status != 200:
                txt = await resp.text()
                raise ProviderError(f"Finnhub candles failed: {resp.status} {txt[:200]}")
            # Some proxies return a wrong content-type; be tolerant.
            data = await resp.json(content_type=None)

        if not isinstance(data, dict):
            raise ProviderError(f"Finnhub candles returned {type(data).__name__}, expected object")
        return parse_candles(data, pair=pair, source=provider_id)
