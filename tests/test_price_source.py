import asyncio
import random

import pytest

from forex_signal_bot.models import Candle, CandleSeries
from forex_signal_bot.price_source import PriceHistorySource, synthetic_series
from forex_signal_bot.providers.finnhub import ProviderError, parse_candles, provider_symbols

NOW = 1_760_000_000


def _series(source: str, n: int, status: str = "ok") -> CandleSeries:
    candles = tuple(
        Candle(timestamp=NOW - (n - i) * 300, open=1.1, high=1.101, low=1.099, close=1.1, volume=10.0)
        for i in range(n)
    )
    return CandleSeries(pair="EUR/USD", candles=candles, source=source, status=status)


class FakeFetcher:
    """Scripted responses per provider id: a CandleSeries, an exception, or 'hang'."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def __call__(self, provider_id: str, pair: str) -> CandleSeries:
        self.calls.append(provider_id)
        r = self.responses.get(provider_id, ProviderError("not scripted"))
        if r == "hang":
            await asyncio.sleep(10)
        if isinstance(r, BaseException):
            raise r
        return r


def test_provider_symbols_cover_venues_in_order():
    assert provider_symbols("EUR/USD") == [
        "FX_IDC:EURUSD",
        "FOREXCOM:EUR_USD",
        "OANDA:EUR_USD",
        "SAXO:EUR_USD",
        "ICM:EURUSD",
    ]
    assert provider_symbols("USD/JPY", ["oanda", "ICM"]) == ["OANDA:USD_JPY", "ICM:USDJPY"]
    with pytest.raises(ValueError):
        provider_symbols("EUR/USD", ["NOPE"])


def test_parse_candles_payload():
    payload = {
        "s": "ok",
        "t": [100, 400],
        "o": [1.1, 1.2],
        "h": [1.15, 1.25],
        "l": [1.05, 1.18],
        "c": [1.12, 1.22],
        "v": [5, 6],
    }
    series = parse_candles(payload, pair="EUR/USD", source="OANDA:EUR_USD")
    assert series.status == "ok"
    assert len(series) == 2
    assert series.candles[1] == Candle(timestamp=400, open=1.2, high=1.25, low=1.18, close=1.22, volume=6.0)

    empty = parse_candles({"s": "no_data"}, pair="EUR/USD", source="OANDA:EUR_USD")
    assert empty.status == "no_data"
    assert len(empty) == 0


def test_parse_candles_rejects_null_values():
    payload = {"s": "ok", "t": list(range(10)), "o": [1.1] * 10, "h": [1.2] * 10,
               "l": [1.0] * 10, "c": [1.1] * 10, "v": [None] * 10}
    with pytest.raises(ProviderError):
        parse_candles(payload, pair="EUR/USD", source="FX_IDC:EURUSD")


def test_first_usable_provider_wins():
    async def _run():
        fetcher = FakeFetcher({"FX_IDC:EURUSD": _series("FX_IDC:EURUSD", 60)})
        src = PriceHistorySource(fetcher, clock=lambda: NOW)
        series = await src.fetch("EUR/USD")
        assert series.source == "FX_IDC:EURUSD"
        assert fetcher.calls == ["FX_IDC:EURUSD"]

    asyncio.run(_run())


def test_falls_through_failures_in_order():
    async def _run():
        fetcher = FakeFetcher({
            "FX_IDC:EURUSD": ProviderError("Finnhub candles failed: 403"),
            "FOREXCOM:EUR_USD": _series("FOREXCOM:EUR_USD", 0, status="no_data"),
            "OANDA:EUR_USD": _series("OANDA:EUR_USD", 5),
            "SAXO:EUR_USD": _series("SAXO:EUR_USD", 6),
        })
        src = PriceHistorySource(fetcher, clock=lambda: NOW)
        series = await src.fetch("EUR/USD")
        assert series.source == "SAXO:EUR_USD"
        assert not series.synthetic
        assert fetcher.calls == ["FX_IDC:EURUSD", "FOREXCOM:EUR_USD", "OANDA:EUR_USD", "SAXO:EUR_USD"]

    asyncio.run(_run())


def test_attempt_timeout_moves_to_next_provider():
    async def _run():
        fetcher = FakeFetcher({
            "FX_IDC:EURUSD": "hang",
            "FOREXCOM:EUR_USD": _series("FOREXCOM:EUR_USD", 20),
        })
        src = PriceHistorySource(fetcher, timeout_s=0.05, clock=lambda: NOW)
        series = await src.fetch("EUR/USD")
        assert series.source == "FOREXCOM:EUR_USD"

    asyncio.run(_run())


def test_all_providers_failing_yields_synthetic_series():
    async def _run():
        fetcher = FakeFetcher({})
        src = PriceHistorySource(fetcher, rng=random.Random(7), clock=lambda: NOW)
        series = await src.fetch("EUR/USD")
        assert len(fetcher.calls) == 5
        assert len(series) == 50
        assert series.status == "ok"
        assert series.synthetic
        assert series.source == "synthetic"
        for c in series.candles:
            assert c.high >= max(c.open, c.close)
            assert c.low <= min(c.open, c.close)
        ts = [c.timestamp for c in series.candles]
        assert ts == sorted(ts)
        assert ts[-1] == NOW - 300

    asyncio.run(_run())


def test_synthetic_series_is_deterministic_with_seeded_rng():
    a = synthetic_series("USD/JPY", rng=random.Random(3), now=NOW)
    b = synthetic_series("USD/JPY", rng=random.Random(3), now=NOW)
    assert a == b
    assert all(140 < c.close < 150 for c in a.candles)


def test_malformed_payload_moves_to_next_provider():
    good = _series("FOREXCOM:EUR_USD", 20)

    async def fetch(provider_id: str, pair: str) -> CandleSeries:
        if provider_id == "FX_IDC:EURUSD":
            payload = {"s": "ok", "t": list(range(10)), "o": [1.1] * 10, "h": [1.2] * 10,
                       "l": [1.0] * 10, "c": [1.1] * 10, "v": [None] * 10}
            return parse_candles(payload, pair=pair, source=provider_id)
        return good

    async def _run():
        series = await PriceHistorySource(fetch, clock=lambda: NOW).fetch("EUR/USD")
        assert series.source == "FOREXCOM:EUR_USD"

    asyncio.run(_run())


def test_unexpected_error_moves_to_next_provider():
    async def _run():
        fetcher = FakeFetcher({
            "FX_IDC:EURUSD": KeyError("c"),
            "FOREXCOM:EUR_USD": _series("FOREXCOM:EUR_USD", 20),
        })
        series = await PriceHistorySource(fetcher, clock=lambda: NOW).fetch("EUR/USD")
        assert series.source == "FOREXCOM:EUR_USD"
        assert fetcher.calls == ["FX_IDC:EURUSD", "FOREXCOM:EUR_USD"]

    asyncio.run(_run())
