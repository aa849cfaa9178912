import re
from datetime import datetime, timedelta, timezone

import pytest

from forex_signal_bot.composer import SignalComposer, fmt_price, price_decimals
from forex_signal_bot.models import BUY, SELL, Bollinger, IndicatorSet, Macd, SafetyReason, ScoreResult
from forex_signal_bot.timefilter import market_session, next_m5_window, parse_tz

EAT = timezone(timedelta(hours=3))


def _ind(**kw) -> IndicatorSet:
    base = dict(
        price=1.1000,
        sma20=1.0995,
        ema20=1.0990,
        ema50=1.0980,
        ema200=1.0950,
        ema50_prev=1.0975,
        rsi=55.0,
        atr=0.0010,
        macd=Macd(0.0002, 0.0001, 0.0001),
        bollinger=Bollinger(upper=1.1030, middle=1.0995, lower=1.0960),
        stoch_k=60.0,
        adx=30.0,
        fractal_high=None,
        fractal_low=None,
        bullish_engulfing=False,
        bearish_engulfing=False,
        bullish_pin_bar=False,
        bearish_pin_bar=False,
        bullish_divergence=False,
        bearish_divergence=False,
        volume_surge=False,
        last_candle_bullish=True,
    )
    base.update(kw)
    return IndicatorSet(**base)


def _res(score: float, flags=()) -> ScoreResult:
    return ScoreResult(score=score, safety_flags=tuple(flags), strong_trend=True)


NOW = datetime(2026, 10, 19, 10, 3, 27, tzinfo=timezone.utc)


def test_window_starts_on_next_boundary_in_eat():
    start, end = next_m5_window(NOW, EAT)
    assert start == datetime(2026, 10, 19, 13, 5, tzinfo=EAT)
    assert end == datetime(2026, 10, 19, 13, 10, tzinfo=EAT)
    assert start.utcoffset() == timedelta(hours=3)


def test_window_on_exact_boundary_moves_to_next_one():
    start, _ = next_m5_window(datetime(2026, 10, 19, 10, 5, 0, tzinfo=timezone.utc), EAT)
    assert start == datetime(2026, 10, 19, 10, 10, tzinfo=timezone.utc)


def test_window_rolls_over_the_hour():
    start, end = next_m5_window(datetime(2026, 10, 19, 10, 58, 59, tzinfo=timezone.utc))
    assert start == datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 10, 19, 11, 5, tzinfo=timezone.utc)


def test_window_properties_for_every_minute():
    for minute in range(60):
        now = datetime(2026, 10, 19, 10, minute, 30, tzinfo=timezone.utc)
        start, end = next_m5_window(now, EAT)
        assert start.minute % 5 == 0
        assert start > now.replace(second=0)
        assert start - now <= timedelta(minutes=5)
        assert end - start == timedelta(minutes=5)


def test_parse_tz():
    assert parse_tz("UTC+3") == EAT
    assert parse_tz("utc") == timezone.utc
    with pytest.raises(ValueError):
        parse_tz("Africa/Nairobi")


def test_market_sessions():
    assert market_session(datetime(2026, 10, 19, 3, tzinfo=timezone.utc)) == "Asian"
    assert market_session(datetime(2026, 10, 19, 9, tzinfo=timezone.utc)) == "London"
    assert market_session(datetime(2026, 10, 19, 17, tzinfo=timezone.utc)) == "New York"
    assert market_session(datetime(2026, 10, 23, 22, tzinfo=timezone.utc)) == "Closed"
    assert market_session(datetime(2026, 10, 24, 12, tzinfo=timezone.utc)) == "Closed"
    assert market_session(datetime(2026, 10, 25, 22, tzinfo=timezone.utc)) == "New York"


def test_price_precision():
    assert price_decimals("USD/JPY") == 3
    assert price_decimals("EUR/USD") == 5
    assert fmt_price("GBP/JPY", 183.6) == "183.600"
    assert fmt_price("EUR/USD", 1.08) == "1.08000"


def test_compose_formats_levels_by_pair():
    composer = SignalComposer()
    jpy = composer.compose("USD/JPY", _ind(price=145.123, ema20=145.0, ema50=144.9, ema200=144.5, atr=0.05),
                           _res(5.0), now=NOW)
    for v in (jpy.entry_price, jpy.stop_loss, jpy.take_profit):
        assert re.fullmatch(r"\d+\.\d{3}", v)
    eur = composer.compose("EUR/USD", _ind(), _res(5.0), now=NOW)
    for v in (eur.entry_price, eur.stop_loss, eur.take_profit):
        assert re.fullmatch(r"\d+\.\d{5}", v)


def test_tiers():
    composer = SignalComposer()
    assert composer.decide(_ind(), _res(5.0)) == (BUY, "elite", 94)
    extreme = _ind(bullish_engulfing=True, fractal_low=1.0998)
    assert composer.decide(extreme, _res(9.0)) == (BUY, "extreme", 99)
    # strong score without pattern at support stays elite
    assert composer.decide(_ind(), _res(9.0)) == (BUY, "elite", 94)
    assert composer.decide(_ind(), _res(2.0)) == (BUY, "default", 24)
    misaligned = _ind(ema20=1.0970)
    assert composer.decide(misaligned, _res(5.0)) == (BUY, "default", 60)
    assert composer.decide(misaligned, _res(20.0)) == (BUY, "default", 90)


def test_sell_tiers_mirror_buy():
    composer = SignalComposer()
    bear = _ind(price=1.0900, ema20=1.0920, ema50=1.0940, ema200=1.0990)
    assert composer.decide(bear, _res(-5.0)) == (SELL, "elite", 94)
    assert composer.decide(bear, _res(-1.0)) == (SELL, "default", 12)


def test_zero_score_follows_long_term_trend():
    composer = SignalComposer()
    assert composer.decide(_ind(price=1.0900), _res(0.0))[0] == SELL
    assert composer.decide(_ind(), _res(0.0))[0] == BUY


def test_atr_levels_with_two_to_one_reward():
    composer = SignalComposer()
    sl, tp = composer.levels(BUY, 1.1000, 0.0010)
    assert sl == pytest.approx(1.0985)
    assert tp == pytest.approx(1.1030)
    sl, tp = composer.levels(SELL, 1.1000, 0.0010)
    assert sl == pytest.approx(1.1015)
    assert tp == pytest.approx(1.0970)


def test_stop_respects_nearby_fractal():
    composer = SignalComposer()
    sl, tp = composer.levels(BUY, 1.1000, 0.0010, fractal_low=1.0980)
    assert sl == pytest.approx(1.0979)
    assert tp - 1.1000 == pytest.approx(2 * (1.1000 - sl))
    # too far away to matter
    sl, _ = composer.levels(BUY, 1.1000, 0.0010, fractal_low=1.0900)
    assert sl == pytest.approx(1.0985)
    sl, tp = composer.levels(SELL, 1.1000, 0.0010, fractal_high=1.1020)
    assert sl == pytest.approx(1.1021)
    assert tp == pytest.approx(1.0958)


def test_compose_builds_full_signal():
    sig = SignalComposer().compose("EUR/USD", _ind(), _res(5.0, ["overbought"]), is_manual=True,
                                   now=NOW, data_source="OANDA:EUR_USD")
    assert sig.action == BUY
    assert float(sig.stop_loss) < float(sig.entry_price) < float(sig.take_profit)
    assert sig.confidence == 94
    assert sig.session == "London"
    assert sig.is_manual
    assert not sig.sent_to_telegram
    assert sig.valid_from == datetime(2026, 10, 19, 13, 5, tzinfo=EAT)
    assert "13:05 EAT" in sig.reasoning
    assert "13:10 EAT" in sig.reasoning
    assert "Elite" in sig.reasoning
    assert "overbought" in sig.reasoning
    assert "+5.00" in sig.reasoning
    assert sig.data_source == "OANDA:EUR_USD"


def test_synthetic_data_caps_confidence():
    sig = SignalComposer().compose("EUR/USD", _ind(synthetic=True), _res(5.0), now=NOW)
    assert sig.confidence == 60
    assert "synthetic" in sig.reasoning


def test_reasoning_lists_safety_reasons_by_value():
    flags = [SafetyReason.COUNTER_TREND, SafetyReason.WEAK_TREND]
    sig = SignalComposer().compose("EUR/USD", _ind(), _res(5.0, flags), now=NOW)
    assert "Safety: counter_trend, weak_trend" in sig.reasoning
    assert "SafetyReason" not in sig.reasoning
