from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from .models import BUY, SELL, AdvisoryOpinion, IndicatorSet

log = logging.getLogger("advisory")

SYSTEM_PROMPT = (
    "You are a forex analyst. Given M5 indicator readings for a currency pair, reply with a JSON "
    'object {"action": "BUY" | "SELL", "confidence": 0-100, "reasoning": "<one sentence>"}.'
)


def build_prompt(pair: str, ind: IndicatorSet) -> str:
    return (
        f"Pair: {pair}\n"
        f"Price: {ind.price:.5f} | EMA20: {ind.ema20:.5f} | EMA50: {ind.ema50:.5f} | EMA200: {ind.ema200:.5f}\n"
        f"RSI14: {ind.rsi:.1f} | Stoch %K: {ind.stoch_k:.1f} | ADX: {ind.adx:.1f} | ATR14: {ind.atr:.5f}\n"
        f"MACD: {ind.macd.line:.6f} / signal {ind.macd.signal:.6f} / hist {ind.macd.histogram:.6f}\n"
        f"Bollinger: {ind.bollinger.lower:.5f} - {ind.bollinger.middle:.5f} - {ind.bollinger.upper:.5f}\n"
        f"Fractal high/low: {ind.fractal_high} / {ind.fractal_low}\n"
        f"Patterns: bull={ind.bullish_pattern} bear={ind.bearish_pattern} | "
        f"Divergence: bull={ind.bullish_divergence} bear={ind.bearish_divergence}"
    )


def parse_opinion(content: str) -> Optional[AdvisoryOpinion]:
    """Validate the model's JSON reply; anything malformed counts as no opinion."""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    action = str(data.get("action", "")).strip().upper()
    if action.startswith("BUY"):
        action = BUY
    elif action.startswith("SELL"):
        action = SELL
    else:
        return None
    try:
        confidence = int(float(data.get("confidence", 0)))
    except (TypeError, ValueError):
        return None
    confidence = max(0, min(100, confidence))
    return AdvisoryOpinion(action=action, confidence=confidence, reasoning=str(data.get("reasoning") or ""))


class AdvisoryClient:
    """OpenAI-compatible chat-completions client returning an optional opinion."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        timeout_s: float = 15.0,
        enabled: bool = True,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self.enabled = bool(enabled)
        self._session: Optional[aiohttp.ClientSession] = None

    def is_configured(self) -> bool:
        return self.enabled and bool(self.api_key)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def _complete(self, prompt: str) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        sess = await self._get_session()
        async with sess.post(f"{self.base_url}/chat/completions", json=payload, headers=headers) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise RuntimeError(f"advisory request failed: {resp.status} {body[:200]}")
            data = await resp.json(content_type=None)
        return data["choices"][0]["message"]["content"]

    async def get_opinion(self, pair: str, ind: IndicatorSet) -> Optional[AdvisoryOpinion]:
        if not self.is_configured():
            return None
        try:
            content = await self._complete(build_prompt(pair, ind))
        except Exception as e:
            log.warning("advisory_failed pair=%s err=%s", pair, e)
            return None
        opinion = parse_opinion(content)
        if opinion is None:
            log.warning("advisory_unparseable pair=%s content=%s", pair, str(content)[:200])
        return opinion
