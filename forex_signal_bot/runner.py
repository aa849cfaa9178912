from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import Config
from .formatters import format_signal
from .generator import SignalGenerator
from .models import Signal
from .notifier.telegram import TelegramNotifier
from .store import Settings, SignalStore
from .timefilter import is_m5_boundary

log = logging.getLogger("runner")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoModeRunner:
    def __init__(
        self,
        cfg: Config,
        generator: SignalGenerator,
        store: Optional[SignalStore] = None,
        notifier: Optional[TelegramNotifier] = None,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cfg = cfg
        self.generator = generator
        self.store = store or SignalStore(Settings(
            is_auto_mode=cfg.auto_mode.enabled,
            telegram_enabled=cfg.telegram.enabled,
            active_pairs=list(cfg.auto_mode.active_pairs),
        ))
        self.tg = notifier or TelegramNotifier(
            token=cfg.telegram.token,
            chat_ids=cfg.telegram.chat_ids,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.rng = rng or random.Random()
        self.clock = clock
        self._last_boundary: Optional[datetime] = None

    async def generate_now(self, pair: str) -> Signal:
        sig = await self.generator.generate(pair, is_manual=True)
        return await self._publish(sig, self.store.get_settings())

    async def on_tick(self, now: Optional[datetime] = None) -> List[Signal]:
        """Run one scheduler tick; only acts once per M5 boundary."""
        now = now or self.clock()
        if not is_m5_boundary(now):
            return []
        boundary = now.replace(second=0, microsecond=0)
        if self._last_boundary == boundary:
            return []
        self._last_boundary = boundary

        settings = self.store.get_settings()
        if not settings.is_auto_mode or not settings.active_pairs:
            return []
        if self.rng.random() >= self.cfg.auto_mode.trigger_probability:
            log.info("auto_tick_skipped boundary=%s", boundary.isoformat())
            return []

        if self.cfg.auto_mode.trigger_all_pairs:
            pairs = list(settings.active_pairs)
        else:
            pairs = [self.rng.choice(settings.active_pairs)]

        signals = await asyncio.gather(*[self.generator.generate(p, is_manual=False) for p in pairs])
        out = []
        for sig in signals:
            out.append(await self._publish(sig, settings))
            log.info("auto_signal pair=%s boundary=%s", sig.pair, boundary.isoformat())
        return out

    async def _publish(self, sig: Signal, settings: Settings) -> Signal:
        stored = self.store.save(sig)
        if not settings.telegram_enabled or not self.tg.enabled():
            return stored
        chat_ids = [settings.telegram_chat_id] if settings.telegram_chat_id else None
        text = format_signal(stored, tz_label=self.cfg.signal.timezone_label)
        if await self.tg.send(text, chat_ids=chat_ids):
            stored = self.store.mark_sent(stored.signal_id) or stored
        return stored

    async def run_forever(self) -> None:
        tick_s = max(1, int(self.cfg.auto_mode.tick_s))
        log.info("auto_mode_start tick_s=%d pairs=%s", tick_s, self.store.get_settings().active_pairs)
        while True:
            try:
                await self.on_tick()
            except Exception as e:
                log.exception("auto_tick_failed err=%s", e)
            await asyncio.sleep(tick_s)
