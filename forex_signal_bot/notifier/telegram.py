from __future__ import annotations

import aiohttp
from typing import List, Optional
import logging

log = logging.getLogger("telegram")


class TelegramNotifier:
    def __init__(self, token: str, chat_ids: List[str], *, disable_web_page_preview: bool = True,
                 base_url: str = "https://api.telegram.org"):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.disable_web_page_preview = disable_web_page_preview
        self.base_url = base_url.rstrip("/")

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    async def send(self, text: str, *, chat_ids: Optional[List[str]] = None, parse_mode: str = "HTML") -> bool:
        """Deliver to every chat; True only if all deliveries succeeded. Never raises."""
        if not self.enabled():
            log.warning("telegram_not_configured skipped=1")
            return False
        targets = [str(x).strip() for x in (chat_ids or self.chat_ids) if str(x).strip()]
        url = f"{self.base_url}/bot{self.token}/sendMessage"
        ok = True
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in targets:
                payload = {
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": parse_mode,
                    "disable_web_page_preview": self.disable_web_page_preview,
                }
                try:
                    async with sess.post(url, json=payload) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:2000])
                            ok = False
                        else:
                            log.info("telegram_sent chat_id=%s", chat_id)
                except Exception as e:
                    log.exception("telegram_send_exception chat_id=%s err=%s", chat_id, e)
                    ok = False
        return ok
