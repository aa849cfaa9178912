from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, fields, replace
from typing import Deque, List, Optional

from .models import Signal


@dataclass
class Settings:
    is_auto_mode: bool = False
    telegram_enabled: bool = False
    active_pairs: List[str] = field(default_factory=lambda: ["EUR/USD", "GBP/USD", "USD/JPY"])
    telegram_chat_id: Optional[str] = None


class SignalStore:
    """In-memory signal history plus the single settings record."""

    def __init__(self, settings: Optional[Settings] = None, max_history: int = 5000) -> None:
        self.max_history = max(1, int(max_history))
        self._signals: Deque[Signal] = deque()
        self._next_id = 1
        self._settings = settings or Settings()

    def save(self, signal: Signal) -> Signal:
        stored = replace(signal, signal_id=self._next_id)
        self._next_id += 1
        self._signals.append(stored)
        while len(self._signals) > self.max_history:
            self._signals.popleft()
        return stored

    def list(self, pair: Optional[str] = None, limit: int = 50) -> List[Signal]:
        """Newest first."""
        out: List[Signal] = []
        for sig in reversed(self._signals):
            if pair is not None and sig.pair != pair:
                continue
            out.append(sig)
            if len(out) >= limit:
                break
        return out

    def mark_sent(self, signal_id: int) -> Optional[Signal]:
        for i, sig in enumerate(self._signals):
            if sig.signal_id == signal_id:
                updated = replace(sig, sent_to_telegram=True)
                self._signals[i] = updated
                return updated
        return None

    def get_settings(self) -> Settings:
        return replace(self._settings, active_pairs=list(self._settings.active_pairs))

    def update_settings(self, **changes) -> Settings:
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        self._settings = replace(self._settings, **changes)
        return self.get_settings()
