from __future__ import annotations

import html

from .models import BUY, Signal
from .timefilter import fmt_hhmm


def _escape(text: str) -> str:
    return html.escape(str(text), quote=False)


def _bold(text: str) -> str:
    return f"<b>{_escape(text)}</b>"


def format_signal(signal: Signal, *, tz_label: str = "EAT", footer: str = "") -> str:
    """HTML Telegram message for a signal."""
    arrow = "🟢" if signal.action == BUY else "🔴"
    direction = "BUY/CALL" if signal.action == BUY else "SELL/PUT"
    origin = "Manual" if signal.is_manual else "Auto"

    lines = [
        f"{arrow} {_bold(signal.pair)}  |  {_bold(direction)}",
        _escape(f"Confidence: {signal.confidence}% • {signal.session} Session • {origin}"),
        "",
        _escape(f"Window: {fmt_hhmm(signal.valid_from)} - {fmt_hhmm(signal.valid_to, tz_label)}"),
        _escape(f"Entry: {signal.entry_price}"),
        _escape(f"Stop Loss: {signal.stop_loss}"),
        _escape(f"Take Profit: {signal.take_profit}"),
    ]
    if signal.reasoning:
        lines.append("")
        lines.append(_escape(signal.reasoning))

    footer = (footer or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape(footer))

    return "\n".join(lines)
