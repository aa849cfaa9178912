from __future__ import annotations

from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple
import re


_TZ_RE = re.compile(r"^UTC([+-])(\d{1,2})$")

M5 = timedelta(minutes=5)

ASIAN = "Asian"
LONDON = "London"
NEW_YORK = "New York"
CLOSED = "Closed"


def parse_tz(tz_str: str) -> timezone:
    tz_str = (tz_str or "UTC").strip().upper()
    if tz_str == "UTC":
        return timezone.utc
    m = _TZ_RE.match(tz_str)
    if not m:
        raise ValueError(f"Unsupported timezone format: {tz_str} (use 'UTC' or 'UTC+3' etc.)")
    sign = 1 if m.group(1) == "+" else -1
    hours = int(m.group(2))
    return timezone(timedelta(hours=sign * hours))


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def next_m5_window(now: Optional[datetime] = None, tz: timezone = timezone.utc) -> Tuple[datetime, datetime]:
    """Window starting on the next 5-minute boundary strictly after the current minute.

    10:03:xx -> 10:05-10:10, 10:05:xx -> 10:10-10:15.
    """
    utc = _as_utc(now).replace(second=0, microsecond=0)
    start = utc + timedelta(minutes=5 - utc.minute % 5)
    return start.astimezone(tz), (start + M5).astimezone(tz)


def is_m5_boundary(now: datetime) -> bool:
    return _as_utc(now).minute % 5 == 0


def market_session(now: Optional[datetime] = None) -> str:
    utc = _as_utc(now)
    wd = utc.weekday()  # 0=Mon .. 6=Sun
    # Weekend: Friday 21:00 UTC until Sunday 21:00 UTC.
    if wd == 5 or (wd == 4 and utc.hour >= 21) or (wd == 6 and utc.hour < 21):
        return CLOSED
    h = utc.hour
    if h < 8:
        return ASIAN
    if h < 16:
        return LONDON
    return NEW_YORK


def fmt_hhmm(dt: datetime, label: str = "") -> str:
    s = dt.strftime("%H:%M")
    return f"{s} {label}" if label else s
