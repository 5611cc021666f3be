from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Optional

from ..model import config as cfg

log = logging.getLogger(__name__)

STORE_UTC_OFFSET_HOURS = int(os.environ.get("STORE_UTC_OFFSET_HOURS", "7"))

MODES = ("open", "closed", "maintenance", "restocking")


@dataclass(frozen=True)
class StoreStatus:
    open: bool
    mode: str
    reason: Optional[str] = None


def _parse_days(raw: str) -> FrozenSet[int]:
    days = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= 7:
            days.add(int(part))
    return frozenset(days)


def _hhmm(raw: str) -> str:
    h, m = (int(p) for p in (raw or "").strip().split(":"))
    if not (0 <= h < 24 and 0 <= m < 60):
        raise ValueError(f"not a time of day: {raw!r}")
    return f"{h:02d}:{m:02d}"


def _time_setting(settings: Dict[str, str], key: str) -> str:
    raw = settings.get(key) or cfg.DEFAULTS[key]
    try:
        return _hhmm(raw)
    except ValueError:
        log.warning("bad store time, using default",
                    extra={"key": key, "value": raw})
        return cfg.DEFAULTS[key]


def within_hours(now: datetime, open_time: str, close_time: str,
                 days: FrozenSet[int]) -> bool:
    """`now` is store-local. Overnight windows (22:00-02:00) are allowed."""
    if now.isoweekday() not in days:
        return False
    current = now.strftime("%H:%M")
    open_time, close_time = _hhmm(open_time), _hhmm(close_time)
    if close_time < open_time:
        return current >= open_time or current < close_time
    return open_time <= current < close_time


def store_now(ts: Optional[float] = None) -> datetime:
    tz = timezone(timedelta(hours=STORE_UTC_OFFSET_HOURS))
    if ts is None:
        return datetime.now(tz)
    return datetime.fromtimestamp(ts, tz)


def evaluate(settings: Dict[str, str], now: Optional[datetime] = None) -> StoreStatus:
    mode = (settings.get(cfg.STORE_MODE) or "open").strip().lower()
    if mode not in MODES:
        mode = "open"
    if mode != "open":
        return StoreStatus(False, mode, f"store is {mode}")
    if (settings.get(cfg.STORE_HOURS_ENABLED) or "").lower() != "true":
        return StoreStatus(True, mode)
    ok = within_hours(
        now or store_now(),
        _time_setting(settings, cfg.STORE_OPEN_TIME),
        _time_setting(settings, cfg.STORE_CLOSE_TIME),
        _parse_days(settings.get(cfg.STORE_DAYS) or cfg.DEFAULTS[cfg.STORE_DAYS]),
    )
    if not ok:
        return StoreStatus(False, mode, "outside operating hours")
    return StoreStatus(True, mode)
