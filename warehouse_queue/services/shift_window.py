from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from warehouse_queue.settings import get_settings

ShiftPolicy = Literal["rolling", "calendar_day"]

DEFAULT_TIMEZONE = "Asia/Bangkok"
SHIFT_LENGTH = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class ShiftWindow:
    """Half-open operating window ``[start_utc, end_utc)``."""

    start_utc: datetime
    end_utc: datetime
    policy: ShiftPolicy
    shift_date: date

    def contains(self, ts_utc: datetime) -> bool:
        normalized = normalize_utc(ts_utc)
        return self.start_utc <= normalized < self.end_utc

    def to_dict(self, tz: ZoneInfo | None = None) -> dict[str, Any]:
        tz = tz or queue_timezone()
        return {
            "policy": self.policy,
            "shift_date": self.shift_date.isoformat(),
            "start_utc": self.start_utc.isoformat(),
            "end_utc": self.end_utc.isoformat(),
            "start_local": self.start_utc.astimezone(tz).isoformat(),
            "end_local": self.end_utc.astimezone(tz).isoformat(),
            "timezone": str(tz),
        }


def normalize_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@lru_cache
def queue_timezone() -> ZoneInfo:
    raw_name = (get_settings().queue_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def _resolve(
    tz: ZoneInfo | None,
    policy: ShiftPolicy | None,
    anchor_hour: int | None,
) -> tuple[ZoneInfo, ShiftPolicy, int]:
    settings = get_settings()
    resolved_tz = tz or queue_timezone()
    resolved_policy = policy or settings.shift_policy
    resolved_anchor = settings.shift_anchor_hour if anchor_hour is None else anchor_hour
    if not 0 <= resolved_anchor <= 23:
        raise ValueError(f"Shift anchor hour must be within 0..23, got {resolved_anchor}")
    return resolved_tz, resolved_policy, resolved_anchor


def window_for_shift_date(
    shift_date: date,
    *,
    tz: ZoneInfo | None = None,
    policy: ShiftPolicy | None = None,
    anchor_hour: int | None = None,
) -> ShiftWindow:
    tz, policy, anchor_hour = _resolve(tz, policy, anchor_hour)

    if policy == "calendar_day":
        local_start = datetime.combine(shift_date, time.min, tzinfo=tz)
        local_end = datetime.combine(shift_date + timedelta(days=1), time.min, tzinfo=tz)
        return ShiftWindow(
            start_utc=local_start.astimezone(timezone.utc),
            end_utc=local_end.astimezone(timezone.utc),
            policy=policy,
            shift_date=shift_date,
        )

    local_start = datetime.combine(shift_date, time(hour=anchor_hour), tzinfo=tz)
    start_utc = local_start.astimezone(timezone.utc)
    return ShiftWindow(
        start_utc=start_utc,
        end_utc=start_utc + SHIFT_LENGTH,
        policy=policy,
        shift_date=shift_date,
    )


def current_window(
    now_utc: datetime,
    *,
    tz: ZoneInfo | None = None,
    policy: ShiftPolicy | None = None,
    anchor_hour: int | None = None,
) -> ShiftWindow:
    tz, policy, anchor_hour = _resolve(tz, policy, anchor_hour)
    local_now = normalize_utc(now_utc).astimezone(tz)

    shift_date = local_now.date()
    if policy == "rolling" and local_now.hour < anchor_hour:
        shift_date = shift_date - timedelta(days=1)

    return window_for_shift_date(shift_date, tz=tz, policy=policy, anchor_hour=anchor_hour)
