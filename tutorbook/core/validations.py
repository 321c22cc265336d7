import calendar
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from tutorbook.core.exceptions import ValidationError

# 0 = воскресенье, как в публичном API
WEEKDAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str, field: str = "time") -> time:
    """
    Разбирает строку HH:MM (24 часа) в time.
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)

    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string in HH:MM format")

    match = _HHMM_RE.match(value.strip())
    if not match:
        raise ValidationError(
            f"{field} must be in HH:MM format", details={"field": field, "value": value}
        )

    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetime (SQLite) считаем UTC, aware приводим к UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_weekday(value) -> int:
    """Python weekday (0 = понедельник) -> 0 = воскресенье"""
    return (value.weekday() + 1) % 7


def combine_utc(day: date, at: time) -> datetime:
    return datetime.combine(day, at).replace(tzinfo=timezone.utc)


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def week_range(anchor: date) -> Tuple[date, date]:
    """Понедельник..воскресенье недели, содержащей anchor"""
    start = anchor - timedelta(days=anchor.weekday())
    return start, start + timedelta(days=6)


def month_range(anchor: date) -> Tuple[date, date]:
    last_day = calendar.monthrange(anchor.year, anchor.month)[1]
    return anchor.replace(day=1), anchor.replace(day=last_day)
