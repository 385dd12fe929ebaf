from __future__ import annotations

from datetime import datetime, timedelta, timezone

APP_TIMEZONE = timezone(timedelta(hours=5), name="GMT+5")
APP_TIMEZONE_LABEL = "GMT+5"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_app_timezone(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(APP_TIMEZONE)


def format_app_datetime(value: datetime, fmt: str = "%d.%m.%Y %H:%M") -> str:
    return f"{as_app_timezone(value).strftime(fmt)} {APP_TIMEZONE_LABEL}"
