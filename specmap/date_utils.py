"""Shared timestamp helpers."""
from __future__ import annotations

from datetime import datetime, timezone


def format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_datetime_utc(datetime.now(timezone.utc))
