from __future__ import annotations

import datetime as dt
import time


def now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def now_utc_iso() -> str:
    return now_utc().isoformat()


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


def parse_iso8601(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)
