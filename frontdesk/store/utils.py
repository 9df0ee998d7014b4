from __future__ import annotations

import datetime as dt
import time

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def date_label(ms: int | None = None) -> str:
    """Return the UTC calendar date (YYYY-MM-DD) for an epoch-millisecond timestamp."""

    if ms is None:
        ms = now_ms()
    return dt.datetime.fromtimestamp(ms / 1000, dt.UTC).date().isoformat()


def local_midnight_ms(ms: int | None = None) -> int:
    moment = dt.datetime.fromtimestamp((ms if ms is not None else now_ms()) / 1000).astimezone()
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def normalize_description(text: str) -> str:
    lines = [line.strip() for line in text.splitlines()]
    bullets = [line if line.startswith("•") else f"• {line}" for line in lines if line]
    return "\n".join(bullets)
