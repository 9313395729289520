from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

TimestampFactory = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_clock(now: TimestampFactory | None) -> TimestampFactory:
    return now or utc_now
