#!/usr/bin/env python3
"""
Reference Clock - Wall-clock time in the single reference timezone.

Every "today" and "time of day" comparison in resetday goes through this
clock, so the host machine's locale and timezone never leak into scheduling.

Accepted timezone names:
    - IANA names, e.g. "Asia/Kolkata" (the default)
    - "UTC" / "Z" / "GMT"
    - Fixed offsets: "+05:30", "+0530", "-04:00"
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from resetday.errors import ClockError

logger = logging.getLogger("resetday.clock")

DEFAULT_TIMEZONE = "Asia/Kolkata"

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Resolve a timezone name into a tzinfo.

    Raises ClockError for anything that is not UTC, a fixed offset or a
    known IANA zone.
    """
    tz_name = (name or DEFAULT_TIMEZONE).strip()

    if tz_name.lower() in {"utc", "z", "gmt"}:
        return timezone.utc

    m = _OFFSET_RE.match(tz_name)
    if m:
        sign_s, hh_s, mm_s = m.groups()
        hh, mm = int(hh_s), int(mm_s)
        if hh > 23 or mm > 59:
            raise ClockError(f"Invalid timezone offset: {tz_name!r}")
        sign = 1 if sign_s == "+" else -1
        return timezone(timedelta(minutes=sign * (hh * 60 + mm)), tz_name)

    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ClockError(f"Invalid timezone identifier: {tz_name!r}") from e


class ReferenceClock:
    """Current instant and calendar date in the reference timezone."""

    def __init__(
        self,
        tz_name: str = DEFAULT_TIMEZONE,
        now_fn: Optional[Callable[[tzinfo], datetime]] = None,
    ):
        self.tz_name = tz_name
        self.tz = resolve_timezone(tz_name)
        # now_fn receives the tzinfo and must return an aware datetime
        self._now_fn = now_fn

    def now(self) -> datetime:
        """Current instant converted to the reference timezone."""
        current = self._now_fn(self.tz) if self._now_fn else datetime.now(self.tz)
        if current.tzinfo is None:
            raise ClockError("Clock returned a naive datetime")
        return current.astimezone(self.tz)

    def today(self) -> str:
        """Today's date in the reference timezone as YYYY-MM-DD."""
        current = self.now()
        return f"{current.year:04d}-{current.month:02d}-{current.day:02d}"

    def hour(self) -> int:
        return self.now().hour

    def minute(self) -> int:
        return self.now().minute

    def time_label(self) -> str:
        """Current time for status display, e.g. '10:15 AM'."""
        current = self.now()
        hour12 = current.hour % 12 or 12
        suffix = "AM" if current.hour < 12 else "PM"
        return f"{hour12:02d}:{current.minute:02d} {suffix}"

    def __repr__(self) -> str:
        return f"ReferenceClock({self.tz_name!r})"


if __name__ == "__main__":
    clock = ReferenceClock()
    print(f"Reference timezone: {clock.tz_name}")
    print(f"Now:   {clock.now().isoformat()}")
    print(f"Today: {clock.today()}")
    print(f"Time:  {clock.time_label()}")
