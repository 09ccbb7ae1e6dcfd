"""
Interrupt Schedule Table - The six fixed daily check-in slots.

Times are wall-clock times in the reference timezone (see resetday.clock).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import time
from typing import Optional, Sequence, Tuple

SLOT_COUNT = 6

DEFAULT_SLOT_TIMES = ("09:00", "11:00", "13:00", "15:00", "17:00", "19:00")

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass(frozen=True)
class ScheduleSlot:
    """One daily interrupt opportunity."""

    slot_number: int
    time_of_day: time
    display_label: str

    @property
    def hour(self) -> int:
        return self.time_of_day.hour

    @property
    def minute(self) -> int:
        return self.time_of_day.minute


def format_time_label(t: time) -> str:
    """Format a time the way the UI shows it: '9:00 AM', '1:00 PM'."""
    hour12 = t.hour % 12 or 12
    suffix = "AM" if t.hour < 12 else "PM"
    return f"{hour12}:{t.minute:02d} {suffix}"


def parse_time_of_day(value: str) -> time:
    """Parse 'HH:MM' (24h) into a time."""
    m = _HHMM_RE.match(value.strip())
    if not m:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return time(hour, minute)


def build_schedule(times: Sequence[str]) -> Tuple[ScheduleSlot, ...]:
    """Build a validated schedule table from six ascending HH:MM strings."""
    if len(times) != SLOT_COUNT:
        raise ValueError(f"Expected {SLOT_COUNT} slot times, got {len(times)}")

    parsed = [parse_time_of_day(t) for t in times]
    for earlier, later in zip(parsed, parsed[1:]):
        if later <= earlier:
            raise ValueError(f"Slot times must be strictly ascending: {list(times)}")

    return tuple(
        ScheduleSlot(slot_number=i, time_of_day=t, display_label=format_time_label(t))
        for i, t in enumerate(parsed, start=1)
    )


INTERRUPT_SCHEDULE: Tuple[ScheduleSlot, ...] = build_schedule(DEFAULT_SLOT_TIMES)


def get_slot(
    slot_number: int, schedule: Tuple[ScheduleSlot, ...] = INTERRUPT_SCHEDULE
) -> Optional[ScheduleSlot]:
    """Look up a slot by number, None if it is not in the table."""
    # slot numbers are 1..N in table order
    if isinstance(slot_number, int) and 1 <= slot_number <= len(schedule):
        return schedule[slot_number - 1]
    return None
