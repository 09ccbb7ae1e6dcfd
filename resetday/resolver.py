"""
Interrupt State Resolver - Pure functions over (now, completed slots).

Nothing here reads the clock or touches storage: callers pass `now` (any
object with .hour and .minute, in the reference timezone) and the set of
slot numbers completed today. Same inputs always give the same outputs.

Completed numbers outside the schedule (corrupt rows) are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

from resetday.schedule import INTERRUPT_SCHEDULE, ScheduleSlot, get_slot

Schedule = Tuple[ScheduleSlot, ...]


class SlotStatus(Enum):
    COMPLETED = "completed"
    PENDING = "pending"      # the next slot the user should do
    MISSED = "missed"        # eligible, not done, behind the pending one
    UPCOMING = "upcoming"    # not yet eligible


@dataclass(frozen=True)
class PendingInterrupt:
    """The interrupt a prompt should be shown for."""

    slot_number: int
    is_overdue: bool
    scheduled_time: str


@dataclass(frozen=True)
class BadgeState:
    """Passive display state for the hosting UI."""

    completed_count: int
    next_pending_slot: Optional[int]
    next_display_time: Optional[str]
    is_overdue: bool
    all_complete: bool
    before_first: bool

    def summary(self) -> str:
        if self.all_complete or self.next_display_time is None:
            return "All interrupts complete for today"
        line = f"Next interrupt: {self.next_display_time}"
        if self.is_overdue:
            line += " (Overdue!)"
        return line


def _minutes(t) -> int:
    return t.hour * 60 + t.minute


def _valid_completed(completed: Iterable[int], schedule: Schedule) -> FrozenSet[int]:
    numbers = {slot.slot_number for slot in schedule}
    return frozenset(n for n in completed if n in numbers)


def current_eligible_slot(now, schedule: Schedule = INTERRUPT_SCHEDULE) -> Optional[int]:
    """Highest slot whose start time is at or before now, None before slot 1."""
    now_minutes = _minutes(now)
    for slot in reversed(schedule):
        if now_minutes >= _minutes(slot.time_of_day):
            return slot.slot_number
    return None


def next_pending_slot(
    now, completed: Iterable[int], schedule: Schedule = INTERRUPT_SCHEDULE
) -> Optional[int]:
    """First eligible slot (ascending) not yet completed."""
    current = current_eligible_slot(now, schedule)
    if current is None:
        return None
    done = _valid_completed(completed, schedule)
    for slot in schedule:
        if slot.slot_number > current:
            break
        if slot.slot_number not in done:
            return slot.slot_number
    return None


def is_overdue(slot_number: int, now, schedule: Schedule = INTERRUPT_SCHEDULE) -> bool:
    """Coarse overdue signal: the current hour is past the slot's hour."""
    slot = get_slot(slot_number, schedule)
    if slot is None:
        return False
    return now.hour > slot.hour


def next_display_time(
    completed: Iterable[int], schedule: Schedule = INTERRUPT_SCHEDULE
) -> Optional[str]:
    """Label of the first uncompleted slot regardless of current time."""
    done = _valid_completed(completed, schedule)
    for slot in schedule:
        if slot.slot_number not in done:
            return slot.display_label
    return None


def pending_interrupt(
    now, completed: Iterable[int], schedule: Schedule = INTERRUPT_SCHEDULE
) -> Optional[PendingInterrupt]:
    slot_number = next_pending_slot(now, completed, schedule)
    if slot_number is None:
        return None
    slot = get_slot(slot_number, schedule)
    return PendingInterrupt(
        slot_number=slot_number,
        is_overdue=is_overdue(slot_number, now, schedule),
        scheduled_time=slot.display_label,
    )


def seconds_until_next_slot(
    now, completed: Iterable[int], schedule: Schedule = INTERRUPT_SCHEDULE
) -> Optional[int]:
    """Seconds until the next uncompleted slot becomes eligible.

    0 when an uncompleted slot is already eligible, None when every slot
    is done.
    """
    done = _valid_completed(completed, schedule)
    now_seconds = _minutes(now) * 60 + getattr(now, "second", 0)
    for slot in schedule:
        if slot.slot_number in done:
            continue
        return max(0, _minutes(slot.time_of_day) * 60 - now_seconds)
    return None


def slot_statuses(
    now, completed: Iterable[int], schedule: Schedule = INTERRUPT_SCHEDULE
) -> List[Tuple[int, SlotStatus]]:
    """Per-slot status for the progress indicator, in slot order."""
    done = _valid_completed(completed, schedule)
    current = current_eligible_slot(now, schedule) or 0
    pending = next_pending_slot(now, done, schedule)

    statuses = []
    for slot in schedule:
        n = slot.slot_number
        if n in done:
            status = SlotStatus.COMPLETED
        elif n == pending:
            status = SlotStatus.PENDING
        elif n <= current:
            status = SlotStatus.MISSED
        else:
            status = SlotStatus.UPCOMING
        statuses.append((n, status))
    return statuses


def badge_state(
    now, completed: Iterable[int], schedule: Schedule = INTERRUPT_SCHEDULE
) -> BadgeState:
    done = _valid_completed(completed, schedule)
    pending = next_pending_slot(now, done, schedule)
    return BadgeState(
        completed_count=len(done),
        next_pending_slot=pending,
        next_display_time=next_display_time(done, schedule),
        is_overdue=is_overdue(pending, now, schedule) if pending is not None else False,
        all_complete=len(done) == len(schedule),
        before_first=current_eligible_slot(now, schedule) is None,
    )
