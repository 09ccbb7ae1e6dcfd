"""
Scheduler State - Thread-safe in-memory state for one scheduler instance.

Tracks:
- Reference date (YYYY-MM-DD in the reference timezone)
- Completed slot numbers for that date (cache of the repository)
- Last triggered slot (prevents duplicate prompts)
- Whether the modal is open (at most one at a time)

Nothing is persisted: the completion repository is the source of truth and
the state is re-derived from it whenever a scheduler starts.
"""

import threading
from typing import Any, Dict, FrozenSet, Iterable, Optional

from resetday.schedule import SLOT_COUNT

VALID_SLOTS = frozenset(range(1, SLOT_COUNT + 1))


class SchedulerState:
    """Thread-safe scheduler state.

    Modal actions may arrive from another thread (a GUI toolkit or a stdin
    reader), so every mutation takes the lock.
    """

    def __init__(self, reference_date: str):
        self._lock = threading.Lock()
        self._reference_date = reference_date
        self._completed: FrozenSet[int] = frozenset()
        self._last_triggered: Optional[int] = None
        self._modal_open = False
        self._pending: Optional[int] = None
        self._committed_seq = -1

    # --- Read access ---

    @property
    def reference_date(self) -> str:
        with self._lock:
            return self._reference_date

    @property
    def completed_slots(self) -> FrozenSet[int]:
        with self._lock:
            return self._completed

    @property
    def last_triggered_slot(self) -> Optional[int]:
        with self._lock:
            return self._last_triggered

    @property
    def modal_open(self) -> bool:
        with self._lock:
            return self._modal_open

    @property
    def pending_slot(self) -> Optional[int]:
        with self._lock:
            return self._pending

    # --- Day boundary ---

    def roll_over(self, today: str) -> bool:
        """Reset everything if `today` differs from the reference date.

        Returns True when a reset happened.
        """
        with self._lock:
            if today == self._reference_date:
                return False
            self._reference_date = today
            self._completed = frozenset()
            self._last_triggered = None
            self._modal_open = False
            self._pending = None
            return True

    # --- Completion cache ---

    def commit_completed(self, date: str, slots: Iterable[int], seq: int) -> bool:
        """Store a fetched completion list (last write wins by tick sequence).

        Results for another date, or older than an already committed tick,
        are dropped. Returns True if the result was stored.
        """
        with self._lock:
            if date != self._reference_date or seq < self._committed_seq:
                return False
            self._completed = frozenset(n for n in slots if n in VALID_SLOTS)
            self._committed_seq = seq
            return True

    def set_pending(self, slot_number: Optional[int]):
        with self._lock:
            self._pending = slot_number

    # --- Trigger de-duplication ---

    def claim_trigger(self, slot_number: int) -> bool:
        """Atomically claim the right to prompt for a slot.

        Succeeds only if the slot was not the last one triggered and no
        modal is open. On success the modal is marked open.
        """
        with self._lock:
            if self._modal_open or self._last_triggered == slot_number:
                return False
            self._last_triggered = slot_number
            self._modal_open = True
            return True

    def close_modal(self) -> bool:
        """Mark the modal closed. Returns True if it was open."""
        with self._lock:
            was_open = self._modal_open
            self._modal_open = False
            return was_open

    def clear_trigger(self):
        """Forget the last triggered slot so it may prompt again."""
        with self._lock:
            self._last_triggered = None

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "reference_date": self._reference_date,
                "completed_slots": sorted(self._completed),
                "last_triggered_slot": self._last_triggered,
                "modal_open": self._modal_open,
                "pending_slot": self._pending,
            }
