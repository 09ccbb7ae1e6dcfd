"""
Interrupt Scheduler - Decides when to prompt for the next interrupt.

One InterruptScheduler per user session. It re-derives everything on each
tick instead of holding a timer per interrupt:

    tick (every poll interval, or on wake)
      -> reference date changed?  reset state (midnight rollover)
      -> fetch completed slots from the repository
      -> resolve the next pending slot
      -> new pending slot and no modal open?  notify + open modal (once)

Modal actions feed back in:
    start_interrupt()  close the modal, hand off to the response flow
    remind_later()     close the modal; after a cool-down the same slot may
                       prompt again on a later tick

Lifecycle:
    async with InterruptScheduler(...) as scheduler:
        ...
The periodic timer, snooze timer, in-flight ticks and wake signal handlers
are all acquired in open() and released in close().
"""

from __future__ import annotations

import asyncio
import logging
import signal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from resetday import resolver
from resetday.clock import ReferenceClock
from resetday.errors import NotificationUnavailable, RepositoryError
from resetday.presenter import ModalPrompt, NotificationPresenter
from resetday.repository import CompletionRepository
from resetday.resolver import BadgeState, PendingInterrupt
from resetday.schedule import INTERRUPT_SCHEDULE, ScheduleSlot
from resetday.tracker_state import SchedulerState

logger = logging.getLogger("resetday.scheduler")

DEFAULT_POLL_INTERVAL = 30
DEFAULT_SNOOZE_SECONDS = 60

# Process-level equivalents of "tab became visible" / "window focused"
WAKE_SIGNALS = ("SIGCONT", "SIGUSR1")


class LoopState(Enum):
    IDLE = "idle"
    PENDING_TRIGGER = "pending_trigger"
    MODAL_OPEN = "modal_open"
    SNOOZED = "snoozed"


class InterruptScheduler:
    """Client-resident interrupt scheduler for one user."""

    def __init__(
        self,
        user_id: str,
        repository: CompletionRepository,
        presenter: NotificationPresenter,
        clock: Optional[ReferenceClock] = None,
        schedule: Tuple[ScheduleSlot, ...] = INTERRUPT_SCHEDULE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        snooze_seconds: float = DEFAULT_SNOOZE_SECONDS,
        on_start: Optional[Callable[[int], Any]] = None,
        wake_signals: bool = False,
    ):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        if snooze_seconds < 0:
            raise ValueError(f"snooze_seconds must not be negative, got {snooze_seconds}")
        self.user_id = user_id
        self.repository = repository
        self.presenter = presenter
        self.clock = clock or ReferenceClock()
        self.schedule = schedule
        self.poll_interval = poll_interval
        self.snooze_seconds = snooze_seconds
        self.on_start = on_start
        self.wake_signals = wake_signals

        self.state = SchedulerState(self.clock.today())
        self.loop_state = LoopState.IDLE
        self.running = False

        self._tick_seq = 0
        self._timer_task: Optional[asyncio.Task] = None
        self._snooze_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._installed_signals: List[int] = []

    # ---- Lifecycle ----

    async def open(self):
        """Start the scheduler: catch-up tick, then periodic ticks."""
        if self.running:
            return
        self.running = True
        logger.info(
            f"Interrupt scheduler starting for {self.user_id} "
            f"(tz={self.clock.tz_name}, every {self.poll_interval}s)"
        )
        self._install_wake_signals()
        await self._run_tick("mount")
        self._timer_task = asyncio.create_task(self._timer_loop(), name="interrupt-timer")

    async def close(self):
        """Release the timer, snooze, in-flight ticks and signal handlers."""
        if not self.running and self._timer_task is None:
            return
        self.running = False
        self._remove_wake_signals()

        tasks = [t for t in (self._timer_task, self._snooze_task) if t is not None]
        tasks += list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._timer_task = None
        self._snooze_task = None
        self._background.clear()

        if self.state.close_modal():
            self.presenter.close_modal()
        self.presenter.close()
        logger.info("Interrupt scheduler stopped")

    async def __aenter__(self) -> "InterruptScheduler":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def settle(self):
        """Wait for in-flight wake ticks and notifications to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ---- Wake events ----

    def wake(self, reason: str = "wake"):
        """Run an extra tick now (process resumed, window focused, ...)."""
        if not self.running:
            return
        logger.debug(f"Wake: {reason}")
        self._spawn(self._run_tick(f"wake:{reason}"), name=f"wake-{reason}")

    def _install_wake_signals(self):
        if not self.wake_signals:
            return
        loop = asyncio.get_running_loop()
        for name in WAKE_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                loop.add_signal_handler(signum, self.wake, name.lower())
                self._installed_signals.append(signum)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.warning(f"Cannot listen for {name}: {e}")

    def _remove_wake_signals(self):
        if not self._installed_signals:
            return
        loop = asyncio.get_running_loop()
        for signum in self._installed_signals:
            loop.remove_signal_handler(signum)
        self._installed_signals.clear()

    # ---- Ticking ----

    async def _timer_loop(self):
        """Periodic ticks. Sleeps less when the next slot is about to open."""
        while self.running:
            await asyncio.sleep(self._next_delay())
            await self._run_tick("interval")

    def _next_delay(self) -> float:
        try:
            seconds = resolver.seconds_until_next_slot(
                self.clock.now(), self.state.completed_slots, self.schedule
            )
        except Exception as e:
            logger.debug(f"Could not compute next slot delay: {e}")
            return self.poll_interval
        if seconds and seconds < self.poll_interval:
            return seconds + 0.5
        return self.poll_interval

    async def _run_tick(self, reason: str) -> Optional[int]:
        try:
            return await self.tick(reason)
        except Exception as e:
            logger.error(f"Tick failed ({reason}): {type(e).__name__}: {e}")
            return None

    async def tick(self, reason: str = "interval") -> Optional[int]:
        """Re-evaluate once. Returns the pending slot number, if any."""
        try:
            today = self.clock.today()
        except Exception as e:
            logger.error(f"Clock failure, skipping tick ({reason}): {e}")
            return None

        self._tick_seq += 1
        seq = self._tick_seq

        if self.state.roll_over(today):
            logger.info(f"Day rollover: reference date is now {today}, state reset")
            self._cancel_snooze()
            self.presenter.close_modal()
            self.loop_state = LoopState.IDLE

        try:
            slots = await self.repository.list_completed_slots(self.user_id, today)
        except RepositoryError as e:
            logger.warning(f"Completion fetch failed ({reason}), keeping cached state: {e}")
        else:
            if not self.state.commit_completed(today, slots, seq):
                logger.debug(f"Tick #{seq} ({reason}) superseded, result dropped")
                return None

        return self._evaluate(reason)

    def _evaluate(self, reason: str) -> Optional[int]:
        try:
            now = self.clock.now()
        except Exception as e:
            logger.error(f"Clock failure, skipping evaluation ({reason}): {e}")
            return None

        if f"{now.year:04d}-{now.month:02d}-{now.day:02d}" != self.state.reference_date:
            # Crossed midnight while fetching; the next tick rolls over
            return None

        completed = self.state.completed_slots
        pending = resolver.pending_interrupt(now, completed, self.schedule)

        if pending is None:
            self.state.set_pending(None)
            if self.state.close_modal():
                self.presenter.close_modal()
            self._cancel_snooze()
            self.loop_state = LoopState.IDLE
            return None

        self.state.set_pending(pending.slot_number)
        prompted = self.state.last_triggered_slot
        if prompted is not None and prompted != pending.slot_number and prompted in completed:
            # the prompted slot was completed elsewhere; prompt for the new one
            if self.state.close_modal():
                self.presenter.close_modal()
        if self.state.claim_trigger(pending.slot_number):
            self._trigger(pending, now, completed, reason)
        return pending.slot_number

    def _trigger(self, pending: PendingInterrupt, now, completed, reason: str):
        self.loop_state = LoopState.PENDING_TRIGGER
        self._cancel_snooze()
        logger.info(
            f"Triggering interrupt #{pending.slot_number} ({pending.scheduled_time}"
            f"{', overdue' if pending.is_overdue else ''}) on {reason}"
        )

        self._spawn(self._notify(pending), name=f"notify-{pending.slot_number}")

        prompt = ModalPrompt(
            slot_number=pending.slot_number,
            scheduled_time=pending.scheduled_time,
            is_overdue=pending.is_overdue,
            progress=resolver.slot_statuses(now, completed, self.schedule),
        )
        try:
            self.presenter.open_modal(prompt)
        except Exception as e:
            logger.error(f"Could not open modal for interrupt #{pending.slot_number}: {e}")
            self.state.close_modal()
            self.state.clear_trigger()
            self.loop_state = LoopState.IDLE
            return
        self.loop_state = LoopState.MODAL_OPEN

    async def _notify(self, pending: PendingInterrupt):
        """Best-effort system notification; the modal works without it."""
        try:
            await self.presenter.notify(
                pending.slot_number, pending.scheduled_time, on_click=self.start_interrupt
            )
        except NotificationUnavailable as e:
            logger.warning(f"System notification unavailable, modal only: {e}")
        except Exception as e:
            logger.error(f"System notification failed, modal only: {type(e).__name__}: {e}")

    # ---- Modal actions ----

    def start_interrupt(self):
        """User chose "Start Interrupt" (modal button or notification click)."""
        slot_number = self.state.pending_slot or self.state.last_triggered_slot
        if self.state.close_modal():
            self.presenter.close_modal()
        self._cancel_snooze()
        self.loop_state = LoopState.IDLE
        logger.info(f"Starting interrupt #{slot_number}")
        if self.on_start is not None and slot_number is not None:
            self.on_start(slot_number)

    def remind_later(self):
        """User chose "Remind Me Later"."""
        if not self.state.close_modal():
            return
        self.presenter.close_modal()
        slot_number = self.state.last_triggered_slot
        self.loop_state = LoopState.SNOOZED
        self._cancel_snooze()
        self._snooze_task = asyncio.create_task(
            self._snooze_cooldown(slot_number), name=f"snooze-{slot_number}"
        )
        logger.info(f"Interrupt #{slot_number} snoozed for {self.snooze_seconds}s")

    async def _snooze_cooldown(self, slot_number: Optional[int]):
        await asyncio.sleep(self.snooze_seconds)
        if self.state.last_triggered_slot == slot_number:
            self.state.clear_trigger()
        if self.loop_state == LoopState.SNOOZED:
            self.loop_state = LoopState.IDLE
        logger.info(f"Snooze over, interrupt #{slot_number} may prompt again")

    def _cancel_snooze(self):
        if self._snooze_task is not None and not self._snooze_task.done():
            self._snooze_task.cancel()
        self._snooze_task = None

    # ---- Display ----

    def badge(self) -> BadgeState:
        return resolver.badge_state(self.clock.now(), self.state.completed_slots, self.schedule)

    def status(self) -> Dict[str, Any]:
        badge = self.badge()
        return {
            "user_id": self.user_id,
            "time": self.clock.time_label(),
            "timezone": self.clock.tz_name,
            "loop_state": self.loop_state.value,
            "completed_count": badge.completed_count,
            "next_pending_slot": badge.next_pending_slot,
            "next_display_time": badge.next_display_time,
            "is_overdue": badge.is_overdue,
            "all_complete": badge.all_complete,
            **self.state.snapshot(),
        }

    # ---- Helpers ----

    def _spawn(self, coro, name: str):
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
