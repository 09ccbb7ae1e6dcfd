import asyncio
import os
import signal

import pytest

from resetday.repository import InMemoryCompletionRepository
from resetday.scheduler import InterruptScheduler, LoopState

from conftest import RecordingPresenter

DAY = "2025-03-10"


def make_scheduler(clock, repository, presenter, **kwargs):
    kwargs.setdefault("poll_interval", 3600)
    kwargs.setdefault("snooze_seconds", 0.01)
    return InterruptScheduler("u1", repository, presenter, clock=clock, **kwargs)


class GatedRepository(InMemoryCompletionRepository):
    """Reads snapshot the store, then wait on the next queued gate."""

    def __init__(self):
        super().__init__()
        self.gates = []

    async def list_completed_slots(self, user_id, date):
        result = await super().list_completed_slots(user_id, date)
        if self.gates:
            await self.gates.pop(0).wait()
        return result


# ---- Triggering ----

@pytest.mark.asyncio
async def test_no_prompt_before_first_slot(clock, repository, presenter):
    scheduler = make_scheduler(clock, repository, presenter)
    assert await scheduler.tick() is None
    await scheduler.settle()
    assert presenter.modals == []
    assert presenter.notifications == []
    assert scheduler.loop_state == LoopState.IDLE


@pytest.mark.asyncio
async def test_overdue_prompt_shown_once(clock, fake_time, repository, presenter):
    fake_time.set(10, 15)
    scheduler = make_scheduler(clock, repository, presenter)

    assert await scheduler.tick() == 1
    await scheduler.settle()
    assert len(presenter.modals) == 1
    prompt = presenter.modals[0]
    assert prompt.slot_number == 1
    assert prompt.is_overdue is True
    assert prompt.scheduled_time == "9:00 AM"
    assert presenter.notifications == [1]
    assert scheduler.loop_state == LoopState.MODAL_OPEN

    for _ in range(5):
        assert await scheduler.tick() == 1
    await scheduler.settle()
    assert len(presenter.modals) == 1
    assert presenter.notifications == [1]


@pytest.mark.asyncio
async def test_started_slot_does_not_prompt_again(clock, fake_time, repository, presenter):
    started = []
    fake_time.set(9, 5)
    scheduler = make_scheduler(clock, repository, presenter, on_start=started.append)

    await scheduler.tick()
    scheduler.start_interrupt()
    assert started == [1]
    assert presenter.current is None
    assert scheduler.loop_state == LoopState.IDLE

    fake_time.set(9, 30)
    await scheduler.tick()
    assert len(presenter.modals) == 1

    await repository.create_completion("u1", DAY, 1, "feeling focused")
    fake_time.set(11, 5)
    assert await scheduler.tick() == 2
    await scheduler.settle()
    assert [p.slot_number for p in presenter.modals] == [1, 2]
    assert presenter.modals[1].is_overdue is False


@pytest.mark.asyncio
async def test_concurrent_ticks_trigger_once(clock, fake_time, repository, presenter):
    fake_time.set(13, 30)
    scheduler = make_scheduler(clock, repository, presenter)
    await asyncio.gather(scheduler.tick("a"), scheduler.tick("b"), scheduler.tick("c"))
    await scheduler.settle()
    assert len(presenter.modals) == 1
    assert presenter.notifications == [1]


@pytest.mark.asyncio
async def test_no_pending_closes_stale_modal(clock, fake_time, repository, presenter):
    fake_time.set(9, 10)
    scheduler = make_scheduler(clock, repository, presenter)
    await scheduler.tick()
    assert presenter.current is not None

    # completed from another device
    await repository.create_completion("u1", DAY, 1, "done elsewhere")
    assert await scheduler.tick() is None
    assert presenter.current is None
    assert scheduler.state.modal_open is False
    assert scheduler.loop_state == LoopState.IDLE


@pytest.mark.asyncio
async def test_all_complete(clock, fake_time, repository, presenter):
    for n in range(1, 7):
        await repository.create_completion("u1", DAY, n, f"entry {n}")
    fake_time.set(20)
    scheduler = make_scheduler(clock, repository, presenter)
    assert await scheduler.tick() is None
    assert presenter.modals == []
    assert scheduler.badge().summary() == "All interrupts complete for today"


# ---- Snooze ----

@pytest.mark.asyncio
async def test_remind_later_reprompts_after_cooldown(clock, fake_time, repository, presenter):
    fake_time.set(10, 15)
    scheduler = make_scheduler(clock, repository, presenter, snooze_seconds=0.02)

    await scheduler.tick()
    scheduler.remind_later()
    assert presenter.current is None
    assert scheduler.loop_state == LoopState.SNOOZED

    await scheduler.tick()
    assert len(presenter.modals) == 1

    await asyncio.sleep(0.1)
    assert scheduler.loop_state == LoopState.IDLE
    assert scheduler.state.last_triggered_slot is None

    await scheduler.tick()
    await scheduler.settle()
    assert [p.slot_number for p in presenter.modals] == [1, 1]


@pytest.mark.asyncio
async def test_remind_later_without_modal_is_noop(clock, repository, presenter):
    scheduler = make_scheduler(clock, repository, presenter)
    scheduler.remind_later()
    assert scheduler.loop_state == LoopState.IDLE
    assert scheduler._snooze_task is None


# ---- Day rollover ----

@pytest.mark.asyncio
async def test_rollover_resets_even_when_fetch_fails(clock, fake_time, repository, presenter):
    for n in range(1, 7):
        await repository.create_completion("u1", DAY, n, "yesterday")
    fake_time.set(20)
    scheduler = make_scheduler(clock, repository, presenter)
    await scheduler.tick()
    assert scheduler.state.completed_slots == frozenset(range(1, 7))

    repository.fail_reads = True
    fake_time.set(10, 0, day=11)
    assert await scheduler.tick() == 1
    await scheduler.settle()

    assert scheduler.state.reference_date == "2025-03-11"
    assert scheduler.state.completed_slots == frozenset()
    assert presenter.modals[-1].slot_number == 1


@pytest.mark.asyncio
async def test_rollover_allows_same_slot_again(clock, fake_time, repository, presenter):
    fake_time.set(9, 30)
    scheduler = make_scheduler(clock, repository, presenter)
    await scheduler.tick()

    fake_time.set(9, 30, day=11)
    await scheduler.tick()
    await scheduler.settle()

    assert presenter.closed_modals == 1
    assert [p.slot_number for p in presenter.modals] == [1, 1]
    assert presenter.notifications == [1, 1]


# ---- Failures ----

@pytest.mark.asyncio
async def test_fetch_failure_keeps_cached_completions(clock, fake_time, repository, presenter):
    await repository.create_completion("u1", DAY, 1, "ok")
    fake_time.set(12)
    scheduler = make_scheduler(clock, repository, presenter)
    assert await scheduler.tick() == 2

    repository.fail_reads = True
    assert await scheduler.tick() == 2
    assert scheduler.state.completed_slots == frozenset({1})
    assert len(presenter.modals) == 1


@pytest.mark.asyncio
async def test_notification_failure_degrades_to_modal(clock, fake_time, repository):
    presenter = RecordingPresenter(notify_fails=True)
    fake_time.set(9, 0)
    scheduler = make_scheduler(clock, repository, presenter)
    assert await scheduler.tick() == 1
    await scheduler.settle()
    assert presenter.notifications == []
    assert len(presenter.modals) == 1
    assert scheduler.loop_state == LoopState.MODAL_OPEN


@pytest.mark.asyncio
async def test_modal_failure_releases_claim(clock, fake_time, repository):
    presenter = RecordingPresenter(modal_fails=True)
    fake_time.set(9, 0)
    scheduler = make_scheduler(clock, repository, presenter)
    await scheduler.tick()
    await scheduler.settle()
    assert scheduler.state.modal_open is False
    assert scheduler.state.last_triggered_slot is None
    assert scheduler.loop_state == LoopState.IDLE

    presenter.modal_fails = False
    await scheduler.tick()
    assert len(presenter.modals) == 1


@pytest.mark.asyncio
async def test_clock_failure_leaves_state_untouched(clock, fake_time, repository, presenter):
    fake_time.set(10)
    scheduler = make_scheduler(clock, repository, presenter)
    before = scheduler.state.snapshot()

    fake_time.fail = True
    assert await scheduler.tick() is None
    assert repository.reads == 0
    assert scheduler.state.snapshot() == before
    assert presenter.modals == []


# ---- Overlapping ticks ----

@pytest.mark.asyncio
async def test_superseded_tick_result_dropped(clock, fake_time, presenter):
    repository = GatedRepository()
    gate = asyncio.Event()
    repository.gates.append(gate)
    fake_time.set(12)
    scheduler = make_scheduler(clock, repository, presenter)

    slow = asyncio.create_task(scheduler.tick("slow"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    await repository.create_completion("u1", DAY, 1, "done")
    assert await scheduler.tick("fast") == 2

    gate.set()
    assert await slow is None
    assert scheduler.state.completed_slots == frozenset({1})
    assert [p.slot_number for p in presenter.modals] == [2]


@pytest.mark.asyncio
async def test_stale_date_result_dropped(clock, fake_time, presenter):
    repository = GatedRepository()
    gate = asyncio.Event()
    repository.gates.append(gate)
    await repository.create_completion("u1", DAY, 1, "yesterday")
    fake_time.set(23, 59)
    scheduler = make_scheduler(clock, repository, presenter)

    slow = asyncio.create_task(scheduler.tick("slow"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    fake_time.set(0, 1, day=11)
    await scheduler.tick("after-midnight")

    gate.set()
    await slow
    assert scheduler.state.reference_date == "2025-03-11"
    assert scheduler.state.completed_slots == frozenset()


# ---- Lifecycle ----

@pytest.mark.asyncio
async def test_open_runs_catch_up_tick_and_close_releases(clock, fake_time, repository, presenter):
    fake_time.set(15, 30)
    scheduler = make_scheduler(clock, repository, presenter)

    async with scheduler:
        assert scheduler.running is True
        assert presenter.modals[0].slot_number == 1
        assert presenter.modals[0].is_overdue is True
        await scheduler.settle()

    assert scheduler.running is False
    assert scheduler._timer_task is None
    assert scheduler.state.modal_open is False
    assert presenter.current is None
    assert presenter.closed is True


@pytest.mark.asyncio
async def test_periodic_tick_fires_when_slot_opens(clock, fake_time, repository, presenter):
    fake_time.set(8, 59)
    scheduler = make_scheduler(clock, repository, presenter, poll_interval=0.01)
    async with scheduler:
        assert presenter.modals == []
        fake_time.set(9, 0)
        await asyncio.sleep(0.1)
    assert [p.slot_number for p in presenter.modals] == [1]


@pytest.mark.asyncio
async def test_wake_runs_extra_tick(clock, fake_time, repository, presenter):
    fake_time.set(9, 5)
    scheduler = make_scheduler(clock, repository, presenter)
    async with scheduler:
        scheduler.start_interrupt()
        await repository.create_completion("u1", DAY, 1, "done")
        fake_time.set(11, 1)
        scheduler.wake("focus")
        await scheduler.settle()
        assert [p.slot_number for p in presenter.modals] == [1, 2]

    scheduler.wake("after-close")
    assert scheduler._background == set()


@pytest.mark.asyncio
@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="POSIX signals only")
async def test_sigusr1_wakes_scheduler(clock, fake_time, repository, presenter):
    fake_time.set(8, 0)
    scheduler = make_scheduler(clock, repository, presenter, wake_signals=True)
    async with scheduler:
        fake_time.set(9, 1)
        os.kill(os.getpid(), signal.SIGUSR1)
        await asyncio.sleep(0.05)
        await scheduler.settle()
        assert [p.slot_number for p in presenter.modals] == [1]


@pytest.mark.asyncio
async def test_status(clock, fake_time, repository, presenter):
    await repository.create_completion("u1", DAY, 1, "done")
    fake_time.set(14, 10)
    scheduler = make_scheduler(clock, repository, presenter)
    await scheduler.tick()

    status = scheduler.status()
    assert status["time"] == "02:10 PM"
    assert status["timezone"] == "Asia/Kolkata"
    assert status["completed_count"] == 1
    assert status["next_pending_slot"] == 2
    assert status["is_overdue"] is True
    assert status["loop_state"] == "modal_open"
    assert status["completed_slots"] == [1]


# ---- Start hand-off ----

@pytest.mark.asyncio
async def test_modal_moves_on_when_prompted_slot_completed_elsewhere(clock, fake_time, repository, presenter):
    started = []
    fake_time.set(11, 30)
    scheduler = make_scheduler(clock, repository, presenter, on_start=started.append)
    assert await scheduler.tick() == 1

    await repository.create_completion("u1", DAY, 1, "done on phone")
    assert await scheduler.tick() == 2
    await scheduler.settle()
    assert [p.slot_number for p in presenter.modals] == [1, 2]
    assert presenter.current.slot_number == 2

    scheduler.start_interrupt()
    assert started == [2]


@pytest.mark.asyncio
async def test_notification_click_starts_interrupt(clock, fake_time, repository, presenter):
    started = []
    fake_time.set(9, 5)
    scheduler = make_scheduler(clock, repository, presenter, on_start=started.append)
    await scheduler.tick()
    await scheduler.settle()
    assert scheduler.loop_state == LoopState.MODAL_OPEN

    presenter.click()
    assert started == [1]
    assert presenter.current is None
    assert scheduler.state.modal_open is False
    assert scheduler.loop_state == LoopState.IDLE


@pytest.mark.parametrize("kwargs", [{"poll_interval": 0}, {"poll_interval": -5}, {"snooze_seconds": -1}])
def test_rejects_bad_intervals(clock, repository, presenter, kwargs):
    with pytest.raises(ValueError):
        InterruptScheduler("u1", repository, presenter, clock=clock, **kwargs)
