"""Shared fixtures: a settable clock, a recording presenter, flaky repositories."""

from datetime import datetime
from typing import List, Optional

import pytest

from resetday.clock import ReferenceClock
from resetday.errors import NotificationUnavailable, RepositoryError
from resetday.presenter import ModalPrompt, NotificationPresenter
from resetday.repository import InMemoryCompletionRepository


class FakeTime:
    """Wall clock the test moves by hand. Times are in the reference zone."""

    def __init__(self, year=2025, month=3, day=10, hour=8, minute=0):
        self.current = (year, month, day, hour, minute)
        self.fail = False

    def set(self, hour, minute=0, day=None):
        year, month, old_day, _, _ = self.current
        self.current = (year, month, day or old_day, hour, minute)

    def __call__(self, tz):
        if self.fail:
            raise RuntimeError("clock unavailable")
        year, month, day, hour, minute = self.current
        return datetime(year, month, day, hour, minute, tzinfo=tz)


class RecordingPresenter(NotificationPresenter):
    def __init__(self, notify_fails=False, modal_fails=False):
        self.notify_fails = notify_fails
        self.modal_fails = modal_fails
        self.notifications: List[int] = []
        self.modals: List[ModalPrompt] = []
        self.closed_modals = 0
        self.current: Optional[ModalPrompt] = None
        self.click = None
        self.closed = False

    async def notify(self, slot_number, display_time, on_click):
        if self.notify_fails:
            raise NotificationUnavailable("permission denied")
        self.notifications.append(slot_number)
        self.click = on_click

    def open_modal(self, prompt):
        if self.modal_fails:
            raise RuntimeError("no display")
        self.modals.append(prompt)
        self.current = prompt

    def close_modal(self):
        if self.current is not None:
            self.closed_modals += 1
        self.current = None

    def close(self):
        self.closed = True


class FlakyRepository(InMemoryCompletionRepository):
    """In-memory repository whose reads can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.reads = 0

    async def list_completed_slots(self, user_id, date):
        self.reads += 1
        if self.fail_reads:
            raise RepositoryError("network down")
        return await super().list_completed_slots(user_id, date)


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def clock(fake_time):
    return ReferenceClock("Asia/Kolkata", now_fn=fake_time)


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def repository():
    return FlakyRepository()
