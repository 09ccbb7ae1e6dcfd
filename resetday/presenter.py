"""
Notification Presenter - How a due interrupt reaches the user.

Two surfaces, driven by the scheduler:
- a system notification (best-effort, fire-and-forget); clicking it runs
  the scheduler's "start" action
- the in-app modal with two actions, "start" and "remind later"

notify() raises NotificationUnavailable when no system channel could
deliver; the scheduler then carries on with the modal alone.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, TextIO, Tuple

from resetday.errors import NotificationUnavailable
from resetday.notify_channels import ChannelNotifier
from resetday.resolver import SlotStatus

logger = logging.getLogger("resetday.presenter")

_PROGRESS_MARKS = {
    SlotStatus.COMPLETED: "x",
    SlotStatus.PENDING: ">",
    SlotStatus.MISSED: "!",
    SlotStatus.UPCOMING: " ",
}


def notification_title(slot_number: int) -> str:
    return f"Interrupt #{slot_number} is ready!"


def notification_body(display_time: str) -> str:
    return f"Time for your {display_time} reflection. Take a moment to check in with yourself."


@dataclass
class ModalPrompt:
    """What the modal shows for a triggered interrupt."""

    slot_number: int
    scheduled_time: str
    is_overdue: bool
    progress: List[Tuple[int, SlotStatus]] = field(default_factory=list)

    @property
    def title(self) -> str:
        return f"Interrupt #{self.slot_number}"

    @property
    def description(self) -> str:
        if self.is_overdue:
            return f"Your {self.scheduled_time} interrupt is overdue. Take a moment to reflect now."
        return (
            f"It's time for your {self.scheduled_time} interrupt. "
            "Take a brief pause to check in with yourself."
        )

    def progress_line(self) -> str:
        return " ".join(f"[{_PROGRESS_MARKS[status]}{n}]" for n, status in self.progress)


class NotificationPresenter(ABC):
    """Boundary between the scheduler and whatever shows prompts."""

    @abstractmethod
    async def notify(
        self, slot_number: int, display_time: str, on_click: Callable[[], None]
    ) -> None:
        """Show a system notification. Raise NotificationUnavailable on failure."""

    @abstractmethod
    def open_modal(self, prompt: ModalPrompt) -> None:
        """Show the in-app prompt."""

    @abstractmethod
    def close_modal(self) -> None:
        """Hide the in-app prompt if shown."""

    def close(self) -> None:
        """Release presenter resources (scheduler teardown)."""


class TerminalPresenter(NotificationPresenter):
    """Presenter for the CLI daemon.

    System notifications go through the configured channels (desktop,
    Telegram, voice). The modal is printed to the terminal; the CLI feeds
    the user's answer back into the scheduler.
    """

    def __init__(self, channels: ChannelNotifier, stream: Optional[TextIO] = None):
        self.channels = channels
        self.stream = stream or sys.stdout
        self.current: Optional[ModalPrompt] = None

    async def notify(
        self, slot_number: int, display_time: str, on_click: Callable[[], None]
    ) -> None:
        title = notification_title(slot_number)
        body = notification_body(display_time)

        results = {"desktop": await self.channels.send_desktop(title, body, on_click=on_click)}
        if self.channels.telegram_enabled:
            results["telegram"] = await self.channels.send_telegram(f"*{title}*\n\n{body}")
        if self.channels.voice_enabled:
            results["voice"] = await self.channels.send_voice(f"{title} {body}")

        logger.info(f"Notification results for interrupt #{slot_number}: {results}")
        if not any(results.values()):
            raise NotificationUnavailable("No notification channel delivered")

    def open_modal(self, prompt: ModalPrompt) -> None:
        self.current = prompt
        lines = [
            "",
            "=" * 60,
            f"  {prompt.title}",
            f"  {prompt.description}",
        ]
        if prompt.progress:
            lines.append(f"  {prompt.progress_line()}")
        lines += [
            "",
            "  [s] Start Interrupt    [l] Remind Me Later",
            "=" * 60,
        ]
        print("\n".join(lines), file=self.stream, flush=True)

    def close_modal(self) -> None:
        if self.current is not None:
            logger.debug(f"Modal closed for interrupt #{self.current.slot_number}")
        self.current = None

    def close(self) -> None:
        self.channels.cancel_pending_clicks()
