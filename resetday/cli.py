"""
resetday CLI - run the interrupt scheduler and record check-ins.

Usage:
    resetday run                         Run the scheduler in the foreground
    resetday run --interval 10           Poll every 10 seconds
    resetday run --user-id alice         Track another user's interrupts
    resetday status                      Show today's interrupts
    resetday complete --response TEXT    Record the next pending interrupt
    resetday complete --slot 2 --response TEXT
    resetday check                       Run a single scheduler tick and exit
    resetday version                     Show installed version

While `resetday run` is active:
    s / start    Start the prompted interrupt (then type your response)
    l / later    Remind me later
    ? / status   Show status
    q / quit     Stop the scheduler

Send SIGUSR1 (or resume a stopped process) to force an immediate check.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from resetday import __version__
from resetday.clock import ReferenceClock
from resetday.config import Settings, get_settings
from resetday.errors import ConfigError, RepositoryError
from resetday.notify_channels import from_settings
from resetday.presenter import TerminalPresenter
from resetday.repository import CompletionRepository, CreateResult, build_repository
from resetday.resolver import SlotStatus, badge_state, next_pending_slot, slot_statuses
from resetday.scheduler import InterruptScheduler

logger = logging.getLogger("resetday.cli")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def setup_logging(log_dir: str, console_level: int = logging.WARNING) -> Path:
    """File log (rotating, INFO) plus console output at console_level."""
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    log_file = path / "resetday.log"

    file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3)
    file_handler.setLevel(logging.INFO)
    console = logging.StreamHandler()
    console.setLevel(console_level)

    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[file_handler, console],
        force=True,
    )
    return log_file


_STATUS_LABELS = {
    SlotStatus.COMPLETED: "done",
    SlotStatus.PENDING: "due now",
    SlotStatus.MISSED: "missed",
    SlotStatus.UPCOMING: "upcoming",
}


def format_status(clock: ReferenceClock, completed, settings: Settings) -> str:
    """Human-readable status block for today."""
    now = clock.now()
    badge = badge_state(now, completed, settings.schedule)

    lines = [
        f"Current time ({clock.tz_name}): {clock.time_label()}",
        f"Date: {clock.today()}",
    ]
    if badge.before_first:
        lines.append(f"Too early. Your first interrupt starts at {settings.schedule[0].display_label}.")
    lines.append(badge.summary())
    lines.append(f"Completed: {badge.completed_count}/{len(settings.schedule)} today")
    lines.append("")
    for (number, status), slot in zip(slot_statuses(now, completed, settings.schedule), settings.schedule):
        lines.append(f"  #{number}  {slot.display_label:>8}  {_STATUS_LABELS[status]}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Interactive session for `resetday run`
# ---------------------------------------------------------------------------

class InteractiveSession:
    """Feeds terminal input into a running scheduler.

    stdin is read on a daemon thread; lines are handed to the event loop
    through a queue so every scheduler call happens on the loop thread.
    """

    def __init__(self, scheduler: InterruptScheduler, settings: Settings, stop: asyncio.Event):
        self.scheduler = scheduler
        self.settings = settings
        self.stop = stop
        self.queue: asyncio.Queue = asyncio.Queue()
        self.awaiting_response: Optional[int] = None

    def start_reader(self):
        loop = asyncio.get_running_loop()

        def read_stdin():
            for line in sys.stdin:
                loop.call_soon_threadsafe(self.queue.put_nowait, line)

        threading.Thread(target=read_stdin, name="stdin-reader", daemon=True).start()

    def on_start(self, slot_number: int):
        self.awaiting_response = slot_number
        print(f"\nInterrupt #{slot_number}: reflect for a moment, then type your response (1-2 sentences):")

    async def handle(self, line: str):
        text = line.strip()
        if self.awaiting_response is not None:
            slot_number, self.awaiting_response = self.awaiting_response, None
            if not text:
                print("Empty response, interrupt not recorded.")
                return
            await self._record(slot_number, text)
            return

        command = text.lower()
        if command in ("s", "start"):
            self.scheduler.start_interrupt()
        elif command in ("l", "later"):
            self.scheduler.remind_later()
        elif command in ("?", "status"):
            print(format_status(self.scheduler.clock, self.scheduler.state.completed_slots, self.settings))
        elif command in ("q", "quit", "exit"):
            self.stop.set()
        elif command:
            print("Commands: s(tart), l(ater), ?(status), q(uit)")

    async def _record(self, slot_number: int, text: str):
        try:
            result = await self.scheduler.repository.create_completion(
                self.scheduler.user_id, self.scheduler.state.reference_date, slot_number, text
            )
        except RepositoryError as e:
            logger.error(f"Could not record interrupt #{slot_number}: {e}")
            print(f"Failed to save interrupt #{slot_number}: {e}")
            return
        if result == CreateResult.CREATED:
            print(f"Interrupt #{slot_number} complete!")
        else:
            print(f"Interrupt #{slot_number} was already recorded today.")
        self.scheduler.wake("completed")

    async def run(self):
        self.start_reader()
        while not self.stop.is_set():
            line = await self.queue.get()
            await self.handle(line)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _build_scheduler(
    settings: Settings,
    repository: CompletionRepository,
    interval: Optional[float] = None,
    wake_signals: bool = False,
) -> InterruptScheduler:
    return InterruptScheduler(
        user_id=settings.user_id,
        repository=repository,
        presenter=TerminalPresenter(from_settings(settings)),
        clock=ReferenceClock(settings.timezone),
        schedule=settings.schedule,
        poll_interval=interval or settings.poll_interval,
        snooze_seconds=settings.snooze_seconds,
        wake_signals=wake_signals,
    )


async def _run(settings: Settings, interval: Optional[float]) -> int:
    repository = build_repository(settings)
    scheduler = _build_scheduler(settings, repository, interval, wake_signals=True)
    stop = asyncio.Event()
    session = InteractiveSession(scheduler, settings, stop)
    scheduler.on_start = session.on_start

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            pass

    async with scheduler:
        print(format_status(scheduler.clock, scheduler.state.completed_slots, settings))
        print("\nScheduler running. Commands: s(tart), l(ater), ?(status), q(uit)")
        input_task = asyncio.create_task(session.run(), name="interactive")
        await stop.wait()
        input_task.cancel()
        await asyncio.gather(input_task, return_exceptions=True)

    print("Scheduler stopped.")
    return 0


async def _status(settings: Settings) -> int:
    clock = ReferenceClock(settings.timezone)
    repository = build_repository(settings)
    try:
        completed = await repository.list_completed_slots(settings.user_id, clock.today())
    except RepositoryError as e:
        print(f"Error: {e}")
        return 1
    print(format_status(clock, completed, settings))
    return 0


async def _complete(settings: Settings, slot: Optional[int], response: str) -> int:
    if not response.strip():
        print("Error: please enter a response.")
        return 1

    clock = ReferenceClock(settings.timezone)
    repository = build_repository(settings)
    today = clock.today()
    try:
        completed = await repository.list_completed_slots(settings.user_id, today)
    except RepositoryError as e:
        print(f"Error: {e}")
        return 1

    pending = next_pending_slot(clock.now(), completed, settings.schedule)
    if pending is None:
        print("No interrupt available right now.")
        return 1
    if slot is not None and slot != pending:
        print(f"Error: interrupt #{slot} is not due; next pending is #{pending}.")
        return 1

    try:
        result = await repository.create_completion(settings.user_id, today, pending, response.strip())
    except RepositoryError as e:
        print(f"Error: {e}")
        return 1

    if result == CreateResult.ALREADY_EXISTS:
        print(f"Interrupt #{pending} was already recorded today.")
        return 1
    done = badge_state(clock.now(), completed, settings.schedule).completed_count + 1
    print(f"Interrupt #{pending} complete! ({done}/{len(settings.schedule)} today)")
    return 0


async def _check(settings: Settings) -> int:
    repository = build_repository(settings)
    scheduler = _build_scheduler(settings, repository)
    pending = await scheduler.tick("check")
    await scheduler.settle()
    scheduler.presenter.close()
    if pending is None:
        print(scheduler.badge().summary())
    return 0


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    if args.user_id:
        settings = replace(settings, user_id=args.user_id)
    log_file = setup_logging(settings.log_dir, logging.INFO if args.verbose else logging.WARNING)
    logger.info(f"Log file: {log_file}")
    return asyncio.run(_run(settings, args.interval))


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    setup_logging(settings.log_dir)
    return asyncio.run(_status(settings))


def cmd_complete(args: argparse.Namespace, settings: Settings) -> int:
    setup_logging(settings.log_dir)
    return asyncio.run(_complete(settings, args.slot, args.response))


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    setup_logging(settings.log_dir)
    return asyncio.run(_check(settings))


def cmd_version(args: argparse.Namespace, settings: Settings) -> int:
    print(f"resetday  {__version__}")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resetday",
        description="resetday - six daily check-ins, prompted when they are due.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  resetday run                               # Run the scheduler\n"
            "  resetday status                            # Show today's interrupts\n"
            "  resetday complete --response \"Focused\"     # Record the next interrupt\n"
        ),
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"resetday {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    # -- run --
    run_parser = sub.add_parser("run", help="Run the interrupt scheduler in the foreground.")
    run_parser.add_argument("--user-id", help="Track interrupts for this user.")
    run_parser.add_argument("--interval", type=_positive_float, help="Seconds between checks.")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Log INFO to the console.")

    # -- status --
    sub.add_parser("status", help="Show today's interrupts.")

    # -- complete --
    complete_parser = sub.add_parser("complete", help="Record the next pending interrupt.")
    complete_parser.add_argument(
        "--slot", type=int, help="Interrupt number (must be the next pending one)."
    )
    complete_parser.add_argument(
        "--response", required=True, help="Your reflection, 1-2 sentences."
    )

    # -- check --
    sub.add_parser("check", help="Run a single scheduler check and exit.")

    # -- version --
    sub.add_parser("version", help="Show installed version.")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        return cmd_version(args, None)

    dispatch = {
        "run": cmd_run,
        "status": cmd_status,
        "complete": cmd_complete,
        "check": cmd_check,
    }

    handler = dispatch.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        settings = get_settings()
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 2
    return handler(args, settings)


if __name__ == "__main__":
    sys.exit(main())
