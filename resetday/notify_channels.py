"""
Notification Channels - Where a due-interrupt notification can be delivered.

Channels:
- Desktop (notify-send / osascript)
- Telegram (via bot API, aiohttp)
- Voice TTS (via configurable command)

Credentials come from Settings (environment variables):
    TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, RESETDAY_VOICE_COMMAND
"""

from __future__ import annotations

import asyncio
import logging
import platform
import shlex
import shutil
from typing import Callable, Optional, Set

import aiohttp

logger = logging.getLogger("resetday.notify_channels")

MAX_MESSAGE_LENGTH = 4000


def _applescript_str(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class ChannelNotifier:
    """Sends a message through every configured channel."""

    def __init__(
        self,
        telegram_bot_token: str = "",
        telegram_chat_id: str = "",
        voice_command: str = "",
        desktop: bool = True,
    ):
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id
        self.voice_command = voice_command
        self.desktop = desktop
        self._click_waiters: Set[asyncio.Task] = set()

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def voice_enabled(self) -> bool:
        return bool(self.voice_command)

    async def send_telegram(self, message: str) -> bool:
        """Send via Telegram Bot API. Markdown first, plain text on 400."""
        if not self.telegram_enabled:
            logger.debug("Telegram not configured (set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID)")
            return False

        if len(message) > MAX_MESSAGE_LENGTH:
            message = message[:MAX_MESSAGE_LENGTH - 20] + "\n\n...(truncated)"

        url = f"https://api.telegram.org/bot{self.telegram_bot_token}/sendMessage"
        payload = {"chat_id": self.telegram_chat_id, "text": message, "parse_mode": "Markdown"}
        timeout = aiohttp.ClientTimeout(total=30)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload) as resp:
                    if resp.status == 200:
                        logger.info(f"Telegram sent: {message[:50]}...")
                        return True

                # Markdown failed, try plain text
                logger.debug("Markdown failed, trying plain text")
                del payload["parse_mode"]
                async with session.post(url, json=payload) as resp2:
                    if resp2.status == 200:
                        logger.info("Telegram sent (plain text)")
                        return True
                    body = await resp2.text()
                    logger.error(f"Telegram error: {resp2.status} - {body}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Telegram send failed: {e}")
            return False

    async def send_desktop(
        self,
        title: str,
        body: str,
        on_click: Optional[Callable[[], None]] = None,
    ) -> bool:
        """Show an OS notification (notify-send on Linux, osascript on macOS).

        On Linux the notification carries a "Start" action; when the user
        clicks it, on_click runs. The wait happens in a background task.
        """
        if not self.desktop:
            return False

        system = platform.system()
        if system == "Linux" and shutil.which("notify-send"):
            cmd = ["notify-send", "--app-name=resetday", title, body]
            if on_click is not None:
                cmd[1:1] = ["--action=start=Start Interrupt", "--wait"]
        elif system == "Darwin" and shutil.which("osascript"):
            script = f"display notification {_applescript_str(body)} with title {_applescript_str(title)}"
            cmd = ["osascript", "-e", script]
            on_click = None
        else:
            logger.debug(f"Desktop notifications unsupported on {system}")
            return False

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE if on_click else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            if on_click is None:
                await asyncio.wait_for(proc.wait(), timeout=10)
                return proc.returncode == 0
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Desktop notification failed: {e}")
            return False

        task = asyncio.create_task(self._wait_for_click(proc, on_click), name="desktop-click")
        self._click_waiters.add(task)
        task.add_done_callback(self._click_waiters.discard)
        return True

    async def _wait_for_click(self, proc: asyncio.subprocess.Process, on_click: Callable[[], None]):
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        if stdout.decode().strip() == "start":
            logger.info("Desktop notification clicked")
            on_click()

    def cancel_pending_clicks(self):
        """Stop waiting on notification clicks (called on teardown)."""
        for task in list(self._click_waiters):
            task.cancel()

    async def send_voice(self, message: str, max_chars: int = 300) -> bool:
        """Speak the message with the configured TTS command."""
        if not self.voice_enabled:
            return False

        voice_text = message if len(message) <= max_chars else message[:max_chars]
        cmd_parts = shlex.split(self.voice_command) + [voice_text]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd_parts,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=120)
            return proc.returncode == 0
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Voice failed: {e}")
            return False


def from_settings(settings) -> ChannelNotifier:
    """Channels configured by Settings."""
    return ChannelNotifier(
        telegram_bot_token=settings.telegram_bot_token,
        telegram_chat_id=settings.telegram_chat_id,
        voice_command=settings.voice_command,
        desktop=settings.desktop_notifications,
    )
