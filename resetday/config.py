"""
Runtime configuration resolved from an optional YAML file and the environment.

Precedence: defaults < YAML file (RESETDAY_CONFIG) < environment variables.

Environment variables:
    RESETDAY_CONFIG          - Path to a YAML config file (optional)
    RESETDAY_TIMEZONE        - Reference timezone (default: "Asia/Kolkata")
    RESETDAY_USER_ID         - User whose interrupts are tracked
    RESETDAY_POLL_INTERVAL   - Seconds between checks (default: 30)
    RESETDAY_SNOOZE_SECONDS  - "Remind me later" cool-down (default: 60)
    RESETDAY_SLOT_TIMES      - Six comma-separated HH:MM slot times
    RESETDAY_DB_PATH         - SQLite completion store
    RESETDAY_LOG_DIR         - Directory for log files
    RESETDAY_DESKTOP_NOTIFY  - "0" disables desktop notifications
    RESETDAY_VOICE_COMMAND   - TTS command, message passed as last argument
    SUPABASE_URL / SUPABASE_KEY         - Use the hosted completion store
    TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from resetday.clock import DEFAULT_TIMEZONE, resolve_timezone
from resetday.errors import ClockError, ConfigError
from resetday.schedule import DEFAULT_SLOT_TIMES, ScheduleSlot, build_schedule

DEFAULT_HOME = Path.home() / ".resetday"

# env var -> Settings field
ENV_MAP = {
    "RESETDAY_TIMEZONE": "timezone",
    "RESETDAY_USER_ID": "user_id",
    "RESETDAY_POLL_INTERVAL": "poll_interval",
    "RESETDAY_SNOOZE_SECONDS": "snooze_seconds",
    "RESETDAY_SLOT_TIMES": "slot_times",
    "RESETDAY_DB_PATH": "db_path",
    "RESETDAY_LOG_DIR": "log_dir",
    "RESETDAY_DESKTOP_NOTIFY": "desktop_notifications",
    "RESETDAY_VOICE_COMMAND": "voice_command",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
    "TELEGRAM_CHAT_ID": "telegram_chat_id",
}


def _slot_time_str(value: Any) -> str:
    # YAML 1.1 reads unquoted 11:00 as the base-60 integer 660
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value // 60:02d}:{value % 60:02d}"
    return str(value)


@dataclass
class Settings:
    timezone: str = DEFAULT_TIMEZONE
    user_id: str = "local"
    poll_interval: float = 30.0
    snooze_seconds: float = 60.0
    slot_times: Tuple[str, ...] = DEFAULT_SLOT_TIMES
    db_path: str = str(DEFAULT_HOME / "resetday.db")
    log_dir: str = str(DEFAULT_HOME / "logs")
    desktop_notifications: bool = True
    voice_command: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    schedule: Tuple[ScheduleSlot, ...] = field(init=False, repr=False, default=())

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Coerce and check values. Raises ConfigError."""
        try:
            self.poll_interval = float(self.poll_interval)
            self.snooze_seconds = float(self.snooze_seconds)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Intervals must be numbers: {e}") from e
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.snooze_seconds < 0:
            raise ConfigError(f"snooze_seconds must not be negative, got {self.snooze_seconds}")

        if isinstance(self.slot_times, str):
            self.slot_times = tuple(t.strip() for t in self.slot_times.split(",") if t.strip())
        else:
            self.slot_times = tuple(_slot_time_str(t) for t in self.slot_times)
        try:
            self.schedule = build_schedule(self.slot_times)
        except ValueError as e:
            raise ConfigError(f"Invalid slot times: {e}") from e

        try:
            resolve_timezone(self.timezone)
        except ClockError as e:
            raise ConfigError(str(e)) from e

        if isinstance(self.desktop_notifications, str):
            self.desktop_notifications = self.desktop_notifications.strip().lower() not in {
                "0", "false", "no", "off",
            }
        self.user_id = str(self.user_id)

    @property
    def use_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """Read a YAML mapping of Settings fields."""
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parse error in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(Settings) if f.init}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {sorted(unknown)}")
    return data


def load_settings(
    environ: Optional[Mapping[str, str]] = None, config_path: Optional[Path] = None
) -> Settings:
    """Build Settings from defaults, the YAML file and the environment."""
    env = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    path = config_path or (Path(env["RESETDAY_CONFIG"]) if env.get("RESETDAY_CONFIG") else None)
    if path is not None:
        values.update(load_yaml_config(path))

    for var, name in ENV_MAP.items():
        if env.get(var):
            values[name] = env[var]

    try:
        return Settings(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return load_settings()
