"""
Completion Repository - Where completed interrupts are recorded.

The scheduler only needs two operations:
    list_completed_slots(user_id, date) -> slot numbers completed that day
    create_completion(user_id, date, slot_number, payload) -> CreateResult

Duplicate inserts for the same (user, date, slot) are rejected here by a
uniqueness constraint, never by the scheduler.

Backends:
    InMemoryCompletionRepository  - tests and single-process use
    SQLiteCompletionRepository    - local file, the CLI default
    SupabaseCompletionRepository  - the hosted `interrupt_entries` table
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import aiohttp

from resetday.errors import RepositoryError

logger = logging.getLogger("resetday.repository")


class CreateResult(Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass
class CompletionRecord:
    user_id: str
    date: str  # YYYY-MM-DD, reference timezone
    slot_number: int
    payload: str
    awarded_at: str  # ISO timestamp (UTC)


class CompletionRepository(ABC):
    """Interface the scheduler reads from and the response flow writes to."""

    @abstractmethod
    async def list_completed_slots(self, user_id: str, date: str) -> List[int]:
        """Slot numbers completed by the user on the given date."""

    @abstractmethod
    async def create_completion(
        self, user_id: str, date: str, slot_number: int, payload: str
    ) -> CreateResult:
        """Record a completion once. Duplicates return ALREADY_EXISTS."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================
# IN-MEMORY
# ============================================


class InMemoryCompletionRepository(CompletionRepository):
    def __init__(self):
        self._records: Dict[Tuple[str, str, int], CompletionRecord] = {}

    async def list_completed_slots(self, user_id: str, date: str) -> List[int]:
        return sorted(
            slot for (uid, day, slot) in self._records if uid == user_id and day == date
        )

    async def create_completion(
        self, user_id: str, date: str, slot_number: int, payload: str
    ) -> CreateResult:
        key = (user_id, date, slot_number)
        if key in self._records:
            return CreateResult.ALREADY_EXISTS
        self._records[key] = CompletionRecord(
            user_id=user_id,
            date=date,
            slot_number=slot_number,
            payload=payload,
            awarded_at=_utc_now_iso(),
        )
        return CreateResult.CREATED

    def records(self) -> List[CompletionRecord]:
        return list(self._records.values())


# ============================================
# SQLITE
# ============================================


class SQLiteCompletionRepository(CompletionRepository):
    """Completions stored in a local SQLite file.

    sqlite3 is blocking, so each call runs in a worker thread.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS interrupt_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    entry_date TEXT NOT NULL,
                    interrupt_number INTEGER NOT NULL,
                    response TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, entry_date, interrupt_number)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_entries_user_date
                ON interrupt_entries(user_id, entry_date)
            """)

    def _list_sync(self, user_id: str, date: str) -> List[int]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("""
                SELECT interrupt_number FROM interrupt_entries
                WHERE user_id = ? AND entry_date = ?
                ORDER BY interrupt_number
            """, (user_id, date)).fetchall()
            return [row[0] for row in rows]

    def _insert_sync(self, user_id: str, date: str, slot_number: int, payload: str) -> CreateResult:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO interrupt_entries
                        (user_id, entry_date, interrupt_number, response, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (user_id, date, slot_number, payload, _utc_now_iso()))
        except sqlite3.IntegrityError:
            return CreateResult.ALREADY_EXISTS
        return CreateResult.CREATED

    async def list_completed_slots(self, user_id: str, date: str) -> List[int]:
        try:
            return await asyncio.to_thread(self._list_sync, user_id, date)
        except sqlite3.Error as e:
            raise RepositoryError(f"SQLite read failed: {e}") from e

    async def create_completion(
        self, user_id: str, date: str, slot_number: int, payload: str
    ) -> CreateResult:
        try:
            return await asyncio.to_thread(self._insert_sync, user_id, date, slot_number, payload)
        except sqlite3.Error as e:
            raise RepositoryError(f"SQLite write failed: {e}") from e


# ============================================
# SUPABASE (PostgREST)
# ============================================


class SupabaseCompletionRepository(CompletionRepository):
    """Completions in the hosted `interrupt_entries` table via PostgREST."""

    TABLE = "interrupt_entries"

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: Optional[str] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
        timeout_seconds: float = 10,
    ):
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{self.TABLE}"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
        }
        self._session_factory = session_factory or aiohttp.ClientSession
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def list_completed_slots(self, user_id: str, date: str) -> List[int]:
        params = {
            "select": "interrupt_number",
            "user_id": f"eq.{user_id}",
            "entry_date": f"eq.{date}",
        }
        try:
            async with self._session_factory() as session:
                async with session.get(
                    self.endpoint, params=params, headers=self._headers, timeout=self._timeout
                ) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise RepositoryError(f"Supabase read failed: {resp.status} - {body}")
                    rows = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RepositoryError(f"Supabase read failed: {e}") from e

        return [row["interrupt_number"] for row in rows if "interrupt_number" in row]

    async def create_completion(
        self, user_id: str, date: str, slot_number: int, payload: str
    ) -> CreateResult:
        body = {
            "user_id": user_id,
            "entry_date": date,
            "interrupt_number": slot_number,
            "response": payload,
        }
        headers = dict(self._headers, Prefer="return=minimal")
        try:
            async with self._session_factory() as session:
                async with session.post(
                    self.endpoint, json=body, headers=headers, timeout=self._timeout
                ) as resp:
                    if resp.status in (200, 201, 204):
                        return CreateResult.CREATED
                    if resp.status == 409:
                        return CreateResult.ALREADY_EXISTS
                    text = await resp.text()
                    raise RepositoryError(f"Supabase insert failed: {resp.status} - {text}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RepositoryError(f"Supabase insert failed: {e}") from e


def build_repository(settings) -> CompletionRepository:
    """Pick the completion store from settings: Supabase if configured, else SQLite."""
    if settings.use_supabase:
        logger.info(f"Using Supabase completion store at {settings.supabase_url}")
        return SupabaseCompletionRepository(settings.supabase_url, settings.supabase_key)
    logger.info(f"Using SQLite completion store at {settings.db_path}")
    return SQLiteCompletionRepository(settings.db_path)
