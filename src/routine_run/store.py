"""SQLite-backed persistence for the live run.

Only one run is live at a time, kept under the ``active`` slot as its JSON
serialization. The host saves after every transition and loads on startup.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import RoutineRun

logger = logging.getLogger("routine_run.store")

ACTIVE_SLOT = "active"


class RunStateStore:
    """Stores the live RoutineRun in a small SQLite table."""

    def __init__(self, db_path: Path, slot: str = ACTIVE_SLOT):
        self.db_path = Path(db_path)
        self.slot = slot

    @staticmethod
    async def init_tables(db: aiosqlite.Connection):
        await db.execute("""
            CREATE TABLE IF NOT EXISTS run_state (
                slot TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                status TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    async def init(self) -> None:
        """Create the database file and table if missing."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await self.init_tables(db)
            await db.commit()

    async def save(self, run: RoutineRun) -> None:
        payload = json.dumps(run.to_dict())
        async with aiosqlite.connect(self.db_path) as db:
            await self.init_tables(db)
            await db.execute(
                """
                INSERT INTO run_state (slot, run_id, status, payload, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(slot) DO UPDATE SET
                    run_id = excluded.run_id,
                    status = excluded.status,
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (self.slot, run.id, run.status.value, payload, datetime.now().isoformat()),
            )
            await db.commit()
        logger.debug(f"Saved run {run.id} ({run.status.value})")

    async def load(self) -> Optional[RoutineRun]:
        """Return the last saved run, or None (also when the row is unreadable)."""
        if not self.db_path.exists():
            return None
        async with aiosqlite.connect(self.db_path) as db:
            await self.init_tables(db)
            cursor = await db.execute("SELECT payload FROM run_state WHERE slot = ?", (self.slot,))
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return RoutineRun.from_dict(json.loads(row[0]))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding unreadable saved run in slot {self.slot!r}: {e}")
            return None

    async def clear(self) -> None:
        if not self.db_path.exists():
            return
        async with aiosqlite.connect(self.db_path) as db:
            await self.init_tables(db)
            await db.execute("DELETE FROM run_state WHERE slot = ?", (self.slot,))
            await db.commit()
        logger.debug(f"Cleared slot {self.slot!r}")
