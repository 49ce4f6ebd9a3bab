"""Generated minutes persistence: in-memory and SQLite repositories."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from lark_minutes.models import Minutes
from lark_minutes.utils.logging import get_logger

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS minutes (
    id TEXT PRIMARY KEY,
    meeting_id TEXT NOT NULL,
    body TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_minutes_meeting ON minutes(meeting_id, created_at);
"""


class MinutesRepository(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def save(self, minutes: Minutes) -> None: ...

    async def get(self, minutes_id: str) -> Minutes | None: ...

    async def latest_for_meeting(self, meeting_id: str) -> Minutes | None: ...


class InMemoryMinutesRepository:
    def __init__(self) -> None:
        self._items: dict[str, Minutes] = {}

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def save(self, minutes: Minutes) -> None:
        # Re-saving moves the entry to the end so "latest" follows save order
        self._items.pop(minutes.id, None)
        self._items[minutes.id] = minutes

    async def get(self, minutes_id: str) -> Minutes | None:
        return self._items.get(minutes_id)

    async def latest_for_meeting(self, meeting_id: str) -> Minutes | None:
        for minutes in reversed(list(self._items.values())):
            if minutes.meeting_id == meeting_id:
                return minutes
        return None


class SqliteMinutesRepository:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        log.info("minutes_store_opened", path=str(self._db_path))

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def save(self, minutes: Minutes) -> None:
        """Upsert by minutes id."""
        assert self._db is not None
        now = datetime.now(timezone.utc).isoformat()
        await self._db.execute(
            "INSERT INTO minutes (id, meeting_id, body, created_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET body = excluded.body, created_at = excluded.created_at",
            (minutes.id, minutes.meeting_id, json.dumps(minutes.to_dict(), ensure_ascii=False), now),
        )
        await self._db.commit()

    async def get(self, minutes_id: str) -> Minutes | None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT body FROM minutes WHERE id = ?", (minutes_id,))
        row = await cursor.fetchone()
        return Minutes.from_dict(json.loads(row[0])) if row else None

    async def latest_for_meeting(self, meeting_id: str) -> Minutes | None:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT body FROM minutes WHERE meeting_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (meeting_id,),
        )
        row = await cursor.fetchone()
        return Minutes.from_dict(json.loads(row[0])) if row else None


def create_repository(backend: str, db_path: Path) -> MinutesRepository:
    if backend == "memory":
        return InMemoryMinutesRepository()
    return SqliteMinutesRepository(db_path)
