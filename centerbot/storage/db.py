from __future__ import annotations

import asyncio
import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Iterable, Any, Dict, List

import aiosqlite

from ..constants import LEGACY_ADMIN_ROLE, Role
from ..utils.errors import StoreConflict, StoreUnavailable

Params = Iterable[Any] | Dict[str, Any]


@dataclass
class BatchStep:
    query: str
    params: Params = ()
    # When set, the whole batch is rolled back if this statement changes no row.
    guard: Optional[str] = None


@dataclass
class BatchResult:
    rowcounts: List[int] = field(default_factory=list)
    lastrowids: List[Optional[int]] = field(default_factory=list)


class Database:
    def __init__(self, path: str):
        self.path = path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock: Optional[asyncio.Lock] = None

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def connect(self) -> aiosqlite.Connection:
        if self._conn is None:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            try:
                # Small timeout helps avoid long stalls on slow disks.
                self._conn = await aiosqlite.connect(self.path, timeout=5)
                self._conn.row_factory = aiosqlite.Row
                await self._conn.execute("PRAGMA foreign_keys = ON;")
                await self._conn.execute("PRAGMA journal_mode = WAL;")
                await self._conn.execute("PRAGMA synchronous = NORMAL;")
                await self._conn.execute("PRAGMA busy_timeout = 5000;")
            except aiosqlite.Error as exc:
                self._conn = None
                raise StoreUnavailable(f"Cannot open database {self.path}") from exc
        return self._conn

    async def execute(self, query: str, params: Params = ()) -> int:
        conn = await self.connect()
        async with self.lock:
            try:
                cursor = await conn.execute(query, params)
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise StoreConflict(str(exc)) from exc
            except aiosqlite.Error as exc:
                raise StoreUnavailable(str(exc)) from exc
            return cursor.rowcount

    async def insert(self, query: str, params: Params = ()) -> int:
        conn = await self.connect()
        async with self.lock:
            try:
                cursor = await conn.execute(query, params)
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise StoreConflict(str(exc)) from exc
            except aiosqlite.Error as exc:
                raise StoreUnavailable(str(exc)) from exc
            return int(cursor.lastrowid or 0)

    async def fetchone(
        self, query: str, params: Params = ()
    ) -> Optional[aiosqlite.Row]:
        conn = await self.connect()
        async with self.lock:
            try:
                async with conn.execute(query, params) as cursor:
                    return await cursor.fetchone()
            except aiosqlite.Error as exc:
                raise StoreUnavailable(str(exc)) from exc

    async def fetchall(
        self, query: str, params: Params = ()
    ) -> List[aiosqlite.Row]:
        conn = await self.connect()
        async with self.lock:
            try:
                async with conn.execute(query, params) as cursor:
                    return await cursor.fetchall()
            except aiosqlite.Error as exc:
                raise StoreUnavailable(str(exc)) from exc

    async def run_batch(self, steps: List[BatchStep]) -> BatchResult:
        conn = await self.connect()
        result = BatchResult()
        async with self.lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
                for step in steps:
                    cursor = await conn.execute(step.query, step.params)
                    if step.guard and cursor.rowcount == 0:
                        raise StoreConflict(step.guard)
                    result.rowcounts.append(cursor.rowcount)
                    result.lastrowids.append(cursor.lastrowid)
                await conn.commit()
            except StoreConflict:
                await conn.rollback()
                raise
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise StoreConflict(str(exc)) from exc
            except aiosqlite.Error as exc:
                try:
                    await conn.rollback()
                except aiosqlite.Error:
                    logging.getLogger("centerbot").exception("Rollback failed")
                raise StoreUnavailable(str(exc)) from exc
        return result

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def init_db(self):
        await self.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                user_id INTEGER PRIMARY KEY,
                username TEXT,
                full_name TEXT,
                email TEXT,
                phone TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                created_at TEXT,
                updated_at TEXT
            );
        """
        )
        await self.execute(
            """
            CREATE TABLE IF NOT EXISTS roles (
                user_id INTEGER PRIMARY KEY,
                role TEXT NOT NULL DEFAULT 'user',
                FOREIGN KEY(user_id) REFERENCES users(user_id) ON DELETE CASCADE
            );
        """
        )
        await self.execute(
            """
            CREATE TABLE IF NOT EXISTS programs (
                program_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                category TEXT,
                duration TEXT,
                instructor TEXT,
                max_participants INTEGER NOT NULL,
                current_participants INTEGER NOT NULL DEFAULT 0,
                is_visible INTEGER NOT NULL DEFAULT 1,
                created_at TEXT,
                CHECK (current_participants >= 0),
                CHECK (current_participants <= max_participants)
            );
        """
        )
        await self.execute(
            """
            CREATE TABLE IF NOT EXISTS registrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                program_id TEXT NOT NULL,
                user_id INTEGER NOT NULL,
                user_name TEXT,
                user_email TEXT,
                user_phone TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                applied_at TEXT NOT NULL,
                updated_at TEXT,
                reviewed_at TEXT,
                reviewed_by INTEGER,
                notes TEXT NOT NULL DEFAULT '',
                payment_completed INTEGER NOT NULL DEFAULT 0,
                payment_method TEXT,
                FOREIGN KEY(user_id) REFERENCES users(user_id) ON DELETE CASCADE,
                FOREIGN KEY(program_id) REFERENCES programs(program_id) ON DELETE CASCADE
            );
        """
        )
        await self.execute(
            """
            CREATE TABLE IF NOT EXISTS notification_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_email TEXT,
                user_id INTEGER,
                title TEXT,
                message TEXT NOT NULL,
                type TEXT NOT NULL,
                status_before TEXT,
                status_after TEXT,
                sent_via TEXT NOT NULL,
                is_sent INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                action_url TEXT,
                related_program_id TEXT,
                related_program_name TEXT,
                metadata TEXT,
                created_at TEXT
            );
        """
        )
        await self.execute(
            """
            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                type TEXT NOT NULL,
                is_read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,
                read_at TEXT
            );
        """
        )

        # Indexes for weak VPS: speed up common lookups. Safe to run on every startup.
        idx_statements = [
            "CREATE INDEX IF NOT EXISTS idx_registrations_program_id ON registrations(program_id)",
            "CREATE INDEX IF NOT EXISTS idx_registrations_user_id ON registrations(user_id)",
            "CREATE INDEX IF NOT EXISTS idx_notifications_user_read ON notifications(user_id, is_read)",
            "CREATE INDEX IF NOT EXISTS idx_notification_logs_email ON notification_logs(user_email)",
            "CREATE INDEX IF NOT EXISTS idx_roles_role ON roles(role)",
        ]
        for stmt in idx_statements:
            try:
                await self.execute(stmt)
            except (StoreUnavailable, StoreConflict) as exc:
                logging.getLogger("centerbot").warning("Failed to create index: %s (%s)", stmt, exc)

        # One active registration per (user, program). Cancelled and rejected rows stay as history.
        # If duplicates already exist, this must not crash startup.
        try:
            await self.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_registrations_active_user_program
                    ON registrations(user_id, program_id)
                 WHERE status NOT IN ('cancelled', 'rejected')
                """
            )
        except (StoreUnavailable, StoreConflict) as exc:
            logging.getLogger("centerbot").warning(
                "Failed to create UNIQUE index uq_registrations_active_user_program (duplicates?): %s",
                exc,
            )

        # Rows written before the four-level roles still say "admin".
        await self.execute(
            "UPDATE roles SET role = ? WHERE role = ?",
            (Role.CENTER_ADMIN.value, LEGACY_ADMIN_ROLE),
        )
