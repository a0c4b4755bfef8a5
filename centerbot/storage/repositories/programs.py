from __future__ import annotations

from typing import List, Optional

from ...models import Program
from ..db import Database


def _to_program(row) -> Program:
    return Program(
        program_id=row["program_id"],
        title=row["title"],
        description=row["description"] or "",
        category=row["category"] or "",
        duration=row["duration"] or "",
        instructor=row["instructor"] or "",
        max_participants=row["max_participants"],
        current_participants=row["current_participants"],
        is_visible=bool(row["is_visible"]),
        created_at=row["created_at"],
    )


class ProgramRepository:
    def __init__(self, db: Database):
        self.db = db

    async def list_programs(self, only_visible: bool = False) -> List[Program]:
        query = "SELECT * FROM programs"
        if only_visible:
            query += " WHERE is_visible = 1"
        rows = await self.db.fetchall(query + " ORDER BY created_at ASC, title ASC")
        return [_to_program(row) for row in rows]

    async def get(self, program_id: str) -> Optional[Program]:
        row = await self.db.fetchone(
            "SELECT * FROM programs WHERE program_id = ?", (program_id,)
        )
        if not row:
            return None
        return _to_program(row)

    async def add(self, program: Program):
        await self.db.execute(
            """
            INSERT INTO programs (
                program_id, title, description, category, duration, instructor,
                max_participants, current_participants, is_visible, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                program.program_id,
                program.title,
                program.description,
                program.category,
                program.duration,
                program.instructor,
                program.max_participants,
                program.current_participants,
                1 if program.is_visible else 0,
                program.created_at,
            ),
        )

    async def update(self, program: Program):
        # current_participants is owned by CapacityTracker and never written here.
        await self.db.execute(
            """
            UPDATE programs
               SET title = ?, description = ?, category = ?, duration = ?,
                   instructor = ?, max_participants = ?, is_visible = ?
             WHERE program_id = ?
            """,
            (
                program.title,
                program.description,
                program.category,
                program.duration,
                program.instructor,
                program.max_participants,
                1 if program.is_visible else 0,
                program.program_id,
            ),
        )

    async def set_participants(self, program_id: str, count: int):
        await self.db.execute(
            "UPDATE programs SET current_participants = ? WHERE program_id = ?",
            (count, program_id),
        )
