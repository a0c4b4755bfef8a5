from __future__ import annotations

from typing import List, Optional

from ...constants import INACTIVE_STATUSES, RegistrationStatus
from ...models import Registration, utcnow_str
from ..db import BatchStep, Database

_INACTIVE = tuple(s.value for s in INACTIVE_STATUSES)


def _to_registration(row) -> Registration:
    return Registration(
        id=row["id"],
        program_id=row["program_id"],
        user_id=row["user_id"],
        user_name=row["user_name"] or "",
        user_email=row["user_email"] or "",
        user_phone=row["user_phone"],
        status=RegistrationStatus(row["status"]),
        applied_at=row["applied_at"],
        updated_at=row["updated_at"],
        reviewed_at=row["reviewed_at"],
        reviewed_by=row["reviewed_by"],
        notes=row["notes"] or "",
        payment_completed=bool(row["payment_completed"]),
        payment_method=row["payment_method"],
    )


class RegistrationRepository:
    def __init__(self, db: Database):
        self.db = db

    async def list_by_program(
        self, program_id: str, status: Optional[RegistrationStatus] = None
    ) -> List[Registration]:
        if status is None:
            rows = await self.db.fetchall(
                "SELECT * FROM registrations WHERE program_id = ? ORDER BY applied_at, id",
                (program_id,),
            )
        else:
            rows = await self.db.fetchall(
                "SELECT * FROM registrations WHERE program_id = ? AND status = ? ORDER BY applied_at, id",
                (program_id, status.value),
            )
        return [_to_registration(row) for row in rows]

    async def list_by_user(self, user_id: int) -> List[Registration]:
        rows = await self.db.fetchall(
            "SELECT * FROM registrations WHERE user_id = ? ORDER BY applied_at DESC, id DESC",
            (user_id,),
        )
        return [_to_registration(row) for row in rows]

    async def get(self, reg_id: int) -> Optional[Registration]:
        row = await self.db.fetchone("SELECT * FROM registrations WHERE id = ?", (reg_id,))
        if not row:
            return None
        return _to_registration(row)

    async def get_active(self, user_id: int, program_id: str) -> Optional[Registration]:
        row = await self.db.fetchone(
            f"""
            SELECT * FROM registrations
             WHERE user_id = ? AND program_id = ?
               AND status NOT IN ({", ".join("?" for _ in _INACTIVE)})
             ORDER BY id DESC LIMIT 1
            """,
            (user_id, program_id, *_INACTIVE),
        )
        if not row:
            return None
        return _to_registration(row)

    async def count_active(self, program_id: str) -> int:
        row = await self.db.fetchone(
            f"""
            SELECT COUNT(*) AS c FROM registrations
             WHERE program_id = ? AND status NOT IN ({", ".join("?" for _ in _INACTIVE)})
            """,
            (program_id, *_INACTIVE),
        )
        return int(row["c"]) if row else 0

    async def count_by_status(self, program_id: str) -> dict[RegistrationStatus, int]:
        rows = await self.db.fetchall(
            "SELECT status, COUNT(*) AS c FROM registrations WHERE program_id = ? GROUP BY status",
            (program_id,),
        )
        counts = {status: 0 for status in RegistrationStatus}
        for row in rows:
            counts[RegistrationStatus(row["status"])] = int(row["c"])
        return counts

    def create_step(self, registration: Registration) -> BatchStep:
        return BatchStep(
            """
            INSERT INTO registrations (
                program_id, user_id, user_name, user_email, user_phone,
                status, applied_at, updated_at, notes
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                registration.program_id,
                registration.user_id,
                registration.user_name,
                registration.user_email,
                registration.user_phone,
                registration.status.value,
                registration.applied_at,
                registration.updated_at,
                registration.notes,
            ),
        )

    def transition_step(
        self,
        reg_id: int,
        expected: RegistrationStatus,
        new_status: RegistrationStatus,
        reviewed_by: Optional[int] = None,
    ) -> BatchStep:
        """Status change that only applies while the row is still in ``expected``."""
        now = utcnow_str()
        if reviewed_by is None:
            return BatchStep(
                "UPDATE registrations SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (new_status.value, now, reg_id, expected.value),
                guard=f"registration {reg_id} is no longer {expected.value}",
            )
        return BatchStep(
            """
            UPDATE registrations
               SET status = ?, updated_at = ?, reviewed_at = ?, reviewed_by = ?
             WHERE id = ? AND status = ?
            """,
            (new_status.value, now, now, reviewed_by, reg_id, expected.value),
            guard=f"registration {reg_id} is no longer {expected.value}",
        )

    async def set_notes(self, reg_id: int, notes: str):
        await self.db.execute(
            "UPDATE registrations SET notes = ?, updated_at = ? WHERE id = ?",
            (notes, utcnow_str(), reg_id),
        )

    async def set_payment(self, reg_id: int, method: str):
        await self.db.execute(
            """
            UPDATE registrations
               SET payment_completed = 1, payment_method = ?, updated_at = ?
             WHERE id = ?
            """,
            (method, utcnow_str(), reg_id),
        )
