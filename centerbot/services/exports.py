from __future__ import annotations

import io
from typing import List

from ..models import Program, Registration

ROSTER_COLUMNS = [
    "registration_id",
    "user_id",
    "user_name",
    "user_email",
    "user_phone",
    "status",
    "applied_at",
    "reviewed_at",
    "reviewed_by",
    "payment_completed",
    "payment_method",
    "notes",
]


def roster_rows(registrations: List[Registration]) -> List[dict]:
    return [
        {
            "registration_id": reg.id,
            "user_id": reg.user_id,
            "user_name": reg.user_name,
            "user_email": reg.user_email,
            "user_phone": reg.user_phone or "",
            "status": reg.status.value,
            "applied_at": reg.applied_at,
            "reviewed_at": reg.reviewed_at or "",
            "reviewed_by": reg.reviewed_by or "",
            "payment_completed": reg.payment_completed,
            "payment_method": reg.payment_method or "",
            "notes": reg.notes,
        }
        for reg in registrations
    ]


def build_roster_workbook(program: Program, registrations: List[Registration]) -> io.BytesIO:
    """Registrations sheet plus a program summary sheet, ready to send as a document."""
    # Heavy dependency: import lazily to keep bot startup fast on weak VPS.
    import pandas as pd

    df = pd.DataFrame(roster_rows(registrations), columns=ROSTER_COLUMNS)
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="registrations")
        summary = pd.DataFrame(
            [
                {
                    "program_id": program.program_id,
                    "title": program.title,
                    "max_participants": program.max_participants,
                    "current_participants": program.current_participants,
                }
            ]
        )
        summary.to_excel(writer, index=False, sheet_name="program")
    buffer.seek(0)
    return buffer


def roster_filename(program: Program) -> str:
    return f"{program.program_id}_registrations.xlsx"
