from __future__ import annotations

from ..logging_config import logger
from ..storage.db import BatchStep, Database
from ..utils.errors import StoreConflict

PROGRAM_FULL = "program full"


class CapacityTracker:
    """Owns ``programs.current_participants``.

    The reserve statement is conditional, so two registrants racing for the
    last seat cannot both pass: the second update changes no row and its batch
    is rolled back.
    """

    def __init__(self, db: Database, program_repo, reg_repo):
        self.db = db
        self.program_repo = program_repo
        self.reg_repo = reg_repo

    @staticmethod
    def reserve_step(program_id: str) -> BatchStep:
        return BatchStep(
            """
            UPDATE programs
               SET current_participants = current_participants + 1
             WHERE program_id = ? AND current_participants < max_participants
            """,
            (program_id,),
            guard=PROGRAM_FULL,
        )

    @staticmethod
    def release_step(program_id: str) -> BatchStep:
        return BatchStep(
            """
            UPDATE programs
               SET current_participants = MAX(current_participants - 1, 0)
             WHERE program_id = ?
            """,
            (program_id,),
        )

    async def try_reserve(self, program_id: str) -> bool:
        try:
            await self.db.run_batch([self.reserve_step(program_id)])
        except StoreConflict:
            logger.info("Seat refused for program %s: full", program_id)
            return False
        return True

    async def release(self, program_id: str) -> None:
        step = self.release_step(program_id)
        await self.db.execute(step.query, step.params)

    async def reconcile(self, program_id: str) -> int:
        """Recount active registrations and store the result as the cached counter."""
        program = await self.program_repo.get(program_id)
        if not program:
            return 0
        active = await self.reg_repo.count_active(program_id)
        # The CHECK constraint caps the counter; overbooked legacy data is reported, not hidden.
        corrected = min(active, program.max_participants)
        if active > program.max_participants:
            logger.warning(
                "Program %s has %s active registrations for %s seats",
                program_id,
                active,
                program.max_participants,
            )
        if corrected != program.current_participants:
            logger.warning(
                "Participant counter drift on %s: stored=%s actual=%s",
                program_id,
                program.current_participants,
                corrected,
            )
            await self.program_repo.set_participants(program_id, corrected)
        return corrected

    async def reconcile_all(self) -> dict[str, int]:
        programs = await self.program_repo.list_programs()
        return {p.program_id: await self.reconcile(p.program_id) for p in programs}
