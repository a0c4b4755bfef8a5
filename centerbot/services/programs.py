from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from ..constants import Role
from ..logging_config import logger
from ..models import Principal, Program
from ..utils.errors import PreconditionFailed, StoreConflict, ValidationError
from ..utils.validators import parse_int, require_text
from .permissions import ensure_role

EDITABLE_FIELDS = ("title", "description", "category", "duration", "instructor", "max_participants")


class ProgramService:
    def __init__(self, program_repo, capacity):
        self.program_repo = program_repo
        self.capacity = capacity

    async def list_visible_programs(self) -> List[Program]:
        return await self.program_repo.list_programs(only_visible=True)

    async def list_programs(self) -> List[Program]:
        return await self.program_repo.list_programs()

    async def get_program(self, program_id: str) -> Optional[Program]:
        return await self.program_repo.get(program_id)

    async def create_program(
        self,
        actor: Principal,
        title: str,
        max_participants: int,
        category: str = "",
        duration: str = "",
        instructor: str = "",
        description: str = "",
        is_visible: bool = True,
    ) -> Program:
        ensure_role(actor, Role.INSTRUCTOR)
        title = require_text(title, "title", min_length=3)
        if max_participants <= 0:
            raise ValidationError("Maximum participants must be greater than 0.")
        program = Program(
            program_id=f"program_{uuid4().hex[:8]}",
            title=title,
            category=category.strip(),
            duration=duration.strip(),
            instructor=instructor.strip() or actor.display_name,
            max_participants=max_participants,
            current_participants=0,
            description=description.strip(),
            is_visible=is_visible,
        )
        await self.program_repo.add(program)
        logger.info(
            "Program created id=%s title=%s seats=%s by=%s",
            program.program_id,
            program.title,
            max_participants,
            actor.user_id,
        )
        return program

    async def update_program_field(self, actor: Principal, program_id: str, field: str, value: str) -> Program:
        ensure_role(actor, Role.INSTRUCTOR)
        program = await self.get_program(program_id)
        if not program:
            raise ValidationError("Program not found.")
        if field not in EDITABLE_FIELDS:
            raise ValidationError("Invalid field for update.")
        if field == "max_participants":
            seats = parse_int(value)
            if not seats or seats <= 0:
                raise ValidationError("Maximum participants must be a positive number.")
            # Counter may have drifted; compare against the recounted value.
            current = await self.capacity.reconcile(program_id)
            if seats < current:
                raise ValidationError(
                    f"{current} seats are already taken; the limit cannot go below that."
                )
            program.max_participants = seats
        elif field == "title":
            program.title = require_text(value, "title", min_length=3)
        else:
            setattr(program, field, value.strip())
        try:
            await self.program_repo.update(program)
        except StoreConflict as exc:
            raise PreconditionFailed(
                "Seats were taken while the limit was being changed, reload and retry."
            ) from exc
        logger.info("Program %s field %s updated by %s", program_id, field, actor.user_id)
        return await self.get_program(program_id)  # type: ignore[return-value]

    async def set_visibility(self, actor: Principal, program_id: str, visible: bool) -> Program:
        ensure_role(actor, Role.CENTER_ADMIN)
        program = await self.get_program(program_id)
        if not program:
            raise ValidationError("Program not found.")
        program.is_visible = visible
        await self.program_repo.update(program)
        logger.info("Program %s visibility=%s by %s", program_id, visible, actor.user_id)
        return program
