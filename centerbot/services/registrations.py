from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..constants import (
    PAYMENT_METHODS,
    Channel,
    NotificationType,
    RegistrationStatus,
    Role,
)
from ..logging_config import logger
from ..models import Notification, Principal, Program, Registration
from ..utils.errors import PreconditionFailed, StoreConflict, StoreUnavailable, ValidationError
from .capacity import PROGRAM_FULL, CapacityTracker
from .notifications import NotificationDispatcher, Outbox
from .permissions import ensure_active, ensure_owner, ensure_reviewer, ensure_role, is_admin

Status = RegistrationStatus

REFUND_NOTICE = (
    "Your payment for this program was already received. "
    "Please contact the administration to arrange a refund."
)


@dataclass
class BulkReport:
    done: List[int] = field(default_factory=list)
    skipped: Dict[int, str] = field(default_factory=dict)
    failed: Dict[int, str] = field(default_factory=dict)


class RegistrationService:
    """Registration lifecycle.

    Every transition runs the same pipeline: validate, then write the status
    change and the seat adjustment in one batch, then flush the notification
    outbox. Nothing after the batch can undo it.

    A seat is held from ``pending`` on and released by withdraw, cancel and
    reject.
    """

    def __init__(
        self,
        db,
        program_repo,
        reg_repo,
        capacity: CapacityTracker,
        dispatcher: NotificationDispatcher,
        public_url: str = "",
    ):
        self.db = db
        self.program_repo = program_repo
        self.reg_repo = reg_repo
        self.capacity = capacity
        self.dispatcher = dispatcher
        self.public_url = public_url.rstrip("/")

    def _program_url(self, program_id: str) -> str:
        return f"{self.public_url}/training/{program_id}"

    def _admin_url(self, program_id: str) -> str:
        return f"{self.public_url}/admin/students?program={program_id}"

    async def _load(self, reg_id: int) -> Registration:
        reg = await self.reg_repo.get(reg_id)
        if not reg:
            raise PreconditionFailed("Registration not found.")
        return reg

    async def _load_program(self, program_id: str) -> Program:
        program = await self.program_repo.get(program_id)
        if not program:
            raise PreconditionFailed("Program not found.")
        return program

    @staticmethod
    def _expect(reg: Registration, *allowed: Status) -> None:
        if reg.status not in allowed:
            wanted = " or ".join(s.value for s in allowed)
            raise PreconditionFailed(
                f"Registration is {reg.status.value}; this action needs {wanted}."
            )

    async def _commit(
        self,
        reg: Registration,
        new_status: Status,
        reviewed_by: Optional[int] = None,
        release_seat: bool = False,
    ) -> Registration:
        steps = [self.reg_repo.transition_step(reg.id, reg.status, new_status, reviewed_by)]
        if release_seat:
            steps.append(self.capacity.release_step(reg.program_id))
        try:
            await self.db.run_batch(steps)
        except StoreConflict as exc:
            raise PreconditionFailed(f"Registration changed meanwhile, reload and retry ({exc}).") from exc
        logger.info(
            "Registration %s: %s -> %s (by=%s)",
            reg.id,
            reg.status.value,
            new_status.value,
            reviewed_by,
        )
        return await self._load(reg.id)  # type: ignore[arg-type]

    def _status_notice(
        self,
        reg: Registration,
        program: Program,
        before: Optional[Status],
        after: Status,
        title: str,
        message: str,
        type_: NotificationType = NotificationType.STATUS_CHANGE,
    ) -> Notification:
        return Notification(
            user_email=reg.user_email,
            user_id=reg.user_id,
            message=message,
            type=type_,
            title=title,
            status_before=before.value if before else None,
            status_after=after.value,
            sent_via=Channel.BOTH,
            action_url=self._program_url(program.program_id),
            related_program_id=program.program_id,
            related_program_name=program.title,
            metadata={
                "registration_id": reg.id,
                "program_id": program.program_id,
                "program_name": program.title,
            },
        )

    def _admin_notice(self, reg: Registration, program: Program, title: str, message: str,
                      type_: NotificationType) -> Notification:
        return Notification(
            user_email="",
            message=message,
            type=type_,
            title=title,
            sent_via=Channel.EMAIL,
            action_url=self._admin_url(program.program_id),
            related_program_id=program.program_id,
            related_program_name=program.title,
            metadata={
                "registration_id": reg.id,
                "program_id": program.program_id,
                "program_name": program.title,
                "applicant_id": reg.user_id,
                "applicant_name": reg.user_name,
                "applicant_email": reg.user_email,
            },
        )

    async def register(self, actor: Principal, program_id: str) -> Registration:
        ensure_active(actor)
        if not actor.email:
            raise ValidationError("Add an email address to your profile before registering.")
        program = await self.program_repo.get(program_id)
        if not program or (not program.is_visible and not is_admin(actor.role)):
            raise PreconditionFailed("Program not found.")
        existing = await self.reg_repo.get_active(actor.user_id, program_id)
        if existing:
            raise PreconditionFailed(
                f"You are already registered for this program (status: {existing.status.value})."
            )
        if program.is_full:
            raise PreconditionFailed("Program full: no seats left.")

        reg = Registration(
            id=None,
            program_id=program_id,
            user_id=actor.user_id,
            user_name=actor.display_name or actor.email.split("@")[0],
            user_email=actor.email,
            user_phone=actor.phone or None,
        )
        try:
            result = await self.db.run_batch(
                [self.capacity.reserve_step(program_id), self.reg_repo.create_step(reg)]
            )
        except StoreConflict as exc:
            if str(exc) == PROGRAM_FULL:
                raise PreconditionFailed("Program full: no seats left.") from exc
            raise PreconditionFailed("You are already registered for this program.") from exc
        reg.id = result.lastrowids[1]
        logger.info("User %s registered for program %s (registration %s)", actor.user_id, program_id, reg.id)

        outbox = Outbox()
        outbox.to_user(
            self._status_notice(
                reg,
                program,
                None,
                Status.PENDING,
                "Registration Submitted! ⏳",
                f'Your registration for "{program.title}" has been submitted and is pending admin '
                "approval. You will be notified once reviewed.",
            )
        )
        outbox.to_all_admins(
            self._admin_notice(
                reg,
                program,
                "New Registration Request 📋",
                f'New registration request from {reg.user_name} ({reg.user_email}) for "{program.title}". '
                "Please review it in the admin panel.",
                NotificationType.BOOKING_CREATED,
            )
        )
        await self.dispatcher.flush(outbox)
        return reg

    async def withdraw(self, actor: Principal, reg_id: int) -> Registration:
        """Owner pulls back an application that has not been reviewed yet."""
        reg = await self._load(reg_id)
        ensure_owner(actor, reg)
        self._expect(reg, Status.PENDING)
        return await self._cancel(reg)

    async def cancel(self, actor: Principal, reg_id: int) -> Registration:
        """Owner cancels a pending or accepted registration.

        Refunds are never automatic; a paid registration gets a notice to contact
        the administration instead.
        """
        reg = await self._load(reg_id)
        ensure_owner(actor, reg)
        self._expect(reg, Status.PENDING, Status.ACCEPTED)
        return await self._cancel(reg)

    async def _cancel(self, reg: Registration) -> Registration:
        program = await self._load_program(reg.program_id)
        before = reg.status
        updated = await self._commit(reg, Status.CANCELLED, release_seat=True)

        message = f'Your registration for "{program.title}" has been cancelled.'
        if updated.payment_completed:
            message += " " + REFUND_NOTICE
            logger.warning("Paid registration %s cancelled; manual refund needed", reg.id)
        outbox = Outbox()
        outbox.to_user(
            self._status_notice(updated, program, before, Status.CANCELLED, "Registration Cancelled", message)
        )
        outbox.to_all_admins(
            self._admin_notice(
                updated,
                program,
                "Registration Withdrawn",
                f'{updated.user_name} ({updated.user_email}) cancelled their {before.value} registration '
                f'for "{program.title}".'
                + (" Payment was completed; a manual refund is required." if updated.payment_completed else ""),
                NotificationType.BOOKING_UPDATED,
            )
        )
        await self.dispatcher.flush(outbox)
        return updated

    async def _review(
        self,
        actor: Principal,
        reg_id: int,
        expected: Status,
        after: Status,
        title: str,
        message: str,
        release_seat: bool = False,
    ) -> Registration:
        reg = await self._load(reg_id)
        ensure_reviewer(actor, reg)
        self._expect(reg, expected)
        program = await self._load_program(reg.program_id)
        updated = await self._commit(reg, after, reviewed_by=actor.user_id, release_seat=release_seat)

        outbox = Outbox()
        outbox.to_user(
            self._status_notice(updated, program, expected, after, title, message.format(title=program.title))
        )
        outbox.to_all_admins(
            self._admin_notice(
                updated,
                program,
                f"Registration {after.value.capitalize()}",
                f'Registration of {updated.user_name} for "{program.title}" moved from '
                f"{expected.value} to {after.value} by {actor.display_name or actor.user_id}.",
                NotificationType.BOOKING_UPDATED,
            )
        )
        await self.dispatcher.flush(outbox)
        return updated

    async def accept(self, actor: Principal, reg_id: int) -> Registration:
        return await self._review(
            actor,
            reg_id,
            Status.PENDING,
            Status.ACCEPTED,
            "Application Accepted!",
            'Congratulations! Your application for "{title}" has been accepted. '
            "Please proceed with payment to secure your seat.",
        )

    async def reject(self, actor: Principal, reg_id: int) -> Registration:
        return await self._review(
            actor,
            reg_id,
            Status.PENDING,
            Status.REJECTED,
            "Application Update",
            'Your application for "{title}" has been reviewed. '
            "Unfortunately, it has not been accepted at this time.",
            release_seat=True,
        )

    async def enroll(self, actor: Principal, reg_id: int) -> Registration:
        return await self._review(
            actor,
            reg_id,
            Status.ACCEPTED,
            Status.ENROLLED,
            "Enrollment Confirmed 🎉",
            'Congratulations! You are now enrolled in "{title}".',
        )

    async def complete(self, actor: Principal, reg_id: int) -> Registration:
        return await self._review(
            actor,
            reg_id,
            Status.ENROLLED,
            Status.COMPLETED,
            "Training Completed!",
            'Congratulations! You have successfully completed the "{title}" training program.',
        )

    async def _bulk(self, actor: Principal, reg_ids: Iterable[int], action) -> BulkReport:
        ensure_role(actor, Role.CENTER_ADMIN)
        report = BulkReport()
        for reg_id in reg_ids:
            try:
                reg = await self._load(reg_id)
                if reg.status != Status.PENDING:
                    report.skipped[reg_id] = reg.status.value
                    continue
                await action(actor, reg_id)
            except PreconditionFailed as exc:
                report.skipped[reg_id] = str(exc)
            except StoreUnavailable as exc:
                logger.error("Bulk %s failed on registration %s: %s", action.__name__, reg_id, exc)
                report.failed[reg_id] = str(exc)
            else:
                report.done.append(reg_id)
        logger.info(
            "Bulk %s by %s: done=%s skipped=%s failed=%s",
            action.__name__,
            actor.user_id,
            len(report.done),
            len(report.skipped),
            len(report.failed),
        )
        return report

    async def bulk_accept(self, actor: Principal, reg_ids: Iterable[int]) -> BulkReport:
        return await self._bulk(actor, reg_ids, self.accept)

    async def bulk_reject(self, actor: Principal, reg_ids: Iterable[int]) -> BulkReport:
        return await self._bulk(actor, reg_ids, self.reject)

    async def update_notes(self, actor: Principal, reg_id: int, notes: str) -> Registration:
        ensure_role(actor, Role.CENTER_ADMIN)
        reg = await self._load(reg_id)
        await self.reg_repo.set_notes(reg.id, notes.strip())
        logger.info("Notes updated on registration %s by %s", reg_id, actor.user_id)
        return await self._load(reg_id)

    async def record_payment(self, actor: Principal, reg_id: int, method: str) -> Registration:
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {method}")
        reg = await self._load(reg_id)
        ensure_reviewer(actor, reg)
        self._expect(reg, Status.ACCEPTED, Status.ENROLLED)
        if reg.payment_completed:
            raise PreconditionFailed("Payment was already recorded for this registration.")
        program = await self._load_program(reg.program_id)
        await self.reg_repo.set_payment(reg.id, method)
        updated = await self._load(reg_id)
        await self.dispatcher.dispatch(
            Notification(
                user_email=updated.user_email,
                user_id=updated.user_id,
                message=f'We received your payment for "{program.title}" via {PAYMENT_METHODS[method]}.',
                type=NotificationType.PAYMENT,
                sent_via=Channel.BOTH,
                action_url=self._program_url(program.program_id),
                related_program_id=program.program_id,
                related_program_name=program.title,
                metadata={"registration_id": reg.id, "payment_method": method},
            )
        )
        return updated

    async def get_registration(self, actor: Principal, reg_id: int) -> Registration:
        reg = await self._load(reg_id)
        if reg.user_id != actor.user_id:
            ensure_role(actor, Role.INSTRUCTOR)
        return reg

    async def get_user_registration(self, user_id: int, program_id: str) -> Optional[Registration]:
        return await self.reg_repo.get_active(user_id, program_id)

    async def list_for_user(self, user_id: int, only_active: bool = True) -> List[Registration]:
        regs = await self.reg_repo.list_by_user(user_id)
        if not only_active:
            return regs
        return [r for r in regs if r.is_active]

    async def list_for_program(
        self, actor: Principal, program_id: str, status: Optional[Status] = None
    ) -> List[Registration]:
        ensure_role(actor, Role.INSTRUCTOR)
        return await self.reg_repo.list_by_program(program_id, status)

    async def status_summary(self, actor: Principal, program_id: str) -> Dict[Status, int]:
        ensure_role(actor, Role.INSTRUCTOR)
        return await self.reg_repo.count_by_status(program_id)
