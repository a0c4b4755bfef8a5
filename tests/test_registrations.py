from __future__ import annotations

import pytest

from centerbot.constants import AccountStatus, RegistrationStatus, Role
from centerbot.services.registrations import REFUND_NOTICE
from centerbot.utils.errors import PermissionDenied, PreconditionFailed, StoreUnavailable, ValidationError

from .conftest import ADMIN_EMAIL, make_principal

Status = RegistrationStatus


async def _seats(services, program_id: str) -> int:
    return (await services.program.get_program(program_id)).current_participants


@pytest.mark.asyncio
async def test_happy_path_register_accept_enroll_complete(services, repos, admin, student, program, fake_email):
    reg = await services.registration.register(student, program.program_id)
    assert reg.status == Status.PENDING
    assert await _seats(services, program.program_id) == 1
    assert fake_email.to(student.email)[-1]["subject"] == "Registration Submitted! ⏳"
    assert fake_email.to(ADMIN_EMAIL)[-1]["subject"] == "New Registration Request 📋"

    reg = await services.registration.accept(admin, reg.id)
    assert reg.status == Status.ACCEPTED
    assert reg.reviewed_by == admin.user_id
    assert reg.reviewed_at
    assert await _seats(services, program.program_id) == 1

    reg = await services.registration.enroll(admin, reg.id)
    reg = await services.registration.complete(admin, reg.id)
    assert reg.status == Status.COMPLETED
    assert await _seats(services, program.program_id) == 1

    logs = await repos.log.list_for_email(student.email)
    assert [(row["status_before"], row["status_after"]) for row in logs] == [
        (None, "pending"),
        ("pending", "accepted"),
        ("accepted", "enrolled"),
        ("enrolled", "completed"),
    ]
    assert logs[1]["action_url"] == f"https://center.test/training/{program.program_id}"
    assert logs[1]["metadata"]["registration_id"] == reg.id


@pytest.mark.asyncio
async def test_duplicate_registration_is_refused(services, student, program):
    await services.registration.register(student, program.program_id)

    with pytest.raises(PreconditionFailed) as exc:
        await services.registration.register(student, program.program_id)

    assert "already registered" in str(exc.value)
    assert await _seats(services, program.program_id) == 1


@pytest.mark.asyncio
async def test_full_program_refuses_registration(services, program):
    for user_id in (1, 2):
        await services.registration.register(await make_principal(services, user_id), program.program_id)
    third = await make_principal(services, 3)

    with pytest.raises(PreconditionFailed) as exc:
        await services.registration.register(third, program.program_id)

    assert "full" in str(exc.value).lower()
    assert await _seats(services, program.program_id) == 2
    assert await services.registration.get_user_registration(3, program.program_id) is None


@pytest.mark.asyncio
async def test_bulk_reject_releases_seats_and_notifies(services, repos, admin, fake_email):
    second_admin = await make_principal(
        services, 101, Role.SUPER_ADMIN, email="director@center.test", full_name="Director"
    )
    program = await services.program.create_program(admin, title="Mobile Apps", max_participants=5)
    students = [await make_principal(services, user_id) for user_id in (1, 2, 3)]
    regs = [await services.registration.register(s, program.program_id) for s in students]
    assert await _seats(services, program.program_id) == 3
    fake_email.sent.clear()

    report = await services.registration.bulk_reject(admin, [r.id for r in regs])

    assert sorted(report.done) == sorted(r.id for r in regs)
    assert report.skipped == {} and report.failed == {}
    assert await _seats(services, program.program_id) == 0
    for s in students:
        assert fake_email.to(s.email)[-1]["subject"] == "Application Update"
    admins = await services.profile.list_admins()
    assert len(admins) == 2
    assert len(fake_email.to(ADMIN_EMAIL)) == 3
    assert len(fake_email.to(second_admin.email)) == 3
    admin_emails = {a.email for a in admins}
    assert len([m for m in fake_email.sent if m["to"] in admin_emails]) == 3 * len(admins)


@pytest.mark.asyncio
async def test_bulk_reject_keeps_earlier_items_when_store_fails(services, db, admin, monkeypatch):
    program = await services.program.create_program(admin, title="Networking", max_participants=5)
    students = [await make_principal(services, user_id) for user_id in (1, 2)]
    first, second = [await services.registration.register(s, program.program_id) for s in students]
    assert await _seats(services, program.program_id) == 2

    run_batch = db.run_batch
    calls = {"n": 0}

    async def flaky_run_batch(steps):
        calls["n"] += 1
        if calls["n"] == 2:
            raise StoreUnavailable("disk I/O error")
        return await run_batch(steps)

    monkeypatch.setattr(db, "run_batch", flaky_run_batch)

    report = await services.registration.bulk_reject(admin, [first.id, second.id])

    assert report.done == [first.id]
    assert report.failed == {second.id: "disk I/O error"}
    assert report.skipped == {}
    assert (await services.registration.get_registration(admin, first.id)).status == Status.REJECTED
    assert (await services.registration.get_registration(admin, second.id)).status == Status.PENDING
    assert await _seats(services, program.program_id) == 1


@pytest.mark.asyncio
async def test_legacy_admin_role_reviews_and_gets_admin_notices(services, db, student, program, fake_email):
    legacy = await make_principal(services, 102, Role.CENTER_ADMIN, email="legacy@center.test")
    await db.execute("UPDATE roles SET role = 'admin' WHERE user_id = ?", (legacy.user_id,))
    legacy = await services.profile.resolve_principal(legacy.user_id)
    assert legacy.role == Role.CENTER_ADMIN

    reg = await services.registration.register(student, program.program_id)
    assert fake_email.to(legacy.email)[-1]["subject"] == "New Registration Request 📋"

    await services.registration.accept(legacy, reg.id)
    assert len(fake_email.to(legacy.email)) == 2


@pytest.mark.asyncio
async def test_bulk_accept_skips_non_pending(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)
    await services.registration.accept(admin, reg.id)
    other = await services.registration.register(await make_principal(services, 2), program.program_id)

    report = await services.registration.bulk_accept(admin, [reg.id, other.id, 999])

    assert report.done == [other.id]
    assert report.skipped[reg.id] == "accepted"
    assert "not found" in report.skipped[999]


@pytest.mark.asyncio
async def test_reject_is_not_repeatable(services, admin, student, program, fake_email):
    reg = await services.registration.register(student, program.program_id)
    await services.registration.reject(admin, reg.id)
    sent = len(fake_email.sent)

    with pytest.raises(PreconditionFailed):
        await services.registration.reject(admin, reg.id)

    assert await _seats(services, program.program_id) == 0
    assert len(fake_email.sent) == sent


@pytest.mark.asyncio
async def test_register_then_withdraw_round_trip(services, student, program):
    reg = await services.registration.register(student, program.program_id)
    withdrawn = await services.registration.withdraw(student, reg.id)

    assert withdrawn.status == Status.CANCELLED
    assert await _seats(services, program.program_id) == 0
    assert await services.registration.list_for_user(student.user_id) == []
    history = await services.registration.list_for_user(student.user_id, only_active=False)
    assert [r.status for r in history] == [Status.CANCELLED]

    again = await services.registration.register(student, program.program_id)
    assert again.id != reg.id
    assert await _seats(services, program.program_id) == 1


@pytest.mark.asyncio
async def test_withdraw_needs_pending_and_owner(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)
    stranger = await make_principal(services, 2)

    with pytest.raises(PermissionDenied):
        await services.registration.withdraw(stranger, reg.id)

    await services.registration.accept(admin, reg.id)
    with pytest.raises(PreconditionFailed):
        await services.registration.withdraw(student, reg.id)


@pytest.mark.asyncio
async def test_cannot_jump_from_pending_to_completed(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)

    with pytest.raises(PreconditionFailed):
        await services.registration.complete(admin, reg.id)
    with pytest.raises(PreconditionFailed):
        await services.registration.enroll(admin, reg.id)

    assert (await services.registration.get_registration(admin, reg.id)).status == Status.PENDING


@pytest.mark.asyncio
async def test_cancel_paid_registration_sends_refund_notice(services, admin, student, program, fake_email):
    reg = await services.registration.register(student, program.program_id)
    await services.registration.accept(admin, reg.id)
    paid = await services.registration.record_payment(admin, reg.id, "mobile-money")
    assert paid.payment_completed is True

    cancelled = await services.registration.cancel(student, reg.id)

    assert cancelled.status == Status.CANCELLED
    assert await _seats(services, program.program_id) == 0
    assert REFUND_NOTICE in fake_email.to(student.email)[-1]["body"]
    assert "manual refund" in fake_email.to(ADMIN_EMAIL)[-1]["body"]


@pytest.mark.asyncio
async def test_cancel_enrolled_is_refused(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)
    await services.registration.accept(admin, reg.id)
    await services.registration.enroll(admin, reg.id)

    with pytest.raises(PreconditionFailed):
        await services.registration.cancel(student, reg.id)
    assert await _seats(services, program.program_id) == 1


@pytest.mark.asyncio
async def test_notification_failure_does_not_roll_back(services, repos, admin, student, program, fake_email):
    reg = await services.registration.register(student, program.program_id)
    fake_email.fail = True

    accepted = await services.registration.accept(admin, reg.id)

    assert accepted.status == Status.ACCEPTED
    assert (await repos.reg.get(reg.id)).status == Status.ACCEPTED
    last_log = (await repos.log.list_for_email(student.email))[-1]
    assert last_log["status_after"] == "accepted"
    assert last_log["is_sent"] is False


@pytest.mark.asyncio
async def test_review_rules(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)
    instructor = await make_principal(services, 50, Role.INSTRUCTOR)

    with pytest.raises(PermissionDenied):
        await services.registration.accept(student, reg.id)
    with pytest.raises(PermissionDenied):
        await services.registration.accept(instructor, reg.id)

    own = await services.registration.register(admin, program.program_id)
    with pytest.raises(PermissionDenied):
        await services.registration.accept(admin, own.id)


@pytest.mark.asyncio
async def test_register_requires_email_and_active_account(services, repos, program):
    no_email = await make_principal(services, 1, email="")
    with pytest.raises(ValidationError):
        await services.registration.register(no_email, program.program_id)

    suspended = await make_principal(services, 2)
    await repos.user.set_status(2, AccountStatus.SUSPENDED)
    suspended = await services.profile.resolve_principal(2)
    with pytest.raises(PermissionDenied):
        await services.registration.register(suspended, program.program_id)

    assert await _seats(services, program.program_id) == 0


@pytest.mark.asyncio
async def test_hidden_program_is_closed_to_students(services, admin, student, program):
    await services.program.set_visibility(admin, program.program_id, False)

    with pytest.raises(PreconditionFailed) as exc:
        await services.registration.register(student, program.program_id)
    assert "not found" in str(exc.value)


@pytest.mark.asyncio
async def test_record_payment_rules(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)

    with pytest.raises(ValidationError):
        await services.registration.record_payment(admin, reg.id, "barter")
    with pytest.raises(PreconditionFailed):
        await services.registration.record_payment(admin, reg.id, "paypal")

    await services.registration.accept(admin, reg.id)
    paid = await services.registration.record_payment(admin, reg.id, "paypal")
    assert paid.payment_method == "paypal"
    with pytest.raises(PreconditionFailed):
        await services.registration.record_payment(admin, reg.id, "paypal")


@pytest.mark.asyncio
async def test_notes_and_read_access(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)
    updated = await services.registration.update_notes(admin, reg.id, "  prefers evening class ")
    assert updated.notes == "prefers evening class"

    with pytest.raises(PermissionDenied):
        await services.registration.update_notes(student, reg.id, "hi")

    assert (await services.registration.get_registration(student, reg.id)).id == reg.id
    stranger = await make_principal(services, 2)
    with pytest.raises(PermissionDenied):
        await services.registration.get_registration(stranger, reg.id)
    with pytest.raises(PermissionDenied):
        await services.registration.list_for_program(student, program.program_id)

    summary = await services.registration.status_summary(admin, program.program_id)
    assert summary[Status.PENDING] == 1
