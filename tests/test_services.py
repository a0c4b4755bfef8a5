from __future__ import annotations

import pandas as pd
import pytest

from centerbot.constants import AccountStatus, Role
from centerbot.services.exports import ROSTER_COLUMNS, build_roster_workbook, roster_filename, roster_rows
from centerbot.utils.errors import PermissionDenied, PreconditionFailed, ValidationError

from .conftest import make_principal


@pytest.mark.asyncio
async def test_profile_service_validates_fields(services):
    await services.profile.ensure_user(1, "u", "User One")

    with pytest.raises(ValidationError):
        await services.profile.update_email(1, "not-an-email")
    with pytest.raises(ValidationError):
        await services.profile.update_full_name(1, "ab")
    with pytest.raises(ValidationError):
        await services.profile.update_phone(1, "call me")

    u = await services.profile.update_full_name(1, "User Updated")
    assert u.full_name == "User Updated"
    u = await services.profile.update_email(1, " u@example.com ")
    assert u.email == "u@example.com"
    u = await services.profile.update_phone(1, "+237 670 000 000")
    assert u.phone == "+237 670 000 000"


@pytest.mark.asyncio
async def test_bootstrap_admin_grants_super_admin(services):
    await services.profile.bootstrap_admin(42)
    assert (await services.profile.get_role(42)) == Role.SUPER_ADMIN
    assert [u.user_id for u in await services.profile.list_admins()] == [42]

    # The Telegram name fills in once the admin opens the bot.
    admin = await services.profile.ensure_user(42, "boss", "Real Boss")
    assert admin.full_name == "Real Boss"


@pytest.mark.asyncio
async def test_assign_role_respects_hierarchy(services, admin):
    boss = await make_principal(services, 200, Role.SUPER_ADMIN)
    await make_principal(services, 1)

    assert await services.profile.assign_role(admin, 1, Role.INSTRUCTOR) == Role.INSTRUCTOR
    with pytest.raises(PermissionDenied):
        await services.profile.assign_role(admin, 1, Role.CENTER_ADMIN)
    with pytest.raises(PermissionDenied):
        await services.profile.assign_role(admin, boss.user_id, Role.USER)
    with pytest.raises(PermissionDenied):
        await services.profile.assign_role(admin, admin.user_id, Role.SUPER_ADMIN)
    with pytest.raises(ValidationError):
        await services.profile.assign_role(admin, 999, Role.USER)

    assert await services.profile.assign_role(boss, admin.user_id, Role.SUPER_ADMIN) == Role.SUPER_ADMIN


@pytest.mark.asyncio
async def test_set_status_blocks_further_actions(services, admin, program):
    await make_principal(services, 1)
    user = await services.profile.set_status(admin, 1, AccountStatus.BANNED)
    assert user.status == AccountStatus.BANNED

    banned = await services.profile.resolve_principal(1)
    with pytest.raises(PermissionDenied):
        await services.registration.register(banned, program.program_id)


@pytest.mark.asyncio
async def test_program_service_create_rules(services, admin, student):
    instructor = await make_principal(services, 50, Role.INSTRUCTOR, full_name="Ines Tructor")

    with pytest.raises(PermissionDenied):
        await services.program.create_program(student, title="Graphic Design", max_participants=5)
    with pytest.raises(ValidationError):
        await services.program.create_program(admin, title="AI", max_participants=5)
    with pytest.raises(ValidationError):
        await services.program.create_program(admin, title="Graphic Design", max_participants=0)

    program = await services.program.create_program(instructor, title="Graphic Design", max_participants=5)
    assert program.program_id.startswith("program_")
    assert program.instructor == "Ines Tructor"
    assert program.current_participants == 0
    assert [p.program_id for p in await services.program.list_visible_programs()] == [program.program_id]


@pytest.mark.asyncio
async def test_program_seats_cannot_drop_below_taken(services, admin, program):
    for user_id in (1, 2):
        await services.registration.register(await make_principal(services, user_id), program.program_id)

    with pytest.raises(ValidationError):
        await services.program.update_program_field(admin, program.program_id, "max_participants", "1")
    with pytest.raises(ValidationError):
        await services.program.update_program_field(admin, program.program_id, "current_participants", "0")

    updated = await services.program.update_program_field(admin, program.program_id, "max_participants", "10")
    assert updated.max_participants == 10
    assert updated.current_participants == 2
    updated = await services.program.update_program_field(admin, program.program_id, "duration", " 6 months ")
    assert updated.duration == "6 months"


@pytest.mark.asyncio
async def test_seat_limit_change_racing_a_registration_is_refused(services, admin, program, monkeypatch):
    for user_id in (1, 2):
        await services.registration.register(await make_principal(services, user_id), program.program_id)

    async def count_before_registrations(program_id):
        return 0

    monkeypatch.setattr(services.capacity, "reconcile", count_before_registrations)

    with pytest.raises(PreconditionFailed):
        await services.program.update_program_field(admin, program.program_id, "max_participants", "1")
    got = await services.program.get_program(program.program_id)
    assert (got.max_participants, got.current_participants) == (2, 2)


@pytest.mark.asyncio
async def test_visibility_is_admin_only(services, admin, program):
    instructor = await make_principal(services, 50, Role.INSTRUCTOR)
    with pytest.raises(PermissionDenied):
        await services.program.set_visibility(instructor, program.program_id, False)

    await services.program.set_visibility(admin, program.program_id, False)
    assert await services.program.list_visible_programs() == []
    assert len(await services.program.list_programs()) == 1


@pytest.mark.asyncio
async def test_inbox_service_ownership(services, student, program, admin):
    await services.registration.register(student, program.program_id)
    items = await services.inbox.list_items(student.user_id)
    assert len(items) == 1
    assert await services.inbox.unread_count(student.user_id) == 1

    with pytest.raises(PermissionDenied):
        await services.inbox.mark_read(admin, items[0].id)
    with pytest.raises(PreconditionFailed):
        await services.inbox.mark_read(student, 9999)

    await services.inbox.mark_read(student, items[0].id)
    assert await services.inbox.unread_count(student.user_id) == 0
    assert await services.inbox.mark_all_read(admin) == 1


@pytest.mark.asyncio
async def test_roster_workbook_contains_registrations(services, admin, student, program):
    reg = await services.registration.register(student, program.program_id)
    await services.registration.update_notes(admin, reg.id, "front row")
    regs = await services.registration.list_for_program(admin, program.program_id)

    rows = roster_rows(regs)
    assert rows[0]["user_email"] == student.email
    assert rows[0]["status"] == "pending"

    buffer = build_roster_workbook(program, regs)
    df = pd.read_excel(buffer, sheet_name="registrations")
    assert list(df.columns) == ROSTER_COLUMNS
    assert df.iloc[0]["notes"] == "front row"
    assert roster_filename(program) == f"{program.program_id}_registrations.xlsx"
