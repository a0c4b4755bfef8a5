from __future__ import annotations

import pytest

from centerbot.constants import AccountStatus, RegistrationStatus, Role
from centerbot.models import Principal, Registration
from centerbot.services.messaging import ADMIN_BUTTON_TEXT, send_main_menu, status_label
from centerbot.services.permissions import (
    can_act_on,
    ensure_owner,
    ensure_reviewer,
    ensure_role,
    has_role,
    principal_from_update,
    require_role,
)
from centerbot.services.profiles import ProfileService
from centerbot.utils.errors import PermissionDenied

from .conftest import make_callback_update, make_message_update


def _principal(user_id: int, role: Role, status: AccountStatus = AccountStatus.ACTIVE) -> Principal:
    return Principal(user_id=user_id, display_name=f"p{user_id}", role=role, status=status)


def test_has_role_ordering():
    assert has_role(Role.SUPER_ADMIN, Role.CENTER_ADMIN) is True
    assert has_role(Role.CENTER_ADMIN, Role.INSTRUCTOR) is True
    assert has_role(Role.INSTRUCTOR, Role.CENTER_ADMIN) is False
    assert has_role(Role.USER, Role.USER) is True


def test_role_parse_maps_legacy_admin():
    assert Role.parse("admin") == Role.CENTER_ADMIN
    assert Role.parse("super_admin") == Role.SUPER_ADMIN
    assert Role.parse("wizard") == Role.USER
    assert Role.parse(None) == Role.USER


def test_ensure_role_rejects_inactive_accounts():
    with pytest.raises(PermissionDenied):
        ensure_role(_principal(1, Role.SUPER_ADMIN, AccountStatus.SUSPENDED), Role.USER)
    with pytest.raises(PermissionDenied):
        ensure_role(_principal(1, Role.INSTRUCTOR), Role.CENTER_ADMIN)
    ensure_role(_principal(1, Role.CENTER_ADMIN), Role.INSTRUCTOR)


def test_can_act_on_moderation_matrix():
    super_admin = _principal(1, Role.SUPER_ADMIN)
    center_admin = _principal(2, Role.CENTER_ADMIN)
    instructor = _principal(3, Role.INSTRUCTOR)

    assert can_act_on(super_admin, 2, Role.CENTER_ADMIN) is True
    assert can_act_on(super_admin, 1, Role.SUPER_ADMIN) is False
    assert can_act_on(center_admin, 3, Role.INSTRUCTOR) is True
    assert can_act_on(center_admin, 4, Role.USER) is True
    assert can_act_on(center_admin, 5, Role.CENTER_ADMIN) is False
    assert can_act_on(center_admin, 1, Role.SUPER_ADMIN) is False
    assert can_act_on(instructor, 4, Role.USER) is False
    assert can_act_on(_principal(6, Role.SUPER_ADMIN, AccountStatus.BANNED), 4, Role.USER) is False


def test_owner_and_reviewer_guards():
    reg = Registration(id=1, program_id="program_1", user_id=7, status=RegistrationStatus.PENDING)

    ensure_owner(_principal(7, Role.USER), reg)
    with pytest.raises(PermissionDenied):
        ensure_owner(_principal(8, Role.SUPER_ADMIN), reg)

    ensure_reviewer(_principal(8, Role.CENTER_ADMIN), reg)
    with pytest.raises(PermissionDenied):
        ensure_reviewer(_principal(7, Role.SUPER_ADMIN), reg)
    with pytest.raises(PermissionDenied):
        ensure_reviewer(_principal(9, Role.INSTRUCTOR), reg)


def test_status_label_covers_every_status():
    for status in RegistrationStatus:
        assert status_label(status)


@pytest.mark.asyncio
async def test_require_role_allows_and_denies(context, services):
    called = {"ok": 0}

    @require_role(Role.CENTER_ADMIN)
    async def handler(update, ctx):
        called["ok"] += 1
        return "ok"

    await services.profile.ensure_user(1, "u", "User One")
    update = make_message_update(1, text="hi")

    with pytest.raises(PermissionDenied):
        await handler(update, context)  # default is USER

    await services.profile.role_repo.set_role(1, Role.CENTER_ADMIN)
    res = await handler(update, context)
    assert res == "ok"
    assert called["ok"] == 1


@pytest.mark.asyncio
async def test_principal_from_update_reads_role_from_store(context, services):
    update = make_callback_update(5, data="x", username="newbie", full_name="New Person")
    principal = await principal_from_update(update, context)

    assert principal.user_id == 5
    assert principal.display_name == "New Person"
    assert principal.role == Role.USER
    assert (await services.profile.get_profile(5)) is not None


@pytest.mark.asyncio
async def test_bootstrap_ids_are_granted_super_admin(context, repos):
    context.application.bot_data["profile_service"] = ProfileService(repos.user, repos.role, bootstrap_admin_ids=[1])

    @require_role(Role.SUPER_ADMIN)
    async def handler(update, ctx):
        return "ok"

    res = await handler(make_message_update(1, text="hi"), context)
    assert res == "ok"
    assert (await repos.role.get_role(1)) == Role.SUPER_ADMIN


@pytest.mark.asyncio
async def test_send_main_menu_includes_admin_button_for_staff(context, services):
    await services.profile.ensure_user(1, "u", "User One")

    await send_main_menu(context, chat_id=1, text="menu")
    kb = context.bot.sent_messages[-1]["reply_markup"]
    labels = [btn.text for row in kb.keyboard for btn in row]
    assert ADMIN_BUTTON_TEXT not in labels

    await services.profile.role_repo.set_role(1, Role.INSTRUCTOR)
    await send_main_menu(context, chat_id=1, text="menu")
    kb2 = context.bot.sent_messages[-1]["reply_markup"]
    labels2 = [btn.text for row in kb2.keyboard for btn in row]
    assert ADMIN_BUTTON_TEXT in labels2
