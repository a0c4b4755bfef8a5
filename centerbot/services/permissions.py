from __future__ import annotations

from functools import wraps
from typing import Any, Awaitable, Callable, Optional
from telegram import Update
from telegram.ext import ContextTypes

from ..constants import AccountStatus, Role
from ..models import Principal, Registration, User
from ..utils.errors import PermissionDenied


ROLE_ORDER = {
    Role.USER: 0,
    Role.INSTRUCTOR: 1,
    Role.CENTER_ADMIN: 2,
    Role.SUPER_ADMIN: 3,
}


def has_role(user_role: Role, required: Role) -> bool:
    return ROLE_ORDER[user_role] >= ROLE_ORDER[required]


def is_admin(role: Role) -> bool:
    return has_role(role, Role.CENTER_ADMIN)


def ensure_active(actor: Principal) -> None:
    if actor.status != AccountStatus.ACTIVE:
        raise PermissionDenied(f"Account is {actor.status.value}.")


def ensure_role(actor: Principal, required: Role) -> None:
    ensure_active(actor)
    if not has_role(actor.role, required):
        raise PermissionDenied(f"Need role {required.value}, got {actor.role.value}")


def can_act_on(actor: Principal, target_id: int, target_role: Role) -> bool:
    """Moderation rule: super admins act on anyone, center admins only on users and instructors."""
    if actor.user_id == target_id:
        return False
    if actor.status != AccountStatus.ACTIVE:
        return False
    if actor.role == Role.SUPER_ADMIN:
        return True
    if actor.role == Role.CENTER_ADMIN:
        return target_role in (Role.USER, Role.INSTRUCTOR)
    return False


def ensure_can_act_on(actor: Principal, target: User, target_role: Role) -> None:
    if not can_act_on(actor, target.user_id, target_role):
        raise PermissionDenied("You cannot modify this account.")


def ensure_owner(actor: Principal, registration: Registration) -> None:
    ensure_active(actor)
    if registration.user_id != actor.user_id:
        raise PermissionDenied("This registration belongs to another user.")


def ensure_reviewer(actor: Principal, registration: Registration) -> None:
    ensure_role(actor, Role.CENTER_ADMIN)
    if registration.user_id == actor.user_id:
        raise PermissionDenied("Administrators cannot review their own registration.")


def _resolve_user(update: Update) -> Optional[Any]:
    # Try to resolve user from different update shapes (message/callback/etc.)
    user = getattr(update, "effective_user", None)
    if not user:
        cq = getattr(update, "callback_query", None)
        if cq:
            user = getattr(cq, "from_user", None)
    if not user and getattr(update, "message", None):
        user = getattr(update.message, "from_user", None)
    return user


async def principal_from_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Optional[Principal]:
    user = _resolve_user(update)
    if not user:
        return None
    profile_service = context.application.bot_data.get("profile_service")
    if profile_service is None:
        raise PermissionDenied("Profile service not configured")
    return await profile_service.resolve_principal(
        user.id,
        getattr(user, "username", "") or "",
        getattr(user, "full_name", "") or "",
    )


def require_role(required: Role):
    """Handler guard. Services re-check the role on every mutating call."""

    def decorator(func: Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[Any]]):
        @wraps(func)
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
            principal = await principal_from_update(update, context)
            if principal is None:
                # Graceful fallback: notify and stop without crashing handlers.
                eff_msg = getattr(update, "effective_message", None)
                if eff_msg:
                    await eff_msg.reply_text("Could not identify you, please try again.")
                return None
            ensure_role(principal, required)
            return await func(update, context, *args, **kwargs)

        return wrapper

    return decorator
