from __future__ import annotations

from typing import Iterable, List, Optional

from ..constants import ADMIN_ROLES, AccountStatus, Role
from ..logging_config import logger
from ..models import Principal, User
from ..utils.errors import PermissionDenied, ValidationError
from ..utils.validators import is_valid_email, is_valid_phone
from .permissions import ROLE_ORDER, ensure_can_act_on


class ProfileService:
    def __init__(self, user_repo, role_repo, bootstrap_admin_ids: Iterable[int] = ()):
        self.user_repo = user_repo
        self.role_repo = role_repo
        self.bootstrap_admin_ids = set(bootstrap_admin_ids)

    async def ensure_user(self, user_id: int, username: str, full_name: str) -> User:
        user = await self.user_repo.upsert_user(user_id, username, full_name)
        logger.debug("Ensured user user_id=%s username=%s", user_id, username)
        return user

    async def resolve_principal(self, user_id: int, username: str = "", full_name: str = "") -> Principal:
        """Build the acting principal; the role always comes from the store."""
        user = await self.user_repo.get_user(user_id)
        if user is None:
            user = await self.ensure_user(user_id, username, full_name)
        role = await self.role_repo.get_role(user_id)
        if user_id in self.bootstrap_admin_ids and role != Role.SUPER_ADMIN:
            await self.role_repo.set_role(user_id, Role.SUPER_ADMIN)
            role = Role.SUPER_ADMIN
            logger.info("Granted super_admin from config to user_id=%s", user_id)
        return Principal(
            user_id=user.user_id,
            display_name=user.display_name,
            email=user.email,
            phone=user.phone,
            role=role,
            status=user.status,
        )

    async def get_profile(self, user_id: int) -> Optional[User]:
        return await self.user_repo.get_user(user_id)

    async def update_email(self, user_id: int, email: str) -> User:
        email = email.strip()
        if not is_valid_email(email):
            raise ValidationError("Invalid email. Use an address like name@example.com.")
        await self.user_repo.set_email(user_id, email)
        logger.info("Email updated for user_id=%s", user_id)
        return await self.user_repo.get_user(user_id)  # type: ignore

    async def update_full_name(self, user_id: int, full_name: str) -> User:
        if len(full_name.strip()) < 3:
            raise ValidationError("Name must be at least 3 characters long.")
        await self.user_repo.set_full_name(user_id, full_name.strip())
        logger.info("Full name updated for user_id=%s", user_id)
        return await self.user_repo.get_user(user_id)  # type: ignore

    async def update_phone(self, user_id: int, phone: str) -> User:
        phone = phone.strip()
        if not is_valid_phone(phone):
            raise ValidationError("Invalid phone number.")
        await self.user_repo.set_phone(user_id, phone)
        logger.info("Phone updated for user_id=%s", user_id)
        return await self.user_repo.get_user(user_id)  # type: ignore

    async def list_users(self) -> List[User]:
        return await self.user_repo.list_users()

    async def list_admins(self) -> List[User]:
        return await self.user_repo.list_by_roles(ADMIN_ROLES)

    async def get_role(self, user_id: int) -> Role:
        return await self.role_repo.get_role(user_id)

    async def bootstrap_admin(self, user_id: int) -> None:
        await self.ensure_user(user_id, username="", full_name="")
        await self.role_repo.set_role(user_id, Role.SUPER_ADMIN)
        logger.info("Granted super_admin from config to user_id=%s", user_id)

    async def _load_target(self, actor: Principal, target_id: int) -> User:
        target = await self.user_repo.get_user(target_id)
        if not target:
            raise ValidationError("User not found.")
        target_role = await self.role_repo.get_role(target_id)
        ensure_can_act_on(actor, target, target_role)
        return target

    async def assign_role(self, actor: Principal, target_id: int, role: Role) -> Role:
        await self._load_target(actor, target_id)
        # Nobody grants a role equal to or above their own, except super admins.
        if actor.role != Role.SUPER_ADMIN and ROLE_ORDER[role] >= ROLE_ORDER[actor.role]:
            raise PermissionDenied(f"You cannot grant the {role.value} role.")
        await self.role_repo.set_role(target_id, role)
        logger.info("Role %s assigned to %s by %s", role.value, target_id, actor.user_id)
        return role

    async def set_status(self, actor: Principal, target_id: int, status: AccountStatus) -> User:
        await self._load_target(actor, target_id)
        await self.user_repo.set_status(target_id, status)
        logger.info("Status %s set on %s by %s", status.value, target_id, actor.user_id)
        return await self.user_repo.get_user(target_id)  # type: ignore
