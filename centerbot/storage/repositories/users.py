from __future__ import annotations

from typing import Optional, List

from ...models import User, utcnow_str
from ...constants import LEGACY_ADMIN_ROLE, AccountStatus, Role
from ..db import Database


def _to_user(row) -> User:
    try:
        status = AccountStatus(row["status"])
    except ValueError:
        status = AccountStatus.ACTIVE
    return User(
        user_id=row["user_id"],
        username=row["username"] or "",
        full_name=row["full_name"] or "",
        email=row["email"] or "",
        phone=row["phone"] or "",
        status=status,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UserRepository:
    def __init__(self, db: Database):
        self.db = db

    async def upsert_user(
        self, user_id: int, username: str, full_name: str
    ) -> User:
        existing = await self.get_user(user_id)
        if existing:
            await self.db.execute(
                """
                UPDATE users
                   SET username = ?, full_name = COALESCE(NULLIF(full_name, ''), ?), updated_at = ?
                 WHERE user_id = ?
                """,
                (username, full_name, utcnow_str(), user_id),
            )
            return await self.get_user(user_id)  # type: ignore
        await self.db.execute(
            """
            INSERT INTO users (user_id, username, full_name, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, username, full_name, AccountStatus.ACTIVE.value, utcnow_str(), utcnow_str()),
        )
        await self.db.execute(
            """
            INSERT OR IGNORE INTO roles (user_id, role)
            VALUES (?, ?)
            """,
            (user_id, Role.USER.value),
        )
        return await self.get_user(user_id)  # type: ignore

    async def get_user(self, user_id: int) -> Optional[User]:
        row = await self.db.fetchone(
            "SELECT * FROM users WHERE user_id = ?", (user_id,)
        )
        if not row:
            return None
        return _to_user(row)

    async def get_by_email(self, email: str) -> Optional[User]:
        row = await self.db.fetchone(
            "SELECT * FROM users WHERE lower(email) = lower(?) ORDER BY user_id LIMIT 1",
            (email,),
        )
        if not row:
            return None
        return _to_user(row)

    async def set_email(self, user_id: int, email: str):
        await self.db.execute(
            "UPDATE users SET email = ?, updated_at = ? WHERE user_id = ?",
            (email, utcnow_str(), user_id),
        )

    async def set_full_name(self, user_id: int, full_name: str):
        await self.db.execute(
            "UPDATE users SET full_name = ?, updated_at = ? WHERE user_id = ?",
            (full_name, utcnow_str(), user_id),
        )

    async def set_phone(self, user_id: int, phone: str):
        await self.db.execute(
            "UPDATE users SET phone = ?, updated_at = ? WHERE user_id = ?",
            (phone, utcnow_str(), user_id),
        )

    async def set_status(self, user_id: int, status: AccountStatus):
        await self.db.execute(
            "UPDATE users SET status = ?, updated_at = ? WHERE user_id = ?",
            (status.value, utcnow_str(), user_id),
        )

    async def list_users(self) -> List[User]:
        rows = await self.db.fetchall("SELECT * FROM users ORDER BY user_id")
        return [_to_user(row) for row in rows]

    async def list_by_roles(self, roles: tuple[Role, ...]) -> List[User]:
        values = [role.value for role in roles]
        if Role.CENTER_ADMIN in roles:
            values.append(LEGACY_ADMIN_ROLE)
        placeholders = ", ".join("?" for _ in values)
        rows = await self.db.fetchall(
            f"""
            SELECT u.* FROM users u
              JOIN roles r ON r.user_id = u.user_id
             WHERE r.role IN ({placeholders})
             ORDER BY u.user_id
            """,
            tuple(values),
        )
        return [_to_user(row) for row in rows]
