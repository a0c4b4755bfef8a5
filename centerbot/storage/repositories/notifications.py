from __future__ import annotations

import json
from typing import List, Optional

from ...constants import NotificationType
from ...models import InboxItem, Notification, utcnow_str
from ..db import Database


def _to_item(row) -> InboxItem:
    return InboxItem(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        message=row["message"],
        type=NotificationType(row["type"]),
        is_read=bool(row["is_read"]),
        created_at=row["created_at"],
        read_at=row["read_at"],
    )


class NotificationLogRepository:
    """Write-only delivery log, one row per dispatched notification."""

    def __init__(self, db: Database):
        self.db = db

    async def add(self, notification: Notification, is_sent: bool, error: Optional[str] = None) -> int:
        return await self.db.insert(
            """
            INSERT INTO notification_logs (
                user_email, user_id, title, message, type, status_before, status_after,
                sent_via, is_sent, error, action_url, related_program_id,
                related_program_name, metadata, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                notification.user_email,
                notification.user_id,
                notification.title,
                notification.message,
                notification.type.value,
                notification.status_before,
                notification.status_after,
                notification.sent_via.value,
                1 if is_sent else 0,
                error,
                notification.action_url,
                notification.related_program_id,
                notification.related_program_name,
                json.dumps(notification.metadata, ensure_ascii=False, default=str),
                notification.created_at,
            ),
        )

    async def list_for_email(self, email: str) -> List[dict]:
        rows = await self.db.fetchall(
            "SELECT * FROM notification_logs WHERE user_email = ? ORDER BY id",
            (email,),
        )
        result = []
        for row in rows:
            entry = dict(row)
            entry["metadata"] = json.loads(entry["metadata"]) if entry["metadata"] else {}
            entry["is_sent"] = bool(entry["is_sent"])
            result.append(entry)
        return result


class InboxRepository:
    def __init__(self, db: Database):
        self.db = db

    async def add(self, item: InboxItem) -> int:
        return await self.db.insert(
            """
            INSERT INTO notifications (user_id, title, message, type, is_read, created_at)
            VALUES (?, ?, ?, ?, 0, ?)
            """,
            (item.user_id, item.title, item.message, item.type.value, item.created_at),
        )

    async def get(self, item_id: int) -> Optional[InboxItem]:
        row = await self.db.fetchone("SELECT * FROM notifications WHERE id = ?", (item_id,))
        if not row:
            return None
        return _to_item(row)

    async def list_for_user(self, user_id: int, unread_only: bool = False, limit: int = 20) -> List[InboxItem]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        rows = await self.db.fetchall(query + " ORDER BY id DESC LIMIT ?", (user_id, limit))
        return [_to_item(row) for row in rows]

    async def count_unread(self, user_id: int) -> int:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS c FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        return int(row["c"]) if row else 0

    async def mark_read(self, item_id: int):
        await self.db.execute(
            "UPDATE notifications SET is_read = 1, read_at = ? WHERE id = ? AND is_read = 0",
            (utcnow_str(), item_id),
        )

    async def mark_all_read(self, user_id: int) -> int:
        return await self.db.execute(
            "UPDATE notifications SET is_read = 1, read_at = ? WHERE user_id = ? AND is_read = 0",
            (utcnow_str(), user_id),
        )
