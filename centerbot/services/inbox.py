from __future__ import annotations

from typing import List

from ..logging_config import logger
from ..models import InboxItem, Principal
from ..utils.errors import PermissionDenied, PreconditionFailed


class InboxService:
    def __init__(self, inbox_repo):
        self.inbox_repo = inbox_repo

    async def list_items(self, user_id: int, unread_only: bool = False, limit: int = 20) -> List[InboxItem]:
        return await self.inbox_repo.list_for_user(user_id, unread_only=unread_only, limit=limit)

    async def unread_count(self, user_id: int) -> int:
        return await self.inbox_repo.count_unread(user_id)

    async def mark_read(self, actor: Principal, item_id: int) -> None:
        item = await self.inbox_repo.get(item_id)
        if not item:
            raise PreconditionFailed("Notification not found.")
        if item.user_id != actor.user_id:
            raise PermissionDenied("This notification belongs to another user.")
        await self.inbox_repo.mark_read(item_id)

    async def mark_all_read(self, actor: Principal) -> int:
        changed = await self.inbox_repo.mark_all_read(actor.user_id)
        logger.debug("Marked %s notifications read for user_id=%s", changed, actor.user_id)
        return changed
