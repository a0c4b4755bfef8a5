from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional

from ..constants import ADMIN_ROLES, Channel, NotificationType
from ..logging_config import logger
from ..models import InboxItem, Notification
from ..utils.errors import CenterError, NotificationDeliveryFailed


def notification_title(
    type_: NotificationType,
    status_before: Optional[str] = None,
    status_after: Optional[str] = None,
) -> str:
    if type_ == NotificationType.STATUS_CHANGE:
        if status_before and status_after:
            return f"Status Updated: {status_before} → {status_after}"
        return "Status Updated"
    titles = {
        NotificationType.BOOKING_CREATED: "New Booking Created",
        NotificationType.BOOKING_UPDATED: "Booking Updated",
        NotificationType.PAYMENT: "Payment Notification",
        NotificationType.SYSTEM: "System Notification",
        NotificationType.ANNOUNCEMENT: "Announcement",
    }
    return titles.get(type_, "Notification")


@dataclass
class Outbox:
    """Notifications collected during a transition, sent only after it commits."""

    to_users: List[Notification] = field(default_factory=list)
    to_admins: List[Notification] = field(default_factory=list)

    def to_user(self, notification: Notification) -> None:
        self.to_users.append(notification)

    def to_all_admins(self, notification: Notification) -> None:
        self.to_admins.append(notification)

    def __len__(self) -> int:
        return len(self.to_users) + len(self.to_admins)


class NotificationDispatcher:
    def __init__(self, log_repo, inbox_repo, user_repo, email_transport=None, chat_transport=None):
        self.log_repo = log_repo
        self.inbox_repo = inbox_repo
        self.user_repo = user_repo
        self.email_transport = email_transport
        self.chat_transport = chat_transport

    def _channels(self, sent_via: Channel) -> List[Channel]:
        if sent_via == Channel.BOTH:
            return [Channel.EMAIL, Channel.SMS]
        if sent_via == Channel.NONE:
            return []
        return [sent_via]

    async def _deliver(self, channel: Channel, notification: Notification) -> None:
        if channel == Channel.EMAIL:
            transport = self.email_transport
            if transport is None or not transport.is_configured:
                raise NotificationDeliveryFailed("email transport is not configured")
            if not notification.user_email:
                raise NotificationDeliveryFailed("recipient has no email")
            await transport.send(notification.user_email, notification.title or "", notification.message)
        else:
            transport = self.chat_transport
            if transport is None or not transport.is_configured:
                raise NotificationDeliveryFailed("chat transport is not configured")
            await transport.send(notification.user_id, notification.title or "", notification.message)

    async def dispatch(self, notification: Notification) -> bool:
        """Best-effort delivery. Always logs, never raises."""
        if not notification.title:
            notification.title = notification_title(
                notification.type, notification.status_before, notification.status_after
            )
        errors: List[str] = []

        if notification.user_id is None and notification.user_email:
            try:
                recipient = await self.user_repo.get_by_email(notification.user_email)
            except CenterError as exc:
                recipient = None
                logger.warning("Recipient lookup failed for %s: %s", notification.user_email, exc)
            if recipient:
                notification.user_id = recipient.user_id

        for channel in self._channels(notification.sent_via):
            try:
                await self._deliver(channel, notification)
            except NotificationDeliveryFailed as exc:
                errors.append(f"{channel.value}: {exc}")
                logger.warning(
                    "Notification via %s to %s failed: %s",
                    channel.value,
                    notification.user_email or notification.user_id,
                    exc,
                )

        is_sent = not errors
        try:
            await self.log_repo.add(notification, is_sent=is_sent, error="; ".join(errors) or None)
            if notification.user_id is not None:
                await self.inbox_repo.add(
                    InboxItem(
                        id=None,
                        user_id=notification.user_id,
                        title=notification.title,
                        message=notification.message,
                        type=notification.type,
                    )
                )
        except CenterError:
            logger.exception("Failed to persist notification for %s", notification.user_email)
            return False
        logger.info(
            "Notification %s to %s: %s",
            notification.type.value,
            notification.user_email or notification.user_id,
            "sent" if is_sent else "logged with errors",
        )
        return is_sent

    async def notify_admins(self, notification: Notification) -> int:
        """Send an individual copy to every center and super admin. Returns the number of copies."""
        try:
            admins = await self.user_repo.list_by_roles(ADMIN_ROLES)
        except CenterError:
            logger.exception("Cannot load admin recipients; admin broadcast dropped")
            return 0
        for admin in admins:
            await self.dispatch(replace(notification, user_email=admin.email, user_id=admin.user_id))
        return len(admins)

    async def flush(self, outbox: Outbox) -> None:
        for notification in outbox.to_users:
            await self.dispatch(notification)
        for notification in outbox.to_admins:
            await self.notify_admins(notification)
