from __future__ import annotations

from email.message import EmailMessage
from typing import Optional

import aiosmtplib
from telegram.error import TelegramError

from ..logging_config import logger
from ..utils.errors import NotificationDeliveryFailed


class EmailTransport:
    """SMTP delivery through aiosmtplib."""

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        from_email: str = "",
        from_name: str = "",
        start_tls: bool = True,
        timeout: float = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.start_tls = start_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "EmailTransport":
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_user,
            password=config.smtp_password,
            from_email=config.email_from,
            from_name=config.email_from_name,
            start_tls=config.smtp_start_tls,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def build_message(self, to_email: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f"{self.from_name} <{self.from_email}>" if self.from_name else self.from_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, to_email: str, subject: str, body: str) -> None:
        if not to_email:
            raise NotificationDeliveryFailed("recipient has no email address")
        message = self.build_message(to_email, subject, body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryFailed(f"SMTP delivery to {to_email} failed: {exc}") from exc
        logger.debug("Email sent to %s subject=%r", to_email, subject)


class ChatTransport:
    """Short messages through the recipient's Telegram chat."""

    def __init__(self, bot=None):
        self.bot = bot

    @property
    def is_configured(self) -> bool:
        return self.bot is not None

    async def send(self, chat_id: Optional[int], title: str, body: str) -> None:
        if chat_id is None:
            raise NotificationDeliveryFailed("recipient has no chat")
        try:
            await self.bot.send_message(chat_id=chat_id, text=f"{title}\n\n{body}")
        except TelegramError as exc:
            raise NotificationDeliveryFailed(f"Chat delivery to {chat_id} failed: {exc}") from exc
