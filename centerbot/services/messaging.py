from __future__ import annotations

from typing import List

from telegram import ReplyKeyboardMarkup
from telegram.ext import ContextTypes

from ..constants import RegistrationStatus, Role
from ..logging_config import logger
from .permissions import has_role

MENU_LABEL_PROGRAMS = "🎓 Programs"
MENU_LABEL_MY_REGS = "📝 My registrations"
MENU_LABEL_INBOX = "🔔 Notifications"
MENU_LABEL_PROFILE = "👤 Profile"
ADMIN_BUTTON_TEXT = "⚙️ Admin panel"
DEFAULT_MENU_TEXT = "Main menu"

BASE_MENU_ITEMS: List[tuple[str, str]] = [
    ("programs", MENU_LABEL_PROGRAMS),
    ("my_regs", MENU_LABEL_MY_REGS),
    ("inbox", MENU_LABEL_INBOX),
    ("profile", MENU_LABEL_PROFILE),
]

STATUS_LABELS = {
    RegistrationStatus.PENDING: "⏳ Pending review",
    RegistrationStatus.ACCEPTED: "✅ Accepted",
    RegistrationStatus.REJECTED: "❌ Rejected",
    RegistrationStatus.ENROLLED: "🎟 Enrolled",
    RegistrationStatus.CANCELLED: "🚫 Cancelled",
    RegistrationStatus.COMPLETED: "🎓 Completed",
}


def status_label(status: RegistrationStatus) -> str:
    return STATUS_LABELS.get(status, status.value)


def build_main_keyboard(menu_items: List[tuple[str, str]], show_admin: bool) -> ReplyKeyboardMarkup:
    buttons = [[title] for _, title in menu_items]
    if show_admin:
        buttons.append([ADMIN_BUTTON_TEXT])
    return ReplyKeyboardMarkup(buttons, resize_keyboard=True, one_time_keyboard=False)


async def send_main_menu(context: ContextTypes.DEFAULT_TYPE, chat_id: int, text: str = DEFAULT_MENU_TEXT):
    profile_service = context.application.bot_data["profile_service"]

    role = await profile_service.get_role(chat_id)
    keyboard = build_main_keyboard(
        menu_items=BASE_MENU_ITEMS,
        show_admin=has_role(role, Role.INSTRUCTOR),
    )
    await context.bot.send_message(chat_id=chat_id, text=text, reply_markup=keyboard)
    logger.debug("Sent main menu to chat_id=%s role=%s", chat_id, role.value)
