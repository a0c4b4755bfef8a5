from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import ContextTypes, MessageHandler, filters

from ..services.messaging import (
    MENU_LABEL_INBOX,
    MENU_LABEL_MY_REGS,
    MENU_LABEL_PROFILE,
    MENU_LABEL_PROGRAMS,
    send_main_menu,
)
from . import inbox as inbox_handlers
from . import profile as profile_handlers
from . import programs as programs_handlers

logger = logging.getLogger(__name__)


async def main_menu_router(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Routes presses on the reply keyboard."""
    text = (update.message.text or "").strip()

    if text == MENU_LABEL_PROGRAMS:
        return await programs_handlers.list_programs(update, context)
    if text == MENU_LABEL_MY_REGS:
        return await programs_handlers.list_my_registrations(update, context)
    if text == MENU_LABEL_INBOX:
        return await inbox_handlers.show_inbox(update, context)
    if text == MENU_LABEL_PROFILE:
        return await profile_handlers.show_profile(update, context)

    await send_main_menu(context, update.effective_chat.id, text="I did not understand that, here is the menu:")
    logger.debug("Unknown menu action text=%r chat_id=%s", text, update.effective_chat.id)


def setup_handlers(application):
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, main_menu_router))
