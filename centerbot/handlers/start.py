from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import CommandHandler, ContextTypes

from ..services.messaging import send_main_menu

logger = logging.getLogger(__name__)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user = update.effective_user
    profile_service = context.application.bot_data["profile_service"]
    profile = await profile_service.ensure_user(
        user_id=user.id, username=user.username or "", full_name=user.full_name or ""
    )
    text = "Welcome to the training center! Pick a program to apply for."
    if not profile.email:
        text += "\nTip: add your email in 👤 Profile to receive status updates by mail."
    await send_main_menu(context, chat_id=user.id, text=text)
    logger.info("Start from user_id=%s", user.id)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(
        "🎓 Programs: browse and apply\n"
        "📝 My registrations: follow or cancel your applications\n"
        "🔔 Notifications: status updates about your registrations\n"
        "👤 Profile: name, email and phone used for applications"
    )


def setup_handlers(application):
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
