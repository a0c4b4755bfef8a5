from __future__ import annotations

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    CallbackQueryHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from ..constants import Conversation
from ..services.messaging import MENU_LABEL_PROFILE, send_main_menu
from ..utils.errors import ValidationError

logger = logging.getLogger(__name__)


async def show_profile(update: Update, context: ContextTypes.DEFAULT_TYPE):
    profile_service = context.application.bot_data["profile_service"]
    user = update.effective_user
    profile = await profile_service.get_profile(user.id)
    if not profile:
        profile = await profile_service.ensure_user(user.id, user.username or "", user.full_name or "")

    role = await profile_service.get_role(user.id)
    text = (
        "👤 Profile\n"
        f"Name: {profile.full_name or '—'}\n"
        f"Email: {profile.email or '—'}\n"
        f"Phone: {profile.phone or '—'}\n"
        f"Role: {role.value}\n"
        f"Account: {profile.status.value}"
    )
    kb = InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("✏️ Change name", callback_data="profile_edit_name")],
            [InlineKeyboardButton("✉️ Change email", callback_data="profile_edit_email")],
            [InlineKeyboardButton("📞 Change phone", callback_data="profile_edit_phone")],
            [InlineKeyboardButton("↩️ Menu", callback_data="profile_back")],
        ]
    )
    await update.message.reply_text(text, reply_markup=kb)
    return ConversationHandler.END


async def ask_name(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await query.edit_message_text("Enter your first and last name:")
    return Conversation.INPUT_NAME


async def ask_email(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await query.edit_message_text("Enter your email:")
    return Conversation.INPUT_EMAIL


async def ask_phone(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await query.edit_message_text("Enter your phone number, e.g. +237670000000:")
    return Conversation.INPUT_PHONE


async def _save(update: Update, context: ContextTypes.DEFAULT_TYPE, method: str, label: str, retry_state: int):
    profile_service = context.application.bot_data["profile_service"]
    try:
        await getattr(profile_service, method)(update.effective_user.id, update.message.text)
        await update.message.reply_text(f"✅ {label} updated.")
        logger.info("Updated %s for user_id=%s", label.lower(), update.effective_user.id)
    except ValidationError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return retry_state
    await send_main_menu(context, update.effective_chat.id, text="Profile updated. What next?")
    return ConversationHandler.END


async def save_name(update: Update, context: ContextTypes.DEFAULT_TYPE):
    return await _save(update, context, "update_full_name", "Name", Conversation.INPUT_NAME)


async def save_email(update: Update, context: ContextTypes.DEFAULT_TYPE):
    return await _save(update, context, "update_email", "Email", Conversation.INPUT_EMAIL)


async def save_phone(update: Update, context: ContextTypes.DEFAULT_TYPE):
    return await _save(update, context, "update_phone", "Phone", Conversation.INPUT_PHONE)


async def back(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await send_main_menu(context, query.from_user.id)
    return ConversationHandler.END


def setup_handlers(application):
    conv = ConversationHandler(
        entry_points=[
            CallbackQueryHandler(ask_name, pattern="^profile_edit_name$"),
            CallbackQueryHandler(ask_email, pattern="^profile_edit_email$"),
            CallbackQueryHandler(ask_phone, pattern="^profile_edit_phone$"),
        ],
        states={
            Conversation.INPUT_NAME: [MessageHandler(filters.TEXT & ~filters.COMMAND, save_name)],
            Conversation.INPUT_EMAIL: [MessageHandler(filters.TEXT & ~filters.COMMAND, save_email)],
            Conversation.INPUT_PHONE: [MessageHandler(filters.TEXT & ~filters.COMMAND, save_phone)],
        },
        fallbacks=[],
        per_user=True,
    )
    application.add_handler(conv)
    application.add_handler(CallbackQueryHandler(back, pattern="^profile_back$"))
    application.add_handler(MessageHandler(filters.Regex(f"^{MENU_LABEL_PROFILE}$"), show_profile))
