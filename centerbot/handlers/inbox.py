from __future__ import annotations

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import CallbackQueryHandler, ContextTypes, MessageHandler, filters

from ..services.messaging import MENU_LABEL_INBOX, send_main_menu
from ..services.permissions import principal_from_update
from ..utils.errors import PreconditionFailed

logger = logging.getLogger(__name__)


def _format_items(items) -> str:
    lines = []
    for item in items:
        marker = "🔵" if not item.is_read else "⚪"
        lines.append(f"{marker} {item.created_at} | {item.title}\n{item.message}")
    return "\n\n".join(lines)


async def show_inbox(update: Update, context: ContextTypes.DEFAULT_TYPE):
    inbox_service = context.application.bot_data["inbox_service"]
    user_id = update.effective_user.id
    items = await inbox_service.list_items(user_id, limit=10)
    if not items:
        await update.message.reply_text("No notifications yet.")
        return
    unread = await inbox_service.unread_count(user_id)
    rows = [
        [InlineKeyboardButton(f"✔️ Read: {item.title}", callback_data=f"inbox_read_{item.id}")]
        for item in items
        if not item.is_read
    ]
    if unread:
        rows.append([InlineKeyboardButton(f"✅ Mark all read ({unread})", callback_data="inbox_read_all")])
    rows.append([InlineKeyboardButton("↩️ Menu", callback_data="inbox_back")])
    await update.message.reply_text(
        f"🔔 Notifications (unread: {unread})\n\n{_format_items(items)}",
        reply_markup=InlineKeyboardMarkup(rows),
    )


async def read_one(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    item_id = int(query.data.replace("inbox_read_", ""))
    principal = await principal_from_update(update, context)
    try:
        await context.application.bot_data["inbox_service"].mark_read(principal, item_id)
    except PreconditionFailed as exc:
        await query.edit_message_text(f"⚠️ {exc}")
        return
    await query.edit_message_text("✅ Marked as read.")


async def read_all(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    principal = await principal_from_update(update, context)
    changed = await context.application.bot_data["inbox_service"].mark_all_read(principal)
    await query.edit_message_text(f"✅ {changed} notification(s) marked as read.")
    logger.info("User %s marked %s notifications read", principal.user_id, changed)


async def back(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await send_main_menu(context, query.from_user.id)


def setup_handlers(application):
    application.add_handler(MessageHandler(filters.Regex(f"^{MENU_LABEL_INBOX}$"), show_inbox))
    application.add_handler(CallbackQueryHandler(read_all, pattern="^inbox_read_all$"))
    application.add_handler(CallbackQueryHandler(read_one, pattern=r"^inbox_read_\d+$"))
    application.add_handler(CallbackQueryHandler(back, pattern="^inbox_back$"))
