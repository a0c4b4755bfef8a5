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

from ..constants import Conversation, RegistrationStatus
from ..services.messaging import MENU_LABEL_MY_REGS, MENU_LABEL_PROGRAMS, send_main_menu, status_label
from ..services.permissions import principal_from_update
from ..services.registrations import REFUND_NOTICE
from ..utils.errors import PreconditionFailed, ValidationError

logger = logging.getLogger(__name__)


def _program_keyboard(programs):
    rows = []
    for program in programs:
        label = f"{program.title} ({program.free_seats}/{program.max_participants} free)"
        rows.append([InlineKeyboardButton(label, callback_data=f"prog_view_{program.program_id}")])
    return InlineKeyboardMarkup(rows)


async def list_programs(update: Update, context: ContextTypes.DEFAULT_TYPE):
    program_service = context.application.bot_data["program_service"]
    programs = await program_service.list_visible_programs()
    if not programs:
        await update.message.reply_text("No training programs are open right now, check back later.")
        return
    await update.message.reply_text("Choose a program:", reply_markup=_program_keyboard(programs))


async def list_my_registrations(update: Update, context: ContextTypes.DEFAULT_TYPE):
    program_service = context.application.bot_data["program_service"]
    registration_service = context.application.bot_data["registration_service"]

    regs = await registration_service.list_for_user(update.effective_user.id, only_active=True)
    if not regs:
        await update.message.reply_text("You have no active registrations.")
        return

    rows = []
    for reg in regs:
        program = await program_service.get_program(reg.program_id)
        if not program:
            continue
        rows.append(
            [
                InlineKeyboardButton(
                    f"{status_label(reg.status)}: {program.title}",
                    callback_data=f"prog_view_{program.program_id}",
                )
            ]
        )
    rows.append([InlineKeyboardButton("↩️ Back", callback_data="programs_back")])
    await update.message.reply_text("Your registrations:", reply_markup=InlineKeyboardMarkup(rows))


async def view_program(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id = query.data.replace("prog_view_", "")
    program_service = context.application.bot_data["program_service"]
    registration_service = context.application.bot_data["registration_service"]
    program = await program_service.get_program(program_id)
    if not program:
        await query.edit_message_text("Program not found.")
        return

    user_reg = await registration_service.get_user_registration(query.from_user.id, program_id)
    actions = []
    if not user_reg:
        if program.is_full:
            actions.append([InlineKeyboardButton("⛔ Program full", callback_data="programs_back")])
        else:
            actions.append([InlineKeyboardButton("📝 Register", callback_data=f"prog_register_{program_id}")])
    elif user_reg.status == RegistrationStatus.PENDING:
        actions.append([InlineKeyboardButton("↩️ Withdraw application", callback_data=f"reg_withdraw_{user_reg.id}")])
    elif user_reg.status == RegistrationStatus.ACCEPTED:
        actions.append([InlineKeyboardButton("❌ Cancel registration", callback_data=f"reg_cancel_{user_reg.id}")])

    actions.append([InlineKeyboardButton("↩️ Back", callback_data="programs_back")])
    text = (
        f"🎓 {program.title}\n"
        f"Category: {program.category or '—'}\n"
        f"Duration: {program.duration or '—'}\n"
        f"Instructor: {program.instructor or '—'}\n"
        f"{program.description}\n\n"
        f"Your status: {status_label(user_reg.status) if user_reg else '—'}\n"
        f"Participants: {program.current_participants}/{program.max_participants}"
    )
    await query.edit_message_text(text, reply_markup=InlineKeyboardMarkup(actions))


async def start_registration(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id = query.data.replace("prog_register_", "")
    profile_service = context.application.bot_data["profile_service"]
    program_service = context.application.bot_data["program_service"]

    program = await program_service.get_program(program_id)
    if not program:
        await query.edit_message_text("Program not found.")
        return ConversationHandler.END

    profile = await profile_service.get_profile(query.from_user.id)
    if not profile:
        profile = await profile_service.ensure_user(
            query.from_user.id, query.from_user.username or "", query.from_user.full_name or ""
        )

    context.user_data["pending_program"] = program_id
    if not profile.full_name:
        await query.edit_message_text("Enter your first and last name:")
        context.user_data["registration_flow"] = "name"
        return Conversation.INPUT_NAME
    if not profile.email:
        await query.edit_message_text("Enter your email:")
        context.user_data["registration_flow"] = "email"
        return Conversation.INPUT_EMAIL

    return await confirm_registration(query.message, context, profile.full_name, profile.email, program)


async def confirm_registration(messageable, context, full_name, email, program):
    kb = InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("✅ Submit application", callback_data=f"prog_confirm_{program.program_id}")],
            [InlineKeyboardButton("↩️ Cancel", callback_data="programs_back")],
        ]
    )
    chat_id = (
        messageable.chat_id
        if hasattr(messageable, "chat_id")
        else messageable.chat.id  # type: ignore[attr-defined]
    )
    await context.bot.send_message(
        chat_id=chat_id,
        text=(
            "Please check your details:\n"
            f"Name: {full_name}\nEmail: {email}\n\n"
            f"Program: {program.title}\nDuration: {program.duration or '—'}"
        ),
        reply_markup=kb,
    )
    return ConversationHandler.END


async def _continue_registration(update: Update, context: ContextTypes.DEFAULT_TYPE):
    profile_service = context.application.bot_data["profile_service"]
    program_service = context.application.bot_data["program_service"]
    profile = await profile_service.get_profile(update.effective_user.id)
    if not profile.email:
        await update.message.reply_text("Enter your email:")
        context.user_data["registration_flow"] = "email"
        return Conversation.INPUT_EMAIL
    program = await program_service.get_program(context.user_data.get("pending_program"))
    if not program:
        await update.message.reply_text("Program not found.")
        return ConversationHandler.END
    return await confirm_registration(update.message, context, profile.full_name, profile.email, program)


async def collect_name(update: Update, context: ContextTypes.DEFAULT_TYPE):
    profile_service = context.application.bot_data["profile_service"]
    try:
        await profile_service.update_full_name(update.effective_user.id, update.message.text)
    except ValidationError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return Conversation.INPUT_NAME
    return await _continue_registration(update, context)


async def collect_email(update: Update, context: ContextTypes.DEFAULT_TYPE):
    profile_service = context.application.bot_data["profile_service"]
    try:
        await profile_service.update_email(update.effective_user.id, update.message.text)
    except ValidationError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return Conversation.INPUT_EMAIL
    return await _continue_registration(update, context)


async def confirm_registration_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id = query.data.replace("prog_confirm_", "")
    registration_service = context.application.bot_data["registration_service"]
    principal = await principal_from_update(update, context)
    try:
        reg = await registration_service.register(principal, program_id)
    except (ValidationError, PreconditionFailed) as exc:
        await query.edit_message_text(f"⚠️ {exc}")
        return ConversationHandler.END
    program = await context.application.bot_data["program_service"].get_program(program_id)
    await query.edit_message_text(
        f"✅ Application submitted: {program.title if program else program_id}\n"
        "It is pending admin approval; you will be notified once reviewed."
    )
    await send_main_menu(context, query.from_user.id, text="Application saved. What next?")
    logger.info("User %s applied for program %s (registration %s)", query.from_user.id, program_id, reg.id)
    return ConversationHandler.END


async def _cancel_callback(update: Update, context: ContextTypes.DEFAULT_TYPE, prefix: str, withdraw: bool):
    query = update.callback_query
    await query.answer()
    reg_id = int(query.data.replace(prefix, ""))
    registration_service = context.application.bot_data["registration_service"]
    principal = await principal_from_update(update, context)
    try:
        if withdraw:
            reg = await registration_service.withdraw(principal, reg_id)
        else:
            reg = await registration_service.cancel(principal, reg_id)
    except (ValidationError, PreconditionFailed) as exc:
        await query.edit_message_text(f"⚠️ {exc}")
        return
    program = await context.application.bot_data["program_service"].get_program(reg.program_id)
    text = f"❌ Registration cancelled: {program.title if program else reg.program_id}"
    if reg.payment_completed:
        text += f"\n\n{REFUND_NOTICE}"
    await query.edit_message_text(text)
    await send_main_menu(context, query.from_user.id, text="Registration cancelled.")
    logger.info("User %s cancelled registration %s", query.from_user.id, reg_id)


async def withdraw_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _cancel_callback(update, context, "reg_withdraw_", withdraw=True)


async def cancel_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _cancel_callback(update, context, "reg_cancel_", withdraw=False)


async def back_from_programs(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await send_main_menu(context, query.from_user.id)
    return ConversationHandler.END


def setup_handlers(application):
    conv = ConversationHandler(
        entry_points=[
            CallbackQueryHandler(start_registration, pattern="^prog_register_.*$"),
        ],
        states={
            Conversation.INPUT_NAME: [MessageHandler(filters.TEXT & ~filters.COMMAND, collect_name)],
            Conversation.INPUT_EMAIL: [MessageHandler(filters.TEXT & ~filters.COMMAND, collect_email)],
        },
        fallbacks=[],
        per_user=True,
    )
    application.add_handler(conv)
    application.add_handler(MessageHandler(filters.Regex(f"^{MENU_LABEL_PROGRAMS}$"), list_programs))
    application.add_handler(MessageHandler(filters.Regex(f"^{MENU_LABEL_MY_REGS}$"), list_my_registrations))
    application.add_handler(CallbackQueryHandler(view_program, pattern="^prog_view_.*$"))
    application.add_handler(CallbackQueryHandler(confirm_registration_callback, pattern="^prog_confirm_.*$"))
    application.add_handler(CallbackQueryHandler(withdraw_callback, pattern=r"^reg_withdraw_\d+$"))
    application.add_handler(CallbackQueryHandler(cancel_callback, pattern=r"^reg_cancel_\d+$"))
    application.add_handler(CallbackQueryHandler(back_from_programs, pattern="^programs_back$"))
