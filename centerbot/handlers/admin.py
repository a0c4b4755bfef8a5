from __future__ import annotations

from telegram import Update
from telegram.ext import (
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from ..constants import PAYMENT_METHODS, AccountStatus, Conversation, RegistrationStatus, Role
from ..keyboards.admin import (
    admin_panel_kb,
    cancel_keyboard,
    confirm_keyboard,
    payment_methods_kb,
    program_admin_kb,
    program_fields_kb,
    program_list_kb,
    registration_actions_kb,
    roster_kb,
    user_list_kb,
    user_moderation_kb,
)
from ..logging_config import logger
from ..services.exports import build_roster_workbook, roster_filename
from ..services.messaging import ADMIN_BUTTON_TEXT, status_label
from ..services.permissions import principal_from_update, require_role
from ..utils.errors import PreconditionFailed, ValidationError
from ..utils.validators import parse_int

USER_LIST_LIMIT = 40
_PROGRAM_DRAFT_KEYS = [
    "new_program_title",
    "new_program_category",
    "new_program_duration",
    "new_program_instructor",
]


def _clear_program_draft(context: ContextTypes.DEFAULT_TYPE) -> None:
    for key in _PROGRAM_DRAFT_KEYS:
        context.user_data.pop(key, None)


def _optional(text: str) -> str:
    text = text.strip()
    return "" if text == "-" else text


def _program_text(program, summary) -> str:
    counts = ", ".join(f"{status.value}: {n}" for status, n in summary.items()) or "no registrations"
    return (
        f"🎓 {program.title} ({program.program_id})\n"
        f"Category: {program.category or '—'}\n"
        f"Duration: {program.duration or '—'}\n"
        f"Instructor: {program.instructor or '—'}\n"
        f"Seats: {program.current_participants}/{program.max_participants}\n"
        f"Visible: {'yes' if program.is_visible else 'no'}\n"
        f"Registrations: {counts}"
    )


def _registration_text(reg) -> str:
    return (
        f"Registration #{reg.id}\n"
        f"Applicant: {reg.user_name} ({reg.user_id})\n"
        f"Email: {reg.user_email}\n"
        f"Phone: {reg.user_phone or '—'}\n"
        f"Status: {status_label(reg.status)}\n"
        f"Applied: {reg.applied_at}\n"
        f"Reviewed: {reg.reviewed_at or '—'} by {reg.reviewed_by or '—'}\n"
        f"Payment: {PAYMENT_METHODS.get(reg.payment_method, '—') if reg.payment_completed else 'not paid'}\n"
        f"Notes: {reg.notes or '—'}"
    )


@require_role(Role.INSTRUCTOR)
async def admin_entry(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text("Admin panel", reply_markup=admin_panel_kb())


@require_role(Role.INSTRUCTOR)
async def admin_panel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await query.edit_message_text("Admin panel", reply_markup=admin_panel_kb())


@require_role(Role.INSTRUCTOR)
async def stats(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    actor = await principal_from_update(update, context)
    program_service = context.application.bot_data["program_service"]
    registration_service = context.application.bot_data["registration_service"]
    programs = await program_service.list_programs()
    lines = []
    totals: dict = {}
    for program in programs:
        summary = await registration_service.status_summary(actor, program.program_id)
        for status, n in summary.items():
            totals[status] = totals.get(status, 0) + n
        pending = summary.get(RegistrationStatus.PENDING, 0)
        lines.append(
            f"{program.title}: {program.current_participants}/{program.max_participants} seats, ⏳ {pending} pending"
        )
    text = "Statistics:\n" + "\n".join(lines) if lines else "No programs yet"
    if totals:
        text += "\n\nTotal: " + ", ".join(f"{s.value} {n}" for s, n in totals.items())
    await query.edit_message_text(text, reply_markup=admin_panel_kb())


@require_role(Role.INSTRUCTOR)
async def programs_list(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    programs = await context.application.bot_data["program_service"].list_programs()
    if not programs:
        await query.edit_message_text("No programs yet", reply_markup=admin_panel_kb())
        return
    await query.edit_message_text("Programs:", reply_markup=program_list_kb(programs))


async def _show_program(update, context, program_id: str):
    query = update.callback_query
    actor = await principal_from_update(update, context)
    program = await context.application.bot_data["program_service"].get_program(program_id)
    if not program:
        await query.edit_message_text("Program not found.", reply_markup=admin_panel_kb())
        return
    summary = await context.application.bot_data["registration_service"].status_summary(actor, program_id)
    await query.edit_message_text(_program_text(program, summary), reply_markup=program_admin_kb(program))


@require_role(Role.INSTRUCTOR)
async def program_view(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await _show_program(update, context, query.data.replace("adm_prog_", ""))


@require_role(Role.INSTRUCTOR)
async def roster(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id, scope = query.data.replace("adm_roster_", "").rsplit("_", 1)
    actor = await principal_from_update(update, context)
    status = RegistrationStatus.PENDING if scope == "pending" else None
    regs = await context.application.bot_data["registration_service"].list_for_program(actor, program_id, status)
    if not regs:
        await query.edit_message_text("No registrations here.", reply_markup=cancel_keyboard(f"adm_prog_{program_id}", "⬅️ Back"))
        return
    await query.edit_message_text(f"Registrations ({len(regs)}):", reply_markup=roster_kb(regs, program_id))


async def _show_registration(update, context, reg_id: int, prefix: str = ""):
    query = update.callback_query
    actor = await principal_from_update(update, context)
    reg = await context.application.bot_data["registration_service"].get_registration(actor, reg_id)
    text = _registration_text(reg)
    if prefix:
        text = f"{prefix}\n\n{text}"
    await query.edit_message_text(text, reply_markup=registration_actions_kb(reg))


@require_role(Role.INSTRUCTOR)
async def registration_view(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    reg_id = int(query.data.replace("adm_reg_", ""))
    try:
        await _show_registration(update, context, reg_id)
    except PreconditionFailed as exc:
        await query.edit_message_text(f"⚠️ {exc}", reply_markup=admin_panel_kb())


@require_role(Role.CENTER_ADMIN)
async def registration_action(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    action, raw_id = query.data.replace("adm_act_", "").split("_", 1)
    reg_id = int(raw_id)
    actor = await principal_from_update(update, context)
    registration_service = context.application.bot_data["registration_service"]
    handler = {
        "accept": registration_service.accept,
        "reject": registration_service.reject,
        "enroll": registration_service.enroll,
        "complete": registration_service.complete,
    }[action]
    try:
        reg = await handler(actor, reg_id)
    except (ValidationError, PreconditionFailed) as exc:
        await query.edit_message_text(f"⚠️ {exc}", reply_markup=cancel_keyboard(f"adm_reg_{reg_id}", "⬅️ Back"))
        return
    await _show_registration(update, context, reg.id, prefix=f"Done: {status_label(reg.status)}")
    logger.info("Admin %s applied %s to registration %s", actor.user_id, action, reg_id)


@require_role(Role.CENTER_ADMIN)
async def payment_pick(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    reg_id = int(query.data.replace("adm_pay_", ""))
    await query.edit_message_text("Payment method:", reply_markup=payment_methods_kb(reg_id))


@require_role(Role.CENTER_ADMIN)
async def payment_record(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    method, raw_id = query.data.replace("adm_paygo_", "").rsplit("_", 1)
    reg_id = int(raw_id)
    actor = await principal_from_update(update, context)
    try:
        await context.application.bot_data["registration_service"].record_payment(actor, reg_id, method)
    except (ValidationError, PreconditionFailed) as exc:
        await query.edit_message_text(f"⚠️ {exc}", reply_markup=cancel_keyboard(f"adm_reg_{reg_id}", "⬅️ Back"))
        return
    await _show_registration(update, context, reg_id, prefix="💳 Payment recorded")


@require_role(Role.CENTER_ADMIN)
async def bulk_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    action, program_id = query.data.replace("adm_bulk_", "").split("_", 1)
    actor = await principal_from_update(update, context)
    pending = await context.application.bot_data["registration_service"].list_for_program(
        actor, program_id, RegistrationStatus.PENDING
    )
    if not pending:
        await query.edit_message_text("No pending applications.", reply_markup=cancel_keyboard(f"adm_prog_{program_id}", "⬅️ Back"))
        return
    verb = "Accept" if action == "accept" else "Reject"
    await query.edit_message_text(
        f"{verb} {len(pending)} pending application(s)?",
        reply_markup=confirm_keyboard(f"adm_bulkgo_{action}_{program_id}", f"adm_prog_{program_id}"),
    )


@require_role(Role.CENTER_ADMIN)
async def bulk_apply(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    action, program_id = query.data.replace("adm_bulkgo_", "").split("_", 1)
    actor = await principal_from_update(update, context)
    registration_service = context.application.bot_data["registration_service"]
    pending = await registration_service.list_for_program(actor, program_id, RegistrationStatus.PENDING)
    ids = [reg.id for reg in pending]
    if action == "accept":
        report = await registration_service.bulk_accept(actor, ids)
    else:
        report = await registration_service.bulk_reject(actor, ids)
    text = f"Done: {len(report.done)}, skipped: {len(report.skipped)}, failed: {len(report.failed)}"
    for reg_id, reason in report.skipped.items():
        text += f"\n#{reg_id}: {reason}"
    await query.edit_message_text(text, reply_markup=cancel_keyboard(f"adm_prog_{program_id}", "⬅️ Back"))


@require_role(Role.CENTER_ADMIN)
async def toggle_visibility(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id = query.data.replace("adm_vis_", "")
    actor = await principal_from_update(update, context)
    program_service = context.application.bot_data["program_service"]
    program = await program_service.get_program(program_id)
    if not program:
        await query.edit_message_text("Program not found.", reply_markup=admin_panel_kb())
        return
    await program_service.set_visibility(actor, program_id, not program.is_visible)
    await _show_program(update, context, program_id)


@require_role(Role.INSTRUCTOR)
async def export_roster(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id = query.data.replace("adm_export_", "")
    actor = await principal_from_update(update, context)
    program = await context.application.bot_data["program_service"].get_program(program_id)
    if not program:
        await query.edit_message_text("Program not found.", reply_markup=admin_panel_kb())
        return
    regs = await context.application.bot_data["registration_service"].list_for_program(actor, program_id)
    buffer = build_roster_workbook(program, regs)
    await context.bot.send_document(
        chat_id=query.message.chat_id,
        document=buffer,
        filename=roster_filename(program),
        caption=f"Roster: {program.title}",
    )
    logger.info("Roster of %s exported by %s (%s rows)", program_id, actor.user_id, len(regs))


@require_role(Role.INSTRUCTOR)
async def add_program_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    _clear_program_draft(context)
    await query.edit_message_text("Program title:", reply_markup=cancel_keyboard())
    return Conversation.WAITING_PROGRAM_TITLE


async def add_program_title(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data["new_program_title"] = update.message.text.strip()
    await update.message.reply_text("Category (or - to skip):")
    return Conversation.WAITING_PROGRAM_CATEGORY


async def add_program_category(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data["new_program_category"] = _optional(update.message.text)
    await update.message.reply_text("Duration, e.g. 3 months (or - to skip):")
    return Conversation.WAITING_PROGRAM_DURATION


async def add_program_duration(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data["new_program_duration"] = _optional(update.message.text)
    await update.message.reply_text("Instructor name (or - to use yours):")
    return Conversation.WAITING_PROGRAM_INSTRUCTOR


async def add_program_instructor(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data["new_program_instructor"] = _optional(update.message.text)
    await update.message.reply_text("Number of seats:")
    return Conversation.WAITING_PROGRAM_SEATS


async def add_program_seats(update: Update, context: ContextTypes.DEFAULT_TYPE):
    seats = parse_int(update.message.text.strip())
    if not seats or seats <= 0:
        await update.message.reply_text("Enter a positive number of seats:")
        return Conversation.WAITING_PROGRAM_SEATS
    actor = await principal_from_update(update, context)
    try:
        program = await context.application.bot_data["program_service"].create_program(
            actor,
            title=context.user_data.get("new_program_title", ""),
            max_participants=seats,
            category=context.user_data.get("new_program_category", ""),
            duration=context.user_data.get("new_program_duration", ""),
            instructor=context.user_data.get("new_program_instructor", ""),
        )
    except ValidationError as exc:
        await update.message.reply_text(f"❌ {exc}\nProgram title:")
        return Conversation.WAITING_PROGRAM_TITLE
    _clear_program_draft(context)
    await update.message.reply_text(f"✅ Added: {program.title}", reply_markup=admin_panel_kb())
    return ConversationHandler.END


@require_role(Role.INSTRUCTOR)
async def edit_program_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    program_id = query.data.replace("adm_edit_", "")
    context.user_data["edit_program_id"] = program_id
    await query.edit_message_text("What should change?", reply_markup=program_fields_kb(program_id))


@require_role(Role.INSTRUCTOR)
async def edit_program_field(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    context.user_data["edit_field"] = query.data.replace("adm_field_", "")
    await query.edit_message_text("New value:")
    return Conversation.EDIT_PROGRAM_VALUE


async def edit_program_value(update: Update, context: ContextTypes.DEFAULT_TYPE):
    program_id = context.user_data.get("edit_program_id")
    field = context.user_data.get("edit_field")
    actor = await principal_from_update(update, context)
    try:
        await context.application.bot_data["program_service"].update_program_field(
            actor, program_id, field, update.message.text
        )
    except ValidationError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return Conversation.EDIT_PROGRAM_VALUE
    await update.message.reply_text("Updated", reply_markup=admin_panel_kb())
    return ConversationHandler.END


@require_role(Role.CENTER_ADMIN)
async def notes_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    context.user_data["notes_reg_id"] = int(query.data.replace("adm_notes_", ""))
    await query.edit_message_text("Notes for this registration:")
    return Conversation.WAITING_REGISTRATION_NOTES


async def notes_save(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reg_id = context.user_data.pop("notes_reg_id", None)
    actor = await principal_from_update(update, context)
    try:
        await context.application.bot_data["registration_service"].update_notes(actor, reg_id, update.message.text)
    except PreconditionFailed as exc:
        await update.message.reply_text(f"⚠️ {exc}", reply_markup=admin_panel_kb())
        return ConversationHandler.END
    await update.message.reply_text(
        "📝 Notes saved", reply_markup=cancel_keyboard(f"adm_reg_{reg_id}", "⬅️ Registration")
    )
    return ConversationHandler.END


@require_role(Role.CENTER_ADMIN)
async def users_list(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    users = await context.application.bot_data["profile_service"].list_users()
    await query.edit_message_text(
        f"Users ({len(users)}):", reply_markup=user_list_kb(users[:USER_LIST_LIMIT])
    )


async def _show_user(update, context, user_id: int, prefix: str = ""):
    query = update.callback_query
    profile_service = context.application.bot_data["profile_service"]
    user = await profile_service.get_profile(user_id)
    if not user:
        await query.edit_message_text("User not found.", reply_markup=admin_panel_kb())
        return
    role = await profile_service.get_role(user_id)
    text = (
        f"{user.display_name} ({user.user_id})\n"
        f"Email: {user.email or '—'}\nPhone: {user.phone or '—'}\n"
        f"Role: {role.value}\nStatus: {user.status.value}"
    )
    if prefix:
        text = f"{prefix}\n\n{text}"
    await query.edit_message_text(text, reply_markup=user_moderation_kb(user_id))


@require_role(Role.CENTER_ADMIN)
async def user_view(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    await _show_user(update, context, int(query.data.replace("adm_user_", "")))


@require_role(Role.CENTER_ADMIN)
async def user_set_role(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    raw_role, raw_id = query.data.replace("adm_role_", "").rsplit("_", 1)
    target_id = int(raw_id)
    actor = await principal_from_update(update, context)
    try:
        role = await context.application.bot_data["profile_service"].assign_role(actor, target_id, Role(raw_role))
    except (ValidationError, PreconditionFailed) as exc:
        await query.edit_message_text(f"⚠️ {exc}", reply_markup=cancel_keyboard("admin_users", "⬅️ Back"))
        return
    await _show_user(update, context, target_id, prefix=f"✅ Role set to {role.value}")


@require_role(Role.CENTER_ADMIN)
async def user_set_status(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    raw_status, raw_id = query.data.replace("adm_status_", "").rsplit("_", 1)
    target_id = int(raw_id)
    actor = await principal_from_update(update, context)
    try:
        await context.application.bot_data["profile_service"].set_status(
            actor, target_id, AccountStatus(raw_status)
        )
    except (ValidationError, PreconditionFailed) as exc:
        await query.edit_message_text(f"⚠️ {exc}", reply_markup=cancel_keyboard("admin_users", "⬅️ Back"))
        return
    await _show_user(update, context, target_id, prefix=f"✅ Status set to {raw_status}")


async def admin_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    _clear_program_draft(context)
    context.user_data.pop("notes_reg_id", None)
    query = update.callback_query
    if query:
        await query.answer()
        await query.edit_message_text("Admin panel", reply_markup=admin_panel_kb())
    else:
        await update.message.reply_text("Cancelled.", reply_markup=admin_panel_kb())
    return ConversationHandler.END


def setup_handlers(application):
    text_input = filters.TEXT & ~filters.COMMAND
    conv = ConversationHandler(
        entry_points=[
            CallbackQueryHandler(add_program_start, pattern="^admin_add_program$"),
            CallbackQueryHandler(edit_program_field, pattern="^adm_field_.*$"),
            CallbackQueryHandler(notes_start, pattern=r"^adm_notes_\d+$"),
        ],
        states={
            Conversation.WAITING_PROGRAM_TITLE: [MessageHandler(text_input, add_program_title)],
            Conversation.WAITING_PROGRAM_CATEGORY: [MessageHandler(text_input, add_program_category)],
            Conversation.WAITING_PROGRAM_DURATION: [MessageHandler(text_input, add_program_duration)],
            Conversation.WAITING_PROGRAM_INSTRUCTOR: [MessageHandler(text_input, add_program_instructor)],
            Conversation.WAITING_PROGRAM_SEATS: [MessageHandler(text_input, add_program_seats)],
            Conversation.EDIT_PROGRAM_VALUE: [MessageHandler(text_input, edit_program_value)],
            Conversation.WAITING_REGISTRATION_NOTES: [MessageHandler(text_input, notes_save)],
        },
        fallbacks=[
            CommandHandler("cancel", admin_cancel),
            CallbackQueryHandler(admin_cancel, pattern="^admin_panel$"),
        ],
        per_user=True,
    )
    application.add_handler(conv)
    application.add_handler(MessageHandler(filters.Regex(f"^{ADMIN_BUTTON_TEXT}$"), admin_entry))
    application.add_handler(CommandHandler("admin", admin_entry))
    application.add_handler(CallbackQueryHandler(admin_panel, pattern="^admin_panel$"))
    application.add_handler(CallbackQueryHandler(stats, pattern="^admin_stats$"))
    application.add_handler(CallbackQueryHandler(programs_list, pattern="^admin_programs$"))
    application.add_handler(CallbackQueryHandler(program_view, pattern="^adm_prog_.*$"))
    application.add_handler(CallbackQueryHandler(roster, pattern="^adm_roster_.*_(pending|all)$"))
    application.add_handler(CallbackQueryHandler(registration_view, pattern=r"^adm_reg_\d+$"))
    application.add_handler(
        CallbackQueryHandler(registration_action, pattern=r"^adm_act_(accept|reject|enroll|complete)_\d+$")
    )
    application.add_handler(CallbackQueryHandler(payment_pick, pattern=r"^adm_pay_\d+$"))
    application.add_handler(CallbackQueryHandler(payment_record, pattern=r"^adm_paygo_.*_\d+$"))
    application.add_handler(CallbackQueryHandler(bulk_confirm, pattern="^adm_bulk_(accept|reject)_.*$"))
    application.add_handler(CallbackQueryHandler(bulk_apply, pattern="^adm_bulkgo_(accept|reject)_.*$"))
    application.add_handler(CallbackQueryHandler(toggle_visibility, pattern="^adm_vis_.*$"))
    application.add_handler(CallbackQueryHandler(export_roster, pattern="^adm_export_.*$"))
    application.add_handler(CallbackQueryHandler(edit_program_start, pattern="^adm_edit_.*$"))
    application.add_handler(CallbackQueryHandler(users_list, pattern="^admin_users$"))
    application.add_handler(CallbackQueryHandler(user_view, pattern=r"^adm_user_\d+$"))
    application.add_handler(CallbackQueryHandler(user_set_role, pattern=r"^adm_role_.*_\d+$"))
    application.add_handler(CallbackQueryHandler(user_set_status, pattern=r"^adm_status_.*_\d+$"))
