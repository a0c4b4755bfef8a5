from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from ..constants import PAYMENT_METHODS, AccountStatus, RegistrationStatus, Role


def admin_panel_kb():
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("📊 Statistics", callback_data="admin_stats")],
            [InlineKeyboardButton("🎓 Programs", callback_data="admin_programs")],
            [InlineKeyboardButton("➕ Add program", callback_data="admin_add_program")],
            [InlineKeyboardButton("👥 Users", callback_data="admin_users")],
        ]
    )


def confirm_keyboard(ok_cb: str, cancel_cb: str):
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("✅ Yes", callback_data=ok_cb)],
            [InlineKeyboardButton("❌ Cancel", callback_data=cancel_cb)],
        ]
    )


def cancel_keyboard(cb: str = "admin_panel", text: str = "❌ Cancel") -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton(text, callback_data=cb)]])


def program_list_kb(programs):
    rows = []
    for program in programs:
        hidden = "" if program.is_visible else " 🙈"
        rows.append(
            [
                InlineKeyboardButton(
                    f"{program.title} ({program.current_participants}/{program.max_participants}){hidden}",
                    callback_data=f"adm_prog_{program.program_id}",
                )
            ]
        )
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data="admin_panel")])
    return InlineKeyboardMarkup(rows)


def program_admin_kb(program):
    pid = program.program_id
    visibility = "🙈 Hide" if program.is_visible else "👁 Show"
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("⏳ Pending applications", callback_data=f"adm_roster_{pid}_pending")],
            [InlineKeyboardButton("📋 All registrations", callback_data=f"adm_roster_{pid}_all")],
            [InlineKeyboardButton("✅ Accept all pending", callback_data=f"adm_bulk_accept_{pid}")],
            [InlineKeyboardButton("❌ Reject all pending", callback_data=f"adm_bulk_reject_{pid}")],
            [InlineKeyboardButton("✏️ Edit", callback_data=f"adm_edit_{pid}")],
            [InlineKeyboardButton(visibility, callback_data=f"adm_vis_{pid}")],
            [InlineKeyboardButton("📤 Export roster", callback_data=f"adm_export_{pid}")],
            [InlineKeyboardButton("⬅️ Back", callback_data="admin_programs")],
        ]
    )


def program_fields_kb(program_id: str):
    fields = [
        ("Title", "title"),
        ("Category", "category"),
        ("Duration", "duration"),
        ("Instructor", "instructor"),
        ("Description", "description"),
        ("Seats", "max_participants"),
    ]
    rows = [[InlineKeyboardButton(label, callback_data=f"adm_field_{field}")] for label, field in fields]
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data=f"adm_prog_{program_id}")])
    return InlineKeyboardMarkup(rows)


def roster_kb(registrations, program_id: str):
    rows = []
    for reg in registrations:
        rows.append(
            [
                InlineKeyboardButton(
                    f"#{reg.id} {reg.user_name or reg.user_id} · {reg.status.value}",
                    callback_data=f"adm_reg_{reg.id}",
                )
            ]
        )
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data=f"adm_prog_{program_id}")])
    return InlineKeyboardMarkup(rows)


def registration_actions_kb(reg):
    rows = []
    if reg.status == RegistrationStatus.PENDING:
        rows.append(
            [
                InlineKeyboardButton("✅ Accept", callback_data=f"adm_act_accept_{reg.id}"),
                InlineKeyboardButton("❌ Reject", callback_data=f"adm_act_reject_{reg.id}"),
            ]
        )
    elif reg.status == RegistrationStatus.ACCEPTED:
        rows.append([InlineKeyboardButton("🎟 Enroll", callback_data=f"adm_act_enroll_{reg.id}")])
    elif reg.status == RegistrationStatus.ENROLLED:
        rows.append([InlineKeyboardButton("🎓 Mark completed", callback_data=f"adm_act_complete_{reg.id}")])
    if reg.status in (RegistrationStatus.ACCEPTED, RegistrationStatus.ENROLLED) and not reg.payment_completed:
        rows.append([InlineKeyboardButton("💳 Record payment", callback_data=f"adm_pay_{reg.id}")])
    rows.append([InlineKeyboardButton("📝 Notes", callback_data=f"adm_notes_{reg.id}")])
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data=f"adm_roster_{reg.program_id}_all")])
    return InlineKeyboardMarkup(rows)


def payment_methods_kb(reg_id: int):
    rows = [
        [InlineKeyboardButton(label, callback_data=f"adm_paygo_{method}_{reg_id}")]
        for method, label in PAYMENT_METHODS.items()
    ]
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data=f"adm_reg_{reg_id}")])
    return InlineKeyboardMarkup(rows)


def user_list_kb(users):
    rows = [
        [InlineKeyboardButton(f"{u.display_name} ({u.user_id})", callback_data=f"adm_user_{u.user_id}")]
        for u in users
    ]
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data="admin_panel")])
    return InlineKeyboardMarkup(rows)


def user_moderation_kb(user_id: int):
    rows = [
        [InlineKeyboardButton(f"Role: {role.value}", callback_data=f"adm_role_{role.value}_{user_id}")]
        for role in Role
    ]
    rows.append(
        [
            InlineKeyboardButton(status.value, callback_data=f"adm_status_{status.value}_{user_id}")
            for status in (AccountStatus.ACTIVE, AccountStatus.SUSPENDED, AccountStatus.BANNED)
        ]
    )
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data="admin_users")])
    return InlineKeyboardMarkup(rows)
