from __future__ import annotations

import logging

from telegram.ext import Application, ApplicationBuilder

from .config import load_config
from .handlers import admin as admin_handlers
from .handlers import inbox as inbox_handlers
from .handlers import menu as menu_handlers
from .handlers import profile as profile_handlers
from .handlers import programs as programs_handlers
from .handlers import start as start_handlers
from .logging_config import setup_logging
from .services.capacity import CapacityTracker
from .services.delivery import ChatTransport, EmailTransport
from .services.inbox import InboxService
from .services.notifications import NotificationDispatcher
from .services.profiles import ProfileService
from .services.programs import ProgramService
from .services.registrations import RegistrationService
from .storage.db import Database
from .storage.repositories.notifications import InboxRepository, NotificationLogRepository
from .storage.repositories.programs import ProgramRepository
from .storage.repositories.registrations import RegistrationRepository
from .storage.repositories.roles import RoleRepository
from .storage.repositories.users import UserRepository
from .utils.errors import PermissionDenied, PreconditionFailed, StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)


async def on_startup(app: Application):
    logger.info("Bootstrapping bot...")
    config = app.bot_data["config"]
    db: Database = app.bot_data["db"]

    try:
        await db.init_db()
        logger.info("Database initialized at %s", db.path)
    except Exception:
        logger.exception("Failed to initialize database")
        raise

    profile_service: ProfileService = app.bot_data["profile_service"]
    for admin_id in config.admin_ids:
        await profile_service.bootstrap_admin(admin_id)

    counters = await app.bot_data["capacity"].reconcile_all()
    logger.info("Seat counters reconciled for %s programs", len(counters))

    # The chat channel needs the bot instance, which only exists after build().
    app.bot_data["dispatcher"].chat_transport = ChatTransport(app.bot)


async def on_shutdown(app: Application):
    db: Database = app.bot_data.get("db")
    if db:
        await db.close()
        logger.info("Database connection closed")
    logger.info("Bot shutdown complete")


async def on_error(update, context):
    err = context.error
    chat_id = getattr(getattr(update, "effective_chat", None), "id", None)
    if isinstance(err, (PermissionDenied, ValidationError)):
        logger.warning("Rejected request (chat_id=%s): %s", chat_id, err)
    else:
        logger.exception("Handler error (chat_id=%s): %s", chat_id, err, exc_info=err)
    if update and getattr(update, "effective_message", None):
        try:
            if isinstance(err, PermissionDenied):
                await update.effective_message.reply_text("⛔ You are not allowed to do that.")
            elif isinstance(err, (ValidationError, PreconditionFailed)):
                await update.effective_message.reply_text(f"⚠️ {err}")
            elif isinstance(err, StoreUnavailable):
                await update.effective_message.reply_text(
                    "⚠️ The service is temporarily unavailable, please try again in a minute."
                )
            else:
                await update.effective_message.reply_text(
                    "⚠️ Something went wrong. The error was logged, please try again."
                )
        except Exception:
            logger.exception("Failed to send error message to chat_id=%s", chat_id)


def build_application() -> Application:
    config = load_config()
    setup_logging(
        config.log_level,
        log_file=config.log_file,
        max_bytes=config.log_max_bytes,
        backup_count=config.log_backup_count,
    )
    db = Database(config.database_path)
    user_repo = UserRepository(db)
    role_repo = RoleRepository(db)
    program_repo = ProgramRepository(db)
    reg_repo = RegistrationRepository(db)
    log_repo = NotificationLogRepository(db)
    inbox_repo = InboxRepository(db)

    email_transport = EmailTransport.from_config(config)
    if not email_transport.is_configured:
        logger.warning("SMTP_HOST or EMAIL_FROM not set; email notifications will be logged as failed")

    capacity = CapacityTracker(db, program_repo, reg_repo)
    dispatcher = NotificationDispatcher(log_repo, inbox_repo, user_repo, email_transport=email_transport)
    profile_service = ProfileService(user_repo, role_repo, bootstrap_admin_ids=config.admin_ids)
    program_service = ProgramService(program_repo, capacity)
    registration_service = RegistrationService(
        db, program_repo, reg_repo, capacity, dispatcher, public_url=config.public_url
    )
    inbox_service = InboxService(inbox_repo)

    app = (
        ApplicationBuilder()
        .token(config.bot_token)
        .post_init(on_startup)
        .post_shutdown(on_shutdown)
        .build()
    )

    app.bot_data["config"] = config
    app.bot_data["db"] = db
    app.bot_data["capacity"] = capacity
    app.bot_data["dispatcher"] = dispatcher
    app.bot_data["profile_service"] = profile_service
    app.bot_data["program_service"] = program_service
    app.bot_data["registration_service"] = registration_service
    app.bot_data["inbox_service"] = inbox_service

    start_handlers.setup_handlers(app)
    profile_handlers.setup_handlers(app)
    programs_handlers.setup_handlers(app)
    inbox_handlers.setup_handlers(app)
    admin_handlers.setup_handlers(app)
    menu_handlers.setup_handlers(app)
    app.add_error_handler(on_error)
    logger.info(
        "Bot initialized (log_level=%s, db=%s, admins=%s, email=%s)",
        config.log_level,
        config.database_path,
        len(config.admin_ids),
        email_transport.is_configured,
    )
    return app


def main():
    application = build_application()
    logger.info("Starting polling...")
    application.run_polling()


if __name__ == "__main__":
    main()
