from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from centerbot.config import Config
from centerbot.constants import Role
from centerbot.models import Principal, Program
from centerbot.services.capacity import CapacityTracker
from centerbot.services.delivery import ChatTransport
from centerbot.services.inbox import InboxService
from centerbot.services.notifications import NotificationDispatcher
from centerbot.services.profiles import ProfileService
from centerbot.services.programs import ProgramService
from centerbot.services.registrations import RegistrationService
from centerbot.storage.db import Database
from centerbot.storage.repositories.notifications import InboxRepository, NotificationLogRepository
from centerbot.storage.repositories.programs import ProgramRepository
from centerbot.storage.repositories.registrations import RegistrationRepository
from centerbot.storage.repositories.roles import RoleRepository
from centerbot.storage.repositories.users import UserRepository
from centerbot.utils.errors import NotificationDeliveryFailed

ADMIN_ID = 100
ADMIN_EMAIL = "admin@center.test"


@dataclass
class FakeUser:
    id: int
    username: str = ""
    full_name: str = ""


@dataclass
class FakeChat:
    id: int


@dataclass
class FakeMessage:
    chat_id: int
    text: str = ""
    chat: FakeChat = field(init=False)
    replies: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        self.chat = FakeChat(self.chat_id)

    async def reply_text(self, text: str, reply_markup: Any = None, **kwargs: Any):
        self.replies.append(
            {"text": text, "reply_markup": reply_markup, "kwargs": kwargs}
        )


@dataclass
class FakeCallbackQuery:
    data: str
    from_user: FakeUser
    message: FakeMessage
    answered: int = 0
    edits: list[dict[str, Any]] = field(default_factory=list)

    async def answer(self, **kwargs: Any):
        self.answered += 1

    async def edit_message_text(self, text: str, reply_markup: Any = None, **kwargs: Any):
        self.edits.append(
            {"text": text, "reply_markup": reply_markup, "kwargs": kwargs, "kind": "text"}
        )


@dataclass
class FakeUpdate:
    effective_user: FakeUser
    effective_chat: FakeChat
    message: Optional[FakeMessage] = None
    callback_query: Optional[FakeCallbackQuery] = None

    @property
    def effective_message(self) -> Optional[FakeMessage]:
        if self.message is not None:
            return self.message
        if self.callback_query is not None:
            return self.callback_query.message
        return None


class FakeBot:
    def __init__(self):
        self.sent_messages: list[dict[str, Any]] = []
        self.sent_documents: list[dict[str, Any]] = []

    async def send_message(self, chat_id: int, text: str, reply_markup: Any = None, **kwargs: Any):
        payload = {"chat_id": chat_id, "text": text, "reply_markup": reply_markup, "kwargs": kwargs}
        self.sent_messages.append(payload)
        return SimpleNamespace(message_id=len(self.sent_messages), chat=SimpleNamespace(id=chat_id))

    async def send_document(self, chat_id: int, document: Any, filename: str = "", caption: str = "", **kwargs: Any):
        payload = {
            "chat_id": chat_id,
            "document": document,
            "filename": filename,
            "caption": caption,
            "kwargs": kwargs,
        }
        self.sent_documents.append(payload)
        return SimpleNamespace(message_id=len(self.sent_documents), chat=SimpleNamespace(id=chat_id))


class FakeEmailTransport:
    """Records outgoing mail; ``fail`` makes every send raise like an SMTP outage."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.fail = False
        self.sent: list[dict[str, str]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def send(self, to_email: str, subject: str, body: str) -> None:
        if self.fail:
            raise NotificationDeliveryFailed(f"SMTP delivery to {to_email} failed: connection refused")
        self.sent.append({"to": to_email, "subject": subject, "body": body})

    def to(self, email: str) -> list[dict[str, str]]:
        return [m for m in self.sent if m["to"] == email]


class FakeApplication:
    def __init__(self, bot_data: dict[str, Any]):
        self.bot_data = bot_data


@dataclass
class FakeContext:
    application: FakeApplication
    bot: FakeBot
    user_data: dict[str, Any] = field(default_factory=dict)


def make_message_update(user_id: int, chat_id: Optional[int] = None, text: str = "", username: str = "", full_name: str = "") -> FakeUpdate:
    chat_id = chat_id if chat_id is not None else user_id
    user = FakeUser(id=user_id, username=username, full_name=full_name)
    chat = FakeChat(id=chat_id)
    msg = FakeMessage(chat_id=chat_id, text=text)
    return FakeUpdate(effective_user=user, effective_chat=chat, message=msg, callback_query=None)


def make_callback_update(
    user_id: int,
    data: str,
    chat_id: Optional[int] = None,
    username: str = "",
    full_name: str = "",
) -> FakeUpdate:
    chat_id = chat_id if chat_id is not None else user_id
    user = FakeUser(id=user_id, username=username, full_name=full_name)
    chat = FakeChat(id=chat_id)
    msg = FakeMessage(chat_id=chat_id, text="")
    cq = FakeCallbackQuery(data=data, from_user=user, message=msg)
    return FakeUpdate(effective_user=user, effective_chat=chat, message=None, callback_query=cq)


async def make_principal(
    services,
    user_id: int,
    role: Role = Role.USER,
    email: Optional[str] = None,
    full_name: str = "",
) -> Principal:
    await services.profile.ensure_user(user_id, f"user{user_id}", full_name or f"Student {user_id}")
    if email is None:
        email = f"student{user_id}@example.com"
    if email:
        await services.profile.update_email(user_id, email)
    await services.profile.role_repo.set_role(user_id, role)
    return await services.profile.resolve_principal(user_id)


@pytest.fixture
async def db(tmp_path) -> Database:
    db_path = tmp_path / "test.db"
    database = Database(str(db_path))
    await database.init_db()
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture
async def repos(db: Database):
    return SimpleNamespace(
        user=UserRepository(db),
        role=RoleRepository(db),
        program=ProgramRepository(db),
        reg=RegistrationRepository(db),
        log=NotificationLogRepository(db),
        inbox=InboxRepository(db),
    )


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def fake_email() -> FakeEmailTransport:
    return FakeEmailTransport()


@pytest.fixture
async def services(db: Database, repos, fake_bot: FakeBot, fake_email: FakeEmailTransport):
    capacity = CapacityTracker(db, repos.program, repos.reg)
    dispatcher = NotificationDispatcher(
        repos.log,
        repos.inbox,
        repos.user,
        email_transport=fake_email,
        chat_transport=ChatTransport(fake_bot),
    )
    return SimpleNamespace(
        capacity=capacity,
        dispatcher=dispatcher,
        profile=ProfileService(repos.user, repos.role),
        program=ProgramService(repos.program, capacity),
        registration=RegistrationService(
            db, repos.program, repos.reg, capacity, dispatcher, public_url="https://center.test"
        ),
        inbox=InboxService(repos.inbox),
    )


@pytest.fixture
async def bot_data(services, db: Database):
    cfg = Config(
        bot_token="TEST_TOKEN",
        admin_ids=[],
        database_path=":memory:",
        log_level="INFO",
        public_url="https://center.test",
    )
    return {
        "config": cfg,
        "db": db,
        "capacity": services.capacity,
        "dispatcher": services.dispatcher,
        "profile_service": services.profile,
        "program_service": services.program,
        "registration_service": services.registration,
        "inbox_service": services.inbox,
    }


@pytest.fixture
async def context(bot_data, fake_bot: FakeBot) -> FakeContext:
    return FakeContext(application=FakeApplication(bot_data), bot=fake_bot, user_data={})


@pytest.fixture
async def admin(services) -> Principal:
    return await make_principal(services, ADMIN_ID, Role.CENTER_ADMIN, email=ADMIN_EMAIL, full_name="Center Admin")


@pytest.fixture
async def student(services) -> Principal:
    return await make_principal(services, 1, full_name="Student One")


@pytest.fixture
async def program(services, admin) -> Program:
    return await services.program.create_program(
        admin,
        title="Web Development",
        max_participants=2,
        category="IT",
        duration="3 months",
        description="HTML, CSS and JavaScript",
    )
