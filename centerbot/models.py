from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .constants import (
    INACTIVE_STATUSES,
    AccountStatus,
    Channel,
    NotificationType,
    RegistrationStatus,
    Role,
)


def utcnow_str() -> str:
    return datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class User:
    user_id: int
    username: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    status: AccountStatus = AccountStatus.ACTIVE
    created_at: str = field(default_factory=utcnow_str)
    updated_at: str = field(default_factory=utcnow_str)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or (self.email.split("@")[0] if self.email else "User")


@dataclass
class Principal:
    """The authenticated actor behind a request, with its role read from the store."""

    user_id: int
    display_name: str = ""
    email: str = ""
    phone: str = ""
    role: Role = Role.USER
    status: AccountStatus = AccountStatus.ACTIVE


@dataclass
class Program:
    program_id: str
    title: str
    category: str = ""
    duration: str = ""
    instructor: str = ""
    max_participants: int = 0
    current_participants: int = 0
    description: str = ""
    is_visible: bool = True
    created_at: str = field(default_factory=utcnow_str)

    @property
    def free_seats(self) -> int:
        return max(0, self.max_participants - self.current_participants)

    @property
    def is_full(self) -> bool:
        return self.current_participants >= self.max_participants


@dataclass
class Registration:
    id: Optional[int]
    program_id: str
    user_id: int
    user_name: str = ""
    user_email: str = ""
    user_phone: Optional[str] = None
    status: RegistrationStatus = RegistrationStatus.PENDING
    applied_at: str = field(default_factory=utcnow_str)
    updated_at: str = field(default_factory=utcnow_str)
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[int] = None
    notes: str = ""
    payment_completed: bool = False
    payment_method: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES


@dataclass
class Notification:
    user_email: str
    message: str
    type: NotificationType = NotificationType.STATUS_CHANGE
    title: Optional[str] = None
    user_id: Optional[int] = None
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    sent_via: Channel = Channel.BOTH
    action_url: Optional[str] = None
    related_program_id: Optional[str] = None
    related_program_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utcnow_str)


@dataclass
class InboxItem:
    id: Optional[int]
    user_id: int
    title: str
    message: str
    type: NotificationType = NotificationType.SYSTEM
    is_read: bool = False
    created_at: str = field(default_factory=utcnow_str)
    read_at: Optional[str] = None
