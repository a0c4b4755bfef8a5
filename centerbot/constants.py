from __future__ import annotations

from enum import Enum, IntEnum

LEGACY_ADMIN_ROLE = "admin"


class Role(str, Enum):
    USER = "user"
    INSTRUCTOR = "instructor"
    CENTER_ADMIN = "center_admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, raw: str | None) -> "Role":
        # Older rows carry the three-level "admin" value.
        if raw == LEGACY_ADMIN_ROLE:
            return cls.CENTER_ADMIN
        try:
            return cls(raw)
        except ValueError:
            return cls.USER


ADMIN_ROLES = (Role.CENTER_ADMIN, Role.SUPER_ADMIN)


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"
    DELETED = "deleted"


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENROLLED = "enrolled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


INACTIVE_STATUSES = (RegistrationStatus.CANCELLED, RegistrationStatus.REJECTED)


class NotificationType(str, Enum):
    STATUS_CHANGE = "status_change"
    BOOKING_CREATED = "booking_created"
    BOOKING_UPDATED = "booking_updated"
    PAYMENT = "payment"
    SYSTEM = "system"
    ANNOUNCEMENT = "announcement"


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"
    NONE = "none"


PAYMENT_METHODS = {
    "mobile-money": "Mobile Money",
    "orange-money": "Orange Money",
    "credit-card": "Credit Card",
    "paypal": "PayPal",
}


class Conversation(IntEnum):
    INPUT_NAME = 1
    INPUT_EMAIL = 2
    INPUT_PHONE = 3
    WAITING_PROGRAM_TITLE = 10
    WAITING_PROGRAM_CATEGORY = 11
    WAITING_PROGRAM_DURATION = 12
    WAITING_PROGRAM_INSTRUCTOR = 13
    WAITING_PROGRAM_SEATS = 14
    EDIT_PROGRAM_VALUE = 15
    WAITING_REGISTRATION_NOTES = 20
