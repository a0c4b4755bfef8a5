class CenterError(Exception):
    """Base class for domain errors."""


class ValidationError(CenterError):
    """Raised when input fails validation."""


class PreconditionFailed(CenterError):
    """Raised when the current state does not permit the requested action."""


class PermissionDenied(PreconditionFailed):
    """Raised when user has insufficient permissions."""


class StoreUnavailable(CenterError):
    """Raised when the database operation failed; the caller may retry."""


class StoreConflict(CenterError):
    """Raised when a batch guard or a uniqueness constraint rejected a write."""


class NotificationDeliveryFailed(CenterError):
    """Raised by transports; never propagated past the dispatcher."""
