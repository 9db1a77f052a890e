"""
Platform-wide exception hierarchy.

Services raise these; ``app.utils.errors.register_error_handlers`` maps
each type to an HTTP status and a sanitized JSON body once, so blueprints
never translate exceptions by hand.

Usage:
    from app.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="Incident", resource_id=42)
    raise InvalidTransitionError("incident", "unpublish", "pending")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is soft-deleted.

    Args:
        resource: Human-readable entity name (e.g. "Incident", "Record").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
        message: Optional client-facing message overriding "<resource> not found".
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.public_message = message or f"{resource} not found"
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the caller is authenticated but lacks the role or capability."""

    def __init__(self, message: str = "Access denied", required: str | None = None) -> None:
        self.required = required
        super().__init__(message)


class ValidationError(Exception):
    """Raised when input is missing or malformed.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a status change is illegal from the entity's current status."""

    def __init__(
        self,
        entity: str,
        action: str,
        current_status: str | None,
        reason: str | None = None,
    ) -> None:
        self.entity = entity
        self.action = action
        self.current_status = current_status
        self.reason = reason
        msg = reason or f"Cannot {action} {entity} with status: {current_status}"
        super().__init__(msg)


class StaleStateError(InvalidTransitionError):
    """The conditional UPDATE matched no row: another request changed the status first."""

    def __init__(self, entity: str, action: str, expected_status: str | None) -> None:
        super().__init__(
            entity, action, expected_status,
            reason=f"The {entity} was modified by another request; reload and try again",
        )


class InsufficientCreditsError(Exception):
    """Raised when a debit would take a project's balance below zero."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits: balance {balance}, required {required}")


class AlreadyAssignedError(Exception):
    """Raised when a verification request is no longer available to claim."""

    def __init__(self, message: str = "Request is already assigned") -> None:
        super().__init__(message)


class AtCapacityError(Exception):
    """Raised when a verifier already holds their maximum concurrent assignments."""

    def __init__(self, current: int, maximum: int) -> None:
        self.current = current
        self.maximum = maximum
        super().__init__("You have reached your maximum concurrent assignments")


class RecordLockedError(Exception):
    """Raised when a record's edit lock is held by another user."""

    def __init__(self, locked_by: int, expires_at=None) -> None:
        self.locked_by = locked_by
        self.expires_at = expires_at
        super().__init__("Record is locked by another user")


class RateLimitExceededError(Exception):
    """Raised when an AI-assisted operation exceeds the caller's tier window."""

    def __init__(self, window: str, limit: int, used: int) -> None:
        self.window = window
        self.limit = limit
        self.used = used
        super().__init__(f"AI request limit reached for this {window} ({used}/{limit})")


class QuotaExceededError(Exception):
    """Raised when a project's monthly verification quota is used up."""

    def __init__(self, quota: int) -> None:
        self.quota = quota
        super().__init__(f"Monthly verification quota of {quota} requests reached")


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
