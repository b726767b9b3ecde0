"""Error types raised by the box store, the HTTP handlers and the event handlers."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


class _DetailError(Exception):
    """An exception that carries a detail message and renders it after a prefix."""

    prefix = "Error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.prefix}: {self.message}"


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreError(_DetailError):
    """Base class for failures reported by a box store."""

    prefix = "Store error"


class StoreNotFoundError(StoreError):
    prefix = "Not found"


class StoreValidationError(StoreError):
    prefix = "Validation error"


class StoreInternalError(StoreError):
    prefix = "Internal error"


class InvitationExpiredError(StoreError):
    """The invitation being acted upon has expired."""

    def __init__(self) -> None:
        super().__init__("Invitation has expired")

    def __str__(self) -> str:
        return self.message


class StoreAuthError(StoreError):
    prefix = "Authentication error"


class VersionConflictError(StoreError):
    prefix = "Version conflict"


# ---------------------------------------------------------------------------
# HTTP-facing errors
# ---------------------------------------------------------------------------


class AppError(_DetailError):
    """An error that maps onto an HTTP status and a JSON error body."""

    status = 500
    log_level = logging.WARNING

    def to_response(self) -> tuple[int, dict[str, str]]:
        """Return the HTTP status and the JSON body for this error."""
        log.log(self.log_level, "%s: %s", self.prefix, self.message)
        body = {"error": self.message}
        log.info("Responding with error: status=%d, message=%r", self.status, body)
        return self.status, body


class UnauthorizedError(AppError):
    prefix = "Unauthorized"
    status = 401


class NotFoundError(AppError):
    prefix = "Not found"
    status = 404


class BadRequestError(AppError):
    prefix = "Bad request"
    status = 400


class InternalServerError(AppError):
    prefix = "Internal server error"
    status = 500
    log_level = logging.ERROR


class SerializationError(AppError):
    prefix = "Serialization error"
    status = 400


class InvitationExpired(AppError):
    prefix = "Invitation expired"
    status = 422


def app_error_from_store(err: StoreError) -> AppError:
    """Translate a store failure into the HTTP error reported to clients."""
    match err:
        case StoreNotFoundError(message=msg):
            return NotFoundError(msg)
        case StoreValidationError(message=msg):
            return BadRequestError(msg)
        case StoreInternalError(message=msg):
            log.error("Store internal error: %s", msg)
            return InternalServerError(msg)
        case InvitationExpiredError():
            return InvitationExpired("Invitation has expired")
        case StoreAuthError(message=msg):
            return UnauthorizedError(msg)
        case VersionConflictError(message=msg):
            log.warning("Concurrent modification detected: %s", msg)
            return BadRequestError(
                f"Concurrent modification detected, please retry: {msg}"
            )
    return InternalServerError(str(err))


# ---------------------------------------------------------------------------
# Event-processing errors
# ---------------------------------------------------------------------------


class EventError(_DetailError):
    """Base class for failures while processing invitation events."""


class EventVersionConflict(EventError):
    prefix = "Version conflict"


class GuardianNotFound(EventError):
    prefix = "Guardian not found"


class BoxNotFound(EventError):
    prefix = "Box not found"


class EventInternalError(EventError):
    prefix = "Internal error"


class InvitationEventError(_DetailError):
    """Base class for problems found in an invitation event or its target box."""


class MissingFieldError(InvitationEventError):
    prefix = "Missing required field"


class BoxMissingError(InvitationEventError):
    prefix = "Box not found"


class UpdateError(InvitationEventError):
    prefix = "Failed to update box"


class InvitationStoreError(InvitationEventError):
    prefix = "Store error"


def event_error_from_store(err: StoreError) -> EventError:
    """Translate a store failure into an event-processing error."""
    match err:
        case VersionConflictError(message=msg):
            return EventVersionConflict(msg)
        case StoreNotFoundError(message=msg):
            return BoxNotFound(msg)
    return EventInternalError(str(err))


def event_error_from_invitation_error(err: InvitationEventError) -> EventError:
    """Translate an invitation event problem into an event-processing error."""
    match err:
        case BoxMissingError(message=msg):
            return BoxNotFound(msg)
        case MissingFieldError(message=msg):
            return EventInternalError(f"Missing required field: {msg}")
        case UpdateError(message=msg):
            return EventInternalError(f"Update error: {msg}")
        case InvitationStoreError(message=msg):
            return EventInternalError(f"Store error: {msg}")
    return EventInternalError(str(err))


def event_error_from_exception(err: BaseException) -> EventError:
    """Keep event errors as they are; wrap anything else as an internal error."""
    if isinstance(err, EventError):
        return type(err)(err.message)
    return EventInternalError(str(err))


def invitation_error_from_store(err: StoreError) -> InvitationEventError:
    """Translate a store failure into an invitation event problem."""
    match err:
        case StoreNotFoundError(message=msg):
            return BoxMissingError(msg)
        case VersionConflictError(message=msg):
            return UpdateError(f"Concurrent update conflict: {msg}")
    return InvitationStoreError(str(err))