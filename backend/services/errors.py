"""
Domain errors raised by the portal core.

Every error carries a ``kind`` (what the caller should do about it) and a
``code`` (which rule was violated). The transport layer maps kinds to status
codes; nothing in here knows about HTTP.
"""
from typing import Optional


class PortalError(Exception):
    kind = "internal"
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PortalError):
    """Missing or malformed input. Nothing was written."""
    kind = "validation_error"
    code = "VALIDATION_ERROR"


class AccessDenied(PortalError):
    """Role or ownership mismatch. Nothing was written."""
    kind = "access_denied"
    code = "ACCESS_DENIED"


class NotFound(PortalError):
    kind = "not_found"
    code = "NOT_FOUND"


# ==================== INVALID STATE ====================

class InvalidState(PortalError):
    """The target entity is in a state that forbids the operation."""
    kind = "invalid_state"
    code = "INVALID_STATE"


class AlreadyCompleted(InvalidState):
    code = "ALREADY_COMPLETED"


class DuplicateRequest(InvalidState):
    code = "DUPLICATE_REQUEST"


class AlreadyReviewed(InvalidState):
    code = "ALREADY_REVIEWED"


class AlreadyProcessed(InvalidState):
    code = "ALREADY_PROCESSED"


class AlreadyInState(InvalidState):
    code = "ALREADY_IN_STATE"


class CannotDeactivateAdmin(InvalidState):
    code = "CANNOT_DEACTIVATE_ADMIN"


class InvalidRole(InvalidState):
    code = "INVALID_ROLE"


# ==================== AUTHENTICATION ====================

class Unauthenticated(PortalError):
    kind = "unauthenticated"
    code = "UNAUTHENTICATED"


class InvalidCredentials(Unauthenticated):
    code = "INVALID_CREDENTIALS"


class AccountDeactivated(Unauthenticated):
    code = "ACCOUNT_DEACTIVATED"


class PendingApproval(Unauthenticated):
    code = "PENDING_APPROVAL"


# ==================== TWO-WRITE COMMANDS ====================

class PartialWriteFailure(PortalError):
    """
    The request record was written but its schedule entry could not be.

    ``details`` names the request, the schedule entry and the stage that
    failed so an operator can reconcile the pair.
    """
    kind = "partial_write_failure"
    code = "PARTIAL_WRITE_FAILURE"
