"""
Role capability matrix.

Every core operation calls ``require`` before touching the database, so a
caller outside the allowed roles is turned away with no side effects.
Ownership ("own child only") is checked separately by the operation itself
once the target has been loaded.
"""
import enum
from typing import Optional

from pydantic import BaseModel

from database.models import UserRole
from services.errors import AccessDenied


class Caller(BaseModel):
    """Authenticated identity every core operation receives"""
    user_id: int
    email: str
    role: UserRole


class Operation(str, enum.Enum):
    CREATE_CHILD = "create_child"
    READ_CHILD = "read_child"
    UPDATE_CHILD = "update_child"
    DELETE_CHILD = "delete_child"
    LIST_CHILDREN = "list_children"
    SEARCH_CHILDREN = "search_children"
    VIEW_CHILD_HISTORY = "view_child_history"
    REQUEST_COMPLETION = "request_completion"
    CANCEL_REQUEST = "cancel_request"
    LIST_OWN_REQUESTS = "list_own_requests"
    REVIEW_REQUEST = "review_request"
    LIST_REQUESTS = "list_requests"
    MANAGE_DOCTORS = "manage_doctors"
    MANAGE_USERS = "manage_users"
    VIEW_STATISTICS = "view_statistics"
    VIEW_ADMIN_DASHBOARD = "view_admin_dashboard"


PARENT = UserRole.PARENT
DOCTOR = UserRole.DOCTOR
ADMIN = UserRole.ADMIN

CAPABILITIES = {
    Operation.CREATE_CHILD: {PARENT},
    Operation.READ_CHILD: {PARENT, DOCTOR, ADMIN},
    Operation.UPDATE_CHILD: {PARENT, ADMIN},
    Operation.DELETE_CHILD: {PARENT, ADMIN},
    Operation.LIST_CHILDREN: {PARENT, DOCTOR, ADMIN},
    Operation.SEARCH_CHILDREN: {DOCTOR, ADMIN},
    Operation.VIEW_CHILD_HISTORY: {DOCTOR, ADMIN},
    Operation.REQUEST_COMPLETION: {PARENT},
    Operation.CANCEL_REQUEST: {PARENT},
    Operation.LIST_OWN_REQUESTS: {PARENT},
    Operation.REVIEW_REQUEST: {DOCTOR, ADMIN},
    Operation.LIST_REQUESTS: {DOCTOR, ADMIN},
    Operation.MANAGE_DOCTORS: {ADMIN},
    Operation.MANAGE_USERS: {ADMIN},
    Operation.VIEW_STATISTICS: {PARENT, DOCTOR, ADMIN},
    Operation.VIEW_ADMIN_DASHBOARD: {ADMIN},
}

# Operations where a parent is limited to records they own
OWNER_SCOPED = {
    Operation.READ_CHILD,
    Operation.UPDATE_CHILD,
    Operation.DELETE_CHILD,
    Operation.LIST_CHILDREN,
    Operation.REQUEST_COMPLETION,
    Operation.CANCEL_REQUEST,
    Operation.VIEW_STATISTICS,
}


def can(role: UserRole, operation: Operation) -> bool:
    return UserRole(role) in CAPABILITIES[operation]


def require(caller: Caller, operation: Operation) -> None:
    if not can(caller.role, operation):
        raise AccessDenied(
            f"Access denied. Role '{caller.role.value}' cannot perform {operation.value}.",
            details={"operation": operation.value, "role": caller.role.value}
        )


def is_owner_scoped(caller: Caller, operation: Operation) -> bool:
    """True when the caller only sees their own records for this operation"""
    return caller.role == PARENT and operation in OWNER_SCOPED


def require_owner(caller: Caller, operation: Operation, owner_id: Optional[int]) -> None:
    if is_owner_scoped(caller, operation) and owner_id != caller.user_id:
        raise AccessDenied(
            "Access denied. You can only access your own children.",
            details={"operation": operation.value}
        )
