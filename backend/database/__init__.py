# Database Package - Centralized imports
# Allows easy importing of models, connection utilities, and ORM objects

from .connection import (
    engine,
    Base,
    SessionLocal,
    get_db,
)

from .models import (
    # Enums
    UserRole,
    Gender,
    BloodGroup,
    VaccineStatus,
    RequestStatus,
    RequestPriority,

    # User & Auth Models
    User,
    AuditLog,
    Notification,

    # Child Models
    Child,
    ScheduleEntry,

    # Request Models
    VaccinationRequest,
    classify_priority,
)

__all__ = [
    # Connection
    "engine",
    "Base",
    "SessionLocal",
    "get_db",

    # Enums
    "UserRole",
    "Gender",
    "BloodGroup",
    "VaccineStatus",
    "RequestStatus",
    "RequestPriority",

    # User & Auth
    "User",
    "AuditLog",
    "Notification",

    # Children
    "Child",
    "ScheduleEntry",

    # Requests
    "VaccinationRequest",
    "classify_priority",
]
