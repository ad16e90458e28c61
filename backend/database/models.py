"""
Vaccination Portal - Database Models
Users, children with their vaccination schedule, completion requests and audit trail
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean, Date, Float, JSON
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime, date
from .connection import Base
import enum


# JSONB on Postgres, plain JSON everywhere else (tests run on SQLite)
JSONType = JSON().with_variant(JSONB, "postgresql")


# ============================================
# ENUMS
# ============================================

class UserRole(str, enum.Enum):
    PARENT = "parent"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class BloodGroup(str, enum.Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"
    UNKNOWN = "Unknown"


class VaccineStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    PENDING_APPROVAL = "pending_approval"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RequestPriority(str, enum.Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    OVERDUE = "overdue"


# Sort weight for the review queue: most overdue first
PRIORITY_RANK = {
    RequestPriority.OVERDUE.value: 2,
    RequestPriority.URGENT.value: 1,
    RequestPriority.NORMAL.value: 0,
}


# ============================================
# USER MANAGEMENT
# ============================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)

    role = Column(String(20), nullable=False)  # parent | doctor | admin
    is_active = Column(Boolean, default=True)
    is_approved = Column(Boolean, default=True)  # doctors start unapproved

    # Doctor profile
    medical_license = Column(String(100))
    hospital_affiliation = Column(String(200))
    specialization = Column(String(100))
    years_of_experience = Column(Integer)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approval_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Parent profile
    phone = Column(String(20))
    address = Column(JSONType)  # {street, city, state, pincode}

    # Deactivation bookkeeping
    deactivation_reason = Column(Text, nullable=True)
    deactivated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    deactivated_at = Column(DateTime, nullable=True)
    reactivated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reactivated_at = Column(DateTime, nullable=True)

    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    children = relationship("Child", back_populates="parent", foreign_keys="Child.parent_id")
    notifications = relationship("Notification", back_populates="user")
    audit_logs = relationship("AuditLog", back_populates="user")


# ============================================
# CHILDREN & VACCINATION SCHEDULE
# ============================================

class Child(Base):
    __tablename__ = "children"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    parent_email = Column(String(100), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    gender = Column(String(10), nullable=False)

    blood_group = Column(String(10), default=BloodGroup.UNKNOWN.value)
    birth_weight = Column(Float)  # kg
    birth_height = Column(Float)  # cm
    allergies = Column(JSONType)
    medical_conditions = Column(JSONType)
    special_notes = Column(Text)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    parent = relationship("User", back_populates="children", foreign_keys=[parent_id])
    vaccination_schedule = relationship(
        "ScheduleEntry",
        back_populates="child",
        order_by="ScheduleEntry.position",
        cascade="all, delete-orphan"
    )
    requests = relationship("VaccinationRequest", back_populates="child")


class ScheduleEntry(Base):
    __tablename__ = "schedule_entries"

    id = Column(Integer, primary_key=True, index=True)
    child_id = Column(Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    vaccine_name = Column(String(100), nullable=False)
    description = Column(Text, default="")
    age_in_days = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    cost = Column(String(50), default="Free")

    status = Column(String(20), default=VaccineStatus.UPCOMING.value, index=True)
    administered_date = Column(Date, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    parent_notes = Column(Text, default="")
    doctor_notes = Column(Text, default="")
    requested_at = Column(DateTime, nullable=True)

    # Relationships
    child = relationship("Child", back_populates="vaccination_schedule")


# ============================================
# VACCINATION REQUESTS
# ============================================

class VaccinationRequest(Base):
    __tablename__ = "vaccination_requests"

    id = Column(Integer, primary_key=True, index=True)
    child_id = Column(Integer, ForeignKey("children.id"), nullable=False, index=True)
    schedule_entry_id = Column(Integer, ForeignKey("schedule_entries.id"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    parent_email = Column(String(100), nullable=False, index=True)

    vaccine_name = Column(String(100), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    requested_completion_date = Column(Date, nullable=False)

    parent_notes = Column(Text, default="")
    attachments = Column(JSONType)  # URLs to uploaded proof documents

    status = Column(String(20), default=RequestStatus.PENDING.value, index=True)
    priority = Column(String(20), default=RequestPriority.NORMAL.value, index=True)

    # Reviewer response
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    doctor_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Verification details entered on approval
    hospital_name = Column(String(200))
    administered_by = Column(String(100))
    batch_number = Column(String(100))
    manufacturer = Column(String(100))

    requested_at = Column(DateTime, default=datetime.now, index=True)
    reviewed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    child = relationship("Child", back_populates="requests")
    schedule_entry = relationship("ScheduleEntry")
    parent = relationship("User", foreign_keys=[parent_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])


def classify_priority(scheduled_date: date, today: date = None) -> str:
    """Priority from how many days past the scheduled date the request sits"""
    today = today or date.today()
    days_overdue = (today - scheduled_date).days

    if days_overdue > 30:
        return RequestPriority.OVERDUE.value
    if days_overdue > 7:
        return RequestPriority.URGENT.value
    return RequestPriority.NORMAL.value


@event.listens_for(VaccinationRequest, "before_insert")
@event.listens_for(VaccinationRequest, "before_update")
def refresh_request_priority(mapper, connection, target):
    # Resolved requests keep the priority they had when they were reviewed
    if target.status == RequestStatus.PENDING.value and target.scheduled_date:
        target.priority = classify_priority(target.scheduled_date)


# ============================================
# NOTIFICATIONS & AUDIT
# ============================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'))
    title = Column(String(200))
    message = Column(Text)
    is_read = Column(Boolean, default=False)
    notification_type = Column(String(50))
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    user = relationship("User", back_populates="notifications")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'))
    action = Column(String(100))
    entity_type = Column(String(50))
    entity_id = Column(String(50))
    details = Column(JSONType)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    user = relationship("User", back_populates="audit_logs")
