"""
Child records. Each child owns the vaccination schedule generated for it at
registration time.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, selectinload

import config
from database.models import BloodGroup, Child, Gender, RequestStatus, VaccinationRequest, VaccineStatus
from services.audit import record_audit
from services.errors import NotFound, ValidationError
from services.policy import Caller, Operation, is_owner_scoped, require, require_owner
from services.schedule import generate_schedule, recompute_statuses, shift_schedule
from services.serializers import serialize_child, serialize_request

logger = logging.getLogger(__name__)


class ChildCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: date
    gender: Gender
    blood_group: BloodGroup = BloodGroup.UNKNOWN
    birth_weight: Optional[float] = Field(None, gt=0, le=10, description="kg")
    birth_height: Optional[float] = Field(None, gt=0, le=100, description="cm")
    allergies: List[str] = []
    medical_conditions: List[str] = []
    special_notes: Optional[str] = None


class ChildUpdate(BaseModel):
    """Demographic and medical fields only. The schedule is never regenerated."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    blood_group: Optional[BloodGroup] = None
    birth_weight: Optional[float] = Field(None, gt=0, le=10)
    birth_height: Optional[float] = Field(None, gt=0, le=100)
    allergies: Optional[List[str]] = None
    medical_conditions: Optional[List[str]] = None
    special_notes: Optional[str] = None


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


def load_child(db: Session, child_id: int, active_only: bool = True) -> Child:
    query = db.query(Child).options(selectinload(Child.vaccination_schedule)).filter(Child.id == child_id)
    if active_only:
        query = query.filter(Child.is_active == True)

    child = query.first()
    if not child:
        raise NotFound("Child not found", details={"child_id": child_id})
    return child


def refresh_statuses(db: Session, children: List[Child]) -> None:
    """Lazy overdue promotion; commits only if something moved"""
    changed = sum(recompute_statuses(child) for child in children)
    if changed:
        db.commit()
        logger.debug("Promoted %s schedule entries to overdue", changed)


def create_child(db: Session, caller: Caller, data: ChildCreate, today: Optional[date] = None) -> dict:
    require(caller, Operation.CREATE_CHILD)

    today = today or date.today()
    if data.date_of_birth > today:
        raise ValidationError("Date of birth cannot be in the future", details={"field": "date_of_birth"})

    child = Child(
        parent_id=caller.user_id,
        parent_email=caller.email,
        name=data.name.strip(),
        date_of_birth=data.date_of_birth,
        gender=data.gender.value,
        blood_group=data.blood_group.value,
        birth_weight=data.birth_weight,
        birth_height=data.birth_height,
        allergies=data.allergies,
        medical_conditions=data.medical_conditions,
        special_notes=data.special_notes,
        is_active=True,
        created_at=datetime.now()
    )
    child.vaccination_schedule = generate_schedule(data.date_of_birth, today)

    db.add(child)
    db.flush()

    record_audit(db, caller.user_id, "CHILD_REGISTERED", "child", child.id, {
        "schedule_entries": len(child.vaccination_schedule)
    })
    db.commit()
    db.refresh(child)

    logger.info("Child %s registered by parent %s", child.id, caller.user_id)
    return serialize_child(child)


def list_children(db: Session, caller: Caller) -> list:
    """Parents see their own children, doctors and admins see every active child"""
    require(caller, Operation.LIST_CHILDREN)

    query = db.query(Child).options(selectinload(Child.vaccination_schedule)).filter(Child.is_active == True)
    if is_owner_scoped(caller, Operation.LIST_CHILDREN):
        query = query.filter(Child.parent_id == caller.user_id)

    children = query.order_by(Child.created_at.desc(), Child.id.desc()).all()
    refresh_statuses(db, children)

    return [serialize_child(child) for child in children]


def _requests_for(db: Session, child_id: int) -> list:
    requests = db.query(VaccinationRequest).filter(
        VaccinationRequest.child_id == child_id
    ).order_by(VaccinationRequest.requested_at.desc(), VaccinationRequest.id.desc()).all()
    return [serialize_request(request) for request in requests]


def get_child(db: Session, caller: Caller, child_id: int) -> dict:
    require(caller, Operation.READ_CHILD)

    child = load_child(db, child_id)
    require_owner(caller, Operation.READ_CHILD, child.parent_id)
    refresh_statuses(db, [child])

    data = serialize_child(child)
    data["vaccination_requests"] = _requests_for(db, child.id)
    return data


def _check_birth_date_change(db: Session, child: Child, date_of_birth: date) -> None:
    """A corrected birth date cannot come after a dose that was already given or reported"""
    given = [
        entry.administered_date for entry in child.vaccination_schedule
        if entry.status == VaccineStatus.COMPLETED.value and entry.administered_date
    ]
    reported = [
        request.requested_completion_date for request in db.query(VaccinationRequest).filter(
            VaccinationRequest.child_id == child.id,
            VaccinationRequest.status == RequestStatus.PENDING.value
        )
    ]
    earliest = min(given + reported, default=None)
    if earliest and date_of_birth > earliest:
        raise ValidationError(
            f"Date of birth cannot be after a recorded vaccination ({earliest.isoformat()})",
            details={"field": "date_of_birth"}
        )


def update_child(db: Session, caller: Caller, child_id: int, data: ChildUpdate) -> dict:
    """
    Demographic and medical fields only. A corrected date of birth moves the
    existing schedule entries in place; the schedule is never regenerated.
    """
    require(caller, Operation.UPDATE_CHILD)

    child = load_child(db, child_id)
    require_owner(caller, Operation.UPDATE_CHILD, child.parent_id)

    changes = data.model_dump(exclude_unset=True)
    for field in ("name", "date_of_birth", "gender"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be empty", details={"field": field})

    new_dob = changes.get("date_of_birth")
    if new_dob == child.date_of_birth:
        new_dob = None
    if new_dob:
        if new_dob > date.today():
            raise ValidationError("Date of birth cannot be in the future", details={"field": "date_of_birth"})
        _check_birth_date_change(db, child, new_dob)

    for field, value in changes.items():
        setattr(child, field, _enum_value(value))

    details = {"fields": sorted(changes)}
    if new_dob:
        details["entries_moved"] = shift_schedule(child, new_dob)
        due_dates = {entry.id: entry.due_date for entry in child.vaccination_schedule}
        pending = db.query(VaccinationRequest).filter(
            VaccinationRequest.child_id == child.id,
            VaccinationRequest.status == RequestStatus.PENDING.value
        ).all()
        for request in pending:
            # priority follows through the ORM hook
            request.scheduled_date = due_dates.get(request.schedule_entry_id, request.scheduled_date)

    record_audit(db, caller.user_id, "CHILD_UPDATED", "child", child.id, details)
    db.commit()
    db.refresh(child)

    if new_dob:
        logger.info("Child %s date of birth corrected; %s schedule entries moved", child.id, details["entries_moved"])
    return serialize_child(child)


def delete_child(db: Session, caller: Caller, child_id: int) -> dict:
    """Soft delete; the schedule and requests are kept"""
    require(caller, Operation.DELETE_CHILD)

    child = load_child(db, child_id)
    require_owner(caller, Operation.DELETE_CHILD, child.parent_id)

    child.is_active = False
    record_audit(db, caller.user_id, "CHILD_DEACTIVATED", "child", child.id)
    db.commit()

    logger.info("Child %s deactivated by user %s", child.id, caller.user_id)
    return {"id": child.id, "is_active": False}


def search_children(db: Session, caller: Caller, query: str) -> list:
    """Case-insensitive substring match on the child's name"""
    require(caller, Operation.SEARCH_CHILDREN)

    term = (query or "").strip()
    if len(term) < config.SEARCH_MIN_LENGTH:
        raise ValidationError(
            f"Search query must be at least {config.SEARCH_MIN_LENGTH} characters long",
            details={"field": "query"}
        )

    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    children = db.query(Child).options(selectinload(Child.vaccination_schedule)).filter(
        Child.name.ilike(f"%{escaped}%", escape="\\"),
        Child.is_active == True
    ).order_by(Child.name).limit(config.SEARCH_RESULT_LIMIT).all()

    refresh_statuses(db, children)
    return [serialize_child(child, include_schedule=False) for child in children]


def get_child_history(db: Session, caller: Caller, child_id: int) -> dict:
    """Full record for reviewers: child, summary and every request, newest first"""
    require(caller, Operation.VIEW_CHILD_HISTORY)

    child = load_child(db, child_id, active_only=False)
    refresh_statuses(db, [child])

    return {
        "child": serialize_child(child),
        "vaccination_requests": _requests_for(db, child.id),
    }
