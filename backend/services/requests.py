"""
Vaccination request workflow.

A parent asks for a scheduled dose to be marked as given; a doctor or admin
approves or rejects; the parent may withdraw a request while it is pending.

    pending -> approved | rejected | cancelled     (all terminal)

Every resolution touches two rows: the request and the schedule entry it
points at. ``ResolveRequest`` owns both writes. The request is written first
and the entry second, inside one transaction; if the entry write cannot be
applied the whole resolution is rolled back and ``PartialWriteFailure`` is
raised with enough detail to find the pair.

The one-pending-request-per-entry rule is a read-then-write check on the
entry status with no unique constraint behind it, so two simultaneous
submissions for the same dose can both get through.
"""
import logging
import math
from datetime import date, datetime
from typing import Callable, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from database.models import (
    PRIORITY_RANK, RequestPriority, RequestStatus, ScheduleEntry,
    VaccinationRequest, VaccineStatus, classify_priority
)
from services.audit import record_audit, send_notification
from services.children import load_child
from services.errors import (
    AccessDenied, AlreadyCompleted, AlreadyReviewed, DuplicateRequest,
    NotFound, PartialWriteFailure, ValidationError
)
from services.policy import Caller, Operation, require, require_owner
from services.schedule import reverted_status
from services.serializers import serialize_request

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _queue_order():
    """Most overdue first, then oldest first within a priority tier"""
    rank = case(PRIORITY_RANK, value=VaccinationRequest.priority, else_=0)
    return (rank.desc(), VaccinationRequest.requested_at.asc(), VaccinationRequest.id.asc())


def _load_request(db: Session, request_id: int) -> VaccinationRequest:
    request = db.query(VaccinationRequest).options(
        joinedload(VaccinationRequest.child)
    ).filter(VaccinationRequest.id == request_id).first()

    if not request:
        raise NotFound("Vaccination request not found", details={"request_id": request_id})
    return request


# ==================== SUBMISSION ====================

def request_completion(
    db: Session,
    caller: Caller,
    child_id: int,
    schedule_entry_id: int,
    requested_completion_date: date,
    parent_notes: Optional[str] = None,
    attachments: Optional[List[str]] = None
) -> dict:
    """Parent asks for one schedule entry to be marked as administered"""
    require(caller, Operation.REQUEST_COMPLETION)

    child = load_child(db, child_id)
    require_owner(caller, Operation.REQUEST_COMPLETION, child.parent_id)

    entry = next((e for e in child.vaccination_schedule if e.id == schedule_entry_id), None)
    if entry is None:
        raise NotFound(
            "Vaccine not found in schedule",
            details={"child_id": child_id, "schedule_entry_id": schedule_entry_id}
        )

    if requested_completion_date is None:
        raise ValidationError("Administered date is required", details={"field": "requested_completion_date"})
    if requested_completion_date > date.today():
        raise ValidationError(
            "Administered date cannot be in the future",
            details={"field": "requested_completion_date"}
        )
    if requested_completion_date < child.date_of_birth:
        raise ValidationError(
            "Administered date cannot be before the date of birth",
            details={"field": "requested_completion_date"}
        )

    if entry.status == VaccineStatus.COMPLETED.value:
        raise AlreadyCompleted(
            "Vaccine is already marked as completed",
            details={"schedule_entry_id": entry.id}
        )
    if entry.status == VaccineStatus.PENDING_APPROVAL.value:
        raise DuplicateRequest(
            "A completion request is already pending for this vaccine",
            details={"schedule_entry_id": entry.id}
        )

    now = datetime.now()
    request = VaccinationRequest(
        child_id=child.id,
        schedule_entry_id=entry.id,
        parent_id=caller.user_id,
        parent_email=caller.email,
        vaccine_name=entry.vaccine_name,
        scheduled_date=entry.due_date,
        requested_completion_date=requested_completion_date,
        parent_notes=parent_notes or "",
        attachments=attachments or [],
        status=RequestStatus.PENDING.value,
        requested_at=now,
        created_at=now
    )
    db.add(request)
    db.flush()

    entry.status = VaccineStatus.PENDING_APPROVAL.value
    entry.requested_at = now
    entry.parent_notes = parent_notes or ""

    record_audit(db, caller.user_id, "VACCINATION_REQUESTED", "vaccination_request", request.id, {
        "child_id": child.id,
        "schedule_entry_id": entry.id,
        "vaccine_name": entry.vaccine_name,
    })
    db.commit()
    db.refresh(request)

    logger.info(
        "Completion request %s submitted for child %s entry %s (priority %s)",
        request.id, child.id, entry.id, request.priority
    )
    return serialize_request(request)


# ==================== RESOLUTION ====================

class ResolveRequest:
    """
    Moves one pending request to a terminal state together with its schedule
    entry.

    Usage::

        command = ResolveRequest(db, request_id)
        command.ensure_pending()
        command.commit(request_changes, update_entry, actor_id, "ACTION")
    """

    def __init__(self, db: Session, request_id: int):
        self.db = db
        self.request = _load_request(db, request_id)

    def ensure_pending(self) -> None:
        if self.request.status != RequestStatus.PENDING.value:
            raise AlreadyReviewed(
                "Request has already been reviewed",
                details={"request_id": self.request.id, "status": self.request.status}
            )

    def commit(
        self,
        request_changes: dict,
        update_entry: Callable[[ScheduleEntry], None],
        actor_id: int,
        action: str,
        notification: Optional[dict] = None
    ) -> VaccinationRequest:
        db = self.db
        request = self.request
        request_id = request.id
        entry_id = request.schedule_entry_id
        child_id = request.child_id

        # First write: the request itself
        for field, value in request_changes.items():
            setattr(request, field, value)
        db.flush()

        # Second write: the schedule entry it points at
        try:
            entry = db.query(ScheduleEntry).filter(
                ScheduleEntry.id == entry_id,
                ScheduleEntry.child_id == child_id
            ).first()
            if entry is None:
                problem = "schedule entry no longer exists"
            elif entry.status != VaccineStatus.PENDING_APPROVAL.value:
                problem = f"schedule entry is '{entry.status}', expected 'pending_approval'"
            else:
                problem = None
                update_entry(entry)
                db.flush()
        except SQLAlchemyError as e:
            problem = f"database error: {e.__class__.__name__}"

        if problem:
            db.rollback()
            logger.error(
                "Resolution of request %s stopped after the request write: %s (child %s, entry %s)",
                request_id, problem, child_id, entry_id
            )
            raise PartialWriteFailure(
                f"Request {request_id} could not be resolved because its schedule entry "
                f"could not be updated ({problem}). No changes were saved.",
                details={
                    "request_id": request_id,
                    "schedule_entry_id": entry_id,
                    "child_id": child_id,
                    "stage": "schedule_entry",
                    "reason": problem,
                    "rolled_back": True,
                }
            )

        record_audit(db, actor_id, action, "vaccination_request", request_id, {
            "child_id": child_id,
            "schedule_entry_id": entry_id,
            "status": request.status,
        })
        if notification:
            send_notification(
                db=db,
                user_id=request.parent_id,
                notification_type="vaccination",
                related_entity_type="vaccination_request",
                related_entity_id=str(request_id),
                **notification
            )
        db.commit()
        db.refresh(request)
        return request


def approve_request(
    db: Session,
    caller: Caller,
    request_id: int,
    doctor_notes: Optional[str] = None,
    administered_date: Optional[date] = None,
    hospital_name: Optional[str] = None,
    administered_by: Optional[str] = None,
    batch_number: Optional[str] = None,
    manufacturer: Optional[str] = None
) -> dict:
    require(caller, Operation.REVIEW_REQUEST)

    if administered_date and administered_date > date.today():
        raise ValidationError("Administered date cannot be in the future", details={"field": "administered_date"})

    command = ResolveRequest(db, request_id)
    command.ensure_pending()

    now = datetime.now()
    given_on = administered_date or command.request.requested_completion_date
    if given_on < command.request.child.date_of_birth:
        raise ValidationError(
            "Administered date cannot be before the date of birth",
            details={"field": "administered_date"}
        )

    def complete_entry(entry: ScheduleEntry) -> None:
        entry.status = VaccineStatus.COMPLETED.value
        entry.administered_date = given_on
        entry.approved_by = caller.user_id
        entry.approved_at = now
        entry.doctor_notes = doctor_notes or ""
        entry.rejection_reason = None

    changes = {
        "status": RequestStatus.APPROVED.value,
        "reviewed_by": caller.user_id,
        "doctor_notes": doctor_notes,
        "reviewed_at": now,
        "completed_at": now,
    }
    for field, value in (
        ("hospital_name", hospital_name),
        ("administered_by", administered_by),
        ("batch_number", batch_number),
        ("manufacturer", manufacturer),
    ):
        if value:
            changes[field] = value

    request = command.commit(
        changes,
        complete_entry,
        actor_id=caller.user_id,
        action="VACCINATION_APPROVED",
        notification={
            "title": "Vaccination confirmed",
            "message": f"{command.request.vaccine_name} has been marked as completed.",
        }
    )

    logger.info("Request %s approved by %s", request.id, caller.user_id)
    return serialize_request(request)


def reject_request(
    db: Session,
    caller: Caller,
    request_id: int,
    rejection_reason: str,
    doctor_notes: Optional[str] = None
) -> dict:
    require(caller, Operation.REVIEW_REQUEST)

    if not rejection_reason or not rejection_reason.strip():
        raise ValidationError("Rejection reason is required", details={"field": "rejection_reason"})

    command = ResolveRequest(db, request_id)
    command.ensure_pending()

    today = date.today()

    def reopen_entry(entry: ScheduleEntry) -> None:
        entry.status = reverted_status(entry.due_date, today)
        entry.rejected_by = caller.user_id
        entry.rejection_reason = rejection_reason
        entry.doctor_notes = doctor_notes or ""

    request = command.commit(
        {
            "status": RequestStatus.REJECTED.value,
            "reviewed_by": caller.user_id,
            "rejection_reason": rejection_reason,
            "doctor_notes": doctor_notes,
            "reviewed_at": datetime.now(),
        },
        reopen_entry,
        actor_id=caller.user_id,
        action="VACCINATION_REJECTED",
        notification={
            "title": "Vaccination request rejected",
            "message": f"Your request for {command.request.vaccine_name} was rejected: {rejection_reason}",
        }
    )

    logger.info("Request %s rejected by %s", request.id, caller.user_id)
    return serialize_request(request)


def cancel_request(db: Session, caller: Caller, request_id: int) -> dict:
    """Parent withdraws their own pending request"""
    require(caller, Operation.CANCEL_REQUEST)

    command = ResolveRequest(db, request_id)
    if command.request.parent_id != caller.user_id:
        raise AccessDenied("Access denied. You can only cancel your own requests.")
    command.ensure_pending()

    today = date.today()

    def reopen_entry(entry: ScheduleEntry) -> None:
        entry.status = reverted_status(entry.due_date, today)
        entry.requested_at = None

    request = command.commit(
        {
            "status": RequestStatus.CANCELLED.value,
            "cancelled_at": datetime.now(),
        },
        reopen_entry,
        actor_id=caller.user_id,
        action="VACCINATION_REQUEST_CANCELLED"
    )

    logger.info("Request %s cancelled by parent %s", request.id, caller.user_id)
    return serialize_request(request)


# ==================== LISTING ====================

def refresh_pending_priorities(db: Session, today: Optional[date] = None) -> int:
    """Re-derive priority for every pending request; resolved ones are left alone"""
    today = today or date.today()
    changed = 0

    pending = db.query(VaccinationRequest).filter(
        VaccinationRequest.status == RequestStatus.PENDING.value
    ).all()
    for request in pending:
        priority = classify_priority(request.scheduled_date, today)
        if priority != request.priority:
            request.priority = priority
            changed += 1

    if changed:
        db.commit()
    return changed


def list_pending_requests(db: Session, caller: Caller) -> list:
    """Review queue for doctors and admins"""
    require(caller, Operation.LIST_REQUESTS)

    refresh_pending_priorities(db)

    requests = db.query(VaccinationRequest).options(
        joinedload(VaccinationRequest.child)
    ).filter(
        VaccinationRequest.status == RequestStatus.PENDING.value
    ).order_by(*_queue_order()).all()

    return [serialize_request(request) for request in requests]


def list_requests(
    db: Session,
    caller: Caller,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    page: int = 1,
    limit: int = 10
) -> dict:
    require(caller, Operation.LIST_REQUESTS)

    if status and status not in {s.value for s in RequestStatus}:
        raise ValidationError(f"Unknown status '{status}'", details={"field": "status"})
    if priority and priority not in {p.value for p in RequestPriority}:
        raise ValidationError(f"Unknown priority '{priority}'", details={"field": "priority"})
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(
            f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
            details={"field": "page" if page < 1 else "limit"}
        )

    refresh_pending_priorities(db)

    query = db.query(VaccinationRequest)
    if status:
        query = query.filter(VaccinationRequest.status == status)
    if priority:
        query = query.filter(VaccinationRequest.priority == priority)

    total = query.count()
    items = query.options(
        joinedload(VaccinationRequest.child)
    ).order_by(*_queue_order()).offset((page - 1) * limit).limit(limit).all()

    return {
        "items": [serialize_request(request) for request in items],
        "page": page,
        "pages": math.ceil(total / limit) if total else 0,
        "total": total,
    }


def list_parent_requests(db: Session, caller: Caller) -> list:
    require(caller, Operation.LIST_OWN_REQUESTS)

    requests = db.query(VaccinationRequest).options(
        joinedload(VaccinationRequest.child)
    ).filter(
        VaccinationRequest.parent_id == caller.user_id
    ).order_by(VaccinationRequest.requested_at.desc(), VaccinationRequest.id.desc()).all()

    return [serialize_request(request) for request in requests]
