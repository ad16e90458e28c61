"""
Dashboard counts.

Schedule counts and request counts are computed independently. They can
disagree if a resolution ever stopped between its two writes;
``find_schedule_divergence`` lists such pairs.
"""
from datetime import date, datetime, time

from sqlalchemy import and_, exists, func
from sqlalchemy.orm import Session, selectinload

from database.models import (
    Child, RequestStatus, ScheduleEntry, User, UserRole,
    VaccinationRequest, VaccineStatus
)
from services.children import refresh_statuses
from services.policy import Caller, Operation, is_owner_scoped, require


def _empty_breakdown(statuses) -> dict:
    return {status.value: 0 for status in statuses}


def schedule_status_breakdown(db: Session, parent_id: int = None) -> dict:
    query = db.query(ScheduleEntry.status, func.count(ScheduleEntry.id)).join(
        Child, Child.id == ScheduleEntry.child_id
    ).filter(Child.is_active == True)
    if parent_id is not None:
        query = query.filter(Child.parent_id == parent_id)

    breakdown = _empty_breakdown(VaccineStatus)
    for status, count in query.group_by(ScheduleEntry.status).all():
        breakdown[status] = count
    return breakdown


def request_status_breakdown(db: Session, parent_id: int = None) -> dict:
    query = db.query(VaccinationRequest.status, func.count(VaccinationRequest.id))
    if parent_id is not None:
        query = query.filter(VaccinationRequest.parent_id == parent_id)

    breakdown = _empty_breakdown(RequestStatus)
    for status, count in query.group_by(VaccinationRequest.status).all():
        breakdown[status] = count
    return breakdown


def vaccination_statistics(db: Session, caller: Caller) -> dict:
    """Own-scoped for parents, global for doctors and admins"""
    require(caller, Operation.VIEW_STATISTICS)

    parent_id = caller.user_id if is_owner_scoped(caller, Operation.VIEW_STATISTICS) else None

    children_query = db.query(Child).options(selectinload(Child.vaccination_schedule)).filter(Child.is_active == True)
    if parent_id is not None:
        children_query = children_query.filter(Child.parent_id == parent_id)
    children = children_query.all()
    refresh_statuses(db, children)

    schedule = schedule_status_breakdown(db, parent_id)
    requests = request_status_breakdown(db, parent_id)

    start_of_day = datetime.combine(date.today(), time.min)
    approved_today = db.query(func.count(VaccinationRequest.id)).filter(
        VaccinationRequest.status == RequestStatus.APPROVED.value,
        VaccinationRequest.reviewed_at >= start_of_day
    )
    if parent_id is not None:
        approved_today = approved_today.filter(VaccinationRequest.parent_id == parent_id)

    return {
        "scope": "own" if parent_id is not None else "global",
        "total_children": len(children),
        "total_vaccines": sum(schedule.values()),
        "vaccination_status_breakdown": schedule,
        "total_requests": sum(requests.values()),
        "request_status_breakdown": requests,
        "pending_requests": requests[RequestStatus.PENDING.value],
        "approved_today": approved_today.scalar(),
        "children_with_overdue": sum(
            1 for child in children
            if any(entry.status == VaccineStatus.OVERDUE.value for entry in child.vaccination_schedule)
        ),
    }


def admin_dashboard(db: Session, caller: Caller) -> dict:
    require(caller, Operation.VIEW_ADMIN_DASHBOARD)

    def active_users(*criteria):
        return db.query(func.count(User.id)).filter(User.is_active == True, *criteria).scalar()

    children = db.query(Child).options(selectinload(Child.vaccination_schedule)).filter(Child.is_active == True).all()
    refresh_statuses(db, children)

    requests = request_status_breakdown(db)
    recent = db.query(User).filter(User.is_active == True).order_by(
        User.created_at.desc(), User.id.desc()
    ).limit(10).all()

    return {
        "users": {
            "total": active_users(),
            "parents": active_users(User.role == UserRole.PARENT.value),
            "doctors": active_users(User.role == UserRole.DOCTOR.value),
            "pending_doctors": active_users(User.role == UserRole.DOCTOR.value, User.is_approved == False),
            "active_doctors": active_users(User.role == UserRole.DOCTOR.value, User.is_approved == True),
        },
        "children": {
            "total": len(children),
        },
        "vaccinations": {
            "approved": requests[RequestStatus.APPROVED.value],
            "pending": requests[RequestStatus.PENDING.value],
            "status_breakdown": schedule_status_breakdown(db),
        },
        "recent_registrations": [
            {
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "role": user.role,
                "created_at": user.created_at.isoformat() if user.created_at else None,
            }
            for user in recent
        ],
    }


def find_schedule_divergence(db: Session, caller: Caller) -> dict:
    """
    Request/entry pairs that disagree: approved requests whose entry is not
    completed, and completed entries with no approved request behind them.
    """
    require(caller, Operation.VIEW_ADMIN_DASHBOARD)

    approved_not_completed = db.query(VaccinationRequest, ScheduleEntry).join(
        ScheduleEntry, ScheduleEntry.id == VaccinationRequest.schedule_entry_id
    ).filter(
        VaccinationRequest.status == RequestStatus.APPROVED.value,
        ScheduleEntry.status != VaccineStatus.COMPLETED.value
    ).all()

    has_approved_request = exists().where(and_(
        VaccinationRequest.schedule_entry_id == ScheduleEntry.id,
        VaccinationRequest.status == RequestStatus.APPROVED.value
    ))
    completed_without_request = db.query(ScheduleEntry).filter(
        ScheduleEntry.status == VaccineStatus.COMPLETED.value,
        ~has_approved_request
    ).all()

    return {
        "approved_without_completed_entry": [
            {
                "request_id": request.id,
                "child_id": request.child_id,
                "schedule_entry_id": entry.id,
                "entry_status": entry.status,
            }
            for request, entry in approved_not_completed
        ],
        "completed_without_approved_request": [
            {
                "schedule_entry_id": entry.id,
                "child_id": entry.child_id,
                "vaccine_name": entry.vaccine_name,
            }
            for entry in completed_without_request
        ],
    }
