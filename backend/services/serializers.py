from typing import Optional

from database.models import Child, ScheduleEntry, VaccinationRequest
from services.schedule import next_due, vaccination_summary


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_entry(entry: ScheduleEntry) -> dict:
    return {
        "id": entry.id,
        "position": entry.position,
        "vaccine_name": entry.vaccine_name,
        "description": entry.description,
        "age_in_days": entry.age_in_days,
        "due_date": _iso(entry.due_date),
        "cost": entry.cost,
        "status": entry.status,
        "administered_date": _iso(entry.administered_date),
        "approved_by": entry.approved_by,
        "approved_at": _iso(entry.approved_at),
        "rejected_by": entry.rejected_by,
        "rejection_reason": entry.rejection_reason,
        "parent_notes": entry.parent_notes,
        "doctor_notes": entry.doctor_notes,
        "requested_at": _iso(entry.requested_at),
    }


def serialize_child(child: Child, include_schedule: bool = True) -> dict:
    upcoming = next_due(child)
    data = {
        "id": child.id,
        "name": child.name,
        "date_of_birth": _iso(child.date_of_birth),
        "gender": child.gender,
        "parent_id": child.parent_id,
        "parent_email": child.parent_email,
        "blood_group": child.blood_group,
        "birth_weight": child.birth_weight,
        "birth_height": child.birth_height,
        "allergies": child.allergies or [],
        "medical_conditions": child.medical_conditions or [],
        "special_notes": child.special_notes,
        "is_active": child.is_active,
        "created_at": _iso(child.created_at),
        "vaccination_summary": vaccination_summary(child),
        "next_due": {
            "schedule_entry_id": upcoming.id,
            "vaccine_name": upcoming.vaccine_name,
            "due_date": _iso(upcoming.due_date),
            "status": upcoming.status,
        } if upcoming else None,
    }

    if include_schedule:
        data["vaccination_schedule"] = [serialize_entry(entry) for entry in child.vaccination_schedule]

    return data


def serialize_request(request: VaccinationRequest) -> dict:
    return {
        "id": request.id,
        "child_id": request.child_id,
        "child_name": request.child.name if request.child else None,
        "schedule_entry_id": request.schedule_entry_id,
        "parent_id": request.parent_id,
        "parent_email": request.parent_email,
        "vaccine_name": request.vaccine_name,
        "scheduled_date": _iso(request.scheduled_date),
        "requested_completion_date": _iso(request.requested_completion_date),
        "parent_notes": request.parent_notes,
        "attachments": request.attachments or [],
        "status": request.status,
        "priority": request.priority,
        "reviewed_by": request.reviewed_by,
        "doctor_notes": request.doctor_notes,
        "rejection_reason": request.rejection_reason,
        "hospital_name": request.hospital_name,
        "administered_by": request.administered_by,
        "batch_number": request.batch_number,
        "manufacturer": request.manufacturer,
        "requested_at": _iso(request.requested_at),
        "reviewed_at": _iso(request.reviewed_at),
        "completed_at": _iso(request.completed_at),
        "cancelled_at": _iso(request.cancelled_at),
    }
