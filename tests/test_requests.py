from datetime import date, timedelta

import pytest

from database.models import (
    Notification, RequestStatus, ScheduleEntry, VaccinationRequest,
    VaccineStatus, classify_priority
)
from services import children, requests
from services.errors import (
    AccessDenied, AlreadyCompleted, AlreadyReviewed, DuplicateRequest,
    NotFound, PartialWriteFailure, ValidationError
)

TODAY = date.today()


def first_entry(child: dict) -> dict:
    return child["vaccination_schedule"][0]


def submit(db, parent, child, entry=None, days_ago=1, notes="Given at PHC"):
    entry = entry or first_entry(child)
    return requests.request_completion(
        db, parent,
        child_id=child["id"],
        schedule_entry_id=entry["id"],
        requested_completion_date=TODAY - timedelta(days=days_ago),
        parent_notes=notes
    )


def entry_status(db, entry_id):
    db.expire_all()
    return db.query(ScheduleEntry).filter(ScheduleEntry.id == entry_id).one().status


# ==================== END TO END ====================

def test_request_then_approve_completes_entry(db, parent, doctor, make_child):
    child = make_child(parent, days_old=90)
    entry = first_entry(child)
    assert entry["age_in_days"] == 0
    assert entry["due_date"] == child["date_of_birth"]
    assert entry["status"] == "overdue"

    request = submit(db, parent, child, days_ago=80)
    assert request["status"] == "pending"
    assert request["scheduled_date"] == entry["due_date"]
    assert entry_status(db, entry["id"]) == VaccineStatus.PENDING_APPROVAL.value

    approved = requests.approve_request(db, doctor, request["id"], doctor_notes="Card verified")

    assert approved["status"] == "approved"
    assert approved["reviewed_by"] == doctor.user_id
    stored = db.query(ScheduleEntry).filter(ScheduleEntry.id == entry["id"]).one()
    assert stored.status == VaccineStatus.COMPLETED.value
    assert stored.administered_date == TODAY - timedelta(days=80)
    assert stored.approved_by == doctor.user_id
    assert stored.doctor_notes == "Card verified"


def test_approve_with_explicit_administered_date_and_details(db, parent, admin, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)

    approved = requests.approve_request(
        db, admin, request["id"],
        administered_date=TODAY - timedelta(days=3),
        hospital_name="City Hospital",
        batch_number="B-42"
    )

    assert approved["hospital_name"] == "City Hospital"
    assert approved["batch_number"] == "B-42"
    stored = db.query(ScheduleEntry).filter(ScheduleEntry.id == first_entry(child)["id"]).one()
    assert stored.administered_date == TODAY - timedelta(days=3)


def test_approve_rejects_administered_date_before_birth(db, parent, doctor, make_child):
    child = make_child(parent, days_old=30)
    request = submit(db, parent, child)
    dob = date.fromisoformat(child["date_of_birth"])

    with pytest.raises(ValidationError) as exc:
        requests.approve_request(db, doctor, request["id"], administered_date=dob - timedelta(days=400))

    assert exc.value.details["field"] == "administered_date"
    db.expire_all()
    stored = db.query(VaccinationRequest).filter(VaccinationRequest.id == request["id"]).one()
    assert stored.status == RequestStatus.PENDING.value
    assert entry_status(db, first_entry(child)["id"]) == VaccineStatus.PENDING_APPROVAL.value


def test_parent_is_notified_on_resolution(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    requests.approve_request(db, doctor, request["id"])

    notes = db.query(Notification).filter(Notification.user_id == parent.user_id).all()
    assert [n.related_entity_id for n in notes] == [str(request["id"])]


# ==================== SUBMISSION RULES ====================

def test_second_request_for_same_entry_is_duplicate(db, parent, make_child):
    child = make_child(parent)
    submit(db, parent, child)

    with pytest.raises(DuplicateRequest):
        submit(db, parent, child)
    assert db.query(VaccinationRequest).count() == 1


def test_completed_entry_cannot_be_requested_again(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    requests.approve_request(db, doctor, request["id"])

    with pytest.raises(AlreadyCompleted):
        submit(db, parent, child)


def test_parent_cannot_request_for_someone_elses_child(db, make_parent, make_child):
    owner = make_parent()
    stranger = make_parent()
    child = make_child(owner)

    with pytest.raises(AccessDenied):
        submit(db, stranger, child)
    assert entry_status(db, first_entry(child)["id"]) == "overdue"


def test_doctor_cannot_submit_requests(db, parent, doctor, make_child):
    child = make_child(parent)
    with pytest.raises(AccessDenied):
        submit(db, doctor, child)


def test_unknown_entry_is_not_found(db, parent, make_child, make_parent):
    child = make_child(parent)
    other = make_child(make_parent(), name="Other")

    with pytest.raises(NotFound):
        submit(db, parent, child, entry={"id": 999999})
    # an entry that exists but belongs to another child
    with pytest.raises(NotFound):
        submit(db, parent, child, entry=first_entry(other))


def test_administered_date_cannot_be_in_the_future(db, parent, make_child):
    child = make_child(parent)
    with pytest.raises(ValidationError):
        submit(db, parent, child, days_ago=-2)


# ==================== REVIEW RULES ====================

def test_approve_then_reject_is_already_reviewed(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    requests.approve_request(db, doctor, request["id"])

    with pytest.raises(AlreadyReviewed):
        requests.reject_request(db, doctor, request["id"], "changed my mind")

    stored = db.query(VaccinationRequest).filter(VaccinationRequest.id == request["id"]).one()
    assert stored.status == RequestStatus.APPROVED.value


def test_reject_reverts_past_due_entry_to_overdue(db, parent, doctor, make_child):
    child = make_child(parent, days_old=90)
    request = submit(db, parent, child)

    rejected = requests.reject_request(db, doctor, request["id"], "No vaccination card", doctor_notes="Upload card")

    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "No vaccination card"
    stored = db.query(ScheduleEntry).filter(ScheduleEntry.id == first_entry(child)["id"]).one()
    assert stored.status == VaccineStatus.OVERDUE.value
    assert stored.rejection_reason == "No vaccination card"
    assert stored.rejected_by == doctor.user_id


def test_reject_reverts_future_entry_to_upcoming(db, parent, doctor, make_child):
    child = make_child(parent, days_old=10)
    future_entry = next(e for e in child["vaccination_schedule"] if e["age_in_days"] == 42)
    request = submit(db, parent, child, entry=future_entry)

    requests.reject_request(db, doctor, request["id"], "Too early")

    assert entry_status(db, future_entry["id"]) == VaccineStatus.UPCOMING.value


def test_rejected_entry_can_be_requested_again(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    requests.reject_request(db, doctor, request["id"], "blurry photo")

    again = submit(db, parent, child)
    assert again["status"] == "pending"


def test_reject_requires_reason(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)

    with pytest.raises(ValidationError):
        requests.reject_request(db, doctor, request["id"], "")
    assert entry_status(db, first_entry(child)["id"]) == VaccineStatus.PENDING_APPROVAL.value


def test_parents_cannot_review(db, parent, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)

    with pytest.raises(AccessDenied):
        requests.approve_request(db, parent, request["id"])
    assert entry_status(db, first_entry(child)["id"]) == VaccineStatus.PENDING_APPROVAL.value


def test_review_of_unknown_request(db, doctor):
    with pytest.raises(NotFound):
        requests.approve_request(db, doctor, 4242)


# ==================== CANCELLATION ====================

def test_parent_cancels_pending_request(db, parent, make_child):
    child = make_child(parent, days_old=90)
    request = submit(db, parent, child)

    cancelled = requests.cancel_request(db, parent, request["id"])

    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_at"] is not None
    assert entry_status(db, first_entry(child)["id"]) == VaccineStatus.OVERDUE.value


def test_only_the_requesting_parent_can_cancel(db, make_parent, make_child):
    owner = make_parent()
    child = make_child(owner)
    request = submit(db, owner, child)

    with pytest.raises(AccessDenied):
        requests.cancel_request(db, make_parent(), request["id"])


def test_cancelled_request_is_terminal(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    requests.cancel_request(db, parent, request["id"])

    with pytest.raises(AlreadyReviewed):
        requests.approve_request(db, doctor, request["id"])


# ==================== TWO-WRITE CONSISTENCY ====================

def test_failed_entry_write_is_reported_and_rolled_back(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    entry_id = first_entry(child)["id"]

    # Someone changed the entry behind the request's back
    db.query(ScheduleEntry).filter(ScheduleEntry.id == entry_id).update({"status": "upcoming"})
    db.commit()

    with pytest.raises(PartialWriteFailure) as exc:
        requests.approve_request(db, doctor, request["id"])

    assert exc.value.details["request_id"] == request["id"]
    assert exc.value.details["schedule_entry_id"] == entry_id
    assert exc.value.details["stage"] == "schedule_entry"
    db.expire_all()
    stored = db.query(VaccinationRequest).filter(VaccinationRequest.id == request["id"]).one()
    assert stored.status == RequestStatus.PENDING.value
    assert entry_status(db, entry_id) == "upcoming"


def test_completed_entries_and_approved_requests_match(db, parent, doctor, make_child):
    child = make_child(parent, days_old=200)
    schedule = child["vaccination_schedule"]
    for entry in schedule[:4]:
        submit(db, parent, child, entry=entry)
    pending = requests.list_pending_requests(db, doctor)
    requests.approve_request(db, doctor, pending[0]["id"])
    requests.approve_request(db, doctor, pending[1]["id"])
    requests.reject_request(db, doctor, pending[2]["id"], "wrong dose")

    db.expire_all()
    completed = {
        e.id for e in db.query(ScheduleEntry).filter(ScheduleEntry.status == VaccineStatus.COMPLETED.value)
    }
    approved = {
        r.schedule_entry_id for r in db.query(VaccinationRequest).filter(
            VaccinationRequest.status == RequestStatus.APPROVED.value
        )
    }
    assert completed == approved
    assert len(completed) == 2


# ==================== PRIORITY ====================

@pytest.mark.parametrize("days_late,expected", [
    (35, "overdue"),
    (31, "overdue"),
    (30, "urgent"),
    (10, "urgent"),
    (8, "urgent"),
    (7, "normal"),
    (3, "normal"),
    (0, "normal"),
])
def test_classify_priority(days_late, expected):
    assert classify_priority(TODAY - timedelta(days=days_late), TODAY) == expected


@pytest.mark.parametrize("days_old,expected", [(35, "overdue"), (10, "urgent"), (3, "normal")])
def test_priority_assigned_on_submission(db, parent, make_child, days_old, expected):
    child = make_child(parent, days_old=days_old)
    request = submit(db, parent, child, days_ago=0)
    assert request["priority"] == expected


def test_priority_is_frozen_once_resolved(db, parent, doctor, make_child):
    child = make_child(parent, days_old=3)
    request = submit(db, parent, child, days_ago=0)
    requests.approve_request(db, doctor, request["id"])

    stored = db.query(VaccinationRequest).filter(VaccinationRequest.id == request["id"]).one()
    stored.scheduled_date = TODAY - timedelta(days=60)
    stored.doctor_notes = "late edit"
    db.commit()
    db.refresh(stored)

    assert stored.priority == "normal"


def test_pending_priority_follows_the_clock(db, parent, make_child):
    child = make_child(parent, days_old=3)
    request = submit(db, parent, child, days_ago=0)

    stored = db.query(VaccinationRequest).filter(VaccinationRequest.id == request["id"]).one()
    stored.scheduled_date = TODAY - timedelta(days=60)
    db.commit()
    db.refresh(stored)

    assert stored.priority == "overdue"


# ==================== LISTING ====================

def test_pending_queue_orders_by_priority_then_age(db, make_parent, doctor, make_child):
    parent = make_parent()
    normal = submit(db, parent, make_child(parent, days_old=2, name="Newborn"), days_ago=0)
    urgent = submit(db, parent, make_child(parent, days_old=12, name="Twelve"), days_ago=0)
    overdue_old = submit(db, parent, make_child(parent, days_old=60, name="Sixty"), days_ago=0)
    overdue_new = submit(db, parent, make_child(parent, days_old=45, name="FortyFive"), days_ago=0)

    queue = requests.list_pending_requests(db, doctor)

    assert [r["id"] for r in queue] == [overdue_old["id"], overdue_new["id"], urgent["id"], normal["id"]]


def test_resolved_requests_leave_the_queue(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)
    requests.approve_request(db, doctor, request["id"])

    assert requests.list_pending_requests(db, doctor) == []


def test_list_requests_filters_and_paginates(db, parent, doctor, make_child):
    child = make_child(parent, days_old=200)
    for entry in child["vaccination_schedule"][:5]:
        submit(db, parent, child, entry=entry)
    first = requests.list_pending_requests(db, doctor)[0]
    requests.approve_request(db, doctor, first["id"])

    page = requests.list_requests(db, doctor, status="pending", page=2, limit=3)
    approved = requests.list_requests(db, doctor, status="approved")

    assert page["total"] == 4
    assert page["pages"] == 2
    assert len(page["items"]) == 1
    assert [r["id"] for r in approved["items"]] == [first["id"]]

    with pytest.raises(ValidationError):
        requests.list_requests(db, doctor, status="done")


def test_parent_sees_only_own_requests_newest_first(db, make_parent, make_child):
    mine = make_parent()
    theirs = make_parent()
    child = make_child(mine, days_old=200)
    first = submit(db, mine, child, entry=child["vaccination_schedule"][0])
    second = submit(db, mine, child, entry=child["vaccination_schedule"][1])
    other_child = make_child(theirs, name="Other")
    submit(db, theirs, other_child)

    listed = requests.list_parent_requests(db, mine)

    assert [r["id"] for r in listed] == [second["id"], first["id"]]


def test_parents_cannot_see_the_review_queue(db, parent):
    with pytest.raises(AccessDenied):
        requests.list_pending_requests(db, parent)


def test_child_history_includes_requests(db, parent, doctor, make_child):
    child = make_child(parent)
    request = submit(db, parent, child)

    history = children.get_child_history(db, doctor, child["id"])

    assert history["child"]["vaccination_summary"]["pending_approval"] == 1
    assert [r["id"] for r in history["vaccination_requests"]] == [request["id"]]
