"""
Standard childhood vaccination schedule.

The schedule is generated once, when a child is registered, from a fixed
ordered template. After that entries are only mutated in place: lazily
promoted from upcoming to overdue whenever the child is read, and moved
through pending_approval/completed by the request workflow.
"""
from datetime import date, timedelta
from typing import List, NamedTuple, Optional

from database.models import Child, ScheduleEntry, VaccineStatus
import config


class VaccineTemplate(NamedTuple):
    vaccine_name: str
    description: str
    age_in_days: int
    cost: str


VACCINATION_TEMPLATE: List[VaccineTemplate] = [
    VaccineTemplate("BCG", "Bacillus Calmette–Guérin vaccine against tuberculosis", 0, "Free"),
    VaccineTemplate("Hepatitis B (1st dose)", "First dose of Hepatitis B vaccine", 0, "Free / ₹100"),
    VaccineTemplate("OPV (Birth dose)", "Oral Polio Vaccine - Birth dose", 0, "Free"),
    VaccineTemplate("DTP (1st dose)", "Diphtheria, Tetanus, and Pertussis vaccine", 42, "Free / ₹250"),
    VaccineTemplate("Hib (1st dose)", "Haemophilus influenzae type b vaccine", 42, "₹400"),
    VaccineTemplate("Rotavirus (1st dose)", "Rotavirus vaccine", 42, "₹900"),
    VaccineTemplate("PCV (1st dose)", "Pneumococcal Conjugate Vaccine", 42, "₹1500–₹3000"),
    VaccineTemplate("IPV (1st dose)", "Inactivated Polio Vaccine", 42, "Free / ₹500"),
    VaccineTemplate("DTP (2nd dose)", "Second dose of DTP vaccine", 70, "Free / ₹250"),
    VaccineTemplate("Hib (2nd dose)", "Second dose of Hib vaccine", 70, "₹400"),
    VaccineTemplate("Rotavirus (2nd dose)", "Second dose of Rotavirus vaccine", 70, "₹900"),
    VaccineTemplate("PCV (2nd dose)", "Second dose of PCV vaccine", 70, "₹1500–₹3000"),
    VaccineTemplate("DTP (3rd dose)", "Third dose of DTP vaccine", 98, "Free / ₹250"),
    VaccineTemplate("Hib (3rd dose)", "Third dose of Hib vaccine", 98, "₹400"),
    VaccineTemplate("Rotavirus (3rd dose)", "Third dose of Rotavirus vaccine", 98, "₹900"),
    VaccineTemplate("PCV (3rd dose)", "Third dose of PCV vaccine", 98, "₹1500–₹3000"),
    VaccineTemplate("IPV (2nd dose)", "Second dose of IPV vaccine", 98, "Free / ₹500"),
    VaccineTemplate("MMR (1st dose)", "Measles, Mumps, and Rubella vaccine", 270, "₹70–₹200"),
    VaccineTemplate("Typhoid", "Typhoid vaccine", 270, "₹150–₹500"),
    VaccineTemplate("Hepatitis A (1st dose)", "First dose of Hepatitis A vaccine", 365, "₹900–₹1400"),
    VaccineTemplate("Varicella (1st dose)", "Chickenpox vaccine", 365, "₹1500–₹2000"),
    VaccineTemplate("MMR (2nd dose)", "Second dose of MMR vaccine", 450, "₹70–₹200"),
    VaccineTemplate("DTP Booster", "DTP Booster dose", 480, "Free / ₹250"),
]


def recompute_status(status: str, due_date: date, today: date, grace_days: Optional[int] = None) -> str:
    """
    Status an entry should have on ``today``.

    Only ``upcoming`` entries move, and only forward to ``overdue`` once the
    due date is more than ``grace_days`` behind. Completed and
    pending-approval entries are returned untouched.
    """
    if grace_days is None:
        grace_days = config.OVERDUE_GRACE_DAYS

    if status != VaccineStatus.UPCOMING.value:
        return status
    if due_date < today - timedelta(days=grace_days):
        return VaccineStatus.OVERDUE.value
    return status


def reverted_status(due_date: date, today: date) -> str:
    """Status an entry falls back to when its request is rejected or cancelled (no grace window)"""
    if due_date < today:
        return VaccineStatus.OVERDUE.value
    return VaccineStatus.UPCOMING.value


def generate_schedule(date_of_birth: date, today: Optional[date] = None) -> List[ScheduleEntry]:
    """Build the full ordered schedule for a child born on ``date_of_birth``"""
    today = today or date.today()
    schedule = []

    for position, template in enumerate(VACCINATION_TEMPLATE):
        due_date = date_of_birth + timedelta(days=template.age_in_days)
        schedule.append(ScheduleEntry(
            position=position,
            vaccine_name=template.vaccine_name,
            description=template.description,
            age_in_days=template.age_in_days,
            due_date=due_date,
            cost=template.cost,
            status=recompute_status(VaccineStatus.UPCOMING.value, due_date, today),
            parent_notes="",
            doctor_notes=""
        ))

    return schedule


def recompute_statuses(child: Child, today: Optional[date] = None) -> int:
    """
    Promote every overdue ``upcoming`` entry of ``child``.

    Idempotent and safe to call on every read. Returns how many entries
    changed so callers know whether a commit is needed.
    """
    today = today or date.today()
    changed = 0

    for entry in child.vaccination_schedule:
        new_status = recompute_status(entry.status, entry.due_date, today)
        if new_status != entry.status:
            entry.status = new_status
            changed += 1

    return changed


def shift_schedule(child: Child, date_of_birth: date, today: Optional[date] = None) -> int:
    """
    Move every due date to match a corrected date of birth.

    Entries keep their ids, notes and history. Waiting entries get their
    status re-derived from the new due date as if freshly generated;
    completed and pending-approval entries keep their status. Returns how
    many entries moved.
    """
    today = today or date.today()
    moved = 0

    for entry in child.vaccination_schedule:
        due_date = date_of_birth + timedelta(days=entry.age_in_days)
        if due_date != entry.due_date:
            entry.due_date = due_date
            moved += 1
        if entry.status in (VaccineStatus.UPCOMING.value, VaccineStatus.OVERDUE.value):
            entry.status = recompute_status(VaccineStatus.UPCOMING.value, due_date, today)

    return moved


def vaccination_summary(child: Child) -> dict:
    """Per-status counts; the four status counts always add up to ``total``"""
    summary = {
        "total": len(child.vaccination_schedule),
        VaccineStatus.COMPLETED.value: 0,
        VaccineStatus.PENDING_APPROVAL.value: 0,
        VaccineStatus.UPCOMING.value: 0,
        VaccineStatus.OVERDUE.value: 0,
    }

    for entry in child.vaccination_schedule:
        summary[entry.status] += 1

    return summary


def next_due(child: Child) -> Optional[ScheduleEntry]:
    """Earliest entry still waiting to be given"""
    waiting = [
        entry for entry in child.vaccination_schedule
        if entry.status in (VaccineStatus.UPCOMING.value, VaccineStatus.OVERDUE.value)
    ]
    return min(waiting, key=lambda entry: (entry.due_date, entry.position), default=None)
