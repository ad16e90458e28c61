import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from database.connection import get_db
from pydantic import BaseModel, Field
from typing import Optional
from api.auth import get_current_user
from services import identity, statistics
from services.policy import Caller

router = APIRouter(prefix="/api/admin", tags=["Admin"])

# ==================== PYDANTIC MODELS ====================

class ApproveDoctorRequest(BaseModel):
    approval_notes: Optional[str] = None

class RejectDoctorRequest(BaseModel):
    rejection_reason: str = Field(..., description="Shown to the doctor")

class AccountStatusRequest(BaseModel):
    reason: Optional[str] = None

# ==================== DOCTOR MANAGEMENT ====================

@router.get("/doctors/pending", response_model=dict)
async def get_pending_doctors(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """🩺 Doctor accounts waiting for approval"""
    doctors = identity.list_pending_doctors(db, caller)
    return {"status": "success", "data": doctors, "count": len(doctors)}

@router.get("/doctors", response_model=dict)
async def get_all_doctors(
    status: Optional[str] = Query(None, description="approved | pending"),
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    doctors = identity.list_doctors(db, caller, status=status)
    return {"status": "success", "data": doctors, "count": len(doctors)}

@router.put("/doctors/{doctor_id}/approve", response_model=dict)
async def approve_doctor_account(
    doctor_id: int,
    request: Optional[ApproveDoctorRequest] = None,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """✅ Approve a doctor so they can log in"""
    doctor = identity.approve_doctor(
        db, caller, doctor_id,
        notes=request.approval_notes if request else None
    )
    return {
        "status": "success",
        "message": "Doctor account approved successfully",
        "data": doctor
    }

@router.put("/doctors/{doctor_id}/reject", response_model=dict)
async def reject_doctor_account(
    doctor_id: int,
    request: RejectDoctorRequest,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """❌ Reject a doctor registration (the account is deactivated)"""
    doctor = identity.reject_doctor(db, caller, doctor_id, request.rejection_reason)
    return {
        "status": "success",
        "message": "Doctor account rejected and deactivated",
        "data": doctor
    }

# ==================== USER MANAGEMENT ====================

@router.put("/users/{user_id}/deactivate", response_model=dict)
async def deactivate_user(
    user_id: int,
    request: Optional[AccountStatusRequest] = None,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = identity.deactivate_user(db, caller, user_id, reason=request.reason if request else None)
    return {
        "status": "success",
        "message": "User account deactivated successfully",
        "data": user
    }

@router.put("/users/{user_id}/reactivate", response_model=dict)
async def reactivate_user(
    user_id: int,
    request: Optional[AccountStatusRequest] = None,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = identity.reactivate_user(db, caller, user_id, reason=request.reason if request else None)
    return {
        "status": "success",
        "message": "User account reactivated successfully",
        "data": user
    }

# ==================== DASHBOARD ====================

@router.get("/dashboard/stats", response_model=dict)
async def get_admin_stats(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """📊 Admin dashboard counts"""
    return {"status": "success", "data": statistics.admin_dashboard(db, caller)}

@router.get("/divergence", response_model=dict)
async def get_schedule_divergence(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """🔍 Request/schedule pairs that disagree and need reconciling"""
    return {"status": "success", "data": statistics.find_schedule_divergence(db, caller)}
