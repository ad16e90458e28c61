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
from typing import List, Optional
from datetime import date
from api.auth import get_current_user
from services import children, requests, statistics
from services.policy import Caller

router = APIRouter(prefix="/api/vaccinations", tags=["Vaccinations"])

# ==================== PYDANTIC MODELS ====================

class CompletionRequest(BaseModel):
    """Parent reports that a scheduled dose was given"""
    child_id: int
    schedule_entry_id: int
    administered_date: date = Field(..., description="When the dose was actually given")
    parent_notes: Optional[str] = Field(None, max_length=1000)
    proof_document: Optional[str] = Field(None, description="URL of an uploaded card/receipt")

class ApproveRequest(BaseModel):
    doctor_notes: Optional[str] = None
    administered_date: Optional[date] = None
    hospital_name: Optional[str] = None
    administered_by: Optional[str] = None
    batch_number: Optional[str] = None
    manufacturer: Optional[str] = None

class RejectRequest(BaseModel):
    rejection_reason: str
    doctor_notes: Optional[str] = None

# ==================== PARENT ====================

@router.post("/request-completion", response_model=dict, status_code=201)
async def request_vaccine_completion(
    request: CompletionRequest,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """💉 Ask a doctor to confirm a dose"""
    data = requests.request_completion(
        db, caller,
        child_id=request.child_id,
        schedule_entry_id=request.schedule_entry_id,
        requested_completion_date=request.administered_date,
        parent_notes=request.parent_notes,
        attachments=[request.proof_document] if request.proof_document else []
    )
    return {
        "status": "success",
        "message": "Vaccination completion request submitted successfully",
        "data": data
    }

@router.get("/my-requests", response_model=dict)
async def get_my_requests(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    data = requests.list_parent_requests(db, caller)
    return {"status": "success", "data": data, "count": len(data)}

@router.put("/requests/{request_id}/cancel", response_model=dict)
async def cancel_vaccination_request(
    request_id: int,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    data = requests.cancel_request(db, caller, request_id)
    return {
        "status": "success",
        "message": "Vaccination request cancelled",
        "data": data
    }

# ==================== DOCTOR / ADMIN ====================

@router.get("/pending-requests", response_model=dict)
async def get_pending_requests(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """📋 Review queue: overdue first, then oldest first"""
    data = requests.list_pending_requests(db, caller)
    return {"status": "success", "data": data, "count": len(data)}

@router.get("/requests", response_model=dict)
async def get_vaccination_requests(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=requests.MAX_PAGE_SIZE),
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = requests.list_requests(db, caller, status=status, priority=priority, page=page, limit=limit)
    return {
        "status": "success",
        "data": result["items"],
        "pagination": {
            "current": result["page"],
            "pages": result["pages"],
            "total": result["total"]
        }
    }

@router.put("/approve/{request_id}", response_model=dict)
async def approve_vaccination_request(
    request_id: int,
    request: Optional[ApproveRequest] = None,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """✅ Approve: request -> approved, schedule entry -> completed"""
    body = request or ApproveRequest()
    data = requests.approve_request(db, caller, request_id, **body.model_dump())
    return {
        "status": "success",
        "message": "Vaccination request approved successfully",
        "data": data
    }

@router.put("/reject/{request_id}", response_model=dict)
async def reject_vaccination_request(
    request_id: int,
    request: RejectRequest,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """❌ Reject: schedule entry goes back to upcoming/overdue"""
    data = requests.reject_request(
        db, caller, request_id,
        rejection_reason=request.rejection_reason,
        doctor_notes=request.doctor_notes
    )
    return {
        "status": "success",
        "message": "Vaccination request rejected",
        "data": data
    }

@router.get("/search", response_model=dict)
async def search_children(
    query: str = Query(..., description="At least 2 characters"),
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """🔎 Find children by name"""
    data = children.search_children(db, caller, query)
    return {"status": "success", "data": data, "count": len(data)}

@router.get("/child-history/{child_id}", response_model=dict)
async def get_child_vaccination_history(
    child_id: int,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"status": "success", "data": children.get_child_history(db, caller, child_id)}

# ==================== STATISTICS ====================

@router.get("/statistics", response_model=dict)
async def get_vaccination_stats(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """📊 Own-scoped for parents, global for doctors and admins"""
    return {"status": "success", "data": statistics.vaccination_statistics(db, caller)}
