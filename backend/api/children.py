import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from database.connection import get_db
from api.auth import get_current_user
from services import children
from services.children import ChildCreate, ChildUpdate
from services.policy import Caller

router = APIRouter(prefix="/api/children", tags=["Children"])


@router.get("", response_model=dict)
async def get_children(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """👶 Children visible to the caller, statuses refreshed"""
    data = children.list_children(db, caller)
    return {"status": "success", "data": data, "count": len(data)}


@router.post("", response_model=dict, status_code=201)
async def create_child(
    request: ChildCreate,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    📝 Register a child

    The full vaccination schedule is generated from the date of birth.
    """
    child = children.create_child(db, caller, request)
    return {
        "status": "success",
        "message": "Child registered successfully with vaccination schedule",
        "data": child
    }


@router.get("/{child_id}", response_model=dict)
async def get_child(
    child_id: int,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"status": "success", "data": children.get_child(db, caller, child_id)}


@router.put("/{child_id}", response_model=dict)
async def update_child(
    child_id: int,
    request: ChildUpdate,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    child = children.update_child(db, caller, child_id, request)
    return {
        "status": "success",
        "message": "Child updated successfully",
        "data": child
    }


@router.delete("/{child_id}", response_model=dict)
async def delete_child(
    child_id: int,
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    children.delete_child(db, caller, child_id)
    return {
        "status": "success",
        "message": "Child record deactivated successfully"
    }
