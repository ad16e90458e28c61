import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from database.connection import get_db
from pydantic import BaseModel, ConfigDict, Field, EmailStr, model_validator
from typing import Optional
from services import identity
from services.errors import Unauthenticated
from services.policy import Caller

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
security = HTTPBearer(auto_error=False)

# ==================== PYDANTIC MODELS ====================

class AddressPayload(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

class RegisterRequest(BaseModel):
    """Flat registration form; role decides which profile fields are required"""
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: str = Field(..., description="parent | doctor | admin")

    # Doctor
    medical_license: Optional[str] = None
    hospital_affiliation: Optional[str] = None
    specialization: Optional[str] = None
    years_of_experience: Optional[int] = None

    # Parent
    phone: Optional[str] = None
    address: Optional[AddressPayload] = None

    model_config = ConfigDict(str_strip_whitespace=True)

class LoginRequest(BaseModel):
    """Login with email OR username"""
    email: Optional[str] = None
    username: Optional[str] = None
    password: str

    @model_validator(mode='after')
    def check_identifier(self):
        if not self.email and not self.username:
            raise ValueError('Either email or username is required')
        return self

# ==================== DEPENDENCY: Get Current User ====================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Caller:
    """
    Dependency to get the authenticated caller
    Use this in protected routes: caller: Caller = Depends(get_current_user)
    """
    if credentials is None:
        raise Unauthenticated("Access token is required")

    return identity.verify_session(db, credentials.credentials)

# ==================== API ENDPOINTS ====================

@router.post("/register", response_model=dict, status_code=201)
async def register(
    request: RegisterRequest,
    db: Session = Depends(get_db)
):
    """
    📝 Register a parent, doctor or admin

    - Parents/admins get a token straight away
    - Doctors wait for admin approval
    """
    payload = request.model_dump()
    profile = identity.build_profile(request.role, payload)

    result = identity.register(
        db,
        username=request.username,
        email=request.email,
        password=request.password,
        role=request.role,
        profile=profile
    )

    return {
        "status": "success",
        **result
    }

@router.post("/login", response_model=dict)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db)
):
    """🔐 Login with email or username + password"""
    result = identity.authenticate(db, request.email or request.username, request.password)

    return {
        "status": "success",
        **result
    }

@router.get("/me", response_model=dict)
async def get_current_user_info(
    caller: Caller = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """👤 Current user profile"""
    return {
        "status": "success",
        "user": identity.get_profile(db, caller)
    }
