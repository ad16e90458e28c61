"""
Identity & access: registration, login, session tokens and the admin
actions that gate doctor accounts.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import bcrypt
import jwt
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

import config
from database.models import User, UserRole
from services.audit import record_audit, send_notification
from services.errors import (
    AccountDeactivated, AlreadyInState, AlreadyProcessed,
    CannotDeactivateAdmin, InvalidCredentials, InvalidRole, NotFound,
    PendingApproval, Unauthenticated, ValidationError
)
from services.policy import Caller, Operation, require

logger = logging.getLogger(__name__)


# ==================== PROFILES ====================

class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class ParentProfile(BaseModel):
    phone: str = Field(..., min_length=5, max_length=20)
    address: Optional[Address] = None


class DoctorProfile(BaseModel):
    medical_license: str = Field(..., min_length=1)
    hospital_affiliation: str = Field(..., min_length=1)
    specialization: str = Field(..., min_length=1)
    years_of_experience: int = Field(..., ge=0, le=70)


Profile = Union[ParentProfile, DoctorProfile, None]

PROFILE_TYPES = {
    UserRole.PARENT: ParentProfile,
    UserRole.DOCTOR: DoctorProfile,
    UserRole.ADMIN: None,
}


def build_profile(role: str, data: dict) -> Profile:
    """
    Pick the role's profile fields out of a flat registration payload.

    Raises ValidationError naming the first missing field, so the caller can
    tell the user exactly what to add.
    """
    role = _parse_role(role)
    profile_type = PROFILE_TYPES[role]
    if profile_type is None:
        return None

    for field_name, field in profile_type.model_fields.items():
        if field.is_required() and data.get(field_name) in (None, ""):
            raise ValidationError(
                f"{field_name} is required for {role.value} registration",
                details={"field": field_name, "role": role.value}
            )

    try:
        return profile_type(**{k: data[k] for k in profile_type.model_fields if k in data})
    except PydanticValidationError as e:
        first = e.errors()[0]
        raise ValidationError(
            f"Invalid {'.'.join(str(p) for p in first['loc'])}: {first['msg']}",
            details={"field": str(first["loc"][0]), "role": role.value}
        )


def _parse_role(role) -> UserRole:
    try:
        return UserRole(role)
    except ValueError:
        raise ValidationError(
            "Invalid role. Must be parent, doctor, or admin",
            details={"field": "role"}
        )


# ==================== PASSWORDS & TOKENS ====================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)).decode()


def verify_password(plain_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode(), password_hash.encode())
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user: User) -> str:
    """Signed session token, valid for ACCESS_TOKEN_EXPIRE_DAYS"""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(days=config.ACCESS_TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")


def verify_session(db: Session, token: str) -> Caller:
    """Resolve a bearer token to the caller it was issued to"""
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise Unauthenticated("Invalid token type")

    user_id = payload.get("user_id")
    if not user_id:
        raise Unauthenticated("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise Unauthenticated("User not found")

    _ensure_can_sign_in(user)

    return Caller(user_id=user.id, email=user.email, role=user.role)


def _ensure_can_sign_in(user: User) -> None:
    if not user.is_active:
        raise AccountDeactivated(
            "Your account has been deactivated. Please contact support."
        )
    if user.role == UserRole.DOCTOR.value and not user.is_approved:
        raise PendingApproval(
            "Your doctor account is pending admin approval. Please wait for approval before logging in.",
            details={"pending_approval": True}
        )


# ==================== SERIALIZATION ====================

def serialize_user(user: User) -> dict:
    data = {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "is_active": user.is_active,
        "is_approved": user.is_approved,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }

    if user.role == UserRole.DOCTOR.value:
        data.update({
            "medical_license": user.medical_license,
            "hospital_affiliation": user.hospital_affiliation,
            "specialization": user.specialization,
            "years_of_experience": user.years_of_experience,
            "approved_by": user.approved_by,
            "approved_at": user.approved_at.isoformat() if user.approved_at else None,
            "rejection_reason": user.rejection_reason,
        })
    elif user.role == UserRole.PARENT.value:
        data.update({
            "phone": user.phone,
            "address": user.address,
        })

    return data


# ==================== REGISTRATION & LOGIN ====================

def register(
    db: Session,
    username: str,
    email: str,
    password: str,
    role: str,
    profile: Profile = None
) -> dict:
    """
    Create a user account.

    Parents and admins are approved immediately and get a token back.
    Doctors start unapproved and get no token until an admin approves them.
    """
    role = _parse_role(role)

    if not username or not email or not password:
        raise ValidationError("Username, email, password, and role are required")

    expected = PROFILE_TYPES[role]
    if expected is not None and not isinstance(profile, expected):
        raise ValidationError(
            f"{role.value} registration requires a {expected.__name__}",
            details={"role": role.value}
        )

    existing = db.query(User).filter(
        or_(User.email == email, User.username == username)
    ).first()
    if existing:
        field = "email" if existing.email == email else "username"
        raise ValidationError(
            "User already exists with this email or username",
            details={"field": field}
        )

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role.value,
        is_active=True,
        is_approved=role != UserRole.DOCTOR,
        created_at=datetime.now()
    )

    if isinstance(profile, DoctorProfile):
        user.medical_license = profile.medical_license
        user.hospital_affiliation = profile.hospital_affiliation
        user.specialization = profile.specialization
        user.years_of_experience = profile.years_of_experience
    elif isinstance(profile, ParentProfile):
        user.phone = profile.phone
        user.address = profile.address.model_dump() if profile.address else None

    db.add(user)
    db.flush()

    record_audit(db, user.id, "USER_REGISTERED", "user", user.id, {"role": role.value})
    db.commit()
    db.refresh(user)

    logger.info("Registered %s account %s", role.value, user.id)

    if user.is_approved:
        return {
            "message": "Registration successful! You can now log in.",
            "token": create_access_token(user),
            "user": serialize_user(user),
            "requires_approval": False,
        }

    return {
        "message": (
            "Registration successful! Your doctor account is pending admin approval. "
            "You will be notified once approved."
        ),
        "token": None,
        "user": serialize_user(user),
        "requires_approval": True,
    }


def authenticate(db: Session, identifier: str, password: str) -> dict:
    """
    Log in with email or username.

    Wrong password and unknown identifier fail the same way; a deactivated
    account and a doctor still waiting for approval fail with their own codes.
    """
    if not identifier or not password:
        raise ValidationError("Email or username and password are required")

    user = db.query(User).filter(
        or_(User.email == identifier, User.username == identifier)
    ).first()

    if not user or not verify_password(password, user.password_hash):
        raise InvalidCredentials("Invalid credentials")

    _ensure_can_sign_in(user)

    user.last_login = datetime.now()
    record_audit(db, user.id, "LOGIN_SUCCESS", "auth", user.id, {"role": user.role})
    db.commit()
    db.refresh(user)

    return {
        "message": "Login successful",
        "token": create_access_token(user),
        "user": serialize_user(user),
    }


def get_profile(db: Session, caller: Caller) -> dict:
    user = db.query(User).filter(User.id == caller.user_id).first()
    if not user:
        raise NotFound("User not found")
    return serialize_user(user)


# ==================== DOCTOR APPROVAL ====================

def _load_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(User.id == doctor_id).first()
    if not doctor:
        raise NotFound("Doctor not found", details={"user_id": doctor_id})
    if doctor.role != UserRole.DOCTOR.value:
        raise InvalidRole("User is not a doctor", details={"user_id": doctor_id})
    return doctor


def list_doctors(db: Session, caller: Caller, status: Optional[str] = None) -> list:
    """Active doctors, optionally only ``approved`` or ``pending`` ones, newest first"""
    require(caller, Operation.MANAGE_DOCTORS)

    query = db.query(User).filter(
        User.role == UserRole.DOCTOR.value,
        User.is_active == True
    )

    if status == "approved":
        query = query.filter(User.is_approved == True)
    elif status == "pending":
        query = query.filter(User.is_approved == False)
    elif status:
        raise ValidationError("status must be 'approved' or 'pending'", details={"field": "status"})

    return [serialize_user(doctor) for doctor in query.order_by(User.created_at.desc(), User.id.desc()).all()]


def list_pending_doctors(db: Session, caller: Caller) -> list:
    return list_doctors(db, caller, status="pending")


def approve_doctor(db: Session, caller: Caller, doctor_id: int, notes: Optional[str] = None) -> dict:
    require(caller, Operation.MANAGE_DOCTORS)

    doctor = _load_doctor(db, doctor_id)
    if doctor.is_approved:
        raise AlreadyProcessed("Doctor is already approved", details={"user_id": doctor_id})

    doctor.is_approved = True
    doctor.approved_by = caller.user_id
    doctor.approved_at = datetime.now()
    doctor.rejection_reason = None
    if notes:
        doctor.approval_notes = notes

    send_notification(
        db=db,
        user_id=doctor.id,
        title="Account approved",
        message="Your doctor account has been approved. You can now log in.",
        notification_type="verification",
        related_entity_type="doctor",
        related_entity_id=str(doctor.id)
    )
    record_audit(db, caller.user_id, "DOCTOR_APPROVED", "user", doctor.id, {"notes": notes})
    db.commit()
    db.refresh(doctor)

    logger.info("Doctor %s approved by admin %s", doctor.id, caller.user_id)
    return serialize_user(doctor)


def reject_doctor(db: Session, caller: Caller, doctor_id: int, reason: str) -> dict:
    """Reject a pending doctor. The account is deactivated, not just flagged."""
    require(caller, Operation.MANAGE_DOCTORS)

    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required", details={"field": "rejection_reason"})

    doctor = _load_doctor(db, doctor_id)
    if doctor.is_approved:
        raise AlreadyProcessed(
            "Cannot reject an approved doctor. Deactivate instead.",
            details={"user_id": doctor_id}
        )
    if not doctor.is_active:
        raise AlreadyProcessed("Doctor registration was already rejected", details={"user_id": doctor_id})

    now = datetime.now()
    doctor.is_active = False
    doctor.rejection_reason = reason
    doctor.deactivation_reason = reason
    doctor.deactivated_by = caller.user_id
    doctor.deactivated_at = now

    send_notification(
        db=db,
        user_id=doctor.id,
        title="Account not approved",
        message=f"Your doctor registration was rejected: {reason}",
        notification_type="verification",
        related_entity_type="doctor",
        related_entity_id=str(doctor.id)
    )
    record_audit(db, caller.user_id, "DOCTOR_REJECTED", "user", doctor.id, {"reason": reason})
    db.commit()
    db.refresh(doctor)

    logger.info("Doctor %s rejected by admin %s", doctor.id, caller.user_id)
    return serialize_user(doctor)


# ==================== ACCOUNT STATUS ====================

def _load_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found", details={"user_id": user_id})
    return user


def deactivate_user(db: Session, caller: Caller, user_id: int, reason: Optional[str] = None) -> dict:
    require(caller, Operation.MANAGE_USERS)

    user = _load_user(db, user_id)
    if user.role == UserRole.ADMIN.value:
        raise CannotDeactivateAdmin("Cannot deactivate admin accounts", details={"user_id": user_id})
    if not user.is_active:
        raise AlreadyInState("User is already deactivated", details={"user_id": user_id})

    user.is_active = False
    user.deactivation_reason = reason
    user.deactivated_by = caller.user_id
    user.deactivated_at = datetime.now()

    record_audit(db, caller.user_id, "USER_DEACTIVATED", "user", user.id, {"reason": reason})
    db.commit()
    db.refresh(user)

    logger.info("User %s deactivated by admin %s", user.id, caller.user_id)
    return serialize_user(user)


def reactivate_user(db: Session, caller: Caller, user_id: int, reason: Optional[str] = None) -> dict:
    require(caller, Operation.MANAGE_USERS)

    user = _load_user(db, user_id)
    if user.is_active:
        raise AlreadyInState("User is already active", details={"user_id": user_id})

    user.is_active = True
    user.reactivated_by = caller.user_id
    user.reactivated_at = datetime.now()

    record_audit(db, caller.user_id, "USER_REACTIVATED", "user", user.id, {"reason": reason})
    db.commit()
    db.refresh(user)

    logger.info("User %s reactivated by admin %s", user.id, caller.user_id)
    return serialize_user(user)
