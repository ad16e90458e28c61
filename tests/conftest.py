import os

# Must be set before config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["OVERDUE_GRACE_DAYS"] = "0"
os.environ["JWT_SECRET"] = "test-secret"

from datetime import date, timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.connection import Base, get_db
from database.models import UserRole
from services import identity
from services.children import ChildCreate, create_child
from services.identity import DoctorProfile, ParentProfile
from services.policy import Caller


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


_ids = count(1)


def _caller(result: dict) -> Caller:
    user = result["user"]
    return Caller(user_id=user["id"], email=user["email"], role=user["role"])


@pytest.fixture
def make_parent(db):
    def _make(name=None):
        name = name or f"parent{next(_ids)}"
        result = identity.register(
            db, username=name, email=f"{name}@example.com", password="secret123",
            role="parent", profile=ParentProfile(phone="9876543210")
        )
        return _caller(result)
    return _make


@pytest.fixture
def admin(db):
    name = f"admin{next(_ids)}"
    result = identity.register(
        db, username=name, email=f"{name}@example.com", password="secret123", role="admin"
    )
    return _caller(result)


@pytest.fixture
def make_doctor(db, admin):
    def _make(name=None, approved=True):
        name = name or f"doctor{next(_ids)}"
        result = identity.register(
            db, username=name, email=f"{name}@example.com", password="secret123",
            role="doctor",
            profile=DoctorProfile(
                medical_license="MCI-12345",
                hospital_affiliation="City Hospital",
                specialization="Pediatrics",
                years_of_experience=8
            )
        )
        if approved:
            identity.approve_doctor(db, admin, result["user"]["id"])
        return Caller(user_id=result["user"]["id"], email=result["user"]["email"], role=UserRole.DOCTOR)
    return _make


@pytest.fixture
def parent(make_parent):
    return make_parent()


@pytest.fixture
def doctor(make_doctor):
    return make_doctor()


@pytest.fixture
def make_child(db):
    def _make(caller, days_old=90, name="Aarav", **kwargs):
        data = ChildCreate(
            name=name,
            date_of_birth=date.today() - timedelta(days=days_old),
            gender="male",
            **kwargs
        )
        return create_child(db, caller, data)
    return _make
