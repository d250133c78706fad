import os

# settings are read once, at first use; give the test run its own
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.core.security import create_access_token, hash_password, principal_claims
from app.db.base import Base
from app.db.session import get_db
from app.main import create_app
from app.models.enums import UserRole
from app.models.user import User
from app.policies.rbac import Principal
from app.seed import seed_branches

PASSWORD = "pass123"
# bcrypt is slow; hash once for every seeded user
PASSWORD_HASH = hash_password(PASSWORD)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)


@event.listens_for(engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def branches(db):
    rows = seed_branches(db)
    db.commit()
    return {b.code: b for b in rows}


def _user(db, email, role, branch, signature_data=None):
    u = User(
        email=email,
        password_hash=PASSWORD_HASH,
        role=role.value,
        branch_id=branch.id if branch is not None else None,
        signature_data=signature_data,
    )
    db.add(u)
    return u


@pytest.fixture
def users(db, branches):
    jed, mec = branches["JED"], branches["MEC"]
    rows = {
        "admin": _user(db, "admin@injazak.com", UserRole.admin, jed),
        "jed_employee": _user(db, "emp.jed@injazak.com", UserRole.employee, jed, "data:image/png;base64,RU1QSkVE"),
        "jed_employee2": _user(db, "emp2.jed@injazak.com", UserRole.employee, jed),
        "jed_manager": _user(db, "mgr.jed@injazak.com", UserRole.manager, jed, "data:image/png;base64,TUdSSkVE"),
        "mec_employee": _user(db, "emp.mec@injazak.com", UserRole.employee, mec, "data:image/png;base64,RU1QTUVD"),
        "mec_manager": _user(db, "mgr.mec@injazak.com", UserRole.manager, mec),
    }
    db.commit()
    return rows


@pytest.fixture
def principals(users):
    return {key: Principal.from_user(u) for key, u in users.items()}


@pytest.fixture
def client(db):
    app = create_app()

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(principals):
    def _headers(key):
        p = principals[key]
        token = create_access_token(
            subject=str(p.user_id),
            claims=principal_claims(p.user_id, p.role.value, p.branch_id, p.email),
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
