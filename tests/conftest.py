import os
import tempfile

# Must run before any backend module is imported: config.Settings reads the env at import time.
_TMP_DIR = tempfile.mkdtemp(prefix="civicpulse-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["GEMINI_API_KEY"] = ""
os.environ["GEMINI_ATTEMPTS_PER_MODEL"] = "1"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["RECREATE_DB_ON_STARTUP"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

import datetime as dt  # noqa: E402

import pytest  # noqa: E402

from auth import create_access_token, hash_password  # noqa: E402
from database import SessionLocal, engine  # noqa: E402
from models import ROLE_CITIZEN, ROLE_MUNICIPAL, STATUS_PENDING, Base, Report, User  # noqa: E402


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: str = ROLE_CITIZEN, name: str | None = None) -> User:
        counter["n"] += 1
        user = User(
            name=name or f"user{counter['n']}",
            email=f"user{counter['n']}@example.com",
            password_hash=hash_password("secret123"),
            role=role,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def citizen(make_user):
    return make_user(ROLE_CITIZEN, "Karthik")


@pytest.fixture
def admin(make_user):
    return make_user(ROLE_MUNICIPAL, "City Officer")


@pytest.fixture
def add_report(db):
    """Insert a report row directly, bypassing classification (for aggregation tests)."""

    def _add(
        user: User,
        *,
        created_at: dt.datetime,
        status: str = STATUS_PENDING,
        resolved_at: dt.datetime | None = None,
        category: str = "Water",
        location: str = "Kottapeta",
        sentiment_score: float = 0.0,
        is_urgent: bool = False,
        cluster_id: int | None = None,
    ) -> Report:
        report = Report(
            reporter_id=user.id,
            title="t",
            description="d",
            category=category,
            location=location,
            status=status,
            sentiment_score=sentiment_score,
            is_urgent=is_urgent,
            cluster_id=cluster_id,
            created_at=created_at,
            resolved_at=resolved_at,
        )
        db.add(report)
        db.commit()
        return report

    return _add


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id=user.id, role=user.role, name=user.name)}"}
