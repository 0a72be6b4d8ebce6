import os
import uuid
from pathlib import Path

import pytest

TEST_DATABASE_URL = "sqlite:///./cheer-test.db"
TEST_DB_PATH = Path(TEST_DATABASE_URL.split("///")[-1])


def _remove_test_db_files():
    for suffix in ("", "-wal", "-shm"):
        path = Path(f"{TEST_DB_PATH}{suffix}")
        if path.exists():
            path.unlink()


# Must happen before the app is imported: database.py builds its engine at import time
_remove_test_db_files()
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("LOG_FORMAT", "console")

from fastapi import Depends  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

# --- Alembic Imports ---
from alembic.config import Config  # noqa: E402
from alembic import command  # noqa: E402

# Import app and DB dependency function first
from main import app, get_db  # noqa: E402

import crud  # noqa: E402
import models  # noqa: E402
import schemas  # noqa: E402
from auth import get_session_context, session_for  # noqa: E402
from database import Base, build_engine  # noqa: E402
from swipe import feed_sessions  # noqa: E402

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    Base.metadata.create_all(bind=test_engine)

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield  # Tests run here

    test_engine.dispose()
    _remove_test_db_files()


@pytest.fixture(autouse=True)
def clean_state(setup_test_database):
    """Every test starts with empty tables and no feed sessions."""
    feed_sessions.clear()
    yield
    feed_sessions.clear()
    app.dependency_overrides.pop(get_session_context, None)
    with TestSessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()


@pytest.fixture(scope="function")
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def override_get_db():
    """Point the get_db dependency at the test database, one session per request."""

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session."""
    return TestClient(app)


@pytest.fixture(scope="function")
def login():
    """Make the API treat every request as coming from the given account."""

    def _login(user: models.Profile):
        user_id = user.id

        def _override_session_context(db: Session = Depends(get_db)):
            return session_for(db, crud.get_user_by_id(db, user_id))

        app.dependency_overrides[get_session_context] = _override_session_context

    return _login


class Factory:
    """Creates committed rows for tests."""

    def __init__(self, db: Session):
        self.db = db

    def user(self, role: str = "job_seeker", display_name: str = None) -> models.Profile:
        email = f"{role}-{uuid.uuid4().hex[:8]}@example.com"
        user = crud.create_user(self.db, schemas.UserCreate(email=email, role=role, display_name=display_name))
        self.db.commit()
        return user

    def seeker(self, skills=(), full_name: str = "Test Seeker") -> models.SeekerProfile:
        user = self.user()
        profile = crud.create_seeker_profile(
            self.db, user.id, schemas.SeekerProfileCreate(full_name=full_name, skills=list(skills))
        )
        self.db.commit()
        self.db.refresh(profile)
        return profile

    def company(self, owner: models.Profile = None, **fields) -> models.Company:
        owner = owner or self.user(role="employer")
        fields.setdefault("name", "Acme")
        fields.setdefault("industry", "Technology")
        company = crud.create_company(self.db, owner.id, schemas.CompanyCreate(**fields))
        self.db.commit()
        return company

    def job(self, company: models.Company = None, required_skills=(), **fields) -> models.Job:
        company = company or self.company()
        fields.setdefault("title", "Engineer")
        job = crud.create_job(
            self.db, company.id, schemas.JobCreate(required_skills=list(required_skills), **fields)
        )
        self.db.commit()
        self.db.refresh(job)
        return job


@pytest.fixture(scope="function")
def factory(db_session):
    return Factory(db_session)
