"""
Pytest configuration and fixtures

Every test runs against a fresh in-memory SQLite schema. The environment
is pinned before the application is imported, since settings are read at
import time.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-with-at-least-32-characters"
os.environ["LOG_FORMAT"] = "text"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"

import pytest
from datetime import date, datetime, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

from athlete_manager.core.database import Base, SessionLocal, engine, get_db
from athlete_manager.core.security import create_access_token
from athlete_manager.main import app
from athlete_manager.services.identity import create_identity
from athlete_manager.services.policies import Actor, EntityKind
from athlete_manager.services.record_store import AccessControlledStore

PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session):
    """TestClient whose requests share the test's session."""

    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_user(db_session):
    """Factory: identity plus provisioned profile with the given role, committed."""

    def _make(role="lead_coach", full_name=None, is_active=True, email=None):
        identity = create_identity(
            db_session,
            email=email or f"{role or 'user'}_{uuid4().hex[:8]}@example.com",
            password=PASSWORD,
            metadata={"full_name": full_name or f"Test {role}", "role": role},
        )
        profile = identity.profile
        if not is_active:
            profile.is_active = False
        db_session.commit()
        return profile

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def lead_coach(make_user):
    return make_user("lead_coach")


@pytest.fixture
def academy_coach(make_user):
    return make_user("academy_coach")


@pytest.fixture
def fitness_trainer(make_user):
    return make_user("fitness_trainer")


@pytest.fixture
def parent(make_user):
    return make_user("parent")


@pytest.fixture
def store_for(db_session):
    def _store(profile):
        return AccessControlledStore(db_session, Actor.from_profile(profile))
    return _store


@pytest.fixture
def auth_headers():
    def _headers(profile):
        token = create_access_token({"sub": str(profile.id)})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def athlete(db_session, store_for, lead_coach):
    record = store_for(lead_coach).create(
        EntityKind.ATHLETE,
        {"name": "Ana Ruiz", "date_of_birth": date(2012, 4, 3), "dominant_hand": "right", "wtn": 24.5},
    )
    db_session.commit()
    return record


@pytest.fixture
def protocol(db_session, store_for, fitness_trainer):
    record = store_for(fitness_trainer).create(
        EntityKind.PROTOCOL,
        {
            "name": "20m sprint",
            "unit": "s",
            "criteria": "lower",
            "categories": ["speed"],
            "normative_data": {"U12": {"needs_improvement": 4.2, "median": 3.9, "excellent": 3.6}},
        },
    )
    db_session.commit()
    return record


@pytest.fixture
def assessed_at():
    return datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
