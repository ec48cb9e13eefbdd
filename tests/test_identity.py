"""
Tests for signup provisioning: one identity, one profile, or nothing.
"""
import pytest

from athlete_manager.core.events import EVENT_IDENTITY_CREATED, subscribe, unsubscribe
from athlete_manager.core.exceptions import ConflictError, ProvisioningFailure, ValidationError
from athlete_manager.models import AuthUser, UserProfile
from athlete_manager.services.identity import authenticate, create_identity

PASSWORD = "correct-horse-battery"


def _count(db_session, model):
    return db_session.query(model).count()


def test_signup_provisions_exactly_one_profile(db_session):
    identity = create_identity(
        db_session,
        email="jane@example.com",
        password=PASSWORD,
        metadata={"full_name": "Jane Coach", "role": "lead_coach"},
    )
    db_session.commit()

    profiles = db_session.query(UserProfile).filter(UserProfile.id == identity.id).all()
    assert len(profiles) == 1
    profile = profiles[0]
    assert profile.full_name == "Jane Coach"
    assert profile.role == "lead_coach"
    assert profile.is_active is True
    assert profile.preferences == {}


def test_signup_without_role_is_unassigned(db_session):
    identity = create_identity(db_session, email="norole@example.com", password=PASSWORD)
    db_session.commit()
    assert identity.profile.role is None
    assert identity.profile.full_name is None


def test_email_is_normalized(db_session):
    identity = create_identity(db_session, email="  Mixed@Example.COM ", password=PASSWORD)
    assert identity.email == "mixed@example.com"


def test_invalid_role_leaves_nothing(db_session):
    with pytest.raises(ProvisioningFailure):
        create_identity(
            db_session,
            email="bad@example.com",
            password=PASSWORD,
            metadata={"full_name": "Bad Role", "role": "superuser"},
        )
    assert _count(db_session, AuthUser) == 0
    assert _count(db_session, UserProfile) == 0


def test_failing_hook_rolls_back_identity(db_session):
    def _exploding_hook(**kwargs):
        raise RuntimeError("downstream unavailable")

    subscribe(EVENT_IDENTITY_CREATED, _exploding_hook)
    try:
        with pytest.raises(ProvisioningFailure):
            create_identity(
                db_session,
                email="hook@example.com",
                password=PASSWORD,
                metadata={"role": "academy_coach"},
            )
    finally:
        unsubscribe(EVENT_IDENTITY_CREATED, _exploding_hook)

    assert _count(db_session, AuthUser) == 0
    assert _count(db_session, UserProfile) == 0


def test_duplicate_email_conflicts(db_session, make_user):
    make_user("parent", email="dup@example.com")
    with pytest.raises(ConflictError):
        create_identity(db_session, email="DUP@example.com", password=PASSWORD)
    assert _count(db_session, AuthUser) == 1


def test_authenticate(db_session, make_user):
    profile = make_user("lead_coach", email="login@example.com")
    assert authenticate(db_session, "login@example.com", PASSWORD).id == profile.id
    assert authenticate(db_session, "login@example.com", "wrong-password") is None
    assert authenticate(db_session, "nobody@example.com", PASSWORD) is None


def test_concurrent_duplicate_signup_conflicts(db_session):
    # Another signup's row is pending but not yet flushed, so the lookup
    # misses it and the unique constraint decides
    db_session.add(AuthUser(email="race@example.com", password_hash="x"))
    with pytest.raises(ConflictError):
        create_identity(db_session, email="race@example.com", password=PASSWORD)
    assert _count(db_session, AuthUser) == 0
    assert _count(db_session, UserProfile) == 0


def test_password_over_bcrypt_limit_is_rejected(db_session):
    # 40 two-byte characters: under 72 characters, over 72 bytes
    with pytest.raises(ValidationError) as exc_info:
        create_identity(db_session, email="long@example.com", password="é" * 40)
    assert exc_info.value.field == "password"
    assert _count(db_session, AuthUser) == 0


def test_authenticate_over_long_password_is_bad_credentials(db_session, make_user):
    make_user("lead_coach", email="login@example.com")
    assert authenticate(db_session, "login@example.com", "x" * 100) is None
