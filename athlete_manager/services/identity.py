"""
Identity creation and profile provisioning.

create_identity() owns the identity row. Right after inserting it, the
identity.created hooks run synchronously in the same transaction; the
default hook provisions the UserProfile from the signup metadata. If any
hook fails the whole transaction is rolled back, so an identity never
exists without its profile.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from athlete_manager.core.events import EVENT_IDENTITY_CREATED, emit, subscribe
from athlete_manager.core.exceptions import ConflictError, ProvisioningFailure, ValidationError
from athlete_manager.core.security import MAX_PASSWORD_BYTES, get_password_hash, password_too_long, verify_password
from athlete_manager.models import ROLES, AuthUser, UserProfile

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def provision_profile(db: Session, identity: AuthUser, metadata: Dict[str, Any]) -> UserProfile:
    """
    Create the identity's profile, copying full_name and role from metadata.

    Runs with system privilege: no profile exists yet to authorize against.
    """
    role = metadata.get("role")
    if role is not None and role not in ROLES:
        raise ProvisioningFailure(f"Invalid role in signup metadata: {role!r}")
    if db.get(UserProfile, identity.id) is not None:
        raise ProvisioningFailure(f"Profile already exists for identity {identity.id}")

    profile = UserProfile(
        id=identity.id,
        full_name=metadata.get("full_name"),
        role=role,
        is_active=True,
        preferences={},
    )
    db.add(profile)
    db.flush()
    db.refresh(profile)
    return profile


def _provision_on_identity_created(db: Session, identity: AuthUser, metadata: Dict[str, Any], **_) -> None:
    provision_profile(db, identity, metadata)


subscribe(EVENT_IDENTITY_CREATED, _provision_on_identity_created)


def create_identity(
    db: Session,
    *,
    email: str,
    password: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuthUser:
    """
    Insert a new identity and run its creation hooks atomically.

    Raises:
        ValidationError: password longer than bcrypt accepts
        ConflictError: email already registered (nothing written)
        ProvisioningFailure: a creation hook failed (transaction rolled back)
    """
    email = normalize_email(email)
    metadata = dict(metadata or {})

    if password_too_long(password):
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field="password")
    if db.query(AuthUser).filter(AuthUser.email == email).first() is not None:
        raise ConflictError("Email already registered")

    identity = AuthUser(
        email=email,
        password_hash=get_password_hash(password),
        raw_user_meta_data=metadata,
    )
    try:
        db.add(identity)
        db.flush()
    except IntegrityError as e:
        # Lost a race with a concurrent signup for the same email
        db.rollback()
        logger.warning(f"Signup rejected for {email}: {e.orig}")
        raise ConflictError("Email already registered") from e

    try:
        emit(EVENT_IDENTITY_CREATED, strict=True, db=db, identity=identity, metadata=metadata)
    except ProvisioningFailure as e:
        db.rollback()
        logger.warning(f"Signup aborted for {email}: {e.detail}")
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Signup aborted for {email}: {e}", exc_info=True)
        raise ProvisioningFailure("Could not provision user profile") from e

    logger.info(f"Identity created: {identity.id}")
    return identity


def authenticate(db: Session, email: str, password: str) -> Optional[AuthUser]:
    """Return the identity for valid credentials, None otherwise."""
    identity = db.query(AuthUser).filter(AuthUser.email == normalize_email(email)).first()
    if identity is None or not verify_password(password, identity.password_hash):
        return None
    return identity
