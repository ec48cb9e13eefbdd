"""
Authentication dependencies.

Provides FastAPI dependencies for:
- Resolving the bearer token to an Actor (id + role + active flag)
- Building an AccessControlledStore bound to that actor
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from athlete_manager.core.database import get_db
from athlete_manager.core.exceptions import ForbiddenError, UnauthorizedError
from athlete_manager.core.security import decode_access_token
from athlete_manager.services.policies import Actor, resolve_actor
from athlete_manager.services.record_store import AccessControlledStore

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Actor:
    """
    Get the acting identity from the JWT token.

    The role comes from the actor's own profile row, not from token claims,
    so role changes take effect on the next request.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")

    try:
        user_id_uuid = UUID(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user ID format")

    actor = resolve_actor(db, user_id_uuid)
    if actor is None:
        raise UnauthorizedError("User not found")

    # Deactivated accounts keep their rows but cannot act
    if not actor.is_active:
        raise ForbiddenError("Account is inactive")

    return actor


def get_store(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
) -> AccessControlledStore:
    return AccessControlledStore(db, actor)
