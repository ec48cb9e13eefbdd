"""
Authentication API Endpoints

Signup creates the identity and, in the same transaction, its profile.
Tokens carry only the identity id; the role is read from the profile on
every request.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from athlete_manager.core.auth import get_store
from athlete_manager.core.database import get_db
from athlete_manager.core.exceptions import ForbiddenError, UnauthorizedError
from athlete_manager.core.security import ACCESS_TOKEN_EXPIRE_MINUTES, create_access_token
from athlete_manager.models import UserProfile
from athlete_manager.schemas import LoginRequest, SignupRequest, TokenResponse, UserProfileResponse
from athlete_manager.services.identity import authenticate, create_identity
from athlete_manager.services.policies import EntityKind
from athlete_manager.services.record_store import AccessControlledStore

router = APIRouter(prefix="/v1/auth", tags=["auth"])


def _token_response(profile: UserProfile) -> dict:
    access_token = create_access_token(data={"sub": str(profile.id)})
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "profile": profile,
    }


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(
    user_data: SignupRequest,
    db: Session = Depends(get_db)
):
    """
    Register a new user.

    full_name and role are copied into the new profile. An invalid role
    fails the whole signup (no identity is left behind).
    """
    identity = create_identity(
        db,
        email=user_data.email,
        password=user_data.password,
        metadata={"full_name": user_data.full_name, "role": user_data.role},
    )
    return _token_response(identity.profile)


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db)
):
    identity = authenticate(db, credentials.email, credentials.password)
    if identity is None:
        raise UnauthorizedError("Incorrect email or password")
    profile = identity.profile
    if profile is None:
        raise UnauthorizedError("User not found")
    if not profile.is_active:
        raise ForbiddenError("Account is inactive")
    return _token_response(profile)


@router.get("/me", response_model=UserProfileResponse)
def get_current_user_info(store: AccessControlledStore = Depends(get_store)):
    """Own profile, granted by the own-row read policy."""
    return store.get(EntityKind.USER_PROFILE, store.actor.id)
