from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from datetime import datetime, date
from uuid import UUID
from typing import Any, Literal, Optional, List, Dict

from athlete_manager.core.security import MAX_PASSWORD_BYTES, password_too_long
from athlete_manager.models import (
    COACH_NOTE_TYPES,
    COACH_NOTE_VISIBILITIES,
    DOMINANT_HANDS,
    GOAL_CATEGORIES,
    GOAL_STATUSES,
    PERFORMANCE_LEVELS,
    PROTOCOL_CRITERIA,
    ROLES,
)

# Closed sets come from models.py so the API and the database cannot drift
Role = Literal[ROLES]
DominantHand = Literal[DOMINANT_HANDS]
Criteria = Literal[PROTOCOL_CRITERIA]
PerformanceLevel = Literal[PERFORMANCE_LEVELS]
GoalCategory = Literal[GOAL_CATEGORIES]
GoalStatus = Literal[GOAL_STATUSES]
CoachNoteType = Literal[COACH_NOTE_TYPES]
Visibility = Literal[COACH_NOTE_VISIBILITIES]


# --- Auth ---

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: Optional[str] = None
    role: Optional[str] = None  # checked by provisioning, not here

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        # bcrypt limit is in bytes, not characters
        if password_too_long(v):
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserProfileResponse(BaseModel):
    id: UUID
    full_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool
    preferences: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    profile: UserProfileResponse


# --- User profiles ---

class UserProfileCreate(BaseModel):
    """Admin-only: provision a profile for an identity that lacks one."""
    id: UUID
    full_name: Optional[str] = None
    role: Optional[Role] = None
    is_active: bool = True
    preferences: Dict[str, Any] = Field(default_factory=dict)


class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    preferences: Optional[Dict[str, Any]] = None


# --- Athletes ---

class AthleteCreate(BaseModel):
    name: str
    date_of_birth: date
    dominant_hand: Optional[DominantHand] = None
    wtn: float
    is_active: bool = True


class AthleteUpdate(BaseModel):
    name: Optional[str] = None
    date_of_birth: Optional[date] = None
    dominant_hand: Optional[DominantHand] = None
    wtn: Optional[float] = None
    is_active: Optional[bool] = None


class AthleteResponse(BaseModel):
    id: UUID
    name: str
    date_of_birth: date
    dominant_hand: Optional[str] = None
    wtn: float
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Protocols ---

class ProtocolCreate(BaseModel):
    name: str
    description: Optional[str] = None
    unit: str
    criteria: Optional[Criteria] = None
    categories: List[str] = Field(min_length=1)
    # e.g. {"U12": {"needs_improvement": 4.2, "median": 3.9, "excellent": 3.6}}
    normative_data: Any


class ProtocolUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    criteria: Optional[Criteria] = None
    categories: Optional[List[str]] = Field(default=None, min_length=1)
    normative_data: Optional[Any] = None


class ProtocolResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    unit: str
    criteria: Optional[str] = None
    categories: List[str]
    normative_data: Any
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Assessments ---

class AssessmentCreate(BaseModel):
    athlete_id: UUID
    protocol_id: UUID
    value: float
    performance_level: Optional[PerformanceLevel] = None
    notes: Optional[str] = None
    assessed_by: Optional[UUID] = None  # defaults to the caller
    assessed_at: datetime


class AssessmentUpdate(BaseModel):
    value: Optional[float] = None
    performance_level: Optional[PerformanceLevel] = None
    notes: Optional[str] = None
    assessed_by: Optional[UUID] = None
    assessed_at: Optional[datetime] = None


class AssessmentResponse(BaseModel):
    id: UUID
    athlete_id: UUID
    protocol_id: UUID
    value: float
    performance_level: Optional[str] = None
    notes: Optional[str] = None
    assessed_by: UUID
    assessed_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Goals ---

class GoalCreate(BaseModel):
    athlete_id: UUID
    title: str
    description: Optional[str] = None
    category: Optional[GoalCategory] = None
    target_metric: Optional[Dict[str, Any]] = None
    deadline: Optional[date] = None
    progress: Optional[float] = None  # store default: 0
    status: Optional[GoalStatus] = None  # store default: onTrack
    protocol_id: Optional[UUID] = None
    assigned_to: Optional[UUID] = None


class GoalUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[GoalCategory] = None
    target_metric: Optional[Dict[str, Any]] = None
    deadline: Optional[date] = None
    progress: Optional[float] = None
    status: Optional[GoalStatus] = None
    protocol_id: Optional[UUID] = None
    assigned_to: Optional[UUID] = None


class GoalResponse(BaseModel):
    id: UUID
    athlete_id: UUID
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    target_metric: Optional[Dict[str, Any]] = None
    deadline: Optional[date] = None
    progress: float
    status: str
    protocol_id: Optional[UUID] = None
    assigned_to: Optional[UUID] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Notes ---

class GoalNoteCreate(BaseModel):
    goal_id: UUID
    text: str


class GoalNoteResponse(BaseModel):
    id: UUID
    goal_id: UUID
    text: str
    created_by: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CoachNoteCreate(BaseModel):
    athlete_id: UUID
    content: str
    type: Optional[CoachNoteType] = None
    visibility: Optional[Visibility] = None


class CoachNoteResponse(BaseModel):
    id: UUID
    athlete_id: UUID
    content: str
    type: Optional[str] = None
    visibility: Optional[str] = None
    created_by: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Audit ---

class AuditLogResponse(BaseModel):
    id: UUID
    action: str
    user_id: UUID
    details: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
