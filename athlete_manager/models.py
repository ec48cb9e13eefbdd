from sqlalchemy import Column, Boolean, CheckConstraint, Date, DateTime, Float, ForeignKey, Index, JSON, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from athlete_manager.core.database import Base
import uuid

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Closed enumerations. Anything outside these sets is rejected at write time.
ROLES = ("admin", "lead_coach", "academy_coach", "fitness_trainer", "parent")
DOMINANT_HANDS = ("left", "right", "ambidextrous")
PROTOCOL_CRITERIA = ("lower", "higher")
PERFORMANCE_LEVELS = ("needs_improvement", "median", "excellent")
GOAL_CATEGORIES = ("physical", "tactical", "technical", "mental", "other")
GOAL_STATUSES = ("onTrack", "atRisk", "offTrack", "completed")
COACH_NOTE_TYPES = ("general", "technical", "tactical", "physical", "mental")
COACH_NOTE_VISIBILITIES = ("coaches", "all")


def _in_check(column: str, values: tuple, name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{v}'" for v in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


class AuthUser(Base):
    """
    Login identity.

    Owned by the identity service (signup/login); never exposed through the
    record store. Its profile row is created in the same transaction.
    """

    __tablename__ = "auth_user"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False)  # lowercased
    password_hash = Column(Text, nullable=False)
    raw_user_meta_data = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    profile = relationship(
        "UserProfile",
        back_populates="identity",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class UserProfile(Base):
    """Extends an identity with role and preferences. One-to-one with AuthUser."""

    __tablename__ = "users_extension"

    id = Column(Uuid, ForeignKey("auth_user.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(Text, nullable=True)
    role = Column(Text, nullable=True)  # None = unassigned (signup without a role)
    is_active = Column(Boolean, default=True, nullable=False)
    preferences = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    identity = relationship("AuthUser", back_populates="profile")

    __table_args__ = (
        _in_check("role", ROLES, "ck_users_extension_role"),
    )


class Athlete(Base):
    __tablename__ = "athletes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    date_of_birth = Column(Date, nullable=False)
    dominant_hand = Column(Text, nullable=True)
    wtn = Column(Float, nullable=False)  # World Tennis Number rating
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Uuid, ForeignKey("auth_user.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    assessments = relationship("Assessment", back_populates="athlete", passive_deletes="all")
    goals = relationship("Goal", back_populates="athlete", passive_deletes="all")
    coach_notes = relationship("CoachNote", back_populates="athlete", passive_deletes="all")

    __table_args__ = (
        _in_check("dominant_hand", DOMINANT_HANDS, "ck_athletes_dominant_hand"),
    )


class Protocol(Base):
    """
    Test protocol definition.

    criteria tells whether lower or higher raw values are better;
    normative_data holds the reference ranges used to grade assessments.
    """

    __tablename__ = "protocols"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(Text, nullable=False)
    criteria = Column(Text, nullable=True)
    categories = Column(JSONType, nullable=False)  # non-empty list of tags
    normative_data = Column(JSONType, nullable=False)
    created_by = Column(Uuid, ForeignKey("auth_user.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        _in_check("criteria", PROTOCOL_CRITERIA, "ck_protocols_criteria"),
    )


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athletes.id"), nullable=False)
    protocol_id = Column(Uuid, ForeignKey("protocols.id"), nullable=False)
    value = Column(Float, nullable=False)
    performance_level = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    assessed_by = Column(Uuid, ForeignKey("auth_user.id"), nullable=False)
    # When the test was performed, not when the row was written
    assessed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    athlete = relationship("Athlete", back_populates="assessments")

    __table_args__ = (
        _in_check("performance_level", PERFORMANCE_LEVELS, "ck_assessments_performance_level"),
        Index("ix_assessments_athlete_id", "athlete_id"),
        Index("ix_assessments_protocol_id", "protocol_id"),
    )


class Goal(Base):
    __tablename__ = "goals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athletes.id"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    # e.g. {"protocol": "20m sprint", "target": 3.1, "unit": "s"}
    target_metric = Column(JSONType, nullable=True)
    deadline = Column(Date, nullable=True)
    progress = Column(Float, default=0, nullable=False)
    status = Column(Text, default="onTrack", nullable=False)
    protocol_id = Column(Uuid, ForeignKey("protocols.id"), nullable=True)
    assigned_to = Column(Uuid, ForeignKey("auth_user.id"), nullable=True)
    created_by = Column(Uuid, ForeignKey("auth_user.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    athlete = relationship("Athlete", back_populates="goals")
    notes = relationship("GoalNote", back_populates="goal", passive_deletes="all")

    __table_args__ = (
        _in_check("category", GOAL_CATEGORIES, "ck_goals_category"),
        _in_check("status", GOAL_STATUSES, "ck_goals_status"),
        Index("ix_goals_athlete_id", "athlete_id"),
    )


class GoalNote(Base):
    """Append-only note on a goal (no updated_at)."""

    __tablename__ = "goal_notes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    goal_id = Column(Uuid, ForeignKey("goals.id"), nullable=False)
    text = Column(Text, nullable=False)
    created_by = Column(Uuid, ForeignKey("auth_user.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    goal = relationship("Goal", back_populates="notes")

    __table_args__ = (
        Index("ix_goal_notes_goal_id", "goal_id"),
    )


class CoachNote(Base):
    """
    Append-only note on an athlete.

    visibility is stored for a future read policy; nothing filters on it yet.
    """

    __tablename__ = "coach_notes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athletes.id"), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(Text, nullable=True)
    visibility = Column(Text, nullable=True)
    created_by = Column(Uuid, ForeignKey("auth_user.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    athlete = relationship("Athlete", back_populates="coach_notes")

    __table_args__ = (
        _in_check("type", COACH_NOTE_TYPES, "ck_coach_notes_type"),
        _in_check("visibility", COACH_NOTE_VISIBILITIES, "ck_coach_notes_visibility"),
        Index("ix_coach_notes_athlete_id", "athlete_id"),
    )


class AuditLog(Base):
    """
    Append-only system activity log.

    Written only by services.audit; readable by admins through the store.
    """

    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action = Column(Text, nullable=False)  # e.g. athlete.create | goal.update
    user_id = Column(Uuid, ForeignKey("auth_user.id"), nullable=False)
    details = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_timestamp", "timestamp"),
    )
