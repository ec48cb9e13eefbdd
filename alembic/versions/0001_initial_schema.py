"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

Creates the identity table and the academy tables:
users_extension, athletes, protocols, assessments, goals, goal_notes,
coach_notes, audit_logs.

Enumerated columns carry CHECK constraints so out-of-set values are
rejected by the database as well as by the record store.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def _in(column, values):
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def _timestamps(updated=True):
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        "auth_user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("raw_user_meta_data", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "users_extension",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("preferences", JSON_TYPE, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["id"], ["auth_user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            _in("role", ("admin", "lead_coach", "academy_coach", "fitness_trainer", "parent")),
            name="ck_users_extension_role",
        ),
    )

    op.create_table(
        "athletes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("dominant_hand", sa.Text(), nullable=True),
        sa.Column("wtn", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(_in("dominant_hand", ("left", "right", "ambidextrous")), name="ck_athletes_dominant_hand"),
    )

    op.create_table(
        "protocols",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit", sa.Text(), nullable=False),
        sa.Column("criteria", sa.Text(), nullable=True),
        sa.Column("categories", JSON_TYPE, nullable=False),
        sa.Column("normative_data", JSON_TYPE, nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(_in("criteria", ("lower", "higher")), name="ck_protocols_criteria"),
    )

    op.create_table(
        "assessments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("athlete_id", sa.Uuid(), nullable=False),
        sa.Column("protocol_id", sa.Uuid(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("performance_level", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("assessed_by", sa.Uuid(), nullable=False),
        sa.Column("assessed_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["athlete_id"], ["athletes.id"]),
        sa.ForeignKeyConstraint(["protocol_id"], ["protocols.id"]),
        sa.ForeignKeyConstraint(["assessed_by"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            _in("performance_level", ("needs_improvement", "median", "excellent")),
            name="ck_assessments_performance_level",
        ),
    )
    op.create_index("ix_assessments_athlete_id", "assessments", ["athlete_id"], unique=False)
    op.create_index("ix_assessments_protocol_id", "assessments", ["protocol_id"], unique=False)

    op.create_table(
        "goals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("athlete_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("target_metric", JSON_TYPE, nullable=True),
        sa.Column("deadline", sa.Date(), nullable=True),
        sa.Column("progress", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'onTrack'")),
        sa.Column("protocol_id", sa.Uuid(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["athlete_id"], ["athletes.id"]),
        sa.ForeignKeyConstraint(["protocol_id"], ["protocols.id"]),
        sa.ForeignKeyConstraint(["assigned_to"], ["auth_user.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            _in("category", ("physical", "tactical", "technical", "mental", "other")),
            name="ck_goals_category",
        ),
        sa.CheckConstraint(
            _in("status", ("onTrack", "atRisk", "offTrack", "completed")),
            name="ck_goals_status",
        ),
    )
    op.create_index("ix_goals_athlete_id", "goals", ["athlete_id"], unique=False)

    op.create_table(
        "goal_notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("goal_id", sa.Uuid(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["goal_id"], ["goals.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_goal_notes_goal_id", "goal_notes", ["goal_id"], unique=False)

    op.create_table(
        "coach_notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("athlete_id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=True),
        sa.Column("visibility", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["athlete_id"], ["athletes.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            _in("type", ("general", "technical", "tactical", "physical", "mental")),
            name="ck_coach_notes_type",
        ),
        sa.CheckConstraint(_in("visibility", ("coaches", "all")), name="ck_coach_notes_visibility"),
    )
    op.create_index("ix_coach_notes_athlete_id", "coach_notes", ["athlete_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["auth_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"], unique=False)
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_coach_notes_athlete_id", table_name="coach_notes")
    op.drop_table("coach_notes")
    op.drop_index("ix_goal_notes_goal_id", table_name="goal_notes")
    op.drop_table("goal_notes")
    op.drop_index("ix_goals_athlete_id", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_assessments_protocol_id", table_name="assessments")
    op.drop_index("ix_assessments_athlete_id", table_name="assessments")
    op.drop_table("assessments")
    op.drop_table("protocols")
    op.drop_table("athletes")
    op.drop_table("users_extension")
    op.drop_table("auth_user")
