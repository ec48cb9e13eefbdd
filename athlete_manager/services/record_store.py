"""
Access-controlled record store.

Every CRUD call is authorized against services.policies before the query
or mutation runs, and validated against the table rules below (closed
enumerations, required columns, references to existing rows). Denied reads
are indistinguishable from missing rows (NotFoundError); denied writes on
visible rows raise ForbiddenError.

The store only flushes, each write inside a SAVEPOINT. The caller owns the
transaction (get_db commits per request): a write rejected by the database
rolls back to its savepoint and leaves the caller's other pending work alone.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Type
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from athlete_manager.core.events import (
    EVENT_RECORD_CREATED,
    EVENT_RECORD_DELETED,
    EVENT_RECORD_UPDATED,
    emit,
)
from athlete_manager.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from athlete_manager.models import (
    COACH_NOTE_TYPES,
    COACH_NOTE_VISIBILITIES,
    DOMINANT_HANDS,
    GOAL_CATEGORIES,
    GOAL_STATUSES,
    PERFORMANCE_LEVELS,
    PROTOCOL_CRITERIA,
    ROLES,
    Assessment,
    Athlete,
    AuditLog,
    AuthUser,
    CoachNote,
    Goal,
    GoalNote,
    Protocol,
    UserProfile,
)
from athlete_manager.services import audit  # noqa: F401  (registers audit subscribers)
from athlete_manager.services.policies import (
    Actor,
    EntityKind,
    Operation,
    authorize,
    is_allowed,
    read_filters,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldRule:
    """
    Write rule for one column.

    kind: text | bool | number | date | datetime | dict | json | tags | ref
    """

    kind: str
    required: bool = False  # must be present and non-null on create
    nullable: bool = True  # may be set to null (False for columns with a default)
    choices: Optional[Tuple[str, ...]] = None
    references: Optional[Type] = None
    updatable: bool = True


@dataclass(frozen=True)
class Table:
    model: Type
    label: str
    columns: Dict[str, FieldRule]
    actor_fields: Tuple[str, ...] = ()  # filled with the actor id when omitted
    immutable: bool = False
    dependents: Tuple[Tuple[Type, str], ...] = ()  # (model, fk column) blocking delete
    order_by: str = "created_at"
    filters: Tuple[str, ...] = field(default=())


def _ref(model: Type, required: bool = False, updatable: bool = True) -> FieldRule:
    return FieldRule("ref", required=required, nullable=not required, references=model, updatable=updatable)


IDENTITY_DEPENDENTS = (
    (Athlete, "created_by"),
    (Protocol, "created_by"),
    (Assessment, "assessed_by"),
    (Goal, "assigned_to"),
    (Goal, "created_by"),
    (GoalNote, "created_by"),
    (CoachNote, "created_by"),
    (AuditLog, "user_id"),
)

TABLES: Dict[EntityKind, Table] = {
    EntityKind.USER_PROFILE: Table(
        model=UserProfile,
        label="User profile",
        columns={
            "id": _ref(AuthUser, required=True, updatable=False),
            "full_name": FieldRule("text"),
            "role": FieldRule("text", choices=ROLES),
            "is_active": FieldRule("bool", nullable=False),
            "preferences": FieldRule("dict", nullable=False),
        },
        dependents=IDENTITY_DEPENDENTS,
        filters=("role", "is_active"),
    ),
    EntityKind.ATHLETE: Table(
        model=Athlete,
        label="Athlete",
        columns={
            "name": FieldRule("text", required=True, nullable=False),
            "date_of_birth": FieldRule("date", required=True, nullable=False),
            "dominant_hand": FieldRule("text", choices=DOMINANT_HANDS),
            "wtn": FieldRule("number", required=True, nullable=False),
            "is_active": FieldRule("bool", nullable=False),
            "created_by": _ref(AuthUser, updatable=False),
        },
        actor_fields=("created_by",),
        dependents=((Assessment, "athlete_id"), (Goal, "athlete_id"), (CoachNote, "athlete_id")),
        filters=("is_active", "dominant_hand"),
    ),
    EntityKind.PROTOCOL: Table(
        model=Protocol,
        label="Protocol",
        columns={
            "name": FieldRule("text", required=True, nullable=False),
            "description": FieldRule("text"),
            "unit": FieldRule("text", required=True, nullable=False),
            "criteria": FieldRule("text", choices=PROTOCOL_CRITERIA),
            "categories": FieldRule("tags", required=True, nullable=False),
            "normative_data": FieldRule("json", required=True, nullable=False),
            "created_by": _ref(AuthUser, updatable=False),
        },
        actor_fields=("created_by",),
        dependents=((Assessment, "protocol_id"), (Goal, "protocol_id")),
        filters=("criteria",),
    ),
    EntityKind.ASSESSMENT: Table(
        model=Assessment,
        label="Assessment",
        columns={
            "athlete_id": _ref(Athlete, required=True),
            "protocol_id": _ref(Protocol, required=True),
            "value": FieldRule("number", required=True, nullable=False),
            "performance_level": FieldRule("text", choices=PERFORMANCE_LEVELS),
            "notes": FieldRule("text"),
            "assessed_by": _ref(AuthUser, required=True),
            "assessed_at": FieldRule("datetime", required=True, nullable=False),
        },
        actor_fields=("assessed_by",),
        order_by="assessed_at",
        filters=("athlete_id", "protocol_id", "performance_level"),
    ),
    EntityKind.GOAL: Table(
        model=Goal,
        label="Goal",
        columns={
            "athlete_id": _ref(Athlete, required=True),
            "title": FieldRule("text", required=True, nullable=False),
            "description": FieldRule("text"),
            "category": FieldRule("text", choices=GOAL_CATEGORIES),
            "target_metric": FieldRule("json"),
            "deadline": FieldRule("date"),
            "progress": FieldRule("number", nullable=False),
            "status": FieldRule("text", nullable=False, choices=GOAL_STATUSES),
            "protocol_id": _ref(Protocol),
            "assigned_to": _ref(AuthUser),
            "created_by": _ref(AuthUser, updatable=False),
        },
        actor_fields=("created_by",),
        dependents=((GoalNote, "goal_id"),),
        filters=("athlete_id", "status", "category", "assigned_to"),
    ),
    EntityKind.GOAL_NOTE: Table(
        model=GoalNote,
        label="Goal note",
        columns={
            "goal_id": _ref(Goal, required=True),
            "text": FieldRule("text", required=True, nullable=False),
            "created_by": _ref(AuthUser, required=True),
        },
        actor_fields=("created_by",),
        immutable=True,
        filters=("goal_id",),
    ),
    EntityKind.COACH_NOTE: Table(
        model=CoachNote,
        label="Coach note",
        columns={
            "athlete_id": _ref(Athlete, required=True),
            "content": FieldRule("text", required=True, nullable=False),
            "type": FieldRule("text", choices=COACH_NOTE_TYPES),
            "visibility": FieldRule("text", choices=COACH_NOTE_VISIBILITIES),
            "created_by": _ref(AuthUser, required=True),
        },
        actor_fields=("created_by",),
        immutable=True,
        filters=("athlete_id", "type", "visibility"),
    ),
    EntityKind.AUDIT_LOG: Table(
        model=AuditLog,
        label="Audit log entry",
        columns={
            "action": FieldRule("text", required=True, nullable=False),
            "user_id": _ref(AuthUser, required=True),
            "details": FieldRule("text", required=True, nullable=False),
        },
        immutable=True,
        order_by="timestamp",
        filters=("action", "user_id"),
    ),
}


def _as_uuid(value: Any, field_name: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field_name} is not a valid identifier: {value!r}", field=field_name)


class AccessControlledStore:
    """CRUD over the academy tables on behalf of one actor."""

    def __init__(self, db: Session, actor: Actor):
        self.db = db
        self.actor = actor

    # ------------------------------------------------------------------ reads

    def get(self, kind: EntityKind, record_id: Any):
        kind = EntityKind(kind)
        return self._load_visible(TABLES[kind], kind, record_id)

    def list(
        self,
        kind: EntityKind,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Any]:
        """Rows the actor may read, newest first. No read policy means an empty list."""
        kind = EntityKind(kind)
        table = TABLES[kind]
        query = self.db.query(table.model)
        for name, value in (filters or {}).items():
            if value is None:
                continue
            if name not in table.filters:
                raise ValidationError(f"Cannot filter {table.label} by {name}", field=name)
            rule = table.columns[name]
            if rule.kind == "ref":
                # No existence check: filtering by an unknown id is just an empty result
                value = _as_uuid(value, name)
            else:
                value = self._coerce(name, rule, value)
            query = query.filter(getattr(table.model, name) == value)

        if not is_allowed(self.actor, Operation.READ, kind):
            # No role-based grant: only rows matched by a row-level policy
            criteria = read_filters(self.actor, kind, table.model)
            if not criteria:
                return []
            query = query.filter(or_(*criteria))

        query = query.order_by(getattr(table.model, table.order_by).desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    # ----------------------------------------------------------------- writes

    def create(self, kind: EntityKind, values: Dict[str, Any]):
        kind = EntityKind(kind)
        table = TABLES[kind]
        if not authorize(self.actor, Operation.CREATE, kind):
            raise ForbiddenError(f"Not allowed to create {table.label.lower()}")

        values = dict(values)
        for name in table.actor_fields:
            if values.get(name) is None:
                values[name] = self.actor.id
        clean = self._validate(table, values, creating=True)

        if kind is EntityKind.USER_PROFILE and self.db.get(UserProfile, clean["id"]) is not None:
            raise ConflictError(f"User profile already exists: {clean['id']}")

        record = table.model(**clean)
        with self._savepoint(table):
            self.db.add(record)
        self.db.refresh(record)
        emit(EVENT_RECORD_CREATED, db=self.db, actor=self.actor, entity_kind=kind, record_id=record.id)
        return record

    def update(self, kind: EntityKind, record_id: Any, changes: Dict[str, Any]):
        kind = EntityKind(kind)
        table = TABLES[kind]
        record = self._load_visible(table, kind, record_id)
        if not authorize(self.actor, Operation.UPDATE, kind, record):
            raise ForbiddenError(f"Not allowed to update {table.label.lower()}")
        if table.immutable:
            raise ValidationError(f"{table.label} cannot be modified after creation")

        clean = self._validate(table, dict(changes), creating=False)
        if not clean:
            return record
        with self._savepoint(table):
            for name, value in clean.items():
                setattr(record, name, value)
        self.db.refresh(record)
        emit(
            EVENT_RECORD_UPDATED,
            db=self.db,
            actor=self.actor,
            entity_kind=kind,
            record_id=record.id,
            changes=list(clean),
        )
        return record

    def delete(self, kind: EntityKind, record_id: Any) -> None:
        kind = EntityKind(kind)
        table = TABLES[kind]
        record = self._load_visible(table, kind, record_id)
        if not authorize(self.actor, Operation.DELETE, kind, record):
            raise ForbiddenError(f"Not allowed to delete {table.label.lower()}")
        if kind is EntityKind.USER_PROFILE and record.id == self.actor.id:
            raise ValidationError("Cannot delete your own profile")

        for model, column in table.dependents:
            if self.db.query(model).filter(getattr(model, column) == record.id).first() is not None:
                raise ConflictError(f"{table.label} is still referenced by {model.__tablename__}.{column}")

        deleted_id = record.id
        identity = self.db.get(AuthUser, record.id) if kind is EntityKind.USER_PROFILE else None
        with self._savepoint(table):
            self.db.delete(record)
            # Profiles live and die with their identity
            if identity is not None:
                self.db.delete(identity)
        emit(EVENT_RECORD_DELETED, db=self.db, actor=self.actor, entity_kind=kind, record_id=deleted_id)

    # ---------------------------------------------------------------- helpers

    def _load_visible(self, table: Table, kind: EntityKind, record_id: Any):
        try:
            key = _as_uuid(record_id)
        except ValidationError:
            raise NotFoundError(table.label, str(record_id))
        record = self.db.get(table.model, key)
        if record is None or not is_allowed(self.actor, Operation.READ, kind, record):
            raise NotFoundError(table.label, str(record_id))
        return record

    @contextmanager
    def _savepoint(self, table: Table):
        """Flush the writes made in the block inside a SAVEPOINT; constraint errors become conflicts."""
        try:
            with self.db.begin_nested():
                yield
        except IntegrityError as e:
            logger.warning(f"{table.label} write rejected by database: {e.orig}")
            raise ConflictError(f"{table.label} violates a database constraint") from e

    def _validate(self, table: Table, values: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        unknown = sorted(set(values) - set(table.columns))
        if unknown:
            raise ValidationError(f"Unknown field(s) for {table.label}: {', '.join(unknown)}", field=unknown[0])

        clean: Dict[str, Any] = {}
        for name, rule in table.columns.items():
            if name not in values:
                if creating and rule.required:
                    raise ValidationError(f"{name} is required", field=name)
                continue
            value = values[name]
            if not creating and not rule.updatable:
                raise ValidationError(f"{name} cannot be changed", field=name)
            if value is None:
                if rule.required or not rule.nullable:
                    if creating and not rule.required:
                        continue  # fall back to the column default
                    raise ValidationError(f"{name} cannot be null", field=name)
                clean[name] = None
                continue
            clean[name] = self._coerce(name, rule, value)
        return clean

    def _coerce(self, name: str, rule: FieldRule, value: Any) -> Any:
        kind = rule.kind
        if kind == "text":
            if not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", field=name)
            if rule.choices is not None and value not in rule.choices:
                raise ValidationError(
                    f"{name} must be one of {', '.join(rule.choices)}; got {value!r}", field=name
                )
            return value
        if kind == "bool":
            if not isinstance(value, bool):
                raise ValidationError(f"{name} must be a boolean", field=name)
            return value
        if kind == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                raise ValidationError(f"{name} must be a number", field=name)
            return float(value)
        if kind == "date":
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return self._parse_iso(name, value, date.fromisoformat)
        if kind == "datetime":
            if isinstance(value, datetime):
                return value
            return self._parse_iso(name, value, datetime.fromisoformat)
        if kind == "dict":
            if not isinstance(value, dict):
                raise ValidationError(f"{name} must be an object", field=name)
            return value
        if kind == "tags":
            if (
                not isinstance(value, (list, tuple))
                or not value
                or not all(isinstance(v, str) and v for v in value)
            ):
                raise ValidationError(f"{name} must be a non-empty list of strings", field=name)
            return list(value)
        if kind == "json":
            return value
        if kind == "ref":
            key = _as_uuid(value, name)
            if self.db.get(rule.references, key) is None:
                raise ValidationError(f"{name} references a missing {rule.references.__tablename__} row", field=name)
            return key
        raise ValueError(f"Unknown column kind: {kind}")

    @staticmethod
    def _parse_iso(name: str, value: Any, parser):
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be an ISO date", field=name)
        try:
            return parser(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO date", field=name)
