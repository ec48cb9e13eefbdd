"""
Row-level access policies.

Each table carries a list of named policies. A policy covers a set of
operations and holds a predicate over (actor, record). An operation is
allowed when ANY policy of the table that covers it matches (OR, never AND);
a table/operation with no matching policy is denied.

Most predicates are role-based and ignore the record. The one ownership
predicate ("Users can read own data") needs the target record, so it never
matches at create time when no record exists yet. It also carries an SQL
row filter so list queries can be scoped in the database.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from athlete_manager.models import UserProfile

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class EntityKind(str, enum.Enum):
    USER_PROFILE = "user_profile"
    ATHLETE = "athlete"
    PROTOCOL = "protocol"
    ASSESSMENT = "assessment"
    GOAL = "goal"
    GOAL_NOTE = "goal_note"
    COACH_NOTE = "coach_note"
    AUDIT_LOG = "audit_log"


class Decision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"

    def __bool__(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class Actor:
    """Authenticated identity with the role/active flag from its own profile row."""

    id: UUID
    role: Optional[str]
    is_active: bool = True

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "Actor":
        return cls(id=profile.id, role=profile.role, is_active=bool(profile.is_active))


Predicate = Callable[[Actor, Optional[Any]], bool]
RowFilter = Callable[[Actor, Any], Any]

ALL_OPERATIONS: FrozenSet[Operation] = frozenset(Operation)
READ_ONLY: FrozenSet[Operation] = frozenset({Operation.READ})

ADMIN = frozenset({"admin"})
ATHLETE_MANAGERS = frozenset({"admin", "lead_coach", "academy_coach"})
PROTOCOL_MANAGERS = frozenset({"admin", "lead_coach", "fitness_trainer"})
COACHING_STAFF = frozenset({"admin", "lead_coach", "academy_coach", "fitness_trainer"})


@dataclass(frozen=True)
class Policy:
    name: str
    operations: FrozenSet[Operation]
    predicate: Predicate
    # SQL form of a row-dependent predicate, used to scope list queries
    row_filter: Optional[RowFilter] = None

    def covers(self, operation: Operation) -> bool:
        return operation in self.operations

    def matches(self, actor: Actor, record: Optional[Any]) -> bool:
        return bool(self.predicate(actor, record))


def role_in(roles: FrozenSet[str]) -> Predicate:
    def _check(actor: Actor, record: Optional[Any]) -> bool:
        return actor.role in roles
    return _check


def is_record_owner(actor: Actor, record: Optional[Any]) -> bool:
    return record is not None and getattr(record, "id", None) == actor.id


def owner_row_filter(actor: Actor, model: Any):
    return model.id == actor.id


def any_authenticated(actor: Actor, record: Optional[Any]) -> bool:
    return actor.id is not None


POLICIES: Dict[EntityKind, List[Policy]] = {
    EntityKind.USER_PROFILE: [
        Policy("Users can read own data", READ_ONLY, is_record_owner, owner_row_filter),
        Policy("Admins can manage all users", ALL_OPERATIONS, role_in(ADMIN)),
    ],
    EntityKind.ATHLETE: [
        Policy("Coaches can manage athletes", ALL_OPERATIONS, role_in(ATHLETE_MANAGERS)),
    ],
    EntityKind.PROTOCOL: [
        Policy("Anyone can read protocols", READ_ONLY, any_authenticated),
        Policy("Coaches can manage protocols", ALL_OPERATIONS, role_in(PROTOCOL_MANAGERS)),
    ],
    EntityKind.ASSESSMENT: [
        Policy("Coaches can manage assessments", ALL_OPERATIONS, role_in(COACHING_STAFF)),
    ],
    EntityKind.GOAL: [
        Policy("Coaches can manage goals", ALL_OPERATIONS, role_in(COACHING_STAFF)),
    ],
    EntityKind.GOAL_NOTE: [
        Policy("Coaches can manage goal notes", ALL_OPERATIONS, role_in(COACHING_STAFF)),
    ],
    EntityKind.COACH_NOTE: [
        Policy("Coaches can manage notes", ALL_OPERATIONS, role_in(COACHING_STAFF)),
    ],
    # No write policy: audit entries are written with system privilege only.
    EntityKind.AUDIT_LOG: [
        Policy("Only admins can read audit logs", READ_ONLY, role_in(ADMIN)),
    ],
}


def policies_for(entity_kind: EntityKind, operation: Operation) -> List[Policy]:
    operation = Operation(operation)
    return [p for p in POLICIES.get(EntityKind(entity_kind), []) if p.covers(operation)]


def is_allowed(
    actor: Actor,
    operation: Operation,
    entity_kind: EntityKind,
    record: Optional[Any] = None,
) -> bool:
    """authorize() without the denial log line; used for row filtering."""
    return any(p.matches(actor, record) for p in policies_for(entity_kind, operation))


def read_filters(actor: Actor, entity_kind: EntityKind, model: Any) -> List[Any]:
    """
    SQL criteria for the rows actor may read through row-dependent policies.

    Only meaningful when is_allowed(actor, READ, entity_kind) is False: role
    predicates ignore the record, so none of them can match a single row.
    """
    return [
        p.row_filter(actor, model)
        for p in policies_for(entity_kind, Operation.READ)
        if p.row_filter is not None
    ]


def authorize(
    actor: Actor,
    operation: Operation,
    entity_kind: EntityKind,
    record: Optional[Any] = None,
) -> Decision:
    """
    Decide whether actor may perform operation on entity_kind.

    record is the target row for read/update/delete; omit it for create.
    """
    operation = Operation(operation)
    if is_allowed(actor, operation, entity_kind, record):
        return Decision.ALLOW
    logger.info(
        "Access denied",
        extra={
            "extra_fields": {
                "actor_id": str(actor.id),
                "role": actor.role,
                "operation": operation.value,
                "entity": EntityKind(entity_kind).value,
            }
        },
    )
    return Decision.DENY


def resolve_actor(db: Session, user_id: UUID) -> Optional[Actor]:
    """
    Load the actor's own profile row. Admin-ness is a property of this row,
    never of the row being accessed.
    """
    profile = db.get(UserProfile, user_id)
    if profile is None:
        return None
    return Actor.from_profile(profile)
