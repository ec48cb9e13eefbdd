"""
Tests for the access-controlled record store: validation, visibility,
immutability, conflicts and the audit trail of every mutation.
"""
import json
from contextlib import contextmanager
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import event

from athlete_manager.core.database import engine
from athlete_manager.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from athlete_manager.models import Assessment, Athlete, AuditLog, AuthUser, UserProfile
from athlete_manager.services.policies import EntityKind


@contextmanager
def _captured_sql():
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    try:
        yield statements
    finally:
        event.remove(engine, "before_cursor_execute", _record)


def _assessment_values(athlete, protocol, assessed_at, **overrides):
    values = {
        "athlete_id": athlete.id,
        "protocol_id": protocol.id,
        "value": 3.85,
        "performance_level": "median",
        "assessed_at": assessed_at,
    }
    values.update(overrides)
    return values


class TestCreate:
    def test_athlete_defaults(self, athlete, lead_coach):
        assert athlete.is_active is True
        assert athlete.created_by == lead_coach.id
        assert athlete.created_at is not None

    def test_assessment_requires_athlete(self, store_for, fitness_trainer, protocol, assessed_at):
        values = {"protocol_id": protocol.id, "value": 3.9, "assessed_at": assessed_at}
        with pytest.raises(ValidationError) as exc:
            store_for(fitness_trainer).create(EntityKind.ASSESSMENT, values)
        assert exc.value.field == "athlete_id"

    def test_assessment_rejects_missing_athlete_row(self, store_for, fitness_trainer, protocol, assessed_at):
        values = {"athlete_id": uuid4(), "protocol_id": protocol.id, "value": 3.9, "assessed_at": assessed_at}
        with pytest.raises(ValidationError) as exc:
            store_for(fitness_trainer).create(EntityKind.ASSESSMENT, values)
        assert exc.value.field == "athlete_id"

    def test_out_of_set_enum_is_rejected(self, store_for, fitness_trainer, athlete, protocol, assessed_at):
        values = _assessment_values(athlete, protocol, assessed_at, performance_level="good")
        with pytest.raises(ValidationError) as exc:
            store_for(fitness_trainer).create(EntityKind.ASSESSMENT, values)
        assert exc.value.field == "performance_level"

    def test_assessed_by_defaults_to_actor(self, store_for, fitness_trainer, athlete, protocol, assessed_at):
        record = store_for(fitness_trainer).create(
            EntityKind.ASSESSMENT, _assessment_values(athlete, protocol, assessed_at)
        )
        assert record.assessed_by == fitness_trainer.id
        assert record.value == pytest.approx(3.85)

    def test_goal_defaults(self, store_for, academy_coach, athlete):
        goal = store_for(academy_coach).create(
            EntityKind.GOAL, {"athlete_id": athlete.id, "title": "Improve first serve"}
        )
        assert goal.status == "onTrack"
        assert goal.progress == 0
        assert goal.created_by == academy_coach.id

    def test_goal_null_defaults_fall_back(self, store_for, academy_coach, athlete):
        goal = store_for(academy_coach).create(
            EntityKind.GOAL,
            {"athlete_id": athlete.id, "title": "Footwork", "status": None, "progress": None},
        )
        assert goal.status == "onTrack"
        assert goal.progress == 0

    def test_iso_strings_are_parsed(self, store_for, lead_coach):
        record = store_for(lead_coach).create(
            EntityKind.ATHLETE, {"name": "Leo", "date_of_birth": "2011-09-14", "wtn": 30}
        )
        assert record.date_of_birth == date(2011, 9, 14)
        assert record.wtn == 30.0

    @pytest.mark.parametrize(
        "values, field",
        [
            ({"name": "Leo", "date_of_birth": "14/09/2011", "wtn": 30}, "date_of_birth"),
            ({"name": "Leo", "date_of_birth": "2011-09-14", "wtn": "high"}, "wtn"),
            ({"name": "Leo", "date_of_birth": "2011-09-14", "wtn": True}, "wtn"),
            ({"name": None, "date_of_birth": "2011-09-14", "wtn": 30}, "name"),
            ({"name": "Leo", "date_of_birth": "2011-09-14", "wtn": 30, "nickname": "L"}, "nickname"),
        ],
    )
    def test_invalid_athlete_values(self, store_for, lead_coach, values, field):
        with pytest.raises(ValidationError) as exc:
            store_for(lead_coach).create(EntityKind.ATHLETE, values)
        assert exc.value.field == field

    def test_protocol_categories_must_be_non_empty(self, store_for, fitness_trainer):
        with pytest.raises(ValidationError) as exc:
            store_for(fitness_trainer).create(
                EntityKind.PROTOCOL,
                {"name": "Plank", "unit": "s", "categories": [], "normative_data": {}},
            )
        assert exc.value.field == "categories"

    def test_denied_create_is_forbidden(self, store_for, parent):
        with pytest.raises(ForbiddenError):
            store_for(parent).create(
                EntityKind.ATHLETE, {"name": "Mia", "date_of_birth": "2013-01-01", "wtn": 35}
            )

    def test_profile_for_identity_with_profile_conflicts(self, store_for, admin, lead_coach):
        with pytest.raises(ConflictError):
            store_for(admin).create(EntityKind.USER_PROFILE, {"id": lead_coach.id, "role": "lead_coach"})

    def test_audit_entries_cannot_be_created(self, store_for, admin):
        with pytest.raises(ForbiddenError):
            store_for(admin).create(
                EntityKind.AUDIT_LOG, {"action": "forged", "user_id": admin.id, "details": "{}"}
            )


class TestRead:
    def test_hidden_row_reads_as_missing(self, store_for, parent, athlete):
        with pytest.raises(NotFoundError):
            store_for(parent).get(EntityKind.ATHLETE, athlete.id)

    def test_unknown_id(self, store_for, lead_coach):
        with pytest.raises(NotFoundError):
            store_for(lead_coach).get(EntityKind.ATHLETE, uuid4())

    def test_malformed_id_reads_as_missing(self, store_for, lead_coach):
        with pytest.raises(NotFoundError):
            store_for(lead_coach).get(EntityKind.ATHLETE, "not-a-uuid")

    def test_non_admin_sees_only_own_profile(self, store_for, lead_coach, academy_coach, admin):
        rows = store_for(lead_coach).list(EntityKind.USER_PROFILE)
        assert [r.id for r in rows] == [lead_coach.id]
        with pytest.raises(NotFoundError):
            store_for(lead_coach).get(EntityKind.USER_PROFILE, academy_coach.id)

    def test_admin_sees_all_profiles(self, store_for, lead_coach, academy_coach, admin):
        rows = store_for(admin).list(EntityKind.USER_PROFILE)
        assert {r.id for r in rows} == {lead_coach.id, academy_coach.id, admin.id}

    def test_no_read_policy_gives_empty_list(self, store_for, parent, athlete):
        assert store_for(parent).list(EntityKind.ATHLETE) == []

    def test_parent_can_read_protocols(self, store_for, parent, protocol):
        assert [p.id for p in store_for(parent).list(EntityKind.PROTOCOL)] == [protocol.id]

    def test_list_filters(self, store_for, lead_coach, athlete):
        store = store_for(lead_coach)
        store.create(EntityKind.ATHLETE, {"name": "Old", "date_of_birth": "2009-01-01", "wtn": 20, "is_active": False})
        active = store.list(EntityKind.ATHLETE, filters={"is_active": True})
        assert [a.id for a in active] == [athlete.id]
        assert len(store.list(EntityKind.ATHLETE)) == 2
        assert len(store.list(EntityKind.ATHLETE, limit=1)) == 1

    def test_list_rejects_unknown_filter(self, store_for, lead_coach):
        with pytest.raises(ValidationError):
            store_for(lead_coach).list(EntityKind.ATHLETE, filters={"name": "Ana"})

    def test_list_rejects_malformed_filter_value(self, store_for, lead_coach):
        with pytest.raises(ValidationError) as exc:
            store_for(lead_coach).list(EntityKind.ATHLETE, filters={"is_active": "yes"})
        assert exc.value.field == "is_active"

    def test_list_rejects_out_of_set_filter_value(self, store_for, admin):
        with pytest.raises(ValidationError):
            store_for(admin).list(EntityKind.USER_PROFILE, filters={"role": "superuser"})

    def test_list_by_unknown_reference_is_empty(self, store_for, lead_coach, athlete):
        assert store_for(lead_coach).list(EntityKind.GOAL, filters={"athlete_id": uuid4()}) == []

    def test_list_pages_in_sql(self, store_for, admin, lead_coach, athlete):
        store = store_for(lead_coach)
        for i in range(5):
            store.update(EntityKind.ATHLETE, athlete.id, {"wtn": 20.0 + i})

        with _captured_sql() as statements:
            rows = store_for(admin).list(EntityKind.AUDIT_LOG, limit=2, offset=1)
        assert len(rows) == 2
        audit_selects = [s for s in statements if "FROM audit_logs" in s]
        assert audit_selects and all("LIMIT" in s for s in audit_selects)

    def test_own_profile_list_is_scoped_in_sql(self, store_for, lead_coach, academy_coach, admin):
        with _captured_sql() as statements:
            rows = store_for(academy_coach).list(EntityKind.USER_PROFILE)
        assert [r.id for r in rows] == [academy_coach.id]
        profile_selects = [s for s in statements if "FROM users_extension" in s]
        assert profile_selects and all("WHERE users_extension.id" in s for s in profile_selects)


class TestUpdate:
    def test_update_changes_fields(self, store_for, academy_coach, athlete):
        goal = store_for(academy_coach).create(EntityKind.GOAL, {"athlete_id": athlete.id, "title": "Serve"})
        updated = store_for(academy_coach).update(EntityKind.GOAL, goal.id, {"progress": 40, "status": "atRisk"})
        assert updated.progress == 40
        assert updated.status == "atRisk"

    def test_update_rejects_bad_enum(self, store_for, academy_coach, athlete):
        goal = store_for(academy_coach).create(EntityKind.GOAL, {"athlete_id": athlete.id, "title": "Serve"})
        with pytest.raises(ValidationError):
            store_for(academy_coach).update(EntityKind.GOAL, goal.id, {"status": "late"})

    def test_update_rejects_null_for_required(self, store_for, lead_coach, athlete):
        with pytest.raises(ValidationError):
            store_for(lead_coach).update(EntityKind.ATHLETE, athlete.id, {"name": None})

    def test_visible_but_not_updatable_is_forbidden(self, store_for, parent):
        with pytest.raises(ForbiddenError):
            store_for(parent).update(EntityKind.USER_PROFILE, parent.id, {"full_name": "New name"})

    def test_invisible_row_is_missing(self, store_for, fitness_trainer, athlete):
        with pytest.raises(NotFoundError):
            store_for(fitness_trainer).update(EntityKind.ATHLETE, athlete.id, {"wtn": 20})

    def test_goal_note_is_immutable(self, db_session, store_for, academy_coach, athlete):
        store = store_for(academy_coach)
        goal = store.create(EntityKind.GOAL, {"athlete_id": athlete.id, "title": "Serve"})
        note = store.create(EntityKind.GOAL_NOTE, {"goal_id": goal.id, "text": "Toss higher"})
        with pytest.raises(ValidationError):
            store.update(EntityKind.GOAL_NOTE, note.id, {"text": "Edited"})

    def test_coach_note_is_immutable(self, store_for, lead_coach, athlete):
        store = store_for(lead_coach)
        note = store.create(
            EntityKind.COACH_NOTE,
            {"athlete_id": athlete.id, "content": "Great session", "type": "general", "visibility": "coaches"},
        )
        assert note.created_by == lead_coach.id
        with pytest.raises(ValidationError):
            store.update(EntityKind.COACH_NOTE, note.id, {"content": "Edited"})

    def test_admin_changes_role(self, store_for, admin, parent):
        updated = store_for(admin).update(EntityKind.USER_PROFILE, parent.id, {"role": "academy_coach"})
        assert updated.role == "academy_coach"


class TestDelete:
    def test_referenced_athlete_conflicts(self, store_for, fitness_trainer, lead_coach, athlete, protocol, assessed_at):
        store_for(fitness_trainer).create(EntityKind.ASSESSMENT, _assessment_values(athlete, protocol, assessed_at))
        with pytest.raises(ConflictError):
            store_for(lead_coach).delete(EntityKind.ATHLETE, athlete.id)

    def test_delete_unreferenced_athlete(self, store_for, lead_coach, athlete):
        store = store_for(lead_coach)
        store.delete(EntityKind.ATHLETE, athlete.id)
        with pytest.raises(NotFoundError):
            store.get(EntityKind.ATHLETE, athlete.id)

    def test_delete_profile_removes_identity(self, db_session, store_for, admin, make_user):
        profile = make_user("parent")
        store_for(admin).delete(EntityKind.USER_PROFILE, profile.id)
        db_session.commit()
        assert db_session.get(UserProfile, profile.id) is None
        assert db_session.get(AuthUser, profile.id) is None

    def test_admin_cannot_delete_self(self, store_for, admin):
        with pytest.raises(ValidationError):
            store_for(admin).delete(EntityKind.USER_PROFILE, admin.id)

    def test_denied_delete_is_forbidden(self, store_for, academy_coach, protocol):
        with pytest.raises(ForbiddenError):
            store_for(academy_coach).delete(EntityKind.PROTOCOL, protocol.id)

    def test_rejected_delete_keeps_callers_pending_work(
        self, db_session, store_for, lead_coach, fitness_trainer, athlete, protocol, assessed_at
    ):
        # Pending and unflushed, so the dependents check cannot see it; the
        # database foreign key rejects the delete instead
        db_session.add(
            Assessment(
                athlete_id=athlete.id,
                protocol_id=protocol.id,
                value=3.8,
                assessed_by=fitness_trainer.id,
                assessed_at=assessed_at,
            )
        )
        with pytest.raises(ConflictError):
            store_for(lead_coach).delete(EntityKind.ATHLETE, athlete.id)

        db_session.commit()
        assert db_session.query(Assessment).filter(Assessment.athlete_id == athlete.id).count() == 1
        assert db_session.get(Athlete, athlete.id) is not None


class TestAuditTrail:
    def test_mutations_are_audited(self, db_session, store_for, lead_coach, athlete):
        store = store_for(lead_coach)
        store.update(EntityKind.ATHLETE, athlete.id, {"wtn": 22.0})
        entries = (
            db_session.query(AuditLog)
            .filter(AuditLog.user_id == lead_coach.id)
            .order_by(AuditLog.timestamp)
            .all()
        )
        actions = [e.action for e in entries]
        assert actions.count("athlete.create") == 1
        assert actions.count("athlete.update") == 1
        update = next(e for e in entries if e.action == "athlete.update")
        assert json.loads(update.details) == {"entity": "athlete", "id": str(athlete.id), "fields": ["wtn"]}

    def test_only_admin_reads_audit_log(self, store_for, admin, lead_coach, athlete):
        assert store_for(lead_coach).list(EntityKind.AUDIT_LOG) == []
        assert any(e.action == "athlete.create" for e in store_for(admin).list(EntityKind.AUDIT_LOG))

    def test_audit_entries_cannot_be_deleted_by_admin(self, store_for, admin, athlete):
        entry = store_for(admin).list(EntityKind.AUDIT_LOG)[0]
        with pytest.raises(ForbiddenError):
            store_for(admin).delete(EntityKind.AUDIT_LOG, entry.id)
