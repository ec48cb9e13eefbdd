"""
Record API Endpoints

One router per table, all going through the access-controlled store:
list / create / get / update / delete. Denied reads come back as 404,
denied writes on visible rows as 403.
"""
from fastapi import APIRouter, Depends, Query, Request, Response
from typing import Any, Dict, List, Optional, Type
from uuid import UUID

from pydantic import BaseModel

from athlete_manager.core.auth import get_store
from athlete_manager.schemas import (
    AssessmentCreate,
    AssessmentResponse,
    AssessmentUpdate,
    AthleteCreate,
    AthleteResponse,
    AthleteUpdate,
    AuditLogResponse,
    CoachNoteCreate,
    CoachNoteResponse,
    GoalCreate,
    GoalNoteCreate,
    GoalNoteResponse,
    GoalResponse,
    GoalUpdate,
    ProtocolCreate,
    ProtocolResponse,
    ProtocolUpdate,
    UserProfileCreate,
    UserProfileResponse,
    UserProfileUpdate,
)
from athlete_manager.services.policies import EntityKind
from athlete_manager.services.record_store import TABLES, AccessControlledStore


def _filter_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return raw


def build_router(
    kind: EntityKind,
    path: str,
    response_model: Type[BaseModel],
    create_model: Optional[Type[BaseModel]] = None,
    update_model: Optional[Type[BaseModel]] = None,
    deletable: bool = True,
) -> APIRouter:
    """Build the CRUD router for one table. Omitted models mean no such route."""
    router = APIRouter(prefix=f"/v1/{path}", tags=[path])
    filter_names = TABLES[kind].filters

    @router.get("", response_model=List[response_model])
    def list_records(
        request: Request,
        limit: int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
        store: AccessControlledStore = Depends(get_store),
    ):
        """
        List rows visible to the caller.

        Supported filters are passed as query params (e.g. ?athlete_id=...).
        """
        filters: Dict[str, Any] = {
            name: _filter_value(value)
            for name, value in request.query_params.items()
            if name in filter_names
        }
        return store.list(kind, filters=filters, limit=limit, offset=offset)

    @router.get("/{record_id}", response_model=response_model)
    def get_record(record_id: UUID, store: AccessControlledStore = Depends(get_store)):
        return store.get(kind, record_id)

    if create_model is not None:
        @router.post("", response_model=response_model, status_code=201)
        def create_record(payload: create_model, store: AccessControlledStore = Depends(get_store)):
            return store.create(kind, payload.model_dump())

    if update_model is not None:
        @router.patch("/{record_id}", response_model=response_model)
        def update_record(
            record_id: UUID,
            payload: update_model,
            store: AccessControlledStore = Depends(get_store),
        ):
            # Only fields present in the body are changed; explicit nulls clear
            return store.update(kind, record_id, payload.model_dump(exclude_unset=True))

    if deletable:
        @router.delete("/{record_id}", status_code=204)
        def delete_record(record_id: UUID, store: AccessControlledStore = Depends(get_store)):
            store.delete(kind, record_id)
            return Response(status_code=204)

    return router


profiles = build_router(
    EntityKind.USER_PROFILE, "profiles", UserProfileResponse, UserProfileCreate, UserProfileUpdate
)
athletes = build_router(
    EntityKind.ATHLETE, "athletes", AthleteResponse, AthleteCreate, AthleteUpdate
)
protocols = build_router(
    EntityKind.PROTOCOL, "protocols", ProtocolResponse, ProtocolCreate, ProtocolUpdate
)
assessments = build_router(
    EntityKind.ASSESSMENT, "assessments", AssessmentResponse, AssessmentCreate, AssessmentUpdate
)
goals = build_router(
    EntityKind.GOAL, "goals", GoalResponse, GoalCreate, GoalUpdate
)
# Notes are append-only: no PATCH route
goal_notes = build_router(
    EntityKind.GOAL_NOTE, "goal-notes", GoalNoteResponse, GoalNoteCreate
)
coach_notes = build_router(
    EntityKind.COACH_NOTE, "coach-notes", CoachNoteResponse, CoachNoteCreate
)
# Written by the system only
audit_logs = build_router(
    EntityKind.AUDIT_LOG, "audit-logs", AuditLogResponse, deletable=False
)

routers = [profiles, athletes, protocols, assessments, goals, goal_notes, coach_notes, audit_logs]
