"""
Converts API Endpoints.

Endpoints for registering converts and moving them through the follow-up program.
"""

from functools import lru_cache
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.models import (
    ConvertCreateRequest,
    ConvertResponse,
    ConvertUpdateRequest,
    ErrorResponse,
    ManualStatusRequest,
    MilestoneUpdateRequest,
    ReopenRequest,
    StageResponse,
)
from domain.actor import Actor
from domain.convert import ConvertRecord, to_public_dict
from domain.errors import (
    ConcurrentModificationError,
    ConvertNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from services.lifecycle_service import ConvertLifecycleEngine

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@lru_cache(maxsize=1)
def get_engine() -> ConvertLifecycleEngine:
    """Engine backed by the Supabase repository."""
    return ConvertLifecycleEngine()


def _to_response(record: ConvertRecord) -> ConvertResponse:
    return ConvertResponse(**to_public_dict(record))


def _raise_http(e: Exception) -> NoReturn:
    """Map lifecycle errors onto HTTP status codes."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, ConvertNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValidationError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PermissionDeniedError):
        raise HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ConcurrentModificationError):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=500, detail=f"Failed to process convert: {str(e)}")


@router.post(
    "/converts",
    response_model=ConvertResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Register Convert",
    description="Register a new convert and schedule their 8 weekly follow-up visits.",
)
def create_convert(request: ConvertCreateRequest, engine: ConvertLifecycleEngine = Depends(get_engine)):
    """
    Register a convert.

    Visit n is scheduled 7*(n-1) days after registration, at 09:00.
    """
    details = request.model_dump(exclude={"soul_winner_id", "parish_id"})
    try:
        record = engine.create_record(request.soul_winner_id, request.parish_id, details)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)


@router.get(
    "/converts/{convert_id}",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
    summary="Get Convert",
)
def get_convert(convert_id: UUID, engine: ConvertLifecycleEngine = Depends(get_engine)):
    try:
        record = engine.get_record(convert_id)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)


@router.get(
    "/converts/{convert_id}/stage",
    response_model=StageResponse,
    responses=_ERROR_RESPONSES,
    summary="Get Convert Stage",
)
def get_convert_stage(convert_id: UUID, engine: ConvertLifecycleEngine = Depends(get_engine)):
    try:
        stage = engine.get_stage(convert_id)
    except Exception as e:
        _raise_http(e)
    return StageResponse(convert_id=convert_id, stage=stage)


@router.put(
    "/converts/{convert_id}",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
    summary="Update Convert Details",
)
def update_convert(
    convert_id: UUID,
    request: ConvertUpdateRequest,
    engine: ConvertLifecycleEngine = Depends(get_engine),
):
    """Edit demographic fields. Status is changed through the status endpoints only."""
    # Only fields present in the body change; an explicit null clears an optional field.
    changes = request.model_dump(exclude={"actor_id", "actor_role"}, exclude_unset=True)
    try:
        actor = Actor(actor_id=request.actor_id, role=request.actor_role)
        record = engine.update_details(convert_id, actor, changes)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)


@router.patch(
    "/converts/{convert_id}/visits/{visit_number}",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
    summary="Toggle Visit Completion",
)
def toggle_visit(
    convert_id: UUID,
    visit_number: int,
    engine: ConvertLifecycleEngine = Depends(get_engine),
):
    """Flip a visit between completed and not completed; the status is re-derived."""
    try:
        record = engine.toggle_visit(convert_id, visit_number)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)


@router.patch(
    "/converts/{convert_id}/milestones",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
    summary="Update Milestones",
)
def update_milestones(
    convert_id: UUID,
    request: MilestoneUpdateRequest,
    engine: ConvertLifecycleEngine = Depends(get_engine),
):
    """
    Update one or more spiritual-growth milestones.

    **Example request:**
    ```json
    {"believerClass": "Completed", "workersTraining": "InProgress"}
    ```
    """
    changes = request.model_dump(exclude_none=True)
    try:
        record = engine.set_milestones(convert_id, changes)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)


@router.post(
    "/converts/{convert_id}/status",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
    summary="Set Manual Status",
)
def set_manual_status(
    convert_id: UUID,
    request: ManualStatusRequest,
    engine: ConvertLifecycleEngine = Depends(get_engine),
):
    """
    Mark a convert Unreachable or Completed.

    Soul winners may only do this for their own converts; admins for any convert.
    """
    try:
        actor = Actor(actor_id=request.actor_id, role=request.actor_role)
        record = engine.set_manual_status(convert_id, request.status, actor)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)


@router.post(
    "/converts/{convert_id}/reopen",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
    summary="Reopen Convert",
)
def reopen_convert(
    convert_id: UUID,
    request: ReopenRequest,
    engine: ConvertLifecycleEngine = Depends(get_engine),
):
    """Clear an Unreachable or manual Completed status so it is derived again."""
    try:
        actor = Actor(actor_id=request.actor_id, role=request.actor_role)
        record = engine.reopen(convert_id, actor)
    except Exception as e:
        _raise_http(e)
    return _to_response(record)
