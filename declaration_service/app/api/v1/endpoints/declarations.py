# API Router for persisted declarations
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel

from declaration_service.app.api.v1.endpoints.errors import to_http_exception
from declaration_service.app.dependencies.providers import get_declaration_store, get_event_recorder
from declaration_service.app.models import DeclarationDB, DeclarationStats
from declaration_service.app.service.commands import handlers as command_handlers
from declaration_service.app.service.commands import models as command_models
from declaration_service.app.service.enums import DeclarationStatus, DeclarationType
from declaration_service.app.service.events.models import BaseEvent
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import BaseDeclarationServiceError, DeclarationNotFoundError
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore

logger = logging.getLogger(__name__)
router = APIRouter()


class UpdateStatusRequest(BaseModel):
    new_status: DeclarationStatus
    changed_by: Optional[str] = None
    reason: Optional[str] = None


@router.get("/declarations", response_model=List[DeclarationDB], summary="List declarations, newest first.")
async def list_declarations_api(
    declaration_type: Optional[DeclarationType] = Query(None),
    status: Optional[DeclarationStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    store: AbstractDeclarationStore = Depends(get_declaration_store),
):
    try:
        return await store.list_declarations(declaration_type=declaration_type, status=status, limit=limit, skip=skip)
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.get("/declarations/stats", response_model=DeclarationStats, summary="Declaration counts by direction and status.")
async def declaration_stats_api(store: AbstractDeclarationStore = Depends(get_declaration_store)):
    try:
        return await store.stats()
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.get("/declarations/{declaration_id}", response_model=DeclarationDB)
async def get_declaration_api(declaration_id: int, store: AbstractDeclarationStore = Depends(get_declaration_store)):
    try:
        declaration = await store.get(declaration_id)
        if declaration is None:
            raise DeclarationNotFoundError(declaration_id)
        return declaration
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.patch(
    "/declarations/{declaration_id}/status",
    response_model=DeclarationDB,
    summary="Move a declaration along the review workflow.",
)
async def update_declaration_status_api(
    declaration_id: int,
    request_data: UpdateStatusRequest = Body(...),
    store: AbstractDeclarationStore = Depends(get_declaration_store),
    event_recorder: DeclarationEventRecorder = Depends(get_event_recorder),
):
    try:
        cmd = command_models.UpdateDeclarationStatusCommand(
            declaration_id=declaration_id,
            new_status=request_data.new_status,
            changed_by=request_data.changed_by,
            reason=request_data.reason,
        )
        return await command_handlers.handle_update_declaration_status(cmd, store, event_recorder)
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error updating status of declaration {declaration_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update declaration status.")


@router.get("/declarations/{declaration_id}/events", summary="Lifecycle events of a declaration.")
async def declaration_events_api(
    declaration_id: int,
    event_recorder: DeclarationEventRecorder = Depends(get_event_recorder),
):
    try:
        events: List[BaseEvent] = await event_recorder.history(str(declaration_id))
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)
    return [event.model_dump(mode="json") for event in events]
