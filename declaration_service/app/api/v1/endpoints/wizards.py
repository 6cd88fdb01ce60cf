# API Router for declaration wizard sessions
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from declaration_service.app.api.v1.endpoints.errors import to_http_exception
from declaration_service.app.dependencies.providers import (
    get_declaration_store,
    get_event_recorder,
    get_wizard_registry,
)
from declaration_service.app.models import DeclarationDB
from declaration_service.app.service.enums import DeclarationStatus, DeclarationType, SourceType, WizardStep
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import BaseDeclarationServiceError
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore
from declaration_service.app.service.interfaces.verification_service import AbstractVerificationService
from declaration_service.app.service.wizard.registry import WizardSessionRegistry
from declaration_service.app.service.wizard.state_machine import WizardSnapshot
from declaration_service.infrastructure.verification_service_client import get_verification_service

logger = logging.getLogger(__name__)
router = APIRouter()


# --- Request models ---
class OpenWizardRequest(BaseModel):
    source_type: SourceType = SourceType.EXISTING_BASED
    declaration_type: DeclarationType = DeclarationType.OUTBOUND

class RetreatRequest(BaseModel):
    to_step: Optional[WizardStep] = None

class AttachEvidenceRequest(BaseModel):
    documents: List[str] = Field(default_factory=list)
    geo_file: Optional[str] = None

class SubmitRequest(BaseModel):
    requested_status: Optional[DeclarationStatus] = None

class RetryVerificationResponse(BaseModel):
    retried: bool
    wizard: WizardSnapshot


# --- API Endpoints ---
@router.post("/wizards", response_model=WizardSnapshot, status_code=201, summary="Open a declaration wizard.")
async def open_wizard_api(
    request_data: Optional[OpenWizardRequest] = Body(None),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
    store: AbstractDeclarationStore = Depends(get_declaration_store),
    verification_service: AbstractVerificationService = Depends(get_verification_service),
    event_recorder: DeclarationEventRecorder = Depends(get_event_recorder),
):
    request_data = request_data or OpenWizardRequest()
    wizard = registry.open(
        request_data.source_type,
        request_data.declaration_type,
        store=store,
        verification_service=verification_service,
        event_recorder=event_recorder,
    )
    return wizard.snapshot()


@router.get("/wizards/{wizard_id}", response_model=WizardSnapshot, summary="Current step and draft of a wizard.")
async def get_wizard_api(wizard_id: str, registry: WizardSessionRegistry = Depends(get_wizard_registry)):
    try:
        return registry.snapshot(wizard_id)
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.patch("/wizards/{wizard_id}/draft", response_model=WizardSnapshot, summary="Partially update the draft.")
async def update_draft_api(
    wizard_id: str,
    changes: Dict[str, Any] = Body(...),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    try:
        wizard = registry.get(wizard_id)
        await wizard.update_draft(changes)
        return wizard.snapshot()
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.post("/wizards/{wizard_id}/advance", response_model=WizardSnapshot, summary="Validate the current step and move forward.")
async def advance_wizard_api(wizard_id: str, registry: WizardSessionRegistry = Depends(get_wizard_registry)):
    try:
        wizard = registry.get(wizard_id)
        wizard.advance()
        return wizard.snapshot()
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.post("/wizards/{wizard_id}/retreat", response_model=WizardSnapshot, summary="Go back one step or to an earlier step.")
async def retreat_wizard_api(
    wizard_id: str,
    request_data: Optional[RetreatRequest] = Body(None),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    try:
        wizard = registry.get(wizard_id)
        wizard.retreat(request_data.to_step if request_data else None)
        return wizard.snapshot()
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.post("/wizards/{wizard_id}/evidence", response_model=WizardSnapshot, summary="Attach documents and/or a geo file.")
async def attach_evidence_api(
    wizard_id: str,
    request_data: AttachEvidenceRequest = Body(...),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    try:
        wizard = registry.get(wizard_id)
        await wizard.attach_evidence(request_data.documents, request_data.geo_file)
        return wizard.snapshot()
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.post(
    "/wizards/{wizard_id}/verification/retry",
    response_model=RetryVerificationResponse,
    summary="Retry the verification stage that failed.",
)
async def retry_verification_api(wizard_id: str, registry: WizardSessionRegistry = Depends(get_wizard_registry)):
    try:
        wizard = registry.get(wizard_id)
        retried = await wizard.retry_verification()
        return RetryVerificationResponse(retried=retried, wizard=wizard.snapshot())
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)


@router.post("/wizards/{wizard_id}/submit", response_model=DeclarationDB, status_code=201, summary="Persist the declaration.")
async def submit_wizard_api(
    wizard_id: str,
    request_data: Optional[SubmitRequest] = Body(None),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    try:
        return await registry.submit(wizard_id, request_data.requested_status if request_data else None)
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error submitting wizard {wizard_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to submit declaration.")


@router.delete("/wizards/{wizard_id}", status_code=204, summary="Close the wizard and discard its draft.")
async def cancel_wizard_api(wizard_id: str, registry: WizardSessionRegistry = Depends(get_wizard_registry)):
    try:
        await registry.close(wizard_id)
    except BaseDeclarationServiceError as e:
        raise to_http_exception(e)
