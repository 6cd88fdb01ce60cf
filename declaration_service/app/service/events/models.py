# Pydantic models for declaration lifecycle events
from pydantic import BaseModel, Field
from typing import List, Optional, ClassVar
import datetime
import uuid

from declaration_service.app.service.enums import (
    ComplianceStatus,
    DeclarationStatus,
    DeclarationType,
    PartyType,
    RiskLevel,
    SourceType,
    VerificationOutcome,
)

class EventMetaData(BaseModel):
    correlation_id: Optional[str] = None
    causation_id: Optional[str] = None

class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    aggregate_id: str
    timestamp: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    version: int = 1
    payload: BaseModel
    metadata: EventMetaData = Field(default_factory=EventMetaData)
    # payload_model_name is a ClassVar on concrete event types.

# Declaration submitted through the wizard
class DeclarationSubmittedEventPayload(BaseModel):
    declaration_id: int
    declaration_type: DeclarationType
    source_type: SourceType
    status: DeclarationStatus
    risk_level: RiskLevel
    verification_outcome: Optional[VerificationOutcome] = None
    compliance_status: Optional[ComplianceStatus] = None
    linked_source_ids: List[int] = Field(default_factory=list)
    party_id: int
    party_type: PartyType
    product_name: str

class DeclarationSubmittedEvent(BaseEvent):
    event_type: str = "DeclarationSubmitted"
    payload: DeclarationSubmittedEventPayload
    payload_model_name: ClassVar[str] = "DeclarationSubmittedEventPayload"

# Status moved by the downstream review workflow
class DeclarationStatusChangedEventPayload(BaseModel):
    declaration_id: int
    old_status: DeclarationStatus
    new_status: DeclarationStatus
    changed_by: Optional[str] = None
    reason: Optional[str] = None

class DeclarationStatusChangedEvent(BaseEvent):
    event_type: str = "DeclarationStatusChanged"
    payload: DeclarationStatusChangedEventPayload
    payload_model_name: ClassVar[str] = "DeclarationStatusChangedEventPayload"
