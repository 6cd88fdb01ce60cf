import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from declaration_service.app.service.enums import (
    CheckStatus,
    ComplianceStatus,
    DeclarationStatus,
    DeclarationType,
    PartyType,
    RiskLevel,
    SourceType,
    Unit,
    VerificationOutcome,
)
from declaration_service.app.service.wizard.draft import LineItem, ReferenceNumbers


class SourceDeclarationSummaryDB(BaseModel): # Snapshot of a source declaration at aggregation time
    declaration_id: int
    product_name: str
    hsn_code: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[Unit] = None
    status: DeclarationStatus
    risk_level: Optional[RiskLevel] = None
    eudr_reference_number: Optional[str] = None
    eudr_verification_number: Optional[str] = None


class DeclarationCreatePayload(BaseModel): # Everything the store needs to persist a new declaration
    declaration_type: DeclarationType
    source_type: SourceType
    status: DeclarationStatus
    risk_level: RiskLevel = RiskLevel.MEDIUM

    # Verification outcome (fresh only)
    verification_outcome: Optional[VerificationOutcome] = None
    compliance_status: Optional[ComplianceStatus] = None
    geometry_status: Optional[CheckStatus] = None
    satellite_status: Optional[CheckStatus] = None
    filing_eligible: bool = True

    # Aggregation (existing-based only)
    linked_source_ids: List[int] = Field(default_factory=list)
    source_summaries: List[SourceDeclarationSummaryDB] = Field(default_factory=list)

    # Product summary, denormalized from the items for listings
    items: List[LineItem] = Field(default_factory=list)
    product_name: str
    hsn_code: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[Unit] = None

    party_id: int
    party_type: PartyType
    party_name: Optional[str] = None

    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    documents: List[str] = Field(default_factory=list)
    geo_file: Optional[str] = None
    reference_numbers: ReferenceNumbers = Field(default_factory=ReferenceNumbers)
    comments: Optional[str] = None

    # Assigned once filed with the EU registry; never set by this service
    eudr_reference_number: Optional[str] = None
    eudr_verification_number: Optional[str] = None


class DeclarationDB(DeclarationCreatePayload): # Persisted declaration record
    id: int # sequential, assigned by the store
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    updated_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))


class DeclarationStats(BaseModel):
    total: int = 0
    inbound: int = 0
    outbound: int = 0
    pending: int = 0
    draft: int = 0
    review: int = 0
    approved: int = 0
    rejected: int = 0
