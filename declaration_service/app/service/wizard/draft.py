# Pydantic models for the in-progress declaration held by the wizard
import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from declaration_service.app.service.enums import (
    CheckStatus,
    DeclarationType,
    PartyType,
    SourceType,
    Unit,
    VerificationOutcome,
)

ITEM_REQUIRED_FIELDS = ("hsn_code", "product_name", "quantity")


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    hsn_code: str = ""
    product_name: str = ""
    scientific_name: Optional[str] = None
    quantity: Optional[Decimal] = Field(default=None, ge=0)
    unit: Unit = Unit.KG
    source_id: Optional[int] = None # set when the item was taken over from a source declaration
    rm_id: Optional[str] = None
    sku_code: Optional[str] = None

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.hsn_code.strip():
            missing.append("hsn_code")
        if not self.product_name.strip():
            missing.append("product_name")
        if self.quantity is None or self.quantity <= 0:
            missing.append("quantity")
        return missing

    def is_valid(self) -> bool:
        return not self.missing_fields()


class ValidityPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: Optional[datetime.date] = None
    end: Optional[datetime.date] = None

    @model_validator(mode="after")
    def end_not_before_start(self) -> "ValidityPeriod":
        if self.start and self.end and self.end < self.start:
            raise ValueError(f"end date {self.end.isoformat()} is before start date {self.start.isoformat()}")
        return self

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    documents: List[str] = Field(default_factory=list) # opaque file references
    geo_file: Optional[str] = None # opaque geodata reference


class PartyRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    party_id: int
    party_type: PartyType
    name: Optional[str] = None


class ReferenceNumbers(BaseModel):
    model_config = ConfigDict(frozen=True)

    po_number: Optional[str] = None
    so_number: Optional[str] = None
    shipment_number: Optional[str] = None


class VerificationState(BaseModel):
    """
    Progress of the geometry -> satellite checks for one geo file.

    The satellite check never leaves UNSTARTED unless geometry resolved COMPLIANT.
    """
    model_config = ConfigDict(frozen=True)

    geo_file_ref: str
    geometry: CheckStatus = CheckStatus.UNSTARTED
    satellite: CheckStatus = CheckStatus.UNSTARTED
    last_error: Optional[str] = None # retryable service error of the unresolved stage

    @model_validator(mode="after")
    def satellite_gated_by_geometry(self) -> "VerificationState":
        if self.satellite != CheckStatus.UNSTARTED and self.geometry != CheckStatus.COMPLIANT:
            raise ValueError(
                f"satellite check cannot be '{self.satellite.value}' while geometry is '{self.geometry.value}'"
            )
        return self

    @property
    def outcome(self) -> Optional[VerificationOutcome]:
        if self.geometry == CheckStatus.NON_COMPLIANT:
            return VerificationOutcome.NON_COMPLIANT_GEOMETRY
        if self.geometry == CheckStatus.COMPLIANT:
            if self.satellite == CheckStatus.COMPLIANT:
                return VerificationOutcome.FULLY_COMPLIANT
            if self.satellite == CheckStatus.NON_COMPLIANT:
                return VerificationOutcome.NON_COMPLIANT_SATELLITE
        return None

    @property
    def is_settled(self) -> bool:
        return self.outcome is not None


class _DraftBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    declaration_type: DeclarationType = DeclarationType.OUTBOUND
    items: List[LineItem] = Field(default_factory=lambda: [LineItem()])
    validity_period: Optional[ValidityPeriod] = None
    evidence: Evidence = Field(default_factory=Evidence)
    party: Optional[PartyRef] = None
    reference_numbers: ReferenceNumbers = Field(default_factory=ReferenceNumbers)
    comments: Optional[str] = None

    def valid_items(self) -> List[LineItem]:
        return [item for item in self.items if item.is_valid()]


class ExistingBasedDraft(_DraftBase):
    """Declaration assembled from previously approved declarations. Never geo-verified here."""
    source_type: Literal[SourceType.EXISTING_BASED] = SourceType.EXISTING_BASED
    source_declaration_ids: List[int] = Field(default_factory=list)

    @field_validator("source_declaration_ids")
    @classmethod
    def source_ids_must_be_unique(cls, v: List[int]) -> List[int]:
        duplicates = sorted({source_id for source_id in v if v.count(source_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate source declaration id(s): {', '.join(map(str, duplicates))}")
        return v


class FreshDraft(_DraftBase):
    """Declaration entered from fresh shipment data; requires geo evidence and verification."""
    source_type: Literal[SourceType.FRESH] = SourceType.FRESH
    verification: Optional[VerificationState] = None # None until a geo file is attached


DeclarationDraft = Annotated[Union[ExistingBasedDraft, FreshDraft], Field(discriminator="source_type")]

DRAFT_CLASSES = {
    SourceType.EXISTING_BASED: ExistingBasedDraft,
    SourceType.FRESH: FreshDraft,
}


def new_draft(
    source_type: SourceType,
    declaration_type: DeclarationType = DeclarationType.OUTBOUND,
) -> Union[ExistingBasedDraft, FreshDraft]:
    return DRAFT_CLASSES[SourceType(source_type)](declaration_type=declaration_type)
