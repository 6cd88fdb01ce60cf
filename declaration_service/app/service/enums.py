# Enumerations shared by the wizard, the verification pipeline and the persisted records
from enum import Enum
from typing import List


class SourceType(str, Enum):
    EXISTING_BASED = "existing"
    FRESH = "fresh"

class DeclarationType(str, Enum):
    INBOUND = "inbound"   # from a supplier
    OUTBOUND = "outbound" # to a customer

class PartyType(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"

class Unit(str, Enum):
    KG = "kg"
    TON = "ton"
    LITERS = "liters"
    CUBIC_METERS = "m³"
    PIECES = "pieces"

class WizardStep(str, Enum):
    TYPE_SELECT = "type_select"
    DETAIL_ENTRY = "detail_entry"
    EVIDENCE_UPLOAD = "evidence_upload"
    PARTY_DETAIL = "party_detail"
    REVIEW = "review"
    SUBMITTED = "submitted"

# Linear order of the wizard; SUBMITTED is terminal.
STEP_ORDER: List[WizardStep] = [
    WizardStep.TYPE_SELECT,
    WizardStep.DETAIL_ENTRY,
    WizardStep.EVIDENCE_UPLOAD,
    WizardStep.PARTY_DETAIL,
    WizardStep.REVIEW,
    WizardStep.SUBMITTED,
]

class CheckStatus(str, Enum):
    UNSTARTED = "unstarted"
    PENDING = "pending"
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"

class CheckResult(str, Enum):
    """Two-outcome contract of a single Verification Service call."""
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"

class VerificationStage(str, Enum):
    GEOMETRY = "geometry"
    SATELLITE = "satellite"

class VerificationOutcome(str, Enum):
    FULLY_COMPLIANT = "fully_compliant"
    NON_COMPLIANT_GEOMETRY = "non_compliant_geometry"
    NON_COMPLIANT_SATELLITE = "non_compliant_satellite"

NON_COMPLIANT_OUTCOMES = frozenset({
    VerificationOutcome.NON_COMPLIANT_GEOMETRY,
    VerificationOutcome.NON_COMPLIANT_SATELLITE,
})

class DeclarationStatus(str, Enum):
    PENDING = "pending"
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    REJECTED = "rejected"

class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT_GEOMETRY = "non-compliant-geometry"
    NON_COMPLIANT_SATELLITE = "non-compliant-satellite"

class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
