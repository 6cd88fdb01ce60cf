from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional

from declaration_service.app.models import DeclarationDB
from declaration_service.app.service.enums import (
    ComplianceStatus,
    DeclarationStatus,
    NON_COMPLIANT_OUTCOMES,
    RiskLevel,
    SourceType,
    VerificationOutcome,
)
from declaration_service.app.service.exceptions import (
    InvalidStatusTransitionError,
    StatusPolicyViolationError,
    VerificationInProgressError,
)
from declaration_service.app.service.wizard.draft import VerificationState


class StatusDerivationStrategy(ABC):
    @abstractmethod
    def derive_status(self, verification: Optional[VerificationState]) -> DeclarationStatus:
        """
        Determines the status a new declaration is persisted with.

        Args:
            verification: Verification state of the draft; None when no geo file was verified.

        Returns:
            The derived DeclarationStatus.
        """
        pass

class ExistingBasedStatusStrategy(StatusDerivationStrategy):
    """Existing-based declarations rely on already reviewed sources and skip verification."""
    def derive_status(self, verification: Optional[VerificationState]) -> DeclarationStatus:
        return DeclarationStatus.PENDING

class FreshStatusStrategy(StatusDerivationStrategy):
    def derive_status(self, verification: Optional[VerificationState]) -> DeclarationStatus:
        if verification is None:
            raise VerificationInProgressError("no geo file has been verified yet")
        outcome = verification.outcome
        if outcome is None:
            raise VerificationInProgressError(
                f"geometry check is '{verification.geometry.value}', "
                f"satellite check is '{verification.satellite.value}'"
            )
        if outcome in NON_COMPLIANT_OUTCOMES:
            return DeclarationStatus.DRAFT
        return DeclarationStatus.PENDING


_STATUS_STRATEGIES: Dict[SourceType, StatusDerivationStrategy] = {
    SourceType.EXISTING_BASED: ExistingBasedStatusStrategy(),
    SourceType.FRESH: FreshStatusStrategy(),
}

def get_status_strategy(source_type: SourceType) -> StatusDerivationStrategy:
    return _STATUS_STRATEGIES[SourceType(source_type)]

def derive_status(source_type: SourceType, verification: Optional[VerificationState]) -> DeclarationStatus:
    return get_status_strategy(source_type).derive_status(verification)


def resolve_requested_status(
    derived: DeclarationStatus,
    requested: Optional[DeclarationStatus],
) -> DeclarationStatus:
    """
    Applies a caller's explicit status request on top of the derived status.
    Saving as DRAFT is always allowed; anything stronger than the derived status is refused.
    """
    if requested is None or requested == derived:
        return derived
    if requested == DeclarationStatus.DRAFT:
        return DeclarationStatus.DRAFT
    if requested == DeclarationStatus.PENDING:
        raise StatusPolicyViolationError(
            requested.value, derived.value,
            "verification reported non-compliance; the declaration can only be saved as draft",
        )
    raise StatusPolicyViolationError(
        requested.value, derived.value,
        "review, approved and rejected are only set by the review workflow",
    )


def derive_compliance_status(outcome: Optional[VerificationOutcome]) -> Optional[ComplianceStatus]:
    if outcome is None:
        return None
    return {
        VerificationOutcome.FULLY_COMPLIANT: ComplianceStatus.COMPLIANT,
        VerificationOutcome.NON_COMPLIANT_GEOMETRY: ComplianceStatus.NON_COMPLIANT_GEOMETRY,
        VerificationOutcome.NON_COMPLIANT_SATELLITE: ComplianceStatus.NON_COMPLIANT_SATELLITE,
    }[outcome]

def derive_fresh_risk_level(outcome: VerificationOutcome) -> RiskLevel:
    return RiskLevel.HIGH if outcome in NON_COMPLIANT_OUTCOMES else RiskLevel.MEDIUM


# --- Persisted status transitions (review workflow) ---
ALLOWED_STATUS_TRANSITIONS: Dict[DeclarationStatus, FrozenSet[DeclarationStatus]] = {
    DeclarationStatus.DRAFT: frozenset({DeclarationStatus.PENDING, DeclarationStatus.REJECTED}),
    DeclarationStatus.PENDING: frozenset({DeclarationStatus.REVIEW, DeclarationStatus.APPROVED, DeclarationStatus.REJECTED}),
    DeclarationStatus.REVIEW: frozenset({DeclarationStatus.APPROVED, DeclarationStatus.REJECTED}),
    DeclarationStatus.APPROVED: frozenset(),
    DeclarationStatus.REJECTED: frozenset(),
}

def check_status_transition(declaration: DeclarationDB, new_status: DeclarationStatus) -> None:
    if new_status not in ALLOWED_STATUS_TRANSITIONS[declaration.status]:
        raise InvalidStatusTransitionError(declaration.id, declaration.status.value, new_status.value)
    # A non-compliant verification outcome pins the declaration to draft (or rejection).
    if new_status != DeclarationStatus.REJECTED and declaration.verification_outcome in NON_COMPLIANT_OUTCOMES:
        raise StatusPolicyViolationError(
            new_status.value, declaration.status.value,
            f"verification outcome is '{declaration.verification_outcome.value}'",
        )
