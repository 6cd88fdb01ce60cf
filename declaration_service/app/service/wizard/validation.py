# Per-step validation rules of the declaration wizard
import logging
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from declaration_service.app.service.enums import DeclarationType, PartyType, WizardStep
from declaration_service.app.service.wizard.draft import ExistingBasedDraft, FreshDraft, LineItem

logger = logging.getLogger(__name__)

Draft = Union[ExistingBasedDraft, FreshDraft]

# Party required on the counter side of each declaration direction
EXPECTED_PARTY_TYPE: Dict[DeclarationType, PartyType] = {
    DeclarationType.OUTBOUND: PartyType.CUSTOMER,
    DeclarationType.INBOUND: PartyType.SUPPLIER,
}


class StepValidationResult(BaseModel):
    step: WizardStep
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def passed(cls, step: WizardStep) -> "StepValidationResult":
        return cls(step=step, ok=True)

    @classmethod
    def failed(cls, step: WizardStep, reason: str) -> "StepValidationResult":
        return cls(step=step, ok=False, reason=reason)


def describe_missing_item_fields(items: List[LineItem]) -> str:
    if not items:
        return "at least one item is required (hsn_code, product_name, quantity)"
    missing = [
        f"item {index} is missing {', '.join(item.missing_fields())}"
        for index, item in enumerate(items, start=1)
    ]
    return (
        "at least one item needs hsn_code, product_name and a quantity greater than zero; "
        + "; ".join(missing)
    )


def _type_select_rules(draft: Draft) -> List[str]:
    # Source type is always one of the two variants once a draft exists.
    return []


def _detail_entry_rules(draft: Draft) -> List[str]:
    reasons = []
    if isinstance(draft, ExistingBasedDraft) and not draft.source_declaration_ids:
        reasons.append("select at least one existing declaration")
    if draft.validity_period is None or not draft.validity_period.is_complete:
        reasons.append("both start and end dates of the validity period are required")
    if not draft.valid_items():
        reasons.append(describe_missing_item_fields(draft.items))
    elif isinstance(draft, ExistingBasedDraft):
        # Incomplete source items would otherwise be dropped at submit.
        incomplete = [item.source_id for item in draft.items if item.source_id is not None and not item.is_valid()]
        if incomplete:
            reasons.append(
                f"complete or remove the items taken over from source declaration(s) {', '.join(map(str, incomplete))}"
            )
    return reasons


def _evidence_upload_rules(draft: Draft) -> List[str]:
    reasons = []
    if isinstance(draft, FreshDraft) and not draft.evidence.geo_file:
        reasons.append("a geo file is required for fresh declarations")
    if not draft.evidence.documents:
        reasons.append("upload at least one document as evidence")
    return reasons


def _party_detail_rules(draft: Draft) -> List[str]:
    expected = EXPECTED_PARTY_TYPE[draft.declaration_type]
    if draft.party is None:
        return [f"select a {expected.value} to continue"]
    if draft.party.party_type != expected:
        return [
            f"{draft.declaration_type.value} declarations require a {expected.value}, "
            f"got a {draft.party.party_type.value}"
        ]
    return []


def _review_rules(draft: Draft) -> List[str]:
    return []


STEP_RULES: Dict[WizardStep, Callable[[Draft], List[str]]] = {
    WizardStep.TYPE_SELECT: _type_select_rules,
    WizardStep.DETAIL_ENTRY: _detail_entry_rules,
    WizardStep.EVIDENCE_UPLOAD: _evidence_upload_rules,
    WizardStep.PARTY_DETAIL: _party_detail_rules,
    WizardStep.REVIEW: _review_rules,
}


def validate_step(step: WizardStep, draft: Draft) -> StepValidationResult:
    """
    Checks whether `draft` satisfies the exit rules of `step`.
    Pure: never mutates the draft and never raises for a rule violation.
    """
    rules = STEP_RULES.get(step)
    if rules is None:
        return StepValidationResult.failed(step, f"step '{step.value}' has no further transition")

    reasons = rules(draft)
    if reasons:
        reason = "; ".join(reasons)
        logger.debug(f"Step '{step.value}' rejected for {draft.source_type.value} draft: {reason}")
        return StepValidationResult.failed(step, reason)
    return StepValidationResult.passed(step)
