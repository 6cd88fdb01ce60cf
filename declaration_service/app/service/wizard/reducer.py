# Pure draft reducer: every draft change goes through reduce_draft(draft, action) -> draft
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from declaration_service.app.service.enums import SourceType
from declaration_service.app.service.wizard.draft import (
    DRAFT_CLASSES,
    Evidence,
    ExistingBasedDraft,
    FreshDraft,
    LineItem,
    VerificationState,
)

logger = logging.getLogger(__name__)

Draft = Union[ExistingBasedDraft, FreshDraft]

COMMON_UPDATABLE_FIELDS: FrozenSet[str] = frozenset({
    "declaration_type",
    "items",
    "validity_period",
    "party",
    "reference_numbers",
    "comments",
})

# Evidence and verification only change through their own actions.
UPDATABLE_FIELDS: Dict[SourceType, FrozenSet[str]] = {
    SourceType.EXISTING_BASED: COMMON_UPDATABLE_FIELDS | {"source_declaration_ids"},
    SourceType.FRESH: COMMON_UPDATABLE_FIELDS,
}


# --- Actions ---
class DraftAction(BaseModel):
    model_config = ConfigDict(frozen=True)

class ChangeSourceType(DraftAction):
    source_type: SourceType

class UpdateFields(DraftAction):
    changes: Dict[str, Any]

class ReplaceItems(DraftAction):
    items: List[LineItem]

class AttachEvidence(DraftAction):
    documents: List[str] = Field(default_factory=list)
    geo_file: Optional[str] = None

class SetVerification(DraftAction):
    verification: VerificationState


def describe_error(error: Exception) -> str:
    if isinstance(error, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'draft'}: {err['msg']}"
            for err in error.errors()
        )
    return str(error)


# --- Reducers ---
def _change_source_type(draft: Draft, action: ChangeSourceType) -> Draft:
    if draft.source_type == action.source_type:
        return draft
    # Items and geo evidence belong to the variant; shared header fields carry over.
    return DRAFT_CLASSES[action.source_type](
        declaration_type=draft.declaration_type,
        validity_period=draft.validity_period,
        evidence=Evidence(documents=list(draft.evidence.documents)),
        party=draft.party,
        reference_numbers=draft.reference_numbers,
        comments=draft.comments,
    )

def _update_fields(draft: Draft, action: UpdateFields) -> Draft:
    not_allowed = sorted(set(action.changes) - UPDATABLE_FIELDS[draft.source_type])
    if not_allowed:
        raise ValueError(
            f"field(s) {', '.join(not_allowed)} cannot be updated on a {draft.source_type.value} draft"
        )
    data = draft.model_dump()
    data.update(action.changes)
    return type(draft).model_validate(data)

def _replace_items(draft: Draft, action: ReplaceItems) -> Draft:
    return draft.model_copy(update={"items": list(action.items)})

def _attach_evidence(draft: Draft, action: AttachEvidence) -> Draft:
    documents = list(draft.evidence.documents)
    for document in action.documents:
        if document not in documents:
            documents.append(document)
    geo_file = action.geo_file if action.geo_file is not None else draft.evidence.geo_file
    update: Dict[str, Any] = {"evidence": Evidence(documents=documents, geo_file=geo_file)}
    if isinstance(draft, FreshDraft) and action.geo_file is not None:
        # A new geo file always restarts verification from scratch.
        update["verification"] = VerificationState(geo_file_ref=action.geo_file)
    return draft.model_copy(update=update)

def _set_verification(draft: Draft, action: SetVerification) -> Draft:
    if not isinstance(draft, FreshDraft):
        raise ValueError("verification only applies to fresh drafts")
    if action.verification.geo_file_ref != draft.evidence.geo_file:
        logger.info(
            f"Ignoring verification update for superseded geo file '{action.verification.geo_file_ref}'."
        )
        return draft
    return draft.model_copy(update={"verification": action.verification})


REDUCERS: Dict[type, Callable[[Draft, Any], Draft]] = {
    ChangeSourceType: _change_source_type,
    UpdateFields: _update_fields,
    ReplaceItems: _replace_items,
    AttachEvidence: _attach_evidence,
    SetVerification: _set_verification,
}


def reduce_draft(draft: Draft, action: DraftAction) -> Draft:
    """Returns the draft resulting from `action`. Raises ValueError (incl. pydantic ValidationError) if rejected."""
    reducer = REDUCERS.get(type(action))
    if reducer is None:
        raise ValueError(f"unsupported draft action {type(action).__name__}")
    return reducer(draft, action)
