import asyncio
from decimal import Decimal

import pytest

from declaration_service.app.service.enums import (
    CheckResult,
    CheckStatus,
    ComplianceStatus,
    DeclarationStatus,
    DeclarationType,
    RiskLevel,
    SourceType,
    VerificationOutcome,
    VerificationStage,
    WizardStep,
)
from declaration_service.app.service.exceptions import (
    AggregationFailedError,
    InvalidWizardStateError,
    StatusPolicyViolationError,
    ValidationFailedError,
    VerificationInProgressError,
    VerificationServiceError,
)
from declaration_service.app.service.wizard.draft import ExistingBasedDraft, FreshDraft, VerificationState
from declaration_service.app.service.wizard.state_machine import DeclarationWizard

PALM_OIL_ITEM = {"hsn_code": "1511.10.00", "product_name": "Palm Oil", "quantity": "5000", "unit": "kg"}
VALIDITY = {"start": "2024-01-01", "end": "2024-12-31"}
CUSTOMER = {"party_id": 42, "party_type": "customer", "name": "Acme Foods"}


def open_wizard(source_type, store, verification_service, **kwargs) -> DeclarationWizard:
    return DeclarationWizard.open(source_type, store=store, verification_service=verification_service, **kwargs)


async def drive_fresh_to_review(wizard: DeclarationWizard, geo_file: str = "plots.geojson", wait: bool = True):
    wizard.advance()
    await wizard.update_draft({"items": [PALM_OIL_ITEM], "validity_period": VALIDITY})
    wizard.advance()
    await wizard.attach_evidence(["harvest-certificate.pdf"], geo_file=geo_file)
    if wait:
        await wizard.wait_for_verification()
    wizard.advance()
    await wizard.update_draft({"party": CUSTOMER})
    wizard.advance()
    assert wizard.step == WizardStep.REVIEW


# --- Fresh declarations ---

@pytest.mark.asyncio
async def test_fresh_palm_oil_satellite_non_compliant_is_saved_as_draft(empty_store, verification_service):
    verification_service.queue(VerificationStage.SATELLITE, CheckResult.NON_COMPLIANT)
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)

    await drive_fresh_to_review(wizard)
    declaration = await wizard.submit()

    assert declaration.status == DeclarationStatus.DRAFT
    assert declaration.verification_outcome == VerificationOutcome.NON_COMPLIANT_SATELLITE
    assert declaration.compliance_status == ComplianceStatus.NON_COMPLIANT_SATELLITE
    assert declaration.filing_eligible is False
    assert declaration.risk_level == RiskLevel.HIGH
    assert declaration.product_name == "Palm Oil"
    assert declaration.quantity == Decimal("5000")
    assert wizard.step == WizardStep.SUBMITTED
    assert (await empty_store.get(declaration.id)).status == DeclarationStatus.DRAFT


@pytest.mark.asyncio
async def test_fresh_fully_compliant_is_pending(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)

    await drive_fresh_to_review(wizard)
    declaration = await wizard.submit()

    assert declaration.status == DeclarationStatus.PENDING
    assert declaration.verification_outcome == VerificationOutcome.FULLY_COMPLIANT
    assert declaration.compliance_status == ComplianceStatus.COMPLIANT
    assert declaration.filing_eligible is True
    assert declaration.geometry_status == CheckStatus.COMPLIANT
    assert declaration.satellite_status == CheckStatus.COMPLIANT
    assert verification_service.stages_called() == [VerificationStage.GEOMETRY, VerificationStage.SATELLITE]


@pytest.mark.asyncio
async def test_geometry_non_compliant_skips_satellite(empty_store, verification_service):
    verification_service.queue(VerificationStage.GEOMETRY, CheckResult.NON_COMPLIANT)
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)

    await drive_fresh_to_review(wizard)
    declaration = await wizard.submit()

    assert declaration.status == DeclarationStatus.DRAFT
    assert declaration.verification_outcome == VerificationOutcome.NON_COMPLIANT_GEOMETRY
    assert declaration.satellite_status == CheckStatus.UNSTARTED
    assert verification_service.stages_called() == [VerificationStage.GEOMETRY]


@pytest.mark.asyncio
async def test_requesting_pending_for_non_compliant_draft_is_refused(empty_store, verification_service):
    verification_service.queue(VerificationStage.SATELLITE, CheckResult.NON_COMPLIANT)
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)

    with pytest.raises(StatusPolicyViolationError):
        await wizard.submit(requested_status=DeclarationStatus.PENDING)

    assert wizard.step == WizardStep.REVIEW
    assert len(empty_store) == 0


@pytest.mark.asyncio
async def test_compliant_declaration_can_be_saved_as_draft(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)

    declaration = await wizard.submit(requested_status=DeclarationStatus.DRAFT)

    assert declaration.status == DeclarationStatus.DRAFT
    assert declaration.filing_eligible is True


@pytest.mark.asyncio
async def test_submit_while_verification_pending_keeps_wizard_in_review(empty_store, verification_service):
    verification_service.gate = asyncio.Event()
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard, wait=False)

    with pytest.raises(VerificationInProgressError):
        await wizard.submit()
    assert wizard.step == WizardStep.REVIEW
    assert len(empty_store) == 0

    verification_service.gate.set()
    await wizard.wait_for_verification()
    declaration = await wizard.submit()
    assert declaration.status == DeclarationStatus.PENDING


@pytest.mark.asyncio
async def test_verification_error_is_retryable(empty_store, verification_service):
    verification_service.queue(
        VerificationStage.SATELLITE,
        VerificationServiceError("satellite", "plots.geojson", "HTTP 503"),
        CheckResult.COMPLIANT,
    )
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    wizard.advance()
    await wizard.update_draft({"items": [PALM_OIL_ITEM], "validity_period": VALIDITY})
    wizard.advance()
    await wizard.attach_evidence(["harvest-certificate.pdf"], geo_file="plots.geojson")

    with pytest.raises(VerificationServiceError):
        await wizard.wait_for_verification()
    assert wizard.verification.geometry == CheckStatus.COMPLIANT
    assert wizard.verification.satellite == CheckStatus.PENDING
    assert "HTTP 503" in wizard.verification.last_error

    wizard.advance()
    await wizard.update_draft({"party": CUSTOMER})
    wizard.advance()
    with pytest.raises(VerificationInProgressError) as exc_info:
        await wizard.submit()
    assert exc_info.value.retryable_error is not None

    assert await wizard.retry_verification() is True
    await wizard.wait_for_verification()
    assert wizard.verification.outcome == VerificationOutcome.FULLY_COMPLIANT
    # Geometry is not re-run on retry.
    assert verification_service.stages_called() == [
        VerificationStage.GEOMETRY, VerificationStage.SATELLITE, VerificationStage.SATELLITE,
    ]

    declaration = await wizard.submit()
    assert declaration.status == DeclarationStatus.PENDING


@pytest.mark.asyncio
async def test_stage_timeout_leaves_stage_pending(empty_store, verification_service):
    verification_service.gate = asyncio.Event()
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service, stage_timeout=0.01)
    await wizard.attach_evidence(["doc.pdf"], geo_file="plots.geojson")

    with pytest.raises(VerificationServiceError) as exc_info:
        await wizard.wait_for_verification()

    assert "no result within" in str(exc_info.value)
    assert wizard.verification.geometry == CheckStatus.PENDING
    assert wizard.verification.satellite == CheckStatus.UNSTARTED


@pytest.mark.asyncio
async def test_reattaching_geo_file_resets_verification(empty_store, verification_service):
    verification_service.gate = asyncio.Event()
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)

    await wizard.attach_evidence(["doc.pdf"], geo_file="first.geojson")
    await asyncio.sleep(0)
    assert wizard.verification.geometry == CheckStatus.PENDING

    await wizard.attach_evidence([], geo_file="second.geojson")
    assert wizard.verification == VerificationState(geo_file_ref="second.geojson")
    assert wizard.draft.evidence.documents == ["doc.pdf"]

    verification_service.gate.set()
    state = await wizard.wait_for_verification()
    assert state.geo_file_ref == "second.geojson"
    assert state.outcome == VerificationOutcome.FULLY_COMPLIANT


@pytest.mark.asyncio
async def test_cancel_with_verification_in_flight_has_no_side_effects(empty_store, verification_service):
    verification_service.gate = asyncio.Event()
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard, wait=False)
    await asyncio.sleep(0)
    draft_before = wizard.draft

    await wizard.cancel()
    verification_service.gate.set()
    await asyncio.sleep(0.01)

    assert wizard.is_closed
    assert wizard.draft == draft_before
    assert verification_service.stages_called() == [VerificationStage.GEOMETRY]
    assert len(empty_store) == 0
    with pytest.raises(InvalidWizardStateError):
        await wizard.submit()


# --- Existing-based declarations ---

@pytest.mark.asyncio
async def test_existing_based_declaration_is_pending_with_links(store, verification_service):
    wizard = open_wizard(SourceType.EXISTING_BASED, store, verification_service)
    wizard.advance()
    await wizard.update_draft({"source_declaration_ids": [1, 2], "validity_period": VALIDITY})

    assert [item.source_id for item in wizard.draft.items] == [1, 2]
    wizard.advance()
    await wizard.attach_evidence(["supplier-declaration.pdf"])
    wizard.advance()
    await wizard.update_draft({"party": CUSTOMER})
    wizard.advance()
    declaration = await wizard.submit()

    assert declaration.status == DeclarationStatus.PENDING
    assert declaration.linked_source_ids == [1, 2]
    assert [summary.declaration_id for summary in declaration.source_summaries] == [1, 2]
    assert declaration.product_name == "Palm Oil, Cocoa Beans"
    assert declaration.quantity == Decimal("1250")
    assert declaration.risk_level == RiskLevel.LOW
    assert declaration.verification_outcome is None
    assert verification_service.calls == []


@pytest.mark.asyncio
async def test_existing_based_geo_file_does_not_start_verification(store, verification_service):
    wizard = open_wizard(SourceType.EXISTING_BASED, store, verification_service)

    await wizard.attach_evidence(["doc.pdf"], geo_file="plots.geojson")
    await asyncio.sleep(0)

    assert isinstance(wizard.draft, ExistingBasedDraft)
    assert wizard.draft.evidence.geo_file == "plots.geojson"
    assert verification_service.calls == []


@pytest.mark.asyncio
async def test_selecting_missing_source_keeps_previous_draft(store, verification_service):
    wizard = open_wizard(SourceType.EXISTING_BASED, store, verification_service)
    await wizard.update_draft({"source_declaration_ids": [1]})

    with pytest.raises(AggregationFailedError) as exc_info:
        await wizard.update_draft({"source_declaration_ids": [1, 99]})

    assert exc_info.value.reason_code == AggregationFailedError.SOURCES_NOT_FOUND
    assert wizard.draft.source_declaration_ids == [1]


@pytest.mark.asyncio
async def test_submit_with_ineligible_source_fails_and_stays_in_review(store, verification_service):
    wizard = open_wizard(SourceType.EXISTING_BASED, store, verification_service)
    wizard.advance()
    await wizard.update_draft({"source_declaration_ids": [1, 3], "validity_period": VALIDITY})
    wizard.advance()
    await wizard.attach_evidence(["doc.pdf"])
    wizard.advance()
    await wizard.update_draft({"party": CUSTOMER})
    wizard.advance()

    with pytest.raises(AggregationFailedError) as exc_info:
        await wizard.submit()

    assert exc_info.value.reason_code == AggregationFailedError.INELIGIBLE_SOURCES
    assert exc_info.value.source_ids == [3]
    assert wizard.step == WizardStep.REVIEW


# --- Navigation ---

@pytest.mark.asyncio
async def test_advance_with_no_valid_items_is_rejected(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    wizard.advance()
    await wizard.update_draft({"validity_period": VALIDITY})

    with pytest.raises(ValidationFailedError) as exc_info:
        wizard.advance()

    assert exc_info.value.step == WizardStep.DETAIL_ENTRY.value
    assert "hsn_code" in exc_info.value.reason
    assert "quantity" in exc_info.value.reason
    assert wizard.step == WizardStep.DETAIL_ENTRY


@pytest.mark.asyncio
async def test_retreat_keeps_draft_data(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)
    draft_before = wizard.draft

    assert wizard.retreat() == WizardStep.PARTY_DETAIL
    assert wizard.retreat(WizardStep.TYPE_SELECT) == WizardStep.TYPE_SELECT
    assert wizard.retreat() == WizardStep.TYPE_SELECT
    assert wizard.draft == draft_before


@pytest.mark.asyncio
async def test_source_type_locked_after_type_step(empty_store, verification_service):
    wizard = open_wizard(SourceType.EXISTING_BASED, empty_store, verification_service)
    await wizard.update_draft({"source_type": "fresh"})
    assert isinstance(wizard.draft, FreshDraft)

    wizard.advance()
    with pytest.raises(ValidationFailedError):
        await wizard.update_draft({"source_type": "existing"})
    assert isinstance(wizard.draft, FreshDraft)


@pytest.mark.asyncio
async def test_submit_outside_review_is_rejected(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)

    with pytest.raises(InvalidWizardStateError):
        await wizard.submit()


@pytest.mark.asyncio
async def test_advance_past_review_is_rejected(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)

    with pytest.raises(InvalidWizardStateError):
        wizard.advance()


@pytest.mark.asyncio
async def test_inbound_declaration_requires_supplier(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service, declaration_type=DeclarationType.INBOUND)
    wizard.advance()
    await wizard.update_draft({"items": [PALM_OIL_ITEM], "validity_period": VALIDITY})
    wizard.advance()
    await wizard.attach_evidence(["doc.pdf"], geo_file="plots.geojson")
    wizard.advance()
    await wizard.update_draft({"party": CUSTOMER})

    with pytest.raises(ValidationFailedError) as exc_info:
        wizard.advance()
    assert "supplier" in exc_info.value.reason
    await wizard.cancel()


@pytest.mark.asyncio
async def test_snapshot_reflects_wizard_state(empty_store, verification_service):
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)
    declaration = await wizard.submit()

    snapshot = wizard.snapshot()

    assert snapshot.wizard_id == wizard.wizard_id
    assert snapshot.step == WizardStep.SUBMITTED
    assert snapshot.completed_steps == [
        WizardStep.TYPE_SELECT, WizardStep.DETAIL_ENTRY, WizardStep.EVIDENCE_UPLOAD,
        WizardStep.PARTY_DETAIL, WizardStep.REVIEW,
    ]
    assert snapshot.declaration.id == declaration.id
    assert snapshot.verification_error is None


@pytest.mark.asyncio
async def test_concurrent_submits_persist_once(empty_store, verification_service, monkeypatch):
    create = empty_store.create

    async def slow_create(payload):
        await asyncio.sleep(0.01)
        return await create(payload)

    monkeypatch.setattr(empty_store, "create", slow_create)
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)

    results = await asyncio.gather(wizard.submit(), wizard.submit(), return_exceptions=True)

    declarations = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(declarations) == 1
    assert len(errors) == 1 and isinstance(errors[0], InvalidWizardStateError)
    assert "in progress" in str(errors[0])
    assert len(empty_store) == 1
    assert wizard.declaration.id == declarations[0].id


@pytest.mark.asyncio
async def test_edits_are_refused_while_submit_is_in_flight(empty_store, verification_service, monkeypatch):
    create = empty_store.create
    entered = asyncio.Event()
    release = asyncio.Event()

    async def gated_create(payload):
        entered.set()
        await release.wait()
        return await create(payload)

    monkeypatch.setattr(empty_store, "create", gated_create)
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)

    submit_task = asyncio.create_task(wizard.submit())
    await entered.wait()
    with pytest.raises(InvalidWizardStateError):
        wizard.retreat()
    with pytest.raises(InvalidWizardStateError):
        await wizard.update_draft({"party": CUSTOMER})

    release.set()
    declaration = await submit_task
    assert wizard.step == WizardStep.SUBMITTED
    assert (await empty_store.get(declaration.id)) is not None


@pytest.mark.asyncio
async def test_failed_submit_allows_another_attempt(empty_store, verification_service):
    verification_service.queue(VerificationStage.SATELLITE, CheckResult.NON_COMPLIANT)
    wizard = open_wizard(SourceType.FRESH, empty_store, verification_service)
    await drive_fresh_to_review(wizard)

    with pytest.raises(StatusPolicyViolationError):
        await wizard.submit(requested_status=DeclarationStatus.PENDING)

    declaration = await wizard.submit()
    assert declaration.status == DeclarationStatus.DRAFT
    assert len(empty_store) == 1


@pytest.mark.asyncio
async def test_unknown_source_type_is_a_validation_error(empty_store, verification_service):
    wizard = open_wizard(SourceType.EXISTING_BASED, empty_store, verification_service)

    with pytest.raises(ValidationFailedError) as exc_info:
        await wizard.update_draft({"source_type": "bogus"})

    assert exc_info.value.step == WizardStep.TYPE_SELECT.value
    assert isinstance(wizard.draft, ExistingBasedDraft)
    assert wizard.step == WizardStep.TYPE_SELECT
