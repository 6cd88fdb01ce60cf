from decimal import Decimal

from declaration_service.app.service.enums import DeclarationType, PartyType, WizardStep
from declaration_service.app.service.wizard.draft import (
    Evidence,
    ExistingBasedDraft,
    FreshDraft,
    LineItem,
    PartyRef,
    ValidityPeriod,
)
from declaration_service.app.service.wizard.validation import validate_step

PALM_OIL = LineItem(hsn_code="1511.10.00", product_name="Palm Oil", quantity=Decimal("5000"))
PERIOD = ValidityPeriod(start="2024-01-01", end="2024-12-31")


def test_type_select_always_passes():
    assert validate_step(WizardStep.TYPE_SELECT, FreshDraft()).ok

def test_detail_entry_passes_with_one_valid_item_among_blank_ones():
    draft = FreshDraft(items=[LineItem(), PALM_OIL], validity_period=PERIOD)
    assert validate_step(WizardStep.DETAIL_ENTRY, draft).ok

def test_detail_entry_reports_missing_item_fields_and_dates():
    draft = FreshDraft(items=[LineItem(product_name="Palm Oil")])
    result = validate_step(WizardStep.DETAIL_ENTRY, draft)

    assert not result.ok
    assert "start and end dates" in result.reason
    assert "item 1 is missing hsn_code, quantity" in result.reason

def test_detail_entry_requires_sources_for_existing_based():
    draft = ExistingBasedDraft(items=[PALM_OIL], validity_period=PERIOD)
    result = validate_step(WizardStep.DETAIL_ENTRY, draft)

    assert not result.ok
    assert "existing declaration" in result.reason

def test_detail_entry_rejects_incomplete_item_taken_over_from_source():
    cocoa = LineItem(hsn_code="1801.00.00", product_name="Cocoa Beans", source_id=2)
    draft = ExistingBasedDraft(
        source_declaration_ids=[1, 2],
        items=[PALM_OIL.model_copy(update={"source_id": 1}), cocoa],
        validity_period=PERIOD,
    )
    result = validate_step(WizardStep.DETAIL_ENTRY, draft)

    assert not result.ok
    assert "source declaration(s) 2" in result.reason

def test_detail_entry_allows_dropping_a_source_item():
    draft = ExistingBasedDraft(
        source_declaration_ids=[1, 2],
        items=[PALM_OIL.model_copy(update={"source_id": 1}), LineItem()],
        validity_period=PERIOD,
    )
    assert validate_step(WizardStep.DETAIL_ENTRY, draft).ok

def test_evidence_requires_geo_file_only_for_fresh():
    evidence = Evidence(documents=["doc.pdf"])
    assert not validate_step(WizardStep.EVIDENCE_UPLOAD, FreshDraft(evidence=evidence)).ok
    assert validate_step(WizardStep.EVIDENCE_UPLOAD, ExistingBasedDraft(evidence=evidence)).ok

def test_evidence_requires_documents():
    result = validate_step(WizardStep.EVIDENCE_UPLOAD, FreshDraft(evidence=Evidence(geo_file="plots.geojson")))
    assert not result.ok
    assert "document" in result.reason

def test_party_must_match_declaration_direction():
    supplier = PartyRef(party_id=1, party_type=PartyType.SUPPLIER)
    customer = PartyRef(party_id=2, party_type=PartyType.CUSTOMER)

    assert validate_step(WizardStep.PARTY_DETAIL, FreshDraft(party=customer)).ok
    assert not validate_step(WizardStep.PARTY_DETAIL, FreshDraft(party=supplier)).ok
    assert validate_step(
        WizardStep.PARTY_DETAIL, FreshDraft(declaration_type=DeclarationType.INBOUND, party=supplier)
    ).ok

def test_missing_party_names_expected_party_type():
    result = validate_step(WizardStep.PARTY_DETAIL, FreshDraft(declaration_type=DeclarationType.INBOUND))
    assert result.reason == "select a supplier to continue"

def test_submitted_step_has_no_transition():
    result = validate_step(WizardStep.SUBMITTED, FreshDraft())
    assert not result.ok
