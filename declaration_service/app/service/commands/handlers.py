# Command Handler Implementation
import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace.status import Status, StatusCode

from .models import SubmitDeclarationCommand, UpdateDeclarationStatusCommand
from declaration_service.app.models import DeclarationCreatePayload, DeclarationDB
from declaration_service.app.observability import declaration_submissions_counter
from declaration_service.app.service.enums import NON_COMPLIANT_OUTCOMES, RiskLevel, STEP_ORDER, WizardStep
from declaration_service.app.service.events import models as domain_event_models
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import (
    ConcurrencyConflictError,
    DeclarationNotFoundError,
    DeclarationStoreError,
    KafkaProducerError,
    ValidationFailedError,
)
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore
from declaration_service.app.service.strategies.status_strategies import (
    check_status_transition,
    derive_compliance_status,
    derive_fresh_risk_level,
    derive_status,
    resolve_requested_status,
)
from declaration_service.app.service.wizard.aggregation import (
    AggregatedPayload,
    AggregationResolver,
    summarize_products,
)
from declaration_service.app.service.wizard.draft import ExistingBasedDraft, FreshDraft
from declaration_service.app.service.wizard.validation import validate_step

logger = logging.getLogger(__name__)

SUBMIT_PRECONDITION_STEPS = STEP_ORDER[:STEP_ORDER.index(WizardStep.REVIEW)]


def build_create_payload(
    command: SubmitDeclarationCommand,
    status,
    aggregated: Optional[AggregatedPayload] = None,
) -> DeclarationCreatePayload:
    draft = command.draft
    period = draft.validity_period
    common = dict(
        declaration_type=draft.declaration_type,
        source_type=draft.source_type,
        status=status,
        party_id=draft.party.party_id,
        party_type=draft.party.party_type,
        party_name=draft.party.name,
        start_date=period.start if period else None,
        end_date=period.end if period else None,
        documents=list(draft.evidence.documents),
        geo_file=draft.evidence.geo_file,
        reference_numbers=draft.reference_numbers,
        comments=draft.comments,
    )

    if isinstance(draft, ExistingBasedDraft):
        product = aggregated.product
        return DeclarationCreatePayload(
            **common,
            risk_level=aggregated.risk_level,
            linked_source_ids=aggregated.linked_source_ids,
            source_summaries=aggregated.source_summaries,
            items=aggregated.items,
            product_name=product.product_name,
            hsn_code=product.hsn_code,
            quantity=product.quantity,
            unit=product.unit,
        )

    verification = draft.verification
    outcome = verification.outcome
    items = draft.valid_items()
    product = summarize_products(items)
    return DeclarationCreatePayload(
        **common,
        risk_level=derive_fresh_risk_level(outcome),
        verification_outcome=outcome,
        compliance_status=derive_compliance_status(outcome),
        geometry_status=verification.geometry,
        satellite_status=verification.satellite,
        filing_eligible=outcome not in NON_COMPLIANT_OUTCOMES,
        items=items,
        product_name=product.product_name,
        hsn_code=product.hsn_code,
        quantity=product.quantity,
        unit=product.unit,
    )


async def _record_event_best_effort(
    event_recorder: Optional[DeclarationEventRecorder],
    event: domain_event_models.BaseEvent,
) -> None:
    # The declaration record is the source of truth; a lost lifecycle event never undoes it.
    if event_recorder is None:
        return
    current_span = trace.get_current_span()
    try:
        await event_recorder.record(event)
        current_span.add_event(f"{event.event_type}EventRecorded", {"event.id": event.event_id})
    except (DeclarationStoreError, ConcurrencyConflictError, KafkaProducerError) as e:
        logger.error(f"Failed to record {event.event_type} event for declaration {event.aggregate_id}: {e}", exc_info=True)
        current_span.record_exception(e)


async def handle_submit_declaration(
    command: SubmitDeclarationCommand,
    store: AbstractDeclarationStore,
    event_recorder: Optional[DeclarationEventRecorder] = None,
) -> DeclarationDB:
    current_span = trace.get_current_span()
    current_span.set_attribute("command.name", "SubmitDeclarationCommand")
    current_span.set_attribute("command.id", command.command_id)
    current_span.set_attribute("declaration.source_type", command.draft.source_type.value)
    current_span.add_event("SubmitDeclarationCommandHandlerStarted")

    draft = command.draft
    logger.info(f"Handling SubmitDeclarationCommand: {command.command_id} ({draft.source_type.value}, wizard {command.wizard_id})")

    # The draft may have been edited after its steps were passed.
    for step in SUBMIT_PRECONDITION_STEPS:
        result = validate_step(step, draft)
        if not result.ok:
            raise ValidationFailedError(step.value, result.reason)

    aggregated: Optional[AggregatedPayload] = None
    if isinstance(draft, ExistingBasedDraft):
        aggregated = await AggregationResolver(store).resolve(draft.source_declaration_ids, draft.items)
        current_span.add_event("SourceDeclarationsAggregated", {"source.count": len(aggregated.linked_source_ids)})

    verification = draft.verification if isinstance(draft, FreshDraft) else None
    derived = derive_status(draft.source_type, verification)
    status = resolve_requested_status(derived, command.requested_status)
    current_span.set_attribute("declaration.status", status.value)

    declaration = await store.create(build_create_payload(command, status, aggregated))
    declaration_submissions_counter.add(1, {"source_type": draft.source_type.value, "status": status.value})
    current_span.set_attribute("declaration.id", declaration.id)

    submitted_event = domain_event_models.DeclarationSubmittedEvent(
        aggregate_id=str(declaration.id),
        version=1,
        payload=domain_event_models.DeclarationSubmittedEventPayload(
            declaration_id=declaration.id,
            declaration_type=declaration.declaration_type,
            source_type=declaration.source_type,
            status=declaration.status,
            risk_level=declaration.risk_level or RiskLevel.MEDIUM,
            verification_outcome=declaration.verification_outcome,
            compliance_status=declaration.compliance_status,
            linked_source_ids=declaration.linked_source_ids,
            party_id=declaration.party_id,
            party_type=declaration.party_type,
            product_name=declaration.product_name,
        ),
        metadata=domain_event_models.EventMetaData(correlation_id=command.wizard_id, causation_id=command.command_id),
    )
    await _record_event_best_effort(event_recorder, submitted_event)

    logger.info(f"Declaration {declaration.id} persisted with status '{status.value}' from command {command.command_id}.")
    current_span.set_status(Status(StatusCode.OK))
    return declaration


async def handle_update_declaration_status(
    command: UpdateDeclarationStatusCommand,
    store: AbstractDeclarationStore,
    event_recorder: Optional[DeclarationEventRecorder] = None,
) -> DeclarationDB:
    current_span = trace.get_current_span()
    current_span.set_attribute("command.name", "UpdateDeclarationStatusCommand")
    current_span.set_attribute("command.id", command.command_id)
    current_span.set_attribute("declaration.id", command.declaration_id)
    logger.info(f"Handling UpdateDeclarationStatusCommand for declaration {command.declaration_id} -> {command.new_status.value}")

    current = await store.get(command.declaration_id)
    if current is None:
        raise DeclarationNotFoundError(command.declaration_id)
    check_status_transition(current, command.new_status)

    updated = await store.update(command.declaration_id, {"status": command.new_status})

    aggregate_id = str(updated.id)
    version = 1
    if event_recorder is not None:
        try:
            version = await event_recorder.next_version(aggregate_id)
        except DeclarationStoreError as e:
            logger.error(f"Cannot determine event version for declaration {aggregate_id}; status event not recorded: {e}")
            current_span.record_exception(e)
            return updated
    status_event = domain_event_models.DeclarationStatusChangedEvent(
        aggregate_id=aggregate_id,
        version=version,
        payload=domain_event_models.DeclarationStatusChangedEventPayload(
            declaration_id=updated.id,
            old_status=current.status,
            new_status=updated.status,
            changed_by=command.changed_by,
            reason=command.reason,
        ),
        metadata=domain_event_models.EventMetaData(causation_id=command.command_id),
    )
    await _record_event_best_effort(event_recorder, status_event)

    logger.info(f"Declaration {updated.id} moved from '{current.status.value}' to '{updated.status.value}'.")
    return updated
