# Declaration wizard: linear step machine around an immutable draft
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from opentelemetry.trace.status import Status, StatusCode
from pydantic import BaseModel, Field

from declaration_service.app.models import DeclarationDB
from declaration_service.app.observability import (
    declaration_submit_latency_histogram,
    tracer,
    wizard_step_transitions_counter,
)
from declaration_service.app.service.commands.handlers import handle_submit_declaration
from declaration_service.app.service.commands.models import SubmitDeclarationCommand
from declaration_service.app.service.enums import (
    DeclarationStatus,
    DeclarationType,
    SourceType,
    STEP_ORDER,
    WizardStep,
)
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import (
    InvalidWizardStateError,
    ValidationFailedError,
    VerificationInProgressError,
)
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore
from declaration_service.app.service.interfaces.verification_service import AbstractVerificationService
from declaration_service.app.service.verification.pipeline import VerificationPipeline
from declaration_service.app.service.wizard.aggregation import AggregationResolver
from declaration_service.app.service.wizard.draft import (
    ExistingBasedDraft,
    FreshDraft,
    LineItem,
    VerificationState,
    new_draft,
)
from declaration_service.app.service.wizard.reducer import (
    AttachEvidence,
    ChangeSourceType,
    DraftAction,
    ReplaceItems,
    SetVerification,
    UpdateFields,
    describe_error,
    reduce_draft,
)
from declaration_service.app.service.wizard.validation import validate_step

logger = logging.getLogger(__name__)

Draft = Union[ExistingBasedDraft, FreshDraft]


class WizardSnapshot(BaseModel):
    wizard_id: str
    step: WizardStep
    completed_steps: List[WizardStep] = Field(default_factory=list)
    draft: Draft = Field(discriminator="source_type")
    verification_error: Optional[str] = None
    declaration: Optional[DeclarationDB] = None
    closed: bool = False


class DeclarationWizard:
    """
    One declaration-creation session.

    Steps run TYPE_SELECT -> DETAIL_ENTRY -> EVIDENCE_UPLOAD -> PARTY_DETAIL -> REVIEW -> SUBMITTED.
    Forward moves require the current step's rules to pass; backward moves never lose data.
    Fresh drafts verify their geo file in the background as soon as it is attached.
    """

    def __init__(
        self,
        draft: Draft,
        store: AbstractDeclarationStore,
        verification_service: AbstractVerificationService,
        event_recorder: Optional[DeclarationEventRecorder] = None,
        wizard_id: Optional[str] = None,
        stage_timeout: Optional[float] = None,
    ):
        self.wizard_id = wizard_id or str(uuid.uuid4())
        self._draft: Draft = draft
        self._step = WizardStep.TYPE_SELECT
        self._completed: List[WizardStep] = []
        self._store = store
        self._event_recorder = event_recorder
        self._aggregation_resolver = AggregationResolver(store)
        self._pipeline = VerificationPipeline(
            verification_service,
            on_update=self._on_verification_update,
            stage_timeout=stage_timeout,
        )
        self._declaration: Optional[DeclarationDB] = None
        self._closed = False
        self._submitting = False

    @classmethod
    def open(
        cls,
        initial_source_type: SourceType,
        store: AbstractDeclarationStore,
        verification_service: AbstractVerificationService,
        declaration_type: DeclarationType = DeclarationType.OUTBOUND,
        **kwargs: Any,
    ) -> "DeclarationWizard":
        wizard = cls(new_draft(initial_source_type, declaration_type), store, verification_service, **kwargs)
        logger.info(f"Wizard {wizard.wizard_id} opened for a {wizard.draft.source_type.value} {declaration_type.value} declaration.")
        return wizard

    # --- Read access ---
    @property
    def step(self) -> WizardStep:
        return self._step

    @property
    def draft(self) -> Draft:
        return self._draft

    @property
    def completed_steps(self) -> List[WizardStep]:
        return list(self._completed)

    @property
    def declaration(self) -> Optional[DeclarationDB]:
        return self._declaration

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    @property
    def verification(self) -> Optional[VerificationState]:
        return self._draft.verification if isinstance(self._draft, FreshDraft) else None

    def snapshot(self) -> WizardSnapshot:
        error = self._pipeline.last_error
        return WizardSnapshot(
            wizard_id=self.wizard_id,
            step=self._step,
            completed_steps=self.completed_steps,
            draft=self._draft,
            verification_error=str(error) if error else None,
            declaration=self._declaration,
            closed=self._closed,
        )

    # --- Navigation ---
    def _ensure_editable(self, action: str) -> None:
        if self._closed or self._step == WizardStep.SUBMITTED:
            raise InvalidWizardStateError(self.wizard_id, self._step.value, action)
        if self._submitting:
            raise InvalidWizardStateError(self.wizard_id, self._step.value, f"{action} while a submit is in progress")

    def advance(self) -> WizardStep:
        self._ensure_editable("advance")
        if self._step == WizardStep.REVIEW:
            raise InvalidWizardStateError(self.wizard_id, self._step.value, "advance past review without submitting")

        result = validate_step(self._step, self._draft)
        if not result.ok:
            wizard_step_transitions_counter.add(1, {"step": self._step.value, "result": "rejected"})
            logger.info(f"Wizard {self.wizard_id} cannot leave step '{self._step.value}': {result.reason}")
            raise ValidationFailedError(self._step.value, result.reason)

        if self._step not in self._completed:
            self._completed.append(self._step)
        wizard_step_transitions_counter.add(1, {"step": self._step.value, "result": "advanced"})
        self._step = STEP_ORDER[STEP_ORDER.index(self._step) + 1]
        logger.debug(f"Wizard {self.wizard_id} advanced to '{self._step.value}'.")
        return self._step

    def retreat(self, to_step: Optional[WizardStep] = None) -> WizardStep:
        """Moves back one step, or straight to `to_step`. Going back from the first step is a no-op."""
        self._ensure_editable("go back")
        current_index = STEP_ORDER.index(self._step)
        if to_step is None:
            target_index = max(current_index - 1, 0)
        else:
            to_step = WizardStep(to_step)
            target_index = STEP_ORDER.index(to_step)
            if target_index > current_index:
                raise InvalidWizardStateError(self.wizard_id, self._step.value, f"go back to later step '{to_step.value}'")
        self._step = STEP_ORDER[target_index]
        wizard_step_transitions_counter.add(1, {"step": self._step.value, "result": "retreated"})
        return self._step

    # --- Draft edits ---
    def _reduce(self, draft: Draft, action: DraftAction) -> Draft:
        try:
            return reduce_draft(draft, action)
        except ValueError as e:
            raise ValidationFailedError(self._step.value, describe_error(e)) from e

    async def update_draft(self, changes: Dict[str, Any]) -> Draft:
        """
        Applies a partial update to the draft. The source type is locked once the
        type selection step is completed; selecting source declarations pre-fills items.
        """
        self._ensure_editable("update the draft")
        changes = dict(changes)
        draft = self._draft

        if "source_type" in changes:
            try:
                source_type = SourceType(changes.pop("source_type"))
            except ValueError as e:
                raise ValidationFailedError(self._step.value, str(e)) from e
            if source_type != draft.source_type:
                if WizardStep.TYPE_SELECT in self._completed:
                    raise ValidationFailedError(
                        self._step.value,
                        "source type cannot change after the declaration type step is confirmed",
                    )
                draft = self._reduce(draft, ChangeSourceType(source_type=source_type))
                self._pipeline.stop()

        if changes:
            draft = self._reduce(draft, UpdateFields(changes=changes))
            if isinstance(draft, ExistingBasedDraft) and "source_declaration_ids" in changes and "items" not in changes:
                items = await self._aggregation_resolver.items_for_sources(draft.source_declaration_ids)
                draft = self._reduce(draft, ReplaceItems(items=items or [LineItem()]))
                self._ensure_editable("update the draft")

        self._draft = draft
        return self._draft

    async def attach_evidence(self, documents: Sequence[str] = (), geo_file: Optional[str] = None) -> Draft:
        """
        Adds evidence documents and, optionally, replaces the geo file.
        A new geo file on a fresh draft resets verification and starts it again.
        """
        self._ensure_editable("attach evidence")
        self._draft = self._reduce(self._draft, AttachEvidence(documents=list(documents), geo_file=geo_file))
        if geo_file is not None and isinstance(self._draft, FreshDraft):
            self._pipeline.start(geo_file)
        return self._draft

    async def retry_verification(self) -> bool:
        self._ensure_editable("retry verification")
        if not isinstance(self._draft, FreshDraft):
            raise InvalidWizardStateError(self.wizard_id, self._step.value, "retry verification of an existing-based draft")
        return self._pipeline.retry()

    async def wait_for_verification(self) -> Optional[VerificationState]:
        """Waits for the in-flight verification run. Raises VerificationServiceError if a stage failed."""
        await self._pipeline.wait()
        return self.verification

    def _on_verification_update(self, state: VerificationState) -> None:
        if self._closed or self._step == WizardStep.SUBMITTED:
            return
        self._draft = reduce_draft(self._draft, SetVerification(verification=state))

    # --- Terminal actions ---
    async def submit(self, requested_status: Optional[DeclarationStatus] = None) -> DeclarationDB:
        """
        Persists the declaration. Only allowed from REVIEW; on any failure the wizard
        stays in REVIEW with the draft intact.
        """
        self._ensure_editable("submit")
        if self._step != WizardStep.REVIEW:
            raise InvalidWizardStateError(self.wizard_id, self._step.value, "submit before reaching review")

        started = time.monotonic()
        command = SubmitDeclarationCommand(
            wizard_id=self.wizard_id,
            draft=self._draft,
            requested_status=requested_status,
        )
        self._submitting = True
        try:
            with tracer.start_as_current_span("wizard.submit") as span:
                span.set_attribute("wizard.id", self.wizard_id)
                try:
                    declaration = await handle_submit_declaration(command, self._store, self._event_recorder)
                except VerificationInProgressError as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, description=str(e)))
                    last_error = self._pipeline.last_error
                    if last_error is not None and e.retryable_error is None:
                        raise VerificationInProgressError(e.reason, retryable_error=last_error) from e
                    raise
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, description=str(e)))
                    logger.warning(f"Wizard {self.wizard_id} submit failed; staying in review: {e}")
                    raise
        finally:
            self._submitting = False

        self._declaration = declaration
        self._completed.append(WizardStep.REVIEW)
        self._step = WizardStep.SUBMITTED
        declaration_submit_latency_histogram.record(time.monotonic() - started, {"source_type": self._draft.source_type.value})
        await self._pipeline.aclose()
        logger.info(f"Wizard {self.wizard_id} submitted declaration {declaration.id} with status '{declaration.status.value}'.")
        return declaration

    async def cancel(self) -> None:
        """Closes the wizard, discarding the draft and any in-flight verification."""
        if self._closed:
            return
        self._closed = True
        await self._pipeline.aclose()
        logger.info(f"Wizard {self.wizard_id} closed at step '{self._step.value}'.")
