# Asynchronous two-stage verification (geometry, then satellite) for one wizard session
import asyncio
import logging
from typing import Callable, Optional

from opentelemetry.trace.status import Status, StatusCode

from declaration_service.app.config import settings
from declaration_service.app.observability import tracer, verification_stage_results_counter
from declaration_service.app.service.enums import CheckResult, CheckStatus, VerificationStage
from declaration_service.app.service.exceptions import VerificationServiceError
from declaration_service.app.service.interfaces.verification_service import AbstractVerificationService
from declaration_service.app.service.wizard.draft import VerificationState

logger = logging.getLogger(__name__)

StateListener = Callable[[VerificationState], None]

CHECK_TO_STATUS = {
    CheckResult.COMPLIANT: CheckStatus.COMPLIANT,
    CheckResult.NON_COMPLIANT: CheckStatus.NON_COMPLIANT,
}


class VerificationPipeline:
    """
    Runs the geometry -> satellite chain for the current geo file of a draft.

    Every intermediate state is pushed to `on_update`. Starting a new run bumps the
    generation, so results of a superseded or cancelled run are never delivered.
    A stage whose call errors or times out stays PENDING with `last_error` set until
    `retry()` runs it again.
    """

    def __init__(
        self,
        verification_service: AbstractVerificationService,
        on_update: StateListener,
        stage_timeout: Optional[float] = None,
    ):
        self._service = verification_service
        self._on_update = on_update
        self._stage_timeout = stage_timeout if stage_timeout is not None else settings.VERIFICATION_STAGE_TIMEOUT_SECONDS
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._state: Optional[VerificationState] = None
        self._last_error: Optional[VerificationServiceError] = None
        self._closed = False

    @property
    def state(self) -> Optional[VerificationState]:
        return self._state

    @property
    def last_error(self) -> Optional[VerificationServiceError]:
        return self._last_error

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def start(self, geo_file_ref: str) -> None:
        """Discards any in-flight run and verifies `geo_file_ref` from scratch."""
        if self._closed:
            raise RuntimeError("verification pipeline is closed")
        self._stop_task()
        self._last_error = None
        self._state = VerificationState(geo_file_ref=geo_file_ref)
        logger.info(f"Starting verification for geo file {geo_file_ref} (run {self._generation}).")
        self._task = asyncio.create_task(self._run(self._generation, self._state))

    def retry(self) -> bool:
        """Re-runs the stage that failed. Returns False when there is nothing to retry."""
        if self._closed or self._state is None or self._last_error is None or self.is_running:
            return False
        self._stop_task()
        self._last_error = None
        state = self._publish(self._generation, self._state.model_copy(update={"last_error": None}))
        logger.info(f"Retrying verification for geo file {state.geo_file_ref} (run {self._generation}).")
        self._task = asyncio.create_task(self._run(self._generation, state))
        return True

    def stop(self) -> None:
        """Abandons the current run without closing the pipeline."""
        self._stop_task()
        self._state = None
        self._last_error = None

    async def aclose(self) -> None:
        """Cancels any in-flight run; no further updates are delivered afterwards."""
        self._closed = True
        task = self._task
        self._stop_task()
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def wait(self) -> Optional[VerificationState]:
        """
        Waits for the current run to finish and returns the last published state.
        Raises the VerificationServiceError that left a stage unresolved, if any.
        """
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        if self._last_error is not None:
            raise self._last_error
        return self._state

    def _stop_task(self) -> None:
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _publish(self, generation: int, state: VerificationState) -> VerificationState:
        if generation != self._generation or self._closed:
            return state
        self._state = state
        self._on_update(state)
        return state

    async def _run(self, generation: int, state: VerificationState) -> None:
        try:
            if state.geometry != CheckStatus.COMPLIANT:
                state = self._publish(generation, state.model_copy(update={"geometry": CheckStatus.PENDING}))
                result = await self._check(generation, VerificationStage.GEOMETRY, state)
                if result is None:
                    return
                state = self._publish(generation, state.model_copy(update={"geometry": CHECK_TO_STATUS[result]}))
                if result == CheckResult.NON_COMPLIANT:
                    logger.info(f"Geometry non-compliant for geo file {state.geo_file_ref}; satellite check skipped.")
                    return

            state = self._publish(generation, state.model_copy(update={"satellite": CheckStatus.PENDING}))
            result = await self._check(generation, VerificationStage.SATELLITE, state)
            if result is None:
                return
            self._publish(generation, state.model_copy(update={"satellite": CHECK_TO_STATUS[result]}))
        except asyncio.CancelledError:
            logger.info(f"Verification run {generation} for geo file {state.geo_file_ref} cancelled.")
            raise

    async def _check(
        self,
        generation: int,
        stage: VerificationStage,
        state: VerificationState,
    ) -> Optional[CheckResult]:
        call = self._service.check_geometry if stage == VerificationStage.GEOMETRY else self._service.check_satellite

        with tracer.start_as_current_span(f"verification.{stage.value}_check") as span:
            span.set_attribute("verification.stage", stage.value)
            span.set_attribute("geo_file.ref", state.geo_file_ref)
            try:
                result = CheckResult(await asyncio.wait_for(call(state.geo_file_ref), timeout=self._stage_timeout))
            except asyncio.TimeoutError:
                error = VerificationServiceError(
                    stage.value, state.geo_file_ref, f"no result within {self._stage_timeout} seconds"
                )
            except VerificationServiceError as e:
                error = e
            except Exception as e:
                # Any other failure (transport, bad result value) is retryable like a service error.
                error = VerificationServiceError(stage.value, state.geo_file_ref, f"{type(e).__name__}: {e}")
                error.__cause__ = e
            else:
                span.set_attribute("verification.result", result.value)
                verification_stage_results_counter.add(1, {"stage": stage.value, "result": result.value})
                return result

            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, description=error.reason))
            verification_stage_results_counter.add(1, {"stage": stage.value, "result": "error"})
            logger.warning(f"{error} Stage stays pending until verification is retried.")
            if generation == self._generation and not self._closed:
                self._last_error = error
                self._publish(generation, state.model_copy(update={"last_error": str(error)}))
            return None
