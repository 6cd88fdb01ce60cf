# Open wizard sessions of the running service
import asyncio
import logging
import time
from collections import OrderedDict
from typing import Dict, Optional

from declaration_service.app.models import DeclarationDB
from declaration_service.app.service.enums import DeclarationStatus, DeclarationType, SourceType
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import InvalidWizardStateError, WizardNotFoundError
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore
from declaration_service.app.service.interfaces.verification_service import AbstractVerificationService
from declaration_service.app.service.wizard.state_machine import DeclarationWizard, WizardSnapshot

logger = logging.getLogger(__name__)


class WizardSessionRegistry:
    """
    Holds the live wizards of this process.

    Submitted and idle-expired wizards are dropped from the live set; their final
    snapshot is kept (up to `max_finished`, oldest evicted first) so clients can still read it.
    """

    def __init__(
        self,
        stage_timeout: Optional[float] = None,
        idle_ttl: Optional[float] = None,
        max_finished: int = 256,
    ):
        self._wizards: Dict[str, DeclarationWizard] = {}
        self._last_active: Dict[str, float] = {}
        self._finished: "OrderedDict[str, WizardSnapshot]" = OrderedDict()
        self._stage_timeout = stage_timeout
        self._idle_ttl = idle_ttl
        self._max_finished = max_finished
        self._expiry_task: Optional[asyncio.Task] = None

    def open(
        self,
        source_type: SourceType,
        declaration_type: DeclarationType,
        store: AbstractDeclarationStore,
        verification_service: AbstractVerificationService,
        event_recorder: Optional[DeclarationEventRecorder] = None,
    ) -> DeclarationWizard:
        wizard = DeclarationWizard.open(
            source_type,
            store=store,
            verification_service=verification_service,
            declaration_type=declaration_type,
            event_recorder=event_recorder,
            stage_timeout=self._stage_timeout,
        )
        self._wizards[wizard.wizard_id] = wizard
        self._last_active[wizard.wizard_id] = time.monotonic()
        return wizard

    def get(self, wizard_id: str) -> DeclarationWizard:
        """Returns a live wizard. Submitted or expired wizards only have a snapshot left."""
        wizard = self._wizards.get(wizard_id)
        if wizard is None:
            finished = self._finished.get(wizard_id)
            if finished is not None:
                action = "use a closed wizard" if finished.closed else "use a submitted wizard"
                raise InvalidWizardStateError(wizard_id, finished.step.value, action)
            raise WizardNotFoundError(wizard_id)
        self._last_active[wizard_id] = time.monotonic()
        return wizard

    def snapshot(self, wizard_id: str) -> WizardSnapshot:
        wizard = self._wizards.get(wizard_id)
        if wizard is not None:
            return wizard.snapshot()
        finished = self._finished.get(wizard_id)
        if finished is None:
            raise WizardNotFoundError(wizard_id)
        return finished

    async def submit(self, wizard_id: str, requested_status: Optional[DeclarationStatus] = None) -> DeclarationDB:
        wizard = self.get(wizard_id)
        declaration = await wizard.submit(requested_status)
        self._retire(wizard)
        return declaration

    def _retire(self, wizard: DeclarationWizard) -> None:
        self._wizards.pop(wizard.wizard_id, None)
        self._last_active.pop(wizard.wizard_id, None)
        self._finished[wizard.wizard_id] = wizard.snapshot()
        while len(self._finished) > self._max_finished:
            self._finished.popitem(last=False)

    async def close(self, wizard_id: str) -> None:
        wizard = self._wizards.pop(wizard_id, None)
        self._last_active.pop(wizard_id, None)
        if wizard is None:
            if self._finished.pop(wizard_id, None) is None:
                raise WizardNotFoundError(wizard_id)
            return
        await wizard.cancel()

    async def expire_idle(self, now: Optional[float] = None) -> int:
        """Closes wizards untouched for longer than the idle TTL. Returns how many were closed."""
        if self._idle_ttl is None:
            return 0
        now = time.monotonic() if now is None else now
        expired = [
            wizard for wizard_id, wizard in self._wizards.items()
            if now - self._last_active.get(wizard_id, now) >= self._idle_ttl and not wizard.is_submitting
        ]
        for wizard in expired:
            await wizard.cancel()
            self._retire(wizard)
            logger.info(f"Wizard {wizard.wizard_id} expired after {self._idle_ttl} seconds idle.")
        return len(expired)

    async def _expiry_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                await self.expire_idle()
            except Exception as e:
                logger.error(f"Wizard expiry sweep failed: {e}", exc_info=True)

    def start_expiry(self, interval: float) -> None:
        if self._idle_ttl is None:
            logger.info("Wizard idle expiry disabled.")
            return
        if self._expiry_task is None or self._expiry_task.done():
            self._expiry_task = asyncio.create_task(self._expiry_loop(interval))
            logger.info(f"Wizard idle expiry started (ttl {self._idle_ttl}s, sweep every {interval}s).")

    async def stop_expiry(self) -> None:
        task = self._expiry_task
        self._expiry_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            logger.info("Wizard idle expiry stopped.")

    async def close_all(self) -> None:
        await self.stop_expiry()
        wizards = list(self._wizards.values())
        self._wizards.clear()
        self._last_active.clear()
        for wizard in wizards:
            await wizard.cancel()
        logger.info(f"Closed {len(wizards)} open wizard session(s).")

    def __len__(self) -> int:
        return len(self._wizards)
