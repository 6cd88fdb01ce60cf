# Shared fixtures for the declaration service tests
import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio

from declaration_service.app.main import app
from declaration_service.app.models import DeclarationDB
from declaration_service.app.service.enums import (
    CheckResult,
    DeclarationStatus,
    DeclarationType,
    PartyType,
    RiskLevel,
    SourceType,
    Unit,
    VerificationStage,
)
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.interfaces.verification_service import AbstractVerificationService
from declaration_service.app.service.wizard.draft import LineItem
from declaration_service.app.service.wizard.registry import WizardSessionRegistry
from declaration_service.infrastructure.database.in_memory_declaration_store import InMemoryDeclarationStore
from declaration_service.infrastructure.verification_service_client import get_verification_service


class ScriptedVerificationService(AbstractVerificationService):
    """
    Returns queued results per stage (the last one repeats). A queued exception is raised.
    While `gate` is set to an unset asyncio.Event, every call blocks on it.
    """

    def __init__(
        self,
        geometry: Union[CheckResult, Exception] = CheckResult.COMPLIANT,
        satellite: Union[CheckResult, Exception] = CheckResult.COMPLIANT,
    ):
        self.results: Dict[VerificationStage, List[Union[CheckResult, Exception]]] = {
            VerificationStage.GEOMETRY: [geometry],
            VerificationStage.SATELLITE: [satellite],
        }
        self.calls: List[Tuple[VerificationStage, str]] = []
        self.gate: Optional[asyncio.Event] = None

    def queue(self, stage: VerificationStage, *outcomes: Union[CheckResult, Exception]) -> None:
        self.results[stage] = list(outcomes)

    async def _resolve(self, stage: VerificationStage, geo_file_ref: str) -> CheckResult:
        self.calls.append((stage, geo_file_ref))
        if self.gate is not None:
            await self.gate.wait()
        queued = self.results[stage]
        outcome = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def check_geometry(self, geo_file_ref: str) -> CheckResult:
        return await self._resolve(VerificationStage.GEOMETRY, geo_file_ref)

    async def check_satellite(self, geo_file_ref: str) -> CheckResult:
        return await self._resolve(VerificationStage.SATELLITE, geo_file_ref)

    def stages_called(self) -> List[VerificationStage]:
        return [stage for stage, _ in self.calls]


def make_source_declaration(
    declaration_id: int,
    product_name: str,
    status: DeclarationStatus = DeclarationStatus.APPROVED,
    risk_level: RiskLevel = RiskLevel.LOW,
    hsn_code: str = "1511.10.00",
    quantity: str = "1000",
) -> DeclarationDB:
    return DeclarationDB(
        id=declaration_id,
        declaration_type=DeclarationType.INBOUND,
        source_type=SourceType.FRESH,
        status=status,
        risk_level=risk_level,
        items=[LineItem(hsn_code=hsn_code, product_name=product_name, quantity=Decimal(quantity), rm_id=f"RM-{declaration_id}")],
        product_name=product_name,
        hsn_code=hsn_code,
        quantity=Decimal(quantity),
        unit=Unit.KG,
        party_id=7,
        party_type=PartyType.SUPPLIER,
        eudr_reference_number=f"EUDR-REF-{declaration_id}",
    )


@pytest.fixture
def verification_service() -> ScriptedVerificationService:
    return ScriptedVerificationService()


@pytest.fixture
def source_declarations() -> List[DeclarationDB]:
    return [
        make_source_declaration(1, "Palm Oil", risk_level=RiskLevel.LOW),
        make_source_declaration(2, "Cocoa Beans", risk_level=RiskLevel.HIGH, hsn_code="1801.00.00", quantity="250"),
        make_source_declaration(3, "Rubber", status=DeclarationStatus.DRAFT, hsn_code="4001.10.00"),
        make_source_declaration(4, "Soy", status=DeclarationStatus.REJECTED, hsn_code="1201.90.00"),
    ]


@pytest.fixture
def store(source_declarations) -> InMemoryDeclarationStore:
    return InMemoryDeclarationStore(seed=source_declarations)


@pytest.fixture
def empty_store() -> InMemoryDeclarationStore:
    return InMemoryDeclarationStore()


@pytest_asyncio.fixture
async def test_app_client(store, verification_service):
    """AsyncClient bound to the app with in-process components; startup events are not run."""
    app.state.declaration_store = store
    app.state.event_recorder = DeclarationEventRecorder()
    app.state.wizard_registry = WizardSessionRegistry(stage_timeout=1.0)
    app.dependency_overrides[get_verification_service] = lambda: verification_service

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await app.state.wizard_registry.close_all()
    app.dependency_overrides.clear()
    for name in ("declaration_store", "event_recorder", "wizard_registry"):
        delattr(app.state, name)
