# FastAPI dependency providers for components created on application startup
from fastapi import Request

from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import ConfigurationError
from declaration_service.app.service.interfaces.declaration_store import AbstractDeclarationStore
from declaration_service.app.service.wizard.registry import WizardSessionRegistry


def _from_app_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise ConfigurationError(f"'{name}' is not initialized; was the startup event run?")
    return component


async def get_declaration_store(request: Request) -> AbstractDeclarationStore:
    """Mongo or in-memory store, selected by DECLARATION_STORE_BACKEND at startup."""
    return _from_app_state(request, "declaration_store")


async def get_event_recorder(request: Request) -> DeclarationEventRecorder:
    return _from_app_state(request, "event_recorder")


async def get_wizard_registry(request: Request) -> WizardSessionRegistry:
    return _from_app_state(request, "wizard_registry")
