# Pydantic models for Commands
from pydantic import BaseModel, Field
from typing import Optional, Union
import uuid

from declaration_service.app.service.enums import DeclarationStatus
from declaration_service.app.service.wizard.draft import ExistingBasedDraft, FreshDraft

class BaseCommand(BaseModel):
    command_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

class SubmitDeclarationCommand(BaseCommand):
    wizard_id: Optional[str] = None
    draft: Union[ExistingBasedDraft, FreshDraft] = Field(discriminator="source_type")
    requested_status: Optional[DeclarationStatus] = None # None means "use the derived status"

class UpdateDeclarationStatusCommand(BaseCommand):
    declaration_id: int
    new_status: DeclarationStatus
    changed_by: Optional[str] = None
    reason: Optional[str] = None
