from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from declaration_service.app.models import DeclarationCreatePayload, DeclarationDB, DeclarationStats
from declaration_service.app.service.enums import DeclarationStatus, DeclarationType
from declaration_service.app.service.exceptions import DeclarationStoreError

# Fields a record update may never touch
IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at"})


def check_update_fields(patch: Dict[str, Any]) -> None:
    unknown = sorted(set(patch) - set(DeclarationDB.model_fields))
    if unknown:
        raise DeclarationStoreError("update", f"unknown field(s): {', '.join(unknown)}")
    immutable = sorted(set(patch) & IMMUTABLE_FIELDS)
    if immutable:
        raise DeclarationStoreError("update", f"field(s) {', '.join(immutable)} cannot be updated")


class AbstractDeclarationStore(ABC):
    """Persistence of declaration records. Each operation is a single-record write or a read."""

    @abstractmethod
    async def create(self, payload: DeclarationCreatePayload) -> DeclarationDB:
        """Persists a new declaration and returns it with its assigned sequential ID."""
        pass

    @abstractmethod
    async def update(self, declaration_id: int, patch: Dict[str, Any]) -> DeclarationDB:
        """
        Applies `patch` to an existing record and returns the updated record.
        Raises DeclarationNotFoundError for an unknown ID and DeclarationStoreError for an invalid patch.
        """
        pass

    @abstractmethod
    async def get(self, declaration_id: int) -> Optional[DeclarationDB]:
        pass

    @abstractmethod
    async def list_by_ids(self, declaration_ids: Sequence[int]) -> List[DeclarationDB]:
        """Returns the records that exist, in the order of `declaration_ids`. Missing IDs are skipped."""
        pass

    @abstractmethod
    async def list_declarations(
        self,
        declaration_type: Optional[DeclarationType] = None,
        status: Optional[DeclarationStatus] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[DeclarationDB]:
        """Newest first."""
        pass

    @abstractmethod
    async def stats(self) -> DeclarationStats:
        pass
