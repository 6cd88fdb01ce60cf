# In-process Declaration Store for local runs and tests
import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from declaration_service.app.models import DeclarationCreatePayload, DeclarationDB, DeclarationStats
from declaration_service.app.service.enums import DeclarationStatus, DeclarationType
from declaration_service.app.service.exceptions import DeclarationNotFoundError
from declaration_service.app.service.interfaces.declaration_store import (
    AbstractDeclarationStore,
    check_update_fields,
)

logger = logging.getLogger(__name__)


class InMemoryDeclarationStore(AbstractDeclarationStore):
    def __init__(self, seed: Optional[Iterable[DeclarationDB]] = None):
        self._records: Dict[int, DeclarationDB] = {}
        self._last_id = 0
        for record in seed or []:
            self._records[record.id] = record
            self._last_id = max(self._last_id, record.id)

    async def create(self, payload: DeclarationCreatePayload) -> DeclarationDB:
        self._last_id += 1
        declaration = DeclarationDB(id=self._last_id, **payload.model_dump())
        self._records[declaration.id] = declaration
        logger.info(f"Declaration {declaration.id} created in memory with status '{declaration.status.value}'.")
        return declaration.model_copy(deep=True)

    async def update(self, declaration_id: int, patch: Dict[str, Any]) -> DeclarationDB:
        check_update_fields(patch)
        current = self._records.get(declaration_id)
        if current is None:
            raise DeclarationNotFoundError(declaration_id)
        updated = DeclarationDB.model_validate({
            **current.model_dump(),
            **patch,
            "updated_at": datetime.datetime.now(datetime.UTC),
        })
        self._records[declaration_id] = updated
        return updated.model_copy(deep=True)

    async def get(self, declaration_id: int) -> Optional[DeclarationDB]:
        record = self._records.get(declaration_id)
        return record.model_copy(deep=True) if record else None

    async def list_by_ids(self, declaration_ids: Sequence[int]) -> List[DeclarationDB]:
        return [
            self._records[declaration_id].model_copy(deep=True)
            for declaration_id in declaration_ids
            if declaration_id in self._records
        ]

    async def list_declarations(
        self,
        declaration_type: Optional[DeclarationType] = None,
        status: Optional[DeclarationStatus] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[DeclarationDB]:
        records = sorted(self._records.values(), key=lambda record: record.id, reverse=True)
        if declaration_type is not None:
            records = [record for record in records if record.declaration_type == declaration_type]
        if status is not None:
            records = [record for record in records if record.status == status]
        return [record.model_copy(deep=True) for record in records[skip:skip + limit]]

    async def stats(self) -> DeclarationStats:
        records = list(self._records.values())
        counts = {"total": len(records)}
        for declaration_type in DeclarationType:
            counts[declaration_type.value] = sum(1 for r in records if r.declaration_type == declaration_type)
        for status in DeclarationStatus:
            counts[status.value] = sum(1 for r in records if r.status == status)
        return DeclarationStats(**counts)

    def __len__(self) -> int:
        return len(self._records)
