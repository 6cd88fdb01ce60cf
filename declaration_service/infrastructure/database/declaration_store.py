# MongoDB implementation of the Declaration Store
import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from declaration_service.app.models import DeclarationCreatePayload, DeclarationDB, DeclarationStats
from declaration_service.app.service.enums import DeclarationStatus, DeclarationType
from declaration_service.app.service.exceptions import DeclarationNotFoundError, DeclarationStoreError
from declaration_service.app.service.interfaces.declaration_store import (
    AbstractDeclarationStore,
    check_update_fields,
)

logger = logging.getLogger(__name__)

DECLARATIONS_COLLECTION = "declarations"
COUNTERS_COLLECTION = "counters"
DECLARATION_SEQUENCE = "declaration_id"


def _to_declaration(doc: Dict[str, Any]) -> DeclarationDB:
    doc.pop("_id", None)
    return DeclarationDB(**doc)


class MongoDeclarationStore(AbstractDeclarationStore):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def _next_id(self) -> int:
        counter = await self.db[COUNTERS_COLLECTION].find_one_and_update(
            {"_id": DECLARATION_SEQUENCE},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    async def create(self, payload: DeclarationCreatePayload) -> DeclarationDB:
        try:
            declaration = DeclarationDB(id=await self._next_id(), **payload.model_dump())
            await self.db[DECLARATIONS_COLLECTION].insert_one(declaration.model_dump(mode="json"))
        except PyMongoError as e:
            logger.error(f"Failed to create declaration: {e}", exc_info=True)
            raise DeclarationStoreError("create", str(e)) from e
        logger.info(f"Declaration {declaration.id} created with status '{declaration.status.value}'.")
        return declaration

    async def update(self, declaration_id: int, patch: Dict[str, Any]) -> DeclarationDB:
        check_update_fields(patch)
        current = await self.get(declaration_id)
        if current is None:
            raise DeclarationNotFoundError(declaration_id)

        updated = DeclarationDB.model_validate({
            **current.model_dump(),
            **patch,
            "updated_at": datetime.datetime.now(datetime.UTC),
        })
        try:
            result = await self.db[DECLARATIONS_COLLECTION].replace_one(
                {"id": declaration_id},
                updated.model_dump(mode="json"),
            )
        except PyMongoError as e:
            logger.error(f"Failed to update declaration {declaration_id}: {e}", exc_info=True)
            raise DeclarationStoreError("update", str(e)) from e
        if result.matched_count == 0:
            raise DeclarationNotFoundError(declaration_id)
        logger.info(f"Declaration {declaration_id} updated: {', '.join(sorted(patch))}.")
        return updated

    async def get(self, declaration_id: int) -> Optional[DeclarationDB]:
        try:
            doc = await self.db[DECLARATIONS_COLLECTION].find_one({"id": declaration_id})
        except PyMongoError as e:
            raise DeclarationStoreError("get", str(e)) from e
        return _to_declaration(doc) if doc else None

    async def list_by_ids(self, declaration_ids: Sequence[int]) -> List[DeclarationDB]:
        ids = list(declaration_ids)
        if not ids:
            return []
        try:
            cursor = self.db[DECLARATIONS_COLLECTION].find({"id": {"$in": ids}})
            docs = await cursor.to_list(length=len(ids))
        except PyMongoError as e:
            raise DeclarationStoreError("list_by_ids", str(e)) from e
        by_id = {doc["id"]: _to_declaration(doc) for doc in docs}
        return [by_id[declaration_id] for declaration_id in ids if declaration_id in by_id]

    async def list_declarations(
        self,
        declaration_type: Optional[DeclarationType] = None,
        status: Optional[DeclarationStatus] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> List[DeclarationDB]:
        query: Dict[str, Any] = {}
        if declaration_type is not None:
            query["declaration_type"] = declaration_type.value
        if status is not None:
            query["status"] = status.value
        try:
            cursor = self.db[DECLARATIONS_COLLECTION].find(query).sort("id", -1).skip(skip).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise DeclarationStoreError("list", str(e)) from e
        return [_to_declaration(doc) for doc in docs]

    async def stats(self) -> DeclarationStats:
        collection = self.db[DECLARATIONS_COLLECTION]
        try:
            counts = {"total": await collection.count_documents({})}
            for declaration_type in DeclarationType:
                counts[declaration_type.value] = await collection.count_documents(
                    {"declaration_type": declaration_type.value}
                )
            for status in DeclarationStatus:
                counts[status.value] = await collection.count_documents({"status": status.value})
        except PyMongoError as e:
            raise DeclarationStoreError("stats", str(e)) from e
        return DeclarationStats(**counts)
