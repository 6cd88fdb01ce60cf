# Event Store Logic (Saving and Retrieving Declaration Lifecycle Events)
import logging
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from declaration_service.app.models import StoredEventDB
from declaration_service.app.service.events.models import (
    BaseEvent, EventMetaData,
    DeclarationSubmittedEvent, DeclarationSubmittedEventPayload,
    DeclarationStatusChangedEvent, DeclarationStatusChangedEventPayload,
)
from declaration_service.app.service.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

# Mapping for event types to their classes
EVENT_CLASS_MAP = {
    "DeclarationSubmitted": DeclarationSubmittedEvent,
    "DeclarationStatusChanged": DeclarationStatusChangedEvent,
}

# Mapping for payload model names to their classes
PAYLOAD_CLASS_MAP = {
    "DeclarationSubmittedEventPayload": DeclarationSubmittedEventPayload,
    "DeclarationStatusChangedEventPayload": DeclarationStatusChangedEventPayload,
}
EVENT_STORE_COLLECTION = "domain_events"

async def get_latest_version(db: AsyncIOMotorDatabase, aggregate_id: str) -> int:
    latest_event_document = await db[EVENT_STORE_COLLECTION].find_one(
        {"aggregate_id": aggregate_id},
        sort=[("version", -1)]
    )
    return latest_event_document.get("version", 0) if latest_event_document else 0

async def save_event(db: AsyncIOMotorDatabase, event_data: BaseEvent) -> BaseEvent:
    latest_version = await get_latest_version(db, event_data.aggregate_id)

    if event_data.version <= latest_version:
        logger.error(
            f"Concurrency conflict for aggregate {event_data.aggregate_id}. "
            f"Attempted event version {event_data.version}, but latest version in DB is {latest_version}."
        )
        raise ConcurrencyConflictError(
            aggregate_id=event_data.aggregate_id,
            expected_version=event_data.version - 1,
            actual_version=latest_version
        )

    stored_event_dict = StoredEventDB(
        event_id=event_data.event_id,
        event_type=event_data.event_type,
        aggregate_id=event_data.aggregate_id,
        timestamp=event_data.timestamp,
        version=event_data.version,
        payload=event_data.payload.model_dump(mode="json"),
        metadata=event_data.metadata.model_dump()
    ).model_dump()

    await db[EVENT_STORE_COLLECTION].insert_one(stored_event_dict)
    logger.info(f"Event '{event_data.event_type}' (ID: {event_data.event_id}) saved for aggregate {event_data.aggregate_id} with version {event_data.version}.")

    return event_data

def deserialize_event(stored_event: StoredEventDB) -> BaseEvent:
    """Rebuilds the domain event from its stored form. Raises ValueError for unknown types."""
    DomainEventClass = EVENT_CLASS_MAP.get(stored_event.event_type)
    if DomainEventClass is None:
        raise ValueError(f"Domain event class for event_type '{stored_event.event_type}' not found in EVENT_CLASS_MAP.")
    PayloadModelClass = PAYLOAD_CLASS_MAP[DomainEventClass.payload_model_name]

    meta_data_dict = stored_event.metadata.model_dump() if stored_event.metadata else {}
    return DomainEventClass(
        event_id=stored_event.event_id,
        aggregate_id=stored_event.aggregate_id,
        timestamp=stored_event.timestamp,
        version=stored_event.version,
        payload=PayloadModelClass(**stored_event.payload),
        metadata=EventMetaData(**meta_data_dict)
    )

async def get_events_for_aggregate(db: AsyncIOMotorDatabase, aggregate_id: str) -> List[BaseEvent]:
    stored_events_cursor = db[EVENT_STORE_COLLECTION].find({"aggregate_id": aggregate_id}).sort("version", 1)

    deserialized_domain_events = []
    async for event_doc in stored_events_cursor:
        try:
            event_doc.pop("_id", None)
            deserialized_domain_events.append(deserialize_event(StoredEventDB(**event_doc)))
        except (ValidationError, ValueError) as e:
            logger.error(f"Skipping undecodable event document for aggregate {aggregate_id}: {e}", exc_info=True)

    logger.info(f"Retrieved and deserialized {len(deserialized_domain_events)} events for aggregate {aggregate_id}.")
    return deserialized_domain_events
