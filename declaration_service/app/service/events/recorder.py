# Records declaration lifecycle events in the event store and on Kafka
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from declaration_service.app.service.events.models import BaseEvent
from declaration_service.app.service.exceptions import DeclarationStoreError
from declaration_service.infrastructure.database import event_store
from declaration_service.infrastructure.kafka.producer import KafkaProducerService

logger = logging.getLogger(__name__)


class DeclarationEventRecorder:
    """
    Appends lifecycle events to the `domain_events` collection and publishes them to Kafka.

    Without a database (memory backend) events are kept in process so the history
    endpoint and event versioning still work. Without a producer nothing is published.
    """

    def __init__(
        self,
        db: Optional[AsyncIOMotorDatabase] = None,
        kafka_producer: Optional[KafkaProducerService] = None,
    ):
        self.db = db
        self.kafka_producer = kafka_producer
        self._memory_events: Dict[str, List[BaseEvent]] = defaultdict(list)

    async def next_version(self, aggregate_id: str) -> int:
        if self.db is None:
            return len(self._memory_events[aggregate_id]) + 1
        try:
            return await event_store.get_latest_version(self.db, aggregate_id) + 1
        except PyMongoError as e:
            raise DeclarationStoreError("record_event", str(e)) from e

    async def record(self, event: BaseEvent) -> BaseEvent:
        """Raises DeclarationStoreError, ConcurrencyConflictError or KafkaProducerError."""
        if self.db is None:
            self._memory_events[event.aggregate_id].append(event)
        else:
            try:
                await event_store.save_event(self.db, event)
            except PyMongoError as e:
                logger.error(f"Failed to save event {event.event_id} ({event.event_type}): {e}", exc_info=True)
                raise DeclarationStoreError("record_event", str(e)) from e

        if self.kafka_producer is not None:
            self.kafka_producer.publish_event(event)
        return event

    async def history(self, aggregate_id: str) -> List[BaseEvent]:
        if self.db is None:
            return list(self._memory_events.get(aggregate_id, []))
        try:
            return await event_store.get_events_for_aggregate(self.db, aggregate_id)
        except PyMongoError as e:
            raise DeclarationStoreError("event_history", str(e)) from e
