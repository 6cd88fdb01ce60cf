import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from pymongo.errors import PyMongoError

from declaration_service.app.service.enums import DeclarationStatus
from declaration_service.app.service.events.models import (
    DeclarationStatusChangedEvent,
    DeclarationStatusChangedEventPayload,
)
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.exceptions import DeclarationStoreError
from declaration_service.infrastructure.kafka.producer import KafkaProducerService


def _status_event(version: int = 1) -> DeclarationStatusChangedEvent:
    return DeclarationStatusChangedEvent(
        aggregate_id="7",
        version=version,
        payload=DeclarationStatusChangedEventPayload(
            declaration_id=7, old_status=DeclarationStatus.PENDING, new_status=DeclarationStatus.APPROVED,
        ),
    )


@pytest.mark.asyncio
async def test_in_memory_history_and_versions():
    recorder = DeclarationEventRecorder()

    assert await recorder.next_version("7") == 1
    event = await recorder.record(_status_event())

    assert await recorder.history("7") == [event]
    assert await recorder.next_version("7") == 2
    assert await recorder.history("8") == []

@pytest.mark.asyncio
async def test_record_publishes_to_kafka_keyed_by_declaration():
    producer = MagicMock(spec=KafkaProducerService)
    recorder = DeclarationEventRecorder(kafka_producer=producer)
    event = _status_event()

    await recorder.record(event)

    producer.publish_event.assert_called_once_with(event)

@pytest.mark.asyncio
@patch("declaration_service.app.service.events.recorder.event_store.save_event", new_callable=AsyncMock)
async def test_record_saves_to_event_store_when_db_is_set(mock_save_event):
    db = MagicMock()
    recorder = DeclarationEventRecorder(db=db)
    event = _status_event()

    await recorder.record(event)

    mock_save_event.assert_awaited_once_with(db, event)

@pytest.mark.asyncio
@patch("declaration_service.app.service.events.recorder.event_store.save_event", new_callable=AsyncMock)
async def test_mongo_failure_is_wrapped(mock_save_event):
    mock_save_event.side_effect = PyMongoError("connection reset")
    recorder = DeclarationEventRecorder(db=MagicMock())

    with pytest.raises(DeclarationStoreError) as exc_info:
        await recorder.record(_status_event())
    assert exc_info.value.operation == "record_event"
