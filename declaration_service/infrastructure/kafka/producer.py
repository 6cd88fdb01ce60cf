# Kafka producer for declaration lifecycle events
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from confluent_kafka import KafkaException, Producer
from pydantic import BaseModel

from declaration_service.app.config import settings
from declaration_service.app.service.events.models import BaseEvent
from declaration_service.app.service.exceptions import ConfigurationError, KafkaProducerError

logger = logging.getLogger(__name__)


class KafkaProducerService:
    def __init__(self, bootstrap_servers: str, default_topic: Optional[str] = None):
        self.producer_config = {
            'bootstrap.servers': bootstrap_servers,
            'enable.idempotence': True,
        }
        self.producer = Producer(self.producer_config)
        self.default_topic = default_topic or settings.DECLARATION_EVENTS_TOPIC
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None
        logger.info(f"KafkaProducer initialized with servers: {bootstrap_servers}, default topic: {self.default_topic}")

    def _delivery_report(self, err, msg):
        """ Called once for each message produced to indicate delivery result. """
        if err is not None:
            logger.error(f"Delivery failed for key {msg.key()} on {msg.topic()}: {err}")
        else:
            logger.debug(f"Delivered key {msg.key()} to {msg.topic()} [{msg.partition()}] at offset {msg.offset()}")

    async def _poll_loop(self):
        """ Polls the producer for delivery reports. """
        while not self._cancelled:
            self.producer.poll(0)
            await asyncio.sleep(0.1)
        logger.info("KafkaProducer poll loop stopped.")

    def produce_message(
        self,
        message: BaseModel,
        key: Optional[str] = None,
        topic: Optional[str] = None,
        callback: Optional[Callable[[Any, Any], None]] = None, # err, msg
        headers: Optional[Dict[str, str]] = None,
    ):
        """ Enqueues a Pydantic model as JSON. Raises KafkaProducerError if it cannot be enqueued. """
        topic = topic or self.default_topic
        if self._cancelled:
            raise KafkaProducerError(f"Producer is stopped; message for topic {topic} not produced.")

        value_json = message.model_dump_json()
        try:
            self.producer.produce(
                topic,
                value=value_json.encode('utf-8'),
                key=key.encode("utf-8") if key else None,
                headers=headers,
                callback=callback if callback else self._delivery_report
            )
        except BufferError as e:
            logger.error(f"Kafka producer queue full. Message to {topic} not produced. Error: {e}")
            raise KafkaProducerError(f"Kafka producer queue full for topic {topic}") from e
        except KafkaException as e:
            logger.error(f"Error producing message to Kafka topic {topic}: {e}", exc_info=True)
            raise KafkaProducerError(f"Error producing message to topic {topic}: {e}") from e
        logger.debug(f"Message enqueued to topic {topic} (key: {key}): {value_json}")

    def publish_event(self, event: BaseEvent, topic: Optional[str] = None):
        """Publishes a lifecycle event keyed by its declaration id, with the event type as a header."""
        self.produce_message(
            event,
            key=event.aggregate_id,
            topic=topic,
            headers={"event_type": event.event_type, "event_version": str(event.version)},
        )

    async def start_polling(self):
        if self._poll_loop_task is None or self._poll_loop_task.done():
            self._cancelled = False
            self._poll_loop_task = asyncio.create_task(self._poll_loop())
            logger.info("KafkaProducer polling started.")

    async def stop_polling(self):
        if self._poll_loop_task and not self._cancelled:
            self._cancelled = True
            try:
                await asyncio.wait_for(self._poll_loop_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("KafkaProducer poll loop did not stop in time.")
            self._poll_loop_task = None

    def flush(self, timeout: float = 10.0) -> int: # Return remaining messages
        """Wait for all messages in the Producer queue to be delivered. """
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} messages still in Kafka producer queue after flush timeout.")
        else:
            logger.info("All Kafka messages flushed successfully.")
        return remaining

_kafka_producer_instance: Optional[KafkaProducerService] = None

def get_kafka_producer() -> KafkaProducerService:
    global _kafka_producer_instance
    if _kafka_producer_instance is None:
        if not settings.KAFKA_BOOTSTRAP_SERVERS:
            logger.error("KAFKA_BOOTSTRAP_SERVERS not configured in settings. KafkaProducer cannot be initialized.")
            raise ConfigurationError("KAFKA_BOOTSTRAP_SERVERS not configured.")
        _kafka_producer_instance = KafkaProducerService(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS
        )
    return _kafka_producer_instance

async def startup_kafka_producer() -> Optional[KafkaProducerService]:
    """Starts the producer when Kafka is configured; lifecycle events are not published otherwise."""
    if not settings.KAFKA_BOOTSTRAP_SERVERS:
        logger.info("KAFKA_BOOTSTRAP_SERVERS not set. Declaration events will not be published to Kafka.")
        return None
    producer = get_kafka_producer()
    await producer.start_polling()
    return producer

async def shutdown_kafka_producer():
    global _kafka_producer_instance
    if _kafka_producer_instance:
        logger.info("Flushing Kafka producer before shutdown...")
        _kafka_producer_instance.flush()
        await _kafka_producer_instance.stop_polling()
        _kafka_producer_instance = None
        logger.info("Kafka producer shutdown complete.")
    else:
        logger.info("Kafka producer was not initialized, skipping shutdown steps.")
