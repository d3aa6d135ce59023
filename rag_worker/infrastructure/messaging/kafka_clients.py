# File: rag_worker/infrastructure/messaging/kafka_clients.py
import json
from typing import Any, Dict, List, Optional

import structlog
from confluent_kafka import Consumer, KafkaError, KafkaException, Message, Producer, TopicPartition

from rag_worker.core.config import Settings
from rag_worker.core.metrics import KAFKA_MESSAGES_PRODUCED_TOTAL
from rag_worker.domain.exceptions import EventPublishError

log = structlog.get_logger(__name__)


# --- Kafka Producer ---
class KafkaProducerClient:
    def __init__(self, settings: Settings, producer: Optional[Producer] = None):
        producer_config = {
            'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
            'acks': settings.KAFKA_PRODUCER_ACKS,
        }
        self.producer = producer or Producer(producer_config)
        self.publish_timeout = settings.KAFKA_PUBLISH_TIMEOUT_SECONDS
        self.log = log.bind(component="KafkaProducerClient")

    def _delivery_report(self, err, msg):
        if err is not None:
            KAFKA_MESSAGES_PRODUCED_TOTAL.labels(topic=msg.topic(), status="failure").inc()
            self.log.error(f"Message delivery failed to topic '{msg.topic()}'", error=str(err))
        else:
            KAFKA_MESSAGES_PRODUCED_TOTAL.labels(topic=msg.topic(), status="success").inc()
            self.log.debug(f"Message delivered to {msg.topic()} [{msg.partition()}]")

    def produce_and_wait(self, topic: str, key: str, value: Dict[str, Any], timeout: Optional[float] = None):
        """
        Produces one event and blocks until the broker confirms it.

        Raises:
            EventPublishError: If the event was rejected, could not be enqueued
                or was not confirmed within the timeout.
        """
        outcome: Dict[str, Any] = {}

        def _on_delivery(err, msg):
            outcome["error"] = err
            self._delivery_report(err, msg)

        try:
            self.producer.produce(
                topic,
                key=key.encode('utf-8'),
                value=json.dumps(value).encode('utf-8'),
                callback=_on_delivery
            )
            remaining = self.producer.flush(timeout if timeout is not None else self.publish_timeout)
        except (KafkaException, BufferError) as e:
            KAFKA_MESSAGES_PRODUCED_TOTAL.labels(topic=topic, status="failure").inc()
            self.log.error("Failed to enqueue message", topic=topic, error=str(e))
            raise EventPublishError(f"failed to produce to {topic}: {e}") from e

        if "error" not in outcome:
            self.log.error("Message delivery not confirmed before timeout", topic=topic, queued_messages=remaining)
            raise EventPublishError(f"delivery to {topic} not confirmed before timeout")
        if outcome["error"] is not None:
            raise EventPublishError(f"delivery to {topic} failed: {outcome['error']}")

    def flush(self, timeout: float = 10.0):
        self.log.info(f"Flushing producer with a timeout of {timeout}s...")
        self.producer.flush(timeout)
        self.log.info("Producer flushed.")


# --- Kafka Consumer ---
class KafkaConsumerClient:
    def __init__(self, settings: Settings, group_id: str, topics: List[str], consumer: Optional[Consumer] = None):
        consumer_config = {
            'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
            'group.id': group_id,
            'auto.offset.reset': settings.KAFKA_AUTO_OFFSET_RESET,
            'enable.auto.commit': False,
        }
        self.consumer = consumer or Consumer(consumer_config)
        self.consumer.subscribe(topics)
        self.poll_timeout = settings.KAFKA_POLL_TIMEOUT_SECONDS
        self.log = log.bind(component="KafkaConsumerClient", topics=topics, group_id=group_id)

    def poll(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Returns the next message, or None when nothing arrived within the timeout."""
        msg = self.consumer.poll(timeout=timeout if timeout is not None else self.poll_timeout)
        if msg is None:
            return None
        if msg.error():
            if msg.error().code() == KafkaError._PARTITION_EOF:
                return None
            if msg.error().fatal():
                self.log.critical("Fatal Kafka consumer error", error=str(msg.error()))
                raise KafkaException(msg.error())
            self.log.error("Kafka consumer error", error=str(msg.error()))
            return None
        return msg

    def commit(self, message: Message):
        """Commits the offset for the given message."""
        self.consumer.commit(message=message, asynchronous=False)

    def seek(self, message: Message):
        """Rewinds the message's partition so the message is delivered again."""
        self.consumer.seek(TopicPartition(message.topic(), message.partition(), message.offset()))

    def close(self):
        self.log.info("Closing Kafka consumer...")
        self.consumer.close()
