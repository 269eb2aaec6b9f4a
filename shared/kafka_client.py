"""
kafka_client.py - Kafka Producer and Consumer Client Wrappers

CLASSES:
    1. BaseKafkaProducer: Publishes events to Kafka topics
       - JSON serialization of pydantic events
       - Optional message key (order_id / product_id) so every event of one
         order or product lands on the same partition, in order
       - Delivery acknowledgments from all replicas (acks=all)
       - Idempotent delivery and snappy compression

    2. BaseKafkaConsumer: Consumes events from Kafka topics
       - Deserialization through EVENT_TYPE_MAP
       - Consumer group management, at-least-once delivery: the offset is
         committed only after the handler (or the DLQ publish) has finished
       - In-process duplicate suppression by event_id
       - Retry with exponential backoff, then Dead Letter Queue

DEAD LETTER QUEUE (DLQ) HANDLING:
    1. Message received and validated into its event class
    2. Handler processes the event
    3. On error, retry after 1s, then 2s
    4. After the last attempt fails the event is wrapped in a DLQEvent,
       published to "dlq.events" and marked processed
    5. If even the DLQ publish fails, the consumer seeks back to the message
       so it is delivered again before anything after it is committed

    Handlers must therefore be idempotent: the inventory handlers are, because
    a redelivered order.created returns the existing reservations and a
    redelivered cancel/fulfil finds the tokens already settled.
"""

import json
import logging
import time
from typing import Callable, List, Optional, Sequence, Set

from confluent_kafka import Consumer, KafkaException, Producer, TopicPartition
from confluent_kafka.error import KafkaError
from pydantic import ValidationError

from shared.events import EVENT_TYPE_MAP, BaseEvent, DLQEvent

logger = logging.getLogger(__name__)


class BaseKafkaProducer:
    """
    Idempotent Kafka producer for pydantic events.

    ``publish`` waits for the broker acknowledgment, so a returned call means
    the event is durable on every in-sync replica. Failures surface as
    KafkaException (broker side) or BufferError (local queue full).
    """

    FLUSH_TIMEOUT = 10.0  # seconds

    def __init__(self, bootstrap_servers: str, client_id: str = "producer"):
        """
        Initialize Kafka producer.

        Args:
            bootstrap_servers: Comma-separated Kafka broker addresses
            client_id: Unique identifier for this producer instance
        """
        self.config = {
            "bootstrap.servers": bootstrap_servers,
            "client.id": client_id,
            "acks": "all",
            # Broker-side dedup of internal retries, keeps per-key ordering
            "enable.idempotence": True,
            "compression.type": "snappy",
        }
        self.producer = Producer(self.config)

    def _on_delivery(self, err: Optional[KafkaError], msg) -> None:
        if err is not None:
            logger.error(f"Delivery to {msg.topic()} failed: {err}")
            return
        logger.debug(f"Delivered to {msg.topic()}[{msg.partition()}] at offset {msg.offset()}")

    def publish(self, topic: str, event: BaseEvent, key: Optional[str] = None) -> None:
        """Publish ``event`` to ``topic``, keyed for partition ordering when ``key`` is given."""
        context = {"event_type": event.event_type, "correlation_id": event.correlation_id}
        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8") if key else None,
                value=event.model_dump_json().encode("utf-8"),
                on_delivery=self._on_delivery,
            )
            undelivered = self.producer.flush(self.FLUSH_TIMEOUT)
        except (KafkaException, BufferError) as e:
            logger.error(f"Error publishing event to {topic}: {e}", extra=context)
            raise

        if undelivered:
            logger.error(f"{undelivered} message(s) to {topic} not acknowledged in {self.FLUSH_TIMEOUT}s", extra=context)
            raise KafkaException(KafkaError(KafkaError._MSG_TIMED_OUT))
        logger.info(f"Published event to {topic}", extra=context)

    def flush(self) -> None:
        """Flush any pending messages."""
        self.producer.flush(self.FLUSH_TIMEOUT)


class BaseKafkaConsumer:
    """Base Kafka consumer with retry logic and DLQ handling."""

    RETRY_DELAYS: Sequence[float] = (1, 2)

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        topics: List[str],
    ):
        """Initialize Kafka consumer."""
        self.config = {
            "bootstrap.servers": bootstrap_servers,
            "group.id": group_id,
            "auto.offset.reset": "earliest",
            "enable.auto.commit": False,
            "session.timeout.ms": 30000,
        }
        self.consumer = Consumer(self.config)
        self.topics = topics
        self.consumer.subscribe(topics)
        self.processed_events: Set[str] = set()
        self.producer = BaseKafkaProducer(bootstrap_servers, client_id=f"{group_id}-dlq-producer")
        self._running = True

    def handle_message(self, topic: str, raw: bytes, handler_fn: Callable[[BaseEvent], None]) -> None:
        """Deserialize one message and run ``handler_fn`` with retries and DLQ fallback."""
        event_data = json.loads(raw.decode("utf-8"))
        event_type = event_data.get("event_type")
        event_id = event_data.get("event_id")

        if event_id in self.processed_events:
            logger.info(
                f"Event {event_id} already processed, skipping",
                extra={"event_type": event_type, "correlation_id": event_data.get("correlation_id")},
            )
            return

        event_class = EVENT_TYPE_MAP.get(event_type, BaseEvent)
        event = event_class.model_validate(event_data)
        context = {"event_type": event_type, "correlation_id": event.correlation_id}

        max_attempts = len(self.RETRY_DELAYS) + 1
        for attempt in range(max_attempts):
            try:
                handler_fn(event)
                self.processed_events.add(event_id)
                logger.info("Event processed successfully", extra=context)
                return
            except Exception as e:
                if attempt < max_attempts - 1:
                    wait_time = self.RETRY_DELAYS[attempt]
                    logger.warning(
                        f"Error processing event (attempt {attempt + 1}/{max_attempts}): {e}. "
                        f"Retrying in {wait_time}s...",
                        extra=context,
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(
                        f"Event failed after {max_attempts} attempts: {e}. Sending to DLQ.",
                        extra=context,
                    )
                    dlq_event = DLQEvent(
                        correlation_id=event.correlation_id,
                        original_topic=topic,
                        original_event_type=event_type or "unknown",
                        error_reason=str(e),
                        retry_count=max_attempts,
                        payload=event_data,
                    )
                    self.producer.publish("dlq.events", dlq_event)
                    self.processed_events.add(event_id)

    def consume(self, handler_fn: Callable[[BaseEvent], None], timeout: float = 1.0) -> None:
        """Consume messages from subscribed topics until ``stop`` is called."""
        while self._running:
            msg = self.consumer.poll(timeout)

            if msg is None:
                continue

            if msg.error():
                logger.error(f"Consumer error: {msg.error()}")
                continue

            try:
                self.handle_message(msg.topic(), msg.value(), handler_fn)
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Skipping undecodable message on {msg.topic()}: {e}")
            except Exception as e:
                # Committing a later offset would skip this message, so read it again
                logger.exception(f"Unexpected error in consumer: {e}")
                self.consumer.seek(TopicPartition(msg.topic(), msg.partition(), msg.offset()))
                continue

            self.consumer.commit(message=msg, asynchronous=False)

    def stop(self) -> None:
        """Ask the consume loop to exit after the current poll."""
        self._running = False

    def close(self) -> None:
        """Close the consumer."""
        self.consumer.close()
