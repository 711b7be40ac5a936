"""
Kafka Produce Transport

Maps the logical produce wire contract onto confluent_kafka.Producer:

    ProduceRequest{topic, partition, payload, key, acknowledgment}
        -> ProduceResponse{partition, offset}
        or TransientBrokerError / BrokerRejectedError

confluent_kafka's produce() is asynchronous: it queues the message and a
delivery callback fires later from poll()/flush(). produce() here turns that
into one blocking attempt: queue, then poll until the callback for this
message fires or the attempt deadline passes. Retrying is the
ProducerClient's job; librdkafka retries are switched off in
ProducerConfig.get_kafka_config().

ERROR CLASSIFICATION:
- KafkaError.retriable() or a known transient code -> TransientBrokerError
- BufferError (local queue full) -> TransientBrokerError
- anything else (message too large, authorization, ...) -> BrokerRejectedError
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from confluent_kafka import KafkaError, KafkaException, Producer

from price_pipeline.shared.exceptions import (
    BrokerConnectionError,
    BrokerRejectedError,
    TransientBrokerError,
)
from price_pipeline.shared.models import Acknowledgment, ProduceRequest, ProduceResponse

logger = logging.getLogger(__name__)

_TRANSIENT_ERROR_NAMES = (
    "_MSG_TIMED_OUT",
    "_TIMED_OUT",
    "_TRANSPORT",
    "_ALL_BROKERS_DOWN",
    "_QUEUE_FULL",
    "LEADER_NOT_AVAILABLE",
    "NOT_LEADER_FOR_PARTITION",
    "NOT_LEADER_OR_FOLLOWER",
    "REQUEST_TIMED_OUT",
    "NETWORK_EXCEPTION",
    "NOT_ENOUGH_REPLICAS",
    "NOT_ENOUGH_REPLICAS_AFTER_APPEND",
)

# librdkafka renamed NOT_LEADER_FOR_PARTITION to NOT_LEADER_OR_FOLLOWER
TRANSIENT_ERROR_CODES = frozenset(
    getattr(KafkaError, name) for name in _TRANSIENT_ERROR_NAMES if hasattr(KafkaError, name)
)


def is_transient(error: KafkaError) -> bool:
    return error.retriable() or error.code() in TRANSIENT_ERROR_CODES


class KafkaProduceTransport:
    """
    One confluent_kafka.Producer, exclusively owned by one ProducerClient.

    Args:
        kafka_config: confluent_kafka configuration dictionary
        acknowledgment: Level requested for every message (also in kafka_config)
        metadata_timeout: Seconds to wait for topic metadata
    """

    def __init__(
        self,
        kafka_config: Dict[str, Any],
        acknowledgment: Acknowledgment = Acknowledgment.ALL,
        metadata_timeout: float = 10.0,
    ):
        self.acknowledgment = acknowledgment
        self.metadata_timeout = metadata_timeout
        self.attempt_timeout = kafka_config.get("message.timeout.ms", 30000) / 1000
        self._lock = threading.Lock()
        try:
            self.producer: Optional[Producer] = Producer(kafka_config)
        except KafkaException as e:
            raise BrokerConnectionError("Failed to create Kafka producer", cause=e) from e

    def partition_count(self, topic: str) -> int:
        """
        Number of partitions of a topic, from broker metadata.

        Raises:
            TransientBrokerError: Metadata unavailable (broker down, topic
                still being created)
        """
        producer = self._require_producer()
        try:
            metadata = producer.list_topics(topic=topic, timeout=self.metadata_timeout)
        except KafkaException as e:
            raise TransientBrokerError(
                f"Cannot fetch metadata for topic '{topic}'", topic=topic, cause=e
            ) from e

        topic_metadata = metadata.topics.get(topic)
        if topic_metadata is None or topic_metadata.error is not None or not topic_metadata.partitions:
            error = topic_metadata.error if topic_metadata is not None else None
            raise TransientBrokerError(
                f"Topic '{topic}' metadata not available: {error}", topic=topic
            )
        return len(topic_metadata.partitions)

    def produce(self, request: ProduceRequest) -> ProduceResponse:
        """Perform one delivery attempt and block until its outcome is known."""
        producer = self._require_producer()
        if request.acknowledgment != self.acknowledgment:
            # acks is fixed when the librdkafka producer is created
            raise BrokerRejectedError(
                f"Transport sends with acknowledgment '{self.acknowledgment.value}', "
                f"request asked for '{request.acknowledgment.value}'",
                topic=request.topic,
                partition=request.partition,
            )

        outcome: List[Any] = []
        delivered = threading.Event()

        def on_delivery(err: Optional[KafkaError], msg: Any) -> None:
            outcome.append((err, msg))
            delivered.set()

        try:
            producer.produce(
                topic=request.topic,
                value=request.payload,
                key=request.key,
                partition=request.partition,
                on_delivery=on_delivery,
            )
        except BufferError as e:
            producer.poll(0)
            raise TransientBrokerError(
                "Local producer queue is full",
                topic=request.topic,
                partition=request.partition,
                cause=e,
            ) from e
        except KafkaException as e:
            self._raise_for(e.args[0], request)

        deadline = time.monotonic() + self.attempt_timeout
        while not delivered.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(
                    "No delivery report before attempt deadline",
                    extra={"topic": request.topic, "partition": request.partition},
                )
                raise TransientBrokerError(
                    "Timed out waiting for delivery report",
                    topic=request.topic,
                    partition=request.partition,
                )
            producer.poll(min(remaining, 0.1))

        err, msg = outcome[0]
        if err is not None:
            self._raise_for(err, request)

        offset = msg.offset()
        return ProduceResponse(
            partition=msg.partition(),
            offset=offset if offset is not None and offset >= 0 else None,
        )

    def flush(self, timeout: float) -> int:
        """Wait for queued messages; returns how many are still queued."""
        with self._lock:
            if self.producer is None:
                return 0
            return self.producer.flush(timeout=timeout)

    def close(self) -> None:
        """Release the producer. Safe to call more than once."""
        with self._lock:
            self.producer = None

    def _require_producer(self) -> Producer:
        producer = self.producer
        if producer is None:
            raise BrokerConnectionError("Kafka producer transport is closed")
        return producer

    @staticmethod
    def _raise_for(error: KafkaError, request: ProduceRequest) -> None:
        context = {"topic": request.topic, "partition": request.partition}
        if is_transient(error):
            raise TransientBrokerError(
                f"Transient delivery failure: {error.str()}", cause=KafkaException(error), **context
            )
        raise BrokerRejectedError(
            f"Broker rejected record: {error.str()}", cause=KafkaException(error), **context
        )
