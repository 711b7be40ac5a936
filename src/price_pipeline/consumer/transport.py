"""
Kafka Poll Transport

Maps the logical poll/commit wire contract onto confluent_kafka.Consumer:

    subscribe(topics)
    poll(PollRequest{group_id, topics, timeout_ms, max_records})
        -> PollResponse{records in offset order per partition}
    commit(topic, partition, next_offset)

KAFKA ERROR TYPES (inside poll results):
- _PARTITION_EOF: end of partition, not an error, skipped
- _ALL_BROKERS_DOWN, _AUTHENTICATION, _TOPIC_AUTHORIZATION_FAILED, ...:
  fatal, raised as BrokerConnectionError
- anything else: logged and skipped, the next poll tries again
"""

import logging
import threading
from typing import Any, Dict, Iterable, Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from price_pipeline.shared.exceptions import BrokerConnectionError, TransientBrokerError
from price_pipeline.shared.models import ConsumedRecord, PollRequest, PollResponse

logger = logging.getLogger(__name__)

_FATAL_ERROR_NAMES = (
    "_ALL_BROKERS_DOWN",
    "_AUTHENTICATION",
    "_FATAL",
    "_TOPIC_AUTHORIZATION_FAILED",
    "TOPIC_AUTHORIZATION_FAILED",
    "GROUP_AUTHORIZATION_FAILED",
    "SASL_AUTHENTICATION_FAILED",
)

FATAL_ERROR_CODES = frozenset(
    getattr(KafkaError, name) for name in _FATAL_ERROR_NAMES if hasattr(KafkaError, name)
)


def is_fatal(error: KafkaError) -> bool:
    return error.fatal() or error.code() in FATAL_ERROR_CODES


class KafkaPollTransport:
    """
    One confluent_kafka.Consumer, exclusively owned by one ConsumerGroupClient.

    Args:
        kafka_config: confluent_kafka consumer configuration (group.id included)
        metadata_timeout: Seconds to wait for metadata when subscribing
    """

    def __init__(self, kafka_config: Dict[str, Any], metadata_timeout: float = 10.0):
        self.group_id = kafka_config.get("group.id")
        self.metadata_timeout = metadata_timeout
        self._lock = threading.Lock()
        try:
            self.consumer: Optional[Consumer] = Consumer(kafka_config)
        except KafkaException as e:
            raise BrokerConnectionError("Failed to create Kafka consumer", cause=e) from e

    def subscribe(self, topics: Iterable[str]) -> None:
        """
        Join the group and subscribe.

        Raises:
            BrokerConnectionError: Brokers unreachable
        """
        consumer = self._require_consumer()
        topic_list = sorted(topics)
        try:
            # librdkafka connects lazily; fetching metadata proves the brokers answer
            consumer.list_topics(timeout=self.metadata_timeout)
            consumer.subscribe(topic_list)
        except KafkaException as e:
            raise BrokerConnectionError(
                f"Cannot subscribe group '{self.group_id}' to {topic_list}", cause=e
            ) from e

    def poll(self, request: PollRequest) -> PollResponse:
        """
        Fetch up to request.max_records records.

        Raises:
            BrokerConnectionError: Fatal consumer error
        """
        consumer = self._require_consumer()
        try:
            messages = consumer.consume(
                num_messages=request.max_records, timeout=request.timeout_ms / 1000
            )
        except KafkaException as e:
            raise BrokerConnectionError(
                f"Poll failed for group '{request.group_id}'", cause=e
            ) from e

        records = []
        for msg in messages:
            error = msg.error()
            if error is not None:
                self._handle_error(error, request)
                continue
            records.append(
                ConsumedRecord(
                    topic=msg.topic(),
                    partition=msg.partition(),
                    offset=msg.offset(),
                    payload=msg.value() or b"",
                    key=msg.key(),
                )
            )
        return PollResponse(records=records)

    def commit(self, topic: str, partition: int, next_offset: int) -> None:
        """
        Synchronously commit the group's position in one partition.

        Raises:
            TransientBrokerError: Commit refused (e.g. rebalance in progress);
                the record may be redelivered
            BrokerConnectionError: Fatal consumer error
        """
        consumer = self._require_consumer()
        try:
            consumer.commit(
                offsets=[TopicPartition(topic, partition, next_offset)], asynchronous=False
            )
        except KafkaException as e:
            error = e.args[0] if e.args else None
            context = {"topic": topic, "partition": partition, "offset": next_offset, "cause": e}
            if isinstance(error, KafkaError) and is_fatal(error):
                raise BrokerConnectionError("Offset commit failed fatally", **context) from e
            raise TransientBrokerError("Offset commit failed", **context) from e

    def close(self) -> None:
        """Leave the group and release the consumer. Safe to call more than once."""
        with self._lock:
            consumer, self.consumer = self.consumer, None
        if consumer is not None:
            consumer.close()

    def _require_consumer(self) -> Consumer:
        consumer = self.consumer
        if consumer is None:
            raise BrokerConnectionError("Kafka consumer transport is closed")
        return consumer

    def _handle_error(self, error: KafkaError, request: PollRequest) -> None:
        if error.code() == KafkaError._PARTITION_EOF:
            logger.debug("Reached end of partition", extra={"group_id": request.group_id})
            return

        if is_fatal(error):
            raise BrokerConnectionError(
                f"Fatal Kafka error: {error.str()}", cause=KafkaException(error)
            )

        logger.warning(
            f"Kafka error: {error.str()}",
            extra={
                "group_id": request.group_id,
                "error_code": error.code(),
                "error_name": error.name(),
            },
        )
