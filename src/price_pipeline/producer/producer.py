"""
Price Update Producer Client

Publishes price update records to Kafka with a configurable acknowledgment
level and a bounded, explicit retry budget.

PRODUCER RESPONSIBILITIES:
1. Resolve the record's partition (explicit, key hash or round-robin)
2. Deliver it to the broker and wait for the acknowledgment level configured
3. Retry transient failures up to producer_max_retries times
4. Fail fast on records that can never succeed (bad partition, rejection)
5. Flush in-flight sends and release the connection on close

DELIVERY GUARANTEES:
- acks=none: fire-and-forget, send() returns without an offset
- acks=leader: partition leader wrote the record
- acks=all: every in-sync replica wrote the record
- attempts = producer_max_retries + 1, then DeliveryError with the last cause

RETRY POLICY:
┌──────────────────────────────┬──────────────┬───────────────────────────┐
│ Failure                      │ Retried?     │ Raised                    │
├──────────────────────────────┼──────────────┼───────────────────────────┤
│ partition out of range       │ no           │ InvalidPartitionError     │
│ payload not a price update   │ no           │ DecodeError               │
│ broker rejected the record   │ no           │ DeliveryError (1 attempt) │
│ network / leader / timeout   │ yes, bounded │ DeliveryError (N+1)       │
└──────────────────────────────┴──────────────┴───────────────────────────┘

LIFECYCLE:
    with ProducerClient(config) as producer:   # connection acquired
        producer.publish(event, partition=0)   # blocks for acknowledgment
    # flushed and released here, on every exit path

close() stops retrying: a send between attempts raises DeliveryError with the
last transient cause instead of starting another attempt.
"""

import threading
import time
from typing import Callable, Dict, Optional, Protocol

from price_pipeline.producer.config import ProducerConfig
from price_pipeline.producer.transport import KafkaProduceTransport
from price_pipeline.shared.codec import decode, encode
from price_pipeline.shared.exceptions import (
    BrokerConnectionError,
    BrokerRejectedError,
    ClientStateError,
    DecodeError,
    DeliveryError,
    InvalidPartitionError,
    TransientBrokerError,
)
from price_pipeline.shared.logger import CorrelationAdapter, setup_logger
from price_pipeline.shared.models import (
    PriceUpdateEvent,
    ProduceRequest,
    ProduceResponse,
    Record,
    SendResult,
)
from price_pipeline.shared.topics import Partitioner, select_partition


class ProducerTransport(Protocol):
    """Produce side of the broker wire contract."""

    def partition_count(self, topic: str) -> int:
        ...

    def produce(self, request: ProduceRequest) -> ProduceResponse:
        ...

    def flush(self, timeout: float) -> int:
        ...

    def close(self) -> None:
        ...


# ==============================================================================
# PRODUCER CLIENT
# ==============================================================================


class ProducerClient:
    """
    Kafka producer for price update records.

    Attributes:
        config: Frozen producer configuration
        transport: Broker connection, exclusively owned by this client
        partitioner: Policy for records without an explicit partition
        messages_sent: Records acknowledged (or handed off, for acks=none)
        messages_failed: Records that raised from send()
    """

    def __init__(
        self,
        config: ProducerConfig,
        transport: Optional[ProducerTransport] = None,
        partitioner: Optional[Partitioner] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        """
        Create the producer and acquire its broker connection.

        Args:
            config: Producer configuration
            transport: Broker transport (default: confluent_kafka producer
                built from config.get_kafka_config())
            partitioner: Partition policy (default: key hash, then round-robin)
            sleep: Backoff function between attempts (default: waits on the
                close signal, so close() cuts a backoff short)

        Raises:
            BrokerConnectionError: The Kafka client could not be created
        """
        self.config = config
        self.partitioner = partitioner
        # set by close(): no new attempts start after it
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancelled.wait

        self.logger = setup_logger(
            name=__name__,
            service_name="price-producer",
            log_level=config.log_level,
            log_format=config.log_format,
        )

        self.messages_sent = 0
        self.messages_failed = 0

        self._cond = threading.Condition()
        self._in_flight = 0
        self._flushing = 0
        self._closing = False
        self._closed = False
        self._partition_counts: Dict[str, int] = {}

        if transport is None:
            transport = KafkaProduceTransport(
                config.get_kafka_config(),
                acknowledgment=config.producer_acks,
                metadata_timeout=config.producer_request_timeout_ms / 1000,
            )
        self.transport = transport

        self.logger.info(
            "Price producer initialized",
            extra={
                "bootstrap_servers": config.kafka_bootstrap_servers,
                "client_id": config.producer_client_id,
                "acknowledgment": config.producer_acks.value,
                "max_retries": config.producer_max_retries,
            },
        )

    # --------------------------------------------------------------------------
    # Context manager
    # --------------------------------------------------------------------------

    def __enter__(self) -> "ProducerClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    # --------------------------------------------------------------------------
    # Sending
    # --------------------------------------------------------------------------

    def publish(
        self,
        event: PriceUpdateEvent,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
    ) -> SendResult:
        """
        Encode a price update and send it.

        The product name is the partition key, so updates for one product
        stay ordered when no explicit partition is given.

        Args:
            event: Price update to publish
            topic: Destination topic (default: config.kafka_topic_prices)
            partition: Explicit partition, or None for key-hash partitioning

        Returns:
            SendResult with the partition and offset assigned by the broker

        Example:
            >>> event = PriceUpdateEvent(product_name="ABC", updated_price=Decimal("100.00"))
            >>> producer.publish(event, partition=0)
            SendResult(topic='product-price', partition=0, offset=0, attempts=1)
        """
        record = Record(
            topic=topic or self.config.kafka_topic_prices,
            partition=partition,
            payload=encode(event),
            key=event.product_name.encode("utf-8"),
        )
        return self.send(record)

    def send(self, record: Record) -> SendResult:
        """
        Deliver one record, retrying transient failures.

        Args:
            record: Record to deliver

        Returns:
            SendResult (offset is None for acks=none)

        Raises:
            InvalidPartitionError: Explicit partition outside the topic's range
            DecodeError: Payload is not an encoded price update
            DeliveryError: Broker rejected the record, the connection is gone,
                all attempts failed transiently, or close() stopped the retries;
                `cause` holds the last underlying error
            ClientStateError: Producer is flushing or closed
        """
        self._begin_send()
        try:
            result = self._deliver(record)
        except Exception:
            with self._cond:
                self.messages_failed += 1
            raise
        finally:
            self._end_send()

        with self._cond:
            self.messages_sent += 1
        return result

    def _deliver(self, record: Record) -> SendResult:
        record_logger = CorrelationAdapter(
            self.logger,
            {"correlation_id": record.key.decode("utf-8", "replace") if record.key else record.topic},
        )

        if record.partition is not None and record.partition < 0:
            raise InvalidPartitionError(
                f"Partition {record.partition} is negative",
                topic=record.topic,
                partition=record.partition,
            )

        try:
            decode(record.payload)
        except DecodeError as e:
            record_logger.error("Payload is not a price update, record not sent", extra=e.to_dict())
            raise

        max_attempts = self.config.producer_max_retries + 1
        last_error: Optional[TransientBrokerError] = None
        partition: Optional[int] = record.partition

        for attempt in range(1, max_attempts + 1):
            if attempt > 1 and self._cancelled.is_set():
                record_logger.warning(
                    "Producer closing, retries abandoned",
                    extra={"topic": record.topic, "partition": partition, "attempts": attempt - 1},
                )
                raise DeliveryError(
                    f"Delivery to '{record.topic}' abandoned on close after {attempt - 1} attempts",
                    attempts=attempt - 1,
                    topic=record.topic,
                    partition=partition,
                    cause=last_error,
                ) from last_error

            try:
                partition = self._resolve_partition(record)
                response = self.transport.produce(
                    ProduceRequest(
                        topic=record.topic,
                        partition=partition,
                        payload=record.payload,
                        key=record.key,
                        acknowledgment=self.config.producer_acks,
                    )
                )

            except InvalidPartitionError as e:
                record_logger.error("Invalid partition, record not sent", extra=e.to_dict())
                raise

            except BrokerRejectedError as e:
                record_logger.error(
                    "Broker rejected record, not retrying",
                    extra={**e.to_dict(), "attempt": attempt},
                )
                raise DeliveryError(
                    f"Record rejected by broker: {e.message}",
                    attempts=attempt,
                    topic=record.topic,
                    partition=partition,
                    cause=e,
                ) from e

            except BrokerConnectionError as e:
                record_logger.error(
                    "Broker connection unavailable, not retrying",
                    extra={**e.to_dict(), "attempt": attempt},
                )
                raise DeliveryError(
                    f"Delivery to '{record.topic}' failed: {e.message}",
                    attempts=attempt,
                    topic=record.topic,
                    partition=partition,
                    cause=e,
                ) from e

            except TransientBrokerError as e:
                last_error = e
                # metadata may be stale after a leader change
                self._partition_counts.pop(record.topic, None)
                if attempt < max_attempts:
                    backoff_s = self.config.producer_retry_backoff_ms / 1000
                    record_logger.warning(
                        f"Transient delivery failure, retrying in {backoff_s}s",
                        extra={**e.to_dict(), "attempt": attempt, "max_attempts": max_attempts},
                    )
                    if backoff_s > 0:
                        self._sleep(backoff_s)

            else:
                record_logger.debug(
                    "Record delivered",
                    extra={
                        "topic": record.topic,
                        "partition": response.partition,
                        "offset": response.offset,
                        "attempts": attempt,
                        "acknowledgment": self.config.producer_acks.value,
                    },
                )
                return SendResult(
                    topic=record.topic,
                    partition=response.partition,
                    offset=response.offset,
                    attempts=attempt,
                )

        record_logger.error(
            "Max retries exhausted, giving up",
            extra={"topic": record.topic, "partition": partition, "attempts": max_attempts},
        )
        raise DeliveryError(
            f"Delivery to '{record.topic}' failed after {max_attempts} attempts",
            attempts=max_attempts,
            topic=record.topic,
            partition=partition,
            cause=last_error,
        ) from last_error

    def _resolve_partition(self, record: Record) -> int:
        partition_count = self.partition_count(record.topic)
        return select_partition(
            record.topic,
            record.partition,
            partition_count,
            key=record.key,
            partitioner=self.partitioner,
        )

    def partition_count(self, topic: str) -> int:
        """
        Partitions of a topic, from broker metadata (cached until a transient failure).

        Raises:
            TransientBrokerError: Metadata unavailable
        """
        count = self._partition_counts.get(topic)
        if count is None:
            count = self.transport.partition_count(topic)
            self._partition_counts[topic] = count
        return count

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------

    def _begin_send(self) -> None:
        with self._cond:
            if self._closing or self._closed:
                raise ClientStateError("Producer is closed, cannot send")
            if self._flushing:
                raise ClientStateError("Producer is flushing, cannot accept new sends")
            self._in_flight += 1

    def _end_send(self) -> None:
        with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    def _drain(self, timeout: float) -> int:
        """Wait for in-flight sends, then for the transport queue."""
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._in_flight > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            pending_sends = self._in_flight

        queued = self.transport.flush(timeout=max(deadline - time.monotonic(), 0.0))
        return pending_sends + queued

    def flush(self, timeout: float = 30.0) -> int:
        """
        Wait until every send submitted so far has completed or failed.

        New sends are rejected with ClientStateError while flushing.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            Number of messages still pending (0 = all settled)
        """
        with self._cond:
            if self._closed:
                return 0
            self._flushing += 1

        self.logger.info("Flushing producer", extra={"timeout": timeout})
        try:
            remaining = self._drain(timeout)
        finally:
            with self._cond:
                self._flushing -= 1

        if remaining > 0:
            self.logger.warning(
                "Producer flush timeout",
                extra={"remaining_messages": remaining, "timeout": timeout},
            )
        else:
            self.logger.info("All messages delivered")
        return remaining

    def close(self, timeout: float = 30.0) -> None:
        """
        Flush pending sends and release the broker connection.

        Sends waiting to retry give up with DeliveryError. An attempt already
        in the transport finishes before the connection is released.

        Idempotent: later calls (and calls racing an in-progress close) return
        without touching the transport again.

        Args:
            timeout: Maximum time to wait for pending sends (seconds)
        """
        with self._cond:
            if self._closing or self._closed:
                return
            self._closing = True
        self._cancelled.set()

        self.logger.info("Shutting down producer")
        try:
            remaining = self._drain(timeout)
            if remaining > 0:
                self.logger.error(
                    f"Producer closed with {remaining} messages undelivered",
                    extra={"remaining_messages": remaining},
                )
        finally:
            # an attempt still in the transport is bounded by the request timeout
            with self._cond:
                while self._in_flight > 0:
                    self._cond.wait()
            self.transport.close()
            with self._cond:
                self._closed = True

        self.logger.info(
            "Producer shutdown complete",
            extra={"messages_sent": self.messages_sent, "messages_failed": self.messages_failed},
        )
