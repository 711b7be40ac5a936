"""
Consumer Group Client

Joins a consumer group, polls the subscribed topics on an interval and
dispatches every record to one registered handler, in offset order.

CONSUMER LIFECYCLE:
┌─────────────────────────────────────────────────────────────────────────┐
│  CREATED ──subscribe()──> SUBSCRIBED ──run()/start()──> POLLING         │
│                                                          │    ^         │
│                                            non-empty batch│    │done     │
│                                                          v    │         │
│                                                       DISPATCHING       │
│  any state ──close() / fatal broker error──> CLOSED (terminal)          │
└─────────────────────────────────────────────────────────────────────────┘

ONE POLL CYCLE:
1. Poll: PollRequest{group_id, topics, timeout_ms, max_records}
2. For each record, in order:
   a. Decode the payload (DecodeError -> error channel, record skipped)
   b. Call the handler (exception -> HandlerError -> error channel)
   c. Commit offset + 1 for the record's partition
3. Wait poll_interval_ms (close() interrupts the wait)

AT-LEAST-ONCE DELIVERY:
- The offset is committed only AFTER the handler returns
- Crash mid-batch -> the uncommitted remainder is redelivered on restart,
  the committed prefix is not
- Poison records (decode or handler failure) are reported and committed past,
  so one bad record never blocks its partition

CONSUMER GROUP BEHAVIOR:
- Different group ids: each group gets every record (fan-out)
- Same group id: the broker divides partitions between members (load sharing)
- 2 partitions, 1 member: it gets both
- 2 partitions, 2 members: one each
- 2 partitions, 3 members: one member idle

ERROR HANDLING STRATEGY:
1. DecodeError / HandlerError: report, commit, continue with the next record
2. Commit refused (rebalance): log, continue (record may be redelivered)
3. BrokerConnectionError: fatal, client moves to CLOSED, owner restarts it
"""

import threading
import time
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional, Protocol, Set

from price_pipeline.consumer.config import ConsumerGroupConfig
from price_pipeline.consumer.transport import KafkaPollTransport
from price_pipeline.shared.exceptions import (
    AlreadySubscribedError,
    BrokerConnectionError,
    ClientStateError,
    DecodeError,
    HandlerError,
    PipelineError,
    TransientBrokerError,
)
from price_pipeline.shared.logger import CorrelationAdapter, setup_logger
from price_pipeline.shared.models import ConsumedRecord, PollRequest, PollResponse

RecordHandler = Callable[[ConsumedRecord], None]
ErrorCallback = Callable[[PipelineError], None]


class ConsumerTransport(Protocol):
    """Poll side of the broker wire contract."""

    def subscribe(self, topics: Iterable[str]) -> None:
        ...

    def poll(self, request: PollRequest) -> PollResponse:
        ...

    def commit(self, topic: str, partition: int, next_offset: int) -> None:
        ...

    def close(self) -> None:
        ...


class ConsumerState(str, Enum):
    CREATED = "created"
    SUBSCRIBED = "subscribed"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    CLOSED = "closed"


# ==============================================================================
# CONSUMER GROUP CLIENT
# ==============================================================================


class ConsumerGroupClient:
    """
    One member of a consumer group.

    Attributes:
        config: Frozen consumer group configuration
        transport: Broker connection, exclusively owned by this client
        on_error: Error channel for per-record and fatal errors
        last_error: Fatal error that closed the client, if any
        messages_processed: Records the handler accepted
        messages_failed: Records whose handler raised
        messages_skipped: Records that could not be decoded
    """

    def __init__(
        self,
        config: ConsumerGroupConfig,
        transport: Optional[ConsumerTransport] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        """
        Create the group member and acquire its broker connection.

        Args:
            config: Consumer group configuration
            transport: Broker transport (default: confluent_kafka consumer
                built from config.get_kafka_config())
            on_error: Called with each DecodeError / HandlerError, and with
                the fatal error when a background loop stops. Errors are
                always logged as well.

        Raises:
            BrokerConnectionError: The Kafka client could not be created
        """
        self.config = config
        self.on_error = on_error
        self.last_error: Optional[PipelineError] = None

        self.logger = setup_logger(
            name=__name__,
            service_name="price-consumer",
            log_level=config.log_level,
            log_format=config.log_format,
        )

        self.messages_processed = 0
        self.messages_failed = 0
        self.messages_skipped = 0

        self._lock = threading.Lock()
        # held for the duration of one poll/dispatch cycle
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._state = ConsumerState.CREATED
        self._handler: Optional[RecordHandler] = None
        self._topics: FrozenSet[str] = frozenset()
        self._thread: Optional[threading.Thread] = None
        self._loop_thread_id: Optional[int] = None
        # threads inside _run_cycle, lock held or about to be
        self._cycle_threads: Set[int] = set()
        self._closing = False
        self._released = False

        if transport is None:
            transport = KafkaPollTransport(config.get_kafka_config())
        self.transport = transport

        self.logger.info(
            "Consumer group client initialized",
            extra={
                "group_id": config.consumer_group_id,
                "bootstrap_servers": config.kafka_bootstrap_servers,
                "poll_interval_ms": config.consumer_poll_interval_ms,
            },
        )

    # --------------------------------------------------------------------------
    # Context manager / introspection
    # --------------------------------------------------------------------------

    def __enter__(self) -> "ConsumerGroupClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def group_id(self) -> str:
        return self.config.consumer_group_id

    @property
    def topics(self) -> FrozenSet[str]:
        """Subscribed topics (empty before subscribe())."""
        return self._topics

    def wait_for_stop(self, timeout: float) -> bool:
        """Block up to timeout seconds; True once close() was called or a fatal error hit."""
        return self._stop_event.wait(timeout)

    # --------------------------------------------------------------------------
    # Subscription
    # --------------------------------------------------------------------------

    def subscribe(self, handler: RecordHandler, topics: Optional[Iterable[str]] = None) -> None:
        """
        Register the topics with the broker and the per-record handler.

        Must be called once, before run() / start() / poll_once(). The handler
        comes first and topics is optional, defaulting to the configured
        topics: subscribe(handler) or subscribe(handler, topics={...}).

        Args:
            handler: Called once per record, in offset order per partition
            topics: Topics to subscribe to (default: config.topics)

        Raises:
            AlreadySubscribedError: subscribe() was already called
            ClientStateError: Client is closed
            BrokerConnectionError: Broker unreachable; the client is now CLOSED
        """
        topic_set = frozenset(topics) if topics is not None else self.config.topics
        if not topic_set:
            raise ValueError("At least one topic is required")

        with self._lock:
            if self._closing or self._state is ConsumerState.CLOSED:
                raise ClientStateError("Consumer is closed, cannot subscribe")
            if self._handler is not None:
                raise AlreadySubscribedError(
                    f"Group '{self.group_id}' member is already subscribed to "
                    f"{sorted(self._topics)}"
                )
            self._handler = handler
            self._topics = topic_set

        try:
            self.transport.subscribe(topic_set)
        except BrokerConnectionError as e:
            self._fail(e)
            self._release(wait=0)
            raise

        with self._lock:
            if self._state is ConsumerState.CREATED:
                self._state = ConsumerState.SUBSCRIBED

        self.logger.info(
            "Subscribed",
            extra={"group_id": self.group_id, "topics": sorted(topic_set)},
        )

    # --------------------------------------------------------------------------
    # Poll loop
    # --------------------------------------------------------------------------

    def run(self) -> None:
        """
        Poll and dispatch in the calling thread until close() is called.

        Raises:
            ClientStateError: Not subscribed, closed, or already running
            BrokerConnectionError: Fatal broker error; the client is now CLOSED
        """
        current = threading.current_thread()
        with self._lock:
            if self._closing or self._state is ConsumerState.CLOSED:
                raise ClientStateError("Consumer is closed, cannot run")
            if self._handler is None:
                raise ClientStateError("subscribe() must be called before run()")
            if self._loop_thread_id is not None or (
                self._thread is not None and self._thread is not current
            ):
                raise ClientStateError("Consumer loop is already running")
            self._loop_thread_id = threading.get_ident()

        interval = self.config.consumer_poll_interval_ms / 1000
        self.logger.info(
            "Starting consumer loop...",
            extra={"group_id": self.group_id, "topics": sorted(self._topics)},
        )

        try:
            while not self._stop_event.is_set():
                self._run_cycle()
                if self._stop_event.wait(interval):
                    break
        except BrokerConnectionError:
            self.logger.critical(
                "Fatal broker error, consumer loop stopped",
                exc_info=True,
                extra={"group_id": self.group_id},
            )
            raise
        except Exception:
            self.logger.error("Fatal error in consumer loop", exc_info=True)
            raise
        finally:
            self._stop_event.set()
            self._release(wait=0)
            with self._lock:
                self._loop_thread_id = None

    def start(self) -> threading.Thread:
        """
        Run the poll loop in a dedicated daemon thread and return immediately.

        A fatal error stops the thread; it is stored in last_error and passed
        to on_error.

        Returns:
            The loop thread

        Raises:
            ClientStateError: Not subscribed, closed, or already running
        """
        with self._lock:
            if self._closing or self._state is ConsumerState.CLOSED:
                raise ClientStateError("Consumer is closed, cannot start")
            if self._handler is None:
                raise ClientStateError("subscribe() must be called before start()")
            if self._thread is not None or self._loop_thread_id is not None:
                raise ClientStateError("Consumer loop is already running")
            self._thread = threading.Thread(
                target=self._run_in_thread,
                name=f"consumer-{self.group_id}",
                daemon=True,
            )
            thread = self._thread

        thread.start()
        return thread

    def _run_in_thread(self) -> None:
        try:
            self.run()
        except PipelineError as e:
            self._notify(e)
        except Exception as e:
            error = PipelineError("Consumer loop crashed", cause=e)
            self.last_error = error
            self._notify(error)

    def poll_once(self) -> int:
        """
        Perform exactly one poll/dispatch cycle.

        Returns:
            Number of records dispatched to the handler

        Raises:
            ClientStateError: Not subscribed, or closed
            BrokerConnectionError: Fatal broker error; the client is now CLOSED
        """
        with self._lock:
            if self._closing or self._state is ConsumerState.CLOSED:
                raise ClientStateError("Consumer is closed, cannot poll")
            if self._handler is None:
                raise ClientStateError("subscribe() must be called before polling")
        return self._run_cycle()

    def _run_cycle(self) -> int:
        current = threading.get_ident()
        self._cycle_threads.add(current)
        try:
            with self._cycle_lock:
                return self._cycle()
        except BrokerConnectionError as e:
            self._fail(e)
            raise
        finally:
            # close() requested during the cycle: release now that it is done
            if self._stop_event.is_set():
                self._release(wait=0)
            self._cycle_threads.discard(current)

    def _cycle(self) -> int:
        with self._lock:
            if self._closing or self._state is ConsumerState.CLOSED:
                return 0
            self._state = ConsumerState.POLLING

        request = PollRequest(
            group_id=self.group_id,
            topics=self._topics,
            timeout_ms=self.config.consumer_poll_timeout_ms,
            max_records=self.config.consumer_max_poll_records,
        )
        batch = self.transport.poll(request).records
        if not batch:
            return 0

        with self._lock:
            if self._state is ConsumerState.POLLING:
                self._state = ConsumerState.DISPATCHING

        self.logger.debug(
            "Dispatching batch",
            extra={"group_id": self.group_id, "batch_size": len(batch)},
        )

        dispatched = 0
        for record in batch:
            # uncommitted remainder is redelivered after restart
            if self._stop_event.is_set():
                break
            self._dispatch(record)
            dispatched += 1

        with self._lock:
            if self._state is ConsumerState.DISPATCHING:
                self._state = ConsumerState.POLLING
        return dispatched

    def _dispatch(self, record: ConsumedRecord) -> None:
        """Decode, handle and commit one record."""
        record_logger = CorrelationAdapter(self.logger, {"correlation_id": record.correlation_id})
        start_time = time.time()

        try:
            event = record.event
        except DecodeError as e:
            self.messages_skipped += 1
            self._report(
                DecodeError(
                    f"Undecodable record skipped: {e.message}",
                    topic=record.topic,
                    partition=record.partition,
                    offset=record.offset,
                    cause=e.cause or e,
                ),
                record_logger,
            )
            self._commit(record, record_logger)
            return

        record_logger.debug(
            "Processing record",
            extra={
                "partition": record.partition,
                "offset": record.offset,
                "product": event.product_name,
            },
        )

        try:
            self._handler(record)
        except Exception as e:
            self.messages_failed += 1
            self._report(
                HandlerError(
                    f"Handler failed: {e}",
                    topic=record.topic,
                    partition=record.partition,
                    offset=record.offset,
                    cause=e,
                ),
                record_logger,
            )
        else:
            self.messages_processed += 1
            processing_time = (time.time() - start_time) * 1000
            record_logger.info(
                "Price update processed",
                extra={
                    "group_id": self.group_id,
                    "product": event.product_name,
                    "updated_price": str(event.updated_price),
                    "processing_time_ms": round(processing_time, 2),
                    "messages_processed": self.messages_processed,
                },
            )

        self._commit(record, record_logger)

    def _commit(self, record: ConsumedRecord, record_logger: CorrelationAdapter) -> None:
        try:
            self.transport.commit(record.topic, record.partition, record.offset + 1)
        except TransientBrokerError as e:
            record_logger.warning(
                "Offset commit failed, record may be redelivered",
                extra={**e.to_dict(), "group_id": self.group_id},
            )

    # --------------------------------------------------------------------------
    # Error channel
    # --------------------------------------------------------------------------

    def _report(self, error: PipelineError, record_logger: CorrelationAdapter) -> None:
        record_logger.error(
            "Record processing failed",
            exc_info=error.cause if isinstance(error, HandlerError) else None,
            extra={**error.to_dict(), "group_id": self.group_id},
        )
        self._notify(error)

    def _notify(self, error: PipelineError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            self.logger.error(
                "Error callback raised",
                exc_info=True,
                extra={"group_id": self.group_id, "error_type": type(error).__name__},
            )

    def _fail(self, error: BrokerConnectionError) -> None:
        with self._lock:
            self.last_error = error
            self._closing = True
        self._stop_event.set()
        self.logger.error(
            "Broker connection lost, closing consumer",
            extra={**error.to_dict(), "group_id": self.group_id},
        )

    # --------------------------------------------------------------------------
    # Shutdown
    # --------------------------------------------------------------------------

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Stop polling and release the broker connection.

        Idempotent and callable from any thread, including from inside the
        handler: the in-flight poll or record finishes first, the transport
        is released exactly once.

        Args:
            timeout: Seconds to wait for the in-flight cycle
                (default: config.consumer_close_timeout_ms)
        """
        if timeout is None:
            timeout = self.config.consumer_close_timeout_ms / 1000

        with self._lock:
            already_closing = self._closing
            self._closing = True
            thread = self._thread
        self._stop_event.set()

        if not already_closing:
            self.logger.info("Stopping consumer...", extra={"group_id": self.group_id})

        # called on the polling thread (handler, signal handler): it may hold
        # the cycle lock, so the cycle or loop releases the transport as it ends
        current = threading.get_ident()
        if current in self._cycle_threads or current == self._loop_thread_id:
            return

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                self.logger.warning(
                    "Consumer thread still running after close timeout",
                    extra={"group_id": self.group_id, "timeout": timeout},
                )

        self._release(wait=timeout)

    def _release(self, wait: float) -> None:
        """Close the transport once no cycle is using it."""
        if self._released:
            return
        acquired = (
            self._cycle_lock.acquire(timeout=wait)
            if wait > 0
            else self._cycle_lock.acquire(blocking=False)
        )
        if not acquired:
            # the cycle owner releases when it finishes
            return

        try:
            with self._lock:
                if self._released:
                    return
                self._released = True
                self._closing = True
                self._state = ConsumerState.CLOSED

            try:
                self.transport.close()
                self.logger.info("Kafka consumer closed", extra={"group_id": self.group_id})
            except Exception:
                self.logger.error(
                    "Error closing Kafka consumer",
                    exc_info=True,
                    extra={"group_id": self.group_id},
                )

            self.logger.info(
                "Consumer shutdown complete",
                extra={
                    "group_id": self.group_id,
                    "messages_processed": self.messages_processed,
                    "messages_failed": self.messages_failed,
                    "messages_skipped": self.messages_skipped,
                },
            )
        finally:
            self._cycle_lock.release()
