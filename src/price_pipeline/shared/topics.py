"""
Topic Model and Partition Selection

Defines the topics the pipeline publishes to and how an outgoing record
picks its partition.

PARTITION SELECTION:
┌──────────────────────────────┬──────────────────────────────────────────┐
│ Record has...                │ Partition                                │
├──────────────────────────────┼──────────────────────────────────────────┤
│ explicit partition           │ returned unchanged (validated)           │
│ key, no explicit partition   │ crc32(key) % partition_count             │
│ neither                      │ round-robin over [0, partition_count)    │
└──────────────────────────────┴──────────────────────────────────────────┘

KEY-HASH PARTITIONING:
- Same key -> same partition -> per-key ordering preserved
- CRC32 matches librdkafka's "consistent" partitioner, so records keyed
  here land where a plain confluent_kafka producer would put them
- The price pipeline keys by product name; the reference scenario pins
  everything to partition 0 explicitly

TOPIC ADMINISTRATION:
ensure_topics() creates missing topics with AdminClient, and
validate_kafka_connection() checks the brokers answer before a service starts.
"""

import itertools
import threading
import zlib
from typing import Dict, Iterable, List, Optional, Protocol

from confluent_kafka import KafkaException
from confluent_kafka.admin import AdminClient, NewTopic
from pydantic import BaseModel, ConfigDict, Field

from price_pipeline.shared.exceptions import BrokerConnectionError, InvalidPartitionError

# ==============================================================================
# TOPICS
# ==============================================================================


class Topic(BaseModel):
    """
    A named, partitioned topic.

    Attributes:
        name: Topic name
        partition_count: Number of partitions (>= 1)
        replication_factor: Replicas per partition (>= 1)
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    partition_count: int = Field(default=1, ge=1)
    replication_factor: int = Field(default=1, ge=1)


PRODUCT_PRICE_TOPIC = Topic(name="product-price", partition_count=1)


# ==============================================================================
# PARTITIONERS
# ==============================================================================


class Partitioner(Protocol):
    def __call__(self, topic: str, key: Optional[bytes], partition_count: int) -> int:
        ...


class RoundRobinPartitioner:
    """Cycles through partitions, independently per topic. Thread-safe."""

    def __init__(self) -> None:
        self._counters: Dict[str, "itertools.count[int]"] = {}
        self._lock = threading.Lock()

    def __call__(self, topic: str, key: Optional[bytes], partition_count: int) -> int:
        with self._lock:
            counter = self._counters.setdefault(topic, itertools.count())
            return next(counter) % partition_count


class KeyHashPartitioner:
    """
    Deterministic key -> partition mapping.

    Records without a key fall back to the given partitioner (round-robin
    by default), because hashing an absent key would pile everything onto
    one partition.
    """

    def __init__(self, fallback: Optional[Partitioner] = None) -> None:
        self.fallback = fallback or RoundRobinPartitioner()

    def __call__(self, topic: str, key: Optional[bytes], partition_count: int) -> int:
        if key is None:
            return self.fallback(topic, key, partition_count)
        return zlib.crc32(key) % partition_count


_default_partitioner = KeyHashPartitioner()


def select_partition(
    topic: str,
    explicit_partition: Optional[int],
    partition_count: int,
    key: Optional[bytes] = None,
    partitioner: Optional[Partitioner] = None,
) -> int:
    """
    Resolve the partition an outgoing record is written to.

    Args:
        topic: Topic name
        explicit_partition: Caller-chosen partition, or None
        partition_count: Partitions the topic currently has
        key: Optional partition key
        partitioner: Policy used when no explicit partition is given
            (default: key hash, round-robin for keyless records)

    Returns:
        Partition in [0, partition_count)

    Raises:
        InvalidPartitionError: partition_count < 1, or explicit partition
            out of range

    Example:
        >>> select_partition("product-price", 0, 1)
        0
        >>> select_partition("product-price", None, 3, key=b"ABC") == select_partition(
        ...     "product-price", None, 3, key=b"ABC")
        True
    """
    if partition_count < 1:
        raise InvalidPartitionError(
            f"Topic '{topic}' has no partitions (partition_count={partition_count})",
            topic=topic,
        )

    if explicit_partition is not None:
        if isinstance(explicit_partition, bool) or not 0 <= explicit_partition < partition_count:
            raise InvalidPartitionError(
                f"Partition {explicit_partition} out of range [0, {partition_count}) "
                f"for topic '{topic}'",
                topic=topic,
                partition=explicit_partition,
            )
        return explicit_partition

    policy = partitioner or _default_partitioner
    partition = policy(topic, key, partition_count)
    if not 0 <= partition < partition_count:
        raise InvalidPartitionError(
            f"Partitioner returned {partition}, outside [0, {partition_count})",
            topic=topic,
            partition=partition,
        )
    return partition


# ==============================================================================
# TOPIC ADMINISTRATION
# ==============================================================================


def parse_bootstrap_servers(value: str) -> str:
    """
    Validate a comma-separated host:port list, keeping its order.

    Raises:
        ValueError: Empty list or an entry without host and numeric port
    """
    endpoints = [endpoint.strip() for endpoint in value.split(",") if endpoint.strip()]
    if not endpoints:
        raise ValueError("At least one bootstrap endpoint is required")
    for endpoint in endpoints:
        host, _, port = endpoint.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"Bootstrap endpoint must be host:port, got '{endpoint}'")
    return ",".join(endpoints)


def validate_kafka_connection(bootstrap_servers: str, timeout: float = 10.0) -> bool:
    """
    Check that the Kafka brokers are reachable.

    Args:
        bootstrap_servers: Comma-separated broker addresses
        timeout: Seconds to wait for cluster metadata

    Returns:
        True if metadata could be fetched, False otherwise
    """
    try:
        admin_client = AdminClient({"bootstrap.servers": bootstrap_servers})
        admin_client.list_topics(timeout=timeout)
        return True
    except KafkaException:
        return False


def ensure_topics(
    bootstrap_servers: str, topics: Iterable[Topic], timeout: float = 30.0
) -> List[str]:
    """
    Create the given topics if they do not exist yet.

    Args:
        bootstrap_servers: Comma-separated broker addresses
        topics: Topics to create
        timeout: Seconds to wait for metadata and creation

    Returns:
        Names of the topics that were created (existing ones are skipped)

    Raises:
        BrokerConnectionError: Brokers unreachable or creation failed
    """
    admin_client = AdminClient({"bootstrap.servers": bootstrap_servers})

    try:
        existing = set(admin_client.list_topics(timeout=timeout).topics)
    except KafkaException as e:
        raise BrokerConnectionError(
            f"Cannot fetch topic metadata from {bootstrap_servers}", cause=e
        ) from e

    new_topics = [
        NewTopic(
            topic.name,
            num_partitions=topic.partition_count,
            replication_factor=topic.replication_factor,
        )
        for topic in topics
        if topic.name not in existing
    ]
    if not new_topics:
        return []

    created = []
    for name, future in admin_client.create_topics(new_topics, operation_timeout=timeout).items():
        try:
            future.result(timeout=timeout)
            created.append(name)
        except KafkaException as e:
            raise BrokerConnectionError(f"Failed to create topic '{name}'", topic=name, cause=e) from e
    return created
