"""
In-Memory Broker Double

Stands in for Kafka in unit tests. Implements the same produce and
poll/commit wire contract as the confluent_kafka transports, with the
parts of broker behavior the clients depend on:

- Partitioned, append-only topic logs with broker-assigned offsets
- Consumer groups with committed offsets per (group, topic, partition)
- Range-style partition assignment between the members of one group
- Failure injection: transient/rejected produce errors, unreachable broker,
  fatal poll errors, refused commits
"""

import threading
from typing import Dict, Iterable, List, Optional, Tuple

from price_pipeline.shared.exceptions import (
    BrokerConnectionError,
    PipelineError,
    TransientBrokerError,
)
from price_pipeline.shared.models import (
    Acknowledgment,
    ConsumedRecord,
    PollRequest,
    PollResponse,
    ProduceRequest,
    ProduceResponse,
)

TopicPartition = Tuple[str, int]


class InMemoryBroker:
    """Topic logs, group membership and committed offsets, shared by fake transports."""

    def __init__(self):
        self._lock = threading.RLock()
        self._logs: Dict[str, List[List[ConsumedRecord]]] = {}
        self._committed: Dict[Tuple[str, str, int], int] = {}
        self._members: Dict[str, List["FakeConsumerTransport"]] = {}
        self.reachable = True

    # --- topics ---

    def create_topic(self, name: str, partitions: int = 1) -> None:
        with self._lock:
            self._logs.setdefault(name, [[] for _ in range(partitions)])

    def partition_count(self, topic: str) -> int:
        with self._lock:
            if topic not in self._logs:
                raise TransientBrokerError(f"Unknown topic '{topic}'", topic=topic)
            return len(self._logs[topic])

    def append(self, topic: str, partition: int, payload: bytes, key: Optional[bytes] = None) -> int:
        with self._lock:
            log = self._logs[topic][partition]
            offset = len(log)
            log.append(
                ConsumedRecord(
                    topic=topic, partition=partition, offset=offset, payload=payload, key=key
                )
            )
            return offset

    def records(self, topic: str, partition: int) -> List[ConsumedRecord]:
        with self._lock:
            return list(self._logs[topic][partition])

    def read(self, topic: str, partition: int, start: int, limit: int) -> List[ConsumedRecord]:
        with self._lock:
            return self._logs[topic][partition][start : start + limit]

    # --- groups ---

    def join(self, group_id: str, member: "FakeConsumerTransport") -> None:
        with self._lock:
            self._members.setdefault(group_id, []).append(member)

    def leave(self, group_id: str, member: "FakeConsumerTransport") -> None:
        with self._lock:
            members = self._members.get(group_id, [])
            if member in members:
                members.remove(member)

    def assignment(self, group_id: str, member: "FakeConsumerTransport") -> List[TopicPartition]:
        """Partitions of the member's topics owned by this member, round-robin by join order."""
        with self._lock:
            members = self._members.get(group_id, [])
            if member not in members:
                return []
            index = members.index(member)
            partitions = [
                (topic, partition)
                for topic in sorted(member.subscription)
                if topic in self._logs
                for partition in range(len(self._logs[topic]))
            ]
            return [tp for i, tp in enumerate(partitions) if i % len(members) == index]

    def committed(self, group_id: str, topic: str, partition: int) -> int:
        with self._lock:
            return self._committed.get((group_id, topic, partition), 0)

    def commit(self, group_id: str, topic: str, partition: int, next_offset: int) -> None:
        with self._lock:
            self._committed[(group_id, topic, partition)] = next_offset


class FakeProducerTransport:
    """
    Produce side of the broker double.

    Args:
        broker: Shared in-memory broker
        failures: Errors raised by successive produce() calls, in order
        always_fail: Error raised by every produce() call once `failures` is empty
    """

    def __init__(
        self,
        broker: InMemoryBroker,
        failures: Optional[Iterable[PipelineError]] = None,
        always_fail: Optional[PipelineError] = None,
    ):
        self.broker = broker
        self.failures = list(failures or [])
        self.always_fail = always_fail
        self.requests: List[ProduceRequest] = []
        self.flush_calls = 0
        self.close_calls = 0

    @property
    def attempts(self) -> int:
        return len(self.requests)

    def partition_count(self, topic: str) -> int:
        return self.broker.partition_count(topic)

    def produce(self, request: ProduceRequest) -> ProduceResponse:
        if self.close_calls:
            raise BrokerConnectionError("Producer transport is closed")
        self.requests.append(request)
        if self.failures:
            raise self.failures.pop(0)
        if self.always_fail is not None:
            raise self.always_fail

        offset = self.broker.append(request.topic, request.partition, request.payload, request.key)
        if request.acknowledgment is Acknowledgment.NONE:
            return ProduceResponse(partition=request.partition)
        return ProduceResponse(partition=request.partition, offset=offset)

    def flush(self, timeout: float) -> int:
        self.flush_calls += 1
        return 0

    def close(self) -> None:
        self.close_calls += 1


class FakeConsumerTransport:
    """
    Poll side of the broker double. One instance per consumer group member.

    Reads from the member's current assignment, starting at the group's
    committed offset; the local position resets whenever the assignment
    changes, like a rebalance does.
    """

    def __init__(self, broker: InMemoryBroker, group_id: str):
        self.broker = broker
        self.group_id = group_id
        self.subscription: frozenset = frozenset()
        self.poll_failures: List[PipelineError] = []
        self.commit_failures: List[PipelineError] = []
        self.commits: List[Tuple[str, int, int]] = []
        self.polls = 0
        self.close_calls = 0
        self._positions: Dict[TopicPartition, int] = {}
        self._assignment: List[TopicPartition] = []

    def subscribe(self, topics: Iterable[str]) -> None:
        if not self.broker.reachable:
            raise BrokerConnectionError(f"Broker unreachable, cannot subscribe group '{self.group_id}'")
        self.subscription = frozenset(topics)
        self.broker.join(self.group_id, self)

    def poll(self, request: PollRequest) -> PollResponse:
        if self.close_calls:
            raise BrokerConnectionError("Consumer transport is closed")
        self.polls += 1
        if self.poll_failures:
            raise self.poll_failures.pop(0)

        assignment = self.broker.assignment(self.group_id, self)
        if assignment != self._assignment:
            self._assignment = assignment
            self._positions = {}

        records: List[ConsumedRecord] = []
        for topic, partition in assignment:
            remaining = request.max_records - len(records)
            if remaining <= 0:
                break
            position = self._positions.get(
                (topic, partition), self.broker.committed(self.group_id, topic, partition)
            )
            batch = self.broker.read(topic, partition, position, remaining)
            self._positions[(topic, partition)] = position + len(batch)
            records.extend(batch)
        return PollResponse(records=records)

    def commit(self, topic: str, partition: int, next_offset: int) -> None:
        if self.commit_failures:
            raise self.commit_failures.pop(0)
        self.commits.append((topic, partition, next_offset))
        self.broker.commit(self.group_id, topic, partition, next_offset)

    def close(self) -> None:
        self.close_calls += 1
        self.broker.leave(self.group_id, self)
