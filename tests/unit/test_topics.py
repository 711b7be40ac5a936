"""
Unit Tests for Topic Model and Partition Selection

TEST STRATEGY:
- select_partition never leaves [0, partition_count)
- Explicit out-of-range partitions raise InvalidPartitionError
- Same key -> same partition; keyless records spread round-robin
- Bootstrap server list validation
"""

import zlib

import pytest
from pydantic import ValidationError

from price_pipeline.shared.exceptions import InvalidPartitionError
from price_pipeline.shared.topics import (
    PRODUCT_PRICE_TOPIC,
    KeyHashPartitioner,
    RoundRobinPartitioner,
    Topic,
    parse_bootstrap_servers,
    select_partition,
)

# ==============================================================================
# TOPIC
# ==============================================================================


@pytest.mark.unit
def test_product_price_topic():
    assert PRODUCT_PRICE_TOPIC.name == "product-price"
    assert PRODUCT_PRICE_TOPIC.partition_count == 1


@pytest.mark.unit
def test_topic_requires_a_partition():
    with pytest.raises(ValidationError):
        Topic(name="product-price", partition_count=0)


# ==============================================================================
# EXPLICIT PARTITIONS
# ==============================================================================


@pytest.mark.unit
@pytest.mark.parametrize("partition", [0, 1, 2])
def test_explicit_partition_in_range_is_returned(partition):
    assert select_partition("product-price", partition, 3) == partition


@pytest.mark.unit
@pytest.mark.parametrize("partition", [-1, 3, 100])
def test_explicit_partition_out_of_range_raises(partition):
    with pytest.raises(InvalidPartitionError) as exc_info:
        select_partition("product-price", partition, 3)

    assert exc_info.value.topic == "product-price"
    assert exc_info.value.partition == partition


@pytest.mark.unit
def test_zero_partition_count_raises():
    with pytest.raises(InvalidPartitionError):
        select_partition("product-price", None, 0)


@pytest.mark.unit
def test_explicit_partition_wins_over_key():
    assert select_partition("product-price", 1, 3, key=b"ABC") == 1


# ==============================================================================
# PARTITIONERS
# ==============================================================================


@pytest.mark.unit
def test_same_key_same_partition():
    partitions = {select_partition("product-price", None, 6, key=b"ABC") for _ in range(20)}

    assert len(partitions) == 1


@pytest.mark.unit
def test_key_hash_matches_crc32():
    assert KeyHashPartitioner()("product-price", b"ABC", 6) == zlib.crc32(b"ABC") % 6


@pytest.mark.unit
def test_keyless_records_round_robin():
    partitioner = KeyHashPartitioner(fallback=RoundRobinPartitioner())

    partitions = [select_partition("t", None, 3, partitioner=partitioner) for _ in range(6)]

    assert partitions == [0, 1, 2, 0, 1, 2]


@pytest.mark.unit
def test_round_robin_is_per_topic():
    partitioner = RoundRobinPartitioner()

    assert partitioner("a", None, 2) == 0
    assert partitioner("b", None, 2) == 0
    assert partitioner("a", None, 2) == 1


@pytest.mark.unit
def test_selected_partition_always_in_range():
    for count in range(1, 8):
        for i in range(50):
            partition = select_partition("t", None, count, key=f"product-{i}".encode())
            assert 0 <= partition < count


@pytest.mark.unit
def test_misbehaving_partitioner_is_rejected():
    with pytest.raises(InvalidPartitionError):
        select_partition("t", None, 2, partitioner=lambda topic, key, count: count)


# ==============================================================================
# BOOTSTRAP SERVERS
# ==============================================================================


@pytest.mark.unit
def test_bootstrap_servers_keep_order_and_strip_spaces():
    assert parse_bootstrap_servers(" b:9092, a:9093 ") == "b:9092,a:9093"


@pytest.mark.unit
@pytest.mark.parametrize("value", ["", " , ", "localhost", "localhost:port", ":9092"])
def test_invalid_bootstrap_servers_raise(value):
    with pytest.raises(ValueError):
        parse_bootstrap_servers(value)
