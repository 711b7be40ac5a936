"""
Integration Tests for ProducerClient

Tests the producer against a real Kafka broker started by testcontainers.

TEST STRATEGY:
- Publish with each acknowledgment level and read the record back
- Key-hash partitioning on a multi-partition topic
- Invalid partitions fail before anything is sent
- Unreachable broker exhausts the retry budget
- Idempotent close

DEPENDENCIES:
- testcontainers-python (Kafka)
- confluent-kafka (raw Consumer to verify what was written)
"""

import uuid
from decimal import Decimal

import pytest
from confluent_kafka import Consumer as KafkaConsumer

from price_pipeline.producer.config import ProducerConfig
from price_pipeline.producer.producer import ProducerClient
from price_pipeline.shared.codec import decode
from price_pipeline.shared.exceptions import DeliveryError, InvalidPartitionError
from price_pipeline.shared.models import PriceUpdateEvent
from price_pipeline.shared.topics import Topic, ensure_topics


def read_back(bootstrap_servers, topic, count, timeout=30.0):
    """Read `count` records from the beginning of a topic with a raw consumer."""
    consumer = KafkaConsumer(
        {
            "bootstrap.servers": bootstrap_servers,
            "group.id": f"verify-{uuid.uuid4().hex[:8]}",
            "auto.offset.reset": "earliest",
            "enable.auto.commit": False,
        }
    )
    consumer.subscribe([topic])
    messages = []
    try:
        for _ in range(int(timeout)):
            if len(messages) >= count:
                break
            msg = consumer.poll(timeout=1.0)
            if msg is not None and not msg.error():
                messages.append(msg)
    finally:
        consumer.close()
    return messages


# ==============================================================================
# DELIVERY TESTS
# ==============================================================================


@pytest.mark.integration
def test_publish_reference_event(kafka_producer_config, abc_event):
    """ABC / 100.00 with acks=all lands in partition 0 and reads back unchanged."""
    with ProducerClient(kafka_producer_config) as producer:
        result = producer.publish(abc_event, partition=0)

    assert result.partition == 0
    assert result.offset == 0
    assert result.attempts == 1

    (message,) = read_back(
        kafka_producer_config.kafka_bootstrap_servers, kafka_producer_config.kafka_topic_prices, 1
    )
    assert message.value() == b'{"Product":"ABC","UpdatedPrice":100.00}'
    assert message.key() == b"ABC"
    assert decode(message.value()) == abc_event


@pytest.mark.integration
@pytest.mark.parametrize("acks", ["none", "leader", "all"])
def test_publish_with_each_acknowledgment_level(kafka_producer_config, abc_event, acks):
    config = ProducerConfig(**{**kafka_producer_config.model_dump(), "producer_acks": acks})

    with ProducerClient(config) as producer:
        result = producer.publish(abc_event, partition=0)

    if acks == "none":
        assert result.offset is None
    else:
        assert result.offset is not None and result.offset >= 0


@pytest.mark.integration
def test_offsets_increase(kafka_producer_config):
    with ProducerClient(kafka_producer_config) as producer:
        offsets = [
            producer.publish(
                PriceUpdateEvent(product_name="ABC", updated_price=Decimal(i)), partition=0
            ).offset
            for i in range(1, 6)
        ]

    assert offsets == [0, 1, 2, 3, 4]


@pytest.mark.integration
def test_key_hash_partitioning(kafka_container, kafka_producer_config):
    topic = f"prices-3-{uuid.uuid4().hex[:8]}"
    ensure_topics(kafka_container.get_bootstrap_server(), [Topic(name=topic, partition_count=3)])

    with ProducerClient(kafka_producer_config) as producer:
        assert producer.partition_count(topic) == 3
        partitions = {
            producer.publish(
                PriceUpdateEvent(product_name="XYZ-Lamp-001", updated_price=Decimal(i)), topic=topic
            ).partition
            for i in range(1, 6)
        }

    assert len(partitions) == 1


# ==============================================================================
# FAILURE TESTS
# ==============================================================================


@pytest.mark.integration
def test_invalid_partition_is_not_sent(kafka_producer_config, abc_event):
    with ProducerClient(kafka_producer_config) as producer:
        with pytest.raises(InvalidPartitionError):
            producer.publish(abc_event, partition=7)

        assert producer.messages_sent == 0


@pytest.mark.integration
@pytest.mark.slow
def test_unreachable_broker_exhausts_retries(abc_event):
    config = ProducerConfig(
        kafka_bootstrap_servers="localhost:1",
        producer_max_retries=1,
        producer_retry_backoff_ms=0,
        producer_request_timeout_ms=1000,
    )

    with ProducerClient(config) as producer:
        with pytest.raises(DeliveryError) as exc_info:
            producer.publish(abc_event, partition=0)

    assert exc_info.value.attempts == 2


@pytest.mark.integration
def test_close_is_idempotent(kafka_producer_config):
    producer = ProducerClient(kafka_producer_config)

    producer.close()
    producer.close()

    assert producer.closed
