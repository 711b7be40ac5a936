"""
Pytest Configuration and Shared Fixtures

Shared fixtures for testing the price pipeline.

TWO BROKERS:
- Unit tests run against InMemoryBroker (tests/fakes.py): no Docker, fast,
  with failure injection for retry and error-channel tests
- Integration tests run against a real Kafka broker started by
  testcontainers; they are skipped when Docker is unavailable

FIXTURE SCOPES:
- session: Created once for entire test session (Kafka container)
- function: Created for each test function (brokers, configs, topics)
"""

import os
import uuid
from decimal import Decimal
from typing import Callable, Generator

import pytest
from testcontainers.kafka import KafkaContainer

from price_pipeline.consumer.config import ConsumerGroupConfig
from price_pipeline.producer.config import ProducerConfig
from price_pipeline.shared.models import PriceUpdateEvent
from price_pipeline.shared.topics import Topic, ensure_topics
from tests.fakes import FakeConsumerTransport, FakeProducerTransport, InMemoryBroker

# ==============================================================================
# IN-MEMORY BROKER FIXTURES
# ==============================================================================


@pytest.fixture
def broker() -> InMemoryBroker:
    """Broker double with the 'product-price' topic (1 partition)."""
    broker = InMemoryBroker()
    broker.create_topic("product-price", partitions=1)
    return broker


@pytest.fixture
def producer_config() -> ProducerConfig:
    """Producer config for unit tests: acks=all, 3 retries, no backoff."""
    return ProducerConfig(
        kafka_topic_prices="product-price",
        producer_acks="all",
        producer_max_retries=3,
        producer_retry_backoff_ms=0,
        log_format="text",
    )


@pytest.fixture
def producer_transport(broker) -> FakeProducerTransport:
    return FakeProducerTransport(broker)


@pytest.fixture
def make_consumer_config() -> Callable[..., ConsumerGroupConfig]:
    """Factory for consumer configs with a short poll interval."""

    def _make(group_id: str = "inventorySystem", **overrides) -> ConsumerGroupConfig:
        settings = {
            "consumer_group_id": group_id,
            "consumer_topics": "product-price",
            "consumer_poll_interval_ms": 10,
            "consumer_poll_timeout_ms": 0,
            "consumer_close_timeout_ms": 5000,
            "log_format": "text",
        }
        settings.update(overrides)
        return ConsumerGroupConfig(**settings)

    return _make


@pytest.fixture
def make_consumer_transport(broker) -> Callable[[str], FakeConsumerTransport]:
    def _make(group_id: str) -> FakeConsumerTransport:
        return FakeConsumerTransport(broker, group_id)

    return _make


# ==============================================================================
# KAFKA FIXTURES
# ==============================================================================


@pytest.fixture(scope="session")
def kafka_container() -> Generator[KafkaContainer, None, None]:
    """
    Provides Kafka testcontainer for the entire test session.

    Scope: session (started once, shared across all tests)

    Yields:
        KafkaContainer instance with running Kafka broker
    """
    kafka = KafkaContainer()
    try:
        kafka.start()
    except Exception as e:
        pytest.skip(f"Docker not available for Kafka testcontainer: {e}")

    try:
        yield kafka
    finally:
        kafka.stop()


@pytest.fixture
def kafka_topic(kafka_container) -> str:
    """A fresh single-partition topic, so tests never see each other's records."""
    name = f"product-price-{uuid.uuid4().hex[:8]}"
    ensure_topics(kafka_container.get_bootstrap_server(), [Topic(name=name, partition_count=1)])
    return name


@pytest.fixture
def kafka_producer_config(kafka_container, kafka_topic) -> ProducerConfig:
    """ProducerConfig pointing to the test Kafka container."""
    return ProducerConfig(
        kafka_bootstrap_servers=kafka_container.get_bootstrap_server(),
        kafka_topic_prices=kafka_topic,
        producer_client_id="test-producer",
        producer_acks="all",
        producer_max_retries=3,
        producer_request_timeout_ms=10000,
    )


@pytest.fixture
def make_kafka_consumer_config(kafka_container, kafka_topic) -> Callable[..., ConsumerGroupConfig]:
    """Factory for ConsumerGroupConfig pointing to the test Kafka container."""

    def _make(group_id: str = "inventorySystem", **overrides) -> ConsumerGroupConfig:
        settings = {
            "kafka_bootstrap_servers": kafka_container.get_bootstrap_server(),
            "consumer_group_id": f"{group_id}-{uuid.uuid4().hex[:8]}",
            "consumer_topics": kafka_topic,
            "consumer_auto_offset_reset": "earliest",
            "consumer_poll_interval_ms": 1000,
            "consumer_poll_timeout_ms": 1000,
        }
        settings.update(overrides)
        return ConsumerGroupConfig(**settings)

    return _make


# ==============================================================================
# SAMPLE DATA FIXTURES
# ==============================================================================


@pytest.fixture
def abc_event() -> PriceUpdateEvent:
    """The reference price update: product ABC now costs 100.00."""
    return PriceUpdateEvent(product_name="ABC", updated_price=Decimal("100.00"))


# ==============================================================================
# PYTEST CONFIGURATION
# ==============================================================================


def pytest_configure(config):
    """
    Pytest hook called during test configuration.

    Sets up test environment variables and markers.
    """
    os.environ["ENVIRONMENT"] = "test"

    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires containers)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 5 seconds)")
    config.addinivalue_line("markers", "unit: mark test as unit test (no external dependencies)")
