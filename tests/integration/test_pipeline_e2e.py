"""
End-to-End Tests for the Price Pipeline

Tests the full flow: ProducerClient -> Kafka -> ConsumerGroupClient -> handler.

TEST STRATEGY:
- The reference scenario: ABC / 100.00 published with acks=all reaches the
  inventorySystem group exactly once
- Two groups each keep their own price book
- A batch of generated updates arrives complete and in order

DEPENDENCIES:
- testcontainers-python (Kafka)
"""

import time
from decimal import Decimal

import pytest

from price_pipeline.consumer.consumer import ConsumerGroupClient
from price_pipeline.consumer.handlers import PriceBookHandler
from price_pipeline.producer.mock_data import MockPriceGenerator
from price_pipeline.producer.producer import ProducerClient
from price_pipeline.shared.codec import decode
from price_pipeline.shared.models import Acknowledgment


def drain(consumer, handler, count, timeout=30.0):
    """Poll until the handler has seen `count` records or the deadline passes."""
    deadline = time.time() + timeout
    while len(handler.records) < count and time.time() < deadline:
        consumer.poll_once()


@pytest.mark.integration
@pytest.mark.slow
def test_reference_price_update_end_to_end(
    kafka_producer_config, make_kafka_consumer_config, abc_event
):
    """ABC / 100.00 on partition 0 is delivered once to inventorySystem."""
    assert kafka_producer_config.producer_acks is Acknowledgment.ALL
    assert kafka_producer_config.producer_max_retries == 3

    with ProducerClient(kafka_producer_config) as producer:
        result = producer.publish(abc_event, partition=0)
    assert result.partition == 0

    handler = PriceBookHandler("inventorySystem")
    with ConsumerGroupClient(make_kafka_consumer_config("inventorySystem")) as consumer:
        consumer.subscribe(handler)
        drain(consumer, handler, 1)
        # a further poll brings nothing new
        consumer.poll_once()

    (record,) = handler.records
    assert record.offset == result.offset
    assert decode(record.payload) == abc_event
    assert handler.price_of("ABC") == Decimal("100.00")


@pytest.mark.integration
@pytest.mark.slow
def test_every_group_keeps_its_own_price_book(
    kafka_producer_config, make_kafka_consumer_config, abc_event
):
    with ProducerClient(kafka_producer_config) as producer:
        producer.publish(abc_event, partition=0)

    inventory = PriceBookHandler("inventorySystem")
    pricing = PriceBookHandler("pricingSystem")
    with ConsumerGroupClient(make_kafka_consumer_config("inventorySystem")) as first, \
            ConsumerGroupClient(make_kafka_consumer_config("pricingSystem")) as second:
        first.subscribe(inventory)
        second.subscribe(pricing)
        drain(first, inventory, 1)
        drain(second, pricing, 1)

    assert inventory.prices == {"ABC": Decimal("100.00")}
    assert pricing.prices == {"ABC": Decimal("100.00")}


@pytest.mark.integration
@pytest.mark.slow
def test_generated_batch_arrives_complete_and_in_order(
    kafka_producer_config, make_kafka_consumer_config
):
    events = MockPriceGenerator(seed=42, num_products=5).generate_batch(20)

    with ProducerClient(kafka_producer_config) as producer:
        for event in events:
            producer.publish(event, partition=0)

    handler = PriceBookHandler("inventorySystem")
    with ConsumerGroupClient(make_kafka_consumer_config()) as consumer:
        consumer.subscribe(handler)
        drain(consumer, handler, len(events))

    assert handler.events == events
    assert [r.offset for r in handler.records] == list(range(len(events)))
