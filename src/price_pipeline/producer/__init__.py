"""
Price Producer Service Package

Publishes product price update events to Kafka.

PRODUCER RESPONSIBILITIES:
1. Encode PriceUpdateEvent objects as JSON payloads
2. Resolve the partition (explicit, product-name key hash, or round-robin)
3. Deliver with the configured acknowledgment level (none / leader / all)
4. Retry transient broker failures a bounded number of times
5. Flush and release the connection on every exit path

PACKAGE STRUCTURE:
- config.py: ProducerConfig from environment variables
- transport.py: confluent_kafka.Producer adapter (produce wire contract)
- producer.py: ProducerClient (send / publish / flush / close)
- mock_data.py: MockPriceGenerator for stream mode
- main.py: price-producer command-line entry point

USAGE:
    from price_pipeline.producer import ProducerClient, ProducerConfig

    config = ProducerConfig(producer_acks="all", producer_max_retries=3)
    with ProducerClient(config) as producer:
        producer.publish(PriceUpdateEvent(product_name="ABC", updated_price=Decimal("100.00")),
                         partition=0)
"""

from price_pipeline.producer.config import ProducerConfig, load_config
from price_pipeline.producer.mock_data import MockPriceGenerator
from price_pipeline.producer.producer import ProducerClient

__all__ = [
    "MockPriceGenerator",
    "ProducerClient",
    "ProducerConfig",
    "load_config",
]
