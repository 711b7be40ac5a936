"""
Price Consumer Service Package

Consumer group members that receive product price updates from Kafka.

CONSUMER ARCHITECTURE:
┌───────────────┐     ┌──────────────────────┐     ┌─────────────────┐
│    Kafka      │────▶│ group inventorySystem│────▶│ inventory price │
│ product-price │     └──────────────────────┘     │      book       │
│               │     ┌──────────────────────┐     ├─────────────────┤
│               │────▶│ group pricingSystem  │────▶│ pricing price   │
└───────────────┘     └──────────────────────┘     │      book       │
                                                   └─────────────────┘

CONSUMER GROUP BEHAVIOR:
- Every group receives every record (fan-out)
- Members of one group split the partitions (load sharing)
- Offsets are committed per record after the handler returns (at-least-once)

Package components:
- config.py: ConsumerGroupConfig from environment variables
- transport.py: confluent_kafka.Consumer adapter (poll / commit wire contract)
- consumer.py: ConsumerGroupClient (subscribe / run / start / close)
- handlers.py: PriceBookHandler, the mocked subscriber business logic
- main.py: price-consumer command-line entry point
"""

from price_pipeline.consumer.config import ConsumerGroupConfig, load_config
from price_pipeline.consumer.consumer import ConsumerGroupClient, ConsumerState
from price_pipeline.consumer.handlers import PriceBookHandler

__all__ = [
    "ConsumerGroupClient",
    "ConsumerGroupConfig",
    "ConsumerState",
    "PriceBookHandler",
    "load_config",
]
