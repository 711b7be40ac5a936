"""
Price Pipeline

Publish/subscribe pipeline for product price updates over Kafka: one
producer publishes to 'product-price', any number of consumer groups each
receive every update at their own pace.

Packages:
- shared: event model, codec, topics and partitioning, errors, logging
- producer: ProducerClient and the price-producer CLI
- consumer: ConsumerGroupClient and the price-consumer CLI
"""

__version__ = "1.0.0"
