"""
Shared building blocks for the producer and consumer services.

- models.py: PriceUpdateEvent, records and the broker wire contract
- codec.py: PriceUpdateEvent <-> payload bytes
- topics.py: topics, partition selection, topic administration
- exceptions.py: error taxonomy
- logger.py: structured JSON logging
"""

from price_pipeline.shared.codec import decode, encode
from price_pipeline.shared.exceptions import (
    AlreadySubscribedError,
    BrokerConnectionError,
    ClientStateError,
    DecodeError,
    DeliveryError,
    HandlerError,
    InvalidPartitionError,
    PipelineError,
)
from price_pipeline.shared.models import (
    Acknowledgment,
    ConsumedRecord,
    PriceUpdateEvent,
    Record,
    SendResult,
)
from price_pipeline.shared.topics import PRODUCT_PRICE_TOPIC, Topic, select_partition

__all__ = [
    "Acknowledgment",
    "AlreadySubscribedError",
    "BrokerConnectionError",
    "ClientStateError",
    "ConsumedRecord",
    "DecodeError",
    "DeliveryError",
    "HandlerError",
    "InvalidPartitionError",
    "PRODUCT_PRICE_TOPIC",
    "PipelineError",
    "PriceUpdateEvent",
    "Record",
    "SendResult",
    "Topic",
    "decode",
    "encode",
    "select_partition",
]
