"""
Pipeline Data Models

Pydantic models shared by the producer and consumer services.

MODEL OVERVIEW:
┌──────────────────┐   encode   ┌──────────┐   send    ┌────────────────┐
│ PriceUpdateEvent │──────────▶│  Record  │─────────▶│ ProduceRequest │──▶ broker
└──────────────────┘            └──────────┘           └────────────────┘
                                                               │
┌──────────────────┐   decode   ┌────────────────┐   poll     │
│ PriceUpdateEvent │◀──────────│ ConsumedRecord │◀───────────┘
└──────────────────┘            └────────────────┘

All models are frozen: once built, an event or record never changes. The
wire models (ProduceRequest, ProduceResponse, PollRequest, PollResponse)
describe the logical contract with the external broker; the transports in
price_pipeline.producer.transport and price_pipeline.consumer.transport map
them onto confluent_kafka calls.
"""

from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

# ==============================================================================
# DOMAIN EVENT
# ==============================================================================


class PriceUpdateEvent(BaseModel):
    """
    A product's price changed.

    Attributes:
        product_name: Product identifier (wire name "Product")
        updated_price: New price as an exact decimal (wire name "UpdatedPrice")

    Example:
        >>> event = PriceUpdateEvent(product_name="ABC", updated_price=Decimal("100.00"))
        >>> event.product_name
        'ABC'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    product_name: str = Field(alias="Product", min_length=1)
    updated_price: Decimal = Field(alias="UpdatedPrice", allow_inf_nan=False)


# ==============================================================================
# ACKNOWLEDGMENT LEVELS
# ==============================================================================


class Acknowledgment(str, Enum):
    """
    How many replicas must confirm a write before a send counts as delivered.

    - NONE: fire-and-forget, no broker confirmation (acks=0)
    - LEADER: partition leader wrote it (acks=1)
    - ALL: every in-sync replica wrote it (acks=all)
    """

    NONE = "none"
    LEADER = "leader"
    ALL = "all"

    @property
    def kafka_acks(self) -> str:
        """Value for the librdkafka 'acks' setting."""
        return {"none": "0", "leader": "1", "all": "all"}[self.value]


# ==============================================================================
# RECORDS
# ==============================================================================


class Record(BaseModel):
    """
    Outgoing record handed to ProducerClient.send().

    Attributes:
        topic: Destination topic
        partition: Explicit partition, or None to let the partitioner choose
        payload: Encoded event bytes
        key: Optional partition key (same key -> same partition)
    """

    model_config = ConfigDict(frozen=True)

    topic: str = Field(min_length=1)
    partition: Optional[int] = None
    payload: bytes
    key: Optional[bytes] = None


class SendResult(BaseModel):
    """Outcome of a successful send. offset is None for Acknowledgment.NONE."""

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: Optional[int] = None
    attempts: int = 1


class ConsumedRecord(BaseModel):
    """
    A record returned by one poll, with its broker-assigned position.

    The decoded event is available through the `event` property, which
    raises DecodeError for malformed payloads. The payload is decoded once;
    the consumer decodes before dispatch, so handlers get the cached event.
    """

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: int
    payload: bytes
    key: Optional[bytes] = None

    _event: Optional[PriceUpdateEvent] = PrivateAttr(default=None)

    @property
    def event(self) -> PriceUpdateEvent:
        if self._event is None:
            from price_pipeline.shared.codec import decode

            self._event = decode(self.payload)
        return self._event

    @property
    def correlation_id(self) -> str:
        return f"{self.topic}/{self.partition}/{self.offset}"


# ==============================================================================
# BROKER WIRE CONTRACT
# ==============================================================================


class ProduceRequest(BaseModel):
    """One record as submitted to the broker, with its resolved partition."""

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int = Field(ge=0)
    payload: bytes
    key: Optional[bytes] = None
    acknowledgment: Acknowledgment = Acknowledgment.ALL


class ProduceResponse(BaseModel):
    """Broker confirmation. offset is None when no acknowledgment was requested."""

    model_config = ConfigDict(frozen=True)

    partition: int
    offset: Optional[int] = None


class PollRequest(BaseModel):
    """One poll of a consumer group member."""

    model_config = ConfigDict(frozen=True)

    group_id: str
    topics: FrozenSet[str]
    timeout_ms: int = Field(ge=0)
    max_records: int = Field(default=500, ge=1)

    @field_validator("topics")
    @classmethod
    def _topics_not_empty(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        if not value:
            raise ValueError("PollRequest requires at least one topic")
        return value


class PollResponse(BaseModel):
    """Records in broker order: increasing offsets within each partition."""

    model_config = ConfigDict(frozen=True)

    records: List[ConsumedRecord] = Field(default_factory=list)
