"""
Consumer Group Configuration Module

Consumer-group settings loaded from environment variables with Pydantic
validation. Frozen once built: a running ConsumerGroupClient never sees its
group, topics or poll interval change underneath it.

GROUP SEMANTICS:
- Same consumer_group_id: members share broker-tracked offsets and divide
  the topic's partitions between them (load sharing)
- Different consumer_group_id: each group receives every message (fan-out)
"""

from typing import FrozenSet, List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from price_pipeline.shared.topics import PRODUCT_PRICE_TOPIC, parse_bootstrap_servers

# Load .env file if present (local development)
load_dotenv()


class ConsumerGroupConfig(BaseSettings):
    """
    Consumer group client configuration.

    Attributes:
        kafka_bootstrap_servers: Ordered host:port list, comma-separated
        consumer_group_id: Consumer group this client joins
        consumer_topics: Topics to subscribe to, comma-separated
        consumer_poll_interval_ms: Pause between poll cycles
        consumer_poll_timeout_ms: How long one poll waits for records
        consumer_max_poll_records: Upper bound on records per batch
        consumer_client_id: Client identifier
        consumer_auto_offset_reset: earliest or latest, for groups without offsets
        log_level: Logging level
        log_format: json or text
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # === KAFKA CONSUMER SETTINGS ===
    kafka_bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka broker addresses (host:port, comma-separated, in order)",
    )

    consumer_group_id: str = Field(
        default="inventorySystem",
        min_length=1,
        description="Consumer group ID (independent cursor per group)",
    )

    consumer_topics: str = Field(
        default=PRODUCT_PRICE_TOPIC.name,
        description="Topics to subscribe to (comma-separated)",
    )

    consumer_client_id: str = Field(
        default="price-consumer",
        min_length=1,
        description="Consumer client identifier",
    )

    consumer_auto_offset_reset: str = Field(
        default="earliest",
        pattern="^(earliest|latest)$",
        description="Where a group without committed offsets starts: earliest or latest",
    )

    # === POLLING ===
    consumer_poll_interval_ms: int = Field(
        default=1000,
        gt=0,
        description="Pause between poll cycles (milliseconds)",
    )

    consumer_poll_timeout_ms: int = Field(
        default=1000,
        ge=0,
        description="Maximum time one poll waits for records (milliseconds)",
    )

    consumer_max_poll_records: int = Field(
        default=500,
        ge=1,
        le=100000,
        description="Maximum records returned by one poll",
    )

    consumer_close_timeout_ms: int = Field(
        default=30000,
        ge=0,
        description="How long close() waits for the in-flight cycle (milliseconds)",
    )

    # === LOGGING ===
    log_level: str = Field(default="INFO", description="Logging level")

    log_format: str = Field(default="json", description="Log output format (json or text)")

    @field_validator("kafka_bootstrap_servers")
    @classmethod
    def _validate_bootstrap_servers(cls, value: str) -> str:
        return parse_bootstrap_servers(value)

    @field_validator("consumer_topics")
    @classmethod
    def _validate_topics(cls, value: str) -> str:
        topics = [topic.strip() for topic in value.split(",") if topic.strip()]
        if not topics:
            raise ValueError("At least one topic is required")
        return ",".join(topics)

    @property
    def bootstrap_endpoints(self) -> List[str]:
        """Ordered list of host:port endpoints."""
        return self.kafka_bootstrap_servers.split(",")

    @property
    def topics(self) -> FrozenSet[str]:
        return frozenset(self.consumer_topics.split(","))

    def get_kafka_config(self) -> dict:
        """
        Kafka consumer configuration for confluent_kafka.Consumer.

        Auto-commit is off: ConsumerGroupClient commits each record's offset
        after its handler returns (at-least-once).
        """
        return {
            "bootstrap.servers": self.kafka_bootstrap_servers,
            "group.id": self.consumer_group_id,
            "client.id": self.consumer_client_id,
            "auto.offset.reset": self.consumer_auto_offset_reset,
            "enable.auto.commit": False,
            "enable.partition.eof": False,
        }

    def display_config(self) -> str:
        """Human-readable configuration summary."""
        return f"""
Price Consumer Configuration
============================
Kafka:
  Bootstrap Servers: {self.kafka_bootstrap_servers}
  Group ID: {self.consumer_group_id}
  Topics: {', '.join(sorted(self.topics))}
  Client ID: {self.consumer_client_id}
  Auto Offset Reset: {self.consumer_auto_offset_reset}

Polling:
  Interval: {self.consumer_poll_interval_ms}ms
  Timeout: {self.consumer_poll_timeout_ms}ms
  Max Records: {self.consumer_max_poll_records}

Logging:
  Level: {self.log_level}
  Format: {self.log_format}
"""


def load_config() -> ConsumerGroupConfig:
    """Load and validate consumer configuration."""
    return ConsumerGroupConfig()
