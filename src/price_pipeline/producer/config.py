"""
Producer Configuration Module

Loads price producer configuration from environment variables and validates
it with Pydantic.

CONFIGURATION SOURCES (priority order):
1. Explicit keyword arguments (tests, CLI overrides)
2. Environment variables
3. .env file (loaded by python-dotenv)
4. Default values

IMMUTABILITY:
The config is frozen once built. Every send through a ProducerClient uses
the same acknowledgment level and retry budget; to change them, build a new
config and a new client.
"""

from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from price_pipeline.shared.models import Acknowledgment
from price_pipeline.shared.topics import PRODUCT_PRICE_TOPIC, parse_bootstrap_servers

# Load .env file if present (local development)
load_dotenv()


class ProducerConfig(BaseSettings):
    """
    Price producer configuration with validation.

    Attributes:
        kafka_bootstrap_servers: Kafka broker addresses (host:port, comma-separated)
        kafka_topic_prices: Default topic for price updates
        producer_client_id: Producer identifier
        producer_acks: Acknowledgment level (none, leader, all)
        producer_max_retries: Retries after the first attempt on transient failures
        producer_retry_backoff_ms: Pause between attempts
        producer_request_timeout_ms: Upper bound for one delivery attempt
        producer_rate: Mock price updates per second (CLI stream mode)
        producer_duration: CLI stream duration in seconds (0 = run until stopped)
        mock_seed: Seed for reproducible mock price updates
        log_level: Logging level
        log_format: json or text

    Example:
        >>> config = ProducerConfig(producer_acks="all", producer_max_retries=3)
        >>> config.get_kafka_config()["acks"]
        'all'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # === KAFKA CONNECTION ===
    kafka_bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka broker addresses (comma-separated for multiple brokers)",
        json_schema_extra={"production_example": "broker1:9092,broker2:9092,broker3:9092"},
    )

    kafka_topic_prices: str = Field(
        default=PRODUCT_PRICE_TOPIC.name,
        min_length=1,
        description="Kafka topic for price update messages",
    )

    # === DELIVERY GUARANTEES ===
    producer_client_id: str = Field(
        default="price-producer",
        min_length=1,
        description="Producer client identifier (visible in broker logs)",
    )

    producer_acks: Acknowledgment = Field(
        default=Acknowledgment.ALL,
        description="Acknowledgment level: none (fire-and-forget), leader, all (every in-sync replica)",
    )

    producer_max_retries: int = Field(
        default=3,
        ge=0,
        le=100,
        description="Retries after the first attempt on transient failures (attempts = retries + 1)",
    )

    producer_retry_backoff_ms: int = Field(
        default=100,
        ge=0,
        le=60000,
        description="Wait between delivery attempts (milliseconds)",
    )

    producer_request_timeout_ms: int = Field(
        default=30000,
        ge=100,
        description="Maximum time one delivery attempt may take (milliseconds)",
    )

    # === CLI STREAM MODE ===
    producer_rate: int = Field(
        default=1,
        ge=1,
        le=1000,
        description="Mock price updates to publish per second (1-1000)",
    )

    producer_duration: int = Field(
        default=10,
        ge=0,
        description="Stream duration in seconds (0 = run until stopped)",
    )

    mock_seed: int = Field(
        default=42,
        description="Random seed for reproducible mock price updates",
    )

    # === LOGGING ===
    log_level: str = Field(default="INFO", description="Logging level")

    log_format: str = Field(default="json", description="Log output format (json or text)")

    @field_validator("kafka_bootstrap_servers")
    @classmethod
    def _validate_bootstrap_servers(cls, value: str) -> str:
        return parse_bootstrap_servers(value)

    @property
    def bootstrap_endpoints(self) -> List[str]:
        """Ordered list of host:port endpoints."""
        return self.kafka_bootstrap_servers.split(",")

    def get_kafka_config(self) -> dict:
        """
        Kafka producer configuration for confluent_kafka.Producer.

        librdkafka's own retries are disabled: ProducerClient counts attempts
        itself, so the retry budget means exactly what producer_max_retries
        says. Idempotence needs librdkafka retries, so it is off as well.
        message.timeout.ms bounds one attempt so its delivery callback
        always fires.
        """
        return {
            "bootstrap.servers": self.kafka_bootstrap_servers,
            "client.id": self.producer_client_id,
            "acks": self.producer_acks.kafka_acks,
            "enable.idempotence": False,
            "retries": 0,
            "message.timeout.ms": self.producer_request_timeout_ms,
            "request.timeout.ms": self.producer_request_timeout_ms,
            "linger.ms": 0,
        }

    def display_config(self) -> str:
        """Human-readable configuration summary."""
        return f"""
Price Producer Configuration
============================
Kafka:
  Bootstrap Servers: {self.kafka_bootstrap_servers}
  Topic: {self.kafka_topic_prices}
  Client ID: {self.producer_client_id}

Delivery:
  Acknowledgment: {self.producer_acks.value}
  Max Retries: {self.producer_max_retries}
  Retry Backoff: {self.producer_retry_backoff_ms}ms
  Request Timeout: {self.producer_request_timeout_ms}ms

Stream Mode:
  Rate: {self.producer_rate} updates/second
  Duration: {self.producer_duration} seconds {'(infinite)' if self.producer_duration == 0 else ''}
  Seed: {self.mock_seed}

Logging:
  Level: {self.log_level}
  Format: {self.log_format}
"""


def load_config() -> ProducerConfig:
    """Load and validate producer configuration."""
    return ProducerConfig()
