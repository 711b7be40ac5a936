"""
Price Producer Service - Main Entry Point

Publishes product price updates to the 'product-price' topic.

RUN MODES:
- Single update: --product ABC --price 100.00 publishes one event and exits
- Stream: without --product, publishes mock price updates at --rate per
  second for --duration seconds (0 = until Ctrl+C)

USAGE:
    # One price update, pinned to partition 0, all replicas must acknowledge
    price-producer --product ABC --price 100.00 --partition 0 --acks all

    # Stream mock updates for a minute
    price-producer --rate 5 --duration 60

    # Text logs for local development
    price-producer --log-format text

EXIT CODES:
    0 = every update delivered
    1 = configuration/connection error, or at least one DeliveryError
"""

import argparse
import signal
import sys
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import ValidationError

from price_pipeline.producer.config import ProducerConfig, load_config
from price_pipeline.producer.mock_data import MockPriceGenerator
from price_pipeline.producer.producer import ProducerClient
from price_pipeline.shared.exceptions import PipelineError
from price_pipeline.shared.logger import setup_logger
from price_pipeline.shared.models import PriceUpdateEvent
from price_pipeline.shared.topics import Topic, ensure_topics, validate_kafka_connection

# Set by the signal handler, checked by the stream loop
shutdown_requested = False


def signal_handler(signum, frame):
    """Stop the stream loop after the current send (SIGINT / SIGTERM)."""
    global shutdown_requested
    shutdown_requested = True


# ==============================================================================
# RUN MODES
# ==============================================================================


def publish_single(
    producer: ProducerClient,
    config: ProducerConfig,
    event: PriceUpdateEvent,
    partition: Optional[int],
    logger,
) -> int:
    """Publish one price update. Returns the exit code."""
    try:
        result = producer.publish(event, topic=config.kafka_topic_prices, partition=partition)
    except PipelineError as e:
        logger.error("Price update failed", extra=e.to_dict())
        return 1

    logger.info(
        "Price update published",
        extra={
            "correlation_id": event.product_name,
            "updated_price": event.updated_price,
            "topic": result.topic,
            "partition": result.partition,
            "offset": result.offset,
            "attempts": result.attempts,
        },
    )
    return 0


def publish_stream(
    producer: ProducerClient,
    config: ProducerConfig,
    partition: Optional[int],
    logger,
) -> int:
    """Publish mock price updates at the configured rate. Returns the exit code."""
    generator = MockPriceGenerator(seed=config.mock_seed)
    sleep_interval = 1.0 / config.producer_rate

    logger.info(
        "Starting price update stream",
        extra={
            "rate": config.producer_rate,
            "duration": config.producer_duration if config.producer_duration > 0 else "infinite",
            "products": len(generator.products),
        },
    )

    published = 0
    errors = 0
    start_time = time.time()

    while not shutdown_requested:
        if config.producer_duration > 0 and time.time() - start_time >= config.producer_duration:
            logger.info("Duration limit reached, stopping stream")
            break

        event = generator.generate_update()
        try:
            producer.publish(event, topic=config.kafka_topic_prices, partition=partition)
            published += 1
        except PipelineError as e:
            errors += 1
            logger.error(
                "Failed to publish price update",
                extra={"correlation_id": event.product_name, **e.to_dict()},
            )

        if published and published % 100 == 0:
            elapsed = time.time() - start_time
            logger.info(
                "Stream progress",
                extra={
                    "published": published,
                    "errors": errors,
                    "actual_rate": round(published / elapsed, 2) if elapsed > 0 else 0,
                },
            )

        time.sleep(sleep_interval)

    logger.info(
        "Price update stream finished",
        extra={
            "published": published,
            "errors": errors,
            "elapsed_seconds": round(time.time() - start_time, 2),
        },
    )
    return 0 if errors == 0 else 1


def run_producer(
    config: ProducerConfig,
    product: Optional[str] = None,
    price: Optional[Decimal] = None,
    partition: Optional[int] = None,
    create_topic: bool = False,
) -> int:
    """
    Run the price producer service.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    logger = setup_logger(
        name=__name__,
        service_name="price-producer",
        log_level=config.log_level,
        log_format=config.log_format,
    )

    logger.info("Validating Kafka connection...")
    if not validate_kafka_connection(config.kafka_bootstrap_servers):
        logger.error(
            "Cannot connect to Kafka brokers",
            extra={"bootstrap_servers": config.kafka_bootstrap_servers},
        )
        return 1

    if create_topic:
        try:
            created = ensure_topics(
                config.kafka_bootstrap_servers, [Topic(name=config.kafka_topic_prices)]
            )
        except PipelineError as e:
            logger.error("Topic creation failed", extra=e.to_dict())
            return 1
        if created:
            logger.info("Created topics", extra={"topics": created})

    try:
        producer = ProducerClient(config)
    except PipelineError as e:
        logger.error("Failed to initialize producer", exc_info=True, extra=e.to_dict())
        return 1

    with producer:
        if product is not None:
            try:
                event = PriceUpdateEvent(product_name=product, updated_price=price)
            except ValidationError as e:
                logger.error("Invalid price update", extra={"error": str(e)})
                return 1
            return publish_single(producer, config, event, partition, logger)
        return publish_stream(producer, config, partition, logger)


# ==============================================================================
# CLI
# ==============================================================================


def price_type(value: str) -> Decimal:
    """argparse type for prices: a bad value is a usage error, not a traceback."""
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid price: {value!r}")


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments. Flags override environment variables."""
    parser = argparse.ArgumentParser(
        description="Price Producer - publish product price updates to Kafka",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  price-producer --product ABC --price 100.00 --partition 0
  price-producer --rate 5 --duration 60
  price-producer --bootstrap-servers kafka:9092 --acks leader --max-retries 5
        """,
    )

    parser.add_argument("--product", type=str, help="Product name (single update mode)")
    parser.add_argument("--price", type=price_type, help="Updated price (single update mode)")
    parser.add_argument("--partition", type=int, help="Explicit partition (default: key hash)")

    parser.add_argument("--bootstrap-servers", type=str, help="Kafka bootstrap servers")
    parser.add_argument("--topic", type=str, help="Topic name")
    parser.add_argument("--client-id", type=str, help="Producer client ID")
    parser.add_argument("--acks", type=str, choices=["none", "leader", "all"], help="Acknowledgment level")
    parser.add_argument("--max-retries", type=int, help="Retries on transient failures")
    parser.add_argument("--create-topic", action="store_true", help="Create the topic if missing")

    parser.add_argument("--rate", type=int, help="Stream mode: updates per second")
    parser.add_argument("--duration", type=int, help="Stream mode: seconds (0=infinite)")
    parser.add_argument("--seed", type=int, help="Stream mode: random seed")

    parser.add_argument(
        "--log-level", type=str, choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level"
    )
    parser.add_argument("--log-format", type=str, choices=["json", "text"], help="Log output format")

    args = parser.parse_args(argv)
    if (args.product is None) != (args.price is None):
        parser.error("--product and --price must be given together")
    return args


def apply_overrides(config: ProducerConfig, args: argparse.Namespace) -> ProducerConfig:
    """Return a new config with CLI flags applied on top of the environment."""
    overrides = {
        "kafka_bootstrap_servers": args.bootstrap_servers,
        "kafka_topic_prices": args.topic,
        "producer_client_id": args.client_id,
        "producer_acks": args.acks,
        "producer_max_retries": args.max_retries,
        "producer_rate": args.rate,
        "producer_duration": args.duration,
        "mock_seed": args.seed,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    update = {key: value for key, value in overrides.items() if value is not None}
    # re-validate: model_copy() alone would skip field constraints
    return ProducerConfig(**{**config.model_dump(), **update})


def main(argv=None) -> int:
    """Main entry point for the producer service."""
    args = parse_args(argv)

    try:
        config = apply_overrides(load_config(), args)
    except ValidationError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    print(config.display_config())

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    return run_producer(
        config,
        product=args.product,
        price=args.price,
        partition=args.partition,
        create_topic=args.create_topic,
    )


if __name__ == "__main__":
    sys.exit(main())
