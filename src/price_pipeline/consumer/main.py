"""
Price Consumer Service - Main Entry Point

Runs one consumer group member that applies price updates from the
'product-price' topic to an in-memory price book.

USAGE:
    price-consumer [options]
    python -m price_pipeline.consumer.main [options]

    # The inventory system's group, polling every second
    price-consumer --group-id inventorySystem --poll-interval-ms 1000

    # A second, independent group receives every update as well (fan-out)
    price-consumer --group-id pricingSystem

    # Stop after 10 records (smoke tests)
    price-consumer --max-messages 10

ENVIRONMENT VARIABLES:
    See price_pipeline/consumer/config.py for the full list:
    - KAFKA_BOOTSTRAP_SERVERS: Kafka broker addresses
    - CONSUMER_GROUP_ID: Consumer group identifier
    - CONSUMER_TOPICS: Topics to subscribe to (comma-separated)
    - CONSUMER_POLL_INTERVAL_MS: Pause between polls
    - LOG_LEVEL / LOG_FORMAT: Logging

GRACEFUL SHUTDOWN:
- Handles SIGINT (Ctrl+C) and SIGTERM (Docker stop)
- Finishes the record being handled and commits its offset
- Leaves the consumer group and closes the connection
- Logs shutdown metrics
"""

import argparse
import logging
import signal
import sys
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError

from price_pipeline.consumer.config import ConsumerGroupConfig, load_config
from price_pipeline.consumer.consumer import ConsumerGroupClient
from price_pipeline.consumer.handlers import PriceBookHandler
from price_pipeline.producer.main import price_type
from price_pipeline.shared.exceptions import ClientStateError, PipelineError
from price_pipeline.shared.logger import setup_logger

# ==============================================================================
# GLOBAL STATE
# ==============================================================================
# Signal handlers can only reach the consumer through module state

consumer_instance: Optional[ConsumerGroupClient] = None


def signal_handler(signum: int, frame) -> None:
    """Close the consumer on SIGINT / SIGTERM; the loop exits after the current record."""
    signal_name = signal.Signals(signum).name
    logging.getLogger(__name__).info(f"Received {signal_name}, initiating graceful shutdown...")

    if consumer_instance is not None:
        consumer_instance.close()


# ==============================================================================
# CLI ARGUMENT PARSING
# ==============================================================================


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments. Flags override environment variables."""
    parser = argparse.ArgumentParser(
        description="Price Consumer - apply product price updates from Kafka",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  price-consumer --group-id inventorySystem
  price-consumer --group-id pricingSystem --topics product-price
  price-consumer --max-messages 10 --log-format text

Signals:
  SIGINT (Ctrl+C)            Graceful shutdown
  SIGTERM (Docker stop)      Graceful shutdown
        """,
    )

    parser.add_argument("--group-id", type=str, help="Consumer group ID")
    parser.add_argument("--topics", type=str, help="Topics to subscribe to (comma-separated)")
    parser.add_argument("--bootstrap-servers", type=str, help="Kafka bootstrap servers")
    parser.add_argument("--client-id", type=str, help="Consumer client ID")
    parser.add_argument(
        "--auto-offset-reset",
        type=str,
        choices=["earliest", "latest"],
        help="Start position for a group without committed offsets",
    )
    parser.add_argument("--poll-interval-ms", type=int, help="Pause between polls (milliseconds)")
    parser.add_argument(
        "--max-messages", type=int, default=0, help="Stop after this many records (0 = run until stopped)"
    )
    parser.add_argument(
        "--max-price", type=price_type, help="Refuse price updates above this value (handler error)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (overrides LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Log output format (overrides LOG_FORMAT env var)",
    )

    return parser.parse_args(argv)


def apply_overrides(config: ConsumerGroupConfig, args: argparse.Namespace) -> ConsumerGroupConfig:
    """Return a new config with CLI flags applied on top of the environment."""
    overrides = {
        "kafka_bootstrap_servers": args.bootstrap_servers,
        "consumer_group_id": args.group_id,
        "consumer_topics": args.topics,
        "consumer_client_id": args.client_id,
        "consumer_auto_offset_reset": args.auto_offset_reset,
        "consumer_poll_interval_ms": args.poll_interval_ms,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    update = {key: value for key, value in overrides.items() if value is not None}
    return ConsumerGroupConfig(**{**config.model_dump(), **update})


# ==============================================================================
# RUN MODES
# ==============================================================================


def consume_bounded(consumer: ConsumerGroupClient, max_messages: int) -> int:
    """Poll until max_messages records were dispatched or the consumer is closed."""
    interval = consumer.config.consumer_poll_interval_ms / 1000
    dispatched = 0
    while dispatched < max_messages:
        try:
            dispatched += consumer.poll_once()
        except ClientStateError:
            break
        if consumer.wait_for_stop(interval):
            break
    return dispatched


def run_consumer(
    config: ConsumerGroupConfig, max_messages: int = 0, max_price: Optional[Decimal] = None
) -> int:
    """
    Run one consumer group member until stopped.

    Returns:
        Exit code (0 = clean shutdown, 1 = error)
    """
    global consumer_instance

    logger = setup_logger(
        name=__name__,
        service_name="price-consumer",
        log_level=config.log_level,
        log_format=config.log_format,
    )

    logger.info(
        "Starting Price Consumer Service",
        extra={
            "kafka_bootstrap_servers": config.kafka_bootstrap_servers,
            "consumer_group": config.consumer_group_id,
            "topics": sorted(config.topics),
            "poll_interval_ms": config.consumer_poll_interval_ms,
        },
    )

    try:
        consumer_instance = ConsumerGroupClient(config)
    except PipelineError as e:
        logger.error("Failed to create Kafka consumer", exc_info=True, extra=e.to_dict())
        return 1

    handler = PriceBookHandler(config.consumer_group_id, max_price=max_price)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    logger.info("Signal handlers registered (SIGINT, SIGTERM)")

    with consumer_instance as consumer:
        try:
            consumer.subscribe(handler)
            logger.info("Consumer starting, press Ctrl+C to stop...")
            if max_messages > 0:
                consume_bounded(consumer, max_messages)
            else:
                consumer.run()
        except PipelineError as e:
            logger.error("Fatal error in consumer", exc_info=True, extra=e.to_dict())
            return 1

    logger.info(
        "Consumer stopped",
        extra={"products": len(handler.prices), "records": len(handler.records)},
    )
    return 0


def main(argv=None) -> int:
    """Main entry point for the consumer service."""
    args = parse_args(argv)

    try:
        config = apply_overrides(load_config(), args)
    except ValidationError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    print(config.display_config())

    return run_consumer(config, max_messages=args.max_messages, max_price=args.max_price)


if __name__ == "__main__":
    sys.exit(main())
