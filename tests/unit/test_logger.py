"""
Unit Tests for Structured Logging

Tests the JSON formatter, the correlation adapter and setup_logger's
handler management.
"""

import json
import logging
import sys
from decimal import Decimal

import pytest

from price_pipeline.shared.logger import (
    CorrelationAdapter,
    JSONFormatter,
    PlainTextFormatter,
    setup_logger,
)


def make_record(message="Record dispatched", **extra):
    record = logging.LogRecord(
        name="price_pipeline.consumer.consumer",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
def test_json_formatter_fields():
    formatter = JSONFormatter(service_name="price-consumer")

    output = json.loads(formatter.format(make_record(correlation_id="product-price/0/42")))

    assert output["level"] == "INFO"
    assert output["service"] == "price-consumer"
    assert output["logger"] == "price_pipeline.consumer.consumer"
    assert output["message"] == "Record dispatched"
    assert output["correlation_id"] == "product-price/0/42"
    assert output["timestamp"].endswith("Z")


@pytest.mark.unit
def test_json_formatter_extra_fields():
    formatter = JSONFormatter(service_name="price-consumer")

    output = json.loads(
        formatter.format(make_record(group_id="inventorySystem", updated_price=Decimal("100.00")))
    )

    assert output["extra"] == {"group_id": "inventorySystem", "updated_price": "100.00"}


@pytest.mark.unit
def test_json_formatter_exception():
    formatter = JSONFormatter()
    try:
        raise ValueError("bad price")
    except ValueError:
        record = make_record()
        record.exc_info = sys.exc_info()

    output = json.loads(formatter.format(record))

    assert "ValueError: bad price" in output["exception"]


@pytest.mark.unit
def test_plain_text_formatter():
    formatter = PlainTextFormatter(service_name="price-producer")

    line = formatter.format(make_record("Price update published"))

    assert "INFO [price-producer] Price update published" in line


@pytest.mark.unit
def test_setup_logger_does_not_stack_handlers():
    first = setup_logger("tests.logger.stack", "price-producer", "INFO", "json")
    second = setup_logger("tests.logger.stack", "price-producer", "DEBUG", "json")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.DEBUG


@pytest.mark.unit
def test_setup_logger_text_format():
    logger = setup_logger("tests.logger.text", "price-consumer", "INFO", "text")

    assert isinstance(logger.handlers[0].formatter, PlainTextFormatter)


@pytest.mark.unit
def test_correlation_adapter_adds_id(caplog):
    logger = logging.getLogger("tests.logger.correlation")
    adapter = CorrelationAdapter(logger, {"correlation_id": "ABC"})

    with caplog.at_level(logging.INFO, logger="tests.logger.correlation"):
        adapter.info("Price update published", extra={"partition": 0})

    (record,) = caplog.records
    assert record.correlation_id == "ABC"
    assert record.partition == 0
