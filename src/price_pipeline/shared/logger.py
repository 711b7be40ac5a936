"""
Structured Logging for the Price Pipeline

Producer and consumer services log one JSON object per line so log
aggregation tools can filter on topic, partition, offset or product.

EXAMPLE OUTPUT:
{
  "timestamp": "2025-01-10T14:30:00.123Z",
  "level": "INFO",
  "service": "price-consumer",
  "logger": "price_pipeline.consumer.consumer",
  "correlation_id": "product-price/0/42",
  "message": "Record dispatched",
  "extra": {"group_id": "inventorySystem", "product": "ABC"}
}

CORRELATION IDS:
- Published events: the product name
- Consumed records: "<topic>/<partition>/<offset>"
CorrelationAdapter stamps the id on every line logged through it.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Tuple

# LogRecord attributes that are not caller-supplied context
_STANDARD_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info",
        "taskName", "correlation_id",
    }
)


# ==============================================================================
# FORMATTERS
# ==============================================================================


class JSONFormatter(logging.Formatter):
    """
    Render log records as single-line JSON.

    Fields: timestamp, level, service, logger, message, correlation_id
    (when set), exception (when exc_info is set), extra (caller context).
    """

    def __init__(self, service_name: str = "price-pipeline", include_extra: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "correlation_id"):
            log_data["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_fields = {
                k: v
                for k, v in record.__dict__.items()
                if k not in _STANDARD_ATTRS and not k.startswith("_")
            }
            if extra_fields:
                log_data["extra"] = extra_fields

        # default=str covers Decimal prices and bytes keys
        return json.dumps(log_data, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        """ISO 8601 UTC with millisecond precision, e.g. 2025-01-10T14:30:00.123Z"""
        dt = datetime.fromtimestamp(created, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class PlainTextFormatter(logging.Formatter):
    """
    Human-readable format for local development.

    Format: [2025-01-10 14:30:00] INFO [price-consumer] Record dispatched
    """

    def __init__(self, service_name: str = "price-pipeline"):
        super().__init__(
            fmt=f"[%(asctime)s] %(levelname)s [{service_name}] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


# ==============================================================================
# LOGGER SETUP
# ==============================================================================


def setup_logger(
    name: str,
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> logging.Logger:
    """
    Configure a logger that writes structured output to stdout.

    Calling it again for the same name only updates the level, so every
    client instance can call it without stacking handlers.

    Args:
        name: Logger name (usually __name__)
        service_name: Service identifier ("price-producer", "price-consumer")
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"

    Returns:
        Configured logging.Logger

    Example:
        >>> logger = setup_logger(__name__, "price-producer", "INFO", "json")
        >>> logger.info("Price update published", extra={"partition": 0, "offset": 42})
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)

    if log_format.lower() == "json":
        formatter: logging.Formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = PlainTextFormatter(service_name=service_name)

    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# ==============================================================================
# CORRELATION ID ADAPTER
# ==============================================================================


class CorrelationAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds correlation_id to every log line.

    Example:
        >>> record_logger = CorrelationAdapter(logger, {"correlation_id": "product-price/0/42"})
        >>> record_logger.info("Dispatching record")
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> Tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        if "correlation_id" in self.extra:
            extra["correlation_id"] = self.extra["correlation_id"]
        kwargs["extra"] = extra
        return msg, kwargs
