"""
Price Update Message Codec

Converts PriceUpdateEvent objects to and from Kafka message payloads.

WIRE FORMAT:
- UTF-8 encoded JSON object
- Keys in fixed order: "Product", then "UpdatedPrice"
- Compact separators, no whitespace
- UpdatedPrice is a JSON number carrying the decimal's exact digits

    {"Product":"ABC","UpdatedPrice":100.00}

WHY A JSON NUMBER AND NOT A FLOAT?
- json.dumps() only knows floats, and floats cannot hold 0.1 exactly
- Prices must survive the round trip unchanged: decode(encode(e)) == e
- The number literal is written from the Decimal directly and read back
  with parse_float=Decimal, so no binary floating point is ever involved

DETERMINISM:
Encoding the same event always yields the same bytes, so payload size is
proportional to the product name and price digits.
"""

import json
from decimal import Decimal
from typing import Any, Union

from pydantic import ValidationError

from price_pipeline.shared.exceptions import DecodeError
from price_pipeline.shared.models import PriceUpdateEvent

ENCODING = "utf-8"
PRODUCT_FIELD = "Product"
PRICE_FIELD = "UpdatedPrice"


def encode(event: PriceUpdateEvent) -> bytes:
    """
    Encode a price update event as payload bytes.

    Args:
        event: Validated, immutable event

    Returns:
        UTF-8 JSON bytes

    Example:
        >>> encode(PriceUpdateEvent(product_name="ABC", updated_price=Decimal("100.00")))
        b'{"Product":"ABC","UpdatedPrice":100.00}'
    """
    product = json.dumps(event.product_name, ensure_ascii=False)
    price = _format_price(event.updated_price)
    return f'{{"{PRODUCT_FIELD}":{product},"{PRICE_FIELD}":{price}}}'.encode(ENCODING)


def decode(payload: Union[bytes, bytearray, memoryview]) -> PriceUpdateEvent:
    """
    Decode payload bytes into a price update event.

    Args:
        payload: Bytes produced by encode()

    Returns:
        PriceUpdateEvent equal to the encoded one

    Raises:
        DecodeError: Not UTF-8, not a JSON object, missing field,
            non-numeric price, or empty product name
    """
    if payload is None:
        raise DecodeError("Payload is empty")

    try:
        text = bytes(payload).decode(ENCODING)
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid {ENCODING}", cause=e) from e

    try:
        data = json.loads(
            text,
            parse_float=Decimal,
            parse_int=Decimal,
            parse_constant=_reject_constant,
        )
    except ValueError as e:
        raise DecodeError("Payload is not valid JSON", cause=e) from e

    if not isinstance(data, dict):
        raise DecodeError(f"Payload must be a JSON object, got {type(data).__name__}")

    missing = [name for name in (PRODUCT_FIELD, PRICE_FIELD) if name not in data]
    if missing:
        raise DecodeError(f"Missing required fields: {missing}")

    product = data[PRODUCT_FIELD]
    price = data[PRICE_FIELD]

    if not isinstance(product, str):
        raise DecodeError(f"{PRODUCT_FIELD} must be a string")
    # parse_float/parse_int turn every JSON number into a Decimal,
    # anything else (string, bool, null, object) is not a price
    if not isinstance(price, Decimal):
        raise DecodeError(f"{PRICE_FIELD} must be a number, got {type(price).__name__}")

    try:
        return PriceUpdateEvent(product_name=product, updated_price=price)
    except ValidationError as e:
        raise DecodeError(f"Invalid price update: {e.errors()[0]['msg']}", cause=e) from e


def _format_price(price: Decimal) -> str:
    # fixed-point notation keeps the literal a plain JSON number ("1E+2" -> "100")
    return format(price, "f")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid price")
