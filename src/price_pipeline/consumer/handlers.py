"""
Price Update Handlers

Subscriber-side business logic for the systems listening on 'product-price'.
The real inventory and pricing systems update their own stores; here the
store is an in-memory price book, enough to observe what a group received.

A handler is any callable taking one ConsumedRecord. It may raise: the
consumer reports the failure as HandlerError and moves on to the next record.
"""

import logging
import threading
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from price_pipeline.shared.models import ConsumedRecord, PriceUpdateEvent

logger = logging.getLogger(__name__)


class PriceBookHandler:
    """
    Keeps the latest price per product, plus the full update history.

    Attributes:
        system_name: Subscribing system (usually the consumer group id)
        max_price: Updates above this price are refused (None = no limit)
    """

    def __init__(self, system_name: str, max_price: Optional[Decimal] = None):
        self.system_name = system_name
        self.max_price = max_price
        self._lock = threading.Lock()
        self._prices: Dict[str, Decimal] = {}
        self._history: List[Tuple[ConsumedRecord, PriceUpdateEvent]] = []

    def __call__(self, record: ConsumedRecord) -> None:
        event = record.event
        if self.max_price is not None and event.updated_price > self.max_price:
            raise ValueError(
                f"Price {event.updated_price} for '{event.product_name}' exceeds "
                f"limit {self.max_price}"
            )

        with self._lock:
            previous = self._prices.get(event.product_name)
            self._prices[event.product_name] = event.updated_price
            self._history.append((record, event))

        logger.info(
            f"{self.system_name}: price updated",
            extra={
                "correlation_id": record.correlation_id,
                "system": self.system_name,
                "product": event.product_name,
                "previous_price": str(previous) if previous is not None else None,
                "updated_price": str(event.updated_price),
            },
        )

    def price_of(self, product_name: str) -> Optional[Decimal]:
        with self._lock:
            return self._prices.get(product_name)

    @property
    def prices(self) -> Dict[str, Decimal]:
        with self._lock:
            return dict(self._prices)

    @property
    def records(self) -> List[ConsumedRecord]:
        """Records handled so far, in dispatch order."""
        with self._lock:
            return [record for record, _ in self._history]

    @property
    def events(self) -> List[PriceUpdateEvent]:
        with self._lock:
            return [event for _, event in self._history]
