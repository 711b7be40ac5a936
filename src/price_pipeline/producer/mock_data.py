"""
Mock Price Update Generator

Generates realistic price update events for exercising the pipeline without
an admin front-end.

DATA GENERATION STRATEGY:
1. Build a fixed product catalog (Faker-generated names, base prices)
2. Each update picks a random product and moves its price by a bounded
   percentage, so prices drift like a real catalog instead of jumping
3. Prices are Decimals rounded to cents

REPRODUCIBILITY:
Each generator owns its own random.Random and Faker instance seeded from
`seed`, so two generators with the same seed yield the same catalog and the
same sequence of updates, independently of each other.

PARTITIONING:
ProducerClient.publish() keys records by product name, so all updates for
one product land in one partition and stay ordered.
"""

import random
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List

from faker import Faker

from price_pipeline.shared.models import PriceUpdateEvent

RANDOM_SEED = 42
NUM_PRODUCTS = 25

MIN_BASE_PRICE = Decimal("1.00")
MAX_BASE_PRICE = Decimal("500.00")

# Largest single price move, as a fraction of the current price
MAX_PRICE_CHANGE = Decimal("0.15")

CENT = Decimal("0.01")


class MockPriceGenerator:
    """
    Generates price update events for a fixed product catalog.

    Attributes:
        seed: Seed for the generator's own random streams
        products: Product names in the catalog
        prices: Current price per product
    """

    def __init__(self, seed: int = RANDOM_SEED, num_products: int = NUM_PRODUCTS):
        if num_products < 1:
            raise ValueError("num_products must be at least 1")

        self.seed = seed
        self._random = random.Random(seed)
        self._faker = Faker()
        self._faker.seed_instance(seed)

        self.products: List[str] = self._generate_catalog(num_products)
        self.prices: Dict[str, Decimal] = {
            product: self._random_base_price() for product in self.products
        }

    def _generate_catalog(self, count: int) -> List[str]:
        """
        Unique product names such as "ABC-Ergonomic-Lamp-003".

        The numeric suffix keeps names unique even when Faker repeats words.
        """
        products = []
        for i in range(1, count + 1):
            prefix = self._faker.lexify("???").upper()
            noun = self._faker.word().capitalize()
            products.append(f"{prefix}-{noun}-{i:03d}")
        return products

    def _random_base_price(self) -> Decimal:
        cents = self._random.randint(int(MIN_BASE_PRICE * 100), int(MAX_BASE_PRICE * 100))
        return (Decimal(cents) / 100).quantize(CENT)

    def generate_update(self) -> PriceUpdateEvent:
        """
        Move one product's price and return the update event.

        The new price stays within +/- MAX_PRICE_CHANGE of the previous price
        and never drops below MIN_BASE_PRICE.

        Example:
            >>> generator = MockPriceGenerator(seed=42)
            >>> event = generator.generate_update()
            >>> event.updated_price > 0
            True
        """
        product = self._random.choice(self.products)
        current = self.prices[product]

        change = Decimal(str(self._random.uniform(-1, 1))) * MAX_PRICE_CHANGE
        new_price = (current * (1 + change)).quantize(CENT, rounding=ROUND_HALF_UP)
        new_price = max(new_price, MIN_BASE_PRICE)

        self.prices[product] = new_price
        return PriceUpdateEvent(product_name=product, updated_price=new_price)

    def generate_batch(self, count: int) -> List[PriceUpdateEvent]:
        """Generate `count` consecutive updates."""
        return [self.generate_update() for _ in range(count)]
