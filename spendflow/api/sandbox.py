"""Synthetic purchases for seeding sandbox items."""

import random
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

# The sandbox only accepts custom transactions dated within the last 14 days.
MAX_DAYS_AGO = 13


@dataclass(frozen=True)
class SeedMerchant:
    description: str
    min_amount: int
    max_amount: int


SEED_MERCHANTS = [
    SeedMerchant("STARBUCKS", 4, 15),
    SeedMerchant("WHOLE FOODS", 20, 120),
    SeedMerchant("UBER TRIP", 8, 45),
    SeedMerchant("SHELL OIL", 25, 80),
    SeedMerchant("NETFLIX.COM", 9, 25),
    SeedMerchant("SPOTIFY", 10, 15),
    SeedMerchant("AMAZON MARKETPLACE", 10, 220),
    SeedMerchant("TARGET", 15, 180),
    SeedMerchant("DELTA AIR LINES", 120, 600),
    SeedMerchant("CHIPOTLE", 9, 25),
    SeedMerchant("CVS PHARMACY", 8, 60),
    SeedMerchant("APPLE.COM/BILL", 1, 35),
]


def random_amount(merchant: SeedMerchant, rng: random.Random) -> Decimal:
    """Whole-cent amount within the merchant's range."""
    cents = rng.randint(merchant.min_amount * 100, merchant.max_amount * 100)
    return Decimal(cents) / 100


def build_seed_transactions(
    count: int,
    today: date,
    rng: random.Random | None = None,
) -> list[dict]:
    """Build ``count`` sandbox transaction payloads dated in the last two weeks."""
    rng = rng or random.Random()
    transactions = []
    for _ in range(count):
        merchant = rng.choice(SEED_MERCHANTS)
        day = (today - timedelta(days=rng.randint(0, MAX_DAYS_AGO))).isoformat()
        transactions.append(
            {
                "date_transacted": day,
                "date_posted": day,
                "amount": float(random_amount(merchant, rng)),
                "description": merchant.description,
                "iso_currency_code": "USD",
            }
        )
    return transactions
