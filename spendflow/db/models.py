"""Database models and schema definitions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MatchType(Enum):
    """Type of pattern matching for rules."""

    CONTAINS = "contains"
    REGEX = "regex"


@dataclass
class Item:
    """One linked provider credential."""

    id: int | None
    external_id: str
    access_token: str
    cursor: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Account:
    """Financial account under an Item."""

    id: int | None
    external_id: str
    item_id: int
    name: str
    type: str
    official_name: str | None = None
    subtype: str | None = None
    mask: str | None = None


@dataclass
class Transaction:
    """Ledger entry mirrored from the provider.

    ``amount`` is positive for money leaving the account. ``date`` and
    ``authorized_date`` are pinned to 12:00 UTC of their calendar day.
    """

    id: int | None
    external_id: str
    account_id: int
    date: datetime
    amount: Decimal
    name: str
    authorized_date: datetime | None = None
    iso_currency_code: str | None = None
    merchant_name: str | None = None
    original_description: str | None = None
    pending: bool = False
    pending_transaction_id: str | None = None
    category_primary: str | None = None
    category_detailed: str | None = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class CategoryOverride:
    """User category for a single transaction."""

    id: int | None
    transaction_id: int
    category: str
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Rule:
    """Standing pattern-to-category mapping."""

    id: int | None
    match_type: MatchType
    pattern: str
    category: str
    created_at: datetime = field(default_factory=utcnow)
