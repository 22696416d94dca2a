"""Data access layer for SQLite database."""

from collections.abc import Iterable, Iterator
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import aiosqlite

from spendflow.db.migrations import SCHEMA_VERSION, get_migration_sql
from spendflow.db.models import (
    Account,
    CategoryOverride,
    Item,
    MatchType,
    Rule,
    Transaction,
    utcnow,
)
from spendflow.errors import StoreError

# Stay well below SQLite's bound-parameter limit.
IN_CLAUSE_CHUNK = 500


def _chunks(values: list, size: int = IN_CLAUSE_CHUNK) -> Iterator[list]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Repository:
    """Async repository for database operations."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Repository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreError("Repository is not connected")
        return self._connection

    async def _run_migrations(self) -> None:
        """Run pending database migrations."""
        current_version = await self._get_schema_version()
        if current_version < SCHEMA_VERSION:
            for sql in get_migration_sql(current_version, SCHEMA_VERSION):
                await self._conn.executescript(sql)
            await self._conn.commit()

    async def _get_schema_version(self) -> int:
        """Get current schema version from database."""
        try:
            cursor = await self._conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row["version"] if row else 0
        except aiosqlite.OperationalError:
            return 0

    # Item operations

    async def save_item(self, item: Item) -> Item:
        """Insert an item, or refresh the access token of an already linked one.

        The resume cursor of an existing item is left untouched.
        """
        now = utcnow().isoformat()
        await self._conn.execute(
            """INSERT INTO items (external_id, access_token, cursor, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(external_id) DO UPDATE SET
               access_token=excluded.access_token,
               updated_at=excluded.updated_at""",
            (item.external_id, item.access_token, item.cursor, now, now),
        )
        await self._conn.commit()
        return await self.get_item_by_external_id(item.external_id)

    async def get_item_by_id(self, item_id: int) -> Item | None:
        """Get item by ID."""
        cursor = await self._conn.execute("SELECT * FROM items WHERE id = ?", (item_id,))
        row = await cursor.fetchone()
        return self._row_to_item(row) if row else None

    async def get_item_by_external_id(self, external_id: str) -> Item | None:
        """Get item by provider item ID."""
        cursor = await self._conn.execute(
            "SELECT * FROM items WHERE external_id = ?", (external_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_item(row) if row else None

    async def get_all_items(self) -> list[Item]:
        """Get all linked items."""
        cursor = await self._conn.execute("SELECT * FROM items ORDER BY id")
        rows = await cursor.fetchall()
        return [self._row_to_item(row) for row in rows]

    async def update_item_cursor(self, item_id: int, cursor_value: str | None) -> None:
        """Persist the resume cursor for an item."""
        await self._conn.execute(
            "UPDATE items SET cursor = ?, updated_at = ? WHERE id = ?",
            (cursor_value, utcnow().isoformat(), item_id),
        )
        await self._conn.commit()

    def _row_to_item(self, row: aiosqlite.Row) -> Item:
        """Convert database row to Item object."""
        return Item(
            id=row["id"],
            external_id=row["external_id"],
            access_token=row["access_token"],
            cursor=row["cursor"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Account operations

    async def save_account(self, account: Account) -> Account:
        """Insert or update an account keyed by its provider ID."""
        await self._conn.execute(
            """INSERT INTO accounts (external_id, item_id, name, official_name,
               type, subtype, mask)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(external_id) DO UPDATE SET
               item_id=excluded.item_id, name=excluded.name,
               official_name=excluded.official_name, type=excluded.type,
               subtype=excluded.subtype, mask=excluded.mask""",
            (
                account.external_id,
                account.item_id,
                account.name,
                account.official_name,
                account.type,
                account.subtype,
                account.mask,
            ),
        )
        await self._conn.commit()
        return await self.get_account_by_external_id(account.external_id)

    async def get_account_by_external_id(self, external_id: str) -> Account | None:
        """Get account by provider account ID."""
        cursor = await self._conn.execute(
            "SELECT * FROM accounts WHERE external_id = ?", (external_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_account(row) if row else None

    async def get_accounts(self, item_id: int | None = None) -> list[Account]:
        """Get accounts ordered by name, optionally limited to one item."""
        if item_id is None:
            cursor = await self._conn.execute("SELECT * FROM accounts ORDER BY name, id")
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM accounts WHERE item_id = ? ORDER BY name, id", (item_id,)
            )
        rows = await cursor.fetchall()
        return [self._row_to_account(row) for row in rows]

    def _row_to_account(self, row: aiosqlite.Row) -> Account:
        """Convert database row to Account object."""
        return Account(
            id=row["id"],
            external_id=row["external_id"],
            item_id=row["item_id"],
            name=row["name"],
            official_name=row["official_name"],
            type=row["type"],
            subtype=row["subtype"],
            mask=row["mask"],
        )

    # Transaction operations

    async def save_transaction(self, txn: Transaction) -> Transaction:
        """Insert or update a transaction keyed by its provider ID."""
        await self._conn.execute(
            """INSERT INTO transactions (external_id, account_id, date, authorized_date,
               amount, iso_currency_code, name, merchant_name, original_description,
               pending, pending_transaction_id, category_primary, category_detailed,
               updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(external_id) DO UPDATE SET
               account_id=excluded.account_id, date=excluded.date,
               authorized_date=excluded.authorized_date, amount=excluded.amount,
               iso_currency_code=excluded.iso_currency_code, name=excluded.name,
               merchant_name=excluded.merchant_name,
               original_description=excluded.original_description,
               pending=excluded.pending,
               pending_transaction_id=excluded.pending_transaction_id,
               category_primary=excluded.category_primary,
               category_detailed=excluded.category_detailed,
               updated_at=excluded.updated_at""",
            (
                txn.external_id,
                txn.account_id,
                txn.date.isoformat(),
                _iso(txn.authorized_date),
                str(txn.amount),
                txn.iso_currency_code,
                txn.name,
                txn.merchant_name,
                txn.original_description,
                int(txn.pending),
                txn.pending_transaction_id,
                txn.category_primary,
                txn.category_detailed,
                txn.updated_at.isoformat(),
            ),
        )
        await self._conn.commit()
        return await self.get_transaction_by_external_id(txn.external_id)

    async def get_transaction_by_id(self, txn_id: int) -> Transaction | None:
        """Get transaction by ID."""
        cursor = await self._conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (txn_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def get_transaction_by_external_id(self, external_id: str) -> Transaction | None:
        """Get transaction by provider transaction ID."""
        cursor = await self._conn.execute(
            "SELECT * FROM transactions WHERE external_id = ?", (external_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def get_transactions_between(
        self,
        start: datetime,
        end: datetime,
        account_id: int | None = None,
    ) -> list[Transaction]:
        """Get transactions dated in [start, end), newest first."""
        query = "SELECT * FROM transactions WHERE date >= ? AND date < ?"
        params: list = [start.isoformat(), end.isoformat()]
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)
        query += " ORDER BY date DESC, id DESC"
        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def find_transactions_containing(self, pattern: str, limit: int) -> list[Transaction]:
        """Find transactions whose merchant, name or description contains ``pattern``.

        Matching is case-sensitive (``instr``, unlike ``LIKE``).
        """
        cursor = await self._conn.execute(
            """SELECT * FROM transactions
               WHERE instr(merchant_name, ?) > 0
               OR instr(name, ?) > 0
               OR instr(original_description, ?) > 0
               ORDER BY id LIMIT ?""",
            (pattern, pattern, pattern, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def count_transactions(self) -> int:
        """Count all stored transactions."""
        cursor = await self._conn.execute("SELECT COUNT(*) AS n FROM transactions")
        row = await cursor.fetchone()
        return row["n"]

    async def delete_transactions_by_external_ids(self, external_ids: Iterable[str]) -> int:
        """Delete transactions by provider ID. Absent IDs are ignored.

        Returns count deleted.
        """
        ids = list(dict.fromkeys(external_ids))
        deleted = 0
        for chunk in _chunks(ids):
            placeholders = ", ".join("?" for _ in chunk)
            cursor = await self._conn.execute(
                f"DELETE FROM transactions WHERE external_id IN ({placeholders})", chunk
            )
            deleted += cursor.rowcount
        await self._conn.commit()
        return deleted

    def _row_to_transaction(self, row: aiosqlite.Row) -> Transaction:
        """Convert database row to Transaction object."""
        return Transaction(
            id=row["id"],
            external_id=row["external_id"],
            account_id=row["account_id"],
            date=datetime.fromisoformat(row["date"]),
            authorized_date=_parse_dt(row["authorized_date"]),
            amount=Decimal(row["amount"]),
            iso_currency_code=row["iso_currency_code"],
            name=row["name"],
            merchant_name=row["merchant_name"],
            original_description=row["original_description"],
            pending=bool(row["pending"]),
            pending_transaction_id=row["pending_transaction_id"],
            category_primary=row["category_primary"],
            category_detailed=row["category_detailed"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Category override operations

    async def save_override(self, transaction_id: int, category: str) -> CategoryOverride:
        """Set the override for a transaction, replacing any existing one."""
        await self._conn.execute(
            """INSERT INTO category_overrides (transaction_id, category, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(transaction_id) DO UPDATE SET
               category=excluded.category, updated_at=excluded.updated_at""",
            (transaction_id, category, utcnow().isoformat()),
        )
        await self._conn.commit()
        return await self.get_override(transaction_id)

    async def get_override(self, transaction_id: int) -> CategoryOverride | None:
        """Get the override for a transaction."""
        cursor = await self._conn.execute(
            "SELECT * FROM category_overrides WHERE transaction_id = ?", (transaction_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_override(row) if row else None

    async def get_overrides(self, transaction_ids: Iterable[int]) -> dict[int, str]:
        """Map transaction ID to override category for the given transactions."""
        ids = list(dict.fromkeys(transaction_ids))
        result: dict[int, str] = {}
        for chunk in _chunks(ids):
            placeholders = ", ".join("?" for _ in chunk)
            cursor = await self._conn.execute(
                "SELECT transaction_id, category FROM category_overrides "
                f"WHERE transaction_id IN ({placeholders})",
                chunk,
            )
            for row in await cursor.fetchall():
                result[row["transaction_id"]] = row["category"]
        return result

    async def delete_override(self, transaction_id: int) -> bool:
        """Delete the override for a transaction. Returns whether one existed."""
        cursor = await self._conn.execute(
            "DELETE FROM category_overrides WHERE transaction_id = ?", (transaction_id,)
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    def _row_to_override(self, row: aiosqlite.Row) -> CategoryOverride:
        """Convert database row to CategoryOverride object."""
        return CategoryOverride(
            id=row["id"],
            transaction_id=row["transaction_id"],
            category=row["category"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Rule operations

    async def save_rule(self, rule: Rule) -> Rule:
        """Save or update a rule."""
        if rule.id is None:
            cursor = await self._conn.execute(
                """INSERT INTO rules (match_type, pattern, category, created_at)
                   VALUES (?, ?, ?, ?)""",
                (rule.match_type.value, rule.pattern, rule.category, rule.created_at.isoformat()),
            )
            await self._conn.commit()
            rule_id = cursor.lastrowid
        else:
            await self._conn.execute(
                "UPDATE rules SET match_type=?, pattern=?, category=? WHERE id=?",
                (rule.match_type.value, rule.pattern, rule.category, rule.id),
            )
            await self._conn.commit()
            rule_id = rule.id
        return await self.get_rule_by_id(rule_id)

    async def get_rule_by_id(self, rule_id: int) -> Rule | None:
        """Get rule by ID."""
        cursor = await self._conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,))
        row = await cursor.fetchone()
        return self._row_to_rule(row) if row else None

    async def get_rules(self, match_type: MatchType | None = None) -> list[Rule]:
        """Get rules in creation order, optionally of a single match type."""
        if match_type is None:
            cursor = await self._conn.execute("SELECT * FROM rules ORDER BY id")
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM rules WHERE match_type = ? ORDER BY id", (match_type.value,)
            )
        rows = await cursor.fetchall()
        return [self._row_to_rule(row) for row in rows]

    async def delete_rule(self, rule_id: int) -> None:
        """Delete a rule. Overrides it already wrote are kept."""
        await self._conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        await self._conn.commit()

    def _row_to_rule(self, row: aiosqlite.Row) -> Rule:
        """Convert database row to Rule object."""
        return Rule(
            id=row["id"],
            match_type=MatchType(row["match_type"]),
            pattern=row["pattern"],
            category=row["category"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # Category labels

    async def get_category_labels(self) -> set[str]:
        """Every category label in use by provider data, overrides or rules."""
        cursor = await self._conn.execute(
            """SELECT category_primary AS label FROM transactions
               WHERE category_primary IS NOT NULL
               UNION SELECT category FROM category_overrides
               UNION SELECT category FROM rules"""
        )
        rows = await cursor.fetchall()
        return {row["label"] for row in rows}
