"""Incremental transaction sync from Plaid into the local ledger."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

import aiosqlite

from spendflow.api import (
    MUTATION_DURING_PAGINATION,
    PlaidAccount,
    PlaidAPIError,
    PlaidClient,
    PlaidTransaction,
    SyncPage,
)
from spendflow.auth import TokenEncryption
from spendflow.db.models import Account, Item, Transaction, utcnow
from spendflow.db.repository import Repository
from spendflow.errors import SpendflowError, StoreError

log = logging.getLogger("spendflow.sync")

STABLE_TIME_OF_DAY = time(12, 0, tzinfo=timezone.utc)


def stable_datetime(value: str | None) -> datetime | None:
    """Pin a ``YYYY-MM-DD`` provider date to midday UTC.

    Any timezone conversion of the result stays on the same calendar day.
    """
    if not value:
        return None
    return datetime.combine(date.fromisoformat(value), STABLE_TIME_OF_DAY)


@dataclass
class SyncResult:
    """Outcome of one fully applied sync pass for an item."""

    item_id: int
    added: int
    modified: int
    removed: int
    accounts: int
    account_ids: list[str]
    cursor: str
    deferred: int = 0
    pages: int = 0
    restarts: int = 0


@dataclass
class ItemSyncOutcome:
    """Per-item result of a multi-item sync: either a result or an error."""

    item_id: int
    result: SyncResult | None = None
    error: SpendflowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _DeltaBatch:
    """Everything drained from the provider in one pass, not yet applied.

    Pages are folded to their net effect per transaction ID rather than
    replayed as deletes then upserts, so a transaction added on one page and
    removed on a later page is dropped entirely.
    """

    cursor: str | None
    upserts: dict[str, PlaidTransaction] = field(default_factory=dict)
    removed_ids: dict[str, None] = field(default_factory=dict)
    accounts: list[PlaidAccount] = field(default_factory=list)
    added: int = 0
    modified: int = 0
    removed: int = 0
    pages: int = 0

    def add_page(self, page: SyncPage) -> None:
        """Fold one page into the batch; later pages win for the same ID."""
        for txn in [*page.added, *page.modified]:
            self.upserts[txn.transaction_id] = txn
            self.removed_ids.pop(txn.transaction_id, None)
        for tombstone in page.removed:
            self.upserts.pop(tombstone.transaction_id, None)
            self.removed_ids[tombstone.transaction_id] = None
        if page.accounts:
            self.accounts = page.accounts
        self.added += len(page.added)
        self.modified += len(page.modified)
        self.removed += len(page.removed)
        self.pages += 1
        self.cursor = page.next_cursor


class SyncCoordinator:
    """Drains the Plaid delta feed for an item and reconciles it into the store.

    The item's cursor is written only after every account, deletion and
    transaction upsert of the pass has been applied. A pass that fails at any
    point leaves the old cursor in place; re-running it is safe because every
    write is keyed by a provider ID.
    """

    def __init__(
        self,
        client: PlaidClient,
        repo: Repository,
        encryption: TokenEncryption | None = None,
        page_size: int = 500,
        max_restarts: int = 3,
        max_concurrency: int = 4,
    ):
        self._client = client
        self._repo = repo
        self._encryption = encryption or TokenEncryption(None)
        self._page_size = page_size
        self._max_restarts = max_restarts
        self._max_concurrency = max_concurrency

    async def sync_item(self, item: Item) -> SyncResult:
        """Run one complete sync pass for ``item``."""
        access_token = self._encryption.decrypt(item.access_token)
        batch, restarts = await self._drain(item, access_token)
        log.debug(
            f"Item {item.id}: drained {batch.pages} page(s), "
            f"{len(batch.upserts)} upsert(s), {len(batch.removed_ids)} removal(s)"
        )

        account_map = await self._upsert_accounts(item, batch.accounts)
        if batch.removed_ids:
            await self._repo.delete_transactions_by_external_ids(batch.removed_ids)
        deferred = await self._upsert_transactions(item, batch, account_map)

        await self._repo.update_item_cursor(item.id, batch.cursor)
        result = SyncResult(
            item_id=item.id,
            added=batch.added,
            modified=batch.modified,
            removed=batch.removed,
            accounts=len(batch.accounts),
            account_ids=[a.account_id for a in batch.accounts],
            cursor=batch.cursor or "",
            deferred=deferred,
            pages=batch.pages,
            restarts=restarts,
        )
        log.info(
            f"Synced item {item.id}: added={result.added} modified={result.modified} "
            f"removed={result.removed} accounts={result.accounts} deferred={deferred}"
        )
        return result

    async def sync_items(self, items: list[Item]) -> list[ItemSyncOutcome]:
        """Sync several items concurrently. One item's failure does not affect another's."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(item: Item) -> ItemSyncOutcome:
            async with semaphore:
                try:
                    return ItemSyncOutcome(item_id=item.id, result=await self.sync_item(item))
                except SpendflowError as e:
                    log.error(f"Sync failed for item {item.id}: {e}")
                    return ItemSyncOutcome(item_id=item.id, error=e)
                except aiosqlite.Error as e:
                    log.error(f"Store error while syncing item {item.id}: {e}")
                    return ItemSyncOutcome(item_id=item.id, error=StoreError(str(e)))

        return list(await asyncio.gather(*(run(item) for item in items)))

    async def _drain(self, item: Item, access_token: str) -> tuple[_DeltaBatch, int]:
        """Page through the feed until the provider reports no more data.

        If the feed changes mid-pagination, the whole pass restarts from the
        item's stored cursor.
        """
        restarts = 0
        while True:
            batch = _DeltaBatch(cursor=item.cursor)
            try:
                has_more = True
                while has_more:
                    page = await self._client.transactions_sync(
                        access_token, batch.cursor, self._page_size
                    )
                    batch.add_page(page)
                    log.debug(
                        f"Item {item.id} page {batch.pages}: +{len(page.added)} "
                        f"~{len(page.modified)} -{len(page.removed)} has_more={page.has_more}"
                    )
                    has_more = page.has_more
                return batch, restarts
            except PlaidAPIError as e:
                if e.error_code != MUTATION_DURING_PAGINATION or restarts >= self._max_restarts:
                    raise
                restarts += 1
                log.warning(
                    f"Item {item.id}: data changed during pagination, "
                    f"restarting pass ({restarts}/{self._max_restarts})"
                )

    async def _upsert_accounts(
        self, item: Item, accounts: list[PlaidAccount]
    ) -> dict[str, int]:
        """Upsert the account snapshot. Returns provider account ID -> internal ID."""
        account_map = {}
        for plaid_account in accounts:
            saved = await self._repo.save_account(
                Account(
                    id=None,
                    external_id=plaid_account.account_id,
                    item_id=item.id,
                    name=plaid_account.name,
                    official_name=plaid_account.official_name,
                    type=plaid_account.type,
                    subtype=plaid_account.subtype,
                    mask=plaid_account.mask,
                )
            )
            account_map[saved.external_id] = saved.id
        return account_map

    async def _upsert_transactions(
        self, item: Item, batch: _DeltaBatch, account_map: dict[str, int]
    ) -> int:
        """Upsert every transaction in the batch. Returns count deferred."""
        deferred = 0
        for plaid_txn in batch.upserts.values():
            account_id = account_map.get(plaid_txn.account_id)
            if account_id is None:
                account_id = await self._lookup_stored_account(item, plaid_txn.account_id)
                if account_id is not None:
                    account_map[plaid_txn.account_id] = account_id
            if account_id is None:
                log.warning(
                    f"Item {item.id}: deferring txn {plaid_txn.transaction_id}, "
                    f"account {plaid_txn.account_id} not known yet"
                )
                deferred += 1
                continue
            await self._repo.save_transaction(_plaid_transaction_to_model(plaid_txn, account_id))
        return deferred

    async def _lookup_stored_account(self, item: Item, external_id: str) -> int | None:
        """Find an account of this item saved by an earlier pass."""
        account = await self._repo.get_account_by_external_id(external_id)
        if account is None or account.item_id != item.id:
            return None
        return account.id


def _plaid_transaction_to_model(plaid_txn: PlaidTransaction, account_id: int) -> Transaction:
    """Convert a Plaid transaction to the database model, fields verbatim."""
    return Transaction(
        id=None,
        external_id=plaid_txn.transaction_id,
        account_id=account_id,
        date=stable_datetime(plaid_txn.date) or stable_datetime(utcnow().date().isoformat()),
        authorized_date=stable_datetime(plaid_txn.authorized_date),
        amount=plaid_txn.amount,
        iso_currency_code=plaid_txn.iso_currency_code,
        name=plaid_txn.name,
        merchant_name=plaid_txn.merchant_name,
        original_description=plaid_txn.original_description,
        pending=plaid_txn.pending,
        pending_transaction_id=plaid_txn.pending_transaction_id,
        category_primary=plaid_txn.category_primary,
        category_detailed=plaid_txn.category_detailed,
    )
