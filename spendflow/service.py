"""Externally triggered operations.

Every public coroutine on :class:`Ledger` validates its input against a
schema, runs, and returns an :class:`OperationResult`. Validation, not-found,
provider, store and config failures are turned into a result carrying an
:class:`ErrorKind`; anything else propagates.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, TypeVar

import aiosqlite
from pydantic import BaseModel, ValidationError

from spendflow.aggregation import (
    AggregationEngine,
    FlowEntry,
    FlowGraph,
    Totals,
    account_label,
    current_month,
    is_included,
    month_range,
)
from spendflow.api import PlaidClient
from spendflow.api.sandbox import build_seed_transactions
from spendflow.api.sync import SyncCoordinator, SyncResult
from spendflow.auth import TokenEncryption, create_link_token, exchange_public_token
from spendflow.categories import DEFAULT_CATEGORIES
from spendflow.config import SyncConfig
from spendflow.db.models import Account, Item, MatchType, Rule
from spendflow.db.repository import Repository
from spendflow.errors import (
    ConfigError,
    ErrorKind,
    InvalidRequestError,
    NotFoundError,
    SpendflowError,
)
from spendflow.rules import CategoryResolver, apply_rule
from spendflow.schemas import (
    ALL_ACCOUNTS,
    DashboardQuery,
    ExchangeIn,
    OverrideIn,
    RuleIn,
    SeedIn,
    SyncIn,
)

log = logging.getLogger("spendflow.service")

M = TypeVar("M", bound=BaseModel)


@dataclass
class OperationError:
    """Why an operation failed."""

    kind: ErrorKind
    message: str


@dataclass
class OperationResult:
    """Success data, or a single failure message with its kind."""

    ok: bool
    data: Any = None
    error: OperationError | None = None

    @classmethod
    def success(cls, data: Any = None) -> "OperationResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, data: Any = None) -> "OperationResult":
        return cls(ok=False, data=data, error=OperationError(kind=kind, message=message))


@dataclass
class AccountSummary:
    """Account as listed in the dashboard filter."""

    id: str
    name: str
    label: str
    type: str
    official_name: str | None
    subtype: str | None
    mask: str | None


@dataclass
class DashboardTransaction:
    """One transaction row with its resolved category."""

    id: str
    date: str
    amount: Decimal
    merchant: str
    account_id: str
    account_name: str
    provider_category: str | None
    override_category: str | None
    category: str
    category_source: str


@dataclass
class Dashboard:
    """Everything the dashboard shows for one month."""

    month: str
    account: str
    accounts: list[AccountSummary]
    graph: FlowGraph
    totals: Totals
    transactions: list[DashboardTransaction]
    transaction_count: int


@dataclass
class OverrideOutcome:
    """Category override after it was set or cleared."""

    transaction_id: str
    action: str
    category: str
    override: str | None = None
    existed: bool = False


@dataclass
class RuleOutcome:
    """A saved rule and, when applied, how many rows it changed."""

    rule: Rule
    applied: int | None = None


@dataclass
class ItemSyncReport:
    """Sync outcome for one linked item."""

    item_id: int
    result: SyncResult | None = None
    error: OperationError | None = None


@dataclass
class SyncReport:
    """Per-item outcomes of a sync run."""

    items: list[ItemSyncReport] = field(default_factory=list)


@dataclass
class LinkedItem:
    """Item created from a Link token exchange."""

    id: int
    external_id: str


@dataclass
class SeedReport:
    """Sandbox transactions pushed and the syncs that followed."""

    seeded: list[dict] = field(default_factory=list)
    synced: list[SyncResult] = field(default_factory=list)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(p) for p in detail.get("loc", ())) or "input"
        parts.append(f"{location}: {detail.get('msg', 'invalid value')}")
    return "Invalid request: " + "; ".join(parts)


def _summarize_account(account: Account) -> AccountSummary:
    return AccountSummary(
        id=account.external_id,
        name=account.name,
        label=account_label(account),
        type=account.type,
        official_name=account.official_name,
        subtype=account.subtype,
        mask=account.mask,
    )


class Ledger:
    """Operation boundary over the store and, when linked, the provider."""

    def __init__(
        self,
        repo: Repository,
        client: PlaidClient | None = None,
        encryption: TokenEncryption | None = None,
        sync_config: SyncConfig | None = None,
    ):
        self._repo = repo
        self._client = client
        self._encryption = encryption or TokenEncryption(None)
        self._sync_config = sync_config or SyncConfig()

    # Boundary helpers

    @staticmethod
    def _parse(model: type[M], params: Mapping | M | None) -> M:
        if isinstance(params, model):
            return params
        return model.model_validate(dict(params or {}))

    async def _run(
        self, operation: str, action: Callable[[], Awaitable[Any]]
    ) -> OperationResult:
        try:
            outcome = await action()
        except ValidationError as e:
            return self._fail(operation, ErrorKind.VALIDATION, _format_validation_error(e))
        except SpendflowError as e:
            return self._fail(operation, e.kind, e.message)
        except aiosqlite.Error as e:
            return self._fail(operation, ErrorKind.STORE, f"Store error: {e}")
        if isinstance(outcome, OperationResult):
            return outcome
        return OperationResult.success(outcome)

    def _fail(self, operation: str, kind: ErrorKind, message: str) -> OperationResult:
        if kind in (ErrorKind.VALIDATION, ErrorKind.NOT_FOUND):
            log.info(f"{operation} rejected ({kind.value}): {message}")
        else:
            log.error(f"{operation} failed ({kind.value}): {message}")
        return OperationResult.failure(kind, message)

    def _require_client(self) -> PlaidClient:
        if self._client is None:
            raise ConfigError("No Plaid client configured for this operation")
        return self._client

    def _coordinator(self) -> SyncCoordinator:
        return SyncCoordinator(
            self._require_client(),
            self._repo,
            self._encryption,
            page_size=self._sync_config.page_size,
            max_restarts=self._sync_config.max_restarts,
            max_concurrency=self._sync_config.max_concurrency,
        )

    async def _select_items(self, item_id: int | None) -> list[Item]:
        if item_id is None:
            return await self._repo.get_all_items()
        item = await self._repo.get_item_by_id(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return [item]

    # Dashboard

    async def dashboard(self, params: Mapping | DashboardQuery | None = None) -> OperationResult:
        """Flow graph, totals and recent spend for one month."""
        return await self._run("dashboard", lambda: self._dashboard(params))

    async def _dashboard(self, params) -> Dashboard:
        query = self._parse(DashboardQuery, params)
        month = query.month or current_month()
        window = month_range(month)

        accounts = await self._repo.get_accounts()
        accounts_by_id = {a.id: a for a in accounts}
        account_id = None
        if query.account != ALL_ACCOUNTS:
            selected = next((a for a in accounts if a.external_id == query.account), None)
            if selected is None:
                raise NotFoundError(f"Account {query.account} not found")
            account_id = selected.id

        candidates = await self._repo.get_transactions_between(
            window.start, window.end, account_id
        )
        included = [t for t in candidates if is_included(t, window, account_id)]
        overrides = await self._repo.get_overrides(t.id for t in included)
        resolver = CategoryResolver(await self._repo.get_rules(MatchType.REGEX))
        excluded = set(query.exclude)

        rows = []
        for txn in included:
            resolution = resolver.resolve_detailed(txn, overrides.get(txn.id))
            if resolution.category not in excluded:
                rows.append((txn, resolution))

        aggregation = AggregationEngine(query.layout).aggregate(
            FlowEntry(account_label(accounts_by_id[t.account_id]), r.category, t.amount)
            for t, r in rows
        )
        transactions = []
        for txn, resolution in rows[: query.limit]:
            account = accounts_by_id[txn.account_id]
            transactions.append(
                DashboardTransaction(
                    id=txn.external_id,
                    date=txn.date.date().isoformat(),
                    amount=txn.amount,
                    merchant=txn.merchant_name or txn.name,
                    account_id=account.external_id,
                    account_name=account_label(account),
                    provider_category=txn.category_primary,
                    override_category=overrides.get(txn.id),
                    category=resolution.category,
                    category_source=resolution.source,
                )
            )
        return Dashboard(
            month=month,
            account=query.account,
            accounts=[_summarize_account(a) for a in accounts],
            graph=aggregation.graph,
            totals=aggregation.totals,
            transactions=transactions,
            transaction_count=aggregation.count,
        )

    # Overrides

    async def set_override(self, params: Mapping | OverrideIn) -> OperationResult:
        """Set or clear the category override of one transaction."""
        return await self._run("set_override", lambda: self._set_override(params))

    async def _set_override(self, params) -> OverrideOutcome:
        body = self._parse(OverrideIn, params)
        txn = await self._repo.get_transaction_by_external_id(body.transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")

        resolver = CategoryResolver(await self._repo.get_rules(MatchType.REGEX))
        if body.category is None:
            existed = await self._repo.delete_override(txn.id)
            return OverrideOutcome(
                transaction_id=txn.external_id,
                action="cleared",
                category=resolver.resolve(txn),
                existed=existed,
            )

        saved = await self._repo.save_override(txn.id, body.category)
        return OverrideOutcome(
            transaction_id=txn.external_id,
            action="set",
            category=resolver.resolve(txn, saved.category),
            override=saved.category,
        )

    # Rules

    async def create_rule(self, params: Mapping | RuleIn) -> OperationResult:
        """Store a rule; contains-rules with ``apply_now`` are materialized as overrides."""
        return await self._run("create_rule", lambda: self._create_rule(params))

    async def _create_rule(self, params) -> RuleOutcome:
        body = self._parse(RuleIn, params)
        rule = await self._repo.save_rule(
            Rule(
                id=None,
                match_type=MatchType(body.match_type),
                pattern=body.pattern,
                category=body.category,
            )
        )
        if not body.apply_now or rule.match_type != MatchType.CONTAINS:
            return RuleOutcome(rule=rule)
        return RuleOutcome(rule=rule, applied=await apply_rule(self._repo, rule))

    async def list_categories(self) -> OperationResult:
        """Default labels plus every label already in use, sorted."""

        async def action() -> list[str]:
            labels = set(DEFAULT_CATEGORIES) | await self._repo.get_category_labels()
            return sorted(labels)

        return await self._run("list_categories", action)

    # Sync

    async def sync(self, params: Mapping | SyncIn | None = None) -> OperationResult:
        """Sync one item, or every linked item, reporting per item."""
        return await self._run("sync", lambda: self._sync(params))

    async def _sync(self, params) -> OperationResult:
        body = self._parse(SyncIn, params)
        items = await self._select_items(body.item_id)
        outcomes = await self._coordinator().sync_items(items)

        report = SyncReport()
        failures = []
        for outcome in outcomes:
            if outcome.ok:
                report.items.append(ItemSyncReport(item_id=outcome.item_id, result=outcome.result))
                continue
            error = OperationError(kind=outcome.error.kind, message=outcome.error.message)
            report.items.append(ItemSyncReport(item_id=outcome.item_id, error=error))
            failures.append((outcome.item_id, error))

        if not failures:
            return OperationResult.success(report)
        first_kind = failures[0][1].kind
        detail = "; ".join(f"item {item_id}: {e.message}" for item_id, e in failures)
        message = f"{len(failures)} of {len(outcomes)} item(s) failed to sync: {detail}"
        log.error(f"sync failed ({first_kind.value}): {message}")
        return OperationResult.failure(first_kind, message, data=report)

    # Linking

    async def create_link_token(self) -> OperationResult:
        """Issue a Link session token."""

        async def action() -> dict:
            return {"link_token": await create_link_token(self._require_client())}

        return await self._run("create_link_token", action)

    async def exchange_public_token(self, params: Mapping | ExchangeIn) -> OperationResult:
        """Exchange a public token and store the linked item."""

        async def action() -> LinkedItem:
            body = self._parse(ExchangeIn, params)
            item = await exchange_public_token(
                self._require_client(), self._repo, self._encryption, body.public_token
            )
            return LinkedItem(id=item.id, external_id=item.external_id)

        return await self._run("exchange_public_token", action)

    async def seed_sandbox(self, params: Mapping | SeedIn | None = None) -> OperationResult:
        """Create synthetic sandbox purchases for items, then sync them."""
        return await self._run("seed_sandbox", lambda: self._seed_sandbox(params))

    async def _seed_sandbox(self, params) -> SeedReport:
        body = self._parse(SeedIn, params)
        client = self._require_client()
        items = await self._select_items(body.item_id)
        if not items:
            raise InvalidRequestError("No linked items found. Connect an account first.")

        coordinator = self._coordinator()
        report = SeedReport()
        today = datetime.now(timezone.utc).date()
        for item in items:
            transactions = build_seed_transactions(body.count, today)
            await client.sandbox_transactions_create(
                self._encryption.decrypt(item.access_token), transactions
            )
            report.seeded.append({"item_id": item.id, "created": len(transactions)})
            report.synced.append(await coordinator.sync_item(item))
        return report
