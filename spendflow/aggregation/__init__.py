"""Spend aggregation into a flow graph and per-dimension totals."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal

from spendflow.categories import format_category_label
from spendflow.db.models import Account, Transaction
from spendflow.errors import InvalidRequestError

EXCLUDED_PRIMARY_CATEGORIES = frozenset({"TRANSFER_IN", "TRANSFER_OUT"})
CENT = Decimal("0.01")
HUB_LABEL = "Spending"
LAYOUTS = ("bipartite", "tripartite")


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half to even."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True)
class Window:
    """Closed-open time window [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise InvalidRequestError("Window end must be after its start")

    def contains(self, when: datetime) -> bool:
        return self.start <= when < self.end


def month_range(month: str) -> Window:
    """Window covering a ``YYYY-MM`` calendar month in UTC."""
    try:
        year_str, month_str = month.split("-")
        year, month_num = int(year_str), int(month_str)
        start = datetime(year, month_num, 1, tzinfo=timezone.utc)
        if month_num == 12:
            end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(year, month_num + 1, 1, tzinfo=timezone.utc)
    except ValueError as e:
        raise InvalidRequestError(f"Invalid month {month!r}, expected YYYY-MM") from e
    return Window(start=start, end=end)


def current_month(now: datetime | None = None) -> str:
    """Current UTC month as ``YYYY-MM``."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m")


def account_label(account: Account) -> str:
    """Display name with the masked suffix when the provider gave one."""
    return f"{account.name} •{account.mask}" if account.mask else account.name


def is_included(
    txn: Transaction,
    window: Window,
    account_id: int | None = None,
    excluded_primary: frozenset[str] = EXCLUDED_PRIMARY_CATEGORIES,
) -> bool:
    """Whether a transaction counts as spend for the window.

    Posted outflows only; transfers are left out so moving money between
    accounts is not counted twice.
    """
    if txn.pending or txn.amount <= 0:
        return False
    if not window.contains(txn.date):
        return False
    if txn.category_primary in excluded_primary:
        return False
    return account_id is None or txn.account_id == account_id


@dataclass(frozen=True)
class FlowEntry:
    """One included transaction reduced to what the graph needs."""

    account: str
    category: str
    amount: Decimal


@dataclass
class FlowNode:
    """Account, hub or category node in the flow graph."""

    id: str
    label: str
    kind: str


@dataclass
class FlowEdge:
    """Rounded spend flowing from one node to another."""

    source: str
    target: str
    value: Decimal


@dataclass
class FlowGraph:
    """Nodes and edges ready for a flow chart."""

    nodes: list[FlowNode] = field(default_factory=list)
    edges: list[FlowEdge] = field(default_factory=list)


@dataclass
class CategoryTotal:
    """Rounded spend for one category."""

    category: str
    total: Decimal


@dataclass
class AccountTotal:
    """Rounded spend for one account."""

    account: str
    total: Decimal


@dataclass
class Totals:
    """Overall spend with rankings by category and account."""

    spending: Decimal
    by_category: list[CategoryTotal]
    by_account: list[AccountTotal]


@dataclass
class Aggregation:
    """Flow graph and totals over a set of entries."""

    graph: FlowGraph
    totals: Totals
    count: int


class Tally:
    """Exact running sums per key, ranked on demand.

    Ranking is descending by total with ties broken by key, so the order is
    deterministic for equal totals.
    """

    def __init__(self):
        self._sums: dict = {}

    def add(self, key, amount: Decimal) -> None:
        self._sums[key] = self._sums.get(key, Decimal("0")) + amount

    def keys(self) -> list:
        return sorted(self._sums)

    def total(self) -> Decimal:
        return sum(self._sums.values(), Decimal("0"))

    def ranked(self) -> list[tuple]:
        """(key, rounded total) pairs, largest first."""
        return [
            (key, round_money(value))
            for key, value in sorted(self._sums.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

    def items(self) -> list[tuple]:
        return sorted(self._sums.items())

    def __len__(self) -> int:
        return len(self._sums)


def _node_id(kind: str, label: str) -> str:
    return f"{kind}:{label}"


class AggregationEngine:
    """Builds the flow graph and totals from resolved spend entries.

    ``bipartite`` draws one edge per (account, category) pair. ``tripartite``
    routes every account through a single ``Spending`` hub node.
    """

    def __init__(self, layout: str = "bipartite"):
        if layout not in LAYOUTS:
            raise InvalidRequestError(f"Unknown layout {layout!r}")
        self._layout = layout

    @property
    def layout(self) -> str:
        return self._layout

    def aggregate(self, entries: Iterable[FlowEntry]) -> Aggregation:
        by_category = Tally()
        by_account = Tally()
        by_pair = Tally()
        count = 0
        for entry in entries:
            by_category.add(entry.category, entry.amount)
            by_account.add(entry.account, entry.amount)
            by_pair.add((entry.account, entry.category), entry.amount)
            count += 1

        totals = Totals(
            spending=round_money(by_category.total()),
            by_category=[CategoryTotal(c, t) for c, t in by_category.ranked()],
            by_account=[AccountTotal(a, t) for a, t in by_account.ranked()],
        )
        graph = self._build_graph(by_category, by_account, by_pair)
        return Aggregation(graph=graph, totals=totals, count=count)

    def _build_graph(self, by_category: Tally, by_account: Tally, by_pair: Tally) -> FlowGraph:
        if not len(by_pair):
            return FlowGraph()
        nodes = [FlowNode(_node_id("account", a), a, "account") for a in by_account.keys()]
        if self._layout == "tripartite":
            nodes.append(FlowNode(_node_id("hub", HUB_LABEL), HUB_LABEL, "hub"))
        nodes.extend(
            FlowNode(_node_id("category", c), format_category_label(c), "category")
            for c in by_category.keys()
        )

        if self._layout == "bipartite":
            edges = [
                FlowEdge(
                    _node_id("account", account),
                    _node_id("category", category),
                    round_money(value),
                )
                for (account, category), value in by_pair.items()
            ]
        else:
            hub = _node_id("hub", HUB_LABEL)
            edges = [
                FlowEdge(_node_id("account", account), hub, round_money(value))
                for account, value in by_account.items()
            ]
            edges.extend(
                FlowEdge(hub, _node_id("category", category), round_money(value))
                for category, value in by_category.items()
            )
        return FlowGraph(nodes=nodes, edges=edges)
