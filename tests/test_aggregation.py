"""Tests for spend aggregation."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from spendflow.aggregation import (
    AggregationEngine,
    FlowEntry,
    Window,
    account_label,
    current_month,
    is_included,
    month_range,
    round_money,
)
from spendflow.db.models import Account, Transaction
from spendflow.errors import InvalidRequestError


def make_transaction(
    amount: str = "10.00",
    day: int = 15,
    pending: bool = False,
    category_primary: str | None = "FOOD_AND_DRINK",
    account_id: int = 1,
) -> Transaction:
    """Create a test transaction dated in March 2024."""
    return Transaction(
        id=None,
        external_id="txn",
        account_id=account_id,
        date=datetime(2024, 3, day, 12, tzinfo=timezone.utc),
        amount=Decimal(amount),
        name="SHOP",
        pending=pending,
        category_primary=category_primary,
    )


def entry(account: str, category: str, amount: str) -> FlowEntry:
    return FlowEntry(account=account, category=category, amount=Decimal(amount))


MARCH = month_range("2024-03")


class TestMonthRange:
    """Tests for month windows."""

    def test_regular_month(self):
        """Test a month in the middle of the year."""
        assert MARCH.start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert MARCH.end == datetime(2024, 4, 1, tzinfo=timezone.utc)

    def test_december_rolls_year(self):
        """Test that December ends at the next January."""
        window = month_range("2023-12")
        assert window.end == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["2024-13", "2024", "March", "2024-03-01", "9999-12"])
    def test_invalid(self, value):
        """Test rejecting malformed months."""
        with pytest.raises(InvalidRequestError):
            month_range(value)

    def test_window_must_be_ordered(self):
        """Test that an empty window is rejected."""
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)
        with pytest.raises(InvalidRequestError):
            Window(start=start, end=start)

    def test_current_month(self):
        """Test formatting the current month in UTC."""
        assert current_month(datetime(2024, 3, 31, 23, tzinfo=timezone.utc)) == "2024-03"


class TestIsIncluded:
    """Tests for the spend inclusion predicate."""

    def test_posted_outflow_included(self):
        """Test a normal purchase counts."""
        assert is_included(make_transaction(), MARCH)

    def test_pending_excluded(self):
        """Test pending transactions are left out."""
        assert not is_included(make_transaction(pending=True), MARCH)

    def test_inflows_excluded(self):
        """Test refunds, income and zero amounts are left out."""
        assert not is_included(make_transaction(amount="-10.00"), MARCH)
        assert not is_included(make_transaction(amount="0"), MARCH)

    def test_transfers_excluded(self):
        """Test transfer categories are left out."""
        assert not is_included(make_transaction(category_primary="TRANSFER_OUT"), MARCH)
        assert not is_included(make_transaction(category_primary="TRANSFER_IN"), MARCH)

    def test_missing_category_included(self):
        """Test transactions without a provider category still count."""
        assert is_included(make_transaction(category_primary=None), MARCH)

    def test_window_and_account(self):
        """Test the date window and account filter."""
        april = month_range("2024-04")
        assert not is_included(make_transaction(), april)
        assert is_included(make_transaction(account_id=2), MARCH, account_id=2)
        assert not is_included(make_transaction(account_id=1), MARCH, account_id=2)


class TestRoundMoney:
    """Tests for round_money."""

    def test_half_even(self):
        """Test banker's rounding at the cent."""
        assert round_money(Decimal("0.125")) == Decimal("0.12")
        assert round_money(Decimal("0.135")) == Decimal("0.14")


class TestAccountLabel:
    """Tests for account_label."""

    def test_with_and_without_mask(self):
        """Test the mask suffix."""
        account = Account(id=1, external_id="a", item_id=1, name="Checking", type="depository")
        assert account_label(account) == "Checking"
        account.mask = "1234"
        assert account_label(account) == "Checking •1234"


class TestAggregationEngine:
    """Tests for AggregationEngine."""

    def test_empty(self):
        """Test that no entries give an empty graph and zero totals."""
        result = AggregationEngine().aggregate([])
        assert result.graph.nodes == []
        assert result.graph.edges == []
        assert result.totals.spending == Decimal("0.00")
        assert result.totals.by_category == []
        assert result.count == 0

    def test_bipartite(self):
        """Test one edge per account and category pair."""
        result = AggregationEngine().aggregate(
            [
                entry("Checking", "FOOD_AND_DRINK", "10.00"),
                entry("Checking", "FOOD_AND_DRINK", "5.50"),
                entry("Card", "TRAVEL", "100.00"),
                entry("Checking", "TRAVEL", "20.00"),
            ]
        )
        edges = {(e.source, e.target): e.value for e in result.graph.edges}
        assert edges == {
            ("account:Card", "category:TRAVEL"): Decimal("100.00"),
            ("account:Checking", "category:FOOD_AND_DRINK"): Decimal("15.50"),
            ("account:Checking", "category:TRAVEL"): Decimal("20.00"),
        }
        labels = {n.id: n.label for n in result.graph.nodes}
        assert labels["category:FOOD_AND_DRINK"] == "Food And Drink"
        assert result.count == 4

    def test_totals_ranked(self):
        """Test that totals are sorted by amount, then name."""
        result = AggregationEngine().aggregate(
            [
                entry("A", "Coffee", "5.00"),
                entry("B", "Books", "5.00"),
                entry("B", "Travel", "50.00"),
            ]
        )
        assert [c.category for c in result.totals.by_category] == ["Travel", "Books", "Coffee"]
        assert [(a.account, a.total) for a in result.totals.by_account] == [
            ("B", Decimal("55.00")),
            ("A", Decimal("5.00")),
        ]

    def test_flow_conservation(self):
        """Test that every total equals the sum of its edges."""
        entries = [
            entry("A", "Coffee", "3.333"),
            entry("A", "Books", "1.10"),
            entry("B", "Coffee", "2.20"),
        ]
        result = AggregationEngine().aggregate(entries)
        edge_sum = sum(e.value for e in result.graph.edges)
        assert edge_sum == sum(c.total for c in result.totals.by_category)
        assert result.totals.spending == Decimal("6.63")

    def test_sums_exactly_before_rounding(self):
        """Test that rounding happens once on the exact sum."""
        result = AggregationEngine().aggregate(
            [entry("A", "Fees", "0.005"), entry("A", "Fees", "0.005"), entry("A", "Fees", "0.005")]
        )
        assert result.totals.spending == Decimal("0.02")

    def test_tripartite(self):
        """Test routing every account through the hub."""
        result = AggregationEngine("tripartite").aggregate(
            [
                entry("A", "Coffee", "4.00"),
                entry("B", "Coffee", "6.00"),
                entry("B", "Books", "1.00"),
            ]
        )
        edges = {(e.source, e.target): e.value for e in result.graph.edges}
        assert edges == {
            ("account:A", "hub:Spending"): Decimal("4.00"),
            ("account:B", "hub:Spending"): Decimal("7.00"),
            ("hub:Spending", "category:Books"): Decimal("1.00"),
            ("hub:Spending", "category:Coffee"): Decimal("10.00"),
        }
        assert [n.kind for n in result.graph.nodes].count("hub") == 1

    def test_account_and_category_with_same_name(self):
        """Test that node IDs do not collide across kinds."""
        result = AggregationEngine().aggregate([entry("Travel", "Travel", "1.00")])
        assert {n.id for n in result.graph.nodes} == {"account:Travel", "category:Travel"}

    def test_unknown_layout(self):
        """Test rejecting an unknown layout."""
        with pytest.raises(InvalidRequestError):
            AggregationEngine("circular")
