"""Tests for spending analytics."""

import itertools
from datetime import date, datetime
from decimal import Decimal

import pytest

from nestfin.domain.models import TransactionType
from nestfin.services.analytics import (
    AnalyticsService,
    CategoryAmount,
    filter_transactions,
)
from nestfin.services.periods import month_bounds


@pytest.fixture
def service():
    return AnalyticsService()


@pytest.fixture
def expenses(make_transaction):
    return [
        make_transaction(id="t1", amount=Decimal("20"), category="Food"),
        make_transaction(id="t2", amount=Decimal("25"), category="Transport"),
        make_transaction(id="t3", amount=Decimal("30"), category="Food"),
    ]


class TestCategoryBreakdown:
    """Grouping and ordering of expense categories."""

    def test_groups_and_sorts_descending(self, service, expenses):
        breakdown = service.category_breakdown(expenses)

        assert [(e.label, e.amount) for e in breakdown] == [
            ("Food", Decimal("50")),
            ("Transport", Decimal("25")),
        ]

    def test_percentages(self, service, expenses):
        breakdown = service.category_breakdown(expenses)
        assert [e.percentage for e in breakdown] == [Decimal("66.67"), Decimal("33.33")]

    def test_result_independent_of_input_order(self, service, expenses):
        expected = service.category_breakdown(expenses)

        for ordering in itertools.permutations(expenses):
            assert service.category_breakdown(ordering) == expected

    def test_income_and_zero_amounts_ignored(self, service, make_transaction):
        transactions = [
            make_transaction(id="t1", type=TransactionType.INCOME, amount=Decimal("500"), category="Salary"),
            make_transaction(id="t2", amount=Decimal("0"), category="Free"),
            make_transaction(id="t3", amount=Decimal("5"), category="Food"),
        ]

        assert [e.label for e in service.category_breakdown(transactions)] == ["Food"]

    def test_ties_keep_first_seen_order(self, service, make_transaction):
        transactions = [
            make_transaction(id="t1", amount=Decimal("10"), category="Books"),
            make_transaction(id="t2", amount=Decimal("10"), category="Apps"),
        ]

        assert [e.label for e in service.category_breakdown(transactions)] == ["Books", "Apps"]

    def test_empty_category_uses_default(self, service, make_transaction):
        breakdown = service.category_breakdown([make_transaction(category="")])
        assert breakdown[0].label == "General"

    def test_limit(self, service, expenses):
        assert len(service.category_breakdown(expenses, limit=1)) == 1

    def test_recurring_bucket(self, service, expenses):
        breakdown = service.category_breakdown(expenses, recurring_expenses=Decimal("1200"))
        assert breakdown[0] == CategoryAmount("Recurring essentials", Decimal("1200"), Decimal("94.12"))

    def test_empty(self, service):
        assert service.category_breakdown([]) == []


class TestFilterTransactions:
    def test_date_and_account(self, make_transaction):
        inside = make_transaction(id="t1", account_id="acc-1")
        other_account = make_transaction(id="t2", account_id="acc-2")
        outside = make_transaction(id="t3", account_id="acc-1", date=datetime(2024, 2, 1))

        result = filter_transactions(
            [inside, other_account, outside], month_bounds(date(2024, 3, 1)), "acc-1"
        )

        assert result == (inside,)

    def test_pending_transaction_falls_in_current_month(self, make_transaction):
        pending = make_transaction(id="t1", date=None)
        march = month_bounds(date(2024, 3, 1))

        assert filter_transactions([pending], march, now=datetime(2024, 3, 20, 9, 0)) == (pending,)
        assert filter_transactions([pending], march, now=datetime(2024, 4, 2, 9, 0)) == ()


class TestSpendingTrend:
    def test_pairs_with_previous_month(self, service, make_transaction):
        transactions = [
            make_transaction(id="t1", amount=Decimal("80"), category="Food", date=datetime(2024, 3, 5)),
            make_transaction(id="t2", amount=Decimal("40"), category="Fun", date=datetime(2024, 3, 6)),
            make_transaction(id="t3", amount=Decimal("50"), category="Food", date=datetime(2024, 2, 29)),
            make_transaction(id="t4", amount=Decimal("99"), category="Food", date=datetime(2024, 1, 15)),
        ]

        trend = service.spending_trend(transactions, date(2024, 3, 20))

        assert [(e.category, e.current, e.previous) for e in trend] == [
            ("Food", Decimal("80.00"), Decimal("50.00")),
            ("Fun", Decimal("40.00"), Decimal("0.00")),
        ]
        assert trend[0].change == Decimal("30.00")

    def test_month_boundary_is_half_open(self, service, make_transaction):
        transactions = [
            make_transaction(id="t1", amount=Decimal("10"), category="Food", date=datetime(2024, 4, 1)),
        ]
        assert service.spending_trend(transactions, date(2024, 3, 1)) == []

    def test_year_rollover(self, service, make_transaction):
        transactions = [
            make_transaction(id="t1", amount=Decimal("10"), category="Food", date=datetime(2024, 1, 2)),
            make_transaction(id="t2", amount=Decimal("30"), category="Food", date=datetime(2023, 12, 30)),
        ]

        [entry] = service.spending_trend(transactions, date(2024, 1, 10))

        assert entry.previous == Decimal("30.00")

    def test_top_n(self, service, make_transaction):
        transactions = [
            make_transaction(id=f"t{i}", amount=Decimal(i + 1), category=f"C{i}") for i in range(7)
        ]

        trend = service.spending_trend(transactions, date(2024, 3, 1), top_n=3)

        assert [e.category for e in trend] == ["C6", "C5", "C4"]

    def test_account_filter(self, service, make_transaction):
        transactions = [
            make_transaction(id="t1", amount=Decimal("10"), category="Food", account_id="acc-1"),
            make_transaction(id="t2", amount=Decimal("20"), category="Fun", account_id="acc-2"),
        ]

        trend = service.spending_trend(transactions, date(2024, 3, 1), account_filter="acc-2")

        assert [e.category for e in trend] == ["Fun"]


class TestCashFlowWaterfall:
    """Running-balance steps from income to net."""

    def test_steps_in_order(self, service):
        breakdown = [
            CategoryAmount("Rent", Decimal("1200"), Decimal("0")),
            CategoryAmount("Food", Decimal("300"), Decimal("0")),
        ]

        steps = service.cash_flow_waterfall(Decimal("2000"), breakdown, Decimal("1600"))

        assert [(s.key, s.value, s.start, s.end) for s in steps] == [
            ("income", Decimal("2000"), Decimal("0"), Decimal("2000")),
            ("expense-Rent", Decimal("-1200"), Decimal("2000"), Decimal("800")),
            ("expense-Food", Decimal("-300"), Decimal("800"), Decimal("500")),
            ("expense-other", Decimal("-100"), Decimal("500"), Decimal("400")),
            ("net", Decimal("400"), Decimal("0"), Decimal("400")),
        ]
        assert [s.sequence for s in steps] == [0, 1, 2, 3, 4]
        assert steps[-1].is_total
        assert steps[-1].kind == "net-positive"

    def test_other_spend_omitted_when_covered(self, service):
        breakdown = [CategoryAmount("Rent", Decimal("1200"), Decimal("0"))]

        steps = service.cash_flow_waterfall(Decimal("1000"), breakdown, Decimal("1200"))

        assert [s.name for s in steps] == ["Income", "Rent", "Net savings"]
        assert steps[-1].value == Decimal("-200")
        assert steps[-1].kind == "net-negative"

    def test_only_top_categories_are_steps(self, service):
        breakdown = [CategoryAmount(f"C{i}", Decimal("10"), Decimal("0")) for i in range(6)]

        steps = service.cash_flow_waterfall(Decimal("100"), breakdown, Decimal("60"), top_n=4)

        assert [s.key for s in steps] == [
            "income", "expense-C0", "expense-C1", "expense-C2", "expense-C3", "expense-other", "net"
        ]
        assert steps[-2].value == Decimal("-20")

    @pytest.mark.parametrize("income", [Decimal("0"), Decimal("-5")])
    def test_no_income_is_empty(self, service, income):
        breakdown = [CategoryAmount("Rent", Decimal("100"), Decimal("0"))]
        assert service.cash_flow_waterfall(income, breakdown, Decimal("100")) == []


def test_top_transactions(service, make_transaction):
    transactions = [
        make_transaction(id="small", amount=Decimal("5")),
        make_transaction(id="big", amount=Decimal("500")),
        make_transaction(id="mid", amount=Decimal("50")),
    ]

    assert [tx.id for tx in service.top_transactions(transactions, limit=2)] == ["big", "mid"]
