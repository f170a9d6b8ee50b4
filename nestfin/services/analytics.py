"""Spending analytics: category breakdown, monthly trend, cash-flow waterfall.

Every method is a pure function of its arguments. Nothing here reads the
store or keeps state between calls; memoization happens in the selector
layer.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from nestfin.domain.models import (
    DEFAULT_EXPENSE_CATEGORY,
    Transaction,
    round_half_up,
)
from nestfin.services.periods import DateRange, month_start, next_month, previous_month

ZERO = Decimal("0")
ALL_ACCOUNTS = "all"

RECURRING_LABEL = "Recurring essentials"
OTHER_SPEND_LABEL = "Other spend"
NET_LABEL = "Net savings"


@dataclass(frozen=True)
class CategoryAmount:
    """Summed spend for one category."""

    label: str
    amount: Decimal
    percentage: Decimal  # Share of total spend, 0-100


@dataclass(frozen=True)
class TrendEntry:
    """Category spend in a month and the month before it."""

    category: str
    current: Decimal
    previous: Decimal

    @property
    def change(self) -> Decimal:
        return self.current - self.previous


@dataclass(frozen=True)
class WaterfallStep:
    """One bar of the cash-flow waterfall.

    ``start`` and ``end`` are running balances before and after the step.
    The final total step spans from zero to the running balance.
    """

    key: str
    name: str
    kind: str  # "income", "expense", "net-positive" or "net-negative"
    value: Decimal
    start: Decimal
    end: Decimal
    sequence: int
    is_total: bool = False


def filter_transactions(
    transactions: Iterable[Transaction],
    date_range: Optional[DateRange] = None,
    account_filter: str = ALL_ACCOUNTS,
    now: Optional[datetime] = None,
) -> tuple[Transaction, ...]:
    """Transactions inside a date range and (optionally) one account.

    Args:
        transactions: Input transactions (order preserved)
        date_range: Inclusive window; None means all time
        account_filter: "all" or an account id
        now: Date assumed for transactions still awaiting a server timestamp

    Returns:
        Matching transactions
    """
    date_range = date_range or DateRange.all_time()
    now = now or datetime.now()
    return tuple(
        tx
        for tx in transactions
        if date_range.contains(tx.date, now)
        and (account_filter == ALL_ACCOUNTS or (tx.account_id or "") == account_filter)
    )


class AnalyticsService:
    """Derives dashboard aggregates from transaction lists.

    Example:
        >>> service = AnalyticsService()
        >>> breakdown = service.category_breakdown(transactions)
        >>> [(entry.label, entry.amount) for entry in breakdown]
        [('Food', Decimal('50')), ('Transport', Decimal('25'))]
    """

    def __init__(self, default_category: str = DEFAULT_EXPENSE_CATEGORY):
        self._default_category = default_category

    def category_breakdown(
        self,
        transactions: Iterable[Transaction],
        limit: Optional[int] = None,
        recurring_expenses: Decimal = ZERO,
    ) -> list[CategoryAmount]:
        """Group expenses by category and sort by summed amount.

        Groups with equal sums keep first-seen order. Zero amounts do not
        create a group.

        Args:
            transactions: Transactions to aggregate (income is ignored)
            limit: Keep only the largest N groups
            recurring_expenses: Optional fixed-cost bucket added first

        Returns:
            Entries sorted by amount, descending
        """
        totals: dict[str, Decimal] = {}
        if recurring_expenses > 0:
            totals[RECURRING_LABEL] = recurring_expenses

        for tx in transactions:
            if not tx.is_expense or not tx.amount:
                continue
            label = tx.category or self._default_category
            totals[label] = totals.get(label, ZERO) + tx.amount

        total_spend = sum(totals.values(), ZERO)
        entries = [
            CategoryAmount(
                label=label,
                amount=amount,
                percentage=(
                    round_half_up(amount * 100 / total_spend, 2) if total_spend > 0 else ZERO
                ),
            )
            for label, amount in totals.items()
        ]
        entries.sort(key=lambda entry: entry.amount, reverse=True)
        return entries[:limit] if limit else entries

    def _expenses_by_category(
        self,
        transactions: Iterable[Transaction],
        start: datetime,
        end: datetime,
        account_filter: str,
    ) -> dict[str, Decimal]:
        # Half-open [start, end)
        totals: dict[str, Decimal] = {}
        for tx in transactions:
            if not tx.is_expense or tx.date is None or tx.amount <= 0:
                continue
            if not start <= tx.date < end:
                continue
            if account_filter != ALL_ACCOUNTS and (tx.account_id or "") != account_filter:
                continue
            label = tx.category or self._default_category
            totals[label] = totals.get(label, ZERO) + tx.amount
        return totals

    def spending_trend(
        self,
        transactions: Iterable[Transaction],
        reference_month: date,
        top_n: int = 5,
        account_filter: str = ALL_ACCOUNTS,
    ) -> list[TrendEntry]:
        """Compare the top categories of a month with the month before.

        Args:
            transactions: All transactions
            reference_month: Any date in the month of interest
            top_n: Number of categories to return
            account_filter: "all" or an account id

        Returns:
            Top categories by current-month spend, each paired with its
            prior-month spend (0 if none). Empty if the month has no spend.
        """
        transactions = tuple(transactions)
        current_start = datetime.combine(month_start(reference_month), datetime.min.time())
        following_start = datetime.combine(next_month(reference_month), datetime.min.time())
        prior_start = datetime.combine(previous_month(reference_month), datetime.min.time())

        current = self._expenses_by_category(
            transactions, current_start, following_start, account_filter
        )
        if not current:
            return []
        prior = self._expenses_by_category(
            transactions, prior_start, current_start, account_filter
        )

        top = sorted(current.items(), key=lambda item: item[1], reverse=True)[:top_n]
        return [
            TrendEntry(
                category=category,
                current=round_half_up(amount, 2),
                previous=round_half_up(prior.get(category, ZERO), 2),
            )
            for category, amount in top
        ]

    def cash_flow_waterfall(
        self,
        income: Decimal,
        breakdown: Sequence[CategoryAmount],
        total_expenses: Decimal,
        top_n: int = 4,
    ) -> list[WaterfallStep]:
        """Build a running-balance waterfall from income through spend to net.

        Categories are applied in the order given (capped at ``top_n``).
        Spend not covered by those categories becomes one "Other spend"
        step, omitted when zero. The final step is the net running total.

        Returns:
            Steps in display order; empty when there is no income
        """
        if income <= 0:
            return []

        steps: list[tuple[str, str, str, Decimal]] = [("income", "Income", "income", income)]
        tracked = ZERO
        for entry in breakdown[:top_n]:
            if entry.amount <= 0:
                continue
            tracked += entry.amount
            steps.append((f"expense-{entry.label}", entry.label, "expense", -entry.amount))

        remainder = max(total_expenses - tracked, ZERO)
        if remainder > 0:
            steps.append(("expense-other", OTHER_SPEND_LABEL, "expense", -remainder))

        result = []
        running = ZERO
        for sequence, (key, name, kind, value) in enumerate(steps):
            start = running
            running += value
            result.append(WaterfallStep(key, name, kind, value, start, running, sequence))

        result.append(
            WaterfallStep(
                key="net",
                name=NET_LABEL,
                kind="net-positive" if running >= 0 else "net-negative",
                value=running,
                start=ZERO,
                end=running,
                sequence=len(steps),
                is_total=True,
            )
        )
        return result

    def top_transactions(
        self, transactions: Iterable[Transaction], limit: int = 5
    ) -> list[Transaction]:
        """Largest transactions by amount."""
        return sorted(transactions, key=lambda tx: abs(tx.amount), reverse=True)[:limit]
