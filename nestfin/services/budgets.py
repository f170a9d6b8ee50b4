"""Budget tracking: overall progress, per-category summaries and suggestions."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from nestfin.domain.models import (
    DEFAULT_EXPENSE_CATEGORY,
    Budget,
    Transaction,
    UserProfile,
    round_half_up,
)
from nestfin.services.analytics import filter_transactions
from nestfin.services.periods import DateRange, month_bounds

ZERO = Decimal("0")
ONE = Decimal("1")

SUGGESTION_COUNT = 3
MIN_SUGGESTION = Decimal("25")


@dataclass(frozen=True)
class BudgetSummary:
    """Month-to-date standing of one budget.

    ``progress`` is in [0, 1]. A zero limit with any spend counts as full.
    """

    budget: Budget
    spent: Decimal
    remaining: Decimal
    progress: Decimal

    @property
    def category(self) -> str:
        return self.budget.category

    @property
    def is_over(self) -> bool:
        return self.spent > self.budget.limit


@dataclass(frozen=True)
class BudgetSuggestion:
    category: str
    amount: Decimal
    kind: str  # "new" or "adjust"
    reason: str


def _round_to_tens(value: Decimal) -> Decimal:
    return max(round_half_up(value / 10) * 10, MIN_SUGGESTION)


class BudgetService:
    """Compares budgets against spending.

    Example:
        >>> service = BudgetService()
        >>> service.budget_progress([groceries_400], transactions, month_bounds(today))
        38
    """

    def __init__(self, default_category: str = DEFAULT_EXPENSE_CATEGORY):
        self._default_category = default_category

    def spent_by_category(self, transactions: Iterable[Transaction]) -> dict[str, Decimal]:
        """Expense totals per category, in first-seen order."""
        totals: dict[str, Decimal] = {}
        for tx in transactions:
            if not tx.is_expense:
                continue
            category = tx.category or self._default_category
            totals[category] = totals.get(category, ZERO) + tx.amount
        return totals

    def total_limit(self, budgets: Iterable[Budget]) -> Decimal:
        return sum((budget.limit for budget in budgets), ZERO)

    def budget_progress(
        self,
        budgets: Iterable[Budget],
        transactions: Iterable[Transaction],
        date_range: Optional[DateRange] = None,
    ) -> int:
        """Overall budget use as a whole percentage, capped at 100.

        Returns 0 when no limit is set (total limit <= 0).
        """
        total = self.total_limit(budgets)
        if total <= 0:
            return 0
        spent = sum(
            (tx.amount for tx in filter_transactions(transactions, date_range) if tx.is_expense),
            ZERO,
        )
        return int(round_half_up(min(Decimal("100"), spent * 100 / total)))

    def budget_summaries(
        self,
        budgets: Iterable[Budget],
        transactions: Iterable[Transaction],
        month: date,
    ) -> list[BudgetSummary]:
        """One summary per budget for the month containing ``month``.

        Sorted by category, ignoring case.
        """
        spent_map = self.spent_by_category(filter_transactions(transactions, month_bounds(month)))
        summaries = []
        for budget in sorted(budgets, key=lambda b: b.category.lower()):
            spent = spent_map.get(budget.category, ZERO)
            if budget.limit > 0:
                progress = min(spent / budget.limit, ONE)
            else:
                progress = ONE if spent > 0 else ZERO
            summaries.append(
                BudgetSummary(
                    budget=budget,
                    spent=spent,
                    remaining=budget.limit - spent,
                    progress=progress,
                )
            )
        return summaries

    def unbudgeted_categories(
        self,
        budgets: Iterable[Budget],
        transactions: Iterable[Transaction],
        month: date,
    ) -> list[tuple[str, Decimal]]:
        """Categories with spend this month but no budget, as (category, spent)."""
        budgeted = {budget.category for budget in budgets}
        spent_map = self.spent_by_category(filter_transactions(transactions, month_bounds(month)))
        return [
            (category, spent)
            for category, spent in spent_map.items()
            if category not in budgeted
        ]

    def remaining_to_budget(
        self,
        budgets: Iterable[Budget],
        transactions: Iterable[Transaction],
        month: date,
        profile: Optional[UserProfile] = None,
    ) -> Decimal:
        """Monthly income (recurring plus logged) not yet allocated to a budget."""
        income = profile.recurring_income if profile else ZERO
        for tx in filter_transactions(transactions, month_bounds(month)):
            if tx.is_income:
                income += tx.amount
        return income - self.total_limit(budgets)

    def can_add_budget(
        self,
        budgets: Iterable[Budget],
        category: str,
        profile: Optional[UserProfile],
        max_free: int,
    ) -> bool:
        """Check the free-plan category cap.

        Editing an existing category is always allowed; premium plans have
        no cap.
        """
        if not category or (profile is not None and profile.is_premium):
            return True
        existing = {budget.category.lower() for budget in budgets if budget.category}
        if category.lower() in existing:
            return True
        return len(existing) < max_free

    def suggest_budgets(
        self,
        summaries: Sequence[BudgetSummary],
        unbudgeted: Sequence[tuple[str, Decimal]],
    ) -> list[BudgetSuggestion]:
        """Up to three allocation suggestions.

        Unbudgeted spend comes first, then overspent budgets (worst ratio
        first). With neither, the largest spending categories are offered.
        Amounts are rounded to tens with a floor of 25.
        """
        suggestions = []
        for category, spent in unbudgeted[:SUGGESTION_COUNT]:
            suggestions.append(
                BudgetSuggestion(
                    category,
                    _round_to_tens(spent * Decimal("1.1")),
                    "new",
                    "Recent spending detected without an allocation.",
                )
            )

        overspent = sorted(
            (s for s in summaries if s.budget.limit > 0 and s.is_over),
            key=lambda s: s.spent / s.budget.limit,
            reverse=True,
        )
        for summary in overspent:
            if len(suggestions) >= SUGGESTION_COUNT:
                break
            delta = summary.spent - summary.budget.limit
            suggestions.append(
                BudgetSuggestion(
                    summary.category,
                    _round_to_tens(summary.budget.limit + delta * Decimal("0.6")),
                    "adjust",
                    "You keep overspending here. Consider expanding the limit.",
                )
            )

        if not suggestions:
            largest = sorted(
                (s for s in summaries if s.spent > 0), key=lambda s: s.spent, reverse=True
            )
            for summary in largest[:SUGGESTION_COUNT]:
                suggestions.append(
                    BudgetSuggestion(
                        summary.category,
                        _round_to_tens(max(summary.spent, summary.budget.limit)),
                        "adjust",
                        "Largest spending category this month.",
                    )
                )

        return suggestions[:SUGGESTION_COUNT]
