"""Balance calculation service.

Computes cash-flow totals, safe-to-spend and net worth from store records.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from nestfin.domain.models import Account, Transaction, UserProfile, round_half_up
from nestfin.services.analytics import ALL_ACCOUNTS, filter_transactions
from nestfin.services.periods import DateRange

ZERO = Decimal("0")


@dataclass(frozen=True)
class CashFlowTotals:
    """Income and expenses for a period, recurring amounts included."""

    income: Decimal = ZERO
    expenses: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


@dataclass(frozen=True)
class NetWorth:
    """Assets, liabilities (as a positive magnitude) and their difference."""

    assets: Decimal = ZERO
    liabilities: Decimal = ZERO

    @property
    def net_worth(self) -> Decimal:
        return self.assets - self.liabilities


def _recurring(profile: Optional[UserProfile]) -> tuple[Decimal, Decimal]:
    if profile is None:
        return ZERO, ZERO
    return profile.recurring_income, profile.recurring_expenses


class BalanceService:
    """Calculates balances from transactions and accounts.

    Every method is pure; callers pass the records they want counted.
    """

    def activity(self, transactions: Iterable[Transaction]) -> Decimal:
        """Net transaction activity (income - expenses).

        Example:
            >>> service.activity([income_300, expense_100])
            Decimal('200')
        """
        total = ZERO
        for t in transactions:
            if t.is_income:
                total += t.amount
            elif t.is_expense:
                total -= t.amount
        return total

    def totals(
        self,
        transactions: Iterable[Transaction],
        date_range: Optional[DateRange] = None,
        account_filter: str = ALL_ACCOUNTS,
        profile: Optional[UserProfile] = None,
    ) -> CashFlowTotals:
        """Income and expense totals for a window.

        Recurring income and expenses from the profile are added on top of
        the transactions that fall inside the window.
        """
        income, expenses = _recurring(profile)
        for t in filter_transactions(transactions, date_range, account_filter):
            if t.is_income:
                income += t.amount
            elif t.is_expense:
                expenses += t.amount
        return CashFlowTotals(income=income, expenses=expenses)

    def safe_to_spend(
        self,
        profile: Optional[UserProfile],
        transactions: Iterable[Transaction],
        date_range: Optional[DateRange] = None,
    ) -> Decimal:
        """Recurring baseline plus in-range activity.

        ``(recurring income - recurring expenses) + income - expenses``,
        counting only transactions whose date lies inside ``date_range``.
        A missing profile counts as zero recurring amounts.

        Example:
            >>> profile = UserProfile("u1", recurring_income=Decimal("2000"),
            ...                       recurring_expenses=Decimal("1200"))
            >>> service.safe_to_spend(profile, [income_300, expense_100])
            Decimal('1000')
        """
        income, expenses = _recurring(profile)
        in_range = filter_transactions(transactions, date_range)
        return (income - expenses) + self.activity(in_range)

    def monthly_savings(
        self,
        profile: Optional[UserProfile],
        transactions: Iterable[Transaction],
    ) -> Decimal:
        """Amount that can be set aside per month, never negative.

        Uses the same baseline as safe-to-spend over already-filtered
        transactions.
        """
        income, expenses = _recurring(profile)
        return max((income - expenses) + self.activity(transactions), ZERO)

    def savings_rate(self, totals: CashFlowTotals, net_savings: Decimal) -> int:
        """Share of income kept aside, as a whole percentage (0 or more)."""
        if totals.income <= 0:
            return 0
        rate = max(net_savings * 100 / totals.income, ZERO)
        return int(round_half_up(rate))

    def net_worth(self, accounts: Iterable[Account]) -> NetWorth:
        """Sum account balances into assets and liabilities.

        Liability balances count by magnitude, so a debt stored as either
        -1500 or 1500 reduces net worth by 1500.

        Example:
            >>> service.net_worth([checking_5000, loan_minus_1500]).net_worth
            Decimal('3500')
        """
        assets = ZERO
        liabilities = ZERO
        for account in accounts:
            if account.is_liability:
                liabilities += abs(account.balance)
            else:
                assets += account.balance
        return NetWorth(assets=assets, liabilities=liabilities)
