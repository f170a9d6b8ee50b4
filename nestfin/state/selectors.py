"""Selectors and memoized derived views over the collection store.

Consumers never read collections directly for display. They either call a
DerivedViews method (memoized on the store revision and its parameters) or
hold a Selection, which re-runs a selector on every new revision but only
notifies when the selected value actually changed.
"""

import functools
import logging
import operator
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Generic, Optional, TypeVar, TYPE_CHECKING

from PySide6.QtCore import QObject, Signal, SignalInstance

from nestfin.domain.models import UserProfile
from nestfin.domain.settings import AnalyticsSettings, PlanSettings
from nestfin.services.analytics import (
    ALL_ACCOUNTS,
    AnalyticsService,
    CategoryAmount,
    TrendEntry,
    WaterfallStep,
    filter_transactions,
)
from nestfin.services.balance import BalanceService, CashFlowTotals, NetWorth
from nestfin.services.budgets import BudgetService, BudgetSummary
from nestfin.services.forecast import ForecastService, ProjectionPoint
from nestfin.services.goals import GoalService, GoalSummary
from nestfin.services.periods import DateRange

if TYPE_CHECKING:
    from nestfin.state.session import SessionGate
    from nestfin.state.store import DataStore, StoreState

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Selection(QObject, Generic[T]):
    """A selected value that follows the store.

    The selector runs once per store revision. ``changed`` is emitted only
    when ``is_equal(previous, current)`` is false. The default comparison
    is identity, which suits selectors that return records or tuples taken
    straight from the immutable state.

    Example:
        >>> goals = store.selection(lambda state: state.goals)
        >>> goals.changed.connect(render_goals)
        >>> count = store.selection(lambda state: len(state.goals), operator.eq)
    """

    changed = Signal(object)

    def __init__(
        self,
        store: "DataStore",
        fn: Callable[["StoreState"], T],
        is_equal: Callable[[T, T], bool] = operator.is_,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._store = store
        self._fn = fn
        self._is_equal = is_equal
        self._revision = store.revision
        self._value = fn(store.state)
        self._attached = True
        self._external: list[SignalInstance] = []
        store.state_changed.connect(self._on_state_changed)

    @property
    def value(self) -> T:
        return self._value

    @property
    def revision(self) -> int:
        """Store revision the value was last evaluated at."""
        return self._revision

    def _on_state_changed(self, state: "StoreState") -> None:
        if state.revision == self._revision:
            return
        self._revision = state.revision
        self._evaluate(state)

    def refresh(self) -> None:
        """Re-run the selector against the current state.

        For inputs that live outside the store, such as the user profile.
        Does nothing once the selection is closed.
        """
        if not self._attached:
            return
        self._revision = self._store.revision
        self._evaluate(self._store.state)

    def refresh_on(self, signal: SignalInstance) -> None:
        """Also re-run the selector whenever ``signal`` fires."""
        signal.connect(self._on_external_change)
        self._external.append(signal)

    def _on_external_change(self, *_args) -> None:
        self.refresh()

    def _evaluate(self, state: "StoreState") -> None:
        value = self._fn(state)
        if self._is_equal(self._value, value):
            return
        self._value = value
        self.changed.emit(value)

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Connect a callback to ``changed``. Returns a disconnect callable."""
        self.changed.connect(callback)

        def unsubscribe() -> None:
            try:
                self.changed.disconnect(callback)
            except (RuntimeError, TypeError):
                pass  # Already disconnected

        return unsubscribe

    def close(self) -> None:
        """Stop following the store."""
        if not self._attached:
            return
        self._attached = False
        try:
            self._store.state_changed.disconnect(self._on_state_changed)
        except (RuntimeError, TypeError):
            pass  # Store already destroyed
        signals = self._external
        self._external = []
        for signal in signals:
            try:
                signal.disconnect(self._on_external_change)
            except (RuntimeError, TypeError):
                pass  # Sender already destroyed


class MemoizedView(Generic[T]):
    """Single-entry cache for a view function of ``(state, *params)``.

    The cached value is reused while both the state revision and the
    parameters compare equal to the previous call.
    """

    _MISSING = object()

    def __init__(self, fn: Callable[..., T]):
        functools.update_wrapper(self, fn)
        self._fn = fn
        self._key: Any = self._MISSING
        self._value: Any = None
        self.computations = 0

    def __call__(self, state: "StoreState", *params: Any) -> T:
        key = (state.revision, params)
        if self._key is not self._MISSING and self._key == key:
            return self._value
        self._value = self._fn(state, *params)
        self._key = key
        self.computations += 1
        return self._value

    def invalidate(self) -> None:
        self._key = self._MISSING
        self._value = None


def memoized_view(fn: Callable[..., T]) -> MemoizedView[T]:
    """Decorator form of MemoizedView.

    Example:
        >>> @memoized_view
        ... def goal_count(state):
        ...     return len(state.goals)
    """
    return MemoizedView(fn)


class DerivedViews:
    """Memoized dashboard aggregates bound to one store.

    Every view is a pure function of the current StoreState, the session
    profile and its explicit parameters; repeated calls with the same
    revision and parameters return the cached result.

    Example:
        >>> views = DerivedViews(store, session)
        >>> views.safe_to_spend(preset_range("this_month"))
        Decimal('1000')
    """

    def __init__(
        self,
        store: "DataStore",
        session: Optional["SessionGate"] = None,
        analytics: Optional[AnalyticsSettings] = None,
        plans: Optional[PlanSettings] = None,
    ):
        self._store = store
        self._session = session
        self._settings = analytics or AnalyticsSettings()
        self._plans = plans or PlanSettings()

        self._balance = BalanceService()
        self._analytics = AnalyticsService(self._settings.default_expense_category)
        self._budgets = BudgetService(self._settings.default_expense_category)
        self._goals = GoalService()
        self._forecast = ForecastService()

        self._totals = MemoizedView(self._compute_totals)
        self._safe_to_spend = MemoizedView(
            lambda state, profile, date_range: self._balance.safe_to_spend(
                profile, state.transactions, date_range
            )
        )
        self._net_worth = MemoizedView(lambda state: self._balance.net_worth(state.accounts))
        self._budget_progress = MemoizedView(
            lambda state, date_range: self._budgets.budget_progress(
                state.budgets, state.transactions, date_range
            )
        )
        self._category_breakdown = MemoizedView(self._compute_breakdown)
        self._spending_trend = MemoizedView(
            lambda state, month, account_filter, top_n: self._analytics.spending_trend(
                state.transactions, month, top_n, account_filter
            )
        )
        self._waterfall = MemoizedView(self._compute_waterfall)
        self._budget_summaries = MemoizedView(
            lambda state, month: self._budgets.budget_summaries(
                state.budgets, state.transactions, month
            )
        )
        self._monthly_savings = MemoizedView(
            lambda state, profile, date_range, account_filter: self._balance.monthly_savings(
                profile, filter_transactions(state.transactions, date_range, account_filter)
            )
        )
        self._goal_summaries = MemoizedView(
            lambda state, savings: self._goals.goal_summaries(state.goals, savings)
        )

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._session.profile() if self._session else None

    @property
    def state(self) -> "StoreState":
        return self._store.state

    def selection(
        self,
        fn: Callable[["DerivedViews"], T],
        is_equal: Callable[[T, T], bool] = operator.eq,
    ) -> Selection[T]:
        """Live selection over derived views.

        Also re-evaluated when the session profile changes, since recurring
        amounts feed several views.
        """
        selection = Selection(self._store, lambda _state: fn(self), is_equal, parent=self._store)
        if self._session is not None:
            selection.refresh_on(self._session.profile_changed)
        return selection

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def totals(
        self, date_range: Optional[DateRange] = None, account_filter: str = ALL_ACCOUNTS
    ) -> CashFlowTotals:
        """Income and expenses for a window, recurring amounts included."""
        return self._totals(self.state, self.profile, date_range, account_filter)

    def _compute_totals(self, state, profile, date_range, account_filter) -> CashFlowTotals:
        return self._balance.totals(state.transactions, date_range, account_filter, profile)

    def safe_to_spend(self, date_range: Optional[DateRange] = None) -> Decimal:
        return self._safe_to_spend(self.state, self.profile, date_range)

    def net_worth(self) -> NetWorth:
        return self._net_worth(self.state)

    def budget_progress(self, date_range: Optional[DateRange] = None) -> int:
        return self._budget_progress(self.state, date_range)

    def category_breakdown(
        self,
        date_range: Optional[DateRange] = None,
        account_filter: str = ALL_ACCOUNTS,
        limit: Optional[int] = None,
        include_recurring: bool = True,
    ) -> list[CategoryAmount]:
        """Expense groups for a window, largest first.

        With ``include_recurring`` the profile's recurring expenses appear
        as their own bucket.
        """
        recurring = (
            self.profile.recurring_expenses if include_recurring and self.profile else Decimal("0")
        )
        return self._category_breakdown(self.state, date_range, account_filter, limit, recurring)

    def _compute_breakdown(
        self, state, date_range, account_filter, limit, recurring
    ) -> list[CategoryAmount]:
        return self._analytics.category_breakdown(
            filter_transactions(state.transactions, date_range, account_filter),
            limit=limit,
            recurring_expenses=recurring,
        )

    def spending_trend(
        self, month: date, account_filter: str = ALL_ACCOUNTS, top_n: Optional[int] = None
    ) -> list[TrendEntry]:
        return self._spending_trend(
            self.state, month, account_filter, top_n or self._settings.trend_top_n
        )

    def cash_flow_waterfall(
        self, date_range: Optional[DateRange] = None, account_filter: str = ALL_ACCOUNTS
    ) -> list[WaterfallStep]:
        """Income through the largest spending categories to net savings."""
        return self._waterfall(self.state, self.profile, date_range, account_filter)

    def _compute_waterfall(self, state, profile, date_range, account_filter) -> list[WaterfallStep]:
        totals = self.totals(date_range, account_filter)
        breakdown = self.category_breakdown(date_range, account_filter)
        return self._analytics.cash_flow_waterfall(
            totals.income,
            breakdown,
            totals.expenses,
            top_n=self._settings.waterfall_top_n,
        )

    def budget_summaries(self, month: date) -> list[BudgetSummary]:
        return self._budget_summaries(self.state, month)

    def monthly_savings(
        self, date_range: Optional[DateRange] = None, account_filter: str = ALL_ACCOUNTS
    ) -> Decimal:
        return self._monthly_savings(self.state, self.profile, date_range, account_filter)

    def savings_rate(
        self, date_range: Optional[DateRange] = None, account_filter: str = ALL_ACCOUNTS
    ) -> int:
        totals = self.totals(date_range, account_filter)
        net = self._balance.monthly_savings(
            self.profile, filter_transactions(self.state.transactions, date_range, account_filter)
        )
        return self._balance.savings_rate(totals, net)

    def goal_summaries(
        self, date_range: Optional[DateRange] = None, account_filter: str = ALL_ACCOUNTS
    ) -> list[GoalSummary]:
        """Goal progress at the savings pace of the given window."""
        savings = self.monthly_savings(date_range, account_filter)
        return self._goal_summaries(self.state, savings)

    def savings_projection(
        self, date_range: Optional[DateRange] = None, account_filter: str = ALL_ACCOUNTS
    ) -> list[ProjectionPoint]:
        return self._forecast.savings_projection(
            self.monthly_savings(date_range, account_filter),
            years=self._settings.projection_years,
            rate=Decimal(str(self._settings.projection_rate)),
        )

    def can_add_budget(self, category: str) -> bool:
        return self._budgets.can_add_budget(
            self.state.budgets, category, self.profile, self._plans.max_free_budgets
        )
