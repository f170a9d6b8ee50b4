"""Goal progress and time-to-target estimates."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from nestfin.domain.models import Goal

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class GoalSummary:
    """A goal with its progress in [0, 1] and the months left at the current pace."""

    goal: Goal
    progress: Decimal
    remaining: Decimal
    months_to_goal: Optional[int]


def months_needed(remaining: Decimal, monthly_savings: Decimal) -> Optional[int]:
    """Whole months to save ``remaining``, or None without positive savings."""
    if monthly_savings <= 0:
        return None
    if remaining <= 0:
        return 0
    return math.ceil(remaining / monthly_savings)


class GoalService:
    """Derives goal summaries from the goals collection."""

    def goal_summaries(
        self, goals: Iterable[Goal], monthly_savings: Decimal = ZERO
    ) -> list[GoalSummary]:
        """Summaries in collection order.

        Args:
            goals: Savings and debt goals
            monthly_savings: Expected amount set aside per month

        Returns:
            One GoalSummary per goal
        """
        summaries = []
        for goal in goals:
            if goal.target_amount > 0:
                progress = min(max(goal.current_amount / goal.target_amount, ZERO), ONE)
            else:
                progress = ZERO
            summaries.append(
                GoalSummary(
                    goal=goal,
                    progress=progress,
                    remaining=goal.remaining,
                    months_to_goal=months_needed(goal.remaining, monthly_savings),
                )
            )
        return summaries

    def prioritized_goal(
        self, goals: Iterable[Goal], monthly_savings: Decimal
    ) -> Optional[GoalSummary]:
        """The goal reachable soonest at the current pace (first wins ties).

        Returns None when nothing is being saved.
        """
        if monthly_savings <= 0:
            return None
        summaries = self.goal_summaries(goals, monthly_savings)
        if not summaries:
            return None
        return min(summaries, key=lambda s: s.months_to_goal)

    def total_targets(self, goals: Iterable[Goal]) -> Decimal:
        return sum((goal.target_amount for goal in goals), ZERO)
