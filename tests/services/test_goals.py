"""Tests for goal summaries."""

from decimal import Decimal

import pytest

from nestfin.domain.models import GoalType
from nestfin.services.goals import GoalService, months_needed


@pytest.fixture
def service():
    return GoalService()


@pytest.mark.parametrize(
    "remaining, savings, expected",
    [
        (Decimal("1600"), Decimal("800"), 2),
        (Decimal("1601"), Decimal("800"), 3),
        (Decimal("0"), Decimal("800"), 0),
        (Decimal("500"), Decimal("0"), None),
        (Decimal("500"), Decimal("-10"), None),
    ],
)
def test_months_needed(remaining, savings, expected):
    assert months_needed(remaining, savings) == expected


class TestGoalSummaries:
    def test_progress_is_clamped(self, service, make_goal):
        goals = [
            make_goal(id="g1", current_amount=Decimal("250")),
            make_goal(id="g2", current_amount=Decimal("1500")),
            make_goal(id="g3", current_amount=Decimal("-200"), type=GoalType.DEBT),
        ]

        summaries = service.goal_summaries(goals, Decimal("100"))

        assert [s.progress for s in summaries] == [Decimal("0.25"), Decimal("1"), Decimal("0")]
        assert [s.months_to_goal for s in summaries] == [8, 0, 12]

    def test_zero_target(self, service, make_goal):
        [summary] = service.goal_summaries([make_goal(target_amount=Decimal("0"))])

        assert summary.progress == Decimal("0")
        assert summary.months_to_goal is None

    def test_prioritized_goal(self, service, make_goal):
        goals = [
            make_goal(id="far", target_amount=Decimal("5000")),
            make_goal(id="near", target_amount=Decimal("300")),
        ]

        assert service.prioritized_goal(goals, Decimal("100")).goal.id == "near"
        assert service.prioritized_goal(goals, Decimal("0")) is None
        assert service.prioritized_goal([], Decimal("100")) is None

    def test_total_targets(self, service, make_goal):
        goals = [make_goal(id="g1"), make_goal(id="g2", target_amount=Decimal("250"))]
        assert service.total_targets(goals) == Decimal("1250")
