"""Unit tests for domain models."""

from dataclasses import FrozenInstanceError
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from nestfin.domain.models import (
    Account,
    AccountType,
    Budget,
    DocumentValidationError,
    Goal,
    GoalType,
    Transaction,
    TransactionType,
    UserProfile,
    round_half_up,
    to_datetime,
    to_decimal,
)


class TestConversions:
    """Number and timestamp coercion."""

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_uses_default(self):
        assert to_decimal(None, default=Decimal("0")) == Decimal("0")

    def test_none_without_default_is_error(self):
        with pytest.raises(DocumentValidationError, match="amount is required"):
            to_decimal(None)

    @pytest.mark.parametrize("value", ["abc", True, float("nan"), "Infinity"])
    def test_invalid_numbers(self, value):
        with pytest.raises(DocumentValidationError):
            to_decimal(value)

    def test_round_half_up(self):
        assert round_half_up(Decimal("2.5")) == Decimal("3")
        assert round_half_up(Decimal("2.345"), 2) == Decimal("2.35")

    def test_iso_string_with_zulu_becomes_naive_local(self):
        moment = to_datetime("2024-03-01T12:00:00Z")
        expected = datetime(2024, 3, 1, 12, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert moment == expected
        assert moment.tzinfo is None

    def test_date_becomes_midnight(self):
        assert to_datetime(date(2024, 3, 1)) == datetime(2024, 3, 1)

    def test_invalid_timestamp(self):
        with pytest.raises(DocumentValidationError):
            to_datetime("next tuesday")


class TestTransaction:
    """Tests for Transaction model."""

    def test_from_document(self):
        tx = Transaction.from_document(
            "t1",
            {
                "type": "expense",
                "description": "Coffee",
                "amount": "4.50",
                "category": "Food",
                "accountId": "acc-1",
                "date": "2024-01-15T08:30:00",
            },
        )

        assert tx.type == TransactionType.EXPENSE
        assert tx.amount == Decimal("4.50")
        assert tx.account_id == "acc-1"
        assert tx.date == datetime(2024, 1, 15, 8, 30)

    def test_missing_category_defaults_by_type(self):
        expense = Transaction.from_document("t1", {"type": "expense", "amount": 5})
        income = Transaction.from_document("t2", {"type": "income", "amount": 5})

        assert expense.category == "General"
        assert income.category == "Income"

    def test_missing_date_is_pending(self):
        tx = Transaction.from_document("t1", {"type": "expense", "amount": 5})
        assert tx.date is None

    def test_type_is_case_insensitive(self):
        tx = Transaction.from_document("t1", {"type": "INCOME", "amount": 5})
        assert tx.is_income

    def test_unknown_type_raises(self):
        with pytest.raises(DocumentValidationError) as exc_info:
            Transaction.from_document("t1", {"type": "transfer", "amount": 5})
        assert exc_info.value.doc_id == "t1"

    def test_negative_amount_raises(self):
        with pytest.raises(DocumentValidationError, match="negative"):
            Transaction.from_document("t1", {"type": "expense", "amount": -5})

    def test_missing_id_raises(self):
        with pytest.raises(DocumentValidationError):
            Transaction.from_document("", {"type": "expense", "amount": 5})

    def test_transaction_immutability(self, make_transaction):
        """Transactions are immutable - updates create new instances."""
        tx = make_transaction(amount=Decimal("100.00"))
        updated = tx.with_updates(amount=Decimal("200.00"))

        assert tx.amount == Decimal("100.00")
        assert updated.amount == Decimal("200.00")
        with pytest.raises(FrozenInstanceError):
            tx.amount = Decimal("1")

    def test_to_document_round_trip(self, make_transaction):
        tx = make_transaction(account_id="acc-1")
        assert Transaction.from_document(tx.id, tx.to_document()) == tx


class TestGoal:
    def test_legacy_is_debt_flag(self):
        goal = Goal.from_document("g1", {"name": "Card", "isDebt": True, "targetAmount": 900})
        assert goal.type == GoalType.DEBT
        assert goal.is_debt

    def test_debt_goal_may_have_negative_current(self):
        goal = Goal.from_document(
            "g1", {"type": "debt", "targetAmount": 900, "currentAmount": -200}
        )
        assert goal.current_amount == Decimal("-200")
        assert goal.remaining == Decimal("1100")

    def test_remaining_never_negative(self, make_goal):
        goal = make_goal(target_amount=Decimal("100"), current_amount=Decimal("150"))
        assert goal.remaining == Decimal("0")

    def test_due_date_parsed(self):
        goal = Goal.from_document("g1", {"targetAmount": 10, "dueDate": "2025-06-30"})
        assert goal.due_date == date(2025, 6, 30)


class TestBudget:
    def test_limit_preferred(self):
        budget = Budget.from_document("b1", {"category": "Food", "limit": 300, "amount": 200})
        assert budget.limit == Decimal("300")

    def test_amount_used_when_limit_missing(self):
        budget = Budget.from_document("b1", {"category": "Food", "amount": 200})
        assert budget.limit == Decimal("200")

    def test_missing_category_defaults(self):
        assert Budget.from_document("b1", {"limit": 5}).category == "General"


class TestAccount:
    @pytest.mark.parametrize(
        "data, expected",
        [
            ({"balance": 500, "type": "asset"}, AccountType.ASSET),
            ({"balance": 1500, "type": "liability"}, AccountType.LIABILITY),
            ({"balance": -1500, "type": "Credit card debt"}, AccountType.LIABILITY),
            ({"balance": -20}, AccountType.LIABILITY),
            ({"balance": -20, "type": "checking"}, AccountType.ASSET),
        ],
    )
    def test_liability_detection(self, data, expected):
        assert Account.from_document("a1", data).type == expected

    def test_balance_keeps_stored_sign(self):
        account = Account.from_document("a1", {"balance": -1500, "type": "liability"})
        assert account.balance == Decimal("-1500")


class TestUserProfile:
    def test_defaults(self):
        profile = UserProfile.from_document("u1", {})
        assert profile.plan == "free"
        assert profile.is_premium is False
        assert profile.recurring_net == Decimal("0")

    def test_premium_plan(self):
        profile = UserProfile.from_document("u1", {"plan": "Plus"})
        assert profile.plan == "plus"
        assert profile.is_premium
