"""Pytest fixtures and configuration."""

import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from nestfin.data.memory_store import MemoryDocumentStore
from nestfin.data.repository import Collection, DocumentNotFoundError, DocumentStore
from nestfin.domain.models import (
    Account,
    AccountType,
    Budget,
    Goal,
    GoalType,
    Transaction,
    TransactionType,
    UserProfile,
)
from nestfin.state.session import SessionGate
from nestfin.state.store import DataStore


@dataclass
class FakeSubscription:
    """One subscription opened against the fake store."""

    user_id: str
    collection: Optional[Collection]
    on_snapshot: object
    on_error: object
    active: bool = True

    def cancel(self) -> None:
        self.active = False


class FakeDocumentStore(DocumentStore):
    """Document store double with manual snapshot delivery.

    Nothing is delivered until a test calls ``push``. Writes are recorded
    in ``calls`` and can be made to fail via ``fail_with``.
    """

    def __init__(self):
        self.subscriptions: list[FakeSubscription] = []
        self.profile_subscriptions: list[FakeSubscription] = []
        self.calls: list[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.subscribe_error: Optional[Exception] = None
        self.closed = False

    def subscribe(self, user_id, collection, on_snapshot, on_error=None):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        subscription = FakeSubscription(user_id, collection, on_snapshot, on_error)
        self.subscriptions.append(subscription)
        return subscription.cancel

    def subscribe_profile(self, user_id, on_snapshot, on_error=None):
        subscription = FakeSubscription(user_id, None, on_snapshot, on_error)
        self.profile_subscriptions.append(subscription)
        return subscription.cancel

    def active(self, collection=None, user_id=None) -> list[FakeSubscription]:
        return [
            sub
            for sub in self.subscriptions
            if sub.active
            and (collection is None or sub.collection == collection)
            and (user_id is None or sub.user_id == user_id)
        ]

    def push(self, collection: Collection, documents=(), user_id=None) -> None:
        """Deliver a snapshot to every active subscription of a collection."""
        for sub in self.active(collection, user_id):
            sub.on_snapshot(list(documents))

    def push_all(self, user_id=None, **documents) -> None:
        """Deliver one snapshot per collection (empty unless given by name)."""
        for collection in Collection:
            self.push(collection, documents.get(collection.value, ()), user_id)

    def push_profile(self, data: Optional[dict], user_id=None) -> None:
        for sub in self.profile_subscriptions:
            if sub.active and (user_id is None or sub.user_id == user_id):
                sub.on_snapshot(data)

    def fail(self, collection: Collection, error: Exception) -> None:
        for sub in self.active(collection):
            sub.active = False
            sub.on_error(error)

    async def _record(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    async def add(self, user_id, collection, data):
        await self._record("add", user_id, collection, data)
        return f"new-{len(self.calls)}"

    async def update(self, user_id, collection, doc_id, data):
        await self._record("update", user_id, collection, doc_id, data)

    async def delete(self, user_id, collection, doc_id):
        await self._record("delete", user_id, collection, doc_id)

    async def increment(self, user_id, collection, doc_id, field, delta):
        await self._record("increment", user_id, collection, doc_id, field, delta)

    async def set_profile(self, user_id, data, merge=True):
        await self._record("set_profile", user_id, data, merge)

    async def update_profile(self, user_id, data):
        await self._record("update_profile", user_id, data)
        if user_id == "missing":
            raise DocumentNotFoundError("profile", user_id)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_documents():
    """Fake document store with manual snapshot push."""
    return FakeDocumentStore()


@pytest.fixture
def memory_documents():
    """In-memory document store."""
    return MemoryDocumentStore(clock=lambda: datetime(2024, 3, 15, 12, 0))


@pytest.fixture
def store(qtbot, fake_documents):
    """Collection store over the fake document store."""
    return DataStore(fake_documents)


@pytest.fixture
def session(qtbot, fake_documents):
    return SessionGate(fake_documents)


@pytest.fixture
def make_transaction():
    """Factory fixture for creating test transactions."""

    def _make(**kwargs):
        defaults = {
            "id": "t1",
            "type": TransactionType.EXPENSE,
            "description": "Test Transaction",
            "amount": Decimal("100.00"),
            "category": "General",
            "date": datetime(2024, 3, 10, 9, 30),
        }
        defaults.update(kwargs)
        return Transaction(**defaults)

    return _make


@pytest.fixture
def make_goal():
    def _make(**kwargs):
        defaults = {
            "id": "g1",
            "name": "Emergency fund",
            "target_amount": Decimal("1000"),
            "current_amount": Decimal("0"),
            "type": GoalType.SAVINGS,
        }
        defaults.update(kwargs)
        return Goal(**defaults)

    return _make


@pytest.fixture
def make_budget():
    def _make(**kwargs):
        defaults = {"id": "b1", "category": "Food", "limit": Decimal("400")}
        defaults.update(kwargs)
        return Budget(**defaults)

    return _make


@pytest.fixture
def make_account():
    def _make(**kwargs):
        defaults = {
            "id": "a1",
            "name": "Checking",
            "balance": Decimal("1000"),
            "type": AccountType.ASSET,
        }
        defaults.update(kwargs)
        return Account(**defaults)

    return _make


@pytest.fixture
def profile():
    """Profile with 2000 recurring income and 1200 recurring expenses."""
    return UserProfile(
        id="user-1",
        display_name="Sam",
        email="sam@example.com",
        recurring_income=Decimal("2000"),
        recurring_expenses=Decimal("1200"),
    )


def tx_doc(doc_id, type="expense", amount=10, category="General", date="2024-03-10T09:30:00", **extra):
    """Raw transaction document as a subscription delivers it."""
    data = {"type": type, "amount": amount, "category": category, "date": date}
    data.update(extra)
    return (doc_id, data)


@pytest.fixture(name="tx_doc")
def tx_doc_fixture():
    """The raw transaction document builder, for tests."""
    return tx_doc
