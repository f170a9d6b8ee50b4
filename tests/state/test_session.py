"""Tests for the session gate."""

from decimal import Decimal

import pytest

from nestfin.data.memory_auth import MemoryAuthProvider
from nestfin.domain.models import UserProfile
from nestfin.state.session import SessionGate


class TestSessionGate:
    """Identity and profile tracking."""

    def test_starts_signed_out(self, session):
        assert session.current_user_id() is None
        assert session.profile() is None
        assert session.is_authenticated is False

    def test_set_session_emits_user_changed(self, session):
        received = []
        session.user_changed.connect(received.append)

        session.set_session("user-1")
        session.set_session("user-1")  # Same id, no emission
        session.set_session(None)

        assert received == ["user-1", None]

    def test_set_session_subscribes_to_profile(self, session, fake_documents):
        session.set_session("user-1")

        assert [sub.user_id for sub in fake_documents.profile_subscriptions] == ["user-1"]

    def test_profile_snapshot_is_parsed(self, session, fake_documents):
        profiles = []
        session.profile_changed.connect(profiles.append)
        session.set_session("user-1")

        fake_documents.push_profile({"displayName": "Sam", "recurringIncome": 2000})

        assert session.profile().display_name == "Sam"
        assert session.profile().recurring_income == Decimal("2000")
        assert session.profile().plan == "free"
        assert len(profiles) == 1

    def test_identical_profile_snapshot_not_re_emitted(self, session, fake_documents):
        profiles = []
        session.profile_changed.connect(profiles.append)
        session.set_session("user-1")

        fake_documents.push_profile({"displayName": "Sam"})
        fake_documents.push_profile({"displayName": "Sam"})

        assert len(profiles) == 1

    def test_switch_user_clears_profile_and_cancels_subscription(self, session, fake_documents):
        session.set_session("user-1")
        fake_documents.push_profile({"displayName": "Sam"})
        first = fake_documents.profile_subscriptions[0]

        session.set_session("user-2")

        assert first.active is False
        assert session.profile() is None

    def test_late_profile_for_previous_user_ignored(self, session, fake_documents):
        session.set_session("user-1")
        first = fake_documents.profile_subscriptions[0]
        session.set_session("user-2")

        first.on_snapshot({"displayName": "Old"})

        assert session.profile() is None

    def test_invalid_profile_is_ignored(self, session, fake_documents):
        session.set_session("user-1")
        fake_documents.push_profile({"displayName": "Sam"})

        fake_documents.push_profile({"recurringIncome": "plenty"})

        assert session.profile().display_name == "Sam"

    def test_missing_profile_document_is_none(self, session, fake_documents):
        session.set_session("user-1")
        fake_documents.push_profile(None)
        assert session.profile() is None


class TestSessionDrivesStore:
    """The store follows the gate synchronously."""

    def test_store_connects_before_set_session_returns(self, session, store):
        session.user_changed.connect(store.connect)

        session.set_session("user-1")

        assert store.user_id == "user-1"
        assert store.loading is True

    def test_sign_out_clears_store(self, session, store, fake_documents):
        session.user_changed.connect(store.connect)
        session.set_session("user-1")
        fake_documents.push_all(transactions=[("t1", {"type": "expense", "amount": 5})])

        session.set_session(None)

        assert store.user_id is None
        assert store.state.transactions == ()


class TestBindAuth:
    @pytest.mark.asyncio
    async def test_gate_follows_auth_provider(self, qtbot, fake_documents):
        provider = MemoryAuthProvider()
        session = SessionGate(fake_documents)
        session.bind_auth(provider)

        user_id = await provider.register("sam@example.com", "secret1", "Sam")
        assert session.current_user_id() == user_id

        await provider.logout()
        assert session.current_user_id() is None

    def test_profile_equality_uses_values(self):
        assert UserProfile("u1", display_name="Sam") == UserProfile("u1", display_name="Sam")
