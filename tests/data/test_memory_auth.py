"""Tests for the in-memory auth provider."""

import pytest

from nestfin.data.memory_auth import MemoryAuthProvider, get_password_hash, verify_password
from nestfin.data.repository import AuthError


@pytest.fixture
def provider():
    return MemoryAuthProvider()


class TestMonitor:
    def test_current_user_delivered_immediately(self, provider):
        received = []
        provider.monitor(received.append)
        assert received == [None]

    @pytest.mark.asyncio
    async def test_login_and_logout_notify(self, provider):
        received = []
        provider.monitor(received.append)

        user_id = await provider.register("sam@example.com", "secret1", "Sam")
        await provider.logout()
        await provider.logout()  # Already signed out
        await provider.login("sam@example.com", "secret1")

        assert received == [None, user_id, None, user_id]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, provider):
        received = []
        unsubscribe = provider.monitor(received.append)
        unsubscribe()

        await provider.register("sam@example.com", "secret1", "Sam")

        assert received == [None]


class TestCredentials:
    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, provider):
        user_id = await provider.register("Sam@Example.com", "secret1", "Sam")
        assert await provider.login(" sam@example.com", "secret1") == user_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "email, password, message",
        [
            ("not-an-email", "secret1", "valid email"),
            ("sam@example.com", "12345", "at least 6"),
        ],
    )
    async def test_register_validation(self, provider, email, password, message):
        with pytest.raises(AuthError, match=message):
            await provider.register(email, password, "Sam")

    @pytest.mark.asyncio
    async def test_unknown_account(self, provider):
        with pytest.raises(AuthError, match="Invalid email or password"):
            await provider.login("ghost@example.com", "secret1")


class TestPasswordHash:
    def test_uses_salted_pbkdf2_sha256(self):
        first = get_password_hash("secret1")
        second = get_password_hash("secret1")

        assert first.startswith("$pbkdf2-sha256$")
        assert first != second
        assert verify_password("secret1", first)
        assert not verify_password("secret2", first)
