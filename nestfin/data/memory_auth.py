"""In-process authentication provider for local use and tests."""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from passlib.context import CryptContext

from nestfin.data.repository import AuthCallback, AuthError, AuthProvider, Unsubscribe

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(frozen=True)
class _Credential:
    user_id: str
    password_hash: str
    display_name: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


class MemoryAuthProvider(AuthProvider):
    """Email/password accounts held in memory.

    Monitors receive the current user id immediately on subscription and
    again on every login/logout.
    """

    MIN_PASSWORD_LENGTH = 6

    def __init__(self):
        self._accounts: dict[str, _Credential] = {}
        self._current: Optional[str] = None
        self._monitors: list[AuthCallback] = []

    @property
    def current_user_id(self) -> Optional[str]:
        return self._current

    def monitor(self, callback: AuthCallback) -> Unsubscribe:
        self._monitors.append(callback)
        callback(self._current)

        def unsubscribe() -> None:
            if callback in self._monitors:
                self._monitors.remove(callback)

        return unsubscribe

    def _set_current(self, user_id: Optional[str]) -> None:
        if user_id == self._current:
            return
        self._current = user_id
        for callback in list(self._monitors):
            callback(user_id)

    async def login(self, email: str, password: str) -> str:
        credential = self._accounts.get(email.strip().lower())
        if credential is None or not verify_password(password, credential.password_hash):
            raise AuthError("Invalid email or password.")
        logger.info(f"User {credential.user_id} signed in")
        self._set_current(credential.user_id)
        return credential.user_id

    async def register(self, email: str, password: str, display_name: str) -> str:
        key = email.strip().lower()
        if "@" not in key:
            raise AuthError("Please enter a valid email address.")
        if len(password) < self.MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Password should be at least {self.MIN_PASSWORD_LENGTH} characters."
            )
        if key in self._accounts:
            raise AuthError("An account with this email already exists.")

        credential = _Credential(
            user_id=uuid4().hex,
            password_hash=get_password_hash(password),
            display_name=display_name,
        )
        self._accounts[key] = credential
        logger.info(f"Registered user {credential.user_id}")
        self._set_current(credential.user_id)
        return credential.user_id

    async def logout(self) -> None:
        self._set_current(None)
