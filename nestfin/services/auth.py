"""Authentication facade for sign-in forms.

Wraps an AuthProvider so that form code never handles exceptions: a
failed attempt leaves a short message on ``error`` instead.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from PySide6.QtCore import QObject

from nestfin.data.repository import AuthError, AuthProvider, DocumentStore
from nestfin.domain.models import FREE_PLAN
from nestfin.state.observable import Observable

logger = logging.getLogger(__name__)


class AuthService(QObject):
    """Login, registration and logout with form-level error reporting.

    Attributes:
        error: Last failure message, cleared when a new attempt starts
        loading: True while an attempt is in flight

    Example:
        >>> auth = AuthService(provider, documents)
        >>> ok = await auth.login("sam@example.com", "wrong")
        >>> ok, auth.error.value
        (False, 'Invalid email or password.')
    """

    def __init__(
        self,
        provider: AuthProvider,
        documents: DocumentStore,
        clock: Callable[[], datetime] = datetime.now,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._provider = provider
        self._documents = documents
        self._clock = clock
        self.error: Observable[Optional[str]] = Observable(None, parent=self)
        self.loading: Observable[bool] = Observable(False, parent=self)

    async def login(self, email: str, password: str) -> bool:
        """Sign in. Returns True on success."""
        self._begin()
        try:
            await self._provider.login(email, password)
            return True
        except AuthError as e:
            logger.info(f"Sign-in rejected: {e}")
            self.error.set(str(e))
            return False
        finally:
            self.loading.set(False)

    async def register(self, email: str, password: str, display_name: str) -> bool:
        """Create an account and its profile document. Returns True on success."""
        self._begin()
        try:
            user_id = await self._provider.register(email, password, display_name)
            await self._documents.set_profile(
                user_id,
                {
                    "displayName": display_name,
                    "email": email,
                    "createdAt": self._clock().isoformat(),
                    "plan": FREE_PLAN,
                },
                merge=True,
            )
            return True
        except AuthError as e:
            logger.info(f"Registration rejected: {e}")
            self.error.set(str(e))
            return False
        finally:
            self.loading.set(False)

    async def logout(self) -> None:
        await self._provider.logout()

    def _begin(self) -> None:
        self.loading.set(True)
        self.error.set(None)
