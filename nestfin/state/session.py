"""Session gate: the active user identity and their profile document.

The gate is the single owner of "who is signed in". Everything scoped to a
user (the collection store, the profile) follows ``user_changed``, which
is emitted synchronously inside ``set_session`` so dependents switch users
before control returns to the caller.
"""

import logging
from typing import Optional

from PySide6.QtCore import QObject, Signal

from nestfin.data.repository import AuthProvider, DocumentStore, Unsubscribe
from nestfin.domain.models import DocumentValidationError, UserProfile

logger = logging.getLogger(__name__)


class SessionGate(QObject):
    """Holds the active user id and a live copy of their profile.

    Signals:
        user_changed(str | None): Identity changed (None on sign-out)
        profile_changed(UserProfile | None): Profile loaded, changed or cleared

    Example:
        >>> gate = SessionGate(documents)
        >>> gate.user_changed.connect(store.connect)
        >>> gate.set_session("user-1")
        >>> store.user_id
        'user-1'
    """

    user_changed = Signal(object)
    profile_changed = Signal(object)

    def __init__(self, documents: DocumentStore, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._documents = documents
        self._user_id: Optional[str] = None
        self._profile: Optional[UserProfile] = None
        self._profile_unsubscribe: Optional[Unsubscribe] = None
        self._generation = 0

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def set_session(self, user_id: Optional[str]) -> None:
        """Replace the active identity.

        Setting the current id again does nothing. Otherwise the previous
        profile subscription is cancelled and the cached profile cleared
        before dependents are notified.
        """
        user_id = user_id or None
        if user_id == self._user_id:
            return

        self._cancel_profile()
        self._generation += 1
        generation = self._generation
        self._user_id = user_id
        if self._profile is not None:
            self._profile = None
            self.profile_changed.emit(None)

        if user_id:
            logger.info(f"Session started for user {user_id}")
        else:
            logger.info("Session ended")
        self.user_changed.emit(user_id)

        # A handler may have switched users again
        if user_id and self._generation == generation:
            self._subscribe_profile(user_id, generation)

    def bind_auth(self, auth: AuthProvider) -> Unsubscribe:
        """Follow an identity provider's auth state."""
        return auth.monitor(self.set_session)

    def close(self) -> None:
        self._cancel_profile()

    def _subscribe_profile(self, user_id: str, generation: int) -> None:
        def on_snapshot(data: Optional[dict]) -> None:
            if generation != self._generation:
                return
            self._apply_profile(user_id, data)

        def on_error(error: Exception) -> None:
            if generation == self._generation:
                logger.warning(f"Profile subscription for {user_id} failed: {error}")

        unsubscribe = self._documents.subscribe_profile(user_id, on_snapshot, on_error)
        if generation == self._generation:
            self._profile_unsubscribe = unsubscribe
        else:
            unsubscribe()

    def _apply_profile(self, user_id: str, data: Optional[dict]) -> None:
        profile = None
        if data is not None:
            try:
                profile = UserProfile.from_document(user_id, data)
            except DocumentValidationError as e:
                logger.warning(f"Ignoring invalid profile for {user_id}: {e}")
                return
        if profile == self._profile:
            return
        self._profile = profile
        self.profile_changed.emit(profile)

    def _cancel_profile(self) -> None:
        unsubscribe = self._profile_unsubscribe
        self._profile_unsubscribe = None
        if unsubscribe:
            unsubscribe()
