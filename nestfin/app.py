"""Application context and dependency injection.

The ApplicationContext wires the session gate, collection store, derived
views and supporting services together. There is no global instance:
whoever starts the application owns the context and hands its parts to
the presentation layer.
"""

import logging
from typing import Optional

from nestfin.data.factory import create_document_store
from nestfin.data.memory_auth import MemoryAuthProvider
from nestfin.data.repository import AuthProvider, DocumentStore, Unsubscribe
from nestfin.domain.settings import AppSettings
from nestfin.services.auth import AuthService
from nestfin.services.connection_state import ConnectionHealthService
from nestfin.state.app_state import AppState
from nestfin.state.persistence import SettingsStore
from nestfin.state.selectors import DerivedViews
from nestfin.state.session import SessionGate
from nestfin.state.store import DataStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Apply the configured level to the package loggers."""
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("nestfin").setLevel(level)


class ApplicationContext:
    """Application context providing dependency injection.

    Example:
        >>> ctx = ApplicationContext()
        >>> await ctx.initialize()
        >>> await ctx.auth.login("sam@example.com", "secret1")
        >>> ctx.store.loading
        True
    """

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        settings: Optional[AppSettings] = None,
        documents: Optional[DocumentStore] = None,
        auth_provider: Optional[AuthProvider] = None,
    ):
        """Initialize application context.

        Args:
            settings_store: Where settings are loaded from (default location if None)
            settings: Explicit settings; skips loading from the store
            documents: Document store to use instead of the configured backend
            auth_provider: Identity provider (in-memory if None)
        """
        self.settings_store = settings_store or SettingsStore()
        self.settings: AppSettings = settings or self.settings_store.load()
        configure_logging(self.settings.logging.level)

        # State
        self.state = AppState()

        self._documents = documents
        self.auth_provider: AuthProvider = auth_provider or MemoryAuthProvider()
        self._auth_unsubscribe: Optional[Unsubscribe] = None

        # Built in initialize()
        self.session: Optional[SessionGate] = None
        self.store: Optional[DataStore] = None
        self.views: Optional[DerivedViews] = None
        self.health: Optional[ConnectionHealthService] = None
        self.auth: Optional[AuthService] = None

    @property
    def documents(self) -> DocumentStore:
        if self._documents is None:
            raise RuntimeError("ApplicationContext.initialize() has not been called")
        return self._documents

    async def initialize(self) -> None:
        """Create the document store and wire the data core.

        Must be called before using the context.
        """
        if self._documents is None:
            storage = self.settings.storage
            self._documents = await create_document_store(
                storage.backend,
                storage.database_path,
                max_retries=self.settings.sync.increment_max_retries,
            )

        sync = self.settings.sync
        self.session = SessionGate(self._documents)
        self.store = DataStore(self._documents)
        self.views = DerivedViews(
            self.store, self.session, self.settings.analytics, self.settings.plans
        )
        self.health = ConnectionHealthService(
            self.store,
            stale_after_seconds=sync.stale_after_seconds,
            health_check_interval_ms=sync.health_check_interval_seconds * 1000,
            max_resubscribe_attempts=sync.max_resubscribe_attempts,
        )
        self.auth = AuthService(self.auth_provider, self._documents)

        # Identity drives the store synchronously
        self.session.user_changed.connect(self.store.connect)
        self.store.operation_failed.connect(self.state.report_operation_error)
        self.auth.error.changed.connect(self.state.auth_error.set)

        self._auth_unsubscribe = self.session.bind_auth(self.auth_provider)
        self.health.start_monitoring()
        logger.info(f"Data core initialized ({self.settings.storage.backend} backend)")

    async def close(self) -> None:
        """Release subscriptions and backend resources."""
        if self._auth_unsubscribe:
            self._auth_unsubscribe()
            self._auth_unsubscribe = None
        if self.health:
            self.health.stop_monitoring()
        if self.session:
            self.session.close()
        if self.store:
            self.store.disconnect()
        if self._documents is not None:
            await self._documents.close()
        logger.info("Data core closed")
