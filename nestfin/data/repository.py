"""Abstract collaborator interfaces for data access.

The data core never talks to a concrete database. It consumes two
collaborators through these interfaces: a document store with realtime
full-snapshot subscriptions, and an authentication provider. Concrete
backends live alongside (in-memory, SQLite) and tests supply fakes.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from nestfin.domain.models import DocumentValidationError

# A document as delivered by a subscription: (document id, raw fields)
RawDocument = tuple[str, dict]

SnapshotCallback = Callable[[list[RawDocument]], None]
ProfileCallback = Callable[[Optional[dict]], None]
ErrorCallback = Callable[[Exception], None]
AuthCallback = Callable[[Optional[str]], None]
Unsubscribe = Callable[[], None]

__all__ = [
    "AuthError",
    "AuthProvider",
    "Collection",
    "ConcurrencyError",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentValidationError",
    "RawDocument",
    "Unsubscribe",
]


class Collection(Enum):
    """The four per-user entity collections."""

    TRANSACTIONS = "transactions"
    GOALS = "goals"
    BUDGETS = "budgets"
    ACCOUNTS = "accounts"


class DocumentStore(ABC):
    """Per-user document database with realtime subscriptions.

    Every subscription delivers the full ordered list of documents on the
    initial load and again after every change (snapshots, not diffs).
    Transactions are ordered by date, most recent first.
    """

    @abstractmethod
    def subscribe(
        self,
        user_id: str,
        collection: Collection,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Subscribe to a collection.

        Args:
            user_id: Owner of the collection
            collection: Which collection to watch
            on_snapshot: Called with the full document list on every change
            on_error: Called once if the subscription terminates abnormally

        Returns:
            Callable that cancels the subscription. After it returns no
            further callbacks are delivered.
        """
        ...

    @abstractmethod
    def subscribe_profile(
        self,
        user_id: str,
        on_snapshot: ProfileCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Subscribe to the user's profile document (None when absent)."""
        ...

    @abstractmethod
    async def add(self, user_id: str, collection: Collection, data: dict) -> str:
        """Create a document.

        Transactions get a server-assigned ``date`` at write time; any
        caller-supplied date is replaced.

        Returns:
            The new document id
        """
        ...

    @abstractmethod
    async def update(
        self, user_id: str, collection: Collection, doc_id: str, data: dict
    ) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def delete(self, user_id: str, collection: Collection, doc_id: str) -> None:
        """Delete a document."""
        ...

    @abstractmethod
    async def increment(
        self,
        user_id: str,
        collection: Collection,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> None:
        """Atomically add ``delta`` to a numeric field.

        Implementations must be correct under concurrent callers: either a
        native atomic increment or a compare-and-swap retry loop. A plain
        read-then-write is not acceptable.

        Raises:
            DocumentNotFoundError: If the document does not exist
            ConcurrencyError: If a CAS loop runs out of retries
        """
        ...

    @abstractmethod
    async def set_profile(self, user_id: str, data: dict, merge: bool = True) -> None:
        """Create or overwrite the profile document."""
        ...

    @abstractmethod
    async def update_profile(self, user_id: str, data: dict) -> None:
        """Merge fields into the profile document.

        Raises:
            DocumentNotFoundError: If no profile exists yet
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


class AuthProvider(ABC):
    """External identity provider."""

    @abstractmethod
    def monitor(self, callback: AuthCallback) -> Unsubscribe:
        """Subscribe to auth state changes.

        The callback receives the current user id (or None) immediately and
        again on every change.
        """
        ...

    @abstractmethod
    async def login(self, email: str, password: str) -> str:
        """Sign in. Returns the user id.

        Raises:
            AuthError: With a human-readable message
        """
        ...

    @abstractmethod
    async def register(self, email: str, password: str, display_name: str) -> str:
        """Create an account and sign in. Returns the user id.

        Raises:
            AuthError: With a human-readable message
        """
        ...

    @abstractmethod
    async def logout(self) -> None:
        """Sign out."""
        ...


class DocumentNotFoundError(LookupError):
    """Raised when a write targets a document that does not exist."""

    def __init__(self, collection: Any, doc_id: str):
        name = collection.value if isinstance(collection, Collection) else str(collection)
        super().__init__(f"No document {doc_id!r} in {name}")
        self.collection = collection
        self.doc_id = doc_id


class ConcurrencyError(Exception):
    """Raised when a compare-and-swap write keeps losing to other writers."""

    pass


class AuthError(Exception):
    """Authentication failure with a message suitable for display."""

    pass
