"""Collection store: the four per-user collections and their subscriptions.

The store owns one realtime subscription per collection for the active user.
Subscriptions never touch state directly; each delivers an immutable
SnapshotMessage to ``apply()``, which validates the documents, builds a new
immutable StoreState and publishes it. Messages from a superseded session
or subscription are dropped, so a cancelled listener can never write into
the current state.

State machine (per user id):

    DISCONNECTED --connect(uid)--> CONNECTING --first snapshot--> PARTIAL
    PARTIAL --all four ready--> READY --snapshots--> READY (revision bumps)
    any --connect(other)/disconnect()--> cancel all, then CONNECTING/DISCONNECTED
"""

import asyncio
import logging
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from itertools import count
from typing import Any, Callable, Optional, TypeVar, TYPE_CHECKING

from PySide6.QtCore import QObject, Signal

from nestfin.data.repository import Collection, DocumentStore, RawDocument, Unsubscribe
from nestfin.domain.models import (
    Account,
    Budget,
    DocumentValidationError,
    Goal,
    Transaction,
    to_datetime,
    to_decimal,
)

if TYPE_CHECKING:
    from nestfin.state.selectors import Selection

logger = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTIONS: tuple[Collection, ...] = tuple(Collection)

_PARSERS: dict[Collection, Callable[[str, dict], Any]] = {
    Collection.TRANSACTIONS: Transaction.from_document,
    Collection.GOALS: Goal.from_document,
    Collection.BUDGETS: Budget.from_document,
    Collection.ACCOUNTS: Account.from_document,
}


class SessionRequiredError(RuntimeError):
    """A mutation was attempted without an authenticated session.

    This is a programming error: callers must not offer data operations
    before a user is signed in.
    """

    pass


class StoreStatus(Enum):
    """Lifecycle of the store for one session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PARTIAL = "partial"
    READY = "ready"


@dataclass(frozen=True)
class StoreState:
    """Immutable snapshot of everything the store publishes."""

    user_id: Optional[str] = None
    status: StoreStatus = StoreStatus.DISCONNECTED
    loading: bool = False
    transactions: tuple[Transaction, ...] = ()
    goals: tuple[Goal, ...] = ()
    budgets: tuple[Budget, ...] = ()
    accounts: tuple[Account, ...] = ()
    ready: frozenset[Collection] = field(default_factory=frozenset)
    failed: frozenset[Collection] = field(default_factory=frozenset)
    revision: int = 0

    @property
    def is_connected(self) -> bool:
        return self.user_id is not None

    def items(self, collection: Collection) -> tuple:
        """Records of one collection."""
        return getattr(self, collection.value)


@dataclass(frozen=True)
class SnapshotMessage:
    """One full-snapshot delivery from a subscription.

    ``generation`` identifies the session the subscription was opened for;
    ``token`` identifies the subscription itself (a resubscribe issues a
    new token for the same generation).
    """

    generation: int
    collection: Collection
    token: int
    documents: tuple[RawDocument, ...]


def _transaction_order(tx: Transaction) -> tuple:
    # Pending server timestamps first, then most recent first
    if tx.date is None:
        return (0, 0.0)
    return (1, -tx.date.timestamp())


class DataStore(QObject):
    """Reactive store for the active user's collections.

    Signals:
        state_changed(StoreState): Emitted with every new state
        became_ready(): Emitted once per session when all collections loaded
        snapshot_received(Collection): Emitted after a snapshot was applied
        subscription_failed(Collection, Exception): A subscription terminated
        operation_failed(str, Exception): A mutation was rejected by the backend

    Example:
        >>> store = DataStore(MemoryDocumentStore())
        >>> store.connect("user-1")
        >>> store.loading
        True
        >>> await store.add_transaction({"type": "expense", "amount": 12})
    """

    state_changed = Signal(object)
    became_ready = Signal()
    snapshot_received = Signal(object)
    subscription_failed = Signal(object, object)
    operation_failed = Signal(str, object)

    def __init__(self, documents: DocumentStore, parent: Optional[QObject] = None):
        """Initialize a disconnected store.

        Args:
            documents: Document store collaborator
            parent: Qt parent object
        """
        super().__init__(parent)
        self._documents = documents
        self._state = StoreState()
        self._generation = 0
        self._tokens: dict[Collection, int] = {}
        self._unsubscribers: dict[Collection, Unsubscribe] = {}
        self._token_counter = count(1)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> StoreState:
        """Current immutable state."""
        return self._state

    @property
    def revision(self) -> int:
        return self._state.revision

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def user_id(self) -> Optional[str]:
        return self._state.user_id

    def select(self, fn: Callable[[StoreState], T]) -> T:
        """Apply a selector to the current state."""
        return fn(self._state)

    def selection(
        self,
        fn: Callable[[StoreState], T],
        is_equal: Optional[Callable[[T, T], bool]] = None,
    ) -> "Selection[T]":
        """Create a live selection that notifies only when its value changes."""
        from nestfin.state.selectors import Selection

        if is_equal is None:
            return Selection(self, fn, parent=self)
        return Selection(self, fn, is_equal, parent=self)

    def _publish(self, state: StoreState) -> None:
        self._state = state
        logger.debug(f"Store revision {state.revision} ({state.status.value})")
        self.state_changed.emit(state)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def connect(self, user_id: Optional[str]) -> None:
        """Scope the store to a user.

        Calling again with the connected user is a no-op. Any other id
        (including None) cancels every live subscription before the new
        state is established, and the lists are cleared before new
        subscriptions are opened.
        """
        if user_id is None:
            self.disconnect()
            return

        if user_id == self._state.user_id and self._unsubscribers:
            logger.debug(f"Already connected to {user_id}")
            return

        self._cancel_subscriptions()
        self._generation += 1
        self._publish(
            StoreState(
                user_id=user_id,
                status=StoreStatus.CONNECTING,
                loading=True,
                revision=self._state.revision + 1,
            )
        )
        logger.info(f"Connecting store for user {user_id}")

        generation = self._generation
        for collection in COLLECTIONS:
            # Stop if a synchronous delivery triggered a session change
            if self._generation != generation:
                break
            self._subscribe(user_id, collection)

    def disconnect(self) -> None:
        """Cancel all subscriptions and return to the empty state."""
        was_connected = self._state.user_id is not None
        self._cancel_subscriptions()
        self._generation += 1
        if was_connected or self._state.loading:
            logger.info("Store disconnected")
        self._publish(StoreState(revision=self._state.revision + 1))

    def resubscribe(self, collection: Collection) -> None:
        """Replace one collection's subscription in place.

        Other collections, readiness and ``loading`` are untouched; the
        collection keeps its last known records until the new subscription
        delivers.

        Raises:
            SessionRequiredError: If no session is active
        """
        user_id = self._require_user("resubscribe")
        unsubscribe = self._unsubscribers.pop(collection, None)
        if unsubscribe:
            self._cancel(collection, unsubscribe)
        logger.info(f"Resubscribing to {collection.value}")
        self._subscribe(user_id, collection)

    def _subscribe(self, user_id: str, collection: Collection) -> None:
        generation = self._generation
        token = next(self._token_counter)
        # Register the token before subscribing: delivery may be synchronous
        self._tokens[collection] = token

        def on_snapshot(documents: list[RawDocument]) -> None:
            self.apply(SnapshotMessage(generation, collection, token, tuple(documents)))

        def on_error(error: Exception) -> None:
            self._on_subscription_error(generation, collection, token, error)

        try:
            unsubscribe = self._documents.subscribe(user_id, collection, on_snapshot, on_error)
        except Exception as e:
            self._on_subscription_error(generation, collection, token, e)
            return
        if self._generation == generation and self._tokens.get(collection) == token:
            self._unsubscribers[collection] = unsubscribe
        else:
            # Superseded while subscribing
            self._cancel(collection, unsubscribe)

    def _cancel(self, collection: Collection, unsubscribe: Unsubscribe) -> None:
        try:
            unsubscribe()
        except Exception as e:
            logger.warning(f"Error cancelling {collection.value} subscription: {e}")

    def _cancel_subscriptions(self) -> None:
        unsubscribers = self._unsubscribers
        self._unsubscribers = {}
        self._tokens = {}
        for collection, unsubscribe in unsubscribers.items():
            self._cancel(collection, unsubscribe)

    def _is_current(self, generation: int, collection: Collection, token: int) -> bool:
        return generation == self._generation and self._tokens.get(collection) == token

    # ------------------------------------------------------------------
    # Snapshot handling
    # ------------------------------------------------------------------

    def apply(self, message: SnapshotMessage) -> bool:
        """Apply one snapshot message (the store's single update entry point).

        Returns:
            True if applied, False if the message was stale and dropped
        """
        if not self._is_current(message.generation, message.collection, message.token):
            logger.debug(
                f"Dropping stale {message.collection.value} snapshot "
                f"(generation {message.generation}, token {message.token})"
            )
            return False

        records = self._parse(message.collection, message.documents)
        previous = self._state
        ready = previous.ready | {message.collection}
        all_ready = len(ready) == len(COLLECTIONS)
        loading = previous.loading and not all_ready

        state = replace(
            previous,
            **{message.collection.value: records},
            ready=ready,
            failed=previous.failed - {message.collection},
            loading=loading,
            status=StoreStatus.READY if all_ready else StoreStatus.PARTIAL,
            revision=previous.revision + 1,
        )
        self._publish(state)
        self.snapshot_received.emit(message.collection)

        if previous.loading and not loading:
            logger.info(f"Store ready for user {state.user_id}")
            self.became_ready.emit()
        return True

    def _parse(self, collection: Collection, documents: tuple[RawDocument, ...]) -> tuple:
        parser = _PARSERS[collection]
        records = []
        for doc_id, data in documents:
            try:
                records.append(parser(doc_id, data))
            except DocumentValidationError as e:
                logger.warning(f"Skipping invalid {collection.value} document {doc_id}: {e}")
        if collection == Collection.TRANSACTIONS:
            records.sort(key=_transaction_order)
        return tuple(records)

    def _on_subscription_error(
        self, generation: int, collection: Collection, token: int, error: Exception
    ) -> None:
        if not self._is_current(generation, collection, token):
            return
        self._unsubscribers.pop(collection, None)
        self._tokens.pop(collection, None)
        logger.warning(f"Subscription to {collection.value} failed: {error}")
        self._publish(
            replace(
                self._state,
                failed=self._state.failed | {collection},
                revision=self._state.revision + 1,
            )
        )
        self.subscription_failed.emit(collection, error)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    # Each operation checks the session when called and schedules the write
    # on the running loop right away; awaiting the returned task is optional.
    # Results reach the collections only through the subscriptions; nothing
    # is applied optimistically.

    def _require_user(self, operation: str) -> str:
        user_id = self._state.user_id
        if not user_id:
            raise SessionRequiredError(
                f"Cannot call {operation} without an authenticated user"
            )
        return user_id

    def _run(self, operation: str, pending: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pending.close()
            raise
        return loop.create_task(self._report_failure(operation, pending))

    async def _report_failure(self, operation: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            self.operation_failed.emit(operation, e)
            raise

    def add_transaction(self, payload: dict) -> Awaitable[str]:
        """Create a transaction. The server assigns its id and date.

        Returns:
            Task resolving to the new document id
        """
        user_id = self._require_user("add_transaction")
        data = Transaction.from_document("new", payload).to_document()
        data.pop("date", None)
        return self._run(
            "add_transaction",
            self._documents.add(user_id, Collection.TRANSACTIONS, data),
        )

    def update_transaction(self, transaction_id: str, payload: dict) -> Awaitable[None]:
        """Merge fields into an existing transaction."""
        user_id = self._require_user("update_transaction")
        return self._run(
            "update_transaction",
            self._documents.update(
                user_id, Collection.TRANSACTIONS, transaction_id, _without_id(payload)
            ),
        )

    def delete_transaction(self, transaction_id: str) -> Awaitable[None]:
        user_id = self._require_user("delete_transaction")
        return self._run(
            "delete_transaction",
            self._documents.delete(user_id, Collection.TRANSACTIONS, transaction_id),
        )

    def add_goal(self, payload: dict) -> Awaitable[str]:
        user_id = self._require_user("add_goal")
        data = Goal.from_document("new", payload).to_document()
        return self._run("add_goal", self._documents.add(user_id, Collection.GOALS, data))

    def contribute_to_goal(self, goal_id: str, amount: Any) -> Awaitable[None]:
        """Atomically add ``amount`` (may be negative) to a goal's current amount."""
        user_id = self._require_user("contribute_to_goal")
        delta = to_decimal(amount, "amount")
        return self._run(
            "contribute_to_goal",
            self._documents.increment(
                user_id, Collection.GOALS, goal_id, "currentAmount", delta
            ),
        )

    def upsert_budget(self, payload: dict) -> Awaitable[Optional[str]]:
        """Update the budget named by ``payload["id"]``, or create a new one."""
        user_id = self._require_user("upsert_budget")
        return self._run(
            "upsert_budget", self._upsert(user_id, Collection.BUDGETS, Budget, payload)
        )

    def upsert_account(self, payload: dict) -> Awaitable[Optional[str]]:
        """Update the account named by ``payload["id"]``, or create a new one."""
        user_id = self._require_user("upsert_account")
        return self._run(
            "upsert_account", self._upsert(user_id, Collection.ACCOUNTS, Account, payload)
        )

    async def _upsert(
        self, user_id: str, collection: Collection, record_type: type, payload: dict
    ) -> Optional[str]:
        doc_id = payload.get("id")
        if doc_id:
            await self._documents.update(user_id, collection, doc_id, _without_id(payload))
            return doc_id
        data = record_type.from_document("new", payload).to_document()
        return await self._documents.add(user_id, collection, data)

    def update_user_profile(self, payload: dict) -> Awaitable[None]:
        """Merge fields (recurring income/expenses, plan) into the profile."""
        user_id = self._require_user("update_user_profile")
        return self._run(
            "update_user_profile",
            self._documents.update_profile(user_id, _without_id(payload)),
        )


def _without_id(payload: dict) -> dict:
    data = {key: value for key, value in payload.items() if key != "id"}
    for key, value in data.items():
        if isinstance(value, Decimal):
            data[key] = str(value)
    if "date" in data:
        moment = to_datetime(data["date"])
        data["date"] = moment.isoformat() if moment else None
    return data
