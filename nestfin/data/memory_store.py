"""In-process document store.

Keeps every user's documents in dictionaries and delivers full snapshots to
subscribers asynchronously on the running asyncio loop, the way a hosted
realtime database would. Useful for local development, demos and tests.
"""

import asyncio
import copy
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import uuid4

from nestfin.data.repository import (
    Collection,
    DocumentNotFoundError,
    DocumentStore,
    ErrorCallback,
    ProfileCallback,
    RawDocument,
    SnapshotCallback,
    Unsubscribe,
)
from nestfin.domain.models import to_datetime, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    """One live subscription."""

    on_snapshot: Callable
    on_error: Optional[ErrorCallback]
    active: bool = True


def _transaction_sort_key(doc: RawDocument) -> tuple:
    # Pending (dateless) documents first, then most recent first
    moment = to_datetime(doc[1].get("date"))
    if moment is None:
        return (0, 0.0)
    return (1, -moment.timestamp())


def _schedule(callback: Callable[[], None]) -> None:
    """Run callback on the next loop iteration, or now if no loop is running."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
        return
    loop.call_soon(callback)


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed DocumentStore.

    Snapshots are computed at delivery time, so several writes made in the
    same loop iteration may reach a subscriber as one snapshot.

    Example:
        >>> store = MemoryDocumentStore()
        >>> unsubscribe = store.subscribe("u1", Collection.GOALS, print)
        >>> await store.add("u1", Collection.GOALS, {"name": "Car"})
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        """Initialize empty store.

        Args:
            clock: Source of server timestamps for new transactions
        """
        self._clock = clock
        self._documents: dict[tuple[str, Collection], dict[str, dict]] = defaultdict(dict)
        self._profiles: dict[str, dict] = {}
        self._listeners: dict[tuple[str, Collection], list[_Listener]] = defaultdict(list)
        self._profile_listeners: dict[str, list[_Listener]] = defaultdict(list)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        user_id: str,
        collection: Collection,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        key = (user_id, collection)
        listener = _Listener(on_snapshot, on_error)
        self._listeners[key].append(listener)
        _schedule(lambda: self._deliver(key, listener))
        return self._make_unsubscribe(self._listeners[key], listener)

    def subscribe_profile(
        self,
        user_id: str,
        on_snapshot: ProfileCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        listener = _Listener(on_snapshot, on_error)
        self._profile_listeners[user_id].append(listener)
        _schedule(lambda: self._deliver_profile(user_id, listener))
        return self._make_unsubscribe(self._profile_listeners[user_id], listener)

    def _make_unsubscribe(self, listeners: list[_Listener], listener: _Listener) -> Unsubscribe:
        def unsubscribe() -> None:
            listener.active = False
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def snapshot(self, user_id: str, collection: Collection) -> list[RawDocument]:
        """Current ordered contents of a collection (deep copies)."""
        docs = [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._documents[(user_id, collection)].items()
        ]
        if collection == Collection.TRANSACTIONS:
            docs.sort(key=_transaction_sort_key)
        return docs

    def _deliver(self, key: tuple[str, Collection], listener: _Listener) -> None:
        if listener.active:
            listener.on_snapshot(self.snapshot(*key))

    def _deliver_profile(self, user_id: str, listener: _Listener) -> None:
        if listener.active:
            profile = self._profiles.get(user_id)
            listener.on_snapshot(copy.deepcopy(profile) if profile is not None else None)

    def _publish(self, user_id: str, collection: Collection) -> None:
        key = (user_id, collection)
        for listener in list(self._listeners[key]):
            _schedule(lambda listener=listener: self._deliver(key, listener))

    def _publish_profile(self, user_id: str) -> None:
        for listener in list(self._profile_listeners[user_id]):
            _schedule(lambda listener=listener: self._deliver_profile(user_id, listener))

    def fail_subscription(
        self, user_id: str, collection: Collection, error: Exception
    ) -> int:
        """Terminate live subscriptions with an error (simulates a lost stream).

        Returns:
            Number of subscriptions terminated
        """
        key = (user_id, collection)
        listeners = list(self._listeners[key])
        self._listeners[key].clear()
        for listener in listeners:
            listener.active = False
            if listener.on_error:
                listener.on_error(error)
        logger.warning(f"Terminated {len(listeners)} subscription(s) on {collection.value}: {error}")
        return len(listeners)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _get(self, user_id: str, collection: Collection, doc_id: str) -> dict:
        try:
            return self._documents[(user_id, collection)][doc_id]
        except KeyError:
            raise DocumentNotFoundError(collection, doc_id)

    async def add(self, user_id: str, collection: Collection, data: dict) -> str:
        doc_id = uuid4().hex
        doc = copy.deepcopy(data)
        doc.pop("id", None)
        if collection == Collection.TRANSACTIONS:
            doc["date"] = self._clock()
        async with self._lock:
            self._documents[(user_id, collection)][doc_id] = doc
        self._publish(user_id, collection)
        return doc_id

    async def update(
        self, user_id: str, collection: Collection, doc_id: str, data: dict
    ) -> None:
        changes = copy.deepcopy(data)
        changes.pop("id", None)
        async with self._lock:
            self._get(user_id, collection, doc_id).update(changes)
        self._publish(user_id, collection)

    async def delete(self, user_id: str, collection: Collection, doc_id: str) -> None:
        async with self._lock:
            removed = self._documents[(user_id, collection)].pop(doc_id, None)
        if removed is not None:
            self._publish(user_id, collection)

    async def increment(
        self,
        user_id: str,
        collection: Collection,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> None:
        async with self._lock:
            doc = self._get(user_id, collection, doc_id)
            current = to_decimal(doc.get(field), field, Decimal("0"))
            doc[field] = str(current + to_decimal(delta, field))
        self._publish(user_id, collection)

    async def set_profile(self, user_id: str, data: dict, merge: bool = True) -> None:
        async with self._lock:
            if merge and user_id in self._profiles:
                self._profiles[user_id].update(copy.deepcopy(data))
            else:
                self._profiles[user_id] = copy.deepcopy(data)
        self._publish_profile(user_id)

    async def update_profile(self, user_id: str, data: dict) -> None:
        async with self._lock:
            if user_id not in self._profiles:
                raise DocumentNotFoundError("users", user_id)
            self._profiles[user_id].update(copy.deepcopy(data))
        self._publish_profile(user_id)
