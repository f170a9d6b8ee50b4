"""SQLite implementation of the DocumentStore interface.

Documents are stored as JSON blobs keyed by (user, collection, id) with a
version column. Merges and increments go through a compare-and-swap loop on
that version, so concurrent writers (other processes sharing the file, or
interleaved coroutines) never lose an update.

Realtime delivery is in-process: after each committed write, subscribers of
the affected collection receive a freshly queried full snapshot.
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

import aiosqlite

from nestfin.data.repository import (
    Collection,
    ConcurrencyError,
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

_PROFILE_KEY = "profile"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(data: dict) -> str:
    return json.dumps(data, default=_json_default)


def _transaction_sort_key(doc: RawDocument) -> tuple:
    moment = to_datetime(doc[1].get("date"))
    if moment is None:
        return (0, 0.0)
    return (1, -moment.timestamp())


@dataclass
class _Listener:
    on_snapshot: Callable
    on_error: Optional[ErrorCallback]
    active: bool = True


class SQLiteDocumentStore(DocumentStore):
    """aiosqlite-backed DocumentStore.

    Must be used from a running asyncio loop (qasync in the application):
    snapshot deliveries are scheduled as tasks on that loop.
    """

    def __init__(
        self,
        db_path: Path,
        max_retries: int = 10,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize store.

        Args:
            db_path: Database file (created if missing)
            max_retries: Compare-and-swap attempts before ConcurrencyError
            clock: Source of server timestamps for new transactions
        """
        self._db_path = db_path
        self._max_retries = max_retries
        self._clock = clock
        self._conn: Optional[aiosqlite.Connection] = None
        self._listeners: dict[tuple[str, str], list[_Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    async def connect(self) -> None:
        """Connect to database and ensure schema exists."""
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._ensure_schema()

    async def close(self) -> None:
        """Cancel pending deliveries and close the connection."""
        for listeners in self._listeners.values():
            for listener in listeners:
                listener.active = False
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        await self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS documents (
                user_id TEXT NOT NULL,
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, collection, id)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_owner
                ON documents(user_id, collection);

            CREATE TABLE IF NOT EXISTS profiles (
                user_id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            );
            """
        )
        await self._conn.commit()

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
        key = (user_id, collection.value)
        return self._add_listener(key, _Listener(on_snapshot, on_error))

    def subscribe_profile(
        self,
        user_id: str,
        on_snapshot: ProfileCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        key = (user_id, _PROFILE_KEY)
        return self._add_listener(key, _Listener(on_snapshot, on_error))

    def _add_listener(self, key: tuple[str, str], listener: _Listener) -> Unsubscribe:
        listeners = self._listeners[key]
        listeners.append(listener)
        self._schedule(key, listener)

        def unsubscribe() -> None:
            listener.active = False
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _schedule(self, key: tuple[str, str], listener: _Listener) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(key, listener))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _publish(self, user_id: str, name: str) -> None:
        key = (user_id, name)
        for listener in list(self._listeners[key]):
            self._schedule(key, listener)

    async def _deliver(self, key: tuple[str, str], listener: _Listener) -> None:
        if not listener.active:
            return
        user_id, name = key
        try:
            if name == _PROFILE_KEY:
                payload = await self.get_profile(user_id)
            else:
                payload = await self.snapshot(user_id, Collection(name))
        except aiosqlite.Error as e:
            logger.warning(f"Snapshot query failed for {name}: {e}")
            listener.active = False
            if listener in self._listeners[key]:
                self._listeners[key].remove(listener)
            if listener.on_error:
                listener.on_error(e)
            return
        # Re-check: unsubscribe may have happened while the query ran
        if listener.active:
            listener.on_snapshot(payload)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def snapshot(self, user_id: str, collection: Collection) -> list[RawDocument]:
        """Full ordered contents of a collection."""
        cursor = await self._conn.execute(
            "SELECT id, data FROM documents WHERE user_id = ? AND collection = ? "
            "ORDER BY created_at",
            (user_id, collection.value),
        )
        rows = await cursor.fetchall()
        docs = [(row["id"], json.loads(row["data"])) for row in rows]
        if collection == Collection.TRANSACTIONS:
            docs.sort(key=_transaction_sort_key)
        return docs

    async def get_profile(self, user_id: str) -> Optional[dict]:
        cursor = await self._conn.execute(
            "SELECT data FROM profiles WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        return json.loads(row["data"]) if row else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, user_id: str, collection: Collection, data: dict) -> str:
        doc_id = uuid4().hex
        doc = dict(data)
        doc.pop("id", None)
        now = self._clock()
        if collection == Collection.TRANSACTIONS:
            doc["date"] = now
        await self._conn.execute(
            "INSERT INTO documents (user_id, collection, id, data, version, created_at) "
            "VALUES (?, ?, ?, ?, 1, ?)",
            (user_id, collection.value, doc_id, _dumps(doc), now.isoformat()),
        )
        await self._conn.commit()
        self._publish(user_id, collection.value)
        return doc_id

    async def _compare_and_swap(
        self,
        user_id: str,
        collection: Collection,
        doc_id: str,
        modify: Callable[[dict], dict],
    ) -> None:
        """Apply ``modify`` to a document, retrying on version conflicts."""
        for attempt in range(1, self._max_retries + 1):
            cursor = await self._conn.execute(
                "SELECT data, version FROM documents "
                "WHERE user_id = ? AND collection = ? AND id = ?",
                (user_id, collection.value, doc_id),
            )
            row = await cursor.fetchone()
            if row is None:
                raise DocumentNotFoundError(collection, doc_id)

            new_data = modify(json.loads(row["data"]))
            cursor = await self._conn.execute(
                "UPDATE documents SET data = ?, version = version + 1 "
                "WHERE user_id = ? AND collection = ? AND id = ? AND version = ?",
                (_dumps(new_data), user_id, collection.value, doc_id, row["version"]),
            )
            await self._conn.commit()
            if cursor.rowcount == 1:
                self._publish(user_id, collection.value)
                return
            logger.debug(
                f"Version conflict on {collection.value}/{doc_id} "
                f"(attempt {attempt}/{self._max_retries})"
            )

        raise ConcurrencyError(
            f"Could not update {collection.value}/{doc_id} after {self._max_retries} attempts"
        )

    async def update(
        self, user_id: str, collection: Collection, doc_id: str, data: dict
    ) -> None:
        changes = dict(data)
        changes.pop("id", None)

        def merge(current: dict) -> dict:
            current.update(json.loads(_dumps(changes)))
            return current

        await self._compare_and_swap(user_id, collection, doc_id, merge)

    async def delete(self, user_id: str, collection: Collection, doc_id: str) -> None:
        cursor = await self._conn.execute(
            "DELETE FROM documents WHERE user_id = ? AND collection = ? AND id = ?",
            (user_id, collection.value, doc_id),
        )
        await self._conn.commit()
        if cursor.rowcount:
            self._publish(user_id, collection.value)

    async def increment(
        self,
        user_id: str,
        collection: Collection,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> None:
        step = to_decimal(delta, field)

        def add(current: dict) -> dict:
            value = to_decimal(current.get(field), field, Decimal("0"))
            current[field] = str(value + step)
            return current

        await self._compare_and_swap(user_id, collection, doc_id, add)

    async def set_profile(self, user_id: str, data: dict, merge: bool = True) -> None:
        existing = await self.get_profile(user_id) if merge else None
        payload = {**(existing or {}), **json.loads(_dumps(data))}
        await self._conn.execute(
            "INSERT INTO profiles (user_id, data, version) VALUES (?, ?, 1) "
            "ON CONFLICT(user_id) DO UPDATE SET data = excluded.data, "
            "version = profiles.version + 1",
            (user_id, _dumps(payload)),
        )
        await self._conn.commit()
        self._publish(user_id, _PROFILE_KEY)

    async def update_profile(self, user_id: str, data: dict) -> None:
        changes = json.loads(_dumps(data))
        for attempt in range(1, self._max_retries + 1):
            cursor = await self._conn.execute(
                "SELECT data, version FROM profiles WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise DocumentNotFoundError("users", user_id)
            merged = {**json.loads(row["data"]), **changes}
            cursor = await self._conn.execute(
                "UPDATE profiles SET data = ?, version = version + 1 "
                "WHERE user_id = ? AND version = ?",
                (_dumps(merged), user_id, row["version"]),
            )
            await self._conn.commit()
            if cursor.rowcount == 1:
                self._publish(user_id, _PROFILE_KEY)
                return
            logger.debug(f"Version conflict on profile {user_id} (attempt {attempt})")

        raise ConcurrencyError(f"Could not update profile {user_id} after {self._max_retries} attempts")
