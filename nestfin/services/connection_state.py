"""Subscription health tracking.

Watches the collection store's realtime subscriptions, flags collections
whose snapshots have gone quiet and resubscribes failed ones with
exponential backoff.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from nestfin.data.repository import Collection
from nestfin.state.store import COLLECTIONS, DataStore, StoreState

logger = logging.getLogger(__name__)

MAX_BACKOFF_MS = 16000


class HealthStatus(Enum):
    """Health of one collection subscription."""

    HEALTHY = "healthy"
    STALE = "stale"
    RECOVERING = "recovering"
    FAILED = "failed"


def backoff_delay_ms(attempt: int) -> int:
    """Delay before resubscribe attempt ``attempt`` (1-based): 1s, 2s, 4s, 8s, 16s."""
    return min(1000 * (2 ** (attempt - 1)), MAX_BACKOFF_MS)


class ConnectionHealthService(QObject):
    """Tracks and restores the store's collection subscriptions.

    Staleness is advisory: backends that only push on change can be quiet
    for a long time while perfectly healthy. A failed subscription, on the
    other hand, is resubscribed until it delivers again or the attempt
    budget runs out.

    Signals:
        status_changed(Collection, HealthStatus): A collection changed health
        resubscribe_attempt(Collection, int, int): Before each attempt
            (collection, attempt, max_attempts)
    """

    status_changed = Signal(object, object)
    resubscribe_attempt = Signal(object, int, int)

    def __init__(
        self,
        store: DataStore,
        stale_after_seconds: int = 300,
        health_check_interval_ms: int = 30000,
        max_resubscribe_attempts: int = 5,
        clock: Callable[[], datetime] = datetime.now,
        parent: Optional[QObject] = None,
    ):
        """Initialize health tracking for a store.

        Args:
            store: Collection store to watch
            stale_after_seconds: Quiet period after which a ready collection is STALE
            health_check_interval_ms: Interval between periodic checks
            max_resubscribe_attempts: Attempts before a collection stays FAILED
            clock: Source of the current time
            parent: Qt parent object
        """
        super().__init__(parent)
        self._store = store
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._health_check_interval = health_check_interval_ms
        self._max_attempts = max_resubscribe_attempts
        self._clock = clock

        self._user_id: Optional[str] = store.user_id
        self._statuses: dict[Collection, HealthStatus] = {}
        self._last_seen: dict[Collection, datetime] = {}
        self._attempts: dict[Collection, int] = {}
        self._retry_timers: dict[Collection, QTimer] = {}
        self._health_check_timer: Optional[QTimer] = None

        store.snapshot_received.connect(self._on_snapshot)
        store.subscription_failed.connect(self._on_subscription_failed)
        store.state_changed.connect(self._on_state_changed)

    def status(self, collection: Collection) -> HealthStatus:
        return self._statuses.get(collection, HealthStatus.HEALTHY)

    @property
    def overall(self) -> HealthStatus:
        """Worst status across the collections."""
        order = list(HealthStatus)
        return max(
            (self.status(collection) for collection in COLLECTIONS),
            key=order.index,
        )

    def attempts(self, collection: Collection) -> int:
        return self._attempts.get(collection, 0)

    @property
    def is_monitoring(self) -> bool:
        return self._health_check_timer is not None

    def start_monitoring(self) -> None:
        """Start periodic staleness checks."""
        if self._health_check_timer:
            return
        self._health_check_timer = QTimer(self)
        self._health_check_timer.timeout.connect(lambda: self.check())
        self._health_check_timer.start(self._health_check_interval)
        logger.info(f"Started health monitoring (interval: {self._health_check_interval}ms)")

    def stop_monitoring(self) -> None:
        """Stop periodic checks and any pending resubscribe attempts."""
        if self._health_check_timer:
            self._health_check_timer.stop()
            self._health_check_timer = None
        self._cancel_retries()
        logger.info("Stopped health monitoring")

    def check(self, now: Optional[datetime] = None) -> list[Collection]:
        """Mark ready collections with no recent snapshot as STALE.

        Returns:
            Collections that are stale after this check
        """
        now = now or self._clock()
        state = self._store.state
        stale = []
        for collection in COLLECTIONS:
            if collection not in state.ready or collection in state.failed:
                continue
            last_seen = self._last_seen.get(collection)
            if last_seen is None or now - last_seen <= self._stale_after:
                continue
            if self.status(collection) == HealthStatus.HEALTHY:
                logger.info(f"No {collection.value} snapshot since {last_seen:%H:%M:%S}")
                self._set_status(collection, HealthStatus.STALE)
            if self.status(collection) == HealthStatus.STALE:
                stale.append(collection)
        return stale

    def _set_status(self, collection: Collection, status: HealthStatus) -> None:
        """Update status and emit signal if changed."""
        if self.status(collection) == status:
            return
        old_status = self.status(collection)
        self._statuses[collection] = status
        logger.info(f"{collection.value} health: {old_status.value} -> {status.value}")
        self.status_changed.emit(collection, status)

    def _on_snapshot(self, collection: Collection) -> None:
        self._last_seen[collection] = self._clock()
        self._attempts.pop(collection, None)
        timer = self._retry_timers.pop(collection, None)
        if timer:
            timer.stop()
        self._set_status(collection, HealthStatus.HEALTHY)

    def _on_state_changed(self, state: StoreState) -> None:
        # A new session starts with a clean slate
        if state.user_id == self._user_id:
            return
        self._user_id = state.user_id
        self._cancel_retries()
        self._last_seen.clear()
        self._attempts.clear()
        for collection in list(self._statuses):
            self._set_status(collection, HealthStatus.HEALTHY)

    def _on_subscription_failed(self, collection: Collection, error: Exception) -> None:
        attempt = self._attempts.get(collection, 0)
        if attempt >= self._max_attempts:
            logger.error(
                f"Giving up on {collection.value} after {attempt} resubscribe attempts: {error}"
            )
            self._set_status(collection, HealthStatus.FAILED)
            return

        attempt += 1
        self._attempts[collection] = attempt
        self._set_status(collection, HealthStatus.RECOVERING)

        delay_ms = backoff_delay_ms(attempt)
        logger.info(f"Resubscribing to {collection.value} in {delay_ms}ms")
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(lambda: self._resubscribe(collection))
        self._retry_timers[collection] = timer
        timer.start(delay_ms)

    def _resubscribe(self, collection: Collection) -> None:
        timer = self._retry_timers.pop(collection, None)
        if timer:
            timer.stop()
            timer.deleteLater()
        if self._store.user_id is None:
            return

        attempt = self._attempts.get(collection, 0)
        self.resubscribe_attempt.emit(collection, attempt, self._max_attempts)
        logger.info(
            f"Resubscribe attempt {attempt}/{self._max_attempts} for {collection.value}"
        )
        try:
            self._store.resubscribe(collection)
        except Exception as e:
            logger.warning(f"Resubscribe to {collection.value} failed: {e}")
            self._on_subscription_failed(collection, e)

    def _cancel_retries(self) -> None:
        timers = self._retry_timers
        self._retry_timers = {}
        for timer in timers.values():
            timer.stop()
            timer.deleteLater()

    def get_status_message(self) -> str:
        """Get human-readable status message."""
        overall = self.overall
        if overall == HealthStatus.HEALTHY:
            return "Live"
        if overall == HealthStatus.STALE:
            return "Waiting for updates..."
        if overall == HealthStatus.RECOVERING:
            return "Reconnecting..."
        return "Offline"
