from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, Dict, Optional, Protocol

from treasuremap.domain.registry import ShapeRegistry
from treasuremap.services.persistence_codec import (
    AttachCallback,
    DecodedMap,
    PersistenceError,
    decode,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0

SnapshotProvider = Callable[[int], Dict[str, Any]]


class LoadState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    LOADED = "loaded"


class MapDataGateway(Protocol):
    """Where a user's FeatureCollection is read from and written to."""

    def load(self, user_id: int) -> Optional[Dict[str, Any]]:
        ...

    def save(self, user_id: int, collection: Dict[str, Any]) -> int:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    """
    Scheduler backed by daemon ``threading.Timer`` objects.

    Callbacks run on the timer thread. Snapshots read the registry through
    ``ShapeRegistry.all()``, which holds the registry lock.
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class MapPersistence:
    """
    Load a user's map once and keep it saved with a debounced full snapshot.

    Saves are refused until the initial load completed, so an empty registry
    created at start-up can never overwrite persisted data. Each save carries
    a revision one higher than the last one loaded or written, which lets the
    store reject snapshots that arrive out of order.
    """

    def __init__(
        self,
        gateway: MapDataGateway,
        user_id: int,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._gateway = gateway
        self._user_id = user_id
        self._debounce_seconds = debounce_seconds
        self._scheduler = scheduler or ThreadingScheduler()
        self._state = LoadState.UNINITIALIZED
        self._revision = 0
        self._pending: Optional[TimerHandle] = None
        self._pending_snapshot: Optional[SnapshotProvider] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def has_pending_save(self) -> bool:
        return self._pending is not None

    def load(self, registry: ShapeRegistry, attach: Optional[AttachCallback] = None) -> DecodedMap:
        """
        Fetch and decode the user's map, then populate ``registry`` once.

        Raises:
            PersistenceError: If another load ran already or the data is unavailable;
                the registry is left untouched and saving stays disabled
        """
        if self._state is not LoadState.UNINITIALIZED:
            raise PersistenceError(f"Map data for user {self._user_id} is already {self._state.value}")

        self._state = LoadState.LOADING
        try:
            collection = self._gateway.load(self._user_id)
            decoded = decode(collection, attach) if collection is not None else DecodedMap()
            registry.restore(decoded.circles, decoded.regions, max(decoded.next_id, registry.next_id))
        except Exception as exc:
            # Any failure, including I/O errors from the gateway, allows a retry
            self._state = LoadState.UNINITIALIZED
            logger.error("Failed to load map data for user %s: %s", self._user_id, exc, exc_info=True)
            raise PersistenceError(f"Map data unavailable: {exc}") from exc

        self._revision = decoded.revision or 0
        self._state = LoadState.LOADED
        logger.info(
            "Loaded map data for user %s: %d circles, %d regions, %d markers",
            self._user_id, len(decoded.circles), len(decoded.regions), len(decoded.markers),
        )
        return decoded

    def mark_loaded(self) -> None:
        """Enable saving without loading, for a brand new map."""
        self._state = LoadState.LOADED

    def schedule_save(self, snapshot: SnapshotProvider) -> bool:
        """
        Save ``snapshot(revision)`` once no further call arrived for the debounce window.

        Returns False when saving is not allowed yet.
        """
        if self._state is not LoadState.LOADED:
            logger.debug("Ignoring save request before map data was loaded")
            return False

        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
            self._pending_snapshot = snapshot
            self._pending = self._scheduler.call_later(self._debounce_seconds, self._fire)
        return True

    def save_now(self, snapshot: SnapshotProvider) -> int:
        """Write a snapshot immediately and return the stored revision."""
        if self._state is not LoadState.LOADED:
            raise PersistenceError("Cannot save map data before it was loaded")

        revision = self._revision + 1
        collection = snapshot(revision)
        try:
            stored = self._gateway.save(self._user_id, collection)
        except PersistenceError:
            logger.error("Failed to save map data for user %s", self._user_id, exc_info=True)
            raise
        self._revision = max(revision, stored or revision)
        logger.debug("Saved map data for user %s at revision %s", self._user_id, self._revision)
        return self._revision

    def flush(self) -> Optional[int]:
        """Run a pending debounced save right away."""
        with self._lock:
            pending, snapshot = self._pending, self._pending_snapshot
            self._pending = None
            self._pending_snapshot = None
        if pending is None or snapshot is None:
            return None
        pending.cancel()
        return self.save_now(snapshot)

    def cancel(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
            self._pending = None
            self._pending_snapshot = None

    def _fire(self) -> None:
        with self._lock:
            snapshot = self._pending_snapshot
            self._pending = None
            self._pending_snapshot = None
        if snapshot is None:
            return
        try:
            self.save_now(snapshot)
        except PersistenceError as exc:
            # The next mutation schedules a fresh full snapshot
            logger.warning("Debounced save for user %s failed: %s", self._user_id, exc)
