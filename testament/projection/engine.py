"""
engine.py - Projection Engine

Single writer that keeps the replica store in step with an event source.

Startup sequence (start()):
1. Load the stored replica and checkpoint
2. Subscribe to the source; live logs are buffered while backfilling
3. Backfill from max(checkpoint block, head - backfill_window) through head
4. Drain the buffer, then process live logs as they arrive

Every log, live or historical, goes through the same process() path:
    decode -> skip if ordering key <= last applied -> apply -> persist

Failure handling:
    - malformed log (decode ValueError): logged and skipped
    - ProjectionApplyFailure: logged and skipped; checkpoint advances
    - StorageFailure: propagates from start()/process(); on the live path the
      engine unsubscribes and records it in `failed`. A restart resumes
      from the stored checkpoint
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from ..core import ProjectionApplyFailure, StorageFailure
from ..events import EventSource, OrderingKey, decode_log
from .handlers import DEFAULT_HANDLERS, EventHandler, apply_event
from .replica import Replica
from .store import ReplicaStore

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_WINDOW = 10_000


class ProjectionEngine:
    """
    Event projection engine.

    Example:
        engine = ProjectionEngine(manager.events, ReplicaStore("replica.db"))
        engine.start()
        ...
        engine.stop()
    """

    def __init__(
        self,
        source: EventSource,
        store: ReplicaStore,
        backfill_window: Optional[int] = DEFAULT_BACKFILL_WINDOW,
        handlers: Optional[Dict[str, EventHandler]] = None,
    ):
        self.source = source
        self.store = store
        self.backfill_window = backfill_window
        self.handlers = handlers if handlers is not None else DEFAULT_HANDLERS
        self.replica = Replica()
        self.last_key: Optional[OrderingKey] = None
        self.applied = 0
        self.skipped = 0
        self.failed: Optional[StorageFailure] = None

        self._lock = threading.Lock()
        self._buffer_lock = threading.Lock()
        self._buffer: List[Dict[str, Any]] = []
        self._backfilling = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        """Load state, subscribe, backfill, then switch to live processing."""
        with self._lock:
            self.replica = self.store.load()
            self.last_key = self.store.checkpoint()
            self.failed = None
        with self._buffer_lock:
            self._backfilling = True
            self._buffer = []
        self._unsubscribe = self.source.subscribe(self._on_live)
        try:
            self.backfill()
            self._drain()
        except StorageFailure:
            self.stop()
            raise
        logger.info("Projection live at %s (%d wills)", self.last_key, len(self.replica))

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._buffer_lock:
            self._backfilling = False
            self._buffer = []

    def rebuild(self) -> None:
        """Drop the replica and replay the source from block zero."""
        self.stop()
        self.store.reset()
        with self._lock:
            self.replica = Replica()
            self.last_key = None
        saved_window = self.backfill_window
        self.backfill_window = None
        try:
            self.start()
        finally:
            self.backfill_window = saved_window

    # ========================================================================
    # BACKFILL AND LIVE
    # ========================================================================

    def backfill_start(self, head: int) -> int:
        """First block to fetch: the checkpoint block, bounded by the lookback window."""
        start = 0
        if self.backfill_window is not None:
            start = max(0, head - self.backfill_window)
        if self.last_key is not None:
            start = max(start, self.last_key[0])
        return start

    def backfill(self) -> int:
        """
        Fetch and process history up to the current head.

        Returns:
            Number of logs fetched.
        """
        head = self.source.head()
        from_block = self.backfill_start(head)
        logs = self.source.get_logs(from_block, head)
        logger.info("Backfilling blocks %d..%d (%d logs)", from_block, head, len(logs))
        for raw in logs:
            self.process(raw)
        return len(logs)

    def _on_live(self, raw: Dict[str, Any]) -> None:
        with self._buffer_lock:
            if self._backfilling:
                self._buffer.append(raw)
                return
        if self.failed is not None:
            return
        try:
            self.process(raw)
        except StorageFailure:
            # The source must not see projection faults; the engine stays
            # halted until start() resumes it from the checkpoint.
            self.stop()

    def _drain(self) -> None:
        while True:
            with self._buffer_lock:
                if not self._buffer:
                    self._backfilling = False
                    return
                pending, self._buffer = self._buffer, []
            for raw in pending:
                self.process(raw)

    # ========================================================================
    # APPLY PATH
    # ========================================================================

    def process(self, raw: Any) -> bool:
        """
        Decode, deduplicate, apply and persist one raw log.

        Returns:
            True if the replica changed.

        Raises:
            StorageFailure: The store could not persist the result.
        """
        with self._lock:
            if self.failed is not None:
                raise self.failed
            try:
                event = decode_log(raw)
            except ValueError as e:
                self.skipped += 1
                logger.warning("Skipping malformed log %r: %s", raw, e)
                return False

            if self.last_key is not None and event.ordering_key <= self.last_key:
                logger.debug("Duplicate %s ignored", event.event_id)
                return False

            try:
                replica = apply_event(self.replica, event, self.handlers)
            except ProjectionApplyFailure as e:
                self.skipped += 1
                logger.warning("Skipping %s: %s", event.event_id, e)
                self._persist(lambda: self.store.save_checkpoint(event.ordering_key))
                self.last_key = event.ordering_key
                return False

            self._persist(lambda: self.store.save_will(replica.get(event.testator), event.ordering_key))
            self.replica = replica
            self.last_key = event.ordering_key
            self.applied += 1
            return True

    def _persist(self, write: Callable[[], None]) -> None:
        try:
            write()
        except StorageFailure as e:
            logger.error("Storage failure, projection halted at %s: %s", self.last_key, e)
            self.failed = e
            raise

    @property
    def halted(self) -> bool:
        return self.failed is not None

    def fingerprint(self) -> str:
        with self._lock:
            return self.replica.fingerprint()
