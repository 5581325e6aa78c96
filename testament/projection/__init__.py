"""
Projection - event-sourced replica of the will state.

- replica: immutable WillRecord / Replica snapshot with a content fingerprint
- handlers: apply functions keyed by event kind
- store: SQLite persistence and read queries
- engine: backfill + live subscription, deduplicated by ordering key
"""

from .replica import BeneficiaryRecord, DocumentRecord, WillRecord, Replica
from .handlers import DEFAULT_HANDLERS, apply_event, apply_all
from .store import ReplicaStore
from .engine import ProjectionEngine, DEFAULT_BACKFILL_WINDOW
