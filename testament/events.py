"""
events.py - Domain events emitted by the will state machine

Core concepts:
1. EventRecord: Immutable fact with a kind, a will (testator) and an ordering key
2. Wire codec: encode_log / decode_log convert to and from raw log dicts
3. EventLog: Append-only in-memory event source (blocks of ordered logs)
   with history queries and live subscription

Wire form of a raw log:
    {"event": "DepositLocked", "blockNumber": 12, "logIndex": 0,
     "blockTimestamp": 1735689600,
     "args": {"testator": "0x...", "amount": "10", "balance": "10"}}

Integer arguments travel as decimal strings.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .core import is_valid_identity

logger = logging.getLogger(__name__)


# ============================================================================
# EVENT KINDS
# ============================================================================

WILL_CREATED = "WillCreated"
CHECK_IN = "CheckIn"
WILL_EXECUTED = "WillExecuted"
BENEFICIARY_ADDED = "BeneficiaryAdded"
BENEFICIARY_UPDATED = "BeneficiaryUpdated"
BENEFICIARY_REMOVED = "BeneficiaryRemoved"
DEPOSIT_LOCKED = "DepositLocked"
DEPOSIT_FLEXIBLE = "DepositFlexible"
WITHDRAW_FLEXIBLE = "WithdrawFlexible"
DISPUTE_STARTED = "DisputeStarted"
DOCUMENT_ADDED = "DocumentAdded"
DOCUMENT_REMOVED = "DocumentRemoved"

# Argument codecs
_ADDRESS = "address"
_INT = "int"
_BOOL = "bool"
_STR = "str"

# kind -> ((wire_name, param_name, codec), ...). The first field is always the testator.
EVENT_SCHEMAS: Dict[str, Tuple[Tuple[str, str, str], ...]] = {
    WILL_CREATED: (
        ("testator", "testator", _ADDRESS),
        ("checkInPeriod", "check_in_period", _INT),
        ("disputePeriod", "dispute_period", _INT),
    ),
    CHECK_IN: (
        ("testator", "testator", _ADDRESS),
        ("timestamp", "timestamp", _INT),
    ),
    WILL_EXECUTED: (
        ("testator", "testator", _ADDRESS),
        ("totalDistributed", "total_distributed", _INT),
    ),
    BENEFICIARY_ADDED: (
        ("testator", "testator", _ADDRESS),
        ("beneficiary", "beneficiary", _ADDRESS),
        ("share", "share", _INT),
        ("isGuardian", "is_guardian", _BOOL),
    ),
    BENEFICIARY_UPDATED: (
        ("testator", "testator", _ADDRESS),
        ("beneficiary", "beneficiary", _ADDRESS),
        ("newShare", "new_share", _INT),
        ("isGuardian", "is_guardian", _BOOL),
    ),
    BENEFICIARY_REMOVED: (
        ("testator", "testator", _ADDRESS),
        ("beneficiary", "beneficiary", _ADDRESS),
    ),
    DEPOSIT_LOCKED: (
        ("testator", "testator", _ADDRESS),
        ("amount", "amount", _INT),
        ("balance", "balance", _INT),
    ),
    DEPOSIT_FLEXIBLE: (
        ("testator", "testator", _ADDRESS),
        ("amount", "amount", _INT),
        ("balance", "balance", _INT),
    ),
    WITHDRAW_FLEXIBLE: (
        ("testator", "testator", _ADDRESS),
        ("amount", "amount", _INT),
        ("balance", "balance", _INT),
    ),
    DISPUTE_STARTED: (
        ("testator", "testator", _ADDRESS),
        ("disputeDeadline", "dispute_deadline", _INT),
    ),
    DOCUMENT_ADDED: (
        ("testator", "testator", _ADDRESS),
        ("ipfsHash", "content_hash", _STR),
        ("fileName", "file_name", _STR),
        ("documentType", "category", _STR),
    ),
    DOCUMENT_REMOVED: (
        ("testator", "testator", _ADDRESS),
        ("ipfsHash", "content_hash", _STR),
    ),
}

EVENT_KINDS = tuple(EVENT_SCHEMAS)

# (block_number, log_index)
OrderingKey = Tuple[int, int]


# ============================================================================
# EVENT RECORD
# ============================================================================

@dataclass(frozen=True, slots=True)
class EventRecord:
    """
    Immutable domain event.

    Sorting: by block_number, then log_index.

    Attributes:
        kind: One of EVENT_KINDS
        block_number: Position of the block holding the event
        log_index: Position of the event inside its block
        block_timestamp: Unix seconds of the block
        params: Event arguments as frozen tuple of (name, value) pairs
    """
    kind: str
    block_number: int
    log_index: int
    block_timestamp: int
    params: tuple = ()

    def __lt__(self, other: 'EventRecord') -> bool:
        return self.ordering_key < other.ordering_key

    @property
    def ordering_key(self) -> OrderingKey:
        return (self.block_number, self.log_index)

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    @property
    def testator(self) -> str:
        return self.params_dict['testator']

    @property
    def event_id(self) -> str:
        """Deterministic ID: kind and ordering key."""
        return f"{self.kind}:{self.block_number}:{self.log_index}"


def make_params(**kwargs) -> tuple:
    """Freeze keyword arguments into EventRecord.params form."""
    return tuple(sorted(kwargs.items()))


# ============================================================================
# WIRE CODEC
# ============================================================================

def _encode_arg(value: Any, codec: str) -> Any:
    if codec == _INT:
        return str(value)
    return value


def _decode_arg(value: Any, codec: str, name: str) -> Any:
    if codec == _ADDRESS:
        if not is_valid_identity(value):
            raise ValueError(f"{name}: invalid address {value!r}")
        return value.lower()
    if codec == _INT:
        if isinstance(value, bool):
            raise ValueError(f"{name}: expected integer, got bool")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value)
        raise ValueError(f"{name}: expected integer, got {value!r}")
    if codec == _BOOL:
        if not isinstance(value, bool):
            raise ValueError(f"{name}: expected bool, got {value!r}")
        return value
    if not isinstance(value, str):
        raise ValueError(f"{name}: expected string, got {value!r}")
    return value


def _require_position(raw: Dict[str, Any], field_name: str) -> int:
    value = raw.get(field_name)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{field_name}: expected non-negative integer, got {value!r}")
    return value


def encode_log(record: EventRecord) -> Dict[str, Any]:
    """Convert an EventRecord to its raw log form."""
    params = record.params_dict
    return {
        "event": record.kind,
        "blockNumber": record.block_number,
        "logIndex": record.log_index,
        "blockTimestamp": record.block_timestamp,
        "args": {
            wire: _encode_arg(params[name], codec)
            for wire, name, codec in EVENT_SCHEMAS[record.kind]
        },
    }


def decode_log(raw: Any) -> EventRecord:
    """
    Parse a raw log into an EventRecord.

    Raises:
        ValueError: Unknown event name, missing or mistyped fields.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Log must be an object, got {type(raw).__name__}")
    kind = raw.get("event")
    if kind not in EVENT_SCHEMAS:
        raise ValueError(f"Unknown event {kind!r}")
    args = raw.get("args")
    if not isinstance(args, dict):
        raise ValueError(f"{kind}: args must be an object")
    params = {}
    for wire, name, codec in EVENT_SCHEMAS[kind]:
        if wire not in args:
            raise ValueError(f"{kind}: missing argument {wire}")
        params[name] = _decode_arg(args[wire], codec, f"{kind}.{wire}")
    return EventRecord(
        kind=kind,
        block_number=_require_position(raw, "blockNumber"),
        log_index=_require_position(raw, "logIndex"),
        block_timestamp=_require_position(raw, "blockTimestamp"),
        params=make_params(**params),
    )


# ============================================================================
# EVENT SOURCE
# ============================================================================

# Subscriber callback receives one raw log at a time
LogCallback = Callable[[Dict[str, Any]], None]


class EventSource(Protocol):
    """What the projection engine needs from an ordered, replayable log."""

    def head(self) -> int:
        """Number of the latest block (0 when empty)."""
        ...

    def get_logs(self, from_block: int, to_block: Optional[int] = None) -> List[Dict[str, Any]]:
        """Raw logs of blocks from_block..to_block inclusive, in order."""
        ...

    def subscribe(self, callback: LogCallback) -> Callable[[], None]:
        """Deliver future logs to callback; returns an unsubscribe function."""
        ...


class EventLog:
    """
    Append-only in-memory event source.

    Each state-changing operation appends one block. Subscribers are called
    after the block is recorded, outside the log's lock, in append order.
    """

    def __init__(self):
        self._records: List[EventRecord] = []
        self._head = 0
        self._subscribers: List[LogCallback] = []
        self._lock = threading.Lock()

    def head(self) -> int:
        with self._lock:
            return self._head

    def records(self) -> List[EventRecord]:
        with self._lock:
            return list(self._records)

    def append_block(self, timestamp: int, events: List[Tuple[str, Dict[str, Any]]]) -> List[EventRecord]:
        """
        Record events as the next block and notify subscribers.

        Args:
            timestamp: Block time in unix seconds
            events: (kind, params) pairs in emission order
        """
        with self._lock:
            self._head += 1
            block = [
                EventRecord(kind, self._head, i, timestamp, make_params(**params))
                for i, (kind, params) in enumerate(events)
            ]
            self._records.extend(block)
            subscribers = list(self._subscribers)
        for record in block:
            logger.debug("Emitted %s for %s", record.event_id, record.testator)
            raw = encode_log(record)
            for callback in subscribers:
                callback(raw)
        return block

    def get_logs(self, from_block: int, to_block: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            last = self._head if to_block is None else to_block
            selected = [r for r in self._records if from_block <= r.block_number <= last]
        return [encode_log(r) for r in selected]

    def subscribe(self, callback: LogCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
