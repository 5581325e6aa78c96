"""
handlers.py - Apply functions for domain events

Plain functions (Optional[WillRecord], EventRecord) -> WillRecord, one per
event kind, collected in DEFAULT_HANDLERS.

Every handler is an upsert: it sets absolute values derived from the event,
so re-applying an event yields the same record. Handlers that need an
existing entry (the will, a beneficiary, a document) raise
ProjectionApplyFailure when it is missing.
"""

from __future__ import annotations
from typing import Callable, Dict, Optional

from ..core import ProjectionApplyFailure
from ..events import (
    EventRecord,
    WILL_CREATED, CHECK_IN, WILL_EXECUTED,
    BENEFICIARY_ADDED, BENEFICIARY_UPDATED, BENEFICIARY_REMOVED,
    DEPOSIT_LOCKED, DEPOSIT_FLEXIBLE, WITHDRAW_FLEXIBLE,
    DISPUTE_STARTED, DOCUMENT_ADDED, DOCUMENT_REMOVED,
)
from .replica import BeneficiaryRecord, DocumentRecord, Replica, WillRecord, touch


# Handler type: (current record or None, event) -> new record
EventHandler = Callable[[Optional[WillRecord], EventRecord], WillRecord]


def _require_will(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    if record is None:
        raise ProjectionApplyFailure(f"{event.event_id}: no will for {event.testator}")
    return record


# ============================================================================
# HANDLER FUNCTIONS
# ============================================================================

def handle_will_created(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    """Insert or replace the will terms; beneficiaries, vaults and documents are kept."""
    p = event.params_dict
    if record is None:
        return WillRecord(
            will_id=p['testator'],
            testator=p['testator'],
            check_in_period=p['check_in_period'],
            dispute_period=p['dispute_period'],
            last_check_in=event.block_timestamp,
            created_at=event.block_timestamp,
            updated_at=event.block_timestamp,
        )
    return touch(
        record, event.block_timestamp,
        check_in_period=p['check_in_period'],
        dispute_period=p['dispute_period'],
        last_check_in=event.block_timestamp,
        created_at=event.block_timestamp,
        executed=False,
        total_distributed=None,
        dispute_deadline=None,
    )


def handle_check_in(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    """Set last check-in; a recorded dispute no longer applies."""
    record = _require_will(record, event)
    return touch(record, event.block_timestamp,
                 last_check_in=event.params_dict['timestamp'], dispute_deadline=None)


def handle_will_executed(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    """Mark executed; both vaults are empty after execution."""
    record = _require_will(record, event)
    return touch(
        record, event.block_timestamp,
        executed=True,
        total_distributed=event.params_dict['total_distributed'],
        locked_balance=0,
        flexible_balance=0,
    )


def handle_beneficiary_added(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    """Upsert: a repeated add replaces the entry in place."""
    record = _require_will(record, event)
    p = event.params_dict
    entry = BeneficiaryRecord(p['beneficiary'], p['share'], p['is_guardian'])
    if record.find_beneficiary(entry.beneficiary) is not None:
        beneficiaries = tuple(
            entry if b.beneficiary == entry.beneficiary else b for b in record.beneficiaries
        )
    else:
        beneficiaries = record.beneficiaries + (entry,)
    return touch(record, event.block_timestamp, beneficiaries=beneficiaries)


def handle_beneficiary_updated(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    record = _require_will(record, event)
    p = event.params_dict
    if record.find_beneficiary(p['beneficiary']) is None:
        raise ProjectionApplyFailure(
            f"{event.event_id}: {p['beneficiary']} is not a beneficiary of {record.will_id}"
        )
    entry = BeneficiaryRecord(p['beneficiary'], p['new_share'], p['is_guardian'])
    beneficiaries = tuple(
        entry if b.beneficiary == entry.beneficiary else b for b in record.beneficiaries
    )
    return touch(record, event.block_timestamp, beneficiaries=beneficiaries)


def handle_beneficiary_removed(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    record = _require_will(record, event)
    wallet = event.params_dict['beneficiary']
    if record.find_beneficiary(wallet) is None:
        raise ProjectionApplyFailure(
            f"{event.event_id}: {wallet} is not a beneficiary of {record.will_id}"
        )
    beneficiaries = tuple(b for b in record.beneficiaries if b.beneficiary != wallet)
    return touch(record, event.block_timestamp, beneficiaries=beneficiaries)


def handle_locked_balance(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    record = _require_will(record, event)
    return touch(record, event.block_timestamp, locked_balance=event.params_dict['balance'])


def handle_flexible_balance(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    """Deposits and withdrawals both carry the post-operation balance."""
    record = _require_will(record, event)
    return touch(record, event.block_timestamp, flexible_balance=event.params_dict['balance'])


def handle_dispute_started(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    record = _require_will(record, event)
    return touch(record, event.block_timestamp,
                 dispute_deadline=event.params_dict['dispute_deadline'])


def handle_document_added(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    """Upload time is the block time."""
    record = _require_will(record, event)
    p = event.params_dict
    doc = DocumentRecord(p['content_hash'], p['file_name'], p['category'], event.block_timestamp)
    if record.find_document(doc.content_hash) is not None:
        documents = tuple(doc if d.content_hash == doc.content_hash else d for d in record.documents)
    else:
        documents = record.documents + (doc,)
    return touch(record, event.block_timestamp, documents=documents)


def handle_document_removed(record: Optional[WillRecord], event: EventRecord) -> WillRecord:
    record = _require_will(record, event)
    content_hash = event.params_dict['content_hash']
    if record.find_document(content_hash) is None:
        raise ProjectionApplyFailure(
            f"{event.event_id}: document {content_hash} not attached to {record.will_id}"
        )
    documents = tuple(d for d in record.documents if d.content_hash != content_hash)
    return touch(record, event.block_timestamp, documents=documents)


# ============================================================================
# DEFAULT HANDLERS
# ============================================================================

DEFAULT_HANDLERS: Dict[str, EventHandler] = {
    WILL_CREATED: handle_will_created,
    CHECK_IN: handle_check_in,
    WILL_EXECUTED: handle_will_executed,
    BENEFICIARY_ADDED: handle_beneficiary_added,
    BENEFICIARY_UPDATED: handle_beneficiary_updated,
    BENEFICIARY_REMOVED: handle_beneficiary_removed,
    DEPOSIT_LOCKED: handle_locked_balance,
    DEPOSIT_FLEXIBLE: handle_flexible_balance,
    WITHDRAW_FLEXIBLE: handle_flexible_balance,
    DISPUTE_STARTED: handle_dispute_started,
    DOCUMENT_ADDED: handle_document_added,
    DOCUMENT_REMOVED: handle_document_removed,
}


def apply_event(
    replica: Replica,
    event: EventRecord,
    handlers: Optional[Dict[str, EventHandler]] = None,
) -> Replica:
    """
    Pure apply step: (replica, event) -> replica.

    Raises:
        ProjectionApplyFailure: No handler for the kind, or the handler
            found a missing will, beneficiary or document.
    """
    handlers = handlers if handlers is not None else DEFAULT_HANDLERS
    handler = handlers.get(event.kind)
    if handler is None:
        raise ProjectionApplyFailure(f"No handler for {event.kind}")
    return replica.with_will(handler(replica.get(event.testator), event))


def apply_all(replica: Replica, events) -> Replica:
    """Apply events in order, stopping at the first failure."""
    for event in events:
        replica = apply_event(replica, event)
    return replica
