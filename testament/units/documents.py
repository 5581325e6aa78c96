"""
documents.py - Content-addressed document references attached to a will

Functions:
    - compute_add_document: attach a CID with display name and category
    - compute_remove_document: detach a CID
"""

from __future__ import annotations
from dataclasses import replace

from ..core import (
    LedgerView, PendingTransaction,
    InvalidInput, AlreadyExists, NotFound,
    is_valid_content_hash,
)
from .will import DocumentRef, load_will, require_active, will_transaction, now_seconds


def validate_content_hash(content_hash) -> str:
    if not is_valid_content_hash(content_hash):
        raise InvalidInput(f"Invalid content hash: {content_hash!r}")
    return content_hash


def compute_add_document(
    view: LedgerView, testator: str, content_hash: str, file_name: str, category: str,
) -> PendingTransaction:
    """
    Raises:
        InvalidInput: Malformed content hash or empty file name.
        NotFound, WillExecuted: Will missing or executed.
        AlreadyExists: The hash is already attached.
    """
    validate_content_hash(content_hash)
    if not isinstance(file_name, str) or not file_name.strip():
        raise InvalidInput("Document file name cannot be empty")
    terms, state = load_will(view, testator)
    require_active(terms, state)
    if content_hash in state.documents:
        raise AlreadyExists(f"Document {content_hash} already attached to {testator}")
    documents = dict(state.documents)
    documents[content_hash] = DocumentRef(content_hash, file_name, category or "", now_seconds(view))
    new_state = replace(state, documents=documents)
    return will_transaction(view, terms, state, new_state, testator, "addDocument")


def compute_remove_document(view: LedgerView, testator: str, content_hash: str) -> PendingTransaction:
    validate_content_hash(content_hash)
    terms, state = load_will(view, testator)
    require_active(terms, state)
    if content_hash not in state.documents:
        raise NotFound(f"Document {content_hash} not attached to {testator}")
    documents = {h: d for h, d in state.documents.items() if h != content_hash}
    new_state = replace(state, documents=documents)
    return will_transaction(view, terms, state, new_state, testator, "removeDocument")
