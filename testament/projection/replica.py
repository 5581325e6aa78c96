"""
replica.py - Immutable read-model of all wills

The replica is a pure function of the ordered events applied to it. Records
are frozen; every apply step returns a new Replica that shares unchanged
records with the previous one.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from ..core import VAULT_LOCKED, VAULT_FLEXIBLE, content_digest


@dataclass(frozen=True, slots=True)
class BeneficiaryRecord:
    beneficiary: str
    share: int
    is_guardian: bool


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    content_hash: str
    file_name: str
    document_type: str
    uploaded_at: int


@dataclass(frozen=True, slots=True)
class WillRecord:
    """
    Projected state of one will.

    beneficiaries and documents keep the order in which they were added.
    """
    will_id: str
    testator: str
    check_in_period: int
    dispute_period: int
    last_check_in: int
    created_at: int
    updated_at: int
    executed: bool = False
    locked_balance: int = 0
    flexible_balance: int = 0
    total_distributed: Optional[int] = None
    dispute_deadline: Optional[int] = None
    beneficiaries: Tuple[BeneficiaryRecord, ...] = ()
    documents: Tuple[DocumentRecord, ...] = ()

    @property
    def guardian(self) -> Optional[str]:
        for b in self.beneficiaries:
            if b.is_guardian:
                return b.beneficiary
        return None

    @property
    def total_shares(self) -> int:
        return sum(b.share for b in self.beneficiaries)

    def find_beneficiary(self, wallet: str) -> Optional[BeneficiaryRecord]:
        for b in self.beneficiaries:
            if b.beneficiary == wallet:
                return b
        return None

    def find_document(self, content_hash: str) -> Optional[DocumentRecord]:
        for d in self.documents:
            if d.content_hash == content_hash:
                return d
        return None

    def vaults(self) -> Dict[str, int]:
        return {VAULT_LOCKED: self.locked_balance, VAULT_FLEXIBLE: self.flexible_balance}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'willId': self.will_id,
            'testator': self.testator,
            'checkInPeriod': self.check_in_period,
            'disputePeriod': self.dispute_period,
            'lastCheckIn': self.last_check_in,
            'executed': self.executed,
            'guardian': self.guardian,
            'totalDistributed': self.total_distributed,
            'disputeDeadline': self.dispute_deadline,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'beneficiaries': [
                {'beneficiary': b.beneficiary, 'share': b.share, 'isGuardian': b.is_guardian}
                for b in self.beneficiaries
            ],
            'vaults': {k: str(v) for k, v in self.vaults().items()},
            'documents': [
                {
                    'ipfsHash': d.content_hash,
                    'fileName': d.file_name,
                    'documentType': d.document_type,
                    'uploadedAt': d.uploaded_at,
                }
                for d in self.documents
            ],
        }


@dataclass(frozen=True)
class Replica:
    """Snapshot of every projected will, keyed by will id (lower-cased testator)."""
    wills: Mapping[str, WillRecord] = field(default_factory=dict)

    def get(self, will_id: str) -> Optional[WillRecord]:
        return self.wills.get(will_id)

    def with_will(self, record: WillRecord) -> 'Replica':
        wills = dict(self.wills)
        wills[record.will_id] = record
        return Replica(wills)

    def to_dict(self) -> Dict[str, Any]:
        return {will_id: self.wills[will_id].to_dict() for will_id in sorted(self.wills)}

    def fingerprint(self) -> str:
        """SHA-256 of the canonical form of the replica content."""
        return content_digest(self.to_dict())

    def __len__(self) -> int:
        return len(self.wills)


def touch(record: WillRecord, timestamp: int, **changes) -> WillRecord:
    """Copy of record with changes applied and updated_at set."""
    return replace(record, updated_at=timestamp, **changes)
