"""
store.py - SQLite persistence for the projected replica

Tables:
    wills          one row per will (terms, check-in, execution, dispute)
    beneficiaries  UNIQUE(will_id, beneficiary), position keeps add order
    vaults         UNIQUE(will_id, vault_type), balance as decimal TEXT
    documents      UNIQUE(will_id, content_hash)
    checkpoint     single row: ordering key of the last applied event

The engine is the only writer. Each write replaces every row of one will and
moves the checkpoint in the same transaction, so the stored replica and the
checkpoint never disagree. Read queries open their own connections.
"""

from __future__ import annotations
from contextlib import contextmanager
import logging
import sqlite3
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..core import StorageFailure, VAULT_LOCKED, VAULT_FLEXIBLE, VAULT_TYPES
from .replica import BeneficiaryRecord, DocumentRecord, Replica, WillRecord

logger = logging.getLogger(__name__)

OrderingKey = Tuple[int, int]

SCHEMA = """
    CREATE TABLE IF NOT EXISTS wills (
        will_id             TEXT PRIMARY KEY,
        testator            TEXT NOT NULL,
        guardian            TEXT,
        check_in_period     INTEGER NOT NULL,
        dispute_period      INTEGER NOT NULL,
        last_check_in       INTEGER NOT NULL,
        executed            INTEGER NOT NULL DEFAULT 0,
        total_distributed   TEXT,
        dispute_deadline    INTEGER,
        created_at          INTEGER NOT NULL,
        updated_at          INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS beneficiaries (
        will_id         TEXT NOT NULL,
        beneficiary     TEXT NOT NULL,
        share           INTEGER NOT NULL,
        is_guardian     INTEGER NOT NULL DEFAULT 0,
        position        INTEGER NOT NULL,
        UNIQUE(will_id, beneficiary),
        FOREIGN KEY (will_id) REFERENCES wills(will_id)
    );

    CREATE TABLE IF NOT EXISTS vaults (
        will_id     TEXT NOT NULL,
        vault_type  TEXT NOT NULL CHECK (vault_type IN ('locked', 'flexible')),
        balance     TEXT NOT NULL DEFAULT '0',
        UNIQUE(will_id, vault_type),
        FOREIGN KEY (will_id) REFERENCES wills(will_id)
    );

    CREATE TABLE IF NOT EXISTS documents (
        will_id         TEXT NOT NULL,
        content_hash    TEXT NOT NULL,
        file_name       TEXT NOT NULL,
        document_type   TEXT NOT NULL DEFAULT '',
        uploaded_at     INTEGER NOT NULL,
        position        INTEGER NOT NULL,
        UNIQUE(will_id, content_hash),
        FOREIGN KEY (will_id) REFERENCES wills(will_id)
    );

    CREATE TABLE IF NOT EXISTS checkpoint (
        id              INTEGER PRIMARY KEY CHECK (id = 1),
        block_number    INTEGER NOT NULL,
        log_index       INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_wills_testator ON wills(testator);
    CREATE INDEX IF NOT EXISTS idx_beneficiaries_beneficiary ON beneficiaries(beneficiary);
    CREATE INDEX IF NOT EXISTS idx_documents_will ON documents(will_id);
"""


def _will_row(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        'willId': row['will_id'],
        'testator': row['testator'],
        'guardian': row['guardian'],
        'checkInPeriod': row['check_in_period'],
        'disputePeriod': row['dispute_period'],
        'lastCheckIn': row['last_check_in'],
        'executed': bool(row['executed']),
        'totalDistributed': row['total_distributed'],
        'disputeDeadline': row['dispute_deadline'],
        'createdAt': row['created_at'],
        'updatedAt': row['updated_at'],
    }


def _document_row(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        'ipfsHash': row['content_hash'],
        'fileName': row['file_name'],
        'documentType': row['document_type'],
        'uploadedAt': row['uploaded_at'],
    }


class ReplicaStore:
    """SQLite-backed replica: durable writes for the engine, queries for the API."""

    def __init__(self, path: str):
        self.path = str(path)
        with self._db() as conn:
            conn.executescript(SCHEMA)

    def _get_db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success; sqlite3.Error becomes StorageFailure."""
        conn = None
        try:
            conn = self._get_db()
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.error("Database error on %s: %s", self.path, e)
            if conn:
                conn.rollback()
            raise StorageFailure(str(e)) from e
        finally:
            if conn:
                conn.close()

    # ========================================================================
    # WRITES (engine only)
    # ========================================================================

    @staticmethod
    def _write_checkpoint(conn: sqlite3.Connection, key: OrderingKey) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO checkpoint (id, block_number, log_index) VALUES (1, ?, ?)",
            key,
        )

    def save_will(self, record: WillRecord, key: OrderingKey) -> None:
        """Replace all rows of one will and advance the checkpoint atomically."""
        with self._db() as conn:
            for table in ("beneficiaries", "vaults", "documents"):
                conn.execute(f"DELETE FROM {table} WHERE will_id = ?", (record.will_id,))
            conn.execute(
                """INSERT OR REPLACE INTO wills
                   (will_id, testator, guardian, check_in_period, dispute_period, last_check_in,
                    executed, total_distributed, dispute_deadline, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.will_id, record.testator, record.guardian,
                    record.check_in_period, record.dispute_period, record.last_check_in,
                    int(record.executed),
                    None if record.total_distributed is None else str(record.total_distributed),
                    record.dispute_deadline, record.created_at, record.updated_at,
                ),
            )
            conn.executemany(
                "INSERT INTO beneficiaries (will_id, beneficiary, share, is_guardian, position) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (record.will_id, b.beneficiary, b.share, int(b.is_guardian), i)
                    for i, b in enumerate(record.beneficiaries)
                ],
            )
            conn.executemany(
                "INSERT INTO vaults (will_id, vault_type, balance) VALUES (?, ?, ?)",
                [(record.will_id, t, str(v)) for t, v in record.vaults().items()],
            )
            conn.executemany(
                "INSERT INTO documents (will_id, content_hash, file_name, document_type, uploaded_at, position) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (record.will_id, d.content_hash, d.file_name, d.document_type, d.uploaded_at, i)
                    for i, d in enumerate(record.documents)
                ],
            )
            self._write_checkpoint(conn, key)

    def save_checkpoint(self, key: OrderingKey) -> None:
        """Advance the checkpoint past an event that changed nothing."""
        with self._db() as conn:
            self._write_checkpoint(conn, key)

    def reset(self) -> None:
        """Delete every projected row and the checkpoint."""
        with self._db() as conn:
            for table in ("beneficiaries", "vaults", "documents", "wills", "checkpoint"):
                conn.execute(f"DELETE FROM {table}")

    # ========================================================================
    # LOAD
    # ========================================================================

    def checkpoint(self) -> Optional[OrderingKey]:
        with self._db() as conn:
            row = conn.execute("SELECT block_number, log_index FROM checkpoint WHERE id = 1").fetchone()
        return (row['block_number'], row['log_index']) if row else None

    def load(self) -> Replica:
        """Rebuild the in-memory replica from the stored rows."""
        with self._db() as conn:
            wills = conn.execute("SELECT * FROM wills ORDER BY will_id").fetchall()
            beneficiaries = conn.execute(
                "SELECT * FROM beneficiaries ORDER BY will_id, position"
            ).fetchall()
            vaults = conn.execute("SELECT * FROM vaults").fetchall()
            documents = conn.execute("SELECT * FROM documents ORDER BY will_id, position").fetchall()

        by_will_b: Dict[str, List[BeneficiaryRecord]] = {}
        for row in beneficiaries:
            by_will_b.setdefault(row['will_id'], []).append(
                BeneficiaryRecord(row['beneficiary'], row['share'], bool(row['is_guardian']))
            )
        by_will_v: Dict[str, Dict[str, int]] = {}
        for row in vaults:
            by_will_v.setdefault(row['will_id'], {})[row['vault_type']] = int(row['balance'])
        by_will_d: Dict[str, List[DocumentRecord]] = {}
        for row in documents:
            by_will_d.setdefault(row['will_id'], []).append(
                DocumentRecord(row['content_hash'], row['file_name'], row['document_type'], row['uploaded_at'])
            )

        records = {}
        for row in wills:
            will_id = row['will_id']
            balances = by_will_v.get(will_id, {})
            records[will_id] = WillRecord(
                will_id=will_id,
                testator=row['testator'],
                check_in_period=row['check_in_period'],
                dispute_period=row['dispute_period'],
                last_check_in=row['last_check_in'],
                created_at=row['created_at'],
                updated_at=row['updated_at'],
                executed=bool(row['executed']),
                locked_balance=balances.get(VAULT_LOCKED, 0),
                flexible_balance=balances.get(VAULT_FLEXIBLE, 0),
                total_distributed=None if row['total_distributed'] is None else int(row['total_distributed']),
                dispute_deadline=row['dispute_deadline'],
                beneficiaries=tuple(by_will_b.get(will_id, ())),
                documents=tuple(by_will_d.get(will_id, ())),
            )
        return Replica(records)

    # ========================================================================
    # QUERIES (API)
    # ========================================================================

    def get_wills_by_testator(self, testator: str) -> List[Dict[str, Any]]:
        with self._db() as conn:
            rows = conn.execute("SELECT * FROM wills WHERE testator = ?", (testator.lower(),)).fetchall()
        return [_will_row(r) for r in rows]

    def get_wills_by_beneficiary(self, beneficiary: str) -> List[Dict[str, Any]]:
        with self._db() as conn:
            rows = conn.execute(
                """SELECT w.*, b.share, b.is_guardian FROM wills w
                   JOIN beneficiaries b ON w.will_id = b.will_id
                   WHERE b.beneficiary = ?
                   ORDER BY w.will_id""",
                (beneficiary.lower(),),
            ).fetchall()
        return [
            {**_will_row(r), 'share': r['share'], 'isGuardian': bool(r['is_guardian'])}
            for r in rows
        ]

    def get_beneficiary_wills(self, beneficiary: str) -> List[Dict[str, Any]]:
        with self._db() as conn:
            rows = conn.execute(
                """SELECT w.will_id, w.testator, w.executed, b.share, b.is_guardian FROM wills w
                   JOIN beneficiaries b ON w.will_id = b.will_id
                   WHERE b.beneficiary = ?
                   ORDER BY w.will_id""",
                (beneficiary.lower(),),
            ).fetchall()
        return [
            {
                'willId': r['will_id'],
                'testator': r['testator'],
                'executed': bool(r['executed']),
                'share': r['share'],
                'isGuardian': bool(r['is_guardian']),
            }
            for r in rows
        ]

    def get_will_details(self, will_id: str) -> Optional[Dict[str, Any]]:
        will_id = will_id.lower()
        with self._db() as conn:
            will = conn.execute("SELECT * FROM wills WHERE will_id = ?", (will_id,)).fetchone()
            if will is None:
                return None
            beneficiaries = conn.execute(
                "SELECT beneficiary, share, is_guardian FROM beneficiaries WHERE will_id = ? ORDER BY position",
                (will_id,),
            ).fetchall()
            vaults = conn.execute(
                "SELECT vault_type, balance FROM vaults WHERE will_id = ?", (will_id,)
            ).fetchall()
            documents = conn.execute(
                "SELECT * FROM documents WHERE will_id = ? ORDER BY uploaded_at DESC, position DESC",
                (will_id,),
            ).fetchall()
        return {
            **_will_row(will),
            'beneficiaries': [
                {'beneficiary': b['beneficiary'], 'share': b['share'], 'isGuardian': bool(b['is_guardian'])}
                for b in beneficiaries
            ],
            'vaults': {v['vault_type']: v['balance'] for v in vaults},
            'documents': [_document_row(d) for d in documents],
        }

    def will_exists(self, will_id: str) -> bool:
        with self._db() as conn:
            row = conn.execute("SELECT 1 FROM wills WHERE will_id = ?", (will_id.lower(),)).fetchone()
        return row is not None

    def get_vaults(self, will_id: str) -> List[Dict[str, Any]]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT vault_type, balance FROM vaults WHERE will_id = ?", (will_id.lower(),)
            ).fetchall()
        order = {t: i for i, t in enumerate(VAULT_TYPES)}
        return sorted(
            ({'vaultType': r['vault_type'], 'balance': r['balance']} for r in rows),
            key=lambda v: order[v['vaultType']],
        )

    def get_documents(self, will_id: str) -> List[Dict[str, Any]]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE will_id = ? ORDER BY uploaded_at DESC, position DESC",
                (will_id.lower(),),
            ).fetchall()
        return [_document_row(r) for r in rows]

    def get_document(self, will_id: str, content_hash: str) -> Optional[Dict[str, Any]]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE will_id = ? AND content_hash = ?",
                (will_id.lower(), content_hash),
            ).fetchone()
        return {'willId': row['will_id'], **_document_row(row)} if row else None

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate statistics over the replica."""
        with self._db() as conn:
            total = conn.execute("SELECT COUNT(*) FROM wills").fetchone()[0]
            executed = conn.execute("SELECT COUNT(*) FROM wills WHERE executed = 1").fetchone()[0]
            beneficiaries = conn.execute(
                "SELECT COUNT(DISTINCT beneficiary) FROM beneficiaries"
            ).fetchone()[0]
            documents = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            vault_rows = conn.execute("SELECT vault_type, balance FROM vaults").fetchall()
            by_type = conn.execute(
                """SELECT document_type, COUNT(*) AS count FROM documents
                   GROUP BY document_type ORDER BY count DESC, document_type"""
            ).fetchall()
            checkpoint = conn.execute(
                "SELECT block_number, log_index FROM checkpoint WHERE id = 1"
            ).fetchone()

        # Balances are arbitrary precision, so they are summed outside SQLite
        vault_totals = {t: 0 for t in VAULT_TYPES}
        for row in vault_rows:
            vault_totals[row['vault_type']] += int(row['balance'])

        return {
            'totalWills': total,
            'executedWills': executed,
            'activeWills': total - executed,
            'totalBeneficiaries': beneficiaries,
            'totalDocuments': documents,
            'totalVaultValue': {t: str(v) for t, v in vault_totals.items()},
            'documentsByType': [
                {'documentType': r['document_type'], 'count': r['count']} for r in by_type
            ],
            'checkpoint': (
                {'blockNumber': checkpoint['block_number'], 'logIndex': checkpoint['log_index']}
                if checkpoint else None
            ),
        }
