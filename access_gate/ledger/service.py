"""
Audit Ledger Service — append-only, hash-chained record of policy changes.

Every administrative change made through the access manager (role grants,
operation role updates, target closures) can be appended here:
- Append new entries with automatic hash chain computation
- Verify the integrity of the full hash chain
- Query entries by event type or recency
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from access_gate.errors import LedgerIntegrityError
from access_gate.ledger.models import AuditEntryDB, Base
from access_gate.policy.schema import AuditEventType, compute_entry_hash

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64  # The "previous hash" for the first entry in the chain
SYSTEM_ACTOR = "system"


class AuditLedger:
    """
    Audit ledger backed by any SQLAlchemy database.

    Usage:
        ledger = AuditLedger("sqlite:///audit.db")
        ledger.initialize()  # Create tables, seed genesis entry

        ledger.append(
            AuditEventType.TARGET_CLOSED_UPDATED,
            actor="admin",
            content={"target": "counter", "closed": True},
        )
    """

    def __init__(self, database_url: str) -> None:
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def initialize(self) -> None:
        """Create the schema and seed the genesis entry if it is missing."""
        Base.metadata.create_all(self.engine)

        with self.SessionLocal() as session:
            existing = session.execute(
                select(AuditEntryDB).where(AuditEntryDB.sequence_number == 0)
            ).scalar_one_or_none()

            if existing is None:
                genesis = self._build_entry(
                    sequence_number=0,
                    previous_hash=GENESIS_HASH,
                    event_type=AuditEventType.GENESIS,
                    actor=SYSTEM_ACTOR,
                    content={"message": "Genesis of the access gate audit ledger"},
                )
                session.add(genesis)
                session.commit()
                logger.info("Audit genesis entry created: hash=%s", genesis.entry_hash[:16])

    def append(
        self,
        event_type: AuditEventType,
        actor: str,
        content: dict[str, Any],
    ) -> AuditEntryDB:
        """
        Append a new entry. This is the only write operation.

        Raises:
            LedgerIntegrityError: If the ledger has not been initialized.
        """
        with self.SessionLocal() as session:
            last_entry = session.execute(
                select(AuditEntryDB)
                .order_by(AuditEntryDB.sequence_number.desc())
                .limit(1)
            ).scalar_one_or_none()

            if last_entry is None:
                raise LedgerIntegrityError(
                    "Cannot append: no genesis entry found. Call initialize() first."
                )

            entry = self._build_entry(
                sequence_number=last_entry.sequence_number + 1,
                previous_hash=last_entry.entry_hash,
                event_type=event_type,
                actor=actor,
                content=content,
            )
            session.add(entry)
            session.commit()

            logger.info(
                "Audit entry appended: seq=%d type=%s hash=%s",
                entry.sequence_number, entry.event_type, entry.entry_hash[:16],
            )
            return entry

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Walk every entry from genesis forward, recomputing each hash.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self.SessionLocal() as session:
            entries = session.execute(
                select(AuditEntryDB).order_by(AuditEntryDB.sequence_number.asc())
            ).scalars().all()

        if not entries:
            return False, 0, "No entries found in ledger"

        first = entries[0]
        if first.sequence_number != 0:
            return False, 0, f"First entry has sequence {first.sequence_number}, expected 0"
        if first.previous_hash != GENESIS_HASH:
            return False, 0, "Genesis entry has incorrect previous_hash"

        for i, entry in enumerate(entries):
            expected_hash = compute_entry_hash(
                entry_id=entry.id,
                sequence_number=entry.sequence_number,
                previous_hash=entry.previous_hash,
                timestamp=entry.timestamp,
                event_type=entry.event_type,
                actor=entry.actor,
                content=entry.content,
            )
            if entry.entry_hash != expected_hash:
                return (
                    False, i,
                    f"Hash mismatch at sequence {entry.sequence_number}: "
                    f"stored={entry.entry_hash[:16]}... "
                    f"computed={expected_hash[:16]}..."
                )

            if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
                return (
                    False, i,
                    f"Chain break at sequence {entry.sequence_number}: "
                    f"previous_hash does not match prior entry's hash"
                )

        return True, len(entries), f"Chain verified: {len(entries)} entries, integrity intact"

    def get_entries_by_type(
        self,
        event_type: AuditEventType | str,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntryDB]:
        """Entries of one event type, most recent first."""
        event_type = AuditEventType(event_type).value
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(AuditEntryDB)
                    .where(AuditEntryDB.event_type == event_type)
                    .order_by(AuditEntryDB.sequence_number.desc())
                    .limit(limit)
                    .offset(offset)
                ).scalars().all()
            )

    def get_latest_entries(self, limit: int = 50) -> list[AuditEntryDB]:
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(AuditEntryDB)
                    .order_by(AuditEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_entry_count(self) -> int:
        with self.SessionLocal() as session:
            result = session.execute(select(func.count()).select_from(AuditEntryDB))
            return result.scalar() or 0

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _build_entry(
        sequence_number: int,
        previous_hash: str,
        event_type: AuditEventType,
        actor: str,
        content: dict[str, Any],
    ) -> AuditEntryDB:
        entry_id = uuid4()
        # Microseconds are dropped so the hash survives backends that truncate them
        timestamp = datetime.now(timezone.utc).replace(microsecond=0)
        entry_hash = compute_entry_hash(
            entry_id=entry_id,
            sequence_number=sequence_number,
            previous_hash=previous_hash,
            timestamp=timestamp,
            event_type=event_type.value,
            actor=actor,
            content=content,
        )
        return AuditEntryDB(
            id=entry_id,
            sequence_number=sequence_number,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            timestamp=timestamp,
            event_type=event_type.value,
            actor=actor,
            content=content,
        )
