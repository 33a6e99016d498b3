"""
Audit Ledger — SQLAlchemy models for the administrative event record.

The table is append-only. Each row stores the SHA-256 hash of
(previous_hash || canonical_json(fields)), so any retroactive alteration of
a policy change record is detectable by re-walking the chain.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for audit ledger models."""
    pass


class AuditEntryDB(Base):
    """A single administrative event. Rows are never updated or deleted."""

    __tablename__ = "audit_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Chain ordering
    sequence_number = Column(
        Integer, nullable=False, unique=True, index=True,
        comment="Monotonically increasing sequence number",
    )

    # Hash chain
    previous_hash = Column(
        String(64), nullable=False,
        comment="SHA-256 hash of the previous entry",
    )
    entry_hash = Column(
        String(64), nullable=False, unique=True,
        comment="SHA-256 hash of this entry",
    )

    timestamp = Column(
        DateTime(timezone=True), nullable=False, default=func.now(),
        comment="When this entry was recorded",
    )

    event_type = Column(
        String(50), nullable=False, index=True,
        comment="Administrative event type",
    )
    actor = Column(
        String(200), nullable=False,
        comment="Account that performed the change",
    )
    content = Column(
        JSON, nullable=False,
        comment="Event details, structure varies by event_type",
    )

    __table_args__ = (
        Index("ix_audit_event_type_timestamp", "event_type", "timestamp"),
        Index("ix_audit_actor", "actor"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEntry seq={self.sequence_number} "
            f"type={self.event_type} hash={self.entry_hash[:12]}...>"
        )
