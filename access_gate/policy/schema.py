"""
Policy Schema — shared types for the policy store, evaluator and gateway.

Roles are opaque unsigned 64-bit integers with two reserved values:
``ADMIN_ROLE`` (root authority) and ``PUBLIC_ROLE`` (no restriction).
Operations are identified by 4-byte operation ids derived from their name.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from access_gate.errors import InvalidRole


# ════════════════════════════════════════════════════════════════
# Roles and operation identifiers
# ════════════════════════════════════════════════════════════════

ADMIN_ROLE = 0
PUBLIC_ROLE = 2**64 - 1

OPERATION_ID_SIZE = 4

OperationId = bytes


def check_role(role: int) -> int:
    """Return ``role`` if it is a valid role id, raise InvalidRole otherwise."""
    if isinstance(role, bool) or not isinstance(role, int):
        raise InvalidRole(f"Role must be an integer, got {role!r}")
    if not ADMIN_ROLE <= role <= PUBLIC_ROLE:
        raise InvalidRole(f"Role {role} is outside [0, {PUBLIC_ROLE}]")
    return role


def operation_id(value: str | bytes) -> OperationId:
    """
    Normalize an operation reference into a 4-byte operation id.

    Accepts a raw 4-byte id, a ``0x``-prefixed hex id (``"0x1a2b3c4d"``), or an
    operation name, whose id is the first four bytes of its SHA-256 digest.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != OPERATION_ID_SIZE:
            raise ValueError(
                f"Operation id must be {OPERATION_ID_SIZE} bytes, got {len(value)}"
            )
        return bytes(value)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Cannot derive an operation id from {value!r}")
    if value.startswith("0x") and len(value) == 2 + 2 * OPERATION_ID_SIZE:
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            pass
    return hashlib.sha256(value.encode("utf-8")).digest()[:OPERATION_ID_SIZE]


def format_operation_id(op: OperationId) -> str:
    """Render an operation id as ``0x`` followed by 8 hex digits."""
    return "0x" + op.hex()


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Decision(str, enum.Enum):
    """Outcome of evaluating a (caller, target, operation) triple."""

    IMMEDIATE_ALLOW = "immediate_allow"
    DELAYED_ALLOW = "delayed_allow"
    DENY = "deny"


class VerdictBasis(str, enum.Enum):
    """Which signal decided a verdict."""

    TARGET_CLOSED = "target_closed"
    PUBLIC_OPERATION = "public_operation"
    ROLE_MEMBER = "role_member"
    NOT_MEMBER = "not_member"


class AuditEventType(str, enum.Enum):
    """Administrative events recorded in the audit ledger."""

    GENESIS = "genesis"
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    ROLE_RENOUNCED = "role_renounced"
    ROLE_LABELED = "role_labeled"
    OPERATION_ROLE_UPDATED = "operation_role_updated"
    TARGET_CLOSED_UPDATED = "target_closed_updated"


# ════════════════════════════════════════════════════════════════
# Policy records
# ════════════════════════════════════════════════════════════════


class OperationPolicy(BaseModel):
    """
    Policy of one operation on one target.

    ``configured`` is the explicit-configuration bit. When it is false the
    effective role is ``PUBLIC_ROLE`` whatever ``required_role`` holds.
    """

    model_config = ConfigDict(frozen=True)

    required_role: int = Field(default=PUBLIC_ROLE, description="Stored role id")
    configured: bool = Field(
        default=False, description="Whether an administrator set a non-public role"
    )

    @property
    def effective_role(self) -> int:
        return self.required_role if self.configured else PUBLIC_ROLE


UNCONFIGURED = OperationPolicy()


@dataclass(frozen=True)
class PolicySnapshot:
    """Closed flag and operation policy read together under the store lock."""

    closed: bool
    policy: OperationPolicy


@dataclass(frozen=True)
class Verdict:
    """Result of evaluating a call against the policy store and role registry."""

    decision: Decision
    basis: VerdictBasis
    caller: str
    target: str
    operation: OperationId
    required_role: int | None
    reason: str
    delay: timedelta = timedelta(0)

    @property
    def is_allowed(self) -> bool:
        return self.decision == Decision.IMMEDIATE_ALLOW


# ════════════════════════════════════════════════════════════════
# Audit ledger records
# ════════════════════════════════════════════════════════════════


def canonical_timestamp(timestamp: datetime) -> str:
    """ISO form of ``timestamp`` in naive UTC. Naive inputs are taken as UTC."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return timestamp.isoformat()


def compute_entry_hash(
    entry_id: UUID,
    sequence_number: int,
    previous_hash: str,
    timestamp: datetime,
    event_type: str,
    actor: str,
    content: dict[str, Any],
) -> str:
    """
    SHA-256 over the previous hash and the canonical JSON of the entry fields.

    Any retroactive change to a field changes the hash of its entry and
    breaks the link to every later entry.
    """
    hashable = {
        "id": str(entry_id),
        "sequence_number": sequence_number,
        "previous_hash": previous_hash,
        "timestamp": canonical_timestamp(timestamp),
        "event_type": event_type,
        "actor": actor,
        "content": content,
    }
    canonical = json.dumps(hashable, sort_keys=True, default=str)
    return hashlib.sha256((previous_hash + canonical).encode("utf-8")).hexdigest()


class AuditEntry(BaseModel):
    """A single entry of the audit ledger."""

    id: UUID = Field(default_factory=uuid4)
    sequence_number: int = Field(description="Monotonically increasing sequence number")
    previous_hash: str = Field(description="SHA-256 hash of the previous entry")
    entry_hash: str = Field(default="", description="SHA-256 hash of this entry")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: AuditEventType
    actor: str = Field(description="Account that performed the change")
    content: dict[str, Any] = Field(description="Event details, shape varies by event_type")

    def compute_hash(self) -> str:
        return compute_entry_hash(
            entry_id=self.id,
            sequence_number=self.sequence_number,
            previous_hash=self.previous_hash,
            timestamp=self.timestamp,
            event_type=self.event_type.value,
            actor=self.actor,
            content=self.content,
        )
