"""
Policy Store — per-target operation roles and closed flags.

For each target the store holds:
- the operation → role mapping, together with the explicit-configuration bit
- the target's closed flag

"Public" and "unconfigured" collapse into the same effective role, but the
configuration bit stays queryable on its own: setting ``PUBLIC_ROLE`` clears
it, setting any other role sets it. There is a single mutation path per
concern and no history; overwrites are always legal.

The store never consults the closed flag when answering role queries;
closing is evaluated one layer up, by the evaluator.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from access_gate.policy.schema import (
    PUBLIC_ROLE,
    UNCONFIGURED,
    OperationId,
    OperationPolicy,
    PolicySnapshot,
    check_role,
    format_operation_id,
    operation_id,
)

logger = logging.getLogger(__name__)


class PolicyReader(Protocol):
    """What the evaluator needs from a policy store."""

    def snapshot(self, target: str, op: OperationId) -> PolicySnapshot:
        ...


@dataclass
class _TargetPolicy:
    closed: bool = False
    operations: dict[OperationId, OperationPolicy] = field(default_factory=dict)


class PolicyStore:
    """
    In-process policy store.

    Targets are created implicitly on first write. Reads of a target that was
    never written report it open with every operation unconfigured.

    Policy records are immutable and replaced whole under a re-entrant lock,
    so a reader can never observe a (configured, required_role) pair from two
    different writes.
    """

    def __init__(self) -> None:
        self._targets: dict[str, _TargetPolicy] = {}
        self._lock = threading.RLock()

    # ── Queries ─────────────────────────────────────────────────

    def get_required_role(self, target: str, op: str | bytes) -> int:
        """Effective required role: ``PUBLIC_ROLE`` unless explicitly configured."""
        return self._policy(target, operation_id(op)).effective_role

    def is_configured(self, target: str, op: str | bytes) -> bool:
        """Whether the operation was explicitly restricted to a non-public role."""
        return self._policy(target, operation_id(op)).configured

    def is_closed(self, target: str) -> bool:
        with self._lock:
            entry = self._targets.get(target)
            return entry.closed if entry is not None else False

    def snapshot(self, target: str, op: OperationId) -> PolicySnapshot:
        """Closed flag and operation policy of ``target`` read atomically."""
        with self._lock:
            entry = self._targets.get(target)
            if entry is None:
                return PolicySnapshot(closed=False, policy=UNCONFIGURED)
            return PolicySnapshot(
                closed=entry.closed,
                policy=entry.operations.get(op, UNCONFIGURED),
            )

    def configured_operations(self, target: str) -> dict[OperationId, int]:
        """Explicitly configured operations of ``target`` and their roles."""
        with self._lock:
            entry = self._targets.get(target)
            if entry is None:
                return {}
            return {
                op: policy.required_role
                for op, policy in entry.operations.items()
                if policy.configured
            }

    def targets(self) -> list[str]:
        """Every target that has been written to, in first-write order."""
        with self._lock:
            return list(self._targets)

    # ── Mutations ───────────────────────────────────────────────

    def set_required_role(
        self, target: str, operations: Iterable[str | bytes], role: int
    ) -> list[OperationId]:
        """
        Set the required role of each operation on ``target``.

        Passing ``PUBLIC_ROLE`` is how an operation is unset: it becomes
        unconfigured. Previously configured roles are overwritten.

        Returns:
            The normalized operation ids that were written.

        Raises:
            ValueError: If ``operations`` is a single name or id rather than a
                collection of them, or any entry is not a valid operation.
        """
        if isinstance(operations, (str, bytes, bytearray)):
            raise ValueError(
                f"operations must be a collection of operations, not {operations!r}"
            )
        check_role(role)
        ops = [operation_id(op) for op in operations]
        policy = OperationPolicy(required_role=role, configured=role != PUBLIC_ROLE)
        with self._lock:
            entry = self._targets.setdefault(target, _TargetPolicy())
            for op in ops:
                entry.operations[op] = policy
        for op in ops:
            logger.debug(
                "Operation role set: target=%s op=%s role=%d configured=%s",
                target, format_operation_id(op), role, policy.configured,
            )
        return ops

    def set_closed(self, target: str, closed: bool) -> None:
        """Toggle the closed flag of ``target``. Operation policies are untouched."""
        with self._lock:
            self._targets.setdefault(target, _TargetPolicy()).closed = bool(closed)
        logger.debug("Target closed flag set: target=%s closed=%s", target, closed)

    # ── Internal ────────────────────────────────────────────────

    def _policy(self, target: str, op: OperationId) -> OperationPolicy:
        with self._lock:
            entry = self._targets.get(target)
            if entry is None:
                return UNCONFIGURED
            return entry.operations.get(op, UNCONFIGURED)
