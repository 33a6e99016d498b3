"""
Access Manager — self-hosted administration of the policy engine.

Configuring the engine is itself a policy-checked operation: the
administrative surface (:class:`PolicyAdmin`) is a protected resource like
any other, fronted by a :class:`CallGateway` whose operations are restricted
to ``ADMIN_ROLE``. There is no privileged bypass; a caller lacking the role
gets the same ``Unauthorized`` rejection as any other denied call.

The manager's own address can be neither reconfigured nor closed, so its
administrative operations stay restricted to ``ADMIN_ROLE`` for good.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from access_gate.errors import AccessGateError, InvalidTarget
from access_gate.gateway.interceptor import (
    CallGateway,
    ScheduleAuthority,
    current_caller,
)
from access_gate.ledger.service import AuditLedger
from access_gate.policy.evaluator import PolicyEvaluator
from access_gate.policy.registry import InMemoryRoleRegistry
from access_gate.policy.schema import (
    ADMIN_ROLE,
    AuditEventType,
    Verdict,
    format_operation_id,
)
from access_gate.policy.store import PolicyStore

logger = logging.getLogger(__name__)

DEFAULT_MANAGER_ADDRESS = "access-manager"

ADMIN_OPERATIONS = (
    "set_required_role",
    "set_closed",
    "grant_role",
    "revoke_role",
    "label_role",
    "is_configured",
    "get_required_role",
    "is_closed",
    "has_role",
)


class PolicyAdmin:
    """
    Administrative operations on the policy store and role registry.

    Holds no authorization logic: it is only ever reached through the
    manager's gateway, which has already authorized the caller.

    Each mutation is applied first and recorded on the ledger afterwards, so
    an entry always describes a change that took effect. If the append
    fails, the change stays live and the ledger error propagates to the
    caller; the missing entry is then visible as a gap between the ledger
    and the live policy, not as a phantom record.
    """

    def __init__(
        self,
        address: str,
        store: PolicyStore,
        registry: InMemoryRoleRegistry,
        ledger: AuditLedger | None = None,
    ) -> None:
        self._address = address
        self._store = store
        self._registry = registry
        self._ledger = ledger

    # ── Policy store ────────────────────────────────────────────

    def set_required_role(self, target: str, operations: list[str], role: int) -> list[str]:
        """Restrict ``operations`` on ``target`` to ``role``; ``PUBLIC_ROLE`` unsets them."""
        self._check_target(target)
        ops = self._store.set_required_role(target, operations, role)
        formatted = [format_operation_id(op) for op in ops]
        self._record(
            AuditEventType.OPERATION_ROLE_UPDATED,
            {"target": target, "operations": formatted, "role": role},
        )
        logger.info(
            "Operation role updated: target=%s operations=%s role=%d by=%s",
            target, formatted, role, current_caller(),
        )
        return formatted

    def set_closed(self, target: str, closed: bool) -> None:
        self._check_target(target)
        self._store.set_closed(target, closed)
        self._record(
            AuditEventType.TARGET_CLOSED_UPDATED, {"target": target, "closed": bool(closed)}
        )
        logger.warning(
            "Target closed flag updated: target=%s closed=%s by=%s",
            target, closed, current_caller(),
        )

    def is_configured(self, target: str, operation: str) -> bool:
        return self._store.is_configured(target, operation)

    def get_required_role(self, target: str, operation: str) -> int:
        return self._store.get_required_role(target, operation)

    def is_closed(self, target: str) -> bool:
        return self._store.is_closed(target)

    # ── Role registry ───────────────────────────────────────────

    def grant_role(self, role: int, account: str, execution_delay_seconds: int = 0) -> bool:
        delay = timedelta(seconds=execution_delay_seconds)
        newly_granted = self._registry.grant_role(role, account, delay)
        self._record(
            AuditEventType.ROLE_GRANTED,
            {
                "role": role,
                "account": account,
                "execution_delay_seconds": execution_delay_seconds,
                "newly_granted": newly_granted,
            },
        )
        return newly_granted

    def revoke_role(self, role: int, account: str) -> bool:
        revoked = self._registry.revoke_role(role, account)
        if revoked:
            self._record(AuditEventType.ROLE_REVOKED, {"role": role, "account": account})
        return revoked

    def renounce_role(self, role: int) -> bool:
        """Drop ``role`` for the calling account. Left unrestricted on purpose."""
        account = current_caller()
        if account is None:
            raise AccessGateError("renounce_role must be called through a gateway")
        renounced = self._registry.revoke_role(role, account)
        if renounced:
            self._record(AuditEventType.ROLE_RENOUNCED, {"role": role, "account": account})
        return renounced

    def label_role(self, role: int, label: str) -> None:
        self._registry.label_role(role, label)
        self._record(AuditEventType.ROLE_LABELED, {"role": role, "label": label})

    def has_role(self, role: int, account: str) -> tuple[bool, int]:
        """Membership and execution delay in seconds."""
        is_member, delay = self._registry.has_role(role, account)
        return is_member, int(delay.total_seconds())

    # ── Internal ────────────────────────────────────────────────

    def _check_target(self, target: str) -> None:
        if target == self._address:
            raise InvalidTarget(
                f"The access manager {target!r} cannot be reconfigured or closed"
            )

    def _record(self, event_type: AuditEventType, content: dict[str, Any]) -> None:
        if self._ledger is not None:
            self._ledger.append(event_type, actor=current_caller() or "system", content=content)


class AccessManager:
    """
    Owns the policy store, role registry and evaluator, and administers them.

    Usage:
        manager = AccessManager("admin")
        manager.admin.as_caller("admin").grant_role(1, "alice")
        manager.admin.as_caller("admin").set_required_role("counter", ["increment"], 1)

        counter = manager.gate("counter", Counter())
        counter.as_caller("alice").increment()
    """

    def __init__(
        self,
        initial_admin: str,
        address: str = DEFAULT_MANAGER_ADDRESS,
        store: PolicyStore | None = None,
        registry: InMemoryRoleRegistry | None = None,
        ledger: AuditLedger | None = None,
    ) -> None:
        self.address = address
        self.store = store or PolicyStore()
        self.registry = registry or InMemoryRoleRegistry()
        self.ledger = ledger
        self.evaluator = PolicyEvaluator(self.store, self.registry)

        # Bootstrap: the only writes that are not themselves gated
        self.registry.grant_role(ADMIN_ROLE, initial_admin)
        self.store.set_required_role(address, ADMIN_OPERATIONS, ADMIN_ROLE)
        if ledger is not None:
            ledger.append(
                AuditEventType.ROLE_GRANTED,
                actor="system",
                content={
                    "role": ADMIN_ROLE,
                    "account": initial_admin,
                    "execution_delay_seconds": 0,
                    "newly_granted": True,
                },
            )

        self.admin = CallGateway(
            address,
            PolicyAdmin(address, self.store, self.registry, ledger),
            self.evaluator,
        )
        logger.info("Access manager ready: address=%s admin=%s", address, initial_admin)

    def can_call(self, caller: str, target: str, op: str | bytes) -> Verdict:
        """Evaluate a prospective call without executing anything."""
        return self.evaluator.evaluate(caller, target, op)

    def gate(
        self,
        target: str,
        resource: Any,
        schedule_authority: ScheduleAuthority | None = None,
    ) -> CallGateway:
        """Put ``resource`` behind a gateway evaluated by this manager."""
        if target == self.address:
            raise InvalidTarget(f"{target!r} is the access manager's own address")
        return CallGateway(target, resource, self.evaluator, schedule_authority)
