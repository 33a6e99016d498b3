"""
Policy Evaluator — the single decision point for every protected call.

Combines three partially overlapping signals into one verdict, evaluated in
strict order with short-circuiting:

1. Target closed flag → DENY, for everyone including ADMIN_ROLE holders
2. Required role is PUBLIC_ROLE → IMMEDIATE_ALLOW, the registry is not consulted
3. Role membership → DENY, IMMEDIATE_ALLOW, or DELAYED_ALLOW(delay)

The evaluator holds no state of its own; a verdict depends only on its
inputs and the current store and registry contents.
"""

from __future__ import annotations

import logging

from access_gate.policy.registry import NO_DELAY, RoleRegistry
from access_gate.policy.schema import (
    PUBLIC_ROLE,
    Decision,
    Verdict,
    VerdictBasis,
    format_operation_id,
    operation_id,
)
from access_gate.policy.store import PolicyReader

logger = logging.getLogger(__name__)


class PolicyEvaluator:
    """
    Decides whether ``caller`` may call ``op`` on ``target``.

    Composed from a policy reader and a role registry; neither is subclassed.
    """

    def __init__(self, store: PolicyReader, registry: RoleRegistry) -> None:
        self.store = store
        self.registry = registry

    def evaluate(self, caller: str, target: str, op: str | bytes) -> Verdict:
        """
        Evaluate a call.

        Args:
            caller: Identity of the calling account.
            target: The protected resource being called.
            op: Operation id, hex id or operation name.

        Returns:
            Verdict with the decision and the signal that produced it.
        """
        op = operation_id(op)
        snapshot = self.store.snapshot(target, op)

        # Closed flag dominates every other signal
        if snapshot.closed:
            verdict = Verdict(
                decision=Decision.DENY,
                basis=VerdictBasis.TARGET_CLOSED,
                caller=caller,
                target=target,
                operation=op,
                required_role=None,
                reason=f"Target {target!r} is closed",
            )
            return self._log(verdict)

        role = snapshot.policy.effective_role
        if role == PUBLIC_ROLE:
            verdict = Verdict(
                decision=Decision.IMMEDIATE_ALLOW,
                basis=VerdictBasis.PUBLIC_OPERATION,
                caller=caller,
                target=target,
                operation=op,
                required_role=PUBLIC_ROLE,
                reason=f"Operation {format_operation_id(op)} on {target!r} is public",
            )
            return self._log(verdict)

        is_member, delay = self.registry.has_role(role, caller)
        if not is_member:
            verdict = Verdict(
                decision=Decision.DENY,
                basis=VerdictBasis.NOT_MEMBER,
                caller=caller,
                target=target,
                operation=op,
                required_role=role,
                reason=f"Caller {caller!r} does not hold role {role}",
            )
        elif delay > NO_DELAY:
            verdict = Verdict(
                decision=Decision.DELAYED_ALLOW,
                basis=VerdictBasis.ROLE_MEMBER,
                caller=caller,
                target=target,
                operation=op,
                required_role=role,
                reason=(
                    f"Caller {caller!r} holds role {role} with an execution delay "
                    f"of {int(delay.total_seconds())}s"
                ),
                delay=delay,
            )
        else:
            verdict = Verdict(
                decision=Decision.IMMEDIATE_ALLOW,
                basis=VerdictBasis.ROLE_MEMBER,
                caller=caller,
                target=target,
                operation=op,
                required_role=role,
                reason=f"Caller {caller!r} holds role {role}",
            )
        return self._log(verdict)

    @staticmethod
    def _log(verdict: Verdict) -> Verdict:
        level = logging.INFO if verdict.decision == Decision.DENY else logging.DEBUG
        logger.log(
            level,
            "Policy verdict: caller=%s target=%s op=%s decision=%s basis=%s",
            verdict.caller,
            verdict.target,
            format_operation_id(verdict.operation),
            verdict.decision.value,
            verdict.basis.value,
        )
        return verdict
