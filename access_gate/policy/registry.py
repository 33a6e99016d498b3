"""
Role Registry — role membership and per-member execution delays.

The evaluator only depends on the :class:`RoleRegistry` protocol. The
in-memory registry here is the reference implementation used by the
access manager; deployments may supply any object answering ``has_role``.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Protocol

from access_gate.errors import InvalidRole
from access_gate.policy.schema import PUBLIC_ROLE, check_role

logger = logging.getLogger(__name__)

NO_DELAY = timedelta(0)


class RoleRegistry(Protocol):
    """Anything that answers role membership queries."""

    def has_role(self, role: int, account: str) -> tuple[bool, timedelta]:
        """Return (is_member, execution_delay) for ``account`` in ``role``."""
        ...


class InMemoryRoleRegistry:
    """
    Thread-safe in-memory role registry.

    Every account is implicitly a member of ``PUBLIC_ROLE`` with no delay;
    that role can never be granted, revoked or labeled.
    """

    def __init__(self) -> None:
        self._members: dict[int, dict[str, timedelta]] = {}
        self._labels: dict[int, str] = {}
        self._lock = threading.RLock()

    def has_role(self, role: int, account: str) -> tuple[bool, timedelta]:
        check_role(role)
        if role == PUBLIC_ROLE:
            return True, NO_DELAY
        with self._lock:
            delay = self._members.get(role, {}).get(account)
        if delay is None:
            return False, NO_DELAY
        return True, delay

    def grant_role(
        self, role: int, account: str, execution_delay: timedelta = NO_DELAY
    ) -> bool:
        """
        Grant ``role`` to ``account``.

        Re-granting an existing member only updates its execution delay.

        Returns:
            True if the account was not a member before.
        """
        self._check_mutable(role)
        if execution_delay < NO_DELAY:
            raise ValueError(f"Execution delay must not be negative: {execution_delay}")
        with self._lock:
            members = self._members.setdefault(role, {})
            newly_granted = account not in members
            members[account] = execution_delay
        logger.info(
            "Role granted: role=%d account=%s delay=%ds new=%s",
            role, account, int(execution_delay.total_seconds()), newly_granted,
        )
        return newly_granted

    def revoke_role(self, role: int, account: str) -> bool:
        """Remove ``account`` from ``role``. Returns True if it was a member."""
        self._check_mutable(role)
        with self._lock:
            removed = self._members.get(role, {}).pop(account, None) is not None
        if removed:
            logger.info("Role revoked: role=%d account=%s", role, account)
        return removed

    def label_role(self, role: int, label: str) -> None:
        self._check_mutable(role)
        with self._lock:
            self._labels[role] = label
        logger.info("Role labeled: role=%d label=%s", role, label)

    def get_role_label(self, role: int) -> str | None:
        with self._lock:
            return self._labels.get(role)

    def find_role(self, label: str) -> int | None:
        """Role id carrying ``label``, if any."""
        with self._lock:
            for role, role_label in self._labels.items():
                if role_label == label:
                    return role
        return None

    def members(self, role: int) -> dict[str, timedelta]:
        """Members of ``role`` and their execution delays."""
        with self._lock:
            return dict(self._members.get(role, {}))

    @staticmethod
    def _check_mutable(role: int) -> None:
        check_role(role)
        if role == PUBLIC_ROLE:
            raise InvalidRole("PUBLIC_ROLE membership is implicit and cannot be changed")
