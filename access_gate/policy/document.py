"""
Declarative policy documents.

A policy document describes roles and per-target operation restrictions in
YAML, so the policy lives in configuration rather than in resource code:

    roles:
      - id: 1
        label: OPERATOR
        members:
          - account: alice
          - account: bob
            execution_delay: 3600
    targets:
      - target: counter
        operations:
          increment: OPERATOR
          reset: ADMIN
          get_value: PUBLIC

Applying a document goes through the manager's administrative gateway as a
given caller, so it is authorized exactly like a manual change.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from access_gate.errors import InvalidRole, PolicyDocumentError
from access_gate.manager import AccessManager
from access_gate.policy.registry import InMemoryRoleRegistry
from access_gate.policy.schema import ADMIN_ROLE, PUBLIC_ROLE, check_role

logger = logging.getLogger(__name__)

RESERVED_ROLE_NAMES = {"ADMIN": ADMIN_ROLE, "PUBLIC": PUBLIC_ROLE}


class RoleMember(BaseModel):
    account: str
    execution_delay: int = Field(default=0, ge=0, description="Execution delay in seconds")


class RoleDefinition(BaseModel):
    id: int = Field(ge=ADMIN_ROLE, lt=PUBLIC_ROLE, description="PUBLIC_ROLE has no members or label")
    label: str | None = None
    members: list[RoleMember] = Field(default_factory=list)


class TargetDefinition(BaseModel):
    target: str
    closed: bool = False
    operations: dict[str, int | str] = Field(
        default_factory=dict,
        description="Operation name or 0x id mapped to a role id, label, ADMIN or PUBLIC",
    )


class PolicyDocument(BaseModel):
    """Top-level policy document model."""

    roles: list[RoleDefinition] = Field(default_factory=list)
    targets: list[TargetDefinition] = Field(default_factory=list)

    def resolve_role(self, reference: int | str, registry: InMemoryRoleRegistry | None = None) -> int:
        """Resolve a role id, reserved name, or label declared here or in ``registry``."""
        if isinstance(reference, int):
            try:
                return check_role(reference)
            except InvalidRole as e:
                raise PolicyDocumentError(str(e)) from e
        if reference in RESERVED_ROLE_NAMES:
            return RESERVED_ROLE_NAMES[reference]
        for role in self.roles:
            if role.label == reference:
                return role.id
        if registry is not None:
            role_id = registry.find_role(reference)
            if role_id is not None:
                return role_id
        raise PolicyDocumentError(f"Unknown role reference: {reference!r}")


def parse_policy_document(data: dict[str, Any]) -> PolicyDocument:
    try:
        return PolicyDocument.model_validate(data)
    except ValidationError as e:
        raise PolicyDocumentError(f"Invalid policy document: {e}") from e


def load_policy_document(path: str | Path) -> PolicyDocument:
    """Load and validate a YAML policy document."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise PolicyDocumentError(f"Cannot parse policy document {path}: {e}") from e
    if not isinstance(data, dict):
        raise PolicyDocumentError(f"Policy document {path} must be a mapping")
    return parse_policy_document(data)


def apply_policy_document(
    manager: AccessManager, document: PolicyDocument, caller: str
) -> None:
    """
    Apply ``document`` through the administrative gateway as ``caller``.

    Roles are labeled and granted first, then operation roles are set, and
    closed flags are written last so a target is fully configured before it
    is reopened.

    Raises:
        PolicyDocumentError: If a role reference cannot be resolved or a
            target names the manager itself.
        Unauthorized: If ``caller`` may not administer the manager.
    """
    # Resolve everything up front so a bad reference changes nothing
    plan: list[tuple[str, dict[int, list[str]], bool]] = []
    for definition in document.targets:
        if definition.target == manager.address:
            raise PolicyDocumentError(
                f"Target {definition.target!r} is the access manager's own address"
            )
        by_role: dict[int, list[str]] = defaultdict(list)
        for op, reference in definition.operations.items():
            by_role[document.resolve_role(reference, manager.registry)].append(op)
        plan.append((definition.target, dict(by_role), definition.closed))

    admin = manager.admin.as_caller(caller)
    for role in document.roles:
        if role.label:
            admin.label_role(role.id, role.label)
        for member in role.members:
            admin.grant_role(role.id, member.account, member.execution_delay)

    for target, by_role, closed in plan:
        for role_id, ops in by_role.items():
            admin.set_required_role(target, ops, role_id)
        admin.set_closed(target, closed)

    logger.info(
        "Policy document applied: roles=%d targets=%d by=%s",
        len(document.roles), len(document.targets), caller,
    )
