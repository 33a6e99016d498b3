"""Tests for declarative policy documents."""

from __future__ import annotations

from datetime import timedelta

import pytest

from access_gate.errors import PolicyDocumentError, Unauthorized
from access_gate.manager import AccessManager
from access_gate.policy.document import (
    apply_policy_document,
    load_policy_document,
    parse_policy_document,
)
from access_gate.policy.schema import ADMIN_ROLE, PUBLIC_ROLE

POLICY_YAML = """
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
  - target: vault
    closed: true
    operations:
      withdraw: 1
"""


class TestPolicyDocument:

    def setup_method(self):
        self.manager = AccessManager("admin")

    def test_load_and_apply(self, tmp_path):
        """A YAML document labels, grants, restricts and closes in one pass."""
        path = tmp_path / "policy.yaml"
        path.write_text(POLICY_YAML)
        document = load_policy_document(path)
        apply_policy_document(self.manager, document, caller="admin")

        store = self.manager.store
        assert store.get_required_role("counter", "increment") == 1
        assert store.get_required_role("counter", "reset") == ADMIN_ROLE
        assert store.is_configured("counter", "get_value") is False
        assert store.get_required_role("counter", "get_value") == PUBLIC_ROLE
        assert store.is_closed("vault") is True
        assert store.is_closed("counter") is False

        registry = self.manager.registry
        assert registry.get_role_label(1) == "OPERATOR"
        assert registry.has_role(1, "alice") == (True, timedelta(0))
        assert registry.has_role(1, "bob") == (True, timedelta(hours=1))

    def test_apply_requires_admin(self):
        """Applying as a non-admin is rejected before any write."""
        document = parse_policy_document({"targets": [{"target": "counter", "closed": True}]})
        with pytest.raises(Unauthorized):
            apply_policy_document(self.manager, document, caller="mallory")
        assert self.manager.store.is_closed("counter") is False

    def test_unknown_label_changes_nothing(self):
        """An unresolvable role label aborts before roles are granted."""
        document = parse_policy_document(
            {
                "roles": [{"id": 1, "members": [{"account": "alice"}]}],
                "targets": [{"target": "counter", "operations": {"increment": "MISSING"}}],
            }
        )
        with pytest.raises(PolicyDocumentError):
            apply_policy_document(self.manager, document, caller="admin")
        assert self.manager.registry.has_role(1, "alice")[0] is False

    def test_manager_address_as_target_changes_nothing(self):
        """A target naming the manager itself aborts before roles are granted."""
        document = parse_policy_document(
            {
                "roles": [{"id": 1, "members": [{"account": "alice"}]}],
                "targets": [{"target": self.manager.address, "closed": True}],
            }
        )
        with pytest.raises(PolicyDocumentError):
            apply_policy_document(self.manager, document, caller="admin")
        assert self.manager.registry.has_role(1, "alice")[0] is False
        assert self.manager.store.is_closed(self.manager.address) is False

    def test_public_role_definition_rejected(self):
        """PUBLIC_ROLE cannot be defined with members, so nothing is granted."""
        with pytest.raises(PolicyDocumentError):
            parse_policy_document(
                {
                    "roles": [
                        {"id": 1, "members": [{"account": "bob"}]},
                        {"id": PUBLIC_ROLE, "label": "EVERYONE"},
                    ]
                }
            )
        assert self.manager.registry.has_role(1, "bob")[0] is False

    def test_labels_known_to_the_registry_resolve(self):
        """Labels already in the registry can be referenced."""
        self.manager.admin.as_caller("admin").label_role(5, "AUDITOR")
        document = parse_policy_document(
            {"targets": [{"target": "ledger", "operations": {"export": "AUDITOR"}}]}
        )
        apply_policy_document(self.manager, document, caller="admin")
        assert self.manager.store.get_required_role("ledger", "export") == 5

    def test_invalid_documents(self):
        """Negative role ids and delays fail validation."""
        with pytest.raises(PolicyDocumentError):
            parse_policy_document({"roles": [{"id": -1}]})
        with pytest.raises(PolicyDocumentError):
            parse_policy_document(
                {"roles": [{"id": 1, "members": [{"account": "a", "execution_delay": -5}]}]}
            )

    def test_out_of_range_role_reference(self):
        """Role ids beyond the 64-bit range are refused."""
        document = parse_policy_document(
            {"targets": [{"target": "counter", "operations": {"increment": PUBLIC_ROLE + 1}}]}
        )
        with pytest.raises(PolicyDocumentError):
            apply_policy_document(self.manager, document, caller="admin")

    def test_non_mapping_file(self, tmp_path):
        """A YAML file that is not a mapping is refused."""
        path = tmp_path / "policy.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(PolicyDocumentError):
            load_policy_document(path)
