"""
Policy Report — which operations are deliberately restricted.

Lists every known target, its closed flag and its explicitly configured
operations. An operation missing from the report is public, either because
it was never configured or because it was explicitly reset to PUBLIC_ROLE.

Usage:
    python -m access_gate.policy.report
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from access_gate.manager import AccessManager
from access_gate.policy.schema import ADMIN_ROLE, format_operation_id

console = Console()


def _role_name(manager: AccessManager, role: int) -> str:
    if role == ADMIN_ROLE:
        return "ADMIN"
    label = manager.registry.get_role_label(role)
    return f"{role} ({label})" if label else str(role)


def render_policy_table(manager: AccessManager) -> Table:
    """Build a table of targets and their configured operations."""
    table = Table(title="Access policy", show_lines=True)
    table.add_column("Target", style="cyan")
    table.add_column("Closed", width=8)
    table.add_column("Operation", style="green")
    table.add_column("Required role", style="yellow")

    for target in manager.store.targets():
        closed = "🔒 YES" if manager.store.is_closed(target) else "—"
        operations = manager.store.configured_operations(target)
        if not operations:
            table.add_row(target, closed, "—", "PUBLIC")
            continue
        for op, role in sorted(operations.items()):
            table.add_row(target, closed, format_operation_id(op), _role_name(manager, role))
    return table


def main() -> None:
    from access_gate.bootstrap import build_access_manager, configure_logging

    configure_logging()
    manager = build_access_manager()
    console.print(render_policy_table(manager))


if __name__ == "__main__":
    main()
