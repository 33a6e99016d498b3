"""
Policy Audit — verify the ledger and review recorded policy changes.

Recomputes the hash chain of the audit ledger, summarizes the recorded
administrative events per kind, and optionally lists individual changes with
the account that made them.

Usage:
    python -m access_gate.ledger.audit
    python -m access_gate.ledger.audit --database-url sqlite:///audit.db
    python -m access_gate.ledger.audit --event-type role_granted --limit 20
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter

from rich.console import Console
from rich.table import Table

from access_gate.config import settings
from access_gate.ledger.models import AuditEntryDB
from access_gate.ledger.service import AuditLedger
from access_gate.policy.schema import AuditEventType

console = Console()

EXIT_VALID = 0
EXIT_TAMPERED = 1
EXIT_UNCONFIGURED = 2


def summarize_events(entries: list[AuditEntryDB]) -> Table:
    """Count recorded events per kind, in ledger order of first appearance."""
    counts = Counter(entry.event_type for entry in sorted(entries, key=lambda e: e.sequence_number))
    table = Table(title="Recorded policy events")
    table.add_column("Event", style="green")
    table.add_column("Count", justify="right")
    for event_type, count in counts.items():
        table.add_row(event_type, str(count))
    return table


def list_changes(entries: list[AuditEntryDB]) -> Table:
    """One row per entry, oldest first, with the change content inlined."""
    table = Table(title="Policy changes", show_lines=True)
    table.add_column("Seq", style="cyan", justify="right")
    table.add_column("When", style="dim")
    table.add_column("By", style="yellow")
    table.add_column("Event", style="green")
    table.add_column("Change")
    for entry in sorted(entries, key=lambda e: e.sequence_number):
        table.add_row(
            str(entry.sequence_number),
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.actor,
            entry.event_type,
            json.dumps(entry.content, sort_keys=True),
        )
    return table


def run_audit(
    database_url: str,
    verbose: bool = False,
    event_type: AuditEventType | None = None,
    limit: int = 50,
) -> bool:
    """
    Verify the chain and report on recorded policy changes.

    Args:
        database_url: SQLAlchemy connection string of the audit ledger.
        verbose: Also list individual changes.
        event_type: Restrict the listing to one kind of event.
        limit: Maximum number of changes to list.

    Returns:
        True if the chain is intact (an empty ledger counts as intact).
    """
    ledger = AuditLedger(database_url)
    count = ledger.get_entry_count()
    if count == 0:
        console.print("[yellow]Ledger has no entries; nothing to verify[/yellow]")
        return True

    is_valid, verified, message = ledger.verify_chain()
    if is_valid:
        console.print(f"[bold green]Chain intact[/bold green] ({verified} entries)")
    else:
        console.print(f"[bold red]Chain broken at entry {verified}[/bold red]: {message}")

    console.print(summarize_events(ledger.get_latest_entries(limit=count)))

    if verbose or event_type is not None:
        if event_type is not None:
            entries = ledger.get_entries_by_type(event_type, limit=limit)
        else:
            entries = ledger.get_latest_entries(limit=limit)
        console.print(list_changes(entries))

    return is_valid


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Verify and review the access policy audit ledger")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to ACCESS_GATE_LEDGER_DATABASE_URL)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="List recorded changes",
    )
    parser.add_argument(
        "--event-type",
        choices=[e.value for e in AuditEventType],
        default=None,
        help="Only list changes of this kind",
    )
    parser.add_argument("--limit", type=int, default=50, help="Maximum changes to list")
    args = parser.parse_args(argv)

    db_url = args.database_url or settings.ledger_database_url
    if not db_url:
        console.print("[bold red]No ledger database configured[/bold red]")
        sys.exit(EXIT_UNCONFIGURED)

    event_type = AuditEventType(args.event_type) if args.event_type else None
    is_valid = run_audit(db_url, verbose=args.verbose, event_type=event_type, limit=args.limit)
    sys.exit(EXIT_VALID if is_valid else EXIT_TAMPERED)


if __name__ == "__main__":
    main()
