"""
Purpose Ledger Audit Tool — event chain and restriction invariant check.

Recomputes every hash in the event log and checks, for every account,
that the restricted total stays within the token balance and equals the
sum of the account's purpose pools.

Usage:
    python -m purpose_ledger.ledger.audit
    python -m purpose_ledger.ledger.audit --database-url sqlite:///ledger.db
    python -m purpose_ledger.ledger.audit --verbose
"""

from __future__ import annotations

import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from purpose_ledger.config import settings
from purpose_ledger.service import PurposeLedgerService

console = Console()


def run_audit(service: PurposeLedgerService, verbose: bool = False) -> bool:
    """
    Run a full event chain and restriction invariant audit.

    Args:
        service: An initialized ledger service.
        verbose: Print the per-account restriction table if True.

    Returns:
        True if the chain is valid and no invariant is violated.
    """
    console.print("\n[bold blue]═══ Purpose Ledger Audit ═══[/bold blue]\n")

    count = service.event_count()
    console.print(f"  Events in log: [bold]{count}[/bold]")

    console.print("  Verifying hash chain...", end=" ")
    start_time = time.time()
    chain_valid, entries_verified, message = service.verify_chain()
    elapsed = time.time() - start_time

    if chain_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Entries verified: [bold]{entries_verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at entry: {entries_verified}")
        console.print(f"  Reason: {message}")

    console.print("  Checking restriction invariants...", end=" ")
    violations = service.check_invariants()
    if not violations:
        console.print("[bold green]✓ HOLD[/bold green]")
    else:
        console.print(f"[bold red]✗ {len(violations)} VIOLATION(S)[/bold red]")
        for violation in violations:
            console.print(
                f"  [red]{violation.kind.value}[/red] {violation.account}: {violation.detail}"
            )

    if verbose:
        console.print("\n[bold]Account Restrictions:[/bold]")
        table = Table(show_lines=True)
        table.add_column("Account", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("Restricted", style="yellow", justify="right")
        table.add_column("Free", style="green", justify="right")
        table.add_column("Pools", style="dim")

        for snap in service.account_restrictions():
            pools = "\n".join(f"{p[:18]}…={v}" for p, v in snap.pools.items()) or "—"
            table.add_row(
                snap.account,
                str(snap.balance),
                str(snap.total_restricted),
                str(snap.free_balance),
                pools,
            )
        console.print(table)

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return chain_valid and not violations


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Purpose Ledger event chain and restriction invariant auditor"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show per-account restriction table",
    )
    args = parser.parse_args()

    service = PurposeLedgerService(args.database_url or settings.database_url)
    service.initialize()
    is_valid = run_audit(service, verbose=args.verbose)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
