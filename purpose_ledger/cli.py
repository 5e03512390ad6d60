"""
Purpose Ledger — command line entrypoint.

Every subcommand opens the configured database, runs one ledger operation
and prints the result. Privileged subcommands take ``--caller``, which is
checked against the owner / blacklister accounts from settings.

Usage:
    purpose-ledger init
    purpose-ledger mint --caller 0xowner 0xalice 200
    purpose-ledger assign --caller 0xowner 0xclinic tax-reserve
    purpose-ledger earmark 0xalice 0xbob 50 tax-reserve
    purpose-ledger release --caller 0xcompliance 0xalice tax-reserve --all
    purpose-ledger balance 0xalice
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

import structlog
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from purpose_ledger.config import PurposeLedgerSettings, settings
from purpose_ledger.errors import PurposeLedgerError
from purpose_ledger.governance.permissions import PermissionEngine
from purpose_ledger.ledger.audit import run_audit
from purpose_ledger.schema import MAX_UINT256, purpose_hex, purpose_label
from purpose_ledger.service import PurposeLedgerService

console = Console()


def configure_logging(config: PurposeLedgerSettings = settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(level=logging.getLevelName(config.log_level), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if config.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_service(config: PurposeLedgerSettings, database_url: str | None = None) -> PurposeLedgerService:
    permissions = PermissionEngine.from_accounts(
        owner=config.owner_account, blacklister=config.blacklister_account,
    )
    service = PurposeLedgerService(
        database_url or config.database_url, permissions, echo=config.database_echo,
    )
    service.initialize()
    return service


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="purpose-ledger",
        description="Purpose-restricted token ledger",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the ledger schema")

    p = sub.add_parser("mint", help="Mint tokens (owner)")
    p.add_argument("--caller", required=True)
    p.add_argument("account")
    p.add_argument("amount", type=int)

    p = sub.add_parser("burn", help="Burn own tokens")
    p.add_argument("account")
    p.add_argument("amount", type=int)

    p = sub.add_parser("transfer", help="Transfer tokens")
    p.add_argument("sender")
    p.add_argument("recipient")
    p.add_argument("amount", type=int)

    p = sub.add_parser("approve", help="Set a spender's allowance")
    p.add_argument("owner")
    p.add_argument("spender")
    p.add_argument("amount", type=int)

    p = sub.add_parser("transfer-from", help="Transfer on behalf of an owner")
    p.add_argument("spender")
    p.add_argument("owner")
    p.add_argument("recipient")
    p.add_argument("amount", type=int)

    p = sub.add_parser("assign", help="Replace an account's purposes (owner)")
    p.add_argument("--caller", required=True)
    p.add_argument("account")
    p.add_argument("purposes", nargs="*", help="Labels or 0x-prefixed 32-byte hex")

    p = sub.add_parser("purposes", help="Show an account's assigned purposes")
    p.add_argument("account")

    p = sub.add_parser("earmark", help="Transfer and restrict the amount on the sender")
    p.add_argument("sender")
    p.add_argument("recipient")
    p.add_argument("amount", type=int)
    p.add_argument("purpose")

    p = sub.add_parser("release", help="Release restricted balance (blacklister)")
    p.add_argument("--caller", required=True)
    p.add_argument("account")
    p.add_argument("purpose")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--amount", type=int)
    group.add_argument("--all", action="store_true", help="Release the whole pool")

    p = sub.add_parser("balance", help="Show balance and restrictions")
    p.add_argument("account")
    p.add_argument("--purpose", default=None)

    p = sub.add_parser("events", help="List recent events")
    p.add_argument("--account", default=None)
    p.add_argument("--type", dest="event_type", default=None)
    p.add_argument("--limit", type=int, default=20)

    p = sub.add_parser("audit", help="Verify the event chain and invariants")
    p.add_argument("--verbose", "-v", action="store_true")

    return parser


def run(args: argparse.Namespace, service: PurposeLedgerService) -> int:
    log = structlog.get_logger()
    log.info("purpose_ledger.cli." + args.command.replace("-", "_"))

    if args.command == "init":
        console.print("[green]Ledger initialized[/green]")
    elif args.command == "mint":
        service.mint(args.caller, args.account, args.amount)
        console.print(f"Minted {args.amount} to {args.account}")
    elif args.command == "burn":
        service.burn(args.account, args.amount)
        console.print(f"Burned {args.amount} from {args.account}")
    elif args.command == "transfer":
        service.transfer(args.sender, args.recipient, args.amount)
        console.print(f"Transferred {args.amount} {args.sender} → {args.recipient}")
    elif args.command == "approve":
        service.approve(args.owner, args.spender, args.amount)
        console.print(f"{args.spender} may spend {args.amount} of {args.owner}")
    elif args.command == "transfer-from":
        service.transfer_from(args.spender, args.owner, args.recipient, args.amount)
        console.print(f"Transferred {args.amount} {args.owner} → {args.recipient}")
    elif args.command == "assign":
        event = service.assign_purposes(args.caller, args.account, args.purposes)
        console.print(
            f"{args.account}: {len(event.old_purposes)} → {len(event.new_purposes)} purposes"
        )
    elif args.command == "purposes":
        for purpose in service.assigned_purposes(args.account):
            console.print(f"{purpose_hex(purpose)}  {purpose_label(purpose)}")
    elif args.command == "earmark":
        service.transfer_with_purpose(args.sender, args.recipient, args.amount, args.purpose)
        console.print(f"Earmarked {args.amount} from {args.sender} for {args.purpose}")
    elif args.command == "release":
        amount = MAX_UINT256 if args.all else args.amount
        released = service.release_restriction(args.caller, args.account, amount, args.purpose)
        console.print(f"Released {released} from {args.account} ({args.purpose})")
    elif args.command == "balance":
        table = Table()
        table.add_column("Account", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("Restricted", style="yellow", justify="right")
        table.add_column("Free", style="green", justify="right")
        restricted = (
            service.balance_of_restricted(args.account, args.purpose)
            if args.purpose else service.balance_of_restricted(args.account)
        )
        table.add_row(
            args.account,
            str(service.balance_of(args.account)),
            str(restricted),
            str(service.free_balance(args.account)),
        )
        console.print(table)
    elif args.command == "events":
        for entry in service.events(args.event_type, args.account, args.limit):
            console.print(
                f"[cyan]{entry.sequence_number:>6}[/cyan] {entry.event_type} {escape(str(entry.payload))}"
            )
    elif args.command == "audit":
        return 0 if run_audit(service, verbose=args.verbose) else 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    service = build_service(settings, args.database_url)
    try:
        return run(args, service)
    except PurposeLedgerError as exc:
        structlog.get_logger().warning("purpose_ledger.cli.rejected", error=str(exc))
        console.print(f"[bold red]✗ {type(exc).__name__}:[/bold red] {escape(str(exc))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
