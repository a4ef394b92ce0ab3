#!/usr/bin/env python3
"""Finance Tracker CLI - offline-first personal finance tracking."""
import argparse
import asyncio
import functools
import json
import logging
import sys
from datetime import date
from pathlib import Path

from pydantic import ValidationError

from finance_tracker.api.financial_store import FinancialStore
from finance_tracker.core.exceptions import LocalWriteFailure, MalformedImport, NotFound
from finance_tracker.core.models import (
    RecurringRule,
    TransactionCreate,
    TransactionEdit,
    TransactionType,
)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S"
    )


def with_store(command):
    """Run an async command against a loaded store, mapping errors to exit code 1."""
    async def run(args):
        with FinancialStore.from_config(online=not args.offline) as store:
            await store.load()
            return await command(store, args)

    @functools.wraps(command)
    def wrapper(args):
        try:
            return asyncio.run(run(args))
        except (LocalWriteFailure, MalformedImport, NotFound, ValidationError, ValueError) as e:
            print(f"Error: {e}")
            return 1

    return wrapper


def print_transaction(store: FinancialStore, t) -> None:
    sign = "+" if t.type is TransactionType.INCOME else "-"
    print(
        f"  ID {t.id:>13d} | {t.date} | {t.description[:30]:30s} | "
        f"{store.category_name(t.category_id)[:16]:16s} | {sign}{t.amount:10,.2f}"
    )


@with_store
async def cmd_add(store: FinancialStore, args):
    """Add a transaction (and its recurring occurrences)."""
    created = await store.add_transaction(TransactionCreate(
        description=args.description,
        amount=args.amount,
        type=args.type,
        category_id=args.category,
        date=args.date or date.today(),
        recurring_rule=args.recurring,
    ))
    print(f"Added {len(created)} transaction(s):")
    for t in created:
        print_transaction(store, t)
    return 0


@with_store
async def cmd_list(store: FinancialStore, args):
    """List transactions."""
    transactions = store.list_transactions(args.year, args.month, args.type, args.category)
    if not transactions:
        print("No transactions found.")
        return 0

    print(f"Found {len(transactions)} transactions:\n")
    for t in transactions[:args.limit]:
        print_transaction(store, t)
    return 0


@with_store
async def cmd_edit(store: FinancialStore, args):
    """Edit a transaction or its recurring group."""
    fields = {
        "description": args.description,
        "amount": args.amount,
        "type": args.type,
        "category_id": args.category,
        "date": args.date,
    }
    edit = TransactionEdit(**{k: v for k, v in fields.items() if v is not None})
    updated = await store.edit_transaction(args.txn_id, edit, apply_to_group=args.group)
    print(f"Updated {len(updated)} transaction(s)")
    return 0


@with_store
async def cmd_delete(store: FinancialStore, args):
    """Delete a transaction or its recurring group."""
    if args.group:
        members = store.group_members(args.txn_id)
        if len(members) > 1 and not args.yes:
            print(f"This will delete {len(members)} transactions:")
            for t in members:
                print_transaction(store, t)
            print("Run with --yes to confirm")
            return 0

    removed = await store.delete_transaction(args.txn_id, apply_to_group=args.group)
    print(f"Deleted {removed} transaction(s)")
    return 0


@with_store
async def cmd_summary(store: FinancialStore, args):
    """Show totals, top categories and budget status."""
    summary = store.get_summary(args.year, args.month)
    totals = summary["totals"]

    print("=" * 50)
    print("SUMMARY")
    print("=" * 50)
    print(f"\nTransactions: {summary['transactionCount']}")
    print(f"Income:       {totals['income']:12,.2f}")
    print(f"Expenses:     {totals['expense']:12,.2f}")
    print(f"Balance:      {totals['balance']:12,.2f}")

    if summary["categoryBreakdown"]:
        print("\n" + "-" * 50)
        print("TOP EXPENSE CATEGORIES")
        print("-" * 50)
        for item in summary["categoryBreakdown"]:
            print(f"  {item['name']:24s}  {item['total']:12,.2f}")

    budget = summary["budget"]
    if budget and budget["budget"] is not None:
        status = "EXCEEDED" if budget["exceeded"] else "ok"
        print(f"\nBudget {budget['month']}: {budget['spent']:,.2f} / {budget['budget']:,.2f} ({status})")

    investments = summary["investments"]
    if investments["investments"]:
        print(f"\nInvestments: {investments['totalValue']:,.2f} "
              f"(principal {investments['totalPrincipal']:,.2f})")
    return 0


@with_store
async def cmd_categories(store: FinancialStore, args):
    """List all categories."""
    for c in store.list_categories(args.type):
        print(f"  {c.id:>13d}  {c.type.value:8s}  {c.name}")
    return 0


@with_store
async def cmd_budget(store: FinancialStore, args):
    """Set or show a monthly budget."""
    if args.amount is not None:
        await store.set_budget(args.month, args.amount)
    status = store.budget_status(args.month)
    if status["budget"] is None:
        print(f"No budget set for {args.month} (spent {status['spent']:,.2f})")
    else:
        print(f"{args.month}: spent {status['spent']:,.2f} of {status['budget']:,.2f}, "
              f"remaining {status['remaining']:,.2f}")
    return 0


@with_store
async def cmd_export(store: FinancialStore, args):
    """Write a JSON backup of all datasets."""
    path = Path(args.file or f"finance-tracker-backup-{date.today().isoformat()}.json")
    path.write_text(json.dumps(store.export_snapshot(), indent=2))
    print(f"Backup written to {path}")
    return 0


@with_store
async def cmd_import(store: FinancialStore, args):
    """Restore datasets from a JSON backup."""
    file_path = Path(args.file)
    if not file_path.exists():
        print(f"Error: File not found: {file_path}")
        return 1

    imported = await store.import_snapshot(file_path.read_bytes())
    if not imported:
        print("Nothing to import.")
    for name, count in imported.items():
        print(f"  {name:14s} {count:6d}")
    return 0


@with_store
async def cmd_sync(store: FinancialStore, args):
    """Push local datasets to the remote store."""
    pushed = await store.resync()
    status = store.sync_status()
    print(f"User:   {status['user_id']}")
    print(f"Remote: {'enabled' if status['remote_enabled'] else 'disabled'}"
          f"{', authenticated' if status['authenticated'] else ''}")
    print(f"Pushed: {', '.join(pushed) if pushed else 'nothing'}")
    return 0


def cmd_serve(args):
    """Run the HTTP API."""
    import uvicorn
    uvicorn.run("finance_tracker.web.api:app", host=args.host, port=args.port)
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="finance-tracker",
        description="Finance Tracker - offline-first personal finance tracking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  finance-tracker add "Rent" 1200 --category 7 --recurring monthly   Add a monthly expense
  finance-tracker list --month 2024-03                                List March transactions
  finance-tracker delete 1700000000001 --group --yes                  Delete a recurring group
  finance-tracker summary --month 2024-03                             Show monthly summary
  finance-tracker export backup.json                                  Write a backup
  finance-tracker sync                                                Push local data to the cloud
"""
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--offline", action="store_true", help="Do not contact the remote store")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Add command
    add_parser = subparsers.add_parser("add", help="Add a transaction")
    add_parser.add_argument("description", help="Description")
    add_parser.add_argument("amount", type=float, help="Amount (non-negative)")
    add_parser.add_argument("--type", choices=[t.value for t in TransactionType], default="expense")
    add_parser.add_argument("--category", type=int, help="Category ID")
    add_parser.add_argument("--date", type=date.fromisoformat, help="Date (YYYY-MM-DD, default today)")
    add_parser.add_argument("--recurring", choices=[r.value for r in RecurringRule], default="none")
    add_parser.set_defaults(func=cmd_add)

    # List command
    list_parser = subparsers.add_parser("list", help="List transactions")
    list_parser.add_argument("--year", type=int)
    list_parser.add_argument("--month", help="YYYY-MM")
    list_parser.add_argument("--type", choices=[t.value for t in TransactionType])
    list_parser.add_argument("--category", type=int, help="Category ID")
    list_parser.add_argument("-n", "--limit", type=int, default=50, help="Max results")
    list_parser.set_defaults(func=cmd_list)

    # Edit command
    edit_parser = subparsers.add_parser("edit", help="Edit a transaction")
    edit_parser.add_argument("txn_id", type=int, help="Transaction ID")
    edit_parser.add_argument("--description")
    edit_parser.add_argument("--amount", type=float)
    edit_parser.add_argument("--type", choices=[t.value for t in TransactionType])
    edit_parser.add_argument("--category", type=int)
    edit_parser.add_argument("--date", type=date.fromisoformat)
    edit_parser.add_argument("--group", action="store_true", help="Apply to the whole recurring group")
    edit_parser.set_defaults(func=cmd_edit)

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a transaction")
    delete_parser.add_argument("txn_id", type=int, help="Transaction ID")
    delete_parser.add_argument("--group", action="store_true", help="Delete the whole recurring group")
    delete_parser.add_argument("-y", "--yes", action="store_true", help="Confirm group deletion")
    delete_parser.set_defaults(func=cmd_delete)

    # Summary command
    summary_parser = subparsers.add_parser("summary", help="Show summary")
    summary_parser.add_argument("--year", type=int)
    summary_parser.add_argument("--month", help="YYYY-MM")
    summary_parser.set_defaults(func=cmd_summary)

    # Categories command
    cats_parser = subparsers.add_parser("categories", help="List all categories")
    cats_parser.add_argument("--type", choices=[t.value for t in TransactionType])
    cats_parser.set_defaults(func=cmd_categories)

    # Budget command
    budget_parser = subparsers.add_parser("budget", help="Set or show a monthly budget")
    budget_parser.add_argument("month", help="YYYY-MM")
    budget_parser.add_argument("amount", type=float, nargs="?", help="New ceiling")
    budget_parser.set_defaults(func=cmd_budget)

    # Export / import commands
    export_parser = subparsers.add_parser("export", help="Write a JSON backup")
    export_parser.add_argument("file", nargs="?", help="Output file")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Restore from a JSON backup")
    import_parser.add_argument("file", help="Backup file")
    import_parser.set_defaults(func=cmd_import)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Push local data to the remote store")
    sync_parser.set_defaults(func=cmd_sync)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=5000)
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
