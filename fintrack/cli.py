"""
fintrack maintenance CLI.

Every command runs against the backend named by STORAGE_BACKEND and
exits 0 on success, 1 on a handled failure.

    fintrack check-email someone@example.com
    fintrack delete-user <user-id> --reason "account closed"
    fintrack last-wish-run
"""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from fintrack.config import get_settings, validate_all_settings
from fintrack.errors import DuplicateEmailError, FinanceError
from fintrack.models.lifecycle import DeletionReport, DeletionStatus
from fintrack.orchestrator import FinanceApp, create_app_components
from fintrack.services.mail import MailDeliveryError
from fintrack.services.storage import StorageError


logger = structlog.get_logger()

BACKEND_SECTIONS = {"sql": "database", "google_sheets": "google_sheets"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fintrack", description="fintrack maintenance tasks")
    commands = parser.add_subparsers(dest="command", required=True)

    check_email = commands.add_parser("check-email", help="Is an email still free to register?")
    check_email.add_argument("email")

    register = commands.add_parser("register", help="Register a profile")
    register.add_argument("user_id", type=UUID)
    register.add_argument("email")
    register.add_argument("--name", default=None)
    register.add_argument("--currency", default=None)

    delete_user = commands.add_parser("delete-user", help="Delete everything a user owns")
    delete_user.add_argument("user_id", type=UUID)
    delete_user.add_argument("--reason", default=None)

    commands.add_parser("resume-deletions", help="Run every pending or failed deletion job")

    cancel = commands.add_parser("cancel-deletion", help="Cancel a deletion job and restore its rows")
    cancel.add_argument("job_id", type=UUID)

    commands.add_parser("last-wish-run", help="Deliver data of users who missed their check-in")
    commands.add_parser("mark-overdue", help="Flag lend/borrow records past their due date")

    recalc = commands.add_parser("recalculate-balances", help="Recompute a user's account balances")
    recalc.add_argument("user_id", type=UUID)

    history = commands.add_parser("history", help="Show a user's activity history")
    history.add_argument("user_id", type=UUID)
    history.add_argument("--limit", type=int, default=20)

    commands.add_parser("find-duplicate-emails", help="List profiles sharing an email")
    commands.add_parser("verify-settings", help="Check which settings sections load")

    return parser


# =============================================================================
# COMMANDS
# =============================================================================

async def _check_email(app: FinanceApp, args: argparse.Namespace) -> int:
    if await app.profiles.is_email_available(args.email):
        print(f"{args.email}: available")
        return 0
    print(f"{args.email}: already registered")
    return 1


async def _register(app: FinanceApp, args: argparse.Namespace) -> int:
    currency = args.currency or get_settings().app.default_currency
    profile = await app.profiles.register(args.user_id, args.email, args.name, currency)
    print(f"Registered {profile.email} as {profile.id}")
    return 0


def _print_report(report: DeletionReport) -> None:
    print(f"Job {report.job_id} ({report.user_id}): {report.status.value}")
    for name, count in report.deleted_counts.items():
        if count:
            print(f"  deleted {name}: {count}")
    for name, count in report.restored_counts.items():
        if count:
            print(f"  restored {name}: {count}")
    if report.error:
        print(f"  error: {report.error}")


async def _delete_user(app: FinanceApp, args: argparse.Namespace) -> int:
    job = await app.deletion.request_deletion(args.user_id, args.reason)
    report = await app.deletion.run(job.id)
    _print_report(report)
    return 0 if report.status == DeletionStatus.COMPLETED else 1


async def _resume_deletions(app: FinanceApp, args: argparse.Namespace) -> int:
    reports = await app.deletion.run_pending()
    for report in reports:
        _print_report(report)
    print(f"{len(reports)} job(s) processed")
    return 0 if all(r.status == DeletionStatus.COMPLETED for r in reports) else 1


async def _cancel_deletion(app: FinanceApp, args: argparse.Namespace) -> int:
    _print_report(await app.deletion.cancel(args.job_id))
    return 0


async def _last_wish_run(app: FinanceApp, args: argparse.Namespace) -> int:
    processed = await app.last_wish.run()
    print(f"Processed {processed} overdue user(s)")
    return 0


async def _mark_overdue(app: FinanceApp, args: argparse.Namespace) -> int:
    changed = await app.lend_borrow.mark_overdue()
    print(f"Marked {changed} record(s) overdue")
    return 0


async def _recalculate_balances(app: FinanceApp, args: argparse.Namespace) -> int:
    balances = await app.ledger.recalculate_all_balances(args.user_id)
    for account_id, balance in balances.items():
        print(f"{account_id}: {balance}")
    print(f"{len(balances)} account(s) recalculated")
    return 0


async def _history(app: FinanceApp, args: argparse.Namespace) -> int:
    entries = await app.activity_logger.history_for_user(args.user_id, limit=args.limit)
    for entry in entries:
        print(f"{entry.timestamp.isoformat()}  {entry.activity_type.value:<28} {entry.description}")
    if not entries:
        print("No activity found")
    return 0


async def _find_duplicate_emails(app: FinanceApp, args: argparse.Namespace) -> int:
    duplicates = await app.profiles.find_duplicate_emails()
    for email, profiles in duplicates.items():
        print(f"{email}: {', '.join(str(p.id) for p in profiles)}")
    if not duplicates:
        print("No duplicate emails")
        return 0
    return 1


COMMANDS: dict[str, Callable[[FinanceApp, argparse.Namespace], Awaitable[int]]] = {
    "check-email": _check_email,
    "register": _register,
    "delete-user": _delete_user,
    "resume-deletions": _resume_deletions,
    "cancel-deletion": _cancel_deletion,
    "last-wish-run": _last_wish_run,
    "mark-overdue": _mark_overdue,
    "recalculate-balances": _recalculate_balances,
    "history": _history,
    "find-duplicate-emails": _find_duplicate_emails,
}


def verify_settings() -> int:
    results = validate_all_settings()
    for name in ("app", "database", "smtp", "google_sheets", "cloudinary"):
        status = "ok" if results[name] else f"FAILED ({results[f'{name}_error']})"
        print(f"{name}: {status}")

    if not results["app"]:
        return 1
    required = BACKEND_SECTIONS.get(get_settings().app.storage_backend)
    return 0 if required is None or results[required] else 1


def main(argv: Optional[list[str]] = None, app: Optional[FinanceApp] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "verify-settings":
        return verify_settings()

    try:
        app = app or create_app_components()
        return asyncio.run(COMMANDS[args.command](app, args))
    except DuplicateEmailError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (FinanceError, StorageError, MailDeliveryError) as e:
        logger.error("cli_command_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
