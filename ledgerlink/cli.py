"""CLI entry point for ledgerlink.

Commands:
    ledgerlink import FILE --user U --account A [--kind K]   Commit one file
    ledgerlink watch --user U --account A     Start file watcher daemon
    ledgerlink match --user U [--from D] [--to D]   Suggest internal transfers
    ledgerlink inbox --user U                 Pending suggestions and payments
    ledgerlink confirm --user U OUT IN        Confirm a transfer pair
    ledgerlink reject --user U (--suggestion ID | OUT IN)   Reject a pair
    ledgerlink confirm-payment --user U ENTRY CARD   Link a card bill payment
    ledgerlink status --user U                Ledger counts
    ledgerlink account add --user U NAME [--type T]  Register an account
    ledgerlink category add --user U NAME     Register a category
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on LEDGER_LOG_LEVEL env var."""
    level = os.environ.get("LEDGER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load application config from config directory."""
    from ledgerlink.config import Config

    config_dir = os.environ.get("LEDGER_CONFIG_DIR", "config")
    return Config(config_dir=config_dir)


def _get_repo():
    """Create a Repository connected to the configured database, migrated."""
    from ledgerlink.database.repository import Repository

    db_path = os.environ.get("LEDGER_DB_PATH", "ledger.db")
    repo = Repository(db_path=db_path)
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _make_claude_fn():
    """Create a Claude API callback for the categorization fallback.

    Returns a callable (system: str, prompt: str) -> str, or None if
    ANTHROPIC_API_KEY is not set.
    """
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        return None

    try:
        import anthropic

        client = anthropic.Anthropic(api_key=api_key)

        def claude_fn(system: str, prompt: str) -> str:
            response = client.messages.create(
                model="claude-sonnet-4-20250514",
                max_tokens=1024,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text

        return claude_fn
    except Exception as e:
        logger.warning("Claude API not available: %s", e)
        return None


def _get_service(repo):
    from ledgerlink.service import LedgerService

    return LedgerService(repo, config=_get_config(), claude_fn=_make_claude_fn())


def _get_watch_dir() -> Path:
    """Get the watch directory from env or default."""
    return Path(os.environ.get("LEDGER_WATCH_DIR", "import"))


def _get_migrations_dir() -> Path:
    """Get the migrations directory path."""
    default = Path(__file__).parent / "database" / "migrations"
    return Path(os.environ.get("LEDGER_MIGRATIONS_DIR", default))


def _cents(amount_cents: int | None) -> str:
    return f"{(amount_cents or 0) / 100:,.2f}"


# ── Command handlers ─────────────────────────────────────


def cmd_import(args: argparse.Namespace) -> int:
    """Commit one statement file for a user's account."""
    from ledgerlink.watcher.observer import ImportPipeline, SUPPORTED_EXTENSIONS

    filepath = args.file.resolve()
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1
    if args.kind is None and filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
        print(f"Error: Unsupported file type: {filepath.suffix}")
        return 1

    repo = _get_repo()
    try:
        pipeline = ImportPipeline(_get_service(repo), args.user, args.account)
        result = pipeline.process_file(filepath, kind=args.kind)
    finally:
        repo.close()

    if result.status == "error":
        print(f"Error: {result.error_message}")
        return 1
    print(
        f"{result.file_name}: {result.status}"
        f" (imported={result.imported_count}, dup={result.duplicate_count},"
        f" invalid={result.invalid_count}, categorized={result.categorized_count})"
    )
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Start the file watcher daemon."""
    from ledgerlink.watcher.observer import FileWatcher, ImportPipeline

    repo = _get_repo()
    pipeline = ImportPipeline(_get_service(repo), args.user, args.account)
    watcher = FileWatcher(watch_dir=_get_watch_dir(), pipeline=pipeline)

    print(f"Watching {watcher.watch_dir} for statement files... (Ctrl+C to stop)")
    watcher.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping watcher...")
    finally:
        watcher.stop()
        repo.close()

    return 0


def cmd_match(args: argparse.Namespace) -> int:
    """Run the transfer matcher and print the stored suggestions."""
    repo = _get_repo()
    try:
        suggestions = _get_service(repo).run_transfer_matcher(
            args.user, date_from=args.date_from, date_to=args.date_to,
        )
    finally:
        repo.close()

    if not suggestions:
        print("No transfer candidates found.")
        return 0
    print(f"Transfer suggestions ({len(suggestions)}):")
    for s in suggestions:
        print(f"  {s.id}  score={s.score:.4f}  out={s.out_entry_id}  in={s.in_entry_id}")
    return 0


def cmd_inbox(args: argparse.Namespace) -> int:
    """Print pending suggestions and unlinked card payments."""
    repo = _get_repo()
    try:
        inbox = _get_service(repo).get_reconciliation_inbox(args.user)
    finally:
        repo.close()

    print(f"Pending transfer suggestions ({len(inbox.suggestions)}):")
    print("-" * 80)
    for s in inbox.suggestions:
        print(
            f"  {s['id']}  {s['score']:.2f}  {_cents(s['out_amount_cents']):>12}"
            f"  {s['out_posted_date']} {s['out_account_name'] or '?'}"
            f" -> {s['in_posted_date']} {s['in_account_name'] or '?'}"
        )

    print(f"\nCard payments without a link ({len(inbox.unmatched_payments)}):")
    print("-" * 80)
    for p in inbox.unmatched_payments:
        print(
            f"  {p['id']}  {p['posted_date']}  {_cents(p['amount_cents']):>12}"
            f"  {(p['description_raw'] or '')[:40]}"
        )

    print(f"\nCard activity with no payment link ({len(inbox.unlinked_card_activity)}):")
    print("-" * 80)
    for c in inbox.unlinked_card_activity:
        print(
            f"  {c['id']}  {c['posted_date']}  {_cents(c['amount_cents']):>12}"
            f"  {c['account_name'] or '?'}  {(c['description_raw'] or '')[:30]}"
        )
    return 0


def cmd_confirm(args: argparse.Namespace) -> int:
    """Confirm an OUT/IN pair as an internal transfer."""
    from ledgerlink.errors import InvalidPair

    repo = _get_repo()
    try:
        _get_service(repo).confirm_transfer(args.user, args.out_entry, args.in_entry)
    except InvalidPair as e:
        print(f"Error: {e.reason}")
        return 1
    finally:
        repo.close()

    print(f"Confirmed transfer {args.out_entry} -> {args.in_entry}")
    return 0


def cmd_reject(args: argparse.Namespace) -> int:
    """Reject a suggestion by id or by entry pair."""
    from ledgerlink.errors import InvalidPair

    if args.suggestion is None and (args.out_entry is None or args.in_entry is None):
        print("Error: provide --suggestion or both entry ids")
        return 1

    repo = _get_repo()
    try:
        suggestion = _get_service(repo).reject_transfer_suggestion(
            args.user,
            suggestion_id=args.suggestion,
            out_entry_id=args.out_entry,
            in_entry_id=args.in_entry,
        )
    except InvalidPair as e:
        print(f"Error: {e.reason}")
        return 1
    finally:
        repo.close()

    print(f"Rejected suggestion {suggestion.id}")
    return 0


def cmd_confirm_payment(args: argparse.Namespace) -> int:
    """Link a bank-side outflow to the card bill it paid."""
    from ledgerlink.errors import InvalidLink

    repo = _get_repo()
    try:
        _get_service(repo).confirm_credit_card_payment(args.user, args.entry, args.card)
    except InvalidLink as e:
        print(f"Error: {e.reason}")
        return 1
    finally:
        repo.close()

    print(f"Linked payment {args.entry} to card {args.card}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Display ledger counts for a user."""
    repo = _get_repo()
    try:
        counts = _get_service(repo).get_status(args.user)

        from datetime import datetime
        month = datetime.now().strftime("%Y-%m")
        cost_cents = repo.get_monthly_cost(month)
    finally:
        repo.close()

    print("ledgerlink status")
    print("=" * 40)
    print(f"  Ledger entries:       {counts['total_entries']:,}")
    print(f"  Categorized:          {counts['categorized']:,}")
    print(f"  Transfers:            {counts['transfers']:,}")
    print(f"  Pending suggestions:  {counts['pending_suggestions']:,}")
    print(f"  Rejected suggestions: {counts['rejected_suggestions']:,}")
    print(f"  Payment links:        {counts['payment_links']:,}")
    print(f"  Import batches:       {counts['total_batches']:,}")
    print(f"\n  API cost ({month}):      ${cost_cents / 100:.2f}")
    return 0


def cmd_account(args: argparse.Namespace) -> int:
    """Register an account for a user."""
    from ledgerlink.database.models import Account

    if args.account_command != "add":
        print("Usage: ledgerlink account add --user U NAME [--type T]")
        return 1

    repo = _get_repo()
    try:
        account = repo.insert_account(Account(
            user_id=args.user, name=args.name, type=args.type,
            institution_id=args.institution,
        ))
    finally:
        repo.close()
    print(f"Added account {account.id} ({account.type}): {account.name}")
    return 0


def cmd_category(args: argparse.Namespace) -> int:
    """Register a category for a user."""
    from ledgerlink.database.models import Category

    if args.category_command != "add":
        print("Usage: ledgerlink category add --user U NAME")
        return 1

    repo = _get_repo()
    try:
        category = repo.insert_category(Category(user_id=args.user, name=args.name))
    finally:
        repo.close()
    print(f"Added category {category.id}: {category.name}")
    return 0


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "import": cmd_import,
    "watch": cmd_watch,
    "match": cmd_match,
    "inbox": cmd_inbox,
    "confirm": cmd_confirm,
    "reject": cmd_reject,
    "confirm-payment": cmd_confirm_payment,
    "status": cmd_status,
    "account": cmd_account,
    "category": cmd_category,
}


def main(argv: list[str] | None = None):
    from ledgerlink.database.models import ACCOUNT_TYPES

    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="ledgerlink",
        description="ledgerlink statement import and reconciliation",
    )
    subparsers = parser.add_subparsers(dest="command")

    # import
    import_p = subparsers.add_parser("import", help="Commit one statement file")
    import_p.add_argument("file", type=Path, help="CSV, OFX/QFX or statement text file")
    import_p.add_argument("--user", required=True, help="Owner user ID")
    import_p.add_argument("--account", required=True, help="Account ID the file belongs to")
    import_p.add_argument("--kind", choices=["csv", "ofx", "pdf"],
                          help="Source kind (default: by file extension)")

    # watch
    watch_p = subparsers.add_parser("watch", help="Start file watcher daemon")
    watch_p.add_argument("--user", required=True, help="Owner user ID")
    watch_p.add_argument("--account", required=True, help="Account ID for dropped files")

    # match
    match_p = subparsers.add_parser("match", help="Suggest internal transfers")
    match_p.add_argument("--user", required=True, help="Owner user ID")
    match_p.add_argument("--from", dest="date_from", help="First posted date (YYYY-MM-DD)")
    match_p.add_argument("--to", dest="date_to", help="Last posted date (YYYY-MM-DD)")

    # inbox
    inbox_p = subparsers.add_parser("inbox", help="List items needing review")
    inbox_p.add_argument("--user", required=True, help="Owner user ID")

    # confirm
    confirm_p = subparsers.add_parser("confirm", help="Confirm a transfer pair")
    confirm_p.add_argument("--user", required=True, help="Owner user ID")
    confirm_p.add_argument("out_entry", help="Outflow entry ID")
    confirm_p.add_argument("in_entry", help="Inflow entry ID")

    # reject
    reject_p = subparsers.add_parser("reject", help="Reject a transfer suggestion")
    reject_p.add_argument("--user", required=True, help="Owner user ID")
    reject_p.add_argument("--suggestion", help="Suggestion ID")
    reject_p.add_argument("out_entry", nargs="?", help="Outflow entry ID")
    reject_p.add_argument("in_entry", nargs="?", help="Inflow entry ID")

    # confirm-payment
    pay_p = subparsers.add_parser("confirm-payment", help="Link a card bill payment")
    pay_p.add_argument("--user", required=True, help="Owner user ID")
    pay_p.add_argument("entry", help="Bank-side payment entry ID")
    pay_p.add_argument("card", help="Credit card account ID")

    # status
    status_p = subparsers.add_parser("status", help="Show ledger counts")
    status_p.add_argument("--user", required=True, help="Owner user ID")

    # account
    acct_p = subparsers.add_parser("account", help="Manage accounts")
    acct_sub = acct_p.add_subparsers(dest="account_command")
    acct_add_p = acct_sub.add_parser("add", help="Add an account")
    acct_add_p.add_argument("--user", required=True, help="Owner user ID")
    acct_add_p.add_argument("name", help="Display name")
    acct_add_p.add_argument("--type", choices=ACCOUNT_TYPES, default="checking")
    acct_add_p.add_argument("--institution", help="Institution ID")

    # category
    cat_p = subparsers.add_parser("category", help="Manage categories")
    cat_sub = cat_p.add_subparsers(dest="category_command")
    cat_add_p = cat_sub.add_parser("add", help="Add a category")
    cat_add_p.add_argument("--user", required=True, help="Owner user ID")
    cat_add_p.add_argument("name", help="Category name")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
