"""
CLI main entry point.
"""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import IntakeError
from ..llm.client import VisionImage
from ..services import ImportMaintenance, ImportService, InlineDispatcher
from ..state_store import ImportJobRecord, ParsedTransactionStatus

logger = logging.getLogger(__name__)

DEFAULT_USER = "local"

_STATUS_ICONS = {
    "PROCESSING": "⏳",
    "AWAITING_REVIEW": "📝",
    "COMPLETED": "✓",
    "FAILED": "❌",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-intake",
        description="Import bank statements, screenshots and alert emails into a ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    user_parent = argparse.ArgumentParser(add_help=False)
    user_parent.add_argument(
        "--user",
        type=str,
        default=DEFAULT_USER,
        help=f"User the jobs belong to (default: {DEFAULT_USER})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    # import-file command
    file_parser = subparsers.add_parser(
        "import-file", parents=[user_parent], help="Import a PDF or CSV bank statement"
    )
    file_parser.add_argument("path", type=Path, help="Statement file")
    file_parser.add_argument(
        "--bank",
        type=str,
        help="Bank hint (gtbank, access, firstbank, zenith, kuda)",
    )

    # import-screenshots command
    shots_parser = subparsers.add_parser(
        "import-screenshots", parents=[user_parent], help="Import banking app screenshots"
    )
    shots_parser.add_argument("paths", type=Path, nargs="+", help="Image files")

    # import-email command
    email_parser = subparsers.add_parser(
        "import-email", parents=[user_parent], help="Process a forwarded email webhook payload"
    )
    email_parser.add_argument("path", type=Path, help="JSON payload (from, to, subject, text, html)")
    email_parser.add_argument(
        "--deliver",
        action="store_true",
        help="Deliver to the user's inbound address instead of the payload's recipients",
    )

    # jobs command
    jobs_parser = subparsers.add_parser("jobs", parents=[user_parent], help="List import jobs")
    jobs_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum jobs to list (default: 20)",
    )

    # show command
    show_parser = subparsers.add_parser(
        "show", parents=[user_parent], help="Show a job and its transactions"
    )
    show_parser.add_argument("job_id", type=str)

    # confirm command
    confirm_parser = subparsers.add_parser(
        "confirm", parents=[user_parent], help="Create ledger entries from transactions"
    )
    confirm_parser.add_argument("job_id", type=str)
    confirm_parser.add_argument("ids", nargs="*", help="Transaction ids")
    confirm_parser.add_argument(
        "--all",
        action="store_true",
        help="Confirm every PENDING/CONFIRMED transaction of the job",
    )
    confirm_parser.add_argument(
        "--category",
        type=str,
        default="auto",
        help="Category id, or 'auto' to pick by merchant (default: auto)",
    )

    # reject command
    reject_parser = subparsers.add_parser(
        "reject", parents=[user_parent], help="Reject pending transactions"
    )
    reject_parser.add_argument("job_id", type=str)
    reject_parser.add_argument("ids", nargs="+", help="Transaction ids")

    # maintenance commands
    subparsers.add_parser("sweep", help="Fail jobs stuck in PROCESSING")
    subparsers.add_parser("cleanup", help="Delete finished jobs past retention")
    subparsers.add_parser("stats", help="Show import job statistics")

    return parser


def _build_service(config: Config) -> ImportService:
    # Jobs run to completion before the command returns
    return ImportService.from_config(config, dispatcher=InlineDispatcher())


def _print_job_summary(job: ImportJobRecord) -> None:
    icon = _STATUS_ICONS.get(job.status.value, "•")
    print(f"  {icon} [{job.id}] {job.source.value} {job.file_name or ''}")
    print(f"     → Status: {job.status.value}")
    if job.bank_name:
        print(f"     → Bank: {job.bank_name}")
    print(
        f"     → Parsed: {job.total_parsed}, Duplicates: {job.duplicates}, "
        f"Created: {job.created}, Rejected: {job.rejected}"
    )
    if job.error_message:
        print(f"     → Error: {job.error_message}")


def _report_finished_job(service: ImportService, user_id: str, job_id: str) -> int:
    job = service.get_job(user_id, job_id)
    _print_job_summary(job)
    return 1 if job.status.value == "FAILED" else 0


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_import_file(config: Config, path: Path, user_id: str, bank: str | None) -> int:
    """Import one statement file."""
    print(f"📄 Importing {path.name}...")
    if not path.is_file():
        print(f"❌ File not found: {path}")
        return 1

    mime_type = mimetypes.guess_type(path.name)[0] or "text/csv"
    service = _build_service(config)
    try:
        job = service.upload_statement(user_id, path.read_bytes(), path.name, mime_type, bank)
        return _report_finished_job(service, user_id, job.id)
    except IntakeError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        service.close()


def cmd_import_screenshots(config: Config, paths: list[Path], user_id: str) -> int:
    """Import a batch of screenshots as one job."""
    print(f"🖼  Importing {len(paths)} screenshot(s)...")
    images = []
    for path in paths:
        if not path.is_file():
            print(f"❌ File not found: {path}")
            return 1
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        images.append(VisionImage(data=path.read_bytes(), mime_type=mime_type))

    service = _build_service(config)
    try:
        job = service.upload_screenshots(user_id, images)
        return _report_finished_job(service, user_id, job.id)
    except IntakeError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        service.close()


def cmd_import_email(config: Config, path: Path, user_id: str, deliver: bool) -> int:
    """Feed a webhook payload through the email pipeline."""
    print(f"📧 Processing email payload {path.name}...")
    try:
        payload = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ Could not read payload: {e}")
        return 1

    service = _build_service(config)
    try:
        if deliver:
            inbound = service.get_import_email(user_id)
            payload["to"] = [inbound.address]
            print(f"  → Delivering to {inbound.address}")
        job = service.process_email_webhook(payload)
        return _report_finished_job(service, job.user_id, job.id)
    except IntakeError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        service.close()


def cmd_jobs(config: Config, user_id: str, limit: int) -> int:
    """List a user's jobs."""
    service = _build_service(config)
    try:
        jobs, total = service.list_jobs(user_id, limit=limit)
    finally:
        service.close()

    if not jobs:
        print("No import jobs")
        return 0
    for job in jobs:
        _print_job_summary(job)
    print(f"\n✓ Showing {len(jobs)} of {total} job(s)")
    return 0


def cmd_show(config: Config, job_id: str, user_id: str) -> int:
    """Show one job with its transactions."""
    service = _build_service(config)
    try:
        job = service.get_job(user_id, job_id)
    except IntakeError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        service.close()

    _print_job_summary(job)
    print()
    for txn in job.transactions:
        merchant = txn.normalized_merchant or txn.merchant or "-"
        recurring = " 🔁" if txn.is_recurring_guess else ""
        print(f"  [{txn.id}] {txn.date} {txn.amount:>12} {txn.currency} {txn.status.value}{recurring}")
        print(f"     → {txn.description} ({merchant}, confidence {txn.confidence:.0%})")
        if txn.duplicate_type:
            print(f"     → Duplicate ({txn.duplicate_type}) of {txn.duplicate_of_id or '-'}")
    return 0


def cmd_confirm(
    config: Config,
    job_id: str,
    user_id: str,
    ids: list[str],
    confirm_all: bool,
    category: str,
) -> int:
    """Materialize transactions into ledger entries."""
    if not ids and not confirm_all:
        print("❌ Pass transaction ids or --all")
        return 1

    service = _build_service(config)
    try:
        if confirm_all:
            job = service.get_job(user_id, job_id)
            ids = [
                txn.id
                for txn in job.transactions
                if txn.status
                in (ParsedTransactionStatus.PENDING, ParsedTransactionStatus.CONFIRMED)
            ]
            if not ids:
                print("No transactions ready to confirm")
                return 0
        result = service.confirm_transactions(user_id, job_id, ids, category)
    except IntakeError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        service.close()

    for ledger_id in result.ledger_ids:
        print(f"  ✓ Ledger entry {ledger_id}")
    print(f"\n✓ Created: {result.created}, Skipped: {result.skipped}")
    return 0


def cmd_reject(config: Config, job_id: str, user_id: str, ids: list[str]) -> int:
    """Reject pending transactions."""
    service = _build_service(config)
    try:
        count = service.reject_transactions(user_id, job_id, ids)
    except IntakeError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        service.close()

    print(f"✓ Rejected: {count}")
    return 0


def _build_maintenance(config: Config) -> ImportMaintenance:
    service = _build_service(config)
    return ImportMaintenance(service.store, service.storage, config)


def cmd_sweep(config: Config) -> int:
    """Fail stuck jobs."""
    print("🧹 Sweeping stuck jobs...")
    job_ids = _build_maintenance(config).sweep_stuck_jobs()
    for job_id in job_ids:
        print(f"  ⚠ Failed stuck job {job_id}")
    print(f"\n✓ Swept: {len(job_ids)}")
    return 0


def cmd_cleanup(config: Config) -> int:
    """Delete old finished jobs."""
    print("🧹 Cleaning up old jobs...")
    counts = _build_maintenance(config).cleanup_old_jobs()
    print(f"\n✓ Jobs deleted: {counts['jobs']}, Files deleted: {counts['files']}")
    return 0


def cmd_stats(config: Config) -> int:
    """Show job statistics."""
    stats = _build_maintenance(config).job_stats()

    print("📊 Import Statistics")
    print("=" * 40)
    print(f"  Jobs:                {stats['jobs_total']}")
    print(f"  Transactions parsed: {stats['transactions_parsed']}")
    print(f"  Ledger entries:      {stats['expenses_created']}")
    print(f"  Duplicates found:    {stats['duplicates_found']}")
    if stats["by_status"]:
        print("\n  By status:")
        for status, count in sorted(stats["by_status"].items()):
            print(f"    {status:<18} {count}")
    if stats["by_source"]:
        print("\n  By source:")
        for source, count in sorted(stats["by_source"].items()):
            print(f"    {source:<18} {count}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "import-file":
        return cmd_import_file(config, parsed.path, parsed.user, parsed.bank)
    elif parsed.command == "import-screenshots":
        return cmd_import_screenshots(config, parsed.paths, parsed.user)
    elif parsed.command == "import-email":
        return cmd_import_email(config, parsed.path, parsed.user, parsed.deliver)
    elif parsed.command == "jobs":
        return cmd_jobs(config, parsed.user, parsed.limit)
    elif parsed.command == "show":
        return cmd_show(config, parsed.job_id, parsed.user)
    elif parsed.command == "confirm":
        return cmd_confirm(
            config,
            parsed.job_id,
            parsed.user,
            ids=parsed.ids,
            confirm_all=parsed.all,
            category=parsed.category,
        )
    elif parsed.command == "reject":
        return cmd_reject(config, parsed.job_id, parsed.user, parsed.ids)
    elif parsed.command == "sweep":
        return cmd_sweep(config)
    elif parsed.command == "cleanup":
        return cmd_cleanup(config)
    elif parsed.command == "stats":
        return cmd_stats(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
