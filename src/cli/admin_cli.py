"""
Admin CLI for operating the ETL engine.

Usage:
    python -m src.cli.admin_cli file-status (--file-id <id> | --org <org_id>) [options]
    python -m src.cli.admin_cli pending-list [--org <org_id>]
    python -m src.cli.admin_cli pending-resolve --pending-id <id> --value <dimension_id> --actor <who>
    python -m src.cli.admin_cli pending-reject --pending-id <id> --actor <who>
    python -m src.cli.admin_cli dlq-list [--org <org_id>]
    python -m src.cli.admin_cli dlq-resolve --dlq-id <id> --actor <who>
    python -m src.cli.admin_cli release-stale [--timeout-minutes <n>]
    python -m src.cli.admin_cli cleanup-staging --org <org_id> --file-id <id> [--dry-run]
    python -m src.cli.admin_cli audit-events [--org <org_id>] [--file-id <id>] [options]
"""

import argparse
import json
import sys
from datetime import datetime

from src.core.rules import PipelineConfigLoader
from src.core.settings import EngineSettings
from src.dimensions import PendingEntryClosed, PendingReviewService, PostgresDimensionStore
from src.lifecycle import FileStateMachine, get_valid_next_states
from src.observability.logger import get_logger
from src.warehouse.audit import AuditTrail
from src.warehouse.connection import DatabaseConnectionPool
from src.warehouse.dead_letter import DeadLetterQueue
from src.warehouse.file_state import FileStateRepository
from src.warehouse.staging_cleanup import StagingCleanupService

logger = get_logger(__name__)


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def create_pool(args) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )


def file_status_command(args):
    """
    Show one file's lifecycle record, or the latest files of an organization.

    Args:
        args: Command line arguments
    """
    pool = create_pool(args)
    try:
        pool.open()
        repository = FileStateRepository(pool)

        if args.file_id:
            state = repository.get(args.file_id)
            if state is None:
                print(f"\nNo file found with ID: {args.file_id}")
                sys.exit(1)

            print(f"\n{'=' * 80}")
            print(f"FILE: {state.file_id}")
            print(f"{'=' * 80}\n")
            print(f"  Organization:   {state.organization_id}")
            print(f"  Name:           {state.file_name}")
            print(f"  Pipeline:       {state.pipeline_type}")
            print(f"  State:          {state.state.value} (version {state.version})")
            print(f"  Next states:    {', '.join(s.value for s in get_valid_next_states(state.state)) or '-'}")
            print(f"  Retries:        {state.retry_count}{' (exhausted)' if state.retries_exhausted else ''}")
            print(f"  Next retry at:  {format_timestamp(state.next_retry_at)}")
            print(f"  Reprocess of:   {state.reprocess_of or '-'}")
            print(f"  Error:          {state.error_message or '-'}")
            print(f"  Updated:        {format_timestamp(state.updated_at)}")

            runs = repository.get_runs(state.file_id)
            if runs:
                print(f"\n{'Run':<38} {'Attempt':>7} {'Status':<12} {'Started':<20} {'Finished'}")
                print(f"{'-' * 80}")
                for run in runs:
                    print(
                        f"{run['run_id']:<38} {run['attempt']:>7} {run['status'] or '-':<12} "
                        f"{format_timestamp(run['started_at']):<20} {format_timestamp(run['finished_at'])}"
                    )

            if args.report and state.last_report:
                print("\nLast report:")
                print(json.dumps(state.last_report, indent=2, ensure_ascii=False))
            print()
            return

        files = repository.list_files(organization_id=args.org, state=args.state, limit=args.limit)
        if not files:
            print("\nNo files found.")
            return

        print(f"\n{'File':<38} {'State':<11} {'Retries':>7} {'Pipeline':<20} {'Updated'}")
        print(f"{'-' * 100}")
        for state in files:
            print(
                f"{state.file_id:<38} {state.state.value:<11} {state.retry_count:>7} "
                f"{state.pipeline_type:<20} {format_timestamp(state.updated_at)}"
            )
        print()

    finally:
        pool.close()


def pending_list_command(args):
    """List open pending dimension entries."""
    pool = create_pool(args)
    try:
        pool.open()
        review = PendingReviewService(PostgresDimensionStore(pool), AuditTrail(pool))
        entries = review.list(args.org)

        if not entries:
            print("\nNo pending entries.")
            return

        print(f"\n{'Pending ID':<38} {'Org':<15} {'Type':<11} {'Code':<20} {'First seen in file'}")
        print(f"{'-' * 110}")
        for entry in entries:
            print(
                f"{entry.pending_id:<38} {entry.organization_id:<15} {entry.dimension_type.value:<11} "
                f"{entry.code:<20} {entry.first_seen_file_id or '-'}"
            )
        print(f"\nTotal: {len(entries)}\n")

    finally:
        pool.close()


def pending_close_command(args):
    """Resolve or reject a pending dimension entry."""
    pool = create_pool(args)
    try:
        pool.open()
        review = PendingReviewService(PostgresDimensionStore(pool), AuditTrail(pool))
        if args.command == "pending-resolve":
            entry = review.resolve(args.pending_id, args.value, args.actor, args.notes)
            print(f"\nPending entry {entry.pending_id} resolved: {entry.code} -> {entry.resolved_value}")
        else:
            entry = review.reject(args.pending_id, args.actor, args.notes)
            print(f"\nPending entry {entry.pending_id} rejected ({entry.code})")

    except KeyError as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except PendingEntryClosed as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        pool.close()


def dlq_list_command(args):
    """List unresolved dead-letter records."""
    pool = create_pool(args)
    try:
        pool.open()
        records = DeadLetterQueue(pool).list_unresolved(args.org, limit=args.limit)

        if not records:
            print("\nDead-letter queue is empty.")
            return

        print(f"\n{'ID':>6} {'Created':<20} {'Operation':<16} {'Type':<12} {'File':<38} {'Error'}")
        print(f"{'-' * 120}")
        for record in records:
            print(
                f"{record.dlq_id:>6} {format_timestamp(record.created_at):<20} {record.operation:<16} "
                f"{record.error_type:<12} {record.file_id or '-':<38} {record.error_message[:60]}"
            )
        print(f"\nTotal: {len(records)}\n")

    finally:
        pool.close()


def dlq_resolve_command(args):
    """Close a dead-letter record."""
    pool = create_pool(args)
    try:
        pool.open()
        record = DeadLetterQueue(pool, audit=AuditTrail(pool)).resolve(args.dlq_id, args.actor, args.notes)
        print(f"\nDead-letter record {record.dlq_id} resolved by {record.resolved_by}")

    except KeyError as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        pool.close()


def release_stale_command(args):
    """Fail files stuck in a processing state."""
    settings = EngineSettings.load(args.config)
    timeout = args.timeout_minutes or settings.stale_processing_timeout_minutes

    pool = create_pool(args)
    try:
        pool.open()
        released = FileStateRepository(pool).release_stale(
            timeout,
            audit=AuditTrail(pool),
            state_machine=FileStateMachine.from_settings(settings),
        )
        print(f"\nReleased {len(released)} stale file(s) (timeout: {timeout} minutes)")
        for state in released:
            print(f"  {state.file_id}  retries={state.retry_count}  next_retry_at={format_timestamp(state.next_retry_at)}")

    finally:
        pool.close()


def cleanup_staging_command(args):
    """Delete (or count) the staging rows of a file."""
    settings = EngineSettings.load(args.config)
    definitions = PipelineConfigLoader(settings.pipelines_dir).load_all()
    tables = [d.storage.staging_table for d in definitions.values()]

    pool = create_pool(args)
    try:
        pool.open()
        service = StagingCleanupService(pool, tables, audit=AuditTrail(pool))
        result = service.cleanup(args.org, args.file_id, dry_run=args.dry_run)

        print(f"\n{'=' * 60}")
        print(f"STAGING CLEANUP{' (DRY RUN)' if result.dry_run else ''}: {args.file_id}")
        print(f"{'=' * 60}\n")
        counts = result.dry_run_results if result.dry_run else result.records_deleted
        for table, count in counts.items():
            print(f"  {table:<40} {count:>8}")
        for error in result.errors:
            print(f"  error: {error}")
        print(f"\nDuration: {result.duration_seconds:.3f}s\n")

        if not result.success:
            sys.exit(1)

    finally:
        pool.close()


def audit_events_command(args):
    """Show recent audit events, newest first."""
    pool = create_pool(args)
    try:
        pool.open()
        events = AuditTrail(pool).query_events(
            organization_id=args.org,
            file_id=args.file_id,
            action=args.action,
            level=args.level,
            limit=args.limit,
        )

        if not events:
            print("\nNo audit events found.")
            return

        print(f"\n{'Timestamp':<20} {'Level':<8} {'Action':<26} {'Message'}")
        print(f"{'-' * 100}")
        for event in events:
            print(f"{format_timestamp(event.created_at):<20} {event.level:<8} {event.action:<26} {event.message}")
            if args.details and event.details:
                print(f"{'':<20} {json.dumps(event.details, ensure_ascii=False, default=str)}")
        print()

    finally:
        pool.close()


def main():
    """Main entry point for admin CLI."""
    parser = argparse.ArgumentParser(
        description="Admin CLI for the feedlot ETL engine",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global options; unset database values come from DB_* env vars
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME or datawarehouse)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER or pipeline)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")
    parser.add_argument("--config", help="Engine settings YAML (default: config/engine.yaml)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("file-status", help="Show file lifecycle state")
    status_target = status_parser.add_mutually_exclusive_group(required=True)
    status_target.add_argument("--file-id", help="File to show")
    status_target.add_argument("--org", help="List the latest files of an organization")
    status_parser.add_argument("--state", help="Filter the list by state (optional)")
    status_parser.add_argument("--report", action="store_true", help="Print the last processing report")
    status_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of files to list (default: 50)"
    )

    pending_parser = subparsers.add_parser("pending-list", help="List open pending dimension entries")
    pending_parser.add_argument("--org", help="Filter by organization ID (optional)")

    resolve_parser = subparsers.add_parser("pending-resolve", help="Map a pending code to a dimension ID")
    resolve_parser.add_argument("--pending-id", required=True, help="Pending entry ID")
    resolve_parser.add_argument("--value", required=True, help="Dimension ID the code stands for")
    resolve_parser.add_argument("--actor", required=True, help="Reviewer")
    resolve_parser.add_argument("--notes", help="Review notes (optional)")

    reject_parser = subparsers.add_parser("pending-reject", help="Reject a pending code")
    reject_parser.add_argument("--pending-id", required=True, help="Pending entry ID")
    reject_parser.add_argument("--actor", required=True, help="Reviewer")
    reject_parser.add_argument("--notes", help="Review notes (optional)")

    dlq_parser = subparsers.add_parser("dlq-list", help="List unresolved dead-letter records")
    dlq_parser.add_argument("--org", help="Filter by organization ID (optional)")
    dlq_parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of records to display (default: 100)"
    )

    dlq_resolve_parser = subparsers.add_parser("dlq-resolve", help="Close a dead-letter record")
    dlq_resolve_parser.add_argument("--dlq-id", type=int, required=True, help="Dead-letter record ID")
    dlq_resolve_parser.add_argument("--actor", required=True, help="Who resolved it")
    dlq_resolve_parser.add_argument("--notes", help="Resolution notes (optional)")

    stale_parser = subparsers.add_parser("release-stale", help="Fail files stuck in processing")
    stale_parser.add_argument(
        "--timeout-minutes",
        type=int,
        help="Age threshold (default: stale_processing_timeout_minutes setting)"
    )

    cleanup_parser = subparsers.add_parser("cleanup-staging", help="Delete a file's staging rows")
    cleanup_parser.add_argument("--org", required=True, help="Organization ID")
    cleanup_parser.add_argument("--file-id", required=True, help="File ID")
    cleanup_parser.add_argument("--dry-run", action="store_true", help="Count rows instead of deleting")

    audit_parser = subparsers.add_parser("audit-events", help="Show audit events")
    audit_parser.add_argument("--org", help="Filter by organization ID (optional)")
    audit_parser.add_argument("--file-id", help="Filter by file ID (optional)")
    audit_parser.add_argument("--action", help="Filter by action (optional)")
    audit_parser.add_argument(
        "--level",
        choices=["debug", "info", "warning", "error"],
        help="Filter by level (optional)"
    )
    audit_parser.add_argument("--details", action="store_true", help="Print event details")
    audit_parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of events to display (default: 100)"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    handlers = {
        "file-status": file_status_command,
        "pending-list": pending_list_command,
        "pending-resolve": pending_close_command,
        "pending-reject": pending_close_command,
        "dlq-list": dlq_list_command,
        "dlq-resolve": dlq_resolve_command,
        "release-stale": release_stale_command,
        "cleanup-staging": cleanup_staging_command,
        "audit-events": audit_events_command,
    }

    try:
        handlers[args.command](args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Error running {args.command}: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
