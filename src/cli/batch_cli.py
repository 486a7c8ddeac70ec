"""
Command-line interface for processing uploaded files.

Usage:
    python -m src.cli.batch_cli process --org <org_id> --input <file_path> [options]
    python -m src.cli.batch_cli retry-due --archive-dir <dir> [options]
"""

import argparse
import json
import sys
from pathlib import Path

from src.batch.pipeline import EtlPipeline
from src.batch.reprocess import FileReprocessor
from src.core.errors import DuplicateFileError
from src.core.settings import EngineSettings
from src.lifecycle import compute_checksum
from src.observability.logger import get_logger
from src.observability.metrics import start_metrics_server
from src.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


def create_pool(args) -> DatabaseConnectionPool:
    """Build the connection pool from CLI arguments (env vars fill the gaps)."""
    return DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )


def dry_run_cleanup(pipeline: EtlPipeline, organization_id: str, content: bytes) -> None:
    """Show which staging rows a reprocess of this content would delete."""
    matches = pipeline.file_states.find_by_checksum(organization_id, compute_checksum(content))
    if not matches:
        print("No earlier upload of this content; nothing would be cleaned up.")
        return

    original = matches[0]
    result = pipeline.staging_cleanup.cleanup(organization_id, original.file_id, dry_run=True)
    print(f"Earlier upload: {original.file_id} (state: {original.state.value})")
    for table, count in result.dry_run_results.items():
        print(f"  {table:<40} {count:>8} rows")
    for error in result.errors:
        print(f"  error: {error}")


def process_command(args):
    """
    Execute file processing command.

    Args:
        args: Command-line arguments
    """
    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input file not found: {args.input}")
        sys.exit(1)

    logger.info(f"Processing {input_path.name} for organization {args.org}")
    settings = EngineSettings.load(args.config)
    pool = create_pool(args)
    pool.open()

    try:
        pipeline = EtlPipeline.from_pool(pool, settings)
        content = input_path.read_bytes()

        if args.dry_run_cleanup:
            dry_run_cleanup(pipeline, args.org, content)
            return

        report = pipeline.process_file(
            content,
            input_path.name,
            args.org,
            pipeline_type=args.pipeline,
            force=args.force,
            reason=args.reason,
            actor=args.actor,
        )
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))

        if report.final_state != "loaded":
            sys.exit(2)

    except DuplicateFileError as e:
        logger.warning(str(e))
        print(f"\nDuplicate upload: {e}")
        sys.exit(3)
    except ValueError as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        pool.close()


def retry_due_command(args):
    """
    Release stale files and retry the failed ones that are due.

    Uploads are read back from ``--archive-dir`` by file name.
    """
    archive = Path(args.archive_dir)
    if not archive.is_dir():
        logger.error(f"Archive directory not found: {args.archive_dir}")
        sys.exit(1)

    settings = EngineSettings.load(args.config)
    pool = create_pool(args)
    pool.open()

    def content_provider(state):
        path = archive / state.file_name
        return path.read_bytes() if path.exists() else None

    try:
        pipeline = EtlPipeline.from_pool(pool, settings)
        reprocessor = FileReprocessor(pipeline, pipeline.file_states, settings)
        released = reprocessor.release_stale()
        result = reprocessor.retry_due_files(content_provider, limit=args.limit)

        print(f"Released stale files: {len(released)}")
        print(f"Attempted: {result['attempted']}")
        print(f"Loaded:    {result['loaded']}")
        print(f"Failed:    {result['failed']}")
        print(f"Skipped:   {result['skipped']}")
    finally:
        pool.close()


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Database connection options; unset values come from DB_* env vars."""
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME or datawarehouse)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER or pipeline)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Feedlot CSV ETL engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process a loading deviation export
  python -m src.cli.batch_cli process --org fazenda-1 --pipeline loading_deviation \\
      --input data/desvio_carregamento.csv

  # Let the engine pick the pipeline from the headers
  python -m src.cli.batch_cli process --org fazenda-1 --input data/trato.csv

  # Reprocess content that was already loaded
  python -m src.cli.batch_cli process --org fazenda-1 --input data/trato.csv \\
      --force --reason "corrected diet codes" --actor ana

  # Retry failed files due for another attempt
  python -m src.cli.batch_cli retry-due --archive-dir /srv/uploads
        """
    )
    parser.add_argument("--config", help="Engine settings YAML (default: config/engine.yaml)")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser("process", help="Process an uploaded CSV file")
    process_parser.add_argument("--org", required=True, help="Organization ID")
    process_parser.add_argument(
        "--pipeline",
        help="Pipeline type (default: chosen by header match)"
    )
    process_parser.add_argument("--input", required=True, help="Path to input file")
    process_parser.add_argument(
        "--force",
        action="store_true",
        help="Reprocess content that was already processed"
    )
    process_parser.add_argument("--reason", help="Why the reprocess is forced")
    process_parser.add_argument("--actor", help="Who forces the reprocess")
    process_parser.add_argument(
        "--dry-run-cleanup",
        action="store_true",
        help="Show the staging rows a reprocess would delete, then exit"
    )
    add_db_arguments(process_parser)

    retry_parser = subparsers.add_parser("retry-due", help="Retry failed files that are due")
    retry_parser.add_argument(
        "--archive-dir",
        required=True,
        help="Directory holding the original uploads by file name"
    )
    retry_parser.add_argument("--limit", type=int, help="Maximum number of files to retry")
    add_db_arguments(retry_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.metrics_port:
        start_metrics_server(args.metrics_port)

    try:
        if args.command == "process":
            process_command(args)
        elif args.command == "retry-due":
            retry_due_command(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
