"""
Job scheduler - command line entry point.

Subcommands:
- serve                  Run the HTTP API (uvicorn)
- reconcile              Re-submit every enabled PENDING job to the work queue
- fingerprint            Print the fingerprint of a JSON job definition
- backfill-fingerprints  Recompute stored fingerprints that are out of date
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from src.dedup.fingerprint import fingerprint_preview
from src.infra.config import load_config
from src.infra.logging_config import setup_logging
from src.scheduler.entities import frequency_from_store
from src.scheduler.errors import SchedulerInitializationError
from src.scheduler.service import JobAdmissionService


load_dotenv()

logger = logging.getLogger("src.cli")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Duplicate-safe job admission and lifecycle scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API
  python main.py serve --host 0.0.0.0 --port 8000

  # Rebuild the work queue from the job store
  python main.py reconcile

  # Fingerprint a job definition
  python main.py fingerprint '{"name": "report", "frequency": "DAILY", "data": {"a": 1}}'

  # Repair stored fingerprints
  python main.py backfill-fingerprints
        """
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="SQLite job store path. Default: $JOB_DB_PATH or data/jobs.db"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level. Default: $LOG_LEVEL or INFO"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")

    subparsers.add_parser("reconcile", help="Re-submit enabled PENDING jobs to the work queue")

    fingerprint = subparsers.add_parser("fingerprint", help="Print the fingerprint of a job definition")
    fingerprint.add_argument(
        "definition",
        type=str,
        help="JSON object with name, frequency, cronExpression, data; or @path/to/file.json"
    )

    subparsers.add_parser("backfill-fingerprints", help="Recompute out-of-date fingerprints")

    return parser.parse_args(argv)


def _load_definition(raw: str) -> dict:
    if raw.startswith("@"):
        return json.loads(Path(raw[1:]).read_text(encoding="utf-8"))
    return json.loads(raw)


def run_fingerprint(raw: str) -> int:
    """Print the fingerprint and canonical input of a job definition."""
    try:
        definition = _load_definition(raw)
    except (OSError, ValueError) as e:
        print(f"Invalid job definition: {e}", file=sys.stderr)
        return 2

    if "name" not in definition or "frequency" not in definition:
        print("Job definition needs 'name' and 'frequency'", file=sys.stderr)
        return 2

    preview = fingerprint_preview(
        definition["name"],
        frequency_from_store(definition["frequency"]),
        definition.get("cronExpression", definition.get("cron_expression")),
        definition.get("data"),
    )
    print(json.dumps(preview, ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = parse_args(argv)

    if args.command == "fingerprint":
        return run_fingerprint(args.definition)

    config = load_config(db_path=args.db_path)
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config.log_level, config.log_dir)

    if args.command == "serve":
        import uvicorn
        if args.db_path:
            os.environ["JOB_DB_PATH"] = args.db_path
        logger.info(f"Starting API on {args.host}:{args.port} (db={config.db_path})")
        uvicorn.run("src.api.main:app", host=args.host, port=args.port)
        return 0

    service = JobAdmissionService.create(config)
    try:
        if args.command == "reconcile":
            try:
                submitted = service.initialize()
            except SchedulerInitializationError as e:
                logger.error(f"Reconciliation failed: {e}")
                return 1
            logger.info(f"Reconciled work queue: {submitted} jobs submitted")
            return 0

        if args.command == "backfill-fingerprints":
            updated = service.backfill_fingerprints()
            logger.info(f"Backfill complete: {updated} fingerprints updated")
            return 0
    finally:
        service.close()

    return 2


if __name__ == "__main__":
    sys.exit(main())
