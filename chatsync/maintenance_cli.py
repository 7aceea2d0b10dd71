"""
chatsync maintenance CLI - retention jobs for soft-deleted conversations.

Usage:
    chatsync-maintenance purge                     # Purge sessions deleted 30+ days ago
    chatsync-maintenance purge --days 7 --dry-run  # Report what would be purged
    chatsync-maintenance purge --batch-size 500 --db-url postgresql://...
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict

from chatsync.server_cli import apply_common_options

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatsync-maintenance",
        description="Maintenance jobs for the chatsync database.",
    )
    parser.add_argument("--env", dest="env_file", default=None, help="Path to .env file.")
    parser.add_argument("--db-url", dest="db_url", default=None, help="SQLAlchemy database URL.")

    subparsers = parser.add_subparsers(dest="command", required=True)
    purge = subparsers.add_parser(
        "purge",
        help="Hard-delete sessions that were soft-deleted longer ago than the retention period.",
    )
    purge.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention period in days (default: DELETED_SESSION_RETENTION_DAYS, 30).",
    )
    purge.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Sessions deleted per transaction (default: 100).",
    )
    purge.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report what would be deleted.",
    )
    return parser


def run_purge(args: argparse.Namespace) -> int:
    from chatsync.modules.chat_history import SessionRepository, get_session_factory, init_database
    from chatsync.modules.config import config_manager

    settings = config_manager.app_settings
    days = args.days if args.days is not None else settings.deleted_session_retention_days
    batch_size = args.batch_size if args.batch_size is not None else settings.purge_batch_size
    if days < 0 or batch_size <= 0:
        print("Error: --days must be >= 0 and --batch-size > 0", file=sys.stderr)
        return 2

    engine = init_database(settings.chat_history_db_url)
    repo = SessionRepository(get_session_factory(engine))
    report = repo.purge_deleted(older_than_days=days, batch_size=batch_size, dry_run=args.dry_run)
    print(json.dumps(asdict(report), indent=2))
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    apply_common_options(args)

    if args.command == "purge":
        sys.exit(run_purge(args))
    parser.error(f"Unknown command: {args.command}")


if __name__ == "__main__":
    main()
