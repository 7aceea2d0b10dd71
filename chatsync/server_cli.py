"""
chatsync server CLI - start the backend.

Usage:
    chatsync-server                               # Start with defaults
    chatsync-server --port 8000                   # Custom port
    chatsync-server --env /path/to/.env           # Custom env file
    chatsync-server --config-folder ./config      # Folder holding llmconfig.yml
    chatsync-server --db-url postgresql://...     # Override CHAT_HISTORY_DB_URL
"""

import argparse
import os
import sys
from pathlib import Path


def _apply_env_file(env_path: Path) -> None:
    """Load environment variables from a .env file."""
    from dotenv import load_dotenv

    if not env_path.exists():
        print(f"Error: env file not found: {env_path}", file=sys.stderr)
        sys.exit(2)

    load_dotenv(dotenv_path=str(env_path))


def _apply_config_folder(config_folder: Path) -> None:
    if not config_folder.exists():
        print(f"Error: config folder not found: {config_folder}", file=sys.stderr)
        sys.exit(2)

    os.environ["APP_CONFIG_DIR"] = str(config_folder.resolve())


def apply_common_options(args: argparse.Namespace) -> None:
    """Apply --env, --config-folder and --db-url before the app is imported."""
    if args.env_file:
        _apply_env_file(Path(args.env_file).expanduser())
    else:
        cwd_env = Path.cwd() / ".env"
        if cwd_env.exists():
            _apply_env_file(cwd_env)

    if getattr(args, "config_folder", None):
        _apply_config_folder(Path(args.config_folder).expanduser())

    if args.db_url:
        os.environ["CHAT_HISTORY_DB_URL"] = args.db_url


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser for chatsync-server CLI."""
    parser = argparse.ArgumentParser(
        prog="chatsync-server",
        description="Start the chatsync backend server.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the server on (default: 8000 or PORT env var).",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: 127.0.0.1 or CHATSYNC_HOST env var).",
    )
    parser.add_argument(
        "--env",
        dest="env_file",
        default=None,
        help="Path to .env file (default: .env in current directory).",
    )
    parser.add_argument(
        "--config-folder",
        dest="config_folder",
        default=None,
        help="Folder containing llmconfig.yml (sets APP_CONFIG_DIR).",
    )
    parser.add_argument(
        "--db-url",
        dest="db_url",
        default=None,
        help="SQLAlchemy database URL (sets CHAT_HISTORY_DB_URL).",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (not recommended for production).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1).",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )
    return parser


def run_server(args: argparse.Namespace) -> int:
    """Run the server with the given arguments."""
    import uvicorn

    host = args.host or os.getenv("CHATSYNC_HOST", "127.0.0.1")
    port = args.port or int(os.getenv("PORT", "8000"))

    print(f"Starting chatsync server on {host}:{port}")

    if args.reload or args.workers > 1:
        if args.reload:
            print("Warning: --reload is enabled. This is not recommended for production.")
        uvicorn.run(
            "chatsync.main:app",
            host=host,
            port=port,
            reload=args.reload,
            workers=1 if args.reload else args.workers,
        )
    else:
        from chatsync.main import app

        uvicorn.run(app, host=host, port=port)

    return 0


def main() -> None:
    """Main entry point for chatsync-server CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        from chatsync.version import VERSION
        print(f"chatsync-server version {VERSION}")
        sys.exit(0)

    apply_common_options(args)
    sys.exit(run_server(args))


if __name__ == "__main__":
    main()
