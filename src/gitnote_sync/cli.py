"""gitnote-sync command line entry point.

Runs one bidirectional sync pass between a JSON local store and a GitHub
branch, then prints a report on stdout.  Log output goes to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config, load_yaml_fallbacks
from .core.cache import BlobCache
from .core.client import GitHubClient
from .core.errors import GitNoteError, RefConflictError
from .logger import setup_logging
from .sync.engine import SyncEngine
from .sync.models import SyncSummary
from .sync.reporter import format_sync_summary, summary_to_json
from .sync.store import JsonLocalStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitnote-sync",
        description="Sync an offline note store with a GitHub repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync using settings from .env or .gitnote/config.yaml
  gitnote-sync

  # Sync a specific repository and branch
  gitnote-sync --owner octocat --repo notes --branch main

  # Machine-readable output
  gitnote-sync --json

Exit codes: 0 on success, 2 when the branch moved during sync (re-run),
1 on any other error.
        """,
    )
    parser.add_argument("--owner", help="Repository owner (overrides GITNOTE_OWNER)")
    parser.add_argument("--repo", help="Repository name (overrides GITNOTE_REPO)")
    parser.add_argument("--branch", help="Branch to sync (default: main)")
    parser.add_argument(
        "--token",
        help="Access token (visible in process list -- prefer GITNOTE_TOKEN env var)",
    )
    parser.add_argument("--store", help="Path of the JSON local store")
    parser.add_argument("--config", help="Path of a YAML config file")
    parser.add_argument(
        "--json", action="store_true", help="Print the summary as JSON"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also append log records to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"gitnote-sync version {__version__}",
    )
    return parser


async def run_once(config: Config) -> SyncSummary:
    """Run one pass with a store and client built from *config*."""
    store = JsonLocalStore(Path(config.store_path))
    client = GitHubClient(config)
    cache = BlobCache(ttl_seconds=config.blob_cache_ttl)
    engine = SyncEngine(store, client, config, cache)
    return await engine.sync_bidirectional()


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run a pass and return the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, log_file=args.log_file)
    load_dotenv()

    try:
        fallbacks = load_yaml_fallbacks(Path(args.config) if args.config else None)
        config = load_config(
            owner=args.owner,
            repo=args.repo,
            branch=args.branch,
            token=args.token,
            store_path=args.store,
            debug=args.debug,
            yaml_fallbacks=fallbacks,
        )
    except (OSError, ValueError) as e:
        logger.error("Configuration error: %s", e)
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if config.debug and not args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    target = f"{config.owner}/{config.repo}@{config.branch}"
    try:
        summary = asyncio.run(run_once(config))
    except RefConflictError as e:
        print(f"Branch moved during sync ({e}); re-run sync.", file=sys.stderr)
        return EXIT_CONFLICT
    except (GitNoteError, OSError, ValueError) as e:
        logger.error("Sync failed: %s", e)
        print(f"ERROR: Sync failed: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        payload = summary_to_json(summary)
        payload["target"] = target
        print(json.dumps(payload, indent=2))
    else:
        print(format_sync_summary(summary, target))
    return EXIT_OK


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    run()
