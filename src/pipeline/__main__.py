#!/usr/bin/env python3
"""
CLI interface for the media ingestion pipeline.

Submissions run synchronously (inline queue): the command returns once the
library entry has reached a terminal state. Delayed duplicate cleanups cannot
outlive the process, the sweep command removes them afterwards.

Usage:
    python -m src.pipeline init-db
    python -m src.pipeline submit --user-id 1 --title "Episode 12" --source-type url --url https://x/a.mp3
    python -m src.pipeline submit --user-id 1 --title "Interview" --source-type upload --file ./interview.mp3
    python -m src.pipeline submit --user-id 1 --source-type youtube --url https://youtu.be/dQw4w9WgXcQ
    python -m src.pipeline status 0192f3a4-...
    python -m src.pipeline delete 0192f3a4-... --user-id 1
    python -m src.pipeline check-url --user-id 1 https://x/a.mp3
    python -m src.pipeline sweep
"""

import sys
import argparse

from src.db import check_database_connection, init_database
from src.ingestion.config import IngestionConfig
from src.ingestion.errors import IngestionError
from src.logger import setup_logging
from .orchestrator import IngestionOrchestrator
from .task_queue import InlineTaskQueue


LOGGER_NAMES = ("ingestion", "duplicates", "downloader", "youtube", "storage", "task_queue", "pipeline")


def build_orchestrator(config: IngestionConfig) -> IngestionOrchestrator:
    return IngestionOrchestrator.from_config(config, queue=InlineTaskQueue())


def cmd_init_db(config: IngestionConfig, args: argparse.Namespace) -> int:
    init_database(config.database_url)
    if not check_database_connection():
        print("✗ Database connection failed", file=sys.stderr)
        return 1
    print(f"✓ Database ready: {config.database_url}")
    return 0


def cmd_submit(config: IngestionConfig, args: argparse.Namespace) -> int:
    if args.source_type == "upload" and not args.file:
        print("✗ Error: --file is required for upload sources", file=sys.stderr)
        return 1
    if args.source_type != "upload" and not args.url:
        print("✗ Error: --url is required for url and youtube sources", file=sys.stderr)
        return 1

    orchestrator = build_orchestrator(config)
    result = orchestrator.submit_ingestion(
        args.user_id,
        args.title,
        args.source_type,
        description=args.description,
        source_url=args.url,
        file_path=args.file,
    )
    status = orchestrator.get_entry_status(result.entry.id)
    print(f"Entry: {status.entry_id}")
    print(f"Status: {status.label}")
    print(f"Duplicate: {'yes' if status.is_duplicate else 'no'}")
    print(result.message)
    return 1 if status.status.has_failed() else 0


def cmd_status(config: IngestionConfig, args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(config)
    status = orchestrator.get_entry_status(args.entry_id)
    print(f"Entry: {status.entry_id}")
    print(f"Status: {status.label}")
    print(f"Duplicate: {'yes' if status.is_duplicate else 'no'}")
    if status.media_artifact_id:
        print(f"Media artifact: {status.media_artifact_id}")
    if status.error:
        print(f"Error: {status.error}")
    elif status.message:
        print(status.message)
    return 0


def cmd_delete(config: IngestionConfig, args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(config)
    released = orchestrator.delete_library_entry(args.entry_id, args.user_id)
    print(f"✓ Entry {args.entry_id} deleted")
    if released:
        print("  → Media file was no longer referenced and has been removed")
    return 0


def cmd_check_url(config: IngestionConfig, args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(config)
    is_duplicate, artifact = orchestrator.check_url_duplicate(args.url, args.user_id)
    if is_duplicate:
        print("Duplicate URL: already in your library")
    elif artifact is not None:
        print("Known URL: an existing media file will be linked")
    else:
        print("New URL")
    if artifact is not None:
        print(f"Media artifact: {artifact.id} ({artifact.file_path})")
    return 0


def cmd_sweep(config: IngestionConfig, args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(config)
    removed = orchestrator.cleanup.sweep(older_than_seconds=args.older_than)
    print(f"✓ Removed {removed} duplicate entries")
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "submit": cmd_submit,
    "status": cmd_status,
    "delete": cmd_delete,
    "check-url": cmd_check_url,
    "sweep": cmd_sweep,
}


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Media Ingestion Pipeline - Add uploads, URLs and YouTube videos to a user library",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Notes:
  - Configuration is read from the environment and .env (DATABASE_URL, STORAGE_BACKEND, ...)
  - Submitting a URL already in your library links the existing media file
  - Logs written to logs/ingestion.log
        """,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging output",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database tables")

    submit = subparsers.add_parser("submit", help="Submit content to a user library")
    submit.add_argument("--user-id", type=int, required=True, metavar="ID")
    submit.add_argument("--title", type=str, help="Entry title (optional for youtube)")
    submit.add_argument("--description", type=str)
    submit.add_argument(
        "--source-type",
        choices=["upload", "url", "youtube"],
        required=True,
    )
    source = submit.add_mutually_exclusive_group(required=True)
    source.add_argument("--url", type=str, help="Media or YouTube URL")
    source.add_argument("--file", type=str, metavar="PATH", help="Local file to upload")

    status = subparsers.add_parser("status", help="Show the processing status of an entry")
    status.add_argument("entry_id")

    delete = subparsers.add_parser("delete", help="Delete a library entry")
    delete.add_argument("entry_id")
    delete.add_argument("--user-id", type=int, required=True, metavar="ID")

    check_url = subparsers.add_parser("check-url", help="Check whether a URL is already known")
    check_url.add_argument("url")
    check_url.add_argument("--user-id", type=int, required=True, metavar="ID")

    sweep = subparsers.add_parser("sweep", help="Remove expired duplicate entries")
    sweep.add_argument(
        "--older-than",
        type=int,
        metavar="SECONDS",
        help="Grace period in seconds (default: DUPLICATE_CLEANUP_DELAY)",
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point for the pipeline CLI."""
    args = parse_arguments(argv)

    for name in LOGGER_NAMES:
        setup_logging(logger_name=name, verbose=args.verbose)

    try:
        config = IngestionConfig.from_env()
        return COMMANDS[args.command](config, args)
    except KeyboardInterrupt:
        print("\n✗ Interrupted by user", file=sys.stderr)
        return 130
    except (IngestionError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
