#!/usr/bin/env python
"""Command line entry point for the note store."""
import argparse
import atexit
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from note_store import __version__
from note_store.config import config, resolve_database_config
from note_store.exceptions import NoteStoreError, SchemaInitializationError
from note_store.models.results import Outcome
from note_store.models.schema import Note, Tag
from note_store.observability import configure_logging, metrics
from note_store.storage import (ConnectionProvider, NoteRepository,
                                SchemaInitializer, TagRepository)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SCHEMA_FAILURE = 3

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="note-store", description="Note store")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--properties",
        help="Database properties file (key=value lines)",
        type=str,
        default=str(config.properties_path) if config.properties_path else None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level,
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotated log files",
        type=str,
        default=str(config.log_dir) if config.log_dir else None,
    )
    parser.add_argument(
        "--quiet", help="Do not log to the console", action="store_true"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init", help="Create the schema if it does not exist")

    notes = subparsers.add_parser("notes", help="List or search a user's notes")
    notes.add_argument("--user-id", type=int, required=True)
    notes.add_argument("--search", type=str, help="Substring to look for")

    tags = subparsers.add_parser("tags", help="List a user's tags")
    tags.add_argument("--user-id", type=int, required=True)

    return parser.parse_args(argv)


def _save_metrics_on_exit(path: Path) -> None:
    if metrics.save_metrics(path):
        logger.info(f"Metrics saved to {path}")


def _note_to_dict(note: Note) -> dict:
    data = note.model_dump(mode="json", exclude={"tags"})
    data["tags"] = note.tag_names
    return data


def _tag_to_dict(tag: Tag) -> dict:
    return tag.model_dump(mode="json")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _report(outcome: Outcome, render) -> int:
    if not outcome.ok:
        print(json.dumps(outcome.to_dict(), indent=2), file=sys.stderr)
        return EXIT_FAILURE
    _emit(render(outcome.value))
    return EXIT_OK


def run(args: argparse.Namespace) -> int:
    """Execute the selected command and return the exit code."""
    db_config = resolve_database_config(args.properties)
    with ConnectionProvider(db_config) as provider:
        if args.command == "init":
            initializer = SchemaInitializer(provider)
            initializer.initialize(seed_default_user=config.seed_default_user)
            _emit({"tables": initializer.table_names()})
            return EXIT_OK

        if args.command == "notes":
            repository = NoteRepository(provider)
            if args.search is not None:
                outcome = repository.search_notes(args.user_id, args.search)
            else:
                outcome = repository.list_notes_for_user(args.user_id)
            return _report(outcome, lambda notes: [_note_to_dict(n) for n in notes])

        outcome = TagRepository(provider).list_tags_for_user(args.user_id)
        return _report(outcome, lambda tags: [_tag_to_dict(t) for t in tags])


def main(argv: Optional[List[str]] = None) -> int:
    """Run the note store command line."""
    args = parse_args(argv)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(
            log_dir=args.log_dir, level=log_level, console=not args.quiet
        )
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")
        log_dir = None
    if log_dir:
        logger.debug(f"Persistent logging enabled: {log_dir}")

    if config.metrics_file:
        atexit.register(_save_metrics_on_exit, config.metrics_file)

    try:
        return run(args)
    except SchemaInitializationError as e:
        logger.critical(f"Schema initialization failed: {e}")
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return EXIT_SCHEMA_FAILURE
    except NoteStoreError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
