#!/usr/bin/env python
"""Command line entry point for the Knowling notebook."""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from knowling import __version__
from knowling.config import config
from knowling.exceptions import KnowlingError, NoteNotFoundError
from knowling.models.schema import Note
from knowling.observability import configure_logging
from knowling.services.notebook_service import NotebookService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="knowling", description="Keep short notes and find similar ones"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--base-dir",
        help="Directory holding the notebook databases",
        type=str,
        default=os.environ.get("KNOWLING_BASE_DIR"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("KNOWLING_LOG_LEVEL", "INFO"),
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Create a note ('-' reads stdin)")
    p.add_argument("text")

    p = sub.add_parser("update", help="Replace the text of a note ('-' reads stdin)")
    p.add_argument("note_id")
    p.add_argument("text")

    sub.add_parser("list", help="List every note")

    p = sub.add_parser("show", help="Print one note")
    p.add_argument("note_id")

    p = sub.add_parser("delete", help="Delete a note")
    p.add_argument("note_id")

    p = sub.add_parser("tag", help="Attach a category to a note")
    p.add_argument("note_id")
    p.add_argument("label")

    p = sub.add_parser("untag", help="Detach a category from a note")
    p.add_argument("note_id")
    p.add_argument("category_id")

    sub.add_parser("categories", help="List every category")

    p = sub.add_parser("similar", help="Find notes similar to a note")
    p.add_argument("note_id")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--threshold", type=float, default=None)

    p = sub.add_parser("export", help="Export every note into a new directory")
    p.add_argument("directory")

    p = sub.add_parser("import", help="Import note files from a directory")
    p.add_argument("directory")

    sub.add_parser("reset", help="Delete every note")

    return parser.parse_args(argv)


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.base_dir:
        config.base_dir = Path(args.base_dir).expanduser()
    config.log_level = args.log_level


def build_service() -> NotebookService:
    """Create the service used by the command line."""
    return NotebookService()


def _read_text(value: str) -> str:
    return sys.stdin.read() if value == "-" else value


def _summary(note: Note) -> str:
    labels = ",".join(note.category_labels)
    return f"{note.id}\t[{labels}]\t{note.first_line}"


def run_command(service: NotebookService, args: argparse.Namespace) -> None:
    """Dispatch one parsed command to the service and print its result."""
    command = args.command

    if command == "add":
        note = service.upsert(None, _read_text(args.text))
        print(note.id)
    elif command == "update":
        note = service.upsert(args.note_id, _read_text(args.text))
        print(note.id)
    elif command == "list":
        for note in service.get_notes():
            print(_summary(note))
    elif command == "show":
        note = service.get_note_by_id(args.note_id)
        if note is None:
            raise NoteNotFoundError(args.note_id)
        for category in sorted(note.categories, key=lambda c: c.folded_label):
            print(f"# category {category.id} {category.label}")
        print(note.text)
    elif command == "delete":
        if not service.delete_note(args.note_id):
            raise NoteNotFoundError(args.note_id)
        print(f"Deleted {args.note_id}")
    elif command == "tag":
        note = service.add_category_to_note(args.note_id, args.label)
        print(_summary(note))
    elif command == "untag":
        note = service.remove_category_from_note(args.note_id, args.category_id)
        print(_summary(note))
    elif command == "categories":
        for category in service.get_categories():
            print(f"{category.id}\t{category.label}")
    elif command == "similar":
        note = service.get_note_by_id(args.note_id)
        if note is None:
            raise NoteNotFoundError(args.note_id)
        for similar, distance in service.get_similar_notes(
            note, limit=args.limit, threshold=args.threshold
        ):
            print(f"{distance:.6f}\t{_summary(similar)}")
    elif command == "export":
        count, path = service.export_notes(args.directory)
        print(f"Exported {count} notes to {path}")
    elif command == "import":
        count = service.import_notes(args.directory)
        print(f"Imported {count} notes")
    elif command == "reset":
        count = service.reset()
        print(f"Deleted {count} notes")


def main(argv: Optional[List[str]] = None) -> None:
    """Run one notebook command."""
    args = parse_args(argv)
    update_config(args)

    try:
        configure_logging(
            log_dir=config.log_dir,
            level=config.log_level,
            console=config.log_to_console,
        )
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=config.log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    service = None
    try:
        service = build_service()
        run_command(service, args)
    except KnowlingError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if service is not None:
            service.close()


if __name__ == "__main__":
    main()
