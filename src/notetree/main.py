#!/usr/bin/env python
"""Command line entry point for the notetree store."""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError

from notetree import __version__
from notetree.config import config
from notetree.exceptions import ConfigurationError, NoteTreeError
from notetree.models.db_models import init_db
from notetree.observability import configure_logging, is_logging_configured
from notetree.services.batch_engine import BatchMutationEngine
from notetree.services.note_service import NoteService
from notetree.storage.entity_store import EntityStore


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="notetree hierarchical note store")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )
    parser.add_argument("--log-dir", help="Directory for log files", type=str, default=None)

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database schema")

    batch = commands.add_parser("batch", help="Run a batch request from a JSON file")
    batch.add_argument("file", help="Path to a JSON request, or - for stdin")

    get = commands.add_parser("get", help="Show a note")
    get.add_argument("note_id")
    get.add_argument("--internal", action="store_true", help="Include internal properties")
    get.add_argument(
        "--parent-properties", action="store_true", help="Include inherited properties"
    )

    append = commands.add_parser("append", help="Append notes to a page, creating it if needed")
    append.add_argument("page_name")
    append.add_argument("content", nargs="+", help="One note per argument")
    append.add_argument(
        "--parent-properties", action="store_true", help="Include inherited properties"
    )

    return parser.parse_args(argv)


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    try:
        if args.database_path:
            config.database_path = Path(args.database_path)
        if args.log_level:
            config.log_level = args.log_level
        if args.log_dir:
            config.log_dir = Path(args.log_dir)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e.errors()[0]['msg']}") from e


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _read_request(path: str) -> Any:
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def main(argv: Optional[List[str]] = None) -> int:
    """Run one notetree command. Returns the process exit code."""
    args = parse_args(argv)
    logger = logging.getLogger(__name__)

    try:
        update_config(args)
    except ConfigurationError as e:
        _print_json({"error": e.to_dict()})
        return 2

    # Console + persistent file logging with rotation
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    if not is_logging_configured():
        try:
            configure_logging(log_dir=config.log_dir, level=log_level, console=True)
        except OSError as e:
            # Fall back to basic console logging if file logging fails
            logging.basicConfig(level=log_level)
            logger.warning(f"Failed to configure file logging: {e}")

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    store = EntityStore(engine)

    if args.command == "init-db":
        _print_json({"database": config.get_db_url(), "version": __version__})
        return 0

    if args.command == "batch":
        try:
            request = _read_request(args.file)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read batch request {args.file}: {e}")
            return 1
        # A bare list is shorthand for {"operations": [...]}
        if isinstance(request, list):
            request = {"operations": request}
        response = BatchMutationEngine(store).process_request(request)
        _print_json(response)
        return 0 if "results" in response else 1

    service = NoteService(store)
    try:
        if args.command == "get":
            view = service.get_note(
                args.note_id,
                include_internal=args.internal,
                include_parent_properties=args.parent_properties,
            )
            if view is None:
                _print_json({"error": f"Note {args.note_id} not found"})
                return 1
            _print_json(view.to_dict())
            return 0

        result = service.append_to_page(
            args.page_name, list(args.content),
            include_parent_properties=args.parent_properties,
        )
        _print_json(result.to_dict())
        return 0
    except NoteTreeError as e:
        logger.error(f"{args.command} failed: {e}")
        _print_json({"error": e.to_dict()})
        return 1


if __name__ == "__main__":
    sys.exit(main())
