"""
bootstrap/entrypoints.py - Entry points

Logging setup for hosts embedding a CacheCoordinator, and the `reportsync`
command line: offline summaries of hierarchy payloads and a dump of the
effective configuration.
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import argparse
import json
import logging
import sys

logger = logging.getLogger("bootstrap.entrypoints")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record):
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "INFO",
    log_file: str = None,
    json_format: bool = False,
    fmt: str = DEFAULT_FORMAT,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON format for logs
        fmt: Format string for plain-text logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = JSONFormatter() if json_format else logging.Formatter(fmt)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)


# =============================================================================
# COMMANDS
# =============================================================================

def _format_table(stats) -> str:
    lines = [
        f"{stats.view_type} view, week {stats.week}/{stats.year}",
        f"  users: {stats.overall.total_users}"
        f"  submitted: {stats.overall.users_with_reports} ({stats.overall.submission_rate}%)"
        f"  tasks: {stats.overall.completed_tasks}/{stats.overall.total_tasks}"
        f" ({stats.overall.average_completion_rate}%)",
        "  ranking: " + ", ".join(
            f"{bucket} {entry['count']} ({entry['percentage']}%)"
            for bucket, entry in stats.overall.ranking_distribution.to_dict().items()
        ),
    ]
    for group in stats.groups:
        lines.append(
            f"  - {group.name or group.group_id}: "
            f"{group.stats.average_completion_rate}% of {group.stats.total_tasks} tasks, "
            f"{group.stats.total_users} users"
        )
    return "\n".join(lines)


def _cmd_summarize(parsed) -> int:
    from reportsync.aggregation import parse_hierarchy_view, summarize_view
    from reportsync.errors import ViewValidationError

    path = Path(parsed.file)
    if not path.exists():
        print(f"File not found: {parsed.file}", file=sys.stderr)
        return 2

    try:
        view = parse_hierarchy_view(path.read_bytes())
    except ViewValidationError as e:
        print(str(e), file=sys.stderr)
        for error in e.errors[:10]:
            location = ".".join(str(part) for part in error.get("loc", ()))
            print(f"  {location}: {error.get('msg')}", file=sys.stderr)
        return 1

    stats = summarize_view(view)
    if parsed.json:
        print(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(_format_table(stats))
    return 0


def _cmd_config(parsed) -> int:
    from .config import load_config

    config = load_config(parsed.config)
    print(json.dumps(config.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Weekly report cache coordinator tools",
        prog="reportsync",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path",
        default=None,
    )

    commands = parser.add_subparsers(dest="command")

    summarize = commands.add_parser("summarize", help="Summarize a hierarchy view JSON file")
    summarize.add_argument("file", help="Hierarchy view JSON file")
    summarize.add_argument("--json", action="store_true", help="Output in JSON format")

    config = commands.add_parser("config", help="Print the effective configuration")
    config.add_argument("-c", "--config", help="Path to configuration file", default=None)

    return parser


def cli_main(args: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    parser = build_parser()
    parsed = parser.parse_args(args)

    log_level = "DEBUG" if parsed.verbose else parsed.log_level
    setup_logging(level=log_level, log_file=parsed.log_file)

    if parsed.command is None:
        parser.print_help()
        return 2

    try:
        if parsed.command == "summarize":
            return _cmd_summarize(parsed)
        return _cmd_config(parsed)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(cli_main())
