"""Command-line interface for the cplanet application."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import logging.handlers
import os
import pprint
from pathlib import Path
from typing import List, Optional

from .config import parse_app_config
from .runner import RunConfig, execute

logger = logging.getLogger(__name__)

SYSLOG_SOCKET = "/dev/log"


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="cplanet",
        description="Aggregate feeds into HTML, RSS, Atom and OPML documents.",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        help="Path to the planet configuration XML file.",
    )
    parser.add_argument(
        "-l",
        "--syslog",
        action="store_true",
        help="Send log messages to syslog instead of only stderr.",
    )

    # Overrides for logging/debugging
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and render everything but do not write output files.",
    )

    return parser


def _syslog_handler() -> logging.Handler:
    if os.path.exists(SYSLOG_SOCKET):
        handler = logging.handlers.SysLogHandler(address=SYSLOG_SOCKET)
    else:
        handler = logging.handlers.SysLogHandler()
    handler.setFormatter(logging.Formatter("cplanet: %(levelname)s %(name)s: %(message)s"))
    return handler


def configure_logging(
    level_name: str, log_file: Optional[str] = None, syslog: bool = False
) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    if syslog:
        root_logger.addHandler(_syslog_handler())
    else:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug("Logger initialised at level %s", level_name.upper())


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        planet = parse_app_config(args.config)

        # Determine logging settings (CLI overrides Config)
        log_level = args.log_level or planet.logging.level
        log_file = args.log_file or planet.logging.file
        syslog = args.syslog or planet.logging.syslog

        configure_logging(log_level, log_file, syslog)

        config = RunConfig(planet=planet, dry_run=args.dry_run)

        config_dict = dataclasses.asdict(planet)
        if config_dict["cache"].get("connection_string"):
            config_dict["cache"]["connection_string"] = "***MASKED***"
        logger.debug("Active Configuration:\n%s", pprint.pformat(config_dict))

        result = execute(config)
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1

    for path in result.written:
        print(path)

    if not result.ok:
        logger.error("Failed to generate: %s", ", ".join(result.failed))
        return 1
    return 0
