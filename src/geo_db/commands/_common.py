"""Shared utilities used across CLI command modules."""

import logging
import shlex
import sys
from datetime import datetime
from typing import Optional

import click

from geo_db.wikidata_time import WikiTime


def _configure_logging(verbose: bool) -> None:
    """Configure logging for the geo database."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    # Set level for geo_db loggers
    for logger_name in [
        "geo_db",
        "geo_db.store",
        "geo_db.wikidata_api",
        "geo_db.importers",
    ]:
        logging.getLogger(logger_name).setLevel(level)

    # Suppress noisy third-party loggers
    for noisy_logger in [
        "urllib3",
    ]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def _parse_as_of(value: Optional[str]) -> Optional[WikiTime]:
    """Parse an --as-of ISO date/datetime (UTC when no offset is given)."""
    if not value:
        return None
    try:
        return WikiTime.from_datetime(datetime.fromisoformat(value))
    except ValueError as e:
        raise click.BadParameter(f"not an ISO date: {value!r} ({e})", param_hint="--as-of")


def _split_command(value: str) -> list[str]:
    """Split a --decompressor value like "lbzip2 -dc -n 4" into argv."""
    argv = shlex.split(value)
    if not argv:
        raise click.BadParameter("decompressor command is empty", param_hint="--decompressor")
    return argv
