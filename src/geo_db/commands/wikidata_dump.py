"""Wikidata dump import: stream the dump into a new geo database."""

import http.client
import urllib.error
from pathlib import Path
from typing import Optional

import click

from geo_db.store import DEFAULT_DB_PATH

from ._common import _configure_logging, _parse_as_of, _split_command


@click.command("import-dump")
@click.option("-o", "--output", "db_path", type=click.Path(), default=str(DEFAULT_DB_PATH), show_default=True, help="Output database file (must not exist)")
@click.option("--dump", "dump_path", type=click.Path(exists=True, dir_okay=False), help="Read a local dump file instead of streaming from Wikimedia")
@click.option("--url", "dump_url", default=None, help="Dump URL (default: latest Wikimedia dump)")
@click.option("--as-of", "as_of", default=None, help="Resolve start/end time qualifiers against this ISO date instead of now")
@click.option("--decompressor", default="bzip2 -dc", show_default=True, help="Decompression command reading stdin, writing stdout")
@click.option("--watermark", type=int, default=2 * 1024 * 1024, show_default=True, help="Max buffered decompressed bytes before input is paused")
@click.option("--commit-every", type=int, default=10_000, show_default=True, help="Commit after this many entities")
@click.option("--limit", type=int, help="Stop after this many entities")
@click.option("--exclude-obsolete", is_flag=True, help="Skip lost cities, neighborhoods, former entities and farms")
@click.option("--skip-dissolved", is_flag=True, help="Skip entities with a dissolved date or a replaced-by claim")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_import_dump(
    db_path: str,
    dump_path: Optional[str],
    dump_url: Optional[str],
    as_of: Optional[str],
    decompressor: str,
    watermark: int,
    commit_every: int,
    limit: Optional[int],
    exclude_obsolete: bool,
    skip_dissolved: bool,
    verbose: bool,
):
    """
    Import countries, territorial entities, settlements and languages.

    The dump is streamed and decompressed on the fly; nothing is written to
    disk except the output database. Temporal qualifiers (start/end time) are
    resolved against the current time unless --as-of is given, so re-running
    later can select different facts.

    \b
    Examples:
        geo-db import-dump --output geo.db
        geo-db import-dump --dump latest-all.json.bz2 --limit 10000
        geo-db import-dump --decompressor "lbzip2 -dc" --as-of 2024-01-01
    """
    _configure_logging(verbose)

    from geo_db.importers.stream import DUMP_URL, DecompressionError
    from geo_db.importers.wikidata_dump import GeoDumpImporter
    from geo_db.store import GeoDatabase, SinkConflictError
    from geo_db.wikidata_api import TaxonomyError, load_taxonomies

    if dump_path and dump_url:
        raise click.UsageError("Use either --dump or --url, not both")

    reference = _parse_as_of(as_of)
    decompressor_argv = _split_command(decompressor)
    location = dump_path or dump_url or DUMP_URL

    # The file is created only after the taxonomies load
    if Path(db_path).exists():
        raise click.ClickException(f"database already exists: {db_path} (remove it or choose another --output)")

    click.echo("Loading class hierarchies from the Wikidata query service...", err=True)
    try:
        taxonomies = load_taxonomies(exclude_obsolete=exclude_obsolete)
    except (TaxonomyError, urllib.error.URLError, http.client.HTTPException, TimeoutError) as e:
        raise click.ClickException(f"Failed to fetch classes: {e}")

    try:
        database = GeoDatabase.create(db_path)
    except FileExistsError as e:
        raise click.ClickException(f"{e} (remove it or choose another --output)")

    ok = False
    try:
        importer = GeoDumpImporter(
            database,
            taxonomies,
            reference=reference,
            commit_every=commit_every,
            skip_dissolved=skip_dissolved,
        )
        click.echo(f"Streaming {location} into {db_path}...", err=True)
        try:
            stats = importer.import_dump(
                location,
                decompressor=decompressor_argv,
                watermark=watermark,
                limit=limit,
            )
        except SinkConflictError as e:
            raise click.ClickException(f"Import aborted at entity {e.entity_id} ({e.relation}): {e}")
        except DecompressionError as e:
            raise click.ClickException(f"Decompression failed: {e}")
        except (OSError, urllib.error.URLError, http.client.HTTPException) as e:
            raise click.ClickException(f"Reading the dump failed: {e}")
        ok = True
    finally:
        database.close(commit=ok)

    click.echo("", err=True)
    click.echo(f"Done: {stats.summary()}", err=True)
    with GeoDatabase.open(db_path) as db:
        for relation, count in db.get_stats().items():
            click.echo(f"  {relation}: {count:,}", err=True)
