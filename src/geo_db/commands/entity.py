"""Entity command: show the rows that entities would produce, without a database."""

import http.client
import urllib.error

import click

from ._common import _configure_logging, _parse_as_of


@click.command("entity")
@click.argument("entity_ids", nargs=-1, required=True)
@click.option("--as-of", "as_of", default=None, help="Resolve start/end time qualifiers against this ISO date instead of now")
@click.option("--exclude-obsolete", is_flag=True, help="Apply the obsolete-class exclusions")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_entity(entity_ids: tuple[str, ...], as_of: str, exclude_obsolete: bool, verbose: bool):
    """
    Fetch entities from Wikidata and print their roles and derived rows.

    \b
    Examples:
        geo-db entity Q64
        geo-db entity Q90 Q142 --as-of 2010-01-01
    """
    _configure_logging(verbose)

    from geo_db.importers.extract import classify, extract_rows
    from geo_db.models import Entity
    from geo_db.wikidata_api import TaxonomyError, fetch_entity, load_taxonomies
    from geo_db.wikidata_time import WikiTime

    reference = _parse_as_of(as_of) or WikiTime.now()

    try:
        taxonomies = load_taxonomies(exclude_obsolete=exclude_obsolete)
    except (TaxonomyError, urllib.error.URLError, http.client.HTTPException, TimeoutError) as e:
        raise click.ClickException(f"Failed to fetch classes: {e}")

    failed = 0
    for entity_id in entity_ids:
        try:
            entity = Entity.from_json(fetch_entity(entity_id))
        except (urllib.error.URLError, http.client.HTTPException, TimeoutError, KeyError, ValueError) as e:
            click.echo(f"Entity {entity_id}: failed to load: {e}", err=True)
            failed += 1
            continue

        roles = classify(entity, taxonomies)
        role_names = ", ".join(sorted(r.value for r in roles)) or "none"
        click.echo(f"Entity {entity.id} roles: {role_names}")
        for row in extract_rows(entity, roles, reference):
            click.echo(f"  {row.relation}: {row.model_dump_for_db()}")

    if failed:
        raise click.ClickException(f"{failed} of {len(entity_ids)} entities could not be loaded")
