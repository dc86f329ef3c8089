"""CLI commands package: main click group and command registration."""

import click

from geo_db import __version__


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context):
    """
    Build a geographic database from the Wikidata JSON dump.

    \b
    Commands:
        import-dump   Stream the dump into a new SQLite database
        entity        Show the rows one or more entities would produce

    \b
    Examples:
        geo-db import-dump --output geo.db
        geo-db import-dump --dump latest-all.json.bz2 --decompressor "lbzip2 -dc"
        geo-db import-dump --as-of 2024-01-01 --limit 100000
        geo-db entity Q64 Q90
    """
    ctx.ensure_object(dict)


# Register all commands
from .wikidata_dump import db_import_dump

main.add_command(db_import_dump)

from .entity import db_entity

main.add_command(db_entity)
