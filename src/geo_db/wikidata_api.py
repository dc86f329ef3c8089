"""
Wikidata HTTP endpoints used around the dump import.

- SPARQL: transitive "subclass of" closures that drive role classification.
  These queries are slow (tens of seconds each) and run once, before the
  dump is opened; any failure aborts the run.
- Entity data: single-entity JSON, used by the `entity` debug command.
"""

import json
import logging
import urllib.parse
import urllib.request
from typing import Any

from .importers.extract import TaxonomySets
from .importers.stream import USER_AGENT
from .models import (
    EXCLUDED_ROOTS,
    HUMAN_SETTLEMENT_ROOT,
    P_SUBCLASS_OF,
    TERRITORIAL_ENTITY_ROOT,
)

logger = logging.getLogger(__name__)

SPARQL_URL = "https://query.wikidata.org/sparql"
ENTITY_DATA_URL = "https://www.wikidata.org/wiki/Special:EntityData/{id}.json"

_TIMEOUT = 300  # seconds; large closures are slow to compute


class TaxonomyError(RuntimeError):
    """The taxonomy service returned something that is not a SPARQL result set."""


def subclass_query(root: str) -> str:
    return f"SELECT ?s WHERE {{ ?s wdt:{P_SUBCLASS_OF}+ wd:{root} . }}"


def _get_json(url: str, accept: str = "application/json") -> Any:
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT, "Accept": accept})
    with urllib.request.urlopen(req, timeout=_TIMEOUT) as response:
        return json.loads(response.read())


def _id_from_uri(uri: str) -> str:
    path = urllib.parse.urlparse(uri).path
    return path.rstrip("/").rsplit("/", 1)[-1]


def load_subclasses(root: str) -> set[str]:
    """
    Load every class transitively declared a subclass of `root`.

    The root itself is not included.

    Raises:
        TaxonomyError: if the response is not a SPARQL JSON result set
        urllib.error.URLError: if the service is unreachable
    """
    logger.debug(f"Loading subclasses for {root!r}")
    url = f"{SPARQL_URL}?{urllib.parse.urlencode({'query': subclass_query(root)})}"
    try:
        data = _get_json(url, accept="application/sparql-results+json;charset=utf-8")
    except json.JSONDecodeError as e:
        raise TaxonomyError(f"invalid JSON from taxonomy service for {root}: {e}") from e

    try:
        bindings = data["results"]["bindings"]
        classes = {_id_from_uri(b["s"]["value"]) for b in bindings}
    except (KeyError, TypeError) as e:
        raise TaxonomyError(f"malformed taxonomy response for {root}: {e!r}") from e

    classes.discard("")
    logger.debug(f"Loaded {len(classes):,} subclasses for {root!r}")
    return classes


def load_closure(root: str) -> frozenset[str]:
    """Subclass closure of `root`, including the root."""
    return frozenset(load_subclasses(root) | {root})


def load_taxonomies(exclude_obsolete: bool = False) -> TaxonomySets:
    """
    Fetch the class sets for every role.

    Args:
        exclude_obsolete: Also load the exclusion closure (lost cities,
                          neighborhoods, former entities, farms)
    """
    logger.info("Fetching subclasses of 'human settlement'")
    human_settlements = load_closure(HUMAN_SETTLEMENT_ROOT)
    logger.info(f"  {len(human_settlements):,} classes")

    logger.info("Fetching subclasses of 'administrative territorial entity'")
    territorial_entities = load_closure(TERRITORIAL_ENTITY_ROOT)
    logger.info(f"  {len(territorial_entities):,} classes")

    excluded: frozenset[str] = frozenset()
    if exclude_obsolete:
        logger.info("Fetching excluded classes")
        excluded = frozenset().union(*(load_closure(root) for root in EXCLUDED_ROOTS))
        logger.info(f"  {len(excluded):,} classes")

    return TaxonomySets(
        human_settlements=human_settlements,
        territorial_entities=territorial_entities,
        excluded=excluded,
    )


def fetch_entity(entity_id: str) -> dict:
    """
    Download one entity's JSON from Special:EntityData.

    Raises:
        KeyError: if the response does not contain the entity
    """
    data = _get_json(ENTITY_DATA_URL.format(id=urllib.parse.quote(entity_id)))
    entities = data.get("entities", {}) if isinstance(data, dict) else {}
    if entity_id in entities:
        return entities[entity_id]
    # Redirected ids come back under their target id
    if len(entities) == 1:
        return next(iter(entities.values()))
    raise KeyError(f"entity {entity_id} not found in response")
