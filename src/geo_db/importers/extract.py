"""
Entity classification and per-role row extraction.

Roles are assigned independently: a city-state can be a country, a
territorial entity and a human settlement at the same time, and each
handler runs against the same entity. Handlers never raise for missing or
odd data; they return no rows instead.
"""

import logging
from dataclasses import dataclass
from typing import Callable

import pycountry
from pydantic import ValidationError

from ..models import (
    LANGUAGE_CLASSES,
    P_APPLIES_TO_PART,
    P_COORDINATE_LOCATION,
    P_COUNTRY,
    P_DISSOLVED,
    P_FEMALE_POPULATION,
    P_ISO_CODE,
    P_LANGUAGE_CODE,
    P_LOCATED_IN,
    P_MALE_POPULATION,
    P_NATIVE_LABEL,
    P_OFFICIAL_LANGUAGE,
    P_OFFICIAL_NAME,
    P_POPULATION,
    P_REPLACED_BY,
    Claim,
    CoordinateValue,
    CountryRow,
    DerivedRow,
    Entity,
    EntityRefValue,
    LabelRow,
    LanguageLink,
    LanguageRow,
    MonolingualTextValue,
    NativeLabelRow,
    ParentEdge,
    QuantityValue,
    Role,
    ScalarValue,
    SettlementRow,
    TerritorialEntityRow,
)
from ..wikidata_time import (
    WikiTime,
    is_currently_valid,
    select_first_valid_or_last,
    select_latest_by_point_in_time,
)

logger = logging.getLogger(__name__)

# Qualifiers marking a population figure that only covers part of the place
PARTIAL_POPULATION_QUALIFIERS = (P_APPLIES_TO_PART, P_FEMALE_POPULATION, P_MALE_POPULATION)


@dataclass(frozen=True)
class TaxonomySets:
    """Class id sets used to decide role membership."""
    human_settlements: frozenset[str]
    territorial_entities: frozenset[str]
    languages: frozenset[str] = LANGUAGE_CLASSES
    excluded: frozenset[str] = frozenset()


# =============================================================================
# CLASSIFIER
# =============================================================================

def is_dissolved(entity: Entity) -> bool:
    """True if the entity has a dissolved date or has been replaced."""
    return bool(entity.claims_for(P_DISSOLVED) or entity.claims_for(P_REPLACED_BY))


def classify(
    entity: Entity,
    taxonomies: TaxonomySets,
    skip_dissolved: bool = False,
) -> set[Role]:
    """
    Determine every role that applies to an entity.

    Args:
        entity: Parsed dump entity
        taxonomies: Class sets for each role
        skip_dissolved: Give dissolved/replaced entities no roles at all

    Returns:
        Set of roles (possibly empty)
    """
    if skip_dissolved and is_dissolved(entity):
        return set()

    classes = set(entity.instance_of_ids())
    roles: set[Role] = set()

    # ISO code implies a country even when the taxonomy closure misses it
    if entity.claims_for(P_ISO_CODE):
        roles.add(Role.COUNTRY)

    is_excluded = not classes.isdisjoint(taxonomies.excluded)
    if not is_excluded:
        if not classes.isdisjoint(taxonomies.territorial_entities):
            roles.add(Role.TERRITORIAL_ENTITY)
        if not classes.isdisjoint(taxonomies.human_settlements):
            roles.add(Role.HUMAN_SETTLEMENT)
    if not classes.isdisjoint(taxonomies.languages):
        roles.add(Role.LANGUAGE)

    return roles


# =============================================================================
# HANDLERS
# =============================================================================

def extract_country(entity: Entity, reference: WikiTime) -> list[DerivedRow]:
    claim = select_first_valid_or_last(entity.claims_for(P_ISO_CODE), reference)
    if claim is None:
        return []
    value = claim.value
    if not isinstance(value, ScalarValue) or not isinstance(value.value, str):
        logger.warning(f"skipping country {entity.id} because its ISO code has no string value")
        return []

    try:
        row = CountryRow(id=entity.id, iso=value.value)
    except ValidationError:
        logger.warning(f"skipping country {entity.id} because ISO code {value.value!r} is malformed")
        return []

    if pycountry.countries.get(alpha_2=row.iso.upper()) is None:
        logger.debug(f"country {entity.id} has ISO code {row.iso!r} unknown to pycountry")
    return [row]


def extract_territorial_entity(entity: Entity, reference: WikiTime) -> list[DerivedRow]:
    rows: list[DerivedRow] = [TerritorialEntityRow(id=entity.id)]

    for claim in entity.claims_for(P_LOCATED_IN):
        if not is_currently_valid(claim.qualifiers, reference):
            continue
        value = claim.value
        if isinstance(value, EntityRefValue):
            rows.append(ParentEdge(child_id=entity.id, parent_id=value.id))
        elif claim.main_snak.has_value:
            logger.warning(f"skipping TE {entity.id} located-in parent because it has no entity id")

    for claim in entity.claims_for(P_OFFICIAL_LANGUAGE):
        if not claim.main_snak.has_value:
            continue
        if not is_currently_valid(claim.qualifiers, reference):
            continue
        value = claim.value
        if isinstance(value, EntityRefValue):
            rows.append(LanguageLink(entity_id=entity.id, language_id=value.id))
        else:
            logger.warning(f"skipping TE {entity.id} official language because it has no entity id")

    return rows


def extract_language(entity: Entity, reference: WikiTime) -> list[DerivedRow]:
    claims = entity.claims_for(P_LANGUAGE_CODE)
    if not claims:
        return []
    value = claims[0].value
    if not isinstance(value, ScalarValue) or not isinstance(value.value, str):
        return []
    return [LanguageRow(id=entity.id, code=value.value)]


def parse_quantity(amount: str) -> int | None:
    """Parse a quantity amount like "+12,345" into an int, or None."""
    cleaned = "".join(c for c in amount if not c.isspace() and c not in ",.+")
    try:
        return int(cleaned)
    except ValueError:
        return None


def _is_population_candidate(claim: Claim) -> bool:
    value = claim.value
    if not isinstance(value, QuantityValue):
        return False
    # Population is unitless
    if value.unit != "1":
        return False
    return not any(claim.has_qualifier(p) for p in PARTIAL_POPULATION_QUALIFIERS)


def _resolve_population(entity: Entity) -> int | None:
    candidates = [c for c in entity.claims_for(P_POPULATION) if _is_population_candidate(c)]
    claim = select_latest_by_point_in_time(candidates)
    if claim is None:
        return None
    amount = claim.value.amount
    population = parse_quantity(amount)
    if population is None:
        logger.warning(f"{entity.id} population amount {amount!r} could not be parsed as a number")
    return population


def _native_labels(entity: Entity, reference: WikiTime) -> list[NativeLabelRow]:
    texts: list[MonolingualTextValue] = []
    for claim in entity.claims_for(P_NATIVE_LABEL):
        if isinstance(claim.value, MonolingualTextValue):
            texts.append(claim.value)
        elif claim.main_snak.has_value:
            logger.warning(f"skipping {entity.id} native label because it has invalid type")
    for claim in entity.claims_for(P_OFFICIAL_NAME):
        if not is_currently_valid(claim.qualifiers, reference):
            continue
        if isinstance(claim.value, MonolingualTextValue):
            texts.append(claim.value)
        elif claim.main_snak.has_value:
            logger.warning(f"skipping {entity.id} official name because it has invalid type")

    rows: list[NativeLabelRow] = []
    for text in texts:
        try:
            rows.append(NativeLabelRow(id=entity.id, lang=text.language, text=text.text, order=len(rows)))
        except ValidationError:
            logger.warning(f"skipping {entity.id} native label {text.text!r} because it is malformed")
    return rows


def _labels(entity: Entity) -> list[LabelRow]:
    rows: list[LabelRow] = []
    for lang, text in entity.labels.items():
        try:
            rows.append(LabelRow(id=entity.id, lang=lang, text=text))
        except ValidationError:
            logger.warning(f"skipping {entity.id} label {lang!r} because it is malformed")
    return rows


def extract_human_settlement(entity: Entity, reference: WikiTime) -> list[DerivedRow]:
    country_claim = select_first_valid_or_last(entity.claims_for(P_COUNTRY), reference)
    if country_claim is None:
        return []
    if not isinstance(country_claim.value, EntityRefValue):
        logger.debug(f"skipping HS {entity.id} because its country claim has no entity id")
        return []

    lat = lon = None
    coord_claims = entity.claims_for(P_COORDINATE_LOCATION)
    if coord_claims and isinstance(coord_claims[0].value, CoordinateValue):
        lat = coord_claims[0].value.latitude
        lon = coord_claims[0].value.longitude

    rows: list[DerivedRow] = [
        SettlementRow(
            id=entity.id,
            country_id=country_claim.value.id,
            population=_resolve_population(entity),
            lat=lat,
            lon=lon,
        )
    ]
    rows.extend(_labels(entity))
    rows.extend(_native_labels(entity, reference))
    return rows


Handler = Callable[[Entity, WikiTime], list[DerivedRow]]

# Handlers run in this order for every role an entity has
HANDLERS: tuple[tuple[Role, Handler], ...] = (
    (Role.COUNTRY, extract_country),
    (Role.TERRITORIAL_ENTITY, extract_territorial_entity),
    (Role.HUMAN_SETTLEMENT, extract_human_settlement),
    (Role.LANGUAGE, extract_language),
)


def extract_rows(entity: Entity, roles: set[Role], reference: WikiTime) -> list[DerivedRow]:
    """Run the handler of every role in `roles` and concatenate their rows."""
    rows: list[DerivedRow] = []
    for role, handler in HANDLERS:
        if role in roles:
            rows.extend(handler(entity, reference))
    return rows
