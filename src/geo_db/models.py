"""
Data models for the geo database import.

Two families live here:

1. Transient dump models (`Entity`, `Claim`, snaks and values) built from one
   parsed dump line and dropped once the entity has been processed.
2. Derived row models (pydantic), one per destination relation, which are
   the only things ever written to the database.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# =============================================================================
# PROPERTY VOCABULARY
# =============================================================================

P_INSTANCE_OF = "P31"
P_SUBCLASS_OF = "P279"
P_ISO_CODE = "P297"            # ISO 3166-1 alpha-2 code
P_LOCATED_IN = "P131"          # located in the administrative territorial entity
P_OFFICIAL_LANGUAGE = "P37"
P_LANGUAGE_CODE = "P424"       # Wikimedia language code
P_COUNTRY = "P17"
P_POPULATION = "P1082"
P_POINT_IN_TIME = "P585"
P_START_TIME = "P580"
P_END_TIME = "P582"
P_NATIVE_LABEL = "P1705"
P_OFFICIAL_NAME = "P1448"
P_COORDINATE_LOCATION = "P625"
P_DISSOLVED = "P576"
P_REPLACED_BY = "P1366"
P_APPLIES_TO_PART = "P518"
P_FEMALE_POPULATION = "P1539"
P_MALE_POPULATION = "P1540"

# =============================================================================
# CLASS ROOTS
# =============================================================================

HUMAN_SETTLEMENT_ROOT = "Q486972"
TERRITORIAL_ENTITY_ROOT = "Q56061"
LANGUAGE_CLASS = "Q34770"

# Language membership is a direct instance-of check, not a subclass closure
LANGUAGE_CLASSES: frozenset[str] = frozenset({LANGUAGE_CLASS})

EXCLUDED_ROOTS: tuple[str, ...] = (
    "Q2974842",   # lost city
    "Q123705",    # neighborhood (includes shipyards and the like)
    "Q19953632",  # former administrative territorial entity
    "Q131596",    # farm
)


class Role(str, Enum):
    """Independently assignable classification of a dump entity."""
    COUNTRY = "country"
    TERRITORIAL_ENTITY = "territorial_entity"
    HUMAN_SETTLEMENT = "human_settlement"
    LANGUAGE = "language"


# =============================================================================
# VALUES
# =============================================================================

@dataclass(frozen=True)
class ScalarValue:
    """Plain string values and any datatype without a dedicated variant."""
    value: Any


@dataclass(frozen=True)
class QuantityValue:
    amount: str
    unit: str = "1"


@dataclass(frozen=True)
class EntityRefValue:
    id: str


@dataclass(frozen=True)
class CoordinateValue:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class MonolingualTextValue:
    text: str
    language: str


@dataclass(frozen=True)
class TimeValue:
    time: str
    timezone: int = 0
    precision: Optional[int] = None


Value = Union[
    ScalarValue,
    QuantityValue,
    EntityRefValue,
    CoordinateValue,
    MonolingualTextValue,
    TimeValue,
]


def parse_value(datavalue: dict) -> Optional[Value]:
    """
    Build a typed value from a dump `datavalue` object.

    Returns None when the object is structurally unusable.
    """
    if not isinstance(datavalue, dict) or "value" not in datavalue:
        return None
    kind = datavalue.get("type")
    raw = datavalue["value"]

    if kind == "wikibase-entityid":
        if isinstance(raw, dict) and isinstance(raw.get("id"), str):
            return EntityRefValue(id=raw["id"])
        # Older dumps only carry the numeric id
        if isinstance(raw, dict) and isinstance(raw.get("numeric-id"), int):
            prefix = "P" if raw.get("entity-type") == "property" else "Q"
            return EntityRefValue(id=f"{prefix}{raw['numeric-id']}")
        return None
    if kind == "quantity":
        if isinstance(raw, dict) and isinstance(raw.get("amount"), str):
            return QuantityValue(amount=raw["amount"], unit=str(raw.get("unit", "1")))
        return None
    if kind == "globecoordinate":
        if not isinstance(raw, dict):
            return None
        lat = raw.get("latitude")
        lon = raw.get("longitude")
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
            return CoordinateValue(latitude=float(lat), longitude=float(lon))
        return None
    if kind == "monolingualtext":
        if isinstance(raw, dict) and isinstance(raw.get("text"), str) and isinstance(raw.get("language"), str):
            return MonolingualTextValue(text=raw["text"], language=raw["language"])
        return None
    if kind == "time":
        if not isinstance(raw, dict) or not isinstance(raw.get("time"), str):
            return None
        timezone = raw.get("timezone", 0)
        if not isinstance(timezone, int):
            timezone = 0
        precision = raw.get("precision")
        return TimeValue(
            time=raw["time"],
            timezone=timezone,
            precision=precision if isinstance(precision, int) else None,
        )
    return ScalarValue(value=raw)


# =============================================================================
# SNAKS
# =============================================================================

@dataclass(frozen=True)
class ValueSnak:
    property: str
    value: Value
    kind: ClassVar[str] = "value"
    has_value: ClassVar[bool] = True


@dataclass(frozen=True)
class NoValueSnak:
    property: str
    kind: ClassVar[str] = "novalue"
    has_value: ClassVar[bool] = False


@dataclass(frozen=True)
class SomeValueSnak:
    """Snak stating that a value exists but is unknown."""
    property: str
    kind: ClassVar[str] = "somevalue"
    has_value: ClassVar[bool] = False


Snak = Union[ValueSnak, NoValueSnak, SomeValueSnak]


def parse_snak(data: Any, prop: str = "") -> Optional[Snak]:
    """Build a typed snak from a dump snak object, or None if unusable."""
    if not isinstance(data, dict):
        return None
    prop = data.get("property") or prop
    snaktype = data.get("snaktype")
    if snaktype == "novalue":
        return NoValueSnak(property=prop)
    if snaktype == "somevalue":
        return SomeValueSnak(property=prop)
    if snaktype == "value":
        value = parse_value(data.get("datavalue"))
        if value is None:
            return None
        return ValueSnak(property=prop, value=value)
    return None


# =============================================================================
# CLAIMS AND ENTITIES
# =============================================================================

@dataclass
class Claim:
    main_snak: Snak
    qualifiers: dict[str, list[Snak]] = field(default_factory=dict)

    @property
    def value(self) -> Optional[Value]:
        """The main snak's value, or None for no-value / unknown-value snaks."""
        if isinstance(self.main_snak, ValueSnak):
            return self.main_snak.value
        return None

    def has_qualifier(self, prop: str) -> bool:
        return bool(self.qualifiers.get(prop))

    @classmethod
    def from_json(cls, data: Any, prop: str = "") -> Optional["Claim"]:
        if not isinstance(data, dict):
            return None
        main_snak = parse_snak(data.get("mainsnak"), prop)
        if main_snak is None:
            return None

        qualifiers: dict[str, list[Snak]] = {}
        raw_qualifiers = data.get("qualifiers")
        if isinstance(raw_qualifiers, dict):
            for qual_prop, raw_snaks in raw_qualifiers.items():
                if not isinstance(raw_snaks, list):
                    continue
                snaks = [s for s in (parse_snak(r, qual_prop) for r in raw_snaks) if s is not None]
                if snaks:
                    qualifiers[qual_prop] = snaks
        return cls(main_snak=main_snak, qualifiers=qualifiers)


@dataclass
class Entity:
    """One dump record: id, claims keyed by property id, and labels keyed by language."""
    id: str
    claims: dict[str, list[Claim]] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    def claims_for(self, prop: str) -> list[Claim]:
        return self.claims.get(prop, [])

    def instance_of_ids(self) -> list[str]:
        """Entity ids referenced by the instance-of claims."""
        ids = []
        for claim in self.claims_for(P_INSTANCE_OF):
            value = claim.value
            if isinstance(value, EntityRefValue):
                ids.append(value.id)
        return ids

    @classmethod
    def from_json(cls, data: Any) -> "Entity":
        """
        Build an Entity from a parsed dump object.

        Raises:
            ValueError: if the object is not an entity (no string id)
        """
        if not isinstance(data, dict):
            raise ValueError(f"entity must be a JSON object, got {type(data).__name__}")
        entity_id = data.get("id")
        if not isinstance(entity_id, str) or not entity_id:
            raise ValueError("entity has no id")

        claims: dict[str, list[Claim]] = {}
        raw_claims = data.get("claims")
        # Empty claim sets are serialised as [] in the dump
        if isinstance(raw_claims, dict):
            for prop, raw_list in raw_claims.items():
                if not isinstance(raw_list, list):
                    continue
                parsed = []
                for raw in raw_list:
                    claim = Claim.from_json(raw, prop)
                    if claim is None:
                        logger.debug(f"{entity_id}: dropping unparseable {prop} claim")
                        continue
                    parsed.append(claim)
                if parsed:
                    claims[prop] = parsed

        labels: dict[str, str] = {}
        raw_labels = data.get("labels")
        if isinstance(raw_labels, dict):
            for lang, label in raw_labels.items():
                if isinstance(label, dict) and isinstance(label.get("value"), str):
                    language = label.get("language")
                    labels[language if isinstance(language, str) and language else lang] = label["value"]
                else:
                    logger.warning(f"skipping {entity_id} label {lang!r} because it has invalid type")

        return cls(id=entity_id, claims=claims, labels=labels)


# =============================================================================
# DERIVED ROWS
# =============================================================================

class DerivedRow(BaseModel):
    """Base for rows written to the database; `relation` names the target table."""
    relation: ClassVar[str] = ""

    def model_dump_for_db(self) -> dict[str, Any]:
        return self.model_dump()


class CountryRow(DerivedRow):
    relation: ClassVar[str] = "countries"

    id: str
    iso: str = Field(min_length=2, max_length=2)

    @field_validator("iso")
    @classmethod
    def _lowercase_iso(cls, v: str) -> str:
        return v.lower()


class TerritorialEntityRow(DerivedRow):
    relation: ClassVar[str] = "territorial_entities"

    id: str


class ParentEdge(DerivedRow):
    relation: ClassVar[str] = "territorial_entities_parents"

    child_id: str
    parent_id: str

    def model_dump_for_db(self) -> dict[str, Any]:
        return {"id": self.child_id, "parent": self.parent_id}


class LanguageLink(DerivedRow):
    relation: ClassVar[str] = "object_languages"

    entity_id: str
    language_id: str

    def model_dump_for_db(self) -> dict[str, Any]:
        return {"id": self.entity_id, "lang_id": self.language_id}


class LanguageRow(DerivedRow):
    relation: ClassVar[str] = "languages"

    id: str
    code: str


class SettlementRow(DerivedRow):
    relation: ClassVar[str] = "cities"

    id: str
    country_id: str
    population: Optional[int] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    def model_dump_for_db(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "country": self.country_id,
            "population": self.population,
            "lat": self.lat,
            "lon": self.lon,
        }


class LabelRow(DerivedRow):
    relation: ClassVar[str] = "cities_labels"

    id: str
    lang: str
    text: str

    def model_dump_for_db(self) -> dict[str, Any]:
        return {"id": self.id, "lang": self.lang, "native_order": None, "label": self.text}


class NativeLabelRow(DerivedRow):
    relation: ClassVar[str] = "cities_labels"

    id: str
    lang: str
    text: str
    order: int = Field(ge=0)

    def model_dump_for_db(self) -> dict[str, Any]:
        return {"id": self.id, "lang": self.lang, "native_order": self.order, "label": self.text}
