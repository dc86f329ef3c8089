"""
Geographic database built from the Wikidata JSON dump.

Extracts countries, administrative territorial entities, human settlements
and languages, honouring start/end time qualifiers, into SQLite.
"""

__version__ = "0.1.0"

from geo_db.models import (
    CountryRow,
    Entity,
    LabelRow,
    LanguageLink,
    LanguageRow,
    NativeLabelRow,
    ParentEdge,
    Role,
    SettlementRow,
    TerritorialEntityRow,
)
from geo_db.store import GeoDatabase, SinkConflictError
from geo_db.wikidata_time import (
    WikiTime,
    is_currently_valid,
    parse_wikidata_time,
    select_first_valid_or_last,
    select_latest_by_point_in_time,
)

__all__ = [
    # Models
    "Entity",
    "Role",
    "CountryRow",
    "TerritorialEntityRow",
    "ParentEdge",
    "LanguageLink",
    "LanguageRow",
    "SettlementRow",
    "LabelRow",
    "NativeLabelRow",
    # Database
    "GeoDatabase",
    "SinkConflictError",
    # Time
    "WikiTime",
    "parse_wikidata_time",
    "is_currently_valid",
    "select_first_valid_or_last",
    "select_latest_by_point_in_time",
]
