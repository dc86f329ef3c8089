"""
DDL for the geo database.

Seven relations hold the derived rows, plus `db_info` for import metadata.
The schema is created exactly once, on a fresh file, before the import runs.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"

# Relation name -> column names, in insert order
RELATION_COLUMNS: dict[str, tuple[str, ...]] = {
    "countries": ("id", "iso"),
    "territorial_entities": ("id",),
    "territorial_entities_parents": ("id", "parent"),
    "object_languages": ("id", "lang_id"),
    "languages": ("id", "code"),
    "cities": ("id", "country", "population", "lat", "lon"),
    "cities_labels": ("id", "lang", "native_order", "label"),
}

# Relations where a primary-key conflict is silently ignored
IGNORE_CONFLICT_RELATIONS: frozenset[str] = frozenset({"object_languages"})

_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS countries (
    id TEXT PRIMARY KEY,
    iso TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_countries_iso ON countries(iso);

CREATE TABLE IF NOT EXISTS territorial_entities (
    id TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS territorial_entities_parents (
    id TEXT NOT NULL,
    parent TEXT NOT NULL,
    PRIMARY KEY (id, parent)
);
CREATE INDEX IF NOT EXISTS idx_te_parents_parent ON territorial_entities_parents(parent);

CREATE TABLE IF NOT EXISTS object_languages (
    id TEXT NOT NULL,
    lang_id TEXT NOT NULL,
    PRIMARY KEY (id, lang_id)
);

CREATE TABLE IF NOT EXISTS languages (
    id TEXT NOT NULL,
    code TEXT NOT NULL,
    PRIMARY KEY (id, code)
);

CREATE TABLE IF NOT EXISTS cities (
    id TEXT PRIMARY KEY,
    country TEXT NOT NULL,
    population INTEGER,
    lat REAL,
    lon REAL
);
CREATE INDEX IF NOT EXISTS idx_cities_country ON cities(country);

CREATE TABLE IF NOT EXISTS cities_labels (
    id TEXT NOT NULL,
    lang TEXT NOT NULL,
    native_order INTEGER,
    label TEXT NOT NULL,
    PRIMARY KEY (id, lang, native_order)
);

CREATE TABLE IF NOT EXISTS db_info (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""


def create_all_tables(conn: sqlite3.Connection) -> None:
    """Create every relation and record the schema version. Idempotent."""
    conn.executescript(_TABLES_SQL)
    conn.execute(
        "INSERT OR REPLACE INTO db_info (key, value) VALUES ('schema_version', ?)",
        (SCHEMA_VERSION,),
    )
    conn.commit()
    logger.debug(f"Created geo schema v{SCHEMA_VERSION}")
