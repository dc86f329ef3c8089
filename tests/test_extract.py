"""Tests for role classification and per-role row extraction."""

from dataclasses import replace

import pytest

from builders import (
    CITY,
    CITY_STATE,
    NEIGHBORHOOD,
    STATE,
    claim,
    coordinate_value,
    entity_json,
    item_value,
    quantity_value,
    snak,
    string_value,
    text_value,
    time_value,
    year,
)
from geo_db.importers.extract import (
    classify,
    extract_country,
    extract_human_settlement,
    extract_language,
    extract_rows,
    extract_territorial_entity,
    is_dissolved,
    parse_quantity,
)
from geo_db.models import (
    LANGUAGE_CLASS,
    P_APPLIES_TO_PART,
    P_COORDINATE_LOCATION,
    P_COUNTRY,
    P_DISSOLVED,
    P_END_TIME,
    P_FEMALE_POPULATION,
    P_INSTANCE_OF,
    P_ISO_CODE,
    P_LANGUAGE_CODE,
    P_LOCATED_IN,
    P_NATIVE_LABEL,
    P_OFFICIAL_LANGUAGE,
    P_OFFICIAL_NAME,
    P_POINT_IN_TIME,
    P_POPULATION,
    P_START_TIME,
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

PAST = time_value("+2000-01-01T00:00:00Z")
FUTURE = time_value("+2100-01-01T00:00:00Z")


def make_entity(entity_id: str = "Q1", *claims: dict, labels=None) -> Entity:
    return Entity.from_json(entity_json(entity_id, list(claims), labels))


def instance_of(qid: str) -> dict:
    return claim(P_INSTANCE_OF, item_value(qid))


def population(amount: str, when=None, unit: str = "1", extra=None) -> dict:
    quals = [snak(P_POINT_IN_TIME, when)] if when else []
    quals.extend(extra or [])
    return claim(P_POPULATION, quantity_value(amount, unit), quals or None)


def rows_of(rows, cls):
    return [r for r in rows if type(r) is cls]


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class TestClassify:
    def test_no_roles(self, taxonomies):
        assert classify(make_entity("Q5", instance_of("Q5")), taxonomies) == set()

    def test_iso_code_implies_country(self, taxonomies):
        entity = make_entity("Q183", claim(P_ISO_CODE, string_value("DE")))
        assert classify(entity, taxonomies) == {Role.COUNTRY}

    def test_settlement(self, taxonomies):
        assert classify(make_entity("Q64", instance_of(CITY)), taxonomies) == {Role.HUMAN_SETTLEMENT}

    def test_territorial_entity(self, taxonomies):
        assert classify(make_entity("Q64", instance_of(STATE)), taxonomies) == {Role.TERRITORIAL_ENTITY}

    def test_city_state_gets_every_role(self, taxonomies):
        entity = make_entity(
            "Q64",
            instance_of(CITY_STATE),
            claim(P_ISO_CODE, string_value("XB")),
        )
        assert classify(entity, taxonomies) == {
            Role.COUNTRY, Role.TERRITORIAL_ENTITY, Role.HUMAN_SETTLEMENT,
        }

    def test_language_is_direct_instance_of(self, taxonomies):
        assert classify(make_entity("Q188", instance_of(LANGUAGE_CLASS)), taxonomies) == {Role.LANGUAGE}

    def test_excluded_classes_block_places(self, taxonomies):
        excluding = replace(taxonomies, excluded=frozenset({NEIGHBORHOOD}))
        entity = make_entity("Q2", instance_of(CITY), instance_of(NEIGHBORHOOD))
        assert classify(entity, taxonomies) == {Role.HUMAN_SETTLEMENT}
        assert classify(entity, excluding) == set()

    def test_skip_dissolved(self, taxonomies):
        entity = make_entity("Q3", instance_of(CITY), claim(P_DISSOLVED, PAST))
        assert is_dissolved(entity)
        assert classify(entity, taxonomies) == {Role.HUMAN_SETTLEMENT}
        assert classify(entity, taxonomies, skip_dissolved=True) == set()


# ---------------------------------------------------------------------------
# Country
# ---------------------------------------------------------------------------

class TestExtractCountry:
    def test_lowercases_iso(self, reference):
        entity = make_entity("Q183", claim(P_ISO_CODE, string_value("DE")))
        assert extract_country(entity, reference) == [CountryRow(id="Q183", iso="de")]

    def test_first_currently_valid_code(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_ISO_CODE, string_value("AA"), [snak(P_END_TIME, PAST)]),
            claim(P_ISO_CODE, string_value("BB")),
        )
        assert extract_country(entity, reference)[0].iso == "bb"

    def test_falls_back_to_last_code(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_ISO_CODE, string_value("AA"), [snak(P_END_TIME, PAST)]),
            claim(P_ISO_CODE, string_value("BB"), [snak(P_START_TIME, FUTURE)]),
        )
        assert extract_country(entity, reference)[0].iso == "bb"

    def test_malformed_code_is_skipped(self, reference):
        entity = make_entity("Q1", claim(P_ISO_CODE, string_value("DEU")))
        assert extract_country(entity, reference) == []

    def test_unknown_value_is_skipped(self, reference):
        entity = make_entity("Q1", claim(P_ISO_CODE, snaktype="somevalue"))
        assert extract_country(entity, reference) == []


# ---------------------------------------------------------------------------
# Territorial entity
# ---------------------------------------------------------------------------

class TestExtractTerritorialEntity:
    def test_row_edges_and_languages(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_LOCATED_IN, item_value("Q10")),
            claim(P_LOCATED_IN, item_value("Q11"), [snak(P_END_TIME, PAST)]),
            claim(P_LOCATED_IN, item_value("Q12"), [snak(P_START_TIME, PAST)]),
            claim(P_OFFICIAL_LANGUAGE, item_value("Q188")),
            claim(P_OFFICIAL_LANGUAGE, item_value("Q150"), [snak(P_START_TIME, FUTURE)]),
        )
        rows = extract_territorial_entity(entity, reference)
        assert rows_of(rows, TerritorialEntityRow) == [TerritorialEntityRow(id="Q1")]
        assert [e.parent_id for e in rows_of(rows, ParentEdge)] == ["Q10", "Q12"]
        assert rows_of(rows, LanguageLink) == [LanguageLink(entity_id="Q1", language_id="Q188")]

    def test_no_claims_still_yields_entity_row(self, reference):
        assert extract_territorial_entity(make_entity("Q1"), reference) == [TerritorialEntityRow(id="Q1")]

    def test_duplicate_parents_are_kept(self, reference):
        entity = make_entity("Q1", claim(P_LOCATED_IN, item_value("Q10")), claim(P_LOCATED_IN, item_value("Q10")))
        assert len(rows_of(extract_territorial_entity(entity, reference), ParentEdge)) == 2

    def test_unknown_values_are_skipped(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_LOCATED_IN, snaktype="somevalue"),
            claim(P_OFFICIAL_LANGUAGE, snaktype="novalue"),
            claim(P_LOCATED_IN, string_value("not an item")),
        )
        assert extract_territorial_entity(entity, reference) == [TerritorialEntityRow(id="Q1")]


# ---------------------------------------------------------------------------
# Language
# ---------------------------------------------------------------------------

class TestExtractLanguage:
    def test_first_code(self, reference):
        entity = make_entity("Q188", claim(P_LANGUAGE_CODE, string_value("de")), claim(P_LANGUAGE_CODE, string_value("deu")))
        assert extract_language(entity, reference) == [LanguageRow(id="Q188", code="de")]

    def test_no_code(self, reference):
        assert extract_language(make_entity("Q188"), reference) == []

    def test_code_without_value(self, reference):
        entity = make_entity("Q188", claim(P_LANGUAGE_CODE, snaktype="novalue"))
        assert extract_language(entity, reference) == []


# ---------------------------------------------------------------------------
# Human settlement
# ---------------------------------------------------------------------------

class TestParseQuantity:
    @pytest.mark.parametrize("amount,expected", [
        ("+3645000", 3645000),
        ("1,234", 1234),
        (" +12 ", 12),
        ("0", 0),
        ("-5", -5),
        ("+1.5e3", None),
        ("", None),
    ])
    def test_parse(self, amount, expected):
        assert parse_quantity(amount) == expected


class TestExtractHumanSettlement:
    def test_requires_country(self, reference):
        entity = make_entity("Q64", population("+100"), labels={"en": "Berlin"})
        assert extract_human_settlement(entity, reference) == []

    def test_country_without_entity_is_skipped(self, reference):
        entity = make_entity("Q64", claim(P_COUNTRY, snaktype="somevalue"))
        assert extract_human_settlement(entity, reference) == []

    def test_basic_row(self, reference):
        entity = make_entity(
            "Q64",
            claim(P_COUNTRY, item_value("Q183")),
            claim(P_COORDINATE_LOCATION, coordinate_value(52.52, 13.405)),
            population("+3645000", year(2019)),
        )
        rows = extract_human_settlement(entity, reference)
        assert rows == [SettlementRow(id="Q64", country_id="Q183", population=3645000, lat=52.52, lon=13.405)]

    def test_country_prefers_currently_valid(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_COUNTRY, item_value("Q15180"), [snak(P_END_TIME, time_value("+1991-12-26T00:00:00Z"))]),
            claim(P_COUNTRY, item_value("Q159")),
        )
        assert extract_human_settlement(entity, reference)[0].country_id == "Q159"

    def test_population_latest_point_in_time(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_COUNTRY, item_value("Q183")),
            population("+1", year(2000)),
            population("+2", year(2020)),
            population("+3", year(2010)),
        )
        assert extract_human_settlement(entity, reference)[0].population == 2

    def test_population_qualified_beats_unqualified(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_COUNTRY, item_value("Q183")),
            population("+100", year(2019)),
            population("+200"),
        )
        assert extract_human_settlement(entity, reference)[0].population == 100

    def test_population_ignores_partial_and_unit_figures(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_COUNTRY, item_value("Q183")),
            population("+500", year(2015)),
            population("+900", year(2020), extra=[snak(P_FEMALE_POPULATION, quantity_value("+1"))]),
            population("+800", year(2021), extra=[snak(P_APPLIES_TO_PART, item_value("Q99"))]),
            population("+700", year(2022), unit="http://www.wikidata.org/entity/Q11573"),
        )
        assert extract_human_settlement(entity, reference)[0].population == 500

    def test_no_population(self, reference):
        entity = make_entity("Q1", claim(P_COUNTRY, item_value("Q183")))
        row = extract_human_settlement(entity, reference)[0]
        assert row.population is None
        assert row.lat is None and row.lon is None

    def test_unknown_coordinates(self, reference):
        entity = make_entity("Q1", claim(P_COUNTRY, item_value("Q183")), claim(P_COORDINATE_LOCATION, snaktype="somevalue"))
        assert extract_human_settlement(entity, reference)[0].lat is None

    def test_labels(self, reference):
        entity = make_entity("Q64", claim(P_COUNTRY, item_value("Q183")), labels={"en": "Berlin", "pl": "Berlin"})
        rows = rows_of(extract_human_settlement(entity, reference), LabelRow)
        assert {(r.lang, r.text) for r in rows} == {("en", "Berlin"), ("pl", "Berlin")}

    def test_malformed_label_is_skipped(self, reference):
        entity = make_entity("Q64", claim(P_COUNTRY, item_value("Q183")), labels={"en": "Berlin"})
        entity.labels[5] = "Berlin"
        rows = extract_human_settlement(entity, reference)
        assert rows_of(rows, SettlementRow)
        assert [(r.lang, r.text) for r in rows_of(rows, LabelRow)] == [("en", "Berlin")]

    def test_native_labels_numbered_in_order(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_COUNTRY, item_value("Q183")),
            claim(P_NATIVE_LABEL, text_value("München", "de")),
            claim(P_NATIVE_LABEL, text_value("Minga", "bar")),
            claim(P_OFFICIAL_NAME, text_value("Old Name", "de"), [snak(P_END_TIME, PAST)]),
            claim(P_OFFICIAL_NAME, text_value("Landeshauptstadt München", "de")),
        )
        natives = rows_of(extract_human_settlement(entity, reference), NativeLabelRow)
        assert [(n.order, n.lang, n.text) for n in natives] == [
            (0, "de", "München"),
            (1, "bar", "Minga"),
            (2, "de", "Landeshauptstadt München"),
        ]

    def test_native_label_with_wrong_type_is_skipped(self, reference):
        entity = make_entity(
            "Q1",
            claim(P_COUNTRY, item_value("Q183")),
            claim(P_NATIVE_LABEL, string_value("plain")),
            claim(P_NATIVE_LABEL, text_value("München", "de")),
        )
        natives = rows_of(extract_human_settlement(entity, reference), NativeLabelRow)
        assert [(n.order, n.text) for n in natives] == [(0, "München")]


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class TestExtractRows:
    def test_handlers_run_for_every_role(self, reference):
        entity = make_entity(
            "Q64",
            claim(P_ISO_CODE, string_value("XB")),
            claim(P_COUNTRY, item_value("Q183")),
            claim(P_LOCATED_IN, item_value("Q183")),
        )
        rows = extract_rows(entity, {Role.COUNTRY, Role.TERRITORIAL_ENTITY, Role.HUMAN_SETTLEMENT}, reference)
        assert [type(r) for r in rows] == [CountryRow, TerritorialEntityRow, ParentEdge, SettlementRow]

    def test_no_roles(self, reference):
        assert extract_rows(make_entity("Q1"), set(), reference) == []
