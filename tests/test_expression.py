"""
Unit tests for the expression engine and map builders

Tests:
- ExpressionEngine: references, pipes, default, case, $func calls, arithmetic
- FieldBuilder: target paths and literal values
- PayloadBuilder: payloads per target table
"""

import pytest

from catalogsync.builder.expression import ExpressionEngine, parse_literal, split_top_level
from catalogsync.builder.field_builder import FieldBuilder, parse_target_path
from catalogsync.builder.payload_builder import PayloadBuilder, build_context
from catalogsync.exceptions import ConfigurationError
from catalogsync.schema.models import EntityConfig
from catalogsync.sync.lookups import LookupStore
from catalogsync.transformer.registry import TransformerRegistry


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    return ExpressionEngine()


@pytest.fixture
def artikel_row():
    """Sample AFS Artikel row"""
    return {
        "Artikel": 4910,
        "Artikelnummer": " A-4910 ",
        "Bezeichnung": "  Drehstuhl Comfort ",
        "Kurztext": None,
        "Art": 1,
        "VK3": "12,5",
        "EK": 10,
        "Umsatzsteuer": 19.0,
        "Warengruppe": 2,
        "Bild1": "C:\\Bilder\\stuhl.jpg",
    }


@pytest.fixture
def context(artikel_row):
    return build_context("afs", "Artikel", artikel_row)


# ============================================================================
# TEST: Lexical helpers
# ============================================================================


class TestLexicalHelpers:
    """Tests for splitting and literal parsing"""

    def test_split_ignores_quoted_pipes(self):
        assert split_top_level("'a|b' | upper", "|") == ["'a|b' ", " upper"]

    def test_split_ignores_pipes_in_parentheses(self):
        parts = split_top_level("$func.concat(a, '|', b) | trim", "|")
        assert parts[0].strip() == "$func.concat(a, '|', b)"
        assert len(parts) == 2

    @pytest.mark.parametrize("literal,expected", [
        ("12", 12),
        ("-3.5", -3.5),
        ("true", True),
        ("False", False),
        ("null", None),
        ("~", None),
        ("'quoted'", "quoted"),
        ("plain", "plain"),
        ("", ""),
    ])
    def test_parse_literal(self, literal, expected):
        assert parse_literal(literal) == expected


# ============================================================================
# TEST: ExpressionEngine
# ============================================================================


class TestReferences:
    """Tests for base references"""

    def test_context_path(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Artikel", context) == 4910
        assert engine.evaluate("afs.Artikel.Artikel", context) == 4910
        assert engine.evaluate("Artikel.Art", context) == 1

    def test_missing_path_is_none(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Unbekannt", context) is None
        assert engine.evaluate("AFS.Kunde.Name", context) is None

    def test_literals(self, engine, context):
        assert engine.evaluate("42", context) == 42
        assert engine.evaluate("3.5", context) == 3.5
        assert engine.evaluate("'text'", context) == "text"
        assert engine.evaluate("null", context) is None
        assert engine.evaluate("=true", context) is True
        assert engine.evaluate("=12", context) == 12

    def test_empty_expression(self, engine, context):
        assert engine.evaluate("", context) is None
        assert engine.evaluate(None, context) is None

    def test_compile_is_cached(self, engine):
        assert engine.compile("AFS.Artikel.Art | to_int") is engine.compile("AFS.Artikel.Art | to_int")


class TestPipes:
    """Tests for transform chains"""

    def test_trim_then_default(self, engine, context, artikel_row):
        expression = "AFS.Artikel.Bezeichnung | trim | default:'Unbenannt'"
        assert engine.evaluate(expression, context) == "Drehstuhl Comfort"

        artikel_row["Bezeichnung"] = "   "
        assert engine.evaluate(expression, context) == "Unbenannt"

        artikel_row["Bezeichnung"] = None
        assert engine.evaluate(expression, context) == "Unbenannt"

    def test_quoted_pipe_is_not_a_separator(self, engine, context):
        assert engine.evaluate("'a|b' | upper", context) == "A|B"

    def test_call_arguments(self, engine, context):
        assert engine.evaluate("AFS.Artikel.VK3 | to_decimal | round(0)", context) == 12.0
        assert engine.evaluate("AFS.Artikel.Umsatzsteuer | tax_map", context) == 1

    def test_colon_argument(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Kurztext | default:0", context) == 0

    def test_unknown_transformer_passes_value(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Art | does_not_exist", context) == 1

    def test_default_keeps_present_value(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Art | default:5", context) == 1

    def test_default_from_path(self, engine, context):
        value = engine.evaluate("AFS.Artikel.Kurztext | default:AFS.Artikel.Bezeichnung | trim", context)
        assert value == "Drehstuhl Comfort"

    def test_default_arithmetic(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Kurztext | default:AFS.Artikel.EK * 2", context) == 20.0
        assert engine.evaluate("AFS.Artikel.Kurztext | default:(AFS.Artikel.EK + 2) / 4", context) == 3.0

    def test_default_literal_with_operator(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Kurztext | default:n/a", context) == "n/a"


class TestCase:
    """Tests for the case step"""

    @pytest.mark.parametrize("art,expected", [
        (1, "Artikel"),
        (2.0, "Set"),
        (7, "Sonstiges"),
    ])
    def test_case_arms(self, engine, context, artikel_row, art, expected):
        artikel_row["Art"] = art
        expression = "AFS.Artikel.Art | case(1->'Artikel', 2->'Set', else->'Sonstiges')"
        assert engine.evaluate(expression, context) == expected

    def test_case_without_else_keeps_value(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Art | case(5->'x')", context) == 1

    def test_case_boolean_arms(self, engine, context):
        assert engine.evaluate("AFS.Artikel.Art | case(true->'online', false->'offline')", context) == "online"


class TestFunctions:
    """Tests for $func calls"""

    def test_func_with_pipe_in_argument(self, engine, context):
        value = engine.evaluate("$func.concat(AFS.Artikel.Artikel, '|', AFS.Artikel.Art)", context)
        assert value == "4910|1"

    def test_func_result_is_piped(self, engine, context):
        value = engine.evaluate("$func.coalesce(AFS.Artikel.Kurztext, AFS.Artikel.Bezeichnung) | trim", context)
        assert value == "Drehstuhl Comfort"

    def test_unknown_function_is_none(self, engine, context):
        assert engine.evaluate("$func.nope(AFS.Artikel.Art)", context) is None

    def test_lookup_backed_function(self, context):
        lookups = LookupStore()
        lookups.set("category_by_afs_id", {2: 17})
        engine = ExpressionEngine(TransformerRegistry(lookups=lookups))

        assert engine.evaluate("$func.resolve_category_id(AFS.Artikel.Warengruppe)", context) == 17
        assert engine.evaluate("AFS.Artikel.Warengruppe | resolve_category_id", context) == 17


# ============================================================================
# TEST: FieldBuilder
# ============================================================================


class TestFieldBuilder:
    """Tests for compiling map sections"""

    def test_parse_target_path(self):
        assert parse_target_path("evo.artikel.model") == ("artikel", "model")
        assert parse_target_path("evo.artikel.model.extra") == ("artikel", "model")

    @pytest.mark.parametrize("path", ["artikel.model", "evo..model", "model"])
    def test_invalid_target_path(self, path):
        with pytest.raises(ConfigurationError):
            parse_target_path(path)

    def test_compile_map_kinds(self):
        assignments = FieldBuilder().compile_map({
            "evo.artikel.model": "AFS.Artikel.Artikelnummer | trim",
            "evo.artikel.online": 1,
            "evo.artikel.remark": None,
        })
        kinds = {(a.table, a.column): a.kind for a in assignments}
        assert kinds == {
            ("artikel", "model"): "expression",
            ("artikel", "online"): "literal",
            ("artikel", "remark"): "literal",
        }

    def test_entity_cache(self):
        builder = FieldBuilder()
        entity = EntityConfig(name="artikel", source_id="afs", table="Artikel", map={"evo.artikel.model": "x"})
        assert builder.compile_entity(entity) is builder.compile_entity(entity)


# ============================================================================
# TEST: PayloadBuilder
# ============================================================================


class TestPayloadBuilder:
    """Tests for payload construction"""

    def test_build_groups_by_table(self, engine, context):
        assignments = FieldBuilder(engine).compile_map({
            "evo.artikel.model": "AFS.Artikel.Artikelnummer | trim",
            "evo.artikel.name": "AFS.Artikel.Bezeichnung | trim | default:'Unbenannt'",
            "evo.artikel.tags": ["neu"],
            "evo.media.file_name": "AFS.Artikel.Bild1 | basename",
        })
        payloads = PayloadBuilder(engine).build(assignments, context)

        assert payloads == {
            "artikel": {"model": "A-4910", "name": "Drehstuhl Comfort", "tags": ["neu"]},
            "media": {"file_name": "stuhl.jpg"},
        }

    def test_literals_are_copied(self, engine, context):
        assignments = FieldBuilder(engine).compile_map({"evo.artikel.tags": ["neu"]})
        builder = PayloadBuilder(engine)

        first = builder.build(assignments, context)
        first["artikel"]["tags"].append("x")
        assert builder.build(assignments, context)["artikel"]["tags"] == ["neu"]

    def test_context_aliases(self, artikel_row):
        context = build_context("afs", "Artikel", artikel_row, {"2": "buero"})
        assert context["afs"]["Artikel"] is artikel_row
        assert context["AFS"]["Artikel"] is artikel_row
        assert context["ARTIKEL"] is artikel_row

        engine = ExpressionEngine()
        assert engine.evaluate("AFS.Artikel.Warengruppe | category_path", context) == "buero"
