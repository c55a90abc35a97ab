"""
Unit tests for source connectors

Tests:
- SelectBuilder: select list, filters, ordering, quoting
- RelationalSource over SQLite
- FileDBSource: record-as-directory store
- StagedTableSource and SourceConnectorFactory
"""

import os

import pytest

from catalogsync.db.connection import SQLiteConnection, quote_bracket, quote_identifier
from catalogsync.exceptions import ConfigurationError, SourceError
from catalogsync.schema.models import SourceSchema, SourceTableConfig
from catalogsync.source.filedb_source import FileDBSource
from catalogsync.source.source_factory import SourceConnectorFactory
from catalogsync.source.sql_source import RelationalSource, SelectBuilder
from catalogsync.source.staged_source import StagedTableSource


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def artikel_table():
    return SourceTableConfig(
        name="Artikel",
        table="dbo.Artikel",
        fields=("Artikel", {"Nummer": "Artikelnummer"}, "Bezeichnung"),
        default_filter={"Art": {"lt": 255}, "Internet": 1, "Mandant": {"in": [1, 2]}},
        order="Artikelnummer desc, Artikel",
    )


@pytest.fixture
def erp_db(tmp_path):
    """SQLite ERP copy with three articles"""
    path = str(tmp_path / "erp.db")
    connection = SQLiteConnection(path)
    connection.execute_script(
        "CREATE TABLE Artikel (Artikel INTEGER, Artikelnummer TEXT, Bezeichnung TEXT, Internet INTEGER);"
    )
    connection.execute_many("INSERT INTO Artikel VALUES (?, ?, ?, ?)", [
        (1, "A-1", "Stuhl", 1),
        (2, "A-2", "Tisch", 0),
        (3, "A-3", "Regal", 1),
    ])
    connection.close()
    return path


@pytest.fixture
def filedb(tmp_path):
    """FileDB tree with two single-key and one composite-key record"""
    base = tmp_path / "filedb"
    for key, fields in (("100", {"Name": "Stuhl\r\n", "Preis": "12.5"}), ("200", {"Name": "Tisch"})):
        record = base / "artikel" / key
        record.mkdir(parents=True)
        for name, content in fields.items():
            (record / f"{name}.txt").write_text(content, encoding="utf-8")

    composite = base / "preise" / "100__EUR"
    composite.mkdir(parents=True)
    (composite / "Betrag.txt").write_text("12.5", encoding="utf-8")
    (base / "preise" / "kaputt").mkdir()
    return str(base)


# ============================================================================
# TEST: SelectBuilder
# ============================================================================


class TestSelectBuilder:
    """Tests for SELECT statement building"""

    def test_full_statement(self, artikel_table):
        sql, params = SelectBuilder(quote_bracket).build(artikel_table)

        assert sql == (
            "SELECT [Artikel], [Artikelnummer] AS [Nummer], [Bezeichnung] FROM [dbo].[Artikel] "
            "WHERE [Art] < ? AND [Internet] = ? AND [Mandant] IN (?, ?) "
            "ORDER BY [Artikelnummer] DESC, [Artikel]"
        )
        assert params == [255, 1, 1, 2]

    def test_double_quote_style(self, artikel_table):
        sql, _ = SelectBuilder(quote_identifier).build(artikel_table)
        assert sql.startswith('SELECT "Artikel", "Artikelnummer" AS "Nummer"')

    def test_empty_in_list(self):
        params = []
        assert SelectBuilder().build_predicate("Art", "in", [], params) == "1 = 0"
        assert SelectBuilder().build_predicate("Art", "not_in", [], params) == "1 = 1"
        assert params == []

    def test_between_and_null_checks(self):
        params = []
        builder = SelectBuilder()
        assert builder.build_predicate("VK3", "between", [1, 10], params) == "[VK3] BETWEEN ? AND ?"
        assert builder.build_predicate("EAN", "not_null", None, params) == "[EAN] IS NOT NULL"
        assert builder.build_predicate("EAN", "is_null", None, params) == "[EAN] IS NULL"
        assert params == [1, 10]

    def test_between_needs_two_values(self):
        with pytest.raises(ConfigurationError):
            SelectBuilder().build_predicate("VK3", "between", [1], [])

    def test_unknown_operator(self):
        with pytest.raises(ConfigurationError):
            SelectBuilder().build_predicate("VK3", "approx", 1, [])

    def test_missing_fields(self):
        with pytest.raises(ConfigurationError):
            SelectBuilder().build(SourceTableConfig(name="Artikel", table="Artikel"))

    def test_filter_values_are_bound(self):
        table = SourceTableConfig(name="t", table="t", fields=("a",), default_filter={"a": "x'; DROP TABLE t; --"})
        sql, params = SelectBuilder().build(table)
        assert "DROP" not in sql
        assert params == ["x'; DROP TABLE t; --"]


# ============================================================================
# TEST: RelationalSource
# ============================================================================


class TestRelationalSource:
    """Tests for reading from a SQLite source"""

    def test_fetch_with_filter(self, erp_db):
        source = RelationalSource(SQLiteConnection(erp_db), "sqlite")
        table = SourceTableConfig(
            name="Artikel",
            table="Artikel",
            fields=("Artikel", {"Name": "Bezeichnung"}),
            default_filter={"Internet": 1},
            order="Artikel desc",
        )
        rows = source.fetch(table)
        source.close()

        assert rows == [{"Artikel": 3, "Name": "Regal"}, {"Artikel": 1, "Name": "Stuhl"}]

    def test_rows_are_cached_per_run(self, erp_db):
        source = RelationalSource(SQLiteConnection(erp_db), "sqlite")
        table = SourceTableConfig(name="Artikel", table="Artikel", fields=("Artikel",))
        assert source.fetch(table) is source.fetch(table)
        source.clear_cache()
        assert len(source.fetch(table)) == 3
        source.close()


# ============================================================================
# TEST: FileDBSource
# ============================================================================


class TestFileDBSource:
    """Tests for the record-as-directory store"""

    def test_reads_records(self, filedb):
        source = FileDBSource(filedb)
        table = SourceTableConfig(name="artikel", table="artikel", fields=("Name", "Preis"), key_fields=("Nr",))

        rows = source.fetch(table)
        assert rows == [
            {"Nr": "100", "Name": "Stuhl", "Preis": "12.5"},
            {"Nr": "200", "Name": "Tisch", "Preis": None},
        ]

    def test_composite_keys(self, filedb):
        source = FileDBSource(filedb)
        table = SourceTableConfig(
            name="preise", table="preise", fields=("Betrag",), key_fields=("Nr", "Waehrung"),
        )
        assert source.fetch(table) == [{"Nr": "100", "Waehrung": "EUR", "Betrag": "12.5"}]

    def test_missing_base_path(self, tmp_path):
        with pytest.raises(SourceError):
            FileDBSource(str(tmp_path / "nope"))

    def test_missing_keys(self, filedb):
        table = SourceTableConfig(name="artikel", table="artikel", fields=("Name",))
        with pytest.raises(ConfigurationError):
            FileDBSource(filedb).fetch(table)

    def test_missing_folder(self, filedb):
        table = SourceTableConfig(name="kunden", table="kunden", fields=("Name",), key_fields=("Nr",))
        with pytest.raises(SourceError):
            FileDBSource(filedb).fetch(table)

    def test_filename_case(self, filedb):
        source = FileDBSource(filedb, extension="txt", filename_case="lower")
        assert source.field_filename("Name") == "name.txt"

    def test_from_options_relative_path(self, filedb):
        parent, name = os.path.split(filedb)
        source = FileDBSource.from_options({"base_path": name, "base_dir": parent})
        assert source.base_path == filedb

        with pytest.raises(ConfigurationError):
            FileDBSource.from_options({})


# ============================================================================
# TEST: Staged source and factory
# ============================================================================


class TestStagedSourceAndFactory:
    """Tests for the pre-staged source and driver dispatch"""

    def test_staged_table(self):
        target = SQLiteConnection(":memory:")
        target.query("CREATE TABLE media_files (path TEXT, file_name TEXT)")
        target.query("INSERT INTO media_files VALUES ('bilder/a.jpg', 'a.jpg')")

        source = StagedTableSource(target)
        table = SourceTableConfig(name="media_files", table="media_files", fields=("path",))
        assert source.fetch(table) == [{"path": "bilder/a.jpg", "file_name": "a.jpg"}]

        target.query("INSERT INTO media_files VALUES ('bilder/b.jpg', 'b.jpg')")
        assert len(source.fetch(table)) == 2

        with pytest.raises(SourceError):
            source.fetch(SourceTableConfig(name="ghost", table="ghost"))
        target.close()

    def test_factory_dispatch(self, erp_db, filedb):
        sqlite_schema = SourceSchema(driver="sqlite", options={"path": erp_db})
        connector = SourceConnectorFactory.create_connector(sqlite_schema)
        assert isinstance(connector, RelationalSource)
        connector.close()

        filedb_schema = SourceSchema(driver="filedb", options={"base_path": filedb})
        assert isinstance(SourceConnectorFactory.create_connector(filedb_schema), FileDBSource)

        staged_schema = SourceSchema(driver="filecatcher")
        target = SQLiteConnection(":memory:")
        assert isinstance(
            SourceConnectorFactory.create_connector(staged_schema, target_connection=target),
            StagedTableSource,
        )
        target.close()

    def test_factory_configuration_errors(self):
        with pytest.raises(ConfigurationError):
            SourceConnectorFactory.create_connector(SourceSchema(driver="mssql"))
        with pytest.raises(ConfigurationError):
            SourceConnectorFactory.create_connector(SourceSchema(driver="sqlite"))
        with pytest.raises(ConfigurationError):
            SourceConnectorFactory.create_connector(SourceSchema(driver="filecatcher"))
        with pytest.raises(ConfigurationError):
            SourceConnectorFactory.create_connector(SourceSchema(driver="csv"))
