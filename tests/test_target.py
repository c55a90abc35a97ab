"""
Unit tests for the target store writers

Tests:
- TargetMapper: upsert/delete/merge statement shapes and key lookup
- StagingWriter: bind-limit chunking, merge counts, idempotent re-runs
- SQLiteConnection: transactions and scripts
"""

import os

import pytest

from catalogsync.db.connection import SQLiteConnection
from catalogsync.exceptions import ConfigurationError, DatabaseError, ValidationError
from catalogsync.schema.models import TargetSchema, TargetTableConfig
from catalogsync.target.staging import StagingWriter, rows_per_batch
from catalogsync.target.target_mapper import TargetMapper

SCHEMA_DIR = os.path.join(os.path.dirname(__file__), "..", "schemas")

WIDE_COLUMNS = ["k"] + [f"c{i}" for i in range(1, 30)]


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def mapper():
    return TargetMapper.from_file(os.path.join(SCHEMA_DIR, "evo.yml"))


@pytest.fixture
def wide_store():
    """In-memory store with a 30 column table keyed on ``k``"""
    connection = SQLiteConnection(":memory:")
    columns = ", ".join(f"{c} TEXT" for c in WIDE_COLUMNS[1:])
    connection.query(f"CREATE TABLE wide (id INTEGER PRIMARY KEY AUTOINCREMENT, k TEXT NOT NULL UNIQUE, {columns})")
    yield connection
    connection.close()


@pytest.fixture
def wide_mapper():
    schema = TargetSchema(tables={
        "wide": TargetTableConfig(name="wide", business_key=("k",), columns=tuple(["id"] + WIDE_COLUMNS)),
        "nokey": TargetTableConfig(name="nokey", columns=("a",)),
    })
    return TargetMapper(schema)


def wide_rows(count, suffix=""):
    return [
        {column: f"{column}-{n}{suffix if column != 'k' else ''}" for column in WIDE_COLUMNS}
        for n in range(count)
    ]


# ============================================================================
# TEST: TargetMapper
# ============================================================================


class TestTargetMapper:
    """Tests for statement shapes"""

    def test_unique_keys(self, mapper):
        assert mapper.unique_keys("artikel") == ["model"]
        assert mapper.unique_keys("artikel_media") == ["artikel_id", "media_id"]

    def test_unique_keys_errors(self, mapper, wide_mapper):
        with pytest.raises(ConfigurationError):
            mapper.unique_keys("kunden")
        with pytest.raises(ConfigurationError):
            wide_mapper.unique_keys("nokey")

    def test_upsert_sql(self, mapper):
        sql = mapper.upsert_sql("artikel", ["name", "model"])
        assert sql == (
            'INSERT INTO "artikel" ("model", "name") VALUES (?, ?) '
            'ON CONFLICT("model") DO UPDATE SET "name" = excluded."name"'
        )

    def test_upsert_sql_key_only(self, mapper):
        sql = mapper.upsert_sql("artikel_media", ["media_id", "artikel_id"])
        assert sql.endswith('ON CONFLICT("artikel_id", "media_id") DO NOTHING')

    def test_upsert_sql_is_cached_by_column_set(self, mapper):
        assert mapper.upsert_sql("artikel", ["model", "name"]) is mapper.upsert_sql("artikel", ["name", "model"])

    def test_delete_sql(self, mapper):
        assert mapper.delete_sql("artikel_media", ["artikel_id", "media_id"]) == (
            'DELETE FROM "artikel_media" WHERE "artikel_id" = ? AND "media_id" = ?'
        )
        with pytest.raises(ValidationError):
            mapper.delete_sql("artikel_media", [])

    def test_merge_sql(self, mapper):
        sql, insert_only = mapper.merge_sql("artikel", "_stg_artikel", ["model", "name"])
        assert insert_only is False
        assert sql == (
            'INSERT INTO "artikel" ("model", "name") SELECT "model", "name" FROM "_stg_artikel" WHERE true '
            'ON CONFLICT("model") DO UPDATE SET "name" = excluded."name" '
            'WHERE "artikel"."name" IS NOT excluded."name"'
        )

    def test_merge_sql_key_only(self, mapper):
        sql, insert_only = mapper.merge_sql("attribute", "_stg_attribute", ["name"])
        assert insert_only is True
        assert sql.startswith('INSERT OR IGNORE INTO "attribute"')

    def test_describe(self, mapper):
        statements = mapper.describe("artikel")
        assert set(statements) == {"upsert", "delete", "merge"}
        assert "ON CONFLICT" in statements["merge"]

    def test_upsert_and_delete_execute(self, mapper):
        connection = SQLiteConnection(":memory:")
        with open(os.path.join(SCHEMA_DIR, "evo.sql"), encoding="utf-8") as f:
            connection.execute_script(f.read())

        mapper.upsert(connection, "attribute", {"name": "Farbe"})
        mapper.upsert(connection, "attribute", {"name": "Farbe"})
        assert connection.row_count("attribute") == 1

        assert mapper.delete(connection, "attribute", {"name": "Farbe"}) == 1
        assert connection.row_count("attribute") == 0
        connection.close()


# ============================================================================
# TEST: StagingWriter
# ============================================================================


class TestStagingWriter:
    """Tests for staged, set-based writes"""

    @pytest.mark.parametrize("columns,limit,expected", [
        (30, 999, 33),
        (1, 999, 999),
        (1000, 999, 1),
        (0, 999, 1),
    ])
    def test_rows_per_batch(self, columns, limit, expected):
        assert rows_per_batch(columns, limit) == expected

    def test_bind_limit_must_be_positive(self, wide_store, wide_mapper):
        with pytest.raises(ValidationError):
            rows_per_batch(30, 0)
        with pytest.raises(ValidationError):
            StagingWriter(wide_store, wide_mapper, bind_limit=0)

    def test_batches_stay_under_bind_limit(self, wide_store, wide_mapper):
        writer = StagingWriter(wide_store, wide_mapper, bind_limit=999)
        result = writer.write_table("wide", wide_rows(2000))

        assert result.staged == 2000
        assert result.inserted == 2000
        assert result.updated == 0
        assert max(result.batches) <= 999
        assert sum(result.batches) == 2000 * 30
        assert len(result.batches) == 61
        assert wide_store.row_count("wide") == 2000

    def test_rerun_is_idempotent(self, wide_store, wide_mapper):
        writer = StagingWriter(wide_store, wide_mapper)
        writer.write_table("wide", wide_rows(50))

        result = writer.write_table("wide", wide_rows(50))
        assert (result.inserted, result.updated) == (0, 0)
        assert wide_store.row_count("wide") == 50

    def test_changed_rows_are_updated(self, wide_store, wide_mapper):
        writer = StagingWriter(wide_store, wide_mapper)
        writer.write_table("wide", wide_rows(10))

        rows = wide_rows(10)
        for row in rows[:3]:
            row["c5"] = "neu"
        rows.extend(wide_rows(12)[10:])

        result = writer.write_table("wide", rows)
        assert result.inserted == 2
        assert result.updated == 3
        assert wide_store.fetch_value("SELECT c5 FROM wide WHERE k = 'k-0'") == "neu"

    def test_ids_are_kept_on_update(self, wide_store, wide_mapper):
        writer = StagingWriter(wide_store, wide_mapper)
        writer.write_table("wide", wide_rows(3))
        before = wide_store.fetch_value("SELECT id FROM wide WHERE k = 'k-1'")

        writer.write_table("wide", wide_rows(3, suffix="x"))
        assert wide_store.fetch_value("SELECT id FROM wide WHERE k = 'k-1'") == before

    def test_unknown_columns_are_ignored(self, wide_store, wide_mapper):
        writer = StagingWriter(wide_store, wide_mapper)
        result = writer.write_table("wide", [{"k": "x", "c1": "a", "bogus": 1}])

        assert result.inserted == 1
        assert "bogus" not in wide_store.table_columns("wide")

    def test_staging_table_is_dropped(self, wide_store, wide_mapper):
        StagingWriter(wide_store, wide_mapper).write_table("wide", wide_rows(2))
        leftover = wide_store.fetch_all("SELECT name FROM sqlite_temp_master WHERE name = '_stg_wide'")
        assert leftover == []

    def test_missing_target_table(self, wide_mapper):
        connection = SQLiteConnection(":memory:")
        with pytest.raises(DatabaseError):
            StagingWriter(connection, wide_mapper).write_table("wide", wide_rows(1))
        connection.close()

    def test_empty_rows(self, wide_store, wide_mapper):
        result = StagingWriter(wide_store, wide_mapper).write_table("wide", [])
        assert (result.staged, result.inserted, result.updated) == (0, 0, 0)


# ============================================================================
# TEST: SQLiteConnection
# ============================================================================


class TestSQLiteConnection:
    """Tests for transaction handling"""

    def test_transaction_rolls_back(self, wide_store):
        with pytest.raises(DatabaseError):
            with wide_store.transaction():
                wide_store.query("INSERT INTO wide (k) VALUES ('a')")
                wide_store.query("INSERT INTO wide (k) VALUES ('a')")

        assert wide_store.row_count("wide") == 0
        assert not wide_store.in_transaction

    def test_database_error_carries_sql(self, wide_store):
        with pytest.raises(DatabaseError) as info:
            wide_store.query("SELECT * FROM nowhere")
        assert "nowhere" in info.value.sql
        assert "[SQL:" in str(info.value)

    def test_execute_script_counts_statements(self):
        connection = SQLiteConnection(":memory:")
        count = connection.execute_script("CREATE TABLE a (x INTEGER); CREATE TABLE b (y TEXT);")
        assert count == 2
        assert connection.table_exists("a") and connection.table_exists("b")
        assert connection.table_columns("b") == ["y"]
        connection.close()
