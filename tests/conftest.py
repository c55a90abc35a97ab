"""
Pytest configuration and shared fixtures.

Provides a temporary sync project: a small ERP database read through the
SQLite source driver, a manifest for it and a target store created from
schemas/evo.sql.
"""

import os

import pytest

from catalogsync.db.connection import SQLiteConnection
from catalogsync.schema.loader import load_manifest
from catalogsync.source.source_factory import SourceSet
from catalogsync.sync.batch_engine import BatchSyncEngine
from catalogsync.target.target_mapper import TargetMapper

SCHEMA_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "schemas"))

ERP_DDL = """
CREATE TABLE Warengruppe (Warengruppe INTEGER, Anhang INTEGER, Bezeichnung TEXT, Internet INTEGER);
CREATE TABLE Bilder (Datei TEXT);
CREATE TABLE Artikel (
    Artikel INTEGER, Artikelnummer TEXT, Bezeichnung TEXT, EANNummer TEXT, VK3 REAL,
    Warengruppe INTEGER, Internet INTEGER, Bild1 TEXT, Bild2 TEXT
);
"""

ERP_SCHEMA = """
driver: sqlite
source:
  path: erp.db
tables:
  Warengruppe:
    fields: [Warengruppe, Anhang, Bezeichnung, Internet]
  Bilder:
    fields: [Datei]
  Artikel:
    source:
      table: Artikel
      order: Artikelnummer
    fields: [Artikel, Artikelnummer, Bezeichnung, EANNummer, VK3, Warengruppe, Internet, Bild1, Bild2]
"""

MANIFEST = """
sources:
  erp:
    schema: erp.yml
target:
  evo:
    schema: {target_schema}
priority:
  media: 15
category_paths:
  from: erp.Warengruppe
entities:
  category:
    from: erp.Warengruppe
    map:
      evo.category.afs_id: "ERP.Warengruppe.Warengruppe | to_int"
      evo.category.parent_afs_id: "ERP.Warengruppe.Anhang | to_int"
      evo.category.name: "ERP.Warengruppe.Bezeichnung | trim"
      evo.category.online: "ERP.Warengruppe.Internet | bool_to_int"
      evo.category.seo_slug: "ERP.Warengruppe.Warengruppe | category_path"
  media:
    from: erp.Bilder
    map:
      evo.media.file_name: "ERP.Bilder.Datei | basename"
      evo.media.path: "ERP.Bilder.Datei"
  artikel:
    from: erp.Artikel
    map:
      evo.artikel.afs_id: "ERP.Artikel.Artikel | to_int"
      evo.artikel.model: "ERP.Artikel.Artikelnummer | trim"
      evo.artikel.name: "ERP.Artikel.Bezeichnung | trim | default:'Unbenannt'"
      evo.artikel.ean: "ERP.Artikel.EANNummer | trim | null_if_empty"
      evo.artikel.price: "ERP.Artikel.VK3 | to_decimal | round(2)"
      evo.artikel.category: "ERP.Artikel.Warengruppe"
      evo.artikel.online: "ERP.Artikel.Internet | bool_to_int"
    resolve:
      artikel.category:
        lookup: category_by_afs_id
        missing: 0
    change_tracking:
      table: artikel
      key_column: model
    relations:
      images:
        table: artikel_media
        parent_column: artikel_id
        child_column: media_id
        lookup: {{table: media, key: file_name, match: basename}}
        fields: [Bild1, Bild2]
        dedupe: basename
"""

CATEGORIES = [
    (1, 0, "Büro", 1),
    (2, 1, "Stühle", 1),
]

ARTICLES = [
    (100, "A-100", "Drehstuhl", "4001234567890", 199.0, 2, 1, "bilder\\a.jpg", "b.jpg"),
    (101, "A-101", "Tisch", "4001234567890", 99.5, 1, 1, "a.jpg", None),
    (102, "A-102", None, None, 5.0, 999, 0, None, None),
    (103, "  ", "Ohne Nummer", None, 1.0, 1, 1, None, None),
]


class Project:
    """Temporary ERP database, manifest and target store"""

    def __init__(self, root):
        self.root = str(root)
        self.erp_path = os.path.join(self.root, "erp.db")
        self.manifest_path = os.path.join(self.root, "manifest.yml")

        erp = SQLiteConnection(self.erp_path)
        erp.execute_script(ERP_DDL)
        erp.execute_many("INSERT INTO Warengruppe VALUES (?, ?, ?, ?)", CATEGORIES)
        erp.execute_many("INSERT INTO Bilder VALUES (?)", [("bilder/a.jpg",), ("bilder/b.jpg",)])
        erp.execute_many("INSERT INTO Artikel VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)", ARTICLES)
        erp.close()

        with open(os.path.join(self.root, "erp.yml"), "w", encoding="utf-8") as f:
            f.write(ERP_SCHEMA)
        with open(self.manifest_path, "w", encoding="utf-8") as f:
            f.write(MANIFEST.format(target_schema=os.path.join(SCHEMA_DIR, "evo.yml")))

        self.target = SQLiteConnection(os.path.join(self.root, "evo.db"))
        with open(os.path.join(SCHEMA_DIR, "evo.sql"), encoding="utf-8") as f:
            self.target.execute_script(f.read())

    def erp(self, sql, params=None):
        connection = SQLiteConnection(self.erp_path)
        connection.query(sql, params)
        connection.close()

    def engine(self, status=None, bind_limit=999):
        manifest = load_manifest(self.manifest_path)
        mapper = TargetMapper.from_file(manifest.target.schema_path)
        sources = SourceSet.from_manifest(manifest, target_connection=self.target)
        return BatchSyncEngine(manifest, sources, mapper, self.target, status=status, bind_limit=bind_limit)

    def run(self, status=None, engine=None):
        engine = engine or self.engine(status)
        try:
            return {name: engine.sync_entity(name) for name in engine.list_entity_names()}
        finally:
            engine.sources.close()

    def artikel(self, model):
        rows = self.target.fetch_all("SELECT * FROM artikel WHERE model = ?", (model,))
        return rows[0] if rows else None


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def project(tmp_path):
    """Provide a fresh sync project (closed after the test)."""
    project = Project(tmp_path)
    yield project
    project.target.close()
