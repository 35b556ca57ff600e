"""
Tests for src/core/catalog.py + src/core/db.py: search, lookups, spreadsheet import.
"""
import sqlite3

import pytest
from openpyxl import Workbook

from src.core import catalog
from src.core.db import get_db
from src.core.errors import StoreUnavailable


def _write_xlsx(path, header, rows, title=None, extra_sheet_first=False):
    wb = Workbook()
    ws = wb.active
    if extra_sheet_first:
        ws.title = "resumo"
        ws.append(["nada aqui"])
        ws = wb.create_sheet(title or "dados")
    elif title:
        ws.title = title
    ws.append(header)
    for r in rows:
        ws.append(r)
    wb.save(path)
    return str(path)


# ═══════════════════════════════════════════════════════════════════════════════
# Product search
# ═══════════════════════════════════════════════════════════════════════════════

class TestProductSearch:

    def test_description_contains(self, seeded_catalog):
        codes = {r["code"] for r in catalog.search_products("parafuso")}
        assert codes == {"PAR-001", "PAR-002"}

    def test_case_insensitive(self, seeded_catalog):
        assert len(catalog.search_products("PARAFUSO")) == 2

    def test_code_prefix(self, seeded_catalog):
        assert [r["code"] for r in catalog.search_products("arr-")] == ["ARR-100"]

    def test_query_is_trimmed(self, seeded_catalog):
        assert len(catalog.search_products("  porca  ")) == 1

    def test_result_shape(self, seeded_catalog):
        row = catalog.search_products("arruela")[0]
        assert row == {"code": "ARR-100", "description": "Arruela lisa"}

    def test_short_query_returns_empty(self, seeded_catalog):
        assert catalog.search_products("p") == []
        assert catalog.search_products("") == []
        assert catalog.search_products(None) == []

    def test_limit_ten(self, temp_data_dir):
        catalog.load_products([{"code": f"C{i:03d}", "description": f"Cabo {i}"} for i in range(25)])
        assert len(catalog.search_products("cabo")) == 10

    def test_wildcards_are_literal(self, seeded_catalog):
        assert catalog.search_products("%%") == []
        assert catalog.search_products("__") == []

    def test_missing_database_degrades_to_empty(self, temp_data_dir):
        assert catalog.search_products("parafuso") == []

    def test_corrupt_database_degrades_to_empty(self, temp_data_dir):
        with open(catalog.PRODUCTS_DB_PATH, "wb") as f:
            f.write(b"not a database at all" * 50)
        assert catalog.search_products("parafuso") == []


# ═══════════════════════════════════════════════════════════════════════════════
# Product lookup
# ═══════════════════════════════════════════════════════════════════════════════

class TestProductLookup:

    def test_get_product(self, seeded_catalog):
        assert catalog.get_product("PAR-001")["description"] == "Parafuso sextavado 10mm"

    def test_unknown_code(self, seeded_catalog):
        assert catalog.get_product("NOPE") is None

    def test_image_url_http_only(self, seeded_catalog):
        assert catalog.get_product_image_url("PAR-001") == "http://img.test/par001.png"
        assert catalog.get_product_image_url("ARR-100") == "https://img.test/arr100.png"
        assert catalog.get_product_image_url("POR-010") is None
        assert catalog.get_product_image_url("PAR-002") is None

    def test_lookup_raises_when_unavailable(self, temp_data_dir):
        with pytest.raises(StoreUnavailable):
            catalog.get_product("PAR-001")

    def test_readonly_does_not_create_file(self, temp_data_dir):
        import os
        with pytest.raises(StoreUnavailable):
            catalog.get_product("PAR-001")
        assert not os.path.exists(catalog.PRODUCTS_DB_PATH)


# ═══════════════════════════════════════════════════════════════════════════════
# Clients
# ═══════════════════════════════════════════════════════════════════════════════

class TestClients:

    def test_search(self, seeded_catalog):
        assert catalog.search_clients("acme") == [{"id": "12.345.678/0001-90", "name": "ACME Ltda"}]

    def test_search_short(self, seeded_catalog):
        assert catalog.search_clients("a") == []

    def test_search_unavailable(self, temp_data_dir):
        assert catalog.search_clients("acme") == []

    def test_exact_name_case_insensitive(self, seeded_catalog):
        row = catalog.get_client_by_name("acme ltda")
        assert row["email"] == "compras@acme.test"

    def test_partial_name_no_match(self, seeded_catalog):
        assert catalog.get_client_by_name("ACME") is None

    def test_blank_name(self, seeded_catalog):
        assert catalog.get_client_by_name("  ") is None

    def test_lookup_raises_when_unavailable(self, temp_data_dir):
        with pytest.raises(StoreUnavailable):
            catalog.get_client_by_name("ACME Ltda")

    def test_stats(self, seeded_catalog):
        assert catalog.get_catalog_stats() == {"products": 4, "clients": 2}

    def test_stats_unavailable(self, temp_data_dir):
        assert catalog.get_catalog_stats() == {"products": None, "clients": None}


# ═══════════════════════════════════════════════════════════════════════════════
# Bulk load
# ═══════════════════════════════════════════════════════════════════════════════

class TestBulkLoad:

    def test_first_duplicate_wins(self, temp_data_dir):
        stats = catalog.load_products([
            {"code": "A", "description": "primeiro"},
            {"code": "A", "description": "segundo"},
            {"code": "B", "description": "outro"},
        ])
        assert stats == {"inserted": 2, "skipped": 0, "duplicates": 1}
        assert catalog.get_product("A")["description"] == "primeiro"

    def test_rows_without_key_skipped(self, temp_data_dir):
        stats = catalog.load_clients([
            {"id": "", "name": "Sem documento"},
            {"id": "1", "name": ""},
            {"id": "2", "name": "Ok"},
        ])
        assert stats == {"inserted": 1, "skipped": 2, "duplicates": 0}

    def test_reload_replaces_table(self, temp_data_dir):
        catalog.load_products([{"code": "OLD", "description": "antigo"}])
        catalog.load_products([{"code": "NEW", "description": "novo"}])
        assert catalog.get_product("OLD") is None
        assert catalog.get_product("NEW") is not None

    def test_numeric_cells_become_text(self, temp_data_dir):
        catalog.load_clients([{"id": 12345678000190, "name": "Numérico", "email": None}])
        assert catalog.get_client_by_name("numérico")["id"] == "12345678000190"

    def test_get_db_writable_commits(self, temp_data_dir):
        path = catalog.PRODUCTS_DB_PATH
        with get_db(path, readonly=False) as conn:
            conn.executescript(catalog.PRODUCTS_SCHEMA)
            conn.execute("INSERT INTO products (code, description) VALUES ('Z', 'zeta')")
        conn = sqlite3.connect(path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 1
        finally:
            conn.close()


# ═══════════════════════════════════════════════════════════════════════════════
# Spreadsheet import
# ═══════════════════════════════════════════════════════════════════════════════

class TestSpreadsheetImport:

    def test_import_products(self, tmp_path):
        path = _write_xlsx(tmp_path / "produtos.xlsx",
                           ["Codigo", "Descrição", "ImagemURL", "Preco"],
                           [["P1", "Prego 17x21", "http://img.test/p1.jpg", 3.5],
                            ["P2", "Prego 18x27", None, 4],
                            [None, None, None, None],
                            ["P1", "Prego duplicado", None, 1]])
        stats = catalog.import_products_xlsx(path)
        assert stats == {"inserted": 2, "skipped": 0, "duplicates": 1}
        assert catalog.get_product_image_url("P1") == "http://img.test/p1.jpg"

    def test_hyperlink_cell(self, tmp_path):
        wb = Workbook()
        ws = wb.active
        ws.append(["Codigo", "Descrição", "ImagemURL"])
        ws.append(["H1", "Com link", None])
        ws["C2"].hyperlink = "https://img.test/h1.png"
        path = str(tmp_path / "links.xlsx")
        wb.save(path)
        rows = catalog.read_sheet_rows(path, catalog.PRODUCT_COLUMNS)
        assert rows[0]["image_url"] == "https://img.test/h1.png"

    def test_missing_required_header(self, tmp_path):
        path = _write_xlsx(tmp_path / "ruim.xlsx", ["Code", "Desc"], [["A", "b"]])
        with pytest.raises(ValueError):
            catalog.import_products_xlsx(path)

    def test_missing_optional_header(self, tmp_path):
        path = _write_xlsx(tmp_path / "sem_img.xlsx", ["Codigo", "Descrição"], [["A", "b"]])
        assert catalog.import_products_xlsx(path)["inserted"] == 1
        assert catalog.get_product_image_url("A") is None

    def test_import_clients_prefers_named_sheet(self, tmp_path):
        path = _write_xlsx(tmp_path / "clientes.xlsx", ["CGC_CPF", "RAZAO_SOCIAL", "EMAIL"],
                           [["11.111.111/0001-11", "Padaria Central", "pao@central.test"]],
                           title="clientes_jer", extra_sheet_first=True)
        stats = catalog.import_clients_xlsx(path)
        assert stats["inserted"] == 1
        assert catalog.get_client_by_name("padaria central")["email"] == "pao@central.test"

    def test_import_clients_falls_back_to_first_sheet(self, tmp_path):
        path = _write_xlsx(tmp_path / "clientes.xlsx", ["CGC_CPF", "RAZAO_SOCIAL"],
                           [["22", "Mercado Bom"]], title="Planilha1")
        assert catalog.import_clients_xlsx(path)["inserted"] == 1
