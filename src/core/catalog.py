"""
Catalog Store: products and clients lookup tables
Both catalogs are bulk-loaded once from the customer's spreadsheets
(scripts/import_catalog.py) and are read-only afterwards.

Search helpers back the autocomplete fields and never raise: a missing or
broken catalog yields []. Single-row lookups raise StoreUnavailable so the
caller decides whether to carry on with the data it already has.
"""
import logging
import os

from src.core import paths
from src.core.db import get_db, query_all, query_one
from src.core.errors import StoreUnavailable

log = logging.getLogger("quotedesk.catalog")

PRODUCTS_DB_PATH = paths.PRODUCTS_DB_PATH
CLIENTS_DB_PATH = paths.CLIENTS_DB_PATH

MIN_QUERY_LEN = 2
SEARCH_LIMIT = 10

PRODUCTS_SCHEMA = """
DROP TABLE IF EXISTS products;
CREATE TABLE products (
    code        TEXT PRIMARY KEY,
    description TEXT NOT NULL COLLATE NOCASE,
    image_url   TEXT
);
"""

CLIENTS_SCHEMA = """
DROP TABLE IF EXISTS clients;
CREATE TABLE clients (
    id    TEXT PRIMARY KEY,
    name  TEXT NOT NULL COLLATE NOCASE,
    email TEXT
);
"""

# Spreadsheet headers used by the customer's exports
PRODUCT_COLUMNS = {"code": "Codigo", "description": "Descrição", "image_url": "ImagemURL"}
CLIENT_COLUMNS = {"id": "CGC_CPF", "name": "RAZAO_SOCIAL", "email": "EMAIL"}
CLIENT_SHEET = "clientes_jer"


def _like_escape(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _normalize_query(query) -> str:
    return (query or "").lower().strip()


# ═══════════════════════════════════════════════════════════════════════
# Search & Lookup
# ═══════════════════════════════════════════════════════════════════════

def search_products(query: str, limit: int = SEARCH_LIMIT) -> list:
    """Autocomplete: description contains `query` or code starts with it.

    Returns [{"code", "description"}], at most `limit` rows, unranked.
    """
    term = _normalize_query(query)
    if len(term) < MIN_QUERY_LEN:
        return []
    esc = _like_escape(term)
    try:
        return query_all(PRODUCTS_DB_PATH, """
            SELECT code, description FROM products
            WHERE description LIKE ? ESCAPE '\\'
               OR code LIKE ? ESCAPE '\\'
            LIMIT ?
        """, (f"%{esc}%", f"{esc}%", min(limit, SEARCH_LIMIT)))
    except StoreUnavailable as e:
        log.warning("Product search degraded to empty: %s", e)
        return []


def get_product(code: str):
    """Exact code lookup. Raises StoreUnavailable."""
    if not code:
        return None
    return query_one(PRODUCTS_DB_PATH,
                     "SELECT code, description, image_url FROM products WHERE code = ? LIMIT 1",
                     (code,))


def get_product_image_url(code: str):
    """Stored image URL for `code`, only when it is an http(s) link."""
    row = get_product(code)
    if not row:
        return None
    url = (row.get("image_url") or "").strip()
    return url if url.lower().startswith("http") else None


def search_clients(query: str, limit: int = SEARCH_LIMIT) -> list:
    """Autocomplete on client name. Returns [{"id", "name"}]."""
    term = _normalize_query(query)
    if len(term) < MIN_QUERY_LEN:
        return []
    try:
        return query_all(CLIENTS_DB_PATH, """
            SELECT id, name FROM clients
            WHERE name LIKE ? ESCAPE '\\'
            LIMIT ?
        """, (f"%{_like_escape(term)}%", min(limit, SEARCH_LIMIT)))
    except StoreUnavailable as e:
        log.warning("Client search degraded to empty: %s", e)
        return []


def get_client_by_name(name: str):
    """Case-insensitive exact name match. Raises StoreUnavailable."""
    if not name or not name.strip():
        return None
    return query_one(CLIENTS_DB_PATH,
                     "SELECT id, name, email FROM clients WHERE name = ? COLLATE NOCASE LIMIT 1",
                     (name.strip(),))


def get_catalog_stats() -> dict:
    """Row counts per catalog; None for an unavailable one."""
    stats = {}
    for key, db_path, table in (("products", PRODUCTS_DB_PATH, "products"),
                                ("clients", CLIENTS_DB_PATH, "clients")):
        try:
            row = query_one(db_path, f"SELECT COUNT(*) AS n FROM {table}")
            stats[key] = row["n"] if row else 0
        except StoreUnavailable:
            stats[key] = None
    return stats


# ═══════════════════════════════════════════════════════════════════════
# Import from spreadsheets
# ═══════════════════════════════════════════════════════════════════════

def _cell_text(value) -> str:
    """Plain text of a worksheet cell value (hyperlinks, numbers, None)."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def read_sheet_rows(xlsx_path: str, columns: dict, sheet_name: str = None,
                    required=()) -> list:
    """
    Read a worksheet into dicts keyed by our field names.

    `columns` maps field -> header text expected in row 1. Headers listed in
    `required` must exist (ValueError otherwise); other missing headers are
    logged and yield "" for that field. Hyperlink cells give their target
    when the displayed text is empty.
    """
    from openpyxl import load_workbook

    wb = load_workbook(xlsx_path, read_only=False, data_only=True)
    try:
        if sheet_name and sheet_name in wb.sheetnames:
            ws = wb[sheet_name]
        elif wb.worksheets:
            ws = wb.worksheets[0]
        else:
            raise ValueError(f"No worksheet found in {xlsx_path}")

        header = {}
        for cell in ws[1]:
            text = _cell_text(cell.value)
            if text:
                header.setdefault(text, cell.column)

        index = {}
        for field, label in columns.items():
            if label in header:
                index[field] = header[label]
            elif field in required:
                raise ValueError(f"Column '{label}' not found in header row of {xlsx_path}")
            else:
                log.warning("Column '%s' not found in %s, field '%s' left empty",
                            label, os.path.basename(xlsx_path), field)

        rows = []
        for r in range(2, ws.max_row + 1):
            item = {}
            for field in columns:
                col = index.get(field)
                if col is None:
                    item[field] = ""
                    continue
                cell = ws.cell(row=r, column=col)
                text = _cell_text(cell.value)
                if not text and cell.hyperlink is not None:
                    text = (cell.hyperlink.target or "").strip()
                item[field] = text
            if any(item.values()):
                rows.append(item)
        return rows
    finally:
        wb.close()


def _load(rows, db_path: str, schema: str, insert_sql: str, key: str, label: str, fields) -> dict:
    stats = {"inserted": 0, "skipped": 0, "duplicates": 0}
    with get_db(db_path, readonly=False) as conn:
        conn.executescript(schema)
        for row in rows:
            values = [str(row.get(f) or "").strip() or None for f in fields]
            record = dict(zip(fields, values))
            if not record[key] or not record[label]:
                stats["skipped"] += 1
                continue
            # First occurrence of a key wins; later duplicates are ignored
            cur = conn.execute(insert_sql, values)
            if cur.rowcount:
                stats["inserted"] += 1
            else:
                stats["duplicates"] += 1
    return stats


def load_products(rows, db_path: str = None) -> dict:
    """Rebuild the products table from [{"code", "description", "image_url"}]."""
    db_path = db_path or PRODUCTS_DB_PATH
    stats = _load(rows, db_path, PRODUCTS_SCHEMA,
                  "INSERT OR IGNORE INTO products (code, description, image_url) VALUES (?, ?, ?)",
                  "code", "description", ("code", "description", "image_url"))
    log.info("Products loaded into %s: %d inserted, %d duplicates, %d skipped",
             db_path, stats["inserted"], stats["duplicates"], stats["skipped"])
    return stats


def load_clients(rows, db_path: str = None) -> dict:
    """Rebuild the clients table from [{"id", "name", "email"}]."""
    db_path = db_path or CLIENTS_DB_PATH
    stats = _load(rows, db_path, CLIENTS_SCHEMA,
                  "INSERT OR IGNORE INTO clients (id, name, email) VALUES (?, ?, ?)",
                  "id", "name", ("id", "name", "email"))
    log.info("Clients loaded into %s: %d inserted, %d duplicates, %d skipped",
             db_path, stats["inserted"], stats["duplicates"], stats["skipped"])
    return stats


def import_products_xlsx(xlsx_path: str, db_path: str = None) -> dict:
    rows = read_sheet_rows(xlsx_path, PRODUCT_COLUMNS, required=("code", "description"))
    return load_products(rows, db_path)


def import_clients_xlsx(xlsx_path: str, db_path: str = None) -> dict:
    rows = read_sheet_rows(xlsx_path, CLIENT_COLUMNS, sheet_name=CLIENT_SHEET,
                           required=("id", "name"))
    return load_clients(rows, db_path)
