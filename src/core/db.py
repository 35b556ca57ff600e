"""
src/core/db.py: SQLite connection factory for the catalog databases

Each request opens its own short-lived connection and closes it before
returning; nothing is shared between requests. Catalog files are opened
read-only so a missing file is reported instead of silently created empty.

Writers (the spreadsheet importers) use get_db(path, readonly=False).
"""

import os
import sqlite3
import logging
from contextlib import contextmanager

from src.core.errors import StoreUnavailable

log = logging.getLogger("quotedesk.db")


def _connect(db_path: str, readonly: bool) -> sqlite3.Connection:
    if readonly:
        if not os.path.isfile(db_path):
            raise StoreUnavailable(f"DB_NOT_FOUND: {db_path}")
        uri = "file:{}?mode=ro".format(db_path.replace("\\", "/"))
        conn = sqlite3.connect(uri, uri=True, timeout=30)
    else:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db(db_path: str, readonly: bool = True):
    """Yield a connection; commit on success, always close.

    Raises StoreUnavailable when the file is missing or SQLite rejects it
    (not a database, missing table, locked beyond the timeout).
    """
    try:
        conn = _connect(db_path, readonly)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"{db_path}: {e}") from e
    try:
        yield conn
        if not readonly:
            conn.commit()
    except sqlite3.Error as e:
        if not readonly:
            conn.rollback()
        raise StoreUnavailable(f"{db_path}: {e}") from e
    finally:
        conn.close()


def query_all(db_path: str, sql: str, params=()) -> list:
    with get_db(db_path) as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def query_one(db_path: str, sql: str, params=()):
    with get_db(db_path) as conn:
        row = conn.execute(sql, params).fetchone()
        return dict(row) if row else None
