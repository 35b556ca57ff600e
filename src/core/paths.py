"""
src/core/paths.py: Centralized Path Configuration

Single source of truth for every directory and file the quote service touches.
Every module imports from here instead of computing its own DATA_DIR.

Overrides (environment):
  QUOTEDESK_DATA_DIR   directory holding products.db / clients.db / logs
  PRODUCTS_DB_PATH     explicit product catalog file
  CLIENTS_DB_PATH      explicit client catalog file
  QUOTE_TEMPLATE_DIR   directory holding quote_layout.json, quote_template.xlsx,
                       logo.png and public/ (vendor photos)
"""

import os
import logging

log = logging.getLogger("quotedesk.paths")

# ── Project Root ──────────────────────────────────────────────────────────────
_THIS_FILE = os.path.abspath(__file__)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(_THIS_FILE)))

_DEFAULT_DATA_DIR = os.path.join(PROJECT_ROOT, "data")


def _resolve_data_dir() -> str:
    """Explicit override first, project data/ otherwise."""
    env_dir = os.environ.get("QUOTEDESK_DATA_DIR", "")
    if env_dir:
        return env_dir
    return _DEFAULT_DATA_DIR


DATA_DIR = _resolve_data_dir()

# ── Catalog databases (built by scripts/import_catalog.py) ───────────────────
PRODUCTS_DB_PATH = os.environ.get("PRODUCTS_DB_PATH") or os.path.join(DATA_DIR, "products.db")
CLIENTS_DB_PATH = os.environ.get("CLIENTS_DB_PATH") or os.path.join(DATA_DIR, "clients.db")

# ── Template assets ──────────────────────────────────────────────────────────
TEMPLATE_DIR = os.environ.get("QUOTE_TEMPLATE_DIR") or os.path.join(PROJECT_ROOT, "templates")
LAYOUT_PATH = os.path.join(TEMPLATE_DIR, "quote_layout.json")
WORKBOOK_TEMPLATE_PATH = os.path.join(TEMPLATE_DIR, "quote_template.xlsx")
LOGO_PATH = os.path.join(TEMPLATE_DIR, "logo.png")
PUBLIC_DIR = os.path.join(TEMPLATE_DIR, "public")

# ── Scratch space for image downloads (one file per fetch, always removed) ──
TEMP_IMG_DIR = os.path.join(DATA_DIR, "temp_img")
LOG_DIR = os.path.join(DATA_DIR, "logs")

for _d in [DATA_DIR, TEMP_IMG_DIR]:
    try:
        os.makedirs(_d, exist_ok=True)
    except OSError as e:
        log.warning("Could not create %s: %s", _d, e)


def validate_paths() -> dict:
    """Runtime validation: call at app startup to catch path issues early.

    Returns:
        {"ok": bool, "errors": [str], "warnings": [str], "resolved": {name: path}}
    """
    result = {"ok": True, "errors": [], "warnings": [], "resolved": {}}

    # (path, required); catalogs are optional, searches degrade to []
    checks = {
        "DATA_DIR": (DATA_DIR, True),
        "TEMPLATE_DIR": (TEMPLATE_DIR, True),
        "LAYOUT_PATH": (LAYOUT_PATH, True),
        "WORKBOOK_TEMPLATE_PATH": (WORKBOOK_TEMPLATE_PATH, False),
        "PRODUCTS_DB_PATH": (PRODUCTS_DB_PATH, False),
        "CLIENTS_DB_PATH": (CLIENTS_DB_PATH, False),
        "LOGO_PATH": (LOGO_PATH, False),
    }

    for name, (path, required) in checks.items():
        result["resolved"][name] = path
        if not os.path.exists(path):
            if required:
                result["errors"].append(f"{name} not found: {path}")
                result["ok"] = False
            else:
                result["warnings"].append(f"{name} not found: {path}")

    # Image downloads are spooled here
    test_file = os.path.join(TEMP_IMG_DIR, ".write_test")
    try:
        with open(test_file, "w") as f:
            f.write("ok")
        os.remove(test_file)
    except OSError as e:
        result["errors"].append(f"TEMP_IMG_DIR not writable: {e}")
        result["ok"] = False

    return result
