"""
src/core/startup_checks.py: Runtime Self-Test on App Boot

Runs when the app starts and reports what a quote request would trip over:

  1. Path resolution: data dir, template dir, layout config present
  2. Layout config: parses and names the columns the renderers need
  3. Catalogs: products/clients databases open and count rows
  4. Workbook template: built from the layout when absent, then opened
  5. Routes: the quote endpoints are registered

Nothing here stops the app; failures are logged and counted.
"""

import logging
import os

log = logging.getLogger("quotedesk.startup")

REQUIRED_COLUMNS = ("image", "code", "description", "quantity", "unit_price", "line_total")
REQUIRED_ROUTES = ("/api/products/search", "/api/clients/search", "/quotes",
                   "/salvar-orcamento", "/api/health")


def run_startup_checks(app=None) -> dict:
    """Run all startup validation checks. Call from app.py after blueprint registration.

    Returns:
        {"passed": int, "failed": int, "warnings": int, "details": [...]}
    """
    results = {"passed": 0, "failed": 0, "warnings": 0, "details": []}

    def _pass(msg):
        results["passed"] += 1
        results["details"].append(("PASS", msg))
        log.info("✅ %s", msg)

    def _fail(msg):
        results["failed"] += 1
        results["details"].append(("FAIL", msg))
        log.error("❌ STARTUP CHECK FAILED: %s", msg)

    def _warn(msg):
        results["warnings"] += 1
        results["details"].append(("WARN", msg))
        log.warning("⚠️  %s", msg)

    # ── 1. Path Validation ────────────────────────────────────────────────────
    from src.core.paths import validate_paths, DATA_DIR
    path_result = validate_paths()
    if path_result["ok"]:
        _pass(f"All paths valid (DATA_DIR={DATA_DIR})")
    else:
        for err in path_result["errors"]:
            _fail(err)
    for warn in path_result.get("warnings", []):
        _warn(warn)

    # ── 2. Layout Config ──────────────────────────────────────────────────────
    from src.core.errors import TemplateMissing
    from src.forms.quote_layout import load_template
    template = None
    try:
        template = load_template()
        missing = [c for c in REQUIRED_COLUMNS if not template["columns"].get(c)]
        if missing:
            _fail(f"Layout config missing columns: {missing}")
        else:
            _pass(f"Layout config valid (items start at row {template['item_start_row']})")
    except TemplateMissing as e:
        _fail(f"Layout config: {e}")

    # ── 3. Catalogs ───────────────────────────────────────────────────────────
    from src.core.catalog import get_catalog_stats
    for name, count in get_catalog_stats().items():
        if count is None:
            _warn(f"{name} catalog unavailable, searches return [] (run scripts/import_catalog.py)")
        else:
            _pass(f"{name} catalog: {count} rows")

    # ── 4. Workbook Template ──────────────────────────────────────────────────
    # An absent template is built from the layout; a present but broken one is left alone
    from src.core import paths
    from src.forms.quote_workbook import create_template_workbook, open_template
    workbook_path = paths.WORKBOOK_TEMPLATE_PATH
    if template is not None and not os.path.exists(workbook_path):
        try:
            create_template_workbook(workbook_path, template)
            _pass(f"Workbook template created at {workbook_path}")
        except OSError as e:
            _warn(f"Could not create workbook template: {e}")
    try:
        open_template().close()
        _pass("Workbook template readable")
    except TemplateMissing as e:
        _warn(f"Spreadsheet output disabled: {e}")

    # ── 5. Route Integrity (if app provided) ──────────────────────────────────
    if app:
        rules = {r.rule for r in app.url_map.iter_rules()}
        missing = [r for r in REQUIRED_ROUTES if r not in rules]
        if missing:
            _fail(f"Routes not registered: {missing}")
        else:
            _pass(f"Flask routes registered: {len(rules)}")

    # ── Summary ──────────────────────────────────────────────────────────────
    total = results["passed"] + results["failed"] + results["warnings"]
    if results["failed"] > 0:
        log.error("STARTUP: %d/%d checks FAILED, app may not work correctly",
                  results["failed"], total)
    else:
        log.info("STARTUP: All %d checks passed (%d warnings)",
                 results["passed"], results["warnings"])

    return results
