"""
Shared pytest fixtures for the quote service test suite.

Every test runs against an isolated tmp data directory: catalog databases,
temp image spool, vendor photos, logo and workbook template all live there.
"""
import io
import os
import sys
import tempfile
import pytest

_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

# Keep import-time directory creation out of the repo
os.environ.setdefault("QUOTEDESK_DATA_DIR", tempfile.mkdtemp(prefix="quotedesk-test-"))

from datetime import datetime  # noqa: E402

from src.core import catalog, paths  # noqa: E402
from src.agents import image_fetcher  # noqa: E402


# ── Temp data directory (per-test isolation) ──────────────────────────────────

@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path, monkeypatch):
    """Redirect ALL module data paths to an isolated tmp directory."""
    data = tmp_path / "data"
    assets = tmp_path / "templates"
    for d in (data, data / "temp_img", assets, assets / "public"):
        d.mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr(catalog, "PRODUCTS_DB_PATH", str(data / "products.db"))
    monkeypatch.setattr(catalog, "CLIENTS_DB_PATH", str(data / "clients.db"))
    monkeypatch.setattr(image_fetcher, "TEMP_IMG_DIR", str(data / "temp_img"))
    monkeypatch.setattr(paths, "TEMP_IMG_DIR", str(data / "temp_img"))
    monkeypatch.setattr(paths, "PUBLIC_DIR", str(assets / "public"))
    monkeypatch.setattr(paths, "LOGO_PATH", str(assets / "logo.png"))
    monkeypatch.setattr(paths, "WORKBOOK_TEMPLATE_PATH", str(assets / "quote_template.xlsx"))
    return str(data)


# ── Catalog seeds ─────────────────────────────────────────────────────────────

SAMPLE_PRODUCTS = [
    {"code": "PAR-001", "description": "Parafuso sextavado 10mm", "image_url": "http://img.test/par001.png"},
    {"code": "PAR-002", "description": "Parafuso philips 5mm", "image_url": ""},
    {"code": "POR-010", "description": "Porca borboleta", "image_url": "ftp://img.test/por010.png"},
    {"code": "ARR-100", "description": "Arruela lisa", "image_url": "https://img.test/arr100.png"},
]

SAMPLE_CLIENTS = [
    {"id": "12.345.678/0001-90", "name": "ACME Ltda", "email": "compras@acme.test"},
    {"id": "98.765.432/0001-10", "name": "Construtora Silva", "email": ""},
]


@pytest.fixture
def seeded_catalog(temp_data_dir):
    catalog.load_products(SAMPLE_PRODUCTS)
    catalog.load_clients(SAMPLE_CLIENTS)
    return temp_data_dir


# ── Layout + workbook template ────────────────────────────────────────────────

@pytest.fixture
def layout():
    from src.forms.quote_layout import load_template
    return load_template()


@pytest.fixture
def workbook_template(layout):
    from src.forms.quote_workbook import create_template_workbook
    return create_template_workbook(paths.WORKBOOK_TEMPLATE_PATH, layout)


# ── Images ────────────────────────────────────────────────────────────────────

def make_png(color=(200, 30, 30), size=(24, 24)) -> bytes:
    from PIL import Image
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def fake_fetch(png_bytes):
    """Fetcher that succeeds for URLs containing 'ok' and fails otherwise."""
    calls = []

    def _fetch(url):
        calls.append(url)
        if "ok" in url:
            return {"ok": True, "data": png_bytes, "content_type": "image/png"}
        return {"ok": False, "error": "http_404"}

    _fetch.calls = calls
    return _fetch


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 17, 9, 30, 0)


# ── Sample form ───────────────────────────────────────────────────────────────

@pytest.fixture
def sample_form():
    """Quote form as the browser posts it (repeated fields as lists)."""
    return {
        "client_name": "ACME Ltda",
        "client_tax_id": "",
        "client_email": "",
        "vendor": '{"nome": "Joana Souza", "email": "joana@loja.test", "fone": "(11) 5555-0101"}',
        "product_name": ["PAR-001 - Parafuso sextavado 10mm", "ARR-100 - Arruela lisa"],
        "quantity": ["10", "3"],
        "unit_price": ["2,50", "1.5"],
        "payment_condition": ["À vista", "30/60 dias"],
        "condition_amount": ["0", "30,00"],
        "notes": "Frete por conta do cliente;Validade de 10 dias",
    }


# ── Flask test client ─────────────────────────────────────────────────────────

@pytest.fixture
def app(temp_data_dir):
    """Create Flask app configured for testing."""
    from app import create_app
    app = create_app(run_checks=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c
