"""
Quote service routes
Autocomplete endpoints for the quote form plus the document endpoint.

  GET  /api/products/search?search=   product autocomplete
  GET  /api/clients/search?search=    client autocomplete
  POST /quotes[?format=pdf|xlsx]      form → PDF or spreadsheet download
  GET  /api/health                    liveness + catalog/template status

The legacy frontend paths (/api/produtos/search, /api/clientes/search,
/salvar-orcamento) and its Portuguese field names are accepted as well.
"""
import logging
import os
import time
from io import BytesIO

from flask import Blueprint, jsonify, request, send_file

from src.core import paths
from src.core.catalog import get_catalog_stats, search_clients, search_products
from src.core.errors import QuoteError
from src.forms.quote_generator import FORMATS, generate_quote

log = logging.getLogger("quotedesk.api")

bp = Blueprint("quotes", __name__)

ERROR_MESSAGE = "Erro interno ao gerar documento"


# ═══════════════════════════════════════════════════════════════════════
# Request logging
# ═══════════════════════════════════════════════════════════════════════

@bp.before_app_request
def _log_request_start():
    request._start_time = time.time()


@bp.after_app_request
def _log_request_end(response):
    if hasattr(request, "_start_time"):
        duration_ms = round((time.time() - request._start_time) * 1000, 1)
        # Skip health spam
        if request.path != "/api/health":
            log.info("%s %s → %d (%.0fms)",
                     request.method, request.path, response.status_code, duration_ms,
                     extra={"route": request.path, "method": request.method,
                            "status": response.status_code, "duration_ms": duration_ms})
    return response


# ═══════════════════════════════════════════════════════════════════════
# Autocomplete
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/products/search")
def api_products_search():
    """[{"code", "description"}]; [] for short queries or an unavailable catalog."""
    return jsonify(search_products(request.args.get("search", "")))


@bp.route("/api/clients/search")
def api_clients_search():
    return jsonify(search_clients(request.args.get("search", "")))


# Legacy frontend contract: same searches, Portuguese keys
@bp.route("/api/produtos/search")
def api_produtos_search():
    return jsonify([{"codigo": p["code"], "nome": p["description"]}
                    for p in search_products(request.args.get("search", ""))])


@bp.route("/api/clientes/search")
def api_clientes_search():
    return jsonify([{"id_cliente": c["id"], "nome": c["name"]}
                    for c in search_clients(request.args.get("search", ""))])


# ═══════════════════════════════════════════════════════════════════════
# Quote document
# ═══════════════════════════════════════════════════════════════════════

# Field names posted by the legacy quote form → current names
FIELD_ALIASES = {
    "cliente_nome": "client_name",
    "cliente_cnpj": "client_tax_id",
    "cliente_email": "client_email",
    "vendedor": "vendor",
    "produto_nome": "product_name",
    "quantidade": "quantity",
    "valor_unitario": "unit_price",
    "condicao_pagamento": "payment_condition",
    "valor_condicao": "condition_amount",
    "observacao": "notes",
    "formato": "format",
}


def _canonical_fields(raw: dict) -> dict:
    """Strip "[]" suffixes and map legacy names; a current name wins over its alias."""
    payload = {}
    aliased = {}
    for key, value in raw.items():
        key = key[:-2] if key.endswith("[]") else key
        if key in FIELD_ALIASES:
            aliased[FIELD_ALIASES[key]] = value
        else:
            payload[key] = value
    for key, value in aliased.items():
        payload.setdefault(key, value)
    return payload


def _form_payload() -> dict:
    """Submitted fields as a dict; repeated form fields become lists."""
    if request.is_json:
        data = request.get_json(silent=True)
        return _canonical_fields(data) if isinstance(data, dict) else {}
    return _canonical_fields({key: values if len(values) > 1 else values[0]
                              for key, values in request.form.to_dict(flat=False).items()})


def _error(stage: str, detail: str):
    return jsonify({"message": ERROR_MESSAGE, "stage": stage, "error": detail}), 500


@bp.route("/quotes", methods=["POST"])
@bp.route("/salvar-orcamento", methods=["POST"])
def api_generate_quote():
    form = _form_payload()
    fmt = (request.args.get("format") or form.get("format") or "pdf")
    if isinstance(fmt, list):
        fmt = fmt[0]
    fmt = str(fmt).lower()
    if fmt not in FORMATS:
        return jsonify({"message": f"Formato não suportado: {fmt}", "stage": "request",
                        "error": "unsupported_format"}), 400

    try:
        result = generate_quote(form, fmt=fmt)
    except QuoteError as e:
        log.error("Quote failed at %s: %s", e.stage, e, extra={"stage": e.stage, "format": fmt})
        return _error(e.stage, str(e))
    except Exception as e:
        log.error("Quote failed unexpectedly: %s", e, exc_info=True, extra={"format": fmt})
        return _error("unexpected", f"{type(e).__name__}: {e}")

    return send_file(BytesIO(result["content"]), mimetype=result["mimetype"],
                     as_attachment=True, download_name=result["filename"])


@bp.route("/api/health")
def api_health():
    return jsonify({
        "ok": True,
        "catalogs": get_catalog_stats(),
        "layout": os.path.exists(paths.LAYOUT_PATH),
        "workbook_template": os.path.exists(paths.WORKBOOK_TEMPLATE_PATH),
    })
