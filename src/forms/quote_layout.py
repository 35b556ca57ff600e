"""
Quote Layout Engine
====================
Turns one quote form submission into a *quote plan*: every value the
document shows, already resolved and positioned, so the PDF and spreadsheet
renderers only draw.

The layout config (templates/quote_layout.json) fixes where the item block
starts and which column holds which field. Footer blocks (total, payment
conditions, notes, vendor) sit below the items and move down by however many
rows the items take.

Steps, in order:
  1. client: caller data, completed from the client catalog by name
  2. vendor: JSON payload {"nome", "imagem", ...}, raw text as name otherwise
  3. items: normalized form rows, or one "no items" sentinel row
  4. rows to insert below the first item row (N - 1)
  5. per-item photo: catalog URL → download, placeholder on any failure
  6. footer rows, grand total, payment conditions
  7. vendor block
  8. numbered notes
Pagination (step 9) belongs to the PDF renderer.
"""
import copy
import json
import logging
import math
import os
import re
from datetime import datetime

from src.core import paths
from src.core.catalog import get_client_by_name, get_product_image_url
from src.core.errors import MalformedVendorPayload, StoreUnavailable, TemplateMissing
from src.agents.image_fetcher import fetch_image, resolve_item_images
from src.forms.line_items import as_list, grand_total, normalize, parse_price

log = logging.getLogger("quotedesk.layout")

# ═══════════════════════════════════════════════════════════════════════════════
# LAYOUT CONFIG: defaults, overridden key by key by quote_layout.json
# ═══════════════════════════════════════════════════════════════════════════════
DEFAULT_TEMPLATE = {
    "sheet_name": "Orcamento",
    "title": "ORÇAMENTO",
    "company": {"name": "", "lines": []},
    "item_start_row": 14,
    "columns": {
        "image": "A", "code": "B", "description": "C",
        "quantity": "D", "unit_price": "E", "line_total": "F",
    },
    "cells": {
        "title": "A1", "date": "F2",
        "client_name": "B8", "client_tax_id": "B9", "client_email": "B10",
    },
    # Footer rows are offsets from the first row below the item block
    "footer": {"total": 0, "conditions": 1, "notes": 3, "vendor": 5},
    "footer_columns": {
        "label": "A", "text": "B", "amount_label": "E", "amount": "F",
        "notes": "A", "vendor": "A", "vendor_photo": "D",
    },
    "labels": {
        "client_name": "Cliente:", "client_tax_id": "CNPJ/CPF:",
        "client_email": "E-mail:", "date": "Data:",
        "image": "FOTO", "code": "CÓDIGO", "description": "DESCRIÇÃO",
        "quantity": "QTD", "unit_price": "VALOR UNIT.", "line_total": "TOTAL",
        "no_items": "Nenhum item informado",
        "no_photo": "S/ FOTO",
        "condition": "CONDIÇÃO {n}:",
        "single_condition": "CONDIÇÃO:",
        "total": "TOTAL:",
        "notes": "OBSERVAÇÕES",
        "vendor": "Vendedor:",
    },
    "condition_labels": {},
    "notes_start_number": 5,
    "currency": "R$",
    "decimal_sep": ",",
    "thousands_sep": ".",
    "date_format": "%d/%m/%Y",
    "filename_prefix": "orcamento",
    "use_formulas": True,
    "page": {
        "size": "A4",
        "safe_height_mm": 280,
        "margin_top_mm": 7,
        "margin_left_mm": 7,
        "margin_right_mm": 7,
    },
    "image_size_mm": 13,
    "vendor_photo_max_height_mm": 40,
}

MIME_BY_EXT = {
    ".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg",
    ".gif": "image/gif", ".webp": "image/webp", ".bmp": "image/bmp",
}


def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, val in (override or {}).items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], val)
        else:
            out[key] = val
    return out


def load_template(path: str = None) -> dict:
    """Layout config merged over DEFAULT_TEMPLATE. Missing/unreadable → TemplateMissing."""
    path = path or paths.LAYOUT_PATH
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise TemplateMissing(f"Template not found at {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise TemplateMissing(f"Template unreadable at {path}: {e}") from e
    if not isinstance(raw, dict):
        raise TemplateMissing(f"Template at {path} is not a JSON object")
    return _merge(DEFAULT_TEMPLATE, raw)


# ═══════════════════════════════════════════════════════════════════════════════
# Formatting
# ═══════════════════════════════════════════════════════════════════════════════

def format_number(value: float, template: dict = None) -> str:
    """1234.5 → "1.234,50" with the template's separators."""
    t = template or DEFAULT_TEMPLATE
    text = f"{value:,.2f}"
    return (text.replace(",", "\0")
                .replace(".", t["decimal_sep"])
                .replace("\0", t["thousands_sep"]))


def format_currency(value: float, template: dict = None) -> str:
    t = template or DEFAULT_TEMPLATE
    return f"{t['currency']} {format_number(value, t)}"


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", name or "", flags=re.IGNORECASE)


def build_filename(client_name: str, now: datetime, ext: str, template: dict = None) -> str:
    t = template or DEFAULT_TEMPLATE
    base = sanitize_filename((client_name or "").strip()) or "cliente"
    return f"{t['filename_prefix']}_{base}_{now.strftime('%Y%m%d%H%M%S')}.{ext}"


# ═══════════════════════════════════════════════════════════════════════════════
# Form access
# ═══════════════════════════════════════════════════════════════════════════════

def form_list(form: dict, key: str) -> list:
    """List field, posted either as `key` or `key[]`."""
    if key in form:
        return as_list(form[key])
    return as_list(form.get(f"{key}[]"))


def form_value(form: dict, key: str) -> str:
    values = form_list(form, key)
    first = values[0] if values else ""
    return "" if first is None else str(first).strip()


def _has_field(form: dict, key: str) -> bool:
    return key in form or f"{key}[]" in form


# ═══════════════════════════════════════════════════════════════════════════════
# 1. Client
# ═══════════════════════════════════════════════════════════════════════════════

def resolve_client(name: str, tax_id: str = "", email: str = "",
                   lookup=get_client_by_name) -> dict:
    """
    Caller data, completed from the catalog when `name` matches a client.

    Catalog values win only when non-empty; the catalog id fills the displayed
    tax id only when the caller left it blank.
    """
    client = {
        "name": (name or "").strip(),
        "id": "",
        "tax_id": (tax_id or "").strip(),
        "email": (email or "").strip(),
        "matched": False,
    }
    if not client["name"]:
        return client
    try:
        row = lookup(client["name"])
    except StoreUnavailable as e:
        log.warning("Client catalog unavailable, using submitted data: %s", e)
        return client
    if not row:
        return client

    client["matched"] = True
    catalog_id = (row.get("id") or "").strip()
    catalog_email = (row.get("email") or "").strip()
    if catalog_id:
        client["id"] = catalog_id
        if not client["tax_id"]:
            client["tax_id"] = catalog_id
    if catalog_email:
        client["email"] = catalog_email
    return client


# ═══════════════════════════════════════════════════════════════════════════════
# 2. Vendor
# ═══════════════════════════════════════════════════════════════════════════════

def _decode_vendor(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedVendorPayload(str(e)) from e
    if not isinstance(data, dict):
        raise MalformedVendorPayload(f"expected object, got {type(data).__name__}")
    return data


def _pick(data: dict, *keys) -> str:
    for k in keys:
        val = data.get(k)
        if val not in (None, ""):
            return str(val).strip()
    return ""


def parse_vendor(raw) -> dict:
    """Vendor descriptor → {"name", "email", "phone", "photo"}. Never raises."""
    vendor = {"name": "", "email": "", "phone": "", "photo": ""}
    if raw is None or raw == "":
        return vendor
    try:
        data = _decode_vendor(raw)
    except MalformedVendorPayload as e:
        log.info("Vendor payload is not JSON (%s), using it as the name", e)
        vendor["name"] = str(raw).strip()
        return vendor
    vendor["name"] = _pick(data, "nome", "name")
    vendor["email"] = _pick(data, "email")
    vendor["phone"] = _pick(data, "fone", "phone", "telefone")
    vendor["photo"] = _pick(data, "imagem", "image", "photo")
    return vendor


def load_asset(filename: str, directory: str = None) -> dict:
    """Read an image from the public asset dir by basename; Result-shaped dict."""
    filename = (filename or "").strip()
    if not filename:
        return {"ok": False, "error": "no_photo"}
    safe = os.path.basename(filename.replace("\\", "/"))
    path = os.path.join(directory or paths.PUBLIC_DIR, safe)
    ext = os.path.splitext(safe)[1].lower()
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        log.warning("Vendor photo %s not readable: %s", safe, e)
        return {"ok": False, "error": "not_found"}
    return {"ok": True, "data": data, "content_type": MIME_BY_EXT.get(ext, "image/png")}


def load_logo(path: str = None) -> dict:
    path = path or paths.LOGO_PATH
    if not os.path.exists(path):
        return {"ok": False, "error": "no_logo"}
    return load_asset(os.path.basename(path), os.path.dirname(path))


# ═══════════════════════════════════════════════════════════════════════════════
# 6. Payment conditions
# ═══════════════════════════════════════════════════════════════════════════════

def resolve_conditions(labels, amounts, total: float, label_map: dict = None,
                       legacy: bool = False) -> list:
    """
    Payment condition blocks, each with the amount it shows.

    Multi-condition mode: pairs (label, override); override 0 shows the grand
    total, > 0 shows itself. Blocks with override 0 come first, input order
    kept otherwise. Legacy mode: one free-text key mapped through `label_map`
    (raw text when unknown), showing the grand total.
    """
    labels = as_list(labels)
    amounts = as_list(amounts)
    label_map = label_map or {}

    entries = []
    for i, raw in enumerate(labels):
        text = str(raw).strip() if raw is not None else ""
        if not text:
            continue
        override = parse_price(amounts[i] if i < len(amounts) else None)
        entries.append({"label": text, "override": override})

    if not entries:
        return []

    if legacy and len(entries) == 1:
        key = entries[0]["label"]
        return [{"label": label_map.get(key, key), "override": 0.0,
                 "amount": total, "mode": "single"}]

    entries.sort(key=lambda e: e["override"] > 0)
    for e in entries:
        e["amount"] = e["override"] if e["override"] > 0 else total
        e["mode"] = "multi"
    return entries


# ═══════════════════════════════════════════════════════════════════════════════
# 8. Notes
# ═══════════════════════════════════════════════════════════════════════════════

def number_notes(notes, start: int = 5) -> list:
    """List (or one string split on newlines/semicolons) → ["5. first", "6. second"]."""
    if isinstance(notes, str):
        parts = re.split(r"[\n;]+", notes)
    else:
        parts = [str(n) for n in as_list(notes) if n is not None]
    parts = [p.strip() for p in parts if p and p.strip()]
    return [f"{start + i}. {text}" for i, text in enumerate(parts)]


# ═══════════════════════════════════════════════════════════════════════════════
# 4 + 6 + 7. Positions
# ═══════════════════════════════════════════════════════════════════════════════

def compute_positions(template: dict, item_count: int, condition_count: int) -> dict:
    """
    Absolute rows for the item block and every footer block.

    With N items the block spans item_start_row .. item_start_row + N - 1;
    an empty quote still uses one (sentinel) row. Footer offsets count from
    the row right below the block; each payment condition beyond the first
    pushes notes and vendor one row further.
    """
    start = int(template["item_start_row"])
    rows_used = max(item_count, 1)
    base = start + rows_used
    footer = template["footer"]
    extra = max(condition_count, 1) - 1
    return {
        "item_start": start,
        "item_end": base - 1,
        "inserted_rows": rows_used - 1,
        "footer_base": base,
        "total": base + footer["total"],
        "conditions": base + footer["conditions"],
        "notes": base + footer["notes"] + extra,
        "vendor": base + footer["vendor"] + extra,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════════════════════

def build_quote(form: dict, template: dict = None, fmt: str = "pdf", now: datetime = None,
                client_lookup=get_client_by_name, image_url_lookup=get_product_image_url,
                fetch=fetch_image) -> dict:
    """
    Resolve a quote form into a plan dict consumed by the renderers.

    Catalog and image failures degrade silently (logged); only a missing
    template is fatal and raises TemplateMissing.
    """
    template = template or load_template()
    now = now or datetime.now()

    client = resolve_client(form_value(form, "client_name"),
                            form_value(form, "client_tax_id"),
                            form_value(form, "client_email"),
                            lookup=client_lookup)

    vendor_raw = form.get("vendor")
    if isinstance(vendor_raw, list):
        vendor_raw = vendor_raw[0] if vendor_raw else ""
    vendor = parse_vendor(vendor_raw)
    vendor["photo_image"] = load_asset(vendor["photo"]) if vendor["photo"] else {"ok": False, "error": "no_photo"}

    items = normalize(form_list(form, "product_name"),
                      form_list(form, "quantity"),
                      form_list(form, "unit_price"))
    sentinel = not items
    total = grand_total(items)

    if sentinel:
        items = [{"code": "", "description": template["labels"]["no_items"],
                  "quantity": 0, "unit_price": 0.0, "line_total": 0.0,
                  "image": {"ok": False, "error": "no_code"}}]
    else:
        images = resolve_item_images([it["code"] for it in items],
                                     image_url_lookup, fetch=fetch)
        for item, image in zip(items, images):
            item["image"] = image

    conditions = resolve_conditions(
        form_list(form, "payment_condition"),
        form_list(form, "condition_amount"),
        total,
        label_map=template.get("condition_labels"),
        legacy=not _has_field(form, "condition_amount"),
    )

    positions = compute_positions(template, 0 if sentinel else len(items), len(conditions))
    for i, item in enumerate(items):
        item["row"] = positions["item_start"] + i

    notes = number_notes(form.get("notes", form.get("notes[]")),
                         start=int(template.get("notes_start_number", 5)))

    ext = "xlsx" if fmt == "xlsx" else "pdf"
    plan = {
        "client": client,
        "vendor": vendor,
        "items": items,
        "sentinel": sentinel,
        "inserted_rows": positions["inserted_rows"],
        "grand_total": total,
        "conditions": conditions,
        "notes": notes,
        "positions": positions,
        "date": now.strftime(template["date_format"]),
        "generated_at": now,
        "filename": build_filename(client["name"], now, ext, template),
        "logo": load_logo(),
    }
    log.info("Quote plan: client=%r items=%d sentinel=%s conditions=%d notes=%d total=%.2f",
             client["name"], 0 if sentinel else len(items), sentinel,
             len(conditions), len(notes), total)
    return plan


def page_count(content_height: float, safe_page_height: float) -> int:
    """Pages needed for `content_height`, at least one."""
    if safe_page_height <= 0:
        raise ValueError("safe_page_height must be positive")
    return max(1, math.ceil(round(content_height / safe_page_height, 6)))
