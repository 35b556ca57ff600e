"""
Quote Workbook Generator
=========================
Fills the spreadsheet template (templates/quote_template.xlsx) from a quote
plan. The template owns the look (fonts, borders, widths, header block);
this module only writes values at the rows the plan computed.

Row model:
  - item block starts at `item_start_row`; the template styles that one row
  - N items → N - 1 rows inserted right below it, each copying its style,
    so everything under the block (footer) moves down by N - 1
  - footer cells are addressed from plan["positions"]
"""

import io
import logging
import os
import zipfile
from copy import copy

from openpyxl import Workbook, load_workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string, get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from src.core import paths
from src.core.errors import TemplateMissing

log = logging.getLogger("quotedesk.workbook")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MONEY_FORMAT = '"R$" #,##0.00'
NUMBER_FORMAT = "#,##0.00"
PX_PER_MM = 96 / 25.4

_THIN = Side(style="thin", color="7A8699")
_BORDER = Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN)
_HEAD_FILL = PatternFill("solid", fgColor="DCE3EC")


def _col(letter: str) -> int:
    return column_index_from_string(letter)


def _label_cell_for(coord: str) -> str:
    """Cell immediately left of `coord` (B8 → A8), where its label goes."""
    letter, row = coordinate_from_string(coord)
    return f"{get_column_letter(max(1, _col(letter) - 1))}{row}"


# ═══════════════════════════════════════════════════════════════════════════════
# Row insertion
# ═══════════════════════════════════════════════════════════════════════════════

def insert_item_rows(ws, first_row: int, count: int):
    """
    Insert `count` rows below `first_row`, styled like it.

    openpyxl's insert_rows shifts cell values and styles only; merged ranges
    and row heights below the insertion point are moved here.
    """
    if count <= 0:
        return
    below = [r for r in ws.merged_cells.ranges if r.min_row > first_row]
    in_row = [r for r in ws.merged_cells.ranges if r.min_row == r.max_row == first_row]
    for rng in below:
        ws.unmerge_cells(rng.coord)

    heights = {r: dim.height for r, dim in ws.row_dimensions.items() if r > first_row}
    ws.insert_rows(first_row + 1, amount=count)
    for r in range(first_row + count + 1, max(heights, default=first_row) + count + 1):
        ws.row_dimensions[r].height = heights.get(r - count)

    src_height = ws.row_dimensions[first_row].height
    for r in range(first_row + 1, first_row + count + 1):
        ws.row_dimensions[r].height = src_height
        for c in range(1, ws.max_column + 1):
            src = ws.cell(row=first_row, column=c)
            if src.has_style:
                ws.cell(row=r, column=c)._style = copy(src._style)
        for rng in in_row:
            ws.merge_cells(start_row=r, start_column=rng.min_col,
                           end_row=r, end_column=rng.max_col)

    for rng in below:
        ws.merge_cells(start_row=rng.min_row + count, start_column=rng.min_col,
                       end_row=rng.max_row + count, end_column=rng.max_col)


def _add_image(ws, result: dict, anchor: str, max_px: float) -> bool:
    if not result or not result.get("ok"):
        return False
    try:
        img = XLImage(io.BytesIO(result["data"]))
    except Exception as e:
        # Pillow rejects the bytes; the cell gets the placeholder text
        log.warning("Image not embeddable at %s: %s", anchor, e)
        return False
    if img.width and img.height:
        scale = min(max_px / img.width, max_px / img.height)
        img.width, img.height = int(img.width * scale), int(img.height * scale)
    ws.add_image(img, anchor)
    return True


# ═══════════════════════════════════════════════════════════════════════════════
# Render
# ═══════════════════════════════════════════════════════════════════════════════

def open_template(path: str = None):
    path = path or paths.WORKBOOK_TEMPLATE_PATH
    if not os.path.isfile(path):
        raise TemplateMissing(f"Workbook template not found at {path}")
    try:
        return load_workbook(path)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise TemplateMissing(f"Workbook template unreadable at {path}: {e}") from e


def render_quote_xlsx(plan: dict, template: dict, template_path: str = None) -> bytes:
    """Fill the workbook template from `plan` and return the .xlsx bytes."""
    wb = open_template(template_path)
    ws = wb[template["sheet_name"]] if template["sheet_name"] in wb.sheetnames else wb.active

    cols = template["columns"]
    cells = template["cells"]
    labels = template["labels"]
    pos = plan["positions"]
    formulas = template.get("use_formulas", True)

    insert_item_rows(ws, pos["item_start"], plan["inserted_rows"])

    client = plan["client"]
    ws[cells["date"]] = plan["date"]
    ws[cells["client_name"]] = client["name"]
    ws[cells["client_tax_id"]] = client["tax_id"]
    ws[cells["client_email"]] = client["email"]

    # ── Items ──
    img_px = float(template.get("image_size_mm", 13)) * PX_PER_MM
    q, p, t = cols["quantity"], cols["unit_price"], cols["line_total"]
    for item in plan["items"]:
        r = item["row"]
        ws[f"{cols['description']}{r}"] = item["description"]
        ws[f"{q}{r}"] = item["quantity"]
        ws[f"{p}{r}"] = item["unit_price"]
        ws[f"{t}{r}"] = f"={q}{r}*{p}{r}" if formulas else item["line_total"]
        if plan["sentinel"]:
            continue
        ws[f"{cols['code']}{r}"] = item["code"]
        image_cell = f"{cols['image']}{r}"
        if not _add_image(ws, item.get("image"), image_cell, img_px):
            ws[image_cell] = labels["no_photo"]
            ws[image_cell].alignment = Alignment(horizontal="center", vertical="center")

    # ── Total ──
    fc = template["footer_columns"]
    bold = Font(bold=True)
    total_row = pos["total"]
    ws[f"{fc['amount_label']}{total_row}"] = labels["total"]
    ws[f"{fc['amount_label']}{total_row}"].font = bold
    total_cell = ws[f"{fc['amount']}{total_row}"]
    total_cell.value = (f"=SUM({t}{pos['item_start']}:{t}{pos['item_end']})"
                        if formulas else plan["grand_total"])
    total_cell.number_format = MONEY_FORMAT
    total_cell.font = bold

    # ── Payment conditions, one row each ──
    for n, cond in enumerate(plan["conditions"]):
        r = pos["conditions"] + n
        label = labels["single_condition"] if cond["mode"] == "single" else labels["condition"].format(n=n + 1)
        ws[f"{fc['label']}{r}"] = label
        ws[f"{fc['label']}{r}"].font = bold
        ws[f"{fc['text']}{r}"] = cond["label"]
        ws[f"{fc['amount_label']}{r}"] = labels["total"]
        amount = ws[f"{fc['amount']}{r}"]
        amount.value = cond["amount"]
        amount.number_format = MONEY_FORMAT

    # ── Notes, one block ──
    if plan["notes"]:
        r = pos["notes"]
        ws[f"{fc['notes']}{r}"] = labels["notes"]
        ws[f"{fc['notes']}{r}"].font = bold
        cell = ws[f"{fc['notes']}{r + 1}"]
        cell.value = "\n".join(plan["notes"])
        cell.alignment = Alignment(wrap_text=True, vertical="top")

    # ── Vendor ──
    vendor = plan["vendor"]
    r = pos["vendor"]
    ws[f"{fc['vendor']}{r}"] = f"{labels['vendor']} {vendor['name']}".strip()
    ws[f"{fc['vendor']}{r}"].font = bold
    contact = " | ".join(v for v in (vendor["email"], vendor["phone"]) if v)
    if contact:
        ws[f"{fc['vendor']}{r + 1}"] = contact
    max_h = float(template.get("vendor_photo_max_height_mm", 40)) * PX_PER_MM
    _add_image(ws, vendor.get("photo_image"), f"{fc['vendor_photo']}{r}", max_h)

    created = plan.get("generated_at")
    if created is not None:
        wb.properties.created = created
        wb.properties.modified = created

    buf = io.BytesIO()
    wb.save(buf)
    if created is None:
        return buf.getvalue()
    return stamp_archive(buf.getvalue(), created)


def stamp_archive(data: bytes, when) -> bytes:
    """Rewrite the .xlsx zip with every member dated `when`, so equal plans give equal bytes."""
    date_time = (max(when.year, 1980), when.month, when.day, when.hour, when.minute, when.second)
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as src, \
            zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as dst:
        for info in src.infolist():
            member = zipfile.ZipInfo(info.filename, date_time=date_time)
            member.compress_type = info.compress_type
            member.external_attr = info.external_attr
            dst.writestr(member, src.read(info.filename))
    return out.getvalue()


# ═══════════════════════════════════════════════════════════════════════════════
# Template builder
# ═══════════════════════════════════════════════════════════════════════════════

def create_template_workbook(path: str, template: dict) -> str:
    """Write a blank quote workbook matching the layout config to `path`."""
    wb = Workbook()
    ws = wb.active
    ws.title = template["sheet_name"]
    cols = template["columns"]
    cells = template["cells"]
    labels = template["labels"]
    start = int(template["item_start_row"])

    widths = {"image": 12, "code": 16, "description": 48,
              "quantity": 8, "unit_price": 14, "line_total": 16}
    for key, letter in cols.items():
        ws.column_dimensions[letter].width = widths.get(key, 14)

    ws[cells["title"]] = template["title"]
    ws[cells["title"]].font = Font(bold=True, size=16, color="1A2744")
    company = template.get("company") or {}
    title_col, title_row = coordinate_from_string(cells["title"])
    for i, line in enumerate([company.get("name", "")] + list(company.get("lines") or [])):
        if line:
            ws[f"{title_col}{title_row + 1 + i}"] = line

    for key in ("date", "client_name", "client_tax_id", "client_email"):
        label = ws[_label_cell_for(cells[key])]
        label.value = labels[key]
        label.font = Font(bold=True)

    head_row = start - 1
    for key, letter in cols.items():
        c = ws[f"{letter}{head_row}"]
        c.value = labels[key]
        c.font = Font(bold=True)
        c.fill = _HEAD_FILL
        c.border = _BORDER
        c.alignment = Alignment(horizontal="center", vertical="center")

    for key, letter in cols.items():
        c = ws[f"{letter}{start}"]
        c.border = _BORDER
        c.alignment = Alignment(vertical="center", wrap_text=(key == "description"))
        if key in ("unit_price", "line_total"):
            c.number_format = NUMBER_FORMAT
    ws.row_dimensions[start].height = float(template.get("image_size_mm", 13)) * 72 / 25.4 + 4

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    wb.save(path)
    log.info("Workbook template written to %s", path)
    return path
