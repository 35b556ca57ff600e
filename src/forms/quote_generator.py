"""
Quote PDF Generator
====================
Renders a quote plan (src/forms/quote_layout.py) into an A4 PDF, and runs
the whole form → document pipeline under a render deadline.

Page model:
  - header (logo, company, title, date), client block, item table,
    total and payment conditions, numbered notes
  - vendor block pinned to the bottom of the last page
  - every page holds exactly `safe_height_mm` of content, so the number of
    pages is ceil(content height / safe height) and breaks land where
    the layout says they do

Output is deterministic: reportlab runs with invariant=1 so identical input
gives byte-identical PDFs.
"""

import io
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4, letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (BaseDocTemplate, Flowable, Frame, Image, PageTemplate,
                                Paragraph, Spacer, Table, TableStyle)

from src.core.errors import QuoteError, RenderTimeout, SerializationFailure
from src.forms.quote_layout import (build_quote, format_currency, format_number,
                                    load_template, page_count)
from src.forms.quote_workbook import XLSX_MIMETYPE, render_quote_xlsx

log = logging.getLogger("quotedesk.quote_gen")

RENDER_TIMEOUT = float(os.environ.get("RENDER_TIMEOUT", 60))

PDF_MIMETYPE = "application/pdf"
FORMATS = {"pdf": PDF_MIMETYPE, "xlsx": XLSX_MIMETYPE}
PAGE_SIZES = {"A4": A4, "LETTER": letter}

# ═══════════════════════════════════════════════════════════════════════════════
# COLORS
# ═══════════════════════════════════════════════════════════════════════════════
FILL    = colors.HexColor("#DCE3EC")   # table header fill
GRID    = colors.HexColor("#7A8699")   # table grid
NAVY    = colors.HexColor("#1A2744")   # title / totals text
GRAY    = colors.HexColor("#555555")
ALT_ROW = colors.Color(0.96, 0.96, 0.98)


def _styles() -> dict:
    base = getSampleStyleSheet()
    normal = ParagraphStyle("qd_normal", parent=base["Normal"], fontName="Helvetica",
                            fontSize=8.5, leading=10.5)
    return {
        "normal": normal,
        "small": ParagraphStyle("qd_small", parent=normal, fontSize=7.5, leading=9, textColor=GRAY),
        "bold": ParagraphStyle("qd_bold", parent=normal, fontName="Helvetica-Bold"),
        "right": ParagraphStyle("qd_right", parent=normal, alignment=TA_RIGHT),
        "center": ParagraphStyle("qd_center", parent=normal, alignment=TA_CENTER, textColor=GRAY),
        "title": ParagraphStyle("qd_title", parent=normal, fontName="Helvetica-Bold", fontSize=16,
                                leading=19, textColor=NAVY, alignment=TA_RIGHT),
        "company": ParagraphStyle("qd_company", parent=normal, fontName="Helvetica-Bold",
                                  fontSize=11, leading=13, textColor=NAVY, alignment=TA_LEFT),
        "heading": ParagraphStyle("qd_heading", parent=normal, fontName="Helvetica-Bold",
                                  fontSize=9, leading=11, textColor=NAVY, spaceBefore=4),
    }


def _p(text, style) -> Paragraph:
    return Paragraph(escape(str(text or "")), style)


def _image(result: dict, max_w: float, max_h: float):
    """Scaled Image flowable for a fetch result, None when unusable."""
    if not result or not result.get("ok"):
        return None
    try:
        iw, ih = ImageReader(io.BytesIO(result["data"])).getSize()
    except Exception as e:
        # Corrupt or unsupported bytes get the placeholder like any failed fetch
        log.warning("Unreadable image (%s), using placeholder: %s", result.get("content_type"), e)
        return None
    if not iw or not ih:
        return None
    scale = min(max_w / iw, max_h / ih)
    return Image(io.BytesIO(result["data"]), width=iw * scale, height=ih * scale)


# ═══════════════════════════════════════════════════════════════════════════════
# PAGINATION FLOWABLES
# ═══════════════════════════════════════════════════════════════════════════════

class _EndMarker(Flowable):
    """Zero-height flowable recording the page and free height where content ends."""

    def __init__(self, doc):
        Flowable.__init__(self)
        self.doc = doc
        self.page = 1
        self.remaining = 0.0

    def wrap(self, availWidth, availHeight):
        self.page = self.doc.page
        self.remaining = availHeight
        return (0, 0)

    def draw(self):
        pass


class _Fill(Flowable):
    """Blank vertical space that splits across pages."""

    def __init__(self, height):
        Flowable.__init__(self)
        self.height = max(0.0, height)

    def wrap(self, availWidth, availHeight):
        self.width = availWidth
        return (availWidth, self.height)

    def split(self, availWidth, availHeight):
        if availHeight < 1:
            return []
        if self.height <= availHeight:
            return [self]
        return [_Fill(availHeight), _Fill(self.height - availHeight)]

    def draw(self):
        pass


# ═══════════════════════════════════════════════════════════════════════════════
# STORY
# ═══════════════════════════════════════════════════════════════════════════════

def _header(plan, template, st, width):
    company = template.get("company") or {}
    logo = _image(plan.get("logo"), 45 * mm, 20 * mm)
    left = [logo] if logo else []
    if company.get("name"):
        left.append(_p(company["name"], st["company"]))
    for line in company.get("lines") or []:
        left.append(_p(line, st["small"]))
    labels = template["labels"]
    right = [_p(template["title"], st["title"]),
             Paragraph(f"<b>{escape(labels['date'])}</b> {escape(plan['date'])}", st["right"])]
    t = Table([[left or "", right]], colWidths=[width * 0.6, width * 0.4])
    t.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("RIGHTPADDING", (0, 0), (-1, -1), 0),
        ("LINEBELOW", (0, 0), (-1, 0), 1, NAVY),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    return t


def _client_block(plan, template, st, width):
    labels = template["labels"]
    client = plan["client"]
    rows = [[_p(labels[key], st["bold"]), _p(client[field], st["normal"])]
            for key, field in (("client_name", "name"), ("client_tax_id", "tax_id"),
                               ("client_email", "email"))]
    t = Table(rows, colWidths=[30 * mm, width - 30 * mm])
    t.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LEFTPADDING", (0, 0), (-1, -1), 2),
        ("TOPPADDING", (0, 0), (-1, -1), 1.5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 1.5),
    ]))
    return t


def _items_table(plan, template, st, width):
    labels = template["labels"]
    img_size = float(template.get("image_size_mm", 13)) * mm
    fixed = [max(img_size + 12, 20 * mm), 24 * mm, 14 * mm, 26 * mm, 26 * mm]
    col_widths = [fixed[0], fixed[1], width - sum(fixed), fixed[2], fixed[3], fixed[4]]

    head = [_p(labels[k], st["bold"]) for k in
            ("image", "code", "description", "quantity", "unit_price", "line_total")]
    data = [head]
    for item in plan["items"]:
        if plan["sentinel"]:
            data.append(["", "", _p(item["description"], st["center"]),
                         _p(item["quantity"], st["right"]),
                         _p(format_number(item["unit_price"], template), st["right"]),
                         _p(format_number(item["line_total"], template), st["right"])])
            continue
        photo = _image(item.get("image"), img_size, img_size) or _p(labels["no_photo"], st["center"])
        data.append([
            photo,
            _p(item["code"], st["normal"]),
            _p(item["description"], st["normal"]),
            _p(item["quantity"], st["right"]),
            _p(format_number(item["unit_price"], template), st["right"]),
            _p(format_number(item["line_total"], template), st["right"]),
        ])

    t = Table(data, colWidths=col_widths, repeatRows=1)
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), FILL),
        ("GRID", (0, 0), (-1, -1), 0.5, GRID),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("ALIGN", (0, 1), (0, -1), "CENTER"),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
    ]
    for r in range(2, len(data), 2):
        style.append(("BACKGROUND", (0, r), (-1, r), ALT_ROW))
    if plan["sentinel"]:
        style.append(("SPAN", (0, 1), (1, 1)))
        style.append(("TOPPADDING", (0, 1), (-1, 1), 8))
        style.append(("BOTTOMPADDING", (0, 1), (-1, 1), 8))
    t.setStyle(TableStyle(style))
    return t


def _totals_table(plan, template, st, width):
    labels = template["labels"]
    rows = [["", "", _p(labels["total"], st["bold"]),
             Paragraph(f"<b>{escape(format_currency(plan['grand_total'], template))}</b>", st["right"])]]
    for n, cond in enumerate(plan["conditions"], start=1):
        label = labels["single_condition"] if cond["mode"] == "single" else labels["condition"].format(n=n)
        rows.append([_p(label, st["bold"]), _p(cond["label"], st["normal"]),
                     _p(labels["total"], st["bold"]),
                     _p(format_currency(cond["amount"], template), st["right"])])
    t = Table(rows, colWidths=[28 * mm, width - 28 * mm - 60 * mm, 24 * mm, 36 * mm])
    t.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LINEABOVE", (2, 0), (-1, 0), 1, NAVY),
        ("LINEBELOW", (0, 1), (-1, -1), 0.25, GRID),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return t


def _content(plan, template, st, width) -> list:
    story = [
        _header(plan, template, st, width),
        Spacer(1, 4 * mm),
        _client_block(plan, template, st, width),
        Spacer(1, 4 * mm),
        _items_table(plan, template, st, width),
        Spacer(1, 2 * mm),
        _totals_table(plan, template, st, width),
    ]
    if plan["notes"]:
        story.append(Spacer(1, 3 * mm))
        story.append(_p(template["labels"]["notes"], st["heading"]))
        story.extend(_p(note, st["normal"]) for note in plan["notes"])
    return story


def _vendor_block(plan, template, st, width):
    vendor = plan["vendor"]
    max_h = float(template.get("vendor_photo_max_height_mm", 40)) * mm
    photo = _image(vendor.get("photo_image"), 40 * mm, max_h)
    lines = [Paragraph(f"<b>{escape(template['labels']['vendor'])}</b> {escape(vendor['name'])}",
                       st["normal"])]
    if vendor["email"]:
        lines.append(_p(vendor["email"], st["small"]))
    if vendor["phone"]:
        lines.append(_p(vendor["phone"], st["small"]))
    t = Table([[photo or "", lines]], colWidths=[44 * mm, width - 44 * mm])
    t.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "BOTTOM"),
        ("LINEABOVE", (0, 0), (-1, 0), 0.5, GRID),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
    ]))
    return t


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT
# ═══════════════════════════════════════════════════════════════════════════════

def _page_geometry(template: dict) -> dict:
    page = template["page"]
    pw, ph = PAGE_SIZES.get(str(page.get("size", "A4")).upper(), A4)
    top = float(page.get("margin_top_mm", 7)) * mm
    left = float(page.get("margin_left_mm", 7)) * mm
    right = float(page.get("margin_right_mm", 7)) * mm
    safe_h = min(float(page.get("safe_height_mm", 280)) * mm, ph - top)
    return {"size": (pw, ph), "top": top, "left": left, "right": right,
            "safe_h": safe_h, "width": pw - left - right}


def _on_page(canv, doc):
    canv.saveState()
    canv.setFont("Helvetica", 7)
    canv.setFillColor(GRAY)
    pw = doc.pagesize[0]
    canv.drawRightString(pw - doc.rightMargin, doc.bottomMargin / 2, f"{doc.page}")
    canv.restoreState()


def _doc(buf, geo: dict, plan: dict, template: dict) -> BaseDocTemplate:
    pw, ph = geo["size"]
    bottom = ph - geo["top"] - geo["safe_h"]
    company = (template.get("company") or {}).get("name") or "quotedesk"
    doc = BaseDocTemplate(
        buf, pagesize=geo["size"],
        leftMargin=geo["left"], rightMargin=geo["right"],
        topMargin=geo["top"], bottomMargin=bottom,
        title=f"{template['title']} {plan['client']['name']}".strip(),
        author=company, creator="quotedesk", invariant=1,
    )
    frame = Frame(geo["left"], bottom, geo["width"], geo["safe_h"], id="body",
                  leftPadding=0, rightPadding=0, topPadding=0, bottomPadding=0)
    doc.addPageTemplates([PageTemplate(id="quote", frames=[frame], onPage=_on_page)])
    return doc


def measure_content(plan: dict, template: dict) -> float:
    """Height in points the content takes before the vendor block, page breaks included."""
    geo = _page_geometry(template)
    st = _styles()
    doc = _doc(io.BytesIO(), geo, plan, template)
    marker = _EndMarker(doc)
    doc.build(_content(plan, template, st, geo["width"]) + [marker])
    return (marker.page - 1) * geo["safe_h"] + (geo["safe_h"] - marker.remaining)


def render_quote_pdf(plan: dict, template: dict) -> bytes:
    """
    Draw the plan as PDF bytes.

    The content is laid out once to measure its realized height, then again
    with blank space inserted so that content + space + vendor block fills
    exactly page_count(...) safe-height pages.
    """
    geo = _page_geometry(template)
    st = _styles()
    safe_h = geo["safe_h"]

    content_h = measure_content(plan, template)
    vendor_h = _vendor_block(plan, template, st, geo["width"]).wrap(geo["width"], safe_h)[1]
    pages = page_count(content_h + vendor_h, safe_h)
    # Slack covers float error and the sub-point gap _Fill leaves at a page bottom
    filler = max(0.0, pages * safe_h - content_h - vendor_h - 1.5)
    log.debug("PDF layout: content=%.1fpt vendor=%.1fpt pages=%d filler=%.1fpt",
              content_h, vendor_h, pages, filler)

    buf = io.BytesIO()
    doc = _doc(buf, geo, plan, template)
    story = _content(plan, template, st, geo["width"])
    story.append(_Fill(filler))
    story.append(_vendor_block(plan, template, st, geo["width"]))
    doc.build(story)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE: form → plan → document, under the render deadline
# ═══════════════════════════════════════════════════════════════════════════════

def _build_and_render(form, fmt, template, now, lookups):
    plan = build_quote(form, template, fmt=fmt, now=now, **lookups)
    if fmt == "xlsx":
        return plan, render_quote_xlsx(plan, template)
    return plan, render_quote_pdf(plan, template)


def generate_quote(form: dict, fmt: str = "pdf", template: dict = None,
                   timeout: float = None, now=None, **lookups) -> dict:
    """
    Produce the quote document for one form submission.

    Returns {"ok": True, "content", "mimetype", "filename", "grand_total",
    "items_count"}. Raises TemplateMissing, RenderTimeout (deadline passed)
    or SerializationFailure (the renderer broke). Extra keyword arguments
    are passed to build_quote (client_lookup, image_url_lookup, fetch).
    """
    fmt = (fmt or "pdf").lower()
    if fmt not in FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")
    template = template or load_template()
    timeout = timeout or RENDER_TIMEOUT

    t0 = time.time()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="quote-render")
    future = pool.submit(_build_and_render, form, fmt, template, now, lookups)
    try:
        plan, content = future.result(timeout=timeout)
    except FutureTimeout as e:
        future.cancel()
        raise RenderTimeout(f"Render exceeded {timeout:.0f}s") from e
    except QuoteError:
        raise
    except Exception as e:
        log.error("Renderer failed (%s): %s", fmt, e, exc_info=True)
        raise SerializationFailure(f"{type(e).__name__}: {e}") from e
    finally:
        pool.shutdown(wait=False)

    items_count = 0 if plan["sentinel"] else len(plan["items"])
    log.info("Quote %s rendered: %s, %d items, total %.2f, %d bytes in %.2fs",
             plan["filename"], fmt, items_count, plan["grand_total"],
             len(content), time.time() - t0,
             extra={"stage": "render", "format": fmt, "quote_file": plan["filename"],
                    "items": items_count, "total": plan["grand_total"]})
    return {
        "ok": True,
        "content": content,
        "mimetype": FORMATS[fmt],
        "filename": plan["filename"],
        "grand_total": plan["grand_total"],
        "items_count": items_count,
    }
