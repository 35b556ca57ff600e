"""
Line-item normalizer: raw form columns → quote line items.

The quote form posts three parallel columns (product name, quantity, unit
price). Index i of each column describes one candidate line; columns may be
missing or of different lengths. Rows whose name is blank are dropped.
"""
import math
import re

CODE_SEPARATOR = " - "

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def as_list(value) -> list:
    """Form fields arrive as a list, a single scalar, or not at all."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def parse_quantity(raw) -> int:
    """Leading integer of `raw` ("3", "3.7", "2 un"); 1 when absent, invalid or < 1."""
    if isinstance(raw, bool):
        return 1
    if isinstance(raw, int):
        return raw if raw >= 1 else 1
    if isinstance(raw, float):
        if math.isnan(raw) or math.isinf(raw):
            return 1
        return int(raw) if raw >= 1 else 1
    m = _INT_PREFIX.match(str(raw or ""))
    if not m:
        return 1
    qty = int(m.group(1))
    return qty if qty >= 1 else 1


def parse_price(raw) -> float:
    """Leading decimal of `raw`, accepting "12,50" as 12.5; 0.0 when absent, invalid or < 0."""
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        val = float(raw)
    else:
        text = str(raw or "").strip()
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        m = _FLOAT_PREFIX.match(text)
        if not m:
            return 0.0
        val = float(m.group(1))
    if math.isnan(val) or math.isinf(val) or val < 0:
        return 0.0
    return val


def split_code(name: str):
    """ "CODE - DESC" → ("CODE", "DESC"); only the first separator splits."""
    name = (name or "").strip()
    if CODE_SEPARATOR in name:
        code, rest = name.split(CODE_SEPARATOR, 1)
        return code.strip(), rest.strip()
    return "", name


def normalize(names, quantities=None, prices=None) -> list:
    """
    Build validated line items from the three form columns.

    Returns [{"code", "description", "quantity", "unit_price", "line_total"}]
    in submission order, skipping rows with a blank name.
    """
    names = as_list(names)
    quantities = as_list(quantities)
    prices = as_list(prices)

    items = []
    for i, raw_name in enumerate(names):
        name = str(raw_name).strip() if raw_name is not None else ""
        if not name:
            continue
        code, description = split_code(name)
        qty = parse_quantity(quantities[i] if i < len(quantities) else None)
        price = parse_price(prices[i] if i < len(prices) else None)
        items.append({
            "code": code,
            "description": description,
            "quantity": qty,
            "unit_price": price,
            "line_total": qty * price,
        })
    return items


def grand_total(items) -> float:
    return math.fsum(it["quantity"] * it["unit_price"] for it in items)
