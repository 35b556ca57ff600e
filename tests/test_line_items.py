"""
Tests for src/forms/line_items.py: quantity/price parsing, code split, normalize.
"""
import math

from src.forms.line_items import (
    as_list, grand_total, normalize, parse_price, parse_quantity, split_code,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Quantity
# ═══════════════════════════════════════════════════════════════════════════════

class TestParseQuantity:

    def test_plain_integer(self):
        assert parse_quantity("3") == 3

    def test_leading_integer_of_decimal(self):
        assert parse_quantity("3.7") == 3

    def test_trailing_text_ignored(self):
        assert parse_quantity("2 un") == 2

    def test_zero_becomes_one(self):
        assert parse_quantity("0") == 1

    def test_negative_becomes_one(self):
        assert parse_quantity("-4") == 1

    def test_garbage_becomes_one(self):
        assert parse_quantity("abc") == 1
        assert parse_quantity("") == 1
        assert parse_quantity(None) == 1

    def test_numeric_types(self):
        assert parse_quantity(5) == 5
        assert parse_quantity(2.9) == 2
        assert parse_quantity(float("nan")) == 1
        assert parse_quantity(True) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Price
# ═══════════════════════════════════════════════════════════════════════════════

class TestParsePrice:

    def test_decimal_point(self):
        assert parse_price("10.5") == 10.5

    def test_decimal_comma(self):
        assert parse_price("12,50") == 12.5

    def test_trailing_text_ignored(self):
        assert parse_price("7.25 reais") == 7.25

    def test_negative_becomes_zero(self):
        assert parse_price("-3") == 0.0

    def test_garbage_becomes_zero(self):
        assert parse_price("abc") == 0.0
        assert parse_price(None) == 0.0
        assert parse_price("") == 0.0

    def test_non_finite_becomes_zero(self):
        assert parse_price(float("inf")) == 0.0
        assert parse_price(float("nan")) == 0.0

    def test_numeric_passthrough(self):
        assert parse_price(4) == 4.0
        assert parse_price(0.1) == 0.1


# ═══════════════════════════════════════════════════════════════════════════════
# Code split
# ═══════════════════════════════════════════════════════════════════════════════

class TestSplitCode:

    def test_code_and_description(self):
        assert split_code("PAR-001 - Parafuso") == ("PAR-001", "Parafuso")

    def test_only_first_separator_splits(self):
        assert split_code("ABC - Tubo - 2m") == ("ABC", "Tubo - 2m")

    def test_no_separator_is_free_text(self):
        assert split_code("Serviço de instalação") == ("", "Serviço de instalação")

    def test_hyphen_without_spaces_is_not_separator(self):
        assert split_code("PAR-001") == ("", "PAR-001")


# ═══════════════════════════════════════════════════════════════════════════════
# Normalize
# ═══════════════════════════════════════════════════════════════════════════════

class TestNormalize:

    def test_parallel_columns(self):
        items = normalize(["A1 - Item A", "B2 - Item B"], ["2", "3"], ["1,50", "10"])
        assert [i["code"] for i in items] == ["A1", "B2"]
        assert items[0]["quantity"] == 2
        assert items[0]["unit_price"] == 1.5
        assert items[0]["line_total"] == 3.0
        assert items[1]["line_total"] == 30.0

    def test_blank_names_dropped_and_order_kept(self):
        items = normalize(["X - first", "", "   ", None, "Y - last"], ["1", "9", "9", "9", "2"],
                          ["1", "9", "9", "9", "2"])
        assert [i["code"] for i in items] == ["X", "Y"]
        assert items[1]["quantity"] == 2

    def test_short_columns_use_defaults(self):
        items = normalize(["A - a", "B - b"], ["4"], [])
        assert items[0]["quantity"] == 4
        assert items[1]["quantity"] == 1
        assert items[1]["unit_price"] == 0.0

    def test_scalar_fields(self):
        items = normalize("A - only", "2", "5")
        assert len(items) == 1
        assert items[0]["line_total"] == 10.0

    def test_empty(self):
        assert normalize([], [], []) == []
        assert normalize(None) == []

    def test_grand_total_is_sum_of_lines(self):
        items = normalize(["a", "b", "c"], ["3", "1", "7"], ["0.1", "0.2", "0.3"])
        assert math.isclose(grand_total(items), sum(i["line_total"] for i in items))
        assert math.isclose(grand_total(items), 2.6)

    def test_as_list(self):
        assert as_list(None) == []
        assert as_list("x") == ["x"]
        assert as_list(("a", "b")) == ["a", "b"]
