"""Tests for header inference, row conversion and bulk import."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import openpyxl
import pytest

from pharma_ledger import core_logic, importer

TODAY = date(2024, 3, 1)


# ---------------------------------------------------------------------------
# Header inference
# ---------------------------------------------------------------------------


def test_map_columns_resolves_exact_headers_and_leaves_the_rest_unmapped():
    mapping = importer.map_columns(["Item Name", "Batch No", "MRP", "Stock"])

    assert mapping["name"] == "Item Name"
    assert mapping["batch"] == "Batch No"
    assert mapping["mrp"] == "MRP"
    assert mapping["stock"] == "Stock"
    assert mapping["hsn"] is None
    assert mapping["tax_rate"] is None
    assert mapping["manufacturer"] is None


def test_map_columns_covers_every_field():
    assert set(importer.map_columns([])) == set(importer.FIELD_KEYWORDS)


def test_map_columns_ignores_punctuation_and_case():
    mapping = importer.map_columns(["M.R.P.", "GST %", "hsn code", "Exp."])

    assert mapping["mrp"] == "M.R.P."
    assert mapping["tax_rate"] == "GST %"
    assert mapping["hsn"] == "hsn code"
    assert mapping["expiry"] == "Exp."


def test_map_columns_gives_a_shared_keyword_header_to_one_field_only():
    """'Rate' suits both rates; the sale rate then stays unmapped."""

    mapping = importer.map_columns(["Product", "Batch", "Rate", "Qty", "Company"])

    assert mapping["purchase_rate"] == "Rate"
    assert mapping["sale_rate"] is None
    assert mapping["stock"] == "Qty"
    assert mapping["manufacturer"] == "Company"


def test_map_columns_uses_containment_both_ways():
    mapping = importer.map_columns(["Product", "Closing Stock Qty"])

    # "productname" contains the header; the header contains "stock"
    assert mapping["name"] == "Product"
    assert mapping["stock"] == "Closing Stock Qty"


def test_map_columns_falls_back_to_edit_distance():
    mapping = importer.map_columns(["Prodct Name", "Batc", "Stok"])

    assert mapping["name"] == "Prodct Name"
    assert mapping["batch"] == "Batc"
    assert mapping["stock"] == "Stok"


def test_map_columns_rejects_distant_headers():
    mapping = importer.map_columns(["Remarks", "Zone"])

    assert all(header is None for header in mapping.values())


@pytest.mark.parametrize(
    "left, right, distance",
    [
        ("kitten", "sitting", 3),
        ("mrp", "mfg", 2),
        ("", "abc", 3),
        ("stock", "stock", 0),
    ],
)
def test_levenshtein(left, right, distance):
    assert importer.levenshtein(left, right) == distance


def test_normalize_header():
    assert importer.normalize_header(" Batch-No. ") == "batchno"


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("₹1,234.50", Decimal("1234.50")),
        ("12 strips", Decimal("12")),
        (7.5, Decimal("7.5")),
        (None, Decimal("0")),
        ("", Decimal("0")),
        ("n/a", Decimal("0")),
        ("1.2.3", Decimal("1.2")),
    ],
)
def test_parse_number(raw, expected):
    assert importer.parse_number(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        (44197, date(2021, 1, 1)),
        (44197.4, date(2021, 1, 1)),
        ("44197", date(2021, 1, 1)),
        (datetime(2026, 5, 1, 13, 0), date(2026, 5, 1)),
        (date(2027, 2, 28), date(2027, 2, 28)),
        ("2025-12-31", date(2025, 12, 31)),
        ("31/12/2025", date(2025, 12, 31)),
        ("31-Dec-2025", date(2025, 12, 31)),
        ("Dec-2026", date(2026, 12, 1)),
        ("06/2027", date(2027, 6, 1)),
        ("2025", date(2025, 1, 1)),
        (" 2031 ", date(2031, 1, 1)),
        (2028, date(2028, 1, 1)),
    ],
)
def test_parse_sheet_date_understands_common_layouts(raw, expected):
    assert importer.parse_sheet_date(raw, today=TODAY) == expected


@pytest.mark.parametrize("raw", [None, "", "next year", "32/13/2020"])
def test_parse_sheet_date_falls_back_to_today(raw):
    assert importer.parse_sheet_date(raw, today=TODAY) == TODAY


def test_convert_row_fills_defaults():
    mapping = importer.map_columns(["Item Name", "Batch No", "MRP", "Stock"])

    product = importer.convert_row({"Item Name": None, "Batch No": " ab12 ", "MRP": "₹45.00", "Stock": "12"}, mapping, today=TODAY)

    assert product.name == "Unknown Item"
    assert product.batch == "AB12"
    assert product.mrp == Decimal("45.00")
    assert product.stock == 12
    assert product.hsn == ""
    assert product.manufacturer == "Generic"
    assert product.expiry == TODAY
    assert product.tax_rate == Decimal("0")


def test_convert_row_reuses_purchase_rate_when_sale_rate_unmapped():
    mapping = importer.map_columns(["Product Name", "Rate"])

    product = importer.convert_row({"Product Name": "Dolo 650", "Rate": "21.40"}, mapping, today=TODAY)

    assert product.purchase_rate == Decimal("21.40")
    assert product.sale_rate == Decimal("21.40")


def test_convert_row_blank_batch_becomes_na():
    mapping = importer.map_columns(["Name", "Batch"])

    product = importer.convert_row({"Name": "Azee", "Batch": "  "}, mapping, today=TODAY)

    assert product.batch == "NA"


# ---------------------------------------------------------------------------
# Sheet decoding and bulk import
# ---------------------------------------------------------------------------


def _write_xlsx(path, rows):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


def test_read_sheet_rows_skips_blank_rows_in_xlsx(tmp_path):
    path = _write_xlsx(
        tmp_path / "stock.xlsx",
        [
            [None, None],
            ["Item Name", "Qty"],
            ["Dolo 650", 10],
            [None, None],
            ["Azee 500", 4],
        ],
    )

    headers, rows = importer.read_sheet_rows(path)

    assert headers == ["Item Name", "Qty"]
    assert rows == [{"Item Name": "Dolo 650", "Qty": 10}, {"Item Name": "Azee 500", "Qty": 4}]


def test_read_sheet_rows_reads_csv_with_bom(tmp_path):
    path = tmp_path / "stock.csv"
    path.write_text("Item Name,Qty\nDolo 650,10\n", encoding="utf-8-sig")

    headers, rows = importer.read_sheet_rows(path)

    assert headers == ["Item Name", "Qty"]
    assert rows == [{"Item Name": "Dolo 650", "Qty": "10"}]


def test_read_sheet_rows_reads_windows_encoded_csv(tmp_path):
    """A CSV saved by Excel on Windows keeps its accented names intact."""

    path = tmp_path / "stock.csv"
    path.write_bytes("Item Name,MRP\nCafé Syrup,€45.00\n".encode("cp1252"))

    headers, rows = importer.read_sheet_rows(path)

    assert headers == ["Item Name", "MRP"]
    assert rows == [{"Item Name": "Café Syrup", "MRP": "€45.00"}]


def test_read_sheet_rows_rejects_unsupported_type(tmp_path):
    path = tmp_path / "stock.txt"
    path.write_text("hello")

    with pytest.raises(importer.ImportDecodeError):
        importer.read_sheet_rows(path)


def test_read_sheet_rows_rejects_corrupt_workbook(tmp_path):
    path = tmp_path / "stock.xlsx"
    path.write_bytes(b"this is not a zip archive")

    with pytest.raises(importer.ImportDecodeError):
        importer.read_sheet_rows(path)


def test_read_sheet_rows_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        importer.read_sheet_rows(tmp_path / "nope.xlsx")


def test_import_products_adds_every_row(runtime_context, tmp_path):
    path = _write_xlsx(
        tmp_path / "supplier.xlsx",
        [
            ["Item Name", "Batch No", "Exp", "GST", "MRP", "PTR", "Qty", "Mfg"],
            ["Dolo 650", "d1", 46000, 12, "30.00", "21.40", 120, "Micro Labs"],
            ["Azee 500", "az9", "Dec-2026", 12, "120", "95.5", 15, "Cipla"],
        ],
    )

    result = importer.import_products(runtime_context, path, today=TODAY)

    assert result.count == 2
    assert result.mapping["sale_rate"] == "PTR"
    products = core_logic.list_products(core_logic.refresh_context(runtime_context))
    assert [(p.product_id, p.name, p.batch) for p in products] == [(1, "Dolo 650", "D1"), (2, "Azee 500", "AZ9")]
    assert products[1].expiry == date(2026, 12, 1)
    assert products[0].stock == 120
    assert products[1].sale_rate == Decimal("95.5")


def test_import_products_with_only_a_header_adds_nothing(runtime_context, tmp_path):
    path = _write_xlsx(tmp_path / "empty.xlsx", [["Item Name", "Qty"]])

    result = importer.import_products(runtime_context, path)

    assert result.count == 0
    assert core_logic.list_products(runtime_context) == []
