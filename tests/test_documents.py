"""Tests for display formatting and printable invoice documents."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import openpyxl
import pytest

from pharma_ledger import calculator, data_manager, documents, formatting

from conftest import make_product


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "digits, expected",
    [
        ("7", "7"),
        ("999", "999"),
        ("1000", "1,000"),
        ("123456", "1,23,456"),
        ("12345678", "1,23,45,678"),
    ],
)
def test_group_indian(digits, expected):
    assert formatting.group_indian(digits) == expected


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("123456.78"), "₹1,23,456.78"),
        (Decimal("56"), "₹56.00"),
        (Decimal("0.005"), "₹0.01"),
        (Decimal("-1500"), "-₹1,500.00"),
        (12, "₹12.00"),
    ],
)
def test_format_currency(amount, expected):
    assert formatting.format_currency(amount) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (date(2021, 1, 1), "01-Jan-2021"),
        (datetime(2024, 3, 9, 18, 30), "09-Mar-2024"),
        ("2030-06-30", "30-Jun-2030"),
        (None, ""),
        ("", ""),
    ],
)
def test_format_date(value, expected):
    assert formatting.format_date(value) == expected


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("123456"), "Rupees One Lakh Twenty Three Thousand Four Hundred and Fifty Six Only"),
        (Decimal("0"), "Rupees Zero Only"),
        (Decimal("112"), "Rupees One Hundred and Twelve Only"),
        (Decimal("20000000"), "Rupees Two Crore Only"),
        (Decimal("45.50"), "Rupees Forty Five and Fifty Paise Only"),
        (Decimal("-7"), "Minus Rupees Seven Only"),
    ],
)
def test_amount_in_words(amount, expected):
    assert formatting.amount_in_words(amount) == expected


# ---------------------------------------------------------------------------
# Invoice documents
# ---------------------------------------------------------------------------


@pytest.fixture
def invoice():
    items, totals = calculator.recompute_cart(
        [
            calculator.build_line_item(make_product(1, "Paracetamol 500"), 10),
            calculator.build_line_item(make_product(2, "Ibuprofen 400", batch="IBU07", expiry=None), 2, bonus_quantity=1),
        ]
    )
    return data_manager.InvoiceRow(
        invoice_id=1,
        invoice_no="TI-100",
        timestamp_iso="2024-03-01T10:15:00+00:00",
        party_id=1,
        party_name="City Medicals",
        party_address="12 Market Road",
        party_tax_id="",
        category="WHOLESALE",
        logistics=data_manager.LogisticsDetails(transport="Road Express", vehicle_no="MH12AB1234"),
        items=items,
        sub_total=totals.sub_total,
        total_tax=totals.total_tax,
        round_off=totals.round_off,
        grand_total=totals.grand_total,
    )


@pytest.fixture
def profile():
    return data_manager.CompanyProfile(
        name="Test Distributors",
        address="1 Depot Lane",
        tax_id="27AAAAA0000A1Z5",
        phone="020-5550100",
        terms="Goods once sold will not be taken back.\nSubject to Pune jurisdiction.",
    )


def _column_values(sheet, column):
    return [sheet.cell(row=row, column=column).value for row in range(1, sheet.max_row + 1)]


@pytest.mark.parametrize(
    "invoice_no, expected",
    [
        ("TI-100", "TI-100.xlsx"),
        ("TI/2024/7", "TI_2024_7.xlsx"),
    ],
)
def test_document_file_name_is_path_safe(invoice_no, expected):
    assert documents.document_file_name(invoice_no) == expected


def test_build_invoice_workbook_lays_out_header_and_parties(invoice, profile):
    sheet = documents.build_invoice_workbook(invoice, profile).active

    assert sheet["A1"].value == "TEST DISTRIBUTORS"
    assert sheet["A6"].value == "TAX INVOICE"
    assert "A1:L1" in {str(merged) for merged in sheet.merged_cells.ranges}
    left = _column_values(sheet, 2)
    right = _column_values(sheet, 10)
    assert "City Medicals" in left
    assert "N/A" in left
    assert "TI-100" in right
    assert "01-Mar-2024" in right
    assert "MH12AB1234" in right


def test_build_invoice_workbook_writes_item_table(invoice, profile):
    sheet = documents.build_invoice_workbook(invoice, profile).active

    header_row = next(
        row for row in range(1, sheet.max_row + 1) if sheet.cell(row=row, column=1).value == "SN"
    )
    headers = [sheet.cell(row=header_row, column=column).value for column in range(1, 13)]
    assert headers == list(documents.ITEM_TABLE_HEADERS)
    assert sheet.cell(row=header_row + 1, column=2).value == "Paracetamol 500"
    assert sheet.cell(row=header_row + 1, column=5).value == "01/30"
    assert sheet.cell(row=header_row + 2, column=5).value in ("", None)
    assert sheet.cell(row=header_row + 2, column=7).value == 1
    assert sheet.cell(row=header_row + 1, column=12).number_format == "#,##0.00"
    assert str(header_row) in str(sheet.print_title_rows)


def test_build_invoice_workbook_spells_out_the_grand_total(invoice, profile):
    sheet = documents.build_invoice_workbook(invoice, profile).active

    words = formatting.amount_in_words(invoice.grand_total)
    assert words in _column_values(sheet, 1)
    assert formatting.format_currency(invoice.grand_total) in _column_values(sheet, 12)
    assert "Subject to Pune jurisdiction." in _column_values(sheet, 1)
    assert "For Test Distributors" in _column_values(sheet, 10)


def test_build_invoice_workbook_fits_a4_portrait(invoice, profile):
    sheet = documents.build_invoice_workbook(invoice, profile).active

    assert int(sheet.page_setup.paperSize) == int(sheet.PAPERSIZE_A4)
    assert sheet.page_setup.orientation == sheet.ORIENTATION_PORTRAIT
    assert sheet.sheet_properties.pageSetUpPr.fitToPage is True
    assert sheet.page_setup.fitToWidth == 1
    assert sheet.page_setup.fitToHeight == 0
    assert sheet.column_dimensions["B"].width == documents.COLUMN_WIDTHS[1]


def test_generate_invoice_document_writes_the_file(invoice, profile, tmp_path):
    destination_dir = tmp_path / "printed" / "2024"

    path = documents.generate_invoice_document(invoice, profile, destination_dir)

    assert path == (destination_dir / "TI-100.xlsx").resolve()
    reopened = openpyxl.load_workbook(path)
    assert reopened.sheetnames == ["Invoice"]
    assert reopened["Invoice"]["A6"].value == "TAX INVOICE"
