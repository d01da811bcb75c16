"""Printable invoice documents.

A committed invoice is laid out on a single worksheet sized for A4 paper and
saved next to its siblings as ``<invoice number>.xlsx``. The item table's
header row repeats on every printed page.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Sequence

import openpyxl
from openpyxl.styles import Alignment, Border, Font, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log
from .formatting import amount_in_words, format_currency, format_date

ITEM_TABLE_HEADERS: Sequence[str] = (
    "SN",
    "Product",
    "HSN",
    "Batch",
    "Exp",
    "Qty",
    "Free",
    "Rate",
    "Disc%",
    "GST%",
    "Taxable",
    "Amount",
)
COLUMN_WIDTHS: Sequence[int] = (5, 32, 10, 12, 10, 7, 7, 10, 7, 7, 12, 12)

_THIN = Side(style="thin")
_BOXED = Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN)
_BOLD = Font(bold=True)


def document_file_name(invoice_no: str) -> str:
    """File name for an invoice; characters unsafe in paths become ``_``."""
    return re.sub(r"[^A-Za-z0-9_.-]", "_", invoice_no) + ".xlsx"


def _merged_line(sheet: Worksheet, row: int, text: str, *, bold: bool = False, size: int = 10) -> None:
    last_column = get_column_letter(len(ITEM_TABLE_HEADERS))
    sheet.merge_cells(f"A{row}:{last_column}{row}")
    cell = sheet.cell(row=row, column=1, value=text)
    cell.font = Font(bold=bold, size=size)
    cell.alignment = Alignment(horizontal="center")


def _write_header(sheet: Worksheet, profile: data_manager.CompanyProfile) -> int:
    _merged_line(sheet, 1, profile.name.upper(), bold=True, size=16)
    _merged_line(sheet, 2, profile.address)
    _merged_line(sheet, 3, f"Phone: {profile.phone} | Email: {profile.email}")
    _merged_line(sheet, 4, f"DL No: {profile.dl_no_1}, {profile.dl_no_2}")
    _merged_line(sheet, 5, f"GSTIN: {profile.tax_id}")
    _merged_line(sheet, 6, "TAX INVOICE", bold=True, size=12)
    return 8


def _write_parties(sheet: Worksheet, invoice: data_manager.InvoiceRow, row: int) -> int:
    issued = datetime.fromisoformat(invoice.timestamp_iso)
    left = (
        ("Billed To:", invoice.party_name),
        ("Address:", invoice.party_address or "-"),
        ("GSTIN:", invoice.party_tax_id or "N/A"),
        ("Category:", invoice.category),
    )
    right = (
        ("Invoice No:", invoice.invoice_no),
        ("Date:", format_date(issued.date())),
        ("Transport:", invoice.logistics.transport or "-"),
        ("Vehicle No:", invoice.logistics.vehicle_no or "-"),
        ("GR No:", invoice.logistics.gr_no or "-"),
        ("Destination:", invoice.logistics.destination or "-"),
    )
    for offset, (label, value) in enumerate(left):
        sheet.cell(row=row + offset, column=1, value=label).font = _BOLD
        sheet.cell(row=row + offset, column=2, value=value)
    for offset, (label, value) in enumerate(right):
        sheet.cell(row=row + offset, column=8, value=label).font = _BOLD
        sheet.cell(row=row + offset, column=10, value=value)
    return row + max(len(left), len(right)) + 1


def _write_items(sheet: Worksheet, invoice: data_manager.InvoiceRow, row: int) -> int:
    header_row = row
    for column, title in enumerate(ITEM_TABLE_HEADERS, start=1):
        cell = sheet.cell(row=header_row, column=column, value=title)
        cell.font = _BOLD
        cell.border = _BOXED
        cell.alignment = Alignment(horizontal="center")
    sheet.print_title_rows = f"{header_row}:{header_row}"

    for index, item in enumerate(invoice.items, start=1):
        values = (
            index,
            item.product_name,
            item.hsn,
            item.batch,
            item.expiry.strftime("%m/%y") if item.expiry else "",
            item.quantity,
            item.bonus_quantity,
            item.rate,
            item.discount_percent,
            item.tax_rate,
            item.taxable_value,
            item.total_amount,
        )
        for column, value in enumerate(values, start=1):
            cell = sheet.cell(row=header_row + index, column=column, value=value)
            cell.border = _BOXED
            if column in (8, 11, 12):
                cell.number_format = "#,##0.00"
    return header_row + len(invoice.items) + 2


def _write_totals(sheet: Worksheet, invoice: data_manager.InvoiceRow, row: int) -> int:
    figures = (
        ("Sub Total:", f"{invoice.sub_total:.2f}"),
        ("GST Amount:", f"{invoice.total_tax:.2f}"),
        ("Round Off:", f"{invoice.round_off:.2f}"),
        ("Grand Total:", format_currency(invoice.grand_total)),
    )
    for offset, (label, value) in enumerate(figures):
        sheet.cell(row=row + offset, column=10, value=label).font = _BOLD
        cell = sheet.cell(row=row + offset, column=12, value=value)
        cell.alignment = Alignment(horizontal="right")
    sheet.cell(row=row + len(figures) - 1, column=12).font = _BOLD

    sheet.cell(row=row, column=1, value="Amount in Words:").font = _BOLD
    sheet.cell(row=row + 1, column=1, value=amount_in_words(invoice.grand_total))
    return row + len(figures) + 1


def _write_footer(sheet: Worksheet, profile: data_manager.CompanyProfile, row: int) -> int:
    sheet.cell(row=row, column=1, value="Terms & Conditions:").font = _BOLD
    for offset, line in enumerate(profile.terms.splitlines() or [""], start=1):
        sheet.cell(row=row + offset, column=1, value=line)
    sheet.cell(row=row, column=10, value=f"For {profile.name}").font = _BOLD
    sheet.cell(row=row + 5, column=10, value="Authorized Signatory")
    return row + 6


def _configure_page(sheet: Worksheet) -> None:
    for column, width in enumerate(COLUMN_WIDTHS, start=1):
        sheet.column_dimensions[get_column_letter(column)].width = width
    sheet.page_setup.paperSize = sheet.PAPERSIZE_A4
    sheet.page_setup.orientation = sheet.ORIENTATION_PORTRAIT
    sheet.sheet_properties.pageSetUpPr.fitToPage = True
    sheet.page_setup.fitToWidth = 1
    sheet.page_setup.fitToHeight = 0


def build_invoice_workbook(
    invoice: data_manager.InvoiceRow,
    profile: data_manager.CompanyProfile,
) -> openpyxl.Workbook:
    """Lay out ``invoice`` on a fresh single-sheet workbook."""

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Invoice"
    _configure_page(sheet)
    row = _write_header(sheet, profile)
    row = _write_parties(sheet, invoice, row)
    row = _write_items(sheet, invoice, row)
    row = _write_totals(sheet, invoice, row)
    _write_footer(sheet, profile, row)
    return workbook


def generate_invoice_document(
    invoice: data_manager.InvoiceRow,
    profile: data_manager.CompanyProfile,
    destination_dir: Path,
) -> Path:
    """Write the printable copy of ``invoice`` into ``destination_dir``.

    Args:
        invoice (InvoiceRow): Committed invoice to print.
        profile (CompanyProfile): Seller details for the letterhead.
        destination_dir (Path): Folder receiving the document; created when
            missing.

    Returns:
        Path: Location of the written ``.xlsx`` document.
    """

    destination = Path(destination_dir).expanduser() / document_file_name(invoice.invoice_no)
    workbook = build_invoice_workbook(invoice, profile)
    data_manager.save_workbook(workbook, destination)
    log.debug("Wrote invoice document '%s'", destination)
    return destination.resolve()
