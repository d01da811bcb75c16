"""Data access layer for the pharma ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, cloning, and atomically persisting the Excel
   file.
3. Sheet operations: loading structured records, appending, updating and
   deleting individual rows by their integer identifier.
4. Lookup support: a sorted prefix index used for search-as-you-type.
"""


from __future__ import annotations

import bisect
import configparser
import os
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_INVOICE_PREFIX,
    DEFAULT_STARTING_INVOICE_NUMBER,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
PARTIES_SHEET = SheetName.PARTIES.value
INVOICES_SHEET = SheetName.INVOICES.value
INVOICE_ITEMS_SHEET = SheetName.INVOICE_ITEMS.value
SETTINGS_SHEET = SheetName.SETTINGS.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "ProductName",
        "Batch",
        "Expiry",
        "HSN",
        "TaxRate",
        "MRP",
        "PurchaseRate",
        "SaleRate",
        "Stock",
        "Manufacturer",
    ],
    PARTIES_SHEET: [
        "PartyID",
        "PartyName",
        "Category",
        "GSTIN",
        "Address",
        "Phone",
        "Email",
        "StateCode",
        "DLNo1",
        "DLNo2",
        "CreditLimit",
        "PaymentTermsDays",
    ],
    INVOICES_SHEET: [
        "InvoiceID",
        "InvoiceNo",
        "Timestamp",
        "PartyID",
        "PartyName",
        "PartyAddress",
        "PartyGSTIN",
        "BillCategory",
        "Transport",
        "VehicleNo",
        "GRNo",
        "Destination",
        "SubTotal",
        "TotalTax",
        "RoundOff",
        "GrandTotal",
    ],
    INVOICE_ITEMS_SHEET: [
        "InvoiceID",
        "LineNo",
        "ProductID",
        "ProductName",
        "Batch",
        "Expiry",
        "HSN",
        "Quantity",
        "BonusQuantity",
        "MRP",
        "Rate",
        "DiscountPercent",
        "TaxRate",
        "TaxableValue",
        "CGST",
        "SGST",
        "IGST",
        "Total",
    ],
    SETTINGS_SHEET: [
        "InvoicePrefix",
        "NextInvoiceNumber",
        "CompanyName",
        "Address",
        "GSTIN",
        "Phone",
        "Email",
        "DLNo1",
        "DLNo2",
        "Terms",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    document_dir: Path
    invoice_prefix: str = DEFAULT_INVOICE_PREFIX
    starting_invoice_number: int = DEFAULT_STARTING_INVOICE_NUMBER


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: int
    name: str
    batch: str
    expiry: Optional[date]
    hsn: str
    tax_rate: Decimal
    mrp: Decimal
    purchase_rate: Decimal
    sale_rate: Decimal
    stock: int
    manufacturer: str


@dataclass(frozen=True)
class PartyRow:
    """In-memory view of a row from the ``Parties`` sheet."""

    party_id: int
    name: str
    category: str
    tax_id: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    state_code: str = ""
    dl_no_1: str = ""
    dl_no_2: str = ""
    credit_limit: Optional[Decimal] = None
    payment_terms_days: Optional[int] = None


@dataclass(frozen=True)
class LogisticsDetails:
    """Transport metadata printed on a wholesale bill."""

    transport: str = ""
    vehicle_no: str = ""
    gr_no: str = ""
    destination: str = ""


@dataclass(frozen=True)
class InvoiceItemRow:
    """One billed line, carrying a snapshot of the product at time of sale.

    The last five fields are derived by :mod:`pharma_ledger.calculator` and
    are never edited on their own.
    """

    product_id: int
    product_name: str
    batch: str
    expiry: Optional[date]
    hsn: str
    quantity: int
    bonus_quantity: int
    mrp: Decimal
    rate: Decimal
    discount_percent: Decimal
    tax_rate: Decimal
    taxable_value: Decimal = Decimal("0.00")
    cgst_amount: Decimal = Decimal("0.00")
    sgst_amount: Decimal = Decimal("0.00")
    igst_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of an invoice header joined with its line items."""

    invoice_id: int
    invoice_no: str
    timestamp_iso: str
    party_id: Optional[int]
    party_name: str
    party_address: str
    party_tax_id: str
    category: str
    logistics: LogisticsDetails
    items: tuple[InvoiceItemRow, ...]
    sub_total: Decimal
    total_tax: Decimal
    round_off: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class SequenceCounter:
    """The singleton invoice-number counter stored on the ``Settings`` sheet."""

    prefix: str
    next_number: int

    def format(self) -> str:
        return f"{self.prefix}-{self.next_number}"


@dataclass(frozen=True)
class CompanyProfile:
    """Seller details printed on every invoice."""

    name: str
    address: str = ""
    tax_id: str = ""
    phone: str = ""
    email: str = ""
    dl_no_1: str = ""
    dl_no_2: str = ""
    terms: str = ""


@dataclass(frozen=True)
class PrefixIndex:
    """Sorted, lower-cased keys paired with the sheet position they came from.

    Keys sharing a prefix are contiguous in sorted order, so a prefix scan is a
    binary search followed by a short forward walk.
    """

    keys: tuple[str, ...] = field(default_factory=tuple)
    positions: tuple[int, ...] = field(default_factory=tuple)

    def scan(self, prefix: str) -> Iterator[int]:
        """Yield the positions of every key starting with ``prefix``."""

        needle = prefix.lower()
        start = bisect.bisect_left(self.keys, needle)
        for idx in range(start, len(self.keys)):
            if not self.keys[idx].startswith(needle):
                break
            yield self.positions[idx]


def build_prefix_index(values: Sequence[str]) -> PrefixIndex:
    """Index ``values`` by their lower-cased text.

    Args:
        values (Sequence[str]): Field values in sheet order. The position of
            each value is what :meth:`PrefixIndex.scan` returns.

    Returns:
        PrefixIndex: Sorted index ready for prefix scans.
    """

    pairs = sorted((value.lower(), position) for position, value in enumerate(values))
    return PrefixIndex(
        keys=tuple(key for key, _ in pairs),
        positions=tuple(position for _, position in pairs),
    )


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _resolve_against(raw: str, base_path: Optional[Path]) -> Path:
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        candidate = (base_path / candidate).resolve()
    return candidate


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``CompanyName`` and
    ``SchemaVersion``. ``DocumentDir`` defaults to an ``invoices`` folder next
    to the workbook, and the optional ``[Billing]`` section seeds the invoice
    number sequence of a freshly created workbook. Relative paths are expanded
    against ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required options is missing.
        ValueError: If ``StartingInvoiceNumber`` is not an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = _resolve_against(data_file_raw, base_path)
    document_dir_raw = parser.get("System", "DocumentDir", fallback=None)
    if document_dir_raw:
        document_dir = _resolve_against(document_dir_raw, base_path)
    else:
        document_dir = data_file_path.parent / "invoices"

    invoice_prefix = parser.get("Billing", "InvoicePrefix", fallback=DEFAULT_INVOICE_PREFIX)
    starting_number = parser.getint(
        "Billing",
        "StartingInvoiceNumber",
        fallback=DEFAULT_STARTING_INVOICE_NUMBER,
    )

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        document_dir=document_dir,
        invoice_prefix=invoice_prefix,
        starting_invoice_number=starting_number,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the ledger workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination`` atomically.

    The workbook is first written to a temporary file in the destination
    directory and then moved over the target with :func:`os.replace`, so a
    crash mid-write leaves the previous file intact. Parent directories are
    created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        workbook.save(tmp_path)
        os.replace(tmp_path, dest)
    finally:
        tmp_path.unlink(missing_ok=True)


def clone_workbook(workbook: Workbook) -> Workbook:
    """Return an independent in-memory copy of ``workbook``.

    Changes made to the copy never reach the original, which makes the copy a
    safe staging area for a group of writes that must land together.
    """

    buffer = BytesIO()
    workbook.save(buffer)
    buffer.seek(0)
    return openpyxl.load_workbook(buffer)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Generic sheet helpers
# ---------------------------------------------------------------------------


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterator[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: Any) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (Any): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value == key_value:
            return row_idx

    return None


def next_id(workbook: Workbook, sheet_name: str, key_column: str) -> int:
    """Return the next free integer identifier for ``sheet_name``."""

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")
    col = header_map[key_column] - 1
    highest = 0
    for raw in _iter_raw_rows(workbook, sheet_name):
        value = raw[col]
        if value is not None:
            highest = max(highest, int(value))
    return highest + 1


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: Any,
    field_values: Mapping[str, Any],
    label: str,
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label} not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)
    unknown = [name for name in field_values if name not in header_map]
    if unknown:
        raise KeyError(f"Unknown {label.lower()} field: {', '.join(unknown)}")

    for name, value in field_values.items():
        sheet.cell(row=row_index, column=header_map[name], value=value)


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: Any, label: str) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label} not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Header and fully empty rows are skipped; each remaining row is converted
    via :func:`deserialize_product`.
    """

    for raw in _iter_raw_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def bulk_append_products(workbook: Workbook, records: Iterable[ProductRow]) -> int:
    """Append many product records in one pass.

    Args:
        workbook (Workbook): Workbook whose products sheet should be modified.
        records (Iterable[ProductRow]): Products with identifiers already
            allocated.

    Returns:
        int: Number of rows appended.
    """

    sheet = workbook[PRODUCTS_SHEET]
    count = 0
    for record in records:
        sheet.append(serialize_product(record))
        count += 1
    return count


def update_product(workbook: Workbook, product_id: int, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for an existing product.

    Only the specified fields are modified, leaving other columns untouched.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values, "Product")


def delete_product(workbook: Workbook, product_id: int) -> None:
    """Remove the product row identified by ``product_id``.

    Raises:
        KeyError: If the product cannot be found.
    """

    _delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, "Product")


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.batch,
        record.expiry.isoformat() if record.expiry else None,
        record.hsn,
        record.tax_rate,
        record.mrp,
        record.purchase_rate,
        record.sale_rate,
        record.stock,
        record.manufacturer,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric values become :class:`~decimal.Decimal` instances, text columns are
    coerced to ``str`` so Excel's habit of turning batch codes into numbers
    does not leak out, and the expiry column is parsed as an ISO date.
    """

    (
        product_id,
        name,
        batch,
        expiry,
        hsn,
        tax_rate,
        mrp,
        purchase_rate,
        sale_rate,
        stock,
        manufacturer,
    ) = _pad(raw_row, len(SHEET_COLUMNS[PRODUCTS_SHEET]))

    return ProductRow(
        product_id=int(product_id),
        name=_to_text(name),
        batch=_to_text(batch),
        expiry=_to_date(expiry),
        hsn=_to_text(hsn),
        tax_rate=_to_decimal(tax_rate),
        mrp=_to_decimal(mrp),
        purchase_rate=_to_decimal(purchase_rate),
        sale_rate=_to_decimal(sale_rate),
        stock=_to_int(stock),
        manufacturer=_to_text(manufacturer),
    )


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


def iter_parties(workbook: Workbook) -> Iterable[PartyRow]:
    """Iterate over the ``Parties`` worksheet and yield typed records."""

    for raw in _iter_raw_rows(workbook, PARTIES_SHEET):
        yield deserialize_party(raw)


def append_party(workbook: Workbook, record: PartyRow) -> None:
    """Append a party record to the ``Parties`` worksheet."""

    workbook[PARTIES_SHEET].append(serialize_party(record))


def update_party(workbook: Workbook, party_id: int, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for an existing party.

    Raises:
        KeyError: If the party or any referenced column is missing.
    """

    _update_row(workbook, PARTIES_SHEET, "PartyID", party_id, field_values, "Party")


def delete_party(workbook: Workbook, party_id: int) -> None:
    """Remove the party row identified by ``party_id``."""

    _delete_row(workbook, PARTIES_SHEET, "PartyID", party_id, "Party")


def serialize_party(record: PartyRow) -> list[object]:
    """Convert a party dataclass into the worksheet column ordering."""

    return [
        record.party_id,
        record.name,
        record.category,
        record.tax_id,
        record.address,
        record.phone,
        record.email,
        record.state_code,
        record.dl_no_1,
        record.dl_no_2,
        record.credit_limit,
        record.payment_terms_days,
    ]


def deserialize_party(raw_row: Sequence[object]) -> PartyRow:
    """Convert a raw worksheet row into a strongly typed party record."""

    (
        party_id,
        name,
        category,
        tax_id,
        address,
        phone,
        email,
        state_code,
        dl_no_1,
        dl_no_2,
        credit_limit,
        payment_terms_days,
    ) = _pad(raw_row, len(SHEET_COLUMNS[PARTIES_SHEET]))

    return PartyRow(
        party_id=int(party_id),
        name=_to_text(name),
        category=_to_text(category),
        tax_id=_to_text(tax_id),
        address=_to_text(address),
        phone=_to_text(phone),
        email=_to_text(email),
        state_code=_to_text(state_code),
        dl_no_1=_to_text(dl_no_1),
        dl_no_2=_to_text(dl_no_2),
        credit_limit=_to_decimal(credit_limit) if credit_limit is not None else None,
        payment_terms_days=_to_int(payment_terms_days) if payment_terms_days is not None else None,
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    """Stream invoices with their line items joined back in line order.

    Line items are read once from ``InvoiceItems`` and grouped by
    ``InvoiceID``; headers are then yielded in sheet order.
    """

    items_by_invoice: Dict[int, List[tuple[int, InvoiceItemRow]]] = {}
    for raw in _iter_raw_rows(workbook, INVOICE_ITEMS_SHEET):
        invoice_id, line_no, item = deserialize_invoice_item(raw)
        items_by_invoice.setdefault(invoice_id, []).append((line_no, item))

    for raw in _iter_raw_rows(workbook, INVOICES_SHEET):
        invoice_id = int(raw[0])
        lines = sorted(items_by_invoice.get(invoice_id, []), key=lambda pair: pair[0])
        yield deserialize_invoice(raw, tuple(item for _, item in lines))


def append_invoice(workbook: Workbook, record: InvoiceRow) -> None:
    """Append an invoice header and all of its line items.

    Args:
        workbook (Workbook): Workbook containing the invoice sheets.
        record (InvoiceRow): Invoice with its identifier already allocated.
    """

    workbook[INVOICES_SHEET].append(serialize_invoice(record))
    items_sheet = workbook[INVOICE_ITEMS_SHEET]
    for line_no, item in enumerate(record.items, start=1):
        items_sheet.append(serialize_invoice_item(record.invoice_id, line_no, item))


def serialize_invoice(record: InvoiceRow) -> list[object]:
    """Convert an invoice header into the worksheet column ordering."""

    return [
        record.invoice_id,
        record.invoice_no,
        record.timestamp_iso,
        record.party_id,
        record.party_name,
        record.party_address,
        record.party_tax_id,
        record.category,
        record.logistics.transport,
        record.logistics.vehicle_no,
        record.logistics.gr_no,
        record.logistics.destination,
        record.sub_total,
        record.total_tax,
        record.round_off,
        record.grand_total,
    ]


def deserialize_invoice(raw_row: Sequence[object], items: tuple[InvoiceItemRow, ...] = ()) -> InvoiceRow:
    """Convert a raw invoice header row into an :class:`InvoiceRow`."""

    (
        invoice_id,
        invoice_no,
        timestamp_iso,
        party_id,
        party_name,
        party_address,
        party_tax_id,
        category,
        transport,
        vehicle_no,
        gr_no,
        destination,
        sub_total,
        total_tax,
        round_off,
        grand_total,
    ) = _pad(raw_row, len(SHEET_COLUMNS[INVOICES_SHEET]))

    return InvoiceRow(
        invoice_id=int(invoice_id),
        invoice_no=_to_text(invoice_no),
        timestamp_iso=_to_text(timestamp_iso),
        party_id=int(party_id) if party_id is not None else None,
        party_name=_to_text(party_name),
        party_address=_to_text(party_address),
        party_tax_id=_to_text(party_tax_id),
        category=_to_text(category),
        logistics=LogisticsDetails(
            transport=_to_text(transport),
            vehicle_no=_to_text(vehicle_no),
            gr_no=_to_text(gr_no),
            destination=_to_text(destination),
        ),
        items=items,
        sub_total=_to_decimal(sub_total),
        total_tax=_to_decimal(total_tax),
        round_off=_to_decimal(round_off),
        grand_total=_to_decimal(grand_total),
    )


def serialize_invoice_item(invoice_id: int, line_no: int, item: InvoiceItemRow) -> list[object]:
    """Convert a line item into the ``InvoiceItems`` column ordering."""

    return [
        invoice_id,
        line_no,
        item.product_id,
        item.product_name,
        item.batch,
        item.expiry.isoformat() if item.expiry else None,
        item.hsn,
        item.quantity,
        item.bonus_quantity,
        item.mrp,
        item.rate,
        item.discount_percent,
        item.tax_rate,
        item.taxable_value,
        item.cgst_amount,
        item.sgst_amount,
        item.igst_amount,
        item.total_amount,
    ]


def deserialize_invoice_item(raw_row: Sequence[object]) -> tuple[int, int, InvoiceItemRow]:
    """Convert a raw ``InvoiceItems`` row into ``(invoice_id, line_no, item)``."""

    (
        invoice_id,
        line_no,
        product_id,
        product_name,
        batch,
        expiry,
        hsn,
        quantity,
        bonus_quantity,
        mrp,
        rate,
        discount_percent,
        tax_rate,
        taxable_value,
        cgst,
        sgst,
        igst,
        total,
    ) = _pad(raw_row, len(SHEET_COLUMNS[INVOICE_ITEMS_SHEET]))

    item = InvoiceItemRow(
        product_id=int(product_id),
        product_name=_to_text(product_name),
        batch=_to_text(batch),
        expiry=_to_date(expiry),
        hsn=_to_text(hsn),
        quantity=_to_int(quantity),
        bonus_quantity=_to_int(bonus_quantity),
        mrp=_to_decimal(mrp),
        rate=_to_decimal(rate),
        discount_percent=_to_decimal(discount_percent),
        tax_rate=_to_decimal(tax_rate),
        taxable_value=_to_decimal(taxable_value),
        cgst_amount=_to_decimal(cgst),
        sgst_amount=_to_decimal(sgst),
        igst_amount=_to_decimal(igst),
        total_amount=_to_decimal(total),
    )
    return int(invoice_id), _to_int(line_no), item


# ---------------------------------------------------------------------------
# Settings (sequence counter and company profile)
# ---------------------------------------------------------------------------


def _settings_row(workbook: Workbook) -> Dict[str, Any]:
    header_map = _header_map(workbook, SETTINGS_SHEET)
    sheet = workbook[SETTINGS_SHEET]
    if sheet.max_row < 2:
        raise KeyError("Settings row missing from workbook")
    return {name: sheet.cell(row=2, column=col).value for name, col in header_map.items()}


def read_sequence_counter(workbook: Workbook) -> SequenceCounter:
    """Read the invoice prefix and the next number to assign.

    Raises:
        KeyError: If the ``Settings`` sheet has no data row.
    """

    values = _settings_row(workbook)
    return SequenceCounter(
        prefix=_to_text(values.get("InvoicePrefix"), DEFAULT_INVOICE_PREFIX),
        next_number=_to_int(values.get("NextInvoiceNumber")),
    )


def write_next_invoice_number(workbook: Workbook, next_number: int) -> None:
    """Store ``next_number`` as the counter's next value."""

    update_settings(workbook, field_values={"NextInvoiceNumber": next_number})


def read_company_profile(workbook: Workbook) -> CompanyProfile:
    """Read the seller profile from the ``Settings`` sheet."""

    values = _settings_row(workbook)
    return CompanyProfile(
        name=_to_text(values.get("CompanyName")),
        address=_to_text(values.get("Address")),
        tax_id=_to_text(values.get("GSTIN")),
        phone=_to_text(values.get("Phone")),
        email=_to_text(values.get("Email")),
        dl_no_1=_to_text(values.get("DLNo1")),
        dl_no_2=_to_text(values.get("DLNo2")),
        terms=_to_text(values.get("Terms")),
    )


def update_settings(workbook: Workbook, *, field_values: Mapping[str, Any]) -> None:
    """Write selected columns of the singleton settings row.

    Raises:
        KeyError: If the settings row or any referenced column is missing.
    """

    header_map = _header_map(workbook, SETTINGS_SHEET)
    sheet = workbook[SETTINGS_SHEET]
    if sheet.max_row < 2:
        raise KeyError("Settings row missing from workbook")
    unknown = [name for name in field_values if name not in header_map]
    if unknown:
        raise KeyError(f"Unknown settings field: {', '.join(unknown)}")
    for name, value in field_values.items():
        sheet.cell(row=2, column=header_map[name], value=value)


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------


def _pad(raw_row: Sequence[object], width: int) -> tuple:
    values = tuple(raw_row[:width])
    return values + (None,) * (width - len(values))


def _to_text(raw: object, default: str = "") -> str:
    return str(raw) if raw is not None else default


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        log.warning("Unreadable numeric cell value %r; using %s", raw, default)
        return Decimal(default)


def _to_int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(_to_decimal(raw))


def _to_date(raw: object) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        log.warning("Unreadable date cell value %r", raw)
        return None
