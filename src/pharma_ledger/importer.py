"""Bulk product import from supplier stock sheets.

Supplier sheets never agree on column names, so the header row is aligned to
the product fields with :func:`map_columns` before any row is converted. Each
field has a list of keywords; for every field still unmapped the matcher tries,
in three passes over all fields:

1. an exact match after :func:`normalize_header`,
2. containment (the header holds a keyword, or a keyword holds the header),
3. the header with the smallest Levenshtein distance to any keyword, kept only
   when that distance is below ``HEADER_DISTANCE_TOLERANCE``.

A header is handed to at most one field. Rows are then converted with
forgiving defaults so a messy sheet still imports.
"""

from __future__ import annotations

import csv
import re
import zipfile
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from . import core_logic, log
from .constants import HEADER_DISTANCE_TOLERANCE
from .data_manager import ProductRow


FIELD_KEYWORDS: Mapping[str, Sequence[str]] = {
    "name": ("Product Name", "Item Name", "Description", "Particulars", "Name"),
    "batch": ("Batch", "Lot", "Batch No"),
    "expiry": ("Expiry", "Exp Date", "Exp"),
    "hsn": ("HSN", "HSN Code"),
    "tax_rate": ("GST", "Tax", "IGST", "Tax Rate"),
    "mrp": ("MRP", "Maximum Retail Price"),
    "purchase_rate": ("Purchase Rate", "PTS", "Cost", "Rate"),
    "sale_rate": ("Sale Rate", "Selling Price", "PTR", "Rate"),
    "stock": ("Stock", "Qty", "Quantity", "Balance", "Closing Stock"),
    "manufacturer": ("Mfg", "Company", "Manufacturer", "Brand"),
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%d-%b-%Y",
    "%d %b %Y",
    "%b-%Y",
    "%b %Y",
    "%m/%Y",
)

BARE_YEAR_RANGE = range(1900, 2200)

SUPPORTED_SUFFIXES = (".xlsx", ".xlsm", ".csv")

CSV_ENCODING = "utf-8-sig"
CSV_FALLBACK_ENCODING = "cp1252"

_NUMBER_PATTERN = re.compile(r"\d*\.?\d+")

ColumnMapping = Dict[str, Optional[str]]


class ImportDecodeError(ValueError):
    """Raised when a stock sheet cannot be read at all."""


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a bulk import."""

    count: int
    mapping: ColumnMapping


def normalize_header(text: str) -> str:
    """Lower-case ``text`` and drop everything that is not a letter or digit."""
    return re.sub(r"[^a-z0-9]", "", str(text).lower())


def levenshtein(left: str, right: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def _exact(header: str, keywords: Sequence[str]) -> bool:
    return header in keywords


def _contains(header: str, keywords: Sequence[str]) -> bool:
    for keyword in keywords:
        if keyword in header:
            return True
        if len(header) >= 3 and header in keyword:
            return True
    return False


def find_column(
    headers: Sequence[str],
    keywords: Sequence[str],
    *,
    claimed: Sequence[str] = (),
    strategy: str = "any",
) -> Optional[str]:
    """Pick the header matching ``keywords``.

    Args:
        headers (Sequence[str]): Raw header texts in sheet order.
        keywords (Sequence[str]): Candidate names for one field.
        claimed (Sequence[str]): Headers already given to another field.
        strategy (str): ``"exact"``, ``"contains"``, ``"fuzzy"`` or ``"any"``
            to try all three in that order.

    Returns:
        str | None: The raw header text, or ``None`` when nothing qualifies.
    """

    normalized_keywords = [normalize_header(keyword) for keyword in keywords]
    candidates: List[Tuple[str, str]] = [
        (header, normalize_header(header))
        for header in headers
        if header not in claimed and normalize_header(header)
    ]

    if strategy in ("exact", "any"):
        for header, normalized in candidates:
            if _exact(normalized, normalized_keywords):
                return header
    if strategy in ("contains", "any"):
        for header, normalized in candidates:
            if _contains(normalized, normalized_keywords):
                return header
    if strategy in ("fuzzy", "any"):
        best_header: Optional[str] = None
        best_distance = HEADER_DISTANCE_TOLERANCE
        for header, normalized in candidates:
            for keyword in normalized_keywords:
                distance = levenshtein(normalized, keyword)
                if distance < best_distance:
                    best_distance = distance
                    best_header = header
        return best_header
    return None


def map_columns(headers: Sequence[str]) -> ColumnMapping:
    """Align a sheet's header row to the product fields.

    Every field of :data:`FIELD_KEYWORDS` appears in the result, mapped to the
    raw header text or to ``None``.
    """

    mapping: ColumnMapping = {name: None for name in FIELD_KEYWORDS}
    claimed: List[str] = []
    for strategy in ("exact", "contains", "fuzzy"):
        for name, keywords in FIELD_KEYWORDS.items():
            if mapping[name] is not None:
                continue
            header = find_column(headers, keywords, claimed=claimed, strategy=strategy)
            if header is not None:
                mapping[name] = header
                claimed.append(header)
    log.info(
        "Mapped import columns: %s",
        ", ".join(f"{name}={header!r}" for name, header in mapping.items()),
    )
    return mapping


def parse_number(value: Any) -> Decimal:
    """Read a number out of a loosely formatted cell; unreadable means 0.

    Currency symbols, thousands separators and any other non-digit characters
    are ignored, so the sign of a negative value is dropped too.
    """

    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, (int, float, Decimal)):
        return abs(Decimal(str(value)))
    cleaned = re.sub(r"[^\d.]", "", str(value))
    match = _NUMBER_PATTERN.match(cleaned)
    if not match:
        return Decimal("0")
    try:
        return Decimal(match.group())
    except InvalidOperation:
        return Decimal("0")


def parse_sheet_date(value: Any, *, today: Optional[date] = None) -> date:
    """Normalize an expiry cell to a calendar date.

    Excel serial numbers, ``datetime``/``date`` cells and the string layouts
    in :data:`DATE_FORMATS` are understood. A bare year such as ``2025``
    (number or text) means the first of January of that year rather than
    serial day 2025. Anything else, blanks included, yields ``today``.
    """

    fallback = today or datetime.now(UTC).date()
    if value is None or value == "":
        return fallback
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if float(value).is_integer() and int(value) in BARE_YEAR_RANGE:
            return date(int(value), 1, 1)
        return _from_serial(value, fallback)

    text = str(value).strip()
    if text.isdigit() and int(text) in BARE_YEAR_RANGE:
        return date(int(text), 1, 1)
    try:
        return _from_serial(float(text), fallback)
    except ValueError:
        pass
    for pattern in DATE_FORMATS:
        try:
            return datetime.strptime(text, pattern).date()
        except ValueError:
            continue
    log.warning("Unreadable expiry %r; using %s", value, fallback)
    return fallback


def _from_serial(serial: float, fallback: date) -> date:
    try:
        converted = from_excel(round(serial))
    except (OverflowError, ValueError, TypeError):
        log.warning("Serial date %r out of range; using %s", serial, fallback)
        return fallback
    if converted is None:
        return fallback
    return converted.date() if isinstance(converted, datetime) else converted


def _cell(row: Mapping[str, Any], header: Optional[str]) -> Any:
    if header is None:
        return None
    value = row.get(header)
    if isinstance(value, str) and not value.strip():
        return None
    return value


def convert_row(
    row: Mapping[str, Any],
    mapping: Mapping[str, Optional[str]],
    *,
    today: Optional[date] = None,
) -> ProductRow:
    """Turn one sheet row into a product record with defaults filled in.

    The ``product_id`` is left at 0; identifiers are allocated on insert.
    """

    def text(name: str, default: str) -> str:
        value = _cell(row, mapping.get(name))
        return str(value).strip() if value is not None else default

    def number(name: str) -> Decimal:
        return parse_number(_cell(row, mapping.get(name)))

    purchase_rate = number("purchase_rate")
    sale_rate = number("sale_rate") if mapping.get("sale_rate") else purchase_rate
    return ProductRow(
        product_id=0,
        name=text("name", "Unknown Item"),
        batch=text("batch", "NA").upper(),
        expiry=parse_sheet_date(_cell(row, mapping.get("expiry")), today=today),
        hsn=text("hsn", ""),
        tax_rate=number("tax_rate"),
        mrp=number("mrp"),
        purchase_rate=purchase_rate,
        sale_rate=sale_rate,
        stock=int(number("stock")),
        manufacturer=text("manufacturer", "Generic"),
    )


def read_sheet_rows(path: Path) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Decode the first worksheet of ``path`` into a header row and data rows.

    The first non-empty row is the header. Fully blank rows are skipped and
    columns without a header are dropped.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ImportDecodeError: If the file type is unsupported or the file cannot
            be decoded.
    """

    source = Path(path).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"Import file not found: {source}")
    suffix = source.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ImportDecodeError(f"Unsupported import file type: {source.suffix or '(none)'}")

    try:
        raw_rows = _read_csv(source) if suffix == ".csv" else _read_workbook(source)
    except (InvalidFileException, zipfile.BadZipFile, UnicodeDecodeError, csv.Error, KeyError, OSError) as exc:
        log.error("Could not decode import file '%s': %s", source, exc)
        raise ImportDecodeError(f"Could not read {source.name}: {exc}") from exc

    rows = [raw for raw in raw_rows if any(cell not in (None, "") for cell in raw)]
    if not rows:
        return [], []
    header_cells = rows[0]
    headers = [str(cell).strip() for cell in header_cells if cell not in (None, "")]
    records = []
    for raw in rows[1:]:
        record = {}
        for idx, header in enumerate(header_cells):
            if header in (None, ""):
                continue
            record[str(header).strip()] = raw[idx] if idx < len(raw) else None
        records.append(record)
    log.debug("Read %d data rows from '%s'", len(records), source)
    return headers, records


def _read_workbook(source: Path) -> List[Sequence[Any]]:
    workbook = openpyxl.load_workbook(source, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        return [tuple(raw) for raw in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv(source: Path) -> List[Sequence[Any]]:
    """Read a CSV export as UTF-8, retrying as cp1252 when that fails."""
    try:
        return _read_csv_as(source, CSV_ENCODING)
    except UnicodeDecodeError:
        log.warning("Import file '%s' is not UTF-8; retrying as %s", source, CSV_FALLBACK_ENCODING)
    return _read_csv_as(source, CSV_FALLBACK_ENCODING)


def _read_csv_as(source: Path, encoding: str) -> List[Sequence[Any]]:
    with source.open(newline="", encoding=encoding) as handle:
        return [tuple(raw) for raw in csv.reader(handle)]


def import_products(
    context: core_logic.RuntimeContext,
    path: Path,
    *,
    today: Optional[date] = None,
) -> ImportResult:
    """Read a stock sheet and add every row as a new product.

    All rows are inserted in a single write transaction: either the whole
    sheet lands or none of it does.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ImportDecodeError: If the sheet cannot be decoded.
    """

    headers, rows = read_sheet_rows(path)
    mapping = map_columns(headers)
    if not rows:
        log.warning("Import file '%s' has no data rows", path)
        return ImportResult(count=0, mapping=mapping)

    records = [convert_row(row, mapping, today=today) for row in rows]
    stored = core_logic.bulk_add_products(context, records)
    log.info("Imported %d products from '%s'", len(stored), path)
    return ImportResult(count=len(stored), mapping=mapping)
