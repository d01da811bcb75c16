"""Business logic layer for the pharma ledger.

This module owns the rules around the workbook store: it caches reads,
funnels every mutation through a single write transaction, and implements
the invoice commit that turns a cart into a persisted bill, lower stock
levels and an advanced invoice number in one all-or-nothing step. It
consumes the Data Access Layer (DAL) for all I/O.
"""

from __future__ import annotations

import calendar
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook

from . import calculator, data_manager, documents, log
from .constants import (
    CASH_SALE_PARTY_NAME,
    EXPECTED_SCHEMA_VERSION,
    EXPIRY_WINDOW_MONTHS,
    LOW_STOCK_THRESHOLD,
    BillCategory,
    SheetName,
)


DocumentGenerator = Callable[
    [data_manager.InvoiceRow, data_manager.CompanyProfile, Path],
    Optional[Path],
]
ChangeListener = Callable[[tuple[str, ...]], None]

CACHE_BUCKETS = ("products", "parties", "invoices")

PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "ProductName",
    "batch": "Batch",
    "expiry": "Expiry",
    "hsn": "HSN",
    "tax_rate": "TaxRate",
    "mrp": "MRP",
    "purchase_rate": "PurchaseRate",
    "sale_rate": "SaleRate",
    "manufacturer": "Manufacturer",
}

PARTY_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "PartyName",
    "category": "Category",
    "tax_id": "GSTIN",
    "address": "Address",
    "phone": "Phone",
    "email": "Email",
    "state_code": "StateCode",
    "dl_no_1": "DLNo1",
    "dl_no_2": "DLNo2",
    "credit_limit": "CreditLimit",
    "payment_terms_days": "PaymentTermsDays",
}

PROFILE_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "CompanyName",
    "address": "Address",
    "tax_id": "GSTIN",
    "phone": "Phone",
    "email": "Email",
    "dl_no_1": "DLNo1",
    "dl_no_2": "DLNo2",
    "terms": "Terms",
}


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, party, or invoice is unknown."""


class InvoiceValidationError(BusinessRuleViolation):
    """Raised when a bill is rejected before anything is written."""


class CommitError(RuntimeError):
    """Raised when the store fails part-way through a write transaction."""


@dataclass(eq=False)
class RuntimeContext:
    """Container for configuration, the live workbook and shared BLL state.

    ``workbook`` is replaced wholesale by :func:`write_transaction` after each
    durable write; callers should always read it through the context.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    document_generator: Optional[DocumentGenerator] = None
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False)
    _lock: Any = field(default_factory=threading.RLock, repr=False)
    _listeners: List[ChangeListener] = field(default_factory=list, repr=False)


@dataclass(frozen=True)
class InvoiceCommand:
    """User intent for billing a cart."""

    items: Sequence[data_manager.InvoiceItemRow]
    category: BillCategory
    party_id: Optional[int] = None
    logistics: data_manager.LogisticsDetails = field(default_factory=data_manager.LogisticsDetails)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class DashboardSummary:
    """Headline numbers for the landing screen."""

    total_sales: Decimal
    invoice_count: int
    low_stock_count: int
    expiring_soon_count: int


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after the workbook changed.

    Missing buckets are ignored so callers can invalidate unconditionally.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Besides the full list and an id lookup, the bucket keeps prefix indexes
    over the lower-cased name and batch columns so search-as-you-type never
    scans the whole sheet.

    Args:
        context (RuntimeContext): Runtime state used to access the workbook and
            shared caches.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products, a ``by_id`` lookup
            and ``name_index`` / ``batch_index`` prefix indexes.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        bucket["name_index"] = data_manager.build_prefix_index([p.name for p in all_products])
        bucket["batch_index"] = data_manager.build_prefix_index([p.batch for p in all_products])
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_parties_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the party cache bucket on demand."""

    bucket = _get_cache_bucket(context, "parties")
    if "all" not in bucket:
        all_parties = list(data_manager.iter_parties(context.workbook))
        bucket["all"] = all_parties
        bucket["by_id"] = {party.party_id: party for party in all_parties}
        log.debug("Populated parties cache with %d entries", len(all_parties))
    return bucket


def _ensure_invoices_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the invoice cache bucket on demand.

    Invoices are never edited after commit, so the cached list only goes
    stale when a new bill is written.
    """

    bucket = _get_cache_bucket(context, "invoices")
    if "all" not in bucket:
        all_invoices = list(data_manager.iter_invoices(context.workbook))
        bucket["all"] = all_invoices
        bucket["by_number"] = {invoice.invoice_no: invoice for invoice in all_invoices}
        log.debug("Populated invoices cache with %d entries", len(all_invoices))
    return bucket


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    document_generator: Optional[DocumentGenerator] = documents.generate_invoice_document,
) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        document_generator (Callable | None): Called after every committed
            invoice to produce a printable copy. Pass ``None`` to disable.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, document_generator=document_generator)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk into a fresh context with empty caches.

    Listeners and the document generator carry over to the new context.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    fresh = RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        document_generator=context.document_generator,
    )
    fresh._listeners.extend(context._listeners)
    return fresh


# ---------------------------------------------------------------------------
# Write transaction and change notification
# ---------------------------------------------------------------------------


def subscribe(context: RuntimeContext, listener: ChangeListener) -> Callable[[], None]:
    """Register ``listener`` to hear about every committed write.

    The listener receives the tuple of sheet names touched by the write.

    Returns:
        Callable[[], None]: Call it to remove the listener again.
    """

    context._listeners.append(listener)

    def unsubscribe() -> None:
        if listener in context._listeners:
            context._listeners.remove(listener)

    return unsubscribe


def _notify(context: RuntimeContext, sheets: tuple[str, ...]) -> None:
    for listener in list(context._listeners):
        try:
            listener(sheets)
        except Exception:
            log.exception("Change listener %r failed for sheets %s", listener, sheets)


@contextmanager
def write_transaction(context: RuntimeContext, *sheets: str) -> Iterator[Workbook]:
    """Stage a group of writes and make them durable together.

    Under the context lock the live workbook is cloned and the clone is
    yielded for modification. When the block exits cleanly the clone is
    saved atomically to the configured data file and becomes the live
    workbook; caches are dropped and listeners are told which ``sheets``
    changed. If the block or the save raises, the clone is thrown away and
    neither the live workbook nor the file on disk changes.

    Args:
        context (RuntimeContext): Context whose workbook is being changed.
        *sheets (str): Sheet names reported to change listeners.

    Yields:
        Workbook: The staging copy to write into.
    """

    with context._lock:
        staged = data_manager.clone_workbook(context.workbook)
        try:
            yield staged
            data_manager.save_workbook(staged, context.settings.data_file)
        except Exception:
            log.warning("Discarded staged changes to %s", ", ".join(sheets) or "workbook")
            raise
        context.workbook = staged
        _invalidate_cache(context, *CACHE_BUCKETS)
    _notify(context, tuple(sheets))


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return every product in sheet order."""
    return list(_ensure_products_cache(context)["all"])


def get_product(context: RuntimeContext, product_id: int) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def query_products_by_prefix(
    context: RuntimeContext,
    prefix: str,
    *,
    fields: Sequence[str] = ("name", "batch"),
) -> List[data_manager.ProductRow]:
    """Return products whose indexed ``fields`` start with ``prefix``.

    Matching ignores case. Products hit through more than one field appear
    once, and the result follows sheet order.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        prefix (str): Leading text to look for.
        fields (Sequence[str]): Any of ``"name"`` and ``"batch"``.

    Returns:
        list[data_manager.ProductRow]: Matching products in sheet order.
    """
    cache = _ensure_products_cache(context)
    positions: set[int] = set()
    for name in fields:
        index: data_manager.PrefixIndex = cache[f"{name}_index"]
        positions.update(index.scan(prefix))
    products = cache["all"]
    return [products[position] for position in sorted(positions)]


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    batch: str,
    expiry: Optional[date],
    hsn: str = "",
    tax_rate: Decimal = Decimal("0"),
    mrp: Decimal = Decimal("0.00"),
    purchase_rate: Decimal = Decimal("0.00"),
    sale_rate: Decimal = Decimal("0.00"),
    stock: int = 0,
    manufacturer: str = "",
) -> data_manager.ProductRow:
    """Validate and append a new product.

    Raises:
        ValueError: When the name is blank, stock is negative, a price is
            negative, or the tax rate falls outside 0-100.
    """
    if not name.strip():
        raise ValueError("Product name must not be blank")
    require_nonnegative_quantity(stock)
    for amount in (mrp, purchase_rate, sale_rate):
        require_nonnegative_money(amount)
    require_tax_rate(tax_rate)

    with write_transaction(context, SheetName.PRODUCTS.value) as workbook:
        record = data_manager.ProductRow(
            product_id=data_manager.next_id(workbook, data_manager.PRODUCTS_SHEET, "ProductID"),
            name=name.strip(),
            batch=batch.strip().upper(),
            expiry=expiry,
            hsn=hsn,
            tax_rate=Decimal(tax_rate),
            mrp=Decimal(mrp),
            purchase_rate=Decimal(purchase_rate),
            sale_rate=Decimal(sale_rate),
            stock=int(stock),
            manufacturer=manufacturer,
        )
        data_manager.append_product(workbook, record)
    log.info("Added product '%s' (id=%s, batch=%s)", record.name, record.product_id, record.batch)
    return record


def bulk_add_products(context: RuntimeContext, records: Sequence[data_manager.ProductRow]) -> List[data_manager.ProductRow]:
    """Insert many products in one transaction, allocating fresh identifiers.

    The ``product_id`` on the incoming records is ignored.
    """
    with write_transaction(context, SheetName.PRODUCTS.value) as workbook:
        start = data_manager.next_id(workbook, data_manager.PRODUCTS_SHEET, "ProductID")
        stored = [_with_product_id(record, start + offset) for offset, record in enumerate(records)]
        data_manager.bulk_append_products(workbook, stored)
    log.info("Bulk inserted %d products", len(stored))
    return stored


def _with_product_id(record: data_manager.ProductRow, product_id: int) -> data_manager.ProductRow:
    return replace(record, product_id=product_id)


def update_product(context: RuntimeContext, product_id: int, **changes: Any) -> data_manager.ProductRow:
    """Edit catalogue fields of an existing product.

    Stock is deliberately not editable here: only a committed invoice lowers
    it.

    Edited values pass the same checks as :func:`add_product`.

    Raises:
        BusinessRuleViolation: If ``stock`` or an unknown field is supplied.
        ValueError: When a new name is blank, a new price is negative, or a
            new tax rate falls outside 0-100.
        MissingReferenceError: If the product does not exist.
    """
    if "stock" in changes:
        raise BusinessRuleViolation("Stock can only change through a committed invoice")
    unknown = sorted(set(changes) - set(PRODUCT_FIELD_COLUMNS))
    if unknown:
        raise BusinessRuleViolation(f"Unknown product field(s): {', '.join(unknown)}")
    if "name" in changes:
        if not str(changes["name"]).strip():
            raise ValueError("Product name must not be blank")
        changes["name"] = str(changes["name"]).strip()
    for field_name in ("mrp", "purchase_rate", "sale_rate"):
        if field_name in changes:
            require_nonnegative_money(Decimal(changes[field_name]))
    if "tax_rate" in changes:
        require_tax_rate(changes["tax_rate"])
    get_product(context, product_id)

    field_values = {
        PRODUCT_FIELD_COLUMNS[name]: (value.isoformat() if isinstance(value, date) else value)
        for name, value in changes.items()
    }
    with write_transaction(context, SheetName.PRODUCTS.value) as workbook:
        data_manager.update_product(workbook, product_id, field_values=field_values)
    log.info("Updated product %s: %s", product_id, ", ".join(sorted(changes)))
    return get_product(context, product_id)


def delete_product(context: RuntimeContext, product_id: int) -> None:
    """Remove a product from the catalogue.

    Raises:
        MissingReferenceError: If the product does not exist.
    """
    get_product(context, product_id)
    with write_transaction(context, SheetName.PRODUCTS.value) as workbook:
        data_manager.delete_product(workbook, product_id)
    log.info("Deleted product %s", product_id)


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


def list_parties(context: RuntimeContext) -> List[data_manager.PartyRow]:
    """Return every party in sheet order."""
    return list(_ensure_parties_cache(context)["all"])


def get_party(context: RuntimeContext, party_id: int) -> data_manager.PartyRow:
    """Resolve a party record by its identifier.

    Raises:
        MissingReferenceError: If ``party_id`` cannot be located.
    """
    cache = _ensure_parties_cache(context)
    try:
        return cache["by_id"][party_id]
    except KeyError as exc:
        log.warning("Party lookup failed for id '%s'", party_id)
        raise MissingReferenceError(f"Unknown party id: {party_id}") from exc


def add_party(
    context: RuntimeContext,
    *,
    name: str,
    category: BillCategory,
    tax_id: str = "",
    address: str = "",
    phone: str = "",
    email: str = "",
    state_code: str = "",
    dl_no_1: str = "",
    dl_no_2: str = "",
    credit_limit: Optional[Decimal] = None,
    payment_terms_days: Optional[int] = None,
) -> data_manager.PartyRow:
    """Validate and append a new party.

    Raises:
        ValueError: When the name is blank or credit terms are negative.
        BusinessRuleViolation: If ``category`` is not a :class:`BillCategory`.
    """
    if not name.strip():
        raise ValueError("Party name must not be blank")
    if not isinstance(category, BillCategory):
        log.error("Unsupported party category provided: %s", category)
        raise BusinessRuleViolation(f"Unsupported party category: {category}")
    if credit_limit is not None:
        require_nonnegative_money(credit_limit)
    if payment_terms_days is not None:
        require_nonnegative_quantity(payment_terms_days)

    with write_transaction(context, SheetName.PARTIES.value) as workbook:
        record = data_manager.PartyRow(
            party_id=data_manager.next_id(workbook, data_manager.PARTIES_SHEET, "PartyID"),
            name=name.strip(),
            category=category.value,
            tax_id=tax_id.strip().upper(),
            address=address,
            phone=phone,
            email=email,
            state_code=state_code,
            dl_no_1=dl_no_1,
            dl_no_2=dl_no_2,
            credit_limit=credit_limit,
            payment_terms_days=payment_terms_days,
        )
        data_manager.append_party(workbook, record)
    log.info("Added %s party '%s' (id=%s)", record.category, record.name, record.party_id)
    return record


def update_party(context: RuntimeContext, party_id: int, **changes: Any) -> data_manager.PartyRow:
    """Edit fields of an existing party.

    Raises:
        BusinessRuleViolation: If an unknown field is supplied.
        MissingReferenceError: If the party does not exist.
    """
    unknown = sorted(set(changes) - set(PARTY_FIELD_COLUMNS))
    if unknown:
        raise BusinessRuleViolation(f"Unknown party field(s): {', '.join(unknown)}")
    get_party(context, party_id)

    field_values = {
        PARTY_FIELD_COLUMNS[name]: (value.value if isinstance(value, BillCategory) else value)
        for name, value in changes.items()
    }
    with write_transaction(context, SheetName.PARTIES.value) as workbook:
        data_manager.update_party(workbook, party_id, field_values=field_values)
    log.info("Updated party %s: %s", party_id, ", ".join(sorted(changes)))
    return get_party(context, party_id)


def delete_party(context: RuntimeContext, party_id: int) -> None:
    """Remove a party. Invoices keep their own snapshot of it."""
    get_party(context, party_id)
    with write_transaction(context, SheetName.PARTIES.value) as workbook:
        data_manager.delete_party(workbook, party_id)
    log.info("Deleted party %s", party_id)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def get_sequence_counter(context: RuntimeContext) -> data_manager.SequenceCounter:
    """Return the invoice prefix and the number the next bill will get."""
    return data_manager.read_sequence_counter(context.workbook)


def get_company_profile(context: RuntimeContext) -> data_manager.CompanyProfile:
    """Return the seller profile printed on invoices."""
    return data_manager.read_company_profile(context.workbook)


def update_company_profile(context: RuntimeContext, **changes: str) -> data_manager.CompanyProfile:
    """Edit the seller profile.

    Raises:
        BusinessRuleViolation: If an unknown field is supplied.
    """
    unknown = sorted(set(changes) - set(PROFILE_FIELD_COLUMNS))
    if unknown:
        raise BusinessRuleViolation(f"Unknown profile field(s): {', '.join(unknown)}")
    field_values = {PROFILE_FIELD_COLUMNS[name]: value for name, value in changes.items()}
    with write_transaction(context, SheetName.SETTINGS.value) as workbook:
        data_manager.update_settings(workbook, field_values=field_values)
    log.info("Updated company profile: %s", ", ".join(sorted(changes)))
    return get_company_profile(context)


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def list_invoices(context: RuntimeContext) -> List[data_manager.InvoiceRow]:
    """Return every committed invoice in the order it was billed."""
    return list(_ensure_invoices_cache(context)["all"])


def get_invoice(context: RuntimeContext, invoice_no: str) -> data_manager.InvoiceRow:
    """Resolve an invoice by its printed number, e.g. ``"TI-100"``.

    Raises:
        MissingReferenceError: If no invoice carries that number.
    """
    cache = _ensure_invoices_cache(context)
    try:
        return cache["by_number"][invoice_no]
    except KeyError as exc:
        log.warning("Invoice lookup failed for number '%s'", invoice_no)
        raise MissingReferenceError(f"Unknown invoice number: {invoice_no}") from exc


def validate_invoice_command(command: InvoiceCommand) -> None:
    """Check a bill before anything is written.

    Raises:
        InvoiceValidationError: If the cart is empty, a wholesale bill has no
            party, the category is unsupported, or a line fails
            :func:`calculator.validate_line`.
    """
    if not isinstance(command.category, BillCategory):
        log.error("Unsupported bill category provided: %s", command.category)
        raise InvoiceValidationError(f"Unsupported bill category: {command.category}")
    if not command.items:
        log.error("Rejected invoice with an empty cart")
        raise InvoiceValidationError("Cart is empty")
    if command.category is BillCategory.WHOLESALE and command.party_id is None:
        log.error("Rejected wholesale invoice without a party")
        raise InvoiceValidationError("A wholesale bill needs a party")
    for item in command.items:
        try:
            calculator.validate_line(item)
        except ValueError as exc:
            raise InvoiceValidationError(f"Invalid line for product {item.product_id}: {exc}") from exc


def stock_demand(items: Sequence[data_manager.InvoiceItemRow]) -> Dict[int, int]:
    """Units leaving the shelf per product (billed plus bonus), in cart order."""
    demand: Dict[int, int] = OrderedDict()
    for item in items:
        demand[item.product_id] = demand.get(item.product_id, 0) + item.quantity + item.bonus_quantity
    return demand


def build_invoice_record(
    *,
    invoice_id: int,
    counter: data_manager.SequenceCounter,
    timestamp: datetime,
    party: Optional[data_manager.PartyRow],
    command: InvoiceCommand,
    items: tuple[data_manager.InvoiceItemRow, ...],
    totals: calculator.CartTotals,
) -> data_manager.InvoiceRow:
    """Materialize a bill into a DAL invoice row with a party snapshot."""
    return data_manager.InvoiceRow(
        invoice_id=invoice_id,
        invoice_no=counter.format(),
        timestamp_iso=timestamp.isoformat(),
        party_id=party.party_id if party else None,
        party_name=party.name if party else CASH_SALE_PARTY_NAME,
        party_address=party.address if party else "",
        party_tax_id=party.tax_id if party else "",
        category=command.category.value,
        logistics=command.logistics,
        items=items,
        sub_total=totals.sub_total,
        total_tax=totals.total_tax,
        round_off=totals.round_off,
        grand_total=totals.grand_total,
    )


def commit_invoice(context: RuntimeContext, command: InvoiceCommand) -> data_manager.InvoiceRow:
    """Bill a cart: persist the invoice, lower stock and advance the counter.

    The three writes happen on one staged workbook inside
    :func:`write_transaction`, so they become durable together or not at all,
    and the context lock serializes commits so no two bills ever read the same
    counter value. Derived line fields are recomputed from quantity, rate,
    discount and tax rate rather than trusted from the caller.

    Once the bill is durable the context's document generator (if any) is
    asked for a printable copy. A failure there is logged and does not undo
    the commit.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        command (InvoiceCommand): Cart, category, party and logistics.

    Returns:
        data_manager.InvoiceRow: The committed invoice.

    Raises:
        InvoiceValidationError: For an empty cart, a wholesale bill with no
            party, invalid line values, or insufficient stock.
        MissingReferenceError: When the party or a product is unknown.
        CommitError: When the store fails while writing; nothing is kept.
    """
    validate_invoice_command(command)
    party = get_party(context, command.party_id) if command.party_id is not None else None
    items, totals = calculator.recompute_cart(command.items)
    demand = stock_demand(items)
    timestamp = _resolve_timestamp(command.timestamp)

    sheets = (
        SheetName.INVOICES.value,
        SheetName.INVOICE_ITEMS.value,
        SheetName.PRODUCTS.value,
        SheetName.SETTINGS.value,
    )
    try:
        with write_transaction(context, *sheets) as workbook:
            on_hand = {product.product_id: product.stock for product in data_manager.iter_products(workbook)}
            for product_id, units in demand.items():
                if product_id not in on_hand:
                    log.warning("Product lookup failed for id '%s'", product_id)
                    raise MissingReferenceError(f"Unknown product id: {product_id}")
                if on_hand[product_id] < units:
                    log.error(
                        "Insufficient stock for product %s: need %s, have %s",
                        product_id,
                        units,
                        on_hand[product_id],
                    )
                    raise InvoiceValidationError(
                        f"Insufficient stock for product {product_id}: need {units}, have {on_hand[product_id]}"
                    )

            counter = data_manager.read_sequence_counter(workbook)
            invoice = build_invoice_record(
                invoice_id=data_manager.next_id(workbook, data_manager.INVOICES_SHEET, "InvoiceID"),
                counter=counter,
                timestamp=timestamp,
                party=party,
                command=command,
                items=items,
                totals=totals,
            )
            data_manager.append_invoice(workbook, invoice)
            for product_id, units in demand.items():
                data_manager.update_product(
                    workbook,
                    product_id,
                    field_values={"Stock": on_hand[product_id] - units},
                )
            data_manager.write_next_invoice_number(workbook, counter.next_number + 1)
    except BusinessRuleViolation:
        raise
    except Exception as exc:
        log.exception("Invoice commit failed; no changes were kept")
        raise CommitError(f"Invoice commit failed: {exc}") from exc

    log.info(
        "Committed invoice '%s' (%d lines, grand total=%s)",
        invoice.invoice_no,
        len(invoice.items),
        invoice.grand_total,
    )
    _generate_document(context, invoice)
    return invoice


def _generate_document(context: RuntimeContext, invoice: data_manager.InvoiceRow) -> Optional[Path]:
    generator = context.document_generator
    if generator is None:
        return None
    try:
        path = generator(invoice, get_company_profile(context), context.settings.document_dir)
    except Exception as exc:
        log.warning("Invoice '%s' committed but document generation failed: %s", invoice.invoice_no, exc)
        return None
    log.info("Generated document for invoice '%s' at '%s'", invoice.invoice_no, path)
    return path


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def calculate_inventory(context: RuntimeContext) -> Dict[int, int]:
    """Map each product id to its stock on hand."""
    return {product.product_id: product.stock for product in list_products(context)}


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def calculate_dashboard_summary(context: RuntimeContext, *, today: Optional[date] = None) -> DashboardSummary:
    """Produce the headline numbers shown on the dashboard.

    Low stock means fewer than ``LOW_STOCK_THRESHOLD`` units. Expiring soon
    means an expiry on or before ``EXPIRY_WINDOW_MONTHS`` months from
    ``today`` (already-expired products count too).
    """
    today = today or datetime.now(UTC).date()
    horizon = _add_months(today, EXPIRY_WINDOW_MONTHS)
    invoices = list_invoices(context)
    products = list_products(context)
    summary = DashboardSummary(
        total_sales=sum((invoice.grand_total for invoice in invoices), Decimal("0.00")),
        invoice_count=len(invoices),
        low_stock_count=sum(1 for product in products if product.stock < LOW_STOCK_THRESHOLD),
        expiring_soon_count=sum(1 for product in products if product.expiry and product.expiry <= horizon),
    )
    log.debug("Calculated dashboard summary: %s", summary)
    return summary


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_nonnegative_quantity(quantity: int) -> None:
    """Validate that a unit count is zero or positive.

    Raises:
        ValueError: If ``quantity`` is negative.
    """
    if quantity < 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be zero or positive")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_tax_rate(rate: Decimal) -> None:
    """Validate that a tax rate is a percentage between 0 and 100.

    Raises:
        ValueError: If ``rate`` is out of range.
    """
    if not Decimal("0") <= Decimal(rate) <= Decimal("100"):
        log.error("Tax rate validation failed: %s", rate)
        raise ValueError("Tax rate must be between 0 and 100")
