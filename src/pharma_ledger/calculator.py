"""Tax and totals arithmetic for invoice lines and carts.

Every function here is pure: it takes line items and hands back new values
without touching the workbook. Amounts are :class:`~decimal.Decimal` values.
Taxable values are quantized to two places with half-up rounding; tax halves
keep full precision and are rounded only when a cart is aggregated, so
summing hundreds of lines never drifts by a paisa per line.

Tax is always split into the two intrastate halves. The interstate component
is carried on every line for the printed layout but is always zero; see
:data:`INTERSTATE_TAX_SUPPORTED`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from . import log
from .constants import MONEY_QUANTUM
from .data_manager import InvoiceItemRow, ProductRow


# Interstate billing is not modelled. IGST stays zero until jurisdiction
# rules exist; nothing downstream should treat the zero as a computed value.
INTERSTATE_TAX_SUPPORTED = False

HUNDRED = Decimal("100")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CartTotals:
    """Aggregated money figures for a whole cart."""

    sub_total: Decimal
    total_tax: Decimal
    round_off: Decimal
    grand_total: Decimal


def quantize_money(amount: Decimal) -> Decimal:
    """Round ``amount`` half-up to two decimal places."""

    return Decimal(amount).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_line(item: InvoiceItemRow) -> InvoiceItemRow:
    """Return a copy of ``item`` with its derived fields recomputed.

    gross = rate x quantity, the discount percentage comes off the gross to
    give the taxable value, and the tax on that is split into two equal
    halves. The tax and its halves keep full precision; only the taxable
    value is held to paise. Rounding happens once, when a cart is totalled.
    The function never fails: out-of-range inputs simply produce
    negative or zero results. Use :func:`validate_line` to reject them.

    Args:
        item (InvoiceItemRow): Line whose non-derived fields are trusted.

    Returns:
        InvoiceItemRow: New line with taxable value, tax components and total
            filled in.
    """

    gross = item.rate * item.quantity
    discount_amount = gross * item.discount_percent / HUNDRED
    taxable_value = quantize_money(gross - discount_amount)
    tax_amount = taxable_value * item.tax_rate / HUNDRED
    half = tax_amount / 2
    return replace(
        item,
        taxable_value=taxable_value,
        cgst_amount=half,
        sgst_amount=half,
        igst_amount=ZERO,
        total_amount=taxable_value + tax_amount,
    )


def compute_totals(items: Iterable[InvoiceItemRow]) -> CartTotals:
    """Aggregate already computed lines into cart totals.

    The tax is summed unrounded and held to paise once, so per-line
    fractions never pile up. The grand total is the sum rounded half-up to a
    whole amount; the round off is the signed difference and always lies
    within half a unit.
    """

    sub_total = ZERO
    total_tax = ZERO
    for item in items:
        sub_total += item.taxable_value
        total_tax += item.cgst_amount + item.sgst_amount
    total_tax = quantize_money(total_tax)
    gross_total = sub_total + total_tax
    grand_total = gross_total.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return CartTotals(
        sub_total=sub_total,
        total_tax=total_tax,
        round_off=quantize_money(grand_total - gross_total),
        grand_total=quantize_money(grand_total),
    )


def recompute_cart(items: Iterable[InvoiceItemRow]) -> tuple[tuple[InvoiceItemRow, ...], CartTotals]:
    """Recompute every line of a cart and its totals in one call."""

    lines = tuple(compute_line(item) for item in items)
    return lines, compute_totals(lines)


def validate_line(item: InvoiceItemRow) -> None:
    """Reject line values that :func:`compute_line` would silently accept.

    Raises:
        ValueError: If a quantity is negative, nothing at all is billed, the
            discount falls outside 0-100, or a rate is negative.
    """

    if item.quantity < 0 or item.bonus_quantity < 0:
        log.error("Line quantity validation failed for product %s", item.product_id)
        raise ValueError("Quantity must be zero or positive")
    if item.quantity + item.bonus_quantity == 0:
        log.error("Line for product %s bills nothing", item.product_id)
        raise ValueError("Line must bill or give at least one unit")
    if not Decimal("0") <= item.discount_percent <= HUNDRED:
        log.error("Discount validation failed: %s", item.discount_percent)
        raise ValueError("Discount percent must be between 0 and 100")
    if item.rate < 0 or item.tax_rate < 0:
        log.error("Rate validation failed for product %s", item.product_id)
        raise ValueError("Rates must be zero or positive")


def build_line_item(
    product: ProductRow,
    quantity: int,
    *,
    bonus_quantity: int = 0,
    discount_percent: Decimal = Decimal("0"),
    rate: Optional[Decimal] = None,
) -> InvoiceItemRow:
    """Snapshot ``product`` into a computed cart line.

    Name, batch, expiry, tariff code and tax rate are copied so the bill keeps
    what was true at the time of sale. The sale rate is used unless ``rate``
    overrides it.
    """

    item = InvoiceItemRow(
        product_id=product.product_id,
        product_name=product.name,
        batch=product.batch,
        expiry=product.expiry,
        hsn=product.hsn,
        quantity=quantity,
        bonus_quantity=bonus_quantity,
        mrp=product.mrp,
        rate=product.sale_rate if rate is None else Decimal(rate),
        discount_percent=Decimal(discount_percent),
        tax_rate=product.tax_rate,
    )
    return compute_line(item)
