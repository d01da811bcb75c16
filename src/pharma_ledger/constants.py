"""Enumerations and tunables shared across the pharma ledger modules.

The record store, the billing core, both matchers and the CLI read their
identifiers and thresholds from here so that a sheet name or a cut-off is
never spelled twice.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_INVOICE_PREFIX = "TI"
DEFAULT_STARTING_INVOICE_NUMBER = 100

# Printed under every invoice until the company profile is edited.
DEFAULT_TERMS = (
    "1. Goods once sold will not be taken back.\n"
    "2. Interest @ 18% p.a. will be charged if bill is not paid within due date.\n"
    "3. Subject to local jurisdiction."
)

CASH_SALE_PARTY_NAME = "Cash Sale"

# Monetary values are carried with two decimal places everywhere.
MONEY_QUANTUM = Decimal("0.01")

# Product search
AUTOCOMPLETE_LIMIT = 10
FUZZY_ESCALATION_MIN_LENGTH = 3
SUBSEQUENCE_MATCH_THRESHOLD = 0.7

# Header inference
HEADER_DISTANCE_TOLERANCE = 3

# Dashboard
LOW_STOCK_THRESHOLD = 50
EXPIRY_WINDOW_MONTHS = 3


class BillCategory(str, Enum):
    """Enumerate the two kinds of bill (and party) the ledger knows about."""

    WHOLESALE = "WHOLESALE"
    RETAIL = "RETAIL"


class SearchMode(str, Enum):
    """Enumerate the product search strategies."""

    FAST = "FAST"
    ACCURATE = "ACCURATE"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    PARTIES = "Parties"
    INVOICES = "Invoices"
    INVOICE_ITEMS = "InvoiceItems"
    SETTINGS = "Settings"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_INVOICE_PREFIX",
    "DEFAULT_STARTING_INVOICE_NUMBER",
    "DEFAULT_TERMS",
    "CASH_SALE_PARTY_NAME",
    "MONEY_QUANTUM",
    "AUTOCOMPLETE_LIMIT",
    "FUZZY_ESCALATION_MIN_LENGTH",
    "SUBSEQUENCE_MATCH_THRESHOLD",
    "HEADER_DISTANCE_TOLERANCE",
    "LOW_STOCK_THRESHOLD",
    "EXPIRY_WINDOW_MONTHS",
    "BillCategory",
    "SearchMode",
    "SheetName",
]
