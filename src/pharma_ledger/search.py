"""Product search for the billing screen and the inventory list.

Two strategies are available. FAST walks the sorted prefix indexes kept in
the product cache and only ever finds names or batches that *start* with the
query. ACCURATE scans every product and accepts a name that contains the query
or that shares enough of its letters in order (see
:func:`subsequence_ratio`), which forgives the odd missing or transposed
letter. A FAST search that finds nothing for a query longer than
``FUZZY_ESCALATION_MIN_LENGTH`` characters escalates to ACCURATE on its own.
"""

from __future__ import annotations

from typing import List, Optional

from . import core_logic, log
from .constants import (
    AUTOCOMPLETE_LIMIT,
    FUZZY_ESCALATION_MIN_LENGTH,
    SUBSEQUENCE_MATCH_THRESHOLD,
    SearchMode,
)
from .data_manager import ProductRow


def subsequence_ratio(query: str, text: str) -> float:
    """Share of ``query`` characters found in ``text`` in order.

    Characters are matched greedily left to right, ignoring case. An empty
    query scores 0.
    """

    needle = query.lower()
    haystack = text.lower()
    if not needle:
        return 0.0
    matched = 0
    position = 0
    for char in needle:
        found = haystack.find(char, position)
        if found == -1:
            continue
        matched += 1
        position = found + 1
    return matched / len(needle)


def _accurate_match(query: str, product: ProductRow) -> bool:
    if query.lower() in product.name.lower():
        return True
    return subsequence_ratio(query, product.name) > SUBSEQUENCE_MATCH_THRESHOLD


def search_products(
    context: core_logic.RuntimeContext,
    query: str,
    *,
    mode: SearchMode = SearchMode.FAST,
    limit: Optional[int] = None,
    empty_returns_all: bool = False,
) -> List[ProductRow]:
    """Find products matching ``query``.

    Args:
        context (RuntimeContext): Runtime context providing the product cache.
        query (str): Text typed by the user. Surrounding whitespace is ignored.
        mode (SearchMode): ``FAST`` for prefix lookup, ``ACCURATE`` for a full
            fuzzy scan.
        limit (int | None): Maximum number of results, ``None`` for no cap.
        empty_returns_all (bool): What a blank query means: every product when
            ``True``, nothing when ``False``.

    Returns:
        list[ProductRow]: Matches in sheet order, without duplicates.
    """

    needle = query.strip()
    if not needle:
        results = core_logic.list_products(context) if empty_returns_all else []
        return results[:limit] if limit is not None else results

    results: List[ProductRow] = []
    if mode is SearchMode.FAST:
        results = core_logic.query_products_by_prefix(context, needle)
        if not results and len(needle) > FUZZY_ESCALATION_MIN_LENGTH:
            log.debug("Prefix search for '%s' found nothing; escalating to accurate", needle)
            mode = SearchMode.ACCURATE

    if mode is SearchMode.ACCURATE:
        results = [product for product in core_logic.list_products(context) if _accurate_match(needle, product)]

    log.debug("Search '%s' (%s) matched %d products", needle, mode.value, len(results))
    return results[:limit] if limit is not None else results


def suggest_products(context: core_logic.RuntimeContext, query: str) -> List[ProductRow]:
    """Autocomplete suggestions for the billing screen."""
    return search_products(context, query, mode=SearchMode.FAST, limit=AUTOCOMPLETE_LIMIT)


def list_inventory(
    context: core_logic.RuntimeContext,
    query: str = "",
    *,
    mode: SearchMode = SearchMode.FAST,
) -> List[ProductRow]:
    """Products for the inventory list; a blank filter shows everything."""
    return search_products(context, query, mode=mode, empty_returns_all=True)
