"""Display helpers for amounts and dates on printed invoices."""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from .constants import MONEY_QUANTUM

CURRENCY_SYMBOL = "₹"

_ONES = (
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
)
_TENS = ("", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety")


def group_indian(digits: str) -> str:
    """Insert separators the Indian way: last three digits, then pairs.

    >>> group_indian("123456")
    '1,23,456'
    """

    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def format_currency(amount: Union[Decimal, int, float], *, symbol: str = CURRENCY_SYMBOL) -> str:
    """Render ``amount`` as rupees with two decimals, e.g. ``₹1,23,456.78``."""

    value = Decimal(str(amount)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, fraction = f"{abs(value):.2f}".split(".")
    return f"{sign}{symbol}{group_indian(whole)}.{fraction}"


def format_date(value: Optional[Union[date, datetime, str]]) -> str:
    """Render a date as ``01-Jan-2021``; blanks render as an empty string."""

    if value is None or value == "":
        return ""
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return value.strftime("%d-%b-%Y")


def _two_digits(number: int) -> str:
    if number < 20:
        return _ONES[number]
    tens, ones = divmod(number, 10)
    return f"{_TENS[tens]} {_ONES[ones]}".strip()


def _rupee_words(number: int) -> str:
    parts = []
    crore, number = divmod(number, 10_000_000)
    lakh, number = divmod(number, 100_000)
    thousand, number = divmod(number, 1_000)
    hundred, rest = divmod(number, 100)
    if crore:
        parts.append(f"{_rupee_words(crore)} Crore")
    if lakh:
        parts.append(f"{_two_digits(lakh)} Lakh")
    if thousand:
        parts.append(f"{_two_digits(thousand)} Thousand")
    if hundred:
        parts.append(f"{_ONES[hundred]} Hundred")
    if rest:
        if parts:
            parts.append("and")
        parts.append(_two_digits(rest))
    return " ".join(parts)


def amount_in_words(amount: Union[Decimal, int]) -> str:
    """Spell out a rupee amount using crore, lakh and thousand.

    Paise are spelled out after the rupees when present.

    >>> amount_in_words(Decimal("123456"))
    'Rupees One Lakh Twenty Three Thousand Four Hundred and Fifty Six Only'
    """

    value = Decimal(str(amount)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    rupees = int(abs(value))
    paise = int((abs(value) - rupees) * 100)
    words = _rupee_words(rupees) or "Zero"
    if paise:
        words = f"{words} and {_two_digits(paise)} Paise"
    prefix = "Minus Rupees" if value < 0 else "Rupees"
    return f"{prefix} {words} Only"
