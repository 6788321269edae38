# ============================================================
# feedesk/utils/money.py
#
# Money helpers shared by the ledger, the receipt aggregator
# and the PDF renderer.
#
#   to_money(x)          → Decimal quantized to 0.01 (half-up)
#   parse_amount(raw)    → operator input → Decimal, junk → 0
#   to_words(n)          → Indian numbering words, "Zero" for 0
#   amount_in_words(x)   → "Rupees ... Only" line for receipts
#   format_inr(x)        → ₹1,23,456.00
#
# Indian numbering groups as Crore (10^7), Lakh (10^5),
# Thousand (10^3), then Hundreds / tens / ones.
# ============================================================

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, ROUND_DOWN
from typing import Any, List, Optional

from feedesk.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0")

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
]
_TENS = [
    "", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety",
]

CRORE    = 10_000_000
LAKH     = 100_000
THOUSAND = 1_000

# Largest amount an API accepts; keeps every quantize within Decimal precision.
MAX_AMOUNT = Decimal("999999999999.99")


def to_money(value: Any) -> Decimal:
    """Any numeric-ish value → Decimal with two places. None → 0.00."""
    if value is None:
        return ZERO.quantize(CENT)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(raw: Any) -> Decimal:
    """
    Parse what an operator typed into a custom amount box.
    Empty, unparseable, non-finite or absurdly large input becomes 0 so that manual
    validation rejects it as "must be greater than zero".
    """
    if raw is None:
        return ZERO
    try:
        amount = Decimal(str(raw).strip().replace(",", ""))
        if not amount.is_finite():
            return ZERO
        return to_money(amount)
    except InvalidOperation:
        return ZERO


def _below_thousand(n: int) -> List[str]:
    words: List[str] = []
    if n >= 100:
        words += [_ONES[n // 100], "Hundred"]
        n %= 100
    if n >= 20:
        words.append(_TENS[n // 10])
        n %= 10
    if n > 0:
        words.append(_ONES[n])
    return words


def _group_words(n: int) -> List[str]:
    words: List[str] = []
    if n >= CRORE:
        # The crore count itself may exceed 999 for very large amounts.
        words += _group_words(n // CRORE) + ["Crore"]
        n %= CRORE
    if n >= LAKH:
        words += _below_thousand(n // LAKH) + ["Lakh"]
        n %= LAKH
    if n >= THOUSAND:
        words += _below_thousand(n // THOUSAND) + ["Thousand"]
        n %= THOUSAND
    if n > 0:
        words += _below_thousand(n)
    return words


def to_words(amount: Any) -> str:
    """
    123456 → "One Lakh Twenty Three Thousand Four Hundred Fifty Six".
    Decimal input is truncated to its whole part; use amount_in_words()
    for a receipt line that spells paise too.
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount < 0:
        raise ValueError("Amount in words is only defined for non-negative amounts")
    n = int(amount.to_integral_value(rounding=ROUND_DOWN))
    if n == 0:
        return "Zero"
    return " ".join(_group_words(n)).strip()


def amount_in_words(amount: Any) -> str:
    """Receipt wording: "Rupees One Thousand and Fifty Paise Only"."""
    amount = to_money(amount)
    rupees = int(amount.to_integral_value(rounding=ROUND_DOWN))
    paise = int((amount - rupees) * 100)
    text = f"Rupees {to_words(rupees)}"
    if paise:
        text += f" and {to_words(paise)} Paise"
    return f"{text} Only"


def format_inr(amount: Any, symbol: Optional[str] = None) -> str:
    """Indian digit grouping: 1234567.5 → ₹12,34,567.50"""
    symbol = settings.CURRENCY_SYMBOL if symbol is None else symbol
    amount = to_money(amount)
    sign = "-" if amount < 0 else ""
    whole, frac = f"{abs(amount):.2f}".split(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        pairs = []
        while len(head) > 2:
            pairs.insert(0, head[-2:])
            head = head[:-2]
        if head:
            pairs.insert(0, head)
        whole = ",".join(pairs + [tail])
    return f"{sign}{symbol}{whole}.{frac}"
