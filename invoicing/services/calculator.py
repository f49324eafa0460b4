"""Invoice totals.

Order is fixed: subtotal, discount, discounted subtotal, tax on the
discounted subtotal, total. Amounts keep full ``Decimal`` precision; only
``InvoiceTotals.rounded()`` / ``format_amount`` round, for display.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Union

from invoicing.models.invoice import CENT, ZERO, InvoiceTotals, LineItem

HUNDRED = Decimal("100")
# magnitudes past 10**18 (or below 10**-18) count as 0, products stay inside the context
MAX_EXPONENT = 18

_NUMERIC = re.compile(r"[+-]?(\d+([.,]\d*)?|[.,]\d+)([eE][+-]?\d+)?")


def to_decimal(val: Any) -> Decimal:
    """Best effort number parsing; anything unusable counts as 0."""
    if val is None or isinstance(val, bool):
        return ZERO
    if isinstance(val, Decimal):
        d = val
    elif isinstance(val, (int, float)):
        d = Decimal(str(val))
    elif isinstance(val, str):
        s = val.strip()
        if not _NUMERIC.fullmatch(s):
            return ZERO
        try:
            d = Decimal(s.replace(",", "."))
        except InvalidOperation:
            return ZERO
    else:
        return ZERO
    if not d.is_finite() or (d and abs(d.adjusted()) > MAX_EXPONENT):
        return ZERO
    return d


def clamp_percent(val: Any) -> Decimal:
    return min(HUNDRED, max(ZERO, to_decimal(val)))


def _field(item: Union[LineItem, Mapping[str, Any]], name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def line_total(item: Union[LineItem, Mapping[str, Any]]) -> Decimal:
    return to_decimal(_field(item, "quantity")) * to_decimal(_field(item, "price"))


def compute_totals(
    items: Iterable[Union[LineItem, Mapping[str, Any]]],
    discount_percent: Any,
    tax_percent: Any,
) -> InvoiceTotals:
    subtotal = sum((line_total(it) for it in items or ()), ZERO)
    discount_amount = subtotal * clamp_percent(discount_percent) / HUNDRED
    after_discount = subtotal - discount_amount
    tax_amount = after_discount * clamp_percent(tax_percent) / HUNDRED
    return InvoiceTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        subtotal_after_discount=after_discount,
        tax_amount=tax_amount,
        total=after_discount + tax_amount,
    )


def format_amount(value: Any, currency: str = "") -> str:
    amount = to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    return f"{currency}{amount:.2f}"
