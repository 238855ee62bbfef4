# Overview: Tax-inclusive price splitting and the single rounding helper.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


class TaxSplit(NamedTuple):
    base: Decimal
    gst: Decimal


def as_decimal(value) -> Decimal:
    """Exact Decimal for ints, strings and Decimals; floats go through str()."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def split_inclusive(price, tax_pct) -> TaxSplit:
    """
    Split a tax-inclusive price into its ex-tax base and tax parts.

    base * (1 + r) == price, where r = tax_pct / 100. No rounding is applied;
    callers round with round2() at presentation or persistence boundaries.
    """
    p = as_decimal(price)
    rate = as_decimal(tax_pct) / HUNDRED
    if rate <= 0:
        return TaxSplit(base=p, gst=ZERO)
    base = p / (1 + rate)
    return TaxSplit(base=base, gst=p - base)


def round2(value) -> Decimal:
    """Round half-up to 2 decimal places."""
    return as_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
