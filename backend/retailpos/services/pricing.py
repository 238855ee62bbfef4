# Overview: Pricing engine shared by checkout preview, checkout persistence and exchanges.

"""
Pricing Engine

One algorithm, used identically by the POS preview, the checkout
transaction and the exchange transaction:

1. line net      = unit_price * qty - line_discount
                   (line_discount = value, or unit_price * qty * value / 100)
2. subtotal      = sum(line net)
3. bill discount = value, or subtotal * value / 100
4. bill share    = bill discount * (line net / max(1, subtotal))
   taxable base  = max(0, line net - bill share)
   line tax      = taxable base * tax_rate_pct / 100
5. tax total     = sum(line tax)
   grand total   = max(0, subtotal - bill discount + tax total)

Bill-level discounts reduce the taxable base of each line in proportion to
its net amount; they are never applied after tax.

No rounding happens here. Everything is Decimal so the same input always
produces the same output, digit for digit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from .tax import HUNDRED, ZERO, as_decimal, round2

MODE_AMOUNT = "amount"
MODE_PERCENT = "percent"
ONE = Decimal("1")


@dataclass(frozen=True)
class PricingLine:
    unit_price: Decimal
    qty: int
    tax_rate_pct: Decimal = ZERO
    item_discount: Decimal = ZERO
    item_discount_mode: str = MODE_AMOUNT


@dataclass(frozen=True)
class BillDiscount:
    value: Decimal = ZERO
    mode: str = MODE_AMOUNT


@dataclass(frozen=True)
class PricedLine:
    gross: Decimal
    line_discount: Decimal
    net: Decimal
    bill_share: Decimal
    taxable_base: Decimal
    tax: Decimal


@dataclass(frozen=True)
class PricingResult:
    lines: tuple[PricedLine, ...] = field(default_factory=tuple)
    subtotal: Decimal = ZERO
    bill_discount_amount: Decimal = ZERO
    tax_total: Decimal = ZERO
    grand_total: Decimal = ZERO

    @property
    def line_discount_total(self) -> Decimal:
        return sum((line.line_discount for line in self.lines), ZERO)

    @property
    def discount_total(self) -> Decimal:
        return self.line_discount_total + self.bill_discount_amount

    def rounded(self) -> dict:
        """Totals rounded to 2 decimals, for persistence and display."""
        return {
            "subtotal": round2(self.subtotal),
            "bill_discount_amount": round2(self.bill_discount_amount),
            "discount_total": round2(self.discount_total),
            "tax_total": round2(self.tax_total),
            "grand_total": round2(self.grand_total),
        }

    def to_dict(self) -> dict:
        totals = {k: f"{v:.2f}" for k, v in self.rounded().items()}
        totals["lines"] = [
            {
                "gross": f"{round2(line.gross):.2f}",
                "line_discount": f"{round2(line.line_discount):.2f}",
                "net": f"{round2(line.net):.2f}",
                "bill_share": f"{round2(line.bill_share):.2f}",
                "taxable_base": f"{round2(line.taxable_base):.2f}",
                "tax": f"{round2(line.tax):.2f}",
            }
            for line in self.lines
        ]
        return totals


def line_discount_amount(unit_price, qty: int, value, mode: str) -> Decimal:
    gross = as_decimal(unit_price) * qty
    value = as_decimal(value)
    if mode == MODE_PERCENT:
        return gross * value / HUNDRED
    return value


def bill_discount_amount(subtotal: Decimal, discount: BillDiscount | None) -> Decimal:
    if discount is None:
        return ZERO
    value = as_decimal(discount.value)
    if discount.mode == MODE_PERCENT:
        return subtotal * value / HUNDRED
    return value


def prorate_bill_discount(bill_discount: Decimal, line_amount: Decimal, base_total: Decimal) -> Decimal:
    """Share of a bill-level discount carried by one line."""
    return bill_discount * (line_amount / max(ONE, base_total))


def price_cart(
    lines: list[PricingLine] | tuple[PricingLine, ...],
    bill_discount: BillDiscount | None = None,
    *,
    charge_tax: bool = True,
) -> PricingResult:
    """
    Price a cart. See module docstring for the algorithm.

    charge_tax=False prices without adding tax on top (line tax is zero);
    exchange invoices use it so the payable equals the net difference.
    """
    nets = []
    for line in lines:
        gross = as_decimal(line.unit_price) * line.qty
        discount = line_discount_amount(line.unit_price, line.qty, line.item_discount, line.item_discount_mode)
        nets.append((gross, discount, gross - discount))

    subtotal = sum((net for _, _, net in nets), ZERO)
    bill_amount = bill_discount_amount(subtotal, bill_discount)

    priced = []
    tax_total = ZERO
    for line, (gross, discount, net) in zip(lines, nets):
        share = prorate_bill_discount(bill_amount, net, subtotal)
        taxable = max(ZERO, net - share)
        tax = taxable * as_decimal(line.tax_rate_pct) / HUNDRED if charge_tax else ZERO
        tax_total += tax
        priced.append(PricedLine(
            gross=gross,
            line_discount=discount,
            net=net,
            bill_share=share,
            taxable_base=taxable,
            tax=tax,
        ))

    grand_total = max(ZERO, subtotal - bill_amount + tax_total)

    return PricingResult(
        lines=tuple(priced),
        subtotal=subtotal,
        bill_discount_amount=bill_amount,
        tax_total=tax_total,
        grand_total=grand_total,
    )
