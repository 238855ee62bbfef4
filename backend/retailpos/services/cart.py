# Overview: Cart aggregate; immutable snapshots, reducer-style transitions and versioned drafts.

"""
Cart Aggregate

A Cart is a frozen snapshot. Every transition returns a new Cart and leaves
the old one untouched, so the till can keep history (undo) and the pricing
core never sees a half-edited cart.

Lines are keyed by product_id: adding a product already in the cart bumps
its quantity. Quantities never drop below 1 through set_quantity/decrement;
remove_line is the only way to take a product out.

Drafts (the parked cart a cashier can resume) are a separate, versioned
concern:
- version 2 stores product ids only and rehydrates prices from the catalog
- version 1 stored whole product objects; load_draft migrates it
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Optional

from ..time_utils import utcnow, to_utc_z
from ..validation import (
    PAYMENT_METHODS,
    to_discount_mode,
    to_non_negative_decimal,
    to_payment_method,
)
from .pricing import BillDiscount, MODE_AMOUNT, MODE_PERCENT, PricingLine, PricingResult, price_cart
from .tax import ZERO, as_decimal

DRAFT_VERSION = 2


@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    unit_price: Decimal
    tax_rate_pct: Decimal = ZERO
    qty: int = 1
    sku: Optional[str] = None
    category: Optional[str] = None
    item_discount: Decimal = ZERO
    item_discount_mode: str = MODE_AMOUNT

    @classmethod
    def from_product(cls, product, qty: int = 1) -> "CartLine":
        return cls(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            category=product.category,
            unit_price=as_decimal(product.unit_price),
            tax_rate_pct=as_decimal(product.tax_rate_pct),
            qty=max(1, int(qty)),
        )

    def to_pricing_line(self) -> PricingLine:
        return PricingLine(
            unit_price=self.unit_price,
            qty=self.qty,
            tax_rate_pct=self.tax_rate_pct,
            item_discount=self.item_discount,
            item_discount_mode=self.item_discount_mode,
        )


@dataclass(frozen=True)
class CartCustomer:
    phone: str = ""
    name: str = ""
    email: str = ""
    kids_dob: str = ""


@dataclass(frozen=True)
class Cart:
    lines: tuple[CartLine, ...] = field(default_factory=tuple)
    bill_discount: BillDiscount = field(default_factory=BillDiscount)
    payment_method: str = "cash"
    payment_reference_id: str = ""
    customer: CartCustomer = field(default_factory=CartCustomer)
    applied_offer_id: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def line_for(self, product_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def pricing_lines(self) -> list[PricingLine]:
        return [line.to_pricing_line() for line in self.lines]

    def preview(self) -> PricingResult:
        return price_cart(self.pricing_lines(), self.bill_discount)

    def to_checkout_payload(self) -> dict:
        """Request body for the checkout transaction (prices are informational only)."""
        return {
            "items": [
                {
                    "product_id": line.product_id,
                    "qty": line.qty,
                    "unit_price": str(line.unit_price),
                    "item_discount": str(line.item_discount),
                    "item_discount_mode": line.item_discount_mode,
                }
                for line in self.lines
            ],
            "bill_discount": {"value": str(self.bill_discount.value), "mode": self.bill_discount.mode},
            "payment_method": self.payment_method,
            "payment_reference_id": self.payment_reference_id or None,
            "customer": {
                "phone": self.customer.phone or None,
                "name": self.customer.name or None,
                "email": self.customer.email or None,
                "kids_dob": self.customer.kids_dob or None,
            },
        }


# =============================================================================
# TRANSITIONS
# =============================================================================

def _map_line(cart: Cart, product_id: int, fn: Callable[[CartLine], CartLine]) -> Cart:
    return replace(cart, lines=tuple(fn(l) if l.product_id == product_id else l for l in cart.lines))


def add_product(cart: Cart, product, qty: int = 1) -> Cart:
    """Add a product; a product already in the cart has its quantity bumped."""
    if cart.line_for(product.id) is not None:
        return increment(cart, product.id, qty)
    return replace(cart, lines=cart.lines + (CartLine.from_product(product, qty),))


def set_quantity(cart: Cart, product_id: int, qty: int) -> Cart:
    return _map_line(cart, product_id, lambda l: replace(l, qty=max(1, int(qty))))


def increment(cart: Cart, product_id: int, step: int = 1) -> Cart:
    return _map_line(cart, product_id, lambda l: replace(l, qty=l.qty + max(1, int(step))))


def decrement(cart: Cart, product_id: int) -> Cart:
    return _map_line(cart, product_id, lambda l: replace(l, qty=max(1, l.qty - 1)))


def remove_line(cart: Cart, product_id: int) -> Cart:
    return replace(cart, lines=tuple(l for l in cart.lines if l.product_id != product_id))


def set_item_discount(cart: Cart, product_id: int, value) -> Cart:
    amount = max(ZERO, as_decimal(value))
    return _map_line(cart, product_id, lambda l: replace(l, item_discount=amount))


def set_item_discount_mode(cart: Cart, product_id: int, mode: str) -> Cart:
    mode = to_discount_mode(mode, "item_discount_mode")
    return _map_line(cart, product_id, lambda l: replace(l, item_discount_mode=mode))


def set_bill_discount(cart: Cart, value, mode: str = MODE_AMOUNT) -> Cart:
    value = to_non_negative_decimal(value, "bill_discount", default=ZERO)
    return replace(cart, bill_discount=BillDiscount(value=value, mode=to_discount_mode(mode, "bill_discount_mode")))


def set_customer(cart: Cart, *, phone: str = "", name: str = "", email: str = "", kids_dob: str = "") -> Cart:
    return replace(cart, customer=CartCustomer(phone=phone, name=name, email=email, kids_dob=kids_dob))


def set_payment(cart: Cart, method: str, reference_id: str = "") -> Cart:
    return replace(cart, payment_method=to_payment_method(method), payment_reference_id=reference_id or "")


def clear(cart: Cart | None = None) -> Cart:
    return Cart()


# =============================================================================
# DRAFTS
# =============================================================================

def dump_draft(cart: Cart, cashier_user_id: str | None = None) -> dict:
    return {
        "version": DRAFT_VERSION,
        "cashier_user_id": cashier_user_id,
        "cart": [
            {
                "product_id": line.product_id,
                "qty": line.qty,
                "item_discount": str(line.item_discount),
                "item_discount_mode": line.item_discount_mode,
            }
            for line in cart.lines
        ],
        "bill_discount": str(cart.bill_discount.value),
        "bill_discount_mode": cart.bill_discount.mode,
        "payment_method": cart.payment_method,
        "payment_reference_id": cart.payment_reference_id,
        "customer": {
            "phone": cart.customer.phone,
            "name": cart.customer.name,
            "email": cart.customer.email,
            "kids_dob": cart.customer.kids_dob,
        },
        "applied_offer_id": cart.applied_offer_id,
        "updated_at": to_utc_z(utcnow()),
    }


def _draft_qty(value) -> int:
    try:
        return max(1, int(value or 1))
    except (TypeError, ValueError):
        return 1


def _draft_discount(value) -> Decimal:
    try:
        return max(ZERO, as_decimal(value))
    except (ArithmeticError, TypeError, ValueError):
        return ZERO


def _draft_mode(value) -> str:
    return MODE_PERCENT if value == MODE_PERCENT else MODE_AMOUNT


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def load_draft(
    data: dict | None,
    lookup_product: Callable[[int], object | None],
    cashier_user_id: str | None = None,
) -> Cart | None:
    """
    Rehydrate a parked cart.

    Returns None when there is nothing to restore or the draft belongs to a
    different cashier. Lines whose product is no longer in the catalog are
    dropped; prices always come from the catalog, never from the draft.
    """
    if not isinstance(data, dict):
        return None

    owner = data.get("cashier_user_id")
    if owner and cashier_user_id and owner != cashier_user_id:
        return None

    version = data.get("version") if isinstance(data.get("version"), int) else 1
    raw_lines = data.get("cart") if isinstance(data.get("cart"), list) else []

    lines: list[CartLine] = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            continue
        if version >= 2:
            product_id = raw.get("product_id")
        else:
            embedded = raw.get("product") if isinstance(raw.get("product"), dict) else {}
            product_id = embedded.get("id")
        if product_id is None:
            continue
        product = lookup_product(product_id)
        if product is None:
            continue
        line = CartLine.from_product(product, _draft_qty(raw.get("qty")))
        lines.append(replace(
            line,
            item_discount=_draft_discount(raw.get("item_discount")),
            item_discount_mode=_draft_mode(raw.get("item_discount_mode")),
        ))

    if version >= 2:
        customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
    else:
        # v1 kept customer fields flat on the draft
        customer = {
            "phone": data.get("cust_phone"),
            "name": data.get("cust_name"),
            "email": data.get("cust_email"),
            "kids_dob": data.get("cust_kids_dob"),
        }
    payment_method = data.get("payment_method")
    applied_offer_id = data.get("applied_offer_id") if version >= 2 else None

    return Cart(
        lines=tuple(lines),
        bill_discount=BillDiscount(
            value=_draft_discount(data.get("bill_discount")),
            mode=_draft_mode(data.get("bill_discount_mode")),
        ),
        payment_method=payment_method if payment_method in PAYMENT_METHODS else "cash",
        payment_reference_id=_text(data.get("payment_reference_id")),
        customer=CartCustomer(
            phone=_text(customer.get("phone")),
            name=_text(customer.get("name")),
            email=_text(customer.get("email")),
            kids_dob=_text(customer.get("kids_dob")),
        ),
        applied_offer_id=applied_offer_id if isinstance(applied_offer_id, int) else None,
    )
