"""
Checkout Transaction

WHY: A sale is the one place where money, stock and the invoice counter all
move together. Either every effect lands or none does.

STATES:
    Cart(draft) -> [validate stock] -> Committed(invoice + stock + logs)
                                    -> Rejected(insufficient stock)

DESIGN PRINCIPLES:
- Totals are always re-derived with the Pricing Engine from catalog price and
  tax rate. Client-sent prices/totals are never trusted (a mismatch is only
  logged).
- Read phase (op_id dedupe, products, stock, settings, customer lookup)
  strictly before the write phase.
- Stock is checked against the aggregate demand per product; the first short
  product is named in the error and nothing is written.
- op_id makes redelivery idempotent: a replay returns the invoice already
  written for that op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Invoice, InvoiceLine, Product
from ..validation import (
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
    optional_text,
    require_list,
    require_text,
    to_discount_mode,
    to_int,
    to_non_negative_decimal,
    to_payment_method,
    to_positive_int,
)
from .concurrency import lock_for_update, run_in_transaction
from .customer_service import award_loyalty, resolve_customer
from .inventory_service import append_log
from .pricing import BillDiscount, MODE_PERCENT, PricingLine, PricingResult, price_cart
from .settings_service import allocate_invoice_number, get_settings
from .tax import HUNDRED, ZERO, round2


# =============================================================================
# REQUEST (single decode boundary)
# =============================================================================

@dataclass(frozen=True)
class CheckoutLine:
    product_id: int
    qty: int
    item_discount: Decimal = ZERO
    item_discount_mode: str = "amount"
    client_unit_price: Optional[Decimal] = None


@dataclass(frozen=True)
class CheckoutCustomer:
    customer_id: Optional[int] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    kids_dob: Optional[str] = None


@dataclass(frozen=True)
class CheckoutRequest:
    lines: tuple[CheckoutLine, ...]
    cashier_user_id: str
    bill_discount: BillDiscount = field(default_factory=BillDiscount)
    payment_method: str = "cash"
    payment_reference_id: Optional[str] = None
    cashier_name: Optional[str] = None
    customer: CheckoutCustomer = field(default_factory=CheckoutCustomer)
    op_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict, *, op_id: str | None = None) -> "CheckoutRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        raw_lines = require_list(payload.get("items", payload.get("lines")), "items")
        if not raw_lines:
            raise ValidationError("Cart is empty")

        lines = []
        for i, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{i}] must be an object")
            # "line_discount" is the older amount-only field
            discount_raw = raw.get("item_discount", raw.get("line_discount"))
            client_price = raw.get("unit_price")
            lines.append(CheckoutLine(
                product_id=to_int(raw.get("product_id"), f"items[{i}].product_id"),
                qty=to_positive_int(raw.get("qty", raw.get("quantity")), f"items[{i}].qty"),
                item_discount=to_non_negative_decimal(discount_raw, f"items[{i}].item_discount", default=ZERO),
                item_discount_mode=to_discount_mode(raw.get("item_discount_mode"), f"items[{i}].item_discount_mode"),
                client_unit_price=None if client_price is None else to_non_negative_decimal(client_price, f"items[{i}].unit_price"),
            ))

        bill_raw = payload.get("bill_discount")
        if isinstance(bill_raw, dict):
            bill_discount = BillDiscount(
                value=to_non_negative_decimal(bill_raw.get("value"), "bill_discount.value", default=ZERO),
                mode=to_discount_mode(bill_raw.get("mode"), "bill_discount.mode"),
            )
        else:
            bill_discount = BillDiscount(
                value=to_non_negative_decimal(bill_raw, "bill_discount", default=ZERO),
                mode=to_discount_mode(payload.get("bill_discount_mode"), "bill_discount_mode"),
            )
        if bill_discount.mode == MODE_PERCENT and bill_discount.value > HUNDRED:
            raise ValidationError("bill_discount cannot exceed 100 percent")

        cust_raw = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
        customer_id = payload.get("customer_id", cust_raw.get("id"))
        customer = CheckoutCustomer(
            customer_id=None if customer_id is None else to_int(customer_id, "customer_id"),
            phone=optional_text(cust_raw.get("phone"), "customer.phone", max_length=32),
            name=optional_text(cust_raw.get("name"), "customer.name"),
            email=optional_text(cust_raw.get("email"), "customer.email"),
            kids_dob=optional_text(cust_raw.get("kids_dob"), "customer.kids_dob", max_length=32),
        )

        return cls(
            lines=tuple(lines),
            cashier_user_id=require_text(payload.get("cashier_user_id"), "cashier_user_id", max_length=64),
            cashier_name=optional_text(payload.get("cashier_name"), "cashier_name"),
            bill_discount=bill_discount,
            payment_method=to_payment_method(payload.get("payment_method")),
            payment_reference_id=optional_text(payload.get("payment_reference_id"), "payment_reference_id", max_length=128),
            customer=customer,
            op_id=op_id or optional_text(payload.get("op_id"), "op_id", max_length=64),
        )


# =============================================================================
# PRICING (shared by preview and commit)
# =============================================================================

def _load_products(product_ids, *, lock: bool) -> dict[int, Product]:
    q = db.session.query(Product).filter(Product.id.in_(sorted(set(product_ids))))
    if lock:
        q = lock_for_update(q)
    products = {p.id: p for p in q.all()}
    for pid in product_ids:
        product = products.get(pid)
        if product is None or not product.is_active:
            raise ProductNotFoundError("Product not found", details={"product_id": pid})
    return products


def _validate_line_discounts(request: CheckoutRequest, products: dict[int, Product]) -> None:
    for line in request.lines:
        if line.item_discount_mode == MODE_PERCENT:
            if line.item_discount > HUNDRED:
                raise ValidationError("Item discount cannot exceed 100 percent", details={"product_id": line.product_id})
        elif line.item_discount > products[line.product_id].unit_price * line.qty:
            raise ValidationError("Item discount exceeds line total", details={"product_id": line.product_id})


def price_request(request: CheckoutRequest, products: dict[int, Product]) -> PricingResult:
    """Price a checkout request from catalog price and tax rate."""
    _validate_line_discounts(request, products)
    lines = [
        PricingLine(
            unit_price=products[line.product_id].unit_price,
            qty=line.qty,
            tax_rate_pct=products[line.product_id].tax_rate_pct,
            item_discount=line.item_discount,
            item_discount_mode=line.item_discount_mode,
        )
        for line in request.lines
    ]
    return price_cart(lines, request.bill_discount)


def _check_stock(request: CheckoutRequest, products: dict[int, Product]) -> None:
    demand: dict[int, int] = {}
    for line in request.lines:
        demand[line.product_id] = demand.get(line.product_id, 0) + line.qty
    for product_id, requested in demand.items():
        product = products[product_id]
        if requested > product.stock:
            raise InsufficientStockError(product.id, product.name, product.stock, requested)


def _log_client_price_drift(request: CheckoutRequest, products: dict[int, Product]) -> None:
    for line in request.lines:
        if line.client_unit_price is None:
            continue
        catalog_price = products[line.product_id].unit_price
        if round2(line.client_unit_price) != round2(catalog_price):
            current_app.logger.info(
                "Checkout price drift for product %s: client %s, catalog %s (catalog used)",
                line.product_id, line.client_unit_price, catalog_price,
            )


def preview_checkout(request: CheckoutRequest) -> dict:
    """Read-only pricing of a cart with live catalog prices. No locks, no writes."""
    products = _load_products([line.product_id for line in request.lines], lock=False)
    totals = price_request(request, products).to_dict()
    priced_lines = totals.pop("lines")

    items = []
    for line, priced in zip(request.lines, priced_lines):
        product = products[line.product_id]
        items.append({
            "product_id": product.id,
            "name": product.name,
            "qty": line.qty,
            "unit_price": f"{product.unit_price:.2f}",
            "tax_rate_pct": f"{product.tax_rate_pct:.2f}",
            "in_stock": product.stock >= line.qty,
            **priced,
        })
    return {"items": items, "totals": totals}


# =============================================================================
# COMMIT
# =============================================================================

def find_invoice_by_op_id(op_id: str | None) -> Invoice | None:
    if not op_id:
        return None
    return db.session.query(Invoice).filter_by(op_id=op_id).first()


def checkout_cart(request: CheckoutRequest, op_id: str | None = None) -> Invoice:
    """
    Commit a sale.

    Inside one transaction: dedupe on op_id, read and lock products, check
    aggregate stock, price, allocate the invoice number, write invoice and
    lines, decrement stock with one `sale` log per line, credit loyalty.
    """
    op_id = op_id or request.op_id

    def _op():
        # Read phase
        existing = find_invoice_by_op_id(op_id)
        if existing is not None:
            current_app.logger.info("Checkout op %s already applied as %s", op_id, existing.invoice_number)
            return existing

        products = _load_products([line.product_id for line in request.lines], lock=True)
        _check_stock(request, products)
        _log_client_price_drift(request, products)
        result = price_request(request, products)
        totals = result.rounded()

        settings = get_settings(lock=True)

        # Write phase
        customer = resolve_customer(
            customer_id=request.customer.customer_id,
            phone=request.customer.phone,
            name=request.customer.name,
            email=request.customer.email,
            kids_dob=request.customer.kids_dob,
        )

        invoice = Invoice(
            invoice_number=allocate_invoice_number(settings),
            customer_id=customer.id if customer is not None else None,
            subtotal=totals["subtotal"],
            tax_total=totals["tax_total"],
            bill_discount_amount=totals["bill_discount_amount"],
            discount_total=totals["discount_total"],
            grand_total=totals["grand_total"],
            balance_due=ZERO,
            payment_method=request.payment_method,
            payment_reference_id=request.payment_reference_id,
            cashier_user_id=request.cashier_user_id,
            cashier_name=request.cashier_name,
            status="paid",
            op_id=op_id,
        )
        db.session.add(invoice)
        db.session.flush()

        for line, priced in zip(request.lines, result.lines):
            product = products[line.product_id]
            db.session.add(InvoiceLine(
                invoice_id=invoice.id,
                product_id=product.id,
                name=product.name,
                quantity=line.qty,
                unit_price=product.unit_price,
                tax_rate_pct=product.tax_rate_pct,
                discount_amount=round2(priced.line_discount),
                tax_amount=round2(priced.tax),
            ))
            append_log(
                product=product,
                quantity_change=-line.qty,
                type="sale",
                reason=f"invoice {invoice.invoice_number}",
                related_invoice_id=invoice.id,
                user_id=request.cashier_user_id,
            )

        if customer is not None:
            award_loyalty(customer, totals["grand_total"])

        db.session.flush()
        return invoice

    invoice = run_in_transaction(_op)
    current_app.logger.info("Checkout committed: %s grand_total=%s", invoice.invoice_number, invoice.grand_total)
    return invoice


def get_invoice(invoice_id: int) -> Invoice | None:
    return db.session.get(Invoice, invoice_id)


def list_invoices(*, customer_id: int | None = None, limit: int = 100) -> list[Invoice]:
    q = db.session.query(Invoice)
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    return q.order_by(Invoice.issued_at.desc(), Invoice.id.desc()).limit(max(1, min(limit, 500))).all()
