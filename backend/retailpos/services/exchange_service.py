"""
Exchange Transaction

WHY: A customer brings items back from an earlier invoice and takes new
ones in the same visit. The return credit and the new purchase are netted
into one difference: the customer pays it (new invoice) or receives it
(refund).

STEPS (read phase strictly before write phase):
1. Load the original invoice (OriginalInvoiceNotFoundError).
2. Return window: floor(days since issue) > RETURN_WINDOW_DAYS is rejected.
3. Sum quantities already returned per product by earlier exchanges.
4. remaining = sold - already returned; each requested product (all its
   lines together) must be 0 < qty <= remaining.
5. Credit per unit = unit price - line discount per unit - share of the
   invoice's bill discount per unit (prorated like the Pricing Engine, by
   the line's share of the invoice's pre-discount base).
6. Price new items from the live catalog.
7. difference = new_subtotal - return_credit, rounded to 2 places.
8. Stock check for new items on aggregate demand per product.
9. Write: Exchange + lines, new invoice (bill discount = min(credit,
   subtotal), so it totals max(0, difference)), stock out for new items,
   stock back in for non-defect returns, damage log for defect returns,
   refund + loyalty deduction when difference < 0, loyalty award on the new
   invoice when difference > 0.

Pure refunds are not supported: at least one new item is required.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Exchange, ExchangeNewLine, ExchangeReturnLine, Invoice, InvoiceLine, Product, Refund
from ..time_utils import normalize_datetime, whole_days_between
from ..validation import (
    InsufficientStockError,
    InvalidReturnQuantityError,
    NoNewItemsError,
    OriginalInvoiceNotFoundError,
    ProductNotFoundError,
    ProductNotInOriginalInvoiceError,
    ReturnWindowExceededError,
    ValidationError,
    optional_text,
    require_list,
    require_text,
    to_int,
    to_bool,
    to_payment_method,
)
from .concurrency import lock_for_update, run_in_transaction
from .customer_service import award_loyalty, deduct_loyalty
from .inventory_service import append_log
from .pricing import BillDiscount, PricingLine, prorate_bill_discount, price_cart
from .settings_service import allocate_invoice_number, get_settings
from .tax import ZERO, as_decimal, round2


# =============================================================================
# REQUEST
# =============================================================================

@dataclass(frozen=True)
class ReturnItem:
    product_id: int
    qty: int
    defect: bool = False


@dataclass(frozen=True)
class NewItem:
    product_id: int
    qty: int


@dataclass(frozen=True)
class ExchangeRequest:
    original_invoice_id: int
    returned: tuple[ReturnItem, ...]
    new_items: tuple[NewItem, ...]
    cashier_user_id: str
    cashier_name: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference_id: Optional[str] = None
    refund_method: Optional[str] = None
    refund_reference_id: Optional[str] = None
    op_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict, *, op_id: str | None = None) -> "ExchangeRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        returned = []
        for i, raw in enumerate(require_list(payload.get("returned"), "returned")):
            if not isinstance(raw, dict):
                raise ValidationError(f"returned[{i}] must be an object")
            # qty of 0 is a business-rule rejection reported with the remaining quantity
            returned.append(ReturnItem(
                product_id=to_int(raw.get("product_id"), f"returned[{i}].product_id"),
                qty=to_int(raw.get("qty"), f"returned[{i}].qty", default=0),
                defect=to_bool(raw.get("defect"), f"returned[{i}].defect"),
            ))

        new_items = []
        for i, raw in enumerate(require_list(payload.get("new_items"), "new_items")):
            if not isinstance(raw, dict):
                raise ValidationError(f"new_items[{i}] must be an object")
            new_items.append(NewItem(
                product_id=to_int(raw.get("product_id"), f"new_items[{i}].product_id"),
                qty=to_int(raw.get("qty"), f"new_items[{i}].qty", default=0),
            ))

        payment_method = payload.get("payment_method")
        refund_method = payload.get("refund_method")
        return cls(
            original_invoice_id=to_int(payload.get("original_invoice_id"), "original_invoice_id"),
            returned=tuple(returned),
            new_items=tuple(new_items),
            cashier_user_id=require_text(payload.get("cashier_user_id"), "cashier_user_id", max_length=64),
            cashier_name=optional_text(payload.get("cashier_name"), "cashier_name"),
            payment_method=to_payment_method(payment_method, "payment_method") if payment_method else None,
            payment_reference_id=optional_text(payload.get("payment_reference_id"), "payment_reference_id", max_length=128),
            refund_method=to_payment_method(refund_method, "refund_method") if refund_method else None,
            refund_reference_id=optional_text(payload.get("refund_reference_id"), "refund_reference_id", max_length=128),
            op_id=op_id or optional_text(payload.get("op_id"), "op_id", max_length=64),
        )


# =============================================================================
# QUOTE (steps 1-7)
# =============================================================================

@dataclass(frozen=True)
class ReturnLineQuote:
    product_id: int
    qty: int
    defect: bool
    credit_per_unit: Decimal
    credit_total: Decimal


@dataclass(frozen=True)
class NewLineQuote:
    product_id: int
    name: str
    qty: int
    unit_price: Decimal
    tax_rate_pct: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class ExchangeQuote:
    invoice: Invoice
    returned: tuple[ReturnLineQuote, ...]
    new_lines: tuple[NewLineQuote, ...]
    return_credit: Decimal
    new_subtotal: Decimal
    difference: Decimal
    remaining: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "original_invoice_id": self.invoice.id,
            "returned": [
                {
                    "product_id": r.product_id,
                    "qty": r.qty,
                    "defect": r.defect,
                    "credit_per_unit": f"{round2(r.credit_per_unit):.2f}",
                    "credit_total": f"{r.credit_total:.2f}",
                }
                for r in self.returned
            ],
            "new_items": [
                {
                    "product_id": n.product_id,
                    "name": n.name,
                    "qty": n.qty,
                    "unit_price": f"{n.unit_price:.2f}",
                    "line_total": f"{n.line_total:.2f}",
                }
                for n in self.new_lines
            ],
            "totals": {
                "return_credit": f"{self.return_credit:.2f}",
                "new_subtotal": f"{self.new_subtotal:.2f}",
                "difference": f"{self.difference:.2f}",
            },
            "remaining_returnable": {str(k): v for k, v in self.remaining.items()},
        }


@dataclass
class _OriginalLine:
    qty: int
    unit_price: Decimal
    discount: Decimal


def _original_lines(invoice: Invoice) -> dict[int, _OriginalLine]:
    lines: dict[int, _OriginalLine] = {}
    for item in invoice.lines:
        prev = lines.get(item.product_id)
        if prev is None:
            lines[item.product_id] = _OriginalLine(item.quantity, as_decimal(item.unit_price), as_decimal(item.discount_amount))
        else:
            prev.qty += item.quantity
            prev.unit_price = as_decimal(item.unit_price)
            prev.discount += as_decimal(item.discount_amount)
    return lines


def previously_returned(invoice_id: int) -> dict[int, int]:
    rows = (
        db.session.query(ExchangeReturnLine.product_id, func.sum(ExchangeReturnLine.quantity))
        .join(Exchange, Exchange.id == ExchangeReturnLine.exchange_id)
        .filter(Exchange.original_invoice_id == invoice_id)
        .group_by(ExchangeReturnLine.product_id)
        .all()
    )
    return {product_id: int(total or 0) for product_id, total in rows}


def credit_per_unit(line: _OriginalLine, bill_discount: Decimal, original_base: Decimal) -> Decimal:
    """Net price actually paid for one unit of an invoice line (unrounded)."""
    line_base = line.unit_price * line.qty
    bill_share_per_unit = prorate_bill_discount(bill_discount, line_base, original_base) / line.qty
    line_discount_per_unit = line.discount / line.qty
    return max(ZERO, line.unit_price - line_discount_per_unit - bill_share_per_unit)


def quote_exchange(request: ExchangeRequest, now: datetime | None = None, *, lock: bool = False) -> ExchangeQuote:
    """Run the read phase and price the exchange. Writes nothing."""
    if not request.new_items:
        raise NoNewItemsError("Add at least one product to buy in this exchange.")

    # 1. Original invoice; locking it serializes exchanges against the same sale
    if lock:
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=request.original_invoice_id)).first()
    else:
        invoice = db.session.get(Invoice, request.original_invoice_id)
    if invoice is None:
        raise OriginalInvoiceNotFoundError(
            "Original invoice not found", details={"original_invoice_id": request.original_invoice_id}
        )

    # 2. Return window
    now = normalize_datetime(now)
    window = current_app.config.get("RETURN_WINDOW_DAYS", 7)
    days = whole_days_between(normalize_datetime(invoice.issued_at), now)
    if days > window:
        raise ReturnWindowExceededError(
            f"Exchange window ({window} days) exceeded",
            details={"days_since_issue": days, "window_days": window},
        )

    # 3. Prior exchanges
    prior = previously_returned(invoice.id)
    originals = _original_lines(invoice)

    # 4. Remaining returnable, aggregated per product
    requested: dict[int, int] = {}
    for item in request.returned:
        if item.product_id not in originals:
            raise ProductNotInOriginalInvoiceError(
                "Returned product not in original invoice", details={"product_id": item.product_id}
            )
        requested[item.product_id] = requested.get(item.product_id, 0) + item.qty

    remaining = {pid: max(0, line.qty - prior.get(pid, 0)) for pid, line in originals.items()}
    for item in request.returned:
        total = requested[item.product_id]
        if item.qty <= 0 or total > remaining[item.product_id]:
            raise InvalidReturnQuantityError(item.product_id, total, remaining[item.product_id])

    # 5. Credit
    original_base = sum((line.unit_price * line.qty for line in originals.values()), ZERO) or Decimal(1)
    line_discounts = sum((as_decimal(item.discount_amount) for item in invoice.lines), ZERO)
    bill_discount = max(ZERO, as_decimal(invoice.discount_total) - line_discounts)

    returned = []
    for item in request.returned:
        per_unit = credit_per_unit(originals[item.product_id], bill_discount, original_base)
        returned.append(ReturnLineQuote(
            product_id=item.product_id,
            qty=item.qty,
            defect=item.defect,
            credit_per_unit=per_unit,
            credit_total=round2(per_unit * item.qty),
        ))
    return_credit = sum((r.credit_total for r in returned), ZERO)

    # 6. New items from the live catalog
    q = db.session.query(Product).filter(Product.id.in_(sorted({n.product_id for n in request.new_items})))
    if lock:
        q = lock_for_update(q)
    products = {p.id: p for p in q.all()}

    new_lines = []
    for item in request.new_items:
        product = products.get(item.product_id)
        if product is None or not product.is_active:
            raise ProductNotFoundError("New product not found", details={"product_id": item.product_id})
        if item.qty <= 0:
            raise ValidationError("New item qty must be > 0", details={"product_id": item.product_id})
        unit_price = as_decimal(product.unit_price)
        new_lines.append(NewLineQuote(
            product_id=product.id,
            name=product.name,
            qty=item.qty,
            unit_price=unit_price,
            tax_rate_pct=as_decimal(product.tax_rate_pct),
            line_total=round2(unit_price * item.qty),
        ))
    new_subtotal = sum((n.line_total for n in new_lines), ZERO)

    # 7. Difference
    difference = round2(new_subtotal - return_credit)

    return ExchangeQuote(
        invoice=invoice,
        returned=tuple(returned),
        new_lines=tuple(new_lines),
        return_credit=return_credit,
        new_subtotal=new_subtotal,
        difference=difference,
        remaining=remaining,
    )


# =============================================================================
# PERFORM (steps 1-9)
# =============================================================================

@dataclass
class ExchangeResult:
    exchange: Exchange
    new_invoice: Optional[Invoice] = None
    refund: Optional[Refund] = None

    @property
    def difference(self) -> Decimal:
        return as_decimal(self.exchange.difference)

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange.to_dict(),
            "new_invoice": self.new_invoice.to_dict() if self.new_invoice is not None else None,
            "refund": self.refund.to_dict() if self.refund is not None else None,
            "difference": f"{self.difference:.2f}",
        }


def _result_for(exchange: Exchange) -> ExchangeResult:
    refunds = list(exchange.refunds)
    return ExchangeResult(
        exchange=exchange,
        new_invoice=exchange.new_invoice,
        refund=refunds[0] if refunds else None,
    )


def _check_new_item_stock(quote: ExchangeQuote, products: dict[int, Product]) -> None:
    demand: dict[int, int] = {}
    for line in quote.new_lines:
        demand[line.product_id] = demand.get(line.product_id, 0) + line.qty
    for product_id, need in demand.items():
        product = products[product_id]
        if need > product.stock:
            raise InsufficientStockError(product.id, product.name, product.stock, need)


def _payment_record(request: ExchangeRequest, difference: Decimal) -> tuple[str | None, str | None, str | None]:
    if difference > 0 and request.payment_method:
        return "pay", request.payment_method, request.payment_reference_id
    if difference < 0 and request.refund_method:
        return "refund", request.refund_method, request.refund_reference_id
    return None, None, None


def perform_exchange(request: ExchangeRequest, now: datetime | None = None) -> ExchangeResult:
    """Run the whole exchange atomically. Replaying an op_id returns the first result."""
    now = normalize_datetime(now)

    def _op():
        # Read phase
        if request.op_id:
            existing = db.session.query(Exchange).filter_by(op_id=request.op_id).first()
            if existing is not None:
                current_app.logger.info("Exchange op %s already applied as exchange %s", request.op_id, existing.id)
                return _result_for(existing)

        quote = quote_exchange(request, now, lock=True)
        invoice = quote.invoice

        product_ids = sorted({n.product_id for n in quote.new_lines} | {r.product_id for r in quote.returned})
        products = {
            p.id: p
            for p in lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids))).all()
        }
        for pid in product_ids:
            if pid not in products:
                raise ProductNotFoundError("Product not found", details={"product_id": pid})
        _check_new_item_stock(quote, products)

        settings = get_settings(lock=True)
        customer = invoice.customer

        # Write phase
        payment_type, payment_method, payment_reference_id = _payment_record(request, quote.difference)
        exchange = Exchange(
            original_invoice_id=invoice.id,
            return_credit=quote.return_credit,
            new_subtotal=quote.new_subtotal,
            difference=quote.difference,
            payment_type=payment_type,
            payment_method=payment_method,
            payment_reference_id=payment_reference_id,
            created_by_user_id=request.cashier_user_id,
            op_id=request.op_id,
        )
        db.session.add(exchange)
        db.session.flush()

        for r in quote.returned:
            db.session.add(ExchangeReturnLine(
                exchange_id=exchange.id,
                product_id=r.product_id,
                quantity=r.qty,
                defect=r.defect,
                credit_per_unit=round2(r.credit_per_unit),
                credit_total=r.credit_total,
            ))
        for n in quote.new_lines:
            db.session.add(ExchangeNewLine(
                exchange_id=exchange.id,
                product_id=n.product_id,
                quantity=n.qty,
                unit_price=n.unit_price,
                line_total=n.line_total,
            ))

        new_invoice = None
        if quote.new_lines:
            # Return credit acts as a bill discount capped at the subtotal; prices are
            # tax-inclusive so no tax is added on top
            credit_applied = min(quote.return_credit, quote.new_subtotal)
            result = price_cart(
                [PricingLine(unit_price=n.unit_price, qty=n.qty, tax_rate_pct=n.tax_rate_pct) for n in quote.new_lines],
                BillDiscount(value=credit_applied),
                charge_tax=False,
            )
            totals = result.rounded()
            new_invoice = Invoice(
                invoice_number=allocate_invoice_number(settings),
                customer_id=invoice.customer_id,
                subtotal=totals["subtotal"],
                tax_total=totals["tax_total"],
                bill_discount_amount=totals["bill_discount_amount"],
                discount_total=totals["discount_total"],
                grand_total=totals["grand_total"],
                balance_due=ZERO,
                payment_method=request.payment_method if quote.difference > 0 and request.payment_method else "cash",
                payment_reference_id=request.payment_reference_id if quote.difference > 0 else None,
                cashier_user_id=request.cashier_user_id,
                cashier_name=request.cashier_name,
                status="paid",
                exchange_of_invoice_id=invoice.id,
                exchange_id=exchange.id,
            )
            db.session.add(new_invoice)
            db.session.flush()
            exchange.new_invoice_id = new_invoice.id

            for n in quote.new_lines:
                db.session.add(InvoiceLine(
                    invoice_id=new_invoice.id,
                    product_id=n.product_id,
                    name=n.name,
                    quantity=n.qty,
                    unit_price=n.unit_price,
                    tax_rate_pct=n.tax_rate_pct,
                    discount_amount=ZERO,
                    tax_amount=ZERO,
                ))
                append_log(
                    product=products[n.product_id],
                    quantity_change=-n.qty,
                    type="sale",
                    reason="exchange",
                    related_invoice_id=new_invoice.id,
                    user_id=request.cashier_user_id,
                )

            if customer is not None and quote.difference > 0 and totals["grand_total"] > 0:
                award_loyalty(customer, totals["grand_total"])

        for r in quote.returned:
            if r.defect:
                # Defective units are written off, not restocked
                append_log(
                    product=products[r.product_id],
                    quantity_change=0,
                    type="damage",
                    reason="exchange-defect",
                    related_invoice_id=invoice.id,
                    user_id=request.cashier_user_id,
                )
            else:
                append_log(
                    product=products[r.product_id],
                    quantity_change=r.qty,
                    type="return",
                    reason="exchange",
                    related_invoice_id=invoice.id,
                    user_id=request.cashier_user_id,
                )

        refund = None
        if quote.difference < 0:
            amount = -quote.difference
            refund = Refund(
                exchange_id=exchange.id,
                amount=amount,
                method=request.refund_method or "cash",
                reference_id=request.refund_reference_id,
                created_by_user_id=request.cashier_user_id,
            )
            db.session.add(refund)
            if customer is not None:
                deduct_loyalty(customer, amount)

        db.session.flush()
        return ExchangeResult(exchange=exchange, new_invoice=new_invoice, refund=refund)

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Exchange committed: exchange=%s original_invoice=%s difference=%s",
        result.exchange.id, result.exchange.original_invoice_id, result.exchange.difference,
    )
    return result


def get_exchange(exchange_id: int) -> Exchange | None:
    return db.session.get(Exchange, exchange_id)


def list_exchanges_for_invoice(invoice_id: int) -> list[Exchange]:
    return (
        db.session.query(Exchange)
        .filter_by(original_invoice_id=invoice_id)
        .order_by(Exchange.created_at.asc(), Exchange.id.asc())
        .all()
    )
