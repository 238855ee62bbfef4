# Overview: Inventory ledger writer plus the stock-receive and adjustment transactions.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..models import GoodsReceipt, GoodsReceiptLine, InventoryLog, Product
from ..time_utils import parse_iso_date
from ..validation import (
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
    optional_text,
    require_list,
    require_text,
    to_int,
    to_non_negative_decimal,
    to_positive_int,
)
from .concurrency import lock_for_update, run_in_transaction

"""
Inventory Ledger Invariants (authoritative)

- Product.stock is the source of truth for on-hand quantity; the log is
  never read back to derive it.
- append_log() is the only writer of InventoryLog rows. It applies the
  signed delta to Product.stock and records previous/new stock in the same
  flush, so a stock change without a log row cannot happen.
- Rows are append-only: ORM updates and deletes raise LedgerImmutableError.
- Stock never goes below zero (also enforced by a CHECK constraint).
"""

LOG_TYPES = ("sale", "purchase", "return", "damage", "adjustment")
ADJUSTMENT_TYPES = ("adjustment", "damage")


def append_log(
    *,
    product: Product,
    quantity_change: int,
    type: str,
    reason: str | None = None,
    related_invoice_id: int | None = None,
    related_receipt_id: int | None = None,
    user_id: str | None = None,
) -> InventoryLog:
    """
    Apply a signed stock delta and record it.

    quantity_change may be 0 (defective returns are logged without
    restocking). Does not commit: callers run inside a transaction.
    """
    if type not in LOG_TYPES:
        raise ValueError(f"Unknown inventory log type {type!r}")

    previous = product.stock or 0
    new_stock = previous + quantity_change
    if new_stock < 0:
        raise InsufficientStockError(product.id, product.name, previous, -quantity_change)

    if quantity_change:
        product.stock = new_stock

    log = InventoryLog(
        product_id=product.id,
        quantity_change=quantity_change,
        type=type,
        reason=reason,
        related_invoice_id=related_invoice_id,
        related_receipt_id=related_receipt_id,
        user_id=user_id,
        previous_stock=previous,
        new_stock=new_stock,
    )
    db.session.add(log)
    db.session.flush()
    return log


def list_logs(
    *,
    product_id: int | None = None,
    type: str | None = None,
    related_invoice_id: int | None = None,
    limit: int = 200,
) -> list[InventoryLog]:
    q = db.session.query(InventoryLog)
    if product_id is not None:
        q = q.filter(InventoryLog.product_id == product_id)
    if type is not None:
        if type not in LOG_TYPES:
            raise ValidationError(f"type must be one of {', '.join(LOG_TYPES)}")
        q = q.filter(InventoryLog.type == type)
    if related_invoice_id is not None:
        q = q.filter(InventoryLog.related_invoice_id == related_invoice_id)
    return (
        q.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .limit(max(1, min(limit, 1000)))
        .all()
    )


def movement_summary(product_id: int | None = None) -> dict:
    """Net quantity change per log type (movement report)."""
    q = db.session.query(InventoryLog.type, func.sum(InventoryLog.quantity_change), func.count(InventoryLog.id))
    if product_id is not None:
        q = q.filter(InventoryLog.product_id == product_id)
    rows = q.group_by(InventoryLog.type).all()

    summary = {t: {"net_quantity": 0, "entries": 0} for t in LOG_TYPES}
    for log_type, total, count in rows:
        summary[log_type] = {"net_quantity": int(total or 0), "entries": int(count)}
    return {
        "product_id": product_id,
        "by_type": summary,
        "net_quantity": sum(v["net_quantity"] for v in summary.values()),
    }


# =============================================================================
# RECEIVE
# =============================================================================

@dataclass(frozen=True)
class ReceiveLine:
    product_id: int
    qty: int
    unit_cost: Optional[Decimal] = None


@dataclass(frozen=True)
class ReceiveRequest:
    lines: tuple[ReceiveLine, ...]
    created_by_user_id: str
    supplier_name: Optional[str] = None
    supplier_code: Optional[str] = None
    doc_no: Optional[str] = None
    doc_date: Optional[date] = None
    note: Optional[str] = None
    op_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict, *, op_id: str | None = None) -> "ReceiveRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        raw_lines = require_list(payload.get("lines"), "lines")
        if not raw_lines:
            raise ValidationError("At least one line is required")

        lines = []
        for i, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                raise ValidationError(f"lines[{i}] must be an object")
            unit_cost = raw.get("unit_cost")
            lines.append(ReceiveLine(
                product_id=to_int(raw.get("product_id"), f"lines[{i}].product_id"),
                qty=to_positive_int(raw.get("qty"), f"lines[{i}].qty"),
                unit_cost=None if unit_cost is None else to_non_negative_decimal(unit_cost, f"lines[{i}].unit_cost"),
            ))

        doc_date = payload.get("doc_date")
        try:
            doc_date = parse_iso_date(doc_date) if isinstance(doc_date, str) else None
        except ValueError:
            raise ValidationError("doc_date must be an ISO date")

        return cls(
            lines=tuple(lines),
            created_by_user_id=require_text(
                payload.get("created_by_user_id") or payload.get("cashier_user_id") or payload.get("user_id"),
                "created_by_user_id",
                max_length=64,
            ),
            supplier_name=optional_text(payload.get("supplier_name"), "supplier_name"),
            supplier_code=optional_text(payload.get("supplier_code"), "supplier_code", max_length=64),
            doc_no=optional_text(payload.get("doc_no"), "doc_no", max_length=64),
            doc_date=doc_date,
            note=optional_text(payload.get("note"), "note", max_length=2000),
            op_id=op_id or optional_text(payload.get("op_id"), "op_id", max_length=64),
        )


def receive_stock(request: ReceiveRequest) -> GoodsReceipt:
    """
    Book a goods receipt: one GoodsReceipt, stock += qty per line and one
    `purchase` log per line, all in one transaction.

    Replaying the same op_id returns the receipt already written.
    """
    def _op():
        if request.op_id:
            existing = db.session.query(GoodsReceipt).filter_by(op_id=request.op_id).first()
            if existing is not None:
                return existing

        # Read phase
        product_ids = sorted({line.product_id for line in request.lines})
        products = {
            p.id: p
            for p in lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids))).all()
        }
        for pid in product_ids:
            if pid not in products:
                raise ProductNotFoundError("Product not found", details={"product_id": pid})

        # Write phase
        receipt = GoodsReceipt(
            supplier_name=request.supplier_name,
            supplier_code=request.supplier_code,
            doc_no=request.doc_no,
            doc_date=request.doc_date,
            note=request.note,
            created_by_user_id=request.created_by_user_id,
            op_id=request.op_id,
        )
        db.session.add(receipt)
        db.session.flush()

        for line in request.lines:
            product = products[line.product_id]
            db.session.add(GoodsReceiptLine(
                receipt_id=receipt.id,
                product_id=product.id,
                sku=product.sku,
                name=product.name,
                quantity=line.qty,
                unit_cost=line.unit_cost,
            ))
            append_log(
                product=product,
                quantity_change=line.qty,
                type="purchase",
                reason=f"receipt {request.doc_no}" if request.doc_no else "receipt",
                related_receipt_id=receipt.id,
                user_id=request.created_by_user_id,
            )
            if line.unit_cost is not None:
                product.cost_price = line.unit_cost

        return receipt

    return run_in_transaction(_op)


def get_receipt(receipt_id: int) -> GoodsReceipt | None:
    return db.session.get(GoodsReceipt, receipt_id)


# =============================================================================
# ADJUST
# =============================================================================

def adjust_stock(
    *,
    product_id: int,
    delta: int,
    reason: str,
    type: str = "adjustment",
    user_id: str | None = None,
) -> InventoryLog:
    """
    Manual stock correction (count variance) or write-off (damage).

    Rejects a delta that would take stock below zero; nothing is written.
    """
    if type not in ADJUSTMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(ADJUSTMENT_TYPES)}")
    if delta == 0:
        raise ValidationError("delta must not be 0")
    reason = require_text(reason, "reason")

    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise ProductNotFoundError("Product not found", details={"product_id": product_id})
        return append_log(
            product=product,
            quantity_change=delta,
            type=type,
            reason=reason,
            user_id=user_id,
        )

    return run_in_transaction(_op)
