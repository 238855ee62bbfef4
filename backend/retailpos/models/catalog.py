from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..validation import LedgerImmutableError


def _money(value) -> str | None:
    return None if value is None else f"{value:.2f}"


class Product(db.Model):
    """
    Product master data.

    unit_price is tax-inclusive. stock is the authoritative on-hand quantity and
    is only changed by the checkout, exchange and receive transactions (each
    change is mirrored by an InventoryLog row).

    Products are never deleted once referenced by invoices: is_active=False
    is the soft delete.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True, index=True)
    hsn_code = db.Column(db.String(32), nullable=True)

    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    cost_price = db.Column(db.Numeric(12, 2), nullable=True)
    tax_rate_pct = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.reorder_level is not None and self.stock <= self.reorder_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "hsn_code": self.hsn_code,
            "unit_price": _money(self.unit_price),
            "cost_price": _money(self.cost_price),
            "tax_rate_pct": _money(self.tax_rate_pct),
            "stock": self.stock,
            "reorder_level": self.reorder_level,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLog(db.Model):
    """
    Append-only audit trail of every stock movement.

    TYPES: sale, purchase, return, damage, adjustment.
    quantity_change is signed (negative for reductions). Rows are written in
    the same DB transaction as the stock change they record and are never
    updated or deleted.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_invlog_product_created", "product_id", "created_at"),
        db.Index("ix_invlog_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)

    related_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    related_receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=True, index=True)
    user_id = db.Column(db.String(64), nullable=True)

    previous_stock = db.Column(db.Integer, nullable=True)
    new_stock = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "type": self.type,
            "reason": self.reason,
            "related_invoice_id": self.related_invoice_id,
            "related_receipt_id": self.related_receipt_id,
            "user_id": self.user_id,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(InventoryLog, "before_update")
def _reject_log_update(mapper, connection, target):
    raise LedgerImmutableError(f"Inventory log {target.id} is append-only and cannot be updated")


@event.listens_for(InventoryLog, "before_delete")
def _reject_log_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Inventory log {target.id} is append-only and cannot be deleted")


class GoodsReceipt(db.Model):
    """Stock received from a supplier (one document, many lines)."""
    __tablename__ = "goods_receipts"
    __table_args__ = (
        db.UniqueConstraint("op_id", name="uq_goods_receipts_op_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_name = db.Column(db.String(255), nullable=True)
    supplier_code = db.Column(db.String(64), nullable=True)
    doc_no = db.Column(db.String(64), nullable=True)
    doc_date = db.Column(db.Date, nullable=True)
    note = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.String(64), nullable=False)
    op_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_name": self.supplier_name,
            "supplier_code": self.supplier_code,
            "doc_no": self.doc_no,
            "doc_date": self.doc_date.isoformat() if self.doc_date else None,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "op_id": self.op_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class GoodsReceiptLine(db.Model):
    __tablename__ = "goods_receipt_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)

    receipt = db.relationship("GoodsReceipt", backref=db.backref("lines", lazy=True, order_by="GoodsReceiptLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_cost": _money(self.unit_cost),
        }
