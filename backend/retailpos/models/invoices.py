from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


def _money(value) -> str | None:
    return None if value is None else f"{value:.2f}"


class Invoice(db.Model):
    """
    Sales invoice.

    Created atomically with the stock decrement it records. Line items
    snapshot name, price and tax rate so historical totals never move when
    the catalog changes. Immutable after creation apart from the exchange
    linkage fields.

    discount_total = sum of line discounts + bill_discount_amount.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.UniqueConstraint("op_id", name="uq_invoices_op_id"),
        db.Index("ix_invoices_issued_at", "issued_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "INV-000042")
    invoice_number = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    tax_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    bill_discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    grand_total = db.Column(db.Numeric(12, 2), nullable=False)
    balance_due = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_reference_id = db.Column(db.String(128), nullable=True)

    cashier_user_id = db.Column(db.String(64), nullable=False)
    cashier_name = db.Column(db.String(255), nullable=True)

    # paid, partial, unpaid, void
    status = db.Column(db.String(16), nullable=False, default="paid", index=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Exchange linkage (set only on invoices created by an exchange)
    exchange_of_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    exchange_id = db.Column(db.Integer, nullable=True, index=True)

    # Idempotency key for redelivered offline operations
    op_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer")

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "subtotal": _money(self.subtotal),
            "tax_total": _money(self.tax_total),
            "bill_discount_amount": _money(self.bill_discount_amount),
            "discount_total": _money(self.discount_total),
            "grand_total": _money(self.grand_total),
            "balance_due": _money(self.balance_due),
            "payment_method": self.payment_method,
            "payment_reference_id": self.payment_reference_id,
            "cashier_user_id": self.cashier_user_id,
            "cashier_name": self.cashier_name,
            "status": self.status,
            "issued_at": to_utc_z(self.issued_at),
            "exchange_of_invoice_id": self.exchange_of_invoice_id,
            "exchange_id": self.exchange_id,
            "op_id": self.op_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """Snapshot of one product line at sale time."""
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate_pct = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("lines", lazy=True, order_by="InvoiceLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "tax_rate_pct": _money(self.tax_rate_pct),
            "discount_amount": _money(self.discount_amount),
            "tax_amount": _money(self.tax_amount),
        }
