from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


def _money(value) -> str | None:
    return None if value is None else f"{value:.2f}"


class Exchange(db.Model):
    """
    Combined return-and-new-purchase against an earlier invoice.

    INVARIANT: for one original invoice, the returned quantity of a product
    summed over every Exchange never exceeds the quantity sold on that
    invoice. The exchange service reads all prior exchanges before computing
    what is still returnable.

    difference = new_subtotal - return_credit
    - difference > 0: customer pays, new invoice grand_total == difference
    - difference < 0: a Refund of abs(difference) is written
    """
    __tablename__ = "exchanges"
    __table_args__ = (
        db.UniqueConstraint("op_id", name="uq_exchanges_op_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    original_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    new_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)

    return_credit = db.Column(db.Numeric(12, 2), nullable=False)
    new_subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    difference = db.Column(db.Numeric(12, 2), nullable=False)

    # Optional payment record: type is "pay" or "refund"
    payment_type = db.Column(db.String(16), nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)
    payment_reference_id = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.String(64), nullable=False)
    op_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    original_invoice = db.relationship("Invoice", foreign_keys=[original_invoice_id])
    new_invoice = db.relationship("Invoice", foreign_keys=[new_invoice_id])

    def payment_dict(self) -> dict | None:
        if not self.payment_type:
            return None
        return {
            "type": self.payment_type,
            "method": self.payment_method,
            "reference_id": self.payment_reference_id,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_invoice_id": self.original_invoice_id,
            "new_invoice_id": self.new_invoice_id,
            "returned": [line.to_dict() for line in self.returned_lines],
            "new_items": [line.to_dict() for line in self.new_lines],
            "totals": {
                "return_credit": _money(self.return_credit),
                "new_subtotal": _money(self.new_subtotal),
                "difference": _money(self.difference),
            },
            "payment": self.payment_dict(),
            "created_by_user_id": self.created_by_user_id,
            "op_id": self.op_id,
            "created_at": to_utc_z(self.created_at),
        }


class ExchangeReturnLine(db.Model):
    __tablename__ = "exchange_return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    exchange_id = db.Column(db.Integer, db.ForeignKey("exchanges.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    defect = db.Column(db.Boolean, nullable=False, default=False)
    credit_per_unit = db.Column(db.Numeric(12, 2), nullable=False)
    credit_total = db.Column(db.Numeric(12, 2), nullable=False)

    exchange = db.relationship(
        "Exchange",
        backref=db.backref("returned_lines", lazy=True, order_by="ExchangeReturnLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "qty": self.quantity,
            "defect": self.defect,
            "credit_per_unit": _money(self.credit_per_unit),
            "credit_total": _money(self.credit_total),
        }


class ExchangeNewLine(db.Model):
    __tablename__ = "exchange_new_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    exchange_id = db.Column(db.Integer, db.ForeignKey("exchanges.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    exchange = db.relationship(
        "Exchange",
        backref=db.backref("new_lines", lazy=True, order_by="ExchangeNewLine.id"),
    )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "qty": self.quantity,
            "unit_price": _money(self.unit_price),
            "line_total": _money(self.line_total),
        }


class Refund(db.Model):
    """Money returned to the customer when an exchange nets negative."""
    __tablename__ = "refunds"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_refunds_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    exchange_id = db.Column(db.Integer, db.ForeignKey("exchanges.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(16), nullable=False, default="cash")
    reference_id = db.Column(db.String(128), nullable=True)
    created_by_user_id = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    exchange = db.relationship("Exchange", backref=db.backref("refunds", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exchange_id": self.exchange_id,
            "amount": _money(self.amount),
            "method": self.method,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
