from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AppSettings(db.Model):
    """
    Application settings singleton (always id=1).

    next_invoice_sequence is the only piece of global mutable counter state.
    It is read and incremented inside the same transaction that writes the
    invoice; version_id turns a concurrent increment into a StaleDataError
    so the losing transaction retries instead of reusing a number.
    """
    __tablename__ = "app_settings"

    SINGLETON_ID = 1

    id = db.Column(db.Integer, primary_key=True)
    business_name = db.Column(db.String(255), nullable=False, default="My Store")
    currency = db.Column(db.String(8), nullable=False, default="INR")
    invoice_prefix = db.Column(db.String(16), nullable=False, default="INV")
    next_invoice_sequence = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "business_name": self.business_name,
            "currency": self.currency,
            "invoice_prefix": self.invoice_prefix,
            "next_invoice_sequence": self.next_invoice_sequence,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
