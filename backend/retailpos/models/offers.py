from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

RULE_FLAT = "flat"
RULE_PERCENTAGE = "percentage"
RULE_BOGO_SAME_ITEM = "bogoSameItem"
RULE_TYPES = (RULE_FLAT, RULE_PERCENTAGE, RULE_BOGO_SAME_ITEM)

DEFAULT_PRIORITY = 100


class Offer(db.Model):
    """
    Promotions and discounts. Read-only input to pricing.

    Targeting: product_ids and/or category_names. Both empty means the offer
    applies to the whole bill.

    rule_type selects the engine: flat (discount_value currency units),
    percentage (discount_value percent) or bogoSameItem (buy_qty/get_qty).
    Older offers only carry discount_type (amount/percentage); the matcher
    maps that onto a rule type.

    priority: lower number wins.
    """
    __tablename__ = "offers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    event_name = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rule_type = db.Column(db.String(16), nullable=True)
    discount_type = db.Column(db.String(16), nullable=True)  # amount, percentage
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)
    buy_qty = db.Column(db.Integer, nullable=True)
    get_qty = db.Column(db.Integer, nullable=True)

    product_ids = db.Column(db.JSON, nullable=True)
    category_names = db.Column(db.JSON, nullable=True)

    dob_month_only = db.Column(db.Boolean, nullable=False, default=False)
    priority = db.Column(db.Integer, nullable=False, default=DEFAULT_PRIORITY)
    exclusive = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "event_name": self.event_name,
            "is_active": self.is_active,
            "starts_at": to_utc_z(self.starts_at),
            "ends_at": to_utc_z(self.ends_at),
            "rule_type": self.rule_type,
            "discount_type": self.discount_type,
            "discount_value": f"{self.discount_value:.2f}" if self.discount_value is not None else None,
            "buy_qty": self.buy_qty,
            "get_qty": self.get_qty,
            "product_ids": list(self.product_ids or []),
            "category_names": list(self.category_names or []),
            "dob_month_only": self.dob_month_only,
            "priority": self.priority,
            "exclusive": self.exclusive,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
