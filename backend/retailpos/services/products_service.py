# backend/retailpos/services/products_service.py
"""
Products Service

Catalog accessor for the till and the back office. Pricing and checkout only
read products; stock is never written here except as the opening quantity of
a new product. Every later stock change goes through the checkout, exchange
and inventory services so it lands in the inventory log.
"""
from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product
from ..validation import (
    ConflictError,
    ProductNotFoundError,
    ValidationError,
    optional_text,
    require_text,
    to_bool,
    to_int,
    to_non_negative_decimal,
    to_price,
)
from .inventory_service import append_log
from .tax import ZERO

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "category", "hsn_code", "unit_price", "cost_price",
    "tax_rate_pct", "reorder_level", "is_active",
}


def _coerce_patch(data: dict, *, partial: bool) -> dict:
    """Validate a product payload into model-ready values."""
    patch: dict = {}

    def has(key):
        return key in data or not partial

    if has("sku"):
        patch["sku"] = require_text(data.get("sku"), "sku", max_length=64)
    if has("name"):
        patch["name"] = require_text(data.get("name"), "name")
    if has("category"):
        patch["category"] = optional_text(data.get("category"), "category", max_length=128)
    if has("hsn_code"):
        patch["hsn_code"] = optional_text(data.get("hsn_code"), "hsn_code", max_length=32)
    if has("unit_price"):
        patch["unit_price"] = to_price(data.get("unit_price"), "unit_price")
    if "cost_price" in data:
        raw = data.get("cost_price")
        patch["cost_price"] = None if raw is None else to_price(raw, "cost_price")
    if has("tax_rate_pct"):
        rate = to_non_negative_decimal(data.get("tax_rate_pct"), "tax_rate_pct", default=ZERO)
        if rate > 100:
            raise ValidationError("tax_rate_pct cannot exceed 100")
        patch["tax_rate_pct"] = rate
    if "reorder_level" in data:
        raw = data.get("reorder_level")
        level = None if raw is None else to_int(raw, "reorder_level")
        if level is not None and level < 0:
            raise ValidationError("reorder_level cannot be negative")
        patch["reorder_level"] = level
    if "is_active" in data:
        patch["is_active"] = to_bool(data.get("is_active"), "is_active")
    return patch


def _ensure_unique_sku(sku: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(func.lower(Product.sku) == sku.lower())
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("SKU already exists", details={"sku": sku})


def list_products(*, active_only: bool = False, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if search:
        term = f"%{search.strip().lower()}%"
        q = q.filter(func.lower(Product.name).like(term) | func.lower(Product.sku).like(term))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def require_product(product_id: int) -> Product:
    product = get_product(product_id)
    if product is None:
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})
    return product


def find_by_sku(sku: str) -> Product | None:
    if not sku:
        return None
    product = db.session.query(Product).filter(Product.sku == sku).first()
    if product is None:
        # Scanners and keyboards disagree on case; fall back to case-insensitive match
        product = db.session.query(Product).filter(func.lower(Product.sku) == sku.lower()).first()
    return product


def list_low_stock() -> list[Product]:
    """Active products at or below their reorder level."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.reorder_level.isnot(None),
            Product.stock <= Product.reorder_level,
        )
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


def create_product(data: dict, *, user_id: str | None = None) -> Product:
    """
    Create a product. An opening stock quantity is recorded as an
    adjustment in the inventory log so the ledger accounts for every unit.
    """
    patch = _coerce_patch(data, partial=False)
    opening_stock = to_int(data.get("stock"), "stock", default=0)
    if opening_stock < 0:
        raise ValidationError("stock cannot be negative")

    _ensure_unique_sku(patch["sku"])

    product = Product(stock=0, is_active=patch.pop("is_active", True), **patch)
    db.session.add(product)
    db.session.flush()

    if opening_stock:
        append_log(
            product=product,
            quantity_change=opening_stock,
            type="adjustment",
            reason="opening-stock",
            user_id=user_id,
        )

    db.session.commit()
    return product


def update_product(product_id: int, data: dict) -> Product:
    """Patch catalog fields. Stock is not editable here."""
    if "stock" in data:
        raise ValidationError("stock cannot be edited directly; use receive or adjust")

    product = require_product(product_id)
    patch = _coerce_patch(data, partial=True)
    if "sku" in patch and patch["sku"] != product.sku:
        _ensure_unique_sku(patch["sku"], exclude_id=product.id)

    for key, value in patch.items():
        if key in PRODUCT_MUTABLE_FIELDS:
            setattr(product, key, value)

    db.session.commit()
    return product


def deactivate_product(product_id: int) -> Product:
    """Soft delete: invoices keep referencing the row."""
    product = require_product(product_id)
    product.is_active = False
    db.session.commit()
    return product
