# Overview: Flask API routes for the product catalog and scanner lookups.

# backend/retailpos/routes/products.py
"""
Catalog routes.

Products are soft-deleted only; DELETE deactivates. Stock is read-only here
(receive and adjust live under /api/inventory).
"""

from flask import Blueprint, jsonify, request

from ..decorators import handle_pos_errors, json_body
from ..services import barcodes, products_service
from ..validation import ProductNotFoundError, ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/")
@handle_pos_errors
def list_products_route():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    products = products_service.list_products(active_only=active_only, search=request.args.get("q"))
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.post("/")
@handle_pos_errors
def create_product_route():
    """
    Request body:
    {
        "sku": "TSHIRT-RED-M",
        "name": "Red T-Shirt (M)",
        "unit_price": "499.00",     (tax inclusive)
        "tax_rate_pct": "12",
        "category": "Apparel",      (optional)
        "stock": 10                 (optional opening stock)
    }
    """
    data = json_body()
    product = products_service.create_product(data, user_id=request.headers.get("X-Cashier-Id"))
    return jsonify({"product": product.to_dict()}), 201


@products_bp.get("/<int:product_id>")
@handle_pos_errors
def get_product_route(product_id: int):
    product = products_service.require_product(product_id)
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>")
@handle_pos_errors
def update_product_route(product_id: int):
    product = products_service.update_product(product_id, json_body())
    return jsonify({"product": product.to_dict()}), 200


@products_bp.delete("/<int:product_id>")
@handle_pos_errors
def deactivate_product_route(product_id: int):
    product = products_service.deactivate_product(product_id)
    return jsonify({"product": product.to_dict()}), 200


@products_bp.get("/lookup")
@handle_pos_errors
def lookup_product_route():
    sku = (request.args.get("sku") or "").strip()
    if not sku:
        raise ValidationError("sku required")
    product = products_service.find_by_sku(sku)
    if product is None:
        raise ProductNotFoundError("Product not found", details={"sku": sku})
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("/scan")
@handle_pos_errors
def scan_route():
    """Resolve raw scanner input (`PB|<cat>|<sku>` or a bare SKU) to a product."""
    code = json_body().get("code")
    decoded = barcodes.decode_barcode(code)
    product = barcodes.lookup_scan(code)
    return jsonify({
        "product": product.to_dict(),
        "decoded": {"sku": decoded.sku, "category": decoded.category},
    }), 200


@products_bp.get("/low-stock")
@handle_pos_errors
def low_stock_route():
    products = products_service.list_low_stock()
    return jsonify({"products": [p.to_dict() for p in products]}), 200
