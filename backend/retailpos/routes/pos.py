# Overview: Flask API routes for the till: cart preview and checkout.

# backend/retailpos/routes/pos.py
"""
Point-of-sale routes.

Both endpoints take the same body and run the same pricing; preview reads
live catalog prices without writing anything, checkout commits.

Request body:
{
    "items": [{"product_id": 1, "qty": 2, "item_discount": "10", "item_discount_mode": "amount"}],
    "bill_discount": {"value": "5", "mode": "percent"},
    "customer": {"phone": "9876543210", "name": "Asha"},
    "payment_method": "upi",
    "payment_reference_id": "UPI-123",
    "cashier_user_id": "cashier-1",     (or X-Cashier-Id header)
    "op_id": "3f0c..."                  (optional idempotency key)
}
"""

from flask import Blueprint, jsonify

from ..decorators import handle_pos_errors, json_body, with_cashier
from ..services import checkout_service
from ..services.checkout_service import CheckoutRequest

pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


@pos_bp.post("/preview")
@handle_pos_errors
def preview_route():
    data = with_cashier(json_body())
    # Preview does not need a cashier; only checkout records one
    if not data.get("cashier_user_id"):
        data = {**data, "cashier_user_id": "preview"}
    request_ = CheckoutRequest.from_payload(data)
    return jsonify(checkout_service.preview_checkout(request_)), 200


@pos_bp.post("/checkout")
@handle_pos_errors
def checkout_route():
    """
    Returns:
        201: invoice committed (or already committed for this op_id)
        400: invalid cart
        404: unknown or inactive product
        409: insufficient stock (nothing written)
        503: concurrent update, retry
    """
    request_ = CheckoutRequest.from_payload(with_cashier(json_body()))
    invoice = checkout_service.checkout_cart(request_)
    return jsonify({"invoice": invoice.to_dict()}), 201
