# Overview: Flask API routes for exchanges (return plus new purchase against an invoice).

# backend/retailpos/routes/exchanges.py
"""
Exchange API Routes

WHY: A customer brings back items from an earlier invoice and takes new ones
in the same visit. The till first asks for a quote (credit, new subtotal,
difference) and then commits the exchange.

Request body (quote and create):
{
    "original_invoice_id": 42,
    "returned": [{"product_id": 1, "qty": 1, "defect": false}],
    "new_items": [{"product_id": 7, "qty": 1}],
    "payment_method": "cash",       (when the customer pays more)
    "refund_method": "cash",        (when the store owes a refund)
    "cashier_user_id": "cashier-1",
    "op_id": "..."                  (optional idempotency key)
}
"""

from flask import Blueprint, jsonify

from ..decorators import handle_pos_errors, json_body, with_cashier
from ..services import exchange_service
from ..services.exchange_service import ExchangeRequest
from ..validation import NotFoundError

exchanges_bp = Blueprint("exchanges", __name__, url_prefix="/api/exchanges")


@exchanges_bp.post("/quote")
@handle_pos_errors
def quote_exchange_route():
    """Read-only: every business rule is checked, nothing is written."""
    data = with_cashier(json_body())
    if not data.get("cashier_user_id"):
        data = {**data, "cashier_user_id": "quote"}
    quote = exchange_service.quote_exchange(ExchangeRequest.from_payload(data))
    return jsonify({"quote": quote.to_dict()}), 200


@exchanges_bp.post("/")
@handle_pos_errors
def create_exchange_route():
    """
    Returns:
        201: exchange committed; body carries the new invoice and any refund
        400: no new items / invalid input
        404: original invoice or product not found
        409: insufficient stock for the new items
        422: return window exceeded, product not on the invoice, or
             quantity above what is still returnable
    """
    request_ = ExchangeRequest.from_payload(with_cashier(json_body()))
    result = exchange_service.perform_exchange(request_)
    return jsonify(result.to_dict()), 201


@exchanges_bp.get("/<int:exchange_id>")
@handle_pos_errors
def get_exchange_route(exchange_id: int):
    exchange = exchange_service.get_exchange(exchange_id)
    if exchange is None:
        raise NotFoundError("Exchange not found", details={"exchange_id": exchange_id})
    return jsonify({"exchange": exchange.to_dict()}), 200
