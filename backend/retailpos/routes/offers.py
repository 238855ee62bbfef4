# Overview: Flask API routes for the offer catalog, best-offer suggestion and offer application.

# backend/retailpos/routes/offers.py
"""
Offer routes.

/best and /<id>/apply take a cart in draft form (the same shape the till
parks):

{
    "cart": [{"product_id": 1, "qty": 3}],
    "bill_discount": 0,
    "customer": {"phone": "...", "kids_dob": "2019-05-02"}
}

Prices always come from the catalog. /apply answers with the cart with the
offer baked in, again in draft form, plus its priced totals.
"""

from flask import Blueprint, jsonify

from ..decorators import handle_pos_errors, json_body
from ..services import customer_service, offer_service, products_service
from ..services.cart import Cart, dump_draft, load_draft
from ..validation import ValidationError

offers_bp = Blueprint("offers", __name__, url_prefix="/api/offers")


def _catalog_product(product_id):
    try:
        product = products_service.get_product(int(product_id))
    except (TypeError, ValueError):
        return None
    if product is None or not product.is_active:
        return None
    return product


def _cart_from_body(data: dict) -> Cart:
    cart = load_draft({"version": 2, **data}, _catalog_product)
    if cart is None or cart.is_empty:
        raise ValidationError("Cart is empty")
    return cart


def _customer_dob(cart: Cart):
    if cart.customer.kids_dob:
        return cart.customer.kids_dob
    customer = customer_service.find_by_phone(cart.customer.phone)
    return customer.kids_dob if customer is not None else None


@offers_bp.get("/")
@handle_pos_errors
def list_offers_route():
    return jsonify({"offers": [o.to_dict() for o in offer_service.list_offers()]}), 200


@offers_bp.get("/active")
@handle_pos_errors
def list_active_offers_route():
    return jsonify({"offers": [o.to_dict() for o in offer_service.list_active_offers()]}), 200


@offers_bp.post("/")
@handle_pos_errors
def create_offer_route():
    offer = offer_service.create_offer(json_body())
    return jsonify({"offer": offer.to_dict()}), 201


@offers_bp.get("/<int:offer_id>")
@handle_pos_errors
def get_offer_route(offer_id: int):
    return jsonify({"offer": offer_service.get_offer(offer_id).to_dict()}), 200


@offers_bp.patch("/<int:offer_id>")
@handle_pos_errors
def update_offer_route(offer_id: int):
    offer = offer_service.update_offer(offer_id, json_body())
    return jsonify({"offer": offer.to_dict()}), 200


@offers_bp.post("/best")
@handle_pos_errors
def best_offer_route():
    """Rank the active offers for a cart and suggest the winner."""
    cart = _cart_from_body(json_body())
    dob = _customer_dob(cart)
    ranked = offer_service.rank_offers(offer_service.list_active_offers(), cart, dob)

    candidates = [
        {"offer": offer.to_dict(), "savings": f"{savings:.2f}"}
        for offer, savings in ranked
    ]
    return jsonify({
        "best": candidates[0] if candidates else None,
        "candidates": candidates,
    }), 200


@offers_bp.post("/<int:offer_id>/apply")
@handle_pos_errors
def apply_offer_route(offer_id: int):
    offer = offer_service.get_offer(offer_id)
    cart = _cart_from_body(json_body())
    if not offer_service.offer_matches(offer, cart, _customer_dob(cart)):
        raise ValidationError("Offer does not apply to this cart", details={"offer_id": offer_id})

    applied = offer_service.apply_offer(cart, offer)
    return jsonify({
        "cart": dump_draft(applied),
        "totals": applied.preview().to_dict(),
    }), 200
