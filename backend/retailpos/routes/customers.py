# Overview: Flask API routes for customer lookup and registration.

from flask import Blueprint, jsonify, request

from ..decorators import handle_pos_errors, json_body
from ..services import customer_service
from ..validation import NotFoundError, ValidationError

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/")
@handle_pos_errors
def list_customers_route():
    customers = customer_service.list_customers(search=request.args.get("q"))
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.get("/lookup")
@handle_pos_errors
def lookup_customer_route():
    """Till lookup by phone number (the customer's key at the counter)."""
    phone = request.args.get("phone")
    if not phone:
        raise ValidationError("phone required")
    customer = customer_service.find_by_phone(phone)
    if customer is None:
        raise NotFoundError("Customer not found", details={"phone": customer_service.normalize_phone(phone)})
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.post("/")
@handle_pos_errors
def create_customer_route():
    customer = customer_service.create_customer(json_body())
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/<int:customer_id>")
@handle_pos_errors
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    return jsonify({"customer": customer.to_dict()}), 200
