# Overview: Flask API routes for goods receipts, stock adjustments and the inventory log.

from flask import Blueprint, jsonify, request

from ..decorators import handle_pos_errors, json_body, with_cashier
from ..services import inventory_service
from ..services.inventory_service import ReceiveRequest
from ..validation import NotFoundError, to_int

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/receive")
@handle_pos_errors
def receive_route():
    """
    Request body:
    {
        "lines": [{"product_id": 1, "qty": 12, "unit_cost": "210.00"}],
        "supplier_name": "Acme Traders",    (optional)
        "doc_no": "BILL-991",               (optional)
        "doc_date": "2026-03-01",           (optional)
        "cashier_user_id": "manager-1",
        "op_id": "..."                      (optional idempotency key)
    }
    """
    receipt = inventory_service.receive_stock(ReceiveRequest.from_payload(with_cashier(json_body())))
    return jsonify({"receipt": receipt.to_dict()}), 201


@inventory_bp.get("/receipts/<int:receipt_id>")
@handle_pos_errors
def get_receipt_route(receipt_id: int):
    receipt = inventory_service.get_receipt(receipt_id)
    if receipt is None:
        raise NotFoundError("Goods receipt not found", details={"receipt_id": receipt_id})
    return jsonify({"receipt": receipt.to_dict()}), 200


@inventory_bp.post("/adjust")
@handle_pos_errors
def adjust_route():
    """
    Request body:
    {
        "product_id": 1,
        "delta": -2,
        "type": "damage",       (adjustment | damage)
        "reason": "Water damage"
    }
    """
    data = with_cashier(json_body())
    log = inventory_service.adjust_stock(
        product_id=to_int(data.get("product_id"), "product_id"),
        delta=to_int(data.get("delta"), "delta"),
        reason=data.get("reason"),
        type=data.get("type") or "adjustment",
        user_id=data.get("cashier_user_id"),
    )
    return jsonify({"log": log.to_dict()}), 201


@inventory_bp.get("/logs")
@handle_pos_errors
def list_logs_route():
    product_id = request.args.get("product_id")
    invoice_id = request.args.get("invoice_id")
    logs = inventory_service.list_logs(
        product_id=to_int(product_id, "product_id") if product_id else None,
        type=request.args.get("type") or None,
        related_invoice_id=to_int(invoice_id, "invoice_id") if invoice_id else None,
        limit=to_int(request.args.get("limit"), "limit", default=200),
    )
    return jsonify({"logs": [log.to_dict() for log in logs]}), 200


@inventory_bp.get("/movement")
@handle_pos_errors
def movement_route():
    product_id = request.args.get("product_id")
    summary = inventory_service.movement_summary(to_int(product_id, "product_id") if product_id else None)
    return jsonify({"movement": summary}), 200
