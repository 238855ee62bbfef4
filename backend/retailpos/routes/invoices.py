# Overview: Flask API routes for invoice history, receipt tax breakdown and sales totals.

from flask import Blueprint, jsonify, request

from ..decorators import handle_pos_errors
from ..services import checkout_service, exchange_service, reporting_service
from ..validation import NotFoundError, to_int

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _require_invoice(invoice_id: int):
    invoice = checkout_service.get_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


@invoices_bp.get("/")
@handle_pos_errors
def list_invoices_route():
    customer_id = request.args.get("customer_id")
    invoices = checkout_service.list_invoices(
        customer_id=to_int(customer_id, "customer_id") if customer_id else None,
        limit=to_int(request.args.get("limit"), "limit", default=100),
    )
    return jsonify({"invoices": [inv.to_dict(include_lines=False) for inv in invoices]}), 200


@invoices_bp.get("/<int:invoice_id>")
@handle_pos_errors
def get_invoice_route(invoice_id: int):
    invoice = _require_invoice(invoice_id)
    exchanges = exchange_service.list_exchanges_for_invoice(invoice_id)
    return jsonify({
        "invoice": invoice.to_dict(),
        "exchanges": [x.to_dict() for x in exchanges],
    }), 200


@invoices_bp.get("/<int:invoice_id>/tax-breakdown")
@handle_pos_errors
def tax_breakdown_route(invoice_id: int):
    return jsonify(reporting_service.invoice_tax_breakdown(_require_invoice(invoice_id))), 200


@invoices_bp.get("/summary")
@handle_pos_errors
def sales_summary_route():
    """?start=2026-01-01T00:00:00Z&end=2026-02-01T00:00:00Z (both optional)"""
    summary = reporting_service.sales_summary(request.args.get("start"), request.args.get("end"))
    return jsonify({"summary": summary}), 200
