# Overview: Flask API routes for the local offline operation queue.

# backend/retailpos/routes/offline.py
"""
Offline queue routes.

The till enqueues a checkout, exchange or receive it could not submit, then
asks for a drain once it is back online. Entries keep their place until
their transaction commits; a failing entry blocks the ones behind it.
"""

from flask import Blueprint, jsonify

from ..decorators import handle_pos_errors, json_body
from ..services import offline_queue
from ..validation import NotFoundError, optional_text, require_text

offline_bp = Blueprint("offline", __name__, url_prefix="/api/offline")


@offline_bp.get("/ops")
@handle_pos_errors
def list_ops_route():
    ops = offline_queue.list_ops()
    return jsonify({"ops": [op.to_dict() for op in ops], "count": len(ops)}), 200


@offline_bp.post("/ops")
@handle_pos_errors
def enqueue_route():
    """
    Request body:
    {
        "type": "checkout",         (checkout | exchange | receive)
        "payload": {...},           (the body the online endpoint takes)
        "id": "3f0c..."             (optional; generated when absent)
    }
    """
    data = json_body()
    op = offline_queue.enqueue(
        require_text(data.get("type"), "type", max_length=16),
        data.get("payload"),
        op_id=optional_text(data.get("id"), "id", max_length=64),
    )
    return jsonify({"op": op.to_dict()}), 201


@offline_bp.post("/ops/<op_id>/process")
@handle_pos_errors
def process_op_route(op_id: str):
    applied = offline_queue.process_op(op_id)
    op = offline_queue.get_op(op_id)
    return jsonify({
        "applied": applied,
        "op": op.to_dict() if op is not None else None,
    }), 200


@offline_bp.delete("/ops/<op_id>")
@handle_pos_errors
def remove_op_route(op_id: str):
    if not offline_queue.remove_op(op_id):
        raise NotFoundError("Offline operation not found", details={"id": op_id})
    return jsonify({"removed": op_id}), 200


@offline_bp.post("/drain")
@handle_pos_errors
def drain_route():
    return jsonify({"result": offline_queue.process_queue()}), 200
