# Overview: Request helpers and the error-mapping decorator shared by API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .validation import PosError, ValidationError


def handle_pos_errors(f):
    """
    Translate service failures into JSON responses.

    PosError subclasses carry their own status and details. Anything else is
    logged with its traceback and surfaces as a generic 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except PosError as e:
            if e.http_status >= 500:
                current_app.logger.error("%s: %s", e.__class__.__name__, e.message)
            return jsonify(e.to_dict()), e.http_status
        except Exception:
            current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def with_cashier(data: dict) -> dict:
    """Fill cashier_user_id from the X-Cashier-Id header when the body omits it."""
    header = request.headers.get("X-Cashier-Id")
    if header and not data.get("cashier_user_id"):
        data = {**data, "cashier_user_id": header}
    return data
