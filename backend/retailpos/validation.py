from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


PAYMENT_METHODS = ("cash", "card", "upi", "wallet")
DISCOUNT_MODES = ("amount", "percent")

# Maximum unit price: 9,999,999.99
MAX_PRICE = Decimal("9999999.99")


class PosError(Exception):
    """Base for every business-rule or input failure raised by the services."""
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(PosError):
    """400-level input problem."""


class BarcodeError(ValidationError):
    """Scanner input rejected before it reaches pricing or checkout."""


class NoNewItemsError(ValidationError):
    """Exchange submitted without anything to buy."""


class NotFoundError(PosError):
    http_status = 404


class OriginalInvoiceNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class ConflictError(PosError):
    """409-level business rule conflict (e.g., duplicate SKU)."""
    http_status = 409


class InsufficientStockError(PosError):
    """Requested quantity exceeds stock on hand. Never partially applied."""
    http_status = 409

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


class ReturnWindowExceededError(PosError):
    http_status = 422


class InvalidReturnQuantityError(PosError):
    http_status = 422

    def __init__(self, product_id: int, requested: int, remaining: int):
        super().__init__(
            f"Invalid return quantity. Remaining returnable qty: {remaining}",
            details={"product_id": product_id, "requested": requested, "remaining": remaining},
        )
        self.remaining = remaining


class ProductNotInOriginalInvoiceError(PosError):
    http_status = 422


class OfferError(PosError):
    http_status = 422


class LedgerImmutableError(PosError):
    """Inventory log rows are append-only."""
    http_status = 500


class TransactionConflictError(PosError):
    """Concurrent-modification retries exhausted."""
    http_status = 503


# =============================================================================
# INPUT COERCION (single decode boundary for untrusted payloads)
# =============================================================================

def to_decimal(value: Any, field: str, *, default: Decimal | None = None) -> Decimal:
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() keeps float inputs like 0.1 from dragging binary noise along
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def to_non_negative_decimal(value: Any, field: str, *, default: Decimal | None = None) -> Decimal:
    result = to_decimal(value, field, default=default)
    if result < 0:
        raise ValidationError(f"{field} cannot be negative")
    return result


def to_price(value: Any, field: str = "unit_price") -> Decimal:
    result = to_non_negative_decimal(value, field)
    if result > MAX_PRICE:
        raise ValidationError(f"{field} exceeds maximum allowed ({MAX_PRICE})")
    return result


def to_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        value = int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be a positive integer")
        value = int(stripped)
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be a positive integer")
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return value


def to_int(value: Any, field: str, *, default: int | None = None) -> int:
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an integer")


def to_bool(value: Any, field: str, *, default: bool = False) -> bool:
    """Strict flag decode; anything but a bool, 0/1 or "true"/"false" is rejected."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
    raise ValidationError(f"{field} must be true or false")


def to_discount_mode(value: Any, field: str = "mode") -> str:
    if value is None or value == "":
        return "amount"
    if value not in DISCOUNT_MODES:
        raise ValidationError(f"{field} must be one of {', '.join(DISCOUNT_MODES)}")
    return value


def to_payment_method(value: Any, field: str = "payment_method") -> str:
    if value is None or value == "":
        return "cash"
    if value not in PAYMENT_METHODS:
        raise ValidationError(f"{field} must be one of {', '.join(PAYMENT_METHODS)}")
    return value


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters")
    return text


def require_list(value: Any, field: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return value
