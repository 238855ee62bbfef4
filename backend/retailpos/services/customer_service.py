# Overview: Customer lookup/creation and the loyalty adjustments made by checkout and exchange.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer
from ..time_utils import parse_iso_date
from ..validation import ConflictError, NotFoundError, ValidationError, optional_text, require_text
from .tax import ZERO, as_decimal, round2


def normalize_phone(phone: str | None) -> str | None:
    if phone is None:
        return None
    cleaned = "".join(ch for ch in str(phone).strip() if ch.isdigit() or ch == "+")
    return cleaned or None


def _parse_dob(value):
    if value is None or value == "":
        return None
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError("kids_dob must be an ISO date (YYYY-MM-DD)")


def find_by_phone(phone: str | None) -> Customer | None:
    phone = normalize_phone(phone)
    if not phone:
        return None
    return db.session.query(Customer).filter_by(phone=phone).first()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def list_customers(search: str | None = None, limit: int = 200) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        term = f"%{search.strip().lower()}%"
        q = q.filter(func.lower(Customer.name).like(term) | Customer.phone.like(term))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).limit(limit).all()


def _build_customer(data: dict) -> Customer:
    phone = normalize_phone(data.get("phone"))
    if phone and find_by_phone(phone) is not None:
        raise ConflictError("A customer with this phone already exists", details={"phone": phone})
    return Customer(
        name=require_text(data.get("name"), "name"),
        phone=phone,
        email=optional_text(data.get("email"), "email"),
        notes=optional_text(data.get("notes"), "notes", max_length=2000),
        kids_dob=_parse_dob(data.get("kids_dob")),
        loyalty_points=0,
        total_spend=ZERO,
    )


def create_customer(data: dict) -> Customer:
    customer = _build_customer(data)
    db.session.add(customer)
    db.session.commit()
    return customer


def resolve_customer(*, customer_id: int | None = None, phone: str | None = None,
                     name: str | None = None, email: str | None = None,
                     kids_dob: str | None = None) -> Customer | None:
    """
    Customer for a checkout, inside the caller's transaction.

    An explicit id wins; otherwise look up by phone and, when the phone is
    unknown and a name was given, create the customer on the spot. Returns
    None for a walk-in sale.
    """
    if customer_id is not None:
        return get_customer(customer_id)

    phone = normalize_phone(phone)
    if not phone:
        return None

    customer = find_by_phone(phone)
    if customer is not None:
        if kids_dob and customer.kids_dob is None:
            customer.kids_dob = _parse_dob(kids_dob)
        return customer

    if not name or not name.strip():
        return None

    customer = _build_customer({"name": name, "phone": phone, "email": email, "kids_dob": kids_dob})
    db.session.add(customer)
    db.session.flush()
    return customer


# =============================================================================
# LOYALTY
# =============================================================================

def loyalty_points_for(amount) -> int:
    """floor(amount / LOYALTY_POINT_VALUE), never negative."""
    point_value = Decimal(current_app.config.get("LOYALTY_POINT_VALUE", 100))
    amount = as_decimal(amount)
    if amount <= 0:
        return 0
    return int(amount // point_value)


def award_loyalty(customer: Customer, paid_amount) -> int:
    """Credit points and spend for a paid amount. Returns points awarded."""
    points = loyalty_points_for(paid_amount)
    customer.loyalty_points = (customer.loyalty_points or 0) + points
    customer.total_spend = round2(as_decimal(customer.total_spend) + max(ZERO, as_decimal(paid_amount)))
    return points


def deduct_loyalty(customer: Customer, refunded_amount) -> int:
    """
    Remove points and spend for a refunded amount. Both are clamped at
    zero. Returns points actually removed.
    """
    wanted = loyalty_points_for(refunded_amount)
    current = customer.loyalty_points or 0
    removed = min(current, wanted)
    customer.loyalty_points = current - removed
    customer.total_spend = round2(max(ZERO, as_decimal(customer.total_spend) - as_decimal(refunded_amount)))
    return removed
