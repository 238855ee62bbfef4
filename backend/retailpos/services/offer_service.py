# Overview: Offer catalog CRUD, offer matching, savings estimation and cart application.

"""
Offer Matching

- offer_matches: DOB-month gate first, then product/category targeting.
  Untargeted offers (no product ids, no categories) match the whole bill.
- compute_savings: estimate of what an offer would save on a cart, used
  only to rank candidates.
  - bogoSameItem: floor(qty / (buy + get)) * get free units per matching line
  - flat: discount_value once for an untargeted offer, once per matching
    LINE for a targeted one (not per unit)
  - percentage: percent of the subtotal, or of the matching lines' gross
- best_offer: sort by (priority asc, savings desc), first wins.

Application is snapshot-then-freeze: apply_offer writes discount values into
the cart lines (targeted) or the bill discount (untargeted) and those values
stay as they are when the cart changes afterwards. The cashier re-applies the
offer to pick up cart edits. Only one offer is applied at a time; applying an
offer first clears the adjustments of the previous one.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

from ..extensions import db
from ..models import Offer
from ..models.offers import DEFAULT_PRIORITY, RULE_BOGO_SAME_ITEM, RULE_FLAT, RULE_PERCENTAGE, RULE_TYPES
from ..time_utils import parse_iso_date, parse_iso_datetime, utcnow
from ..validation import (
    NotFoundError,
    OfferError,
    ValidationError,
    optional_text,
    require_text,
    to_bool,
    to_int,
    to_non_negative_decimal,
)
from .cart import Cart, CartLine
from .pricing import BillDiscount, MODE_AMOUNT, MODE_PERCENT
from .tax import HUNDRED, ZERO, as_decimal


# =============================================================================
# MATCHING
# =============================================================================

def effective_rule_type(offer: Offer) -> str | None:
    """rule_type, or the rule implied by a legacy discount_type."""
    if offer.rule_type in RULE_TYPES:
        return offer.rule_type
    if offer.discount_type == "amount":
        return RULE_FLAT
    if offer.discount_type == "percentage":
        return RULE_PERCENTAGE
    return None


def _target_product_ids(offer: Offer) -> set[int]:
    ids = set()
    for value in offer.product_ids or []:
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            continue
    return ids


def _target_categories(offer: Offer) -> set[str]:
    return {c.lower() for c in (offer.category_names or []) if isinstance(c, str)}


def is_targeted(offer: Offer) -> bool:
    return bool(_target_product_ids(offer) or _target_categories(offer))


def line_is_targeted(offer: Offer, line: CartLine) -> bool:
    if line.product_id in _target_product_ids(offer):
        return True
    return bool(line.category) and line.category.lower() in _target_categories(offer)


def dob_month_matches(customer_dob, today: date | None = None) -> bool:
    if not customer_dob:
        return False
    if isinstance(customer_dob, str):
        try:
            customer_dob = parse_iso_date(customer_dob)
        except ValueError:
            return False
        if customer_dob is None:
            return False
    today = today or utcnow().date()
    return customer_dob.month == today.month


def offer_matches(offer: Offer, cart: Cart, customer_dob=None, today: date | None = None) -> bool:
    if offer.dob_month_only and not dob_month_matches(customer_dob, today):
        return False
    if not is_targeted(offer):
        return True
    return any(line_is_targeted(offer, line) for line in cart.lines)


def compute_savings(offer: Offer, cart: Cart, customer_dob=None, today: date | None = None) -> Decimal:
    if not offer_matches(offer, cart, customer_dob, today):
        return ZERO

    rule = effective_rule_type(offer)
    value = as_decimal(offer.discount_value)

    if rule == RULE_BOGO_SAME_ITEM:
        buy, get = offer.buy_qty or 0, offer.get_qty or 0
        if buy <= 0 or get <= 0:
            return ZERO
        saved = ZERO
        for line in cart.lines:
            if not line_is_targeted(offer, line):
                continue
            free_qty = (line.qty // (buy + get)) * get
            saved += free_qty * line.unit_price
        return saved

    if rule == RULE_FLAT:
        if not is_targeted(offer):
            return value
        return sum(
            (_flat_line_discount(value, line) for line in cart.lines if line_is_targeted(offer, line)),
            ZERO,
        )

    if rule == RULE_PERCENTAGE:
        pct = value / HUNDRED
        if not is_targeted(offer):
            # undiscounted subtotal
            return clear_offer_adjustments(cart).preview().subtotal * pct
        matched_gross = sum(
            (line.unit_price * line.qty for line in cart.lines if line_is_targeted(offer, line)),
            ZERO,
        )
        return matched_gross * pct

    return ZERO


def _flat_line_discount(value: Decimal, line: CartLine) -> Decimal:
    """A flat discount never takes a line below zero."""
    return min(value, line.unit_price * line.qty)


def _offer_id(offer: Offer) -> int:
    return offer.id or 0


def rank_offers(offers, cart: Cart, customer_dob=None, today: date | None = None) -> list[tuple[Offer, Decimal]]:
    """Matching offers with their savings, best first."""
    candidates = [
        (offer, compute_savings(offer, cart, customer_dob, today))
        for offer in offers
        if offer_matches(offer, cart, customer_dob, today)
    ]
    candidates.sort(key=lambda pair: (
        pair[0].priority if pair[0].priority is not None else DEFAULT_PRIORITY,
        -pair[1],
        _offer_id(pair[0]),
    ))
    return candidates


def best_offer(offers, cart: Cart, customer_dob=None, today: date | None = None) -> tuple[Offer, Decimal] | None:
    ranked = rank_offers(offers, cart, customer_dob, today)
    return ranked[0] if ranked else None


# =============================================================================
# APPLICATION (snapshot-then-freeze)
# =============================================================================

def clear_offer_adjustments(cart: Cart) -> Cart:
    return replace(
        cart,
        applied_offer_id=None,
        bill_discount=BillDiscount(),
        lines=tuple(replace(l, item_discount=ZERO, item_discount_mode=MODE_AMOUNT) for l in cart.lines),
    )


def apply_offer(cart: Cart, offer: Offer) -> Cart:
    """
    Bake an offer's discount into the cart.

    Targeted offers write per-line discounts on matching lines; untargeted
    offers set the bill discount. BOGO becomes an amount discount on the
    line equal to the value of its free units.
    """
    rule = effective_rule_type(offer)
    if rule is None:
        raise OfferError(f"Offer {offer.name} has no discount rule")

    cart = clear_offer_adjustments(cart)
    value = as_decimal(offer.discount_value)

    if rule == RULE_BOGO_SAME_ITEM:
        buy, get = offer.buy_qty or 0, offer.get_qty or 0
        if buy <= 0 or get <= 0 or not is_targeted(offer):
            raise OfferError(f"Offer {offer.name} is not a valid buy-X-get-Y offer")

        def _bogo(line: CartLine) -> CartLine:
            if not line_is_targeted(offer, line):
                return line
            free_value = (line.qty // (buy + get)) * get * line.unit_price
            return replace(line, item_discount_mode=MODE_AMOUNT, item_discount=free_value)

        lines = tuple(_bogo(l) for l in cart.lines)
        return replace(cart, lines=lines, applied_offer_id=offer.id)

    mode = MODE_AMOUNT if rule == RULE_FLAT else MODE_PERCENT

    if is_targeted(offer):
        def _targeted(line: CartLine) -> CartLine:
            if not line_is_targeted(offer, line):
                return line
            amount = _flat_line_discount(value, line) if mode == MODE_AMOUNT else value
            return replace(line, item_discount_mode=mode, item_discount=amount)

        lines = tuple(_targeted(l) for l in cart.lines)
        return replace(cart, lines=lines, applied_offer_id=offer.id)

    return replace(cart, bill_discount=BillDiscount(value=value, mode=mode), applied_offer_id=offer.id)


# =============================================================================
# CATALOG
# =============================================================================

def _parse_window_bound(value, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _id_list(value, field: str) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return [to_int(v, field) for v in value]


def _name_list(value, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field} must be a list of strings")
    return [v.strip() for v in value if v.strip()]


def _apply_fields(offer: Offer, data: dict, *, partial: bool) -> None:
    def has(key):
        return key in data or not partial

    if has("name"):
        offer.name = require_text(data.get("name"), "name")
    if has("description"):
        offer.description = optional_text(data.get("description"), "description", max_length=2000)
    if has("event_name"):
        offer.event_name = optional_text(data.get("event_name"), "event_name", max_length=128)
    if has("is_active"):
        offer.is_active = to_bool(data.get("is_active"), "is_active", default=True)
    if has("starts_at"):
        offer.starts_at = _parse_window_bound(data.get("starts_at"), "starts_at")
    if has("ends_at"):
        offer.ends_at = _parse_window_bound(data.get("ends_at"), "ends_at")
    if has("rule_type"):
        rule_type = data.get("rule_type") or None
        if rule_type is not None and rule_type not in RULE_TYPES:
            raise ValidationError(f"rule_type must be one of {', '.join(RULE_TYPES)}")
        offer.rule_type = rule_type
    if has("discount_type"):
        discount_type = data.get("discount_type") or None
        if discount_type is not None and discount_type not in ("amount", "percentage"):
            raise ValidationError("discount_type must be amount or percentage")
        offer.discount_type = discount_type
    if has("discount_value"):
        raw = data.get("discount_value")
        offer.discount_value = None if raw is None else to_non_negative_decimal(raw, "discount_value")
    if has("buy_qty"):
        offer.buy_qty = None if data.get("buy_qty") is None else to_int(data.get("buy_qty"), "buy_qty")
    if has("get_qty"):
        offer.get_qty = None if data.get("get_qty") is None else to_int(data.get("get_qty"), "get_qty")
    if has("product_ids"):
        offer.product_ids = _id_list(data.get("product_ids"), "product_ids")
    if has("category_names"):
        offer.category_names = _name_list(data.get("category_names"), "category_names")
    if has("dob_month_only"):
        offer.dob_month_only = to_bool(data.get("dob_month_only"), "dob_month_only")
    if has("priority"):
        offer.priority = to_int(data.get("priority"), "priority", default=DEFAULT_PRIORITY)
    if has("exclusive"):
        offer.exclusive = to_bool(data.get("exclusive"), "exclusive")


def _validate_offer(offer: Offer) -> None:
    rule = effective_rule_type(offer)
    if rule is None:
        raise ValidationError("rule_type or discount_type is required")
    if rule == RULE_BOGO_SAME_ITEM:
        if not offer.buy_qty or offer.buy_qty <= 0 or not offer.get_qty or offer.get_qty <= 0:
            raise ValidationError("buy_qty and get_qty must be greater than 0 for bogoSameItem offers")
        if not is_targeted(offer):
            raise ValidationError("bogoSameItem offers must target products or categories")
    elif offer.discount_value is None:
        raise ValidationError("discount_value is required")
    elif rule == RULE_PERCENTAGE and offer.discount_value > HUNDRED:
        raise ValidationError("discount_value cannot exceed 100 for percentage offers")
    if offer.starts_at and offer.ends_at and offer.ends_at < offer.starts_at:
        raise ValidationError("ends_at must be after starts_at")


def create_offer(data: dict) -> Offer:
    offer = Offer()
    _apply_fields(offer, data, partial=False)
    _validate_offer(offer)
    db.session.add(offer)
    db.session.commit()
    return offer


def update_offer(offer_id: int, data: dict) -> Offer:
    offer = get_offer(offer_id)
    _apply_fields(offer, data, partial=True)
    _validate_offer(offer)
    db.session.commit()
    return offer


def get_offer(offer_id: int) -> Offer:
    offer = db.session.get(Offer, offer_id)
    if offer is None:
        raise NotFoundError("Offer not found", details={"offer_id": offer_id})
    return offer


def list_offers() -> list[Offer]:
    return db.session.query(Offer).order_by(Offer.name.asc(), Offer.id.asc()).all()


def list_active_offers(now: datetime | None = None) -> list[Offer]:
    """Active offers whose [starts_at, ends_at] window contains now."""
    now = now or utcnow()
    return [
        offer for offer in list_offers()
        if offer.is_active
        and (offer.starts_at is None or offer.starts_at <= now)
        and (offer.ends_at is None or offer.ends_at >= now)
    ]
