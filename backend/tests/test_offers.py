# Overview: Pytest coverage for offer matching, savings ranking, application and the offer catalog.

from datetime import date, timedelta
from decimal import Decimal

import pytest

from retailpos.models import Offer
from retailpos.services import cart as cart_ops
from retailpos.services import offer_service
from retailpos.services.cart import Cart, CartLine
from retailpos.services.pricing import MODE_AMOUNT, MODE_PERCENT
from retailpos.time_utils import utcnow
from retailpos.validation import OfferError, ValidationError


def _offer(**fields):
    """Transient offer; column defaults only apply at insert so set them here."""
    fields.setdefault("name", "Offer")
    fields.setdefault("is_active", True)
    fields.setdefault("priority", 100)
    fields.setdefault("dob_month_only", False)
    fields.setdefault("exclusive", False)
    return Offer(**fields)


def _cart(*lines):
    return Cart(lines=tuple(lines))


TEE = CartLine(product_id=1, name="Tee", unit_price=Decimal("100"), tax_rate_pct=Decimal("12"), qty=3, category="Apparel")
SOCKS = CartLine(product_id=2, name="Socks", unit_price=Decimal("50"), tax_rate_pct=Decimal("5"), qty=2, category="Accessories")


class TestMatching:
    def test_untargeted_offer_matches_any_cart(self):
        offer = _offer(rule_type="flat", discount_value=Decimal("20"))
        assert offer_service.offer_matches(offer, _cart(SOCKS))

    def test_category_match_is_case_insensitive(self):
        offer = _offer(rule_type="percentage", discount_value=Decimal("10"), category_names=["apparel"])
        assert offer_service.offer_matches(offer, _cart(TEE))
        assert not offer_service.offer_matches(offer, _cart(SOCKS))

    def test_product_match(self):
        offer = _offer(rule_type="flat", discount_value=Decimal("5"), product_ids=[2])
        assert offer_service.offer_matches(offer, _cart(TEE, SOCKS))
        assert not offer_service.offer_matches(offer, _cart(TEE))

    def test_dob_month_gate(self):
        """
        SCENARIO: Birthday-month offer
        EXPECTED: Matches only when the customer DOB month equals the current month
        """
        offer = _offer(rule_type="flat", discount_value=Decimal("50"), dob_month_only=True)
        today = date(2024, 6, 15)
        assert offer_service.offer_matches(offer, _cart(TEE), "2018-06-02", today)
        assert not offer_service.offer_matches(offer, _cart(TEE), "2018-07-02", today)
        assert not offer_service.offer_matches(offer, _cart(TEE), None, today)
        assert not offer_service.offer_matches(offer, _cart(TEE), "not-a-date", today)

    def test_legacy_discount_type_maps_to_rule(self):
        assert offer_service.effective_rule_type(_offer(discount_type="amount")) == "flat"
        assert offer_service.effective_rule_type(_offer(discount_type="percentage")) == "percentage"
        assert offer_service.effective_rule_type(_offer()) is None


class TestSavings:
    def test_bogo_savings(self):
        """
        SCENARIO: Buy 2 get 1 on a line of 7 units at 100
        EXPECTED: 2 free units, savings 200
        """
        line = CartLine(product_id=1, name="Tee", unit_price=Decimal("100"), qty=7)
        offer = _offer(rule_type="bogoSameItem", buy_qty=2, get_qty=1, product_ids=[1])
        assert offer_service.compute_savings(offer, _cart(line)) == Decimal("200")

    def test_flat_targeted_is_per_matching_line(self):
        offer = _offer(rule_type="flat", discount_value=Decimal("10"), category_names=["Apparel", "Accessories"])
        assert offer_service.compute_savings(offer, _cart(TEE, SOCKS)) == Decimal("20")

    def test_flat_untargeted_applies_once(self):
        offer = _offer(rule_type="flat", discount_value=Decimal("10"))
        assert offer_service.compute_savings(offer, _cart(TEE, SOCKS)) == Decimal("10")

    def test_percentage_targeted_uses_matching_gross(self):
        offer = _offer(rule_type="percentage", discount_value=Decimal("10"), product_ids=[1])
        assert offer_service.compute_savings(offer, _cart(TEE, SOCKS)) == Decimal("30")

    def test_percentage_untargeted_uses_subtotal(self):
        offer = _offer(rule_type="percentage", discount_value=Decimal("10"))
        assert offer_service.compute_savings(offer, _cart(TEE, SOCKS)) == Decimal("40")

    def test_flat_targeted_capped_at_line_gross(self):
        """
        SCENARIO: Flat 100 off targeting a single 50 item
        EXPECTED: Savings limited to the line gross of 50
        """
        line = CartLine(product_id=5, name="Bib", unit_price=Decimal("50"), qty=1)
        offer = _offer(rule_type="flat", discount_value=Decimal("100"), product_ids=[5])
        assert offer_service.compute_savings(offer, _cart(line)) == Decimal("50")

    def test_percentage_untargeted_ignores_applied_offer(self):
        applied = offer_service.apply_offer(
            _cart(TEE, SOCKS), _offer(id=1, rule_type="flat", discount_value=Decimal("20"), product_ids=[1]),
        )
        offer = _offer(rule_type="percentage", discount_value=Decimal("10"))
        assert offer_service.compute_savings(offer, applied) == Decimal("40")

    def test_non_matching_offer_saves_nothing(self):
        offer = _offer(rule_type="flat", discount_value=Decimal("10"), product_ids=[99])
        assert offer_service.compute_savings(offer, _cart(TEE)) == 0


class TestRanking:
    def test_priority_beats_savings(self):
        """
        SCENARIO: Small-savings offer with priority 1 vs large-savings offer with priority 100
        EXPECTED: Lower priority number wins
        """
        small = _offer(id=1, rule_type="flat", discount_value=Decimal("5"), priority=1)
        large = _offer(id=2, rule_type="flat", discount_value=Decimal("80"), priority=100)
        offer, savings = offer_service.best_offer([large, small], _cart(TEE))
        assert offer is small
        assert savings == Decimal("5")

    def test_savings_break_priority_ties(self):
        small = _offer(id=1, rule_type="flat", discount_value=Decimal("5"))
        large = _offer(id=2, rule_type="flat", discount_value=Decimal("80"))
        offer, _ = offer_service.best_offer([small, large], _cart(TEE))
        assert offer is large

    def test_no_candidates(self):
        offer = _offer(rule_type="flat", discount_value=Decimal("10"), product_ids=[99])
        assert offer_service.best_offer([offer], _cart(TEE)) is None
        assert offer_service.rank_offers([], _cart(TEE)) == []


class TestApplyOffer:
    def test_untargeted_sets_bill_discount(self):
        offer = _offer(id=7, rule_type="percentage", discount_value=Decimal("10"))
        applied = offer_service.apply_offer(_cart(TEE, SOCKS), offer)
        assert applied.bill_discount.value == Decimal("10")
        assert applied.bill_discount.mode == MODE_PERCENT
        assert applied.applied_offer_id == 7
        assert applied.preview().bill_discount_amount == Decimal("40")

    def test_targeted_writes_line_discounts(self):
        offer = _offer(id=3, rule_type="flat", discount_value=Decimal("15"), product_ids=[2])
        applied = offer_service.apply_offer(_cart(TEE, SOCKS), offer)
        tee, socks = applied.lines
        assert tee.item_discount == 0
        assert socks.item_discount == Decimal("15")
        assert socks.item_discount_mode == MODE_AMOUNT

    def test_flat_targeted_never_drives_line_negative(self):
        line = CartLine(product_id=5, name="Bib", unit_price=Decimal("50"), tax_rate_pct=Decimal("12"), qty=1)
        offer = _offer(id=4, rule_type="flat", discount_value=Decimal("100"), product_ids=[5])
        cart = _cart(line)
        applied = offer_service.apply_offer(cart, offer)
        preview = applied.preview()
        assert applied.lines[0].item_discount == Decimal("50")
        assert preview.lines[0].net == 0
        assert preview.subtotal == 0
        assert preview.discount_total == offer_service.compute_savings(offer, cart)

    def test_bogo_applied_discount_equals_estimated_savings(self):
        """
        SCENARIO: Buy 2 get 1 applied to 6 units at 100
        EXPECTED: Line discount 200 and priced saving equals compute_savings
        """
        line = CartLine(product_id=1, name="Tee", unit_price=Decimal("100"), qty=6)
        offer = _offer(id=1, rule_type="bogoSameItem", buy_qty=2, get_qty=1, product_ids=[1])
        cart = _cart(line)
        applied = offer_service.apply_offer(cart, offer)
        assert applied.lines[0].item_discount == Decimal("200")
        assert applied.preview().discount_total == offer_service.compute_savings(offer, cart)

    def test_untargeted_bogo_rejected(self):
        offer = _offer(rule_type="bogoSameItem", buy_qty=1, get_qty=1)
        with pytest.raises(OfferError):
            offer_service.apply_offer(_cart(TEE), offer)

    def test_offer_without_rule_rejected(self):
        with pytest.raises(OfferError):
            offer_service.apply_offer(_cart(TEE), _offer())

    def test_applying_replaces_previous_offer(self):
        bill = _offer(id=1, rule_type="flat", discount_value=Decimal("30"))
        line = _offer(id=2, rule_type="percentage", discount_value=Decimal("5"), product_ids=[1])
        cart = offer_service.apply_offer(_cart(TEE, SOCKS), bill)
        cart = offer_service.apply_offer(cart, line)
        assert cart.bill_discount.value == 0
        assert cart.lines[0].item_discount == Decimal("5")
        assert cart.applied_offer_id == 2

    def test_applied_values_are_frozen_after_cart_edits(self):
        """
        SCENARIO: BOGO applied at qty 3, then qty raised to 6
        EXPECTED: Line discount stays at the value computed when applied
        """
        line = CartLine(product_id=1, name="Tee", unit_price=Decimal("100"), qty=3)
        offer = _offer(id=1, rule_type="bogoSameItem", buy_qty=2, get_qty=1, product_ids=[1])
        applied = offer_service.apply_offer(_cart(line), offer)
        edited = cart_ops.set_quantity(applied, 1, 6)
        assert edited.lines[0].item_discount == Decimal("100")

    def test_apply_does_not_mutate_input(self):
        cart = _cart(TEE)
        offer_service.apply_offer(cart, _offer(id=1, rule_type="flat", discount_value=Decimal("10")))
        assert cart.bill_discount.value == 0
        assert cart.applied_offer_id is None


class TestAppliedOfferCheckout:
    def test_capped_flat_offer_cart_checks_out_at_preview_total(self, make_product, db_session):
        from retailpos.services.checkout_service import CheckoutRequest, checkout_cart

        bib = make_product(name="Bib", unit_price="50", tax_rate_pct="12", stock=3)
        offer = offer_service.create_offer({
            "name": "Flat 100", "rule_type": "flat", "discount_value": "100", "product_ids": [bib.id],
        })
        cart = offer_service.apply_offer(cart_ops.add_product(Cart(), bib, 1), offer)

        payload = cart.to_checkout_payload()
        payload["cashier_user_id"] = "cashier-1"
        invoice = checkout_cart(CheckoutRequest.from_payload(payload))

        assert invoice.grand_total == cart.preview().rounded()["grand_total"] == 0
        assert invoice.discount_total == Decimal("50.00")


class TestOfferCatalog:
    def test_create_offer(self, db_session):
        offer = offer_service.create_offer({
            "name": "Apparel 10%",
            "rule_type": "percentage",
            "discount_value": "10",
            "category_names": ["Apparel"],
        })
        assert offer.id is not None
        assert offer.priority == 100
        assert offer.is_active is True

    def test_percentage_over_100_rejected(self, db_session):
        with pytest.raises(ValidationError):
            offer_service.create_offer({"name": "Bad", "rule_type": "percentage", "discount_value": "150"})

    def test_bogo_requires_target(self, db_session):
        with pytest.raises(ValidationError):
            offer_service.create_offer({"name": "Bad", "rule_type": "bogoSameItem", "buy_qty": 1, "get_qty": 1})

    def test_window_must_be_ordered(self, db_session):
        with pytest.raises(ValidationError):
            offer_service.create_offer({
                "name": "Bad",
                "rule_type": "flat",
                "discount_value": "5",
                "starts_at": "2024-02-01T00:00:00Z",
                "ends_at": "2024-01-01T00:00:00Z",
            })

    def test_list_active_offers_respects_window(self, db_session):
        now = utcnow()
        offer_service.create_offer({"name": "Open", "rule_type": "flat", "discount_value": "5"})
        offer_service.create_offer({
            "name": "Expired",
            "rule_type": "flat",
            "discount_value": "5",
            "ends_at": (now - timedelta(days=1)).isoformat(),
        })
        offer_service.create_offer({
            "name": "Inactive",
            "rule_type": "flat",
            "discount_value": "5",
            "is_active": False,
        })
        names = [o.name for o in offer_service.list_active_offers(now)]
        assert names == ["Open"]

    def test_update_offer_partial(self, db_session):
        offer = offer_service.create_offer({"name": "Flat", "rule_type": "flat", "discount_value": "5"})
        updated = offer_service.update_offer(offer.id, {"discount_value": "7.50"})
        assert updated.discount_value == Decimal("7.50")
        assert updated.name == "Flat"
