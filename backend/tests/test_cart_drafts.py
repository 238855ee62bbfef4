# Overview: Pytest coverage for cart transitions and parked-cart drafts (v1 migration, v2 round trip).

from decimal import Decimal

import pytest

from retailpos.services import cart as cart_ops
from retailpos.services import products_service
from retailpos.services.cart import Cart, dump_draft, load_draft
from retailpos.services.pricing import MODE_PERCENT
from retailpos.validation import ValidationError


class TestCartTransitions:
    @pytest.fixture
    def tee(self, make_product):
        return make_product(name="Tee", unit_price="499.00", tax_rate_pct="12", stock=10)

    def test_add_existing_product_bumps_quantity(self, tee):
        cart = cart_ops.add_product(Cart(), tee)
        cart = cart_ops.add_product(cart, tee, 2)
        assert len(cart.lines) == 1
        assert cart.lines[0].qty == 3

    def test_transitions_return_new_cart(self, tee):
        empty = Cart()
        cart = cart_ops.add_product(empty, tee)
        assert empty.is_empty
        assert not cart.is_empty

    def test_quantity_floor_is_one(self, tee):
        cart = cart_ops.add_product(Cart(), tee)
        assert cart_ops.decrement(cart, tee.id).lines[0].qty == 1
        assert cart_ops.set_quantity(cart, tee.id, 0).lines[0].qty == 1

    def test_remove_line(self, tee):
        cart = cart_ops.add_product(Cart(), tee)
        assert cart_ops.remove_line(cart, tee.id).is_empty

    def test_negative_item_discount_clamped(self, tee):
        cart = cart_ops.add_product(Cart(), tee)
        assert cart_ops.set_item_discount(cart, tee.id, "-5").lines[0].item_discount == 0

    def test_invalid_bill_discount_rejected(self):
        with pytest.raises(ValidationError):
            cart_ops.set_bill_discount(Cart(), "-1")
        with pytest.raises(ValidationError):
            cart_ops.set_bill_discount(Cart(), "10", mode="bogus")

    def test_invalid_payment_method_rejected(self):
        with pytest.raises(ValidationError):
            cart_ops.set_payment(Cart(), "cheque")

    def test_clear(self, tee):
        cart = cart_ops.add_product(Cart(), tee)
        cart = cart_ops.set_bill_discount(cart, "10")
        assert cart_ops.clear(cart) == Cart()


class TestDrafts:
    @pytest.fixture
    def products(self, make_product):
        return (
            make_product(name="Tee", unit_price="499.00", tax_rate_pct="12", stock=10),
            make_product(name="Socks", unit_price="199.00", tax_rate_pct="5", stock=10),
        )

    def _lookup(self, product_id):
        return products_service.get_product(product_id)

    def test_v2_round_trip(self, products):
        tee, socks = products
        cart = cart_ops.add_product(Cart(), tee, 2)
        cart = cart_ops.add_product(cart, socks)
        cart = cart_ops.set_item_discount(cart, tee.id, "10")
        cart = cart_ops.set_item_discount_mode(cart, tee.id, MODE_PERCENT)
        cart = cart_ops.set_bill_discount(cart, "25")
        cart = cart_ops.set_customer(cart, phone="9000000001", name="Asha")
        cart = cart_ops.set_payment(cart, "upi", "UTR123")

        restored = load_draft(dump_draft(cart, "cashier-1"), self._lookup, "cashier-1")
        assert restored == cart

    def test_prices_come_from_catalog(self, products, db_session):
        """
        SCENARIO: Product price changes while the cart is parked
        EXPECTED: Restored line carries the new catalog price
        """
        tee, _ = products
        draft = dump_draft(cart_ops.add_product(Cart(), tee), "cashier-1")
        products_service.update_product(tee.id, {"unit_price": "549.00"})

        restored = load_draft(draft, self._lookup, "cashier-1")
        assert restored.lines[0].unit_price == Decimal("549.00")

    def test_other_cashiers_draft_not_restored(self, products):
        tee, _ = products
        draft = dump_draft(cart_ops.add_product(Cart(), tee), "cashier-1")
        assert load_draft(draft, self._lookup, "cashier-2") is None

    def test_missing_products_dropped(self, products):
        draft = {"version": 2, "cart": [{"product_id": 9999, "qty": 1}, {"product_id": products[1].id, "qty": 2}]}
        restored = load_draft(draft, self._lookup)
        assert [line.product_id for line in restored.lines] == [products[1].id]

    def test_v1_draft_migrated(self, products):
        """
        SCENARIO: Old draft with embedded product objects and flat customer fields
        EXPECTED: Lines rehydrated by product id, customer fields carried over
        """
        tee, _ = products
        v1 = {
            "cart": [{"product": {"id": tee.id, "name": "stale", "unit_price": 1}, "qty": "3", "item_discount": "bad"}],
            "bill_discount": "15",
            "payment_method": "card",
            "cust_phone": "9000000001",
            "cust_name": "Asha",
            "applied_offer_id": 5,
        }
        restored = load_draft(v1, self._lookup)
        line = restored.lines[0]
        assert line.name == "Tee"
        assert line.unit_price == Decimal("499.00")
        assert line.qty == 3
        assert line.item_discount == 0
        assert restored.bill_discount.value == Decimal("15")
        assert restored.payment_method == "card"
        assert restored.customer.phone == "9000000001"
        assert restored.applied_offer_id is None

    def test_garbage_is_ignored(self):
        assert load_draft(None, self._lookup) is None
        assert load_draft("nope", self._lookup) is None
        restored = load_draft({"version": 2, "cart": "nope", "payment_method": "cheque"}, self._lookup)
        assert restored.is_empty
        assert restored.payment_method == "cash"
