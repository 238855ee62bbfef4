# Overview: Pytest coverage for exchange quoting and the exchange transaction.

"""
Exchange Transaction Tests

Setup used throughout: product A at 100 (12% tax, stock 10) sold 3 units to a
known customer on one invoice (grand total 336, 3 loyalty points). Product B
at 150 (stock 5) is the usual replacement.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from retailpos.models import Exchange, Invoice, InventoryLog, Refund
from retailpos.services.exchange_service import (
    ExchangeRequest,
    perform_exchange,
    quote_exchange,
)
from retailpos.validation import (
    InsufficientStockError,
    InvalidReturnQuantityError,
    NoNewItemsError,
    OriginalInvoiceNotFoundError,
    ProductNotInOriginalInvoiceError,
    ReturnWindowExceededError,
    ValidationError,
)


@pytest.fixture
def sale(make_product, make_customer, checkout, db_session):
    a = make_product(name="A", unit_price="100", tax_rate_pct="12", stock=10)
    b = make_product(name="B", unit_price="150", tax_rate_pct="12", stock=5)
    customer = make_customer(phone="9000000001")
    invoice = checkout((a, 3), customer={"phone": "9000000001"})
    return {"a": a, "b": b, "customer": customer, "invoice": invoice}


def _request(invoice, returned, new_items, **extra):
    return ExchangeRequest.from_payload({
        "original_invoice_id": invoice.id,
        "returned": returned,
        "new_items": new_items,
        "cashier_user_id": "cashier-1",
        **extra,
    })


class TestExchangeRefund:
    def test_return_two_buy_one_refunds_difference(self, sale, db_session):
        """
        SCENARIO: Return 2 x A (credit 200), buy 1 x B (150)
        EXPECTED: difference -50, refund 50, A stock 7 -> 9, B stock 5 -> 4,
                  new invoice totals 0, points unchanged, total_spend 336 -> 286
        """
        a, b, customer, invoice = sale["a"], sale["b"], sale["customer"], sale["invoice"]
        db_session.refresh(customer)
        assert customer.loyalty_points == 3
        assert customer.total_spend == Decimal("336.00")

        result = perform_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 2}],
            [{"product_id": b.id, "qty": 1}],
            refund_method="upi",
        ))

        assert result.difference == Decimal("-50.00")
        assert result.refund is not None
        assert result.refund.amount == Decimal("50.00")
        assert result.refund.method == "upi"
        assert result.new_invoice.grand_total == Decimal("0.00")
        assert result.new_invoice.exchange_of_invoice_id == invoice.id
        assert result.new_invoice.exchange_id == result.exchange.id
        assert result.exchange.payment_dict() == {"type": "refund", "method": "upi", "reference_id": None}

        db_session.refresh(a)
        db_session.refresh(b)
        db_session.refresh(customer)
        assert a.stock == 9
        assert b.stock == 4
        assert customer.loyalty_points == 3
        assert customer.total_spend == Decimal("286.00")

    def test_refund_loyalty_clamped_at_zero(self, make_product, make_customer, checkout, db_session):
        """
        SCENARIO: Customer spent points down to 0 before a 500 refund
        EXPECTED: Points stay at 0, total_spend never negative
        """
        big = make_product(name="Big", unit_price="600", tax_rate_pct="0", stock=2)
        small = make_product(name="Small", unit_price="100", tax_rate_pct="0", stock=2)
        customer = make_customer(phone="9000000005")
        invoice = checkout((big, 1), customer={"phone": "9000000005"})

        customer.loyalty_points = 0
        customer.total_spend = Decimal("100")
        db_session.commit()

        result = perform_exchange(_request(
            invoice,
            [{"product_id": big.id, "qty": 1}],
            [{"product_id": small.id, "qty": 1}],
        ))

        assert result.refund.amount == Decimal("500.00")
        db_session.refresh(customer)
        assert customer.loyalty_points == 0
        assert customer.total_spend == Decimal("0.00")


class TestExchangePayMore:
    def test_customer_pays_difference(self, sale, make_product, db_session):
        """
        SCENARIO: Return 1 x A (credit 100) for C at 250
        EXPECTED: New invoice grand total 150 with no tax on top, 1 point awarded, no refund
        """
        a, customer, invoice = sale["a"], sale["customer"], sale["invoice"]
        c = make_product(name="C", unit_price="250", tax_rate_pct="12", stock=3)

        result = perform_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 1}],
            [{"product_id": c.id, "qty": 1}],
            payment_method="card",
            payment_reference_id="TXN-9",
        ))

        assert result.difference == Decimal("150.00")
        assert result.refund is None
        assert result.new_invoice.subtotal == Decimal("250.00")
        assert result.new_invoice.bill_discount_amount == Decimal("100.00")
        assert result.new_invoice.tax_total == Decimal("0.00")
        assert result.new_invoice.grand_total == Decimal("150.00")
        assert result.new_invoice.payment_method == "card"
        assert result.new_invoice.invoice_number == "INV-000002"

        db_session.refresh(customer)
        assert customer.loyalty_points == 4
        assert customer.total_spend == Decimal("486.00")
        assert db_session.query(Refund).count() == 0

    def test_even_exchange(self, sale, make_product, db_session):
        a, invoice = sale["a"], sale["invoice"]
        same = make_product(name="Same", unit_price="100", tax_rate_pct="12", stock=3)

        result = perform_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 1}],
            [{"product_id": same.id, "qty": 1}],
        ))

        assert result.difference == Decimal("0.00")
        assert result.refund is None
        assert result.new_invoice.grand_total == Decimal("0.00")
        assert result.exchange.payment_dict() is None


class TestReturnCredit:
    def test_bill_discount_reduces_credit(self, make_product, checkout, db_session):
        """
        SCENARIO: A 100 x 2 and B 50 x 2 sold with a 30 bill discount
        EXPECTED: A's share is 20 over 2 units, so credit per unit is 90
        """
        a = make_product(name="A", unit_price="100", tax_rate_pct="0", stock=5)
        b = make_product(name="B", unit_price="50", tax_rate_pct="0", stock=5)
        n = make_product(name="N", unit_price="500", tax_rate_pct="0", stock=5)
        invoice = checkout((a, 2), (b, 2), bill_discount="30")

        quote = quote_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 1}],
            [{"product_id": n.id, "qty": 1}],
        ))

        assert quote.to_dict()["returned"][0]["credit_per_unit"] == "90.00"
        assert quote.return_credit == Decimal("90.00")
        assert quote.difference == Decimal("410.00")

    def test_line_discount_reduces_credit(self, make_product, db_session):
        from retailpos.services.checkout_service import CheckoutRequest, checkout_cart

        a = make_product(name="A", unit_price="100", tax_rate_pct="0", stock=5)
        n = make_product(name="N", unit_price="10", tax_rate_pct="0", stock=5)
        invoice = checkout_cart(CheckoutRequest.from_payload({
            "items": [{"product_id": a.id, "qty": 2, "item_discount": "40"}],
            "cashier_user_id": "cashier-1",
        }))

        quote = quote_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 2}],
            [{"product_id": n.id, "qty": 1}],
        ))

        assert quote.returned[0].credit_per_unit == Decimal("80")
        assert quote.return_credit == Decimal("160.00")

    def test_quote_writes_nothing(self, sale, db_session):
        quote = quote_exchange(_request(
            sale["invoice"],
            [{"product_id": sale["a"].id, "qty": 1}],
            [{"product_id": sale["b"].id, "qty": 1}],
        ))
        assert quote.to_dict()["totals"]["difference"] == "50.00"
        assert quote.remaining == {sale["a"].id: 3}
        assert db_session.query(Exchange).count() == 0


class TestDefectiveReturns:
    def test_defect_not_restocked(self, sale, db_session):
        """
        SCENARIO: Return 1 x A flagged defective
        EXPECTED: A stock unchanged, one damage log with zero quantity change
        """
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]

        perform_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 1, "defect": True}],
            [{"product_id": b.id, "qty": 1}],
        ))

        db_session.refresh(a)
        assert a.stock == 7
        damage = db_session.query(InventoryLog).filter_by(product_id=a.id, type="damage").one()
        assert damage.quantity_change == 0
        assert damage.related_invoice_id == invoice.id
        assert db_session.query(InventoryLog).filter_by(product_id=a.id, type="return").count() == 0

    def test_string_false_defect_flag_restocks(self, sale, db_session):
        """
        SCENARIO: Replayed JSON carries "defect": "false" for 1 x A
        EXPECTED: Treated as a normal return, A stock 7 -> 8, no damage log
        """
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]

        perform_exchange(_request(
            invoice,
            [{"product_id": a.id, "qty": 1, "defect": "false"}],
            [{"product_id": b.id, "qty": 1}],
        ))

        db_session.refresh(a)
        assert a.stock == 8
        assert db_session.query(InventoryLog).filter_by(product_id=a.id, type="damage").count() == 0

    @pytest.mark.parametrize("flag", ["yes", "", 2, [], "maybe"])
    def test_unrecognised_defect_flag_rejected(self, sale, flag, db_session):
        with pytest.raises(ValidationError):
            _request(
                sale["invoice"],
                [{"product_id": sale["a"].id, "qty": 1, "defect": flag}],
                [{"product_id": sale["b"].id, "qty": 1}],
            )


class TestReturnQuantities:
    def test_cannot_return_more_than_remaining(self, sale, db_session):
        """
        SCENARIO: All 3 units returned in a first exchange, then 1 more requested
        EXPECTED: Rejected with remaining 0 in the message, nothing written
        """
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]
        perform_exchange(_request(invoice, [{"product_id": a.id, "qty": 3}], [{"product_id": b.id, "qty": 1}]))

        with pytest.raises(InvalidReturnQuantityError) as excinfo:
            perform_exchange(_request(invoice, [{"product_id": a.id, "qty": 1}], [{"product_id": b.id, "qty": 1}]))

        assert excinfo.value.message == "Invalid return quantity. Remaining returnable qty: 0"
        assert excinfo.value.remaining == 0
        assert db_session.query(Exchange).count() == 1

    def test_split_lines_checked_together(self, sale, db_session):
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]
        with pytest.raises(InvalidReturnQuantityError):
            quote_exchange(_request(
                invoice,
                [{"product_id": a.id, "qty": 2}, {"product_id": a.id, "qty": 2}],
                [{"product_id": b.id, "qty": 1}],
            ))

    def test_zero_quantity_rejected(self, sale, db_session):
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]
        with pytest.raises(InvalidReturnQuantityError) as excinfo:
            quote_exchange(_request(invoice, [{"product_id": a.id, "qty": 0}], [{"product_id": b.id, "qty": 1}]))
        assert excinfo.value.remaining == 3

    def test_product_not_in_invoice(self, sale, db_session):
        b, invoice = sale["b"], sale["invoice"]
        with pytest.raises(ProductNotInOriginalInvoiceError):
            quote_exchange(_request(invoice, [{"product_id": b.id, "qty": 1}], [{"product_id": b.id, "qty": 1}]))


class TestExchangeRejections:
    def test_window_exceeded(self, sale, db_session):
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]
        request = _request(invoice, [{"product_id": a.id, "qty": 1}], [{"product_id": b.id, "qty": 1}])

        with pytest.raises(ReturnWindowExceededError):
            perform_exchange(request, now=invoice.issued_at + timedelta(days=8))
        assert db_session.query(Exchange).count() == 0

    def test_window_counts_whole_days(self, sale, db_session):
        """Seven days and 23 hours is still day 7."""
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]
        request = _request(invoice, [{"product_id": a.id, "qty": 1}], [{"product_id": b.id, "qty": 1}])

        result = perform_exchange(request, now=invoice.issued_at + timedelta(days=7, hours=23))
        assert result.exchange.id is not None

    def test_no_new_items(self, sale, db_session):
        with pytest.raises(NoNewItemsError):
            quote_exchange(_request(sale["invoice"], [{"product_id": sale["a"].id, "qty": 1}], []))

    def test_unknown_invoice(self, sale, db_session):
        request = ExchangeRequest.from_payload({
            "original_invoice_id": 9999,
            "returned": [],
            "new_items": [{"product_id": sale["b"].id, "qty": 1}],
            "cashier_user_id": "cashier-1",
        })
        with pytest.raises(OriginalInvoiceNotFoundError):
            quote_exchange(request)

    def test_insufficient_new_stock_writes_nothing(self, sale, db_session):
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]

        with pytest.raises(InsufficientStockError):
            perform_exchange(_request(invoice, [{"product_id": a.id, "qty": 1}], [{"product_id": b.id, "qty": 6}]))

        db_session.refresh(a)
        db_session.refresh(b)
        assert a.stock == 7
        assert b.stock == 5
        assert db_session.query(Exchange).count() == 0
        assert db_session.query(Invoice).count() == 1


class TestExchangeIdempotency:
    def test_replayed_op_id_applies_once(self, sale, db_session):
        a, b, invoice = sale["a"], sale["b"], sale["invoice"]
        request = _request(
            invoice,
            [{"product_id": a.id, "qty": 2}],
            [{"product_id": b.id, "qty": 1}],
            op_id="ex-1",
        )

        first = perform_exchange(request)
        second = perform_exchange(request)

        assert first.exchange.id == second.exchange.id
        assert second.refund.id == first.refund.id
        assert db_session.query(Exchange).count() == 1
        assert db_session.query(Refund).count() == 1
        db_session.refresh(b)
        assert b.stock == 4


class TestExchangeLocking:
    def test_original_invoice_locked_before_prior_returns_read(self, sale, db_session, monkeypatch):
        """
        SCENARIO: Exchange against an invoice
        EXPECTED: The invoice row is the first row locked, ahead of any product
        """
        from retailpos.services import exchange_service

        locked = []
        real_lock = exchange_service.lock_for_update

        def _spy(query):
            locked.append(query.column_descriptions[0]["entity"])
            return real_lock(query)

        monkeypatch.setattr(exchange_service, "lock_for_update", _spy)
        perform_exchange(_request(
            sale["invoice"],
            [{"product_id": sale["a"].id, "qty": 1}],
            [{"product_id": sale["b"].id, "qty": 1}],
        ))

        assert locked[0] is Invoice
        assert locked.count(Invoice) == 1

    def test_quote_does_not_lock(self, sale, db_session, monkeypatch):
        from retailpos.services import exchange_service

        monkeypatch.setattr(
            exchange_service, "lock_for_update",
            lambda query: pytest.fail("quote must not take row locks"),
        )
        quote_exchange(_request(
            sale["invoice"],
            [{"product_id": sale["a"].id, "qty": 1}],
            [{"product_id": sale["b"].id, "qty": 1}],
        ))
