# Overview: Pytest coverage for the inventory ledger, stock receiving and manual adjustments.

from decimal import Decimal

import pytest

from retailpos.models import GoodsReceipt, InventoryLog
from retailpos.services import inventory_service, products_service
from retailpos.services.inventory_service import ReceiveRequest, adjust_stock, receive_stock
from retailpos.validation import (
    ConflictError,
    InsufficientStockError,
    LedgerImmutableError,
    ProductNotFoundError,
    ValidationError,
)


class TestOpeningStock:
    def test_opening_stock_is_logged(self, make_product, db_session):
        product = make_product(stock=12)
        log = db_session.query(InventoryLog).filter_by(product_id=product.id).one()
        assert log.type == "adjustment"
        assert log.reason == "opening-stock"
        assert log.quantity_change == 12
        assert log.previous_stock == 0
        assert log.new_stock == 12

    def test_duplicate_sku_rejected(self, make_product):
        make_product(sku="TEE-1")
        with pytest.raises(ConflictError):
            make_product(sku="tee-1")

    def test_stock_not_editable_directly(self, make_product):
        product = make_product(stock=3)
        with pytest.raises(ValidationError):
            products_service.update_product(product.id, {"stock": 30})

    def test_low_stock(self, make_product):
        low = make_product(name="Low", stock=2, reorder_level=5)
        make_product(name="Fine", stock=20, reorder_level=5)
        make_product(name="Untracked", stock=0)
        assert [p.id for p in products_service.list_low_stock()] == [low.id]


class TestReceive:
    def test_receive_increments_stock_and_logs(self, make_product, db_session):
        """
        SCENARIO: Receive 5 units with a supplier document
        EXPECTED: Stock +5, one receipt, one purchase log linked to it, cost price updated
        """
        product = make_product(stock=3)

        receipt = receive_stock(ReceiveRequest.from_payload({
            "lines": [{"product_id": product.id, "qty": 5, "unit_cost": "42.50"}],
            "supplier_name": "Acme Textiles",
            "doc_no": "GRN-7",
            "doc_date": "2024-05-01",
            "created_by_user_id": "manager-1",
        }))

        db_session.refresh(product)
        assert product.stock == 8
        assert product.cost_price == Decimal("42.50")
        assert receipt.lines[0].quantity == 5
        assert receipt.to_dict()["doc_date"] == "2024-05-01"

        log = db_session.query(InventoryLog).filter_by(type="purchase").one()
        assert log.related_receipt_id == receipt.id
        assert log.reason == "receipt GRN-7"

    def test_receive_unknown_product_writes_nothing(self, make_product, db_session):
        product = make_product(stock=1)
        with pytest.raises(ProductNotFoundError):
            receive_stock(ReceiveRequest.from_payload({
                "lines": [{"product_id": product.id, "qty": 1}, {"product_id": 9999, "qty": 1}],
                "created_by_user_id": "manager-1",
            }))
        assert db_session.query(GoodsReceipt).count() == 0
        db_session.refresh(product)
        assert product.stock == 1

    def test_receive_op_id_dedupe(self, make_product, db_session):
        product = make_product(stock=0)
        request = ReceiveRequest.from_payload({
            "lines": [{"product_id": product.id, "qty": 4}],
            "created_by_user_id": "manager-1",
            "op_id": "grn-op-1",
        })
        first = receive_stock(request)
        second = receive_stock(request)
        assert first.id == second.id
        db_session.refresh(product)
        assert product.stock == 4

    @pytest.mark.parametrize("payload", [
        {"lines": [], "created_by_user_id": "m"},
        {"lines": [{"product_id": 1, "qty": 0}], "created_by_user_id": "m"},
        {"lines": [{"product_id": 1, "qty": 1}]},
        {"lines": [{"product_id": 1, "qty": 1}], "created_by_user_id": "m", "doc_date": "01/05/2024"},
    ])
    def test_malformed_receipts_rejected(self, payload):
        with pytest.raises(ValidationError):
            ReceiveRequest.from_payload(payload)


class TestAdjust:
    def test_adjustment_writes_log(self, make_product, db_session):
        product = make_product(stock=10)
        log = adjust_stock(product_id=product.id, delta=-3, reason="count variance", user_id="manager-1")
        assert log.previous_stock == 10
        assert log.new_stock == 7
        db_session.refresh(product)
        assert product.stock == 7

    def test_damage_write_off(self, make_product, db_session):
        product = make_product(stock=10)
        log = adjust_stock(product_id=product.id, delta=-1, reason="torn", type="damage")
        assert log.type == "damage"

    def test_cannot_go_negative(self, make_product, db_session):
        product = make_product(stock=2)
        with pytest.raises(InsufficientStockError):
            adjust_stock(product_id=product.id, delta=-3, reason="shrinkage")
        db_session.refresh(product)
        assert product.stock == 2
        assert db_session.query(InventoryLog).filter_by(product_id=product.id).count() == 1

    @pytest.mark.parametrize("kwargs", [
        {"delta": 0, "reason": "x"},
        {"delta": 1, "reason": ""},
        {"delta": 1, "reason": "x", "type": "sale"},
    ])
    def test_invalid_adjustments(self, make_product, kwargs):
        product = make_product(stock=2)
        with pytest.raises(ValidationError):
            adjust_stock(product_id=product.id, **kwargs)

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            adjust_stock(product_id=9999, delta=1, reason="x")


class TestLedger:
    def test_log_rows_cannot_be_updated(self, make_product, db_session):
        product = make_product(stock=5)
        log = db_session.query(InventoryLog).filter_by(product_id=product.id).one()
        log.reason = "rewritten"
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

    def test_log_rows_cannot_be_deleted(self, make_product, db_session):
        product = make_product(stock=5)
        log = db_session.query(InventoryLog).filter_by(product_id=product.id).one()
        db_session.delete(log)
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

    def test_log_replays_to_current_stock(self, make_product, checkout, db_session):
        """Summing every log entry for a product reproduces its stock."""
        product = make_product(stock=10)
        checkout((product, 3))
        adjust_stock(product_id=product.id, delta=2, reason="found")
        receive_stock(ReceiveRequest.from_payload({
            "lines": [{"product_id": product.id, "qty": 4}],
            "created_by_user_id": "manager-1",
        }))

        db_session.refresh(product)
        movement = inventory_service.movement_summary(product.id)
        assert movement["net_quantity"] == product.stock == 13
        assert movement["by_type"]["sale"] == {"net_quantity": -3, "entries": 1}

    def test_list_logs_filters(self, make_product, checkout, db_session):
        product = make_product(stock=10)
        invoice = checkout((product, 1))
        logs = inventory_service.list_logs(related_invoice_id=invoice.id)
        assert [log.type for log in logs] == ["sale"]
        with pytest.raises(ValidationError):
            inventory_service.list_logs(type="bogus")

    def test_append_log_rejects_unknown_type(self, make_product):
        product = make_product(stock=1)
        with pytest.raises(ValueError):
            inventory_service.append_log(product=product, quantity_change=1, type="gift")
