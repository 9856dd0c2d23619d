# Overview: Pytest coverage for the stock ledger (movements, projection, bulk adjust).

import pytest
from conftest import line, stock_of
from settlement.errors import InsufficientStock, UnknownVariant
from settlement.models import StockMovement, StockRecord
from settlement.services import catalog_service, inventory_service, order_service
from settlement.services.catalog_service import VariantKey
from settlement.services.inventory_service import AdjustRequest
from settlement.validation import ValidationError


class TestAdjust:
    def test_sequence_matches_sum_and_last_movement(self, db_session, clock, variant):
        deltas = [10, -3, 5, -12, 7]
        for delta in deltas:
            inventory_service.adjust(variant, delta, "count")

        assert stock_of(variant) == sum(deltas)
        latest = inventory_service.history_of(variant, limit=1)[0]
        assert latest.resulting_quantity == sum(deltas)
        assert latest.delta == 7

    def test_insufficient_stock_leaves_quantity_unchanged(self, db_session, clock, stocked_variant):
        before = db_session.query(StockMovement).count()

        with pytest.raises(InsufficientStock):
            inventory_service.ship_stock(stocked_variant, 11, "oversell")

        assert stock_of(stocked_variant) == 10
        assert db_session.query(StockMovement).count() == before

    def test_adjustment_may_reach_exactly_zero(self, db_session, clock, stocked_variant):
        movement = inventory_service.adjust(stocked_variant, -10, "write-off")
        assert movement.resulting_quantity == 0
        assert inventory_service.status_of(stocked_variant)["status"] == "out_of_stock"

        with pytest.raises(InsufficientStock):
            inventory_service.adjust(stocked_variant, -1, "below zero")

    def test_zero_delta_rejected(self, db_session, clock, variant):
        with pytest.raises(ValidationError):
            inventory_service.adjust(variant, 0)

    def test_sign_must_match_movement_type(self, db_session, clock, variant):
        with pytest.raises(ValidationError):
            inventory_service.adjust(variant, -1, movement_type="inbound")
        with pytest.raises(ValidationError):
            inventory_service.adjust(variant, 1, movement_type="return_out")

    def test_unknown_variant(self, db_session, clock, product):
        with pytest.raises(UnknownVariant):
            inventory_service.adjust(VariantKey.of(product.id, "white", "XL"), 1)

    def test_options_default_when_missing(self, db_session, clock, product):
        catalog_service.register_variant(product.id)
        inventory_service.receive_stock((product.id, None, " "), 4)
        assert stock_of(VariantKey.of(product.id)) == 4

    def test_catalog_reads(self, db_session, clock, product, stocked_variant):
        catalog_service.register_variant(product.id, "white", "S")
        assert catalog_service.base_price_of(stocked_variant) == 10000
        assert catalog_service.options_of(product.id) == [
            {"color": "black", "size": "M", "quantity_on_hand": 10},
            {"color": "white", "size": "S", "quantity_on_hand": 0},
        ]
        with pytest.raises(UnknownVariant):
            catalog_service.base_price_of(VariantKey.of(product.id, "white", "XL"))

    def test_movement_records_reference(self, db_session, clock, variant):
        movement = inventory_service.adjust(
            variant, 3, "sample back", "sample", 77, movement_type="return_in"
        )
        assert movement.reference_type == "sample"
        assert movement.reference_id == 77
        assert movement.stock_record_id is not None

    def test_uncommitted_movement_is_rolled_back(self, db_session, clock, variant):
        inventory_service.adjust(variant, 5, commit=False)
        db_session.rollback()
        assert stock_of(variant) == 0
        assert db_session.query(StockMovement).count() == 0


class TestAdjustMany:
    def test_partial_application_with_itemized_results(self, db_session, clock, product, stocked_variant):
        other = VariantKey.of(product.id, "white", "S")
        catalog_service.register_variant(*other)

        results = inventory_service.adjust_many([
            AdjustRequest(key=stocked_variant, delta=-4),
            AdjustRequest(key=other, delta=-1),
            {"product_id": product.id, "color": "red", "size": "L", "delta": 2},
            {"product_id": product.id, "color": "white", "size": "S", "delta": 6, "movement_type": "inbound"},
            {"color": "white"},
        ])

        assert [r.ok for r in results] == [True, False, False, True, False]
        assert [r.key for r in results] == [0, 1, 2, 3, 4]
        assert results[1].to_dict()["code"] == "INSUFFICIENT_STOCK"
        assert results[2].to_dict()["code"] == "UNKNOWN_VARIANT"
        assert "product_id" in results[4].message

        assert stock_of(stocked_variant) == 6
        assert stock_of(other) == 6


class TestReads:
    def test_history_is_most_recent_first_and_paginated(self, db_session, clock, variant):
        for delta in (1, 2, 3, 4):
            inventory_service.receive_stock(variant, delta)

        history = inventory_service.history_of(variant, limit=2)
        assert [m.delta for m in history] == [4, 3]
        older = inventory_service.history_of(variant, limit=2, offset=2)
        assert [m.delta for m in older] == [2, 1]

    @pytest.mark.parametrize("quantity,status", [(0, "out_of_stock"), (1, "low"), (10, "low"), (11, "normal")])
    def test_status_thresholds(self, db_session, clock, variant, quantity, status):
        if quantity:
            inventory_service.receive_stock(variant, quantity)
        assert inventory_service.status_of(variant) == {
            **variant.to_dict(),
            "quantity_on_hand": quantity,
            "status": status,
        }

    def test_availability_subtracts_open_orders(self, db_session, clock, owner, stocked_variant):
        order = order_service.place_order(user_id=owner.id, lines=[line(stocked_variant, 4, 10000)])
        assert inventory_service.availability_of(stocked_variant) == {
            **stocked_variant.to_dict(),
            "stock": 10,
            "reserved": 4,
            "available": 6,
        }

        order_service.set_order_status(order.id, "cancelled")
        assert inventory_service.availability_of(stocked_variant)["reserved"] == 0


class TestSyncCheck:
    def test_clean_ledger(self, db_session, clock, stocked_variant):
        inventory_service.adjust(stocked_variant, -3)
        assert inventory_service.sync_check() == []

    def test_reports_projection_drift(self, db_session, clock, stocked_variant):
        db_session.query(StockRecord).update({StockRecord.quantity_on_hand: 42})
        db_session.commit()

        mismatches = inventory_service.sync_check()
        assert len(mismatches) == 1
        assert mismatches[0]["quantity_on_hand"] == 42
        assert mismatches[0]["ledger_sum"] == 10
        assert mismatches[0]["last_resulting_quantity"] == 10
