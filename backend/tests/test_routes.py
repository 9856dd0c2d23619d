# Overview: HTTP-level tests for the settlement API (status codes, payload shapes, error codes).

"""
Route Tests

Each request runs in its own app context and therefore its own session;
assertions on ledger state re-read through stock_of / expire_all.
"""

from datetime import datetime

from conftest import line, stock_of
from settlement.services import mileage_service, order_service, return_statement_service


class TestSystemRoutes:
    def test_health(self, client, db_session, clock):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["calendar"]["status"] == "healthy"

    def test_health_degraded_without_lunar_table(self, client, db_session, clock):
        clock.set(datetime(2031, 6, 1, 0, 0))
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "degraded"
        assert "2031" in body["checks"]["calendar"]["warning"]

    def test_working_date(self, client, db_session):
        response = client.get("/api/system/working-date?at=2025-03-14T06:00:00Z")
        assert response.status_code == 200
        body = response.get_json()
        assert body["working_date"] == "2025-03-17"
        assert body["window"]["start"] == "2025-03-14T15:00:00+09:00"

    def test_working_date_rejects_garbage(self, client, db_session):
        assert client.get("/api/system/working-date?at=yesterday").status_code == 400


class TestInventoryRoutes:
    def test_adjust(self, client, db_session, clock, stocked_variant):
        response = client.post("/api/inventory/adjust", json={
            "product_id": stocked_variant.product_id,
            "color": "black",
            "size": "M",
            "delta": -4,
            "reason": "damaged in transit",
        })
        assert response.status_code == 201
        body = response.get_json()
        assert body["movement"]["resulting_quantity"] == 6
        assert body["status"]["status"] == "low"
        assert stock_of(stocked_variant) == 6

    def test_adjust_insufficient_stock(self, client, db_session, clock, stocked_variant):
        response = client.post("/api/inventory/adjust", json={
            "product_id": stocked_variant.product_id,
            "color": "black",
            "size": "M",
            "delta": -11,
        })
        assert response.status_code == 409
        assert response.get_json()["code"] == "INSUFFICIENT_STOCK"
        assert stock_of(stocked_variant) == 10

    def test_adjust_validation(self, client, db_session, clock, stocked_variant):
        for body in (
            {"product_id": stocked_variant.product_id, "delta": 0},
            {"product_id": stocked_variant.product_id, "delta": "1.5"},
            {"delta": 3},
            {"product_id": stocked_variant.product_id, "delta": 1, "quantity_on_hand": 99},
        ):
            assert client.post("/api/inventory/adjust", json=body).status_code == 400

    def test_unknown_variant_is_404(self, client, db_session, clock, product):
        response = client.post("/api/inventory/adjust", json={"product_id": product.id, "color": "pink", "delta": 1})
        assert response.status_code == 404
        assert response.get_json()["code"] == "UNKNOWN_VARIANT"

    def test_adjust_many(self, client, db_session, clock, stocked_variant):
        response = client.post("/api/inventory/adjust-many", json={"requests": [
            {"product_id": stocked_variant.product_id, "color": "black", "size": "M", "delta": -2},
            {"product_id": stocked_variant.product_id, "color": "black", "size": "M", "delta": -20},
        ]})
        assert response.status_code == 200
        body = response.get_json()
        assert (body["succeeded"], body["failed"]) == (1, 1)
        assert stock_of(stocked_variant) == 8

    def test_status_and_history(self, client, db_session, clock, stocked_variant):
        pid = stocked_variant.product_id
        status = client.get(f"/api/inventory/{pid}/status?color=black&size=M").get_json()
        assert status["quantity_on_hand"] == 10

        history = client.get(f"/api/inventory/{pid}/history?color=black&size=M").get_json()
        assert [m["delta"] for m in history["movements"]] == [10]

        assert client.get(f"/api/inventory/{pid}/status?color=pink").status_code == 404

    def test_sync_check(self, client, db_session, clock, stocked_variant):
        assert client.get("/api/inventory/sync-check").get_json() == {"in_sync": True, "mismatches": []}


class TestStatementRoutes:
    def test_create_with_legacy_quantity_alias_and_process(self, client, db_session, clock, company, owner, stocked_variant):
        raw = line(stocked_variant, 0, 10000)
        raw.pop("quantity")
        raw["return_quantity"] = 3

        created = client.post("/api/return-statements", json={"company_id": company.id, "lines": [raw]})
        assert created.status_code == 201
        statement = created.get_json()["statement"]
        assert statement["lines"][0]["quantity"] == 3
        assert statement["total_amount"] == 33000
        assert statement["statement_number"] == "RS-20250312-0001"

        processed = client.post(f"/api/return-statements/{statement['id']}/process")
        assert processed.status_code == 200
        assert processed.get_json()["statement"]["status"] == "refunded"

        again = client.post(f"/api/return-statements/{statement['id']}/process")
        assert again.status_code == 409
        assert again.get_json()["code"] == "STATEMENT_ALREADY_PROCESSED"

        db_session.expire_all()
        assert stock_of(stocked_variant) == 13
        assert mileage_service.balance_of(owner.id) == 33000

    def test_create_rejects_unknown_fields_and_bad_lines(self, client, db_session, clock, company, variant):
        assert client.post("/api/return-statements", json={
            "company_id": company.id, "lines": [line(variant, 1, 100)], "status": "refunded",
        }).status_code == 400
        assert client.post("/api/return-statements", json={"company_id": company.id, "lines": []}).status_code == 400
        assert client.post("/api/return-statements", json={"company_id": company.id}).status_code == 400

    def test_reject_requires_reason(self, client, db_session, clock, company, variant):
        statement = return_statement_service.create_return_statement(
            company_id=company.id, lines=[line(variant, 1, 100)]
        )
        assert client.post(f"/api/return-statements/{statement.id}/reject", json={}).status_code == 400

        rejected = client.post(f"/api/return-statements/{statement.id}/reject", json={"reason": "not ours"})
        assert rejected.get_json()["statement"]["status"] == "rejected"

        blocked = client.post(f"/api/return-statements/{statement.id}/process")
        assert blocked.status_code == 409
        assert blocked.get_json()["code"] == "INVALID_TRANSITION"

    def test_batch_process(self, client, db_session, clock, company, owner, stocked_variant):
        good = return_statement_service.create_return_statement(
            company_id=company.id, lines=[line(stocked_variant, 1, 10000)]
        )
        bad = return_statement_service.create_return_statement(
            company_id=company.id,
            lines=[{"product_name": "Ghost Item", "quantity": 1, "unit_price": 100}],
        )

        response = client.patch("/api/return-statements/process", json={"statement_ids": [good.id, bad.id]})
        assert response.status_code == 200
        body = response.get_json()
        assert body["processed_count"] == 1
        assert body["failed_count"] == 1
        assert body["total_mileage_moved"] == 11000
        assert body["errors"][0]["statement_id"] == bad.id

        assert client.patch("/api/return-statements/process", json={"statement_ids": []}).status_code == 400

    def test_deduction_flow(self, client, db_session, clock, company, owner, stocked_variant):
        mileage_service.credit(owner.id, 20000)
        created = client.post("/api/deduction-statements", json={
            "company_id": company.id,
            "reason_code": "damaged",
            "lines": [line(stocked_variant, 2, 5000)],
        })
        assert created.status_code == 201
        statement_id = created.get_json()["statement"]["id"]

        processed = client.post(f"/api/deduction-statements/{statement_id}/process")
        assert processed.status_code == 200
        assert processed.get_json()["statement"]["status"] == "completed"

        cancelled = client.post(f"/api/deduction-statements/{statement_id}/cancel", json={"reason": "recount"})
        assert cancelled.get_json()["statement"]["status"] == "cancelled"

        db_session.expire_all()
        assert stock_of(stocked_variant) == 10
        assert mileage_service.balance_of(owner.id) == 20000

    def test_missing_statement_is_404(self, client, db_session):
        response = client.get("/api/deduction-statements/4040")
        assert response.status_code == 404
        assert response.get_json()["code"] == "STATEMENT_NOT_FOUND"


class TestOrderRoutes:
    def test_list_by_working_date(self, client, db_session, clock, owner, variant):
        order_service.place_order(
            user_id=owner.id, lines=[line(variant, 1, 100)], created_at=datetime(2025, 3, 14, 8, 0)
        )

        friday = client.get("/api/orders?working_date=2025-03-14").get_json()
        assert friday["orders"] == []

        monday = client.get("/api/orders?working_date=2025-03-17").get_json()
        assert monday["window"]["start"] == "2025-03-14T15:00:00+09:00"
        assert [o["working_date"] for o in monday["orders"]] == ["2025-03-17"]

        assert client.get("/api/orders?working_date=14-03-2025").status_code == 400

    def test_edit_after_cutoff_is_rejected(self, client, db_session, clock, owner, variant):
        created = client.post("/api/orders", json={"user_id": owner.id, "lines": [line(variant, 1, 100)]})
        assert created.status_code == 201
        order = created.get_json()["order"]
        assert order["editable"] is True

        clock.set(datetime(2025, 3, 12, 6, 0))
        response = client.patch(f"/api/orders/{order['id']}", json={"lines": [line(variant, 2, 100)]})
        assert response.status_code == 409
        assert response.get_json()["code"] == "ORDER_NOT_EDITABLE"


class TestMileageRoutes:
    def test_credit_then_overdraw(self, client, db_session, clock, owner):
        credited = client.post(f"/api/mileage/{owner.id}/credit", json={"amount": 1000, "description": "welcome"})
        assert credited.status_code == 201
        assert credited.get_json()["balance"] == 1000

        overdraw = client.post(f"/api/mileage/{owner.id}/debit", json={"amount": 1500})
        assert overdraw.status_code == 409
        assert overdraw.get_json()["code"] == "INSUFFICIENT_MILEAGE"

        summary = client.get(f"/api/mileage/{owner.id}").get_json()
        assert summary["balance"] == 1000
        assert summary["display_name"] == "Kim Hanbit"
        assert len(summary["entries"]) == 1

    def test_unknown_user_is_404(self, client, db_session):
        response = client.get("/api/mileage/999999")
        assert response.status_code == 404
        assert response.get_json()["code"] == "ACCOUNT_NOT_FOUND"
