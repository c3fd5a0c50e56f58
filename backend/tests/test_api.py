"""API tests for the stock, availability, reservation, sale and commission routes."""

from decimal import Decimal

import pytest

from app.services.commission_service import CommissionCalculator
from app.services.sale_settlement_service import SaleLineInput, SaleSettlementService

API = "/api/v1"


class TestHealthCheck:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "healthy"


class TestStockRoutes:
    def test_list_and_level(self, client, stocked):
        location_id = stocked["location"].id
        response = client.get(f"{API}/stock/{location_id}")
        assert response.status_code == 200
        assert len(response.json()) == 3

        response = client.get(f"{API}/stock/{location_id}/{stocked['mirror'].id}")
        data = response.json()
        assert data["quantity"] == 3
        assert data["reserved"] == 0
        assert data["available"] == 3
        assert data["status"] == "low-stock"

    def test_adjust(self, client, stocked):
        payload = {
            "item_id": stocked["cream"].id,
            "location_id": stocked["location"].id,
            "delta": 5,
            "reason": "restock",
        }
        response = client.post(f"{API}/stock/adjust", json=payload)
        assert response.status_code == 200
        assert response.json()["quantity"] == 25

    def test_adjust_overdraw_conflict(self, client, stocked):
        payload = {"item_id": stocked["mirror"].id, "location_id": stocked["location"].id, "delta": -4}
        response = client.post(f"{API}/stock/adjust", json=payload)
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "insufficient_stock"
        assert body["available"] == 3
        assert body["requested"] == 4

    def test_adjust_rejects_sale_reason(self, client, stocked):
        payload = {
            "item_id": stocked["mirror"].id,
            "location_id": stocked["location"].id,
            "delta": -1,
            "reason": "sale",
        }
        assert client.post(f"{API}/stock/adjust", json=payload).status_code == 400

    def test_set_and_movements(self, client, stocked):
        item_id, location_id = stocked["lipstick"].id, stocked["location"].id
        response = client.put(
            f"{API}/stock/set",
            json={"item_id": item_id, "location_id": location_id, "quantity": 2, "notes": "Count"},
        )
        assert response.status_code == 200
        assert response.json()["quantity"] == 2

        movements = client.get(f"{API}/stock/{location_id}/{item_id}/movements").json()
        assert movements[0]["reason"] == "count"
        assert movements[0]["qty_delta"] == -8

    def test_set_negative_is_validation_error(self, client, stocked):
        response = client.put(
            f"{API}/stock/set",
            json={"item_id": stocked["lipstick"].id, "location_id": stocked["location"].id, "quantity": -1},
        )
        assert response.status_code == 422

    def test_adjust_unknown_item_not_found(self, client, stocked):
        payload = {"item_id": 9999, "location_id": stocked["location"].id, "delta": 5, "reason": "restock"}
        response = client.post(f"{API}/stock/adjust", json=payload)
        assert response.status_code == 404
        assert response.json()["error"] == "item_not_found"

    def test_set_unknown_location_not_found(self, client, stocked):
        response = client.put(
            f"{API}/stock/set",
            json={"item_id": stocked["lipstick"].id, "location_id": 9999, "quantity": 4},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "location_not_found"


class TestAvailabilityRoutes:
    def test_combo_availability(self, client, stocked):
        response = client.get(
            f"{API}/availability/{stocked['location'].id}/items/{stocked['gift_set'].id}"
        )
        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "combo"
        assert data["available"] == 3
        assert data["status"] == "low-stock"
        assert len(data["components"]) == 2

    def test_simple_availability(self, client, stocked):
        response = client.get(
            f"{API}/availability/{stocked['location'].id}/items/{stocked['cream'].id}"
        )
        data = response.json()
        assert data["kind"] == "simple"
        assert data["available"] == 20
        assert data["status"] == "in-stock"

    def test_unknown_item(self, client, stocked):
        response = client.get(f"{API}/availability/{stocked['location'].id}/items/999")
        assert response.status_code == 404
        assert response.json()["error"] == "item_not_found"

    def test_unknown_location(self, client, stocked):
        response = client.get(f"{API}/availability/9999/items/{stocked['cream'].id}")
        assert response.status_code == 404
        assert response.json()["error"] == "location_not_found"

        response = client.post(
            f"{API}/availability/9999/cart",
            json={"lines": [{"item_id": stocked["cream"].id, "quantity": 1}]},
        )
        assert response.status_code == 404

    def test_cart_validation(self, client, stocked):
        response = client.post(
            f"{API}/availability/{stocked['location'].id}/cart",
            json={"lines": [
                {"item_id": stocked["cream"].id, "quantity": 1},
                {"item_id": stocked["mirror"].id, "quantity": 5},
            ]},
        )
        data = response.json()
        assert data["valid"] is False
        assert data["issues"][0]["item_id"] == stocked["mirror"].id
        assert data["issues"][0]["available"] == 3


class TestReservationRoutes:
    def _create(self, client, stocked, quantity=4):
        return client.post(
            f"{API}/reservations/",
            json={
                "client_id": 11,
                "item_id": stocked["lipstick"].id,
                "location_id": stocked["location"].id,
                "quantity": quantity,
            },
        )

    def test_create_and_complete(self, client, stocked):
        response = self._create(client, stocked)
        assert response.status_code == 201
        reservation = response.json()
        assert reservation["status"] == "pending"

        level = client.get(f"{API}/stock/{stocked['location'].id}/{stocked['lipstick'].id}").json()
        assert level["quantity"] == 10
        assert level["reserved"] == 4
        assert level["available"] == 6

        response = client.post(f"{API}/reservations/{reservation['id']}/complete")
        assert response.status_code == 200
        sale = response.json()["sale"]
        assert Decimal(sale["total_amount"]) == Decimal("40.00")

        level = client.get(f"{API}/stock/{stocked['location'].id}/{stocked['lipstick'].id}").json()
        assert level["quantity"] == 6
        assert level["reserved"] == 0

        again = client.post(f"{API}/reservations/{reservation['id']}/complete")
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_transition"

    def test_overcommit_conflict(self, client, stocked):
        assert self._create(client, stocked, quantity=8).status_code == 201
        response = self._create(client, stocked, quantity=3)
        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_availability"
        assert response.json()["available"] == 2

    def test_combo_reservation_rejected(self, client, stocked):
        response = client.post(
            f"{API}/reservations/",
            json={
                "client_id": 1,
                "item_id": stocked["gift_set"].id,
                "location_id": stocked["location"].id,
                "quantity": 1,
            },
        )
        assert response.status_code == 400

    def test_cancel_and_list(self, client, stocked):
        reservation = self._create(client, stocked, quantity=1).json()
        response = client.post(f"{API}/reservations/{reservation['id']}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        cancelled = client.get(f"{API}/reservations/", params={"status": "cancelled"}).json()
        assert [r["id"] for r in cancelled] == [reservation["id"]]

    def test_unknown_reservation(self, client, stocked):
        assert client.get(f"{API}/reservations/777").status_code == 404


class TestSaleRoutes:
    def test_settle_get_and_undo(self, client, stocked, sellers):
        response = client.post(
            f"{API}/sales/",
            json={
                "location_id": stocked["location"].id,
                "lines": [
                    {"item_id": stocked["gift_set"].id, "quantity": 1, "unit_price": "22.00"},
                    {"item_id": stocked["cream"].id, "quantity": 2, "unit_price": "7.25"},
                ],
                "payment_method": "card",
            },
        )
        assert response.status_code == 201
        body = response.json()
        sale_id = body["sale"]["id"]
        assert Decimal(body["sale"]["total_amount"]) == Decimal("36.50")
        assert len(body["commissions"]) == 2
        assert body["commission_error"] is None

        assert client.get(f"{API}/sales/{sale_id}").status_code == 200
        assert len(client.get(f"{API}/sales/").json()) == 1

        assert client.delete(f"{API}/sales/{sale_id}").status_code == 204
        assert client.get(f"{API}/sales/{sale_id}").status_code == 404
        level = client.get(f"{API}/stock/{stocked['location'].id}/{stocked['mirror'].id}").json()
        assert level["quantity"] == 3

    def test_partial_cart_conflict(self, client, stocked):
        response = client.post(
            f"{API}/sales/",
            json={
                "location_id": stocked["location"].id,
                "lines": [
                    {"item_id": stocked["cream"].id, "quantity": 1, "unit_price": "7.25"},
                    {"item_id": stocked["mirror"].id, "quantity": 10, "unit_price": "4.50"},
                ],
            },
        )
        assert response.status_code == 409
        assert response.json()["item_id"] == stocked["mirror"].id
        level = client.get(f"{API}/stock/{stocked['location'].id}/{stocked['cream'].id}").json()
        assert level["quantity"] == 20

    def test_empty_cart_is_validation_error(self, client, stocked):
        response = client.post(f"{API}/sales/", json={"location_id": stocked["location"].id, "lines": []})
        assert response.status_code == 422

    def test_unknown_location_not_found(self, client, stocked):
        response = client.post(
            f"{API}/sales/",
            json={
                "location_id": 9999,
                "lines": [{"item_id": stocked["cream"].id, "quantity": 1, "unit_price": "7.25"}],
            },
        )
        assert response.status_code == 404
        assert response.json()["error"] == "location_not_found"
        assert client.get(f"{API}/sales/").json() == []

    def test_undo_with_paid_commission_conflict(self, client, stocked, sellers):
        body = client.post(
            f"{API}/sales/",
            json={
                "location_id": stocked["location"].id,
                "lines": [{"item_id": stocked["cream"].id, "quantity": 1, "unit_price": "7.25"}],
            },
        ).json()
        commission_id = body["commissions"][0]["id"]
        assert client.post(f"{API}/commissions/{commission_id}/pay").status_code == 200

        response = client.delete(f"{API}/sales/{body['sale']['id']}")
        assert response.status_code == 409
        assert response.json()["error"] == "paid_commissions_exist"


class TestCommissionRoutes:
    @pytest.fixture
    def sale(self, client, stocked, sellers):
        return client.post(
            f"{API}/sales/",
            json={
                "location_id": stocked["location"].id,
                "lines": [{"item_id": stocked["lipstick"].id, "quantity": 3, "unit_price": "10"}],
            },
        ).json()

    def test_list_and_pay_all(self, client, stocked, sale):
        location_id = stocked["location"].id
        unpaid = client.get(f"{API}/commissions/", params={"paid": False}).json()
        assert len(unpaid) == 2

        total = client.get(f"{API}/commissions/unpaid-total/{location_id}").json()
        assert Decimal(total["unpaid_total"]) == Decimal("3.75")

        response = client.post(f"{API}/commissions/pay-all", json={"location_id": location_id})
        assert response.json()["paid_count"] == 2
        assert client.get(f"{API}/commissions/", params={"paid": False}).json() == []

    def test_delete_paid_conflict(self, client, sale):
        commission_id = sale["commissions"][0]["id"]
        client.post(f"{API}/commissions/{commission_id}/pay")
        assert client.delete(f"{API}/commissions/{commission_id}").status_code == 409

        other_id = sale["commissions"][1]["id"]
        assert client.delete(f"{API}/commissions/{other_id}").status_code == 204

    def test_recalculate(self, client, sale):
        response = client.post(f"{API}/commissions/recalculate/{sale['sale']['id']}")
        assert response.status_code == 200
        assert response.json() == []

    def test_recalculate_backfills_missing_commissions(self, client, stocked, sellers, db_session, locks):
        class Unavailable(CommissionCalculator):
            def compute_and_persist(self, sale):
                raise RuntimeError("rates table unavailable")

        result = SaleSettlementService(
            db_session, locks, commission_calculator=Unavailable(db_session)
        ).settle(stocked["location"].id, [SaleLineInput(stocked["cream"].id, 2, Decimal("7.25"))])
        assert client.get(f"{API}/commissions/").json() == []

        response = client.post(f"{API}/commissions/recalculate/{result.sale.id}")
        assert response.status_code == 200
        created = response.json()
        assert {c["seller_id"] for c in created} == {sellers["ana"].id, sellers["bo"].id}
        assert all(c["sale_id"] == result.sale.id for c in created)
        assert len(client.get(f"{API}/commissions/", params={"paid": False}).json()) == 2

    def test_unknown_commission(self, client):
        assert client.post(f"{API}/commissions/999/pay").status_code == 404
