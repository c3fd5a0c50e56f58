"""Tests for client reservations (stock holds)."""

from decimal import Decimal

import pytest

from app.models.reservations import ReservationStatus
from app.models.sale import Sale
from app.services.errors import (
    InsufficientAvailabilityError,
    InsufficientStockError,
    InvalidTransitionError,
    ItemNotFoundError,
    LocationNotFoundError,
    ReservationNotFoundError,
)
from app.services.reservation_service import ReservationService
from app.services.sale_settlement_service import SaleLineInput, SaleSettlementService


@pytest.fixture
def reservations(db_session, stocked, locks):
    return ReservationService(db_session, locks)


class TestCreate:
    def test_hold_does_not_touch_ledger(self, reservations, stocked):
        item_id, location_id = stocked["lipstick"].id, stocked["location"].id
        reservation = reservations.create(client_id=7, item_id=item_id, location_id=location_id, quantity=4)

        assert reservation.status == ReservationStatus.PENDING.value
        assert reservation.sale_id is None
        assert stocked["ledger"].get_quantity(item_id, location_id) == 10
        assert reservations.available_for(item_id, location_id) == 6

    def test_holds_cannot_exceed_on_hand(self, reservations, stocked):
        item_id, location_id = stocked["lipstick"].id, stocked["location"].id
        reservations.create(client_id=1, item_id=item_id, location_id=location_id, quantity=6)

        with pytest.raises(InsufficientAvailabilityError) as exc_info:
            reservations.create(client_id=2, item_id=item_id, location_id=location_id, quantity=5)
        assert exc_info.value.available == 4
        assert exc_info.value.requested == 5

        reservations.create(client_id=2, item_id=item_id, location_id=location_id, quantity=4)
        assert reservations.open_reserved_quantity(item_id, location_id) == 10
        assert reservations.available_for(item_id, location_id) == 0

    def test_rejects_non_positive_quantity(self, reservations, stocked):
        with pytest.raises(ValueError):
            reservations.create(
                client_id=1, item_id=stocked["cream"].id,
                location_id=stocked["location"].id, quantity=0,
            )

    def test_rejects_combo(self, reservations, stocked):
        with pytest.raises(ValueError):
            reservations.create(
                client_id=1, item_id=stocked["gift_set"].id,
                location_id=stocked["location"].id, quantity=1,
            )

    def test_unknown_item(self, reservations, stocked):
        with pytest.raises(ItemNotFoundError):
            reservations.create(client_id=1, item_id=9999, location_id=stocked["location"].id, quantity=1)

    def test_unknown_location(self, reservations, stocked):
        with pytest.raises(LocationNotFoundError):
            reservations.create(client_id=1, item_id=stocked["cream"].id, location_id=9999, quantity=1)

    def test_notes_are_kept(self, reservations, stocked):
        reservation = reservations.create(
            client_id=3, item_id=stocked["cream"].id, location_id=stocked["location"].id,
            quantity=1, notes="Pick up Friday",
        )
        assert reservations.get(reservation.id).notes == "Pick up Friday"


class TestCancel:
    def test_cancel_releases_hold(self, reservations, stocked):
        item_id, location_id = stocked["mirror"].id, stocked["location"].id
        reservation = reservations.create(client_id=1, item_id=item_id, location_id=location_id, quantity=3)
        assert reservations.available_for(item_id, location_id) == 0

        cancelled = reservations.cancel(reservation.id)
        assert cancelled.status == ReservationStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        assert reservations.available_for(item_id, location_id) == 3
        assert stocked["ledger"].get_quantity(item_id, location_id) == 3

    def test_second_cancel_is_invalid(self, reservations, stocked):
        reservation = reservations.create(
            client_id=1, item_id=stocked["mirror"].id, location_id=stocked["location"].id, quantity=1
        )
        reservations.cancel(reservation.id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            reservations.cancel(reservation.id)
        assert exc_info.value.current == ReservationStatus.CANCELLED.value

    def test_unknown_reservation(self, reservations):
        with pytest.raises(ReservationNotFoundError):
            reservations.cancel(12345)


class TestComplete:
    def test_hold_then_complete(self, reservations, stocked, db_session):
        """Stock 10, hold 4 -> complete -> stock 6 and one sale of 4 at the USD price."""
        item_id, location_id = stocked["lipstick"].id, stocked["location"].id
        reservation = reservations.create(client_id=5, item_id=item_id, location_id=location_id, quantity=4)

        result = reservations.complete(reservation.id)

        assert stocked["ledger"].get_quantity(item_id, location_id) == 6
        assert reservations.available_for(item_id, location_id) == 6

        completed = reservations.get(reservation.id)
        assert completed.status == ReservationStatus.COMPLETED.value
        assert completed.sale_id == result.sale.id
        assert completed.completed_at is not None

        sale = db_session.get(Sale, result.sale.id)
        assert len(sale.lines) == 1
        assert sale.lines[0].quantity == 4
        assert sale.lines[0].unit_price == Decimal("10.00")
        assert sale.total_amount == Decimal("40.00")
        assert sale.currency == "USD"

    def test_complete_in_local_currency(self, reservations, stocked):
        reservation = reservations.create(
            client_id=5, item_id=stocked["mirror"].id, location_id=stocked["location"].id, quantity=2
        )
        result = reservations.complete(reservation.id, currency="eur", exchange_rate=Decimal("36.5"))

        assert result.sale.currency == "EUR"
        assert result.sale.exchange_rate == Decimal("36.5")
        assert result.sale.total_amount == Decimal("328.50")

    def test_complete_without_price_requires_unit_price(self, reservations, stocked):
        reservation = reservations.create(
            client_id=5, item_id=stocked["cream"].id, location_id=stocked["location"].id, quantity=1
        )
        with pytest.raises(ValueError):
            reservations.complete(reservation.id, currency="EUR")

        result = reservations.complete(reservation.id, currency="EUR", unit_price=Decimal("250"))
        assert result.sale.total_amount == Decimal("250.00")

    def test_double_complete_decrements_once(self, reservations, stocked):
        item_id, location_id = stocked["lipstick"].id, stocked["location"].id
        reservation = reservations.create(client_id=1, item_id=item_id, location_id=location_id, quantity=2)
        reservations.complete(reservation.id)

        with pytest.raises(InvalidTransitionError):
            reservations.complete(reservation.id)
        with pytest.raises(InvalidTransitionError):
            reservations.cancel(reservation.id)
        assert stocked["ledger"].get_quantity(item_id, location_id) == 8

    def test_complete_after_stock_depleted_stays_pending(self, reservations, stocked, db_session, locks):
        """Hold 2, direct sale takes all 3, completion fails and the hold remains pending."""
        item_id, location_id = stocked["mirror"].id, stocked["location"].id
        reservation = reservations.create(client_id=1, item_id=item_id, location_id=location_id, quantity=2)

        SaleSettlementService(db_session, locks).settle(
            location_id, [SaleLineInput(item_id, 3, Decimal("4.50"))]
        )
        assert stocked["ledger"].get_quantity(item_id, location_id) == 0
        assert reservations.available_for(item_id, location_id) == -2

        with pytest.raises(InsufficientStockError):
            reservations.complete(reservation.id)

        assert reservations.get(reservation.id).status == ReservationStatus.PENDING.value
        assert stocked["ledger"].get_quantity(item_id, location_id) == 0

        # Retry after restock succeeds
        stocked["ledger"].restock(item_id, location_id, 2)
        reservations.complete(reservation.id)
        assert reservations.get(reservation.id).status == ReservationStatus.COMPLETED.value
        assert stocked["ledger"].get_quantity(item_id, location_id) == 0


class TestList:
    def test_filters(self, reservations, stocked):
        location_id = stocked["location"].id
        first = reservations.create(client_id=1, item_id=stocked["cream"].id, location_id=location_id, quantity=1)
        reservations.create(client_id=2, item_id=stocked["cream"].id, location_id=location_id, quantity=1)
        reservations.cancel(first.id)

        assert len(reservations.list(location_id=location_id)) == 2
        pending = reservations.list(status=ReservationStatus.PENDING)
        assert [r.client_id for r in pending] == [2]
        assert [r.id for r in reservations.list(client_id=1)] == [first.id]
