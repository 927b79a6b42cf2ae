"""
Inventory ledger tests.

Covers all-or-nothing reservation, idempotent release and stock
conservation across reserve / release / restock.
"""

import pytest

from fulfillment.extensions import db
from fulfillment.errors import ValidationError, NotFoundError, InsufficientStockError, ConflictError
from fulfillment.models import Product, StockReservation
from fulfillment.services import inventory_service
from fulfillment.services.inventory_service import (
    RESERVATION_HELD,
    RESERVATION_COMMITTED,
    RESERVATION_RELEASED,
)


class TestReserve:
    def test_reserve_decrements_every_product(self, make_product):
        a = make_product(stock=10)
        b = make_product(stock=4)

        reservation = inventory_service.reserve([
            {"product_id": a, "quantity": 3},
            {"product_id": b, "quantity": 4},
        ])

        assert reservation.status == RESERVATION_HELD
        assert inventory_service.get_stock(a) == 7
        assert inventory_service.get_stock(b) == 0
        assert sorted((l.product_id, l.quantity) for l in reservation.lines) == [(a, 3), (b, 4)]

    def test_duplicate_lines_are_merged(self, make_product):
        a = make_product(stock=5)

        reservation = inventory_service.reserve([
            {"product_id": a, "quantity": 2},
            {"product_id": a, "quantity": 2},
        ])

        assert inventory_service.get_stock(a) == 1
        assert [(l.product_id, l.quantity) for l in reservation.lines] == [(a, 4)]

    def test_duplicate_lines_checked_against_combined_quantity(self, make_product):
        a = make_product(stock=3)

        with pytest.raises(InsufficientStockError):
            inventory_service.reserve([
                {"product_id": a, "quantity": 2},
                {"product_id": a, "quantity": 2},
            ])

        assert inventory_service.get_stock(a) == 3

    def test_insufficient_stock_reserves_nothing(self, make_product):
        a = make_product(stock=10)
        b = make_product(stock=1, name="Cardamom")

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.reserve([
                {"product_id": a, "quantity": 2},
                {"product_id": b, "quantity": 2},
            ])

        err = exc_info.value
        assert err.product_id == b
        assert err.requested == 2
        assert err.available == 1
        assert "Cardamom" in err.message
        assert inventory_service.get_stock(a) == 10
        assert inventory_service.get_stock(b) == 1
        assert db.session.query(StockReservation).count() == 0

    def test_unknown_product_reserves_nothing(self, make_product):
        a = make_product(stock=10)

        with pytest.raises(NotFoundError):
            inventory_service.reserve([
                {"product_id": a, "quantity": 1},
                {"product_id": 9999, "quantity": 1},
            ])

        assert inventory_service.get_stock(a) == 10

    def test_inactive_product_is_not_found(self, make_product):
        a = make_product(stock=10, is_active=False)

        with pytest.raises(NotFoundError):
            inventory_service.reserve([{"product_id": a, "quantity": 1}])

        assert inventory_service.get_stock(a) == 10

    def test_exact_stock_can_be_reserved(self, make_product):
        a = make_product(stock=2)

        inventory_service.reserve([{"product_id": a, "quantity": 2}])

        assert inventory_service.get_stock(a) == 0

    def test_empty_item_list_rejected(self, db_session):
        with pytest.raises(ValidationError):
            inventory_service.reserve([])


class TestRelease:
    def test_release_restores_stock(self, make_product):
        a = make_product(stock=10)
        reservation = inventory_service.reserve([{"product_id": a, "quantity": 6}])

        assert inventory_service.release(reservation.id) is True

        assert inventory_service.get_stock(a) == 10
        released = db.session.get(StockReservation, reservation.id, populate_existing=True)
        assert released.status == RESERVATION_RELEASED
        assert released.released_at is not None

    def test_double_release_credits_once(self, make_product):
        a = make_product(stock=10)
        reservation = inventory_service.reserve([{"product_id": a, "quantity": 6}])

        assert inventory_service.release(reservation.id) is True
        assert inventory_service.release(reservation.id) is False

        assert inventory_service.get_stock(a) == 10

    def test_release_unknown_reservation(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.release(12345)

    def test_committed_reservation_cannot_be_released(self, make_product):
        a = make_product(stock=10)
        reservation = inventory_service.reserve([{"product_id": a, "quantity": 3}])
        assert inventory_service.commit_reservation_locked(reservation.id) is True
        db.session.commit()

        with pytest.raises(ConflictError):
            inventory_service.release(reservation.id)

        assert inventory_service.get_stock(a) == 7
        committed = db.session.get(StockReservation, reservation.id, populate_existing=True)
        assert committed.status == RESERVATION_COMMITTED

    def test_commit_after_release_is_refused(self, make_product):
        a = make_product(stock=10)
        reservation = inventory_service.reserve([{"product_id": a, "quantity": 3}])
        inventory_service.release(reservation.id)

        assert inventory_service.commit_reservation_locked(reservation.id) is False
        db.session.commit()


class TestConservation:
    def test_stock_equals_initial_plus_restocked_minus_reserved_plus_released(self, make_product):
        a = make_product(stock=20)

        r1 = inventory_service.reserve([{"product_id": a, "quantity": 5}])
        r2 = inventory_service.reserve([{"product_id": a, "quantity": 7}])
        inventory_service.restock(a, 4)
        inventory_service.release(r1.id)
        inventory_service.release(r1.id)
        with pytest.raises(InsufficientStockError):
            inventory_service.reserve([{"product_id": a, "quantity": 100}])

        # 20 + 4 - (5 + 7) + 5
        assert inventory_service.get_stock(a) == 17
        assert db.session.get(StockReservation, r2.id).status == RESERVATION_HELD

    def test_stock_never_negative(self, make_product):
        a = make_product(stock=1)
        inventory_service.reserve([{"product_id": a, "quantity": 1}])

        with pytest.raises(InsufficientStockError):
            inventory_service.reserve([{"product_id": a, "quantity": 1}])

        assert db.session.get(Product, a, populate_existing=True).stock == 0


class TestRestock:
    def test_restock_adds_stock(self, make_product):
        a = make_product(stock=1)

        product = inventory_service.restock(a, 9)

        assert product.stock == 10

    @pytest.mark.parametrize("quantity", [0, -3, True, 2.5, "4"])
    def test_restock_rejects_bad_quantity(self, make_product, quantity):
        a = make_product(stock=1)

        with pytest.raises(ValidationError):
            inventory_service.restock(a, quantity)

    def test_restock_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.restock(777, 1)
