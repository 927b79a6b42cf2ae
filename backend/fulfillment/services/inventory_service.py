# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/fulfillment/services/inventory_service.py

import logging
import secrets

from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockReservation, StockReservationLine
from ..errors import ValidationError, NotFoundError, InsufficientStockError, ConflictError
from fulfillment.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
"""
Inventory Ledger Invariants (authoritative)

Stock model:
- Product.stock is the live shelf counter; it may never go negative.
- Every decrement is ONE conditional statement:
    UPDATE products SET stock = stock - q WHERE id = :id AND stock >= q
  A zero row count means "not enough" (or "no such product"); there is no
  read-then-write window for a concurrent checkout to slip through.

Reservations:
- reserve_lines() decrements every product of a cart inside the caller's
  transaction; any failure rolls back every earlier decrement with it.
- A StockReservation records what was taken. It is HELD until the order is
  settled (COMMITTED) or compensation runs (RELEASED).
- Release flips HELD -> RELEASED with a conditional update and credits stock
  only if that flip happened, so releasing twice never over-credits.

Conservation:
- stock == initial + restocked - reserved + released, for every product.
"""

logger = logging.getLogger(__name__)

RESERVATION_HELD = "HELD"
RESERVATION_COMMITTED = "COMMITTED"
RESERVATION_RELEASED = "RELEASED"


def merge_quantities(items: list[dict]) -> dict[int, int]:
    """
    Collapse cart items into {product_id: total_quantity}.

    Expects already-validated items (positive int quantities).
    """
    totals: dict[int, int] = {}
    for item in items:
        product_id = item["product_id"]
        totals[product_id] = totals.get(product_id, 0) + item["quantity"]
    return totals


def _decrement_stock(product_id: int, quantity: int) -> None:
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.is_active.is_(True),
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 1:
        return

    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None or not product.is_active:
        raise NotFoundError("Product", product_id)
    raise InsufficientStockError(product_id, quantity, product.stock, name=product.name)


def _increment_stock(product_id: int, quantity: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise NotFoundError("Product", product_id)


def reserve_lines(items: list[dict]) -> StockReservation:
    """
    Decrement stock for every item and record a HELD reservation.

    Runs inside the caller's open write transaction and does NOT commit,
    so the caller can persist the order in the same transaction. On
    NotFoundError / InsufficientStockError the caller must roll back.
    """
    totals = merge_quantities(items)
    if not totals:
        raise ValidationError("Cannot reserve an empty item list")

    # Ascending id order keeps lock acquisition consistent across writers
    for product_id in sorted(totals):
        _decrement_stock(product_id, totals[product_id])

    reservation = StockReservation(
        reservation_key=secrets.token_hex(16),
        status=RESERVATION_HELD,
        created_at=utcnow(),
    )
    db.session.add(reservation)
    db.session.flush()

    for product_id in sorted(totals):
        db.session.add(StockReservationLine(
            reservation_id=reservation.id,
            product_id=product_id,
            quantity=totals[product_id],
        ))
    db.session.flush()
    return reservation


def reserve(items: list[dict]) -> StockReservation:
    """
    Atomically reserve stock for a whole cart and commit the reservation.

    Either every product is decremented by its requested quantity, or none
    is and NotFoundError / InsufficientStockError is raised.
    """
    def _op():
        begin_write()
        reservation = reserve_lines(items)
        db.session.commit()
        return reservation

    return run_with_retry(_op)


def _release_locked(reservation_id: int) -> bool:
    stmt = (
        update(StockReservation)
        .where(
            StockReservation.id == reservation_id,
            StockReservation.status == RESERVATION_HELD,
        )
        .values(status=RESERVATION_RELEASED, released_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        return False

    lines = db.session.query(StockReservationLine).filter_by(reservation_id=reservation_id).all()
    for line in lines:
        _increment_stock(line.product_id, line.quantity)
    return True


def release(reservation_id: int) -> bool:
    """
    Compensating action: credit a HELD reservation's stock back.

    Returns True if stock was credited, False if the reservation had already
    been released. Releasing a COMMITTED reservation is refused.
    """
    def _op():
        begin_write()
        reservation = db.session.get(StockReservation, reservation_id, populate_existing=True)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        if reservation.status == RESERVATION_COMMITTED:
            raise ConflictError(
                "Cannot release a committed reservation",
                details={"reservation_id": reservation_id},
            )

        released = _release_locked(reservation_id)
        db.session.commit()
        if released:
            logger.info("Released stock reservation %s", reservation_id)
        return released

    return run_with_retry(_op)


def commit_reservation_locked(reservation_id: int) -> bool:
    """
    Flip HELD -> COMMITTED inside the caller's transaction.

    Returns False if the reservation was not HELD (already committed or
    released).
    """
    stmt = (
        update(StockReservation)
        .where(
            StockReservation.id == reservation_id,
            StockReservation.status == RESERVATION_HELD,
        )
        .values(status=RESERVATION_COMMITTED, committed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def release_reservation_locked(reservation_id: int) -> bool:
    """Release inside the caller's transaction (used by the expiry sweep)."""
    return _release_locked(reservation_id)


def restock(product_id: int, quantity: int) -> Product:
    """Add stock to a product (receiving, manual correction)."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    def _op():
        begin_write()
        _increment_stock(product_id, quantity)
        db.session.commit()
        return db.session.get(Product, product_id, populate_existing=True)

    return run_with_retry(_op)


def get_stock(product_id: int) -> int:
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product.stock
