# Overview: Order lifecycle state machine; checkout, payment confirmation, and expiry.

"""
Order Lifecycle Service

WHY: Checkout touches three things that must agree: shelf stock, the order
document, and an external payment processor. This module is the only place
that sequences them.

STATE MACHINE (order_status / payment_status):
- checkout(cash)         -> COMPLETED / PAID      (settled)
- checkout(electronic)   -> PENDING / PENDING     (pending settlement)
- confirm, valid sig     -> COMPLETED / PAID      (settled)
- confirm, invalid sig   -> PENDING / FAILED      (failed)
- expiry sweep           -> CANCELLED / FAILED    (cancelled, stock released)
- any event on a terminal order is a no-op that returns the order unchanged

COMPENSATION:
- Cash: stock decrement, invoice allocation and order insert share one DB
  transaction, so any failure leaves nothing behind.
- Electronic: the reservation commits before the gateway call. If the
  gateway call or the order insert fails, the reservation is released
  before the error surfaces. A crash in between leaves a HELD reservation
  with no order, which the expiry sweep releases.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Order, OrderLine, Product, StockReservation
from ..models.orders import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_ELECTRONIC,
)
from ..errors import (
    OrderError,
    ValidationError,
    NotFoundError,
    ConflictError,
    ExternalServiceError,
    InvalidSignatureError,
)
from ..validation import (
    coerce_int,
    coerce_optional_int,
    require_text,
    optional_text,
    enforce_price_cents,
    MAX_LINE_QUANTITY,
)
from fulfillment.time_utils import days_back, utcnow
from . import inventory_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .invoice_service import next_invoice_id
from .signature_service import verify_signature

logger = logging.getLogger(__name__)

WALK_IN_CUSTOMER = "Walk-in Customer"

PAYMENT_METHOD_ALIASES = {
    "cash": PAYMENT_METHOD_CASH,
    "electronic": PAYMENT_METHOD_ELECTRONIC,
    # Older register clients send the rail name
    "upi": PAYMENT_METHOD_ELECTRONIC,
}


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def normalize_payment_method(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("payment_method is required", details={"field": "payment_method"})
    method = PAYMENT_METHOD_ALIASES.get(value.strip().lower())
    if method is None:
        raise ValidationError(
            f"Invalid payment_method: {value}. Must be one of {sorted(PAYMENT_METHOD_ALIASES)}",
            details={"field": "payment_method"},
        )
    return method


def validate_items(items) -> list[dict]:
    """
    Validate cart items and normalize them to
    {product_id, quantity, unit_price_cents | None}.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"field": "items"})

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object", details={"index": index})

        product_id = coerce_int(item.get("product_id"), f"items[{index}].product_id")
        quantity = coerce_int(item.get("quantity"), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(
                f"items[{index}].quantity must be a positive integer",
                details={"index": index, "quantity": quantity},
            )
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(
                f"items[{index}].quantity cannot exceed {MAX_LINE_QUANTITY}",
                details={"index": index, "quantity": quantity},
            )

        unit_price_cents = coerce_optional_int(item.get("unit_price_cents"), f"items[{index}].unit_price_cents")
        if unit_price_cents is not None:
            enforce_price_cents(unit_price_cents, f"items[{index}].unit_price_cents")

        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
        })
    return normalized


def _snapshot_lines(items: list[dict]) -> list[dict]:
    """
    Copy name and price from the (already reserved) products.

    Runs inside the reservation transaction, so the snapshot matches the
    stock that was taken.
    """
    snapshots = []
    for number, item in enumerate(items, start=1):
        product = db.session.get(Product, item["product_id"], populate_existing=True)
        if product is None:
            raise NotFoundError("Product", item["product_id"])
        if product.price_cents is None:
            raise ValidationError(
                f"Product {product.name} has no price",
                details={"product_id": product.id},
            )
        client_price = item.get("unit_price_cents")
        if client_price is not None and client_price != product.price_cents:
            raise ValidationError(
                f"Price for {product.name} has changed",
                details={
                    "product_id": product.id,
                    "submitted_unit_price_cents": client_price,
                    "current_unit_price_cents": product.price_cents,
                },
            )

        snapshots.append({
            "line_number": number,
            "product_id": product.id,
            "name": product.name,
            "unit_price_cents": product.price_cents,
            "quantity": item["quantity"],
            "line_total_cents": product.price_cents * item["quantity"],
        })
    return snapshots


# =============================================================================
# LIFECYCLE MANAGER
# =============================================================================

class OrderLifecycleManager:
    """
    Orchestrates inventory, invoice numbering, the payment gateway and
    signature verification into one state machine per order.

    The gateway and the signature secret are injected; nothing here reads
    global configuration.
    """

    def __init__(
        self,
        gateway,
        signature_secret: str,
        *,
        currency: str = "INR",
        pending_timeout: timedelta = timedelta(minutes=30),
        invoice_id_factory=next_invoice_id,
    ) -> None:
        self.gateway = gateway
        self.signature_secret = signature_secret
        self.currency = currency.upper()
        self.pending_timeout = pending_timeout
        self.invoice_id_factory = invoice_id_factory

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    def checkout(
        self,
        items,
        *,
        cashier_id,
        cashier_name,
        payment_method,
        customer_id=None,
        customer_name=None,
    ) -> Order:
        """
        Reserve stock for a cart and create its order.

        Raises:
            ValidationError: malformed cart or party data
            NotFoundError: unknown product or customer
            InsufficientStockError: a product cannot cover its quantity
            ConflictError: invoice id already taken
            ExternalServiceError: payment gateway failed (stock released)
        """
        normalized = validate_items(items)
        method = normalize_payment_method(payment_method)
        cashier_id = require_text(cashier_id, "cashier_id", max_length=64)
        cashier_name = require_text(cashier_name, "cashier_name")
        customer_id = coerce_optional_int(customer_id, "customer_id")
        customer_name = optional_text(customer_name, "customer_name")

        if customer_id is not None:
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise NotFoundError("Customer", customer_id)
            customer_name = customer_name or customer.name

        party = {
            "customer_id": customer_id,
            "customer_name": customer_name or WALK_IN_CUSTOMER,
            "cashier_id": cashier_id,
            "cashier_name": cashier_name,
        }

        if method == PAYMENT_METHOD_CASH:
            return self._checkout_cash(normalized, party)
        return self._checkout_electronic(normalized, party)

    def _allocate_invoice_id(self) -> str:
        invoice_id = self.invoice_id_factory()
        taken = db.session.query(Order.id).filter_by(invoice_id=invoice_id).first()
        if taken:
            raise ConflictError(
                f"Invoice id {invoice_id} already exists",
                details={"invoice_id": invoice_id},
            )
        return invoice_id

    def _build_order(self, *, invoice_id, party, lines, reservation_id, method, order_status,
                     payment_status, gateway_order_id=None) -> Order:
        now = utcnow()
        order = Order(
            invoice_id=invoice_id,
            customer_id=party["customer_id"],
            customer_name=party["customer_name"],
            cashier_id=party["cashier_id"],
            cashier_name=party["cashier_name"],
            order_status=order_status,
            payment_status=payment_status,
            payment_method=method,
            total_amount_cents=sum(line["line_total_cents"] for line in lines),
            currency=self.currency,
            gateway_order_id=gateway_order_id,
            reservation_id=reservation_id,
            created_at=now,
            settled_at=now if payment_status == PAYMENT_STATUS_PAID else None,
        )
        db.session.add(order)
        db.session.flush()
        for line in lines:
            db.session.add(OrderLine(order_id=order.id, **line))
        db.session.flush()
        return order

    def _flush_conflict(self, invoice_id: str) -> ConflictError:
        logger.warning("Invoice id collision on insert: %s", invoice_id)
        return ConflictError(
            f"Invoice id {invoice_id} already exists",
            details={"invoice_id": invoice_id},
        )

    def _checkout_cash(self, items: list[dict], party: dict) -> Order:
        def _op():
            begin_write()
            reservation = inventory_service.reserve_lines(items)
            lines = _snapshot_lines(items)
            invoice_id = self._allocate_invoice_id()
            try:
                order = self._build_order(
                    invoice_id=invoice_id,
                    party=party,
                    lines=lines,
                    reservation_id=reservation.id,
                    method=PAYMENT_METHOD_CASH,
                    order_status=ORDER_STATUS_COMPLETED,
                    payment_status=PAYMENT_STATUS_PAID,
                )
            except IntegrityError as exc:
                raise self._flush_conflict(invoice_id) from exc
            inventory_service.commit_reservation_locked(reservation.id)
            db.session.commit()
            return order

        order = run_with_retry(_op)
        logger.info("Cash order %s settled (%s cents)", order.invoice_id, order.total_amount_cents)
        return order

    def _checkout_electronic(self, items: list[dict], party: dict) -> Order:
        def _reserve():
            begin_write()
            reservation = inventory_service.reserve_lines(items)
            lines = _snapshot_lines(items)
            if sum(line["line_total_cents"] for line in lines) <= 0:
                raise ValidationError(
                    "Electronic payment requires a positive order total",
                    details={"field": "payment_method"},
                )
            invoice_id = self._allocate_invoice_id()
            reservation_id = reservation.id
            db.session.commit()
            return reservation_id, lines, invoice_id

        reservation_id, lines, invoice_id = run_with_retry(_reserve)
        total = sum(line["line_total_cents"] for line in lines)

        try:
            intent = self.gateway.create_intent(
                total,
                self.currency,
                invoice_id,
                notes={"invoice_id": invoice_id, "customer_id": party["customer_id"] or "guest"},
            )
        except OrderError as exc:
            self._compensate(reservation_id, invoice_id, exc)
            raise
        except Exception as exc:
            self._compensate(reservation_id, invoice_id, exc)
            raise ExternalServiceError(
                "Failed to create payment order",
                details={"invoice_id": invoice_id, "reason": str(exc)},
            ) from exc

        def _persist():
            begin_write()
            reservation = (
                lock_for_update(db.session.query(StockReservation).filter_by(id=reservation_id))
                .populate_existing()
                .first()
            )
            if reservation is None or reservation.status != inventory_service.RESERVATION_HELD:
                raise ConflictError(
                    "Stock reservation expired before the order was recorded",
                    details={"invoice_id": invoice_id, "reservation_id": reservation_id},
                )
            if db.session.query(Order.id).filter_by(invoice_id=invoice_id).first():
                raise ConflictError(
                    f"Invoice id {invoice_id} already exists",
                    details={"invoice_id": invoice_id},
                )
            try:
                order = self._build_order(
                    invoice_id=invoice_id,
                    party=party,
                    lines=lines,
                    reservation_id=reservation_id,
                    method=PAYMENT_METHOD_ELECTRONIC,
                    order_status=ORDER_STATUS_PENDING,
                    payment_status=PAYMENT_STATUS_PENDING,
                    gateway_order_id=intent.external_order_id,
                )
            except IntegrityError as exc:
                raise self._flush_conflict(invoice_id) from exc
            db.session.commit()
            return order

        try:
            order = run_with_retry(_persist)
        except Exception as exc:
            self._compensate(reservation_id, invoice_id, exc)
            raise

        logger.info(
            "Electronic order %s pending settlement (gateway order %s)",
            order.invoice_id,
            order.gateway_order_id,
        )
        order.payment_intent = intent
        return order

    def _compensate(self, reservation_id: int, invoice_id: str, cause: Exception) -> None:
        logger.warning(
            "Checkout %s failed after reserving stock (%s); releasing reservation %s",
            invoice_id,
            cause,
            reservation_id,
        )
        try:
            inventory_service.release(reservation_id)
        except Exception:
            # Reservation stays HELD with no order; the expiry sweep reclaims it
            logger.exception("Failed to release reservation %s for %s", reservation_id, invoice_id)

    # -------------------------------------------------------------------------
    # Payment confirmation
    # -------------------------------------------------------------------------

    def confirm_payment(self, external_order_id, external_payment_id, signature, invoice_id) -> Order:
        """
        Apply a payment confirmation exactly once.

        Terminal orders are returned unchanged without re-verifying, so
        duplicate or late deliveries are harmless. An invalid signature moves
        payment_status to FAILED and raises InvalidSignatureError.
        """
        invoice_id = require_text(invoice_id, "invoice_id", max_length=64)

        def _op():
            begin_write()
            order = (
                lock_for_update(db.session.query(Order).filter_by(invoice_id=invoice_id))
                .populate_existing()
                .first()
            )
            if not order:
                raise NotFoundError("Order", invoice_id)

            if order.is_terminal:
                db.session.commit()
                logger.info(
                    "Ignoring confirmation for terminal order %s (%s/%s)",
                    invoice_id,
                    order.order_status,
                    order.payment_status,
                )
                return order, None

            authentic = (
                isinstance(external_order_id, str)
                and order.gateway_order_id == external_order_id
                and verify_signature(external_order_id, external_payment_id, signature, self.signature_secret)
            )

            if not authentic:
                order.payment_status = PAYMENT_STATUS_FAILED
                db.session.commit()
                logger.warning("Invalid payment signature for order %s", invoice_id)
                return order, InvalidSignatureError(
                    "Invalid payment signature",
                    details={"invoice_id": invoice_id},
                )

            order.payment_status = PAYMENT_STATUS_PAID
            order.order_status = ORDER_STATUS_COMPLETED
            order.gateway_payment_id = external_payment_id
            order.gateway_signature = signature
            order.settled_at = utcnow()
            if not inventory_service.commit_reservation_locked(order.reservation_id):
                logger.warning("Reservation %s for order %s was not HELD at settlement", order.reservation_id, invoice_id)
            db.session.commit()
            logger.info("Order %s settled by payment %s", invoice_id, external_payment_id)
            return order, None

        order, error = run_with_retry(_op)
        if error is not None:
            raise error
        return order

    # -------------------------------------------------------------------------
    # Expiry sweep
    # -------------------------------------------------------------------------

    def expire_pending_orders(self, older_than: timedelta | None = None, now=None) -> dict:
        """
        Cancel unsettled orders older than the timeout and release their stock.

        Also releases HELD reservations that never got an order. Safe to run
        concurrently with confirmations: each order is re-checked under lock.
        """
        now = now or utcnow()
        cutoff = now - (older_than if older_than is not None else self.pending_timeout)

        candidate_ids = [
            row.id
            for row in db.session.query(Order.id).filter(
                Order.order_status == ORDER_STATUS_PENDING,
                Order.created_at < cutoff,
            ).order_by(Order.id).all()
        ]
        db.session.commit()

        cancelled = []
        for order_id in candidate_ids:
            invoice_id = run_with_retry(lambda: self._expire_one(order_id, now))
            if invoice_id:
                cancelled.append(invoice_id)

        orphan_ids = [
            row.id
            for row in db.session.query(StockReservation.id).filter(
                StockReservation.status == inventory_service.RESERVATION_HELD,
                StockReservation.created_at < cutoff,
                ~exists().where(Order.reservation_id == StockReservation.id),
            ).order_by(StockReservation.id).all()
        ]
        db.session.commit()

        released_orphans = 0
        for reservation_id in orphan_ids:
            if inventory_service.release(reservation_id):
                released_orphans += 1

        if cancelled or released_orphans:
            logger.info(
                "Expiry sweep cancelled %d orders and released %d orphaned reservations",
                len(cancelled),
                released_orphans,
            )
        return {"cancelled_orders": cancelled, "released_reservations": released_orphans}

    def _expire_one(self, order_id: int, now) -> str | None:
        begin_write()
        order = (
            lock_for_update(db.session.query(Order).filter_by(id=order_id))
            .populate_existing()
            .first()
        )
        if order is None or order.order_status != ORDER_STATUS_PENDING or order.payment_status == PAYMENT_STATUS_PAID:
            db.session.commit()
            return None

        order.order_status = ORDER_STATUS_CANCELLED
        order.payment_status = PAYMENT_STATUS_FAILED
        order.cancelled_at = now
        inventory_service.release_reservation_locked(order.reservation_id)
        invoice_id = order.invoice_id
        db.session.commit()
        return invoice_id


# =============================================================================
# READ SIDE
# =============================================================================

SUMMARY_RANGES = {
    "week": 6,
    "month": 29,
    "year": 364,
}


def get_order(invoice_id: str) -> Order:
    order = db.session.query(Order).filter_by(invoice_id=invoice_id).first()
    if not order:
        raise NotFoundError("Order", invoice_id)
    return order


def list_orders(*, start=None, end=None, customer_id: int | None = None, limit: int = 200) -> list[Order]:
    query = db.session.query(Order)
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at <= end)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def sales_summary(range_name: str = "week", now=None) -> dict:
    """
    Revenue KPIs over PAID orders since the start of the range.

    Ranges are inclusive of today: week = last 7 days, month = last 30,
    year = last 365.
    """
    if range_name not in SUMMARY_RANGES:
        raise ValidationError(
            f"Invalid range: {range_name}. Must be one of {sorted(SUMMARY_RANGES)}",
            details={"field": "range"},
        )
    now = now or utcnow()
    start = days_back(now, SUMMARY_RANGES[range_name])

    row = db.session.query(
        db.func.coalesce(db.func.sum(Order.total_amount_cents), 0).label("revenue"),
        db.func.count(Order.id).label("orders"),
    ).filter(
        Order.payment_status == PAYMENT_STATUS_PAID,
        Order.created_at >= start,
    ).one()

    return {
        "range": range_name,
        "start": start,
        "total_revenue_cents": int(row.revenue or 0),
        "total_orders": int(row.orders or 0),
    }
