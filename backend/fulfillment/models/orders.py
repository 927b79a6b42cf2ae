from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_CANCELLED = "CANCELLED"

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_FAILED = "FAILED"

PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_ELECTRONIC = "ELECTRONIC"


class Order(db.Model):
    """
    Order / invoice document.

    APPEND-ONLY: orders are never deleted. An order is created once at
    checkout and mutated at most once more by payment confirmation (or by
    the pending-order expiry sweep).

    TERMINAL: once payment_status is PAID or FAILED, or order_status is
    CANCELLED, no payment or status field changes again.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # Backstop against generator collisions
        db.UniqueConstraint("invoice_id", name="uq_orders_invoice_id"),
        db.Index("ix_orders_gateway_order_id", "gateway_order_id"),
        db.Index("ix_orders_status_created", "order_status", "created_at"),
        db.Index("ix_orders_payment_status_created", "payment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice code (e.g., "INV-000042"); immutable once assigned
    invoice_id = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False, default="Walk-in Customer")
    cashier_id = db.Column(db.String(64), nullable=False, index=True)
    cashier_name = db.Column(db.String(255), nullable=False)

    order_status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False)

    # Amounts in cents; total equals the sum of line totals at creation
    total_amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    # Payment processor references (electronic payments only)
    gateway_order_id = db.Column(db.String(64), nullable=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)
    gateway_signature = db.Column(db.String(128), nullable=True)

    reservation_id = db.Column(db.Integer, db.ForeignKey("stock_reservations.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.line_number")
    reservation = db.relationship("StockReservation")
    customer = db.relationship("Customer")

    # Set by checkout on electronic orders; not persisted
    payment_intent = None

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return (
            self.payment_status in (PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED)
            or self.order_status == ORDER_STATUS_CANCELLED
        )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "order_status": self.order_status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "currency": self.currency,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "created_at": to_utc_z(self.created_at),
            "settled_at": to_utc_z(self.settled_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Line snapshot taken at checkout.

    Name and price are copied from the product so historical invoices do not
    change when the catalog does.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_lines_order_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class InvoiceSequence(db.Model):
    """
    Atomic invoice number counter, one row per prefix.

    WHY: Timestamp-derived ids collide under concurrent checkouts.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_invoice_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
