from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its live stock counter.

    STOCK INVARIANT: stock >= 0 at all times. The CHECK constraint is a
    backstop; every mutation goes through a conditional UPDATE in
    inventory_service, never a read-then-write.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents; NULL means "not for sale"
    price_cents = db.Column(db.Integer, nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockReservation(db.Model):
    """
    A block of stock taken out of the shelf counters for one checkout.

    LIFECYCLE:
    - HELD: stock decremented, order not yet settled (or not yet persisted)
    - COMMITTED: order settled; stock is sold and never comes back
    - RELEASED: compensation ran; stock was credited back exactly once

    Status flips are conditional updates (WHERE status = 'HELD'), which is
    what makes release idempotent.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.UniqueConstraint("reservation_key", name="uq_stock_reservations_key"),
        db.Index("ix_stock_reservations_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reservation_key = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="HELD", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    committed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "StockReservationLine",
        backref="reservation",
        lazy=True,
        order_by="StockReservationLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reservation_key": self.reservation_key,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "committed_at": to_utc_z(self.committed_at),
            "released_at": to_utc_z(self.released_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class StockReservationLine(db.Model):
    __tablename__ = "stock_reservation_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("stock_reservations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity}
