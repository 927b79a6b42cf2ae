# backend/fulfillment/routes/system.py
"""
System health endpoint.

Reports database connectivity, the settlement backlog (pending orders that
have outlived the expiry timeout), and whether the payment gateway is
configured.
"""

import time
from datetime import timedelta

from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, Order, StockReservation
from ..models.orders import ORDER_STATUS_PENDING
from ..services.inventory_service import RESERVATION_HELD
from fulfillment.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(Order).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "orders": order_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_settlement_backlog() -> dict:
    """
    Pending orders older than the expiry timeout mean the sweep is not running.
    """
    start_time = time.time()
    try:
        timeout = timedelta(minutes=current_app.config["PENDING_ORDER_TIMEOUT_MINUTES"])
        cutoff = utcnow() - timeout

        pending = db.session.query(Order).filter_by(order_status=ORDER_STATUS_PENDING).count()
        overdue = db.session.query(Order).filter(
            Order.order_status == ORDER_STATUS_PENDING,
            Order.created_at < cutoff,
        ).count()
        held = db.session.query(StockReservation).filter_by(status=RESERVATION_HELD).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if overdue else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending_orders": pending,
                "overdue_pending_orders": overdue,
                "held_reservations": held,
            }
        }
        if overdue:
            result["warning"] = "Pending orders past expiry; run `flask orders expire-pending`"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Settlement backlog check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Settlement backlog error"
        }


def check_payment_gateway_config() -> dict:
    configured = bool(
        current_app.config.get("PAYMENT_GATEWAY_KEY_ID")
        and current_app.config.get("PAYMENT_GATEWAY_KEY_SECRET")
    )
    if configured:
        return {"status": "healthy", "details": {"currency": current_app.config["PAYMENT_CURRENCY"]}}
    return {
        "status": "degraded",
        "warning": "Payment gateway credentials missing; electronic checkout will fail",
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    backlog_health = check_settlement_backlog()
    gateway_health = check_payment_gateway_config()

    all_checks = [database_health, backlog_health, gateway_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "settlement_backlog": backlog_health,
            "payment_gateway": gateway_health,
        }
    }

    return response, http_status
