# Overview: Flask API routes for checkout and payment confirmation; parses input and returns JSON responses.

# backend/fulfillment/routes/orders.py
"""
Order API Routes

DESIGN:
- Checkout reserves stock and creates the order (cash settles immediately)
- verify-payment applies the processor's confirmation exactly once
- Read endpoints for invoices and revenue summary

Domain errors answer with their own status and a stable code; anything
else is logged and answered with a generic 500.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderError, ValidationError
from ..services import order_service
from ..validation import coerce_optional_int, parse_optional_datetime
from fulfillment.time_utils import to_utc_z


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def get_order_manager() -> order_service.OrderLifecycleManager:
    return current_app.extensions["order_manager"]


def _domain_error(e: OrderError):
    return jsonify(e.to_dict()), e.status_code


def _server_error(message: str, e: Exception):
    current_app.logger.exception(message)
    body = {"error": "Internal server error", "code": "SERVER_ERROR"}
    if current_app.debug:
        body["details"] = str(e)
    return jsonify(body), 500


def _first(data: dict, *keys):
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


# =============================================================================
# CHECKOUT
# =============================================================================

@orders_bp.post("/checkout")
def checkout_route():
    """
    Reserve stock and create an order.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "customer_id": 3,                (optional)
        "customer_name": "Asha",         (optional)
        "cashier_id": "u-17",
        "cashier_name": "cashier",
        "payment_method": "cash" | "electronic"
    }

    Returns:
        201: Order created (electronic orders include "payment" for the client SDK)
        400: Invalid input
        404: Product or customer not found
        409: Insufficient stock / invoice conflict
        502: Payment gateway failure (stock released)
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        manager = get_order_manager()
        order = manager.checkout(
            data.get("items"),
            customer_id=data.get("customer_id"),
            customer_name=data.get("customer_name"),
            cashier_id=data.get("cashier_id"),
            cashier_name=data.get("cashier_name"),
            payment_method=data.get("payment_method"),
        )

        body = {"order": order.to_dict()}
        if order.payment_intent is not None:
            payment = order.payment_intent.to_dict()
            payment["key_id"] = manager.gateway.key_id
            body["payment"] = payment
        return jsonify(body), 201

    except OrderError as e:
        return _domain_error(e)
    except Exception as e:
        return _server_error("Failed to check out order", e)


# =============================================================================
# PAYMENT CONFIRMATION
# =============================================================================

@orders_bp.post("/verify-payment")
def verify_payment_route():
    """
    Apply a payment confirmation.

    Request body (processor field names, generic names also accepted):
    {
        "razorpay_order_id": "order_...",
        "razorpay_payment_id": "pay_...",
        "razorpay_signature": "hex...",
        "invoice_id": "INV-000001"
    }

    Replays for an already-settled or failed order return 200 with the order unchanged.
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        external_order_id = _first(data, "razorpay_order_id", "external_order_id")
        external_payment_id = _first(data, "razorpay_payment_id", "external_payment_id")
        signature = _first(data, "razorpay_signature", "signature")
        invoice_id = _first(data, "invoice_id", "invoiceId")

        missing = [
            name for name, value in (
                ("external_order_id", external_order_id),
                ("external_payment_id", external_payment_id),
                ("signature", signature),
                ("invoice_id", invoice_id),
            ) if not value
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"fields": missing},
            )

        order = get_order_manager().confirm_payment(
            external_order_id,
            external_payment_id,
            signature,
            invoice_id,
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return _domain_error(e)
    except Exception as e:
        return _server_error("Failed to verify payment", e)


# =============================================================================
# READ
# =============================================================================

@orders_bp.get("")
def list_orders_route():
    try:
        start = parse_optional_datetime(request.args.get("start_date"), "start_date")
        end = parse_optional_datetime(request.args.get("end_date"), "end_date")
        customer_id = coerce_optional_int(request.args.get("customer_id"), "customer_id")
        limit = coerce_optional_int(request.args.get("limit"), "limit")
        if limit is None:
            limit = 200
        if limit <= 0 or limit > 1000:
            raise ValidationError("limit must be between 1 and 1000", details={"field": "limit"})

        orders = order_service.list_orders(start=start, end=end, customer_id=customer_id, limit=limit)
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders]}), 200

    except OrderError as e:
        return _domain_error(e)
    except Exception as e:
        return _server_error("Failed to list orders", e)


@orders_bp.get("/summary")
def sales_summary_route():
    try:
        summary = order_service.sales_summary(request.args.get("range", "week"))
        summary["start"] = to_utc_z(summary["start"])
        return jsonify(summary), 200

    except OrderError as e:
        return _domain_error(e)
    except Exception as e:
        return _server_error("Failed to build sales summary", e)


@orders_bp.get("/<invoice_id>")
def get_order_route(invoice_id: str):
    try:
        order = order_service.get_order(invoice_id)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return _domain_error(e)
    except Exception as e:
        return _server_error("Failed to load order", e)
