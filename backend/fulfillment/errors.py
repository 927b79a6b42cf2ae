# Overview: Closed set of domain errors raised by the fulfillment services.

"""
Order fulfillment error taxonomy.

Every error the services raise on purpose is an OrderError subclass with a
stable ``code``, the HTTP status the routes answer with, and a ``details``
dict the caller can act on. Anything else escaping a service is a defect and
is reported as a generic server error by the routes.
"""

from __future__ import annotations


class OrderError(Exception):
    """Base class for fulfillment domain errors."""

    code = "ORDER_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(OrderError):
    """Malformed input; the caller fixes it and retries."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(OrderError):
    """A product, customer, or order does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, key, message: str | None = None):
        super().__init__(message or f"{entity} {key} not found", {"entity": entity, "key": key})
        self.entity = entity
        self.key = key


class ConflictError(OrderError):
    """A uniqueness rule was violated (e.g. duplicate invoice id)."""

    code = "CONFLICT"
    status_code = 409


class InsufficientStockError(OrderError):
    """Business rule: not enough stock to reserve the requested quantity."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, name: str | None = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}",
            {"product_id": product_id, "requested_quantity": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ExternalServiceError(OrderError):
    """The payment processor was unreachable, timed out, or returned an error."""

    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502


class InvalidSignatureError(OrderError):
    """A payment confirmation failed its authenticity check."""

    code = "INVALID_SIGNATURE"
    status_code = 400


class ServerError(OrderError):
    """Unclassified internal failure."""

    code = "SERVER_ERROR"
    status_code = 500
