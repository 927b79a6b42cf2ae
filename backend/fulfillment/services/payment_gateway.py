# Overview: Boundary to the external payment processor; opens payment intents.

"""
Payment Gateway Adapter

WHY: Electronic checkouts hand off to an external processor (Razorpay).
The adapter is built from configuration and injected into the order
lifecycle manager, so there is no module-level client and tests can pass
a double.

CONTRACT:
- create_intent(amount_cents, currency, receipt) -> PaymentIntent
- Store amounts (cents) are converted to the processor's minor unit for
  the currency with half-up rounding, then clamped to the processor's
  minimum transactable amount. The minimum is configured in store cents
  (default 100, one major unit) and converted per currency, so it means
  1.00 INR, 1 JPY or 1.000 KWD alike.
- Every transport or protocol failure (SDK error, HTTP error, timeout,
  response without an order id) becomes ExternalServiceError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from ..errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

# Store prices are always held in hundredths of the major unit
STORE_MINOR_EXPONENT = 2

# ISO 4217 minor-unit exponents the processor uses; anything unlisted is 2
CURRENCY_EXPONENTS = {
    "BHD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "VND": 0,
}


@dataclass(frozen=True)
class PaymentIntent:
    external_order_id: str
    amount_minor: int
    currency: str
    receipt: str

    def to_dict(self) -> dict:
        return {
            "gateway_order_id": self.external_order_id,
            "amount": self.amount_minor,
            "currency": self.currency,
            "receipt": self.receipt,
        }


def to_minor_units(amount_cents: int, currency: str) -> int:
    """Convert store cents to the processor's minor unit (half-up)."""
    exponent = CURRENCY_EXPONENTS.get(currency.upper(), 2)
    major = Decimal(amount_cents) / (Decimal(10) ** STORE_MINOR_EXPONENT)
    minor = (major * (Decimal(10) ** exponent)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(minor)


class PaymentGateway:
    """Abstract payment processor boundary."""

    key_id = ""

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> PaymentIntent:
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    """Payment intents backed by Razorpay orders."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        min_amount_cents: int = 100,
        timeout_seconds: float = 10,
        client=None,
    ) -> None:
        self.key_id = key_id
        self.min_amount_cents = min_amount_cents
        self.timeout_seconds = timeout_seconds
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def minimum_minor_units(self, currency: str) -> int:
        """Smallest amount the processor accepts, in the currency's own minor unit."""
        return max(to_minor_units(self.min_amount_cents, currency), 1)

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> PaymentIntent:
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise ValidationError(
                "Payment amount must be a positive integer",
                details={"amount_cents": amount_cents},
            )
        if not currency:
            raise ValidationError("currency is required")
        if not receipt:
            raise ValidationError("receipt is required")

        currency = currency.upper()
        amount_minor = max(to_minor_units(amount_cents, currency), self.minimum_minor_units(currency))

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        if notes:
            payload["notes"] = {k: str(v) for k, v in notes.items()}

        try:
            response = self.client.order.create(data=payload, timeout=self.timeout_seconds)
        except requests.exceptions.Timeout as exc:
            logger.error("Payment gateway timed out creating order for receipt %s", receipt)
            raise ExternalServiceError(
                "Payment gateway timed out",
                details={"receipt": receipt, "timeout_seconds": self.timeout_seconds},
            ) from exc
        except (requests.exceptions.RequestException, BadRequestError, GatewayError, ServerError) as exc:
            logger.error("Payment gateway rejected order for receipt %s: %s", receipt, exc)
            raise ExternalServiceError(
                "Failed to create payment order",
                details={"receipt": receipt, "reason": str(exc)},
            ) from exc

        external_order_id = response.get("id") if isinstance(response, dict) else None
        if not external_order_id:
            logger.error("Payment gateway returned no order id for receipt %s", receipt)
            raise ExternalServiceError(
                "Payment gateway returned an invalid response",
                details={"receipt": receipt},
            )

        logger.info("Payment order %s created for receipt %s", external_order_id, receipt)
        return PaymentIntent(
            external_order_id=external_order_id,
            amount_minor=amount_minor,
            currency=currency,
            receipt=receipt,
        )


def build_gateway(config) -> RazorpayGateway:
    """Build the configured gateway from a Flask config mapping."""
    return RazorpayGateway(
        config.get("PAYMENT_GATEWAY_KEY_ID", ""),
        config.get("PAYMENT_GATEWAY_KEY_SECRET", ""),
        min_amount_cents=config.get("PAYMENT_MIN_AMOUNT_CENTS", 100),
        timeout_seconds=config.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10),
    )
