"""Test doubles for the payment processor boundary."""

import itertools

from fulfillment.services.payment_gateway import PaymentGateway, PaymentIntent, to_minor_units

TEST_SECRET = "test-secret"


class FakeGateway(PaymentGateway):
    """
    In-process gateway that records every intent request.

    Set ``fail_with`` to an exception instance to make the next calls raise it.
    """

    key_id = "rzp_test_fake"

    def __init__(self):
        self.reset()

    def reset(self):
        self.calls = []
        self.fail_with = None
        self._counter = itertools.count(1)

    def create_intent(self, amount_cents, currency, receipt, notes=None):
        self.calls.append({
            "amount_cents": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        })
        if self.fail_with is not None:
            raise self.fail_with
        return PaymentIntent(
            external_order_id=f"order_TEST{next(self._counter):04d}",
            amount_minor=max(to_minor_units(amount_cents, currency), to_minor_units(100, currency)),
            currency=currency,
            receipt=receipt,
        )
