"""
HTTP contract tests for the order API.
"""

from fulfillment.services.signature_service import compute_signature

from fakes import TEST_SECRET


def _cart(product_id, quantity=1, **extra):
    body = {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "cashier_id": "u-1",
        "cashier_name": "Ravi",
        "payment_method": "cash",
    }
    body.update(extra)
    return body


class TestCheckoutRoute:
    def test_cash_checkout_returns_settled_order(self, client, make_product):
        a = make_product(stock=5, price_cents=1200)

        response = client.post("/api/orders/checkout", json=_cart(a, 2))

        assert response.status_code == 201
        body = response.get_json()
        assert body["order"]["order_status"] == "COMPLETED"
        assert body["order"]["payment_status"] == "PAID"
        assert body["order"]["total_amount_cents"] == 2400
        assert len(body["order"]["lines"]) == 1
        assert "payment" not in body

    def test_electronic_checkout_returns_payment_details(self, client, make_product):
        a = make_product(stock=5, price_cents=1200)

        response = client.post("/api/orders/checkout", json=_cart(a, 1, payment_method="electronic"))

        assert response.status_code == 201
        body = response.get_json()
        assert body["order"]["order_status"] == "PENDING"
        assert body["payment"] == {
            "gateway_order_id": body["order"]["gateway_order_id"],
            "amount": 1200,
            "currency": "INR",
            "receipt": body["order"]["invoice_id"],
            "key_id": "rzp_test_fake",
        }

    def test_invalid_json(self, client, db_session):
        response = client.post("/api/orders/checkout", data="nope", content_type="application/json")

        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_insufficient_stock_is_409(self, client, make_product):
        a = make_product(stock=1)

        response = client.post("/api/orders/checkout", json=_cart(a, 2))

        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available"] == 1

    def test_unknown_product_is_404(self, client, db_session):
        response = client.post("/api/orders/checkout", json=_cart(4242))

        assert response.status_code == 404
        assert response.get_json()["code"] == "NOT_FOUND"

    def test_gateway_failure_is_502(self, client, gateway, make_product):
        from fulfillment.errors import ExternalServiceError

        a = make_product(stock=3)
        gateway.fail_with = ExternalServiceError("Payment gateway timed out")

        response = client.post("/api/orders/checkout", json=_cart(a, 3, payment_method="electronic"))

        assert response.status_code == 502
        assert response.get_json()["code"] == "EXTERNAL_SERVICE_ERROR"

        gateway.fail_with = None
        retry = client.post("/api/orders/checkout", json=_cart(a, 3, payment_method="electronic"))
        assert retry.status_code == 201


class TestVerifyPaymentRoute:
    def _pending(self, client, make_product):
        a = make_product(stock=5)
        response = client.post("/api/orders/checkout", json=_cart(a, 1, payment_method="electronic"))
        return response.get_json()["order"]

    def test_processor_field_names(self, client, make_product):
        order = self._pending(client, make_product)
        signature = compute_signature(order["gateway_order_id"], "pay_77", TEST_SECRET)

        response = client.post("/api/orders/verify-payment", json={
            "razorpay_order_id": order["gateway_order_id"],
            "razorpay_payment_id": "pay_77",
            "razorpay_signature": signature,
            "invoice_id": order["invoice_id"],
        })

        assert response.status_code == 200
        assert response.get_json()["order"]["payment_status"] == "PAID"
        assert response.get_json()["order"]["gateway_payment_id"] == "pay_77"

    def test_generic_field_names_and_replay(self, client, make_product):
        order = self._pending(client, make_product)
        payload = {
            "external_order_id": order["gateway_order_id"],
            "external_payment_id": "pay_78",
            "signature": compute_signature(order["gateway_order_id"], "pay_78", TEST_SECRET),
            "invoice_id": order["invoice_id"],
        }

        first = client.post("/api/orders/verify-payment", json=payload)
        second = client.post("/api/orders/verify-payment", json=payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json()["order"]["version_id"] == first.get_json()["order"]["version_id"]

    def test_invalid_signature_is_400(self, client, make_product):
        order = self._pending(client, make_product)

        response = client.post("/api/orders/verify-payment", json={
            "razorpay_order_id": order["gateway_order_id"],
            "razorpay_payment_id": "pay_79",
            "razorpay_signature": "0" * 64,
            "invoice_id": order["invoice_id"],
        })

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_SIGNATURE"

        detail = client.get(f"/api/orders/{order['invoice_id']}").get_json()["order"]
        assert detail["payment_status"] == "FAILED"

    def test_missing_fields(self, client, db_session):
        response = client.post("/api/orders/verify-payment", json={"invoice_id": "INV-000001"})

        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["fields"] == ["external_order_id", "external_payment_id", "signature"]

    def test_unknown_invoice_is_404(self, client, db_session):
        response = client.post("/api/orders/verify-payment", json={
            "razorpay_order_id": "order_X",
            "razorpay_payment_id": "pay_X",
            "razorpay_signature": "abc",
            "invoice_id": "INV-000404",
        })

        assert response.status_code == 404


class TestReadRoutes:
    def test_get_order(self, client, make_product):
        a = make_product()
        created = client.post("/api/orders/checkout", json=_cart(a)).get_json()["order"]

        response = client.get(f"/api/orders/{created['invoice_id']}")

        assert response.status_code == 200
        assert response.get_json()["order"]["id"] == created["id"]

    def test_get_missing_order(self, client, db_session):
        response = client.get("/api/orders/INV-999999")

        assert response.status_code == 404
        assert response.get_json()["details"] == {"entity": "Order", "key": "INV-999999"}

    def test_list_orders(self, client, make_product):
        a = make_product()
        client.post("/api/orders/checkout", json=_cart(a))
        client.post("/api/orders/checkout", json=_cart(a))

        response = client.get("/api/orders?limit=1")

        assert response.status_code == 200
        orders = response.get_json()["orders"]
        assert len(orders) == 1
        assert "lines" not in orders[0]

    def test_list_orders_rejects_bad_limit(self, client, db_session):
        assert client.get("/api/orders?limit=0").status_code == 400
        assert client.get("/api/orders?limit=abc").status_code == 400
        assert client.get("/api/orders?start_date=yesterday").status_code == 400

    def test_list_orders_limit_bounds(self, client, make_product):
        a = make_product()
        client.post("/api/orders/checkout", json=_cart(a))

        assert client.get("/api/orders?limit=1001").status_code == 400
        assert client.get("/api/orders?limit=-1").status_code == 400
        assert client.get("/api/orders?limit=1000").status_code == 200
        assert len(client.get("/api/orders").get_json()["orders"]) == 1

    def test_summary(self, client, make_product):
        a = make_product(price_cents=700)
        client.post("/api/orders/checkout", json=_cart(a, 3))

        response = client.get("/api/orders/summary?range=year")

        assert response.status_code == 200
        body = response.get_json()
        assert body["range"] == "year"
        assert body["total_revenue_cents"] == 2100
        assert body["total_orders"] == 1
        assert body["start"].endswith("Z")

    def test_summary_bad_range(self, client, db_session):
        assert client.get("/api/orders/summary?range=forever").status_code == 400


def test_health(client, db_session):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert set(body["checks"]) == {"database", "settlement_backlog", "payment_gateway"}
