import hashlib
import hmac

import pytest

from fulfillment.services.signature_service import compute_signature, verify_signature

SECRET = "whsec-test"


def _expected(order_id, payment_id, secret=SECRET):
    return hmac.new(
        secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def test_compute_signature_is_hmac_sha256_hex():
    assert compute_signature("order_1", "pay_1", SECRET) == _expected("order_1", "pay_1")


def test_valid_signature_verifies():
    sig = _expected("order_1", "pay_1")
    assert verify_signature("order_1", "pay_1", sig, SECRET) is True


def test_uppercase_hex_accepted():
    sig = _expected("order_1", "pay_1").upper()
    assert verify_signature("order_1", "pay_1", sig, SECRET) is True


@pytest.mark.parametrize("order_id,payment_id", [
    ("order_2", "pay_1"),
    ("order_1", "pay_2"),
])
def test_signature_bound_to_both_ids(order_id, payment_id):
    sig = _expected("order_1", "pay_1")
    assert verify_signature(order_id, payment_id, sig, SECRET) is False


def test_wrong_secret_rejected():
    sig = _expected("order_1", "pay_1", secret="other")
    assert verify_signature("order_1", "pay_1", sig, SECRET) is False


@pytest.mark.parametrize("signature", [None, "", "not-hex", 12345])
def test_malformed_signature_rejected(signature):
    assert verify_signature("order_1", "pay_1", signature, SECRET) is False


def test_missing_ids_rejected():
    sig = _expected("order_1", "pay_1")
    assert verify_signature(None, "pay_1", sig, SECRET) is False
    assert verify_signature("order_1", None, sig, SECRET) is False


def test_empty_secret_is_a_configuration_error():
    with pytest.raises(ValueError):
        verify_signature("order_1", "pay_1", "abc", "")
