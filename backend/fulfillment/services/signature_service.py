# Overview: Authenticity checks for payment-confirmation callbacks.

"""
Payment confirmation signatures.

The processor signs every confirmation as
    hex(HMAC_SHA256(secret, external_order_id + "|" + external_payment_id))
with the merchant's key secret. The comparison is constant-time.
"""

import hashlib
import hmac


def compute_signature(external_order_id: str, external_payment_id: str, secret: str) -> str:
    message = f"{external_order_id}|{external_payment_id}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(
    external_order_id: str,
    external_payment_id: str,
    provided_signature: str,
    secret: str,
) -> bool:
    """
    Check a confirmation signature.

    Missing or non-string input returns False, so a malformed callback is
    treated as an authenticity failure rather than a crash.
    """
    if not secret:
        raise ValueError("signature secret is not configured")
    if not all(isinstance(v, str) and v for v in (external_order_id, external_payment_id, provided_signature)):
        return False

    expected = compute_signature(external_order_id, external_payment_id, secret)
    return hmac.compare_digest(expected.encode("ascii"), provided_signature.strip().lower().encode("utf-8"))
