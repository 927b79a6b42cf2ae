from __future__ import annotations

from typing import Any

from fulfillment.errors import ValidationError
from fulfillment.time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest quantity a single cart line may request
MAX_LINE_QUANTITY = 100_000


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON/CLI input.

    Rejects bools, floats, decimals and scientific notation rather than
    silently truncating them.
    """
    if value is None:
        raise ValidationError(f"{field} is required", details={"field": field})

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", details={"field": field})
    raise ValidationError(f"{field} must be an integer", details={"field": field})


def coerce_optional_int(value: Any, field: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_int(value, field)


def require_text(value: Any, field: str, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f"{field} is required", details={"field": field})
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank", details={"field": field})
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return text


def optional_text(value: Any, field: str, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return text


def parse_optional_datetime(value: Any, field: str):
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})


def enforce_price_cents(price: int, field: str = "price_cents") -> int:
    if price < 0:
        raise ValidationError(f"{field} must be >= 0", details={"field": field})
    if price > MAX_PRICE_CENTS:
        raise ValidationError(
            f"{field} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})",
            details={"field": field},
        )
    return price
