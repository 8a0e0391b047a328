from __future__ import annotations

import re
from typing import Any


class DomainError(ValueError):
    """Base for errors the API reports back to the caller."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(DomainError):
    """400-level input problem."""


class ConflictError(DomainError):
    """
    409-level business rule conflict (invalid transition, duplicate pending order).

    current_state carries the authoritative persisted state so the client can resync.
    """

    def __init__(self, message: str, details: dict | None = None, current_state: dict | None = None):
        super().__init__(message, details)
        self.current_state = current_state


class NotFoundError(DomainError):
    """404-level missing entity."""


SHIPPING_REQUIRED_FIELDS = ("name", "phone", "address", "city", "state", "pincode")
SHIPPING_OPTIONAL_FIELDS = ("landmark",)

_PINCODE_RE = re.compile(r"^\d{6}$")
_PHONE_RE = re.compile(r"^\+?[\d\s-]{10,15}$")


def validate_shipping_address(payload: Any) -> dict:
    """
    Validates + normalizes a structured shipping address.

    Returns a cleaned dict containing only the known fields.
    """
    if not isinstance(payload, dict):
        raise ValidationError("shipping_address must be an object")

    missing = [f for f in SHIPPING_REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing shipping fields: {', '.join(missing)}",
            details={"missing_fields": missing},
        )

    cleaned = {f: str(payload[f]).strip() for f in SHIPPING_REQUIRED_FIELDS}
    for f in SHIPPING_OPTIONAL_FIELDS:
        value = str(payload.get(f) or "").strip()
        if value:
            cleaned[f] = value

    if not _PINCODE_RE.match(cleaned["pincode"]):
        raise ValidationError("pincode must be 6 digits", details={"field": "pincode"})
    if not _PHONE_RE.match(cleaned["phone"]):
        raise ValidationError("phone number is invalid", details={"field": "phone"})

    return cleaned


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and blank strings."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not re.fullmatch(r"-?\d+", stripped):
            raise ValidationError(f"{field} must be an integer")
        result = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return result


def optional_text(value: Any, field: str) -> str | None:
    """Strip a free-text field; blank becomes None and non-strings are rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None
