from __future__ import annotations

import re
from typing import Any

from .time_utils import coerce_epoch_ms


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

BARCODE_PATTERN = re.compile(r"^\d{8,13}$")
MAX_NAME_LENGTH = 255
MAX_CATEGORY_LENGTH = 100
MAX_CUSTOMER_NAME_LENGTH = 120
MAX_NOTES_LENGTH = 500


class StockroomError(Exception):
    """Base class for failures returned to callers of the core."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(StockroomError, ValueError):
    """400-level input problem, raised before any store access."""

    status_code = 400


class ConflictError(StockroomError, ValueError):
    """409-level business rule conflict (e.g., duplicate barcode)."""

    status_code = 409


class NotFoundError(StockroomError, LookupError):
    """Referenced record does not exist."""

    status_code = 404


class InsufficientStockError(ConflictError):
    """A stock change would drive the quantity on hand below zero."""

    def __init__(
        self,
        product_id: str,
        *,
        product_name: str | None = None,
        requested: int | None = None,
        available: int | None = None,
    ):
        label = product_name or product_id
        super().__init__(
            f"Insufficient stock for {label}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available


class AlreadyAppliedError(ConflictError):
    """An inventory count's variance has already been posted to stock."""

    def __init__(self, count_id: str):
        super().__init__(
            f"Inventory count {count_id} has already been applied",
            details={"count_id": count_id},
        )
        self.count_id = count_id


class TransactionError(StockroomError):
    """
    Store-level failure or lock timeout.

    Carries the operation name and affected id so the caller can decide
    whether to retry.
    """

    status_code = 503

    def __init__(self, operation: str, entity_id: str | None = None, cause: Exception | None = None):
        message = f"{operation} failed"
        if entity_id:
            message = f"{operation} failed for {entity_id}"
        super().__init__(
            message,
            details={
                "operation": operation,
                "entity_id": entity_id,
                "cause": type(cause).__name__ if cause is not None else None,
            },
        )
        self.operation = operation
        self.entity_id = entity_id
        self.cause = cause


class CacheError(StockroomError):
    """Cache backend failure. Never surfaced; callers fall back to the store."""


def require_text(data: dict, key: str, *, max_length: int, required: bool = True) -> str | None:
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required", details={"field": key})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", details={"field": key})
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"{key} is required", details={"field": key})
        return None
    if len(value) > max_length:
        raise ValidationError(
            f"{key} must be at most {max_length} characters",
            details={"field": key},
        )
    return value


def validate_barcode(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("barcode must be a string of digits", details={"field": "barcode"})
    barcode = value.strip()
    if not BARCODE_PATTERN.match(barcode):
        raise ValidationError(
            "barcode must be 8 to 13 digits",
            details={"field": "barcode", "value": barcode},
        )
    return barcode


def validate_int(value: Any, key: str, *, minimum: int | None = None) -> int:
    """Strict integer check: rejects bools, floats and decimal strings."""
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer", details={"field": key})
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{key} must be an integer", details={"field": key})
        value = int(stripped)
    if not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer", details={"field": key})
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be at least {minimum}", details={"field": key})
    return value


def validate_timestamp(value: Any, key: str, *, required: bool = True) -> int | None:
    """Epoch ms from an int, digit string or ISO-8601 string."""
    try:
        ms = coerce_epoch_ms(value)
    except ValueError:
        raise ValidationError(f"{key} must be epoch milliseconds or an ISO-8601 datetime", details={"field": key})
    if ms is None and required:
        raise ValidationError(f"{key} is required", details={"field": key})
    return ms
