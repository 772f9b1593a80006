# Overview: Domain error taxonomy shared by services and routes.

"""
Every business rule violation raised by a service is a CarPartsError.

Routes never inspect messages; they render the exception through
`error_response`, which uses the class-level HTTP status and machine code.
All of these are raised before or during a transaction, so the transaction
is rolled back and nothing is persisted.
"""

from __future__ import annotations

from flask import jsonify


class CarPartsError(Exception):
    """Base class for user-visible business errors."""
    status_code = 400
    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(CarPartsError):
    """400-level input problem (missing field, non-positive quantity, empty item list)."""
    code = "validation_error"


class PermissionDeniedError(CarPartsError):
    """Caller's role lacks rights for the requested field or action."""
    status_code = 403
    code = "permission_denied"


class NotFoundError(CarPartsError):
    status_code = 404
    code = "not_found"


class PartNotFoundError(NotFoundError):
    def __init__(self, part_id: int):
        super().__init__(f"Part {part_id} not found", details={"part_id": part_id})


class InvalidStateError(CarPartsError):
    """State-machine violation (e.g. completing a cancelled reservation)."""
    status_code = 409
    code = "invalid_state"


class InsufficientStockError(CarPartsError):
    status_code = 409
    code = "insufficient_stock"


class OverRefundError(CarPartsError):
    status_code = 409
    code = "over_refund"


class ConflictError(CarPartsError):
    """Concurrent modification or uniqueness clash; safe for the caller to retry."""
    status_code = 409
    code = "conflict"


def error_response(exc: CarPartsError):
    return jsonify(exc.to_dict()), exc.status_code
