# Overview: Error taxonomy shared by services and routes, plus JSON translation for Flask.

"""
MyPOS error taxonomy (authoritative)

Every error a service raises on purpose derives from MyPosError and carries:
- code: stable machine-readable identifier (clients switch on this)
- status_code: HTTP status the boundary answers with
- details: structured context (e.g. which product ran out of stock)

Routes translate with error_response(). Anything that is not a MyPosError is
an unexpected failure: logged with a stack trace, answered with a generic 500.
Raw storage error text never reaches the client.
"""

from __future__ import annotations

from flask import current_app
from werkzeug.exceptions import HTTPException


class MyPosError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(MyPosError):
    """400-level input problem (shape, type, range or arithmetic mismatch)."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(MyPosError):
    """Referenced row is absent or belongs to another store."""
    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{message}: {identifier}"
        super().__init__(message, details={"resource": resource, "id": identifier})
        self.code = f"{resource.upper()}_NOT_FOUND"
        self.resource = resource
        self.identifier = identifier


class InsufficientStockError(MyPosError):
    code = "INSUFFICIENT_STOCK"
    status_code = 422

    def __init__(self, *, product_id: int, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {product_name}",
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


class AlreadyVoidedError(MyPosError):
    code = "ALREADY_VOIDED"
    status_code = 400

    def __init__(self, invoice_number: str):
        super().__init__("Transaction already voided", details={"invoice_number": invoice_number})


class InvalidStateError(MyPosError):
    """Requested state transition is not allowed from the current status."""
    code = "INVALID_STATE"
    status_code = 400


class IdempotencyConflictError(MyPosError):
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409


class AuthenticationError(MyPosError):
    code = "UNAUTHORIZED"
    status_code = 401


class RateLimitedError(MyPosError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__("Too many requests, try again later", details={"retry_after": retry_after})
        self.retry_after = retry_after


class StorageError(MyPosError):
    """The unit of work could not be committed."""
    code = "DATABASE_ERROR"
    status_code = 500


def error_response(exc: MyPosError):
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, StorageError):
        current_app.logger.error("Storage failure: %s", exc.message, exc_info=exc.__cause__)
    return exc.to_dict(), exc.status_code, headers


def register_error_handlers(app) -> None:
    """Uniform JSON for errors raised outside a route body (decorators, routing)."""

    @app.errorhandler(MyPosError)
    def _handle_mypos_error(exc: MyPosError):
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException):
        return {"error": exc.description, "code": exc.name.upper().replace(" ", "_")}, exc.code

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        app.logger.exception("Unhandled error")
        return {"error": "Internal server error", "code": "INTERNAL_ERROR"}, 500
