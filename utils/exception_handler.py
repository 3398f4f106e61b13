"""
Exception Handler Module
Provides the application exception hierarchy and the FastAPI handlers that
turn it into JSON error responses
"""

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

logger = logging.getLogger(__name__)


class PocketBountyError(Exception):
    """Base class for errors that map to a client-facing HTTP response"""

    status_code = 500

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"message": self.message}
        payload.update({key: value for key, value in self.extra.items() if value is not None})
        return payload


class ValidationError(PocketBountyError):
    """Custom validation error for input validation failures"""
    status_code = 400


class InvalidStateError(PocketBountyError):
    """Operation not allowed in the entity's current state"""
    status_code = 400


class InsufficientBalanceError(PocketBountyError):
    status_code = 400


class InsufficientPointsError(PocketBountyError):
    status_code = 400


class PaymentDeclinedError(PocketBountyError):
    """Payment provider rejected the charge or transfer"""
    status_code = 400

    def __init__(self, message: str, decline_code: Optional[str] = None):
        super().__init__(message, declineCode=decline_code)
        self.decline_code = decline_code


class AuthenticationError(PocketBountyError):
    status_code = 401


class PermissionDeniedError(PocketBountyError):
    status_code = 403


class NotFoundError(PocketBountyError):
    status_code = 404


class ConflictError(PocketBountyError):
    status_code = 409


class RateLimitExceededError(PocketBountyError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, retryAfter=retry_after)
        self.retry_after = retry_after


class PaymentNotConfiguredError(PocketBountyError):
    status_code = 503


async def pocket_bounty_error_handler(request: Request, exc: PocketBountyError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"⚠️ REQUEST_REJECTED {exc.status_code} {request.method} {request.url.path}: {exc.message}")

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    """Body/query validation failures are 400 with per-field messages"""
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location), "message": error.get("msg", "Invalid value")})
    logger.warning(f"⚠️ VALIDATION_ERROR {request.method} {request.url.path}: {errors}")
    return ORJSONResponse(status_code=400, content={"message": "Validation error", "errors": errors})


async def stripe_error_handler(request: Request, exc: stripe.StripeError) -> ORJSONResponse:
    """Provider errors not classified by a service surface the provider message"""
    message = getattr(exc, "user_message", None) or "Payment provider error. Please try again."
    logger.warning(f"⚠️ STRIPE_ERROR {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return ORJSONResponse(status_code=400, content={"message": message, "code": exc.code})


async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error(f"❌ UNHANDLED_ERROR {request.method} {request.url.path}: {exc}", exc_info=exc)
    return ORJSONResponse(status_code=500, content={"message": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PocketBountyError, pocket_bounty_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(stripe.StripeError, stripe_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
