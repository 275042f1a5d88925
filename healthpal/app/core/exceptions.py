"""
Custom exceptions and error handlers for consistent error responses.

Every error leaves the API as {"error", "error_code", "details"} with the
HTTP status carrying the category.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Any = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


# 400 - bad or missing input

class ValidationFailedError(AppException):
    """Raised when input is rejected at the boundary."""

    def __init__(self, message: str, details: Any = None, error_code: str = "ERR_VALIDATION_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidInputError(ValidationFailedError):
    pass


class InvalidAmountError(ValidationFailedError):
    def __init__(self, message: str = "Amount must be a positive number"):
        super().__init__(message, error_code="ERR_VALIDATION_AMOUNT")


class InvalidPaymentMethodError(ValidationFailedError):
    def __init__(self, allowed):
        super().__init__(
            f"Payment method must be one of: {', '.join(allowed)}",
            details={"allowed": list(allowed)},
            error_code="ERR_VALIDATION_PAYMENT_METHOD"
        )


class ModeMismatchError(ValidationFailedError):
    def __init__(self, mode: str, modality: str):
        super().__init__(
            f"This consultation is not a {modality} consultation",
            details={"mode": mode, "requested": modality},
            error_code="ERR_VALIDATION_MODE"
        )


class InvalidTransitionError(ValidationFailedError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{requested}'",
            details={"entity": entity, "from": current, "to": requested},
            error_code="ERR_VALIDATION_TRANSITION"
        )


class AlreadyFundedError(AppException):
    """Donations are refused once a sponsorship reached its goal."""

    def __init__(self, sponsorship_id: int):
        super().__init__(
            message="This sponsorship is already fully funded",
            error_code="ERR_LEDGER_FUNDED",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"sponsorship_id": sponsorship_id}
        )


# 401 / 403

class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Any = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class NotAuthorizedError(InsufficientPermissionsError):
    """Caller is authenticated but not a party to the resource."""


# 404

class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# 409

class ConflictError(AppException):
    def __init__(self, message: str, details: Any = None, error_code: str = "ERR_CONFLICT_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class SponsorshipClosedError(ConflictError):
    def __init__(self, sponsorship_id: int):
        super().__init__(
            "This sponsorship is closed",
            details={"sponsorship_id": sponsorship_id},
            error_code="ERR_CONFLICT_CLOSED"
        )


class DuplicateEntityError(ConflictError):
    """A unique constraint rejected the write."""

    def __init__(self, entity: str, key: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"{entity} already exists",
            details=key,
            error_code="ERR_CONFLICT_DUPLICATE"
        )


# 502

class PaymentGatewayError(AppException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="ERR_PAYMENT_GATEWAY",
            status_code=status.HTTP_502_BAD_GATEWAY
        )


# Global Exception Handlers

def _error_body(message: str, error_code: str, details: Any = None) -> Dict[str, Any]:
    body = {"error": message, "error_code": error_code}
    if details:
        body["details"] = details
    return body


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.error_code, exc.details)
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail), error_code),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            "Validation error",
            "ERR_VALIDATION",
            {"errors": jsonable_encoder(exc.errors())}
        )
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    details = None
    if request.app.state.settings.debug:
        details = f"{type(exc).__name__}: {exc}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("An internal server error occurred", "ERR_INTERNAL_SERVER", details)
    )
