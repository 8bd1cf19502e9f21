"""
Shared error handling for the Storefront Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    success: bool = False
    code: str
    message: str
    details: Dict[str, Any] = {}


class StorefrontException(Exception):
    """Base exception for Storefront services."""

    http_status = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthorizationError(StorefrontException):
    """Authorization-related errors."""

    http_status = 403

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(StorefrontException):
    """Validation-related errors."""

    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(StorefrontException):
    """Requested resource does not exist upstream."""

    http_status = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ServiceError(StorefrontException):
    """Service-related errors."""

    http_status = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class UpstreamError(StorefrontException):
    """Errors returned by (or while reaching) an upstream service."""

    http_status = 502

    def __init__(
        self,
        service: str,
        message: str = "Upstream service error",
        status_code: Optional[int] = None,
        upstream_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.service = service
        self.status_code = status_code
        self.upstream_code = upstream_code
        merged = dict(details or {})
        if status_code is not None:
            merged.setdefault("status_code", status_code)
        if upstream_code:
            merged.setdefault("upstream_code", upstream_code)
        super().__init__("UPSTREAM_ERROR", f"{service}: {message}", merged)


class ShippingCalculationError(StorefrontException):
    """The shipping endpoint answered but refused to quote (``success: false``)."""

    http_status = 422

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.server_message = message
        super().__init__("SHIPPING_CALCULATION_ERROR", message or "Shipping calculation failed", details)


class CalculationCancelledError(StorefrontException):
    """A superseded calculation noticed its cancellation token."""

    def __init__(self, message: str = "Calculation cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__("CALCULATION_CANCELLED", message, details)
