"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"

    # Quota errors (3xxx)
    QUOTA_EXCEEDED = "ERR_3001"

    # Product lookup errors (4xxx)
    INVALID_PRODUCT_DATA = "ERR_4002"

    # External service errors (5xxx)
    TELEGRAM_ERROR = "ERR_5001"
    PRODUCT_LOOKUP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"

    # State machine errors (6xxx)
    MISSING_SESSION_CONTEXT = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class AdminAccessDeniedError(AppException):
    """Raised when a non-admin invokes an admin-only operation.

    The message is deliberately generic so it can be shown to the caller.
    """

    def __init__(self, user_id: str | int | None = None):
        super().__init__(
            message="Operation not available",
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details={"user_id": str(user_id)} if user_id is not None else None
        )


class OrderNotFoundError(NotFoundException):
    """Raised when an order number does not exist"""

    def __init__(self, order_number: str):
        super().__init__(
            resource="Order",
            identifier=order_number,
            error_code=ErrorCode.ORDER_NOT_FOUND
        )


class QuotaExceededError(AppException):
    """Raised when a user has used up the daily budget for an operation"""

    def __init__(self, user_id: int, operation: str, limit: int):
        super().__init__(
            message=f"Daily quota exceeded for '{operation}'",
            error_code=ErrorCode.QUOTA_EXCEEDED,
            status_code=429,
            details={"user_id": user_id, "operation": operation, "limit": limit}
        )
        self.operation = operation
        self.limit = limit


class InvalidProductDataError(ValidationException):
    """Raised when a product-lookup payload is missing required fields"""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Invalid product data: {reason}",
            details=details,
            error_code=ErrorCode.INVALID_PRODUCT_DATA,
        )
        self.reason = reason


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ):
        """
        Build the error from an HTTP response in a consistent shape.

        Args:
            operation: operation name (e.g. sendMessage, extract-spu)
            response: response object (e.g. httpx.Response)
            message: custom message, built automatically if omitted
            max_response_chars: cap on the stored response_text
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class TelegramError(ExternalServiceException):
    """Raised when Telegram API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="telegram",
            message=f"Telegram API error: {message}",
            error_code=ErrorCode.TELEGRAM_ERROR,
            details=details
        )


class ProductLookupError(ExternalServiceException):
    """Raised when the POIZON lookup microservices fail"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="poizon",
            message=f"Product lookup error: {message}",
            error_code=ErrorCode.PRODUCT_LOOKUP_ERROR,
            details=details
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class StateMachineException(AppException):
    """Base exception for state machine errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )


class MissingSessionContextError(StateMachineException):
    """Raised when a step needs a context field an earlier step never filled"""

    def __init__(self, action: str, missing_field: str, user_id: int | None = None):
        super().__init__(
            message=f"'{action}' requires '{missing_field}' in the session context",
            error_code=ErrorCode.MISSING_SESSION_CONTEXT,
            details={
                "action": action,
                "missing_field": missing_field,
                "user_id": user_id
            }
        )
        self.action = action
        self.missing_field = missing_field
