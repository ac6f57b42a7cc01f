"""
Custom Exception Hierarchy

Only infrastructure failures cross a service boundary as exceptions.
Permission denials, quota exhaustion, blocked numbers and suspicious content
are ordinary return values.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # Integration / authorization errors (2xxx)
    INTEGRATION_NOT_FOUND = "ERR_2001"
    INVALID_INTEGRATION_SCOPE = "ERR_2002"
    AUTHORIZATION_STORE_UNAVAILABLE = "ERR_2003"

    # Quota errors (3xxx)
    QUOTA_STORE_UNAVAILABLE = "ERR_3001"

    # Security audit errors (4xxx)
    SECURITY_EVENT_NOT_FOUND = "ERR_4001"


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
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
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


class InvalidIntegrationScopeError(AppException):
    """Raised when an integration row has both or neither of owner_id/team_id"""

    def __init__(self, integration_id: str):
        super().__init__(
            message=f"Integration {integration_id} must be owned by exactly one user or team",
            error_code=ErrorCode.INVALID_INTEGRATION_SCOPE,
            status_code=500,
            details={"integration_id": integration_id}
        )


class StorageUnavailableError(AppException):
    """Base exception for persistence-layer outages"""

    def __init__(
        self,
        store: str,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["store"] = store


class AuthorizationStoreError(StorageUnavailableError):
    """
    Raised when membership state cannot be read.

    החלטת הרשאה לא מקורבת לעולם — שגיאת תשתית עוברת לקורא כשגיאה.
    """

    def __init__(self, operation: str, details: dict[str, Any] | None = None):
        super().__init__(
            store="authorization",
            message=f"Authorization store unavailable during {operation}",
            error_code=ErrorCode.AUTHORIZATION_STORE_UNAVAILABLE,
            details={"operation": operation, **(details or {})}
        )


class QuotaStoreUnavailableError(StorageUnavailableError):
    """Raised when rate-limit windows cannot be written"""

    def __init__(self, integration_id: str, endpoint: str, details: dict[str, Any] | None = None):
        super().__init__(
            store="quota",
            message=f"Quota store unavailable for {endpoint}",
            error_code=ErrorCode.QUOTA_STORE_UNAVAILABLE,
            details={"integration_id": integration_id, "endpoint": endpoint, **(details or {})}
        )
