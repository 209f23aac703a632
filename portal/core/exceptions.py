from typing import Optional

from portal.core.response import ErrorCode


class PortalError(Exception):
    """Base error for the portal backend, mapped onto the unified error codes."""

    def __init__(
        self,
        message: str,
        code: str = "portal_error",
        status_code: int = 500,
        error_code: int = ErrorCode.INTERNAL_ERROR,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class NotFoundError(PortalError):
    """Referenced record does not exist (in the caller's organization)"""
    def __init__(self, message: str = "Resource not found", code: str = "not_found"):
        super().__init__(message, code=code, status_code=404, error_code=ErrorCode.NOT_FOUND)


class ValidationError(PortalError):
    """Input rejected before any write"""
    def __init__(self, message: str, code: str = "validation_error"):
        super().__init__(message, code=code, status_code=422, error_code=ErrorCode.PARAM_INVALID)


class ConflictError(PortalError):
    """Concurrent write collided with a uniqueness guarantee"""
    def __init__(self, message: str, code: str = "conflict"):
        super().__init__(message, code=code, status_code=409, error_code=ErrorCode.CONFLICT)


class ProviderError(PortalError):
    """AI provider call failed (transport, HTTP status or unusable payload)"""
    def __init__(self, message: str = "AI provider request failed", code: str = "provider_error",
                 provider: str = "", status_code: int = 502):
        self.provider = provider
        super().__init__(message, code=code, status_code=status_code,
                         error_code=ErrorCode.AI_PROVIDER_ERROR)


class AuthError(PortalError):
    """Authentication / authorization failure"""
    def __init__(self, error_code: int, message: str):
        status_code = 401 if error_code in (
            ErrorCode.AUTH_FAILED, ErrorCode.TOKEN_EXPIRED, ErrorCode.TOKEN_INVALID,
        ) else 403
        super().__init__(message, code="auth_error", status_code=status_code, error_code=error_code)
