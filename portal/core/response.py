"""Unified response envelope and error codes"""

from typing import Any


# ---- Error codes ----
class ErrorCode:
    SUCCESS = 0
    PARAM_INVALID = 1001
    NOT_FOUND = 1002
    CONFLICT = 1003
    AUTH_FAILED = 2001
    TOKEN_EXPIRED = 2002
    TOKEN_INVALID = 2003
    PERMISSION_DENIED = 3001
    AI_PROVIDER_ERROR = 4001
    MODERATION_BLOCKED = 5001
    INTERNAL_ERROR = 9999


# ---- Envelope ----
def success(data: Any = None, message: str = "success") -> dict:
    """Success response"""
    return {"code": ErrorCode.SUCCESS, "message": message, "data": data}


def error(code: int, message: str, data: Any = None) -> dict:
    """Error response"""
    return {"code": code, "message": message, "data": data}
