"""
Typed failures raised by the ad lifecycle engine and rendered by the API layer.

Callers should branch on ``code`` only; message text is not a stable contract.
"""

import enum
from typing import Optional


class ErrorCode(str, enum.Enum):
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    NOT_ALLOWED = "NOT_ALLOWED"
    CONFLICT = "CONFLICT"
    DB_ERROR = "DB_ERROR"


HTTP_STATUS = {
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NOT_ALLOWED: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.DB_ERROR: 500,
}


class LifecycleError(Exception):
    def __init__(self, code: ErrorCode, message: str, extra: Optional[dict] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.extra = extra or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.code, 500)

    def to_body(self) -> dict:
        body = {"error": self.code.value, "message": self.message}
        body.update(self.extra)
        return body

    def __repr__(self) -> str:
        return f"LifecycleError({self.code.value}, {self.message!r})"


def not_found(message: str = "ad not found") -> LifecycleError:
    return LifecycleError(ErrorCode.NOT_FOUND, message)


def not_allowed(message: str) -> LifecycleError:
    return LifecycleError(ErrorCode.NOT_ALLOWED, message)


def bad_request(message: str) -> LifecycleError:
    return LifecycleError(ErrorCode.BAD_REQUEST, message)
