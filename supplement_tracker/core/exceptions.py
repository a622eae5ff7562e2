"""
Error taxonomy for the secure logbook core.

Services raise these internally; public service operations catch them and
return an ApiResponse so callers can render inline errors. Routes turn a
populated error_code back into an HTTPException.
"""

from typing import Generic, Optional, TypeVar, Dict
from fastapi import HTTPException
from pydantic import BaseModel

T = TypeVar("T")


class LogbookError(Exception):
    code = "logbook_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthRequired(LogbookError):
    code = "auth_required"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDenied(LogbookError):
    code = "permission_denied"
    status_code = 403


class NotFound(LogbookError):
    code = "not_found"
    status_code = 404


class VerificationFailed(LogbookError):
    code = "verification_failed"
    status_code = 422


class StorageFailure(LogbookError):
    code = "storage_failure"
    status_code = 502


class ValidationFailure(LogbookError):
    code = "validation_failure"
    status_code = 400


_STATUS_BY_CODE: Dict[str, int] = {
    cls.code: cls.status_code
    for cls in (AuthRequired, PermissionDenied, NotFound, VerificationFailed, StorageFailure, ValidationFailure)
}


class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, exc: LogbookError) -> "ApiResponse[T]":
        return cls(error=exc.message, error_code=exc.code)


def unwrap(response: ApiResponse):
    """Return response.data or raise the HTTPException matching its error_code."""
    if response.error is not None:
        status_code = _STATUS_BY_CODE.get(response.error_code, 500)
        raise HTTPException(status_code=status_code, detail=response.error)
    return response.data
