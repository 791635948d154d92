"""
HTTP exceptions for the REST API and the mapping from domain errors
"""
from typing import Any, Dict, Optional, Type

from fastapi import HTTPException, status

from ..core import exceptions as domain


class EduGuardAPIException(HTTPException):
    """Base exception for the EduGuard API"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        headers: Optional[Dict[str, str]] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.extra = extra or {}


class DatabaseOperationError(EduGuardAPIException):
    """Unexpected database failure"""

    def __init__(self, operation: str, details: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database operation failed: {operation}",
            error_code="DATABASE_ERROR",
            extra={"operation": operation, "details": details}
        )


_STATUS_BY_ERROR: Dict[Type[domain.EduGuardError], int] = {
    domain.StudentNotFoundError: status.HTTP_404_NOT_FOUND,
    domain.SchoolNotFoundError: status.HTTP_404_NOT_FOUND,
    domain.RiskFlagNotFoundError: status.HTTP_404_NOT_FOUND,
    domain.RiskFlagAlreadyResolvedError: status.HTTP_409_CONFLICT,
    domain.RecordValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def to_api_exception(error: domain.EduGuardError) -> EduGuardAPIException:
    """HTTP counterpart of a domain error; unknown domain errors map to 400."""
    status_code = _STATUS_BY_ERROR.get(type(error), status.HTTP_400_BAD_REQUEST)
    return EduGuardAPIException(
        status_code=status_code,
        detail=error.message,
        error_code=error.error_code,
        extra=error.extra,
    )
