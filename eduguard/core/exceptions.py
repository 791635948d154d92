"""
Domain errors raised by the engine and the services.

They carry no HTTP semantics; eduguard.api.exceptions maps them to
HTTP responses.
"""
from typing import Any, Dict, Optional


class EduGuardError(Exception):
    """Base error for the EduGuard engine"""

    error_code = "EDUGUARD_ERROR"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class StudentNotFoundError(EduGuardError):
    error_code = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: str):
        super().__init__(f"Student '{student_id}' not found", {"student_id": student_id})


class SchoolNotFoundError(EduGuardError):
    error_code = "SCHOOL_NOT_FOUND"

    def __init__(self, school_id: str):
        super().__init__(f"School '{school_id}' not found", {"school_id": school_id})


class RiskFlagNotFoundError(EduGuardError):
    error_code = "RISK_FLAG_NOT_FOUND"

    def __init__(self, flag_id: str):
        super().__init__(f"Risk flag '{flag_id}' not found", {"flag_id": flag_id})


class RiskFlagAlreadyResolvedError(EduGuardError):
    """A flag episode can only be resolved once"""

    error_code = "RISK_FLAG_ALREADY_RESOLVED"

    def __init__(self, flag_id: str):
        super().__init__(f"Risk flag '{flag_id}' is already resolved", {"flag_id": flag_id})


class RecordValidationError(EduGuardError):
    """Invalid attendance/performance/student input"""

    error_code = "INVALID_RECORD"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
