"""
Schemas for risk flags, detection runs and risk summaries
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...models.risk import RiskType, Severity


# =============================================================================
# RISK FLAGS
# =============================================================================

class RiskFlagResponse(BaseModel):
    """Risk flag as stored"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    school_id: str
    type: RiskType
    severity: Severity
    title: str
    description: str
    data: Optional[Dict[str, Any]] = None
    is_active: bool
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    auto_generated: bool
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RiskFlagCreateRequest(BaseModel):
    """Manual flag raised by a staff member"""
    student_id: str
    type: RiskType
    severity: Severity
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    notes: Optional[str] = None


class RiskFlagUpdateRequest(BaseModel):
    severity: Optional[Severity] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)


class RiskFlagResolveRequest(BaseModel):
    resolution_notes: Optional[str] = None


# =============================================================================
# DETECTION
# =============================================================================

class DetectionResultResponse(BaseModel):
    """Outcome of one reconciliation"""
    risks_detected: int
    flags_created: int
    flags_updated: int
    risk_level: Optional[Severity] = None
    flags: List[RiskFlagResponse] = []

    @classmethod
    def from_result(cls, result) -> "DetectionResultResponse":
        return cls(
            risks_detected=result.risks_detected,
            flags_created=result.flags_created,
            flags_updated=result.flags_updated,
            risk_level=result.risk_level,
            flags=[RiskFlagResponse.model_validate(flag) for flag in result.flags],
        )


class DetectionAcceptedResponse(BaseModel):
    school_id: str
    status: str = "accepted"


# =============================================================================
# SUMMARIES
# =============================================================================

class StudentRiskSummaryResponse(BaseModel):
    student_id: str
    overall_risk: Severity
    risk_level: Severity
    total_active: int
    by_severity: Dict[str, int]
    by_type: Dict[str, int]
    last_all_flags_resolved_at: Optional[datetime] = None


class SchoolRiskSummaryResponse(BaseModel):
    school_id: str
    total_active_flags: int
    flags_by_severity: Dict[str, int]
    flags_by_type: Dict[str, int]
    students_by_risk_level: Dict[str, int]
