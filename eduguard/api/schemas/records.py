"""
Schemas for schools, students, attendance and performance records
"""
import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ...models.records import AbsenceReason, AssessmentType, AttendanceStatus, Term
from ...models.risk import Severity
from .risk_flags import DetectionResultResponse


class SchoolCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    district: Optional[str] = None
    sector: Optional[str] = None


class SchoolResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    district: Optional[str] = None
    sector: Optional[str] = None
    is_active: bool


class GuardianContactSchema(BaseModel):
    name: Optional[str] = None
    relation: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    is_primary: bool = False


class StudentProfileFields(BaseModel):
    class_name: Optional[str] = None
    ubudehe_level: Optional[int] = Field(None, ge=1, le=4)
    has_parents: Optional[bool] = None
    family_stability: Optional[bool] = None
    distance_to_school_km: Optional[float] = Field(None, ge=0)
    guardian_contacts: Optional[List[GuardianContactSchema]] = None


class StudentCreateRequest(StudentProfileFields):
    school_id: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class StudentUpdateRequest(StudentProfileFields):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)


class StudentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    school_id: str
    first_name: str
    last_name: str
    class_name: Optional[str] = None
    is_active: bool
    ubudehe_level: Optional[int] = None
    has_parents: Optional[bool] = None
    family_stability: Optional[bool] = None
    distance_to_school_km: Optional[float] = None
    guardian_contacts: List[GuardianContactSchema] = []
    risk_level: Severity
    last_all_flags_resolved_at: Optional[dt.datetime] = None
    created_at: dt.datetime


class AttendanceRequest(BaseModel):
    student_id: str
    date: dt.date
    status: AttendanceStatus
    reason: Optional[AbsenceReason] = None
    notes: Optional[str] = None


class AttendanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    school_id: str
    date: dt.date
    status: AttendanceStatus
    reason: Optional[AbsenceReason] = None
    notes: Optional[str] = None
    marked_by: Optional[str] = None
    modified_by: Optional[str] = None
    modified_at: Optional[dt.datetime] = None


class PerformanceRequest(BaseModel):
    student_id: str
    subject: str = Field(..., min_length=1, max_length=100)
    term: Term
    academic_year: str = Field(..., pattern=r"^\d{4}-\d{4}$")
    score: float = Field(..., ge=0)
    max_score: float = Field(100, ge=1)
    assessment_type: AssessmentType = AssessmentType.EXAM
    remarks: Optional[str] = None


class PerformanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    school_id: str
    subject: str
    term: Term
    academic_year: str
    score: float
    max_score: float
    grade: str
    assessment_type: AssessmentType
    remarks: Optional[str] = None
    entered_by: Optional[str] = None
    created_at: dt.datetime


class StudentWriteResponse(BaseModel):
    student: StudentResponse
    detection: Optional[DetectionResultResponse] = None


class AttendanceWriteResponse(BaseModel):
    record: AttendanceResponse
    created: bool
    detection: Optional[DetectionResultResponse] = None


class PerformanceWriteResponse(BaseModel):
    record: PerformanceResponse
    detection: Optional[DetectionResultResponse] = None
