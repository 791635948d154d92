"""
Router for the record writes that feed risk detection

Every write responds with the stored record and the outcome of the
detection pass it triggered (null when detection failed).
"""
import logging

from fastapi import APIRouter, Depends, Response, status

from ...core.exceptions import SchoolNotFoundError, StudentNotFoundError
from ...core.records import RecordService
from ...database.repositories import SchoolRepository
from ..deps import get_actor_id, get_record_service, get_school_repository
from ..schemas.common import APIResponse
from ..schemas.records import (
    AttendanceRequest,
    AttendanceResponse,
    AttendanceWriteResponse,
    PerformanceRequest,
    PerformanceResponse,
    PerformanceWriteResponse,
    SchoolCreateRequest,
    SchoolResponse,
    StudentCreateRequest,
    StudentResponse,
    StudentUpdateRequest,
    StudentWriteResponse,
)
from ..schemas.risk_flags import DetectionResultResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Records"])


def _detection(result):
    return DetectionResultResponse.from_result(result.detection) if result.detection else None


# =============================================================================
# SCHOOLS
# =============================================================================

@router.post(
    "/schools",
    response_model=APIResponse[SchoolResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a school"
)
def create_school(
    payload: SchoolCreateRequest,
    schools: SchoolRepository = Depends(get_school_repository),
):
    school = schools.create(payload.name, district=payload.district, sector=payload.sector)
    return APIResponse(data=SchoolResponse.model_validate(school), message="School registered")


@router.get("/schools/{school_id}", response_model=APIResponse[SchoolResponse], summary="Get a school")
def get_school(school_id: str, schools: SchoolRepository = Depends(get_school_repository)):
    school = schools.get_by_id(school_id)
    if not school:
        raise SchoolNotFoundError(school_id)
    return APIResponse(data=SchoolResponse.model_validate(school))


# =============================================================================
# STUDENTS
# =============================================================================

@router.post(
    "/students",
    response_model=APIResponse[StudentWriteResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a student",
    description="Runs socio-economic and distance risk detection for the new student"
)
def register_student(
    payload: StudentCreateRequest,
    service: RecordService = Depends(get_record_service),
    actor_id: str = Depends(get_actor_id),
):
    profile = payload.model_dump(exclude_unset=True, exclude={"school_id", "first_name", "last_name"})
    result = service.register_student(
        payload.school_id, payload.first_name, payload.last_name, actor_id=actor_id, **profile
    )
    return APIResponse(
        data=StudentWriteResponse(
            student=StudentResponse.model_validate(result.record),
            detection=_detection(result),
        ),
        message="Student registered"
    )


@router.get("/students/{student_id}", response_model=APIResponse[StudentResponse], summary="Get a student")
def get_student(student_id: str, service: RecordService = Depends(get_record_service)):
    student = service.students.get_by_id(student_id)
    if not student:
        raise StudentNotFoundError(student_id)
    return APIResponse(data=StudentResponse.model_validate(student))


@router.patch(
    "/students/{student_id}",
    response_model=APIResponse[StudentWriteResponse],
    summary="Update a student profile",
    description="Socio-economic detection re-runs when a risk-relevant field changes"
)
def update_student(
    student_id: str,
    payload: StudentUpdateRequest,
    service: RecordService = Depends(get_record_service),
    actor_id: str = Depends(get_actor_id),
):
    result = service.update_student_profile(student_id, actor_id=actor_id, **payload.model_dump(exclude_unset=True))
    return APIResponse(
        data=StudentWriteResponse(
            student=StudentResponse.model_validate(result.record),
            detection=_detection(result),
        ),
        message="Student updated"
    )


@router.delete(
    "/students/{student_id}",
    response_model=APIResponse[StudentResponse],
    summary="Deactivate a student"
)
def deactivate_student(student_id: str, service: RecordService = Depends(get_record_service)):
    student = service.deactivate_student(student_id)
    return APIResponse(data=StudentResponse.model_validate(student), message="Student deactivated")


# =============================================================================
# ATTENDANCE & PERFORMANCE
# =============================================================================

@router.post(
    "/attendance",
    response_model=APIResponse[AttendanceWriteResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Save attendance",
    description="One record per student per date; saving again corrects it. Runs weekly attendance detection."
)
def save_attendance(
    payload: AttendanceRequest,
    response: Response,
    service: RecordService = Depends(get_record_service),
    actor_id: str = Depends(get_actor_id),
):
    result = service.record_attendance(
        payload.student_id,
        payload.date,
        payload.status.value,
        reason=payload.reason.value if payload.reason else None,
        notes=payload.notes,
        actor_id=actor_id,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return APIResponse(
        data=AttendanceWriteResponse(
            record=AttendanceResponse.model_validate(result.record),
            created=result.created,
            detection=_detection(result),
        ),
        message="Attendance saved" if result.created else "Attendance corrected"
    )


@router.post(
    "/performance",
    response_model=APIResponse[PerformanceWriteResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Save a performance record",
    description="Grade is derived from score/max_score. Runs term performance detection."
)
def save_performance(
    payload: PerformanceRequest,
    service: RecordService = Depends(get_record_service),
    actor_id: str = Depends(get_actor_id),
):
    result = service.record_performance(
        payload.student_id,
        payload.subject,
        payload.term.value,
        payload.academic_year,
        payload.score,
        max_score=payload.max_score,
        assessment_type=payload.assessment_type.value,
        remarks=payload.remarks,
        actor_id=actor_id,
    )
    return APIResponse(
        data=PerformanceWriteResponse(
            record=PerformanceResponse.model_validate(result.record),
            detection=_detection(result),
        ),
        message="Performance saved"
    )
