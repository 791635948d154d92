"""
Router for risk flags: listing, summaries, detection and manual management
"""
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ...core.clock import Clock
from ...core.exceptions import RiskFlagNotFoundError, SchoolNotFoundError
from ...core.risk_detection import RiskDetectionService
from ...models.risk import RiskType, Severity
from ...notifications.dispatcher import Dispatcher
from ...notifications.guardian import MessageTransport
from ..deps import (
    get_actor_id,
    get_clock,
    get_detection_service,
    get_message_transport,
    get_notification_dispatcher,
    get_session_maker,
)
from ..schemas.common import APIResponse
from ..schemas.risk_flags import (
    DetectionAcceptedResponse,
    DetectionResultResponse,
    RiskFlagCreateRequest,
    RiskFlagResolveRequest,
    RiskFlagResponse,
    RiskFlagUpdateRequest,
    SchoolRiskSummaryResponse,
    StudentRiskSummaryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/risk-flags", tags=["Risk Flags"])


def run_school_detection(
    session_maker: Callable[[], Session],
    clock: Clock,
    dispatcher: Dispatcher,
    transport: MessageTransport,
    school_id: str,
    actor_id: str,
    legacy_rules: bool = False
) -> None:
    """
    School-wide detection with its own session; runs after the response
    has been sent, so the outcome is only logged.
    """
    session = session_maker()
    try:
        service = RiskDetectionService(session, clock, dispatcher, transport)
        summary = service.detect_risks_for_school(school_id, actor_id=actor_id, legacy_rules=legacy_rules)
        logger.info("Background school detection finished", extra=summary.to_dict())
    except Exception as e:
        logger.error(
            f"Background school detection failed: {e}",
            extra={"school_id": school_id},
            exc_info=True
        )
    finally:
        session.close()


# =============================================================================
# QUERIES
# =============================================================================

@router.get(
    "",
    response_model=APIResponse[List[RiskFlagResponse]],
    summary="List risk flags",
    description="Active flags by default; filter by school, student, type and severity"
)
def list_risk_flags(
    school_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    type: Optional[RiskType] = Query(None),
    severity: Optional[Severity] = Query(None),
    include_resolved: bool = Query(False),
    service: RiskDetectionService = Depends(get_detection_service),
):
    flags = service.list_flags(
        school_id=school_id,
        student_id=student_id,
        risk_type=type,
        severity=severity,
        include_resolved=include_resolved,
    )
    return APIResponse(
        data=[RiskFlagResponse.model_validate(flag) for flag in flags],
        message=f"{len(flags)} risk flags"
    )


@router.get(
    "/summary",
    response_model=APIResponse[SchoolRiskSummaryResponse],
    summary="School risk summary",
    description="Active flag counts by severity and type, and students by risk level"
)
def get_school_summary(
    school_id: str = Query(...),
    service: RiskDetectionService = Depends(get_detection_service),
):
    return APIResponse(data=SchoolRiskSummaryResponse(**service.get_school_summary(school_id)))


@router.get(
    "/student/{student_id}",
    response_model=APIResponse[StudentRiskSummaryResponse],
    summary="Student risk summary"
)
def get_student_summary(
    student_id: str,
    service: RiskDetectionService = Depends(get_detection_service),
):
    return APIResponse(data=StudentRiskSummaryResponse(**service.get_student_summary(student_id)))


# =============================================================================
# DETECTION
# =============================================================================

@router.post(
    "/detect/{student_id}",
    response_model=APIResponse[DetectionResultResponse],
    summary="Run risk detection for a student",
    description="Full pass: every enabled evaluator plus combined escalation"
)
def detect_for_student(
    student_id: str,
    legacy_rules: bool = Query(False),
    service: RiskDetectionService = Depends(get_detection_service),
    actor_id: str = Depends(get_actor_id),
):
    result = service.detect_risks_for_student(student_id, actor_id=actor_id, legacy_rules=legacy_rules)
    return APIResponse(
        data=DetectionResultResponse.from_result(result),
        message=f"Detected {result.risks_detected} risks"
    )


@router.post(
    "/detect-all",
    response_model=APIResponse[DetectionAcceptedResponse],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run risk detection for a whole school",
    description="Runs in the background; progress is reported in the logs and metrics"
)
def detect_for_school(
    background_tasks: BackgroundTasks,
    school_id: str = Query(...),
    legacy_rules: bool = Query(False),
    service: RiskDetectionService = Depends(get_detection_service),
    session_maker: Callable[[], Session] = Depends(get_session_maker),
    clock: Clock = Depends(get_clock),
    dispatcher: Dispatcher = Depends(get_notification_dispatcher),
    transport: MessageTransport = Depends(get_message_transport),
    actor_id: str = Depends(get_actor_id),
):
    if not service.schools.exists(school_id):
        raise SchoolNotFoundError(school_id)
    background_tasks.add_task(
        run_school_detection, session_maker, clock, dispatcher, transport, school_id, actor_id, legacy_rules
    )
    logger.info("School risk detection scheduled", extra={"school_id": school_id, "actor_id": actor_id})
    return APIResponse(
        data=DetectionAcceptedResponse(school_id=school_id),
        message="Risk detection started in background"
    )


# =============================================================================
# MANUAL FLAGS
# =============================================================================

@router.post(
    "",
    response_model=APIResponse[RiskFlagResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Raise a risk flag manually"
)
def create_risk_flag(
    payload: RiskFlagCreateRequest,
    service: RiskDetectionService = Depends(get_detection_service),
    actor_id: str = Depends(get_actor_id),
):
    flag = service.create_flag(
        student_id=payload.student_id,
        actor_id=actor_id,
        risk_type=payload.type,
        severity=payload.severity,
        title=payload.title,
        description=payload.description,
        notes=payload.notes,
    )
    return APIResponse(data=RiskFlagResponse.model_validate(flag), message="Risk flag saved")


@router.get(
    "/{flag_id}",
    response_model=APIResponse[RiskFlagResponse],
    summary="Get a risk flag"
)
def get_risk_flag(
    flag_id: str,
    service: RiskDetectionService = Depends(get_detection_service),
):
    flag = service.flags.get_by_id(flag_id)
    if not flag:
        raise RiskFlagNotFoundError(flag_id)
    return APIResponse(data=RiskFlagResponse.model_validate(flag))


@router.put(
    "/{flag_id}/resolve",
    response_model=APIResponse[RiskFlagResponse],
    summary="Resolve a risk flag"
)
def resolve_risk_flag(
    flag_id: str,
    payload: Optional[RiskFlagResolveRequest] = None,
    service: RiskDetectionService = Depends(get_detection_service),
    actor_id: str = Depends(get_actor_id),
):
    notes = payload.resolution_notes if payload else None
    flag = service.resolve_flag(flag_id, actor_id, notes)
    return APIResponse(data=RiskFlagResponse.model_validate(flag), message="Risk flag resolved")


@router.put(
    "/{flag_id}",
    response_model=APIResponse[RiskFlagResponse],
    summary="Edit a risk flag"
)
def update_risk_flag(
    flag_id: str,
    payload: RiskFlagUpdateRequest,
    service: RiskDetectionService = Depends(get_detection_service),
    actor_id: str = Depends(get_actor_id),
):
    flag = service.update_flag(flag_id, actor_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return APIResponse(data=RiskFlagResponse.model_validate(flag), message="Risk flag updated")


@router.delete(
    "/{flag_id}",
    response_model=APIResponse[None],
    summary="Delete a risk flag"
)
def delete_risk_flag(
    flag_id: str,
    service: RiskDetectionService = Depends(get_detection_service),
    actor_id: str = Depends(get_actor_id),
):
    service.delete_flag(flag_id, actor_id)
    return APIResponse(message="Risk flag deleted")
