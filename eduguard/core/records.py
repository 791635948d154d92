"""
Record writes that trigger risk detection

Each write commits first and then runs the matching narrow detection
path. A detection failure does not undo the write: it is logged and the
result carries detection=None.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

from ..database.models import StudentDB
from ..database.repositories import (
    AttendanceRepository,
    PerformanceRepository,
    SchoolRepository,
    StudentRepository,
)
from ..models.records import AbsenceReason, AssessmentType, AttendanceStatus, Term, grade_for_score
from .constants import SYSTEM_ACTOR_ID
from .exceptions import RecordValidationError, SchoolNotFoundError, StudentNotFoundError
from .reconciler import ReconcileResult
from .risk_detection import RiskDetectionService

logger = logging.getLogger(__name__)

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")
PROFILE_RISK_FIELDS = {"ubudehe_level", "has_parents", "family_stability", "distance_to_school_km"}


@dataclass
class RecordResult:
    record: Any
    created: bool = True
    detection: Optional[ReconcileResult] = None


def _enum(value: Any, enum_class, field_name: str):
    try:
        return enum_class(value)
    except ValueError:
        allowed = [member.value for member in enum_class]
        raise RecordValidationError(
            f"Invalid {field_name}: {value}", {"field": field_name, "allowed": allowed}
        )


def _validate_profile(fields: Dict[str, Any]) -> None:
    level = fields.get("ubudehe_level")
    if level is not None and not 1 <= level <= 4:
        raise RecordValidationError("ubudehe_level must be between 1 and 4", {"field": "ubudehe_level"})
    distance = fields.get("distance_to_school_km")
    if distance is not None and distance < 0:
        raise RecordValidationError(
            "distance_to_school_km cannot be negative", {"field": "distance_to_school_km"}
        )


def validate_academic_year(value: str) -> str:
    """'2025-2026' style labels, second year following the first"""
    match = ACADEMIC_YEAR_PATTERN.match(value or "")
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise RecordValidationError(
            f"Invalid academic year: {value}", {"field": "academic_year", "expected": "YYYY-YYYY"}
        )
    return value


class RecordService:
    """Student, attendance and performance writes"""

    def __init__(self, detection: RiskDetectionService):
        self.detection = detection
        self.clock = detection.clock
        self.schools = SchoolRepository(detection.db)
        self.students = StudentRepository(detection.db)
        self.attendance = AttendanceRepository(detection.db)
        self.performance = PerformanceRepository(detection.db)

    def _detect(self, run: Callable[..., ReconcileResult], student_id: str,
                actor_id: Optional[str]) -> Optional[ReconcileResult]:
        try:
            return run(student_id, actor_id=actor_id)
        except Exception as e:
            self.detection.db.rollback()
            logger.error(
                f"Risk detection after record write failed: {e}",
                extra={"student_id": student_id, "trigger": run.__name__},
                exc_info=True
            )
            return None

    def _student(self, student_id: str) -> StudentDB:
        student = self.students.get_by_id(student_id)
        if not student:
            raise StudentNotFoundError(student_id)
        return student

    # =========================================================================
    # STUDENTS
    # =========================================================================

    def register_student(
        self,
        school_id: str,
        first_name: str,
        last_name: str,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID,
        **profile
    ) -> RecordResult:
        """
        Register a student and run socio-economic/distance detection.

        Raises:
            SchoolNotFoundError: If the school does not exist
            RecordValidationError: On an invalid profile
        """
        if not self.schools.exists(school_id):
            raise SchoolNotFoundError(school_id)
        if not (first_name or "").strip() or not (last_name or "").strip():
            raise RecordValidationError("first_name and last_name are required")
        unknown = set(profile) - set(StudentRepository.PROFILE_FIELDS)
        if unknown:
            raise RecordValidationError("Unknown student fields", {"fields": sorted(unknown)})
        _validate_profile(profile)

        student = self.students.create(school_id, first_name.strip(), last_name.strip(), **profile)
        detection = self._detect(self.detection.detect_socioeconomic_risks, student.id, actor_id)
        return RecordResult(record=student, detection=detection)

    def update_student_profile(
        self,
        student_id: str,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID,
        **fields
    ) -> RecordResult:
        """Update a profile; socio-economic detection re-runs when a risk field changed."""
        self._student(student_id)
        unknown = set(fields) - set(StudentRepository.PROFILE_FIELDS)
        if unknown:
            raise RecordValidationError("Unknown student fields", {"fields": sorted(unknown)})
        _validate_profile(fields)

        student = self.students.update_profile(student_id, **fields)
        detection = None
        if PROFILE_RISK_FIELDS & set(fields):
            detection = self._detect(self.detection.detect_socioeconomic_risks, student_id, actor_id)
        return RecordResult(record=student, created=False, detection=detection)

    def deactivate_student(self, student_id: str) -> StudentDB:
        """Students are never deleted; inactive students are skipped by batch runs."""
        self._student(student_id)
        return self.students.deactivate(student_id)

    # =========================================================================
    # ATTENDANCE
    # =========================================================================

    def record_attendance(
        self,
        student_id: str,
        on: date,
        status: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID
    ) -> RecordResult:
        """
        Save the attendance of one day and run weekly attendance detection.
        A second save for the same date corrects the record in place.

        Raises:
            StudentNotFoundError: If the student does not exist
            RecordValidationError: On an invalid status/reason or a future date
        """
        student = self._student(student_id)
        status = _enum(status, AttendanceStatus, "status")
        if reason is not None:
            reason = _enum(reason, AbsenceReason, "reason")
        if on > self.clock.today():
            raise RecordValidationError("Attendance cannot be recorded for a future date", {"date": on.isoformat()})

        record, created = self.attendance.upsert(
            student_id=student.id,
            school_id=student.school_id,
            on=on,
            status=status.value,
            reason=reason.value if reason else None,
            notes=notes,
            actor_id=actor_id,
            now=self.clock.now(),
        )
        logger.info(
            "Attendance saved" if created else "Attendance corrected",
            extra={"student_id": student_id, "date": on.isoformat(), "status": status.value}
        )
        detection = self._detect(self.detection.detect_weekly_attendance_risks, student_id, actor_id)
        return RecordResult(record=record, created=created, detection=detection)

    # =========================================================================
    # PERFORMANCE
    # =========================================================================

    def record_performance(
        self,
        student_id: str,
        subject: str,
        term: str,
        academic_year: str,
        score: float,
        max_score: float = 100,
        assessment_type: str = AssessmentType.EXAM.value,
        remarks: Optional[str] = None,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID
    ) -> RecordResult:
        """
        Save an assessment score (grade derived from the percentage) and run
        term performance detection.
        """
        student = self._student(student_id)
        term = _enum(term, Term, "term")
        assessment_type = _enum(assessment_type, AssessmentType, "assessment_type")
        validate_academic_year(academic_year)
        if not (subject or "").strip():
            raise RecordValidationError("subject is required", {"field": "subject"})
        if max_score < 1:
            raise RecordValidationError("max_score must be at least 1", {"field": "max_score"})
        if not 0 <= score <= max_score:
            raise RecordValidationError(
                "score must be between 0 and max_score", {"score": score, "max_score": max_score}
            )

        record = self.performance.create(
            student_id=student.id,
            school_id=student.school_id,
            subject=subject.strip(),
            term=term.value,
            academic_year=academic_year,
            score=score,
            max_score=max_score,
            grade=grade_for_score(score, max_score),
            assessment_type=assessment_type.value,
            remarks=remarks,
            entered_by=actor_id,
            now=self.clock.now(),
        )
        logger.info("Performance saved", extra={
            "student_id": student_id,
            "subject": record.subject,
            "term": record.term,
            "grade": record.grade,
        })
        detection = self._detect(self.detection.detect_term_performance_risks, student_id, actor_id)
        return RecordResult(record=record, detection=detection)
