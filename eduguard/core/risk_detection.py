"""
Risk detection service

Trigger surface of the risk engine:
- detect_weekly_attendance_risks: after attendance is saved
- detect_term_performance_risks: after a performance record is saved
- detect_socioeconomic_risks: after registration or a profile change
- detect_risks_for_student: full pass (all evaluators + combined escalation)
- detect_risks_for_school: full pass over every active student

plus the manual flag operations staff use (create, update, resolve,
delete), each followed by a risk level recomputation.
"""
import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..database.models import RiskFlagDB, StudentDB
from ..database.repositories import (
    AttendanceRepository,
    PerformanceRepository,
    RiskFlagRepository,
    SchoolRepository,
    StudentRepository,
)
from ..models.records import OVERALL_SUBJECT
from ..models.risk import CandidateRisk, ManualEvidence, RiskType, Severity
from ..models.settings import RiskRuleSettings
from ..notifications.admin import AdminNotifier
from ..notifications.dispatcher import Dispatcher
from ..notifications.guardian import GuardianNotifier, MessageTransport
from . import calendar
from .aggregator import RiskLevelAggregator
from .cache import TTLCache
from .clock import Clock
from .constants import MONTHLY_WINDOW_DAYS, SYSTEM_ACTOR_ID
from .escalator import escalate
from .evaluators import (
    evaluate_distance,
    evaluate_monthly_attendance,
    evaluate_performance_history,
    evaluate_socioeconomic,
    evaluate_term_performance,
    evaluate_weekly_attendance,
)
from .exceptions import (
    RecordValidationError,
    RiskFlagAlreadyResolvedError,
    RiskFlagNotFoundError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from .metrics import batch_students_failed, detection_runs_total
from .reconciler import ReconcileResult, RiskFlagReconciler
from .settings_provider import RiskSettingsProvider

logger = logging.getLogger(__name__)


@dataclass
class SchoolDetectionSummary:
    school_id: str
    students_processed: int = 0
    students_failed: int = 0
    total_flags_created: int = 0
    total_flags_updated: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RiskDetectionService:
    """
    Runs evaluators for a student and hands the candidates to the reconciler.

    One instance works on one database session; build a new one per
    request or per batch run.
    """

    def __init__(
        self,
        db_session: Session,
        clock: Clock,
        dispatcher: Dispatcher,
        transport: MessageTransport,
        settings_cache: Optional[TTLCache] = None
    ):
        self.db = db_session
        self.clock = clock

        self.schools = SchoolRepository(db_session)
        self.students = StudentRepository(db_session)
        self.attendance = AttendanceRepository(db_session)
        self.performance = PerformanceRepository(db_session)
        self.flags = RiskFlagRepository(db_session)
        self.settings = RiskSettingsProvider(db_session, cache=settings_cache)

        self.admin_notifier = AdminNotifier(db_session, clock)
        self.guardian_notifier = GuardianNotifier(db_session, transport, dispatcher)
        self.aggregator = RiskLevelAggregator(db_session, clock, self.admin_notifier, self.guardian_notifier)
        self.reconciler = RiskFlagReconciler(
            db_session, clock, self.admin_notifier, self.guardian_notifier, self.aggregator
        )
        logger.info("RiskDetectionService initialized")

    # =========================================================================
    # HELPERS
    # =========================================================================

    @contextmanager
    def _tracked(self, trigger: str, **context):
        try:
            yield
        except Exception:
            detection_runs_total.labels(trigger=trigger, status="error").inc()
            logger.error(f"Risk detection failed ({trigger})", extra=context, exc_info=True)
            raise
        detection_runs_total.labels(trigger=trigger, status="success").inc()

    def _load_student(self, student_id: str, school_id: Optional[str]) -> StudentDB:
        student = self.students.get_by_id(student_id)
        if not student or (school_id is not None and student.school_id != school_id):
            raise StudentNotFoundError(student_id)
        return student

    def _weekly_attendance(self, student: StudentDB) -> Optional[CandidateRisk]:
        window = calendar.current_week_window(self.clock.today())
        records = self.attendance.get_by_student_in_range(student.id, window.start, window.end)
        return evaluate_weekly_attendance(records, window)

    def _monthly_attendance(self, student: StudentDB) -> Optional[CandidateRisk]:
        start, end = calendar.trailing_window(self.clock.today(), MONTHLY_WINDOW_DAYS)
        records = self.attendance.get_by_student_in_range(student.id, start, end)
        return evaluate_monthly_attendance(records)

    def _term_performance(self, student: StudentDB) -> Optional[CandidateRisk]:
        today = self.clock.today()
        term = calendar.current_term(today)
        year = calendar.academic_year(today)
        records = self.performance.get_for_term(student.id, year, term.value, subject=OVERALL_SUBJECT)
        return evaluate_term_performance(records, term, year)

    def _performance_history(self, student: StudentDB) -> Optional[CandidateRisk]:
        records = self.performance.get_since(student.id, self.clock.now() - timedelta(days=365))
        return evaluate_performance_history(records)

    def _profile_risks(self, student: StudentDB, rules: RiskRuleSettings) -> List[CandidateRisk]:
        candidates = []
        if rules.socioeconomic.enabled:
            candidates.append(evaluate_socioeconomic(student, rules.socioeconomic))
        candidates.append(evaluate_distance(student.distance_to_school_km))
        return [c for c in candidates if c is not None]

    def _reconcile(self, student: StudentDB, actor_id: Optional[str],
                   candidates: List[CandidateRisk]) -> ReconcileResult:
        result = self.reconciler.reconcile(student.id, student.school_id, actor_id, candidates)
        logger.info("Risk detection completed", extra={
            "student_id": student.id,
            "school_id": student.school_id,
            "risks_detected": result.risks_detected,
            "flags_created": result.flags_created,
            "flags_updated": result.flags_updated,
        })
        return result

    # =========================================================================
    # NARROW TRIGGERS
    # =========================================================================

    def detect_weekly_attendance_risks(
        self,
        student_id: str,
        school_id: Optional[str] = None,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID
    ) -> ReconcileResult:
        """Weekly attendance evaluator only; no combined escalation."""
        with self._tracked("weekly_attendance", student_id=student_id):
            student = self._load_student(student_id, school_id)
            rules = self.settings.get_rules(student.school_id)
            candidates = []
            if rules.attendance.enabled:
                candidates = [c for c in [self._weekly_attendance(student)] if c]
            return self._reconcile(student, actor_id, candidates)

    def detect_term_performance_risks(
        self,
        student_id: str,
        school_id: Optional[str] = None,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID
    ) -> ReconcileResult:
        """Term performance evaluator only; no combined escalation."""
        with self._tracked("term_performance", student_id=student_id):
            student = self._load_student(student_id, school_id)
            rules = self.settings.get_rules(student.school_id)
            candidates = []
            if rules.performance.enabled:
                candidates = [c for c in [self._term_performance(student)] if c]
            return self._reconcile(student, actor_id, candidates)

    def detect_socioeconomic_risks(
        self,
        student_id: str,
        school_id: Optional[str] = None,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID
    ) -> ReconcileResult:
        """Socio-economic and distance evaluators; no combined escalation."""
        with self._tracked("socioeconomic", student_id=student_id):
            student = self._load_student(student_id, school_id)
            rules = self.settings.get_rules(student.school_id)
            return self._reconcile(student, actor_id, self._profile_risks(student, rules))

    # =========================================================================
    # FULL PASS
    # =========================================================================

    def collect_candidates(self, student: StudentDB, rules: RiskRuleSettings,
                           legacy_rules: bool = False) -> List[CandidateRisk]:
        """
        Candidates of a full pass, COMBINED escalation included.

        Args:
            student: Student to evaluate
            rules: School rules
            legacy_rules: Use the 30-day attendance and yearly performance
                evaluators instead of the weekly and term ones
        """
        candidates: List[Optional[CandidateRisk]] = []
        if rules.attendance.enabled:
            candidates.append(
                self._monthly_attendance(student) if legacy_rules else self._weekly_attendance(student)
            )
        if rules.performance.enabled:
            candidates.append(
                self._performance_history(student) if legacy_rules else self._term_performance(student)
            )
        found = [c for c in candidates if c is not None]
        found.extend(self._profile_risks(student, rules))

        combined = escalate(found, rules.combined)
        if combined:
            found.append(combined)
        return found

    def detect_risks_for_student(
        self,
        student_id: str,
        school_id: Optional[str] = None,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID,
        legacy_rules: bool = False
    ) -> ReconcileResult:
        """
        Full detection pass for one student.

        Raises:
            StudentNotFoundError: If the student does not exist (in that school)
        """
        with self._tracked("full", student_id=student_id):
            student = self._load_student(student_id, school_id)
            rules = self.settings.get_rules(student.school_id)
            return self._reconcile(student, actor_id, self.collect_candidates(student, rules, legacy_rules))

    def detect_risks_for_school(
        self,
        school_id: str,
        actor_id: Optional[str] = SYSTEM_ACTOR_ID,
        legacy_rules: bool = False
    ) -> SchoolDetectionSummary:
        """
        Full detection pass for every active student, one at a time.

        A failing student is logged and reported in the summary; only a
        failure to load the school or its students raises.

        Raises:
            SchoolNotFoundError: If the school does not exist
        """
        with self._tracked("school", school_id=school_id):
            if not self.schools.exists(school_id):
                raise SchoolNotFoundError(school_id)
            students = self.students.get_active_by_school(school_id)

        logger.info(
            f"Starting risk detection for {len(students)} students",
            extra={"school_id": school_id, "legacy_rules": legacy_rules}
        )
        summary = SchoolDetectionSummary(school_id=school_id)

        for student in students:
            student_id = student.id
            try:
                result = self.detect_risks_for_student(student_id, school_id, actor_id, legacy_rules)
            except Exception as e:
                self.db.rollback()
                summary.students_failed += 1
                summary.failures.append({"student_id": student_id, "error": str(e)})
                logger.error(
                    f"Failed to detect risks for student: {e}",
                    extra={"student_id": student_id, "school_id": school_id}
                )
                continue
            summary.students_processed += 1
            summary.total_flags_created += result.flags_created
            summary.total_flags_updated += result.flags_updated

        batch_students_failed.labels(school_id=school_id).set(summary.students_failed)
        logger.info("School risk detection completed", extra=summary.to_dict())
        return summary

    # =========================================================================
    # MANUAL FLAG OPERATIONS
    # =========================================================================

    def _get_flag(self, flag_id: str) -> RiskFlagDB:
        flag = self.flags.get_by_id(flag_id)
        if not flag:
            raise RiskFlagNotFoundError(flag_id)
        return flag

    def create_flag(
        self,
        student_id: str,
        actor_id: Optional[str],
        risk_type: RiskType,
        severity: Severity,
        title: str,
        description: str,
        notes: Optional[str] = None,
        school_id: Optional[str] = None
    ) -> RiskFlagDB:
        """
        Raise a flag by hand. It goes through the reconciler, so an active
        flag of the same type is updated instead of duplicated.
        """
        student = self._load_student(student_id, school_id)
        candidate = CandidateRisk(
            type=risk_type,
            severity=severity,
            title=title,
            description=description,
            data=ManualEvidence(notes=notes),
        )
        result = self.reconciler.reconcile(
            student.id, student.school_id, actor_id, [candidate], auto_generated=False
        )
        return result.flags[0]

    def update_flag(self, flag_id: str, actor_id: Optional[str], changes: Dict[str, Any]) -> RiskFlagDB:
        """
        Edit severity/title/description of a flag.

        Raises:
            RiskFlagNotFoundError: If the flag does not exist
            RecordValidationError: If the flag is resolved or a field is not editable
        """
        flag = self._get_flag(flag_id)
        if flag.is_resolved:
            raise RecordValidationError("Resolved risk flags cannot be edited", {"flag_id": flag_id})

        editable = {"severity", "title", "description"}
        unknown = set(changes) - editable
        if unknown:
            raise RecordValidationError("Risk flag fields not editable", {"fields": sorted(unknown)})
        if "severity" in changes:
            changes = dict(changes, severity=Severity(changes["severity"]))

        flag = self.flags.update(flag_id, changes, updated_by=actor_id, now=self.clock.now())
        self.aggregator.recompute(flag.student_id)
        logger.info("Risk flag edited", extra={"flag_id": flag_id, "actor_id": actor_id})
        return flag

    def resolve_flag(self, flag_id: str, actor_id: Optional[str], notes: Optional[str] = None) -> RiskFlagDB:
        """
        Resolve a flag and recompute the student's risk level.

        Raises:
            RiskFlagNotFoundError: If the flag does not exist
            RiskFlagAlreadyResolvedError: If the episode is already closed
        """
        flag = self._get_flag(flag_id)
        if flag.is_resolved:
            raise RiskFlagAlreadyResolvedError(flag_id)

        flag = self.flags.resolve(flag_id, actor_id, notes, now=self.clock.now())
        self.aggregator.recompute(flag.student_id)
        logger.info("Risk flag resolved", extra={
            "flag_id": flag_id,
            "student_id": flag.student_id,
            "actor_id": actor_id,
        })
        return flag

    def delete_flag(self, flag_id: str, actor_id: Optional[str]) -> None:
        flag = self._get_flag(flag_id)
        student_id = flag.student_id
        self.flags.delete(flag_id)
        self.aggregator.recompute(student_id)
        logger.info("Risk flag deleted", extra={"flag_id": flag_id, "student_id": student_id, "actor_id": actor_id})

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_flags(self, school_id: Optional[str] = None, student_id: Optional[str] = None,
                   risk_type: Optional[RiskType] = None, severity: Optional[Severity] = None,
                   include_resolved: bool = False) -> List[RiskFlagDB]:
        return self.flags.list(
            school_id=school_id,
            student_id=student_id,
            risk_type=risk_type,
            severity=severity,
            include_resolved=include_resolved,
        )

    def get_student_summary(self, student_id: str) -> Dict[str, Any]:
        return self.aggregator.summary(student_id)

    def get_school_summary(self, school_id: str) -> Dict[str, Any]:
        if not self.schools.exists(school_id):
            raise SchoolNotFoundError(school_id)
        flags = self.flags.count_active_by_school(school_id)
        return {
            "school_id": school_id,
            "total_active_flags": flags["total"],
            "flags_by_severity": flags["by_severity"],
            "flags_by_type": flags["by_type"],
            "students_by_risk_level": self.students.count_by_risk_level(school_id),
        }
