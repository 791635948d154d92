"""
Student risk level aggregator

The only writer of StudentDB.risk_level. Recomputes the level from the
student's active flags after every flag change and drives the resulting
admin and guardian notifications.
"""
import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..database.repositories import RiskFlagRepository, StudentRepository
from ..models.risk import RiskType, Severity
from ..notifications.admin import AdminNotifier
from ..notifications.guardian import GuardianNotifier
from .clock import Clock
from .exceptions import StudentNotFoundError

logger = logging.getLogger(__name__)

RISK_REDUCED_MESSAGE = "Risk level automatically reduced to LOW - all risk flags have been resolved."


class RiskLevelAggregator:
    """Derives a student's overall risk level from active flags"""

    def __init__(
        self,
        db_session: Session,
        clock: Clock,
        admin_notifier: AdminNotifier,
        guardian_notifier: GuardianNotifier
    ):
        self.clock = clock
        self.students = StudentRepository(db_session)
        self.flags = RiskFlagRepository(db_session)
        self.admin_notifier = admin_notifier
        self.guardian_notifier = guardian_notifier

    def recompute(self, student_id: str) -> Severity:
        """
        Recompute and persist the risk level of a student.

        Raises:
            StudentNotFoundError: If the student does not exist

        Returns:
            The new risk level
        """
        student = self.students.get_by_id(student_id)
        if not student:
            raise StudentNotFoundError(student_id)

        previous = Severity(student.risk_level or Severity.LOW.value)
        active = self.flags.get_active_by_student(student_id)

        if not active:
            self.students.set_risk_level(student_id, Severity.LOW, all_flags_resolved_at=self.clock.now())
            logger.info(
                "Risk level set to LOW, all risk flags resolved",
                extra={"student_id": student_id, "previous_level": previous.value}
            )
            if previous is not Severity.LOW:
                self.admin_notifier.notify_risk_reduced(student_id, RISK_REDUCED_MESSAGE)
            return Severity.LOW

        level = Severity.highest(Severity(flag.severity) for flag in active)
        self.students.set_risk_level(student_id, level)
        changed = level is not previous

        if changed:
            logger.info(
                "Student risk level changed",
                extra={"student_id": student_id, "previous_level": previous.value, "risk_level": level.value}
            )

        if level.rank >= Severity.MEDIUM.rank:
            if changed:
                reason = f"Risk level changed from {previous.value} to {level.value}."
            else:
                reason = f"Student has active risk flags with {level.value} risk level."
            risk_type = RiskType(active[0].type)
            self.admin_notifier.notify_student_risk(student_id, level, reason, risk_type)

            if changed and level.is_alerting:
                self.guardian_notifier.notify_parents_of_risk(student_id, level, reason)

        return level

    def summary(self, student_id: str) -> Dict[str, Any]:
        """
        Active flag counts of a student by severity and type, plus the
        overall level the active flags imply.
        """
        student = self.students.get_by_id(student_id)
        if not student:
            raise StudentNotFoundError(student_id)

        active = self.flags.get_active_by_student(student_id)
        by_severity = {s.value: 0 for s in Severity}
        by_type = {t.value: 0 for t in RiskType}
        for flag in active:
            by_severity[flag.severity] += 1
            by_type[flag.type] += 1

        return {
            "student_id": student_id,
            "overall_risk": Severity.highest(Severity(f.severity) for f in active).value,
            "risk_level": student.risk_level,
            "total_active": len(active),
            "by_severity": by_severity,
            "by_type": by_type,
            "last_all_flags_resolved_at": student.last_all_flags_resolved_at,
        }
