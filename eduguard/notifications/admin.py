"""
In-app notifications for school admins

Notifications are persisted inline: a database error here propagates to
the reconciliation that triggered it.
"""
import logging
from datetime import timedelta
from typing import Optional, Union

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.constants import ADMIN_NOTIFICATION_DEDUP_HOURS
from ..core.metrics import notifications_total
from ..database.models import AdminNotificationDB
from ..database.repositories import AdminNotificationRepository, StudentRepository
from ..models.risk import RiskType, Severity

logger = logging.getLogger(__name__)

STUDENT_AT_RISK = "STUDENT_AT_RISK"
GENERAL = "GENERAL"

PRIORITY_BY_SEVERITY = {
    Severity.CRITICAL: "URGENT",
    Severity.HIGH: "HIGH",
    Severity.MEDIUM: "MEDIUM",
    Severity.LOW: "LOW",
}


class AdminNotifier:
    """Creates or refreshes the admin notification for an at-risk student"""

    def __init__(self, db_session: Session, clock: Clock):
        self.clock = clock
        self.students = StudentRepository(db_session)
        self.notifications = AdminNotificationRepository(db_session)

    def notify_student_risk(
        self,
        student_id: str,
        severity: Severity,
        message: str,
        risk_type: Optional[Union[RiskType, str]] = None
    ) -> Optional[AdminNotificationDB]:
        """
        Notify admins that a student is at MEDIUM risk or above.

        An unread notification for the same student from the last 24 hours
        is updated in place instead of creating a new one.

        Args:
            student_id: Student at risk
            severity: Student or flag severity; LOW is ignored
            message: Reason appended to the standard text
            risk_type: Flag type that triggered the notification

        Returns:
            The created or refreshed notification, or None when skipped
        """
        severity = Severity(severity)
        if severity.rank < Severity.MEDIUM.rank:
            return None

        student = self.students.get_by_id(student_id)
        if not student:
            logger.warning("Admin notification skipped, student not found", extra={"student_id": student_id})
            return None

        now = self.clock.now()
        risk_type_value = risk_type.value if isinstance(risk_type, RiskType) else risk_type
        title = f"Student At Risk: {student.full_name}"
        class_name = student.class_name or "Unknown Class"
        text = (
            f"{student.full_name} from {class_name} has been flagged as "
            f"{severity.value.capitalize()} risk."
        )
        text = f"{text} {message}" if message else f"{text} Immediate attention may be required."
        priority = PRIORITY_BY_SEVERITY[severity]

        existing = self.notifications.find_recent_unread(
            student_id,
            STUDENT_AT_RISK,
            since=now - timedelta(hours=ADMIN_NOTIFICATION_DEDUP_HOURS),
        )
        if existing:
            notification = self.notifications.refresh_content(
                existing, title, text, priority, severity.value, risk_type_value, now=now
            )
            status = "updated"
        else:
            notification = self.notifications.create(
                school_id=student.school_id,
                student_id=student_id,
                notification_type=STUDENT_AT_RISK,
                title=title,
                message=text,
                priority=priority,
                risk_level=severity.value,
                risk_type=risk_type_value,
                now=now,
            )
            status = "created"

        notifications_total.labels(channel="admin", status=status).inc()
        logger.info(
            f"Admin notification {status}",
            extra={
                "student_id": student_id,
                "severity": severity.value,
                "risk_type": risk_type_value,
                "notification_id": notification.id,
            }
        )
        return notification

    def notify_risk_reduced(self, student_id: str, message: str) -> Optional[AdminNotificationDB]:
        """Record that a student's risk level dropped back to LOW"""
        student = self.students.get_by_id(student_id)
        if not student:
            logger.warning("Admin notification skipped, student not found", extra={"student_id": student_id})
            return None

        notification = self.notifications.create(
            school_id=student.school_id,
            student_id=student_id,
            notification_type=GENERAL,
            title=f"Risk Reduced: {student.full_name}",
            message=f"{student.full_name}: {message}",
            priority=PRIORITY_BY_SEVERITY[Severity.LOW],
            risk_level=Severity.LOW.value,
            risk_type=GENERAL,
            now=self.clock.now(),
        )
        notifications_total.labels(channel="admin", status="created").inc()
        logger.info("Admin notified of risk reduction", extra={"student_id": student_id})
        return notification
