"""
Guardian (parent) risk alerts

The notifier builds one SMS and/or one email per guardian contact on the
calling thread, where the database session lives, and hands only the
transport sends to the dispatcher. Delivery failures are logged and never
reach the reconciliation that triggered the alert.

Transports:
- LoggingTransport: logs messages (default when no gateway is configured)
- HttpGatewayTransport: POSTs each message as JSON to GUARDIAN_GATEWAY_URL
"""
import logging
from typing import List, Literal, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.constants import GUARDIAN_GATEWAY_TIMEOUT_SECONDS, GUARDIAN_GATEWAY_URL
from ..core.metrics import notifications_total
from ..database.repositories import SchoolRepository, StudentRepository
from ..models.risk import Severity
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class GuardianMessage(BaseModel):
    channel: Literal["sms", "email"]
    recipient: str
    guardian_name: Optional[str] = None
    subject: Optional[str] = None
    body: str
    student_id: str
    severity: Severity


class MessageTransport:
    """Delivers one message; raises on failure"""

    name = "base"

    def send(self, message: GuardianMessage) -> None:
        raise NotImplementedError


class LoggingTransport(MessageTransport):
    name = "log"

    def send(self, message: GuardianMessage) -> None:
        logger.info(
            f"Guardian {message.channel} (not delivered, no gateway configured): {message.body}",
            extra={"student_id": message.student_id, "channel": message.channel}
        )


class HttpGatewayTransport(MessageTransport):
    """Posts messages to an HTTP SMS/email gateway"""

    name = "http"

    def __init__(self, url: str, timeout: float = GUARDIAN_GATEWAY_TIMEOUT_SECONDS,
                 client: Optional[httpx.Client] = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, message: GuardianMessage) -> None:
        response = self._client.post(self.url, json=message.model_dump(mode="json"))
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


def create_transport_from_env() -> MessageTransport:
    """HttpGatewayTransport when GUARDIAN_GATEWAY_URL is set, else LoggingTransport"""
    if GUARDIAN_GATEWAY_URL:
        logger.info("Guardian alerts use HTTP gateway", extra={"gateway_url": GUARDIAN_GATEWAY_URL})
        return HttpGatewayTransport(GUARDIAN_GATEWAY_URL)
    return LoggingTransport()


def build_sms_text(student_name: str, severity: Severity, school_name: str) -> str:
    return (
        f"EduGuard Alert: {student_name} has been flagged as {severity.value} risk at "
        f"{school_name}. Please contact the school for details."
    )


def build_email(guardian_name: Optional[str], student_name: str, severity: Severity,
                description: str, school_name: str):
    """(subject, body) of the guardian email"""
    subject = f"Important: {student_name}'s Academic Alert - {school_name}"
    body = (
        f"Dear {guardian_name or 'Parent/Guardian'},\n\n"
        f"{student_name} has been identified as being at {severity.value} risk at {school_name}.\n\n"
        f"{description}\n\n"
        f"Please contact the school to discuss how we can support {student_name}.\n\n"
        f"{school_name}"
    )
    return subject, body


class GuardianNotifier:
    """Fire-and-forget alerts to a student's guardian contacts"""

    def __init__(self, db_session: Session, transport: MessageTransport, dispatcher: Dispatcher):
        self.students = StudentRepository(db_session)
        self.schools = SchoolRepository(db_session)
        self.transport = transport
        self.dispatcher = dispatcher
        self.queued = 0

    def build_messages(self, student_id: str, severity: Severity, message: str) -> List[GuardianMessage]:
        student = self.students.get_by_id(student_id)
        if not student:
            logger.warning("Guardian alert skipped, student not found", extra={"student_id": student_id})
            return []

        school = self.schools.get_by_id(student.school_id)
        school_name = school.name if school else "Unknown School"
        student_name = student.full_name
        messages: List[GuardianMessage] = []

        for guardian in student.guardian_contacts or []:
            name = guardian.get("name")
            if guardian.get("email"):
                subject, body = build_email(name, student_name, severity, message, school_name)
                messages.append(GuardianMessage(
                    channel="email",
                    recipient=guardian["email"],
                    guardian_name=name,
                    subject=subject,
                    body=body,
                    student_id=student_id,
                    severity=severity,
                ))
            if guardian.get("phone"):
                messages.append(GuardianMessage(
                    channel="sms",
                    recipient=guardian["phone"],
                    guardian_name=name,
                    body=build_sms_text(student_name, severity, school_name),
                    student_id=student_id,
                    severity=severity,
                ))
        return messages

    def notify_parents_of_risk(self, student_id: str, severity: Severity, message: str) -> int:
        """
        Queue alerts for every guardian contact of the student.

        Never raises.

        Returns:
            Number of messages handed to the dispatcher
        """
        try:
            severity = Severity(severity)
            messages = self.build_messages(student_id, severity, message)
        except Exception as e:
            notifications_total.labels(channel="guardian", status="error").inc()
            logger.error(
                f"Failed to prepare guardian alert: {e}",
                extra={"student_id": student_id, "severity": str(severity)},
                exc_info=True,
            )
            return 0

        if not messages:
            logger.info("No guardian contacts to notify", extra={"student_id": student_id})
            return 0

        self.dispatcher.submit(
            self._deliver,
            messages,
            description=f"guardian alert for student {student_id}",
        )
        self.queued += len(messages)
        return len(messages)

    def _deliver(self, messages: List[GuardianMessage]) -> None:
        """Send each message; one failed recipient does not stop the others"""
        for message in messages:
            try:
                self.transport.send(message)
                notifications_total.labels(channel="guardian", status="sent").inc()
            except Exception as e:
                notifications_total.labels(channel="guardian", status="error").inc()
                logger.error(
                    f"Guardian {message.channel} delivery failed: {e}",
                    extra={
                        "student_id": message.student_id,
                        "channel": message.channel,
                        "transport": self.transport.name,
                    },
                )
